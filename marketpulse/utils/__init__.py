"""
Utility modules for MarketPulse
"""

from .logger import setup_logger, get_logger, log_async_performance
from .quota import (
    QuotaGuard,
    QuotaInfo,
    QuotaPeriod,
    UsageRecord,
    get_quota_guard
)
from .market_hours import (
    MarketClock,
    MarketSession,
    to_exchange_time,
    is_market_hours,
    current_market_session,
    is_update_required,
    next_update_time
)

__all__ = [
    "setup_logger",
    "get_logger",
    "log_async_performance",
    "QuotaGuard",
    "QuotaInfo",
    "QuotaPeriod",
    "UsageRecord",
    "get_quota_guard",
    "MarketClock",
    "MarketSession",
    "to_exchange_time",
    "is_market_hours",
    "current_market_session",
    "is_update_required",
    "next_update_time"
]
