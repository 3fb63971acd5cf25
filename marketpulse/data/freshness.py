"""
Freshness policy: how long a cached indicator stays valid
"""

from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from ..utils.market_hours import MarketClock, get_market_clock

# (market hours, off hours)
DEFAULT_TTLS: Dict[str, Tuple[timedelta, timedelta]] = {
    "sp500": (timedelta(minutes=15), timedelta(minutes=60)),
    "vix": (timedelta(minutes=15), timedelta(minutes=60)),
    "sector_performance": (timedelta(minutes=30), timedelta(minutes=90)),
    "interest_rate": (timedelta(hours=12), timedelta(hours=12)),
    "cpi": (timedelta(hours=12), timedelta(hours=12)),
    "unemployment": (timedelta(hours=12), timedelta(hours=12)),
    "fear_greed_index": (timedelta(hours=12), timedelta(hours=12)),
}

FALLBACK_TTL = (timedelta(minutes=15), timedelta(minutes=60))


class FreshnessPolicy:
    """Per-indicator TTL pair, chosen by whether the market is open"""

    def __init__(
        self,
        clock: Optional[MarketClock] = None,
        ttls: Optional[Dict[str, Tuple[timedelta, timedelta]]] = None
    ):
        self.clock = clock or get_market_clock()
        self.ttls = dict(DEFAULT_TTLS)
        if ttls:
            self.ttls.update(ttls)

    def ttl_for(self, data_type: str, moment: Optional[datetime] = None) -> timedelta:
        market_ttl, off_hours_ttl = self.ttls.get(data_type, FALLBACK_TTL)
        return market_ttl if self.clock.is_market_hours(moment) else off_hours_ttl

    def expires_at(self, data_type: str, cached_at: datetime) -> datetime:
        return cached_at + self.ttl_for(data_type, cached_at)
