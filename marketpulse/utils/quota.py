"""
Quota and usage tracking for provider calls
Tracks usage, enforces free-tier limits and keeps a CSV usage log
"""

import asyncio
import csv
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Dict, Optional

from ..config.settings import get_config
from .logger import get_logger

logger = get_logger(__name__)

USAGE_LOG_COLUMNS = [
    'timestamp', 'provider', 'endpoint', 'success', 'latency_ms',
    'error_kind', 'usage_after', 'limit', 'period'
]

# Usage history kept in memory for summaries
RECORD_RETENTION = timedelta(hours=24)
MAX_USAGE_RECORDS = 10_000


class QuotaPeriod(Enum):
    """Quota reset periods"""
    MINUTE = "minute"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return {"minute": 60, "day": 86400}[self.value]


@dataclass
class QuotaInfo:
    """Information about a single quota"""
    provider: str
    limit: int
    period: QuotaPeriod
    used: int = 0
    last_reset: float = field(default_factory=time.time)
    last_call: Optional[float] = None

    @property
    def remaining(self) -> int:
        """Calculate remaining quota"""
        return max(0, self.limit - self.used)

    @property
    def usage_percentage(self) -> float:
        """Calculate usage percentage"""
        if self.limit == 0:
            return 0.0
        return (self.used / self.limit) * 100

    def should_reset(self, now: Optional[float] = None) -> bool:
        """Check if quota should be reset based on period"""
        now = time.time() if now is None else now
        return now - self.last_reset >= self.period.seconds

    def reset(self, now: Optional[float] = None):
        """Reset quota counter"""
        self.used = 0
        self.last_reset = time.time() if now is None else now
        logger.info(f"Reset quota for {self.provider}: {self.limit} per {self.period.value}")

    def increment(self, count: int = 1):
        """Increment usage counter"""
        self.used += count
        self.last_call = time.time()


@dataclass(frozen=True)
class UsageRecord:
    """One provider call as reported by an adapter"""
    provider: str
    endpoint: str
    success: bool
    latency_ms: int
    error_kind: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class QuotaGuard:
    """Usage-tracking sink and quota bookkeeping for all providers"""

    def __init__(
        self,
        usage_log_file: Optional[Path] = None,
        limits: Optional[Dict[str, QuotaInfo]] = None,
        max_records: int = MAX_USAGE_RECORDS
    ):
        self.config = get_config()
        self.usage_log_file = usage_log_file
        self._lock = asyncio.Lock()
        self.records: Deque[UsageRecord] = deque(maxlen=max_records)
        self.quotas: Dict[str, QuotaInfo] = limits if limits is not None else self._default_quotas()

        if self.usage_log_file:
            self._init_usage_log()

    def _default_quotas(self) -> Dict[str, QuotaInfo]:
        """Free-tier limits from configuration"""
        api = self.config.api
        return {
            "alpha_vantage": QuotaInfo(
                provider="alpha_vantage",
                limit=api.alpha_vantage_daily_calls,
                period=QuotaPeriod.DAY
            ),
            "fred_api": QuotaInfo(
                provider="fred_api",
                limit=api.fred_calls_per_minute,
                period=QuotaPeriod.MINUTE
            ),
        }

    async def check_quota(self, provider: str, count: int = 1) -> bool:
        """
        Check if quota is available for provider

        Args:
            provider: Provider name
            count: Number of calls about to be made

        Returns:
            True if quota available, False otherwise
        """
        async with self._lock:
            quota = self.quotas.get(provider)
            if quota is None:
                return True

            if quota.should_reset():
                quota.reset()

            if quota.remaining >= count:
                return True

            logger.warning(
                f"Quota exhausted for {provider}: "
                f"{quota.used}/{quota.limit} per {quota.period.value}"
            )
            return False

    def record(self, usage: UsageRecord):
        """Record one provider call; counts against the provider's quota"""
        quota = self.quotas.get(usage.provider)
        if quota is not None:
            if quota.should_reset():
                quota.reset()
            quota.increment()
            if quota.usage_percentage > 90:
                logger.warning(
                    f"High quota usage for {usage.provider}: "
                    f"{quota.usage_percentage:.1f}% ({quota.remaining} remaining)"
                )

        self.records.append(usage)
        cutoff = usage.timestamp - RECORD_RETENTION
        while self.records and self.records[0].timestamp < cutoff:
            self.records.popleft()
        if self.usage_log_file:
            self._log_usage(usage, quota)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        """Get current quota status for all providers"""
        status = {}
        for provider, quota in self.quotas.items():
            if quota.should_reset():
                quota.reset()

            status[provider] = {
                'used': quota.used,
                'limit': quota.limit,
                'remaining': quota.remaining,
                'percentage': round(quota.usage_percentage, 1),
                'period': quota.period.value,
                'last_call': datetime.fromtimestamp(quota.last_call).isoformat() if quota.last_call else None
            }
        return status

    def get_usage_summary(self, hours: int = 24) -> Dict[str, Any]:
        """Success rate and latency per provider over the last N hours (at most 24 are kept)"""
        cutoff = datetime.now() - timedelta(hours=hours)
        by_provider: Dict[str, Dict[str, Any]] = defaultdict(
            lambda: {'calls': 0, 'success': 0, 'failed': 0, 'total_latency_ms': 0, 'errors': defaultdict(int)}
        )

        for usage in self.records:
            if usage.timestamp < cutoff:
                continue
            data = by_provider[usage.provider]
            data['calls'] += 1
            data['total_latency_ms'] += usage.latency_ms
            if usage.success:
                data['success'] += 1
            else:
                data['failed'] += 1
                data['errors'][usage.error_kind or 'unknown'] += 1

        summary = {}
        for provider, data in by_provider.items():
            summary[provider] = {
                'calls': data['calls'],
                'success': data['success'],
                'failed': data['failed'],
                'success_rate': round(data['success'] / data['calls'] * 100, 1),
                'avg_latency_ms': round(data['total_latency_ms'] / data['calls'], 1),
                'errors': dict(data['errors'])
            }
        return summary

    def _init_usage_log(self):
        """Initialize usage log CSV file if it doesn't exist or is empty"""
        self.usage_log_file.parent.mkdir(parents=True, exist_ok=True)

        has_content = self.usage_log_file.exists() and self.usage_log_file.stat().st_size > 0
        if not has_content:
            with open(self.usage_log_file, 'w', newline='') as f:
                csv.writer(f).writerow(USAGE_LOG_COLUMNS)
            logger.info(f"Created usage log at {self.usage_log_file}")

    def _log_usage(self, usage: UsageRecord, quota: Optional[QuotaInfo]):
        """Append one usage row to the CSV log"""
        try:
            with open(self.usage_log_file, 'a', newline='') as f:
                csv.writer(f).writerow([
                    usage.timestamp.isoformat(),
                    usage.provider,
                    usage.endpoint,
                    usage.success,
                    usage.latency_ms,
                    usage.error_kind or "",
                    quota.used if quota else "",
                    quota.limit if quota else "",
                    quota.period.value if quota else ""
                ])
        except OSError as e:
            logger.error(f"Failed to log provider usage: {e}")


# Global quota guard instance
_quota_guard: Optional[QuotaGuard] = None

def get_quota_guard() -> QuotaGuard:
    """Get or create the quota guard singleton"""
    global _quota_guard
    if _quota_guard is None:
        config = get_config()
        _quota_guard = QuotaGuard(usage_log_file=config.system.logs_dir / "api_usage.csv")
    return _quota_guard
