"""
Base classes for provider adapters
"""

import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from ..utils import get_logger
from ..utils.quota import UsageRecord

logger = get_logger(__name__)


class DataSource(Enum):
    """Provenance tags attached to every result"""
    ALPHA_VANTAGE = "alpha_vantage"
    YAHOO = "yahoo_finance_backup"
    FRED = "fred_api"
    MOCK = "mock_data"
    CALCULATED = "calculated"
    CACHE = "supabase_cache"


class Trend(Enum):
    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


class ProviderError(Exception):
    """Base class for adapter failures; the orchestrator advances on any of them"""
    kind = "provider_error"

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class RateLimited(ProviderError):
    """Provider signalled quota exhaustion (HTTP 429 or rate-limit body text)"""
    kind = "rate_limited"


class Unavailable(ProviderError):
    """Network failure, timeout, 5xx or missing credentials"""
    kind = "unavailable"


class InvalidResponse(ProviderError):
    """Malformed or unexpected payload shape"""
    kind = "invalid_response"


class AllProvidersExhausted(Exception):
    """Every adapter in a chain failed; unreachable while the mock adapter ends the chain"""

    def __init__(self, indicator_type: str, errors: List[str]):
        self.indicator_type = indicator_type
        self.errors = errors
        super().__init__(f"All providers failed for {indicator_type}: {'; '.join(errors)}")


class CacheStoreError(Exception):
    """Cache storage is unreachable or could not persist an entry"""


def require_finite(provider: str, label: str, *values: Optional[float]):
    """Reject NaN or infinite numbers in a parsed payload; None passes"""
    for value in values:
        if value is not None and not math.isfinite(value):
            raise InvalidResponse(provider, f"non-finite value in {label}: {value}")


@dataclass
class NormalizedQuote:
    """Latest quote for one symbol"""
    symbol: str
    price: float
    timestamp: datetime
    provider: str
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[int] = None
    previous_close: Optional[float] = None


@dataclass
class SeriesPoint:
    date: date
    value: float
    volume: Optional[int] = None


@dataclass
class NormalizedSeries:
    """Observations ordered oldest first"""
    series_id: str
    points: List[SeriesPoint]
    provider: str
    interval: str = "daily"

    @property
    def latest(self) -> SeriesPoint:
        return self.points[-1]

    def values(self) -> List[float]:
        return [p.value for p in self.points]


@dataclass
class IndicatorResult:
    """Normalized indicator handed to callers"""
    indicator_type: str
    payload: Any
    source: str
    as_of: datetime
    trend: Trend = Trend.STABLE
    cached_at: Optional[datetime] = None
    origin: Optional[str] = None  # provider behind a cached payload

    @property
    def is_synthetic(self) -> bool:
        return DataSource.MOCK.value in (self.source, self.origin)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'indicator_type': self.indicator_type,
            'payload': self.payload,
            'source': self.source,
            'as_of': self.as_of.isoformat(),
            'trend': self.trend.value,
            'cached_at': self.cached_at.isoformat() if self.cached_at else None,
            'origin': self.origin
        }


class UsageSink(Protocol):
    """Collaborator receiving one record per provider call"""

    def record(self, usage: UsageRecord) -> None:
        ...


class ProviderAdapter(ABC):
    """
    Base class for all provider adapters

    Adapters build requests, enforce their own per-call timeout, parse the
    provider's wire format and raise RateLimited / Unavailable /
    InvalidResponse. They never retry.
    """

    def __init__(self, source: DataSource, usage_sink: Optional[UsageSink] = None):
        self.source = source
        self.usage_sink = usage_sink

    @property
    def name(self) -> str:
        return self.source.value

    @property
    def is_configured(self) -> bool:
        return True

    @abstractmethod
    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        """Latest quote for a symbol"""

    @abstractmethod
    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        """Most recent `lookback` observations of a series"""

    async def close(self):
        """Release transient client resources"""

    async def _ensure_quota(self):
        """Refuse the call locally when the sink reports the quota as spent"""
        check = getattr(self.usage_sink, "check_quota", None)
        if check is None:
            return
        try:
            available = await check(self.name)
        except Exception as e:
            logger.warning(f"Quota check failed for {self.name}: {e}")
            return
        if not available:
            raise RateLimited(self.name, "local quota exhausted")

    def _track(self, endpoint: str, started: float, error: Optional[BaseException] = None):
        """Report one call to the usage sink; tracking never fails the data call"""
        if self.usage_sink is None:
            return
        try:
            self.usage_sink.record(UsageRecord(
                provider=self.name,
                endpoint=endpoint,
                success=error is None,
                latency_ms=int((time.perf_counter() - started) * 1000),
                error_kind=getattr(error, 'kind', type(error).__name__) if error else None
            ))
        except Exception as e:
            logger.warning(f"Usage tracking failed for {self.name}: {e}")

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"
