"""
Read-through cache manager for market indicators
Serves unexpired cache entries and refreshes synchronously on a miss
"""

from datetime import datetime
from typing import Optional

from ..utils import get_logger
from ..utils.market_hours import MarketClock, MarketSession, get_market_clock
from .base import CacheStoreError, DataSource, IndicatorResult, Trend
from .cache import CacheEntry, CacheStats, CacheStore, calculate_quality_score
from .freshness import FreshnessPolicy
from .orchestrator import FallbackOrchestrator

logger = get_logger(__name__)


def entry_from_result(
    result: IndicatorResult,
    session: MarketSession,
    policy: FreshnessPolicy,
    cached_at: datetime
) -> CacheEntry:
    """Wrap an orchestrator result for storage under the policy TTL"""
    return CacheEntry.create(
        data_type=result.indicator_type,
        payload={
            'value': result.payload,
            'as_of': result.as_of.isoformat(),
            'trend': result.trend.value
        },
        session=session,
        source=result.source,
        ttl=policy.ttl_for(result.indicator_type, cached_at),
        cached_at=cached_at,
        quality_score=calculate_quality_score(result.payload)
    )


def result_from_entry(entry: CacheEntry) -> IndicatorResult:
    """Rebuild the caller-facing result from a cache hit"""
    envelope = entry.payload
    return IndicatorResult(
        indicator_type=entry.data_type,
        payload=envelope['value'],
        source=DataSource.CACHE.value,
        as_of=datetime.fromisoformat(envelope['as_of']),
        trend=Trend(envelope.get('trend', Trend.STABLE.value)),
        cached_at=entry.cached_at,
        origin=entry.source
    )


class CacheManager:
    """
    High-level read-through interface used by HTTP handlers and the CLI

    Storage failures never reach the caller: a failed read falls back to a
    direct orchestrator call and a failed write still returns the fresh value.
    """

    def __init__(
        self,
        store: CacheStore,
        orchestrator: FallbackOrchestrator,
        policy: Optional[FreshnessPolicy] = None,
        clock: Optional[MarketClock] = None
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.clock = clock or get_market_clock()
        self.policy = policy or FreshnessPolicy(self.clock)

    async def get_cached_or_fresh(self, indicator_type: str) -> IndicatorResult:
        try:
            entry = await self.store.get_latest(indicator_type)
        except CacheStoreError as e:
            logger.error(f"Cache read failed for {indicator_type}, fetching directly: {e}")
            return await self.orchestrator.get_indicator(indicator_type)

        if entry is not None:
            logger.debug(f"Cache hit for {indicator_type} ({entry.session.value})")
            return result_from_entry(entry)

        logger.debug(f"Cache miss for {indicator_type}, refreshing")
        result = await self.orchestrator.get_indicator(indicator_type)

        now = self.store.clock()
        entry = entry_from_result(result, self.clock.current_session(now), self.policy, now)
        try:
            await self.store.put(entry)
        except CacheStoreError as e:
            logger.error(f"Cache write failed for {indicator_type}: {e}")
            return result

        result.cached_at = entry.cached_at
        return result

    async def get_cache_stats(self) -> CacheStats:
        return await self.store.get_stats()
