"""Main coordinator wiring adapters, cache, calculator and scheduler together."""
from typing import Any, Dict, List, Optional

from ..config import get_config
from ..data.base import DataSource, IndicatorResult, ProviderAdapter
from ..data.cache import CacheStats, CacheStore
from ..data.cache_manager import CacheManager
from ..data.freshness import FreshnessPolicy
from ..data.orchestrator import FallbackOrchestrator, build_default_chains
from ..domain.fear_greed import FearGreedCalculator, FearGreedIndex
from ..utils.logger import get_logger
from ..utils.market_hours import MarketClock, MarketSession, get_market_clock
from ..utils.quota import QuotaGuard, get_quota_guard
from .events import AlertSink, UpdateSummary
from .scheduler import Scheduler


logger = get_logger(__name__)

FEAR_GREED = "fear_greed_index"


class Coordinator:
    """Composition root exposing the read-through, refresh and stats operations."""

    def __init__(
        self,
        store: Optional[CacheStore] = None,
        orchestrator: Optional[FallbackOrchestrator] = None,
        clock: Optional[MarketClock] = None,
        alert_sink: Optional[AlertSink] = None,
        quota_guard: Optional[QuotaGuard] = None
    ):
        """Initialize coordinator.

        Args:
            store: Optional cache store (will create from configuration if not provided)
            orchestrator: Optional orchestrator (default provider chains if not provided)
            clock: Exchange clock shared by cache, policy and scheduler
            alert_sink: Receives scheduled job failures
            quota_guard: Usage sink handed to the default adapters
        """
        self.config = get_config()
        self.clock = clock or get_market_clock()
        self.quota_guard = quota_guard or get_quota_guard()

        self.store = store or CacheStore(self.config.cache.cache_file)
        self.orchestrator = orchestrator or FallbackOrchestrator(build_default_chains(self.quota_guard))
        self.policy = FreshnessPolicy(self.clock)

        # Composite sentiment flows through the orchestrator like any other indicator
        quote_adapters, rate_adapters = self._signal_adapters()
        self.calculator = FearGreedCalculator(quote_adapters, rate_adapters, cache=self.store)
        self.orchestrator.register_composite(FEAR_GREED, self.calculator.compute_result)

        self.cache = CacheManager(self.store, self.orchestrator, self.policy, self.clock)
        self.scheduler = Scheduler(
            self.store,
            self.orchestrator,
            policy=self.policy,
            clock=self.clock,
            alert_sink=alert_sink
        )

    def _signal_adapters(self):
        """Real providers from the orchestrator's chains, without the mock tail"""
        def real(chain: List[ProviderAdapter]) -> List[ProviderAdapter]:
            return [a for a in chain if a.source is not DataSource.MOCK]

        quotes = real(self.orchestrator.chains.get("vix", []))
        rates = real(self.orchestrator.chains.get("interest_rate", []))
        return quotes, rates

    async def start(self):
        """Start background refresh."""
        await self.scheduler.start()
        logger.info("Coordinator started")

    async def stop(self):
        """Stop background refresh and release provider clients."""
        await self.scheduler.stop()
        await self.orchestrator.close()
        logger.info("Coordinator stopped")

    async def get_cached_or_fresh(self, indicator_type: str) -> IndicatorResult:
        return await self.cache.get_cached_or_fresh(indicator_type)

    async def force_refresh(self, session: Optional[MarketSession] = None) -> UpdateSummary:
        return await self.scheduler.force_refresh(session)

    async def get_cache_stats(self) -> CacheStats:
        return await self.cache.get_cache_stats()

    async def compute_fear_greed(self) -> FearGreedIndex:
        return await self.calculator.compute()

    async def cleanup_cache(self) -> int:
        return await self.store.cleanup_expired()

    async def get_status(self) -> Dict[str, Any]:
        status = await self.scheduler.get_status()
        status["quota"] = self.quota_guard.get_status()
        status["indicators"] = self.orchestrator.indicator_types
        return status
