"""
Fallback orchestrator
Tries each indicator's providers in a fixed order and returns the first success
"""

import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from ..config import get_config
from ..utils import get_logger
from .alpha_vantage import AlphaVantageAdapter
from .base import AllProvidersExhausted, DataSource, IndicatorResult, ProviderAdapter, ProviderError, UsageSink
from .fred import FredAdapter
from .indicators import BUILDERS, Builder
from .mock import MockDataAdapter
from .yahoo import YahooFinanceAdapter

logger = get_logger(__name__)

CompositeProducer = Callable[[], Awaitable[IndicatorResult]]


class FallbackOrchestrator:
    """
    Resolves an indicator type to a normalized result

    Attempts are strictly sequential and never retried. Rate limits,
    unavailability, invalid payloads and timeouts all advance the chain.
    """

    def __init__(
        self,
        chains: Dict[str, List[ProviderAdapter]],
        builders: Optional[Dict[str, Builder]] = None,
        attempt_timeout: Optional[float] = None
    ):
        self.chains = chains
        self.builders = builders if builders is not None else BUILDERS
        # One attempt may fan out into several provider calls (sectors)
        self.attempt_timeout = attempt_timeout or get_config().api.request_timeout_seconds * 2
        self.composites: Dict[str, CompositeProducer] = {}

    @property
    def indicator_types(self) -> List[str]:
        return list(self.chains.keys()) + [t for t in self.composites if t not in self.chains]

    def register_composite(self, indicator_type: str, producer: CompositeProducer):
        """Serve an indicator computed from other signals through the same entry point"""
        self.composites[indicator_type] = producer
        logger.debug(f"Registered composite indicator {indicator_type}")

    async def get_indicator(self, indicator_type: str) -> IndicatorResult:
        if indicator_type in self.composites:
            return await self.composites[indicator_type]()

        if indicator_type not in self.chains:
            raise KeyError(f"Unknown indicator type: {indicator_type}")

        builder = self.builders[indicator_type]
        errors = []

        for adapter in self.chains[indicator_type]:
            try:
                reading = await asyncio.wait_for(builder(adapter), timeout=self.attempt_timeout)
            except ProviderError as e:
                logger.warning(f"{indicator_type}: {adapter.name} failed ({e.kind}): {e}")
                errors.append(str(e))
                continue
            except asyncio.TimeoutError:
                logger.warning(f"{indicator_type}: {adapter.name} timed out after {self.attempt_timeout}s")
                errors.append(f"{adapter.name}: timeout")
                continue
            except Exception as e:
                logger.exception(f"{indicator_type}: unexpected error from {adapter.name}: {type(e).__name__}: {e}")
                errors.append(f"{adapter.name}: {type(e).__name__}: {e}")
                continue

            if adapter.source is DataSource.MOCK:
                logger.warning(f"{indicator_type}: all real-time sources failed, serving mock data")
            else:
                logger.debug(f"{indicator_type}: served by {adapter.name}")

            return IndicatorResult(
                indicator_type=indicator_type,
                payload=reading.payload,
                source=adapter.name,
                as_of=reading.as_of,
                trend=reading.trend
            )

        logger.error(f"{indicator_type}: all providers exhausted")
        raise AllProvidersExhausted(indicator_type, errors)

    async def close(self):
        """Close every distinct adapter across the chains"""
        seen = set()
        for chain in self.chains.values():
            for adapter in chain:
                if id(adapter) in seen:
                    continue
                seen.add(id(adapter))
                try:
                    await adapter.close()
                except Exception as e:
                    logger.error(f"Error closing {adapter.name}: {e}")


def build_default_chains(usage_sink: Optional[UsageSink] = None) -> Dict[str, List[ProviderAdapter]]:
    """Static provider order per indicator; every chain ends with the mock adapter"""
    alpha_vantage = AlphaVantageAdapter(usage_sink=usage_sink)
    yahoo = YahooFinanceAdapter(usage_sink=usage_sink)
    fred = FredAdapter(usage_sink=usage_sink)
    mock = MockDataAdapter(usage_sink=usage_sink)

    market_chain = [alpha_vantage, yahoo, mock]
    macro_chain = [fred, mock]
    return {
        "sp500": market_chain,
        "vix": market_chain,
        "sector_performance": market_chain,
        "interest_rate": macro_chain,
        "cpi": macro_chain,
        "unemployment": macro_chain,
    }
