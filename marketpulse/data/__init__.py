"""
Data acquisition layer
Provider adapters, fallback orchestration and the indicator cache
"""

from .base import (
    DataSource,
    Trend,
    ProviderError,
    RateLimited,
    Unavailable,
    InvalidResponse,
    AllProvidersExhausted,
    CacheStoreError,
    NormalizedQuote,
    NormalizedSeries,
    SeriesPoint,
    IndicatorResult,
    ProviderAdapter
)

from .alpha_vantage import AlphaVantageAdapter
from .yahoo import YahooFinanceAdapter
from .fred import FredAdapter
from .mock import MockDataAdapter
from .orchestrator import FallbackOrchestrator, build_default_chains
from .cache import CacheEntry, CacheStats, CacheStore, calculate_quality_score
from .freshness import FreshnessPolicy
from .cache_manager import CacheManager

__all__ = [
    # Base classes
    'DataSource',
    'Trend',
    'ProviderError',
    'RateLimited',
    'Unavailable',
    'InvalidResponse',
    'AllProvidersExhausted',
    'CacheStoreError',
    'NormalizedQuote',
    'NormalizedSeries',
    'SeriesPoint',
    'IndicatorResult',
    'ProviderAdapter',

    # Adapters
    'AlphaVantageAdapter',
    'YahooFinanceAdapter',
    'FredAdapter',
    'MockDataAdapter',

    # Main interfaces
    'FallbackOrchestrator',
    'build_default_chains',
    'CacheEntry',
    'CacheStats',
    'CacheStore',
    'calculate_quality_score',
    'FreshnessPolicy',
    'CacheManager'
]
