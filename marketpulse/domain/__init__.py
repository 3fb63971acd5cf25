"""Domain layer - Market sentiment logic for MarketPulse.

This package contains the composite fear & greed calculator and the
component mappings it is built from.
"""

from .fear_greed import (
    FearGreedCalculator,
    FearGreedComponents,
    FearGreedIndex,
    FearGreedStatus,
    FearGreedWeights,
    build_index,
    fallback_index
)

__all__ = [
    'FearGreedCalculator',
    'FearGreedComponents',
    'FearGreedIndex',
    'FearGreedStatus',
    'FearGreedWeights',
    'build_index',
    'fallback_index'
]
