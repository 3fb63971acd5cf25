"""
MarketPulse
Market indicator aggregation with provider fallback, session caching and scheduled refresh
"""

__version__ = "0.1.0"
__author__ = "MarketPulse Team"

from . import config, data, domain, orchestration, utils

__all__ = ["config", "data", "domain", "orchestration", "utils"]
