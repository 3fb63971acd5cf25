"""
Configuration module for MarketPulse
"""

from .settings import Config, get_config, reset_config

__all__ = ["Config", "get_config", "reset_config"]
