"""
Configuration management for MarketPulse
Loads environment variables and provides centralized settings
"""

import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
import logging

# Load environment variables
env_path = Path(__file__).parent.parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

# Per-call provider timeout bounds (seconds)
MIN_REQUEST_TIMEOUT = 10.0
MAX_REQUEST_TIMEOUT = 15.0


def _parse_time(value: str) -> time:
    h, m = map(int, value.split(':'))
    return time(h, m)


@dataclass
class APIConfig:
    """API configuration and keys"""
    alpha_vantage_key: str
    fred_key: str

    # Quota limits
    alpha_vantage_daily_calls: int = 25
    fred_calls_per_minute: int = 120

    request_timeout_seconds: float = 10.0

    def __post_init__(self):
        self.request_timeout_seconds = min(
            MAX_REQUEST_TIMEOUT,
            max(MIN_REQUEST_TIMEOUT, self.request_timeout_seconds)
        )


@dataclass
class TimingConfig:
    """Exchange timing configuration (exchange-local time)"""
    exchange_timezone: str = "America/New_York"
    market_open_time: str = "09:30"
    market_close_time: str = "16:00"
    intraday_interval_minutes: int = 15
    cache_cleanup_time: str = "02:00"
    scheduler_tick_seconds: float = 30.0

    def get_market_open(self) -> time:
        """Convert market open string to time object"""
        return _parse_time(self.market_open_time)

    def get_market_close(self) -> time:
        """Convert market close string to time object"""
        return _parse_time(self.market_close_time)

    def get_cleanup_time(self) -> time:
        return _parse_time(self.cache_cleanup_time)


@dataclass
class CacheConfig:
    """Cache store configuration"""
    cache_file: Optional[Path] = None
    max_concurrent_fetches: int = 8


@dataclass
class SystemConfig:
    """System-level configuration"""
    log_level: str = "INFO"

    # Paths
    project_root: Path = field(default_factory=lambda: Path(__file__).parent.parent.parent)
    logs_dir: Path = field(init=False)

    def __post_init__(self):
        self.logs_dir = self.project_root / "logs"


@dataclass
class Config:
    """Main configuration container"""
    api: APIConfig
    timing: TimingConfig
    cache: CacheConfig
    system: SystemConfig


# Singleton instance
_config_instance: Optional[Config] = None

def get_config() -> Config:
    """Get or create the configuration singleton"""
    global _config_instance

    if _config_instance is None:
        # Load from environment
        api_config = APIConfig(
            alpha_vantage_key=os.getenv("ALPHA_VANTAGE_API_KEY", ""),
            fred_key=os.getenv("FRED_API_KEY", ""),
            alpha_vantage_daily_calls=int(os.getenv("ALPHA_VANTAGE_DAILY_CALLS", "25")),
            fred_calls_per_minute=int(os.getenv("FRED_CALLS_PER_MINUTE", "120")),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
        )

        timing_config = TimingConfig(
            exchange_timezone=os.getenv("EXCHANGE_TIMEZONE", "America/New_York"),
            market_open_time=os.getenv("MARKET_OPEN_TIME", "09:30"),
            market_close_time=os.getenv("MARKET_CLOSE_TIME", "16:00"),
            intraday_interval_minutes=int(os.getenv("INTRADAY_INTERVAL_MINUTES", "15")),
            cache_cleanup_time=os.getenv("CACHE_CLEANUP_TIME", "02:00"),
            scheduler_tick_seconds=float(os.getenv("SCHEDULER_TICK_SECONDS", "30"))
        )

        cache_file = os.getenv("CACHE_FILE", "")
        cache_config = CacheConfig(
            cache_file=Path(cache_file) if cache_file else None,
            max_concurrent_fetches=int(os.getenv("MAX_CONCURRENT_FETCHES", "8"))
        )

        system_config = SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO")
        )

        _config_instance = Config(
            api=api_config,
            timing=timing_config,
            cache=cache_config,
            system=system_config
        )

        # Missing keys degrade to mock data, they never block start-up
        if not api_config.alpha_vantage_key:
            logging.warning("ALPHA_VANTAGE_API_KEY not set - quotes fall back to Yahoo Finance / mock data")
        if not api_config.fred_key:
            logging.warning("FRED_API_KEY not set - economic indicators will use mock data")

    return _config_instance

def reset_config():
    """Reset the configuration singleton (mainly for testing)"""
    global _config_instance
    _config_instance = None
