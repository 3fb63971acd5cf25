"""Shared fixtures and fakes for the MarketPulse test suites."""

from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

import pytest
import pytz

from marketpulse.config import reset_config
from marketpulse.data.base import (
    DataSource, NormalizedQuote, NormalizedSeries, ProviderAdapter, SeriesPoint
)
from marketpulse.utils.market_hours import MarketClock

NEW_YORK = pytz.timezone("America/New_York")

ENV_VARS = [
    "ALPHA_VANTAGE_API_KEY",
    "FRED_API_KEY",
    "ALPHA_VANTAGE_DAILY_CALLS",
    "FRED_CALLS_PER_MINUTE",
    "REQUEST_TIMEOUT_SECONDS",
    "SCHEDULER_TICK_SECONDS",
    "EXCHANGE_TIMEZONE",
    "MARKET_OPEN_TIME",
    "MARKET_CLOSE_TIME",
    "INTRADAY_INTERVAL_MINUTES",
    "CACHE_CLEANUP_TIME",
    "CACHE_FILE",
    "MAX_CONCURRENT_FETCHES",
]


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Every test starts from default configuration without API keys."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


def ny(year, month, day, hour=0, minute=0) -> datetime:
    """Exchange-local aware datetime."""
    return NEW_YORK.localize(datetime(year, month, day, hour, minute))


class FakeClock:
    """Mutable UTC clock shared by cache store and market clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def fake_clock():
    # Monday 2024-01-08 10:00 New York, inside market hours
    return FakeClock(ny(2024, 1, 8, 10, 0).astimezone(pytz.utc))


@pytest.fixture
def market_clock(fake_clock):
    return MarketClock(now_fn=fake_clock)


class ScriptedAdapter(ProviderAdapter):
    """Adapter returning canned values or raising canned errors, recording every call."""

    def __init__(
        self,
        source: DataSource = DataSource.ALPHA_VANTAGE,
        quotes: Optional[Dict[str, Union[NormalizedQuote, Exception]]] = None,
        series: Optional[Dict[str, Union[NormalizedSeries, Exception]]] = None,
        default_error: Optional[Exception] = None
    ):
        super().__init__(source)
        self.quotes = quotes or {}
        self.series = series or {}
        self.default_error = default_error
        self.calls: List[tuple] = []

    def _answer(self, table, key):
        value = table.get(key, self.default_error)
        if value is None:
            raise KeyError(f"no scripted answer for {key}")
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        self.calls.append(("quote", symbol))
        return self._answer(self.quotes, symbol)

    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        self.calls.append(("series", series_id))
        return self._answer(self.series, series_id)


def make_quote(symbol: str, price: float, change: float = 0.0, change_percent: float = 0.0,
               volume: Optional[int] = None, provider: str = "alpha_vantage") -> NormalizedQuote:
    return NormalizedQuote(
        symbol=symbol,
        price=price,
        timestamp=datetime(2024, 1, 8, 10, 0),
        provider=provider,
        change=change,
        change_percent=change_percent,
        volume=volume,
        previous_close=price - change
    )


def make_series(series_id: str, values: List[float], provider: str = "alpha_vantage",
                volume: Optional[int] = None, interval: str = "daily") -> NormalizedSeries:
    start = date(2024, 1, 1)
    points = [
        SeriesPoint(date=start + timedelta(days=i), value=v, volume=volume)
        for i, v in enumerate(values)
    ]
    return NormalizedSeries(series_id=series_id, points=points, provider=provider, interval=interval)
