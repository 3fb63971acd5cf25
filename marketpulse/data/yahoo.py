"""
Yahoo Finance adapter for market data
Backup provider; no API key needed but data may be delayed
"""

import asyncio
import math
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Optional

import pandas as pd
import yfinance as yf

from ..config import get_config
from ..utils import get_logger
from .base import (
    DataSource, InvalidResponse, NormalizedQuote, NormalizedSeries,
    ProviderAdapter, ProviderError, RateLimited, SeriesPoint, Unavailable, UsageSink, require_finite
)

logger = get_logger(__name__)

# Logical symbols to Yahoo tickers
SYMBOL_MAP = {
    "VIX": "^VIX",
    "SPX": "^GSPC",
}

INTERVAL_MAP = {
    "daily": ("1d", 1),
    "weekly": ("1wk", 7),
}


class YahooFinanceAdapter(ProviderAdapter):
    """
    Yahoo Finance adapter using the yfinance library
    yfinance is synchronous, so calls run in a thread pool under a deadline
    """

    def __init__(
        self,
        usage_sink: Optional[UsageSink] = None,
        timeout: Optional[float] = None,
        max_workers: int = 5
    ):
        super().__init__(DataSource.YAHOO, usage_sink)
        self.timeout = timeout or get_config().api.request_timeout_seconds
        self.executor = ThreadPoolExecutor(max_workers=max_workers)

    async def close(self):
        """Cleanup thread pool"""
        self.executor.shutdown(wait=False)

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        ticker_symbol = SYMBOL_MAP.get(symbol, symbol)
        info = await self._call("quote", lambda: yf.Ticker(ticker_symbol).info)

        if not info or info.get("regularMarketPrice") is None:
            raise InvalidResponse(self.name, f"no quote data available for {symbol}")

        try:
            price = float(info["regularMarketPrice"])
            previous = info.get("regularMarketPreviousClose", info.get("previousClose"))
            previous = float(previous) if previous is not None else None
            volume = info.get("regularMarketVolume")
            volume = int(volume) if volume is not None and pd.notna(volume) else None
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidResponse(self.name, f"unparsable quote for {symbol}: {e}") from e
        require_finite(self.name, symbol, price, previous)

        change = price - previous if previous else None
        market_time = info.get("regularMarketTime")
        return NormalizedQuote(
            symbol=symbol,
            price=price,
            timestamp=datetime.fromtimestamp(market_time) if isinstance(market_time, (int, float)) else datetime.now(),
            provider=self.name,
            change=change,
            change_percent=(change / previous * 100) if previous else None,
            volume=volume,
            previous_close=previous
        )

    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        if interval not in INTERVAL_MAP:
            raise InvalidResponse(self.name, f"unsupported interval {interval}")
        yf_interval, days_per_bar = INTERVAL_MAP[interval]
        ticker_symbol = SYMBOL_MAP.get(series_id, series_id)

        # Pad the window for weekends and holidays
        period = f"{max(lookback * days_per_bar * 2, 5)}d"
        df = await self._call(
            "history",
            lambda: yf.Ticker(ticker_symbol).history(period=period, interval=yf_interval)
        )

        if df is not None and "Close" in df.columns:
            # Bars still forming or missing upstream carry NaN closes
            closes = pd.to_numeric(df["Close"], errors="coerce").replace([math.inf, -math.inf], math.nan)
            df = df[closes.notna()]
        if df is None or df.empty:
            raise InvalidResponse(self.name, f"no historical data available for {series_id}")

        points = []
        try:
            for idx, row in df.tail(lookback).iterrows():
                volume = row.get("Volume")
                points.append(SeriesPoint(
                    date=idx.to_pydatetime().date(),
                    value=float(row["Close"]),
                    volume=int(volume) if pd.notna(volume) else None
                ))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidResponse(self.name, f"unparsable history for {series_id}: {e}") from e

        return NormalizedSeries(series_id=series_id, points=points, provider=self.name, interval=interval)

    async def _call(self, endpoint: str, func: Callable[[], Any]) -> Any:
        """Run a blocking yfinance call with a hard deadline"""
        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(loop.run_in_executor(self.executor, func), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            error = Unavailable(self.name, f"timeout after {self.timeout}s")
            self._track(endpoint, started, error)
            raise error from e
        except Exception as e:
            error = self._classify(e)
            self._track(endpoint, started, error)
            raise error from e

        self._track(endpoint, started)
        return result

    def _classify(self, exc: Exception) -> ProviderError:
        text = str(exc)
        if type(exc).__name__ == "YFRateLimitError" or "Too Many Requests" in text or "429" in text:
            return RateLimited(self.name, text or "rate limited")
        if isinstance(exc, (KeyError, ValueError, TypeError)):
            return InvalidResponse(self.name, text or type(exc).__name__)
        return Unavailable(self.name, text or type(exc).__name__)
