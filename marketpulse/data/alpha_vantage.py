"""
Alpha Vantage adapter for quotes and daily/weekly series
Primary provider; the free tier allows 25 calls per day
"""

import time
from datetime import datetime, date
from typing import Any, Dict, Optional

import httpx

from ..config import get_config
from ..utils import get_logger
from .base import (
    DataSource, InvalidResponse, NormalizedQuote, NormalizedSeries,
    ProviderAdapter, RateLimited, SeriesPoint, Unavailable, UsageSink, require_finite
)

logger = get_logger(__name__)

BASE_URL = "https://www.alphavantage.co/query"

# Response body phrases Alpha Vantage uses for quota exhaustion
RATE_LIMIT_MARKERS = ("rate limit", "call frequency", "requests per day", "premium")

SERIES_FUNCTIONS = {
    "daily": ("TIME_SERIES_DAILY", "Time Series (Daily)"),
    "weekly": ("TIME_SERIES_WEEKLY", "Weekly Time Series"),
}


class AlphaVantageAdapter(ProviderAdapter):
    """
    Alpha Vantage REST client
    Rate-limit notices arrive as HTTP 200 with a "Note"/"Information" body
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        usage_sink: Optional[UsageSink] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(DataSource.ALPHA_VANTAGE, usage_sink)
        config = get_config()
        self.api_key = config.api.alpha_vantage_key if api_key is None else api_key
        self.timeout = timeout or config.api.request_timeout_seconds
        self.client = client

        if not self.is_configured:
            logger.warning("Alpha Vantage API key not configured")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key) and self.api_key != "demo"

    async def close(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        data = await self._request({"function": "GLOBAL_QUOTE", "symbol": symbol}, "GLOBAL_QUOTE")

        quote = data.get("Global Quote")
        if not quote:
            raise InvalidResponse(self.name, f"no Global Quote for {symbol}")

        try:
            price = float(quote["05. price"])
            change = float(quote.get("09. change", 0) or 0)
            change_percent = float(str(quote.get("10. change percent", "0")).rstrip("%") or 0)
            volume = int(float(quote.get("06. volume", 0) or 0))
            previous_close = float(quote["08. previous close"]) if quote.get("08. previous close") else None
            trading_day = quote.get("07. latest trading day")
            timestamp = datetime.fromisoformat(trading_day) if trading_day else datetime.now()
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError) as e:
            raise InvalidResponse(self.name, f"unparsable quote for {symbol}: {e}") from e
        require_finite(self.name, symbol, price, change, change_percent, previous_close)

        return NormalizedQuote(
            symbol=symbol,
            price=price,
            timestamp=timestamp,
            provider=self.name,
            change=change,
            change_percent=change_percent,
            volume=volume,
            previous_close=previous_close
        )

    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        if interval not in SERIES_FUNCTIONS:
            raise InvalidResponse(self.name, f"unsupported interval {interval}")
        function, key = SERIES_FUNCTIONS[interval]

        params = {"function": function, "symbol": series_id}
        if interval == "daily":
            params["outputsize"] = "compact"
        data = await self._request(params, function)

        series = data.get(key)
        if not series:
            raise InvalidResponse(self.name, f"no time series data for {series_id}")

        try:
            dates = sorted(series.keys())[-lookback:]
            points = [
                SeriesPoint(
                    date=date.fromisoformat(d),
                    value=float(series[d]["4. close"]),
                    volume=int(float(series[d].get("5. volume", 0) or 0))
                )
                for d in dates
            ]
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError) as e:
            raise InvalidResponse(self.name, f"unparsable series for {series_id}: {e}") from e
        require_finite(self.name, series_id, *[p.value for p in points])

        return NormalizedSeries(series_id=series_id, points=points, provider=self.name, interval=interval)

    async def _request(self, params: Dict[str, Any], endpoint: str) -> Dict[str, Any]:
        """Issue one query and translate failures into the adapter error kinds"""
        if not self.is_configured:
            raise Unavailable(self.name, "API key not configured")
        await self._ensure_quota()

        if self.client is None:
            self.client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

        started = time.perf_counter()
        try:
            response = await self.client.get(
                BASE_URL,
                params={**params, "apikey": self.api_key},
                timeout=self.timeout
            )
            data = self._parse(response)
        except httpx.TimeoutException as e:
            error = Unavailable(self.name, f"timeout after {self.timeout}s")
            self._track(endpoint, started, error)
            raise error from e
        except httpx.HTTPError as e:
            error = Unavailable(self.name, f"network error: {e}")
            self._track(endpoint, started, error)
            raise error from e
        except (RateLimited, Unavailable, InvalidResponse) as error:
            self._track(endpoint, started, error)
            raise

        self._track(endpoint, started)
        return data

    def _parse(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == 429:
            raise RateLimited(self.name, "HTTP 429")
        if response.status_code >= 500:
            raise Unavailable(self.name, f"HTTP {response.status_code}")
        if response.status_code >= 400:
            raise InvalidResponse(self.name, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise InvalidResponse(self.name, "response is not JSON") from e
        if not isinstance(data, dict):
            raise InvalidResponse(self.name, "unexpected payload type")

        notice = data.get("Note") or data.get("Information")
        if notice:
            if any(marker in notice.lower() for marker in RATE_LIMIT_MARKERS):
                raise RateLimited(self.name, notice)
            raise InvalidResponse(self.name, notice)
        if "Error Message" in data:
            raise InvalidResponse(self.name, data["Error Message"])

        return data

