"""
FRED (Federal Reserve Economic Data) adapter for macroeconomic series
"""

import time
from datetime import date, datetime
from typing import Any, Dict, Optional

import httpx

from ..config import get_config
from ..utils import get_logger
from .base import (
    DataSource, InvalidResponse, NormalizedQuote, NormalizedSeries,
    ProviderAdapter, RateLimited, SeriesPoint, Unavailable, UsageSink, require_finite
)

logger = get_logger(__name__)

BASE_URL = "https://api.stlouisfed.org/fred/series/observations"


class FredAdapter(ProviderAdapter):
    """Federal Reserve Economic Data API client"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        usage_sink: Optional[UsageSink] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(DataSource.FRED, usage_sink)
        config = get_config()
        self.api_key = config.api.fred_key if api_key is None else api_key
        self.timeout = timeout or config.api.request_timeout_seconds
        self.client = client

        if not self.is_configured:
            logger.warning("FRED API key not configured. Economic indicators will use mock data.")

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        """Latest observation of a series, with the change from the one before"""
        series = await self.fetch_series(symbol, 2)
        latest = series.latest
        previous = series.points[0].value if len(series.points) > 1 else None
        change = latest.value - previous if previous is not None else None

        return NormalizedQuote(
            symbol=symbol,
            price=latest.value,
            timestamp=datetime.combine(latest.date, datetime.min.time()),
            provider=self.name,
            change=change,
            change_percent=(change / previous * 100) if previous else None,
            previous_close=previous
        )

    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        # FRED publishes each series at its own native frequency
        data = await self._request(series_id, lookback)

        observations = data.get("observations")
        if not isinstance(observations, list):
            raise InvalidResponse(self.name, f"invalid response for series {series_id}")

        points = []
        try:
            for obs in observations:
                # "." marks a missing observation
                if obs.get("value") in (None, "", "."):
                    continue
                points.append(SeriesPoint(date=date.fromisoformat(obs["date"]), value=float(obs["value"])))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidResponse(self.name, f"unparsable observation in {series_id}: {e}") from e
        require_finite(self.name, series_id, *[p.value for p in points])

        if not points:
            raise InvalidResponse(self.name, f"no observations for {series_id}")

        # Requested newest first
        points.reverse()
        return NormalizedSeries(series_id=series_id, points=points, provider=self.name, interval=interval)

    async def _request(self, series_id: str, limit: int) -> Dict[str, Any]:
        if not self.is_configured:
            raise Unavailable(self.name, "API key not configured")
        await self._ensure_quota()

        if self.client is None:
            self.client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))

        started = time.perf_counter()
        params = {
            "series_id": series_id,
            "api_key": self.api_key,
            "file_type": "json",
            "limit": limit,
            "sort_order": "desc",
        }
        try:
            response = await self.client.get(BASE_URL, params=params, timeout=self.timeout)
            if response.status_code == 429:
                raise RateLimited(self.name, "HTTP 429")
            if response.status_code >= 500:
                raise Unavailable(self.name, f"HTTP {response.status_code}")
            if response.status_code >= 400:
                raise InvalidResponse(self.name, f"HTTP {response.status_code} for {series_id}")
            try:
                data = response.json()
            except ValueError as e:
                raise InvalidResponse(self.name, "response is not JSON") from e
            if not isinstance(data, dict):
                raise InvalidResponse(self.name, "unexpected payload type")
        except httpx.TimeoutException as e:
            error = Unavailable(self.name, f"timeout after {self.timeout}s")
            self._track(series_id, started, error)
            raise error from e
        except httpx.HTTPError as e:
            error = Unavailable(self.name, f"network error: {e}")
            self._track(series_id, started, error)
            raise error from e
        except (RateLimited, Unavailable, InvalidResponse) as error:
            self._track(series_id, started, error)
            raise

        self._track(series_id, started)
        return data
