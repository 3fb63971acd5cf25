"""
Deterministic mock adapter
Last entry of every fallback chain; never fails and never uses randomness
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Optional

from .base import DataSource, NormalizedQuote, NormalizedSeries, ProviderAdapter, SeriesPoint, UsageSink


@dataclass(frozen=True)
class MockProfile:
    """Shape of one synthetic instrument"""
    latest: float
    step_pct: float        # change per observation, newest relative to the one before
    step_days: int = 1
    volume: Optional[int] = None
    wiggle: bool = False   # overlay a fixed intraweek pattern (equities)


# Fixed intraweek pattern in percent, indexed by observations back from latest
WIGGLE = (0.0, -0.35, 0.2, -0.15, 0.4, -0.25, 0.1)

PROFILES: Dict[str, MockProfile] = {
    "SPY": MockProfile(latest=512.40, step_pct=0.18, volume=50_000_000, wiggle=True),
    "VIX": MockProfile(latest=18.45, step_pct=-4.40),
    # Sector ETFs
    "XLK": MockProfile(latest=210.30, step_pct=0.30, volume=6_500_000, wiggle=True),
    "XLV": MockProfile(latest=145.10, step_pct=0.05, volume=5_200_000, wiggle=True),
    "XLF": MockProfile(latest=41.25, step_pct=0.12, volume=9_800_000, wiggle=True),
    "XLE": MockProfile(latest=92.80, step_pct=-0.22, volume=7_100_000, wiggle=True),
    "XLI": MockProfile(latest=124.60, step_pct=0.08, volume=4_300_000, wiggle=True),
    "XLY": MockProfile(latest=182.90, step_pct=0.15, volume=3_900_000, wiggle=True),
    "XLP": MockProfile(latest=76.40, step_pct=-0.04, volume=4_800_000, wiggle=True),
    "XLRE": MockProfile(latest=39.70, step_pct=-0.10, volume=3_600_000, wiggle=True),
    "XLB": MockProfile(latest=88.20, step_pct=0.02, volume=2_900_000, wiggle=True),
    "XLU": MockProfile(latest=68.50, step_pct=-0.06, volume=5_600_000, wiggle=True),
    "XLC": MockProfile(latest=81.30, step_pct=0.20, volume=4_100_000, wiggle=True),
    # Macro series (monthly)
    "GS10": MockProfile(latest=4.25, step_pct=3.66, step_days=30),
    "CPIAUCSL": MockProfile(latest=307.2, step_pct=0.26, step_days=30),
    "UNRATE": MockProfile(latest=3.8, step_pct=-2.56, step_days=30),
}

DEFAULT_PROFILE = MockProfile(latest=100.0, step_pct=0.1)

INTERVAL_DAYS = {"daily": 1, "weekly": 7}


class MockDataAdapter(ProviderAdapter):
    """Synthetic quotes and series derived from fixed base levels"""

    def __init__(self, usage_sink: Optional[UsageSink] = None, as_of: Optional[date] = None):
        super().__init__(DataSource.MOCK, usage_sink)
        self.as_of = as_of

    def _value(self, profile: MockProfile, back: int) -> float:
        """Observation `back` steps before the latest one"""
        value = profile.latest / ((1 + profile.step_pct / 100) ** back)
        if profile.wiggle:
            value *= 1 + WIGGLE[back % len(WIGGLE)] / 100
        return round(value, 2)

    async def fetch_quote(self, symbol: str) -> NormalizedQuote:
        profile = PROFILES.get(symbol, DEFAULT_PROFILE)
        price = self._value(profile, 0)
        previous = self._value(profile, 1)
        change = round(price - previous, 2)

        return NormalizedQuote(
            symbol=symbol,
            price=price,
            timestamp=datetime.now(),
            provider=self.name,
            change=change,
            change_percent=round(change / previous * 100, 2),
            volume=profile.volume,
            previous_close=previous
        )

    async def fetch_series(self, series_id: str, lookback: int, interval: str = "daily") -> NormalizedSeries:
        profile = PROFILES.get(series_id, DEFAULT_PROFILE)
        step = timedelta(days=max(profile.step_days, INTERVAL_DAYS.get(interval, 1)))
        latest_day = self.as_of or date.today()

        points = [
            SeriesPoint(
                date=latest_day - step * back,
                value=self._value(profile, back),
                volume=profile.volume
            )
            for back in range(lookback - 1, -1, -1)
        ]
        return NormalizedSeries(series_id=series_id, points=points, provider=self.name, interval=interval)
