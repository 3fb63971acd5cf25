"""
Indicator builders
Turn raw adapter output (quotes and series) into the payload served to callers
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List

import pandas as pd

from .base import InvalidResponse, NormalizedSeries, ProviderAdapter, Trend, require_finite


@dataclass
class Reading:
    """What a builder hands back to the orchestrator"""
    payload: Any
    as_of: datetime
    trend: Trend = Trend.STABLE


Builder = Callable[[ProviderAdapter], Awaitable[Reading]]

SECTOR_ETFS = {
    "Technology": "XLK",
    "Healthcare": "XLV",
    "Financial Services": "XLF",
    "Energy": "XLE",
    "Industrials": "XLI",
    "Consumer Discretionary": "XLY",
    "Consumer Staples": "XLP",
    "Real Estate": "XLRE",
    "Materials": "XLB",
    "Utilities": "XLU",
    "Communication Services": "XLC",
}

# Rough sector ETF market caps in billions
MARKET_CAP_ESTIMATES = {
    "XLK": 65, "XLV": 35, "XLF": 40, "XLE": 15,
    "XLI": 25, "XLY": 20, "XLP": 15, "XLRE": 12,
    "XLB": 8, "XLU": 15, "XLC": 18,
}

SECTOR_AVERAGE_VOLUME = 5_000_000
SPARKLINE_DAYS = 7

VIX_INTERPRETATIONS = {
    "low-rising": "Complacency decreasing, volatility may increase",
    "low-falling": "Market complacency increasing",
    "low-stable": "Low volatility environment",
    "medium-rising": "Uncertainty increasing in markets",
    "medium-falling": "Market stress subsiding",
    "medium-stable": "Moderate market volatility",
    "high-rising": "High fear and uncertainty in markets",
    "high-falling": "Fear subsiding but volatility remains elevated",
    "high-stable": "Sustained high volatility environment",
}


# --- helpers --------------------------------------------------------------

def price_trend(change_percent: float) -> str:
    """up/down/flat with a 0.1% dead band"""
    if abs(change_percent) < 0.1:
        return "flat"
    return "up" if change_percent > 0 else "down"


def classify_volatility(prices: List[float]) -> str:
    """Standard deviation of simple returns: <1% low, <2% moderate, else high"""
    if len(prices) < 2:
        return "moderate"
    std_dev = pd.Series(prices).pct_change().dropna().std(ddof=0)
    if std_dev < 0.01:
        return "low"
    if std_dev < 0.02:
        return "moderate"
    return "high"


def market_sentiment(change_percent: float, volatility: str) -> str:
    if change_percent > 1 and volatility != "high":
        return "bullish"
    if change_percent < -1 or volatility == "high":
        return "bearish"
    return "neutral"


def vix_status(value: float) -> str:
    if value < 20:
        return "low"
    if value < 30:
        return "medium"
    return "high"


def direction_of(change: float) -> str:
    if change > 0:
        return "rising"
    if change < 0:
        return "falling"
    return "stable"


def interpret_vix(value: float, change: float) -> str:
    key = f"{vix_status(value)}-{direction_of(change)}"
    return VIX_INTERPRETATIONS.get(key, "Market volatility monitoring required")


def categorize_performance(weekly_change: float) -> str:
    if weekly_change > 1:
        return "outperforming"
    if weekly_change < -1:
        return "underperforming"
    return "neutral"


def analyze_momentum(closes: List[float]) -> str:
    """Compare the last two weekly returns; closes are oldest first"""
    if len(closes) < 3:
        return "stable"
    latest = (closes[-1] - closes[-2]) / closes[-2]
    prior = (closes[-2] - closes[-3]) / closes[-3]
    acceleration = latest - prior
    if abs(acceleration) < 0.005:
        return "stable"
    return "accelerating" if acceleration > 0 else "decelerating"


def analyze_rotation(weekly_change: float, volume: int) -> str:
    volume_ratio = volume / SECTOR_AVERAGE_VOLUME
    if weekly_change > 1 and volume_ratio > 1.2:
        return "rotating-in"
    if weekly_change < -1 and volume_ratio > 1.2:
        return "rotating-out"
    return "stable"


def macro_trend(change: float) -> Trend:
    """Macro series move in small steps; |change| <= 0.01 is stable"""
    if abs(change) <= 0.01:
        return Trend.STABLE
    return Trend.RISING if change > 0 else Trend.FALLING


def inflation_direction(month_over_month: float) -> str:
    if abs(month_over_month) <= 0.05:
        return "stable"
    return "up" if month_over_month > 0 else "down"


def inflation_pressure(year_over_year: float) -> str:
    if year_over_year <= 2.0:
        return "low"
    if year_over_year <= 4.0:
        return "moderate"
    return "high"


def employment_health(rate: float, change: float) -> str:
    if rate <= 4.0 and change <= 0:
        return "strong"
    if rate <= 6.0 and change <= 0.2:
        return "moderate"
    return "weak"


def _require_points(series: NormalizedSeries, count: int, provider: str):
    if len(series.points) < count:
        raise InvalidResponse(
            provider,
            f"insufficient observations for {series.series_id}: {len(series.points)} < {count}"
        )


def _require_bases(provider: str, label: str, *bases: float):
    """Values used as a divisor must be finite and non-zero"""
    for base in bases:
        if not math.isfinite(base) or base == 0:
            raise InvalidResponse(provider, f"unusable base value in {label}: {base}")


def _as_datetime(day) -> datetime:
    return datetime.combine(day, datetime.min.time())


# --- builders -------------------------------------------------------------

async def build_sp500(adapter: ProviderAdapter) -> Reading:
    """Seven-day SPY sparkline with trend, volatility and sentiment"""
    series = await adapter.fetch_series("SPY", SPARKLINE_DAYS, "daily")
    _require_points(series, 2, adapter.name)

    prices = series.values()
    require_finite(adapter.name, "SPY", *prices)
    _require_bases(adapter.name, "SPY", prices[0])
    current_price = prices[-1]
    weekly_change = (current_price - prices[0]) / prices[0] * 100
    weekly_trend = price_trend(weekly_change)
    volatility = classify_volatility(prices)

    payload = {
        "data": [
            {"timestamp": p.date.isoformat(), "price": p.value, "volume": p.volume}
            for p in series.points
        ],
        "currentPrice": current_price,
        "weeklyChange": round(weekly_change, 4),
        "weeklyTrend": weekly_trend,
        "volatility": volatility,
        "marketSentiment": market_sentiment(weekly_change, volatility),
    }
    trend = {"up": Trend.RISING, "down": Trend.FALLING}.get(weekly_trend, Trend.STABLE)
    return Reading(payload=payload, as_of=_as_datetime(series.latest.date), trend=trend)


async def build_vix(adapter: ProviderAdapter) -> Reading:
    quote = await adapter.fetch_quote("VIX")
    require_finite(adapter.name, "VIX", quote.price, quote.change, quote.change_percent)
    change = quote.change or 0.0
    payload = {
        "value": quote.price,
        "change": change,
        "changePercent": quote.change_percent or 0.0,
        "status": vix_status(quote.price),
        "interpretation": interpret_vix(quote.price, change),
    }
    trend = {"rising": Trend.RISING, "falling": Trend.FALLING}.get(direction_of(change), Trend.STABLE)
    return Reading(payload=payload, as_of=quote.timestamp, trend=trend)


async def _build_sector(adapter: ProviderAdapter, name: str, symbol: str) -> Dict[str, Any]:
    quote, weekly = await asyncio.gather(
        adapter.fetch_quote(symbol),
        adapter.fetch_series(symbol, 3, "weekly")
    )
    _require_points(weekly, 2, adapter.name)

    closes = weekly.values()
    _require_bases(adapter.name, symbol, *closes)
    weekly_change = (closes[-1] - closes[-2]) / closes[-2] * 100
    volume = quote.volume or 1_000_000

    return {
        "name": name,
        "symbol": symbol,
        "weeklyChange": round(weekly_change, 4),
        "performance": categorize_performance(weekly_change),
        "momentum": analyze_momentum(closes),
        "rotationSignal": analyze_rotation(weekly_change, volume),
        "marketCap": MARKET_CAP_ESTIMATES.get(symbol, 20) * 1_000_000_000,
        "volume": volume,
    }


async def build_sector_performance(adapter: ProviderAdapter) -> Reading:
    """All eleven sector ETFs from one provider; any failure fails the attempt"""
    sectors = await asyncio.gather(*[
        _build_sector(adapter, name, symbol) for name, symbol in SECTOR_ETFS.items()
    ])
    average = sum(s["weeklyChange"] for s in sectors) / len(sectors)
    trend = {"up": Trend.RISING, "down": Trend.FALLING}.get(price_trend(average), Trend.STABLE)
    return Reading(payload=list(sectors), as_of=datetime.now(), trend=trend)


async def build_interest_rate(adapter: ProviderAdapter) -> Reading:
    """10-year treasury constant maturity (GS10)"""
    series = await adapter.fetch_series("GS10", 2)
    _require_points(series, 2, adapter.name)

    current, previous = series.points[-1].value, series.points[-2].value
    require_finite(adapter.name, series.series_id, current)
    _require_bases(adapter.name, series.series_id, previous)
    change = current - previous
    trend = macro_trend(change)
    payload = {
        "value": current,
        "previousValue": previous,
        "change": round(change, 4),
        "percentChange": round(change / previous * 100, 4),
        "basisPointsChange": round(change * 100, 2),
        "date": series.latest.date.isoformat(),
        "trend": trend.value,
    }
    return Reading(payload=payload, as_of=_as_datetime(series.latest.date), trend=trend)


async def build_cpi(adapter: ProviderAdapter) -> Reading:
    """Consumer price index with month-over-month and year-over-year change"""
    series = await adapter.fetch_series("CPIAUCSL", 13)
    _require_points(series, 13, adapter.name)

    current = series.points[-1].value
    previous_month = series.points[-2].value
    previous_year = series.points[-13].value
    require_finite(adapter.name, series.series_id, current)
    _require_bases(adapter.name, series.series_id, previous_month, previous_year)
    month_over_month = (current - previous_month) / previous_month * 100
    year_over_year = (current - previous_year) / previous_year * 100
    change = current - previous_month
    trend = macro_trend(change)

    payload = {
        "value": current,
        "previousValue": previous_month,
        "change": round(change, 4),
        "percentChange": round(month_over_month, 4),
        "monthOverMonth": round(month_over_month, 4),
        "yearOverYear": round(year_over_year, 4),
        "date": series.latest.date.isoformat(),
        "trend": trend.value,
        "direction": inflation_direction(month_over_month),
        "inflationPressure": inflation_pressure(year_over_year),
    }
    return Reading(payload=payload, as_of=_as_datetime(series.latest.date), trend=trend)


async def build_unemployment(adapter: ProviderAdapter) -> Reading:
    series = await adapter.fetch_series("UNRATE", 2)
    _require_points(series, 2, adapter.name)

    current, previous = series.points[-1].value, series.points[-2].value
    require_finite(adapter.name, series.series_id, current)
    _require_bases(adapter.name, series.series_id, previous)
    change = current - previous
    trend = macro_trend(change)
    payload = {
        "value": current,
        "previousValue": previous,
        "change": round(change, 4),
        "percentChange": round(change / previous * 100, 4),
        "monthOverMonth": round(change, 4),
        "date": series.latest.date.isoformat(),
        "trend": trend.value,
        "employmentHealth": employment_health(current, change),
    }
    return Reading(payload=payload, as_of=_as_datetime(series.latest.date), trend=trend)


BUILDERS: Dict[str, Builder] = {
    "sp500": build_sp500,
    "vix": build_vix,
    "sector_performance": build_sector_performance,
    "interest_rate": build_interest_rate,
    "cpi": build_cpi,
    "unemployment": build_unemployment,
}
