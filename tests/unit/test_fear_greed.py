"""Unit tests for the fear & greed composite index."""

from datetime import datetime
from unittest.mock import patch

import pytest

from marketpulse.data.base import DataSource, IndicatorResult, RateLimited, Unavailable
from marketpulse.data.cache import CacheStore
from marketpulse.data.cache_manager import entry_from_result
from marketpulse.data.freshness import FreshnessPolicy
from marketpulse.domain.fear_greed import (
    FALLBACK_METHODOLOGY,
    FearGreedCalculator,
    FearGreedComponents,
    FearGreedStatus,
    FearGreedWeights,
    breadth_score,
    build_index,
    confidence_for,
    momentum_score,
    safe_haven_score,
    volatility_score,
    volume_score,
)
from marketpulse.utils.market_hours import MarketSession

from conftest import ScriptedAdapter, make_quote


def market_quotes():
    """VIX 18.45, SPY at average volume up 0.3%, three of five sectors advancing."""
    return {
        "VIX": make_quote("VIX", 18.45, change=-0.85),
        "SPY": make_quote("SPY", 512.40, change=1.53, change_percent=0.3, volume=50_000_000),
        "XLK": make_quote("XLK", 210.30, change=0.6),
        "XLV": make_quote("XLV", 145.10, change=0.1),
        "XLF": make_quote("XLF", 41.25, change=0.05),
        "XLE": make_quote("XLE", 92.80, change=-0.2),
        "XLI": make_quote("XLI", 124.60, change=0.0),
    }


def rate_quotes():
    return {"GS10": make_quote("GS10", 4.25, change=0.15, provider="fred_api")}


class TestComponentMappings:
    """Signal to component score mappings."""

    @pytest.mark.parametrize("vix,expected", [
        (10.0, 90.0),
        (15.0, 90.0),
        (18.45, 75.43),
        (22.0, 55.6),
        (32.0, 31.6),
        (45.0, 20.0),
        (80.0, 0.0),
    ])
    def test_volatility(self, vix, expected):
        assert volatility_score(vix) == pytest.approx(expected, abs=0.01)

    @pytest.mark.parametrize("volume,expected", [
        (100_000_000, 100.0),
        (75_000_000, 80.0),
        (60_000_000, 60.0),
        (50_000_000, 40.0),
        (30_000_000, 20.0),
        (10_000_000, 0.0),
    ])
    def test_volume(self, volume, expected):
        assert volume_score(volume) == expected

    @pytest.mark.parametrize("change,expected", [
        (2.5, 100.0), (1.0, 80.0), (0.5, 65.0), (0.0, 55.0),
        (-0.3, 45.0), (-0.8, 25.0), (-1.5, 10.0), (-3.0, 0.0),
    ])
    def test_momentum(self, change, expected):
        assert momentum_score(change) == expected

    def test_breadth(self):
        assert breadth_score(3, 5) == 60.0
        assert breadth_score(0, 0) == 50.0

    @pytest.mark.parametrize("rate,expected", [(5.1, 70.0), (4.6, 55.0), (4.25, 45.0), (3.7, 35.0), (2.0, 25.0)])
    def test_safe_haven(self, rate, expected):
        assert safe_haven_score(rate) == expected

    @pytest.mark.parametrize("value,status", [
        (0, FearGreedStatus.EXTREME_FEAR),
        (20, FearGreedStatus.EXTREME_FEAR),
        (21, FearGreedStatus.FEAR),
        (40, FearGreedStatus.FEAR),
        (41, FearGreedStatus.NEUTRAL),
        (60, FearGreedStatus.NEUTRAL),
        (61, FearGreedStatus.GREED),
        (80, FearGreedStatus.GREED),
        (81, FearGreedStatus.EXTREME_GREED),
        (100, FearGreedStatus.EXTREME_GREED),
    ])
    def test_status_boundaries(self, value, status):
        assert FearGreedStatus.from_value(value) == status


class TestIndexAssembly:

    def test_all_neutral_components(self):
        index = build_index(FearGreedComponents())
        assert index.value == 50
        assert index.status == FearGreedStatus.NEUTRAL
        assert index.confidence == 60

    def test_confidence_counts_non_neutral_components(self):
        components = FearGreedComponents(volatility=80.0, put_call=55.0)
        # 60 + 40 * 2 / 7
        assert confidence_for(components) == 71

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError):
            FearGreedWeights(volatility=0.5)

    def test_value_is_clamped(self):
        components = FearGreedComponents(**{name: 100.0 for name in FearGreedComponents().to_dict()})
        assert build_index(components).value == 100


class TestFearGreedCalculator:
    """Concurrent signal fetching with neutral degradation."""

    @pytest.mark.asyncio
    async def test_worked_example(self):
        calculator = FearGreedCalculator(
            [ScriptedAdapter(quotes=market_quotes())],
            [ScriptedAdapter(DataSource.FRED, quotes=rate_quotes())]
        )
        index = await calculator.compute()

        components = index.components
        assert components.volatility == pytest.approx(75.43, abs=0.01)
        assert components.volume == 40.0
        assert components.momentum == 55.0
        assert components.breadth == 60.0
        assert components.safe_haven == 45.0
        assert components.junk_bond == 50.0
        assert components.put_call == 55.0
        assert index.value == 57
        assert index.status == FearGreedStatus.NEUTRAL
        assert index.confidence == 94

    @pytest.mark.asyncio
    async def test_every_signal_failing(self):
        calculator = FearGreedCalculator(
            [ScriptedAdapter(default_error=RateLimited("alpha_vantage", "HTTP 429"))],
            [ScriptedAdapter(DataSource.FRED, default_error=Unavailable("fred_api", "down"))]
        )
        index = await calculator.compute()

        assert index.value == 50
        assert index.status == FearGreedStatus.NEUTRAL
        assert index.confidence == 66
        assert index.components.put_call == 55.0

    @pytest.mark.asyncio
    async def test_falls_through_quote_adapters(self):
        failing = ScriptedAdapter(default_error=Unavailable("alpha_vantage", "down"))
        backup = ScriptedAdapter(DataSource.YAHOO, quotes=market_quotes())
        calculator = FearGreedCalculator([failing, backup], [ScriptedAdapter(DataSource.FRED, quotes=rate_quotes())])

        index = await calculator.compute()
        assert index.value == 57

    @pytest.mark.asyncio
    async def test_breadth_counts_only_answered_sectors(self):
        quotes = market_quotes()
        quotes["XLE"] = Unavailable("alpha_vantage", "down")
        quotes["XLI"] = Unavailable("alpha_vantage", "down")
        calculator = FearGreedCalculator([ScriptedAdapter(quotes=quotes)], [])

        index = await calculator.compute()
        assert index.components.breadth == 100.0
        assert index.components.safe_haven == 50.0

    @pytest.mark.asyncio
    async def test_fresh_cached_vix_is_used(self, fake_clock, market_clock):
        store = CacheStore(clock=fake_clock)
        cached = IndicatorResult(
            indicator_type="vix",
            payload={"value": 32.0},
            source="alpha_vantage",
            as_of=datetime(2024, 1, 8, 15, 0)
        )
        await store.put(entry_from_result(cached, MarketSession.MARKET_OPEN, FreshnessPolicy(market_clock), fake_clock()))

        adapter = ScriptedAdapter(quotes=market_quotes())
        calculator = FearGreedCalculator([adapter], [], cache=store)
        index = await calculator.compute()

        assert index.components.volatility == pytest.approx(31.6)
        assert ("quote", "VIX") not in adapter.calls

    @pytest.mark.asyncio
    async def test_cached_mock_vix_is_ignored(self, fake_clock, market_clock):
        store = CacheStore(clock=fake_clock)
        synthetic = IndicatorResult(
            indicator_type="vix",
            payload={"value": 18.45},
            source=DataSource.MOCK.value,
            as_of=datetime(2024, 1, 8, 15, 0)
        )
        await store.put(entry_from_result(synthetic, MarketSession.MARKET_OPEN, FreshnessPolicy(market_clock), fake_clock()))

        down = ScriptedAdapter(default_error=Unavailable("alpha_vantage", "down"))
        calculator = FearGreedCalculator([down], [down], cache=store)
        index = await calculator.compute()

        assert index.components.volatility == 50.0
        assert ("quote", "VIX") in down.calls
        assert index.value == 50
        assert index.confidence == 66

    @pytest.mark.asyncio
    async def test_calculation_error_returns_fallback(self):
        calculator = FearGreedCalculator([ScriptedAdapter(quotes=market_quotes())], [])

        with patch("marketpulse.domain.fear_greed.volatility_score", side_effect=RuntimeError("boom")):
            index = await calculator.compute()

        assert index.value == 50
        assert index.confidence == 60
        assert index.methodology == FALLBACK_METHODOLOGY
        assert set(index.components.to_dict().values()) == {50.0}

    @pytest.mark.asyncio
    async def test_result_for_orchestrator(self):
        calculator = FearGreedCalculator([ScriptedAdapter(quotes=market_quotes())], [])
        result = await calculator.compute_result()

        assert result.indicator_type == "fear_greed_index"
        assert result.source == "calculated"
        assert result.payload["status"] == "neutral"
        assert set(result.payload["components"]) == {
            "volatility", "volume", "momentum", "breadth", "safe_haven", "junk_bond", "put_call"
        }
