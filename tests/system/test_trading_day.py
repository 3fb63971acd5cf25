"""End-to-end tests: a trading day of refreshes, reads and CLI output with offline providers."""

import json
from datetime import date
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from marketpulse.data.base import DataSource, RateLimited, Unavailable
from marketpulse.data.cache import CacheStore
from marketpulse.data.indicators import BUILDERS
from marketpulse.data.mock import MockDataAdapter
from marketpulse.data.orchestrator import FallbackOrchestrator
from marketpulse.main import cli
from marketpulse.orchestration import Coordinator
from marketpulse.utils.market_hours import MarketSession
from marketpulse.utils.quota import QuotaGuard

from conftest import ScriptedAdapter, make_quote


def offline_coordinator(fake_clock, market_clock, primary=None):
    """Coordinator whose chains end in the mock adapter, optionally behind a scripted primary."""
    mock = MockDataAdapter(as_of=date(2024, 1, 8))
    chain = [primary, mock] if primary is not None else [mock]
    orchestrator = FallbackOrchestrator({indicator: list(chain) for indicator in BUILDERS})
    return Coordinator(
        store=CacheStore(clock=fake_clock),
        orchestrator=orchestrator,
        clock=market_clock,
        quota_guard=QuotaGuard(limits={})
    )


class TestTradingDay:
    """Scheduled refreshes feed the read path."""

    @pytest.mark.asyncio
    async def test_open_refresh_then_reads_hit_cache(self, fake_clock, market_clock):
        coordinator = offline_coordinator(fake_clock, market_clock)

        summary = await coordinator.force_refresh(MarketSession.MARKET_OPEN)
        assert summary.succeeded == 7
        assert {r.data_type for r in summary.results} == set(BUILDERS) | {"fear_greed_index"}

        for indicator in ("sp500", "vix", "sector_performance", "cpi", "fear_greed_index"):
            result = await coordinator.get_cached_or_fresh(indicator)
            assert result.source == "supabase_cache"

        cpi = await coordinator.get_cached_or_fresh("cpi")
        assert cpi.origin == "mock_data"
        assert cpi.is_synthetic is True
        assert cpi.payload["inflationPressure"] == "moderate"

        fear_greed = await coordinator.get_cached_or_fresh("fear_greed_index")
        assert fear_greed.origin == "calculated"
        assert 0 <= fear_greed.payload["value"] <= 100

    @pytest.mark.asyncio
    async def test_price_entries_expire_before_macro_entries(self, fake_clock, market_clock):
        coordinator = offline_coordinator(fake_clock, market_clock)
        await coordinator.force_refresh(MarketSession.MARKET_OPEN)

        fake_clock.advance(hours=1)
        removed = await coordinator.cleanup_cache()

        # sp500 and vix (15 min), sector_performance (30 min)
        assert removed == 3
        stats = await coordinator.get_cache_stats()
        assert stats.data_types == ["cpi", "fear_greed_index", "interest_rate", "unemployment"]

    @pytest.mark.asyncio
    async def test_degraded_primary_falls_back_everywhere(self, fake_clock, market_clock):
        limited = ScriptedAdapter(DataSource.ALPHA_VANTAGE, default_error=RateLimited("alpha_vantage", "Note"))
        coordinator = offline_coordinator(fake_clock, market_clock, primary=limited)

        summary = await coordinator.force_refresh(MarketSession.MARKET_CLOSE)

        assert summary.failed == 0
        sources = {r.data_type: r.source for r in summary.results}
        assert sources["vix"] == "mock_data"
        assert sources["fear_greed_index"] == "calculated"

    @pytest.mark.asyncio
    async def test_fear_greed_from_live_signals(self, fake_clock, market_clock):
        quotes = {
            "VIX": make_quote("VIX", 18.45, change=-0.85),
            "SPY": make_quote("SPY", 512.40, change=1.53, change_percent=0.3, volume=50_000_000),
            "XLK": make_quote("XLK", 210.30, change=0.6),
            "XLV": make_quote("XLV", 145.10, change=0.1),
            "XLF": make_quote("XLF", 41.25, change=0.05),
            "XLE": make_quote("XLE", 92.80, change=-0.2),
            "XLI": make_quote("XLI", 124.60, change=0.0),
            "GS10": make_quote("GS10", 4.25, change=0.15),
        }
        live = ScriptedAdapter(DataSource.ALPHA_VANTAGE, quotes=quotes, default_error=Unavailable("alpha_vantage", "down"))
        coordinator = offline_coordinator(fake_clock, market_clock, primary=live)

        index = await coordinator.compute_fear_greed()

        assert index.value == 57
        assert index.confidence == 94

    @pytest.mark.asyncio
    async def test_status(self, fake_clock, market_clock):
        coordinator = offline_coordinator(fake_clock, market_clock)
        await coordinator.force_refresh(MarketSession.INTRADAY)

        status = await coordinator.get_status()

        assert status["quota"] == {}
        assert "fear_greed_index" in status["indicators"]
        assert status["cache"]["total_entries"] == 2
        assert status["last_summary"]["session"] == "intraday"


class TestCommandLine:
    """CLI commands against an offline coordinator."""

    @pytest.fixture
    def runner(self, fake_clock, market_clock):
        with patch("marketpulse.main.Coordinator", lambda: offline_coordinator(fake_clock, market_clock)):
            yield CliRunner()

    def test_get_prints_result(self, runner):
        result = runner.invoke(cli, ["get", "vix"])

        assert result.exit_code == 0
        assert "showing mock data" in result.output
        # The mock-data warning goes to stderr ahead of the JSON document
        payload = json.loads(result.output[result.output.index("{"):])
        assert payload["indicator_type"] == "vix"
        assert payload["payload"]["value"] == 18.45

    def test_unknown_indicator_is_rejected(self, runner):
        result = runner.invoke(cli, ["get", "gold_price"])
        assert result.exit_code != 0

    def test_refresh(self, runner):
        result = runner.invoke(cli, ["refresh", "--session", "market_open"])

        assert result.exit_code == 0
        assert "7/7 succeeded" in result.output

    def test_fear_greed(self, runner):
        result = runner.invoke(cli, ["fear-greed"])

        assert result.exit_code == 0
        assert "Fear & Greed: 50 (neutral)" in result.output

    def test_cleanup(self, runner):
        result = runner.invoke(cli, ["cleanup"])

        assert result.exit_code == 0
        assert "Removed 0 expired cache entries" in result.output
