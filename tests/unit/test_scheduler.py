"""Unit tests for scheduler triggers and job execution."""

import asyncio
from datetime import datetime, time

import pytest

from marketpulse.data.base import AllProvidersExhausted, IndicatorResult
from marketpulse.data.cache import CacheStore
from marketpulse.orchestration.events import JobFailureAlert, UpdateSummary
from marketpulse.orchestration.scheduler import (
    INTRADAY_INDICATORS,
    SESSION_INDICATORS,
    DailyTrigger,
    IntervalTrigger,
    JobType,
    Scheduler,
)
from marketpulse.utils.market_hours import MarketSession

from conftest import ny


class StubOrchestrator:
    """Answers every indicator unless told to fail it; tracks concurrency."""

    def __init__(self, failing=(), delay=0.0, gate=None):
        self.failing = set(failing)
        self.delay = delay
        self.gate = gate
        self.calls = []
        self.active = 0
        self.peak = 0

    async def get_indicator(self, indicator_type):
        self.calls.append(indicator_type)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if indicator_type in self.failing:
                raise AllProvidersExhausted(indicator_type, ["mock removed"])
            return IndicatorResult(
                indicator_type=indicator_type,
                payload={"value": 1.0},
                source="alpha_vantage",
                as_of=datetime(2024, 1, 8, 15, 0)
            )
        finally:
            self.active -= 1


class RecordingAlertSink:

    def __init__(self):
        self.alerts = []

    async def send(self, alert: JobFailureAlert):
        self.alerts.append(alert)


@pytest.fixture
def alerts():
    return RecordingAlertSink()


def make_scheduler(fake_clock, market_clock, orchestrator, alerts, **kwargs):
    store = CacheStore(clock=fake_clock)
    return Scheduler(store, orchestrator, clock=market_clock, alert_sink=alerts, **kwargs)


class TestTriggers:
    """Exchange-local firing times."""

    def test_daily_trigger_skips_weekend(self, market_clock):
        trigger = DailyTrigger(time(9, 30))
        # Friday after the close
        assert trigger.next_after(market_clock, ny(2024, 1, 12, 17, 0)) == ny(2024, 1, 15, 9, 30)

    def test_daily_trigger_later_today(self, market_clock):
        trigger = DailyTrigger(time(16, 0))
        assert trigger.next_after(market_clock, ny(2024, 1, 8, 10, 0)) == ny(2024, 1, 8, 16, 0)

    def test_daily_trigger_every_day(self, market_clock):
        trigger = DailyTrigger(time(2, 0), weekdays_only=False)
        assert trigger.next_after(market_clock, ny(2024, 1, 13, 3, 0)) == ny(2024, 1, 14, 2, 0)

    def test_intraday_slots(self):
        trigger = IntervalTrigger(time(9, 0), time(15, 45), 15)
        slots = trigger.slots()
        assert len(slots) == 28
        assert slots[0] == time(9, 0)
        assert slots[-1] == time(15, 45)

    def test_interval_trigger_rolls_to_next_day(self, market_clock):
        trigger = IntervalTrigger(time(9, 0), time(15, 45), 15)
        assert trigger.next_after(market_clock, ny(2024, 1, 8, 10, 7)) == ny(2024, 1, 8, 10, 15)
        assert trigger.next_after(market_clock, ny(2024, 1, 8, 15, 50)) == ny(2024, 1, 9, 9, 0)

    def test_firing_times_follow_daylight_saving(self, market_clock):
        trigger = DailyTrigger(time(9, 30))
        # Friday before the March 2024 switch to EDT
        fired = trigger.next_after(market_clock, ny(2024, 3, 8, 17, 0))
        assert fired.utcoffset().total_seconds() == -4 * 3600
        assert (fired.hour, fired.minute) == (9, 30)

    def test_default_jobs(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)

        assert scheduler.jobs[JobType.MARKET_OPEN].indicators == SESSION_INDICATORS
        assert scheduler.jobs[JobType.INTRADAY].indicators == INTRADAY_INDICATORS
        assert scheduler.jobs[JobType.INTRADAY].trigger.describe() == "every 15 min 09:00-15:45 Mon-Fri"
        assert scheduler.jobs[JobType.CACHE_CLEANUP].trigger.describe() == "02:00 daily"


class TestJobExecution:
    """Job bodies isolate failures and report summaries."""

    @pytest.mark.asyncio
    async def test_partial_failure_is_isolated(self, fake_clock, market_clock, alerts):
        orchestrator = StubOrchestrator(failing={"cpi", "unemployment"})
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts)

        summary = await scheduler.run_job(JobType.MARKET_OPEN)

        assert isinstance(summary, UpdateSummary)
        assert summary.total_jobs == 7
        assert summary.succeeded == 5
        assert summary.failed == 2
        assert {r.data_type for r in summary.results if not r.success} == {"cpi", "unemployment"}
        assert alerts.alerts == []

        entry = await scheduler.store.get("vix", MarketSession.MARKET_OPEN)
        assert entry is not None
        assert entry.source == "alpha_vantage"

    @pytest.mark.asyncio
    async def test_summary_is_immutable(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)
        summary = await scheduler.force_refresh(MarketSession.MARKET_OPEN)

        with pytest.raises(AttributeError):
            summary.succeeded = 0

    @pytest.mark.asyncio
    async def test_all_failed_run_alerts(self, fake_clock, market_clock, alerts):
        orchestrator = StubOrchestrator(failing=set(SESSION_INDICATORS))
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts)

        summary = await scheduler.run_job(JobType.MARKET_CLOSE)

        assert summary.all_failed is True
        assert len(alerts.alerts) == 1
        assert alerts.alerts[0].job_name == "market_close"

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_per_indicator(self, tmp_path, fake_clock, market_clock, alerts):
        store = CacheStore(cache_file=tmp_path, clock=fake_clock)
        scheduler = Scheduler(store, StubOrchestrator(), clock=market_clock, alert_sink=alerts)

        summary = await scheduler.force_refresh(MarketSession.INTRADAY)

        assert summary.failed == 2
        assert all("could not persist" in r.error for r in summary.results)

    @pytest.mark.asyncio
    async def test_intraday_is_noop_outside_market_hours(self, fake_clock, market_clock, alerts):
        orchestrator = StubOrchestrator()
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts)
        fake_clock.advance(hours=10)

        assert await scheduler.run_job(JobType.INTRADAY) is None
        assert orchestrator.calls == []

    @pytest.mark.asyncio
    async def test_intraday_refreshes_price_indicators(self, fake_clock, market_clock, alerts):
        orchestrator = StubOrchestrator()
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts)

        summary = await scheduler.run_job(JobType.INTRADAY)

        assert summary.session == "intraday"
        assert sorted(orchestrator.calls) == ["sp500", "vix"]

    @pytest.mark.asyncio
    async def test_cleanup_job(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)
        await scheduler.force_refresh(MarketSession.INTRADAY)
        fake_clock.advance(hours=2)

        assert await scheduler.run_job(JobType.CACHE_CLEANUP) == 2

    @pytest.mark.asyncio
    async def test_crashing_job_is_alerted(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)

        async def broken():
            raise OSError("disk gone")

        scheduler.store.cleanup_expired = broken
        assert await scheduler.run_job(JobType.CACHE_CLEANUP) is None
        assert alerts.alerts[0].error == "disk gone"

    @pytest.mark.asyncio
    async def test_after_hours_refresh_uses_close_session(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)

        summary = await scheduler.force_refresh(MarketSession.AFTER_HOURS)

        assert summary.session == "market_close"
        assert summary.total_jobs == 7
        assert (await scheduler.store.get("cpi", MarketSession.MARKET_CLOSE)) is not None

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, fake_clock, market_clock, alerts):
        orchestrator = StubOrchestrator(delay=0.01)
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts, max_concurrency=2)

        summary = await scheduler.force_refresh(MarketSession.MARKET_OPEN)

        assert summary.succeeded == 7
        assert orchestrator.peak == 2


class TestTick:
    """Trigger evaluation and overlap handling."""

    @pytest.mark.asyncio
    async def test_due_job_is_spawned_once_while_in_flight(self, fake_clock, market_clock, alerts):
        gate = asyncio.Event()
        orchestrator = StubOrchestrator(gate=gate)
        scheduler = make_scheduler(fake_clock, market_clock, orchestrator, alerts)
        for job in scheduler.jobs.values():
            job.enabled = job.job_type is JobType.INTRADAY

        intraday = scheduler.jobs[JobType.INTRADAY]
        intraday.next_run = ny(2024, 1, 8, 10, 0)

        spawned = scheduler.tick(ny(2024, 1, 8, 10, 0))
        assert len(spawned) == 1
        assert intraday.next_run == ny(2024, 1, 8, 10, 15)

        # Next slot comes due while the first run is blocked
        assert scheduler.tick(ny(2024, 1, 8, 10, 15)) == []
        assert intraday.next_run == ny(2024, 1, 8, 10, 30)

        gate.set()
        summary = await spawned[0]
        assert summary.succeeded == 2
        assert len(orchestrator.calls) == 2

    @pytest.mark.asyncio
    async def test_nothing_due(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)
        scheduler._update_next_runs(ny(2024, 1, 8, 10, 1))

        assert scheduler.tick(ny(2024, 1, 8, 10, 5)) == []

    @pytest.mark.asyncio
    async def test_start_stop(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts, tick_seconds=0.01)

        await scheduler.start()
        assert scheduler.running is True
        assert scheduler.jobs[JobType.MARKET_CLOSE].next_run == ny(2024, 1, 8, 16, 0)

        await scheduler.stop()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_status(self, fake_clock, market_clock, alerts):
        scheduler = make_scheduler(fake_clock, market_clock, StubOrchestrator(), alerts)
        await scheduler.force_refresh(MarketSession.INTRADAY)

        status = await scheduler.get_status()

        assert status["running"] is False
        assert set(status["jobs"]) == {"market_open", "market_close", "intraday", "cache_cleanup"}
        assert status["last_summary"]["succeeded"] == 2
        assert status["cache"]["total_entries"] == 2
        assert status["next_update_time"] == ny(2024, 1, 8, 16, 0).isoformat()
