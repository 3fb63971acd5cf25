"""Scheduler for background market data refresh."""
import asyncio
import time as perf
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import get_config
from ..data.base import AllProvidersExhausted
from ..data.cache import CacheStore
from ..data.cache_manager import entry_from_result
from ..data.freshness import FreshnessPolicy
from ..data.orchestrator import FallbackOrchestrator
from ..utils.logger import get_logger, log_async_performance
from ..utils.market_hours import MarketClock, MarketSession, get_market_clock
from .events import AlertSink, IndicatorUpdate, JobFailureAlert, LogAlertSink, UpdateSummary


logger = get_logger(__name__)

SESSION_INDICATORS = (
    "fear_greed_index",
    "sp500",
    "vix",
    "sector_performance",
    "interest_rate",
    "cpi",
    "unemployment",
)
INTRADAY_INDICATORS = ("sp500", "vix")

# Look at most this many days ahead for the next firing
MAX_LOOKAHEAD_DAYS = 8


class JobType(Enum):
    """Scheduled job kinds."""
    MARKET_OPEN = "market_open"
    MARKET_CLOSE = "market_close"
    INTRADAY = "intraday"
    CACHE_CLEANUP = "cache_cleanup"


class DailyTrigger:
    """Fires once a day at a fixed exchange-local wall time."""

    def __init__(self, at: time, weekdays_only: bool = True):
        self.at = at
        self.weekdays_only = weekdays_only

    def describe(self) -> str:
        days = "Mon-Fri" if self.weekdays_only else "daily"
        return f"{self.at.strftime('%H:%M')} {days}"

    def next_after(self, clock: MarketClock, moment: datetime) -> datetime:
        local = clock.to_local(moment)
        for offset in range(MAX_LOOKAHEAD_DAYS):
            day = local.date() + timedelta(days=offset)
            if self.weekdays_only and day.weekday() >= 5:
                continue
            candidate = clock.localize(day, self.at)
            if candidate > local:
                return candidate
        raise RuntimeError(f"No firing found for trigger {self.describe()}")


class IntervalTrigger:
    """Fires every N minutes between two exchange-local wall times (inclusive)."""

    def __init__(self, start: time, end: time, every_minutes: int, weekdays_only: bool = True):
        self.start = start
        self.end = end
        self.every_minutes = every_minutes
        self.weekdays_only = weekdays_only

    def describe(self) -> str:
        return (
            f"every {self.every_minutes} min {self.start.strftime('%H:%M')}-"
            f"{self.end.strftime('%H:%M')}{' Mon-Fri' if self.weekdays_only else ''}"
        )

    def slots(self) -> List[time]:
        first = self.start.hour * 60 + self.start.minute
        last = self.end.hour * 60 + self.end.minute
        return [time(m // 60, m % 60) for m in range(first, last + 1, self.every_minutes)]

    def next_after(self, clock: MarketClock, moment: datetime) -> datetime:
        local = clock.to_local(moment)
        for offset in range(MAX_LOOKAHEAD_DAYS):
            day = local.date() + timedelta(days=offset)
            if self.weekdays_only and day.weekday() >= 5:
                continue
            for slot in self.slots():
                candidate = clock.localize(day, slot)
                if candidate > local:
                    return candidate
        raise RuntimeError(f"No firing found for trigger {self.describe()}")


@dataclass
class ScheduledJob:
    """Scheduled job configuration."""
    job_type: JobType
    trigger: Any
    indicators: Tuple[str, ...] = ()
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    @property
    def name(self) -> str:
        return self.job_type.value


class Scheduler:
    """Drives periodic refreshes of the indicator cache.

    Each firing is spawned as its own task, so a slow job never delays
    another job's trigger. A job whose previous run is still in flight is
    skipped for that firing.
    """

    def __init__(
        self,
        store: CacheStore,
        orchestrator: FallbackOrchestrator,
        policy: Optional[FreshnessPolicy] = None,
        clock: Optional[MarketClock] = None,
        alert_sink: Optional[AlertSink] = None,
        max_concurrency: Optional[int] = None,
        tick_seconds: Optional[float] = None
    ):
        """Initialize scheduler.

        Args:
            store: Cache the job bodies write to
            orchestrator: Source of fresh indicator values
            policy: TTLs applied to written entries
            clock: Exchange clock; inject a fixed clock in tests
            alert_sink: Receives job failure alerts (defaults to the error log)
            max_concurrency: Upper bound on concurrent indicator fetches
            tick_seconds: Interval between trigger evaluations
        """
        config = get_config()
        self.store = store
        self.orchestrator = orchestrator
        self.clock = clock or get_market_clock()
        self.policy = policy or FreshnessPolicy(self.clock)
        self.alert_sink = alert_sink or LogAlertSink()
        self.max_concurrency = max_concurrency or config.cache.max_concurrent_fetches
        self.tick_seconds = tick_seconds or config.timing.scheduler_tick_seconds

        self._running = False
        self._loop_task: Optional[asyncio.Task] = None
        self._in_flight: Dict[JobType, asyncio.Task] = {}
        self.last_summary: Optional[UpdateSummary] = None

        self.jobs = self._build_jobs()

    def _build_jobs(self) -> Dict[JobType, ScheduledJob]:
        timing = get_config().timing
        market_open = self.clock.market_open
        market_close = self.clock.market_close
        interval = timing.intraday_interval_minutes

        # Every slot in the hours from the open hour up to (not including) the close hour
        last_slot = (market_close.hour - 1) * 60 + (60 - interval)
        intraday_end = time(last_slot // 60, last_slot % 60)

        return {
            JobType.MARKET_OPEN: ScheduledJob(
                job_type=JobType.MARKET_OPEN,
                trigger=DailyTrigger(market_open),
                indicators=SESSION_INDICATORS
            ),
            JobType.MARKET_CLOSE: ScheduledJob(
                job_type=JobType.MARKET_CLOSE,
                trigger=DailyTrigger(market_close),
                indicators=SESSION_INDICATORS
            ),
            JobType.INTRADAY: ScheduledJob(
                job_type=JobType.INTRADAY,
                trigger=IntervalTrigger(time(market_open.hour, 0), intraday_end, interval),
                indicators=INTRADAY_INDICATORS
            ),
            JobType.CACHE_CLEANUP: ScheduledJob(
                job_type=JobType.CACHE_CLEANUP,
                trigger=DailyTrigger(timing.get_cleanup_time(), weekdays_only=False)
            ),
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        self._update_next_runs()
        self._loop_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Scheduler started")

    async def stop(self):
        """Stop the scheduler and cancel in-flight job runs."""
        self._running = False

        tasks = [t for t in [self._loop_task, *self._in_flight.values()] if t and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                logger.debug(f"Task {task.get_name()} cancelled")

        self._loop_task = None
        self._in_flight.clear()
        logger.info("Scheduler stopped")

    def _update_next_runs(self, now: Optional[datetime] = None):
        """Update next run times for all scheduled jobs."""
        now = now or self.clock.now()
        for job in self.jobs.values():
            job.next_run = job.trigger.next_after(self.clock, now) if job.enabled else None
            if job.next_run:
                logger.info(f"Next {job.name} run scheduled for: {job.next_run.strftime('%Y-%m-%d %H:%M %Z')}")

    async def _scheduler_loop(self):
        """Main scheduler loop."""
        logger.info("Scheduler loop started")

        while self._running:
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Scheduler loop error: {e}")
                await self._alert("scheduler_loop", str(e))
            await asyncio.sleep(self.tick_seconds)

    def tick(self, now: Optional[datetime] = None) -> List[asyncio.Task]:
        """Spawn every job whose next run is due; returns the spawned tasks."""
        now = self.clock.to_local(now) if now is not None else self.clock.now()
        spawned = []

        for job in self.jobs.values():
            if not job.enabled or job.next_run is None or now < job.next_run:
                continue

            job.next_run = job.trigger.next_after(self.clock, now)

            in_flight = self._in_flight.get(job.job_type)
            if in_flight is not None and not in_flight.done():
                logger.warning(f"Skipping {job.name}: previous run still in progress")
                continue

            job.last_run = now
            task = asyncio.create_task(self.run_job(job.job_type), name=f"job-{job.name}")
            self._in_flight[job.job_type] = task
            spawned.append(task)

        return spawned

    async def run_job(self, job_type: JobType) -> Any:
        """Execute one job body; failures are logged and alerted, never raised."""
        job = self.jobs[job_type]
        logger.info(f"Executing scheduled {job.name} job")

        try:
            if job_type is JobType.CACHE_CLEANUP:
                return await self.store.cleanup_expired()

            if job_type is JobType.INTRADAY:
                if not self.clock.is_market_hours():
                    logger.debug("Outside market hours, skipping intraday update")
                    return None
                session = MarketSession.INTRADAY
            else:
                session = MarketSession(job_type.value)

            summary = await self._run_update(session, job.indicators)
            if summary.all_failed:
                await self._alert(job.name, f"all {summary.total_jobs} indicator updates failed")
            return summary

        except Exception as e:
            logger.error(f"Failed to execute {job.name} job: {e}")
            await self._alert(job.name, str(e))
            return None

    @log_async_performance()
    async def _run_update(self, session: MarketSession, indicators: Tuple[str, ...]) -> UpdateSummary:
        """Refresh indicators concurrently and write each success to the cache."""
        started = perf.perf_counter()
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(indicator_type: str) -> IndicatorUpdate:
            async with semaphore:
                return await self._update_one(session, indicator_type)

        outcomes = await asyncio.gather(*[bounded(i) for i in indicators], return_exceptions=True)

        results = []
        for indicator_type, outcome in zip(indicators, outcomes):
            if isinstance(outcome, IndicatorUpdate):
                results.append(outcome)
            else:
                results.append(IndicatorUpdate(data_type=indicator_type, success=False, error=str(outcome)))

        succeeded = sum(1 for r in results if r.success)
        summary = UpdateSummary(
            session=session.value,
            total_jobs=len(results),
            succeeded=succeeded,
            failed=len(results) - succeeded,
            duration_ms=int((perf.perf_counter() - started) * 1000),
            results=tuple(results)
        )
        self.last_summary = summary

        logger.info(
            f"{session.value} update: {summary.succeeded}/{summary.total_jobs} succeeded "
            f"in {summary.duration_ms}ms"
        )
        return summary

    async def _update_one(self, session: MarketSession, indicator_type: str) -> IndicatorUpdate:
        try:
            result = await self.orchestrator.get_indicator(indicator_type)
            now = self.store.clock()
            await self.store.put(entry_from_result(result, session, self.policy, now))
        except (AllProvidersExhausted, KeyError) as e:
            logger.warning(f"No value for {indicator_type}: {e}")
            return IndicatorUpdate(data_type=indicator_type, success=False, error=str(e))
        except Exception as e:
            logger.error(f"Failed to update {indicator_type}: {e}")
            return IndicatorUpdate(data_type=indicator_type, success=False, error=str(e))

        return IndicatorUpdate(data_type=indicator_type, success=True, source=result.source)

    async def force_refresh(self, session: Optional[MarketSession] = None) -> UpdateSummary:
        """Run a session's update immediately.

        Args:
            session: Session to refresh (defaults to the current one;
                after-hours refreshes the close snapshot)

        Returns:
            Summary of the run
        """
        session = session or self.clock.current_session()
        if session is MarketSession.AFTER_HOURS:
            session = MarketSession.MARKET_CLOSE

        indicators = INTRADAY_INDICATORS if session is MarketSession.INTRADAY else SESSION_INDICATORS
        logger.info(f"Manual refresh triggered for {session.value}")
        return await self._run_update(session, indicators)

    async def _alert(self, job_name: str, error: str):
        try:
            await self.alert_sink.send(JobFailureAlert(job_name=job_name, error=error))
        except Exception as e:
            logger.error(f"Failed to send alert for {job_name}: {e}")

    async def get_status(self) -> Dict[str, Any]:
        """Get scheduler status.

        Returns:
            Status dictionary
        """
        status = {
            "running": self._running,
            "is_update_required": self.clock.is_update_required(),
            "next_update_time": self.clock.next_update_time().isoformat(),
            "jobs": {},
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
            "cache": None
        }

        for job in self.jobs.values():
            in_flight = self._in_flight.get(job.job_type)
            status["jobs"][job.name] = {
                "enabled": job.enabled,
                "schedule": job.trigger.describe(),
                "in_flight": in_flight is not None and not in_flight.done(),
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "next_run": job.next_run.isoformat() if job.next_run else None
            }

        try:
            status["cache"] = (await self.store.get_stats()).to_dict()
        except Exception as e:
            logger.warning(f"Could not read cache stats: {e}")

        return status
