"""Orchestration layer for scheduling refreshes and wiring components."""
from .events import (
    AlertPriority,
    AlertSink,
    IndicatorUpdate,
    JobFailureAlert,
    LogAlertSink,
    UpdateSummary
)
from .scheduler import Scheduler, JobType, ScheduledJob, DailyTrigger, IntervalTrigger
from .coordinator import Coordinator


__all__ = [
    "AlertPriority",
    "AlertSink",
    "IndicatorUpdate",
    "JobFailureAlert",
    "LogAlertSink",
    "UpdateSummary",
    "Scheduler",
    "JobType",
    "ScheduledJob",
    "DailyTrigger",
    "IntervalTrigger",
    "Coordinator"
]
