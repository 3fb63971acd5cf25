"""Event definitions for the orchestration layer."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple

from ..utils.logger import get_logger
from ..utils.market_hours import utc_now


logger = get_logger(__name__)


class AlertPriority(Enum):
    """Alert priority levels."""
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


@dataclass(frozen=True)
class IndicatorUpdate:
    """Outcome of refreshing one indicator within a job run."""
    data_type: str
    success: bool
    source: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_type": self.data_type,
            "success": self.success,
            "source": self.source,
            "error": self.error,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass(frozen=True)
class UpdateSummary:
    """Immutable report of one refresh run."""
    session: str
    total_jobs: int
    succeeded: int
    failed: int
    duration_ms: int
    results: Tuple[IndicatorUpdate, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def all_failed(self) -> bool:
        return self.total_jobs > 0 and self.succeeded == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session": self.session,
            "total_jobs": self.total_jobs,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "results": [r.to_dict() for r in self.results],
            "timestamp": self.timestamp.isoformat()
        }


@dataclass(frozen=True)
class JobFailureAlert:
    """A scheduled job failed outright or every indicator in it failed."""
    job_name: str
    error: str
    timestamp: datetime = field(default_factory=utc_now)
    priority: AlertPriority = AlertPriority.HIGH


class AlertSink(Protocol):
    """Collaborator notified about failed jobs."""

    async def send(self, alert: JobFailureAlert) -> None:
        ...


class LogAlertSink:
    """Default sink: alerts go to the error log."""

    def __init__(self):
        self.sent = 0

    async def send(self, alert: JobFailureAlert) -> None:
        self.sent += 1
        logger.error(
            f"ALERT [{alert.priority.name}] job {alert.job_name} failed at "
            f"{alert.timestamp.isoformat()}: {alert.error}"
        )
