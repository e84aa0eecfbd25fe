"""
Single-flight guard for scheduled jobs.

A job fired while its previous run is still going is skipped, not queued.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class JobRun:
    """Result of one attempt to run a guarded job."""

    job: str
    status: RunStatus
    started_at: datetime
    duration_seconds: float = 0.0
    result: Any = None
    reason: Optional[str] = None


class SingleFlight:
    """Runs a callable only if no other run of the same job is in progress."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._state = JobState.IDLE
        self.last_run: Optional[JobRun] = None

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == JobState.RUNNING

    def _acquire(self) -> bool:
        with self._lock:
            if self._state == JobState.RUNNING:
                return False
            self._state = JobState.RUNNING
            return True

    def _release(self) -> None:
        with self._lock:
            self._state = JobState.IDLE

    def run(self, fn: Callable[..., Any], *args, **kwargs) -> JobRun:
        """
        Run ``fn`` under the guard.

        Exceptions from ``fn`` are logged and returned as a FAILED run.

        Returns:
            JobRun describing the attempt
        """
        started_at = datetime.now(timezone.utc)
        if not self._acquire():
            logger.warning(f"{self.name} is already running, skipping this run")
            return JobRun(
                job=self.name,
                status=RunStatus.SKIPPED,
                started_at=started_at,
                reason="already running",
            )

        started = time.monotonic()
        try:
            result = fn(*args, **kwargs)
            run = JobRun(
                job=self.name,
                status=RunStatus.COMPLETED,
                started_at=started_at,
                duration_seconds=time.monotonic() - started,
                result=result,
            )
        except Exception as e:
            logger.exception(f"{self.name} failed: {e}")
            run = JobRun(
                job=self.name,
                status=RunStatus.FAILED,
                started_at=started_at,
                duration_seconds=time.monotonic() - started,
                reason=str(e),
            )
        finally:
            self._release()

        self.last_run = run
        return run
