from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Literal

from smart_gazette.utils.error_taxonomy import failure_message

logger = logging.getLogger("smart_gazette.job_state")

JobStatus = Literal["completed", "stopped", "already_running", "failed"]


class JobState:
    """Single-flight flag and stop signal shared by every job."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._stop_requested = False

    def try_start(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._stop_requested = False
            return True

    def request_stop(self) -> bool:
        """Ask the running job to stop; returns whether a job was running."""
        with self._lock:
            if not self._running:
                return False
            self._stop_requested = True
            return True

    def finish(self) -> None:
        with self._lock:
            self._running = False
            self._stop_requested = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested


@dataclass(slots=True)
class JobProgress:
    notices_total: int = 0
    notices_processed: int = 0
    succeeded: int = 0
    failed: int = 0

    def record(self, status: str) -> None:
        self.notices_processed += 1
        if status == "SUCCESS":
            self.succeeded += 1
        else:
            self.failed += 1


@dataclass(frozen=True, slots=True)
class JobOutcome:
    status: JobStatus
    notices_total: int = 0
    notices_processed: int = 0
    succeeded: int = 0
    failed: int = 0
    error: str | None = None
    usage: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_progress(
        cls,
        status: JobStatus,
        progress: JobProgress,
        error: str | None = None,
        usage: dict[str, int] | None = None,
    ) -> "JobOutcome":
        return cls(
            status=status,
            notices_total=progress.notices_total,
            notices_processed=progress.notices_processed,
            succeeded=progress.succeeded,
            failed=progress.failed,
            error=error,
            usage=dict(usage or {}),
        )


def log_cancellation(job: str, *, remaining: int) -> None:
    logger.warning(
        "%s stopped on request; %d notice(s) left unprocessed: %s",
        job,
        remaining,
        failure_message("CANCELLATION_REQUESTED"),
        extra={"metrics": {"failure": "CANCELLATION_REQUESTED", "remaining": remaining}},
    )
