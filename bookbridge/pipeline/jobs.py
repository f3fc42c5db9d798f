"""Conversion job records and the keyed job store.

Responsibilities:
- Hold per-job lifecycle state and enforce the legal status transitions.
- Own the job table: insert on submit, remove when a terminal result is
  retrieved or its retention window expires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
import time
from pathlib import Path
from typing import Callable, Mapping

from ..errors import NotFoundError
from ..models.datatypes import (
    ArtifactRef,
    JobError,
    JobResult,
    JobStatus,
    ResolvedMetadata,
)

_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.EXTRACTING}),
    JobStatus.EXTRACTING: frozenset({JobStatus.SEGMENTING, JobStatus.FAILED}),
    JobStatus.SEGMENTING: frozenset({JobStatus.PACKAGING, JobStatus.FAILED}),
    JobStatus.PACKAGING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
}


@dataclass
class ConversionJob:
    """Mutable lifecycle record for one conversion request.

    Only the worker running the job mutates it; callers see `JobResult`
    snapshots.
    """

    id: str
    source_bytes: bytes
    filename: str | None
    media_type: str
    requested_metadata: Mapping[str, str]
    created_at: float
    status: JobStatus = JobStatus.PENDING
    finished_at: float | None = None
    temp_path: Path | None = None
    artifact: ArtifactRef | None = None
    metadata: ResolvedMetadata | None = None
    chapter_count: int = 0
    error: JobError | None = None
    file_size: int = field(init=False)

    def __post_init__(self) -> None:
        self.file_size = len(self.source_bytes)

    def transition(self, target: JobStatus) -> None:
        """Move to `target`, rejecting transitions outside the state machine."""

        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise RuntimeError(
                f"Illegal job transition {self.status.value} -> {target.value} for job {self.id}."
            )
        self.status = target

    def snapshot(self) -> JobResult:
        return JobResult(
            job_id=self.id,
            status=self.status,
            artifact=self.artifact,
            metadata=self.metadata,
            chapter_count=self.chapter_count,
            error=self.error,
        )


class JobStore:
    """Thread-safe job table with a retention window for terminal jobs."""

    def __init__(
        self,
        retention_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._jobs: dict[str, ConversionJob] = {}
        self._lock = threading.RLock()
        self._retention_seconds = retention_seconds
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def add(self, job: ConversionJob) -> None:
        with self._lock:
            self._purge_expired_locked()
            self._jobs[job.id] = job

    def discard(self, job_id: str) -> None:
        with self._lock:
            self._jobs.pop(job_id, None)

    def get(self, job_id: str) -> ConversionJob:
        """Return a live job record.

        Raises:
            NotFoundError: If the job is unknown, retrieved, or expired.
        """

        with self._lock:
            self._purge_expired_locked()
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Unknown conversion job: {job_id}", stage="job")
        return job

    def update(self, job: ConversionJob, action: Callable[[ConversionJob], None]) -> None:
        """Apply a mutation under the store lock so snapshots stay consistent."""

        with self._lock:
            action(job)

    def take_result(self, job_id: str) -> JobResult:
        """Return a job snapshot, removing the record once it is terminal."""

        with self._lock:
            self._purge_expired_locked()
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Unknown conversion job: {job_id}", stage="job")
            result = job.snapshot()
            if job.status.is_terminal:
                del self._jobs[job_id]
            return result

    def peek_result(self, job_id: str) -> JobResult:
        with self._lock:
            return self.get(job_id).snapshot()

    def job_ids(self) -> list[str]:
        with self._lock:
            self._purge_expired_locked()
            return sorted(self._jobs)

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and now - job.finished_at >= self._retention_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
