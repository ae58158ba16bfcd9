from __future__ import annotations

from datetime import datetime
from threading import Lock

from coordinator.models import Clock, JobRecord, utc_now
from shared.coordination import PENDING_STATUSES, TERMINAL_STATUSES, JobStatus


class JobNotFoundError(LookupError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"job {job_id} not found")
        self.job_id = job_id


class InvalidStatusTransitionError(ValueError):
    def __init__(self, job_id: str, current: JobStatus, requested: JobStatus) -> None:
        super().__init__(
            f"job {job_id} cannot move from {current.value} to {requested.value}"
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {
            JobStatus.PENDING,
            JobStatus.PROCESSING,
            JobStatus.WAITING_FOR_SELECTION,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.PROCESSING,
            JobStatus.WAITING_FOR_SELECTION,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.WAITING_FOR_SELECTION: frozenset(
        {
            JobStatus.PROCESSING,
            JobStatus.WAITING_FOR_SELECTION,
            JobStatus.COMPLETED,
            JobStatus.ERROR,
        }
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


class JobStore:
    """Ordered, process-resident collection of job records.

    Records are kept in insertion order. Every public method returns copies so
    callers never mutate stored records outside ``update_status``.
    """

    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._jobs: list[JobRecord] = []
        self._last_created_at: datetime | None = None
        self._lock = Lock()

    def _now(self) -> datetime:
        return self._clock()

    def _next_created_at(self) -> datetime:
        now = self._now()
        if self._last_created_at is not None and now < self._last_created_at:
            now = self._last_created_at
        self._last_created_at = now
        return now

    def _next_job_id(self, created_at: datetime) -> str:
        existing = {job.id for job in self._jobs}
        candidate = int(created_at.timestamp() * 1000)
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)

    def create(
        self,
        *,
        title: str,
        submitter_id: str,
        destination: str,
        selection: int | None = None,
    ) -> JobRecord:
        with self._lock:
            created_at = self._next_created_at()
            job = JobRecord(
                id=self._next_job_id(created_at),
                title=title,
                submitter_id=submitter_id,
                destination=destination,
                created_at=created_at,
                status=JobStatus.PENDING,
                selection=selection,
            )
            self._jobs.append(job)
            return job.copy()

    def enqueue(self, job: JobRecord) -> None:
        with self._lock:
            self._jobs.append(job.copy())

    def get(self, job_id: str) -> JobRecord | None:
        with self._lock:
            for job in self._jobs:
                if job.id == job_id:
                    return job.copy()
        return None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        submitter_id: str | None = None,
    ) -> list[JobRecord]:
        with self._lock:
            jobs = list(self._jobs)

        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        if submitter_id is not None:
            jobs = [job for job in jobs if job.submitter_id == submitter_id]
        return [job.copy() for job in jobs]

    def list_pending(self, *, max_age_seconds: float) -> list[JobRecord]:
        now = self._now()
        with self._lock:
            return [
                job.copy()
                for job in self._jobs
                if job.status in PENDING_STATUSES and job.age_seconds(now) <= max_age_seconds
            ]

    def has_active_jobs(
        self,
        *,
        pending_max_age_seconds: float,
        submitter_id: str | None = None,
    ) -> bool:
        now = self._now()
        with self._lock:
            for job in self._jobs:
                if submitter_id is not None and job.submitter_id != submitter_id:
                    continue
                if job.status == JobStatus.PROCESSING:
                    return True
                if job.status == JobStatus.PENDING and job.age_seconds(now) <= pending_max_age_seconds:
                    return True
        return False

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str | None = None,
    ) -> JobRecord:
        with self._lock:
            for job in self._jobs:
                if job.id != job_id:
                    continue
                if status not in _ALLOWED_TRANSITIONS[job.status]:
                    raise InvalidStatusTransitionError(job_id, job.status, status)
                job.status = status
                if message:
                    job.status_message = message
                return job.copy()

        raise JobNotFoundError(job_id)

    def prune_expired(
        self,
        *,
        max_age_seconds: float,
        terminal_max_age_seconds: float,
    ) -> int:
        now = self._now()
        with self._lock:
            fresh = [
                job
                for job in self._jobs
                if job.age_seconds(now) <= max_age_seconds
                and not (
                    job.status in TERMINAL_STATUSES
                    and job.age_seconds(now) > terminal_max_age_seconds
                )
            ]

            latest_by_title: dict[str, str] = {}
            for job in fresh:
                latest_by_title[job.title] = job.id
            kept = [job for job in fresh if latest_by_title[job.title] == job.id]

            removed = len(self._jobs) - len(kept)
            self._jobs = kept
            return removed

    def reset(self) -> None:
        with self._lock:
            self._jobs = []
            self._last_created_at = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
