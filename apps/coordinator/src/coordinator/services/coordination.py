from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import threading

from coordinator.config import Settings
from coordinator.models import AvailabilitySnapshot, Clock, JobRecord, LockState, utc_now
from coordinator.services.admission import AdmissionController
from coordinator.services.availability import AvailabilityTracker
from coordinator.services.job_store import JobStore
from shared.coordination import TERMINAL_STATUSES, JobStatus


class SubmissionOutcome(str, Enum):
    ACCEPTED = "accepted"
    BUSY = "busy"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class SubmissionResult:
    outcome: SubmissionOutcome
    job: JobRecord | None = None
    owner_id: str | None = None
    availability: AvailabilitySnapshot | None = None

    @property
    def accepted(self) -> bool:
        return self.outcome == SubmissionOutcome.ACCEPTED


def _log(message: str) -> None:
    print(f"[coordinator] {message}", flush=True)


class CoordinationState:
    """Authoritative coordination state owned by one coordinator process.

    Wraps the job store, the worker availability tracker and the admission
    lock, and applies status reconciliation between them:

    * a terminal status releases the lock when the job's submitter holds it;
    * list queries prune expired records and release a lock that no active
      job backs any more (the orphan sweep), which also runs before every
      admission check so aged-out pending jobs never block new submitters.

    Every state-changing path runs under one reentrant mutex, so a sweep
    never sees a lock whose job is still being created.
    """

    def __init__(self, settings: Settings, *, clock: Clock = utc_now) -> None:
        self._settings = settings
        self.jobs = JobStore(clock=clock)
        self.availability = AvailabilityTracker(clock=clock)
        self.admission = AdmissionController(
            lock_timeout_seconds=settings.lock_timeout_seconds,
            clock=clock,
        )
        self._mutex = threading.RLock()

    @property
    def settings(self) -> Settings:
        return self._settings

    def submit(
        self,
        *,
        title: str,
        submitter_id: str,
        destination: str,
        selection: int | None = None,
    ) -> SubmissionResult:
        availability = self.query_availability()
        if not availability.available:
            _log(f"submission rejected reason=unavailable submitter_id={submitter_id}")
            return SubmissionResult(
                outcome=SubmissionOutcome.UNAVAILABLE,
                availability=availability,
            )

        follow_up = selection is not None
        with self._mutex:
            return self._admit_and_create(
                title=title,
                submitter_id=submitter_id,
                destination=destination,
                selection=selection,
                follow_up=follow_up,
                availability=availability,
            )

    def _admit_and_create(
        self,
        *,
        title: str,
        submitter_id: str,
        destination: str,
        selection: int | None,
        follow_up: bool,
        availability: AvailabilitySnapshot,
    ) -> SubmissionResult:
        self.sweep_orphaned_lock()

        decision = self.admission.admit(submitter_id, follow_up=follow_up)
        if decision.expired_owner_id is not None:
            _log(f"lock timed out owner_id={decision.expired_owner_id}")
        if not decision.admitted:
            _log(
                f"submission rejected reason=busy submitter_id={submitter_id} "
                f"owner_id={decision.owner_id}"
            )
            return SubmissionResult(outcome=SubmissionOutcome.BUSY, owner_id=decision.owner_id)
        if decision.acquired:
            _log(f"lock acquired owner_id={submitter_id}")

        job = self.jobs.create(
            title=title,
            submitter_id=submitter_id,
            destination=destination,
            selection=selection,
        )
        _log(
            f"job enqueued job_id={job.id} submitter_id={submitter_id} "
            f"follow_up={follow_up} total={len(self.jobs)}"
        )
        return SubmissionResult(
            outcome=SubmissionOutcome.ACCEPTED,
            job=job,
            owner_id=decision.owner_id,
            availability=availability,
        )

    def heartbeat(self) -> None:
        self.availability.record_heartbeat()

    def query_availability(self) -> AvailabilitySnapshot:
        return self.availability.snapshot(timeout_seconds=self._settings.heartbeat_timeout_seconds)

    def current_lock(self) -> LockState | None:
        return self.admission.current()

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        submitter_id: str | None = None,
        pending_only: bool = False,
        pending_max_age_seconds: int | None = None,
    ) -> list[JobRecord]:
        self.run_maintenance()
        if pending_only:
            max_age_seconds = pending_max_age_seconds or self._settings.pending_max_age_seconds
            jobs = self.jobs.list_pending(max_age_seconds=max_age_seconds)
            if status is not None:
                jobs = [job for job in jobs if job.status == status]
            if submitter_id is not None:
                jobs = [job for job in jobs if job.submitter_id == submitter_id]
            return jobs
        return self.jobs.list_jobs(status=status, submitter_id=submitter_id)

    def get_job(self, job_id: str) -> JobRecord | None:
        return self.jobs.get(job_id)

    def update_status(
        self,
        job_id: str,
        status: JobStatus,
        message: str | None = None,
    ) -> JobRecord:
        with self._mutex:
            job = self.jobs.update_status(job_id, status, message)
            _log(f"job status updated job_id={job_id} status={status.value}")

            if status in TERMINAL_STATUSES and self.admission.release(job.submitter_id):
                _log(f"lock released owner_id={job.submitter_id} reason={status.value}")
        return job

    def run_maintenance(self) -> None:
        with self._mutex:
            removed = self.jobs.prune_expired(
                max_age_seconds=self._settings.job_max_age_seconds,
                terminal_max_age_seconds=self._settings.terminal_max_age_seconds,
            )
            if removed:
                _log(f"pruned jobs count={removed} remaining={len(self.jobs)}")
            self.sweep_orphaned_lock()

    def sweep_orphaned_lock(self) -> bool:
        with self._mutex:
            lock = self.admission.current()
            if lock is None:
                return False
            if self.jobs.has_active_jobs(pending_max_age_seconds=self._settings.pending_max_age_seconds):
                return False
            released = self.admission.release(lock.owner_id)
        if released:
            _log(f"lock released owner_id={lock.owner_id} reason=orphaned")
        return released

    def reset(self) -> None:
        with self._mutex:
            self.jobs.reset()
            self.admission.reset()
            self.availability.reset()
        _log("state reset")
