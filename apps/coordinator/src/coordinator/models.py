from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from shared.coordination import Job, JobStatus

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class JobRecord:
    id: str
    title: str
    submitter_id: str
    destination: str
    created_at: datetime
    status: JobStatus = JobStatus.PENDING
    status_message: str | None = None
    selection: int | None = None

    @property
    def is_follow_up(self) -> bool:
        return self.selection is not None

    def age_seconds(self, now: datetime) -> float:
        return (now - self.created_at).total_seconds()

    def copy(self) -> JobRecord:
        return replace(self)

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            title=self.title,
            submitter_id=self.submitter_id,
            destination=self.destination,
            created_at=self.created_at,
            status=self.status,
            status_message=self.status_message,
            selection=self.selection,
        )


@dataclass(frozen=True)
class LockState:
    owner_id: str
    acquired_at: datetime


@dataclass(frozen=True)
class AvailabilitySnapshot:
    available: bool
    last_heartbeat_at: datetime | None
    last_heartbeat_age_ms: int | None
