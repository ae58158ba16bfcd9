from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, Sequence


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    WAITING_FOR_SELECTION = "waiting_for_selection"
    COMPLETED = "completed"
    ERROR = "error"


PENDING_STATUSES = frozenset({JobStatus.PENDING, JobStatus.WAITING_FOR_SELECTION})
TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


@dataclass(frozen=True)
class Job:
    """Wire view of a job as exchanged between the coordinator and the worker."""

    id: str
    title: str
    submitter_id: str
    destination: str
    created_at: datetime
    status: JobStatus
    status_message: str | None = None
    selection: int | None = None

    @property
    def is_follow_up(self) -> bool:
        return self.selection is not None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Job:
        selection = payload.get("selection")
        return cls(
            id=str(payload["id"]),
            title=str(payload["title"]),
            submitter_id=str(payload["submitter_id"]),
            destination=str(payload["destination"]),
            created_at=datetime.fromisoformat(str(payload["created_at"])),
            status=JobStatus(payload["status"]),
            status_message=payload.get("status_message"),
            selection=int(selection) if selection is not None else None,
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "submitter_id": self.submitter_id,
            "destination": self.destination,
            "created_at": self.created_at.isoformat(),
            "status": self.status.value,
            "status_message": self.status_message,
            "selection": self.selection,
        }


class CoordinationService(Protocol):
    """Remote operations the worker relies on."""

    def heartbeat(self) -> None:
        ...

    def list_pending(self, *, max_age_seconds: int) -> Sequence[Job]:
        ...

    def update_status(self, job_id: str, status: JobStatus, message: str | None = None) -> Job:
        ...
