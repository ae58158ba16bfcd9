from shared.coordination.interface import (
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    CoordinationService,
    Job,
    JobStatus,
)

__all__ = ["PENDING_STATUSES", "TERMINAL_STATUSES", "CoordinationService", "Job", "JobStatus"]
