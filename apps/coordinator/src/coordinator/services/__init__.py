from coordinator.services.admission import AdmissionController, AdmissionDecision
from coordinator.services.availability import AvailabilityTracker
from coordinator.services.coordination import CoordinationState, SubmissionOutcome, SubmissionResult
from coordinator.services.job_store import InvalidStatusTransitionError, JobNotFoundError, JobStore

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "AvailabilityTracker",
    "CoordinationState",
    "InvalidStatusTransitionError",
    "JobNotFoundError",
    "JobStore",
    "SubmissionOutcome",
    "SubmissionResult",
]
