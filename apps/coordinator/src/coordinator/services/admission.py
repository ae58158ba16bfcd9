from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from threading import Lock

from coordinator.models import Clock, LockState, utc_now


@dataclass(frozen=True)
class AdmissionDecision:
    admitted: bool
    owner_id: str | None
    acquired: bool = False
    expired_owner_id: str | None = None


class AdmissionController:
    """Single-owner admission lock keyed by submitter identity.

    New submissions acquire the lock; follow-up submissions pass through
    without acquiring or refreshing it. A lock older than
    ``lock_timeout_seconds`` is discarded on the next admission check.
    """

    def __init__(self, *, lock_timeout_seconds: float, clock: Clock = utc_now) -> None:
        self._lock_timeout = timedelta(seconds=lock_timeout_seconds)
        self._clock = clock
        self._state: LockState | None = None
        self._mutex = Lock()

    def current(self) -> LockState | None:
        with self._mutex:
            return self._state

    def admit(self, submitter_id: str, *, follow_up: bool) -> AdmissionDecision:
        now = self._clock()
        with self._mutex:
            expired_owner_id = None
            if self._state is not None and now - self._state.acquired_at > self._lock_timeout:
                expired_owner_id = self._state.owner_id
                self._state = None

            if self._state is None:
                if follow_up:
                    return AdmissionDecision(
                        admitted=True,
                        owner_id=None,
                        expired_owner_id=expired_owner_id,
                    )
                self._state = LockState(owner_id=submitter_id, acquired_at=now)
                return AdmissionDecision(
                    admitted=True,
                    owner_id=submitter_id,
                    acquired=True,
                    expired_owner_id=expired_owner_id,
                )

            owner_id = self._state.owner_id
            if follow_up:
                return AdmissionDecision(admitted=True, owner_id=owner_id)

            # One active job per owner: a new request from the holder is busy too.
            return AdmissionDecision(admitted=False, owner_id=owner_id)

    def release(self, owner_id: str | None = None) -> bool:
        with self._mutex:
            if self._state is None:
                return False
            if owner_id is not None and self._state.owner_id != owner_id:
                return False
            self._state = None
            return True

    def reset(self) -> None:
        with self._mutex:
            self._state = None
