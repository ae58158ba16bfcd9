from __future__ import annotations

from datetime import datetime
from threading import Lock

from coordinator.models import AvailabilitySnapshot, Clock, utc_now


class AvailabilityTracker:
    def __init__(self, *, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._last_heartbeat_at: datetime | None = None
        self._has_ever_heartbeated = False
        self._lock = Lock()

    def record_heartbeat(self) -> None:
        with self._lock:
            self._last_heartbeat_at = self._clock()
            self._has_ever_heartbeated = True

    def snapshot(self, *, timeout_seconds: float) -> AvailabilitySnapshot:
        now = self._clock()
        with self._lock:
            last_heartbeat_at = self._last_heartbeat_at
            has_ever_heartbeated = self._has_ever_heartbeated

        if not has_ever_heartbeated or last_heartbeat_at is None:
            return AvailabilitySnapshot(
                available=False,
                last_heartbeat_at=None,
                last_heartbeat_age_ms=None,
            )

        age_seconds = (now - last_heartbeat_at).total_seconds()
        return AvailabilitySnapshot(
            available=age_seconds <= timeout_seconds,
            last_heartbeat_at=last_heartbeat_at,
            last_heartbeat_age_ms=max(0, int(age_seconds * 1000)),
        )

    def is_available(self, *, timeout_seconds: float) -> bool:
        return self.snapshot(timeout_seconds=timeout_seconds).available

    def reset(self) -> None:
        with self._lock:
            self._last_heartbeat_at = None
            self._has_ever_heartbeated = False
