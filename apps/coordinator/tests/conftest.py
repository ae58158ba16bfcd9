from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from coordinator.config import Settings, get_settings
from coordinator.main import app, get_state
from coordinator.services.coordination import CoordinationState


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def reset_coordinator_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_state.cache_clear()
    yield
    get_settings.cache_clear()
    get_state.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Settings:
    monkeypatch.setenv("COORDINATOR_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("COORDINATOR_PUBLIC_URL", "http://testserver")
    monkeypatch.setenv("COORDINATOR_ADMIN_USER_IDS", "UADMIN")
    for name in (
        "COORDINATOR_PENDING_MAX_AGE_SECONDS",
        "COORDINATOR_JOB_MAX_AGE_SECONDS",
        "COORDINATOR_TERMINAL_MAX_AGE_SECONDS",
        "COORDINATOR_LOCK_TIMEOUT_SECONDS",
        "COORDINATOR_HEARTBEAT_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return get_settings()


@pytest.fixture
def state(settings: Settings, clock: FakeClock) -> CoordinationState:
    return CoordinationState(settings, clock=clock)


@pytest.fixture
def client(state: CoordinationState) -> Iterator[TestClient]:
    app.dependency_overrides[get_state] = lambda: state
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
