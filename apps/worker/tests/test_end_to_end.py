from collections.abc import Iterator
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient
import httpx
from PIL import Image
import pytest

from coordinator.config import get_settings
from coordinator.main import app, get_completion_client, get_notifier, get_state
from coordinator.services.completion import CompletionResult
from coordinator.services.notifier import NotifierConfigurationError
from coordinator.services.coordination import CoordinationState
from template_worker.clients import CoordinatorClient
from template_worker.poller import Poller
from template_worker.rendering import AssetCatalog, PillowTemplateRenderer
from template_worker.retry import RetryPolicy
from template_worker.selection import FirstSeenTieBreaker

_BASE_URL = "http://coordinator.test"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, *, destination: str, text: str) -> None:
        self.sent.append((destination, text))


class FirstOptionCompletion:
    def complete(self, *, prompt: str, max_tokens: int = 50, temperature: float = 0.7) -> CompletionResult:
        listing = prompt.split("Available main images:\n", 1)[1].split("\n\n", 1)[0]
        return CompletionResult(content=listing.splitlines()[0][2:], model="stub-model")


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coordinator_api(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    notifier: RecordingNotifier,
) -> Iterator[TestClient]:
    monkeypatch.setenv("COORDINATOR_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("COORDINATOR_PUBLIC_URL", _BASE_URL)
    get_settings.cache_clear()
    get_state.cache_clear()
    state = CoordinationState(get_settings())

    app.dependency_overrides[get_state] = lambda: state
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_completion_client] = FirstOptionCompletion
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
        get_settings.cache_clear()
        get_state.cache_clear()


@pytest.fixture
def worker_client(monkeypatch: pytest.MonkeyPatch, coordinator_api: TestClient) -> CoordinatorClient:
    def _path(url: str) -> str:
        assert url.startswith(_BASE_URL)
        return url[len(_BASE_URL) :]

    def routed_post(url: str, *, json: Any = None, timeout: float | None = None) -> httpx.Response:
        return coordinator_api.post(_path(url), json=json)

    def routed_get(url: str, *, params: Any = None, timeout: float | None = None) -> httpx.Response:
        return coordinator_api.get(_path(url), params=params)

    monkeypatch.setattr("template_worker.clients.httpx.post", routed_post)
    monkeypatch.setattr("template_worker.clients.httpx.get", routed_get)
    return CoordinatorClient(base_url=_BASE_URL)


def _poller(client: CoordinatorClient, asset_dir: Path) -> Poller:
    catalog = AssetCatalog(asset_dir)
    return Poller(
        coordinator=client,
        collaborators=client,
        assets=catalog,
        renderer=PillowTemplateRenderer(catalog, width=320, height=200),
        tie_breaker=FirstSeenTieBreaker(),
        retry_policy=RetryPolicy(jitter_seconds=0.0),
        max_picks=2,
        sleep=lambda _: None,
    )


def _write_assets(asset_dir: Path) -> Path:
    asset_dir.mkdir()
    for name, color in (("sunset", (240, 120, 40)), ("harbor", (40, 90, 200)), ("forest", (30, 140, 60))):
        Image.new("RGB", (120, 80), color).save(asset_dir / f"{name}.png")
    return asset_dir


def _submit(api: TestClient, title: str, submitter_id: str, selection: int | None = None) -> httpx.Response:
    payload: dict[str, Any] = {"title": title, "submitter_id": submitter_id, "destination": "C1"}
    if selection is not None:
        payload["selection"] = selection
    return api.post("/jobs", json=payload)


def test_worker_completes_submitted_job(
    coordinator_api: TestClient,
    worker_client: CoordinatorClient,
    notifier: RecordingNotifier,
    tmp_path: Path,
) -> None:
    asset_dir = _write_assets(tmp_path / "assets")

    worker_client.heartbeat()
    submitted = coordinator_api.post(
        "/jobs",
        json={"title": "Launch Post", "submitter_id": "U1", "destination": "C1"},
    )
    assert submitted.status_code == 202
    job_id = submitted.json()["job"]["id"]

    poller = _poller(worker_client, asset_dir)
    assert poller.poll_once() == 1

    job = coordinator_api.get(f"/jobs/{job_id}").json()
    assert job["status"] == "completed"
    assert job["status_message"] == "All templates created and sent"
    assert coordinator_api.get("/lock").json()["held"] is False

    assert len(notifier.sent) == 1
    destination, text = notifier.sent[0]
    assert destination == "C1"
    assert text.count(f"{_BASE_URL}/uploads/") == 2

    stored = sorted((tmp_path / "uploads").glob("*.png"))
    assert len(stored) == 2
    assert all(path.name.startswith("Launch_Post_Option_") for path in stored)


def test_worker_reports_error_when_no_assets(
    coordinator_api: TestClient,
    worker_client: CoordinatorClient,
    notifier: RecordingNotifier,
    tmp_path: Path,
) -> None:
    worker_client.heartbeat()
    job_id = coordinator_api.post(
        "/jobs",
        json={"title": "Launch Post", "submitter_id": "U1", "destination": "C1"},
    ).json()["job"]["id"]

    _poller(worker_client, tmp_path / "empty").poll_once()

    job = coordinator_api.get(f"/jobs/{job_id}").json()
    assert job["status"] == "error"
    assert job["status_message"] == "No template assets found"
    assert coordinator_api.get("/lock").json()["held"] is False
    assert notifier.sent == [("C1", 'Error creating templates for "Launch Post": No template assets found')]


def test_lost_completed_report_is_resent_and_frees_the_lock(
    monkeypatch: pytest.MonkeyPatch,
    coordinator_api: TestClient,
    worker_client: CoordinatorClient,
    tmp_path: Path,
) -> None:
    routed_post = httpx.post
    completed_failures = [3]

    def flaky_post(url: str, *, json: Any = None, timeout: float | None = None) -> httpx.Response:
        if url.endswith("/status") and json["status"] == "completed" and completed_failures[0]:
            completed_failures[0] -= 1
            raise httpx.ConnectError("connection reset by peer")
        return routed_post(url, json=json, timeout=timeout)

    monkeypatch.setattr("template_worker.clients.httpx.post", flaky_post)
    asset_dir = _write_assets(tmp_path / "assets")
    worker_client.heartbeat()
    job_id = _submit(coordinator_api, "Launch Post", "U1").json()["job"]["id"]
    poller = _poller(worker_client, asset_dir)

    assert poller.poll_once() == 1
    assert coordinator_api.get(f"/jobs/{job_id}").json()["status"] == "processing"
    assert coordinator_api.get("/lock").json()["owner_id"] == "U1"
    assert _submit(coordinator_api, "Other Post", "U2").status_code == 423

    poller.poll_once()

    assert poller.pending_reports == []
    assert coordinator_api.get(f"/jobs/{job_id}").json()["status"] == "completed"
    assert coordinator_api.get("/lock").json()["held"] is False
    assert _submit(coordinator_api, "Other Post", "U2").status_code == 202


def test_lock_owner_never_has_two_jobs_processing(
    monkeypatch: pytest.MonkeyPatch,
    coordinator_api: TestClient,
    worker_client: CoordinatorClient,
    tmp_path: Path,
) -> None:
    routed_post = httpx.post
    processing_counts: list[dict[str, int]] = []

    def observed_post(url: str, *, json: Any = None, timeout: float | None = None) -> httpx.Response:
        response = routed_post(url, json=json, timeout=timeout)
        if url.endswith("/status"):
            counts: dict[str, int] = {}
            for job in coordinator_api.get("/jobs").json()["jobs"]:
                if job["status"] == "processing":
                    counts[job["submitter_id"]] = counts.get(job["submitter_id"], 0) + 1
            processing_counts.append(counts)
        return response

    monkeypatch.setattr("template_worker.clients.httpx.post", observed_post)
    asset_dir = _write_assets(tmp_path / "assets")
    worker_client.heartbeat()
    poller = _poller(worker_client, asset_dir)

    assert _submit(coordinator_api, "Launch Post", "U1").status_code == 202
    assert _submit(coordinator_api, "Launch Post", "U1", selection=1).status_code == 202
    assert _submit(coordinator_api, "Second Post", "U1").status_code == 423
    assert _submit(coordinator_api, "Other Post", "U2").status_code == 423
    assert poller.poll_once() == 2

    assert _submit(coordinator_api, "Launch Post", "U1", selection=2).status_code == 202
    assert _submit(coordinator_api, "Second Post", "U1").status_code == 202
    assert _submit(coordinator_api, "Third Post", "U1").status_code == 423
    assert poller.poll_once() == 2

    assert {"U1": 1} in processing_counts
    assert all(count <= 1 for counts in processing_counts for count in counts.values())
    jobs = coordinator_api.get("/jobs").json()["jobs"]
    assert len(jobs) == 4
    assert all(job["status"] == "completed" for job in jobs)
    assert coordinator_api.get("/lock").json()["held"] is False


class UnconfiguredNotifier:
    def __init__(self) -> None:
        self.attempts = 0

    def send(self, *, destination: str, text: str) -> None:
        self.attempts += 1
        raise NotifierConfigurationError("No bot token configured")


def test_unconfigured_notifier_fails_job_without_retrying(
    coordinator_api: TestClient,
    worker_client: CoordinatorClient,
    tmp_path: Path,
) -> None:
    unconfigured = UnconfiguredNotifier()
    app.dependency_overrides[get_notifier] = lambda: unconfigured
    sleeps: list[float] = []
    catalog = AssetCatalog(_write_assets(tmp_path / "assets"))
    poller = Poller(
        coordinator=worker_client,
        collaborators=worker_client,
        assets=catalog,
        renderer=PillowTemplateRenderer(catalog, width=320, height=200),
        tie_breaker=FirstSeenTieBreaker(),
        retry_policy=RetryPolicy(jitter_seconds=0.0),
        max_picks=1,
        sleep=sleeps.append,
    )
    worker_client.heartbeat()
    job_id = _submit(coordinator_api, "Launch Post", "U1").json()["job"]["id"]

    poller.poll_once()

    job = coordinator_api.get(f"/jobs/{job_id}").json()
    assert job["status"] == "error"
    assert "No bot token configured" in job["status_message"]
    assert "(503)" in job["status_message"]
    assert unconfigured.attempts == 2
    assert sleeps == []
    assert coordinator_api.get("/lock").json()["held"] is False
