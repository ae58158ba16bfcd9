from __future__ import annotations

import base64
from typing import Any

import httpx

from shared.coordination import Job, JobStatus
from template_worker.errors import (
    CoordinatorError,
    PermanentCollaboratorError,
    TransientCollaboratorError,
)

# 503 from the completion proxy signals a missing credential.
_TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 504})


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(payload, dict) and payload.get("detail"):
        return str(payload["detail"])
    return str(payload)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _raise_for_collaborator(response: httpx.Response, *, operation: str) -> None:
    if response.status_code < 400:
        return
    message = f"{operation} failed ({response.status_code}): {_detail(response)}"
    if response.status_code in _TRANSIENT_STATUS_CODES:
        raise TransientCollaboratorError(message, retry_after_seconds=_retry_after(response))
    raise PermanentCollaboratorError(message)


class CoordinatorClient:
    """HTTP client for the coordinator service.

    Coordination calls raise ``CoordinatorError``. Collaborator calls
    (completion, upload, notify) raise transient or permanent collaborator
    errors so callers can decide what to retry.
    """

    def __init__(self, *, base_url: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def _coordination_post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        try:
            return httpx.post(
                f"{self._base_url}{path}",
                json=payload,
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise CoordinatorError(f"POST {path} failed: {exc}") from exc

    def _collaborator_post(self, path: str, payload: dict[str, Any], *, operation: str) -> Any:
        try:
            response = httpx.post(
                f"{self._base_url}{path}",
                json=payload,
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise TransientCollaboratorError(f"{operation} failed: {exc}") from exc
        _raise_for_collaborator(response, operation=operation)
        return response.json()

    def heartbeat(self) -> None:
        response = self._coordination_post("/heartbeat", {"type": "heartbeat"})
        if response.status_code >= 400:
            raise CoordinatorError(
                f"heartbeat rejected: {_detail(response)}",
                status_code=response.status_code,
            )

    def list_pending(self, *, max_age_seconds: int) -> list[Job]:
        try:
            response = httpx.get(
                f"{self._base_url}/jobs",
                params={"pending": "true", "max_age_seconds": max_age_seconds},
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise CoordinatorError(f"GET /jobs failed: {exc}") from exc

        if response.status_code >= 400:
            raise CoordinatorError(
                f"listing jobs failed: {_detail(response)}",
                status_code=response.status_code,
            )

        payload = response.json()
        items = payload.get("jobs") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise CoordinatorError("Invalid jobs payload: missing jobs")

        return [Job.from_payload(item) for item in items if isinstance(item, dict)]

    def update_status(self, job_id: str, status: JobStatus, message: str | None = None) -> Job:
        response = self._coordination_post(
            f"/jobs/{job_id}/status",
            {"status": status.value, "message": message},
        )
        if response.status_code >= 400:
            raise CoordinatorError(
                f"status update for job {job_id} failed: {_detail(response)}",
                status_code=response.status_code,
            )

        payload = response.json()
        updated = payload.get("updated") if isinstance(payload, dict) else None
        if not isinstance(updated, dict):
            raise CoordinatorError("Invalid status update payload: missing updated job")
        return Job.from_payload(updated)

    def complete(self, prompt: str, *, max_tokens: int = 50) -> str:
        payload = self._collaborator_post(
            "/completions",
            {"prompt": prompt, "max_tokens": max_tokens},
            operation="completion",
        )
        content = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise PermanentCollaboratorError("completion response is missing content")
        return content.strip()

    def upload_image(self, image_bytes: bytes, *, file_name: str) -> str:
        payload = self._collaborator_post(
            "/uploads",
            {
                "image_base64": base64.b64encode(image_bytes).decode("ascii"),
                "file_name": file_name,
            },
            operation="upload",
        )
        download_url = payload.get("download_url") if isinstance(payload, dict) else None
        if not isinstance(download_url, str) or not download_url:
            raise PermanentCollaboratorError("upload response is missing download_url")
        return download_url

    def notify(self, destination: str, text: str) -> None:
        self._collaborator_post(
            "/messages",
            {"channel": destination, "text": text},
            operation="notify",
        )
