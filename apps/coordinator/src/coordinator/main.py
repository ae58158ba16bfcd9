from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from coordinator.chat import handle_event
from coordinator.config import get_settings
from coordinator.models import JobRecord
from coordinator.services.completion import (
    CompletionClient,
    CompletionClientError,
    CompletionNotConfiguredError,
    CompletionRateLimitedError,
    CompletionRejectedError,
    OpenAIChatClient,
)
from coordinator.services.coordination import CoordinationState, SubmissionOutcome
from coordinator.services.job_store import InvalidStatusTransitionError, JobNotFoundError
from coordinator.services.notifier import (
    Notifier,
    NotifierConfigurationError,
    NotifierError,
    SlackNotifier,
)
from coordinator.services.uploads import UploadError, UploadStore
from shared.coordination import JobStatus

app = FastAPI(title="Template Relay Coordinator", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().allowed_origins),
    allow_credentials=get_settings().allow_credentials,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    max_age=86400,
)


class SubmitJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1)
    submitter_id: str = Field(min_length=1)
    destination: str = Field(min_length=1)
    selection: int | None = Field(default=None, ge=1)


class HeartbeatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["heartbeat"] = "heartbeat"


class UpdateStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: JobStatus
    message: str | None = None


class MessageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel: str = Field(min_length=1)
    text: str = Field(min_length=1)


class CompletionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    prompt: str = Field(min_length=1)
    max_tokens: int = Field(default=50, ge=1, le=4096)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class UploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    image_base64: str = Field(min_length=1)
    file_name: str = Field(min_length=1)


@lru_cache
def get_state() -> CoordinationState:
    return CoordinationState(get_settings())


def get_notifier() -> Notifier:
    settings = get_settings()
    return SlackNotifier(bot_token=settings.slack_bot_token, api_url=settings.slack_api_url)


def get_completion_client() -> CompletionClient:
    settings = get_settings()
    return OpenAIChatClient(
        base_url=settings.openai_base_url,
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        timeout_seconds=settings.openai_timeout_seconds,
    )


def get_upload_store() -> UploadStore:
    return UploadStore(upload_dir=Path(get_settings().upload_dir))


StateDep = Annotated[CoordinationState, Depends(get_state)]


def _job_detail(job: JobRecord) -> dict[str, Any]:
    return job.to_job().to_payload()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/jobs")
def submit_job(request: SubmitJobRequest, state: StateDep) -> JSONResponse:
    result = state.submit(
        title=request.title,
        submitter_id=request.submitter_id,
        destination=request.destination,
        selection=request.selection,
    )

    if result.outcome == SubmissionOutcome.UNAVAILABLE:
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Template plugin is not currently open. Open it and try again.",
                "code": "unavailable",
                "available": False,
            },
        )
    if result.outcome == SubmissionOutcome.BUSY:
        return JSONResponse(
            status_code=423,
            content={
                "detail": "System is currently in use by another user. Please wait and try again.",
                "code": "busy",
                "owner_id": result.owner_id,
            },
        )
    if result.job is None:
        return JSONResponse(
            status_code=500,
            content={"detail": "submission was accepted without a job", "code": "internal_error"},
        )

    return JSONResponse(
        status_code=202,
        content={"accepted": True, "job": _job_detail(result.job)},
    )


@app.post("/heartbeat")
def heartbeat(state: StateDep, request: HeartbeatRequest | None = None) -> dict[str, bool]:
    state.heartbeat()
    return {"accepted": True}


@app.get("/jobs")
def list_jobs(
    state: StateDep,
    status: JobStatus | None = Query(default=None),
    submitter_id: str | None = Query(default=None),
    pending: bool = Query(default=False),
    max_age_seconds: int | None = Query(default=None, ge=1),
) -> dict[str, list[dict[str, Any]]]:
    jobs = state.list_jobs(
        status=status,
        submitter_id=submitter_id,
        pending_only=pending,
        pending_max_age_seconds=max_age_seconds,
    )
    return {"jobs": [_job_detail(job) for job in jobs]}


@app.get("/jobs/{job_id}")
def get_job(job_id: str, state: StateDep) -> JSONResponse:
    job = state.get_job(job_id)
    if job is None:
        return JSONResponse(
            status_code=404,
            content={"detail": "job not found", "error": "not_found"},
        )
    return JSONResponse(status_code=200, content=_job_detail(job))


@app.post("/jobs/{job_id}/status")
def update_job_status(job_id: str, request: UpdateStatusRequest, state: StateDep) -> JSONResponse:
    try:
        job = state.update_status(job_id, request.status, request.message)
    except JobNotFoundError as exc:
        print(f"[coordinator] status update for unknown job job_id={job_id}", flush=True)
        return JSONResponse(
            status_code=404,
            content={"detail": str(exc), "error": "not_found"},
        )
    except InvalidStatusTransitionError as exc:
        print(f"[coordinator] rejected status update job_id={job_id} error={exc}", flush=True)
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "error": "invalid_transition"},
        )

    return JSONResponse(status_code=200, content={"updated": _job_detail(job)})


@app.get("/availability")
def query_availability(state: StateDep) -> dict[str, Any]:
    snapshot = state.query_availability()
    return {
        "available": snapshot.available,
        "last_heartbeat_age_ms": snapshot.last_heartbeat_age_ms,
    }


@app.get("/lock")
def query_lock(state: StateDep) -> dict[str, Any]:
    lock = state.current_lock()
    if lock is None:
        return {"held": False, "owner_id": None, "acquired_at": None}
    return {"held": True, "owner_id": lock.owner_id, "acquired_at": lock.acquired_at.isoformat()}


@app.post("/reset")
def reset(state: StateDep) -> dict[str, bool]:
    state.reset()
    return {"ok": True}


@app.post("/chat/events")
def chat_events(
    payload: dict[str, Any],
    background_tasks: BackgroundTasks,
    state: StateDep,
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> dict[str, Any]:
    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    event = payload.get("event")
    if isinstance(event, dict):
        background_tasks.add_task(
            handle_event,
            event,
            state=state,
            notifier=notifier,
            admin_user_ids=get_settings().admin_user_ids,
        )
    return {"ok": True}


@app.post("/messages")
def send_message(
    request: MessageRequest,
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> dict[str, bool]:
    try:
        notifier.send(destination=request.channel, text=request.text)
    except NotifierConfigurationError as exc:
        raise HTTPException(status_code=503, detail=f"Notification not possible: {exc}") from exc
    except NotifierError as exc:
        raise HTTPException(status_code=502, detail=f"Notification failed: {exc}") from exc
    return {"ok": True}


@app.post("/completions")
def complete(
    request: CompletionRequest,
    completion_client: Annotated[CompletionClient, Depends(get_completion_client)],
) -> JSONResponse:
    try:
        result = completion_client.complete(
            prompt=request.prompt,
            max_tokens=request.max_tokens,
            temperature=request.temperature,
        )
    except CompletionRateLimitedError as exc:
        headers = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(int(exc.retry_after_seconds))
        return JSONResponse(status_code=429, content={"detail": str(exc)}, headers=headers)
    except CompletionNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except CompletionRejectedError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except CompletionClientError as exc:
        raise HTTPException(status_code=502, detail=f"Completion request failed: {exc}") from exc

    return JSONResponse(status_code=200, content={"content": result.content, "model": result.model})


@app.post("/uploads", status_code=201)
def upload_image(
    request: UploadRequest,
    upload_store: Annotated[UploadStore, Depends(get_upload_store)],
) -> dict[str, str]:
    try:
        stored_name = upload_store.save_base64(
            image_base64=request.image_base64,
            file_name=request.file_name,
        )
    except UploadError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    download_url = f"{get_settings().public_url}/uploads/{stored_name}"
    print(f"[coordinator] image uploaded file_name={stored_name}", flush=True)
    return {"download_url": download_url, "file_name": stored_name}


@app.get("/uploads/{file_name}")
def download_image(
    file_name: str,
    upload_store: Annotated[UploadStore, Depends(get_upload_store)],
) -> FileResponse:
    path = upload_store.resolve(file_name)
    if path is None:
        raise HTTPException(status_code=404, detail="upload not found")
    return FileResponse(path=path, media_type="image/png", filename=file_name)


def run() -> None:
    import uvicorn

    uvicorn.run("coordinator.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
