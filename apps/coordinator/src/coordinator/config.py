from dataclasses import dataclass
from functools import lru_cache
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


def _to_list(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    pending_max_age_seconds: int
    job_max_age_seconds: int
    terminal_max_age_seconds: int
    lock_timeout_seconds: int
    heartbeat_timeout_seconds: float
    allowed_origins: tuple[str, ...]
    allow_credentials: bool
    admin_user_ids: tuple[str, ...]
    public_url: str
    upload_dir: str
    slack_bot_token: str
    slack_api_url: str
    openai_api_key: str
    openai_base_url: str
    openai_model: str
    openai_timeout_seconds: float


@lru_cache
def get_settings() -> Settings:
    return Settings(
        pending_max_age_seconds=_to_int(
            os.getenv("COORDINATOR_PENDING_MAX_AGE_SECONDS"), default=180, minimum=1
        ),
        job_max_age_seconds=_to_int(
            os.getenv("COORDINATOR_JOB_MAX_AGE_SECONDS"), default=600, minimum=1
        ),
        terminal_max_age_seconds=_to_int(
            os.getenv("COORDINATOR_TERMINAL_MAX_AGE_SECONDS"), default=120, minimum=0
        ),
        lock_timeout_seconds=_to_int(
            os.getenv("COORDINATOR_LOCK_TIMEOUT_SECONDS"), default=300, minimum=1
        ),
        heartbeat_timeout_seconds=_to_float(
            os.getenv("COORDINATOR_HEARTBEAT_TIMEOUT_SECONDS"), default=10.0, minimum=0.5
        ),
        allowed_origins=_to_list(os.getenv("COORDINATOR_ALLOWED_ORIGINS"), default=("*",)),
        allow_credentials=_to_bool(os.getenv("COORDINATOR_ALLOW_CREDENTIALS"), default=False),
        admin_user_ids=_to_list(os.getenv("COORDINATOR_ADMIN_USER_IDS"), default=()),
        public_url=os.getenv("COORDINATOR_PUBLIC_URL", "http://localhost:8000").rstrip("/"),
        upload_dir=os.getenv("COORDINATOR_UPLOAD_DIR", "data/uploads"),
        slack_bot_token=os.getenv("SLACK_BOT_TOKEN", ""),
        slack_api_url=os.getenv("SLACK_API_URL", "https://slack.com/api"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o"),
        openai_timeout_seconds=_to_float(
            os.getenv("OPENAI_TIMEOUT_SECONDS"), default=30.0, minimum=1.0
        ),
    )
