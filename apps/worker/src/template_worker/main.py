from __future__ import annotations

import os
from pathlib import Path
from threading import Event, Thread

from shared.coordination import CoordinationService
from template_worker.clients import CoordinatorClient
from template_worker.errors import CoordinatorError
from template_worker.poller import Poller
from template_worker.rendering import AssetCatalog, PillowTemplateRenderer
from template_worker.retry import RetryPolicy, backoff_delay
from template_worker.selection import build_tie_breaker


def _get_coordinator_url() -> str:
    return os.getenv("WORKER_COORDINATOR_URL", "http://localhost:8000")


def _get_heartbeat_seconds() -> float:
    value = os.getenv("WORKER_HEARTBEAT_SECONDS", "5")
    return max(1.0, float(value))


def _get_poll_seconds() -> float:
    value = os.getenv("WORKER_POLL_SECONDS", "5")
    return max(1.0, float(value))


def _get_pending_max_age_seconds() -> int:
    value = os.getenv("WORKER_PENDING_MAX_AGE_SECONDS", "180")
    return max(1, int(value))


def _get_processed_retention_seconds() -> int:
    value = os.getenv("WORKER_PROCESSED_RETENTION_SECONDS", "600")
    return max(1, int(value))


def _get_http_timeout_seconds() -> float:
    value = os.getenv("WORKER_HTTP_TIMEOUT_SECONDS", "30")
    return max(1.0, float(value))


def _get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=max(1, int(os.getenv("WORKER_RETRY_ATTEMPTS", "3"))),
        base_seconds=max(0.1, float(os.getenv("WORKER_RETRY_BASE_SECONDS", "1"))),
        max_seconds=max(0.5, float(os.getenv("WORKER_RETRY_MAX_SECONDS", "8"))),
        jitter_seconds=max(0.0, float(os.getenv("WORKER_RETRY_JITTER_SECONDS", "1"))),
    )


def _get_asset_dir() -> Path:
    return Path(os.getenv("WORKER_ASSET_DIR", "data/assets"))


def _get_chunk_size() -> int:
    value = os.getenv("WORKER_CHUNK_SIZE", "25")
    return max(1, int(value))


def _get_max_picks() -> int:
    value = os.getenv("WORKER_MAX_PICKS", "5")
    return max(1, int(value))


def _get_tie_breaker_name() -> str:
    return os.getenv("WORKER_TIE_BREAKER", "least_used").strip().lower()


def send_heartbeat_once(coordinator: CoordinationService, policy: RetryPolicy, stop_event: Event) -> bool:
    attempt = 1
    while not stop_event.is_set():
        try:
            coordinator.heartbeat()
            return True
        except CoordinatorError as exc:
            if attempt >= policy.attempts:
                print(f"[worker] heartbeat failed attempts={attempt} error={exc}", flush=True)
                return False
            delay = backoff_delay(policy, attempt)
            print(
                f"[worker] heartbeat failed attempt={attempt} error={exc}; retrying in {delay:.1f}s",
                flush=True,
            )
            stop_event.wait(delay)
            attempt += 1
    return False


def _heartbeat_loop(
    coordinator: CoordinationService,
    policy: RetryPolicy,
    interval_seconds: float,
    stop_event: Event,
) -> None:
    while not stop_event.is_set():
        send_heartbeat_once(coordinator, policy, stop_event)
        stop_event.wait(interval_seconds)


def run_poll_loop(poller: Poller, poll_seconds: float, stop_event: Event) -> None:
    while not stop_event.is_set():
        poller.poll_once()
        stop_event.wait(poll_seconds)


def build_poller(client: CoordinatorClient) -> Poller:
    catalog = AssetCatalog(_get_asset_dir())
    return Poller(
        coordinator=client,
        collaborators=client,
        assets=catalog,
        renderer=PillowTemplateRenderer(catalog),
        tie_breaker=build_tie_breaker(_get_tie_breaker_name()),
        retry_policy=_get_retry_policy(),
        pending_max_age_seconds=_get_pending_max_age_seconds(),
        processed_retention_seconds=_get_processed_retention_seconds(),
        chunk_size=_get_chunk_size(),
        max_picks=_get_max_picks(),
    )


def main() -> None:
    client = CoordinatorClient(
        base_url=_get_coordinator_url(),
        timeout_seconds=_get_http_timeout_seconds(),
    )
    poller = build_poller(client)
    stop_event = Event()

    heartbeat_thread = Thread(
        target=_heartbeat_loop,
        args=(client, _get_retry_policy(), _get_heartbeat_seconds(), stop_event),
        daemon=True,
    )
    heartbeat_thread.start()
    print(f"[worker] started coordinator_url={_get_coordinator_url()}", flush=True)

    try:
        run_poll_loop(poller, _get_poll_seconds(), stop_event)
    except KeyboardInterrupt:
        print("[worker] stopping", flush=True)
    finally:
        stop_event.set()


if __name__ == "__main__":
    main()
