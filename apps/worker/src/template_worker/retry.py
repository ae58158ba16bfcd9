from __future__ import annotations

from dataclasses import dataclass
from random import random
from time import sleep as _sleep
from typing import Callable, TypeVar

from template_worker.errors import CollaboratorError, CoordinatorError, is_transient

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_seconds: float = 1.0
    max_seconds: float = 8.0
    jitter_seconds: float = 1.0


def backoff_delay(
    policy: RetryPolicy,
    attempt: int,
    *,
    retry_after_seconds: float | None = None,
    rand: Callable[[], float] = random,
) -> float:
    delay = min(policy.base_seconds * (2 ** (attempt - 1)), policy.max_seconds)
    if retry_after_seconds is not None:
        delay = max(delay, min(retry_after_seconds, policy.max_seconds))
    return delay + rand() * policy.jitter_seconds


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    label: str,
    sleep: Callable[[float], None] = _sleep,
    rand: Callable[[], float] = random,
) -> T:
    attempt = 1
    while True:
        try:
            return operation()
        except (CollaboratorError, CoordinatorError) as exc:
            if not is_transient(exc):
                raise
            if attempt >= policy.attempts:
                print(
                    f"[worker] {label} failed after attempts={attempt} error={exc}",
                    flush=True,
                )
                raise

            delay = backoff_delay(
                policy,
                attempt,
                retry_after_seconds=getattr(exc, "retry_after_seconds", None),
                rand=rand,
            )
            print(
                f"[worker] {label} failed attempt={attempt}/{policy.attempts} error={exc}; "
                f"retrying in {delay:.1f}s",
                flush=True,
            )
            sleep(delay)
            attempt += 1
