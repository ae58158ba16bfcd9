from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx


class CompletionClientError(RuntimeError):
    pass


class CompletionRateLimitedError(CompletionClientError):
    def __init__(self, message: str, *, retry_after_seconds: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class CompletionNotConfiguredError(CompletionClientError):
    pass


class CompletionRejectedError(CompletionClientError):
    """The provider refused the request itself; sending it again will not help."""


@dataclass(frozen=True)
class CompletionResult:
    content: str
    model: str


class CompletionClient(Protocol):
    def complete(
        self,
        *,
        prompt: str,
        max_tokens: int = 50,
        temperature: float = 0.7,
    ) -> CompletionResult: ...


def _retry_after_seconds(response: httpx.Response) -> float | None:
    header = response.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            return None
    try:
        payload = response.json()
    except ValueError:
        return None
    error = payload.get("error") if isinstance(payload, dict) else None
    value = error.get("retry_after") if isinstance(error, dict) else None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


class OpenAIChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._model = model
        self._timeout_seconds = timeout_seconds

    def complete(
        self,
        *,
        prompt: str,
        max_tokens: int = 50,
        temperature: float = 0.7,
    ) -> CompletionResult:
        if not self._api_key:
            raise CompletionNotConfiguredError("completion API key is not configured")

        try:
            response = httpx.post(
                f"{self._base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={
                    "model": self._model,
                    "messages": [
                        {"role": "system", "content": "You are a helpful assistant."},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                },
                timeout=self._timeout_seconds,
            )
        except httpx.HTTPError as exc:
            raise CompletionClientError(str(exc)) from exc

        if response.status_code == 429:
            raise CompletionRateLimitedError(
                "completion service rate limit exceeded",
                retry_after_seconds=_retry_after_seconds(response),
            )

        if response.status_code in {401, 403}:
            raise CompletionNotConfiguredError(
                f"completion API key was rejected ({response.status_code})"
            )
        if 400 <= response.status_code < 500:
            raise CompletionRejectedError(
                f"completion request rejected ({response.status_code}): {response.text.strip()}"
            )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CompletionClientError(str(exc)) from exc

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise CompletionClientError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise CompletionClientError("Invalid chat completion payload: missing assistant content")

        return CompletionResult(content=content.strip(), model=self._model)
