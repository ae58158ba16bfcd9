from __future__ import annotations

from typing import Protocol

import httpx


class NotifierError(RuntimeError):
    pass


class NotifierConfigurationError(NotifierError):
    """Raised when retrying cannot help, such as a missing token or an unusable channel."""


class Notifier(Protocol):
    def send(self, *, destination: str, text: str) -> None: ...


_SLACK_ERROR_HINTS = {
    "channel_not_found": "Channel not found. Make sure the bot is invited to the channel.",
    "not_in_channel": "Bot is not in this channel. Please invite the bot to the channel.",
    "missing_scope": "Bot is missing required permissions. Check the Slack app scopes.",
    "invalid_auth": "Bot token is invalid. Check SLACK_BOT_TOKEN.",
    "not_authed": "No authentication token provided. Check SLACK_BOT_TOKEN.",
    "token_revoked": "Bot token has been revoked. Reinstall the Slack app.",
    "account_inactive": "Bot account is inactive. Reinstall the Slack app.",
    "is_archived": "Channel has been archived.",
}


class SlackNotifier:
    def __init__(self, *, bot_token: str, api_url: str, timeout_seconds: float = 10.0) -> None:
        self._bot_token = bot_token
        self._api_url = api_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def send(self, *, destination: str, text: str) -> None:
        if not self._bot_token:
            raise NotifierConfigurationError("No bot token configured")

        try:
            response = httpx.post(
                f"{self._api_url}/chat.postMessage",
                headers={"Authorization": f"Bearer {self._bot_token}"},
                json={"channel": destination, "text": text},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotifierError(str(exc)) from exc

        payload = response.json()
        if not isinstance(payload, dict) or not payload.get("ok"):
            error = str(payload.get("error")) if isinstance(payload, dict) else None
            hint = _SLACK_ERROR_HINTS.get(error or "")
            if hint is not None:
                raise NotifierConfigurationError(hint)
            raise NotifierError(f"Slack error: {error}")
