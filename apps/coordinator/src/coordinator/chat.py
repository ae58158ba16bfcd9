from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Any

from coordinator.services.coordination import CoordinationState, SubmissionOutcome
from coordinator.services.notifier import Notifier, NotifierError

_CREATE_PATTERN = re.compile(r"@blog create ['\"]([^'\"]+)['\"]")
_PICK_PATTERN = re.compile(r"@blog pick (\d+)")


class CommandKind(str, Enum):
    CREATE = "create"
    PICK = "pick"
    STATUS = "status"
    RESET = "reset"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChatCommand:
    kind: CommandKind
    title: str | None = None
    selection: int | None = None


def parse_command(text: str | None) -> ChatCommand:
    if not text:
        return ChatCommand(kind=CommandKind.UNKNOWN)

    if "@blog create" in text:
        match = _CREATE_PATTERN.search(text)
        if match is None or not match.group(1).strip():
            return ChatCommand(kind=CommandKind.UNKNOWN)
        return ChatCommand(kind=CommandKind.CREATE, title=match.group(1).strip())

    if "@blog pick" in text:
        match = _PICK_PATTERN.search(text)
        if match is None or int(match.group(1)) < 1:
            return ChatCommand(kind=CommandKind.UNKNOWN)
        return ChatCommand(kind=CommandKind.PICK, selection=int(match.group(1)))

    if "@blog status" in text:
        return ChatCommand(kind=CommandKind.STATUS)
    if "@figma reset" in text:
        return ChatCommand(kind=CommandKind.RESET)
    return ChatCommand(kind=CommandKind.UNKNOWN)


def _reply(notifier: Notifier, destination: str, text: str) -> None:
    try:
        notifier.send(destination=destination, text=text)
    except NotifierError as exc:
        print(f"[coordinator] chat reply failed destination={destination} error={exc}", flush=True)


def _submit(
    state: CoordinationState,
    notifier: Notifier,
    *,
    title: str,
    user: str,
    channel: str,
    selection: int | None = None,
) -> None:
    result = state.submit(
        title=title,
        submitter_id=user,
        destination=channel,
        selection=selection,
    )

    if result.outcome == SubmissionOutcome.UNAVAILABLE:
        _reply(
            notifier,
            channel,
            "The template plugin is not currently open. Please open it and try again.",
        )
    elif result.outcome == SubmissionOutcome.BUSY:
        _reply(
            notifier,
            channel,
            f"The system is currently in use by <@{result.owner_id}>. "
            "Please wait a moment and try again.",
        )
    elif selection is not None:
        _reply(notifier, channel, f'Rendering option {selection} for "{title}"...')
    else:
        _reply(
            notifier,
            channel,
            f'Processing your request for "{title}"... '
            "This may take a minute while several template variations are generated.",
        )


def _status_text(state: CoordinationState) -> str:
    availability = state.query_availability()
    if not availability.available:
        return "The template plugin is not currently active. Open it to process requests."

    age_ms = availability.last_heartbeat_age_ms or 0
    minutes, seconds = divmod(age_ms // 1000, 60)
    return (
        f"The template plugin is active. Last heartbeat: {minutes}m {seconds}s ago. "
        'Use @blog create "Your Title" to generate templates.'
    )


def handle_event(
    event: dict[str, Any],
    *,
    state: CoordinationState,
    notifier: Notifier,
    admin_user_ids: tuple[str, ...],
) -> CommandKind:
    if event.get("type") not in {"app_mention", "message"} or event.get("bot_id"):
        return CommandKind.UNKNOWN

    user = str(event.get("user") or "")
    channel = str(event.get("channel") or "")
    if not user or not channel:
        return CommandKind.UNKNOWN

    command = parse_command(event.get("text"))
    print(f"[coordinator] chat command kind={command.kind.value} user={user}", flush=True)

    if command.kind == CommandKind.CREATE and command.title is not None:
        _submit(state, notifier, title=command.title, user=user, channel=channel)
    elif command.kind == CommandKind.PICK:
        previous = state.list_jobs(submitter_id=user)
        if not previous:
            _reply(notifier, channel, "There is no earlier request to pick an option from.")
        else:
            _submit(
                state,
                notifier,
                title=previous[-1].title,
                user=user,
                channel=channel,
                selection=command.selection,
            )
    elif command.kind == CommandKind.STATUS:
        _reply(notifier, channel, _status_text(state))
    elif command.kind == CommandKind.RESET:
        if user in admin_user_ids:
            state.reset()
            _reply(notifier, channel, "System reset: all requests cleared and the lock released.")
        else:
            print(f"[coordinator] reset refused user={user}", flush=True)
            _reply(notifier, channel, "You are not authorized to use the reset command.")

    return command.kind
