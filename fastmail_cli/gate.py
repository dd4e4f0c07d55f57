"""Two-phase confirmation for side-effecting operations.

An automated caller must invoke a gated operation twice with the same
parameters: once with ``preview`` (read-only preparation, rendered text and a
confirmation token) and once with ``confirm`` (execution).  Nothing is kept
between the two calls; confirm re-derives the action from its parameters.
"""

import hashlib
import json
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from fastmail_cli.errors import ConfirmationMismatch, InvalidMode

logger = logging.getLogger(__name__)


class Mode(str, Enum):
    PREVIEW = "preview"
    CONFIRM = "confirm"


class ActionKind(str, Enum):
    SEND = "send"
    REPLY = "reply"
    FORWARD = "forward"
    MOVE = "move"
    MARK_SPAM = "mark-spam"
    SET_MASKED_EMAIL_STATE = "set-masked-email-state"
    DELETE_MASKED_EMAIL = "delete-masked-email"


class ActionState(str, Enum):
    DRAFTED = "drafted"
    CONFIRMED = "confirmed"


def parse_mode(value: str | Mode) -> Mode:
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        raise InvalidMode(str(value)) from None


@dataclass(frozen=True)
class PendingAction:
    kind: ActionKind
    payload: Mapping[str, Any]
    state: ActionState = ActionState.DRAFTED

    def confirmed(self) -> "PendingAction":
        return replace(self, state=ActionState.CONFIRMED)

    @property
    def token(self) -> str:
        """Short digest of kind and payload; identical parameters give identical tokens."""
        canonical = json.dumps(
            {"kind": self.kind.value, "payload": self.payload},
            sort_keys=True,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class GateOutcome:
    action: PendingAction
    text: str
    executed: bool
    result: Any = None


CONFIRM_HINT = (
    'To proceed, call this tool again with action: "confirm" and the same parameters.'
)

Renderer = Callable[[PendingAction], str]
Executor = Callable[[PendingAction], Awaitable[Any]]


async def run_gated(
    kind: ActionKind,
    mode: str | Mode,
    payload: Mapping[str, Any],
    *,
    render: Renderer,
    execute: Executor,
    describe_result: Callable[[Any], str] | None = None,
    token: str | None = None,
    confirm_hint: str = CONFIRM_HINT,
) -> GateOutcome:
    """Preview or execute one action.

    ``render`` must not mutate anything; ``execute`` runs only in confirm
    mode, and only when ``token`` (if given) matches the re-derived action.
    """
    mode = parse_mode(mode)
    action = PendingAction(kind=kind, payload=dict(payload))

    if mode is Mode.PREVIEW:
        logger.debug("Previewing %s action %s", kind.value, action.token)
        text = (
            f"{render(action)}\n\n"
            f"Confirmation token: {action.token}\n"
            f"{confirm_hint}"
        )
        return GateOutcome(action=action, text=text, executed=False)

    if token and token != action.token:
        raise ConfirmationMismatch()

    confirmed = action.confirmed()
    result = await execute(confirmed)
    logger.info("Executed %s action %s", kind.value, confirmed.token)
    text = describe_result(result) if describe_result else f"{kind.value} completed."
    return GateOutcome(action=confirmed, text=text, executed=True, result=result)
