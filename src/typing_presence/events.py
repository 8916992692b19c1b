from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

TYPING = "typing"
STOP_TYPING = "stop_typing"
TYPING_KINDS = frozenset({TYPING, STOP_TYPING})


class MalformedEvent(ValueError):
    pass


@dataclass(frozen=True)
class Identity:
    """The authenticated user as seen by the messaging view."""

    user_id: str
    display_name: str

    @classmethod
    def from_user(cls, payload: Dict[str, Any]) -> "Identity":
        user_id = str(payload["id"])
        first = payload.get("first_name") or ""
        last = payload.get("last_name") or ""
        display_name = f"{first} {last}".strip()
        return cls(user_id=user_id, display_name=display_name or user_id)


@dataclass(frozen=True)
class TypingEvent:
    """A decoded ``typing`` or ``stop_typing`` frame."""

    conversation_id: str
    user_id: str
    user_name: Optional[str]
    kind: str

    @property
    def key(self) -> tuple[str, str]:
        return (self.conversation_id, self.user_id)


@dataclass
class TypingEntry:
    conversation_id: str
    user_id: str
    user_name: Optional[str]
    expires_at_ms: int

    @property
    def label(self) -> str:
        return self.user_name or self.user_id


@dataclass(frozen=True)
class OutboundTypingSignal:
    conversation_id: str
    user_id: str
    user_name: str

    def typing_frame(self) -> Dict[str, Any]:
        return {
            "type": TYPING,
            "data": {
                "client_id": self.conversation_id,
                "user_id": self.user_id,
                "user_name": self.user_name,
            },
        }

    def stop_frame(self) -> Dict[str, Any]:
        return {
            "type": STOP_TYPING,
            "data": {"client_id": self.conversation_id, "user_id": self.user_id},
        }


def _require_str(data: Dict[str, Any], field: str) -> str:
    value = data.get(field)
    if not isinstance(value, str) or not value:
        raise MalformedEvent(f"{field} must be a non-empty string")
    return value


def decode_event(raw: str | bytes | Dict[str, Any]) -> TypingEvent | None:
    """Decode one inbound frame.

    Returns ``None`` for well-formed frames that are not typing signals
    (``connected``, ``pong``, ``message`` and friends) and raises
    :class:`MalformedEvent` when the frame cannot be interpreted.
    """

    if isinstance(raw, (str, bytes)):
        try:
            frame = json.loads(raw)
        except (ValueError, UnicodeDecodeError, RecursionError) as exc:
            raise MalformedEvent(f"invalid json: {exc}") from exc
    else:
        frame = raw

    if not isinstance(frame, dict):
        raise MalformedEvent("frame must be a json object")

    kind = frame.get("type")
    if kind is None:
        return None
    if not isinstance(kind, str):
        raise MalformedEvent("type must be a string")
    if kind not in TYPING_KINDS:
        return None

    data = frame.get("data")
    if not isinstance(data, dict):
        raise MalformedEvent("data must be a json object")

    conversation_id = _require_str(data, "client_id")
    user_id = _require_str(data, "user_id")
    user_name = data.get("user_name")
    if not isinstance(user_name, str) or not user_name:
        user_name = None
    return TypingEvent(conversation_id=conversation_id, user_id=user_id, user_name=user_name, kind=kind)
