from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .events import Identity, OutboundTypingSignal
from .scheduler import Scheduler, TimerHandle
from .transport import Transport

logger = logging.getLogger(__name__)

DEFAULT_THROTTLE_MS = 2000
DEFAULT_STOP_AFTER_MS = 3000


def should_emit(last_emit_ms: Optional[int], now_ms: int, interval_ms: int) -> bool:
    """Return True when a ``typing`` frame may go out at ``now_ms``."""

    if last_emit_ms is None:
        return True
    return now_ms - last_emit_ms >= interval_ms


def stop_deadline(now_ms: int, quiet_ms: int) -> int:
    return now_ms + quiet_ms


@dataclass
class ThrottleState:
    last_emit_ms: Optional[int] = None
    pending_stop: Optional[TimerHandle] = None
    stop_at_ms: Optional[int] = None


class OutboundTyping:
    """Throttles the local user's ``typing`` frames and debounces ``stop_typing``.

    State is kept per conversation, so a stop timer armed in one conversation
    still fires for that conversation after the user switches away.
    """

    def __init__(
        self,
        identity: Identity,
        transport: Transport,
        scheduler: Scheduler,
        *,
        throttle_ms: int = DEFAULT_THROTTLE_MS,
        stop_after_ms: int = DEFAULT_STOP_AFTER_MS,
    ) -> None:
        self.identity = identity
        self.throttle_ms = throttle_ms
        self.stop_after_ms = stop_after_ms
        self._transport = transport
        self._scheduler = scheduler
        self._states: Dict[str, ThrottleState] = {}
        self._closed = False

    def state(self, conversation_id: str) -> ThrottleState | None:
        return self._states.get(conversation_id)

    def pending_conversations(self) -> list[str]:
        return [
            conversation_id
            for conversation_id, state in self._states.items()
            if state.pending_stop is not None and not state.pending_stop.cancelled
        ]

    def _signal(self, conversation_id: str) -> OutboundTypingSignal:
        return OutboundTypingSignal(
            conversation_id=conversation_id,
            user_id=self.identity.user_id,
            user_name=self.identity.display_name,
        )

    def on_keystroke(self, conversation_id: Optional[str]) -> bool:
        """Register one keystroke in ``conversation_id``.

        Returns True when a ``typing`` frame was sent. Without a conversation or
        an open transport the call does nothing.
        """

        if self._closed or not conversation_id or not self._transport.is_open:
            return False

        state = self._states.setdefault(conversation_id, ThrottleState())
        now_ms = self._scheduler.now_ms()
        emitted = False
        if should_emit(state.last_emit_ms, now_ms, self.throttle_ms):
            emitted = self._transport.send_json(self._signal(conversation_id).typing_frame())
            if emitted:
                state.last_emit_ms = now_ms

        if state.pending_stop is not None:
            state.pending_stop.cancel()
        state.stop_at_ms = stop_deadline(now_ms, self.stop_after_ms)
        state.pending_stop = self._scheduler.call_later(
            self.stop_after_ms,
            lambda: self._fire_stop(conversation_id, state),
        )
        return emitted

    def stop_now(self, conversation_id: Optional[str]) -> bool:
        """Send ``stop_typing`` immediately, e.g. because a message was sent."""

        if self._closed or not conversation_id:
            return False
        state = self._states.pop(conversation_id, None)
        if state is not None and state.pending_stop is not None:
            state.pending_stop.cancel()
        if not self._transport.is_open:
            return False
        return self._transport.send_json(self._signal(conversation_id).stop_frame())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for state in self._states.values():
            if state.pending_stop is not None:
                state.pending_stop.cancel()
        self._states.clear()

    def _fire_stop(self, conversation_id: str, state: ThrottleState) -> None:
        if self._closed:
            return
        if self._states.get(conversation_id) is state:
            del self._states[conversation_id]
        if not self._transport.is_open:
            logger.debug("transport closed, dropping stop_typing for %s", conversation_id)
            return
        self._transport.send_json(self._signal(conversation_id).stop_frame())
