from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .events import STOP_TYPING, TYPING, MalformedEvent, TypingEntry, TypingEvent, decode_event
from .scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

DEFAULT_TYPING_TTL_MS = 4000

EntryKey = Tuple[str, str]
ChangeCallback = Callable[[str, List[TypingEntry]], None]


class TypingReconciler:
    """Tracks which remote users are typing, per conversation.

    Entries are keyed by ``(conversation_id, user_id)``. A ``typing`` event
    upserts the entry and replaces its expiry timer, ``stop_typing`` removes it
    and cancels the timer, and an entry that sees neither for ``ttl_ms`` is
    dropped by its timer. Events from ``local_user_id`` are ignored.
    """

    def __init__(
        self,
        local_user_id: str,
        scheduler: Scheduler,
        *,
        ttl_ms: int = DEFAULT_TYPING_TTL_MS,
        on_change: ChangeCallback | None = None,
    ) -> None:
        self.local_user_id = local_user_id
        self.ttl_ms = ttl_ms
        self._scheduler = scheduler
        self._on_change = on_change
        self._entries: Dict[EntryKey, TypingEntry] = {}
        self._timers: Dict[EntryKey, TimerHandle] = {}
        self._active: Optional[str] = None
        self._closed = False

    @property
    def active_conversation(self) -> Optional[str]:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._entries)

    def pending_timers(self) -> int:
        return sum(1 for handle in self._timers.values() if not handle.cancelled)

    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        if self._closed:
            return
        self._active = conversation_id
        if conversation_id is not None:
            self._notify(conversation_id)

    def entry(self, conversation_id: str, user_id: str) -> TypingEntry | None:
        return self._entries.get((conversation_id, user_id))

    def typing_users(self, conversation_id: Optional[str] = None) -> List[TypingEntry]:
        conversation_id = conversation_id if conversation_id is not None else self._active
        if conversation_id is None:
            return []
        return [entry for key, entry in self._entries.items() if key[0] == conversation_id]

    def typing_names(self, conversation_id: Optional[str] = None) -> List[str]:
        return [entry.label for entry in self.typing_users(conversation_id)]

    def on_remote_event(self, raw: str | bytes | Dict[str, Any]) -> bool:
        """Feed one raw frame from the transport. Returns True if state changed."""

        if self._closed:
            return False
        try:
            event = decode_event(raw)
        except MalformedEvent as exc:
            logger.debug("discarding malformed frame: %s", exc)
            return False
        if event is None:
            return False
        return self.apply(event)

    def apply(self, event: TypingEvent) -> bool:
        if self._closed:
            return False
        if event.user_id == self.local_user_id:
            return False
        if event.kind == TYPING:
            self._upsert(event)
            return True
        if event.kind == STOP_TYPING:
            return self._remove(event.key)
        return False

    def close(self) -> None:
        """Cancel all expiry timers and drop every entry; later events are ignored."""

        if self._closed:
            return
        self._closed = True
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._entries.clear()

    def _upsert(self, event: TypingEvent) -> None:
        key = event.key
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        expires_at_ms = self._scheduler.now_ms() + self.ttl_ms
        existing = self._entries.get(key)
        if existing is None:
            self._entries[key] = TypingEntry(
                conversation_id=event.conversation_id,
                user_id=event.user_id,
                user_name=event.user_name,
                expires_at_ms=expires_at_ms,
            )
        else:
            existing.expires_at_ms = expires_at_ms
            if event.user_name:
                existing.user_name = event.user_name

        self._timers[key] = self._scheduler.call_later(
            self.ttl_ms, lambda: self._expire(key, expires_at_ms)
        )
        self._notify(event.conversation_id)

    def _remove(self, key: EntryKey) -> bool:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()
        if self._entries.pop(key, None) is None:
            return False
        self._notify(key[0])
        return True

    def _expire(self, key: EntryKey, expires_at_ms: int) -> None:
        if self._closed:
            return
        entry = self._entries.get(key)
        if entry is None or entry.expires_at_ms != expires_at_ms:
            return
        logger.debug("typing entry expired: conversation=%s user=%s", key[0], key[1])
        self._timers.pop(key, None)
        del self._entries[key]
        self._notify(key[0])

    def _notify(self, conversation_id: str) -> None:
        if self._on_change is None or conversation_id != self._active:
            return
        self._on_change(conversation_id, self.typing_users(conversation_id))
