from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, List, Optional

import aiohttp

from .config import ClientConfig
from .events import Identity, TypingEntry
from .history import Message, MessageHistoryClient, MessagePage
from .reconciler import TypingReconciler
from .scheduler import LoopScheduler, Scheduler
from .throttle import OutboundTyping
from .transport import Transport, WebSocketTransport, build_ws_url

logger = logging.getLogger(__name__)

TypingChangeCallback = Callable[[str, List[str]], None]


def format_typing_label(names: List[str]) -> str:
    if not names:
        return ""
    verb = "is" if len(names) == 1 else "are"
    return f"{', '.join(names)} {verb} typing..."


class MessagingView:
    """The messaging page: one transport, one conversation selected at a time."""

    def __init__(
        self,
        identity: Identity,
        transport: Transport,
        scheduler: Scheduler,
        *,
        history: MessageHistoryClient | None = None,
        config: ClientConfig | None = None,
        on_typing_change: TypingChangeCallback | None = None,
    ) -> None:
        self.identity = identity
        self.config = config or ClientConfig()
        self.history = history
        self._transport = transport
        self._on_typing_change = on_typing_change
        self.reconciler = TypingReconciler(
            identity.user_id,
            scheduler,
            ttl_ms=self.config.typing_ttl_ms,
            on_change=self._typing_changed,
        )
        self.outbound = OutboundTyping(
            identity,
            transport,
            scheduler,
            throttle_ms=self.config.typing_throttle_ms,
            stop_after_ms=self.config.typing_stop_after_ms,
        )
        transport.add_listener(self.reconciler.on_remote_event)

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def conversation_id(self) -> Optional[str]:
        return self.reconciler.active_conversation

    def select_conversation(self, conversation_id: Optional[str]) -> None:
        # Pending stop timers for the previous conversation are left to fire.
        logger.debug("conversation selected: %s", conversation_id)
        self.reconciler.set_active_conversation(conversation_id)

    def keystroke(self) -> bool:
        return self.outbound.on_keystroke(self.conversation_id)

    def typing_users(self) -> List[TypingEntry]:
        return self.reconciler.typing_users()

    def typing_label(self) -> str:
        return format_typing_label(self.reconciler.typing_names())

    async def send_message(self, content: str, *, is_internal: bool = False) -> Message | None:
        text = content.strip()
        conversation_id = self.conversation_id
        if not text or conversation_id is None:
            return None
        self.outbound.stop_now(conversation_id)
        if self.history is None:
            return None
        return await self.history.create_message(conversation_id, text, is_internal=is_internal)

    async def load_history(self, *, page: int = 1, search: str | None = None) -> MessagePage | None:
        if self.history is None or self.conversation_id is None:
            return None
        return await self.history.list_messages(
            self.conversation_id,
            page=page,
            per_page=self.config.history_page_size,
            search=search,
        )

    async def mark_read(self) -> None:
        if self.history is None or self.conversation_id is None:
            return
        await self.history.mark_conversation_read(self.conversation_id)

    def close(self) -> None:
        self._transport.remove_listener(self.reconciler.on_remote_event)
        self.reconciler.close()
        self.outbound.close()

    def _typing_changed(self, conversation_id: str, entries: List[TypingEntry]) -> None:
        if self._on_typing_change is None:
            return
        self._on_typing_change(conversation_id, [entry.label for entry in entries])


@asynccontextmanager
async def mount(
    config: ClientConfig,
    identity: Identity,
    token: str,
    *,
    on_typing_change: TypingChangeCallback | None = None,
) -> AsyncIterator[MessagingView]:
    """Open the session-scoped transport and build a view around it.

    Everything created here is torn down on exit: the view's timers first, then
    the socket, then the HTTP session.
    """

    async with aiohttp.ClientSession() as session:
        transport = WebSocketTransport(
            build_ws_url(config.ws_url, token),
            session=session,
            heartbeat_s=config.heartbeat_s,
            queue_size=config.outbound_queue_size,
        )
        history = MessageHistoryClient(config.api_url, token, session=session)
        await transport.connect()
        view = MessagingView(
            identity,
            transport,
            LoopScheduler(),
            history=history,
            config=config,
            on_typing_change=on_typing_change,
        )
        try:
            yield view
        finally:
            view.close()
            await transport.close()
            await history.close()
