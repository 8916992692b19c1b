"""Typing-indicator presence for the messaging view."""

from .events import Identity, MalformedEvent, OutboundTypingSignal, TypingEntry, TypingEvent, decode_event
from .reconciler import TypingReconciler
from .scheduler import LoopScheduler, TimerHandle, VirtualScheduler
from .throttle import OutboundTyping
from .transport import RecordingTransport, WebSocketTransport, build_ws_url
from .view import MessagingView, mount

__all__ = [
    "Identity",
    "MalformedEvent",
    "OutboundTypingSignal",
    "TypingEntry",
    "TypingEvent",
    "decode_event",
    "TypingReconciler",
    "LoopScheduler",
    "TimerHandle",
    "VirtualScheduler",
    "OutboundTyping",
    "RecordingTransport",
    "WebSocketTransport",
    "build_ws_url",
    "MessagingView",
    "mount",
]
