import unittest

from typing_presence.config import ClientConfig
from typing_presence.events import Identity
from typing_presence.history import Message, MessagePage
from typing_presence.scheduler import VirtualScheduler
from typing_presence.transport import RecordingTransport
from typing_presence.view import MessagingView, format_typing_label


class FakeHistory:
    def __init__(self):
        self.calls = []

    async def create_message(self, client_id, content, *, is_internal=False):
        self.calls.append(("create", client_id, content, is_internal))
        return Message(id="m1", client_id=client_id, sender_id="me", content=content, is_internal=is_internal)

    async def list_messages(self, client_id, *, page=1, per_page=100, search=None):
        self.calls.append(("list", client_id, page, per_page, search))
        return MessagePage(messages=[], page=page, per_page=per_page, total=0, total_pages=1)

    async def mark_conversation_read(self, client_id):
        self.calls.append(("read", client_id))


def typing(conv_id, user_id, user_name):
    return {"type": "typing", "data": {"client_id": conv_id, "user_id": user_id, "user_name": user_name}}


def test_format_typing_label():
    assert format_typing_label([]) == ""
    assert format_typing_label(["Bea"]) == "Bea is typing..."
    assert format_typing_label(["Bea", "Dee"]) == "Bea, Dee are typing..."


class MessagingViewTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.scheduler = VirtualScheduler()
        self.transport = RecordingTransport()
        self.history = FakeHistory()
        self.labels = []
        self.view = MessagingView(
            Identity(user_id="me", display_name="Ada Lovelace"),
            self.transport,
            self.scheduler,
            history=self.history,
            config=ClientConfig(history_page_size=25),
            on_typing_change=lambda conv_id, names: self.labels.append((conv_id, names)),
        )

    def test_transport_frames_drive_typing_label(self):
        self.view.select_conversation("c1")
        self.transport.deliver('{"type": "connected", "user_id": "me"}')
        self.transport.deliver(typing("c1", "b", "Bea"))
        self.transport.deliver(typing("c1", "me", "Ada Lovelace"))
        self.transport.deliver(typing("c1", "d", "Dee"))

        self.assertEqual(self.view.typing_label(), "Bea, Dee are typing...")
        self.assertEqual(self.labels[-1], ("c1", ["Bea", "Dee"]))

        self.scheduler.advance_to(4000)
        self.assertEqual(self.view.typing_label(), "")

    def test_keystroke_requires_selected_conversation(self):
        self.assertFalse(self.view.keystroke())
        self.view.select_conversation("c1")
        self.assertTrue(self.view.keystroke())
        self.assertEqual(self.transport.frames_of("typing")[0]["data"]["client_id"], "c1")

    def test_configured_timings_are_used(self):
        view = MessagingView(
            Identity(user_id="me", display_name="Me"),
            RecordingTransport(),
            self.scheduler,
            config=ClientConfig(typing_ttl_ms=1000),
        )
        view.select_conversation("c1")
        view.transport.deliver(typing("c1", "b", "Bea"))
        self.scheduler.advance_to(1000)
        self.assertEqual(view.typing_label(), "")

    async def test_send_message_stops_typing_then_creates_message(self):
        self.view.select_conversation("c1")
        self.view.keystroke()

        message = await self.view.send_message("  hello  ", is_internal=True)

        self.assertEqual(message.content, "hello")
        self.assertEqual(self.history.calls, [("create", "c1", "hello", True)])
        self.assertEqual([frame["type"] for frame in self.transport.sent], ["typing", "stop_typing"])
        self.scheduler.advance_to(10_000)
        self.assertEqual(len(self.transport.frames_of("stop_typing")), 1)

    async def test_blank_message_or_no_selection_is_ignored(self):
        self.assertIsNone(await self.view.send_message("hello"))
        self.view.select_conversation("c1")
        self.assertIsNone(await self.view.send_message("   "))
        self.assertEqual(self.history.calls, [])
        self.assertEqual(self.transport.sent, [])

    async def test_history_calls_use_active_conversation(self):
        self.assertIsNone(await self.view.load_history())

        self.view.select_conversation("c9")
        page = await self.view.load_history(page=2, search="invoice")
        await self.view.mark_read()

        self.assertEqual(page.page, 2)
        self.assertEqual(self.history.calls, [("list", "c9", 2, 25, "invoice"), ("read", "c9")])

    def test_close_detaches_from_transport(self):
        self.view.select_conversation("c1")
        self.view.keystroke()
        self.view.close()

        self.transport.deliver(typing("c1", "b", "Bea"))
        self.scheduler.advance_to(10_000)

        self.assertEqual(self.view.typing_label(), "")
        self.assertEqual(self.transport.frames_of("stop_typing"), [])
        self.assertEqual(self.scheduler.pending(), 0)
