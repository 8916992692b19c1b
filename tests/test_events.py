import json
import unittest

from typing_presence.events import (
    STOP_TYPING,
    TYPING,
    Identity,
    MalformedEvent,
    OutboundTypingSignal,
    decode_event,
)


class DecodeEventTests(unittest.TestCase):
    def test_typing_frame_decodes_from_text(self):
        raw = json.dumps({"type": "typing", "data": {"client_id": "c1", "user_id": "u2", "user_name": "Bea Ortiz"}})

        event = decode_event(raw)

        self.assertEqual(event.kind, TYPING)
        self.assertEqual(event.key, ("c1", "u2"))
        self.assertEqual(event.user_name, "Bea Ortiz")

    def test_stop_typing_without_name_decodes_from_bytes(self):
        raw = b'{"type": "stop_typing", "data": {"client_id": "c1", "user_id": "u2"}}'

        event = decode_event(raw)

        self.assertEqual(event.kind, STOP_TYPING)
        self.assertIsNone(event.user_name)

    def test_other_frame_types_are_not_typing_events(self):
        for frame in (
            {"type": "connected", "user_id": "u1"},
            {"type": "pong"},
            {"type": "message", "data": {"id": "m1"}},
            {"data": {"client_id": "c1", "user_id": "u2"}},
        ):
            with self.subTest(frame=frame):
                self.assertIsNone(decode_event(frame))

    def test_malformed_frames_raise(self):
        for raw in (
            "not json",
            b"\xff\xfe",
            "[1, 2]",
            '"typing"',
            '{"type": "typing"}',
            '{"type": "typing", "data": []}',
            '{"type": "typing", "data": {"user_id": "u2"}}',
            '{"type": "typing", "data": {"client_id": "", "user_id": "u2"}}',
            '{"type": "stop_typing", "data": {"client_id": "c1", "user_id": 7}}',
            '{"type": [], "data": {}}',
            '{"type": {"kind": "typing"}, "data": {"client_id": "c1", "user_id": "u2"}}',
            '{"type": "typing", "data": "c1"}',
            '{"type": "typing", "data": {"client_id": ["c1"], "user_id": "u2"}}',
            '[' * 100_000 + ']' * 100_000,
        ):
            with self.subTest(raw=raw):
                with self.assertRaises(MalformedEvent):
                    decode_event(raw)

    def test_blank_user_name_is_treated_as_missing(self):
        event = decode_event({"type": "typing", "data": {"client_id": "c1", "user_id": "u2", "user_name": ""}})
        self.assertIsNone(event.user_name)


class OutboundFrameTests(unittest.TestCase):
    def test_frames_match_wire_shapes(self):
        signal = OutboundTypingSignal(conversation_id="c1", user_id="u1", user_name="Ada Lovelace")

        self.assertEqual(
            signal.typing_frame(),
            {"type": "typing", "data": {"client_id": "c1", "user_id": "u1", "user_name": "Ada Lovelace"}},
        )
        self.assertEqual(signal.stop_frame(), {"type": "stop_typing", "data": {"client_id": "c1", "user_id": "u1"}})


class IdentityTests(unittest.TestCase):
    def test_display_name_joins_first_and_last(self):
        identity = Identity.from_user({"id": "u1", "first_name": "Ada", "last_name": "Lovelace"})
        self.assertEqual(identity, Identity(user_id="u1", display_name="Ada Lovelace"))

    def test_display_name_falls_back_to_user_id(self):
        identity = Identity.from_user({"id": 42, "first_name": "", "last_name": None})
        self.assertEqual(identity.display_name, "42")
