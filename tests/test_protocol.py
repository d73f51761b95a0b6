"""
Unit tests for the wire envelope (relaychat.messages) and its JSON framing
(relaychat.framing).
"""

import json
import unittest

from relaychat import messages as m
from relaychat.errors import FrameTooLarge, ProtocolParseError, RelayChatError
from relaychat.framing import decode_frame, encode_frame


class TestEnvelopes(unittest.TestCase):

    def test_new_envelope_has_common_fields(self):
        env = m.new_envelope(m.SYSTEM, message="hello")
        self.assertEqual(set(env), {"type", "username", "message", "timestamp"})
        self.assertEqual(env["username"], m.SYSTEM_USERNAME)
        self.assertIsInstance(env["timestamp"], int)

    def test_user_list_message(self):
        users = [m.user_info("alice", "10.0.0.5", 1700000000000)]
        env = m.user_list_message(users)
        self.assertEqual(env["type"], m.USER_LIST)
        self.assertEqual(env["userList"], [{"username": "alice", "ip": "10.0.0.5", "connectedAt": 1700000000000}])
        self.assertEqual(env["message"], "")

    def test_encryption_key_message(self):
        env = m.encryption_key_message("ab" * 32)
        self.assertEqual(env["type"], m.ENCRYPTION_KEY)
        self.assertEqual(env["encryptionKey"], "ab" * 32)

    def test_chat_message_starts_unencrypted(self):
        env = m.chat_message("alice", "hi")
        self.assertEqual(env["type"], m.MESSAGE)
        self.assertFalse(env["encrypted"])

    def test_server_only_types(self):
        self.assertEqual(m.SERVER_ONLY_TYPES, {m.SYSTEM, m.USER_LIST, m.ENCRYPTION_KEY})
        self.assertTrue(m.SERVER_ONLY_TYPES <= m.MESSAGE_TYPES)


class TestFraming(unittest.TestCase):

    def test_encode_is_compact_utf8(self):
        text = encode_frame({"type": "message", "message": "안녕"})
        self.assertEqual(text, '{"type":"message","message":"안녕"}')

    def test_decode_text_and_bytes(self):
        env = m.chat_message("bob", "yo")
        self.assertEqual(decode_frame(json.dumps(env)), env)
        self.assertEqual(decode_frame(json.dumps(env).encode("utf-8")), env)

    def test_unknown_type_is_not_a_parse_error(self):
        self.assertEqual(decode_frame('{"type":"bogus"}'), {"type": "bogus"})

    def test_rejects_bad_frames(self):
        for raw in ["not json", "[1,2,3]", '"text"', "{}", '{"type": 5}', b"\xff\xfe"]:
            with self.subTest(raw=raw):
                with self.assertRaises(ProtocolParseError):
                    decode_frame(raw)

    def test_rejects_oversized_frame(self):
        with self.assertRaises(ProtocolParseError):
            decode_frame('{"type":"message","message":"' + "x" * 100 + '"}', max_size=50)

    def test_encode_refuses_frame_over_cap(self):
        env = m.chat_message("alice", "x" * 100)
        with self.assertRaises(FrameTooLarge) as cm:
            encode_frame(env, max_size=50)
        self.assertIsInstance(cm.exception, RelayChatError)
        self.assertEqual(json.loads(encode_frame(env, max_size=1000)), env)


if __name__ == "__main__":
    unittest.main()
