"""
Unit tests for relaychat.crypto.

Covers the AES-256-GCM envelope: round trips, tamper and wrong-key detection,
envelope shape, and the malformed-input error reasons.
"""

import unittest

from relaychat import crypto
from relaychat.errors import CryptoError, CryptoFailure


def _flip_byte(hex_field: str, index: int = 0) -> str:
    raw = bytearray(bytes.fromhex(hex_field))
    raw[index] ^= 0x01
    return raw.hex()


class TestKeyGeneration(unittest.TestCase):

    def test_key_is_64_hex_chars(self):
        key = crypto.generate_key()
        self.assertEqual(len(key), 64)
        self.assertEqual(len(bytes.fromhex(key)), 32)

    def test_keys_differ(self):
        self.assertNotEqual(crypto.generate_key(), crypto.generate_key())


class TestRoundTrip(unittest.TestCase):

    def setUp(self):
        self.key = crypto.generate_key()

    def test_round_trip_various_texts(self):
        for text in ["hi", "", "colons : inside : text", "안녕하세요 👋", "x" * 10000]:
            with self.subTest(text=text[:20]):
                self.assertEqual(crypto.decrypt(crypto.encrypt(text, self.key), self.key), text)

    def test_fresh_iv_per_call(self):
        first = crypto.encrypt("same text", self.key)
        second = crypto.encrypt("same text", self.key)
        self.assertNotEqual(first, second)
        self.assertNotEqual(first.split(":")[0], second.split(":")[0])

    def test_envelope_shape(self):
        envelope = crypto.encrypt("hello", self.key)
        iv, tag, ciphertext = envelope.split(":")
        self.assertEqual(len(bytes.fromhex(iv)), crypto.IV_LENGTH)
        self.assertEqual(len(bytes.fromhex(tag)), crypto.TAG_LENGTH)
        self.assertEqual(len(bytes.fromhex(ciphertext)), len("hello"))
        self.assertTrue(crypto.is_encrypted(envelope))


class TestTamperDetection(unittest.TestCase):

    def setUp(self):
        self.key = crypto.generate_key()
        self.envelope = crypto.encrypt("attack at dawn", self.key)

    def assertAuthFails(self, envelope, key=None):
        with self.assertRaises(CryptoError) as cm:
            crypto.decrypt(envelope, key or self.key)
        self.assertEqual(cm.exception.reason, CryptoFailure.AUTHENTICATION_FAILED)

    def test_ciphertext_byte_flip(self):
        iv, tag, ct = self.envelope.split(":")
        for index in range(len(bytes.fromhex(ct))):
            with self.subTest(index=index):
                self.assertAuthFails(":".join((iv, tag, _flip_byte(ct, index))))

    def test_tag_byte_flip(self):
        iv, tag, ct = self.envelope.split(":")
        for index in (0, 7, 15):
            with self.subTest(index=index):
                self.assertAuthFails(":".join((iv, _flip_byte(tag, index), ct)))

    def test_truncated_ciphertext(self):
        iv, tag, ct = self.envelope.split(":")
        self.assertAuthFails(":".join((iv, tag, ct[:-2])))

    def test_wrong_key(self):
        self.assertAuthFails(self.envelope, crypto.generate_key())


class TestMalformedInput(unittest.TestCase):

    def setUp(self):
        self.key = crypto.generate_key()

    def test_wrong_field_count(self):
        for envelope in ["plain text", "a:b", "a:b:c:d"]:
            with self.subTest(envelope=envelope):
                with self.assertRaises(CryptoError) as cm:
                    crypto.decrypt(envelope, self.key)
                self.assertEqual(cm.exception.reason, CryptoFailure.MALFORMED_ENVELOPE)

    def test_non_hex_fields(self):
        with self.assertRaises(CryptoError) as cm:
            crypto.decrypt("zz:yy:xx", self.key)
        self.assertEqual(cm.exception.reason, CryptoFailure.MALFORMED_ENVELOPE)

    def test_malformed_key_on_encrypt(self):
        for key in ["", "abcd", "zz" * 32, crypto.generate_key()[:-2]]:
            with self.subTest(key=key):
                with self.assertRaises(CryptoError) as cm:
                    crypto.encrypt("hi", key)
                self.assertEqual(cm.exception.reason, CryptoFailure.MALFORMED_KEY)

    def test_malformed_key_on_decrypt(self):
        envelope = crypto.encrypt("hi", self.key)
        with self.assertRaises(CryptoError) as cm:
            crypto.decrypt(envelope, "not-a-key")
        self.assertEqual(cm.exception.reason, CryptoFailure.MALFORMED_KEY)


class TestIsEncrypted(unittest.TestCase):

    def test_plain_text_is_not_encrypted(self):
        self.assertFalse(crypto.is_encrypted("plain text"))
        self.assertFalse(crypto.is_encrypted("one:colon"))
        self.assertFalse(crypto.is_encrypted(""))

    def test_three_segments_look_encrypted(self):
        # Structural only, not a validity check.
        self.assertTrue(crypto.is_encrypted("a:b:c"))


if __name__ == "__main__":
    unittest.main()
