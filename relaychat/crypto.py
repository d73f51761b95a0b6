"""
crypto.py — tiny AES-256-GCM helpers for chat payloads.

Why this exists:
- Keep all cipher bits in one place so the server and client can call
  `encrypt/decrypt` on plain strings without worrying about nonces or tags.
- Everything that crosses the wire is hex text so it drops straight into the
  JSON `message` / `encryptionKey` fields.

Envelope format (three hex fields joined by ':'):

    iv : authTag : ciphertext

Notes:
- One key per server lifetime, 32 random bytes, shipped as 64 hex chars.
- A fresh random 16-byte IV per encrypt call; the 16-byte GCM tag is kept
  separate from the ciphertext so the envelope matches the wire format above.
- `decrypt` either returns the full plaintext or raises CryptoError; GCM checks
  the tag before releasing anything, so there is no partial output.
"""

import os
import binascii

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import CryptoError, CryptoFailure

KEY_LENGTH = 32  # bytes -> AES-256
IV_LENGTH = 16
TAG_LENGTH = 16
SEPARATOR = ":"


# -------------
# Key utils
# -------------

def generate_key() -> str:
    """Generate a fresh 256-bit key and return it as 64 hex characters."""
    return os.urandom(KEY_LENGTH).hex()


def _key_bytes(key: str) -> bytes:
    """Decode a hex key, insisting on exactly 32 bytes."""
    if not isinstance(key, str):
        raise CryptoError(CryptoFailure.MALFORMED_KEY, "key must be a hex string")
    try:
        raw = bytes.fromhex(key)
    except ValueError as exc:
        raise CryptoError(CryptoFailure.MALFORMED_KEY, "key is not valid hex") from exc
    if len(raw) != KEY_LENGTH:
        raise CryptoError(CryptoFailure.MALFORMED_KEY, f"key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


# ---------------------------
# Encryption & Decryption API
# ---------------------------

def encrypt(plaintext: str, key: str) -> str:
    """Encrypt `plaintext` under `key`, returning an `iv:tag:ciphertext` envelope."""
    aes = AESGCM(_key_bytes(key))
    iv = os.urandom(IV_LENGTH)
    # cryptography appends the tag to the ciphertext; split it back out for the wire.
    sealed = aes.encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return SEPARATOR.join((iv.hex(), tag.hex(), ciphertext.hex()))


def decrypt(envelope: str, key: str) -> str:
    """
    Reverse of encrypt().

    Raises:
        CryptoError(MALFORMED_KEY): key isn't 64 hex chars.
        CryptoError(MALFORMED_ENVELOPE): not three hex fields / wrong IV size.
        CryptoError(AUTHENTICATION_FAILED): tag didn't verify (wrong key,
            tampered or truncated data).
    """
    key_bytes = _key_bytes(key)
    if not isinstance(envelope, str):
        raise CryptoError(CryptoFailure.MALFORMED_ENVELOPE, "envelope must be a string")
    parts = envelope.split(SEPARATOR)
    if len(parts) != 3:
        raise CryptoError(CryptoFailure.MALFORMED_ENVELOPE, f"expected 3 fields, got {len(parts)}")

    try:
        iv, tag, ciphertext = (binascii.unhexlify(p) for p in parts)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(CryptoFailure.MALFORMED_ENVELOPE, "fields are not valid hex") from exc

    if len(iv) != IV_LENGTH:
        raise CryptoError(CryptoFailure.MALFORMED_ENVELOPE, f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
    if len(tag) != TAG_LENGTH:
        raise CryptoError(CryptoFailure.AUTHENTICATION_FAILED, f"tag must be {TAG_LENGTH} bytes, got {len(tag)}")

    try:
        plaintext = AESGCM(key_bytes).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CryptoError(CryptoFailure.AUTHENTICATION_FAILED, "authentication tag mismatch") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CryptoError(CryptoFailure.AUTHENTICATION_FAILED, "plaintext is not valid UTF-8") from exc


def is_encrypted(text: str) -> bool:
    """
    Structural check only: does `text` look like an `a:b:c` envelope?

    Not a cryptographic test. Callers pair it with the envelope's explicit
    `encrypted` flag and never rely on it alone.
    """
    return isinstance(text, str) and SEPARATOR in text and len(text.split(SEPARATOR)) == 3
