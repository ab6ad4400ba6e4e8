"""At-rest sealing of TOTP secrets with AES-256-GCM.

Tokens are base64(nonce || ciphertext+tag). The key is always passed in,
so each store can carry its own.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_BYTES = 12
KEY_BYTES = 32


def load_key(encoded: str) -> bytes:
    """Decode a base64 master key; raises ValueError unless it is 32 bytes."""
    try:
        key = base64.b64decode(encoded, validate=True)
    except binascii.Error as exc:
        raise ValueError("master key is not valid base64") from exc
    if len(key) != KEY_BYTES:
        raise ValueError(f"master key must decode to {KEY_BYTES} bytes, got {len(key)}")
    return key


def generate_key() -> str:
    """A fresh base64 key, suitable for TOTP_MASTER_KEY."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode()


def seal(key: bytes, secret: str) -> str:
    nonce = os.urandom(NONCE_BYTES)
    return base64.b64encode(nonce + AESGCM(key).encrypt(nonce, secret.encode(), None)).decode()


def unseal(key: bytes, token: str) -> str:
    """Reverse of seal(); raises InvalidTag or ValueError on a bad token."""
    blob = base64.b64decode(token)
    return AESGCM(key).decrypt(blob[:NONCE_BYTES], blob[NONCE_BYTES:], None).decode()
