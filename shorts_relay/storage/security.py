"""Encryption helpers for destination refresh tokens stored at rest."""

from __future__ import annotations

import base64
from functools import lru_cache
import hashlib
import hmac
import os

from shorts_relay.core.config import get_settings


_NONCE_SIZE = 16
_MAC_SIZE = 32


@lru_cache(maxsize=1)
def get_token_key() -> bytes:
    settings = get_settings()
    seed = settings.token_encryption_key.strip() or settings.secret_key or "shorts-relay-dev-token-key"
    return hashlib.sha256(seed.encode("utf-8")).digest()


def _keystream(key: bytes, nonce: bytes, length: int) -> bytes:
    stream = b""
    counter = 0
    while len(stream) < length:
        stream += hmac.new(key, nonce + counter.to_bytes(4, "big"), digestmod=hashlib.sha256).digest()
        counter += 1
    return stream[:length]


def encrypt_token(secret_value: str) -> str:
    key = get_token_key()
    nonce = os.urandom(_NONCE_SIZE)
    plaintext = secret_value.encode("utf-8")
    ciphertext = bytes(a ^ b for a, b in zip(plaintext, _keystream(key, nonce, len(plaintext))))
    mac = hmac.new(key, nonce + ciphertext, digestmod=hashlib.sha256).digest()
    return base64.urlsafe_b64encode(nonce + mac + ciphertext).decode("ascii")


def decrypt_token(ciphertext: str) -> str:
    """Reverse ``encrypt_token``; raises ``ValueError`` on tampered or foreign payloads."""

    key = get_token_key()
    try:
        blob = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except Exception as exc:
        raise ValueError("Invalid encrypted token payload") from exc

    header = _NONCE_SIZE + _MAC_SIZE
    if len(blob) < header:
        raise ValueError("Invalid encrypted token payload")
    nonce, mac, encrypted = blob[:_NONCE_SIZE], blob[_NONCE_SIZE:header], blob[header:]
    expected_mac = hmac.new(key, nonce + encrypted, digestmod=hashlib.sha256).digest()
    if not hmac.compare_digest(mac, expected_mac):
        raise ValueError("Invalid encrypted token payload")

    stream = _keystream(key, nonce, len(encrypted))
    return bytes(a ^ b for a, b in zip(encrypted, stream)).decode("utf-8")
