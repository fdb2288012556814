"""AES-256-GCM sealing of TOTP shared secrets kept in the database.

Each ciphertext carries its owner's identity as associated data: a sealed
secret copied onto another user's row fails authentication instead of
silently enrolling that user with someone else's authenticator.
"""

from __future__ import annotations

import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from twofactor.config import settings

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM


def _get_key() -> bytes:
    raw = settings.twofactor_master_key
    if not raw:
        raise RuntimeError("TWOFACTOR_MASTER_KEY not set")
    key = base64.b64decode(raw)
    if len(key) != 32:
        raise ValueError("TWOFACTOR_MASTER_KEY must be 32 bytes (base64-encoded)")
    return key


def seal(secret: bytes, identity: str) -> str:
    """Encrypt a shared secret for ``identity``. Returns base64(nonce + ciphertext)."""
    nonce = os.urandom(_NONCE_SIZE)
    ct = AESGCM(_get_key()).encrypt(nonce, secret, identity.encode())
    return base64.b64encode(nonce + ct).decode()


def unseal(token: str, identity: str) -> bytes:
    """Reverse :func:`seal`.

    Raises cryptography.exceptions.InvalidTag if the token was tampered
    with, sealed under another key, or belongs to a different identity.
    """
    raw = base64.b64decode(token)
    nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    return AESGCM(_get_key()).decrypt(nonce, ct, identity.encode())
