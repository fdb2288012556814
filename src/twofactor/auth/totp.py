"""TOTP (Time-based One-Time Password) generation and verification for 2FA.

RFC 6238 on top of the RFC 4226 HOTP construction: HMAC-SHA1 over the
big-endian time step, dynamic truncation, 6 digits, 30-second steps.
Compatible with Google Authenticator, Authy, Aegis and friends.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import struct
import time
from urllib.parse import quote, quote_plus, urlencode

DIGITS = 6
PERIOD = 30
ALGORITHM = "SHA1"
SECRET_BYTES = 20  # 160 bits, as recommended by RFC 4226

_COUNTER_MASK = 0xFFFFFFFFFFFFFFFF

# Characters left alone when percent-encoding a single URI component
_COMPONENT_SAFE = "!~*'()"


def _form_quote(value: str, safe: str = "", encoding: str | None = None, errors: str | None = None) -> str:
    """application/x-www-form-urlencoded: space is "+", "*" stays, "~" is escaped."""
    return quote_plus(value, safe="*", encoding=encoding, errors=errors).replace("~", "%7E")


def new_secret(length: int = SECRET_BYTES) -> bytes:
    """Generate a new shared secret from the OS CSPRNG."""
    return secrets.token_bytes(length)


def current_step(epoch_seconds: float, period: int = PERIOD) -> int:
    return int(epoch_seconds // period)


def generate(secret: bytes, step: int, digits: int = DIGITS) -> str:
    """Compute the code for a single time step."""
    message = struct.pack(">Q", step & _COUNTER_MASK)
    digest = hmac.new(secret, message, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    binary = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
    return str(binary % 10**digits).zfill(digits)


def match_step(
    secret: bytes,
    code: str,
    window: int = 1,
    *,
    at: float | None = None,
    period: int = PERIOD,
    digits: int = DIGITS,
    after_step: int | None = None,
) -> int | None:
    """Return the time step ``code`` is valid for, or None.

    Steps ``T-window .. T+window`` around ``at`` (default: now) are checked.
    Steps at or before ``after_step`` are skipped, which lets callers refuse
    codes that were already accepted once.
    """
    if len(code) != digits:
        return None
    now = time.time() if at is None else at
    step = current_step(now, period)
    candidate = code.encode()
    for offset in range(-window, window + 1):
        check = step + offset
        if after_step is not None and check <= after_step:
            continue
        if hmac.compare_digest(generate(secret, check, digits).encode(), candidate):
            return check
    return None


def verify(
    secret: bytes,
    code: str,
    window: int = 1,
    *,
    at: float | None = None,
    period: int = PERIOD,
    digits: int = DIGITS,
) -> bool:
    """Verify a TOTP code against a secret (allows +-window steps)."""
    return match_step(secret, code, window, at=at, period=period, digits=digits) is not None


def provisioning_uri(
    secret: str,
    account: str,
    issuer: str,
    *,
    digits: int = DIGITS,
    period: int = PERIOD,
) -> str:
    """Get the otpauth:// URI for QR code enrollment.

    Format: otpauth://totp/{issuer}:{account}?secret=..&issuer=..&algorithm=SHA1&digits=6&period=30
    """
    label = f"{quote(issuer, safe=_COMPONENT_SAFE)}:{quote(account, safe=_COMPONENT_SAFE)}"
    params = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": ALGORITHM,
            "digits": digits,
            "period": period,
        },
        quote_via=_form_quote,
    )
    return f"otpauth://totp/{label}?{params}"

