"""Single-use recovery codes for when the authenticator device is unavailable."""

from __future__ import annotations

import hmac
import secrets

from twofactor.models import SecretRecord

DEFAULT_COUNT = 8


def generate(count: int = DEFAULT_COUNT) -> list[str]:
    """Issue ``count`` distinct codes formatted ``XXXX-XXXX`` (uppercase hex)."""
    codes: list[str] = []
    while len(codes) < count:
        raw = secrets.token_hex(4).upper()
        code = f"{raw[:4]}-{raw[4:]}"
        if code not in codes:
            codes.append(code)
    return codes


def consume(record: SecretRecord, candidate: str) -> bool:
    """Mark ``candidate`` as used on ``record`` if it is issued and unused."""
    match = _find(candidate, record.backup_codes)
    if match is None or match in record.used_backup_codes:
        return False
    record.used_backup_codes.append(match)
    return True


def remaining_count(record: SecretRecord) -> int:
    return len(record.backup_codes) - len(record.used_backup_codes)


def _find(candidate: str, codes: list[str]) -> str | None:
    encoded = candidate.encode()
    found = None
    for code in codes:
        if hmac.compare_digest(code.encode(), encoded):
            found = code
    return found
