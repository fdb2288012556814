"""Pydantic models for 2FA state and the results handed back to callers."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class TwoFactorState(StrEnum):
    NOT_SET_UP = "not_set_up"
    PENDING = "pending"
    ENABLED = "enabled"


# === Persisted state ===


class SecretRecord(BaseModel):
    """Everything stored per user identity.

    ``version`` is owned by the secret store and bumped on every write;
    callers pass it back to ``compare_and_swap`` to detect lost updates.
    """

    shared_secret: bytes
    enabled: bool = False
    backup_codes: list[str] = Field(default_factory=list)
    used_backup_codes: list[str] = Field(default_factory=list)
    last_used_step: int | None = None
    version: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _used_codes_were_issued(self) -> SecretRecord:
        if not set(self.used_backup_codes) <= set(self.backup_codes):
            raise ValueError("used_backup_codes must be a subset of backup_codes")
        return self

    @property
    def state(self) -> TwoFactorState:
        return TwoFactorState.ENABLED if self.enabled else TwoFactorState.PENDING


# === Operation results ===


class SetupResult(BaseModel):
    """Returned by begin_setup; ``secret`` is the Base32 form for manual entry."""

    secret: str
    provisioning_uri: str
    qr_payload: str
    backup_codes: list[str]


class EnableResult(BaseModel):
    success: bool = True
    backup_codes: list[str]


class Verification(BaseModel):
    valid: bool
    used_backup_code: bool = False


class TwoFactorStatus(BaseModel):
    enabled: bool
    backup_codes_remaining: int


class BackupCodeCount(BaseModel):
    remaining: int
    total: int
    warning: str | None = None
