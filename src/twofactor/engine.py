"""Enrollment and verification state machine for TOTP two-factor auth.

Per identity the flow is::

    NOT_SET_UP --begin_setup--> PENDING --confirm_enable--> ENABLED
                                                              |
        (record deleted) <---------------disable--------------+
                                                              |
                                   regenerate_backup_codes ---+ (stays ENABLED)

begin_setup is always allowed and replaces whatever was stored. Until a
record is ENABLED, verify() lets everything through: 2FA is optional until
the user has proven possession of the authenticator once.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from twofactor.auth import backup_codes, base32, totp
from twofactor.config import Settings, settings
from twofactor.errors import AlreadyEnabled, InvalidCode, NotEnabled, NotSetUp, StoreConflict, Unauthorized
from twofactor.models import (
    BackupCodeCount,
    EnableResult,
    SecretRecord,
    SetupResult,
    TwoFactorStatus,
    Verification,
)
from twofactor.qr import QrRenderer
from twofactor.store.base import SecretStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

EventHook = Callable[..., Awaitable[Any]]

# Attempts at a read-modify-write before giving up with StoreConflict
_CAS_ATTEMPTS = 5


class TwoFactorEngine:
    def __init__(
        self,
        store: SecretStore,
        *,
        config: Settings | None = None,
        clock: Callable[[], float] = time.time,
        qr_renderer: QrRenderer | None = None,
        on_event: EventHook | None = None,
    ) -> None:
        self.store = store
        self.config = config or settings
        self._clock = clock
        self._qr_renderer = qr_renderer
        self._on_event = on_event

    # --- Lifecycle ---

    async def begin_setup(self, identity: str, email: str) -> SetupResult:
        """Start (or restart) enrollment with a fresh secret and backup codes."""
        secret = totp.new_secret()
        codes = backup_codes.generate(self.config.backup_code_count)
        await self.store.put(identity, SecretRecord(shared_secret=secret, backup_codes=codes))

        encoded = base32.encode(secret)
        uri = totp.provisioning_uri(
            encoded,
            email,
            self.config.app_name,
            digits=self.config.totp_digits,
            period=self.config.totp_period,
        )
        qr_payload = self._qr_renderer.render(uri) if self._qr_renderer else uri

        await self._emit("setup_started", identity, "2FA setup generated")
        return SetupResult(
            secret=encoded,
            provisioning_uri=uri,
            qr_payload=qr_payload,
            backup_codes=codes,
        )

    async def confirm_enable(self, identity: str, code: str) -> EnableResult:
        """Enable 2FA once the user proves the authenticator produces valid codes."""

        async def attempt(record: SecretRecord | None) -> tuple[bool, EnableResult | None]:
            if record is None:
                raise NotSetUp()
            if record.enabled:
                raise AlreadyEnabled()
            step = self._match_totp(record, code)
            if step is None:
                await self._emit("verification_failed", identity, "Invalid code while enabling 2FA")
                raise InvalidCode()

            updated = record.model_copy(deep=True)
            updated.enabled = True
            self._remember_step(updated, step)
            if not await self.store.compare_and_swap(identity, updated, record.version):
                return False, None
            return True, EnableResult(backup_codes=list(updated.backup_codes))

        result = await self._retrying(identity, attempt)
        await self._emit("enabled", identity, "2FA enabled")
        return result

    async def verify(self, identity: str, code: str) -> Verification:
        """Check a login code: TOTP first, then an unused backup code."""

        async def attempt(record: SecretRecord | None) -> tuple[bool, Verification | None]:
            if record is None or not record.enabled:
                return True, Verification(valid=True)

            step = self._match_totp(record, code)
            if step is not None:
                if not self.config.reject_replayed_codes:
                    return True, Verification(valid=True)
                updated = record.model_copy(deep=True)
                self._remember_step(updated, step)
                if not await self.store.compare_and_swap(identity, updated, record.version):
                    return False, None
                return True, Verification(valid=True)

            updated = record.model_copy(deep=True)
            if not backup_codes.consume(updated, code):
                return True, Verification(valid=False)
            if not await self.store.compare_and_swap(identity, updated, record.version):
                return False, None
            await self._emit(
                "backup_code_used",
                identity,
                "Verified with a backup code",
                remaining=backup_codes.remaining_count(updated),
            )
            return True, Verification(valid=True, used_backup_code=True)

        result = await self._retrying(identity, attempt)
        if not result.valid:
            await self._emit("verification_failed", identity, "Invalid 2FA code")
        return result

    async def disable(self, identity: str, code: str) -> bool:
        """Turn 2FA off. Needs a valid TOTP or unused backup code.

        The record is only deleted at the version the code was checked
        against, so a write landing in between (a fresh ``begin_setup``, a
        concurrent backup code) sends us back to re-read instead of being
        wiped. A backup code spent on an earlier attempt still counts for
        the same enrollment.
        """
        spent_for: bytes | None = None

        async def attempt(record: SecretRecord | None) -> tuple[bool, bool | None]:
            nonlocal spent_for
            if record is None or not record.enabled:
                raise NotEnabled()

            if spent_for == record.shared_secret or self._match_totp(record, code) is not None:
                return await self.store.delete(identity, expected_version=record.version), True

            updated = record.model_copy(deep=True)
            if not backup_codes.consume(updated, code):
                await self._emit("verification_failed", identity, "Invalid code while disabling 2FA")
                raise Unauthorized()
            if not await self.store.compare_and_swap(identity, updated, record.version):
                return False, None
            spent_for = record.shared_secret
            await self._emit(
                "backup_code_used",
                identity,
                "Verified with a backup code",
                remaining=backup_codes.remaining_count(updated),
            )
            return await self.store.delete(identity, expected_version=record.version + 1), True

        await self._retrying(identity, attempt)
        await self._emit("disabled", identity, "2FA disabled")
        return True

    async def regenerate_backup_codes(self, identity: str, code: str) -> list[str]:
        """Replace all backup codes. Only a TOTP code is accepted here."""

        async def attempt(record: SecretRecord | None) -> tuple[bool, list[str] | None]:
            if record is None or not record.enabled:
                raise NotEnabled()
            step = self._match_totp(record, code)
            if step is None:
                await self._emit("verification_failed", identity, "Invalid code while regenerating backup codes")
                raise InvalidCode()

            updated = record.model_copy(deep=True)
            updated.backup_codes = backup_codes.generate(self.config.backup_code_count)
            updated.used_backup_codes = []
            self._remember_step(updated, step)
            if not await self.store.compare_and_swap(identity, updated, record.version):
                return False, None
            return True, list(updated.backup_codes)

        codes = await self._retrying(identity, attempt)
        await self._emit("backup_codes_regenerated", identity, "Backup codes regenerated")
        return codes

    # --- Read-only queries ---

    async def status(self, identity: str) -> TwoFactorStatus:
        record = await self.store.get(identity)
        if record is None:
            return TwoFactorStatus(enabled=False, backup_codes_remaining=0)
        return TwoFactorStatus(
            enabled=record.enabled,
            backup_codes_remaining=backup_codes.remaining_count(record),
        )

    async def is_enabled(self, identity: str) -> bool:
        record = await self.store.get(identity)
        return record is not None and record.enabled

    async def remaining_backup_codes(self, identity: str) -> int:
        record = await self.store.get(identity)
        return backup_codes.remaining_count(record) if record else 0

    async def backup_code_count(self, identity: str) -> BackupCodeCount:
        remaining = await self.remaining_backup_codes(identity)
        warning = None
        if remaining <= self.config.backup_code_low_watermark:
            warning = "You are running low on backup codes. Consider regenerating them."
        return BackupCodeCount(remaining=remaining, total=self.config.backup_code_count, warning=warning)

    # --- Internals ---

    def _match_totp(self, record: SecretRecord, code: str) -> int | None:
        after_step = record.last_used_step if self.config.reject_replayed_codes else None
        return totp.match_step(
            record.shared_secret,
            code,
            self.config.totp_window,
            at=self._clock(),
            period=self.config.totp_period,
            digits=self.config.totp_digits,
            after_step=after_step,
        )

    def _remember_step(self, record: SecretRecord, step: int) -> None:
        if self.config.reject_replayed_codes:
            record.last_used_step = step

    async def _retrying(
        self,
        identity: str,
        attempt: Callable[[SecretRecord | None], Awaitable[tuple[bool, T | None]]],
    ) -> T:
        """Run a read-modify-write against the store until its CAS succeeds."""
        for n in range(1, _CAS_ATTEMPTS + 1):
            record = await self.store.get(identity)
            done, result = await attempt(record)
            if done:
                return result  # type: ignore[return-value]
            logger.debug("Version conflict updating 2FA record for %s (attempt %d)", identity, n)
        logger.warning("Giving up on 2FA record for %s after %d conflicts", identity, _CAS_ATTEMPTS)
        raise StoreConflict()

    async def _emit(self, event_type: str, identity: str, message: str, **context: Any) -> None:
        logger.debug("2FA %s for %s", event_type, identity)
        if self._on_event is not None:
            await self._on_event(event_type, message, identity=identity, context=context)
