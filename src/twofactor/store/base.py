"""Secret store port: per-identity persistence of :class:`SecretRecord`."""

from __future__ import annotations

from abc import ABC, abstractmethod

from twofactor.models import SecretRecord


class SecretStore(ABC):
    """Async key-value storage keyed by user identity.

    Every successful write bumps ``record.version``. Read-modify-write
    cycles go through :meth:`compare_and_swap` so two requests racing on
    the same identity (e.g. both spending the same backup code) cannot both
    win. Adapters must make that check atomic per identity; different
    identities must not contend.
    """

    async def open(self) -> None:
        """Acquire connections or other resources. No-op by default."""

    async def close(self) -> None:
        """Release resources acquired by :meth:`open`."""

    @abstractmethod
    async def get(self, identity: str) -> SecretRecord | None:
        """Return a private copy of the stored record, or None."""

    @abstractmethod
    async def put(self, identity: str, record: SecretRecord) -> SecretRecord:
        """Unconditionally store ``record``, replacing any existing one.

        Returns the stored record with its new version.
        """

    @abstractmethod
    async def compare_and_swap(self, identity: str, record: SecretRecord, expected_version: int) -> bool:
        """Store ``record`` only if the current version is ``expected_version``.

        On success the stored version becomes ``expected_version + 1``.
        """

    @abstractmethod
    async def delete(self, identity: str, expected_version: int | None = None) -> bool:
        """Remove the record. Returns False if nothing (matching) was there."""
