"""Process-local secret store, for tests and single-process deployments."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from twofactor.models import SecretRecord
from twofactor.store.base import SecretStore


class MemorySecretStore(SecretStore):
    """Dict-backed store with one lock per stored record.

    A lock lives exactly as long as its record: ``put`` creates it and
    ``delete`` drops it. Reads and misses never allocate one, so identities
    that only ever pass through ``verify`` leave nothing behind.
    """

    def __init__(self) -> None:
        self._records: dict[str, SecretRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def get(self, identity: str) -> SecretRecord | None:
        record = self._records.get(identity)
        return record.model_copy(deep=True) if record is not None else None

    async def put(self, identity: str, record: SecretRecord) -> SecretRecord:
        lock = self._locks.setdefault(identity, asyncio.Lock())
        async with lock:
            current = self._records.get(identity)
            stored = record.model_copy(
                deep=True,
                update={
                    "version": current.version + 1 if current is not None else 1,
                    "updated_at": datetime.now(UTC),
                },
            )
            self._records[identity] = stored
            return stored.model_copy(deep=True)

    async def compare_and_swap(self, identity: str, record: SecretRecord, expected_version: int) -> bool:
        lock = self._locks.get(identity)
        if lock is None:
            return False
        async with lock:
            current = self._records.get(identity)
            if current is None or current.version != expected_version:
                return False
            self._records[identity] = record.model_copy(
                deep=True,
                update={"version": expected_version + 1, "updated_at": datetime.now(UTC)},
            )
            return True

    async def delete(self, identity: str, expected_version: int | None = None) -> bool:
        lock = self._locks.get(identity)
        if lock is None:
            return False
        async with lock:
            current = self._records.get(identity)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            del self._records[identity]
            self._locks.pop(identity, None)
            return True

    def __len__(self) -> int:
        return len(self._records)
