"""Secret store port and adapters."""

from __future__ import annotations

from twofactor.config import Settings, StoreBackend
from twofactor.store.base import SecretStore
from twofactor.store.memory import MemorySecretStore
from twofactor.store.postgres import PostgresSecretStore

__all__ = ["MemorySecretStore", "PostgresSecretStore", "SecretStore", "build_store"]


def build_store(config: Settings) -> SecretStore:
    """Pick the store adapter named by ``config.store_backend``."""
    if config.store_backend == StoreBackend.POSTGRES:
        return PostgresSecretStore(config.database_url)
    return MemorySecretStore()
