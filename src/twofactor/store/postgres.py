"""Durable secret store backed by PostgreSQL.

One row per identity in ``twofactor_secrets``. The shared secret is kept
AES-GCM encrypted (see :mod:`twofactor.crypto`); the ``version`` column
implements compare-and-swap with a conditional UPDATE.
"""

from __future__ import annotations

import logging
from typing import Any

from twofactor import crypto, db
from twofactor.models import SecretRecord
from twofactor.store.base import SecretStore

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS twofactor_secrets (
    identity          TEXT PRIMARY KEY,
    secret_enc        TEXT NOT NULL,
    enabled           BOOLEAN NOT NULL DEFAULT false,
    backup_codes      TEXT[] NOT NULL DEFAULT '{}',
    used_backup_codes TEXT[] NOT NULL DEFAULT '{}',
    last_used_step    BIGINT,
    version           INTEGER NOT NULL DEFAULT 1,
    created_at        TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS twofactor_events (
    id         BIGSERIAL PRIMARY KEY,
    timestamp  TIMESTAMPTZ NOT NULL DEFAULT now(),
    identity   TEXT,
    event_type TEXT NOT NULL,
    message    TEXT NOT NULL,
    context    JSONB NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS twofactor_events_identity_idx ON twofactor_events (identity, id DESC);
"""

_COLUMNS = """identity, secret_enc, enabled, backup_codes, used_backup_codes,
              last_used_step, version, created_at, updated_at"""


class PostgresSecretStore(SecretStore):
    def __init__(self, conninfo: str | None = None) -> None:
        self._conninfo = conninfo

    async def open(self) -> None:
        await db.init_pool(conninfo=self._conninfo)

    async def close(self) -> None:
        await db.close_pool()

    async def get(self, identity: str) -> SecretRecord | None:
        row = await db.execute_one(
            f"SELECT {_COLUMNS} FROM twofactor_secrets WHERE identity = %s",
            (identity,),
        )
        return _to_record(row) if row else None

    async def put(self, identity: str, record: SecretRecord) -> SecretRecord:
        row = await db.execute_one(
            f"""INSERT INTO twofactor_secrets
                   (identity, secret_enc, enabled, backup_codes, used_backup_codes,
                    last_used_step, created_at)
               VALUES (%s, %s, %s, %s, %s, %s, %s)
               ON CONFLICT (identity) DO UPDATE SET
                   secret_enc = EXCLUDED.secret_enc,
                   enabled = EXCLUDED.enabled,
                   backup_codes = EXCLUDED.backup_codes,
                   used_backup_codes = EXCLUDED.used_backup_codes,
                   last_used_step = EXCLUDED.last_used_step,
                   created_at = EXCLUDED.created_at,
                   version = twofactor_secrets.version + 1,
                   updated_at = now()
               RETURNING {_COLUMNS}""",
            (
                identity,
                crypto.seal(record.shared_secret, identity),
                record.enabled,
                record.backup_codes,
                record.used_backup_codes,
                record.last_used_step,
                record.created_at,
            ),
        )
        if row is None:
            raise RuntimeError(f"Upsert of 2FA record for {identity} returned no row")
        return _to_record(row)

    async def compare_and_swap(self, identity: str, record: SecretRecord, expected_version: int) -> bool:
        row = await db.execute_one(
            """UPDATE twofactor_secrets
               SET secret_enc = %s, enabled = %s, backup_codes = %s,
                   used_backup_codes = %s, last_used_step = %s,
                   version = version + 1, updated_at = now()
               WHERE identity = %s AND version = %s
               RETURNING version""",
            (
                crypto.seal(record.shared_secret, identity),
                record.enabled,
                record.backup_codes,
                record.used_backup_codes,
                record.last_used_step,
                identity,
                expected_version,
            ),
        )
        if row is None:
            logger.debug("CAS miss for %s at version %d", identity, expected_version)
            return False
        return True

    async def delete(self, identity: str, expected_version: int | None = None) -> bool:
        if expected_version is None:
            row = await db.execute_one(
                "DELETE FROM twofactor_secrets WHERE identity = %s RETURNING identity",
                (identity,),
            )
        else:
            row = await db.execute_one(
                "DELETE FROM twofactor_secrets WHERE identity = %s AND version = %s RETURNING identity",
                (identity, expected_version),
            )
        return row is not None


async def create_schema() -> None:
    await db.execute(SCHEMA)


def _to_record(row: dict[str, Any]) -> SecretRecord:
    return SecretRecord(
        shared_secret=crypto.unseal(row["secret_enc"], row["identity"]),
        enabled=row["enabled"],
        backup_codes=list(row["backup_codes"]),
        used_backup_codes=list(row["used_backup_codes"]),
        last_used_step=row["last_used_step"],
        version=row["version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
