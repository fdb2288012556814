"""Audit trail for 2FA lifecycle events.

The engine reports setup, enable, disable, backup-code use and failed
verifications through emit(). Every event is logged; when the database
pool is up it is also written to twofactor_events.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from twofactor import db

logger = logging.getLogger(__name__)


async def emit(
    event_type: str,
    message: str,
    *,
    identity: str | None = None,
    context: dict[str, Any] | None = None,
) -> int | None:
    """Record an audit event.

    Returns the event ID if it was persisted, None otherwise. Audit is
    best-effort: a failed insert never fails the 2FA operation itself.
    """
    logger.info("[event] %s: %s (identity=%s)", event_type, message, identity)
    if not db.is_initialized():
        return None
    try:
        rows = await db.execute(
            """INSERT INTO twofactor_events (identity, event_type, message, context)
               VALUES (%s, %s, %s, %s)
               RETURNING id""",
            (identity, event_type, message, json.dumps(context or {})),
        )
        return rows[0]["id"] if rows else None
    except Exception:
        logger.warning("Failed to emit event: %s: %s", event_type, message, exc_info=True)
        return None


async def recent(identity: str, limit: int = 20) -> list[dict[str, Any]]:
    """Most recent events for one identity, newest first."""
    return await db.execute(
        """SELECT id, timestamp, event_type, message, context
           FROM twofactor_events
           WHERE identity = %s
           ORDER BY id DESC
           LIMIT %s""",
        (identity, limit),
    )
