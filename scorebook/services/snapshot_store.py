"""Snapshot store — one overwriteable snapshot document per user.

Persists the normalized snapshot exactly as the last sync produced it.  No
history is kept; the authoritative per-score state is the ``scores`` table.
"""
from __future__ import annotations

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.db.models import Snapshot as SnapshotRow

logger = logging.getLogger(__name__)


async def load_snapshot(session: AsyncSession, user_id: str) -> SnapshotRow | None:
    """Return the user's stored snapshot row, or ``None`` if none was ever saved."""
    stmt = select(SnapshotRow).where(SnapshotRow.user_id == user_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def persist_snapshot(
    session: AsyncSession,
    user_id: str,
    document: dict[str, object],
    *,
    exported_at: str,
    saved_at: str,
) -> SnapshotRow:
    """Upsert the user's snapshot row, overwriting any previous document."""
    payload = json.dumps(document, ensure_ascii=False)
    row = await load_snapshot(session, user_id)
    if row is None:
        row = SnapshotRow(
            user_id=user_id,
            snapshot=payload,
            exported_at=exported_at,
            saved_at=saved_at,
        )
        session.add(row)
    else:
        row.snapshot = payload
        row.exported_at = exported_at
        row.saved_at = saved_at

    await session.flush()
    logger.info("✅ Snapshot saved for user=%s (%d bytes)", user_id, len(payload))
    return row
