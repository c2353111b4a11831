"""Applies a reconciliation plan in one relational transaction.

The relational store and the blob store share no commit protocol, so the
sync engine runs a small saga:

1. Page images are written speculatively (``score_reconciler``).
2. Every create/update/delete in the plan runs inside one transaction here.
3. If any statement fails, the transaction is rolled back and every blob
   written by this sync attempt is deleted before the error propagates.

A crash between step 1 and the compensating delete can leave orphaned blobs.
It can never leave a row pointing at a missing blob.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.db.models import Score, utc_now
from scorebook.services.score_reconciler import ReconciliationPlan, ScoreUpdate
from scorebook.services.sync_errors import PersistenceError
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


async def discard_created_files(blob_store: LocalBlobStore, created_files: Iterable[str]) -> None:
    """Compensating action: delete every blob this sync attempt wrote."""
    names = sorted(created_files)
    if not names:
        return
    await asyncio.to_thread(blob_store.remove_quietly, names)
    logger.info("⚠️ Removed %d speculative page image(s) after failed sync", len(names))


async def _apply_plan(session: AsyncSession, plan: ReconciliationPlan) -> list[int]:
    """Execute the plan's statements; return the surviving score ids in client order."""
    score_ids: list[int] = []

    for op in plan.operations:
        prepared = op.prepared
        values = {
            "title": prepared.snapshot.title,
            "composer": prepared.snapshot.composer,
            "description": prepared.snapshot.description,
            "config_json": prepared.config_json,
            "image_filename": prepared.cover_filename,
        }
        if isinstance(op, ScoreUpdate):
            result = await session.execute(
                update(Score)
                .where(Score.id == op.score_id, Score.user_id == plan.user_id)
                .values(**values, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise PersistenceError(
                    f"Score {op.score_id} disappeared before it could be updated"
                )
            score_ids.append(op.score_id)
        else:
            row = Score(user_id=plan.user_id, **values)
            session.add(row)
            await session.flush()
            score_ids.append(row.id)

    if plan.deletions:
        await session.execute(
            delete(Score)
            .where(Score.user_id == plan.user_id, Score.id.in_(plan.deletions))
            .execution_options(synchronize_session=False)
        )

    return score_ids


async def commit_plan(
    session: AsyncSession,
    plan: ReconciliationPlan,
    *,
    blob_store: LocalBlobStore,
    created_files: Iterable[str],
) -> list[Score]:
    """Apply *plan* atomically and return the committed rows in client order.

    Raises:
        PersistenceError: a statement failed.  The transaction has been rolled
            back and every file in *created_files* deleted.
    """
    try:
        score_ids = await _apply_plan(session, plan)
        await session.commit()
    except BaseException as exc:
        await session.rollback()
        await discard_created_files(blob_store, created_files)
        logger.error("❌ Score sync commit failed for user=%s: %s", plan.user_id, exc)
        if isinstance(exc, SQLAlchemyError):
            raise PersistenceError(f"Could not save scores: {exc}") from exc
        raise

    logger.info(
        "✅ Committed score sync for user=%s: %d saved, %d deleted",
        plan.user_id,
        len(score_ids),
        len(plan.deletions),
    )

    if not score_ids:
        return []
    stmt = (
        select(Score)
        .where(Score.id.in_(score_ids))
        .execution_options(populate_existing=True)
    )
    rows = {row.id: row for row in (await session.execute(stmt)).scalars().all()}
    return [rows[score_id] for score_id in score_ids]
