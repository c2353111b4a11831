"""Score sync orchestrator: the single entry point for a snapshot sync.

Flow for one ``POST /sync``:

    sanitize -> lock(user) -> read existing rows -> materialize + plan
             -> commit (or compensate) -> collect orphans -> persist snapshot

Every failure before the relational commit leaves no trace: blobs written by
the attempt are deleted and the transaction is rolled back.  Failures after
the commit (orphan collection) are logged and never surface.

Boundary rules:
  - Owns the per-user lock.  Services below it assume they are the only
    sync running for that user in this process.
  - Commits the session itself; routes must not commit a second time.
"""
from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.models.scores import ScorePayload, SnapshotRecord, SyncResponse
from scorebook.services.image_materializer import UploadedPart
from scorebook.services.orphan_collector import collect_orphans
from scorebook.services.score_commit import commit_plan, discard_created_files
from scorebook.services.score_reconciler import load_existing_scores, reconcile
from scorebook.services.scores import score_to_payload
from scorebook.services.snapshot_sanitizer import (
    ScoreSnapshot,
    sanitize_snapshot,
    utc_now_iso,
)
from scorebook.services.snapshot_store import load_snapshot, persist_snapshot
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)

# Held only while a sync for that user is in flight.
_user_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def user_sync_lock(user_id: str) -> asyncio.Lock:
    """Return the process-local lock serializing syncs for *user_id*."""
    lock = _user_locks.get(user_id)
    if lock is None:
        lock = asyncio.Lock()
        _user_locks[user_id] = lock
    return lock


async def sync_scores(
    session: AsyncSession,
    user_id: str,
    scores: list[ScoreSnapshot] | None,
    uploaded_parts: Mapping[str, UploadedPart] | None = None,
    *,
    blob_store: LocalBlobStore,
    max_bytes: int | None = None,
    timeout: float | None = None,
) -> list[ScorePayload]:
    """Make the user's persisted scores match *scores* exactly.

    ``scores is None`` leaves everything untouched and returns ``[]``.  An
    empty list deletes every score the user owns.

    Returns the committed scores, in the order the client sent them.

    Raises:
        InvalidImageError, ImageTooLargeError, BlobWriteTimeoutError:
            a page image could not be materialized.
        PersistenceError: the relational write failed.
    """
    if scores is None:
        logger.info("Snapshot for user=%s has no scores section; scores untouched", user_id)
        return []

    parts: Mapping[str, UploadedPart] = uploaded_parts or {}
    await asyncio.to_thread(blob_store.ensure_root)

    existing = await load_existing_scores(session, user_id)
    # End the read transaction before any blob write starts.
    if session.in_transaction():
        await session.commit()

    created_files: set[str] = set()
    try:
        plan = await reconcile(
            user_id,
            scores,
            existing,
            uploaded_parts=parts,
            blob_store=blob_store,
            created_files=created_files,
            max_bytes=max_bytes,
            timeout=timeout,
        )
    except BaseException as exc:
        # Also on cancellation, e.g. a client disconnect mid-upload.
        logger.error("❌ Page materialization aborted for user=%s: %r", user_id, exc)
        await discard_created_files(blob_store, created_files)
        raise

    rows = await commit_plan(
        session,
        plan,
        blob_store=blob_store,
        created_files=created_files,
    )
    await collect_orphans(blob_store, plan.deletion_candidates)
    return [score_to_payload(row) for row in rows]


async def persist_snapshot_for_user(
    session: AsyncSession,
    user_id: str,
    raw: object,
    uploaded_parts: Mapping[str, UploadedPart] | None = None,
    *,
    blob_store: LocalBlobStore,
) -> SyncResponse:
    """Sanitize *raw*, reconcile its scores, then overwrite the stored snapshot.

    Raises:
        SnapshotValidationError: *raw* is not a valid snapshot document.
        ScoreSyncError: any error from :func:`sync_scores`.
    """
    snapshot = sanitize_snapshot(raw)

    async with user_sync_lock(user_id):
        scores = await sync_scores(
            session,
            user_id,
            snapshot.scores,
            uploaded_parts,
            blob_store=blob_store,
        )
        # Materialization backfills image filenames, so serialize afterwards.
        document = snapshot.to_dict()
        row = await persist_snapshot(
            session,
            user_id,
            document,
            exported_at=snapshot.exported_at,
            saved_at=utc_now_iso(),
        )
        await session.commit()

    logger.info("✅ Sync complete for user=%s (%d scores)", user_id, len(scores))
    return SyncResponse(
        snapshot=document,
        saved_at=row.saved_at,
        exported_at=row.exported_at,
        scores=scores,
    )


async def load_snapshot_for_user(session: AsyncSession, user_id: str) -> SnapshotRecord | None:
    """Return the user's last synced snapshot, or ``None`` if they never synced."""
    row = await load_snapshot(session, user_id)
    if row is None:
        return None
    snapshot = sanitize_snapshot(json.loads(row.snapshot))
    return SnapshotRecord(
        snapshot=snapshot.to_dict(),
        saved_at=row.saved_at,
        exported_at=row.exported_at,
    )
