"""Tests for scorebook.services.score_commit.

Covers the happy path (rows returned in client order) and the failure path:
rollback plus deletion of every file this attempt created.
"""
from __future__ import annotations

import json

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.db.models import Score
from scorebook.services.score_commit import commit_plan, discard_created_files
from scorebook.services.score_reconciler import (
    PreparedScore,
    ReconciliationPlan,
    ScoreCreation,
    ScoreUpdate,
)
from scorebook.services.snapshot_sanitizer import sanitize_scores
from scorebook.services.sync_errors import PersistenceError
from scorebook.storage.blob_store import LocalBlobStore

from factories import TEST_USER_ID, make_score


def _prepared(title: str, filename: str) -> PreparedScore:
    scores = sanitize_scores([make_score(title)])
    assert scores is not None
    pages = [{"order": 0, "filename": filename}]
    return PreparedScore(
        snapshot=scores[0],
        pages=pages,
        config_json=json.dumps({"pages": pages}),
        cover_filename=filename,
    )


async def _seed(session: AsyncSession, title: str, filename: str) -> Score:
    row = Score(
        user_id=TEST_USER_ID,
        title=title,
        config_json=json.dumps({"pages": [{"order": 0, "filename": filename}]}),
        image_filename=filename,
    )
    session.add(row)
    await session.commit()
    return row


@pytest.mark.asyncio
async def test_commit_applies_plan_in_client_order(db_session: AsyncSession, tmp_path) -> None:
    store = LocalBlobStore(tmp_path)
    kept = await _seed(db_session, "Kept", "old-kept.png")
    dropped = await _seed(db_session, "Dropped", "old-dropped.png")

    plan = ReconciliationPlan(
        user_id=TEST_USER_ID,
        operations=[
            ScoreCreation(prepared=_prepared("Brand new", "new.png")),
            ScoreUpdate(score_id=kept.id, prepared=_prepared("Kept v2", "kept-v2.png")),
        ],
        deletions=[dropped.id],
        incoming_ids={kept.id},
    )

    rows = await commit_plan(db_session, plan, blob_store=store, created_files={"new.png", "kept-v2.png"})

    assert [r.title for r in rows] == ["Brand new", "Kept v2"]
    assert rows[1].id == kept.id
    assert rows[1].image_filename == "kept-v2.png"

    remaining = (await db_session.execute(select(Score.id))).scalars().all()
    assert set(remaining) == {kept.id, rows[0].id}


@pytest.mark.asyncio
async def test_vanished_update_target_rolls_back(db_session: AsyncSession, tmp_path) -> None:
    """An update that matches zero rows raises PersistenceError and undoes everything."""
    store = LocalBlobStore(tmp_path)
    existing = await _seed(db_session, "Existing", "existing.png")
    store.write("created-a.png", b"a")
    store.write("created-b.png", b"b")

    plan = ReconciliationPlan(
        user_id=TEST_USER_ID,
        operations=[
            ScoreCreation(prepared=_prepared("Would be created", "created-a.png")),
            ScoreUpdate(score_id=4242, prepared=_prepared("Ghost", "created-b.png")),
        ],
        deletions=[existing.id],
    )

    with pytest.raises(PersistenceError, match="4242"):
        await commit_plan(
            db_session,
            plan,
            blob_store=store,
            created_files={"created-a.png", "created-b.png"},
        )

    titles = (await db_session.execute(select(Score.title))).scalars().all()
    assert titles == ["Existing"]
    assert not store.exists("created-a.png")
    assert not store.exists("created-b.png")


@pytest.mark.asyncio
async def test_discard_created_files_tolerates_missing(tmp_path) -> None:
    store = LocalBlobStore(tmp_path)
    store.write("x.png", b"x")

    await discard_created_files(store, {"x.png", "never-written.png"})

    assert list(tmp_path.iterdir()) == []
