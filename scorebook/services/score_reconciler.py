"""Score reconciler — diff an incoming score list against persisted rows.

Given the sanitized scores from a snapshot and the user's current ``scores``
rows, the reconciler:

1. Indexes existing rows by id and collects each row's file set (cover
   pointer plus every ``config_json.pages[].filename``).
2. Materializes every incoming page image, score by score in client order.
   The first failure aborts the whole sync before any relational write.
3. Builds the persisted page list and ``config_json`` for each score and
   picks the cover filename.
4. Queues an update for each incoming id that matches a row, a creation for
   every other score, and a deletion for each row the snapshot omits.
5. Marks superseded files (old files of updated rows, all files of deleted
   rows) as deletion candidates for the orphan collector.

The diff itself (:func:`plan_reconciliation`) is pure; only
:func:`prepare_score` touches the blob store.

Boundary rules:
  - Must NOT execute relational writes.  Applying the plan is
    ``score_commit``'s job.
  - Reads the user's rows once, as detached :class:`ExistingScore` values,
    so no transaction stays open while page images are written.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.db.models import Score
from scorebook.services.image_materializer import UploadedPart, materialize_images
from scorebook.services.snapshot_sanitizer import ScorePageSnapshot, ScoreSnapshot
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Plan types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExistingScore:
    """The parts of a persisted ``scores`` row the diff needs."""

    id: int
    image_filename: str
    config_json: str

    @classmethod
    def from_row(cls, row: Score) -> ExistingScore:
        return cls(
            id=row.id,
            image_filename=row.image_filename or "",
            config_json=row.config_json or "{}",
        )


@dataclass
class PreparedScore:
    """An incoming score whose page images are already on disk."""

    snapshot: ScoreSnapshot
    pages: list[dict[str, Any]]
    config_json: str
    cover_filename: str

    @property
    def filenames(self) -> list[str]:
        return [page["filename"] for page in self.pages]


@dataclass
class ScoreCreation:
    prepared: PreparedScore


@dataclass
class ScoreUpdate:
    score_id: int
    prepared: PreparedScore


@dataclass
class ReconciliationPlan:
    """Relational operations plus the file bookkeeping that goes with them.

    ``operations`` keeps creations and updates in client order so the sync
    response lists scores the way the client sent them.
    """

    user_id: str
    operations: list[ScoreCreation | ScoreUpdate] = field(default_factory=list)
    deletions: list[int] = field(default_factory=list)
    incoming_ids: set[int] = field(default_factory=set)
    deletion_candidates: set[str] = field(default_factory=set)

    @property
    def creations(self) -> list[ScoreCreation]:
        return [op for op in self.operations if isinstance(op, ScoreCreation)]

    @property
    def updates(self) -> list[ScoreUpdate]:
        return [op for op in self.operations if isinstance(op, ScoreUpdate)]


# ---------------------------------------------------------------------------
# config_json helpers
# ---------------------------------------------------------------------------


def parse_config(config_json: str | None) -> dict[str, Any]:
    """Parse a stored ``config_json``; anything unparsable or non-object is ``{}``."""
    if not config_json:
        return {}
    try:
        parsed = json.loads(config_json)
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


def extract_page_filenames(config_json: str | None) -> list[str]:
    """Return the non-blank ``pages[].filename`` values of a stored config."""
    pages = parse_config(config_json).get("pages")
    if not isinstance(pages, list):
        return []
    return [
        page["filename"]
        for page in pages
        if isinstance(page, Mapping)
        and isinstance(page.get("filename"), str)
        and page["filename"].strip()
    ]


def score_files(row: Score | ExistingScore) -> set[str]:
    """Every blob a persisted score references: cover pointer plus page files."""
    files = set(extract_page_filenames(row.config_json))
    if row.image_filename:
        files.add(row.image_filename)
    return files


def resolve_cover_index(cover_index: int | None, page_count: int) -> int:
    """Clamp *cover_index* into ``[0, page_count - 1]``; absent means 0."""
    if cover_index is None or cover_index < 0 or page_count <= 0:
        return 0
    return min(cover_index, page_count - 1)


def build_persisted_page(page: ScorePageSnapshot, filename: str, index: int) -> dict[str, Any]:
    """Return the ``config_json.pages[]`` entry for one materialized page."""
    entry: dict[str, Any] = {"order": page.order if page.order is not None else index}
    if page.width is not None:
        entry["width"] = page.width
    if page.height is not None:
        entry["height"] = page.height
    for key, value in (page.meta or {}).items():
        if key in ("filename", "image"):
            continue
        entry[key] = value
    entry["filename"] = filename
    return entry


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def load_existing_scores(session: AsyncSession, user_id: str) -> list[ExistingScore]:
    """Return the user's persisted scores as detached values, oldest first."""
    stmt = select(Score).where(Score.user_id == user_id).order_by(Score.id)
    rows = (await session.execute(stmt)).scalars().all()
    return [ExistingScore.from_row(row) for row in rows]


async def prepare_score(
    score: ScoreSnapshot,
    uploaded_parts: Mapping[str, UploadedPart],
    *,
    blob_store: LocalBlobStore,
    created_files: set[str],
    max_bytes: int | None = None,
    timeout: float | None = None,
) -> PreparedScore:
    """Materialize all pages of *score* and build its persisted form."""
    images = await materialize_images(
        [page.image for page in score.pages],
        uploaded_parts,
        blob_store=blob_store,
        created_files=created_files,
        max_bytes=max_bytes,
        timeout=timeout,
    )
    pages = [
        build_persisted_page(page, image.filename, idx)
        for idx, (page, image) in enumerate(zip(score.pages, images))
    ]
    config = {**score.config, "pages": pages}
    cover = pages[resolve_cover_index(score.cover_index, len(pages))]
    return PreparedScore(
        snapshot=score,
        pages=pages,
        config_json=json.dumps(config, ensure_ascii=False),
        cover_filename=cover["filename"],
    )


def plan_reconciliation(
    user_id: str,
    prepared: Sequence[PreparedScore],
    existing_rows: Sequence[ExistingScore],
    created_files: set[str],
) -> ReconciliationPlan:
    """Diff *prepared* scores against *existing_rows* (pure, no I/O)."""
    existing_by_id = {row.id: row for row in existing_rows}
    existing_files = {row.id: score_files(row) for row in existing_rows}
    plan = ReconciliationPlan(user_id=user_id)

    for entry in prepared:
        score_id = entry.snapshot.id
        if score_id is not None and score_id in existing_by_id and score_id not in plan.incoming_ids:
            plan.operations.append(ScoreUpdate(score_id=score_id, prepared=entry))
            plan.incoming_ids.add(score_id)
            plan.deletion_candidates.update(existing_files[score_id] - created_files)
            continue
        if score_id is not None and score_id in plan.incoming_ids:
            logger.warning(
                "⚠️ Score id %d appears twice in snapshot for user=%s; treating repeat as new",
                score_id,
                user_id,
            )
        plan.operations.append(ScoreCreation(prepared=entry))

    for row in existing_rows:
        if row.id in plan.incoming_ids:
            continue
        plan.deletions.append(row.id)
        plan.deletion_candidates.update(existing_files[row.id] - created_files)

    logger.info(
        "✅ Reconciliation plan for user=%s: %d create, %d update, %d delete, %d orphan candidates",
        user_id,
        len(plan.creations),
        len(plan.updates),
        len(plan.deletions),
        len(plan.deletion_candidates),
    )
    return plan


async def reconcile(
    user_id: str,
    incoming: Sequence[ScoreSnapshot],
    existing_rows: Sequence[ExistingScore],
    *,
    uploaded_parts: Mapping[str, UploadedPart],
    blob_store: LocalBlobStore,
    created_files: set[str],
    max_bytes: int | None = None,
    timeout: float | None = None,
) -> ReconciliationPlan:
    """Materialize every incoming score and return the reconciliation plan.

    Scores are prepared one after another in client order; the first
    materialization failure propagates with ``created_files`` listing every
    blob written so far.
    """
    prepared: list[PreparedScore] = []
    for score in incoming:
        prepared.append(
            await prepare_score(
                score,
                uploaded_parts,
                blob_store=blob_store,
                created_files=created_files,
                max_bytes=max_bytes,
                timeout=timeout,
            )
        )
    return plan_reconciliation(user_id, prepared, existing_rows, created_files)
