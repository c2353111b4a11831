"""Score read model and direct score operations.

Turns ``scores`` rows into the public :class:`ScorePayload` (page image URLs
resolved against ``settings.score_upload_route``) and implements the direct
list / get / remove operations used by the scores router.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.config import settings
from scorebook.db.models import Score
from scorebook.models.scores import ScorePagePayload, ScorePayload
from scorebook.services.score_reconciler import parse_config, score_files
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


def build_image_url(filename: str) -> str:
    """Public path for a stored page image: ``<upload route>/<url-encoded name>``."""
    return f"{settings.score_upload_route.rstrip('/')}/{quote(filename, safe='')}"


def _page_payloads(pages: object) -> list[ScorePagePayload]:
    if not isinstance(pages, list):
        return []
    payloads: list[ScorePagePayload] = []
    for idx, page in enumerate(pages):
        if not isinstance(page, Mapping):
            continue
        filename = page.get("filename")
        if not isinstance(filename, str) or not filename.strip():
            continue
        data: dict[str, Any] = dict(page)
        order = data.get("order")
        if not isinstance(order, (int, float)) or isinstance(order, bool):
            data["order"] = idx
        data["imageUrl"] = build_image_url(filename)
        payloads.append(ScorePagePayload.model_validate(data))
    return payloads


def score_to_payload(row: Score) -> ScorePayload:
    """Project a persisted score into its public view."""
    config = parse_config(row.config_json)
    return ScorePayload(
        id=row.id,
        title=row.title,
        composer=row.composer or "",
        description=row.description or "",
        config=config,
        pages=_page_payloads(config.get("pages")),
        image_url=build_image_url(row.image_filename) if row.image_filename else None,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


async def list_scores(session: AsyncSession, user_id: str) -> list[ScorePayload]:
    """Return the user's scores, newest first."""
    stmt = (
        select(Score)
        .where(Score.user_id == user_id)
        .order_by(Score.created_at.desc(), Score.id.desc())
    )
    rows = (await session.execute(stmt)).scalars().all()
    return [score_to_payload(row) for row in rows]


async def get_score_row(session: AsyncSession, user_id: str, score_id: int) -> Score | None:
    stmt = select(Score).where(Score.id == score_id, Score.user_id == user_id)
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_score(session: AsyncSession, user_id: str, score_id: int) -> ScorePayload | None:
    row = await get_score_row(session, user_id, score_id)
    return score_to_payload(row) if row is not None else None


async def remove_score(
    session: AsyncSession,
    user_id: str,
    score_id: int,
    *,
    blob_store: LocalBlobStore,
) -> bool:
    """Delete a score and then its page images.

    Returns ``False`` when the score does not exist for this user.  The row
    is committed away before any file is touched; file removal is best
    effort.
    """
    row = await get_score_row(session, user_id, score_id)
    if row is None:
        return False

    files = score_files(row)
    await session.delete(row)
    await session.commit()
    await asyncio.to_thread(blob_store.remove_quietly, sorted(files))

    logger.info("✅ Deleted score %d for user=%s (%d files)", score_id, user_id, len(files))
    return True
