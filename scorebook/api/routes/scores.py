"""Score routes — read and delete individual scores.

Scores are created and updated only through ``POST /sync``.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from scorebook.auth.dependencies import require_user_id
from scorebook.db import get_db
from scorebook.models.scores import ScoreListResponse, ScorePayload
from scorebook.services import scores as score_service
from scorebook.storage.blob_store import LocalBlobStore, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scores", tags=["scores"])


@router.get("", response_model=ScoreListResponse)
async def list_scores(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScoreListResponse:
    """List the user's scores, newest first."""
    scores = await score_service.list_scores(db, user_id)
    return ScoreListResponse(scores=scores)


@router.get("/{score_id}", response_model=ScorePayload)
async def get_score(
    score_id: int,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
) -> ScorePayload:
    score = await score_service.get_score(db, user_id, score_id)
    if score is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Score not found.",
        )
    return score


@router.delete("/{score_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_score(
    score_id: int,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> None:
    """Delete a score and its page images."""
    removed = await score_service.remove_score(db, user_id, score_id, blob_store=blob_store)
    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Score not found.",
        )
