"""Pydantic models for the Scorebook API."""
from __future__ import annotations

from scorebook.models.scores import (
    ScoreListResponse,
    ScorePagePayload,
    ScorePayload,
    SnapshotRecord,
    SyncResponse,
)

__all__ = [
    "ScoreListResponse",
    "ScorePagePayload",
    "ScorePayload",
    "SnapshotRecord",
    "SyncResponse",
]
