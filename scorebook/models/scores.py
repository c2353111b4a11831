"""Pydantic v2 response models for the score and sync API.

All wire-format fields use camelCase via CamelModel.  Python code uses
snake_case throughout; only serialisation to JSON uses camelCase.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from scorebook.models.base import CamelModel, OpenCamelModel


class ScorePagePayload(OpenCamelModel):
    """One page of a score as the client sees it.

    Any extra page metadata stored in ``config_json`` is passed through.
    """

    filename: str
    image_url: str = Field(..., description="Public path of the page image")
    order: int | float
    width: int | float | None = None
    height: int | float | None = None


class ScorePayload(CamelModel):
    """Public projection of a persisted score."""

    id: int
    title: str
    composer: str = ""
    description: str = ""
    config: dict[str, Any] = Field(default_factory=dict)
    pages: list[ScorePagePayload] = Field(default_factory=list)
    # Null only for legacy rows without a cover pointer
    image_url: str | None = None
    created_at: datetime
    updated_at: datetime


class ScoreListResponse(CamelModel):
    """Response for GET /scores."""

    scores: list[ScorePayload] = Field(default_factory=list)


class SnapshotRecord(CamelModel):
    """Last synced snapshot document plus its timestamps."""

    snapshot: dict[str, Any]
    saved_at: str
    exported_at: str


class SyncResponse(SnapshotRecord):
    """Response for POST /sync.

    ``scores`` lists the committed scores in the order the client sent them;
    it is empty when the snapshot carried no ``scores`` section.
    """

    scores: list[ScorePayload] = Field(default_factory=list)
