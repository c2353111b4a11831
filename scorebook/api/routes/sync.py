"""Snapshot sync routes.

Endpoint summary:
  POST /sync  — upload a full client snapshot and reconcile the user's scores
  GET  /sync  — fetch the last synced snapshot

``POST /sync`` accepts either a JSON body (the snapshot itself) or
``multipart/form-data`` with a ``metadata`` field holding the snapshot JSON
and one binary part per page image, keyed by the field name the snapshot's
``image.fileKey`` refers to.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile

from scorebook.auth.dependencies import require_user_id
from scorebook.config import settings
from scorebook.db import get_db
from scorebook.models.scores import SnapshotRecord, SyncResponse
from scorebook.services.image_materializer import UploadedPart
from scorebook.services.score_sync import load_snapshot_for_user, persist_snapshot_for_user
from scorebook.services.sync_errors import (
    BlobWriteTimeoutError,
    ImageTooLargeError,
    InvalidImageError,
    PersistenceError,
    SnapshotValidationError,
)
from scorebook.storage.blob_store import LocalBlobStore, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sync"])
limiter = Limiter(key_func=get_remote_address)

_METADATA_FIELD = "metadata"
# Inline base64 pages can push the metadata field well past Starlette's 1 MiB default.
_MAX_METADATA_PART_BYTES = 256 * 1024 * 1024


def _parse_json(raw: bytes | str, what: str) -> object:
    if not raw or not raw.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{what} is empty.",
        )
    try:
        return json.loads(raw)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{what} is not valid JSON.",
        )


async def _read_sync_request(request: Request) -> tuple[object, dict[str, UploadedPart]]:
    """Return the raw snapshot document and any uploaded page images."""
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        return _parse_json(await request.body(), "Request body"), {}

    form = await request.form(max_part_size=_MAX_METADATA_PART_BYTES)
    metadata = form.get(_METADATA_FIELD)
    if metadata is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing 'metadata' field.",
        )
    if isinstance(metadata, UploadFile):
        metadata = await metadata.read()
    payload = _parse_json(metadata, "Metadata")

    parts: dict[str, UploadedPart] = {}
    for key, value in form.multi_items():
        if key == _METADATA_FIELD or not isinstance(value, UploadFile):
            continue
        parts[key] = UploadedPart(
            content=await value.read(),
            filename=value.filename,
            content_type=value.content_type,
        )
    return payload, parts


@router.post("/sync", response_model=SyncResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.sync_rate_limit)
async def post_sync(
    request: Request,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> SyncResponse:
    """Replace the user's snapshot and reconcile their scores against it.

    Status codes:
      400 — malformed snapshot, metadata, or page image
      413 — a page image exceeds the upload limit
      504 — a page image write timed out
      500 — the relational write failed (nothing was changed)
    """
    payload, parts = await _read_sync_request(request)

    try:
        return await persist_snapshot_for_user(
            db,
            user_id,
            payload,
            parts,
            blob_store=blob_store,
        )
    except (SnapshotValidationError, InvalidImageError) as exc:
        logger.warning("⚠️ Rejected sync for user=%s: %s", user_id, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except ImageTooLargeError as exc:
        logger.warning("⚠️ Rejected sync for user=%s: %s", user_id, exc)
        raise HTTPException(status_code=413, detail=str(exc))
    except BlobWriteTimeoutError as exc:
        logger.error("❌ Sync timed out for user=%s: %s", user_id, exc)
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(exc))
    except PersistenceError as exc:
        logger.error("❌ Sync failed for user=%s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Could not save scores. Nothing was changed.",
        )


@router.get("/sync", response_model=SnapshotRecord)
async def get_sync(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db),
) -> SnapshotRecord:
    """Return the last synced snapshot, or 404 if the user never synced."""
    try:
        record = await load_snapshot_for_user(db, user_id)
    except SnapshotValidationError as exc:
        logger.error("❌ Stored snapshot for user=%s is unreadable: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stored snapshot is unreadable.",
        )
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No snapshot has been synced yet.",
        )
    return record
