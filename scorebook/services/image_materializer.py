"""Decode page image references and write them to the blob store.

An :class:`EncodedImageSection` either points at a binary part uploaded in
the same multipart request (``file_key``) or carries inline base64 bytes,
optionally wrapped in a ``data:`` URL.  Materializing it produces exactly one
new blob with a freshly generated ``<uuid4><ext>`` filename.

The caller owns compensation: every filename is added to ``created_files``
*before* its write starts, so a failed sync can delete everything this
attempt may have put on disk.
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import os
import re
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from scorebook.config import settings
from scorebook.services.snapshot_sanitizer import EncodedImageSection
from scorebook.services.sync_errors import (
    BlobWriteTimeoutError,
    ImageTooLargeError,
    InvalidImageError,
)
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)

_DEFAULT_EXTENSION = ".png"
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


@dataclass(frozen=True)
class UploadedPart:
    """One binary part received alongside the snapshot, keyed by form field name."""

    content: bytes
    filename: str | None = None
    content_type: str | None = None


@dataclass(frozen=True)
class MaterializedImage:
    filename: str
    size_bytes: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def strip_data_url_prefix(data: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix, leaving plain base64 text."""
    trimmed = data.strip()
    head, sep, tail = trimmed.partition(",")
    if sep and "base64" in head:
        return tail
    return trimmed


def extension_for_mime(mime_type: str | None) -> str:
    """Map a MIME type to a file extension, defaulting to ``.png``."""
    if not mime_type:
        return _DEFAULT_EXTENSION
    normalized = mime_type.lower()
    if "jpeg" in normalized or "jpg" in normalized:
        return ".jpg"
    if "png" in normalized:
        return ".png"
    if "webp" in normalized:
        return ".webp"
    return _DEFAULT_EXTENSION


def choose_extension(image: EncodedImageSection) -> str:
    """Prefer the explicit filename's extension, else infer from the MIME type."""
    if image.filename:
        ext = os.path.splitext(image.filename)[1]
        if ext and _SAFE_EXTENSION.match(ext):
            return ext
    return extension_for_mime(image.mime_type)


def _decode_base64(data: str) -> bytes:
    text = "".join(strip_data_url_prefix(data).split())
    if not text:
        return b""
    text += "=" * (-len(text) % 4)
    try:
        return base64.b64decode(text)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError(f"Score page image is not valid base64: {exc}") from exc


def resolve_image_bytes(
    image: EncodedImageSection,
    uploaded_parts: Mapping[str, UploadedPart],
) -> bytes:
    """Return the raw bytes for *image*.

    An uploaded part named by ``file_key`` wins; its filename and content type
    are backfilled onto the section when the section has none.  Otherwise the
    inline ``data`` is decoded.
    """
    part = uploaded_parts.get(image.file_key) if image.file_key else None
    if part is not None:
        if not image.filename:
            image.filename = part.filename or None
        if not image.mime_type:
            image.mime_type = part.content_type or None
        return part.content
    return _decode_base64(image.data)


async def _settle(write: asyncio.Future[object]) -> None:
    """Wait for an abandoned write to finish, ignoring its outcome."""
    await asyncio.wait({write})
    if not write.cancelled() and write.exception() is not None:
        logger.debug("Abandoned page image write failed: %s", write.exception())


def validate_image_size(size_bytes: int, max_bytes: int) -> None:
    """Raise unless ``0 < size_bytes <= max_bytes``."""
    if size_bytes <= 0:
        raise InvalidImageError("Score page image data is empty or invalid")
    if size_bytes > max_bytes:
        raise ImageTooLargeError(size_bytes, max_bytes)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def materialize_image(
    image: EncodedImageSection,
    uploaded_parts: Mapping[str, UploadedPart],
    *,
    blob_store: LocalBlobStore,
    created_files: set[str],
    max_bytes: int | None = None,
    timeout: float | None = None,
) -> MaterializedImage:
    """Decode *image*, enforce the size limit, and write it as a new blob.

    Raises:
        InvalidImageError: the image resolves to zero or undecodable bytes.
        ImageTooLargeError: the image exceeds *max_bytes*.
        BlobWriteTimeoutError: the write did not finish within *timeout*.
    """
    limit = settings.score_max_upload_bytes if max_bytes is None else max_bytes
    write_timeout = settings.blob_write_timeout_seconds if timeout is None else timeout

    content = resolve_image_bytes(image, uploaded_parts)
    validate_image_size(len(content), limit)

    filename = f"{uuid.uuid4()}{choose_extension(image)}"
    created_files.add(filename)
    # A worker thread cannot be interrupted: on timeout or cancellation the
    # write is allowed to land first, so compensation can see the file.
    write = asyncio.ensure_future(asyncio.to_thread(blob_store.write, filename, content))
    try:
        await asyncio.wait_for(asyncio.shield(write), timeout=write_timeout)
    except asyncio.TimeoutError as exc:
        await _settle(write)
        raise BlobWriteTimeoutError(
            f"Writing page image {filename} exceeded {write_timeout}s"
        ) from exc
    except asyncio.CancelledError:
        await _settle(write)
        raise

    logger.debug("✅ Materialized page image %s (%d bytes)", filename, len(content))
    return MaterializedImage(filename=filename, size_bytes=len(content))


async def materialize_images(
    images: Sequence[EncodedImageSection],
    uploaded_parts: Mapping[str, UploadedPart],
    *,
    blob_store: LocalBlobStore,
    created_files: set[str],
    max_bytes: int | None = None,
    timeout: float | None = None,
) -> list[MaterializedImage]:
    """Materialize *images* concurrently, preserving input order.

    Every sibling runs to completion before the first failure is re-raised,
    so ``created_files`` is complete when the caller compensates.
    """
    results = await asyncio.gather(
        *(
            materialize_image(
                image,
                uploaded_parts,
                blob_store=blob_store,
                created_files=created_files,
                max_bytes=max_bytes,
                timeout=timeout,
            )
            for image in images
        ),
        return_exceptions=True,
    )
    materialized: list[MaterializedImage] = []
    for result in results:
        if isinstance(result, BaseException):
            raise result
        materialized.append(result)
    return materialized
