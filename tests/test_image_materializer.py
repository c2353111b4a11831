"""Tests for scorebook.services.image_materializer.

Covers byte resolution (uploaded part vs inline base64), extension choice,
the size boundary, compensation bookkeeping, and write timeouts.
"""
from __future__ import annotations

import base64
import time
from unittest.mock import patch

import pytest

from scorebook.services.image_materializer import (
    UploadedPart,
    choose_extension,
    extension_for_mime,
    materialize_image,
    materialize_images,
    resolve_image_bytes,
    strip_data_url_prefix,
)
from scorebook.services.snapshot_sanitizer import EncodedImageSection
from scorebook.services.sync_errors import (
    BlobWriteTimeoutError,
    ImageTooLargeError,
    InvalidImageError,
)
from scorebook.storage.blob_store import LocalBlobStore

from factories import PNG_1X1, PNG_1X1_B64


def _inline(content: bytes, **kwargs: str) -> EncodedImageSection:
    return EncodedImageSection(data=base64.b64encode(content).decode(), **kwargs)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:

    def test_strip_data_url_prefix(self) -> None:
        assert strip_data_url_prefix(f"data:image/png;base64,{PNG_1X1_B64}") == PNG_1X1_B64
        assert strip_data_url_prefix(PNG_1X1_B64) == PNG_1X1_B64

    @pytest.mark.parametrize(
        "mime, ext",
        [
            ("image/jpeg", ".jpg"),
            ("image/JPG", ".jpg"),
            ("image/png", ".png"),
            ("image/webp", ".webp"),
            ("image/gif", ".png"),
            (None, ".png"),
        ],
    )
    def test_extension_for_mime(self, mime: str | None, ext: str) -> None:
        assert extension_for_mime(mime) == ext

    def test_filename_extension_wins(self) -> None:
        image = EncodedImageSection(filename="scan.tiff", mime_type="image/png")
        assert choose_extension(image) == ".tiff"

    def test_unsafe_filename_extension_ignored(self) -> None:
        image = EncodedImageSection(filename="scan.$$$", mime_type="image/webp")
        assert choose_extension(image) == ".webp"

    def test_uploaded_part_backfills_section(self) -> None:
        image = EncodedImageSection(file_key="p0")
        parts = {"p0": UploadedPart(content=b"bytes", filename="page.jpg", content_type="image/jpeg")}

        assert resolve_image_bytes(image, parts) == b"bytes"
        assert image.filename == "page.jpg"
        assert image.mime_type == "image/jpeg"

    def test_missing_part_falls_back_to_inline_data(self) -> None:
        image = EncodedImageSection(file_key="absent", data=PNG_1X1_B64)
        assert resolve_image_bytes(image, {}) == PNG_1X1


# ---------------------------------------------------------------------------
# materialize_image
# ---------------------------------------------------------------------------


class TestMaterializeImage:

    @pytest.mark.asyncio
    async def test_writes_exactly_one_blob(self, tmp_path) -> None:
        store = LocalBlobStore(tmp_path)
        created: set[str] = set()

        result = await materialize_image(
            _inline(PNG_1X1, mime_type="image/png"),
            {},
            blob_store=store,
            created_files=created,
        )

        assert result.filename.endswith(".png")
        assert result.size_bytes == len(PNG_1X1)
        assert created == {result.filename}
        assert store.read(result.filename) == PNG_1X1
        assert [p.name for p in tmp_path.iterdir()] == [result.filename]

    @pytest.mark.asyncio
    async def test_size_boundary(self, tmp_path) -> None:
        """Exactly max_bytes is accepted; one more byte is rejected before writing."""
        store = LocalBlobStore(tmp_path)
        created: set[str] = set()

        ok = await materialize_image(
            _inline(b"x" * 64), {}, blob_store=store, created_files=created, max_bytes=64
        )
        assert ok.size_bytes == 64

        with pytest.raises(ImageTooLargeError):
            await materialize_image(
                _inline(b"x" * 65), {}, blob_store=store, created_files=created, max_bytes=64
            )
        assert created == {ok.filename}

    def test_too_large_message_has_mb_figure(self) -> None:
        err = ImageTooLargeError(30 * 1024 * 1024, 20 * 1024 * 1024)
        assert "20MB" in str(err)

    @pytest.mark.asyncio
    async def test_zero_bytes_rejected(self, tmp_path) -> None:
        with pytest.raises(InvalidImageError):
            await materialize_image(
                EncodedImageSection(file_key="p0"),
                {"p0": UploadedPart(content=b"")},
                blob_store=LocalBlobStore(tmp_path),
                created_files=set(),
            )

    @pytest.mark.asyncio
    async def test_garbage_base64_rejected(self, tmp_path) -> None:
        with pytest.raises(InvalidImageError):
            await materialize_image(
                EncodedImageSection(data="@@@@ ####"),
                {},
                blob_store=LocalBlobStore(tmp_path),
                created_files=set(),
            )

    @pytest.mark.asyncio
    async def test_write_timeout(self, tmp_path) -> None:
        store = LocalBlobStore(tmp_path)
        created: set[str] = set()

        def slow_write(filename: str, content: bytes) -> None:
            time.sleep(0.5)

        with patch.object(store, "write", side_effect=slow_write):
            with pytest.raises(BlobWriteTimeoutError):
                await materialize_image(
                    _inline(PNG_1X1),
                    {},
                    blob_store=store,
                    created_files=created,
                    timeout=0.05,
                )
        # Registered before the write started, so the caller can compensate.
        assert len(created) == 1


# ---------------------------------------------------------------------------
# materialize_images
# ---------------------------------------------------------------------------


class TestMaterializeImages:

    @pytest.mark.asyncio
    async def test_preserves_order(self, tmp_path) -> None:
        store = LocalBlobStore(tmp_path)
        created: set[str] = set()
        images = [_inline(bytes([i]) * (i + 1)) for i in range(4)]

        results = await materialize_images(images, {}, blob_store=store, created_files=created)

        assert [r.size_bytes for r in results] == [1, 2, 3, 4]
        assert created == {r.filename for r in results}

    @pytest.mark.asyncio
    async def test_siblings_finish_before_failure_surfaces(self, tmp_path) -> None:
        """A bad page fails the batch, but every good sibling is tracked for cleanup."""
        store = LocalBlobStore(tmp_path)
        created: set[str] = set()
        images = [_inline(PNG_1X1), EncodedImageSection(data="===="), _inline(PNG_1X1)]

        with pytest.raises(InvalidImageError):
            await materialize_images(images, {}, blob_store=store, created_files=created)

        on_disk = {p.name for p in tmp_path.iterdir()}
        assert len(created) == 2
        assert on_disk == created
