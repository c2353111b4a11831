"""Snapshot sanitizer — turns an untyped client document into a canonical Snapshot.

The sanitizer is strict about document shape and permissive about items:

- The root must be a mapping, ``format`` must equal ``SNAPSHOT_FORMAT``,
  ``version`` must be a finite number and ``scores`` (when present) must be a
  list.  Violations raise :class:`SnapshotValidationError`.
- Individual scores, pages and vocabulary items that are malformed are
  dropped silently, so an older or newer client never loses a whole sync to
  one bad entry.

``sanitize_snapshot`` is idempotent: feeding ``Snapshot.to_dict()`` back in
yields an equal ``Snapshot``.

Boundary rules:
  - Pure functions only.  No database, no blob store, no settings beyond the
    format constant.
"""
from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from scorebook.config import SNAPSHOT_FORMAT
from scorebook.services.sync_errors import SnapshotValidationError

logger = logging.getLogger(__name__)

# Page keys with a dedicated field; everything else on a page is passthrough meta.
_KNOWN_PAGE_FIELDS = frozenset({"order", "width", "height", "cover", "image"})

_ACCENT_SPLIT = re.compile(r"[,，/\s]+")

_DEFAULT_WORD_TAG = "普通"


# ---------------------------------------------------------------------------
# Canonical types
# ---------------------------------------------------------------------------


@dataclass
class EncodedImageSection:
    """Inline base64 bytes, or a ``file_key`` into the request's uploaded parts."""

    data: str = ""
    mime_type: str | None = None
    filename: str | None = None
    file_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"encoding": "base64", "data": self.data}
        if self.mime_type is not None:
            out["mimeType"] = self.mime_type
        if self.filename is not None:
            out["filename"] = self.filename
        if self.file_key is not None:
            out["fileKey"] = self.file_key
        return out


@dataclass
class ScorePageSnapshot:
    order: int | float
    image: EncodedImageSection
    width: int | float | None = None
    height: int | float | None = None
    cover: bool | None = None
    meta: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        # Meta is flattened back onto the page so a second pass recovers it.
        out: dict[str, Any] = dict(self.meta or {})
        out["order"] = self.order
        if self.width is not None:
            out["width"] = self.width
        if self.height is not None:
            out["height"] = self.height
        if self.cover is not None:
            out["cover"] = self.cover
        out["image"] = self.image.to_dict()
        return out


@dataclass
class ScoreSnapshot:
    title: str
    pages: list[ScorePageSnapshot]
    id: int | None = None
    composer: str = ""
    description: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    cover_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.id is not None:
            out["id"] = self.id
        out["title"] = self.title
        out["composer"] = self.composer
        out["description"] = self.description
        out["config"] = dict(self.config)
        out["pages"] = [page.to_dict() for page in self.pages]
        if self.cover_index is not None:
            out["coverIndex"] = self.cover_index
        return out


@dataclass
class WordItem:
    id: int | float
    jp: str
    reading: str
    pos: str
    cn: str
    tag: str
    accent: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "jp": self.jp,
            "reading": self.reading,
            "pos": self.pos,
            "cn": self.cn,
            "tag": self.tag,
            "accent": list(self.accent),
        }


@dataclass
class VocabPage:
    page: int | float
    items: list[WordItem] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"page": self.page, "items": [item.to_dict() for item in self.items]}


@dataclass
class Snapshot:
    """Canonical client snapshot.

    ``scores is None`` means the client did not send a score collection and
    the persisted scores must be left alone; ``scores == []`` means "delete
    every score".
    """

    version: int | float
    exported_at: str
    format: str = SNAPSHOT_FORMAT
    pages: list[VocabPage] = field(default_factory=list)
    api_config: dict[str, str] = field(default_factory=dict)
    exam_history: dict[str, Any] = field(default_factory=dict)
    pdf: dict[str, str] | None = None
    scores: list[ScoreSnapshot] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase wire document."""
        out: dict[str, Any] = {
            "format": self.format,
            "version": self.version,
            "exportedAt": self.exported_at,
            "pages": [page.to_dict() for page in self.pages],
            "apiConfig": dict(self.api_config),
            "examHistory": dict(self.exam_history),
            "pdf": dict(self.pdf) if self.pdf is not None else None,
        }
        if self.scores is not None:
            out["scores"] = [score.to_dict() for score in self.scores]
        return out


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _to_number(value: object) -> int | float | None:
    """Parse a number or numeric string; ``None`` for anything non-finite.

    Integral values come back as ``int`` so ``1`` and ``"1"`` and ``1.0`` all
    canonicalize to the same thing.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    elif not isinstance(value, (int, float)):
        return None
    try:
        num = float(value)
    except (OverflowError, ValueError):
        # Integers beyond float range count as non-finite.
        return None
    if not math.isfinite(num):
        return None
    return int(num) if num.is_integer() else num


def _to_int(value: object) -> int | None:
    num = _to_number(value)
    return num if isinstance(num, int) else None


def _trimmed(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_trimmed(value: object) -> str | None:
    text = _trimmed(value)
    return text or None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Auxiliary study data
# ---------------------------------------------------------------------------


def _normalize_accent(value: object) -> list[str]:
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    if isinstance(value, str):
        return [part for part in _ACCENT_SPLIT.split(value.strip()) if part]
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        num = _to_number(value)
        return [str(num)] if num is not None else []
    return []


def _sanitize_word_item(value: object, index: int) -> WordItem | None:
    if not isinstance(value, Mapping):
        return None
    jp = _trimmed(value.get("jp"))
    pos = _trimmed(value.get("pos"))
    cn = _trimmed(value.get("cn"))
    if not jp or not pos or not cn:
        return None
    item_id = _to_number(value.get("id"))
    return WordItem(
        id=item_id if item_id is not None else index + 1,
        jp=jp,
        reading=_trimmed(value.get("reading")),
        pos=pos,
        cn=cn,
        tag=_trimmed(value.get("tag")) or _DEFAULT_WORD_TAG,
        accent=_normalize_accent(value.get("accent")),
    )


def _sanitize_vocab_pages(value: object) -> list[VocabPage]:
    if not isinstance(value, list):
        return []
    pages: list[VocabPage] = []
    for entry in value:
        if not isinstance(entry, Mapping):
            continue
        page_no = _to_number(entry.get("page"))
        if page_no is None or page_no <= 0:
            continue
        raw_items = entry.get("items")
        items = [
            item
            for idx, raw in enumerate(raw_items if isinstance(raw_items, list) else [])
            if (item := _sanitize_word_item(raw, idx)) is not None
        ]
        pages.append(VocabPage(page=page_no, items=items))
    return pages


def _sanitize_api_config(value: object) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {
        key: value[key]
        for key in ("apiBase", "model", "apiKey")
        if isinstance(value.get(key), str)
    }


def _sanitize_exam_history(value: object) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def _sanitize_pdf(value: object) -> dict[str, str] | None:
    if not isinstance(value, Mapping):
        return None
    if value.get("encoding") != "base64" or not isinstance(value.get("data"), str):
        return None
    return {"encoding": "base64", "data": value["data"]}


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


def sanitize_image_section(value: object) -> EncodedImageSection | None:
    """Return the canonical image section, or ``None`` if it cannot be resolved.

    A non-empty ``fileKey`` wins over inline data.  Inline data must be a
    non-empty string and, when ``encoding`` is given, it must be ``base64``.
    """
    if not isinstance(value, Mapping):
        return None

    file_key = _trimmed(value.get("fileKey"))
    if file_key:
        return EncodedImageSection(
            file_key=file_key,
            mime_type=_optional_trimmed(value.get("mimeType")),
            filename=_optional_trimmed(value.get("filename")),
        )

    encoding = value.get("encoding", "base64")
    data = value.get("data")
    if encoding != "base64" or not isinstance(data, str) or not data.strip():
        return None
    return EncodedImageSection(
        data=data.strip(),
        mime_type=_optional_trimmed(value.get("mimeType")),
        filename=_optional_trimmed(value.get("filename")),
    )


def _sanitize_score_page(value: object, index: int) -> ScorePageSnapshot | None:
    if not isinstance(value, Mapping):
        return None
    image = sanitize_image_section(value.get("image"))
    if image is None:
        return None

    order = _to_number(value.get("order"))
    cover = value.get("cover")
    meta = {key: val for key, val in value.items() if key not in _KNOWN_PAGE_FIELDS}
    return ScorePageSnapshot(
        order=order if order is not None else index,
        image=image,
        width=_to_number(value.get("width")),
        height=_to_number(value.get("height")),
        cover=cover if isinstance(cover, bool) else None,
        meta=meta or None,
    )


def _sanitize_score(value: object) -> ScoreSnapshot | None:
    if not isinstance(value, Mapping):
        return None
    title = _trimmed(value.get("title"))
    if not title:
        return None

    raw_pages = value.get("pages")
    pages = [
        page
        for idx, raw in enumerate(raw_pages if isinstance(raw_pages, list) else [])
        if (page := _sanitize_score_page(raw, idx)) is not None
    ]
    if not pages:
        logger.debug("Dropping score %r: no usable pages", title)
        return None

    cover_index = _to_int(value.get("coverIndex"))
    if cover_index is not None and cover_index < 0:
        cover_index = None

    description = value.get("description")
    config = value.get("config")
    return ScoreSnapshot(
        id=_to_int(value.get("id")),
        title=title,
        composer=_trimmed(value.get("composer")),
        description=description if isinstance(description, str) else "",
        config=dict(config) if isinstance(config, Mapping) else {},
        pages=pages,
        cover_index=cover_index,
    )


def sanitize_scores(value: object) -> list[ScoreSnapshot] | None:
    """Sanitize the ``scores`` section.

    Returns ``None`` when the section is absent.

    Raises:
        SnapshotValidationError: when ``scores`` is present but not a list.
    """
    if value is None:
        return None
    if not isinstance(value, list):
        raise SnapshotValidationError("scores must be a list")
    scores = [score for raw in value if (score := _sanitize_score(raw)) is not None]
    if len(scores) != len(value):
        logger.info("⚠️ Dropped %d malformed score entries", len(value) - len(scores))
    return scores


def sanitize_snapshot(payload: object) -> Snapshot:
    """Validate *payload* and return its canonical :class:`Snapshot`.

    Raises:
        SnapshotValidationError: when the document shape is invalid.
    """
    if not isinstance(payload, Mapping):
        raise SnapshotValidationError("Snapshot must be a JSON object")
    if payload.get("format") != SNAPSHOT_FORMAT:
        raise SnapshotValidationError(f"format must be {SNAPSHOT_FORMAT}")

    raw_version = payload.get("version")
    version = _to_number(1 if raw_version is None else raw_version)
    if version is None:
        raise SnapshotValidationError("version must be a finite number")

    raw_exported_at = payload.get("exportedAt")
    exported_at = (
        raw_exported_at
        if isinstance(raw_exported_at, str) and raw_exported_at.strip()
        else utc_now_iso()
    )

    return Snapshot(
        format=SNAPSHOT_FORMAT,
        version=version,
        exported_at=exported_at,
        pages=_sanitize_vocab_pages(payload.get("pages")),
        api_config=_sanitize_api_config(payload.get("apiConfig")),
        exam_history=_sanitize_exam_history(payload.get("examHistory")),
        pdf=_sanitize_pdf(payload.get("pdf")),
        scores=sanitize_scores(payload.get("scores")),
    )
