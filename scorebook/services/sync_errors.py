"""Exception types for the score sync engine.

Route handlers map each subclass of :class:`ScoreSyncError` to an HTTP status.
Everything raised before the relational commit has already been compensated
(speculative blobs removed, transaction rolled back) by the time the caller
sees it.
"""
from __future__ import annotations

from dataclasses import dataclass


class ScoreSyncError(Exception):
    """Base exception for snapshot sync failures."""


class SnapshotValidationError(ScoreSyncError):
    """The snapshot document has the wrong shape (root, format, version, scores)."""


class InvalidImageError(ScoreSyncError):
    """An image section decoded to zero or undecodable bytes."""


class ImageTooLargeError(ScoreSyncError):
    """A decoded page image exceeds the configured byte limit."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        max_mb = round(max_bytes / 1024 / 1024)
        super().__init__(
            f"Score page image is too large: {size_bytes} bytes "
            f"(limit is {max_mb}MB per image)"
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


class BlobWriteTimeoutError(ScoreSyncError):
    """Writing a page image to the blob store did not finish in time."""


class PersistenceError(ScoreSyncError):
    """A relational write inside the sync transaction failed."""


@dataclass(frozen=True)
class GarbageCollectionWarning:
    """A post-commit blob deletion that failed for a reason other than absence.

    Never raised; collected into the orphan-collection report and logged.
    """

    filename: str
    error: str
