"""Services for the Scorebook sync engine."""
from __future__ import annotations

from scorebook.services.score_sync import (
    load_snapshot_for_user,
    persist_snapshot_for_user,
    sync_scores,
)
from scorebook.services.scores import get_score, list_scores, remove_score
from scorebook.services.sync_errors import (
    BlobWriteTimeoutError,
    ImageTooLargeError,
    InvalidImageError,
    PersistenceError,
    ScoreSyncError,
    SnapshotValidationError,
)

__all__ = [
    "load_snapshot_for_user",
    "persist_snapshot_for_user",
    "sync_scores",
    "get_score",
    "list_scores",
    "remove_score",
    "BlobWriteTimeoutError",
    "ImageTooLargeError",
    "InvalidImageError",
    "PersistenceError",
    "ScoreSyncError",
    "SnapshotValidationError",
]
