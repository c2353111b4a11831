"""Blob storage for score page images."""
from __future__ import annotations

from scorebook.storage.blob_store import LocalBlobStore, get_blob_store

__all__ = ["LocalBlobStore", "get_blob_store"]
