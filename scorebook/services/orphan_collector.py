"""Post-commit cleanup of superseded page images.

Runs only after the relational commit succeeded.  Relational state is already
durable at that point, so nothing here may fail the sync: a missing file is
expected (an earlier partial cleanup got there first) and any other I/O
error is logged and reported, never raised.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from scorebook.services.sync_errors import GarbageCollectionWarning
from scorebook.storage.blob_store import LocalBlobStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionReport:
    removed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    warnings: list[GarbageCollectionWarning] = field(default_factory=list)


def _collect(blob_store: LocalBlobStore, filenames: list[str]) -> CollectionReport:
    report = CollectionReport()
    for filename in filenames:
        try:
            if blob_store.delete(filename):
                report.removed.append(filename)
            else:
                report.missing.append(filename)
        except (OSError, ValueError) as exc:
            warning = GarbageCollectionWarning(filename=filename, error=str(exc))
            report.warnings.append(warning)
            logger.warning("⚠️ Could not delete orphaned page image %s: %s", filename, exc)
    return report


async def collect_orphans(
    blob_store: LocalBlobStore,
    candidates: Iterable[str],
) -> CollectionReport:
    """Delete every candidate blob, tolerating absence; never raises for I/O."""
    filenames = sorted({name for name in candidates if name})
    if not filenames:
        return CollectionReport()

    report = await asyncio.to_thread(_collect, blob_store, filenames)
    logger.info(
        "✅ Orphan collection: %d removed, %d already absent, %d failed",
        len(report.removed),
        len(report.missing),
        len(report.warnings),
    )
    return report
