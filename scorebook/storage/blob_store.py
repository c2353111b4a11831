"""Local filesystem blob store for score page images.

All sync-engine code that reads, writes, or deletes page images goes through
this module.  No service builds its own paths.

Layout
------
Images live flat under the configured upload directory::

    <score_upload_dir>/<uuid4><ext>

Filenames are freshly generated identifiers, so two writers never collide and
a write never overwrites an existing blob.  The same directory is served as
static files under ``settings.score_upload_route``.
"""
from __future__ import annotations

import logging
import pathlib
from collections.abc import Iterable

from scorebook.config import settings

logger = logging.getLogger(__name__)


class LocalBlobStore:
    """Flat directory of page images addressed by bare filename."""

    def __init__(self, root: str | pathlib.Path) -> None:
        self.root = pathlib.Path(root)

    def path_for(self, filename: str) -> pathlib.Path:
        """Return the on-disk path for *filename*.

        Raises:
            ValueError: when *filename* is empty or would escape the root.
        """
        name = filename.strip()
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"Invalid blob filename: {filename!r}")
        return self.root / name

    def ensure_root(self) -> None:
        """Create the root directory if it does not exist yet."""
        self.root.mkdir(parents=True, exist_ok=True)

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def read(self, filename: str) -> bytes | None:
        """Return the bytes for *filename*, or ``None`` when it is absent."""
        path = self.path_for(filename)
        if not path.is_file():
            return None
        return path.read_bytes()

    def write(self, filename: str, content: bytes) -> pathlib.Path:
        """Write *content* as a new blob.

        Raises:
            FileExistsError: when a blob with this filename already exists.
        """
        path = self.path_for(filename)
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("xb") as fh:
            fh.write(content)
        logger.debug("✅ Stored blob %s (%d bytes)", filename, len(content))
        return path

    def delete(self, filename: str) -> bool:
        """Delete *filename*.

        Returns ``True`` when a file was removed and ``False`` when it was
        already absent.  Any other ``OSError`` propagates.
        """
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug("⚠️ Blob %s already absent", filename)
            return False
        logger.debug("✅ Deleted blob %s", filename)
        return True

    def remove_quietly(self, filenames: Iterable[str]) -> None:
        """Delete every name in *filenames*, logging instead of raising.

        Used for compensation after a failed sync attempt and for best-effort
        cleanup after a direct score delete.
        """
        for filename in filenames:
            if not filename:
                continue
            try:
                self.delete(filename)
            except (OSError, ValueError) as exc:
                logger.warning("⚠️ Could not remove blob %s: %s", filename, exc)


def get_blob_store() -> LocalBlobStore:
    """FastAPI dependency returning the configured score image store."""
    return LocalBlobStore(settings.score_upload_dir)
