"""API route modules."""
from __future__ import annotations

from scorebook.api.routes import health, scores, sync

__all__ = ["health", "scores", "sync"]
