"""
Database module for Scorebook.

Provides async SQLAlchemy support with PostgreSQL and SQLite.
"""
from __future__ import annotations

from scorebook.db.database import (
    get_db,
    init_db,
    close_db,
)
from scorebook.db.models import Score, Snapshot

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "Score",
    "Snapshot",
]
