"""Database access."""

from chatzo.db.postgres import Database, db

__all__ = ["Database", "db"]
