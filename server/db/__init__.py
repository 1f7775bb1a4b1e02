"""Database layer: SQLAlchemy models and session."""

from server.db.models import (
    Attempt,
    Base,
    Chunk,
    Course,
    Progress,
    ReviewQueueItem,
    Section,
    Upload,
    User,
    utcnow,
)
from server.db.session import get_db, init_db

__all__ = [
    "Base",
    "User",
    "Course",
    "Section",
    "Chunk",
    "Upload",
    "Attempt",
    "Progress",
    "ReviewQueueItem",
    "utcnow",
    "get_db",
    "init_db",
]
