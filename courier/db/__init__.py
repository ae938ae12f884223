"""Database models and session management."""

from .models import Base, StorageEntry
from .session import get_session, init_db, close_db

__all__ = [
    "Base",
    "StorageEntry",
    "get_session",
    "init_db",
    "close_db",
]
