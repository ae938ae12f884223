"""Key-value storage backends used by the delivery queues."""

import logging
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from courier.db import get_session, StorageEntry
from courier.errors import StorageUnavailable

logger = logging.getLogger(__name__)


class MemoryStore:
    """Process-scoped store. Also serves as the session capture store."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str):
        self._items[key] = value

    def remove_item(self, key: str):
        self._items.pop(key, None)


class DatabaseStore:
    """
    Durable store backed by the storage_entries table.

    The first failing read or write switches the store to an in-memory
    fallback for the rest of the process. Callers never see the error.
    """

    def __init__(self, session_factory: Callable = get_session):
        """
        Initialize the store.

        Args:
            session_factory: Context manager factory yielding SQLAlchemy sessions
        """
        self._session_factory = session_factory
        self._fallback: Optional[MemoryStore] = None

    @property
    def available(self) -> bool:
        """Whether writes still reach the database."""
        return self._fallback is None

    def get_item(self, key: str) -> Optional[str]:
        if self._fallback is not None:
            return self._fallback.get_item(key)
        try:
            return self._read(key)
        except StorageUnavailable as e:
            self._degrade(e)
            return None

    def set_item(self, key: str, value: str):
        if self._fallback is not None:
            self._fallback.set_item(key, value)
            return
        try:
            self._write(key, value)
        except StorageUnavailable as e:
            self._degrade(e)
            self._fallback.set_item(key, value)

    def remove_item(self, key: str):
        if self._fallback is not None:
            self._fallback.remove_item(key)
            return
        try:
            with self._session() as session:
                session.query(StorageEntry).filter_by(key=key).delete()
        except StorageUnavailable as e:
            self._degrade(e)

    def _read(self, key: str) -> Optional[str]:
        with self._session() as session:
            entry = session.query(StorageEntry).filter_by(key=key).first()
            return entry.value if entry else None

    def _write(self, key: str, value: str):
        with self._session() as session:
            entry = session.query(StorageEntry).filter_by(key=key).first()
            if entry:
                entry.value = value
            else:
                session.add(StorageEntry(key=key, value=value))

    def _session(self):
        return _GuardedSession(self._session_factory)

    def _degrade(self, error: Exception):
        logger.warning(f"Durable storage unavailable, continuing in memory: {error}")
        self._fallback = MemoryStore()


class _GuardedSession:
    """Wraps a session context so database failures surface as StorageUnavailable."""

    def __init__(self, session_factory: Callable):
        self._factory = session_factory
        self._context = None

    def __enter__(self):
        try:
            self._context = self._factory()
            return self._context.__enter__()
        except (SQLAlchemyError, RuntimeError) as e:
            raise StorageUnavailable(str(e)) from e

    def __exit__(self, exc_type, exc, tb):
        try:
            suppress = self._context.__exit__(exc_type, exc, tb)
        except (SQLAlchemyError, RuntimeError) as e:
            raise StorageUnavailable(str(e)) from e
        if isinstance(exc, (SQLAlchemyError, RuntimeError)):
            raise StorageUnavailable(str(exc)) from exc
        return suppress
