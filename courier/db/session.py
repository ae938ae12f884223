"""Database session management for the durable key/value store.

Queues persist as JSON text in the storage_entries table, one row per queue
key. Callers go through get_session(); DatabaseStore turns its failures into
StorageUnavailable.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from contextlib import contextmanager
from pathlib import Path

from .models import Base

_engine = None
_SessionLocal = None


def init_db(db_path: str):
    """
    Open (or create) the SQLite database and its storage_entries table.

    Args:
        db_path: Path of the SQLite file; parent directories are created

    Returns:
        The SQLAlchemy engine
    """
    global _engine, _SessionLocal

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _engine = create_engine(f"sqlite:///{db_path}", echo=False)
    _SessionLocal = sessionmaker(bind=_engine)

    Base.metadata.create_all(_engine)

    return _engine


def close_db():
    """Dispose of the engine; later sessions fail until init_db() runs again."""
    global _engine, _SessionLocal

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None


@contextmanager
def get_session():
    """Session that commits on success and rolls back on error."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    session = _SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
