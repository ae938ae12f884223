"""Shared test fixtures for the courier test suite."""

import pytest
import tempfile
import os
from unittest.mock import Mock

# Add parent directory to path so we can import courier modules
import sys
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from courier.db import init_db, close_db
from courier.services import (
    DeliveryPipeline,
    DeliverySettings,
    LifecycleBus,
    MemoryStore,
    PersistentQueue,
    SubmissionController,
    TransportMode,
)


@pytest.fixture
def test_db():
    """Create a temporary test database."""
    # Create a temporary file for the test database
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    # Initialize the database
    init_db(db_path)

    yield db_path

    # Cleanup
    close_db()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def store():
    """In-memory durable store stand-in."""
    return MemoryStore()


@pytest.fixture
def bus():
    return LifecycleBus()


def http_response(status_code=200, text='{"ok": true}'):
    """Fake requests.Response with the attributes transports read."""
    response = Mock()
    response.status_code = status_code
    response.text = text
    return response


@pytest.fixture
def http_session():
    """Mock requests.Session that answers 200 by default."""
    session = Mock()
    session.request.return_value = http_response()
    return session


@pytest.fixture
def failing_session():
    """Mock requests.Session that always answers 500."""
    session = Mock()
    session.request.return_value = http_response(500, "oops")
    return session


def make_pipeline(store, endpoint="", session=None, channel=None,
                  mode=TransportMode.CONFIRMABLE, key="rw2_queue_v1", timeout_ms=8000):
    settings = DeliverySettings(endpoint_url=endpoint, mode=mode, timeout_ms=timeout_ms)
    return DeliveryPipeline(PersistentQueue(store, key), settings, channel=channel, session=session)


def make_controller(store, bus, endpoint="", session=None, **kwargs):
    pipeline = make_pipeline(store, endpoint=endpoint, session=session)
    return SubmissionController(pipeline, bus, MemoryStore(), **kwargs)


class FakeFetcher:
    """Records fetched locations and serves sources by file name."""

    def __init__(self, sources=None, failing=()):
        self.sources = sources or {}
        self.failing = set(failing)
        self.calls = []

    def __call__(self, location):
        self.calls.append(location)
        name = location.rsplit("/", 1)[-1].split("?", 1)[0]
        if name in self.failing:
            raise IOError(f"cannot fetch {location}")
        return self.sources.get(name, b"")
