"""
Pytest fixtures for the rangescan test suite.

Provides:
- In-memory SQLite engine, session factory and session per test
- Key spaces small enough to reason about by hand
- Deterministic clock
- Captured structured logs
"""

import json
import logging
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rangescan_kernel.db.base import Base
from rangescan_kernel.db.engine import import_all_models
from rangescan_kernel.domain.clock import DeterministicClock
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyPage, KeyQuery, StoredKey
from rangescan_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from rangescan_kernel.selectors.key_selector import KeySelector
from rangescan_kernel.services.key_writer import KeyWriter


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture rangescan logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, engine):
            engine.start_scan("keys.log", {"collection": "users"})
            logs = captured_logs()
            assert any(r["message"] == "scan_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("rangescan")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    """In-memory SQLite shared by every session of one test."""
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    import_all_models()
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def keyspace():
    """Three-letter alphabet, keys up to three characters (40 keys)."""
    return KeySpace(alphabet="abc", max_length=3, batch_size=2)


@pytest.fixture
def default_keyspace():
    return KeySpace()


@pytest.fixture
def selector(session):
    return KeySelector(session)


@pytest.fixture
def put_keys(session):
    """Insert keys (or a key -> payload mapping) into a collection and commit."""

    def _put(collection, keys, keyspace=None):
        KeyWriter(session, keyspace or KeySpace()).put_keys(collection, keys)
        session.commit()

    return _put


class InMemoryKeyStore:
    """Dict-backed KeyStore with integer-offset cursors.

    ``fail_on_fetch`` makes the n-th fetch (1-based) raise, for failure
    tests.  ``fetches`` records every call.
    """

    def __init__(self, data=None, fail_on_fetch=None, error=None):
        self._data = {
            collection: dict(sorted(entries.items()))
            for collection, entries in (data or {}).items()
        }
        self.fetches = []
        self._fail_on_fetch = fail_on_fetch
        self._error = error or RuntimeError("store unavailable")

    def fetch(self, query: KeyQuery, limit: int, cursor: str | None = None) -> KeyPage:
        self.fetches.append((query, limit, cursor))
        if self._fail_on_fetch is not None and len(self.fetches) == self._fail_on_fetch:
            raise self._error

        entries = self._data.get(query.collection, {})
        keys = [
            key for key in entries
            if (query.start is None or key >= query.start)
            and (query.end is None or key <= query.end)
        ]
        offset = int(cursor) if cursor else 0
        chosen = keys[offset:offset + limit]
        items = tuple(
            StoredKey(
                collection=query.collection,
                key=key,
                payload=None if query.keys_only else entries[key],
            )
            for key in chosen
        )
        next_cursor = str(offset + len(chosen)) if chosen else None
        return KeyPage(items=items, cursor=next_cursor)


@pytest.fixture
def memory_store_factory():
    return InMemoryKeyStore
