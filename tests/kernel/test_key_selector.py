"""
Tests for rangescan_kernel.selectors.key_selector and the KeyWriter service.

Uses in-memory SQLite with real ORM models.
"""

import pytest
from sqlalchemy import func, select

from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyQuery, KeyStore
from rangescan_kernel.exceptions import (
    CursorDecodeError,
    InvalidKeyCharacterError,
    StoreQueryError,
)
from rangescan_kernel.models.stored_key import StoredKeyModel
from rangescan_kernel.selectors.key_selector import (
    KeySelector,
    decode_cursor,
    encode_cursor,
)
from rangescan_kernel.services.key_writer import KeyWriter

KEYS = ["a", "aa", "ab", "b", "ba", "bb", "c"]


@pytest.fixture
def seeded(put_keys):
    put_keys("letters", KEYS)
    put_keys("other", ["a", "z"])


# =============================================================================
# Cursor tokens
# =============================================================================


class TestCursor:

    def test_round_trip(self):
        assert decode_cursor(encode_cursor("ab")) == "ab"

    def test_empty_key(self):
        assert decode_cursor(encode_cursor("")) == ""

    def test_token_is_urlsafe(self):
        token = encode_cursor("key/with+symbols")
        assert "=" not in token
        assert "/" not in token and "+" not in token

    @pytest.mark.parametrize("token", ["not base64 !!", "bm9wZQ", "e30"])
    def test_garbage_rejected(self, token):
        with pytest.raises(CursorDecodeError) as exc_info:
            decode_cursor(token)
        assert exc_info.value.cursor == token
        assert exc_info.value.code == "CURSOR_DECODE_FAILED"


# =============================================================================
# Fetch
# =============================================================================


class TestFetch:

    def test_satisfies_protocol(self, selector):
        assert isinstance(selector, KeyStore)

    def test_ordered_within_collection(self, selector, seeded):
        page = selector.fetch(KeyQuery("letters"), limit=100)
        assert [item.key for item in page.items] == KEYS
        assert all(item.collection == "letters" for item in page.items)

    def test_pages_resume_after_cursor(self, selector, seeded):
        query = KeyQuery("letters")
        seen = []
        cursor = None
        while True:
            page = selector.fetch(query, limit=3, cursor=cursor)
            seen.extend(item.key for item in page.items)
            if len(page) < 3:
                break
            cursor = page.cursor
        assert seen == KEYS

    def test_inclusive_bounds(self, selector, seeded):
        page = selector.fetch(KeyQuery("letters", start="ab", end="ba"), limit=10)
        assert [item.key for item in page.items] == ["ab", "b", "ba"]

    def test_empty_page_has_no_cursor(self, selector, seeded):
        page = selector.fetch(KeyQuery("letters", start="d"), limit=10)
        assert len(page) == 0
        assert page.cursor is None

    def test_keys_only_omits_payload(self, selector, put_keys):
        put_keys("photos", {"p1": {"by": "ann"}})
        page = selector.fetch(KeyQuery("photos"), limit=10)
        assert page.items[0].payload is None

    def test_payload_returned(self, selector, put_keys):
        put_keys("photos", {"p1": {"by": "ann"}})
        page = selector.fetch(KeyQuery("photos", keys_only=False), limit=10)
        assert page.items[0].payload == {"by": "ann"}

    def test_limit_must_be_positive(self, selector):
        with pytest.raises(ValueError):
            selector.fetch(KeyQuery("letters"), limit=0)

    def test_bad_cursor(self, selector, seeded):
        with pytest.raises(CursorDecodeError):
            selector.fetch(KeyQuery("letters"), limit=2, cursor="garbage!")

    def test_database_error_wrapped(self, selector, db_engine, captured_logs):
        StoredKeyModel.__table__.drop(db_engine)
        with pytest.raises(StoreQueryError) as exc_info:
            selector.fetch(KeyQuery("letters"), limit=5)
        assert exc_info.value.collection == "letters"
        assert exc_info.value.__cause__ is not None
        assert any(r["message"] == "key_query_failed" for r in captured_logs())

    def test_count(self, selector, seeded):
        assert selector.count(KeyQuery("letters")) == 7
        assert selector.count(KeyQuery("letters", start="b")) == 4
        assert selector.count(KeyQuery("letters", end="ab")) == 3


# =============================================================================
# KeyWriter
# =============================================================================


class TestKeyWriter:

    def _count(self, session, collection):
        return session.execute(
            select(func.count()).select_from(StoredKeyModel).where(
                StoredKeyModel.collection == collection,
            )
        ).scalar_one()

    def test_put_is_upsert(self, session):
        writer = KeyWriter(session)
        writer.put_keys("photos", {"p1": {"v": 1}})
        writer.put_keys("photos", {"p1": {"v": 2}, "p2": None})
        assert self._count(session, "photos") == 2
        page = KeySelector(session).fetch(KeyQuery("photos", keys_only=False), limit=5)
        assert page.items[0].payload == {"v": 2}

    def test_invalid_key_writes_nothing(self, session):
        writer = KeyWriter(session, KeySpace(alphabet="abc", max_length=3))
        with pytest.raises(InvalidKeyCharacterError):
            writer.put_keys("photos", ["ab", "xyz"])
        assert self._count(session, "photos") == 0

    def test_delete(self, session):
        writer = KeyWriter(session)
        writer.put_keys("photos", ["a", "b", "c"])
        assert writer.delete_keys("photos", ["a", "c", "missing"]) == 2
        assert self._count(session, "photos") == 1

    def test_empty_put(self, session):
        assert KeyWriter(session).put_keys("photos", []) == 0
