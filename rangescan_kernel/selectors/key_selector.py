"""
Module: rangescan_kernel.selectors.key_selector
Responsibility: SQLAlchemy implementation of the KeyStore query contract over
    the ``stored_keys`` table, with keyset-pagination cursors.
Architecture position: Kernel > Selectors.  Imports models/ and domain/store.

Cursor format:
    Urlsafe base64 of ``{"v": 1, "after": <last key>}``.  Callers treat it as
    opaque; only this selector decodes it.  Because (collection, key) is
    unique, "key > after" resumes exactly after the last returned item, and
    the same cursor replays the same continuation as long as the data
    before it is unchanged.

Failure modes:
    - StoreQueryError wraps any SQLAlchemyError raised by the query.
    - CursorDecodeError for tokens this selector did not issue.
"""

from __future__ import annotations

import base64
import binascii
import json

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from rangescan_kernel.domain.store import KeyPage, KeyQuery, StoredKey
from rangescan_kernel.exceptions import CursorDecodeError, StoreQueryError
from rangescan_kernel.logging_config import get_logger
from rangescan_kernel.models.stored_key import StoredKeyModel
from rangescan_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.key")

_CURSOR_VERSION = 1


def encode_cursor(after_key: str) -> str:
    """Opaque continuation token resuming after ``after_key``."""
    raw = json.dumps({"v": _CURSOR_VERSION, "after": after_key}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> str:
    """Key a continuation token resumes after.

    Raises:
        CursorDecodeError: If the token is malformed or from another version.
    """
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        data = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError) as exc:
        raise CursorDecodeError(cursor, str(exc)) from exc

    if not isinstance(data, dict) or data.get("v") != _CURSOR_VERSION:
        raise CursorDecodeError(cursor, "unsupported cursor version")
    after = data.get("after")
    if not isinstance(after, str):
        raise CursorDecodeError(cursor, "missing resume key")
    return after


class KeySelector(BaseSelector):
    """Ordered key range queries over StoredKeyModel.

    Contract:
        - Results are ascending by key within one collection.
        - ``fetch()`` returns a cursor whenever it returns items.
        - Read-only.
    """

    def fetch(
        self,
        query: KeyQuery,
        limit: int,
        cursor: str | None = None,
    ) -> KeyPage:
        """Run one page of ``query``.

        Raises:
            ValueError: If limit < 1.
            CursorDecodeError: If ``cursor`` cannot be decoded.
            StoreQueryError: If the database query fails.
        """
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        after = decode_cursor(cursor) if cursor else None

        if query.keys_only:
            stmt = select(StoredKeyModel.key)
        else:
            stmt = select(StoredKeyModel.key, StoredKeyModel.payload)

        stmt = stmt.where(StoredKeyModel.collection == query.collection)
        if query.start is not None:
            stmt = stmt.where(StoredKeyModel.key >= query.start)
        if query.end is not None:
            stmt = stmt.where(StoredKeyModel.key <= query.end)
        if after is not None:
            stmt = stmt.where(StoredKeyModel.key > after)
        stmt = stmt.order_by(StoredKeyModel.key).limit(limit)

        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.error(
                "key_query_failed",
                extra={"collection": query.collection, "limit": limit},
                exc_info=True,
            )
            raise StoreQueryError(query.collection, str(exc)) from exc

        items = tuple(
            StoredKey(
                collection=query.collection,
                key=row[0],
                payload=None if query.keys_only else row[1],
            )
            for row in rows
        )
        next_cursor = encode_cursor(items[-1].key) if items else None
        return KeyPage(items=items, cursor=next_cursor)

    def count(self, query: KeyQuery) -> int:
        """Number of keys matching ``query`` (no limit)."""
        stmt = select(func.count()).select_from(StoredKeyModel).where(
            StoredKeyModel.collection == query.collection,
        )
        if query.start is not None:
            stmt = stmt.where(StoredKeyModel.key >= query.start)
        if query.end is not None:
            stmt = stmt.where(StoredKeyModel.key <= query.end)
        try:
            return self.session.execute(stmt).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreQueryError(query.collection, str(exc)) from exc
