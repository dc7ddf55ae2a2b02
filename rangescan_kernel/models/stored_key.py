"""
ORM model for the scanned key store.

Contract:
    StoredKeyModel holds one row per (collection, key) with an optional JSON
    payload.  Keys compare byte-wise: PostgreSQL uses the "C" collation on
    the key column, SQLite compares TEXT with BINARY by default.  That
    matches the code point order the key space alphabet is sorted in.

Architecture: rangescan_kernel/models.  Imports from rangescan_kernel.db.base only.

Invariants enforced:
    - (collection, key) is UNIQUE, so a keyset cursor "after key k" resumes
      exactly after the last item returned.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rangescan_kernel.db.base import TimestampedBase

KEY_COLUMN_TYPE = String(500).with_variant(String(500, collation="C"), "postgresql")


class StoredKeyModel(TimestampedBase):
    """A stored key and its record payload."""

    __tablename__ = "stored_keys"

    __table_args__ = (
        UniqueConstraint("collection", "key", name="uq_stored_keys_collection_key"),
        Index("ix_stored_keys_collection_key", "collection", "key"),
    )

    collection: Mapped[str] = mapped_column(String(200), nullable=False)
    key: Mapped[str] = mapped_column(KEY_COLUMN_TYPE, nullable=False)
    payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<StoredKeyModel {self.collection}:{self.key}>"
