"""
KeyWriter -- write side of the key store.

Responsibility:
    Inserts, updates and removes StoredKeyModel rows.  Scans and the
    partitioner only ever read; this service is how data (and test
    fixtures) get into the store.

Architecture position:
    Kernel > Services.  Flushes within the caller's transaction and never
    commits or rolls back.

Invariants enforced:
    - Keys are validated against the KeySpace before they are written, so
      a partitioner never meets a stored key it cannot encode.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.logging_config import get_logger
from rangescan_kernel.models.stored_key import StoredKeyModel

logger = get_logger("services.key_writer")


class KeyWriter:
    """Upserts keys into one session's transaction."""

    def __init__(self, session: Session, keyspace: KeySpace | None = None):
        self._session = session
        self._keyspace = keyspace or KeySpace()

    def put_keys(
        self,
        collection: str,
        keys: Iterable[str] | Mapping[str, dict[str, Any] | None],
    ) -> int:
        """Insert or update keys; a mapping supplies per-key payloads.

        Returns the number of keys written.

        Raises:
            InvalidKeyCharacterError / KeyTooLongError: For keys outside
                the key space.  Nothing is flushed in that case.
        """
        if isinstance(keys, Mapping):
            entries = dict(keys)
        else:
            entries = {key: None for key in keys}

        codec = self._keyspace.codec
        for key in entries:
            codec.encode(key)

        existing = {
            model.key: model
            for model in self._session.execute(
                select(StoredKeyModel).where(
                    StoredKeyModel.collection == collection,
                    StoredKeyModel.key.in_(list(entries)),
                )
            ).scalars()
        } if entries else {}

        for key, payload in entries.items():
            model = existing.get(key)
            if model is None:
                self._session.add(
                    StoredKeyModel(collection=collection, key=key, payload=payload)
                )
            else:
                model.payload = payload

        self._session.flush()
        logger.debug(
            "keys_written",
            extra={"collection": collection, "count": len(entries)},
        )
        return len(entries)

    def delete_keys(self, collection: str, keys: Iterable[str]) -> int:
        """Remove keys; returns the number of rows deleted."""
        result = self._session.execute(
            delete(StoredKeyModel).where(
                StoredKeyModel.collection == collection,
                StoredKeyModel.key.in_(list(keys)),
            )
        )
        self._session.flush()
        return result.rowcount or 0
