"""
Store query contract -- what the partitioner and scan engine need from a
backing key-value store.

Contract:
    ``KeyStore.fetch()`` runs one ordered key range query: keys with
    ``start <= key <= end`` in ``collection``, ascending, at most ``limit``
    of them, resuming strictly after the position encoded in ``cursor``.
    The returned ``KeyPage.cursor`` is an opaque, forward-only token that
    resumes after the last item of the page.

Architecture position:
    Kernel > Domain -- pure types.  The SQLAlchemy implementation lives in
    ``rangescan_kernel.selectors.key_selector``.

Non-goals:
    - Storage engine internals and cursor encoding belong to the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, runtime_checkable


@dataclass(frozen=True)
class KeyQuery:
    """Shape of an ordered range query.

    ``start`` / ``end`` of None leave that side unbounded.  ``keys_only``
    projects away the record payload.
    """

    collection: str
    start: str | None = None
    end: str | None = None
    keys_only: bool = True

    @classmethod
    def from_parameters(
        cls,
        parameters: Mapping[str, Any],
        keys_only: bool = True,
    ) -> KeyQuery:
        """Build a query from scan parameters (``collection``, ``start``, ``end``).

        Raises:
            ValueError: If ``collection`` is missing.
        """
        collection = parameters.get("collection")
        if not collection:
            raise ValueError("Scan parameters must name a 'collection'")
        return cls(
            collection=collection,
            start=parameters.get("start"),
            end=parameters.get("end"),
            keys_only=keys_only,
        )


@dataclass(frozen=True)
class StoredKey:
    """One query result.  ``payload`` is None for keys-only queries."""

    collection: str
    key: str
    payload: dict[str, Any] | None = None


@dataclass(frozen=True)
class KeyPage:
    """One page of results plus the cursor to resume after it.

    ``cursor`` is None only when the page is empty.
    """

    items: tuple[StoredKey, ...] = field(default_factory=tuple)
    cursor: str | None = None

    def __len__(self) -> int:
        return len(self.items)


@runtime_checkable
class KeyStore(Protocol):
    """Ordered key range query capability."""

    def fetch(
        self,
        query: KeyQuery,
        limit: int,
        cursor: str | None = None,
    ) -> KeyPage:
        """Run ``query`` and return at most ``limit`` items after ``cursor``.

        Raises:
            StoreQueryError: If the underlying query fails.
            CursorDecodeError: If ``cursor`` is not a token this store issued.
        """
        ...
