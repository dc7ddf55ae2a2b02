"""
KeyRange -- an immutable [start, end] interval of a KeySpace.

Responsibility:
    Bisection, successor advancement and trimming of a range down to the
    first key that actually exists in the store.  The key space is
    astronomically larger than any real key set, so ranges produced by pure
    bisection are mostly empty address space; ``normalized_start`` collapses
    that leading emptiness with one keys-only query.

Architecture position:
    Kernel > Domain.  Depends on KeySpace for ordinals and on the KeyStore
    protocol for normalization; never on a concrete store.

Invariants enforced:
    - start and end are encodable keys of the KeySpace.
    - start <= end.  start == end is a singleton and is never split.
    - split() halves are disjoint, adjacent and cover the parent range exactly.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyQuery, KeyStore
from rangescan_kernel.exceptions import InvalidKeyRangeError


@dataclass(frozen=True)
class KeyRange:
    """Inclusive key interval.

    Equality and ordering consider only ``start`` and ``end``; the key space
    travels along so range operations need no global configuration.
    """

    start: str
    end: str
    keyspace: KeySpace = field(default_factory=KeySpace, compare=False, repr=False)

    def __post_init__(self) -> None:
        codec = self.keyspace.codec
        if codec.encode(self.start) > codec.encode(self.end):
            raise InvalidKeyRangeError(self.start, self.end)

    def is_singleton(self) -> bool:
        return self.start == self.end

    @property
    def start_ordinal(self) -> int:
        return self.keyspace.codec.encode(self.start)

    @property
    def end_ordinal(self) -> int:
        return self.keyspace.codec.encode(self.end)

    @property
    def width(self) -> int:
        """Number of keys in the range."""
        return self.end_ordinal - self.start_ordinal + 1

    def contains(self, key: str) -> bool:
        return self.start_ordinal <= self.keyspace.codec.encode(key) <= self.end_ordinal

    def split(self) -> tuple[KeyRange, KeyRange | None]:
        """Bisect at the ordinal midpoint.

        Returns ``(self, None)`` for a singleton, otherwise ``(left, right)``
        with ``left = [start, mid]`` and ``right = [mid + 1, end]``.
        """
        if self.is_singleton():
            return self, None

        codec = self.keyspace.codec
        mid = codec.midpoint(self.start, self.end)
        left = replace(self, end=codec.decode(mid))
        right = replace(self, start=codec.decode(mid + 1))
        return left, right

    def advanced_past(self, key: str) -> KeyRange:
        """Copy of this range starting right after ``key``.

        Raises:
            OrdinalOutOfRangeError: If ``key`` is the key space maximum, which
                has no successor.
            InvalidKeyRangeError: If ``key`` is at or past the range end.
        """
        return replace(self, start=self.keyspace.codec.successor(key))

    def to_query(self, collection: str, keys_only: bool = True) -> KeyQuery:
        """Store query selecting every key of this range."""
        return KeyQuery(
            collection=collection,
            start=self.start or None,
            end=self.end,
            keys_only=keys_only,
        )

    def normalized_start(self, store: KeyStore, collection: str) -> KeyRange | None:
        """Copy starting at the first stored key in the range.

        Returns None when no stored key falls inside the range.
        """
        page = store.fetch(self.to_query(collection, keys_only=True), limit=1)
        if not page.items:
            return None
        return replace(self, start=page.items[0].key)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start, "end": self.end}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], keyspace: KeySpace) -> KeyRange:
        return cls(start=data["start"], end=data["end"], keyspace=keyspace)
