"""
RangePartitioner -- split a key space into balanced shards.

Contract:
    ``partition(n, contiguous, can_query)`` returns KeyRanges sorted by
    start.  With ``contiguous`` the ranges tile the whole key space with no
    gaps; without it they cover only where data was observed.  With
    ``can_query`` every right-hand bisection product is normalized against
    the store so empty address space drops out, keeping the shard count
    proportional to real key density rather than to the geometry of the
    space.

Algorithm:
    1. Seed a FIFO queue (full range, normalized full range, or a range
       starting at the first of ``n + 1`` sampled keys).
    2. Pop the head; set singletons aside; otherwise split it and enqueue
       the (normalized) right half, then the left half.  Stop once
       ``len(queue) + len(singletons) == n`` or the queue is empty.
    3. Merge singletons back in and sort by start.
    4. For contiguous output, stretch boundaries: first start = min key,
       each end = predecessor of the next start, last end = max key.

    Each split strictly narrows its halves and singletons never re-enter
    the queue, so the loop is bounded by the bit length of the space.

Architecture position:
    Kernel > Domain.  Reads through the KeyStore protocol only; every
    store call is read-only, so shards may be partitioned concurrently.

Failure modes:
    - InvalidShardCountError: n < 1 (raised before any store access).
    - StoreRequiredError: can_query without a store.
    - StoreQueryError / codec errors from the store or stored keys propagate.
"""

from __future__ import annotations

from collections import deque

from rangescan_kernel.domain.key_range import KeyRange
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyQuery, KeyStore
from rangescan_kernel.exceptions import InvalidShardCountError, StoreRequiredError
from rangescan_kernel.logging_config import get_logger

logger = get_logger("kernel.partitioner")

DEFAULT_COLLECTION = "__namespace__"


class RangePartitioner:
    """Partitions one collection's key space into KeyRanges.

    Contract:
        - Deterministic: identical inputs and store contents give identical
          ranges.
        - Read-only: only ``KeyStore.fetch`` is called.
    """

    def __init__(
        self,
        keyspace: KeySpace,
        store: KeyStore | None = None,
        collection: str = DEFAULT_COLLECTION,
    ):
        self._keyspace = keyspace
        self._store = store
        self._collection = collection

    def partition(
        self,
        n: int,
        contiguous: bool = False,
        can_query: bool = True,
    ) -> list[KeyRange]:
        """Split the key space into (up to) ``n`` ranges.

        Raises:
            InvalidShardCountError: If n < 1.
            StoreRequiredError: If can_query is set but no store was given.
        """
        if n < 1:
            raise InvalidShardCountError(n)
        if can_query and self._store is None:
            raise StoreRequiredError("partition")

        full = self._keyspace.full_range()
        queue: deque[KeyRange] = deque()

        if can_query:
            if contiguous:
                seed = full.normalized_start(self._store, self._collection)
                if seed is not None:
                    queue.append(seed)
            else:
                sampled = self._sample_keys(n + 1)
                if not sampled:
                    self._log_result(n, contiguous, can_query, [])
                    return []
                if len(sampled) < n:
                    # Fewer keys than shards: one singleton per key
                    ranges = sorted(
                        (KeyRange(key, key, self._keyspace) for key in sampled),
                        key=lambda r: r.start_ordinal,
                    )
                    self._log_result(n, contiguous, can_query, ranges)
                    return ranges
                queue.append(self._keyspace.key_range(start=sampled[0]))
        else:
            queue.append(full)

        singles: list[KeyRange] = []
        while queue and len(queue) + len(singles) < n:
            key_range = queue.popleft()
            if key_range.is_singleton():
                singles.append(key_range)
                continue

            left, right = key_range.split()
            if right is not None and can_query:
                right = right.normalized_start(self._store, self._collection)
            if right is not None:
                queue.append(right)
            queue.append(left)

        ranges = sorted([*queue, *singles], key=lambda r: r.start_ordinal)

        if contiguous:
            ranges = self._make_contiguous(ranges)

        self._log_result(n, contiguous, can_query, ranges)
        return ranges

    def _sample_keys(self, limit: int) -> list[str]:
        page = self._store.fetch(
            KeyQuery(collection=self._collection, keys_only=True),
            limit=limit,
        )
        return [item.key for item in page.items]

    def _make_contiguous(self, ranges: list[KeyRange]) -> list[KeyRange]:
        if not ranges:
            # Every key vanished between normalizations
            return [self._keyspace.full_range()]

        codec = self._keyspace.codec
        stitched: list[KeyRange] = []
        for i, key_range in enumerate(ranges):
            start = self._keyspace.min_key if i == 0 else key_range.start
            if i == len(ranges) - 1:
                end = self._keyspace.max_key
            else:
                end = codec.predecessor(ranges[i + 1].start)
            stitched.append(KeyRange(start, end, self._keyspace))
        return stitched

    def _log_result(
        self,
        n: int,
        contiguous: bool,
        can_query: bool,
        ranges: list[KeyRange],
    ) -> None:
        logger.info(
            "partition_computed",
            extra={
                "collection": self._collection,
                "requested_shards": n,
                "shard_count": len(ranges),
                "contiguous": contiguous,
                "can_query": can_query,
            },
        )


def partition_key_space(
    keyspace: KeySpace,
    n: int,
    contiguous: bool = False,
    can_query: bool = True,
    store: KeyStore | None = None,
    collection: str = DEFAULT_COLLECTION,
) -> list[KeyRange]:
    """Functional entry point for ``RangePartitioner.partition``."""
    return RangePartitioner(keyspace, store, collection).partition(
        n, contiguous=contiguous, can_query=can_query,
    )
