"""
Pure domain layer.

Key space configuration, ordinal codec, key ranges, the partitioner and
the store query contract.  No ORM or database dependencies; the
partitioner reaches storage only through the KeyStore protocol.
"""

from rangescan_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from rangescan_kernel.domain.key_range import KeyRange
from rangescan_kernel.domain.keyspace import (
    DEFAULT_ALPHABET,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_LENGTH,
    KeySpace,
    OrdinalCodec,
)
from rangescan_kernel.domain.partitioner import (
    DEFAULT_COLLECTION,
    RangePartitioner,
    partition_key_space,
)
from rangescan_kernel.domain.store import KeyPage, KeyQuery, KeyStore, StoredKey

__all__ = [
    "Clock",
    "DEFAULT_ALPHABET",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_COLLECTION",
    "DEFAULT_MAX_LENGTH",
    "DeterministicClock",
    "KeyPage",
    "KeyQuery",
    "KeyRange",
    "KeySpace",
    "KeyStore",
    "OrdinalCodec",
    "RangePartitioner",
    "StoredKey",
    "SystemClock",
    "partition_key_space",
]
