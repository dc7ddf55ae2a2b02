"""
KeySpace and OrdinalCodec -- strings over a fixed alphabet as integers.

Responsibility:
    ``KeySpace`` is the configuration value (alphabet, max key length,
    default batch size) threaded through the codec, key ranges, the
    partitioner and the scan engine.  ``OrdinalCodec`` maps every string of
    length <= max_length over the alphabet to a unique non-negative integer
    (its ordinal) and back, such that integer order equals lexicographic
    string order.  Exact midpoints, successors and predecessors of keys are
    then plain integer arithmetic.

Encoding:
    ``W(0) = 1`` and ``W(k) = W(k-1) * |alphabet| + 1`` is the number of
    strings of length <= k.  The character at position ``i`` contributes
    ``1 + index(c) * W(max_length - i - 1)``.  The ``+ 1`` per position
    reserves ordinal 0 for the empty string and places every prefix
    immediately before its extensions, so with alphabet ``"ab"`` and
    max length 2 the ordinals 0..6 are ``"", a, aa, ab, b, ba, bb``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Alphabet is non-empty, free of repeats and sorted in code point order.
    - Ordinals are dense: every integer in ``[0, total_count)`` is a key.
    - ``decode(encode(s)) == s`` for every valid ``s``.

Failure modes:
    - InvalidKeySpaceError on bad configuration.
    - InvalidKeyCharacterError / KeyTooLongError on keys outside the space.
    - OrdinalOutOfRangeError on ordinals with no key.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property

from rangescan_kernel.exceptions import (
    InvalidKeyCharacterError,
    InvalidKeySpaceError,
    KeyTooLongError,
    OrdinalOutOfRangeError,
)

DEFAULT_ALPHABET = (
    "-.0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"
)
DEFAULT_MAX_LENGTH = 100
DEFAULT_BATCH_SIZE = 50


@dataclass(frozen=True)
class KeySpace:
    """Immutable key space configuration.

    Constructing a new KeySpace is the only way to change the alphabet,
    length or batch size; instances never change once built, so a
    partitioning or scan in flight always sees one consistent space.
    """

    alphabet: str = DEFAULT_ALPHABET
    max_length: int = DEFAULT_MAX_LENGTH
    batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        if not self.alphabet:
            raise InvalidKeySpaceError("alphabet must not be empty")
        if len(set(self.alphabet)) != len(self.alphabet):
            raise InvalidKeySpaceError("alphabet contains repeated characters")
        if list(self.alphabet) != sorted(self.alphabet):
            raise InvalidKeySpaceError("alphabet must be sorted in comparison order")
        if self.max_length < 1:
            raise InvalidKeySpaceError(
                f"max_length must be >= 1, got {self.max_length}"
            )
        if self.batch_size < 1:
            raise InvalidKeySpaceError(
                f"batch_size must be >= 1, got {self.batch_size}"
            )

    @property
    def min_key(self) -> str:
        return ""

    @property
    def max_key(self) -> str:
        return self.alphabet[-1] * self.max_length

    @cached_property
    def codec(self) -> OrdinalCodec:
        return OrdinalCodec(self)

    def full_range(self):
        """The KeyRange covering every key in this space."""
        from rangescan_kernel.domain.key_range import KeyRange

        return KeyRange(self.min_key, self.max_key, self)

    def key_range(self, start: str | None = None, end: str | None = None):
        """KeyRange from optional bounds; None means the min / max key."""
        from rangescan_kernel.domain.key_range import KeyRange

        return KeyRange(
            self.min_key if start is None else start,
            self.max_key if end is None else end,
            self,
        )


class OrdinalCodec:
    """Bidirectional key <-> ordinal mapping for one KeySpace.

    The weight table is computed once at construction.  Python integers are
    unbounded, so realistic spaces (65 symbols, length 100) need no special
    handling.
    """

    def __init__(self, keyspace: KeySpace):
        self._alphabet = keyspace.alphabet
        self._max_length = keyspace.max_length
        self._index = {ch: i for i, ch in enumerate(keyspace.alphabet)}

        radix = len(keyspace.alphabet)
        weights = [1]
        for _ in range(keyspace.max_length):
            weights.append(weights[-1] * radix + 1)
        self._weights: tuple[int, ...] = tuple(weights)

    @property
    def total_count(self) -> int:
        """Number of keys in the space, including the empty key."""
        return self._weights[self._max_length]

    @property
    def max_ordinal(self) -> int:
        return self._weights[self._max_length] - 1

    def weight(self, k: int) -> int:
        """Number of strings of length <= k."""
        return self._weights[k]

    def encode(self, key: str) -> int:
        """Ordinal of ``key``.

        Raises:
            KeyTooLongError: If the key is longer than max_length.
            InvalidKeyCharacterError: If the key uses a character
                outside the alphabet.
        """
        if len(key) > self._max_length:
            raise KeyTooLongError(key, self._max_length)

        ordinal = 0
        for i, ch in enumerate(key):
            pos = self._index.get(ch)
            if pos is None:
                raise InvalidKeyCharacterError(key, ch, i)
            ordinal += pos * self._weights[self._max_length - i - 1] + 1
        return ordinal

    def decode(self, ordinal: int, length: int | None = None) -> str:
        """Key with the given ordinal, built left to right.

        ``length`` selects the weight table row to start from and defaults
        to max_length; ordinals produced by ``encode`` always decode with
        the default.

        Raises:
            OrdinalOutOfRangeError: If no key of at most ``length``
                characters has this ordinal.
        """
        if length is None:
            length = self._max_length
        if length < 0 or length > self._max_length:
            raise OrdinalOutOfRangeError(ordinal, length)
        if ordinal < 0 or ordinal >= self._weights[length]:
            raise OrdinalOutOfRangeError(ordinal, length)

        chars: list[str] = []
        remaining = ordinal
        while remaining > 0:
            length -= 1
            index, remaining = divmod(remaining - 1, self._weights[length])
            chars.append(self._alphabet[index])
        return "".join(chars)

    def successor(self, key: str) -> str:
        """The key immediately after ``key``.

        Raises:
            OrdinalOutOfRangeError: If ``key`` is the maximum key.
        """
        return self.decode(self.encode(key) + 1)

    def predecessor(self, key: str) -> str:
        """The key immediately before ``key``.

        Raises:
            OrdinalOutOfRangeError: If ``key`` is the empty (minimum) key.
        """
        return self.decode(self.encode(key) - 1)

    def midpoint(self, start: str, end: str) -> int:
        """Floor of the mean of the two keys' ordinals."""
        return (self.encode(start) + self.encode(end)) // 2
