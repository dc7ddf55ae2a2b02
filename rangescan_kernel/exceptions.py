"""
Typed Exception Hierarchy for rangescan.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Scans run unattended across many slices and workers. A caller deciding
whether to retry a slice, fix a configuration, or give up must be able to
tell the failure kinds apart without parsing messages:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, log-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.run_slice(checkpoint)
    except CursorDecodeError as e:
        # Never restart from scratch -- that would replay processed items
        log.error(f"cursor for scan {checkpoint.scan_id} unusable: {e.code}")
    except StoreError:
        # Safe to retry the same slice from the same checkpoint
        requeue(checkpoint)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    RangeScanError (base)
    |
    +-- ConfigurationError
    |   +-- InvalidShardCountError
    |   +-- InvalidKeySpaceError
    |   +-- StoreRequiredError
    |
    +-- CodecError
    |   +-- InvalidKeyCharacterError
    |   +-- KeyTooLongError
    |   +-- OrdinalOutOfRangeError
    |
    +-- KeyRangeError
    |   +-- InvalidKeyRangeError
    |
    +-- StoreError
    |   +-- StoreQueryError
    |   +-- CursorDecodeError
    |
    +-- ScanError
        +-- HandlerNotRegisteredError
        +-- ScanStateError
        +-- ScanNotFoundError
        +-- ScanAlreadyRunningError
        +-- ScanNotResumableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Configuration   | INVALID_SHARD_COUNT         | partition() asked for n < 1 shards
                | INVALID_KEY_SPACE           | Bad alphabet / max length / batch size
                | STORE_REQUIRED              | can_query requested without a store
----------------|-----------------------------|-----------------------------------------
Codec           | INVALID_KEY_CHARACTER       | Key uses a character outside the alphabet
                | KEY_TOO_LONG                | Key longer than the configured max length
                | ORDINAL_OUT_OF_RANGE        | Ordinal has no key (or step past min/max)
----------------|-----------------------------|-----------------------------------------
Key range       | INVALID_KEY_RANGE           | start sorts after end
----------------|-----------------------------|-----------------------------------------
Store           | STORE_QUERY_FAILED          | Backing store query raised
                | CURSOR_DECODE_FAILED        | Continuation cursor is not a valid token
----------------|-----------------------------|-----------------------------------------
Scan            | HANDLER_NOT_REGISTERED      | No handler under the requested name
                | SCAN_STATE_NOT_SERIALIZABLE | Handler state cannot be checkpointed
                | SCAN_NOT_FOUND              | No persisted scan with that id
                | SCAN_ALREADY_RUNNING        | A slice of the scan is already in flight
                | SCAN_NOT_RESUMABLE          | Scan is COMPLETED or FAILED
"""


class RangeScanError(Exception):
    """
    Base exception for all rangescan errors.

    All subclasses must define a `code` class attribute for
    machine-readable error identification.
    """

    code: str = "RANGESCAN_ERROR"


# Configuration exceptions


class ConfigurationError(RangeScanError):
    """Base exception for invalid usage or configuration."""

    code: str = "CONFIGURATION_ERROR"


class InvalidShardCountError(ConfigurationError):
    """Requested shard count is below one."""

    code: str = "INVALID_SHARD_COUNT"

    def __init__(self, shard_count: int):
        self.shard_count = shard_count
        super().__init__(f"Shard count must be >= 1, got {shard_count}")


class InvalidKeySpaceError(ConfigurationError):
    """Key space parameters violate their invariants."""

    code: str = "INVALID_KEY_SPACE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid key space: {reason}")


class StoreRequiredError(ConfigurationError):
    """An operation needs a live store but none was supplied."""

    code: str = "STORE_REQUIRED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} requires a key store when can_query is set")


# Codec exceptions


class CodecError(RangeScanError):
    """Base exception for key <-> ordinal conversion errors."""

    code: str = "CODEC_ERROR"


class InvalidKeyCharacterError(CodecError):
    """Key contains a character outside the configured alphabet."""

    code: str = "INVALID_KEY_CHARACTER"

    def __init__(self, key: str, character: str, position: int):
        self.key = key
        self.character = character
        self.position = position
        super().__init__(
            f"Character {character!r} at position {position} of key {key!r} "
            f"is not in the key space alphabet"
        )


class KeyTooLongError(CodecError):
    """Key is longer than the configured maximum length."""

    code: str = "KEY_TOO_LONG"

    def __init__(self, key: str, max_length: int):
        self.key = key
        self.max_length = max_length
        super().__init__(
            f"Key of length {len(key)} exceeds max key length {max_length}"
        )


class OrdinalOutOfRangeError(CodecError):
    """Ordinal does not identify a key of the requested length."""

    code: str = "ORDINAL_OUT_OF_RANGE"

    def __init__(self, ordinal: int, length: int):
        self.ordinal = ordinal
        self.length = length
        super().__init__(
            f"Ordinal {ordinal} is outside the key space for length {length}"
        )


# Key range exceptions


class KeyRangeError(RangeScanError):
    """Base exception for key range errors."""

    code: str = "KEY_RANGE_ERROR"


class InvalidKeyRangeError(KeyRangeError):
    """Range start sorts after its end."""

    code: str = "INVALID_KEY_RANGE"

    def __init__(self, start: str, end: str):
        self.start = start
        self.end = end
        super().__init__(f"Key range start {start!r} sorts after end {end!r}")


# Store exceptions


class StoreError(RangeScanError):
    """Base exception for backing store errors."""

    code: str = "STORE_ERROR"


class StoreQueryError(StoreError):
    """
    Query against the backing store failed.

    The slice that issued the query is aborted; the last checkpoint stays
    the recovery point.
    """

    code: str = "STORE_QUERY_FAILED"

    def __init__(self, collection: str, reason: str):
        self.collection = collection
        self.reason = reason
        super().__init__(f"Query on collection {collection!r} failed: {reason}")


class CursorDecodeError(StoreError):
    """
    Continuation cursor is not a token this store issued.

    Fatal for the slice. There is no fallback to a fresh scan since that
    would process already-visited items twice.
    """

    code: str = "CURSOR_DECODE_FAILED"

    def __init__(self, cursor: str, reason: str):
        self.cursor = cursor
        self.reason = reason
        super().__init__(f"Cannot decode cursor {cursor!r}: {reason}")


# Scan exceptions


class ScanError(RangeScanError):
    """Base exception for batch-scan errors."""

    code: str = "SCAN_ERROR"


class HandlerNotRegisteredError(ScanError):
    """No scan handler registered under the requested name."""

    code: str = "HANDLER_NOT_REGISTERED"

    def __init__(self, handler_name: str, available: tuple[str, ...]):
        self.handler_name = handler_name
        self.available = available
        super().__init__(
            f"Scan handler '{handler_name}' is not registered. "
            f"Available: {list(available)}"
        )


class ScanStateError(ScanError):
    """Handler state cannot be carried across a checkpoint."""

    code: str = "SCAN_STATE_NOT_SERIALIZABLE"

    def __init__(self, handler_name: str, reason: str):
        self.handler_name = handler_name
        self.reason = reason
        super().__init__(
            f"State of scan handler '{handler_name}' is not JSON serializable: {reason}"
        )


class ScanNotFoundError(ScanError):
    """Persisted scan does not exist."""

    code: str = "SCAN_NOT_FOUND"

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Scan not found: {scan_id}")


class ScanAlreadyRunningError(ScanError):
    """A slice of this scan is already in flight."""

    code: str = "SCAN_ALREADY_RUNNING"

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Scan {scan_id} already has a slice in flight")


class ScanNotResumableError(ScanError):
    """Scan has reached a terminal status."""

    code: str = "SCAN_NOT_RESUMABLE"

    def __init__(self, scan_id: str, status: str):
        self.scan_id = scan_id
        self.status = status
        super().__init__(f"Scan {scan_id} is {status} and cannot be resumed")
