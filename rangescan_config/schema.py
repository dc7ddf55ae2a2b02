"""
RangeScanConfig schema.

Typed, frozen form of a configuration set.  YAML files are parsed into
these types by the loader; ``get_active_config()`` returns the root
``RangeScanConfig``.  Every field has a default so an empty file (or no
file at all) yields a working configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rangescan_kernel.domain.keyspace import (
    DEFAULT_ALPHABET,
    DEFAULT_BATCH_SIZE,
    DEFAULT_MAX_LENGTH,
)

# ---------------------------------------------------------------------------
# Key space
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeySpaceDef:
    """Alphabet and limits of the key space."""

    alphabet: str = DEFAULT_ALPHABET
    max_length: int = DEFAULT_MAX_LENGTH
    batch_size: int = DEFAULT_BATCH_SIZE


# ---------------------------------------------------------------------------
# Scan engine and runner
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScanEngineDef:
    """Slice limits and runner cadence."""

    slice_timeout_seconds: float = 300.0
    max_attempts: int = 3  # Failed slices before a scan is FAILED
    tick_interval_seconds: int = 60
    claim_limit: int = 10  # Scans claimed per runner tick
    claim_lease_seconds: float = 600.0  # RUNNING longer than this is reclaimed


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PartitionDef:
    """Defaults for partitioning and fan-out."""

    default_shards: int = 8
    contiguous: bool = True
    collection: str = "__namespace__"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RangeScanConfig:
    """A complete configuration set."""

    config_id: str = "default"
    version: int = 1
    keyspace: KeySpaceDef = field(default_factory=KeySpaceDef)
    engine: ScanEngineDef = field(default_factory=ScanEngineDef)
    partition: PartitionDef = field(default_factory=PartitionDef)
    database_url: str | None = None
    checksum: str = ""
