"""
Configuration Loader (``rangescan_config.loader``).

Responsibility
--------------
Loads YAML configuration files and parses them into typed
``rangescan_config.schema`` dataclass instances.  Runtime callers go
through ``rangescan_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown top-level or section keys raise ``ValueError`` so typos do not
  silently fall back to defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  configuration for identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong value types  -> ``ValueError`` / ``TypeError`` from conversion.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from rangescan_config.schema import (
    KeySpaceDef,
    PartitionDef,
    RangeScanConfig,
    ScanEngineDef,
)

_TOP_LEVEL_KEYS = frozenset(
    {"config_id", "version", "keyspace", "engine", "partition", "database_url"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ValueError(f"Unknown {section} keys: {sorted(unknown)}")


def parse_keyspace(data: dict[str, Any]) -> KeySpaceDef:
    """Parse a KeySpaceDef from a dict."""
    _check_keys("keyspace", data, {"alphabet", "max_length", "batch_size"})
    defaults = KeySpaceDef()
    return KeySpaceDef(
        alphabet=str(data.get("alphabet", defaults.alphabet)),
        max_length=int(data.get("max_length", defaults.max_length)),
        batch_size=int(data.get("batch_size", defaults.batch_size)),
    )


def parse_engine(data: dict[str, Any]) -> ScanEngineDef:
    """Parse a ScanEngineDef from a dict."""
    _check_keys(
        "engine",
        data,
        {
            "slice_timeout_seconds",
            "max_attempts",
            "tick_interval_seconds",
            "claim_limit",
            "claim_lease_seconds",
        },
    )
    defaults = ScanEngineDef()
    engine = ScanEngineDef(
        slice_timeout_seconds=float(
            data.get("slice_timeout_seconds", defaults.slice_timeout_seconds)
        ),
        max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
        tick_interval_seconds=int(
            data.get("tick_interval_seconds", defaults.tick_interval_seconds)
        ),
        claim_limit=int(data.get("claim_limit", defaults.claim_limit)),
        claim_lease_seconds=float(
            data.get("claim_lease_seconds", defaults.claim_lease_seconds)
        ),
    )
    if engine.slice_timeout_seconds <= 0:
        raise ValueError("engine.slice_timeout_seconds must be positive")
    if engine.max_attempts < 1:
        raise ValueError("engine.max_attempts must be >= 1")
    if engine.claim_limit < 1:
        raise ValueError("engine.claim_limit must be >= 1")
    if engine.claim_lease_seconds <= engine.slice_timeout_seconds:
        raise ValueError(
            "engine.claim_lease_seconds must exceed engine.slice_timeout_seconds"
        )
    return engine


def parse_partition(data: dict[str, Any]) -> PartitionDef:
    """Parse a PartitionDef from a dict."""
    _check_keys("partition", data, {"default_shards", "contiguous", "collection"})
    defaults = PartitionDef()
    partition = PartitionDef(
        default_shards=int(data.get("default_shards", defaults.default_shards)),
        contiguous=bool(data.get("contiguous", defaults.contiguous)),
        collection=str(data.get("collection", defaults.collection)),
    )
    if partition.default_shards < 1:
        raise ValueError("partition.default_shards must be >= 1")
    return partition


def parse_config(data: dict[str, Any]) -> RangeScanConfig:
    """Parse a complete RangeScanConfig from a loaded YAML document."""
    _check_keys("top-level", data, set(_TOP_LEVEL_KEYS))
    return RangeScanConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        keyspace=parse_keyspace(data.get("keyspace") or {}),
        engine=parse_engine(data.get("engine") or {}),
        partition=parse_partition(data.get("partition") or {}),
        database_url=data.get("database_url"),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Postconditions:
        - Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
