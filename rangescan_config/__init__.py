"""
rangescan_config -- single public entrypoint for rangescan configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration
    files or environment variables directly.

Architecture position:
    Configuration.  Sits above ``rangescan_kernel`` and below
    ``rangescan_batch``; the kernel never imports from here.
    ``build_keyspace()`` bridges the parsed definition into the kernel's
    ``KeySpace`` value.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- unknown keys or invalid values.
    - ``InvalidKeySpaceError`` -- from ``build_keyspace`` for an alphabet
      that is empty, repeats characters or is not sorted.

Audit relevance:
    Every ``get_active_config()`` call emits a ``RANGESCAN_CONFIG_TRACE``
    log entry with the config id, version and checksum.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from rangescan_config.loader import load_yaml_file, parse_config
from rangescan_config.schema import (
    KeySpaceDef,
    PartitionDef,
    RangeScanConfig,
    ScanEngineDef,
)
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.logging_config import get_logger

__all__ = [
    "KeySpaceDef",
    "PartitionDef",
    "RangeScanConfig",
    "ScanEngineDef",
    "build_keyspace",
    "get_active_config",
]

_logger = get_logger("config")

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "RANGESCAN_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> RangeScanConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the packaged
            ``sets/default.yaml``.

    Returns:
        The parsed configuration.  ``RANGESCAN_DATABASE_URL``, when set,
        overrides ``database_url``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file fails validation.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    config = parse_config(load_yaml_file(config_path))

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        config = replace(config, database_url=env_url)

    _logger.info(
        "RANGESCAN_CONFIG_TRACE",
        extra={
            "trace_type": "RANGESCAN_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(config_path),
            "max_length": config.keyspace.max_length,
            "batch_size": config.keyspace.batch_size,
        },
    )
    return config


def build_keyspace(config: RangeScanConfig) -> KeySpace:
    """Validated KeySpace for ``config``.

    Raises:
        InvalidKeySpaceError: If the key space definition is invalid.
    """
    ks = config.keyspace
    return KeySpace(
        alphabet=ks.alphabet,
        max_length=ks.max_length,
        batch_size=ks.batch_size,
    )
