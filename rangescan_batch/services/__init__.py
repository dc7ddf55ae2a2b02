"""Scan engine, deferral and the polling runner."""

from rangescan_batch.services.deferral import DatabaseDeferrer, Deferrer, LocalDeferrer
from rangescan_batch.services.engine import BatchScanEngine
from rangescan_batch.services.runner import ScanRunner

__all__ = [
    "BatchScanEngine",
    "DatabaseDeferrer",
    "Deferrer",
    "LocalDeferrer",
    "ScanRunner",
]
