"""Pure frozen DTOs and status enums for batch scans."""

from rangescan_batch.domain.types import (
    ScanCheckpoint,
    ScanStatus,
    SliceOutcome,
    SliceResult,
)

__all__ = [
    "ScanCheckpoint",
    "ScanStatus",
    "SliceOutcome",
    "SliceResult",
]
