"""
rangescan_batch.domain.types -- Pure frozen dataclasses for batch scans.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - A ScanCheckpoint is replaced, never mutated, at each slice boundary.
    - ``ScanCheckpoint.to_dict()`` is JSON-serializable and
      ``from_dict(to_dict(c)) == c``; checkpoints cross process boundaries
      in that form.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from uuid import UUID, uuid4


# =============================================================================
# Status enums
# =============================================================================


class ScanStatus(str, Enum):
    """Lifecycle status of a persisted scan."""

    PENDING = "pending"  # Waiting for its next slice
    RUNNING = "running"  # A slice is in flight
    COMPLETED = "completed"  # Range exhausted, complete() has run
    FAILED = "failed"  # Gave up after max_attempts failed slices


class SliceOutcome(str, Enum):
    """How a single slice ended."""

    COMPLETED = "completed"  # Final page processed, scan done
    CHECKPOINTED = "checkpointed"  # Timed out, continuation deferred


# =============================================================================
# Checkpoint
# =============================================================================


@dataclass(frozen=True)
class ScanCheckpoint:
    """Everything needed to resume a scan in a fresh process.

    ``cursor`` is the store's opaque continuation token (None on the first
    slice).  ``state`` is the handler's serializable state as of the end of
    the previous slice.  ``slice_number`` is the number of the slice this
    checkpoint starts.
    """

    scan_id: UUID
    handler_name: str
    parameters: dict[str, Any] = field(default_factory=dict)
    state: dict[str, Any] = field(default_factory=dict)
    cursor: str | None = None
    slice_number: int = 1
    items_processed: int = 0
    created_at: datetime | None = None

    @classmethod
    def initial(
        cls,
        handler_name: str,
        parameters: Mapping[str, Any] | None = None,
        scan_id: UUID | None = None,
        created_at: datetime | None = None,
    ) -> ScanCheckpoint:
        """Checkpoint for the first slice of a new scan."""
        return cls(
            scan_id=scan_id or uuid4(),
            handler_name=handler_name,
            parameters=dict(parameters or {}),
            created_at=created_at,
        )

    @property
    def is_initial(self) -> bool:
        return self.cursor is None and self.slice_number == 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "scan_id": str(self.scan_id),
            "handler_name": self.handler_name,
            "parameters": self.parameters,
            "state": self.state,
            "cursor": self.cursor,
            "slice_number": self.slice_number,
            "items_processed": self.items_processed,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ScanCheckpoint:
        created_at = data.get("created_at")
        return cls(
            scan_id=UUID(str(data["scan_id"])),
            handler_name=data["handler_name"],
            parameters=dict(data.get("parameters") or {}),
            state=dict(data.get("state") or {}),
            cursor=data.get("cursor"),
            slice_number=int(data.get("slice_number", 1)),
            items_processed=int(data.get("items_processed", 0)),
            created_at=datetime.fromisoformat(created_at) if created_at else None,
        )


# =============================================================================
# Slice result
# =============================================================================


@dataclass(frozen=True)
class SliceResult:
    """Immutable result of running one slice.

    Returned by ``BatchScanEngine.run_slice()``.  Exactly one of
    ``next_checkpoint`` (CHECKPOINTED) and ``final_state`` (COMPLETED) is
    set.
    """

    scan_id: UUID
    handler_name: str
    outcome: SliceOutcome
    slice_number: int
    batches: int
    items_processed: int  # In this slice
    total_items_processed: int  # Across all slices so far
    next_checkpoint: ScanCheckpoint | None = None
    final_state: dict[str, Any] | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def is_complete(self) -> bool:
        return self.outcome == SliceOutcome.COMPLETED
