"""
ORM model for persisted scans.

Contract:
    ScanContinuationModel holds one row per logical scan: its handler,
    parameters, and the latest checkpoint (cursor, handler state, slice
    number).  ``to_checkpoint()`` / ``from_checkpoint()`` convert to and
    from the frozen ScanCheckpoint; ``apply_checkpoint()`` replaces the
    stored continuation after a slice.

Architecture: rangescan_batch/models. Imports from rangescan_kernel.db.base only.

Invariants enforced:
    - The row id IS the scan id, so a checkpoint always maps back to its row.
    - ``attempt_count`` never exceeds ``max_attempts`` while PENDING.
    - ``claimed_at`` is stamped whenever the row moves to RUNNING; a RUNNING
      row whose claim is older than the runner lease is treated as orphaned.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from rangescan_kernel.db.base import TimestampedBase

if TYPE_CHECKING:
    from rangescan_batch.domain.types import ScanCheckpoint


class ScanContinuationModel(TimestampedBase):
    """Persistent scan and its pending continuation."""

    __tablename__ = "scan_continuations"

    __table_args__ = (
        Index("ix_scan_continuations_status", "status"),
        Index("ix_scan_continuations_handler", "handler_name"),
    )

    handler_name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    state: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    cursor: Mapped[str | None] = mapped_column(Text, nullable=True)
    slice_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    items_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_checkpoint(self) -> ScanCheckpoint:
        from rangescan_batch.domain.types import ScanCheckpoint

        return ScanCheckpoint(
            scan_id=self.id,
            handler_name=self.handler_name,
            parameters=dict(self.parameters or {}),
            state=dict(self.state or {}),
            cursor=self.cursor,
            slice_number=self.slice_number,
            items_processed=self.items_processed,
            created_at=self.created_at,
        )

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: ScanCheckpoint,
        status: str,
        max_attempts: int = 3,
    ) -> ScanContinuationModel:
        return cls(
            id=checkpoint.scan_id,
            handler_name=checkpoint.handler_name,
            status=status,
            parameters=checkpoint.parameters or None,
            state=checkpoint.state or None,
            cursor=checkpoint.cursor,
            slice_number=checkpoint.slice_number,
            items_processed=checkpoint.items_processed,
            attempt_count=0,
            max_attempts=max_attempts,
        )

    def apply_checkpoint(self, checkpoint: ScanCheckpoint) -> None:
        """Replace the stored continuation with ``checkpoint``."""
        self.state = dict(checkpoint.state) or None
        self.cursor = checkpoint.cursor
        self.slice_number = checkpoint.slice_number
        self.items_processed = checkpoint.items_processed

    def __repr__(self) -> str:
        return f"<ScanContinuationModel {self.id} {self.handler_name} {self.status}>"
