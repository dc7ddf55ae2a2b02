"""
Deferred re-invocation of scans.

Contract:
    ``Deferrer.defer(checkpoint)`` schedules the next slice of a scan.  The
    engine calls it at most once per slice and never after completion or
    failure.

    LocalDeferrer     -- in-process FIFO.  Every checkpoint is round-tripped
                         through JSON so anything that would not survive a
                         real hand-off fails here too.  ``drain(engine)``
                         runs queued slices until none remain.
    DatabaseDeferrer  -- writes the checkpoint onto the scan's
                         ScanContinuationModel row as PENDING, for the
                         ScanRunner to pick up.  Flushes, never commits.

Architecture: rangescan_batch/services.
"""

from __future__ import annotations

import json
from collections import deque
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session

from rangescan_batch.domain.types import ScanCheckpoint, ScanStatus, SliceResult
from rangescan_batch.models.scan import ScanContinuationModel
from rangescan_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from rangescan_batch.services.engine import BatchScanEngine

logger = get_logger("batch.deferral")


@runtime_checkable
class Deferrer(Protocol):
    """Schedules the continuation of a scan."""

    def defer(self, checkpoint: ScanCheckpoint) -> None: ...


class LocalDeferrer:
    """In-process continuation queue."""

    def __init__(self) -> None:
        self._queue: deque[str] = deque()

    def defer(self, checkpoint: ScanCheckpoint) -> None:
        self._queue.append(json.dumps(checkpoint.to_dict()))
        logger.debug(
            "scan_deferred",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "slice_number": checkpoint.slice_number,
                "target": "local",
            },
        )

    @property
    def pending(self) -> int:
        return len(self._queue)

    def pop(self) -> ScanCheckpoint | None:
        """Oldest queued continuation, or None."""
        if not self._queue:
            return None
        return ScanCheckpoint.from_dict(json.loads(self._queue.popleft()))

    def drain(
        self,
        engine: BatchScanEngine,
        max_slices: int | None = None,
    ) -> list[SliceResult]:
        """Run queued continuations, including ones they defer, until empty.

        Args:
            engine: Engine to run slices on; normally the engine this
                deferrer is wired into.
            max_slices: Stop after this many slices even if work remains.
        """
        results: list[SliceResult] = []
        while self._queue:
            if max_slices is not None and len(results) >= max_slices:
                break
            results.append(engine.run_slice(self.pop()))
        return results


class DatabaseDeferrer:
    """Persists continuations as PENDING scan rows."""

    def __init__(self, session: Session, max_attempts: int = 3):
        self._session = session
        self._max_attempts = max_attempts

    def defer(self, checkpoint: ScanCheckpoint) -> None:
        model = self._session.execute(
            select(ScanContinuationModel).where(
                ScanContinuationModel.id == checkpoint.scan_id,
            )
        ).scalar_one_or_none()

        if model is None:
            model = ScanContinuationModel.from_checkpoint(
                checkpoint,
                status=ScanStatus.PENDING.value,
                max_attempts=self._max_attempts,
            )
            self._session.add(model)
        else:
            model.apply_checkpoint(checkpoint)
            model.status = ScanStatus.PENDING.value
            model.attempt_count = 0
            model.claimed_at = None
            model.error_summary = None

        self._session.flush()
        logger.info(
            "scan_deferred",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "slice_number": checkpoint.slice_number,
                "items_processed": checkpoint.items_processed,
                "target": "database",
            },
        )
