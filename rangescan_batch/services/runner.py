"""
ScanRunner -- In-process polling worker for persisted scans.

Contract:
    Polls PENDING scan rows on a configurable interval, claims them
    (PENDING -> RUNNING under ``SELECT ... FOR UPDATE SKIP LOCKED``) and
    runs one slice of each through a BatchScanEngine whose Deferrer writes
    continuations back to the same row.

Architecture: rangescan_batch/services.  Owns session and transaction
    boundaries: one short transaction to claim, one per slice.

Invariants enforced:
    - At most one slice of a scan is in flight: only PENDING rows are
      claimed and a claimed row is RUNNING until its slice ends.
    - A RUNNING row whose ``claimed_at`` is older than the claim lease
      belongs to a worker that died mid-slice; it is claimed again.
    - Every slice a tick runs logs under one ``correlation_id``.
    - All timestamps from the injected Clock.
    - A failed slice rolls back, keeps the previous checkpoint, and counts
      one attempt; after ``max_attempts`` the scan is FAILED.
    - Graceful shutdown: the stop signal is checked between scans.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from rangescan_batch.domain.types import ScanStatus, SliceResult
from rangescan_batch.models.scan import ScanContinuationModel
from rangescan_batch.services.engine import BatchScanEngine
from rangescan_kernel.domain.clock import Clock, SystemClock
from rangescan_kernel.exceptions import (
    ScanAlreadyRunningError,
    ScanNotFoundError,
    ScanNotResumableError,
)
from rangescan_kernel.logging_config import LogContext, get_logger

logger = get_logger("batch.runner")

_ERROR_SUMMARY_LIMIT = 2000


class ScanRunner:
    """Polling worker for persisted scans.

    Contract:
        - ``tick()`` claims due scans and runs one slice of each.
        - ``run_scan()`` runs the next slice of one specific scan.
        - ``run_until_idle()`` ticks until nothing is PENDING.
        - ``requeue()`` hands a stuck RUNNING scan back to PENDING.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler; concurrent runners coordinate only
          through row locks.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        engine_factory: Callable[[Session], BatchScanEngine],
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
        claim_limit: int = 10,
        claim_lease_seconds: float = 600.0,
    ):
        self._session_factory = session_factory
        self._engine_factory = engine_factory
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._claim_limit = claim_limit
        self._claim_lease = timedelta(seconds=claim_lease_seconds)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Claim due scans and run one slice of each (public for testing).

        Returns the number of slices run, successful or not.
        """
        try:
            claimed = self._claim_pending()
        except Exception:
            logger.exception("runner_tick_failed")
            return 0

        ran = 0
        with LogContext.bind(correlation_id=str(uuid4())):
            for scan_id in claimed:
                if self._stop_event.is_set():
                    self._release(scan_id)
                    continue
                try:
                    self._execute(scan_id)
                except Exception:
                    # Recorded on the row by _execute; keep serving other scans
                    logger.warning(
                        "runner_scan_failed",
                        extra={"scan_id": str(scan_id)},
                    )
                ran += 1
        return ran

    def run_scan(self, scan_id: UUID) -> SliceResult:
        """Claim and run the next slice of ``scan_id``.

        Raises:
            ScanNotFoundError: If no such scan exists.
            ScanAlreadyRunningError: If a slice is already in flight; see
                ``requeue()`` when its worker is known to be gone.
            ScanNotResumableError: If the scan is COMPLETED or FAILED.
            Any exception from the slice itself, after it is recorded.
        """
        session = self._session_factory()
        try:
            model = session.execute(
                select(ScanContinuationModel)
                .where(ScanContinuationModel.id == scan_id)
                .with_for_update()
            ).scalar_one_or_none()

            if model is None:
                raise ScanNotFoundError(str(scan_id))
            if model.status == ScanStatus.RUNNING.value:
                raise ScanAlreadyRunningError(str(scan_id))
            if model.status != ScanStatus.PENDING.value:
                raise ScanNotResumableError(str(scan_id), model.status)

            model.status = ScanStatus.RUNNING.value
            model.claimed_at = self._clock.now()
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        with LogContext.bind(correlation_id=str(uuid4())):
            return self._execute(scan_id)

    def requeue(self, scan_id: UUID) -> ScanStatus:
        """Hand a RUNNING scan back to PENDING without counting an attempt.

        For operators who know the worker holding the claim is gone and do
        not want to wait out the claim lease. A PENDING scan is left as is.

        Returns:
            The scan's status afterwards.

        Raises:
            ScanNotFoundError: If no such scan exists.
            ScanNotResumableError: If the scan is COMPLETED or FAILED.
        """
        session = self._session_factory()
        try:
            model = session.execute(
                select(ScanContinuationModel)
                .where(ScanContinuationModel.id == scan_id)
                .with_for_update()
            ).scalar_one_or_none()

            if model is None:
                raise ScanNotFoundError(str(scan_id))
            if model.status not in (ScanStatus.PENDING.value, ScanStatus.RUNNING.value):
                raise ScanNotResumableError(str(scan_id), model.status)

            previous = model.status
            model.status = ScanStatus.PENDING.value
            model.claimed_at = None
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        if previous == ScanStatus.RUNNING.value:
            logger.warning("scan_requeued", extra={"scan_id": str(scan_id)})
        return ScanStatus.PENDING

    def run_until_idle(self, max_ticks: int | None = None) -> int:
        """Tick until a tick finds nothing to run.

        Returns the total number of slices run.
        """
        total = 0
        ticks = 0
        while not self._stop_event.is_set():
            if max_ticks is not None and ticks >= max_ticks:
                break
            ran = self.tick()
            ticks += 1
            if ran == 0:
                break
            total += ran
        return total

    def start(self) -> None:
        """Start the runner in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="scan-runner",
            daemon=True,
        )
        self._thread.start()
        logger.info("runner_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current slice to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("runner_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._tick_interval)

    def _claim_pending(self) -> list[UUID]:
        """Move up to ``claim_limit`` due scans to RUNNING, oldest first.

        Due means PENDING, or RUNNING with a claim older than the lease.
        """
        now = self._clock.now()
        expired = now - self._claim_lease
        session = self._session_factory()
        try:
            models = session.execute(
                select(ScanContinuationModel)
                .where(
                    or_(
                        ScanContinuationModel.status == ScanStatus.PENDING.value,
                        and_(
                            ScanContinuationModel.status == ScanStatus.RUNNING.value,
                            ScanContinuationModel.claimed_at < expired,
                        ),
                    )
                )
                .order_by(ScanContinuationModel.updated_at, ScanContinuationModel.id)
                .limit(self._claim_limit)
                .with_for_update(skip_locked=True)
            ).scalars().all()

            reclaimed = []
            for model in models:
                if model.status == ScanStatus.RUNNING.value:
                    reclaimed.append(model.id)
                model.status = ScanStatus.RUNNING.value
                model.claimed_at = now
            claimed = [model.id for model in models]
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

        for scan_id in reclaimed:
            logger.warning("scan_claim_expired", extra={"scan_id": str(scan_id)})
        if claimed:
            logger.debug("scans_claimed", extra={"count": len(claimed)})
        return claimed

    def _release(self, scan_id: UUID) -> None:
        """Hand a claimed but unrun scan back to PENDING."""
        session = self._session_factory()
        try:
            model = session.get(ScanContinuationModel, scan_id)
            if model is not None and model.status == ScanStatus.RUNNING.value:
                model.status = ScanStatus.PENDING.value
                model.claimed_at = None
            session.commit()
        finally:
            session.close()

    def _execute(self, scan_id: UUID) -> SliceResult:
        """Run one slice of a claimed (RUNNING) scan and record the outcome."""
        session = self._session_factory()
        try:
            model = session.get(ScanContinuationModel, scan_id)
            if model is None:
                raise ScanNotFoundError(str(scan_id))

            engine = self._engine_factory(session)
            result = engine.run_slice(model.to_checkpoint())

            if result.is_complete:
                model.status = ScanStatus.COMPLETED.value
                model.state = result.final_state or None
                model.cursor = None
                model.items_processed = result.total_items_processed
                model.completed_at = self._clock.now()
                model.error_summary = None
            # Otherwise the DatabaseDeferrer already re-queued the row

            session.commit()
            logger.info(
                "scan_slice_recorded",
                extra={
                    "scan_id": str(scan_id),
                    "outcome": result.outcome.value,
                    "slice_number": result.slice_number,
                    "items_processed": result.items_processed,
                },
            )
            return result
        except Exception as exc:
            session.rollback()
            self._record_failure(session, scan_id, exc)
            raise
        finally:
            session.close()

    def _record_failure(
        self,
        session: Session,
        scan_id: UUID,
        exc: Exception,
    ) -> None:
        model = session.get(ScanContinuationModel, scan_id)
        if model is None:
            return

        model.attempt_count += 1
        model.error_summary = f"{type(exc).__name__}: {exc}"[:_ERROR_SUMMARY_LIMIT]
        if model.attempt_count >= model.max_attempts:
            model.status = ScanStatus.FAILED.value
        else:
            model.status = ScanStatus.PENDING.value
        session.commit()

        logger.error(
            "scan_attempt_failed",
            extra={
                "scan_id": str(scan_id),
                "attempt": model.attempt_count,
                "max_attempts": model.max_attempts,
                "status": model.status,
                "error_code": getattr(exc, "code", None),
            },
        )
