"""
BatchScanEngine -- resumable, time-bounded scan slices.

Contract:
    ``run_slice(checkpoint)`` runs one slice of a scan:

        Starting      resolve the handler, build the ScanContext, call
                      ``handler.start()`` for the plan.
        Running       fetch pages of ``batch_size`` from the cursor and call
                      ``handler.process()`` per item, in key order.
        Checkpointing the time limit passed with data remaining: snapshot
                      the handler state and defer the next checkpoint.
        Completing    a page came back short: call ``handler.complete()``.

    ``start_scan()`` builds the initial checkpoint and runs its first slice.

Architecture: rangescan_batch/services.  Reads through the KeyStore
    protocol; persists nothing itself.  The Deferrer decides where the
    continuation goes.

Invariants enforced:
    - Cooperative timeout: elapsed time is checked before each fetch after
      the first, never mid-item, so every slice fetches at least one page.
    - A full page means "possibly more"; only a short page ends the scan.
    - ``handler.complete()`` runs exactly once per scan, in the final slice.
    - The Deferrer is called exactly once for a checkpointed slice and
      never for a completed or failed one.
    - Handler state is deep-copied into the context and snapshotted through
      JSON at the slice boundary; the input checkpoint is never mutated.
    - All timestamps come from the injected Clock.

Failure modes:
    - HandlerNotRegisteredError: unknown handler name.
    - ScanStateError: handler state is not JSON-serializable.
    - StoreQueryError / CursorDecodeError / handler exceptions: logged as
      ``scan_slice_failed`` and re-raised; nothing is deferred.
"""

from __future__ import annotations

import copy
import json
import time
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from rangescan_batch.domain.types import ScanCheckpoint, SliceOutcome, SliceResult
from rangescan_batch.handlers.base import HandlerRegistry, ScanContext, ScanHandler
from rangescan_batch.services.deferral import Deferrer
from rangescan_kernel.domain.clock import Clock, SystemClock
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyStore
from rangescan_kernel.exceptions import HandlerNotRegisteredError, ScanStateError
from rangescan_kernel.logging_config import LogContext, get_logger
from rangescan_kernel.selectors.key_selector import KeySelector

logger = get_logger("batch.engine")

DEFAULT_SLICE_TIMEOUT_SECONDS = 300.0


class BatchScanEngine:
    """Runs scan slices against a key store.

    Contract:
        - ``start_scan()`` begins a new scan.
        - ``run_slice()`` continues one from a checkpoint.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT enforce single-flight -- the ScanRunner's row lock does.
    """

    def __init__(
        self,
        handler_registry: HandlerRegistry,
        deferrer: Deferrer,
        store: KeyStore | None = None,
        session: Session | None = None,
        keyspace: KeySpace | None = None,
        clock: Clock | None = None,
        default_timeout_seconds: float = DEFAULT_SLICE_TIMEOUT_SECONDS,
    ):
        if store is None:
            if session is None:
                raise ValueError("BatchScanEngine needs a store or a session")
            store = KeySelector(session)
        self._registry = handler_registry
        self._deferrer = deferrer
        self._store = store
        self._session = session
        self._keyspace = keyspace or KeySpace()
        self._clock = clock or SystemClock()
        self._default_timeout = default_timeout_seconds

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def start_scan(
        self,
        handler_name: str,
        parameters: Mapping[str, Any] | None = None,
        scan_id: UUID | None = None,
    ) -> SliceResult:
        """Run the first slice of a new scan.

        Raises:
            HandlerNotRegisteredError: If ``handler_name`` is unknown.
        """
        self._resolve_handler(handler_name)
        checkpoint = ScanCheckpoint.initial(
            handler_name,
            parameters,
            scan_id=scan_id,
            created_at=self._clock.now(),
        )
        return self.run_slice(checkpoint)

    def run_slice(self, checkpoint: ScanCheckpoint) -> SliceResult:
        """Run one slice from ``checkpoint``.

        Returns:
            SliceResult, COMPLETED or CHECKPOINTED.
        """
        handler = self._resolve_handler(checkpoint.handler_name)
        started_at = self._clock.now()
        start_time = time.monotonic()

        context = ScanContext(
            scan_id=checkpoint.scan_id,
            handler_name=checkpoint.handler_name,
            parameters=copy.deepcopy(checkpoint.parameters),
            state=copy.deepcopy(checkpoint.state),
            slice_number=checkpoint.slice_number,
            keyspace=self._keyspace,
            as_of=started_at,
            session=self._session,
        )

        with LogContext.bind(
            scan_id=str(checkpoint.scan_id),
            handler_name=checkpoint.handler_name,
            slice_number=str(checkpoint.slice_number),
            shard=(
                str(checkpoint.parameters["shard"])
                if "shard" in checkpoint.parameters
                else None
            ),
        ):
            try:
                return self._run(handler, checkpoint, context, started_at, start_time)
            except Exception:
                logger.exception(
                    "scan_slice_failed",
                    extra={
                        "scan_id": str(checkpoint.scan_id),
                        "handler_name": checkpoint.handler_name,
                        "slice_number": checkpoint.slice_number,
                    },
                )
                raise

    @property
    def keyspace(self) -> KeySpace:
        return self._keyspace

    @property
    def handler_registry(self) -> HandlerRegistry:
        return self._registry

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _resolve_handler(self, handler_name: str) -> ScanHandler:
        if handler_name not in self._registry:
            raise HandlerNotRegisteredError(
                handler_name, self._registry.list_handlers(),
            )
        return self._registry.get(handler_name)

    def _run(
        self,
        handler: ScanHandler,
        checkpoint: ScanCheckpoint,
        context: ScanContext,
        started_at,
        start_time: float,
    ) -> SliceResult:
        plan = handler.start(context)
        batch_size = plan.batch_size or self._keyspace.batch_size
        timeout = (
            plan.timeout_seconds
            if plan.timeout_seconds is not None
            else self._default_timeout
        )

        logger.info(
            "scan_slice_started",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "collection": plan.query.collection,
                "batch_size": batch_size,
                "timeout_seconds": timeout,
                "resumed": checkpoint.cursor is not None,
            },
        )

        cursor = checkpoint.cursor
        batches = 0
        processed = 0

        while True:
            if batches and self._clock.elapsed_seconds(started_at) > timeout:
                return self._checkpoint(
                    handler, checkpoint, context, cursor,
                    batches, processed, started_at, start_time,
                )

            page = self._store.fetch(plan.query, limit=batch_size, cursor=cursor)
            batches += 1
            logger.debug(
                "scan_batch_fetched",
                extra={"batch": batches, "items": len(page)},
            )

            for item in page.items:
                handler.process(context, item)
                processed += 1

            if page.cursor is not None:
                cursor = page.cursor

            if len(page) < batch_size:
                return self._complete(
                    handler, checkpoint, context,
                    batches, processed, started_at, start_time,
                )

    def _checkpoint(
        self,
        handler: ScanHandler,
        checkpoint: ScanCheckpoint,
        context: ScanContext,
        cursor: str | None,
        batches: int,
        processed: int,
        started_at,
        start_time: float,
    ) -> SliceResult:
        next_checkpoint = ScanCheckpoint(
            scan_id=checkpoint.scan_id,
            handler_name=checkpoint.handler_name,
            parameters=checkpoint.parameters,
            state=self._snapshot_state(handler, context),
            cursor=cursor,
            slice_number=checkpoint.slice_number + 1,
            items_processed=checkpoint.items_processed + processed,
            created_at=checkpoint.created_at,
        )
        self._deferrer.defer(next_checkpoint)

        completed_at = self._clock.now()
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "scan_checkpointed",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "batches": batches,
                "items_processed": processed,
                "total_items_processed": next_checkpoint.items_processed,
                "next_slice": next_checkpoint.slice_number,
                "duration_ms": duration_ms,
            },
        )
        return SliceResult(
            scan_id=checkpoint.scan_id,
            handler_name=checkpoint.handler_name,
            outcome=SliceOutcome.CHECKPOINTED,
            slice_number=checkpoint.slice_number,
            batches=batches,
            items_processed=processed,
            total_items_processed=next_checkpoint.items_processed,
            next_checkpoint=next_checkpoint,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )

    def _complete(
        self,
        handler: ScanHandler,
        checkpoint: ScanCheckpoint,
        context: ScanContext,
        batches: int,
        processed: int,
        started_at,
        start_time: float,
    ) -> SliceResult:
        handler.complete(context)
        final_state = self._snapshot_state(handler, context)

        total = checkpoint.items_processed + processed
        completed_at = self._clock.now()
        duration_ms = int((time.monotonic() - start_time) * 1000)
        logger.info(
            "scan_completed",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "slices": checkpoint.slice_number,
                "batches": batches,
                "items_processed": processed,
                "total_items_processed": total,
                "duration_ms": duration_ms,
            },
        )
        return SliceResult(
            scan_id=checkpoint.scan_id,
            handler_name=checkpoint.handler_name,
            outcome=SliceOutcome.COMPLETED,
            slice_number=checkpoint.slice_number,
            batches=batches,
            items_processed=processed,
            total_items_processed=total,
            final_state=final_state,
            started_at=started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
        )

    @staticmethod
    def _snapshot_state(handler: ScanHandler, context: ScanContext) -> dict[str, Any]:
        """Detached, JSON-clean copy of the handler state."""
        try:
            return json.loads(json.dumps(context.state))
        except (TypeError, ValueError) as exc:
            raise ScanStateError(handler.handler_name, str(exc)) from exc
