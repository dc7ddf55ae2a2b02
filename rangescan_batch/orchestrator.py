"""
ScanOrchestrator -- DI container for the scan system.

Contract:
    Wires the HandlerRegistry, KeySpace, Clock and configuration into
    BatchScanEngine and ScanRunner instances, and offers the top-level
    operations: submit a scan, partition a collection, fan a scan out
    over the partitions.

Architecture: rangescan_batch (top-level).  This is the canonical entry
    point for configuring and running scans.

Invariants enforced:
    - Clock injection: every engine and runner receives the same Clock.
    - Submitting never runs a slice; scans start PENDING for a runner.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from rangescan_batch.domain.types import ScanCheckpoint, ScanStatus
from rangescan_batch.handlers.base import HandlerRegistry, default_handler_registry
from rangescan_batch.models.scan import ScanContinuationModel
from rangescan_batch.services.deferral import DatabaseDeferrer, Deferrer
from rangescan_batch.services.engine import BatchScanEngine
from rangescan_batch.services.runner import ScanRunner
from rangescan_config import RangeScanConfig, build_keyspace
from rangescan_kernel.domain.clock import Clock, SystemClock
from rangescan_kernel.domain.key_range import KeyRange
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.partitioner import RangePartitioner
from rangescan_kernel.exceptions import HandlerNotRegisteredError
from rangescan_kernel.logging_config import get_logger
from rangescan_kernel.selectors.key_selector import KeySelector

logger = get_logger("batch.orchestrator")


class ScanOrchestrator:
    """DI container for the scan system.

    Contract:
        - ``from_session()`` factory creates a fully wired orchestrator.
        - ``create_engine()`` returns a BatchScanEngine for ad-hoc slices.
        - ``create_runner()`` returns a ScanRunner for background use.
        - ``submit_scan()`` / ``fan_out()`` persist PENDING scans.
        - ``partition()`` splits a collection's key space.

    Non-goals:
        - Does NOT start the runner automatically -- caller decides.
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        handler_registry: HandlerRegistry,
        config: RangeScanConfig,
        keyspace: KeySpace | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._registry = handler_registry
        self._config = config
        self._keyspace = keyspace or build_keyspace(config)
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_session(
        cls,
        session: Session,
        config: RangeScanConfig | None = None,
        clock: Clock | None = None,
        handler_registry: HandlerRegistry | None = None,
    ) -> ScanOrchestrator:
        """Create a fully wired ScanOrchestrator from a session.

        Args:
            session: SQLAlchemy session for persistence and store reads.
            config: Optional configuration; defaults to built-in defaults.
            clock: Optional clock for deterministic testing.
            handler_registry: Optional pre-configured registry.  If None,
                uses the default registry with the built-in key handlers.
        """
        effective_config = config or RangeScanConfig()
        registry = (
            handler_registry
            if handler_registry is not None
            else default_handler_registry()
        )
        return cls(
            session=session,
            handler_registry=registry,
            config=effective_config,
            clock=clock or SystemClock(),
        )

    # -------------------------------------------------------------------------
    # Engine / runner
    # -------------------------------------------------------------------------

    def create_engine(
        self,
        session: Session | None = None,
        deferrer: Deferrer | None = None,
    ) -> BatchScanEngine:
        """Create a BatchScanEngine wired with the orchestrator's dependencies.

        Args:
            session: Optional session override.  If None, uses the
                orchestrator's session.
            deferrer: Optional deferrer.  If None, continuations are
                persisted through a DatabaseDeferrer on the same session.
        """
        target_session = session or self._session
        return BatchScanEngine(
            handler_registry=self._registry,
            deferrer=deferrer or DatabaseDeferrer(
                target_session, max_attempts=self._config.engine.max_attempts,
            ),
            session=target_session,
            keyspace=self._keyspace,
            clock=self._clock,
            default_timeout_seconds=self._config.engine.slice_timeout_seconds,
        )

    def create_runner(
        self,
        session_factory: Callable[[], Session],
        tick_interval_seconds: int | None = None,
    ) -> ScanRunner:
        """Create a ScanRunner wired with the orchestrator's dependencies.

        Args:
            session_factory: Callable returning new sessions for each
                transaction.
            tick_interval_seconds: Polling interval; defaults to the
                configured value.
        """
        engine_config = self._config.engine
        return ScanRunner(
            session_factory=session_factory,
            engine_factory=lambda session: self.create_engine(session=session),
            clock=self._clock,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else engine_config.tick_interval_seconds
            ),
            claim_limit=engine_config.claim_limit,
            claim_lease_seconds=engine_config.claim_lease_seconds,
        )

    # -------------------------------------------------------------------------
    # Scans
    # -------------------------------------------------------------------------

    def submit_scan(
        self,
        handler_name: str,
        parameters: Mapping[str, Any] | None = None,
        scan_id: UUID | None = None,
        max_attempts: int | None = None,
    ) -> ScanCheckpoint:
        """Persist a new PENDING scan.

        Raises:
            HandlerNotRegisteredError: If ``handler_name`` is unknown.
        """
        if handler_name not in self._registry:
            raise HandlerNotRegisteredError(
                handler_name, self._registry.list_handlers(),
            )

        checkpoint = ScanCheckpoint.initial(
            handler_name,
            parameters,
            scan_id=scan_id,
            created_at=self._clock.now(),
        )
        model = ScanContinuationModel.from_checkpoint(
            checkpoint,
            status=ScanStatus.PENDING.value,
            max_attempts=max_attempts or self._config.engine.max_attempts,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "scan_submitted",
            extra={
                "scan_id": str(checkpoint.scan_id),
                "handler_name": handler_name,
                "parameters": checkpoint.parameters,
            },
        )
        return checkpoint

    def partition(
        self,
        n: int | None = None,
        contiguous: bool | None = None,
        can_query: bool = True,
        collection: str | None = None,
    ) -> list[KeyRange]:
        """Partition a collection's key space; None picks the configured default."""
        partition_config = self._config.partition
        partitioner = RangePartitioner(
            self._keyspace,
            store=KeySelector(self._session),
            collection=collection or partition_config.collection,
        )
        return partitioner.partition(
            n if n is not None else partition_config.default_shards,
            contiguous=(
                contiguous if contiguous is not None else partition_config.contiguous
            ),
            can_query=can_query,
        )

    def fan_out(
        self,
        handler_name: str,
        collection: str,
        n: int | None = None,
        parameters: Mapping[str, Any] | None = None,
        contiguous: bool | None = None,
    ) -> list[ScanCheckpoint]:
        """Submit one scan per partition of ``collection``.

        Each scan's parameters are ``parameters`` plus ``collection``,
        the shard's ``start`` / ``end`` and its ``shard`` index.  An empty
        collection yields no scans when not contiguous.

        Raises:
            HandlerNotRegisteredError: If ``handler_name`` is unknown.
        """
        if handler_name not in self._registry:
            raise HandlerNotRegisteredError(
                handler_name, self._registry.list_handlers(),
            )

        ranges = self.partition(n, contiguous=contiguous, collection=collection)
        submitted = [
            self.submit_scan(
                handler_name,
                {
                    **dict(parameters or {}),
                    "collection": collection,
                    **key_range.to_dict(),
                    "shard": index,
                },
            )
            for index, key_range in enumerate(ranges)
        ]

        logger.info(
            "scan_fanned_out",
            extra={
                "handler_name": handler_name,
                "collection": collection,
                "shards": len(submitted),
            },
        )
        return submitted

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def keyspace(self) -> KeySpace:
        return self._keyspace

    @property
    def config(self) -> RangeScanConfig:
        return self._config

    @property
    def handler_registry(self) -> HandlerRegistry:
        return self._registry
