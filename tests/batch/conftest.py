"""
Fixtures for persisted-scan tests: a small configuration, test handlers
that move the clock, and an orchestrator wired to in-memory SQLite.
"""

import threading

import pytest

from rangescan_batch.handlers.base import ScanContext, ScanPlan, default_handler_registry
from rangescan_batch.handlers.key_handlers import plan_from_parameters
from rangescan_batch.models.scan import ScanContinuationModel
from rangescan_batch.orchestrator import ScanOrchestrator
from rangescan_config import KeySpaceDef, PartitionDef, RangeScanConfig, ScanEngineDef
from rangescan_kernel.domain.store import StoredKey

STORED = ["a", "ab", "abc", "b", "ba", "bca", "c", "cb", "cca", "ccc"]


class TickingHandler:
    """Collects keys; one clock second per item.

    ``explode_on`` in the parameters names a key to fail on.
    """

    def __init__(self, clock):
        self._clock = clock
        self.completed = threading.Event()

    @property
    def handler_name(self) -> str:
        return "test.ticking"

    @property
    def description(self) -> str:
        return "Collect keys slowly"

    def start(self, context: ScanContext) -> ScanPlan:
        context.state.setdefault("seen", [])
        return plan_from_parameters(context.parameters)

    def process(self, context: ScanContext, item: StoredKey) -> None:
        if item.key == context.parameters.get("explode_on"):
            raise RuntimeError(f"boom at {item.key}")
        context.state["seen"].append(item.key)
        self._clock.advance(1)

    def complete(self, context: ScanContext) -> None:
        self.completed.set()


@pytest.fixture
def small_config():
    return RangeScanConfig(
        config_id="test",
        keyspace=KeySpaceDef(alphabet="abc", max_length=3, batch_size=2),
        engine=ScanEngineDef(slice_timeout_seconds=3, max_attempts=2, claim_limit=10),
        partition=PartitionDef(default_shards=4, contiguous=True, collection="photos"),
    )


@pytest.fixture
def ticking_handler(clock):
    return TickingHandler(clock)


@pytest.fixture
def orchestrator(session, small_config, clock, ticking_handler):
    registry = default_handler_registry()
    registry.register(ticking_handler)
    return ScanOrchestrator.from_session(
        session, config=small_config, clock=clock, handler_registry=registry,
    )


@pytest.fixture
def stored_photos(put_keys, orchestrator):
    put_keys("photos", STORED, orchestrator.keyspace)
    return STORED


@pytest.fixture
def load_scan(session_factory):
    """Read a scan row through a fresh session."""

    def _load(scan_id) -> ScanContinuationModel:
        fresh = session_factory()
        try:
            return fresh.get(ScanContinuationModel, scan_id)
        finally:
            fresh.close()

    return _load
