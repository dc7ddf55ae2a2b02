"""
Tests for rangescan_batch.services.engine -- BatchScanEngine.

Slices run against the dict-backed InMemoryKeyStore (and, at the end, the
SQLAlchemy KeySelector).  Time is driven by a DeterministicClock that the
test handler advances by one second per item, so timeouts are exact.
"""

from typing import Any
from uuid import uuid4

import pytest

from rangescan_batch.domain.types import ScanCheckpoint, SliceOutcome
from rangescan_batch.handlers.base import (
    HandlerRegistry,
    ScanContext,
    ScanPlan,
    default_handler_registry,
)
from rangescan_batch.services.deferral import LocalDeferrer
from rangescan_batch.services.engine import BatchScanEngine
from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyQuery, StoredKey
from rangescan_kernel.exceptions import (
    CursorDecodeError,
    HandlerNotRegisteredError,
    ScanStateError,
)

KEYS = [f"k{i:02d}" for i in range(10)]


# =============================================================================
# Test handlers
# =============================================================================


class RecordingHandler:
    """Records every key and every complete() call in its state.

    ``seconds_per_item`` advances the shared clock inside process().
    """

    def __init__(self, clock=None, seconds_per_item: float = 0.0):
        self._clock = clock
        self._seconds_per_item = seconds_per_item

    @property
    def handler_name(self) -> str:
        return "test.recording"

    @property
    def description(self) -> str:
        return "Records keys"

    def start(self, context: ScanContext) -> ScanPlan:
        context.state.setdefault("seen", [])
        context.state.setdefault("completed", 0)
        context.state.setdefault("starts", 0)
        context.state["starts"] += 1
        p = context.parameters
        return ScanPlan(
            query=KeyQuery(collection=p["collection"]),
            batch_size=p.get("batch_size"),
            timeout_seconds=p.get("timeout_seconds"),
        )

    def process(self, context: ScanContext, item: StoredKey) -> None:
        context.state["seen"].append(item.key)
        if self._clock is not None and self._seconds_per_item:
            self._clock.advance(self._seconds_per_item)

    def complete(self, context: ScanContext) -> None:
        context.state["completed"] += 1


class ExplodingHandler(RecordingHandler):
    """Fails on a chosen key."""

    @property
    def handler_name(self) -> str:
        return "test.exploding"

    def process(self, context: ScanContext, item: StoredKey) -> None:
        if item.key == context.parameters.get("explode_on"):
            raise RuntimeError(f"cannot handle {item.key}")
        super().process(context, item)


class LeakyStateHandler(RecordingHandler):
    """Puts a non-JSON value into its state."""

    @property
    def handler_name(self) -> str:
        return "test.leaky"

    def process(self, context: ScanContext, item: StoredKey) -> None:
        super().process(context, item)
        context.state["unique"] = {item.key}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store(memory_store_factory):
    return memory_store_factory({"items": {key: {"n": i} for i, key in enumerate(KEYS)}})


@pytest.fixture
def registry(clock):
    registry = HandlerRegistry()
    registry.register(RecordingHandler(clock, seconds_per_item=1.0))
    registry.register(ExplodingHandler(clock, seconds_per_item=1.0))
    registry.register(LeakyStateHandler(clock, seconds_per_item=1.0))
    return registry


@pytest.fixture
def deferrer():
    return LocalDeferrer()


@pytest.fixture
def engine(registry, deferrer, store, clock):
    return BatchScanEngine(
        handler_registry=registry,
        deferrer=deferrer,
        store=store,
        keyspace=KeySpace(batch_size=2),
        clock=clock,
        default_timeout_seconds=300.0,
    )


def _params(**overrides: Any) -> dict[str, Any]:
    return {"collection": "items", **overrides}


# =============================================================================
# Single slice
# =============================================================================


class TestSingleSlice:

    def test_completes_when_range_fits(self, engine, deferrer):
        result = engine.start_scan("test.recording", _params(batch_size=50))
        assert result.outcome == SliceOutcome.COMPLETED
        assert result.is_complete
        assert result.batches == 1
        assert result.items_processed == 10
        assert result.final_state["seen"] == KEYS
        assert result.final_state["completed"] == 1
        assert result.next_checkpoint is None
        assert deferrer.pending == 0

    def test_full_last_page_needs_one_more_fetch(self, engine, store):
        result = engine.start_scan("test.recording", _params(batch_size=5))
        assert result.batches == 3
        assert [len(store.fetches), store.fetches[-1][2]] == [3, "10"]
        assert result.final_state["completed"] == 1

    def test_empty_range_completes(self, engine, memory_store_factory):
        result = engine.start_scan("test.recording", {"collection": "nothing"})
        assert result.outcome == SliceOutcome.COMPLETED
        assert result.items_processed == 0
        assert result.final_state == {"seen": [], "completed": 1, "starts": 1}

    def test_batch_size_defaults_to_keyspace(self, engine, store):
        engine.start_scan("test.recording", _params())
        assert {limit for _, limit, _ in store.fetches} == {2}

    def test_unknown_handler(self, engine, store):
        with pytest.raises(HandlerNotRegisteredError) as exc_info:
            engine.start_scan("test.missing", _params())
        assert "test.recording" in exc_info.value.available
        assert store.fetches == []

    def test_timestamps_from_clock(self, engine, clock):
        start = clock.now()
        result = engine.start_scan("test.recording", _params(batch_size=50))
        assert result.started_at == start
        assert (result.completed_at - start).total_seconds() == 10


# =============================================================================
# Checkpointing and resumption
# =============================================================================


class TestCheckpointing:

    def test_timeout_checkpoints_between_pages(self, engine, deferrer):
        # 1s per item, 2 items per page: 2s, 4s, 6s -> stop before page 4
        result = engine.start_scan("test.recording", _params(timeout_seconds=5))
        assert result.outcome == SliceOutcome.CHECKPOINTED
        assert result.batches == 3
        assert result.items_processed == 6
        assert deferrer.pending == 1

        nxt = result.next_checkpoint
        assert nxt.slice_number == 2
        assert nxt.items_processed == 6
        assert nxt.state["seen"] == KEYS[:6]
        assert nxt.state["completed"] == 0
        assert nxt.cursor is not None

    def test_resumes_from_cursor(self, engine, deferrer):
        engine.start_scan("test.recording", _params(timeout_seconds=5))
        (result,) = deferrer.drain(engine)
        assert result.outcome == SliceOutcome.COMPLETED
        assert result.slice_number == 2
        assert result.items_processed == 4
        assert result.total_items_processed == 10
        assert result.final_state["seen"] == KEYS
        assert result.final_state["starts"] == 2

    def test_at_least_one_page_per_slice(self, engine, deferrer):
        first = engine.start_scan("test.recording", _params(timeout_seconds=0))
        results = [first, *deferrer.drain(engine)]
        assert all(r.batches == 1 for r in results[:-1])
        assert results[-1].final_state["seen"] == KEYS

    def test_same_items_with_and_without_slicing(self, engine, deferrer):
        whole = engine.start_scan("test.recording", _params())
        engine.start_scan("test.recording", _params(timeout_seconds=1))
        sliced = deferrer.drain(engine)[-1]
        assert sliced.final_state["seen"] == whole.final_state["seen"] == KEYS

    def test_complete_runs_once(self, engine, deferrer):
        engine.start_scan("test.recording", _params(timeout_seconds=3))
        results = deferrer.drain(engine)
        assert [r.outcome for r in results].count(SliceOutcome.COMPLETED) == 1
        assert results[-1].final_state["completed"] == 1
        assert deferrer.pending == 0

    def test_defers_once_per_slice(self, engine, deferrer):
        engine.start_scan("test.recording", _params(timeout_seconds=3))
        assert deferrer.pending == 1

    def test_input_checkpoint_not_mutated(self, engine):
        checkpoint = ScanCheckpoint.initial("test.recording", _params(timeout_seconds=3))
        checkpoint = ScanCheckpoint.from_dict(
            {**checkpoint.to_dict(), "state": {"seen": ["earlier"], "completed": 0}}
        )
        engine.run_slice(checkpoint)
        assert checkpoint.state == {"seen": ["earlier"], "completed": 0}

    def test_checkpoint_survives_json(self, engine, deferrer):
        result = engine.start_scan("test.recording", _params(timeout_seconds=3))
        assert deferrer.pop() == result.next_checkpoint

    def test_logs_checkpoint_with_context(self, engine, captured_logs):
        result = engine.start_scan("test.recording", _params(timeout_seconds=3))
        records = captured_logs()
        checkpointed = [r for r in records if r["message"] == "scan_checkpointed"]
        assert len(checkpointed) == 1
        assert checkpointed[0]["scan_id"] == str(result.scan_id)
        assert checkpointed[0]["next_slice"] == 2
        started = [r for r in records if r["message"] == "scan_slice_started"]
        assert started[0]["handler_name"] == "test.recording"
        assert started[0]["slice_number"] == "1"
        assert "shard" not in started[0]

    def test_logs_shard_of_fanned_out_scan(self, engine, captured_logs):
        engine.start_scan("test.recording", _params(timeout_seconds=3, shard=3))
        records = captured_logs()
        started = [r for r in records if r["message"] == "scan_slice_started"]
        assert started[0]["shard"] == "3"
        checkpointed = [r for r in records if r["message"] == "scan_checkpointed"]
        assert checkpointed[0]["shard"] == "3"


# =============================================================================
# Failures
# =============================================================================


class TestFailures:

    def test_handler_error_defers_nothing(self, engine, deferrer, captured_logs):
        with pytest.raises(RuntimeError, match="k03"):
            engine.start_scan("test.exploding", _params(explode_on="k03"))
        assert deferrer.pending == 0
        failed = [r for r in captured_logs() if r["message"] == "scan_slice_failed"]
        assert len(failed) == 1
        assert failed[0]["exc_type"] == "RuntimeError"

    def test_store_error_defers_nothing(
        self, registry, deferrer, clock, memory_store_factory,
    ):
        store = memory_store_factory(
            {"items": {key: None for key in KEYS}}, fail_on_fetch=2,
        )
        engine = BatchScanEngine(
            registry, deferrer, store=store, keyspace=KeySpace(batch_size=2), clock=clock,
        )
        with pytest.raises(RuntimeError, match="store unavailable"):
            engine.start_scan("test.recording", _params())
        assert deferrer.pending == 0

    def test_previous_checkpoint_still_resumable(self, engine, deferrer):
        engine.start_scan("test.exploding", _params(timeout_seconds=3, explode_on="k07"))
        checkpoint = deferrer.pop()
        with pytest.raises(RuntimeError):
            engine.run_slice(checkpoint)
        assert deferrer.pending == 0
        # Same checkpoint replays the same items
        with pytest.raises(RuntimeError):
            engine.run_slice(checkpoint)

    def test_unserializable_state_on_checkpoint(self, engine, deferrer):
        with pytest.raises(ScanStateError) as exc_info:
            engine.start_scan("test.leaky", _params(timeout_seconds=1))
        assert exc_info.value.handler_name == "test.leaky"
        assert deferrer.pending == 0

    def test_unserializable_state_on_completion(self, engine):
        with pytest.raises(ScanStateError):
            engine.start_scan("test.leaky", _params(batch_size=50))

    def test_bad_cursor(self, session, clock):
        engine = BatchScanEngine(
            default_handler_registry(), LocalDeferrer(), session=session, clock=clock,
        )
        checkpoint = ScanCheckpoint(
            scan_id=uuid4(),
            handler_name="keys.log",
            parameters={"collection": "photos"},
            cursor="not-a-cursor!",
            slice_number=2,
        )
        with pytest.raises(CursorDecodeError):
            engine.run_slice(checkpoint)

    def test_needs_store_or_session(self, registry, deferrer):
        with pytest.raises(ValueError):
            BatchScanEngine(registry, deferrer)


# =============================================================================
# Against the SQL store
# =============================================================================


class TestWithKeySelector:

    def test_count_by_prefix_across_slices(self, session, put_keys, clock):
        keys = [f"{p}{i}" for p in "abc" for i in range(7)]
        put_keys("photos", keys)
        deferrer = LocalDeferrer()
        engine = BatchScanEngine(
            default_handler_registry(),
            deferrer,
            session=session,
            keyspace=KeySpace(batch_size=4),
            clock=clock,
            default_timeout_seconds=0,
        )
        first = engine.start_scan("keys.count_by_prefix", {"collection": "photos"})
        # Clock never moves, so elapsed == 0 is never over the limit
        assert first.is_complete
        assert first.batches == 6
        assert first.final_state["counts"] == {"a": 7, "b": 7, "c": 7}
        assert first.final_state["total"] == 21
