"""
ScanHandler protocol, supporting types, and HandlerRegistry.

Contract:
    ``ScanHandler`` defines the interface every scan handler implements.
    ``HandlerRegistry`` stores handlers keyed by their explicit
    ``handler_name``.  ``default_handler_registry()`` returns a registry
    pre-loaded with the built-in key handlers.

Architecture:
    rangescan_batch/handlers.  Imports from rangescan_kernel.domain only.

Invariants enforced:
    - One handler per ``handler_name`` string; lookup never relies on
      class or module names.
    - Handler instances hold no per-scan state.  Everything that must
      survive a slice boundary lives in ``ScanContext.state``, which must
      stay JSON-serializable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from rangescan_kernel.domain.keyspace import KeySpace
from rangescan_kernel.domain.store import KeyQuery, StoredKey


# =============================================================================
# Supporting DTOs
# =============================================================================


@dataclass
class ScanContext:
    """Per-slice view of a scan handed to every handler call.

    ``state`` is a private deep copy of the checkpoint state; handlers
    mutate it freely and the engine snapshots it at the slice boundary.
    """

    scan_id: UUID
    handler_name: str
    parameters: dict[str, Any]
    state: dict[str, Any]
    slice_number: int
    keyspace: KeySpace
    as_of: datetime
    session: Session | None = None

    @property
    def is_first_slice(self) -> bool:
        return self.slice_number == 1


@dataclass(frozen=True)
class ScanPlan:
    """What a slice should scan, returned by ``ScanHandler.start()``.

    ``batch_size`` / ``timeout_seconds`` of None fall back to the key space
    batch size and the engine's slice timeout.
    """

    query: KeyQuery
    batch_size: int | None = None
    timeout_seconds: float | None = None


# =============================================================================
# ScanHandler Protocol
# =============================================================================


@runtime_checkable
class ScanHandler(Protocol):
    """Protocol for scan handler implementations.

    Contract:
        - ``handler_name``: unique string key registered in HandlerRegistry.
        - ``description``: human-readable label for logs and the CLI.
        - ``start()``: called at the start of EVERY slice; returns the plan.
        - ``process()``: called once per item, in key order.
        - ``complete()``: called exactly once, after the final item of the
          final slice.

    Non-goals:
        - Does NOT manage transactions or cursors -- the engine owns both.
        - Does NOT keep state on ``self``.
    """

    @property
    def handler_name(self) -> str: ...

    @property
    def description(self) -> str: ...

    def start(self, context: ScanContext) -> ScanPlan:
        """Describe the query for this slice.

        Args:
            context: Slice context; ``context.state`` carries whatever the
                previous slice left behind.
        """
        ...

    def process(self, context: ScanContext, item: StoredKey) -> None:
        """Handle one stored key.

        Raising aborts the slice; the scan resumes from its previous
        checkpoint on retry.
        """
        ...

    def complete(self, context: ScanContext) -> None:
        """Finish the scan after the range is exhausted."""
        ...


# =============================================================================
# HandlerRegistry
# =============================================================================


class HandlerRegistry:
    """Registry mapping handler_name strings to ScanHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by handler_name; raises KeyError if missing.
        - ``list_handlers()`` returns all registered names.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ScanHandler] = {}

    def register(self, handler: ScanHandler) -> None:
        """Register a scan handler.

        Raises:
            ValueError: If a handler with the same handler_name is already
                registered.
        """
        if handler.handler_name in self._handlers:
            raise ValueError(
                f"Scan handler '{handler.handler_name}' is already registered"
            )
        self._handlers[handler.handler_name] = handler

    def get(self, handler_name: str) -> ScanHandler:
        """Retrieve a registered handler by name.

        Raises:
            KeyError: If no handler is registered under ``handler_name``.
        """
        try:
            return self._handlers[handler_name]
        except KeyError:
            raise KeyError(
                f"No scan handler registered as '{handler_name}'. "
                f"Available: {sorted(self._handlers.keys())}"
            ) from None

    def list_handlers(self) -> tuple[str, ...]:
        """Return all registered handler names, sorted."""
        return tuple(sorted(self._handlers.keys()))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, handler_name: str) -> bool:
        return handler_name in self._handlers


def default_handler_registry() -> HandlerRegistry:
    """Create a HandlerRegistry pre-loaded with the built-in key handlers."""
    from rangescan_batch.handlers.key_handlers import KeyCountHandler, KeyLogHandler

    registry = HandlerRegistry()
    registry.register(KeyLogHandler())
    registry.register(KeyCountHandler())
    return registry
