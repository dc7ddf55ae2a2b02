"""Scan handler contract, registry and built-in handlers."""

from rangescan_batch.handlers.base import (
    HandlerRegistry,
    ScanContext,
    ScanHandler,
    ScanPlan,
    default_handler_registry,
)
from rangescan_batch.handlers.key_handlers import KeyCountHandler, KeyLogHandler

__all__ = [
    "HandlerRegistry",
    "KeyCountHandler",
    "KeyLogHandler",
    "ScanContext",
    "ScanHandler",
    "ScanPlan",
    "default_handler_registry",
]
