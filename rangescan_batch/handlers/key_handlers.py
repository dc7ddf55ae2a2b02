"""
Built-in key handlers.

Contract:
    KeyLogHandler      -- ``keys.log``: logs every key, counts them.
    KeyCountHandler    -- ``keys.count_by_prefix``: counts keys per group,
                          where the group is either a key prefix or a
                          payload field, and reports totals on completion.

Scan parameters (shared):
    collection       (required) collection to scan
    start / end      optional inclusive bounds; None is unbounded
    batch_size       optional page size override
    timeout_seconds  optional slice time limit override

Architecture:
    rangescan_batch/handlers.  Stateless: counters live in ``context.state``.
"""

from __future__ import annotations

from typing import Any, Mapping

from rangescan_batch.handlers.base import ScanContext, ScanPlan
from rangescan_kernel.domain.store import KeyQuery, StoredKey
from rangescan_kernel.logging_config import get_logger

logger = get_logger("batch.handlers.keys")

MISSING_GROUP = "__missing__"


def plan_from_parameters(
    parameters: Mapping[str, Any],
    keys_only: bool = True,
) -> ScanPlan:
    """ScanPlan for the standard scan parameters.

    Raises:
        ValueError: If ``collection`` is missing.
    """
    batch_size = parameters.get("batch_size")
    timeout = parameters.get("timeout_seconds")
    return ScanPlan(
        query=KeyQuery.from_parameters(parameters, keys_only=keys_only),
        batch_size=int(batch_size) if batch_size is not None else None,
        timeout_seconds=float(timeout) if timeout is not None else None,
    )


class KeyLogHandler:
    """Log every key in the range."""

    @property
    def handler_name(self) -> str:
        return "keys.log"

    @property
    def description(self) -> str:
        return "Log each key in a range"

    def start(self, context: ScanContext) -> ScanPlan:
        context.state.setdefault("count", 0)
        return plan_from_parameters(context.parameters)

    def process(self, context: ScanContext, item: StoredKey) -> None:
        context.state["count"] += 1
        logger.debug(
            "key_visited",
            extra={"collection": item.collection, "key": item.key},
        )

    def complete(self, context: ScanContext) -> None:
        logger.info(
            "keys_logged",
            extra={
                "scan_id": str(context.scan_id),
                "count": context.state.get("count", 0),
            },
        )


class KeyCountHandler:
    """Count keys per group.

    ``group_by`` names a payload field to group on (records without it
    fall under ``__missing__``); otherwise keys are grouped by their first
    ``prefix_length`` characters (default 1).
    """

    @property
    def handler_name(self) -> str:
        return "keys.count_by_prefix"

    @property
    def description(self) -> str:
        return "Count keys by prefix or by a payload field"

    def start(self, context: ScanContext) -> ScanPlan:
        context.state.setdefault("counts", {})
        group_by = context.parameters.get("group_by")
        return plan_from_parameters(context.parameters, keys_only=group_by is None)

    def process(self, context: ScanContext, item: StoredKey) -> None:
        group = self._group_of(context.parameters, item)
        counts = context.state["counts"]
        counts[group] = counts.get(group, 0) + 1

    def complete(self, context: ScanContext) -> None:
        counts = context.state.get("counts", {})
        context.state["total"] = sum(counts.values())
        for group in sorted(counts):
            logger.info(
                "group_counted",
                extra={"group": group, "count": counts[group]},
            )
        logger.info(
            "keys_counted",
            extra={
                "scan_id": str(context.scan_id),
                "groups": len(counts),
                "total": context.state["total"],
            },
        )

    @staticmethod
    def _group_of(parameters: Mapping[str, Any], item: StoredKey) -> str:
        group_by = parameters.get("group_by")
        if group_by is not None:
            value = (item.payload or {}).get(group_by)
            return MISSING_GROUP if value is None else str(value)
        prefix_length = int(parameters.get("prefix_length", 1))
        return item.key[:prefix_length]
