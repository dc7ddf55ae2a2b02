"""
Command-line entry point: partition key spaces, submit and run scans.

Usage:
    rangescan [global options] <command> [options]

Examples:
    # Seed a few keys
    rangescan --create-tables put-keys photos p-001 p-002 p-003

    # Eight contiguous shards of a collection
    rangescan partition --collection photos --shards 8

    # One count scan per shard, then run everything that is pending
    rangescan fan-out keys.count_by_prefix --collection photos --shards 4
    rangescan run-pending

    # Hand a scan whose worker died back to the queue
    rangescan requeue 6f1c2d9e-0b4a-4f5e-9c1d-2a3b4c5d6e7f

Global options select the configuration file (``--config``) and database
(``--database-url``, falling back to the configuration's
``database_url``).
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence
from uuid import UUID

from rangescan_config import get_active_config
from rangescan_kernel.exceptions import RangeScanError


def _parse_param(text: str) -> tuple[str, Any]:
    """``key=value``; the value is read as JSON when it parses, else as text."""
    key, sep, raw = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {text!r}")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    return key, value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rangescan",
        description="Partition key spaces and run resumable batch scans.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration YAML (default: packaged sets/default.yaml).",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy database URL (default: from configuration).",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before running the command.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for JSON logs on stderr (default: WARNING).",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    put = sub.add_parser("put-keys", help="Insert keys into a collection.")
    put.add_argument("collection")
    put.add_argument("keys", nargs="*", help="Keys to insert (default: read stdin lines).")

    part = sub.add_parser("partition", help="Print the partitions of a collection.")
    part.add_argument("--collection", default=None)
    part.add_argument("--shards", type=int, default=None)
    part.add_argument(
        "--contiguous",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Tile the whole key space (default: from configuration).",
    )
    part.add_argument(
        "--no-query",
        action="store_true",
        help="Bisect the key space without looking at stored keys (no key counts).",
    )

    for name, help_text in (
        ("submit", "Submit one scan."),
        ("fan-out", "Submit one scan per partition of a collection."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("handler", help="Registered handler name, e.g. keys.log.")
        cmd.add_argument("--collection", required=True)
        cmd.add_argument(
            "--param",
            action="append",
            type=_parse_param,
            default=[],
            metavar="KEY=VALUE",
            help="Extra scan parameter (repeatable).",
        )
        if name == "submit":
            cmd.add_argument("--start", default=None)
            cmd.add_argument("--end", default=None)
        else:
            cmd.add_argument("--shards", type=int, default=None)

    run = sub.add_parser("run-pending", help="Run pending scans until none remain.")
    run.add_argument("--max-ticks", type=int, default=None)

    one = sub.add_parser("run-scan", help="Run the next slice of one scan.")
    one.add_argument("scan_id", type=UUID)

    requeue = sub.add_parser(
        "requeue", help="Hand a RUNNING scan whose worker is gone back to PENDING.",
    )
    requeue.add_argument("scan_id", type=UUID)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    from rangescan_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
        session_scope,
    )
    from rangescan_kernel.logging_config import configure_logging

    configure_logging(level=getattr(logging, args.log_level))

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    database_url = args.database_url or config.database_url
    if not database_url:
        print("ERROR: No database URL configured.", file=sys.stderr)
        return 1

    init_engine_from_url(database_url)
    if args.create_tables:
        create_tables()

    from rangescan_batch.orchestrator import ScanOrchestrator

    try:
        with session_scope() as session:
            orchestrator = ScanOrchestrator.from_session(session, config=config)
            return _dispatch(args, orchestrator, get_session_factory())
    except RangeScanError as e:
        print(f"ERROR [{e.code}]: {e}", file=sys.stderr)
        return 1


def _dispatch(args: argparse.Namespace, orchestrator, session_factory) -> int:
    if args.command == "put-keys":
        from rangescan_kernel.services.key_writer import KeyWriter

        keys = args.keys or [line.strip() for line in sys.stdin if line.strip()]
        written = KeyWriter(orchestrator.session, orchestrator.keyspace).put_keys(
            args.collection, keys,
        )
        print(f"Wrote {written} keys to {args.collection}")
        return 0

    if args.command == "partition":
        ranges = orchestrator.partition(
            args.shards,
            contiguous=args.contiguous,
            can_query=not args.no_query,
            collection=args.collection,
        )
        if args.no_query:
            for key_range in ranges:
                print(json.dumps(key_range.to_dict()))
            return 0

        from rangescan_kernel.selectors.key_selector import KeySelector

        selector = KeySelector(orchestrator.session)
        collection = args.collection or orchestrator.config.partition.collection
        for key_range in ranges:
            row = key_range.to_dict()
            row["keys"] = selector.count(key_range.to_query(collection))
            print(json.dumps(row))
        return 0

    if args.command == "submit":
        parameters = dict(args.param)
        parameters["collection"] = args.collection
        if args.start is not None:
            parameters["start"] = args.start
        if args.end is not None:
            parameters["end"] = args.end
        checkpoint = orchestrator.submit_scan(args.handler, parameters)
        print(checkpoint.scan_id)
        return 0

    if args.command == "fan-out":
        checkpoints = orchestrator.fan_out(
            args.handler,
            args.collection,
            n=args.shards,
            parameters=dict(args.param),
        )
        for checkpoint in checkpoints:
            print(checkpoint.scan_id)
        return 0

    # Runner commands see only committed scans
    orchestrator.session.commit()
    runner = orchestrator.create_runner(session_factory)

    if args.command == "run-pending":
        slices = runner.run_until_idle(max_ticks=args.max_ticks)
        print(f"Ran {slices} slices")
        return 0

    if args.command == "requeue":
        status = runner.requeue(args.scan_id)
        print(f"{args.scan_id} {status.value}")
        return 0

    result = runner.run_scan(args.scan_id)
    print(json.dumps({
        "scan_id": str(result.scan_id),
        "outcome": result.outcome.value,
        "items_processed": result.items_processed,
        "total_items_processed": result.total_items_processed,
        "final_state": result.final_state,
    }))
    return 0
