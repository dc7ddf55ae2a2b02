"""
Tests for rangescan_batch.cli -- end to end against a SQLite file.
"""

import io
import json
import logging
from uuid import UUID

import pytest

from rangescan_batch.cli import _parse_param, build_parser, main
from rangescan_kernel.db.engine import reset_engine
from rangescan_kernel.logging_config import configure_logging

SMALL_CONFIG = """\
config_id: cli-test
keyspace:
  alphabet: abc
  max_length: 3
  batch_size: 2
partition:
  default_shards: 2
  collection: photos
"""


@pytest.fixture
def cli(tmp_path, capsys, monkeypatch):
    """Run the CLI against a fresh database; returns (exit code, stdout, stderr)."""
    monkeypatch.delenv("RANGESCAN_DATABASE_URL", raising=False)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(SMALL_CONFIG)
    url = f"sqlite:///{tmp_path / 'scans.db'}"

    def _run(*argv):
        code = main([
            "--config", str(config_path),
            "--database-url", url,
            "--create-tables",
            *argv,
        ])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    yield _run

    reset_engine()
    configure_logging(level=logging.DEBUG)


# =============================================================================
# Argument parsing
# =============================================================================


class TestParser:

    def test_param_json_value(self):
        assert _parse_param("prefix_length=2") == ("prefix_length", 2)
        assert _parse_param("flags=[1, 2]") == ("flags", [1, 2])

    def test_param_text_value(self):
        assert _parse_param("group_by=camera") == ("group_by", "camera")

    def test_param_requires_equals(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["submit", "keys.log", "--collection", "x", "--param", "nope"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


# =============================================================================
# Commands
# =============================================================================


class TestCommands:

    def test_put_keys(self, cli):
        code, out, _ = cli("put-keys", "photos", "a", "ab", "cc")
        assert code == 0
        assert out.strip() == "Wrote 3 keys to photos"

    def test_put_keys_from_stdin(self, cli, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("a\n\nbb\n"))
        code, out, _ = cli("put-keys", "photos")
        assert code == 0
        assert out.strip() == "Wrote 2 keys to photos"

    def test_invalid_key(self, cli):
        code, _, err = cli("put-keys", "photos", "xyz")
        assert code == 1
        assert "ERROR [INVALID_KEY_CHARACTER]" in err

    def test_partition_without_query(self, cli):
        code, out, _ = cli("partition", "--shards", "4", "--no-query")
        assert code == 0
        assert [json.loads(line) for line in out.splitlines()] == [
            {"start": "", "end": "abc"},
            {"start": "ac", "end": "bb"},
            {"start": "bba", "end": "caa"},
            {"start": "cab", "end": "ccc"},
        ]

    def test_partition_non_contiguous(self, cli):
        cli("put-keys", "photos", "ca", "ab", "b")
        code, out, _ = cli("partition", "--shards", "8", "--no-contiguous")
        assert code == 0
        rows = [json.loads(line) for line in out.splitlines()]
        assert [row["start"] for row in rows] == ["ab", "b", "ca"]
        assert [row["keys"] for row in rows] == [1, 1, 1]

    def test_partition_counts_keys(self, cli):
        cli("put-keys", "photos", "a", "ab", "b", "ba", "bb", "c", "cc")
        cli("put-keys", "other", "a", "b")
        code, out, _ = cli("partition", "--shards", "2")
        assert code == 0
        rows = [json.loads(line) for line in out.splitlines()]
        assert len(rows) == 2
        assert sum(row["keys"] for row in rows) == 7

    def test_partition_counts_other_collection(self, cli):
        cli("put-keys", "other", "a", "b")
        code, out, _ = cli("partition", "--collection", "other", "--shards", "2")
        assert code == 0
        assert sum(json.loads(line)["keys"] for line in out.splitlines()) == 2

    def test_submit_and_run_scan(self, cli):
        cli("put-keys", "photos", "a", "ab", "b", "ba", "c")
        code, out, _ = cli(
            "submit", "keys.count_by_prefix", "--collection", "photos",
            "--start", "ab", "--param", "prefix_length=1",
        )
        assert code == 0
        scan_id = UUID(out.strip())

        code, out, _ = cli("run-scan", str(scan_id))
        assert code == 0
        result = json.loads(out)
        assert result["scan_id"] == str(scan_id)
        assert result["outcome"] == "completed"
        assert result["total_items_processed"] == 4
        assert result["final_state"]["counts"] == {"a": 1, "b": 2, "c": 1}

    def test_fan_out_and_run_pending(self, cli):
        cli("put-keys", "photos", "a", "ab", "b", "ba", "bb", "c", "cc")
        code, out, _ = cli("fan-out", "keys.log", "--collection", "photos")
        assert code == 0
        scan_ids = out.split()
        assert len(scan_ids) == 2

        code, out, _ = cli("run-pending")
        assert code == 0
        assert out.strip() == "Ran 2 slices"

        code, out, _ = cli("run-pending")
        assert out.strip() == "Ran 0 slices"

    def test_unknown_handler(self, cli):
        code, _, err = cli("submit", "keys.nope", "--collection", "photos")
        assert code == 1
        assert "ERROR [HANDLER_NOT_REGISTERED]" in err

    def test_run_missing_scan(self, cli):
        code, _, err = cli("run-scan", "00000000-0000-0000-0000-000000000001")
        assert code == 1
        assert "ERROR [SCAN_NOT_FOUND]" in err

    def test_requeue_pending_scan(self, cli):
        _, out, _ = cli("submit", "keys.log", "--collection", "photos")
        scan_id = out.strip()
        code, out, _ = cli("requeue", scan_id)
        assert code == 0
        assert out.strip() == f"{scan_id} pending"

    def test_requeue_completed_scan(self, cli):
        cli("put-keys", "photos", "a")
        _, out, _ = cli("submit", "keys.log", "--collection", "photos")
        scan_id = out.strip()
        cli("run-scan", scan_id)
        code, _, err = cli("requeue", scan_id)
        assert code == 1
        assert "ERROR [SCAN_NOT_RESUMABLE]" in err

    def test_requeue_missing_scan(self, cli):
        code, _, err = cli("requeue", "00000000-0000-0000-0000-000000000001")
        assert code == 1
        assert "ERROR [SCAN_NOT_FOUND]" in err

    def test_missing_config(self, tmp_path, capsys):
        code = main(["--config", str(tmp_path / "missing.yaml"), "partition"])
        assert code == 1
        assert "Failed to load config" in capsys.readouterr().err
        configure_logging(level=logging.DEBUG)
