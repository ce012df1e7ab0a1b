"""
Unit tests for relayer/state_store.py.

Tests verify round-tripping of cursor, watch-list and failure ledger through
the JSON files, atomic replacement, and that unreadable or malformed files
load as empty state instead of raising.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from shared.types import FailureRecord, FailureStatus

SUB_AA = "0x" + "aa" * 32
SUB_BB = "0x" + "bb" * 32


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    with patch("relayer.state_store.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from relayer.state_store import StateStore

        return StateStore(tmp_path / "state")


# ---------------------------------------------------------------------------
# A. Scan cursor
# ---------------------------------------------------------------------------


class TestCursor:

    def test_missing_cursor_is_none(self, store):
        assert store.load_cursor() is None

    def test_cursor_roundtrip(self, store):
        store.save_cursor(101)

        assert store.load_cursor() == 101
        raw = json.loads((store.state_dir / "last_block.json").read_text())
        assert raw == {"next_block": 101}

    def test_bare_integer_file_accepted(self, store):
        (store.state_dir / "last_block.json").write_text("4242")

        assert store.load_cursor() == 4242

    def test_corrupt_cursor_is_none(self, store):
        (store.state_dir / "last_block.json").write_text("{not json")

        assert store.load_cursor() is None
        store._logger.warning.assert_called_once()

    @pytest.mark.parametrize("payload", ['{"next_block": -5}', '{"next_block": "12"}', '{"other": 1}', "true"])
    def test_malformed_cursor_is_none(self, store, payload):
        (store.state_dir / "last_block.json").write_text(payload)

        assert store.load_cursor() is None


# ---------------------------------------------------------------------------
# B. Watch-list
# ---------------------------------------------------------------------------


class TestWatchListFile:

    def test_missing_watch_list_is_empty(self, store):
        assert store.load_watch_list() == []

    def test_watch_list_roundtrip_preserves_order(self, store):
        store.save_watch_list([SUB_BB, SUB_AA])

        assert store.load_watch_list() == [SUB_BB, SUB_AA]

    def test_load_normalizes_and_dedupes(self, store):
        (store.state_dir / "subscriptions.json").write_text(
            json.dumps([SUB_AA.upper().replace("0X", "0x"), SUB_AA, "aa" * 32, SUB_BB])
        )

        assert store.load_watch_list() == [SUB_AA, SUB_BB]

    def test_invalid_entries_dropped(self, store):
        (store.state_dir / "subscriptions.json").write_text(json.dumps([SUB_AA, "0x1234", 7]))

        assert store.load_watch_list() == [SUB_AA]

    def test_non_array_is_empty(self, store):
        (store.state_dir / "subscriptions.json").write_text('{"a": 1}')

        assert store.load_watch_list() == []

    def test_truncated_file_is_empty(self, store):
        (store.state_dir / "subscriptions.json").write_text('["0xaa')

        assert store.load_watch_list() == []


# ---------------------------------------------------------------------------
# C. Failure ledger
# ---------------------------------------------------------------------------


class TestFailureLedgerFile:

    def test_missing_ledger_is_empty(self, store):
        assert store.load_failures() == {}

    def test_roundtrip_uses_camel_case(self, store):
        records = {
            SUB_AA: FailureRecord(fail_count=2, last_attempt=1000, next_retry=22600, reason="boom"),
            SUB_BB: FailureRecord(
                fail_count=5,
                last_attempt=2000,
                next_retry=None,
                reason="gone",
                status=FailureStatus.CHURNED,
            ),
        }
        store.save_failures(records)

        raw = json.loads((store.state_dir / "failed_payments.json").read_text())
        assert raw[SUB_AA] == {
            "failCount": 2,
            "lastAttempt": 1000,
            "nextRetry": 22600,
            "reason": "boom",
            "status": "pending",
        }
        assert "nextRetry" not in raw[SUB_BB]
        assert store.load_failures() == records

    def test_malformed_record_dropped(self, store):
        (store.state_dir / "failed_payments.json").write_text(
            json.dumps(
                {
                    SUB_AA: {"failCount": 1, "lastAttempt": 5, "nextRetry": 3605, "reason": "x"},
                    SUB_BB: {"lastAttempt": 5},
                    "0xnothex": {"failCount": 1},
                }
            )
        )

        records = store.load_failures()
        assert list(records) == [SUB_AA]
        assert records[SUB_AA].status is FailureStatus.PENDING

    def test_unknown_status_dropped(self, store):
        (store.state_dir / "failed_payments.json").write_text(
            json.dumps({SUB_AA: {"failCount": 1, "reason": "x", "status": "zombie"}})
        )

        assert store.load_failures() == {}

    def test_non_object_is_empty(self, store):
        (store.state_dir / "failed_payments.json").write_text("[]")

        assert store.load_failures() == {}


# ---------------------------------------------------------------------------
# D. Atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:

    def test_no_temp_files_left_behind(self, store):
        store.save_cursor(1)
        store.save_watch_list([SUB_AA])
        store.save_failures({})

        names = sorted(p.name for p in store.state_dir.iterdir())
        assert names == ["failed_payments.json", "last_block.json", "subscriptions.json"]

    def test_failed_replace_keeps_previous_file(self, store):
        store.save_watch_list([SUB_AA])

        with patch("relayer.state_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.save_watch_list([SUB_AA, SUB_BB])

        assert store.load_watch_list() == [SUB_AA]
        assert not any(p.name.endswith(".tmp") for p in store.state_dir.iterdir())

    def test_state_dir_created(self, tmp_path):
        with patch("relayer.state_store.setup_module_logger"):
            from relayer.state_store import StateStore

            target = tmp_path / "nested" / "state"
            StateStore(target)

        assert target.is_dir()
