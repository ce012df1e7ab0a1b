"""
Unit tests for relayer/retry_scheduler.py.

Tests verify the absent/pending/churned state machine, backoff arithmetic
against the retry table, due-retry selection around the ``now`` boundary,
blocking rules used by the due-check step, and persistence of every mutation.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from shared.types import FailureStatus

SUB_AA = "0x" + "aa" * 32
SUB_BB = "0x" + "bb" * 32
SUB_CC = "0x" + "cc" * 32

TABLE = (3600, 21600, 86400, 259200)
T0 = 1_700_000_000


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    with patch("relayer.state_store.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from relayer.state_store import StateStore

        return StateStore(tmp_path / "state")


@pytest.fixture
def scheduler(store):
    with patch("relayer.retry_scheduler.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()

        from relayer.retry_scheduler import RetryScheduler

        return RetryScheduler(store, TABLE, reason_max_length=100)


# ---------------------------------------------------------------------------
# A. State machine
# ---------------------------------------------------------------------------


class TestStateMachine:

    def test_first_failure_creates_pending(self, scheduler):
        record = scheduler.record_failure(SUB_AA, "insufficient allowance", now=T0)

        assert record.fail_count == 1
        assert record.status is FailureStatus.PENDING
        assert record.last_attempt == T0
        assert record.next_retry == T0 + TABLE[0]

    @pytest.mark.parametrize("n", [1, 2, 3, 4])
    def test_fail_count_equals_failures(self, scheduler, n):
        for i in range(n):
            record = scheduler.record_failure(SUB_AA, "x", now=T0 + i)

        assert record.fail_count == n
        assert record.status is FailureStatus.PENDING

    @pytest.mark.parametrize("k", [1, 2, 3, 4])
    def test_next_retry_uses_table_index(self, scheduler, k):
        for i in range(k):
            record = scheduler.record_failure(SUB_AA, "x", now=T0 + i * 10)

        assert record.next_retry == record.last_attempt + TABLE[k - 1]

    def test_churn_exactly_after_table_exhausted(self, scheduler):
        for i in range(len(TABLE)):
            record = scheduler.record_failure(SUB_AA, "x", now=T0 + i)
            assert record.status is FailureStatus.PENDING

        record = scheduler.record_failure(SUB_AA, "final", now=T0 + 99)

        assert record.status is FailureStatus.CHURNED
        assert record.fail_count == len(TABLE) + 1
        assert record.next_retry is None
        assert record.reason == "final"

    def test_success_clears_pending(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.clear_failure(SUB_AA) is True
        assert scheduler.get(SUB_AA) is None

    def test_success_clears_churned(self, scheduler):
        for i in range(len(TABLE) + 1):
            scheduler.record_failure(SUB_AA, "x", now=T0 + i)

        assert scheduler.clear_failure(SUB_AA) is True
        assert scheduler.records() == {}

    def test_clear_absent_is_noop(self, scheduler, store):
        with patch.object(store, "save_failures") as save:
            assert scheduler.clear_failure(SUB_AA) is False

        save.assert_not_called()

    def test_failure_after_clear_starts_over(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)
        scheduler.record_failure(SUB_AA, "x", now=T0 + 1)
        scheduler.clear_failure(SUB_AA)

        record = scheduler.record_failure(SUB_AA, "x", now=T0 + 2)

        assert record.fail_count == 1

    def test_reason_truncated(self, scheduler):
        record = scheduler.record_failure(SUB_AA, "r" * 500, now=T0)

        assert len(record.reason) == 100

    def test_empty_table_rejected(self, store):
        from relayer.retry_scheduler import RetryScheduler

        with pytest.raises(ValueError):
            RetryScheduler(store, ())


# ---------------------------------------------------------------------------
# B. Due retries
# ---------------------------------------------------------------------------


class TestDueRetries:

    def test_due_at_exact_boundary(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.due_retries(now=T0 + TABLE[0]) == [SUB_AA]

    def test_not_due_one_second_early(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.due_retries(now=T0 + TABLE[0] - 1) == []

    def test_churned_never_due(self, scheduler):
        for i in range(len(TABLE) + 1):
            scheduler.record_failure(SUB_AA, "x", now=T0 + i)

        assert scheduler.due_retries(now=T0 + 10**9) == []

    def test_sorted_by_next_retry(self, scheduler):
        scheduler.record_failure(SUB_BB, "x", now=T0 + 50)
        scheduler.record_failure(SUB_AA, "x", now=T0)
        scheduler.record_failure(SUB_CC, "x", now=T0 + 20)

        assert scheduler.due_retries(now=T0 + 10**6) == [SUB_AA, SUB_CC, SUB_BB]


# ---------------------------------------------------------------------------
# C. Blocking rules
# ---------------------------------------------------------------------------


class TestIsBlocked:

    def test_unknown_not_blocked(self, scheduler):
        assert scheduler.is_blocked(SUB_AA, now=T0) is False

    def test_future_retry_blocked(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.is_blocked(SUB_AA, now=T0 + 1) is True

    def test_due_retry_not_blocked(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.is_blocked(SUB_AA, now=T0 + TABLE[0]) is False

    def test_churned_always_blocked(self, scheduler):
        for i in range(len(TABLE) + 1):
            scheduler.record_failure(SUB_AA, "x", now=T0 + i)

        assert scheduler.is_blocked(SUB_AA, now=T0 + 10**9) is True


# ---------------------------------------------------------------------------
# D. Persistence
# ---------------------------------------------------------------------------


class TestPersistence:

    def test_every_failure_persisted(self, scheduler, store):
        scheduler.record_failure(SUB_AA, "x", now=T0)

        assert store.load_failures()[SUB_AA].fail_count == 1

        scheduler.record_failure(SUB_AA, "y", now=T0 + 1)

        assert store.load_failures()[SUB_AA].fail_count == 2

    def test_clear_persisted(self, scheduler, store):
        scheduler.record_failure(SUB_AA, "x", now=T0)
        scheduler.clear_failure(SUB_AA)

        assert store.load_failures() == {}

    def test_reload_continues_from_disk(self, scheduler, store):
        from relayer.retry_scheduler import RetryScheduler

        scheduler.record_failure(SUB_AA, "x", now=T0)
        scheduler.record_failure(SUB_AA, "x", now=T0 + 1)

        reloaded = RetryScheduler(store, TABLE)
        record = reloaded.record_failure(SUB_AA, "x", now=T0 + 2)

        assert record.fail_count == 3
        assert record.next_retry == T0 + 2 + TABLE[2]

    def test_failed_write_keeps_memory_unchanged(self, scheduler, store):
        with patch.object(store, "save_failures", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                scheduler.record_failure(SUB_AA, "x", now=T0)

        assert scheduler.get(SUB_AA) is None

    def test_counts(self, scheduler):
        scheduler.record_failure(SUB_AA, "x", now=T0)
        for i in range(len(TABLE) + 1):
            scheduler.record_failure(SUB_BB, "x", now=T0 + i)

        assert scheduler.counts() == (1, 1)


# ---------------------------------------------------------------------------
# E. Edits from another process
# ---------------------------------------------------------------------------


class TestSharedLedger:
    """A second scheduler on the same store stands in for ``main.py reset-failure``."""

    def _churn(self, scheduler, sub_id):
        for i in range(len(TABLE) + 1):
            scheduler.record_failure(sub_id, "insufficient funds", now=T0 + i)

    def test_reload_sees_external_reset(self, scheduler, store):
        from relayer.retry_scheduler import RetryScheduler

        self._churn(scheduler, SUB_AA)
        assert RetryScheduler(store, TABLE).clear_failure(SUB_AA) is True

        scheduler.reload()

        assert scheduler.is_blocked(SUB_AA, now=T0 + 100) is False
        assert scheduler.get(SUB_AA) is None

    def test_mutation_does_not_restore_reset_record(self, scheduler, store):
        from relayer.retry_scheduler import RetryScheduler

        self._churn(scheduler, SUB_AA)
        RetryScheduler(store, TABLE).clear_failure(SUB_AA)

        scheduler.record_failure(SUB_BB, "revert", now=T0 + 10)

        assert list(store.load_failures()) == [SUB_BB]
        assert scheduler.get(SUB_AA) is None

    def test_failure_after_reset_starts_over(self, scheduler, store):
        from relayer.retry_scheduler import RetryScheduler

        self._churn(scheduler, SUB_AA)
        RetryScheduler(store, TABLE).clear_failure(SUB_AA)

        record = scheduler.record_failure(SUB_AA, "revert", now=T0 + 10)

        assert record.fail_count == 1
        assert record.status is FailureStatus.PENDING

    def test_clear_sees_record_written_elsewhere(self, scheduler, store):
        from relayer.retry_scheduler import RetryScheduler

        RetryScheduler(store, TABLE).record_failure(SUB_CC, "revert", now=T0)

        assert scheduler.clear_failure(SUB_CC) is True
        assert store.load_failures() == {}
