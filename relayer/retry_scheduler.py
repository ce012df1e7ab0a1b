"""
Per-subscription payment failure bookkeeping with escalating backoff.

State machine per subId:
    absent  --fail-->  pending (failCount=1, nextRetry = now + table[0])
    pending --fail-->  pending (failCount+1, nextRetry = now + table[failCount-1])
    pending --fail-->  churned (failCount > len(table); terminal, nextRetry cleared)
    pending/churned --success-->  absent (record deleted)

Every mutation re-reads the ledger file first and is persisted immediately, so
a record cleared by ``main.py reset-failure`` in another process is not written
back by the daemon. ``reload`` refreshes the in-memory view between mutations.

Usage:
    scheduler = RetryScheduler(store, settings.retry_delays)
    for sub_id in scheduler.due_retries():
        ...
"""

from __future__ import annotations

import time
from collections.abc import Sequence

from bot_logging.logger_manager import setup_module_logger
from relayer.state_store import StateStore
from shared.constants import DEFAULT_REASON_MAX_LENGTH, DEFAULT_RETRY_DELAYS
from shared.serialization_utils import normalize_sub_id, short_id
from shared.types import FailureRecord, FailureStatus


class RetryScheduler:
    """Failure ledger owner. Churn is permanent until an operator resets it."""

    def __init__(
        self,
        store: StateStore,
        retry_delays: Sequence[int] = DEFAULT_RETRY_DELAYS,
        reason_max_length: int = DEFAULT_REASON_MAX_LENGTH,
    ) -> None:
        if not retry_delays:
            raise ValueError("retry_delays must not be empty")
        self._store = store
        self._delays = tuple(int(d) for d in retry_delays)
        self._reason_max_length = reason_max_length
        self._records: dict[str, FailureRecord] = store.load_failures()

        self._logger = setup_module_logger(
            "retry_scheduler", "retry_scheduler.log", module_folder="Retry_Logs"
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def max_retries(self) -> int:
        return len(self._delays)

    def get(self, sub_id: str) -> FailureRecord | None:
        return self._records.get(normalize_sub_id(sub_id))

    def records(self) -> dict[str, FailureRecord]:
        return dict(self._records)

    def due_retries(self, now: int | None = None) -> list[str]:
        """All pending records whose ``next_retry <= now``, earliest first."""
        now = int(time.time()) if now is None else now
        due = [
            (record.next_retry, sub_id)
            for sub_id, record in self._records.items()
            if record.status is FailureStatus.PENDING
            and record.next_retry is not None
            and record.next_retry <= now
        ]
        return [sub_id for _, sub_id in sorted(due)]

    def is_blocked(self, sub_id: str, now: int | None = None) -> bool:
        """
        True when a fresh attempt must not be made this tick: the subscription is
        churned, or a retry is already scheduled in the future.
        """
        record = self.get(sub_id)
        if record is None:
            return False
        if record.is_churned:
            return True
        now = int(time.time()) if now is None else now
        return record.next_retry is not None and record.next_retry > now

    def counts(self) -> tuple[int, int]:
        """(pending, churned) totals."""
        churned = sum(1 for r in self._records.values() if r.is_churned)
        return len(self._records) - churned, churned

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reload(self) -> None:
        """Replace the in-memory ledger with what is on disk."""
        records = self._store.load_failures()
        if records.keys() != self._records.keys():
            self._logger.info(
                "Failure ledger changed on disk: %d -> %d records", len(self._records), len(records)
            )
        self._records = records

    def record_failure(self, sub_id: str, reason: str, now: int | None = None) -> FailureRecord:
        """Register one failed attempt and persist the updated ledger."""
        sub_id = normalize_sub_id(sub_id)
        now = int(time.time()) if now is None else now
        self.reload()
        existing = self._records.get(sub_id)
        fail_count = (existing.fail_count if existing else 0) + 1
        reason = (reason or "")[: self._reason_max_length]

        if fail_count > self.max_retries:
            record = FailureRecord(
                fail_count=fail_count,
                last_attempt=now,
                next_retry=None,
                reason=reason,
                status=FailureStatus.CHURNED,
            )
            self._logger.warning(
                "CHURNED: %s (exceeded %d retries) last error: %s",
                short_id(sub_id),
                self.max_retries,
                reason,
                extra={"sub_id": sub_id, "fail_count": fail_count},
            )
        else:
            next_retry = now + self._delays[fail_count - 1]
            record = FailureRecord(
                fail_count=fail_count,
                last_attempt=now,
                next_retry=next_retry,
                reason=reason,
                status=FailureStatus.PENDING,
            )
            self._logger.info(
                "Retry #%d for %s scheduled at %d (+%ds)",
                fail_count,
                short_id(sub_id),
                next_retry,
                self._delays[fail_count - 1],
                extra={"sub_id": sub_id, "fail_count": fail_count},
            )

        self._commit({**self._records, sub_id: record})
        return record

    def clear_failure(self, sub_id: str) -> bool:
        """Delete the record after a successful payment. Returns True if one existed."""
        sub_id = normalize_sub_id(sub_id)
        self.reload()
        if sub_id not in self._records:
            return False
        remaining = {k: v for k, v in self._records.items() if k != sub_id}
        self._commit(remaining)
        self._logger.info("Cleared from retry queue: %s", short_id(sub_id))
        return True

    def _commit(self, records: dict[str, FailureRecord]) -> None:
        """Persist first so memory never runs ahead of disk."""
        self._store.save_failures(records)
        self._records = records
