"""
Payment execution for due subscriptions.

Builds ``executePayment(subId)``, hands it to the TxSubmitter and routes the
outcome back to the RetryScheduler: success clears the failure record, any
failure (simulation revert, rejected submission, confirmation timeout,
on-chain revert) is recorded with a truncated reason. Neither submission errors
nor a failed ledger write escape ``execute``, so one bad subscription cannot
abort the tick. Only cancellation propagates.

Usage:
    executor = PaymentExecutor(ledger, tx_submitter, retry_scheduler)
    outcome = await executor.execute(sub_id)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from shared.serialization_utils import short_id
from shared.types import PaymentOutcome

if TYPE_CHECKING:
    from execution.ledger_client import SubscriptionLedger
    from execution.tx_submitter import TxSubmitter
    from relayer.retry_scheduler import RetryScheduler


def _summarize(exc: BaseException) -> str:
    """First line of an exception message, without provider-appended call details."""
    message = str(exc).strip() or type(exc).__name__
    return message.splitlines()[0]


class PaymentExecutor:
    """Submits and confirms payment transactions, one subscription at a time."""

    def __init__(
        self,
        ledger: SubscriptionLedger,
        tx_submitter: TxSubmitter,
        retry_scheduler: RetryScheduler,
    ) -> None:
        self._ledger = ledger
        self._tx_submitter = tx_submitter
        self._retry_scheduler = retry_scheduler

        self._logger = setup_module_logger(
            "payment_executor", "payment_executor.log", module_folder="Executor_Logs"
        )

    async def execute(self, sub_id: str) -> PaymentOutcome:
        """Attempt one payment and update the retry ledger with the result."""
        try:
            calldata = self._ledger.encode_execute_payment(sub_id)
            receipt = await self._tx_submitter.submit_and_wait(
                {"to": self._ledger.address, "data": calldata, "value": 0}
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = _summarize(exc)
            self._logger.warning(
                "Payment FAILED for %s: %s", short_id(sub_id), reason, extra={"sub_id": sub_id}
            )
            try:
                record = self._retry_scheduler.record_failure(sub_id, reason)
            except OSError as write_exc:
                # Unrecorded failures are re-discovered by the next due-check
                self._logger.error(
                    "Could not persist failure for %s: %s",
                    short_id(sub_id),
                    write_exc,
                    extra={"sub_id": sub_id},
                )
                record = None
            return PaymentOutcome(sub_id=sub_id, success=False, error=reason, failure=record)

        tx_hash = receipt.get("transactionHash")
        tx_hash_hex = "0x" + bytes(tx_hash).hex() if isinstance(tx_hash, (bytes, bytearray)) else tx_hash
        self._logger.info(
            "Payment SUCCESS for %s: tx=%s",
            short_id(sub_id),
            tx_hash_hex,
            extra={"sub_id": sub_id, "tx_hash": tx_hash_hex},
        )
        try:
            self._retry_scheduler.clear_failure(sub_id)
        except OSError as write_exc:
            self._logger.error(
                "Could not clear failure record for %s: %s",
                short_id(sub_id),
                write_exc,
                extra={"sub_id": sub_id},
            )
        return PaymentOutcome(sub_id=sub_id, success=True, tx_hash=tx_hash_hex)
