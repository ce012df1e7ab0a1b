"""
Batch due-check against the SubscriptionManager.

Asks the contract which watched subscriptions are due right now. The due
predicate (lastPaid + tier frequency vs. block time) belongs to the ledger and
is never recomputed here.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger

if TYPE_CHECKING:
    from execution.ledger_client import SubscriptionLedger


class UpkeepChecker:
    def __init__(self, ledger: SubscriptionLedger) -> None:
        self._ledger = ledger
        self._logger = setup_module_logger(
            "upkeep_checker", "upkeep_checker.log", module_folder="Relayer_Logs"
        )

    async def find_due(self, sub_ids: Sequence[str]) -> list[str]:
        """
        Return the due subset of ``sub_ids`` (possibly empty).

        A failed query is logged and yields an empty result; the whole batch is
        retried on the next tick.
        """
        if not sub_ids:
            return []

        self._logger.info("Checking %d known subscriptions via checkUpkeep", len(sub_ids))
        try:
            due = await self._ledger.check_upkeep(list(sub_ids))
        except Exception as exc:
            self._logger.error("checkUpkeep failed, skipping due-processing: %s", str(exc)[:200])
            return []

        if due:
            self._logger.info("Found %d due subscriptions", len(due))
        else:
            self._logger.info("All subscriptions up to date")
        return due
