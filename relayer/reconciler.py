"""
Reconciliation loop: the relayer's single worker.

Each tick is strictly sequential:
    0. refresh the failure ledger and watch-list from disk
    1. resolve an RPC endpoint (abort the tick if none answers)
    2. service due retries from the failure ledger
    3. batch due-check the watch-list and pay what is due
    4. scan new blocks for SubscriptionCreated events

Ticks never overlap. A subscription is attempted at most once per tick: retries
go first, and anything already attempted or scheduled for a future retry is
skipped in the due-check step.

Usage:
    loop = ReconciliationLoop(settings, resolver, retry_scheduler, watch_list, discovery, health)
    asyncio.create_task(loop.run())
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from web3 import AsyncWeb3

from bot_logging.logger_manager import setup_module_logger
from execution.endpoint_resolver import EndpointResolver, NoEndpointAvailable
from execution.ledger_client import LedgerClientError, SubscriptionLedger
from execution.payment_executor import PaymentExecutor
from execution.tx_submitter import TxSubmitter
from relayer.event_discovery import EventDiscovery
from relayer.liveness import HealthState
from relayer.retry_scheduler import RetryScheduler
from relayer.upkeep_checker import UpkeepChecker
from relayer.watch_list import WatchList
from shared.serialization_utils import short_id
from shared.types import RelayerSettings, TickSummary


@dataclass
class TickSession:
    """Components bound to the endpoint resolved for one tick."""

    ledger: SubscriptionLedger
    upkeep: UpkeepChecker
    executor: PaymentExecutor


SessionFactory = Callable[[AsyncWeb3, int], TickSession]


class ReconciliationLoop:
    """Fixed-interval, non-reentrant tick driver. Sole writer of ``HealthState``."""

    def __init__(
        self,
        settings: RelayerSettings,
        resolver: EndpointResolver,
        retry_scheduler: RetryScheduler,
        watch_list: WatchList,
        discovery: EventDiscovery,
        health: HealthState,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self._settings = settings
        self._resolver = resolver
        self._retry_scheduler = retry_scheduler
        self._watch_list = watch_list
        self._discovery = discovery
        self._health = health
        self._session_factory = session_factory or self._build_session

        self._tick_interval = settings.tick_interval_seconds
        self._tick_lock = asyncio.Lock()
        self._running = False
        self._tick_count = 0

        self._logger = setup_module_logger(
            "reconciler", "reconciler.log", module_folder="Relayer_Logs"
        )

    # ------------------------------------------------------------------
    # Session wiring
    # ------------------------------------------------------------------

    def _build_session(self, w3: AsyncWeb3, chain_id: int) -> TickSession:
        settings = self._settings
        ledger = SubscriptionLedger(settings, w3)
        submitter = TxSubmitter(w3, settings, settings.private_key, chain_id)
        return TickSession(
            ledger=ledger,
            upkeep=UpkeepChecker(ledger),
            executor=PaymentExecutor(ledger, submitter, self._retry_scheduler),
        )

    def _chain_id(self) -> int:
        resolved = self._resolver.last_chain_id
        expected = self._settings.chain_id
        if resolved is None:
            if expected is None:
                raise NoEndpointAvailable("Resolved endpoint reported no chain id")
            return expected
        if expected is not None and resolved != expected:
            self._logger.warning(
                "Endpoint chain id %d differs from configured %d, signing for %d",
                resolved,
                expected,
                resolved,
            )
        return resolved

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self) -> TickSummary:
        """Run one full reconciliation pass. Never raises except on cancellation."""
        async with self._tick_lock:
            self._tick_count += 1
            summary = TickSummary()
            self._logger.info("Tick #%d started", self._tick_count)
            try:
                await self._tick(summary)
            except asyncio.CancelledError:
                raise
            except NoEndpointAvailable as exc:
                summary.errors.append(str(exc))
                self._health.mark_error()
                self._logger.error("No RPC endpoint available, skipping tick: %s", exc)
            except Exception as exc:
                summary.errors.append(str(exc))
                self._health.mark_error()
                self._logger.error("Tick #%d failed: %s", self._tick_count, exc, exc_info=True)
            return summary

    async def _tick(self, summary: TickSummary) -> None:
        # Pick up backfill and reset-failure edits made by operator commands
        self._retry_scheduler.reload()
        picked_up = await self._watch_list.reload()
        if picked_up:
            self._logger.info("Picked up %d subscriptions added outside the daemon", picked_up)

        w3 = await self._resolver.resolve()
        summary.endpoint = self._resolver.last_url
        session = self._session_factory(w3, self._chain_id())

        attempted: set[str] = set()
        await self._service_retries(session, attempted, summary)
        await self._service_due(session, attempted, summary)
        await self._scan(session, summary)

        pending, churned = self._retry_scheduler.counts()
        self._logger.info("Retry Queue: %d pending, %d churned", pending, churned)
        self._logger.info(
            "Tick #%d done: retries=%d due=%d paid=%d/%d skipped=%d new=%d",
            self._tick_count,
            summary.retries_attempted,
            summary.due_found,
            summary.payments_succeeded,
            summary.retries_attempted + summary.payments_attempted,
            summary.skipped_blocked,
            summary.new_subscriptions,
        )
        self._health.mark_ok()

    async def _service_retries(
        self, session: TickSession, attempted: set[str], summary: TickSummary
    ) -> None:
        due = self._retry_scheduler.due_retries()
        if not due:
            return
        self._logger.info("Processing %d scheduled retries", len(due))
        for sub_id in due:
            if sub_id in attempted:
                continue
            attempted.add(sub_id)
            summary.retries_attempted += 1
            record = self._retry_scheduler.get(sub_id)
            self._logger.info(
                "Retry attempt #%d for %s",
                (record.fail_count if record else 0) + 1,
                short_id(sub_id),
            )
            outcome = await session.executor.execute(sub_id)
            if outcome.success:
                summary.payments_succeeded += 1

    async def _service_due(
        self, session: TickSession, attempted: set[str], summary: TickSummary
    ) -> None:
        watched = self._watch_list.snapshot()
        if not watched:
            self._logger.info("No subscriptions to check yet")
            return

        due = await session.upkeep.find_due(watched)
        summary.due_found = len(due)
        for sub_id in due:
            if sub_id in attempted or self._retry_scheduler.is_blocked(sub_id):
                summary.skipped_blocked += 1
                self._logger.debug("Skipping %s (already attempted or scheduled)", short_id(sub_id))
                continue
            attempted.add(sub_id)
            summary.payments_attempted += 1
            self._logger.info("Executing payment for %s", short_id(sub_id))
            outcome = await session.executor.execute(sub_id)
            if outcome.success:
                summary.payments_succeeded += 1

    async def _scan(self, session: TickSession, summary: TickSummary) -> None:
        try:
            head = await session.ledger.get_block_number()
        except LedgerClientError as exc:
            summary.errors.append(str(exc))
            self._logger.error("Could not read chain head, skipping scan: %s", exc)
            return
        added = await self._discovery.scan(session.ledger, head)
        summary.new_subscriptions = len(added)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Tick forever until stopped. The next tick starts only after the previous one ends."""
        self._running = True
        self._logger.info("Reconciliation loop started (interval=%.0fs)", self._tick_interval)
        try:
            while self._running:
                started = time.monotonic()
                await self.tick()
                if not self._running:
                    break
                await asyncio.sleep(max(0.0, self._tick_interval - (time.monotonic() - started)))
        except asyncio.CancelledError:
            self._logger.info("Reconciliation loop cancelled")
        finally:
            self._running = False

    def stop(self) -> None:
        """Signal the run loop to stop after the current tick."""
        self._running = False
