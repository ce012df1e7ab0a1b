"""
Subscription discovery: incremental block scanning plus the live push listener.

Bootstrap:
    With no persisted cursor, or a cursor trailing the head by more than
    ``stale_threshold_blocks``, scanning fast-forwards to
    ``head - recent_window_blocks`` instead of replaying history. Subscriptions
    created before that window are only reachable through the live listener or
    a manual ``backfill``.

Incremental scan:
    ``[cursor, min(cursor + chunk - 1, head)]`` per chunk. Watch-list and cursor
    are persisted after every chunk, so a crash loses at most one in-flight chunk,
    which is re-scanned idempotently. A chunk error stops the scan for this tick.

Live listener:
    Best-effort. Disconnects reconnect after a short fixed delay, setup failures
    after a longer one. Never fatal; the scanner is the fallback path.
"""

from __future__ import annotations

import asyncio

from bot_logging.logger_manager import setup_module_logger
from execution.ledger_client import LiveSubscriptionSetupError
from relayer.state_store import StateStore
from relayer.watch_list import WatchList
from shared.serialization_utils import short_id
from shared.types import LedgerReader, RelayerSettings


class EventDiscovery:
    """Keeps the watch-list complete with respect to SubscriptionCreated events."""

    def __init__(self, store: StateStore, watch_list: WatchList, settings: RelayerSettings) -> None:
        self._store = store
        self._watch_list = watch_list
        self._chunk_size = max(1, settings.chunk_size_blocks)
        self._stale_threshold = settings.stale_threshold_blocks
        self._recent_window = settings.recent_window_blocks
        self._reconnect_delay = settings.ws_reconnect_delay_seconds
        self._setup_retry_delay = settings.ws_setup_retry_delay_seconds

        self._live_running = False

        self._logger = setup_module_logger(
            "event_discovery", "event_discovery.log", module_folder="Discovery_Logs"
        )

    # ------------------------------------------------------------------
    # Block scanning
    # ------------------------------------------------------------------

    def plan_start(self, cursor: int | None, head: int) -> int:
        """First block to scan this tick, applying the bootstrap fast-forward."""
        if cursor is None or cursor < head - self._stale_threshold:
            start = max(0, head - self._recent_window)
            if cursor is not None:
                start = max(start, cursor)
            self._logger.info(
                "Cursor %s is missing or stale (head=%d), fast-forwarding scan to block %d",
                cursor,
                head,
                start,
            )
            return start
        return cursor

    async def scan(self, reader: LedgerReader, head: int) -> list[str]:
        """
        Scan from the persisted cursor up to ``head``.

        Returns newly discovered subscription ids.
        """
        start = self.plan_start(self._store.load_cursor(), head)
        if start > head:
            self._logger.debug("No new blocks to scan (next=%d head=%d)", start, head)
            return []

        self._logger.info("Scanning blocks %d to %d for new subscriptions", start, head)
        discovered: list[str] = []
        next_block = start
        while next_block <= head:
            to_block = min(next_block + self._chunk_size - 1, head)
            try:
                events = await reader.range_query(next_block, to_block)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.error(
                    "Scan error at %d-%d, resuming next tick: %s",
                    next_block,
                    to_block,
                    str(exc).split("(")[0],
                )
                break

            added = await self._watch_list.merge(e.sub_id for e in events)
            if added:
                self._logger.info(
                    "Found %d new subscription(s) in blocks %d-%d", len(added), next_block, to_block
                )
                discovered.extend(added)
            self._store.save_cursor(to_block + 1)
            next_block = to_block + 1

        return discovered

    async def backfill(self, reader: LedgerReader, from_block: int, to_block: int) -> list[str]:
        """
        Scan an explicit historical range into the watch-list.

        The cursor is left untouched. Errors propagate to the caller.
        """
        if from_block > to_block:
            raise ValueError(f"from_block {from_block} is after to_block {to_block}")

        discovered: list[str] = []
        for chunk_start in range(from_block, to_block + 1, self._chunk_size):
            chunk_end = min(chunk_start + self._chunk_size - 1, to_block)
            events = await reader.range_query(chunk_start, chunk_end)
            discovered.extend(await self._watch_list.merge(e.sub_id for e in events))
        self._logger.info(
            "Backfill %d-%d discovered %d new subscription(s)",
            from_block,
            to_block,
            len(discovered),
        )
        return discovered

    # ------------------------------------------------------------------
    # Live listener
    # ------------------------------------------------------------------

    async def run_live(self, reader: LedgerReader) -> None:
        """Unbounded listen/reconnect loop, launched as an asyncio.Task."""
        self._live_running = True
        self._logger.info("Live listener started")
        try:
            while self._live_running:
                try:
                    async for event in reader.subscribe_live():
                        await self._absorb_live(event.sub_id, event.subscriber, event.tier_id)
                    delay = self._reconnect_delay
                    self._logger.warning(
                        "Live stream closed, reconnecting in %.0fs", delay
                    )
                except asyncio.CancelledError:
                    raise
                except LiveSubscriptionSetupError as exc:
                    delay = self._setup_retry_delay
                    self._logger.error(
                        "Live subscription setup failed, retrying in %.0fs: %s", delay, exc
                    )
                except Exception as exc:
                    delay = self._reconnect_delay
                    self._logger.warning(
                        "Live stream disconnected, reconnecting in %.0fs: %s", delay, exc
                    )

                if self._live_running:
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self._logger.info("Live listener cancelled")
        finally:
            self._live_running = False

    def stop(self) -> None:
        """Signal the live loop to stop."""
        self._live_running = False

    async def _absorb_live(self, sub_id: str, subscriber: str, tier_id: int) -> None:
        try:
            added = await self._watch_list.merge([sub_id])
        except OSError as exc:
            # The scanner re-discovers it from the block range
            self._logger.error("Failed to persist live subscription %s: %s", short_id(sub_id), exc)
            return
        if added:
            self._logger.info(
                "NEW SUBSCRIPTION (real-time): %s subscriber=%s tier=%d",
                short_id(sub_id),
                subscriber,
                tier_id,
            )
