"""
Recurve Relayer: main entrypoint.

Single-process asyncio daemon that keeps recurring subscription payments
flowing on the SubscriptionManager contract. Three concurrent pieces:
    1. ReconciliationLoop: fixed-interval tick (retries, due-check, block scan)
    2. Live listener: best-effort WebSocket push of new subscriptions
    3. LivenessServer: read-only JSON health endpoint for the host platform

All state that must survive a restart (scan cursor, watch-list, failure
ledger) lives in small JSON files under the state directory.

Usage:
    python main.py                       # run the daemon
    python main.py once                  # single reconciliation tick
    python main.py backfill --from-block 1200000 [--to-block 1250000]
    python main.py status                # dump persisted state as JSON
    python main.py reset-failure 0x<subId>
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from dataclasses import asdict

from dotenv import load_dotenv

from bot_logging.logger_manager import setup_module_logger
from config.loader import load_relayer_settings
from config.validate import ConfigValidationError, validate_all_configs
from shared.serialization_utils import dumps, normalize_sub_id
from shared.types import RelayerSettings

# ---------------------------------------------------------------------------
# Module logger (logged to logs/ root, no sub-folder)
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(settings: RelayerSettings, relayer_address: str) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Recurve Relayer starting")
    _logger.info("=" * 60)
    _logger.info("  rpc endpoints   : %d configured", len(settings.rpc_urls))
    _logger.info("  ws              : %s", "enabled" if settings.live_listener_enabled else "disabled")
    _logger.info("  manager         : %s", settings.manager_address)
    _logger.info("  relayer         : %s", relayer_address)
    _logger.info("  tick_interval   : %.0fs", settings.tick_interval_seconds)
    _logger.info("  retry_delays    : %s", ", ".join(f"{d}s" for d in settings.retry_delays))
    _logger.info("  state_dir       : %s", settings.state_dir)
    _logger.info("=" * 60)


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
) -> None:
    """Called when a long-running task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
        shutdown_event.set()


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def _validate(settings: RelayerSettings) -> None:
    try:
        validate_all_configs(settings)
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        sys.exit(1)


def _build_components(settings: RelayerSettings):
    """Construct the shared, endpoint-independent components in dependency order."""
    from execution.endpoint_resolver import EndpointResolver
    from relayer.event_discovery import EventDiscovery
    from relayer.liveness import HealthState
    from relayer.reconciler import ReconciliationLoop
    from relayer.retry_scheduler import RetryScheduler
    from relayer.state_store import StateStore
    from relayer.watch_list import WatchList

    store = StateStore(settings.state_dir)
    watch_list = WatchList(store)
    retry_scheduler = RetryScheduler(store, settings.retry_delays, settings.reason_max_length)
    discovery = EventDiscovery(store, watch_list, settings)
    health = HealthState()
    resolver = EndpointResolver(settings.rpc_urls)
    reconciler = ReconciliationLoop(
        settings, resolver, retry_scheduler, watch_list, discovery, health
    )
    return store, watch_list, retry_scheduler, discovery, health, resolver, reconciler


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def _run(settings: RelayerSettings) -> None:
    """Wire all components and launch the concurrent tasks."""
    from eth_account import Account

    from execution.ledger_client import SubscriptionLedger
    from relayer.liveness import LivenessServer

    _, watch_list, retry_scheduler, discovery, health, _, reconciler = _build_components(settings)
    _log_banner(settings, Account.from_key(settings.private_key).address)
    _logger.info("Loaded %d known subscriptions", len(watch_list))

    liveness = LivenessServer(
        health, retry_scheduler, watch_list, settings.health_host, settings.health_port
    )
    await liveness.start()

    # ------------------------------------------------------------------
    # Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # Launch concurrent tasks
    # ------------------------------------------------------------------
    tasks = [asyncio.create_task(reconciler.run(), name="reconciler")]
    if settings.live_listener_enabled:
        live_reader = SubscriptionLedger(settings)
        tasks.append(asyncio.create_task(discovery.run_live(live_reader), name="live_listener"))
    else:
        _logger.info("Live listener disabled, relying on block scans only")

    for t in tasks:
        t.add_done_callback(lambda done_task: _task_done_callback(done_task, shutdown_event))

    _logger.info("All tasks launched: %s", ", ".join(t.get_name() for t in tasks))

    # ------------------------------------------------------------------
    # Wait for shutdown signal, then cancel tasks
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, cancelling tasks")

        reconciler.stop()
        discovery.stop()

        for t in tasks:
            if not t.done():
                t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results, strict=False):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        await liveness.stop()
        _logger.info("Shutdown complete")


async def _run_once(settings: RelayerSettings) -> int:
    *_, reconciler = _build_components(settings)
    summary = await reconciler.tick()
    print(dumps(asdict(summary), indent=2))
    return 1 if summary.errors else 0


async def _run_backfill(settings: RelayerSettings, from_block: int, to_block: int | None) -> int:
    from execution.endpoint_resolver import NoEndpointAvailable
    from execution.ledger_client import LedgerClientError, SubscriptionLedger

    _, watch_list, _, discovery, _, resolver, _ = _build_components(settings)
    try:
        w3 = await resolver.resolve()
        ledger = SubscriptionLedger(settings, w3)
        if to_block is None:
            to_block = await ledger.get_block_number()
        added = await discovery.backfill(ledger, from_block, to_block)
    except (NoEndpointAvailable, LedgerClientError, ValueError) as exc:
        _logger.error("Backfill failed: %s", exc)
        return 1

    print(dumps({"fromBlock": from_block, "toBlock": to_block, "added": added,
                 "watchListSize": len(watch_list)}, indent=2))
    return 0


def _show_status(settings: RelayerSettings) -> int:
    from relayer.state_store import StateStore

    store = StateStore(settings.state_dir)
    failures = store.load_failures()
    churned = sum(1 for r in failures.values() if r.is_churned)
    print(
        dumps(
            {
                "stateDir": str(settings.state_dir),
                "nextBlock": store.load_cursor(),
                "watchListSize": len(store.load_watch_list()),
                "pendingRetries": len(failures) - churned,
                "churned": churned,
                "failures": {sub_id: r.to_dict() for sub_id, r in failures.items()},
            },
            indent=2,
        )
    )
    return 0


def _reset_failure(settings: RelayerSettings, sub_id: str) -> int:
    from relayer.retry_scheduler import RetryScheduler
    from relayer.state_store import StateStore

    try:
        sub_id = normalize_sub_id(sub_id)
    except ValueError as exc:
        _logger.error("Invalid subscription id: %s", exc)
        return 1

    scheduler = RetryScheduler(
        StateStore(settings.state_dir), settings.retry_delays, settings.reason_max_length
    )
    if not scheduler.clear_failure(sub_id):
        _logger.warning("No failure record for %s", sub_id)
        return 1
    return 0


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recurve recurring-payment relayer")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Run the relayer daemon (default)")
    sub.add_parser("once", help="Run a single reconciliation tick and exit")
    backfill = sub.add_parser("backfill", help="Scan a historical block range into the watch-list")
    backfill.add_argument("--from-block", type=int, required=True, help="First block to scan")
    backfill.add_argument("--to-block", type=int, default=None, help="Last block (default: head)")
    sub.add_parser("status", help="Print persisted relayer state as JSON")
    reset = sub.add_parser("reset-failure", help="Delete the failure record of one subscription")
    reset.add_argument("sub_id", help="Subscription id (0x-prefixed bytes32)")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Synchronous entry point."""
    args = _build_parser().parse_args(argv)
    command = args.command or "run"

    load_dotenv()
    settings = load_relayer_settings()

    if command == "status":
        sys.exit(_show_status(settings))
    if command == "reset-failure":
        sys.exit(_reset_failure(settings, args.sub_id))

    _validate(settings)
    try:
        if command == "once":
            sys.exit(asyncio.run(_run_once(settings)))
        if command == "backfill":
            sys.exit(asyncio.run(_run_backfill(settings, args.from_block, args.to_block)))
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
