"""
Shared data types for the Recurve relayer.

Centralized dataclasses, enums and protocols used across all modules.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol

from shared.constants import (
    DEFAULT_CHUNK_SIZE_BLOCKS,
    DEFAULT_CONFIRMATION_TIMEOUT_SECONDS,
    DEFAULT_GAS_LIMIT_BUFFER,
    DEFAULT_HEALTH_HOST,
    DEFAULT_HEALTH_PORT,
    DEFAULT_REASON_MAX_LENGTH,
    DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS,
    DEFAULT_RECENT_WINDOW_BLOCKS,
    DEFAULT_RETRY_DELAYS,
    DEFAULT_SIMULATION_TIMEOUT_SECONDS,
    DEFAULT_STALE_THRESHOLD_BLOCKS,
    DEFAULT_TICK_INTERVAL_SECONDS,
    DEFAULT_WS_RECONNECT_DELAY_SECONDS,
    DEFAULT_WS_SETUP_RETRY_DELAY_SECONDS,
    DEFAULT_WS_SUBSCRIPTION_TIMEOUT_SECONDS,
)

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FailureStatus(Enum):
    PENDING = "pending"  # scheduled for another attempt
    CHURNED = "churned"  # retry table exhausted, never retried again


# ---------------------------------------------------------------------------
# Ledger types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionCreated:
    """Decoded ``SubscriptionCreated`` log."""

    sub_id: str  # lowercase 0x-prefixed bytes32
    subscriber: str  # checksum address
    tier_id: int
    block_number: int | None = None


class LedgerReader(Protocol):
    """
    Read capability over subscription-created events.

    ``range_query`` serves the historical block scanner, ``subscribe_live``
    the push listener. Callers do not care which transport backs either.
    """

    async def range_query(self, from_block: int, to_block: int) -> list[SubscriptionCreated]:
        ...

    def subscribe_live(self) -> AsyncIterator[SubscriptionCreated]:
        ...


# ---------------------------------------------------------------------------
# Retry ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailureRecord:
    fail_count: int
    last_attempt: int  # unix seconds
    next_retry: int | None  # None once churned
    reason: str
    status: FailureStatus = FailureStatus.PENDING

    @property
    def is_churned(self) -> bool:
        return self.status is FailureStatus.CHURNED

    def to_dict(self) -> dict:
        """Serialize in the persisted camelCase layout."""
        data = {
            "failCount": self.fail_count,
            "lastAttempt": self.last_attempt,
            "reason": self.reason,
            "status": self.status.value,
        }
        if self.next_retry is not None:
            data["nextRetry"] = self.next_retry
        return data

    @classmethod
    def from_dict(cls, data: dict) -> FailureRecord:
        next_retry = data.get("nextRetry")
        return cls(
            fail_count=int(data["failCount"]),
            last_attempt=int(data.get("lastAttempt", 0)),
            next_retry=int(next_retry) if next_retry is not None else None,
            reason=str(data.get("reason", "")),
            status=FailureStatus(data.get("status", FailureStatus.PENDING.value)),
        )


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentOutcome:
    sub_id: str
    success: bool
    tx_hash: str | None = None
    error: str | None = None
    failure: FailureRecord | None = None  # record after a failed attempt


@dataclass
class TickSummary:
    """Per-tick counters, logged at the end of every reconciliation tick."""

    retries_attempted: int = 0
    due_found: int = 0
    payments_attempted: int = 0
    payments_succeeded: int = 0
    skipped_blocked: int = 0
    new_subscriptions: int = 0
    endpoint: str | None = None
    errors: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RelayerSettings:
    """
    Immutable runtime configuration handed to every component at construction.

    Built once at startup by ``config.loader.load_relayer_settings``.
    """

    rpc_urls: tuple[str, ...]
    manager_address: str
    private_key: str = field(repr=False)
    ws_url: str | None = None
    chain_id: int | None = None
    state_dir: Path = Path("state")

    tick_interval_seconds: float = DEFAULT_TICK_INTERVAL_SECONDS

    chunk_size_blocks: int = DEFAULT_CHUNK_SIZE_BLOCKS
    stale_threshold_blocks: int = DEFAULT_STALE_THRESHOLD_BLOCKS
    recent_window_blocks: int = DEFAULT_RECENT_WINDOW_BLOCKS

    retry_delays: tuple[int, ...] = DEFAULT_RETRY_DELAYS
    reason_max_length: int = DEFAULT_REASON_MAX_LENGTH

    confirmation_timeout_seconds: float = DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
    simulation_timeout_seconds: float = DEFAULT_SIMULATION_TIMEOUT_SECONDS
    receipt_poll_interval_seconds: float = DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS
    gas_limit_buffer: float = DEFAULT_GAS_LIMIT_BUFFER

    live_listener_enabled: bool = True
    ws_reconnect_delay_seconds: float = DEFAULT_WS_RECONNECT_DELAY_SECONDS
    ws_setup_retry_delay_seconds: float = DEFAULT_WS_SETUP_RETRY_DELAY_SECONDS
    ws_subscription_timeout_seconds: float = DEFAULT_WS_SUBSCRIPTION_TIMEOUT_SECONDS

    health_host: str = DEFAULT_HEALTH_HOST
    health_port: int = DEFAULT_HEALTH_PORT
