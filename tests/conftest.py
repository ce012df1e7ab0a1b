"""
Shared pytest configuration and fixtures for Recurve relayer tests.

Provides a ``RelayerSettings`` factory bound to a temporary state directory
and a SubscriptionCreated log builder used across the unit suite.
"""

from __future__ import annotations

import os
import tempfile

# Keep component log files out of the working tree during test runs
os.environ.setdefault("RELAYER_LOG_DIR", tempfile.mkdtemp(prefix="relayer-test-logs-"))

import pytest  # noqa: E402
from eth_abi.abi import encode as abi_encode  # noqa: E402

from shared.types import RelayerSettings  # noqa: E402

# ---------------------------------------------------------------------------
# Standard values (can be overridden per test via the factory)
# ---------------------------------------------------------------------------

SAMPLE_MANAGER_ADDRESS = "0x6807dc923806fE8Fd134338EABCA509979a7e0cB"
SAMPLE_SUBSCRIBER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SAMPLE_PRIVATE_KEY = "0x" + "ab" * 32

STANDARD_SETTINGS = {
    "rpc_urls": ("https://rpc-a.example", "https://rpc-b.example"),
    "manager_address": SAMPLE_MANAGER_ADDRESS,
    "private_key": SAMPLE_PRIVATE_KEY,
    "ws_url": "wss://ws.example",
    "chain_id": 5042002,
    "tick_interval_seconds": 0.01,
    "chunk_size_blocks": 500,
    "stale_threshold_blocks": 1000,
    "recent_window_blocks": 100,
    "retry_delays": (3600, 21600, 86400, 259200),
    "reason_max_length": 100,
    "confirmation_timeout_seconds": 1,
    "simulation_timeout_seconds": 1,
    "receipt_poll_interval_seconds": 0.01,
    "ws_reconnect_delay_seconds": 0.01,
    "ws_setup_retry_delay_seconds": 0.02,
    "ws_subscription_timeout_seconds": 0.5,
}


# ---------------------------------------------------------------------------
# Settings fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings_factory(tmp_path):
    """
    Build RelayerSettings with test-friendly timings.

    Usage in tests:
        def test_something(settings_factory):
            settings = settings_factory(chunk_size_blocks=10)
    """

    def _make(**overrides) -> RelayerSettings:
        values = {**STANDARD_SETTINGS, "state_dir": tmp_path / "state", **overrides}
        return RelayerSettings(**values)

    return _make


@pytest.fixture
def settings(settings_factory) -> RelayerSettings:
    return settings_factory()


# ---------------------------------------------------------------------------
# SubscriptionCreated log builder
# ---------------------------------------------------------------------------


@pytest.fixture
def created_log():
    """
    Build a raw JSON-RPC style SubscriptionCreated log (hex-string fields).

    Usage in tests:
        log = created_log("0x" + "aa" * 32, tier_id=2, block_number=100)
    """
    from execution.ledger_client import SUBSCRIPTION_CREATED_TOPIC

    def _make(sub_id: str, tier_id: int = 0, block_number: int = 100, subscriber: str = SAMPLE_SUBSCRIBER):
        return {
            "address": SAMPLE_MANAGER_ADDRESS,
            "topics": [
                SUBSCRIPTION_CREATED_TOPIC,
                sub_id,
                "0x" + "00" * 12 + subscriber[2:].lower(),
            ],
            "data": "0x" + abi_encode(["uint256"], [tier_id]).hex(),
            "blockNumber": hex(block_number),
            "removed": False,
        }

    return _make
