"""
Shared constants for the Recurve relayer.

Event signatures, default tuning values and persisted file names used across all modules.
"""

# ---------------------------------------------------------------------------
# SubscriptionManager ABI fragments
# ---------------------------------------------------------------------------

SUBSCRIPTION_CREATED_SIGNATURE = "SubscriptionCreated(bytes32,address,uint256)"
SUBSCRIPTION_MANAGER_ABI_NAME = "subscription_manager"

# Revert payload selectors: Error(string) and Panic(uint256)
ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")
PANIC_SELECTOR = bytes.fromhex("4e487b71")

SUB_ID_BYTES = 32

# ---------------------------------------------------------------------------
# Retry table (seconds)
# ---------------------------------------------------------------------------

ONE_HOUR = 60 * 60
ONE_DAY = 24 * ONE_HOUR

DEFAULT_RETRY_DELAYS = (
    1 * ONE_HOUR,
    6 * ONE_HOUR,
    1 * ONE_DAY,
    3 * ONE_DAY,
)
DEFAULT_REASON_MAX_LENGTH = 100

# ---------------------------------------------------------------------------
# Event discovery defaults (blocks)
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE_BLOCKS = 500
DEFAULT_STALE_THRESHOLD_BLOCKS = 1000
DEFAULT_RECENT_WINDOW_BLOCKS = 100

# ---------------------------------------------------------------------------
# Timing defaults (seconds)
# ---------------------------------------------------------------------------

DEFAULT_TICK_INTERVAL_SECONDS = 30
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 120
DEFAULT_SIMULATION_TIMEOUT_SECONDS = 15
DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS = 1
DEFAULT_GAS_LIMIT_BUFFER = 1.2
DEFAULT_WS_RECONNECT_DELAY_SECONDS = 5
DEFAULT_WS_SETUP_RETRY_DELAY_SECONDS = 30
DEFAULT_WS_SUBSCRIPTION_TIMEOUT_SECONDS = 15

# ---------------------------------------------------------------------------
# Persisted state
# ---------------------------------------------------------------------------

CURSOR_FILE = "last_block.json"
WATCH_LIST_FILE = "subscriptions.json"
FAILURE_LEDGER_FILE = "failed_payments.json"

# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------

SERVICE_NAME = "recurve-relayer"
DEFAULT_HEALTH_HOST = "0.0.0.0"
DEFAULT_HEALTH_PORT = 10000
