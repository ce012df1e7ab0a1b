"""
Configuration loader for the Recurve relayer.

Provides centralized configuration management with .env overrides and builds
the immutable ``RelayerSettings`` handed to every component.

Usage:
    from config.loader import get_config, load_relayer_settings

    config = get_config()
    chain_config = config.get_chain_config()
    settings = load_relayer_settings()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

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
from shared.types import RelayerSettings

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None or value == "":
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the Recurve relayer.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def project_root(self) -> Path:
        return self._project_root

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_chain_config(self) -> Dict[str, Any]:
        """Load RPC endpoints, chain id and contract addresses."""
        return _load_json(self._config_dir / "chain.json")

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (logging, state dir, health server)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load tick interval, transaction timeouts and live-listener delays."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_discovery_config(self) -> Dict[str, Any]:
        """Load block-scan chunking and bootstrap parameters."""
        return _load_json(self._config_dir / "discovery.json")

    @lru_cache(maxsize=1)
    def get_retry_config(self) -> Dict[str, Any]:
        """Load the retry delay table."""
        return _load_json(self._config_dir / "retry.json")

    # ------------------------------------------------------------------
    # ABI loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]}
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()


def _resolve_rpc_urls(chain_cfg: Dict[str, Any]) -> tuple[str, ...]:
    """Primary endpoint from ARC_RPC_URL first, then configured fallbacks, deduplicated."""
    urls: list[str] = []
    primary = get_env_var("ARC_RPC_URL", "", str)
    if primary:
        urls.append(primary)
    for url in chain_cfg.get("rpc", {}).get("http_urls", []):
        if url and url not in urls:
            urls.append(url)
    return tuple(urls)


def load_relayer_settings(loader: ConfigLoader | None = None) -> RelayerSettings:
    """Assemble ``RelayerSettings`` from the JSON configs and environment overrides."""
    cfg = loader or get_config()
    chain_cfg = cfg.get_chain_config()
    app_cfg = cfg.get_app_config()
    timing_cfg = cfg.get_timing_config()
    discovery_cfg = cfg.get_discovery_config()
    retry_cfg = cfg.get_retry_config()

    tx_timing = timing_cfg.get("transaction", {})
    live_cfg = timing_cfg.get("live_listener", {})
    health_cfg = app_cfg.get("health", {})

    state_dir = Path(get_env_var("RELAYER_STATE_DIR", app_cfg.get("state_dir", "state"), str))
    if not state_dir.is_absolute():
        state_dir = cfg.project_root / state_dir

    return RelayerSettings(
        rpc_urls=_resolve_rpc_urls(chain_cfg),
        ws_url=get_env_var("ARC_WS_URL", chain_cfg.get("rpc", {}).get("ws_url"), str) or None,
        manager_address=get_env_var(
            "SUBSCRIPTION_MANAGER_ADDRESS",
            chain_cfg.get("contracts", {}).get("subscription_manager", ""),
            str,
        ),
        private_key=get_env_var("PRIVATE_KEY", "", str),
        chain_id=chain_cfg.get("chain_id"),
        state_dir=state_dir,
        tick_interval_seconds=get_env_var(
            "TICK_INTERVAL_SECONDS",
            timing_cfg.get("tick_interval_seconds", DEFAULT_TICK_INTERVAL_SECONDS),
            float,
        ),
        chunk_size_blocks=discovery_cfg.get("chunk_size_blocks", DEFAULT_CHUNK_SIZE_BLOCKS),
        stale_threshold_blocks=discovery_cfg.get(
            "stale_threshold_blocks", DEFAULT_STALE_THRESHOLD_BLOCKS
        ),
        recent_window_blocks=discovery_cfg.get(
            "recent_window_blocks", DEFAULT_RECENT_WINDOW_BLOCKS
        ),
        retry_delays=tuple(retry_cfg.get("delays_seconds", DEFAULT_RETRY_DELAYS)),
        reason_max_length=retry_cfg.get("reason_max_length", DEFAULT_REASON_MAX_LENGTH),
        confirmation_timeout_seconds=tx_timing.get(
            "confirmation_timeout_seconds", DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
        ),
        simulation_timeout_seconds=tx_timing.get(
            "simulation_timeout_seconds", DEFAULT_SIMULATION_TIMEOUT_SECONDS
        ),
        receipt_poll_interval_seconds=tx_timing.get(
            "receipt_poll_interval_seconds", DEFAULT_RECEIPT_POLL_INTERVAL_SECONDS
        ),
        gas_limit_buffer=tx_timing.get("gas_limit_buffer", DEFAULT_GAS_LIMIT_BUFFER),
        live_listener_enabled=get_env_var(
            "LIVE_LISTENER_ENABLED", live_cfg.get("enabled", True), bool
        ),
        ws_reconnect_delay_seconds=live_cfg.get(
            "reconnect_delay_seconds", DEFAULT_WS_RECONNECT_DELAY_SECONDS
        ),
        ws_setup_retry_delay_seconds=live_cfg.get(
            "setup_retry_delay_seconds", DEFAULT_WS_SETUP_RETRY_DELAY_SECONDS
        ),
        ws_subscription_timeout_seconds=live_cfg.get(
            "subscription_timeout_seconds", DEFAULT_WS_SUBSCRIPTION_TIMEOUT_SECONDS
        ),
        health_host=health_cfg.get("host", DEFAULT_HEALTH_HOST),
        health_port=get_env_var("PORT", health_cfg.get("port", DEFAULT_HEALTH_PORT), int),
    )
