"""
Configuration schema validation for the Recurve relayer.

Validates that all required config files exist and contain required keys,
then sanity-checks the assembled runtime settings.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from web3 import Web3

from config.loader import get_config
from shared.types import RelayerSettings


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(f"missing: {key}")
                break
            current = current[part]
    return missing


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chain.json has required fields."""
    errors = _check_keys(
        config,
        ["chain_id", "rpc.http_urls", "contracts.subscription_manager"],
        "chain.json",
    )
    urls = config.get("rpc", {}).get("http_urls")
    if urls is not None and not isinstance(urls, list):
        errors.append("rpc.http_urls: must be a list")
    return errors


def validate_discovery_config(config: dict[str, Any]) -> list[str]:
    """Validate discovery.json has required fields with positive values."""
    keys = ["chunk_size_blocks", "stale_threshold_blocks", "recent_window_blocks"]
    errors = _check_keys(config, keys, "discovery.json")
    for key in keys:
        value = config.get(key)
        if value is not None and (not isinstance(value, int) or value <= 0):
            errors.append(f"{key}: must be a positive integer")
    return errors


def validate_retry_config(config: dict[str, Any]) -> list[str]:
    """Validate retry.json holds a non-empty table of positive delays."""
    errors = _check_keys(config, ["delays_seconds"], "retry.json")
    if not errors:
        delays = config.get("delays_seconds")
        if not isinstance(delays, list) or len(delays) == 0:
            errors.append("delays_seconds: must be a non-empty list")
        elif any(not isinstance(d, int) or d <= 0 for d in delays):
            errors.append("delays_seconds: every delay must be a positive integer")
    return errors


def validate_timing_config(config: dict[str, Any]) -> list[str]:
    """Validate timing.json has required fields."""
    return _check_keys(
        config,
        ["tick_interval_seconds", "transaction.confirmation_timeout_seconds"],
        "timing.json",
    )


def validate_settings(settings: RelayerSettings) -> list[str]:
    """Check runtime values that may come from the environment rather than JSON."""
    errors = []
    if not settings.rpc_urls:
        errors.append("no RPC endpoints configured (ARC_RPC_URL or rpc.http_urls)")
    if not settings.manager_address:
        errors.append("SUBSCRIPTION_MANAGER_ADDRESS not set")
    elif not Web3.is_address(settings.manager_address):
        errors.append(f"SUBSCRIPTION_MANAGER_ADDRESS is not an address: {settings.manager_address}")
    if not settings.private_key:
        errors.append("PRIVATE_KEY not set")
    if settings.tick_interval_seconds <= 0:
        errors.append("tick_interval_seconds: must be positive")
    if settings.live_listener_enabled and not settings.ws_url:
        errors.append("live listener enabled but no WebSocket URL (ARC_WS_URL or rpc.ws_url)")
    return errors


def validate_all_configs(settings: RelayerSettings | None = None) -> None:
    """
    Validate all config files, and the assembled settings when given.
    Raises ConfigValidationError with details if anything is missing.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        "chain.json": (loader.get_chain_config, validate_chain_config),
        "timing.json": (loader.get_timing_config, validate_timing_config),
        "discovery.json": (loader.get_discovery_config, validate_discovery_config),
        "retry.json": (loader.get_retry_config, validate_retry_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if settings is not None:
        errors = validate_settings(settings)
        if errors:
            all_errors["environment"] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - {error}")
        raise ConfigValidationError("\n".join(lines))
