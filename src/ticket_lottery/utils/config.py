"""
Configuration Management
"""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from ticket_lottery.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "lottery.conf"

DEFAULT_CONFIG: Dict[str, Any] = {
    "lottery": {
        "pool_scope": "global",
        "payout_divisor": 2,
        "entropy": "secrets",
        "entropy_seed": None,
    },
    "ledger": {
        "backend": "memory",
        "lottery_address": "0x000000000000000000000000000000000000107e",
        "initial_supply": 1_000_000_000_000,
        "faucet_amount": 100,
        "rpc_url": "http://127.0.0.1:8545",
        "rpc_timeout": 10.0,
        "chain_id": 31337,
        "token_address": None,
        "operator_private_key": None,
        "tx_timeout_seconds": 180,
    },
    "operator": {
        "enabled": True,
        "auto_start_rounds": False,
        "check_interval": 10,
    },
    "store": {
        "snapshot_path": None,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 6080,
    },
}

# Environment prefix -> config section
ENV_SECTIONS = {
    "LOTTERY_": "lottery",
    "LEDGER_": "ledger",
    "OPERATOR_": "operator",
    "STORE_": "store",
    "SERVER_": "server",
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from defaults, a JSON file and environment variables"""
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_file or os.getenv("LOTTERY_CONFIG_FILE") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                file_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading config file {path}: {e}")
        else:
            _merge(config, file_config)
            logger.info(f"Loaded configuration from {path}")
    else:
        logger.warning(f"Config file {path} not found. Using defaults and environment variables.")

    config = _apply_env_overrides(config)
    logger.debug("Effective configuration: %s", json.dumps(_redacted(config), indent=2, default=str))
    return config


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    for section, values in overrides.items():
        if isinstance(values, dict) and isinstance(base.get(section), dict):
            base[section].update(values)
        else:
            base[section] = values


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        for prefix, section in ENV_SECTIONS.items():
            if key.startswith(prefix):
                name = key[len(prefix):].lower()
                # LOTTERY_CONFIG_FILE selects the file, it is not a setting
                if section == "lottery" and name == "config_file":
                    break
                config.setdefault(section, {})[name] = value
                break
    return config


def _redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    shown = copy.deepcopy(config)
    ledger = shown.get("ledger", {})
    if ledger.get("operator_private_key"):
        ledger["operator_private_key"] = "***"
    return shown


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def as_bool(value: Any) -> bool:
    """Interpret config values that may arrive as strings from the environment."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
