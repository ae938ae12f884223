"""Configuration management."""

import copy
import yaml
from pathlib import Path
from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {"path": "data/courier.db"},
    "logging": {"level": "INFO", "file": None},
    "host": {
        "url": "",
        "root_attributes": {},
    },
    "addons": {
        "base_path": None,
        "enable": {},
        "modules": {},
        "fetch_timeout": 10,
    },
    "submission": {
        "endpoint_url": "",
        "method": "POST",
        "timeout_ms": 8000,
        "delivery_mode": "confirmable",
        "queue_key": "rw2_queue_v1",
        "capture_depth": 4,
        "max_field_len": 500,
    },
    "analytics": {
        "endpoint": "",
        "method": "POST",
        "timeout_ms": 5000,
        "send_mode": "best_effort",
        "queue_key": "rw2_analytics_q1",
    },
}

_config: Dict[str, Any] = {}
_base_path: Path = None


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: str = None) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    global _config, _base_path

    if config_path is None:
        # Try to find config in common locations
        possible_paths = [
            Path("config/config.yaml"),
            Path("config.yaml"),
            Path.home() / ".config" / "courier" / "config.yaml",
        ]
        for path in possible_paths:
            if path.exists():
                config_path = str(path)
                break
        else:
            raise FileNotFoundError(
                "No config.yaml found. Copy config/config.example.yaml to config/config.yaml "
                "and fill in your values."
            )

    config_path = Path(config_path)
    _base_path = config_path.parent.parent  # Project root

    with open(config_path) as f:
        _config = merge_config(DEFAULT_CONFIG, yaml.safe_load(f) or {})

    # Resolve relative paths
    _resolve_paths()

    return _config


def _resolve_paths():
    """Resolve relative paths in config to absolute paths."""
    global _config

    path = Path(_config["database"]["path"])
    if not path.is_absolute():
        _config["database"]["path"] = str(_base_path / path)

    if _config["logging"].get("file"):
        path = Path(_config["logging"]["file"])
        if not path.is_absolute():
            _config["logging"]["file"] = str(_base_path / path)

    # Add-on base may be a URL; only local directories are resolved
    base = _config["addons"].get("base_path")
    if base and "://" not in base and not base.startswith("/"):
        _config["addons"]["base_path"] = str(_base_path / base)


def get_config() -> Dict[str, Any]:
    """Get the loaded configuration."""
    if not _config:
        load_config()
    return _config


def get(key: str, default: Any = None) -> Any:
    """Get a config value by dot-notation key (e.g., 'submission.endpoint_url')."""
    if not _config:
        load_config()

    keys = key.split(".")
    value = _config
    for k in keys:
        if isinstance(value, dict) and k in value:
            value = value[k]
        else:
            return default
    return value
