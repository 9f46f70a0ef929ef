"""
Configuration loading and persistence.

The config file is plain JSON. Missing keys fall back to defaults, and an
unreadable file never prevents startup. AUTORESPONDER_* environment
variables take precedence over file values, key by key.
"""

import asyncio
import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from autoresponder.config.schema import Config


def get_data_dir() -> Path:
    """Get the data directory, creating it if needed."""
    path = Path("~/.autoresponder").expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_data_dir() / "config.json"


def load_config(path: Path | None = None) -> Config:
    """
    Load configuration from file, merged over defaults.

    Args:
        path: Config file path, or None for the default location.

    Returns:
        Loaded configuration (defaults if the file is missing or invalid).
    """
    path = path or get_config_path()

    if not path.exists():
        logger.info(f"Config file {path} not found, using defaults")
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        config = Config(**data)
        logger.info(f"Loaded config from {path}")
        return config
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error(f"Failed to load config from {path}, using defaults: {e}")
        return Config()


def save_config(config: Config, path: Path | None = None) -> Path:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        path: Target path, or None for the default location.

    Returns:
        The path written.
    """
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    logger.info(f"Saved config to {path}")
    return path


async def persist_config(config: Config, path: Path | None = None) -> Path:
    """Save configuration without blocking the event loop."""
    return await asyncio.to_thread(save_config, config, path)


def merge_config(config: Config, update: dict[str, Any]) -> Config:
    """
    Deep-merge a partial update into a config.

    Args:
        config: Current configuration.
        update: Nested dict of changed values.

    Returns:
        A new validated Config.
    """
    merged = _deep_merge(config.model_dump(), update)
    return Config.model_validate(merged)


def _deep_merge(base: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
