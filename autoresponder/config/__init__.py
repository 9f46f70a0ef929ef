"""Configuration module."""

from autoresponder.config.schema import Config
from autoresponder.config.loader import load_config, save_config, get_config_path

__all__ = ["Config", "load_config", "save_config", "get_config_path"]
