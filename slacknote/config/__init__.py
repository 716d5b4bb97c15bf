"""Configuration module for slacknote."""

from slacknote.config.loader import get_config_path, load_config
from slacknote.config.schema import Config

__all__ = ["Config", "load_config", "get_config_path"]
