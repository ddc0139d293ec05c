"""Configuration module for ar-sync."""

from ar_sync.config.logging import configure_logging, get_logger
from ar_sync.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging", "get_logger"]
