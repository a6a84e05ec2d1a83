"""Configuration module for the QBO bridge."""

from qbo_bridge.config.logging import configure_logging, get_logger
from qbo_bridge.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging", "get_logger"]
