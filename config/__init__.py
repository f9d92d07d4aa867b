"""Configuration module."""

from config.settings import DispatchMode, Settings, load_settings

__all__ = [
    "DispatchMode",
    "Settings",
    "load_settings",
]
