"""Settings module for configuration management."""

from .config import (
    HardwareConfig,
    KMCConfig,
    LogConfig,
    PathConfig,
    Settings,
    settings,
)

__all__ = [
    "settings",
    "Settings",
    "LogConfig",
    "KMCConfig",
    "PathConfig",
    "HardwareConfig",
]
