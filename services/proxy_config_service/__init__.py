"""
Proxy Config Service
Sources, validates and hot-reloads the configuration shared by the proxy,
authenticate and authorize services.
"""

from .src.config_manager import ConfigManager, OptionsUpdater, app
from .src.option_source import OptionSource
from .src.schemas import (
    ServiceMode,
    Snapshot,
    ReloadStatus,
    ReloadOutcome,
)

__version__ = "0.1.0"
__all__ = [
    "ConfigManager",
    "OptionsUpdater",
    "OptionSource",
    "app",
    "ServiceMode",
    "Snapshot",
    "ReloadStatus",
    "ReloadOutcome",
]
