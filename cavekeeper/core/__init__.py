"""Core functionality for cavekeeper.

This module provides shared functionality used across the entire package:
- Configuration management
- Entity types and the local entity store
- Catalog API client
- Session state and produced signals
"""

from cavekeeper.core.types import (
    PLATFORM_FLAGS,
    Cave,
    DownloadKey,
    Game,
    Platform,
    Upload,
    UpgradePath,
    UpgradeStep,
    User,
)
from cavekeeper.core.utils import (
    format_size,
    format_time_ago,
    update_cutoff,
)

__all__ = [
    # Types
    "Cave",
    "DownloadKey",
    "Game",
    "Platform",
    "PLATFORM_FLAGS",
    "Upload",
    "UpgradePath",
    "UpgradeStep",
    "User",
    # Utils
    "format_size",
    "format_time_ago",
    "update_cutoff",
]
