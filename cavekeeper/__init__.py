"""Cavekeeper - keeps a local library of installed games up to date.

Key modules:
- core: Shared functionality (config, types, store, catalog client)
- update: Update checks and the periodic update scheduler
- install: Install pipeline and install queue
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "Cavekeeper Team"

# Re-export commonly used types
from cavekeeper.core.types import (
    Cave,
    DownloadKey,
    Game,
    Platform,
    Upload,
)

__all__ = [
    "__version__",
    "__author__",
    "Cave",
    "DownloadKey",
    "Game",
    "Platform",
    "Upload",
]
