"""
mirror_sync
- Keeps a destination folder a live, filtered mirror of the entries selected
  by a pattern under a source working directory.
- Initial sync on start, then live changes through watchdog.
- Optional removal of destination entries missing from the source, once at
  ready or continuously.
- Optional propagation of source timestamps, for files, folders, both or none.

Usage
    from mirror_sync import sync

    session = sync("src/**", "build/stage", deletion="initial", timestamps="file")
    session.on("ready", lambda: print("in sync"))
    session.on("all", lambda kind, rel, dst, stat: print(kind, rel))
    session.start()
"""

from .errors import ConfigError, MirrorSyncError, PathEscapeError
from .policy import DeletionMode, EntryKind, TimestampMode, should_preserve
from .session import MirrorSession, Phase, SyncOptions, sync

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "DeletionMode",
    "EntryKind",
    "MirrorSession",
    "MirrorSyncError",
    "PathEscapeError",
    "Phase",
    "SyncOptions",
    "TimestampMode",
    "__version__",
    "should_preserve",
    "sync",
]
