"""Error types raised by mirror_sync."""

from __future__ import annotations


class MirrorSyncError(Exception):
    """Base class for mirror_sync errors."""


class ConfigError(MirrorSyncError, ValueError):
    """Bad construction arguments or options. Raised before any watching starts."""


class PathEscapeError(MirrorSyncError, ValueError):
    """A relative path would map outside the destination root."""

    def __init__(self, rel_path: str, root):
        super().__init__(f"Path escapes destination root: {rel_path!r} (root={root})")
        self.rel_path = rel_path
        self.root = root
