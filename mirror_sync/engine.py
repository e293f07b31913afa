from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import PathEscapeError
from .log import log_action
from .observers import EventHub
from .paths import dst_for, normalize_rel
from .policy import DeletionMode, EntryKind, TimestampMode, should_preserve
from .visit import VisitTracker

logger = logging.getLogger("mirror_sync.engine")

ADD_KINDS = ("add", "change", "addDir")
REMOVE_KINDS = ("unlink", "unlinkDir")


# -------------------------
# Filesystem helpers
# -------------------------

def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def copy_file(src: Path, dst: Path, preserve_times: bool) -> None:
    ensure_parent(dst)
    if preserve_times:
        shutil.copy2(src, dst)
    else:
        shutil.copyfile(src, dst)
        shutil.copymode(src, dst)


def remove_path(path: Path) -> bool:
    """Remove a file, symlink or directory tree. Returns False if nothing was there."""
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    if path.is_dir():
        shutil.rmtree(path)
        return True
    if os.path.lexists(path):
        path.unlink()
        return True
    return False


# -------------------------
# Deletion sweep
# -------------------------

def _kept(rel: str, keep: Tuple[str, ...]) -> Optional[bool]:
    """True if rel lies inside a kept subtree, False if it leads to one, None otherwise."""
    for k in keep:
        if rel == k or rel.startswith(k + os.sep):
            return True
    for k in keep:
        if k.startswith(rel + os.sep):
            return False
    return None


def sweep(
    dest_root: Path,
    visited: VisitTracker,
    on_error: Optional[Callable[[Exception], None]] = None,
    keep: Iterable[str] = (),
) -> List[str]:
    """
    Remove every destination entry whose relative path was not visited.

    Depth-first from dest_root. Unvisited entries go outright, visited
    directories are descended. Entries under a `keep` path are left alone
    (the source side of them could not be read). Symlinks are never followed.
    Returns the removed relative paths in removal order.
    """
    keep = tuple(normalize_rel(k) for k in keep)
    removed: List[str] = []
    stack = [Path(dest_root)]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            log_action(logger, "SWEEP_FAIL", f"listing {current} | {e}", path=current, is_dir=True, level=logging.ERROR)
            if on_error:
                on_error(e)
            continue

        for entry in reversed(entries):
            entry_path = Path(entry.path)
            rel = normalize_rel(os.path.relpath(entry_path, dest_root))
            is_dir = entry.is_dir(follow_symlinks=False)
            kept = _kept(rel, keep) if keep else None
            if kept:
                log_action(logger, "SKIP", f"kept {entry_path} (source unreadable)", path=entry_path, is_dir=is_dir)
                continue
            if rel in visited or kept is False:
                if is_dir:
                    stack.append(entry_path)
                continue
            try:
                remove_path(entry_path)
                removed.append(rel)
                log_action(logger, "SWEEP", f"removed stray {entry_path}", path=entry_path, is_dir=is_dir)
            except OSError as e:
                log_action(logger, "SWEEP_FAIL", f"removing {entry_path} | {e}", path=entry_path, is_dir=is_dir, level=logging.ERROR)
                if on_error:
                    on_error(e)
    return removed


# -------------------------
# Engine
# -------------------------

class MirrorEngine:
    """
    Applies one change notification at a time to the destination tree.

    handle_event() performs the mutation, timestamp propagation, visit tracking
    and re-emission before returning. Failures are reported through the hub's
    "error" event and never raised to the caller.
    """

    def __init__(
        self,
        source_root: Path,
        dest_root: Path,
        hub: EventHub,
        timestamps: TimestampMode = TimestampMode.ALL,
        deletion: DeletionMode = DeletionMode.NONE,
        tracker: Optional[VisitTracker] = None,
    ):
        self.source_root = Path(source_root)
        self.dest_root = Path(dest_root)
        self.hub = hub
        self.timestamps = TimestampMode(timestamps)
        self.deletion = DeletionMode(deletion)
        self.tracker = tracker

    def handle_event(self, kind: str, rel_path: str, stat: Optional[os.stat_result] = None) -> bool:
        """Returns True when the destination was changed and the event re-emitted."""
        if kind not in ADD_KINDS and kind not in REMOVE_KINDS:
            logger.warning("Ignoring unknown event kind %r for %s", kind, rel_path)
            return False

        try:
            dst = dst_for(self.dest_root, rel_path)
        except PathEscapeError as e:
            log_action(logger, "SKIP", f"{kind} {rel_path} | {e}", level=logging.ERROR)
            self.hub.emit("error", e)
            return False

        if kind in REMOVE_KINDS:
            return self._remove(kind, rel_path, dst, stat)

        if self.tracker is not None:
            self.tracker.record(rel_path)

        src = self.source_root / normalize_rel(rel_path)
        try:
            if kind == "addDir":
                stat = self._make_dir(src, dst, stat)
            else:
                self._copy(kind, src, dst)
        except OSError as e:
            action = "MKDIR" if kind == "addDir" else "COPY"
            log_action(logger, f"{action}_FAIL", f"({kind}) {src} -> {dst} | {e}", path=dst, is_dir=kind == "addDir", level=logging.ERROR)
            self.hub.emit("error", e)
            return False

        self.hub.emit_mutation(kind, rel_path, dst, stat)
        return True

    def _copy(self, kind: str, src: Path, dst: Path) -> None:
        preserve = should_preserve(self.timestamps, EntryKind.FILE)
        copy_file(src, dst, preserve)
        log_action(logger, "COPY", f"({kind}) {src} -> {dst}", path=dst, is_dir=False)

    def _make_dir(self, src: Path, dst: Path, stat: Optional[os.stat_result]) -> Optional[os.stat_result]:
        dst.mkdir(parents=True, exist_ok=True)
        if should_preserve(self.timestamps, EntryKind.DIR):
            if stat is None:
                stat = os.stat(src)
            os.utime(dst, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        log_action(logger, "MKDIR", f"(addDir) {dst}", path=dst, is_dir=True)
        return stat

    def _remove(self, kind: str, rel_path: str, dst: Path, stat) -> bool:
        is_dir = kind == "unlinkDir"
        if not self.deletion.live:
            log_action(logger, "SKIP", f"({kind}) deletion mode {self.deletion.value} keeps {dst}", path=dst, is_dir=is_dir, level=logging.DEBUG)
            return False

        if dst == self.dest_root:
            log_action(logger, "SKIP", f"({kind}) refusing to remove destination root {dst}", path=dst, is_dir=True, level=logging.WARNING)
            return False

        try:
            remove_path(dst)
        except OSError as e:
            log_action(logger, "RMDIR_FAIL" if is_dir else "DELETE_FAIL", f"({kind}) {dst} | {e}", path=dst, is_dir=is_dir, level=logging.ERROR)
            self.hub.emit("error", e)
            return False

        if self.tracker is not None:
            self.tracker.evict(rel_path)
        log_action(logger, "RMDIR" if is_dir else "DELETE", f"({kind}) {dst}", path=dst, is_dir=is_dir)
        self.hub.emit_mutation(kind, rel_path, dst, stat)
        return True
