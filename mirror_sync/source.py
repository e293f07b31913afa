from __future__ import annotations

import errno
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Protocol, Tuple

from pathspec import PathSpec
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .paths import expand_braces, split_pattern

logger = logging.getLogger("mirror_sync.source")


class EventSink(Protocol):
    def handle_event(self, kind: str, rel_path: str, stat: Optional[os.stat_result] = None) -> None: ...

    def handle_ready(self) -> None: ...

    def handle_error(self, exc: BaseException) -> None: ...


# -------------------------
# Selection
# -------------------------

class IgnoreMatcher:
    def __init__(self, root: Path, patterns: Iterable[str]):
        self.root = root
        self.spec = PathSpec.from_lines("gitwildmatch", list(patterns))

    def is_ignored(self, rel_posix: str, is_dir: bool) -> bool:
        if not self.spec.patterns:
            return False
        if is_dir and not rel_posix.endswith("/"):
            rel_posix += "/"
        return self.spec.match_file(rel_posix)


class Selector:
    """
    Decides which entries under the watch base are reported, from the
    selection pattern, the ignore list and the depth limit. All paths are
    posix-style and relative to the working directory.
    """

    def __init__(self, cwd: Path, pattern: str, depth: Optional[int] = None, ignored: Iterable[str] = ()):
        self.cwd = cwd
        self.base, glob = split_pattern(pattern)
        self.depth = depth
        self.ignore = IgnoreMatcher(cwd, ignored)

        base_path = cwd / self.base
        self.literal_file: Optional[str] = None
        self.spec: Optional[PathSpec] = None
        if glob is None:
            if self.base != "." and not base_path.is_dir():
                # Literal file: watch its folder, report only the file.
                self.literal_file = self.base
                parent = Path(self.base).parent.as_posix()
                self.base = parent if parent not in ("", ".") else "."
        else:
            prefix = "" if self.base == "." else self.base + "/"
            self.spec = PathSpec.from_lines("gitwildmatch", ["/" + prefix + g for g in expand_braces(glob)])

    @property
    def watch_root(self) -> Path:
        return self.cwd / self.base

    def _depth_of(self, rel_posix: str) -> int:
        base_parts = 0 if self.base == "." else len(self.base.split("/"))
        return len(rel_posix.split("/")) - base_parts - 1

    def within_depth(self, rel_posix: str) -> bool:
        return self.depth is None or self._depth_of(rel_posix) <= self.depth

    def descend(self, rel_posix: str) -> bool:
        if self.literal_file is not None:
            return False
        if self.ignore.is_ignored(rel_posix, is_dir=True):
            return False
        return self.depth is None or self._depth_of(rel_posix) < self.depth

    def selects(self, rel_posix: str, is_dir: bool) -> bool:
        if not self.within_depth(rel_posix):
            return False
        if self.ignore.is_ignored(rel_posix, is_dir=is_dir):
            return False
        if self.literal_file is not None:
            return not is_dir and rel_posix == self.literal_file
        if self.spec is None:
            return True
        if is_dir:
            return self.spec.match_file(rel_posix) or self.spec.match_file(rel_posix + "/")
        return self.spec.match_file(rel_posix)

    def selects_any(self, rel_posix: str, is_dir: bool) -> bool:
        """For live events: reported, and every ancestor below the base was descended into."""
        parts = rel_posix.split("/")
        base_parts = 0 if self.base == "." else len(self.base.split("/"))
        for i in range(base_parts + 1, len(parts)):
            if self.ignore.is_ignored("/".join(parts[:i]), is_dir=True):
                return False
        return self.selects(rel_posix, is_dir)


# -------------------------
# Watchdog glue
# -------------------------

class _Handler(FileSystemEventHandler):
    def __init__(self, source: "WatchdogEventSource"):
        self.source = source

    def on_created(self, event: FileSystemEvent) -> None:
        kind = "addDir" if event.is_directory else "add"
        self.source._live([(kind, os.fsdecode(event.src_path))])

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self.source._live([("change", os.fsdecode(event.src_path))])

    def on_deleted(self, event: FileSystemEvent) -> None:
        kind = "unlinkDir" if event.is_directory else "unlink"
        self.source._live([(kind, os.fsdecode(event.src_path))])

    def on_moved(self, event: FileSystemEvent) -> None:
        src = os.fsdecode(event.src_path)
        dest = os.fsdecode(event.dest_path)
        if event.is_directory:
            self.source._live([("unlinkDir", src), ("addDir", dest)], rescan=dest)
        else:
            self.source._live([("unlink", src), ("add", dest)])


class WatchdogEventSource:
    """
    Change source over watchdog: one initial scan, then live events.

    The observer is started before the scan so nothing is missed; live events
    arriving during the scan are held back and delivered, in order, right
    before "ready". Every delivery to the sink happens under one lock.
    """

    def __init__(
        self,
        pattern: str,
        cwd: Path,
        depth: Optional[int] = None,
        ignored: Iterable[str] = (),
        persistent: bool = True,
    ):
        self.cwd = Path(cwd)
        self.persistent = persistent
        self.selector = Selector(self.cwd, pattern, depth=depth, ignored=ignored)
        self._sink: Optional[EventSink] = None
        self._observer: Optional[Observer] = None
        self._lock = threading.RLock()
        self._scanning = False
        self._pending: List[Tuple[str, str, Optional[str]]] = []
        self._closed = False

    @property
    def watch_root(self) -> Path:
        return self.selector.watch_root

    def start(self, sink: EventSink) -> None:
        self._sink = sink
        root = self.watch_root
        if not root.is_dir():
            sink.handle_error(FileNotFoundError(errno.ENOENT, "Watch root does not exist or is not a folder", str(root)))
            sink.handle_ready()
            return

        with self._lock:
            self._scanning = True

        if self.persistent:
            self._start_observer(root)

        try:
            self._scan(root)
        except OSError as e:
            sink.handle_error(e)

        with self._lock:
            pending, self._pending = self._pending, []
            for kind, abs_path, rescan in pending:
                self._deliver(kind, abs_path, rescan)
            self._scanning = False
            if not self._closed:
                sink.handle_ready()

    def _start_observer(self, root: Path) -> None:
        observer = Observer()
        try:
            observer.schedule(_Handler(self), str(root), recursive=True)
            observer.start()
        except OSError as e:
            logger.error("Could not start watching %s: %s", root, e)
            self._sink.handle_error(e)
            return
        self._observer = observer
        logger.info("Watching %s", root)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            if observer is not threading.current_thread():
                observer.join(timeout=10)

    # scan

    def _rel(self, abs_path: Path) -> Optional[str]:
        try:
            return Path(os.path.relpath(abs_path, self.cwd)).as_posix()
        except ValueError:
            return None

    def _walk(self, root: Path) -> Iterable[Tuple[str, bool, os.stat_result]]:
        """Depth-first, sorted, parents before children. Symlinked dirs are not followed."""
        try:
            with os.scandir(root) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            self._sink.handle_error(e)
            return
        for entry in entries:
            rel = self._rel(Path(entry.path))
            if rel is None:
                continue
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                stat = entry.stat()
            except OSError as e:
                self._sink.handle_error(e)
                continue
            yield rel, is_dir, stat
            if is_dir and self.selector.descend(rel):
                yield from self._walk(Path(entry.path))

    def _scan(self, root: Path) -> None:
        base = self.selector.base
        if self.selector.spec is None and self.selector.literal_file is None and base != ".":
            # A literal directory pattern reports the directory itself first.
            self._sink.handle_event("addDir", _native(base), os.stat(root))
        for rel, is_dir, stat in self._walk(root):
            if self._closed:
                return
            if self.selector.selects(rel, is_dir):
                self._sink.handle_event("addDir" if is_dir else "add", _native(rel), stat)

    # live

    def _live(self, events: List[Tuple[str, str]], rescan: Optional[str] = None) -> None:
        with self._lock:
            if self._closed:
                return
            for i, (kind, abs_path) in enumerate(events):
                extra = rescan if i == len(events) - 1 else None
                if self._scanning:
                    self._pending.append((kind, abs_path, extra))
                else:
                    self._deliver(kind, abs_path, extra)

    def _deliver(self, kind: str, abs_path: str, rescan: Optional[str]) -> None:
        rel = self._rel(Path(abs_path))
        if rel is None or rel == "." or rel.startswith("../"):
            return
        is_dir = kind in ("addDir", "unlinkDir")
        try:
            if self.selector.selects_any(rel, is_dir):
                stat = None
                if kind in ("add", "change", "addDir"):
                    try:
                        stat = os.stat(abs_path)
                    except FileNotFoundError:
                        return
                self._sink.handle_event(kind, _native(rel), stat)
            if rescan and self.selector.descend(rel):
                for child_rel, child_is_dir, stat in self._walk(Path(rescan)):
                    if self.selector.selects(child_rel, child_is_dir):
                        self._sink.handle_event("addDir" if child_is_dir else "add", _native(child_rel), stat)
        except Exception as e:
            logger.exception("Error delivering %s %s", kind, abs_path)
            self._sink.handle_error(e)


def _native(rel_posix: str) -> str:
    return rel_posix.replace("/", os.sep)
