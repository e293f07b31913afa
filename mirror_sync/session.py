from __future__ import annotations

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Tuple

from .engine import MirrorEngine, sweep
from .errors import ConfigError, MirrorSyncError
from .observers import EventHub
from .paths import is_absolute_pattern
from .policy import DeletionMode, TimestampMode
from .source import WatchdogEventSource
from .visit import VisitTracker

logger = logging.getLogger("mirror_sync.session")


class Phase(str, Enum):
    INITIALIZING = "initializing"
    READY = "ready"
    STEADY = "steady"
    CLOSED = "closed"


# -------------------------
# Options
# -------------------------

# Accepted aliases for SyncOptions.from_mapping().
_OPTION_ALIASES = {
    "cwd": "cwd",
    "sourceWorkingDirectory": "cwd",
    "source_working_directory": "cwd",
    "timestamps": "timestamps",
    "timestampMode": "timestamps",
    "timestamp_mode": "timestamps",
    "preserveTimestamps": "timestamps",
    "deletion": "deletion",
    "deletionMode": "deletion",
    "deletion_mode": "deletion",
    "delete": "deletion",
    "depth": "depth",
    "ignored": "ignored",
    "persistent": "persistent",
}


@dataclass(frozen=True)
class SyncOptions:
    cwd: Path
    timestamps: TimestampMode = TimestampMode.ALL
    deletion: DeletionMode = DeletionMode.NONE
    depth: Optional[int] = None
    ignored: Tuple[str, ...] = field(default_factory=tuple)
    persistent: bool = True

    def __post_init__(self):
        if self.cwd is None or str(self.cwd) == "":
            raise ConfigError("A source working directory (cwd) must be specified.")
        object.__setattr__(self, "cwd", Path(self.cwd).expanduser().resolve())
        object.__setattr__(self, "timestamps", TimestampMode.parse(self.timestamps))
        object.__setattr__(self, "deletion", DeletionMode.parse(self.deletion))
        if isinstance(self.ignored, str):
            object.__setattr__(self, "ignored", (self.ignored,))
        else:
            object.__setattr__(self, "ignored", tuple(self.ignored))
        if self.depth is not None:
            try:
                depth = int(self.depth)
            except (TypeError, ValueError):
                raise ConfigError(f"depth must be an integer, got {self.depth!r}") from None
            if depth < 0:
                raise ConfigError(f"depth must be >= 0, got {depth}")
            object.__setattr__(self, "depth", depth)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], cwd: Optional[Path] = None) -> "SyncOptions":
        kwargs: dict = {}
        for key, value in values.items():
            name = _OPTION_ALIASES.get(key)
            if name is None:
                raise ConfigError(f"Unknown option: {key}")
            if value is not None:
                kwargs[name] = value
        kwargs.setdefault("cwd", cwd)
        return cls(**kwargs)


def _is_subpath(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
        return True
    except ValueError:
        return False


# -------------------------
# Session
# -------------------------

class MirrorSession:
    """
    Mirrors the entries selected by `pattern` (relative to options.cwd) into
    `dest`.

        session = MirrorSession("src/**", "build/stage", SyncOptions(cwd=root))
        session.on("ready", lambda: print("in sync"))
        session.start()
        ...
        session.close()

    Observers are registered with on()/off(). Everything, including "ready"
    and "error", is delivered on the thread that applied the change.
    """

    def __init__(
        self,
        pattern: str,
        dest,
        options: SyncOptions,
        source: Optional[Any] = None,
    ):
        if not pattern:
            raise ConfigError("A source pattern must be specified.")
        if is_absolute_pattern(pattern):
            raise ConfigError("Pattern cannot be an absolute path. Use the cwd option to set the base directory.")
        if dest is None or str(dest) == "":
            raise ConfigError("A destination must be specified!")
        if not isinstance(options, SyncOptions):
            raise ConfigError("options must be a SyncOptions instance; see SyncOptions.from_mapping()")

        self.pattern = pattern
        self.options = options
        self._dest_root = Path(dest).expanduser()
        if not self._dest_root.is_absolute():
            self._dest_root = options.cwd / self._dest_root
        self._dest_root = self._dest_root.resolve()

        self._source = source if source is not None else WatchdogEventSource(
            pattern,
            options.cwd,
            depth=options.depth,
            ignored=options.ignored,
            persistent=options.persistent,
        )
        watch_root = Path(getattr(self._source, "watch_root", options.cwd)).resolve()
        if _is_subpath(self._dest_root, watch_root) or _is_subpath(watch_root, self._dest_root):
            raise ConfigError(
                f"Destination {self._dest_root} and watched folder {watch_root} must not contain one another."
            )

        try:
            self._dest_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(f"Could not create destination {self._dest_root}: {e}") from e

        self._hub = EventHub()
        self._lock = threading.RLock()
        self._pending: deque = deque()
        self._dispatching = False
        self._scan_failures: list = []
        self._watch_root = Path(os.path.abspath(watch_root))
        self._phase = Phase.INITIALIZING
        self._started = False
        self._tracker: Optional[VisitTracker] = (
            VisitTracker(continuous=options.deletion.live) if options.deletion.sweeps else None
        )
        self._engine = MirrorEngine(
            options.cwd,
            self._dest_root,
            self._hub,
            timestamps=options.timestamps,
            deletion=options.deletion,
            tracker=self._tracker,
        )

    # introspection

    @property
    def source_root(self) -> Path:
        return self.options.cwd

    @property
    def dest_root(self) -> Path:
        return self._dest_root

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def visited(self) -> frozenset:
        if self._tracker is None or not self._tracker.active:
            return frozenset()
        return self._tracker.paths()

    # observers

    def on(self, event: str, callback: Callable[..., object]) -> Callable[..., object]:
        return self._hub.on(event, callback)

    def off(self, event: str, callback: Callable[..., object]) -> None:
        self._hub.off(event, callback)

    # lifecycle

    def start(self) -> "MirrorSession":
        with self._lock:
            if self._started or self._phase is Phase.CLOSED:
                return self
            self._started = True
        logger.info("Mirroring %r from %s to %s", self.pattern, self.source_root, self.dest_root)
        self._source.start(self)
        return self

    def close(self) -> None:
        with self._lock:
            if self._phase is Phase.CLOSED:
                return
            self._phase = Phase.CLOSED
        self._source.close()
        logger.info("Closed mirror of %s", self.source_root)

    def __enter__(self) -> "MirrorSession":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # sink

    def handle_event(self, kind: str, rel_path: str, stat: Optional[os.stat_result] = None) -> None:
        self._dispatch(self._engine.handle_event, kind, rel_path, stat)

    def handle_ready(self) -> None:
        self._dispatch(self._become_ready)

    def handle_error(self, exc: BaseException) -> None:
        self._dispatch(self._report_error, exc)

    def _dispatch(self, fn: Callable[..., object], *args: Any) -> None:
        # Notifications raised from inside an observer queue up behind the
        # one being applied, so the re-emitted stream keeps arrival order.
        with self._lock:
            if self._phase is Phase.CLOSED:
                return
            self._pending.append((fn, args))
            if self._dispatching:
                return
            self._dispatching = True
            try:
                while self._pending:
                    fn, args = self._pending.popleft()
                    if self._phase is Phase.CLOSED:
                        self._pending.clear()
                        break
                    fn(*args)
            finally:
                self._dispatching = False

    def _unreadable(self) -> Optional[Tuple[str, ...]]:
        """
        Source paths the initial scan could not read, relative to cwd.
        None means the failure covers the whole selection.
        """
        keep = []
        for exc in self._scan_failures:
            filename = getattr(exc, "filename", None)
            if not filename:
                return None
            failed = Path(os.fsdecode(filename))
            if not failed.is_absolute():
                failed = self.options.cwd / failed
            failed = Path(os.path.abspath(failed))
            if failed == self._watch_root or not _is_subpath(failed, self._watch_root):
                return None
            keep.append(os.path.relpath(failed, self.options.cwd))
        return tuple(keep)

    def _become_ready(self) -> None:
        if self._phase is not Phase.INITIALIZING:
            return
        if self._tracker is not None:
            keep = self._unreadable()
            if keep is None:
                skipped = MirrorSyncError(
                    f"Initial scan of {self._watch_root} failed; destination {self._dest_root} was not swept."
                )
                logger.error("%s", skipped)
                self._hub.emit("error", skipped)
            else:
                removed = sweep(self._dest_root, self._tracker, on_error=self._report_error, keep=keep)
                logger.info("Initial sweep removed %d stray entr%s", len(removed), "y" if len(removed) == 1 else "ies")
            if not self._tracker.settle():
                self._tracker = None
                self._engine.tracker = None
        self._scan_failures = []
        self._phase = Phase.READY
        self._hub.emit("ready")
        if self._phase is Phase.READY:
            self._phase = Phase.STEADY

    def _report_error(self, exc: BaseException) -> None:
        if self._phase is Phase.INITIALIZING:
            self._scan_failures.append(exc)
        logger.error("Mirror error: %s", exc)
        self._hub.emit("error", exc)


def sync(pattern: str, dest, source: Optional[Any] = None, **options: Any) -> MirrorSession:
    """
    Build an unstarted session. The working directory and a relative
    destination are both taken against the process's current directory at
    call time. Register observers, then start().
    """
    here = Path.cwd()
    opts = SyncOptions.from_mapping(options, cwd=here)
    if dest is not None and str(dest) != "":
        dest = here / Path(dest).expanduser()
    return MirrorSession(pattern, dest, opts, source=source)
