"""Shared pytest fixtures for mirror_sync tests."""
import logging
import os
import time
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from mirror_sync.log import LOGGER_NAME
from mirror_sync.session import MirrorSession, SyncOptions

PAST = 1_000_000_000  # 2001-09-09


class FakeSource:
    """Scripted change source: plays `initial` on start, then `ready`."""

    def __init__(self, watch_root: Path, initial: Optional[List[Tuple]] = None):
        self.watch_root = watch_root
        self.initial = list(initial or [])
        self.sink = None
        self.closed = 0

    def start(self, sink) -> None:
        self.sink = sink
        for event in self.initial:
            sink.handle_event(*event)
        sink.handle_ready()

    def close(self) -> None:
        self.closed += 1

    def emit(self, kind: str, rel_path: str, stat=None) -> None:
        self.sink.handle_event(kind, rel_path, stat)

    def fail(self, exc: BaseException) -> None:
        self.sink.handle_error(exc)


class Recorder:
    """Collects everything a session emits, in order."""

    def __init__(self, session: MirrorSession):
        self.events: List[Tuple] = []
        for name in ("add", "addDir", "change", "unlink", "unlinkDir", "ready", "error"):
            session.on(name, self._capture(name))
        session.on("all", lambda *args: self.events.append(("all",) + args))

    def _capture(self, name: str) -> Callable:
        return lambda *args: self.events.append((name,) + args)

    def kinds(self) -> List[str]:
        return [e[0] for e in self.events]

    def named(self, name: str) -> List[Tuple]:
        return [e for e in self.events if e[0] == name]


def wait_for(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def set_times(path: Path, when: int = PAST) -> None:
    os.utime(path, (when, when))


@pytest.fixture
def src_dir(tmp_path: Path) -> Path:
    src = tmp_path / "src"
    src.mkdir()
    return src


@pytest.fixture
def dest_dir(tmp_path: Path) -> Path:
    dest = tmp_path / "dest"
    dest.mkdir()
    return dest


@pytest.fixture
def make_session(src_dir: Path, dest_dir: Path):
    """Build a session over a FakeSource: make_session(initial=[...], deletion=..., timestamps=...)."""
    sessions = []

    def _make(initial=None, pattern=".", dest=None, **options):
        source = FakeSource(src_dir, initial)
        opts = SyncOptions(cwd=src_dir, **options)
        session = MirrorSession(pattern, dest or dest_dir, opts, source=source)
        sessions.append(session)
        return session, source

    yield _make
    for s in sessions:
        s.close()


@pytest.fixture
def restore_logger():
    """setup_logger() installs handlers on the package logger; undo that."""
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    level, propagate = logger.level, logger.propagate
    yield logger
    for h in list(logger.handlers):
        if h not in handlers:
            logger.removeHandler(h)
            h.close()
    logger.setLevel(level)
    logger.propagate = propagate
