"""Tests for the watchdog-backed change source."""
import os
import threading
from pathlib import Path

import pytest

from conftest import wait_for
from mirror_sync.source import IgnoreMatcher, Selector, WatchdogEventSource


class RecordingSink:
    def __init__(self):
        self.events = []
        self.errors = []
        self.ready = threading.Event()
        self._guard = threading.Lock()

    def handle_event(self, kind, rel_path, stat=None):
        with self._guard:
            self.events.append((kind, rel_path, stat))

    def handle_ready(self):
        with self._guard:
            self.events.append(("ready", None, None))
        self.ready.set()

    def handle_error(self, exc):
        self.errors.append(exc)

    def pairs(self):
        with self._guard:
            return [(k, p) for k, p, _ in self.events]


def j(*parts):
    return os.path.join(*parts)


@pytest.fixture
def tree(src_dir: Path) -> Path:
    (src_dir / "b.txt").write_text("b")
    (src_dir / "a").mkdir()
    (src_dir / "a" / "x.js").write_text("x")
    (src_dir / "a" / "deep").mkdir()
    (src_dir / "a" / "deep" / "y.js").write_text("y")
    (src_dir / "a" / "notes.log").write_text("log")
    (src_dir / "node_modules").mkdir()
    (src_dir / "node_modules" / "pkg.js").write_text("pkg")
    return src_dir


def scan(cwd: Path, pattern: str = ".", **kwargs):
    sink = RecordingSink()
    source = WatchdogEventSource(pattern, cwd, persistent=False, **kwargs)
    source.start(sink)
    source.close()
    return sink


class TestInitialScan:
    def test_everything_under_literal_dir(self, tree):
        sink = scan(tree)
        assert sink.pairs() == [
            ("addDir", "a"),
            ("addDir", j("a", "deep")),
            ("add", j("a", "deep", "y.js")),
            ("add", j("a", "notes.log")),
            ("add", j("a", "x.js")),
            ("add", "b.txt"),
            ("addDir", "node_modules"),
            ("add", j("node_modules", "pkg.js")),
            ("ready", None),
        ]
        assert sink.errors == []

    def test_stats_are_supplied(self, tree):
        sink = scan(tree)
        for kind, rel, stat in sink.events[:-1]:
            assert stat is not None
            assert stat.st_size == os.stat(tree / rel).st_size

    def test_subdirectory_pattern_keeps_cwd_relative_paths(self, tree):
        sink = scan(tree, "a/deep")
        assert sink.pairs() == [
            ("addDir", j("a", "deep")),
            ("add", j("a", "deep", "y.js")),
            ("ready", None),
        ]

    def test_literal_directory_reported_with_its_stat(self, tree):
        os.utime(tree / "a", (1_000_000_000, 1_000_000_000))
        sink = scan(tree, "a")
        kind, rel, stat = sink.events[0]
        assert (kind, rel) == ("addDir", "a")
        assert stat.st_mtime == 1_000_000_000

    def test_glob_base_is_not_reported(self, tree):
        sink = scan(tree, "a/*.js")
        assert sink.pairs() == [("add", j("a", "x.js")), ("ready", None)]

    def test_brace_alternatives(self, src_dir):
        (src_dir / "lib").mkdir()
        for name in ("a.js", "b.ts", "c.css"):
            (src_dir / "lib" / name).write_text(name)
        sink = scan(src_dir, "lib/*.{js,ts}")
        assert sink.pairs() == [("add", j("lib", "a.js")), ("add", j("lib", "b.ts")), ("ready", None)]

    def test_brace_alternatives_in_directory_segment(self, tree):
        sink = scan(tree, "{a,node_modules}/*.js")
        assert [p for k, p in sink.pairs() if k == "add"] == [j("a", "x.js"), j("node_modules", "pkg.js")]

    def test_glob_pattern(self, tree):
        sink = scan(tree, "a/**/*.js")
        assert [p for k, p in sink.pairs() if k == "add"] == [j("a", "deep", "y.js"), j("a", "x.js")]

    def test_top_level_glob_is_anchored(self, tree):
        sink = scan(tree, "*.txt")
        assert sink.pairs() == [("add", "b.txt"), ("ready", None)]

    def test_literal_file(self, tree):
        sink = scan(tree, "a/x.js")
        assert sink.pairs() == [("add", j("a", "x.js")), ("ready", None)]

    def test_ignored(self, tree):
        sink = scan(tree, ignored=["node_modules/", "*.log"])
        paths = [p for _, p in sink.pairs()]
        assert "node_modules" not in paths
        assert j("node_modules", "pkg.js") not in paths
        assert j("a", "notes.log") not in paths
        assert j("a", "x.js") in paths

    def test_depth_zero(self, tree):
        sink = scan(tree, depth=0)
        assert sink.pairs() == [
            ("addDir", "a"),
            ("add", "b.txt"),
            ("addDir", "node_modules"),
            ("ready", None),
        ]

    def test_depth_one(self, tree):
        sink = scan(tree, depth=1)
        paths = [p for _, p in sink.pairs()]
        assert j("a", "deep") in paths
        assert j("a", "deep", "y.js") not in paths

    def test_missing_watch_root(self, tmp_path):
        sink = scan(tmp_path, "nowhere/**")
        assert sink.pairs() == [("ready", None)]
        assert len(sink.errors) == 1
        assert sink.errors[0].filename == str(tmp_path / "nowhere")

    def test_watch_root(self, tree):
        assert WatchdogEventSource("a/**/*.js", tree).watch_root == tree / "a"
        assert WatchdogEventSource(".", tree).watch_root == tree
        assert WatchdogEventSource("a/x.js", tree).watch_root == tree / "a"


class TestSelector:
    def test_glob_dirs_selected_when_matching(self, tree):
        selector = Selector(tree, "a/**")
        assert selector.selects("a/deep", is_dir=True)
        assert selector.selects("a/x.js", is_dir=False)

    def test_live_path_under_ignored_dir(self, tree):
        selector = Selector(tree, ".", ignored=["node_modules/"])
        assert not selector.selects_any("node_modules/pkg.js", is_dir=False)
        assert selector.selects_any("a/x.js", is_dir=False)

    def test_ignore_matcher_dir_suffix(self, tree):
        matcher = IgnoreMatcher(tree, ["build/"])
        assert matcher.is_ignored("build", is_dir=True)
        assert not matcher.is_ignored("build", is_dir=False)

    def test_empty_ignore_list(self, tree):
        assert not IgnoreMatcher(tree, []).is_ignored("anything", is_dir=False)


class TestLiveEvents:
    """Real watchdog observer; polls with a timeout."""

    def test_created_file_is_reported(self, src_dir):
        sink = RecordingSink()
        source = WatchdogEventSource(".", src_dir)
        try:
            source.start(sink)
            assert sink.ready.is_set()
            (src_dir / "new.txt").write_text("hello")
            assert wait_for(lambda: ("add", "new.txt") in sink.pairs())
        finally:
            source.close()

    def test_deleted_file_is_reported(self, src_dir):
        (src_dir / "old.txt").write_text("bye")
        sink = RecordingSink()
        source = WatchdogEventSource(".", src_dir)
        try:
            source.start(sink)
            (src_dir / "old.txt").unlink()
            assert wait_for(lambda: ("unlink", "old.txt") in sink.pairs())
        finally:
            source.close()

    def test_events_after_close_are_dropped(self, src_dir):
        sink = RecordingSink()
        source = WatchdogEventSource(".", src_dir)
        source.start(sink)
        source.close()
        before = sink.pairs()
        source._live([("add", str(src_dir / "x.txt"))])
        assert sink.pairs() == before
