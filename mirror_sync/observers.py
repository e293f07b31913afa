from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

MUTATION_EVENTS = ("add", "addDir", "change", "unlink", "unlinkDir")
EVENTS = MUTATION_EVENTS + ("all", "ready", "error")

Callback = Callable[..., object]

logger = logging.getLogger("mirror_sync.observers")


class EventHub:
    """
    Explicit per-event observer registration.

    Payloads:
        add/addDir/change/unlink/unlinkDir -> (rel_path, dest_path, stat)
        all                                -> (kind, rel_path, dest_path, stat)
        ready                              -> ()
        error                              -> (exc,)
    """

    def __init__(self):
        self._callbacks: Dict[str, List[Callback]] = {name: [] for name in EVENTS}
        self._guard = threading.Lock()

    @staticmethod
    def _check(event: str) -> None:
        if event not in EVENTS:
            raise ValueError(f"Unknown event {event!r} (expected one of: {', '.join(EVENTS)})")

    def on(self, event: str, callback: Callback) -> Callback:
        self._check(event)
        with self._guard:
            self._callbacks[event].append(callback)
        return callback

    def off(self, event: str, callback: Callback) -> None:
        self._check(event)
        with self._guard:
            try:
                self._callbacks[event].remove(callback)
            except ValueError:
                pass

    def has_observers(self, event: str) -> bool:
        self._check(event)
        return bool(self._callbacks[event])

    def emit(self, event: str, *args) -> None:
        self._check(event)
        with self._guard:
            callbacks = list(self._callbacks[event])
        for cb in callbacks:
            try:
                cb(*args)
            except Exception:
                logger.exception("Observer for %r raised", event)

    def emit_mutation(self, kind: str, rel_path: str, dest_path, stat) -> None:
        self.emit(kind, rel_path, dest_path, stat)
        self.emit("all", kind, rel_path, dest_path, stat)
