from __future__ import annotations

import os
from pathlib import PurePath

from .paths import normalize_rel


class VisitTracker:
    """
    Relative paths known to exist in the source, as seen through add events.

    Filled while the session initializes. settle() is the ready boundary: the
    set is dropped there unless deletions are tracked continuously, in which
    case record()/evict() keep it current for the rest of the session.
    """

    def __init__(self, continuous: bool = False):
        self.continuous = continuous
        self._paths: set[str] = set()
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def record(self, rel_path) -> None:
        if not self._active:
            return
        rel = normalize_rel(rel_path)
        if not rel:
            return
        self._paths.add(rel)
        for parent in PurePath(rel).parents:
            p = str(parent)
            if p == os.curdir:
                break
            self._paths.add(p)

    def evict(self, rel_path) -> None:
        if not self._active:
            return
        rel = normalize_rel(rel_path)
        prefix = rel + os.sep
        self._paths = {p for p in self._paths if p != rel and not p.startswith(prefix)}

    def settle(self) -> bool:
        if not self.continuous:
            self._paths = set()
            self._active = False
        return self._active

    def paths(self) -> frozenset:
        return frozenset(self._paths)

    def __contains__(self, rel_path) -> bool:
        return normalize_rel(rel_path) in self._paths

    def __len__(self) -> int:
        return len(self._paths)
