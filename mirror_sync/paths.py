from __future__ import annotations

import ntpath
import os
import posixpath
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .errors import PathEscapeError

GLOB_MAGIC = frozenset("*?[{")


def is_absolute_pattern(pattern: str) -> bool:
    return posixpath.isabs(pattern) or ntpath.isabs(pattern) or bool(ntpath.splitdrive(pattern)[0])


def _has_magic(segment: str) -> bool:
    return any(ch in GLOB_MAGIC for ch in segment)


def split_pattern(pattern: str) -> Tuple[str, Optional[str]]:
    """
    Split a selection pattern into (base, glob).

    base is the leading run of literal segments ("." for none), glob is the
    remainder or None when the whole pattern is a literal path.
        "."             -> (".", None)
        "src/**/*.js"   -> ("src", "**/*.js")
        "./docs/a.txt"  -> ("docs/a.txt", None)
    """
    parts = [p for p in pattern.replace("\\", "/").split("/") if p not in ("", ".")]
    base: list[str] = []
    for i, part in enumerate(parts):
        if _has_magic(part):
            return ("/".join(base) or "."), "/".join(parts[i:])
        base.append(part)
    return ("/".join(base) or "."), None


def expand_braces(pattern: str) -> List[str]:
    """
    Expand "{a,b}" alternations, which gitwildmatch lines do not understand,
    into one pattern per alternative. Groups nest; a group with no top-level
    comma or no closing brace is kept literally.
        "lib/*.{js,ts}"   -> ["lib/*.js", "lib/*.ts"]
        "{a,b{1,2}}/x"    -> ["a/x", "b1/x", "b2/x"]
    """
    start = pattern.find("{")
    while start != -1:
        depth = 0
        cuts = []
        end = None
        for i in range(start, len(pattern)):
            ch = pattern[i]
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
            elif ch == "," and depth == 1:
                cuts.append(i)
        if end is not None and cuts:
            head, tail = pattern[:start], pattern[end + 1:]
            bounds = [start] + cuts + [end]
            expanded: List[str] = []
            for lo, hi in zip(bounds, bounds[1:]):
                for item in expand_braces(head + pattern[lo + 1:hi] + tail):
                    if item not in expanded:
                        expanded.append(item)
            return expanded
        start = pattern.find("{", start + 1)
    return [pattern]


def normalize_rel(rel_path: Union[str, os.PathLike]) -> str:
    rel = os.path.normpath(os.fspath(rel_path))
    return "" if rel == os.curdir else rel


def dst_for(dest_root: Union[str, os.PathLike], rel_path: Union[str, os.PathLike]) -> Path:
    root = Path(dest_root)
    raw = os.fspath(rel_path)
    if is_absolute_pattern(raw):
        raise PathEscapeError(raw, root)
    rel = normalize_rel(raw)
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        raise PathEscapeError(raw, root)
    return root / rel if rel else root
