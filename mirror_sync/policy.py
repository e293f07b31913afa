from __future__ import annotations

from enum import Enum
from typing import Union

from .errors import ConfigError


class EntryKind(str, Enum):
    FILE = "file"
    DIR = "dir"


class TimestampMode(str, Enum):
    """Which entry kinds get their source atime/mtime copied onto the destination."""

    ALL = "all"
    FILE = "file"
    DIR = "dir"
    NONE = "none"

    @classmethod
    def parse(cls, value: Union[str, "TimestampMode", None]) -> "TimestampMode":
        if value is None:
            return cls.ALL
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigError(f"Unknown timestamp mode {value!r} (expected one of: {choices})") from None


class DeletionMode(str, Enum):
    """
    none       - never remove anything from the destination
    initial    - sweep destination entries missing from the source once, at ready
    continuous - sweep at ready, then mirror live removals as well
    """

    NONE = "none"
    INITIAL = "initial"
    CONTINUOUS = "continuous"

    @classmethod
    def parse(cls, value: Union[str, bool, "DeletionMode", None]) -> "DeletionMode":
        if value is None or value is False:
            return cls.NONE
        if value is True:
            return cls.CONTINUOUS
        try:
            return cls(value)
        except ValueError:
            choices = ", ".join(m.value for m in cls)
            raise ConfigError(f"Unknown deletion mode {value!r} (expected one of: {choices})") from None

    @property
    def sweeps(self) -> bool:
        return self is not DeletionMode.NONE

    @property
    def live(self) -> bool:
        return self is DeletionMode.CONTINUOUS


_PRESERVE = {
    TimestampMode.ALL: {EntryKind.FILE, EntryKind.DIR},
    TimestampMode.FILE: {EntryKind.FILE},
    TimestampMode.DIR: {EntryKind.DIR},
    TimestampMode.NONE: set(),
}


def should_preserve(mode: TimestampMode, kind: EntryKind) -> bool:
    return EntryKind(kind) in _PRESERVE[TimestampMode(mode)]
