from __future__ import annotations

import datetime as dt
import logging
import sys
from pathlib import Path
from typing import Optional

from colorama import init as colorama_init

LOGGER_NAME = "mirror_sync"

FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DATEFMT = "%Y-%m-%d %H:%M:%S"


# -------------------------
# Console styling
# -------------------------

class Ansi:
    RESET = "\x1b[0m"
    RED = "\x1b[31m"
    GREEN = "\x1b[32m"
    YELLOW = "\x1b[33m"
    ORANGE = "\x1b[38;5;208m"
    GREY = "\x1b[90m"
    WHITE = "\x1b[97m"


# Action tags come in families: "SWEEP", "SWEEP_FAIL" and so on share the
# colour of their family, and any "*_FAIL" tag is red.
FAIL_SUFFIX = "_FAIL"
FAMILY_COLORS = {
    "COPY": Ansi.GREEN,
    "MKDIR": Ansi.YELLOW,
    "DELETE": Ansi.ORANGE,
    "RMDIR": Ansi.ORANGE,
    "SWEEP": Ansi.ORANGE,
    "SKIP": Ansi.GREY,
}
DIR_COLOR = Ansi.YELLOW
FILE_COLOR = Ansi.WHITE


def action_color(action: str) -> str:
    if action.endswith(FAIL_SUFFIX):
        return Ansi.RED
    return FAMILY_COLORS.get(action.split("_", 1)[0], "")


def _supports_color(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _paint(text: str, token: str, color: str, count: int = -1) -> str:
    if not color or not token or token not in text:
        return text
    return text.replace(token, f"{color}{token}{Ansi.RESET}", count)


class ColorizingFormatter(logging.Formatter):
    """Paints the action tag and the affected path; whole lines at ERROR and above go red."""

    def __init__(self, use_color: bool, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if not self.use_color:
            return line
        if record.levelno >= logging.ERROR:
            return f"{Ansi.RED}{line}{Ansi.RESET}"

        action = getattr(record, "action", None)
        if action:
            line = _paint(line, action, action_color(action), 1)
        path_text = getattr(record, "path_text", None)
        if path_text:
            line = _paint(line, path_text, DIR_COLOR if getattr(record, "is_dir", False) else FILE_COLOR)
        return line


def _today_log_name(prefix: str = LOGGER_NAME) -> str:
    return f"{prefix}_{dt.date.today():%Y-%m-%d}.log"


def setup_logger(
    log_dir: Optional[Path] = None,
    level: int = logging.INFO,
    stream=None,
    use_color: Optional[bool] = None,
) -> logging.Logger:
    """
    Console handler plus, when log_dir is given, a plain daily log file.
    Colour follows the console stream unless use_color says otherwise.
    Calling it again only adjusts the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    if logger.handlers:
        return logger

    stream = stream or sys.stdout
    if use_color is None:
        use_color = _supports_color(stream)
    if use_color:
        colorama_init()

    console = logging.StreamHandler(stream)
    console.setFormatter(ColorizingFormatter(use_color, fmt=FORMAT, datefmt=DATEFMT))
    logger.addHandler(console)

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / _today_log_name()
        plain = logging.FileHandler(log_path, encoding="utf-8")
        plain.setFormatter(logging.Formatter(fmt=FORMAT, datefmt=DATEFMT))
        logger.addHandler(plain)
        logger.info("Writing log to %s", log_path)

    return logger


def log_action(
    logger: logging.Logger,
    action: str,
    message: str,
    path: Optional[Path] = None,
    is_dir: Optional[bool] = None,
    level: int = logging.INFO,
) -> None:
    """Log "ACTION | message" with the tag and path attached for the console formatter."""
    extra = {"action": action}
    if path is not None:
        extra["path_text"] = str(path)
        extra["is_dir"] = Path(path).is_dir() if is_dir is None else bool(is_dir)
    logger.log(level, "%s | %s", action, message, extra=extra)
