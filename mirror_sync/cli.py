from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

from . import __version__
from .errors import ConfigError
from .log import setup_logger
from .policy import DeletionMode, TimestampMode
from .session import MirrorSession, SyncOptions


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="mirror-sync", description="Mirror a pattern-selected source tree into a destination folder.")
    p.add_argument("pattern", help="Selection pattern, relative to --cwd (e.g. '.' or 'src/**/*.js').")
    p.add_argument("dest", help="Destination folder (created if missing).")
    p.add_argument("--cwd", type=str, default=None, help="Source working directory (default: current directory).")
    p.add_argument("--timestamps", choices=[m.value for m in TimestampMode], default=None, help="Which entries keep source timestamps (default: all).")
    p.add_argument("--delete", choices=[m.value for m in DeletionMode], default=None, help="Remove destination entries missing from the source (default: none).")
    p.add_argument("--depth", type=int, default=None, help="Max subfolder levels below the pattern base.")
    p.add_argument("--ignore", action="append", default=None, metavar="PATTERN", help="Gitignore-style pattern to skip; repeatable.")
    p.add_argument("--once", action="store_true", help="Run the initial sync and exit.")
    p.add_argument("--log-dir", type=str, default=None, help="Also write a daily log file here.")
    p.add_argument("--config", type=str, default=None, help="JSON file with default options.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    p.add_argument("--no-color", action="store_true", help="Plain console output even on a terminal.")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def load_config_file(path: Path) -> dict:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must hold a JSON object.")
    return payload


def build_options(args: argparse.Namespace, here: Optional[Path] = None) -> SyncOptions:
    here = here or Path.cwd()
    saved = load_config_file(Path(args.config)) if args.config else {}

    overrides = {
        "cwd": args.cwd,
        "timestamps": args.timestamps,
        "deletion": args.delete,
        "depth": args.depth,
        "ignored": args.ignore,
    }
    values = dict(saved)
    values.update({k: v for k, v in overrides.items() if v is not None})
    if args.once:
        values["persistent"] = False

    cwd = Path(values.get("cwd") or here).expanduser()
    values["cwd"] = cwd if cwd.is_absolute() else here / cwd
    return SyncOptions.from_mapping(values)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logger = setup_logger(
        Path(args.log_dir).expanduser() if args.log_dir else None,
        level=logging.DEBUG if args.verbose else logging.INFO,
        use_color=False if args.no_color else None,
    )

    here = Path.cwd()
    try:
        opts = build_options(args, here)
        session = MirrorSession(args.pattern, here / Path(args.dest).expanduser(), opts)
    except ConfigError as e:
        logger.error("Config error: %s", e)
        return 2

    logger.info("Source: %s", session.source_root)
    logger.info("Dest  : %s", session.dest_root)

    errors = []
    session.on("error", errors.append)

    session.start()
    if not opts.persistent:
        session.close()
        logger.info("Sync done (%d error%s).", len(errors), "" if len(errors) == 1 else "s")
        return 1 if errors else 0

    logger.info("Watching... (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Stopping...")
    finally:
        session.close()
        logger.info("Stopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
