#!/usr/bin/env python3
"""
clusterseed backup tool

Captures a consistent backup from a running member into a backup directory.
The exit code is the contract with callers:

    0  backup published
    2  invalid arguments
    3  source unreachable or transfer failed
    4  a backup with that name already exists
    5  snapshot failed consistency checks
    8  invalid configuration (e.g. backup name)
    1  anything else
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .._utils import logger, parse_address
from ..config import BackupConfig
from ..errors import SeedingError
from .capture import capture
from .utils import generate_backup_name

EXIT_OK = 0
EXIT_UNEXPECTED = 1


def configure_logging(verbose: bool = False) -> None:
    """Attach a stdout handler to the package logger unless disabled by env."""
    if os.getenv("CLUSTERSEED_DISABLE_APP_LOGGING", "false").lower() == "true":
        return

    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(console_handler)


def build_parser() -> argparse.ArgumentParser:
    defaults = BackupConfig.from_env()
    parser = argparse.ArgumentParser(
        prog="clusterseed-backup",
        description="Capture a consistent backup from a running cluster member",
    )
    parser.add_argument("--from", dest="source_address", required=True,
                        help="Backup address of the source member (host:port)")
    parser.add_argument("--backup-dir", default=defaults.backup_dir,
                        help="Root directory holding backups")
    parser.add_argument("--name", default=None,
                        help="Name of the backup, unique within the backup directory "
                             "(default: snapshot_<UTC timestamp>)")
    parser.add_argument("--timeout", type=float, default=defaults.transfer_timeout,
                        help="Seconds allowed for the snapshot transfer")
    parser.add_argument("--connect-timeout", type=float, default=defaults.connect_timeout,
                        help="Seconds allowed to connect to the source")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log debug output")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the backup tool and return its exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    try:
        parse_address(args.source_address)
    except ValueError as e:
        parser.error(str(e))

    backup_name = generate_backup_name() if args.name is None else args.name

    try:
        artifact = asyncio.run(capture(
            args.source_address,
            Path(args.backup_dir),
            backup_name,
            connect_timeout=args.connect_timeout,
            transfer_timeout=args.timeout,
        ))
    except SeedingError as e:
        logger.error(f"Backup failed [{type(e).__name__}, exit {e.exit_code}]: {e}")
        return e.exit_code
    except Exception as e:
        logger.error(f"Backup failed [{type(e).__name__}, exit {EXIT_UNEXPECTED}]: {e}")
        return EXIT_UNEXPECTED

    print(artifact.path)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
