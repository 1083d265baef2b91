from __future__ import annotations

import argparse
import asyncio
import logging

from evolved_badge.badgeconfig import BadgeConfig
from evolved_badge.badgeconfig import write_new_config
from evolved_badge.badgedaemon import BadgeDaemon
from evolved_badge.badgedaemon import ExitCode

LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="evolved-badge",
        description="Show the Evolution unread mail count as a launcher badge.",
    )
    parser.add_argument(
        "--debug",
        help="Enable debug output.",
        default=False,
        action="store_true",
    )
    parser.add_argument(
        "--desktop-file",
        help=(
            "Desktop file name from /usr/share/applications or "
            "~/.local/share/applications which is used for launching Evolution. "
            "Default: org.gnome.Evolution.desktop"
        ),
        default=None,
    )
    parser.add_argument(
        "--config",
        help="The path to an optional configuration file.",
        default=None,
    )
    parser.add_argument(
        "--log-file",
        help="Also write the log to this file.",
        default=None,
    )
    parser.add_argument(
        "--make-config",
        help="Create a default configuration file at --config and exit.",
        default=False,
        action="store_true",
    )
    parsed = parser.parse_args(args)

    if parsed.make_config and not parsed.config:
        parser.error("--make-config requires --config")

    return parsed


def add_file_handler_to_logging(log_filepath: str) -> None:
    """Add a file handler to the root logger."""
    file_handler = logging.FileHandler(log_filepath)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.getLogger().addHandler(file_handler)


def main(*, cli_args: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(cli_args)

    if args.make_config:
        write_new_config(args.config)
        return ExitCode.OK

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    logging.debug("Debug output enabled")

    if args.log_file:
        add_file_handler_to_logging(args.log_file)

    try:
        config = BadgeConfig(args.config)

    except ValueError as error:
        logging.error("%s", error)
        return ExitCode.CONFIG

    daemon = BadgeDaemon(config, desktop_file=args.desktop_file)

    return asyncio.run(daemon.run())


if __name__ == "__main__":
    raise SystemExit(main())
