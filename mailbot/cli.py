# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command-line entry point.

Subcommands:

- ``mailbot watch``: watch the mailbox and send notices until SIGINT or
  SIGTERM.
- ``mailbot list [all|unread|recent]``: print the newest messages.
- ``mailbot test``: check that the server accepts the configured account.

Exit codes: 0 success, 1 configuration error, 2 connection or
authentication error, 3 runtime error.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from mailbot.broadcast import build_broadcaster
from mailbot.config import MAX_FETCH_LIMIT, ConfigError, MailbotConfig
from mailbot.dispatcher import NotificationDispatcher
from mailbot.logging import configure_logging
from mailbot.mailbox import (
    ListFilter,
    format_listing,
    list_messages,
    test_connection,
)
from mailbot.session import AuthError, MailboxError
from mailbot.watcher import MailboxWatcher


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_CONNECTION_ERROR = 2
EXIT_RUNTIME_ERROR = 3


def _fetch_limit(value: str) -> int:
    try:
        limit = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if not 1 <= limit <= MAX_FETCH_LIMIT:
        raise argparse.ArgumentTypeError(
            f"must be between 1 and {MAX_FETCH_LIMIT}: {limit}"
        )
    return limit


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailbot",
        description="Watch an IMAP mailbox and announce new mail",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to mailbot.yaml (default: XDG config directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("watch", help="Watch for new mail until stopped")

    list_parser = subparsers.add_parser("list", help="List newest messages")
    list_parser.add_argument(
        "filter",
        nargs="?",
        default=ListFilter.ALL.value,
        choices=[f.value for f in ListFilter],
        help="Which messages to list (default: all)",
    )
    list_parser.add_argument(
        "--limit",
        type=_fetch_limit,
        default=None,
        help="Maximum number of messages (default: list.fetch_limit)",
    )
    list_parser.add_argument(
        "--folder",
        default=None,
        help="Folder to list (default: imap.folder)",
    )

    subparsers.add_parser("test", help="Test the IMAP connection")
    return parser


def cmd_watch(config: MailbotConfig) -> int:
    """Run the watcher until a shutdown signal arrives."""
    dispatcher = NotificationDispatcher(
        build_broadcaster(config.notify),
        post_action=config.watcher.post_action,
        max_content_length=config.notify.max_content_length,
    )
    watcher = MailboxWatcher(
        poll_interval=config.watcher.poll_interval,
        reconnect_delay=config.watcher.reconnect_delay,
    )
    dispatcher.bind(watcher)

    shutdown = threading.Event()

    def shutdown_handler(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down...", signum)
        shutdown.set()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    try:
        watcher.start(config.imap, dispatcher)
    except AuthError as e:
        logger.critical("Authentication failed: %s", e)
        return EXIT_CONNECTION_ERROR
    except MailboxError as e:
        logger.critical("Could not start watcher: %s", e)
        return EXIT_CONNECTION_ERROR

    try:
        while not shutdown.wait(timeout=60):
            status = watcher.status()
            logger.debug(
                "Watcher status: state=%s, folder total=%d",
                status.state.value,
                status.last_seen_total,
            )
        return EXIT_OK
    except Exception as e:
        logger.exception("Fatal runtime error: %s", e)
        return EXIT_RUNTIME_ERROR
    finally:
        watcher.stop()


def cmd_list(
    config: MailbotConfig,
    filter: ListFilter,
    limit: int | None,
    folder: str | None,
) -> int:
    folder = folder or config.imap.folder
    try:
        records = list_messages(
            config.imap,
            folder,
            filter,
            config.fetch_limit if limit is None else limit,
        )
    except MailboxError as e:
        logger.error("Failed to list messages: %s", e)
        print(f"Failed to list messages: {e}", file=sys.stderr)
        return EXIT_CONNECTION_ERROR
    print(format_listing(records, folder, filter))
    return EXIT_OK


def cmd_test(config: MailbotConfig) -> int:
    imap = config.imap
    try:
        test_connection(imap)
    except MailboxError as e:
        print(f"Connection test failed: {e}", file=sys.stderr)
        return EXIT_CONNECTION_ERROR
    print(f"Connection OK\nServer: {imap.host}:{imap.port}")
    print(f"User: {imap.username}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Returns:
        Process exit code.
    """
    args = build_parser().parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.INFO,
        add_secret_filter=True,
    )

    try:
        config = MailbotConfig.from_yaml(args.config)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    if not config.is_configured:
        logger.critical(
            "IMAP account not configured: imap.host, imap.username and "
            "imap.password are required"
        )
        return EXIT_CONFIG_ERROR

    if args.command == "watch":
        return cmd_watch(config)
    if args.command == "list":
        return cmd_list(
            config, ListFilter(args.filter), args.limit, args.folder
        )
    return cmd_test(config)


if __name__ == "__main__":
    sys.exit(main())
