# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IMAP mailbox watcher that announces each new message once.

- MailboxWatcher: connection lifecycle, push/poll detection, reconnects
- NotificationDispatcher: notice formatting, delivery, post-processing
- MailboxSession: IMAP operations over imaplib
- list_messages / test_connection: read-only helpers on short sessions
"""

from mailbot.config import (
    ConfigError,
    ConnectionConfig,
    MailbotConfig,
    PostAction,
)
from mailbot.broadcast import (
    Broadcaster,
    DispatchError,
    LogBroadcaster,
    SlackBroadcaster,
)
from mailbot.content import ParsedContent, ParseError, clean, parse
from mailbot.dispatcher import (
    DispatchSummary,
    NotificationDispatcher,
    format_notice,
)
from mailbot.ledger import DedupLedger
from mailbot.mailbox import ListFilter, list_messages, test_connection
from mailbot.session import (
    AuthError,
    ConnectError,
    IdleError,
    MailboxError,
    MailboxSession,
    ProtocolError,
)
from mailbot.types import FolderInfo, MessageHeaders, MessageRecord
from mailbot.watcher import MailboxWatcher, WatcherState, WatcherStatus


__all__ = [
    # config
    "ConfigError",
    "ConnectionConfig",
    "MailbotConfig",
    "PostAction",
    # content
    "ParseError",
    "ParsedContent",
    "clean",
    "parse",
    # dispatch
    "Broadcaster",
    "DispatchError",
    "DispatchSummary",
    "LogBroadcaster",
    "NotificationDispatcher",
    "SlackBroadcaster",
    "format_notice",
    # session
    "AuthError",
    "ConnectError",
    "DedupLedger",
    "FolderInfo",
    "IdleError",
    "MailboxError",
    "MailboxSession",
    "MessageHeaders",
    "MessageRecord",
    "ProtocolError",
    # watcher
    "MailboxWatcher",
    "WatcherState",
    "WatcherStatus",
    # read-only
    "ListFilter",
    "list_messages",
    "test_connection",
]
