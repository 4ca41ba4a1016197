# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Read-only mailbox operations on short-lived sessions.

These never touch the watcher's session: each call opens its own
connection and always closes it, including on error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from enum import Enum

from mailbot.config import DEFAULT_FETCH_LIMIT, ConnectionConfig
from mailbot.session import MailboxSession, ProtocolError
from mailbot.types import MessageRecord


logger = logging.getLogger(__name__)


class ListFilter(Enum):
    """Which messages ``list_messages()`` returns."""

    ALL = "all"
    UNREAD = "unread"
    RECENT = "recent"


_SEARCH_KEYS = {
    ListFilter.ALL: "ALL",
    ListFilter.UNREAD: "UNSEEN",
    ListFilter.RECENT: "RECENT",
}

_FILTER_LABELS = {
    ListFilter.ALL: "",
    ListFilter.UNREAD: "unread ",
    ListFilter.RECENT: "recent ",
}


def list_messages(
    config: ConnectionConfig,
    folder: str | None = None,
    filter: ListFilter = ListFilter.ALL,
    limit: int = DEFAULT_FETCH_LIMIT,
    *,
    session_factory: Callable[
        [ConnectionConfig], MailboxSession
    ] = MailboxSession.open,
) -> list[MessageRecord]:
    """List the newest messages of a folder, headers only.

    ``ALL`` falls back to a sequence-number range when the server rejects
    an unfiltered search.

    Args:
        config: Connection settings.
        folder: Folder to list.  Defaults to the configured folder.
        filter: Message filter.
        limit: Maximum number of messages.
        session_factory: Opens a connected session.

    Returns:
        Up to ``limit`` records, newest first.

    Raises:
        ConnectError: If the server cannot be reached.
        AuthError: If the credentials are rejected.
        ProtocolError: If the folder cannot be read.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1: {limit}")
    folder = folder or config.folder

    session = session_factory(config)
    try:
        info = session.select_folder(folder, read_only=True)
        logger.info(
            "Opened %s read-only: total=%d, recent=%d",
            folder,
            info.total,
            info.recent,
        )
        if info.total == 0:
            return []

        try:
            return _search_newest(session, filter, limit)
        except ProtocolError as e:
            if filter is not ListFilter.ALL or e.disconnected:
                raise
            logger.warning(
                "SEARCH ALL rejected, listing by sequence number: %s", e
            )

        start = max(1, info.total - limit + 1)
        logger.debug("Fetching sequence range %d:%d", start, info.total)
        records = session.fetch_range(start, info.total)
        records.sort(key=lambda record: record.seqno, reverse=True)
        return records[:limit]
    finally:
        session.close()


def _search_newest(
    session: MailboxSession, filter: ListFilter, limit: int
) -> list[MessageRecord]:
    uids = session.search(_SEARCH_KEYS[filter])
    if not uids:
        logger.info("No messages match %s", filter.value)
        return []

    newest = sorted(uids)[-limit:]
    records = session.fetch(newest, headers_only=True)
    records.sort(key=lambda record: record.uid, reverse=True)
    return records


def test_connection(
    config: ConnectionConfig,
    *,
    session_factory: Callable[
        [ConnectionConfig], MailboxSession
    ] = MailboxSession.open,
) -> None:
    """Open and close a session to check settings.

    Raises:
        ConnectError: If the server cannot be reached.
        AuthError: If the credentials are rejected.
    """
    session = session_factory(config)
    try:
        logger.info(
            "Connection test to %s:%d succeeded", config.host, config.port
        )
    finally:
        session.close()


# Not a pytest test function
test_connection.__test__ = False  # type: ignore[attr-defined]


def format_listing(
    records: Sequence[MessageRecord],
    folder: str,
    filter: ListFilter = ListFilter.ALL,
) -> str:
    """Render a listing for terminal output."""
    label = _FILTER_LABELS[filter]
    if not records:
        return f'No {label}messages in "{folder}"'

    lines = [f'{len(records)} {label}messages in "{folder}":', ""]
    for index, record in enumerate(records, start=1):
        markers = ""
        if record.is_unread:
            markers += "[new] "
        if record.is_recent:
            markers += "[recent] "
        lines.append(f"{index}. {markers}{record.headers.subject}")
        lines.append(f"   From: {record.headers.sender}")
        lines.append(f"   Date: {record.headers.date}")
        lines.append(f"   UID: {record.uid}")
        lines.append("")
    return "\n".join(lines).rstrip()
