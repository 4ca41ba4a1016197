# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Message and folder records shared by the session, watcher and dispatcher."""

from __future__ import annotations

from dataclasses import dataclass


UNKNOWN_SENDER = "(unknown sender)"
UNKNOWN_RECIPIENT = "(unknown recipient)"
NO_SUBJECT = "(no subject)"
UNKNOWN_DATE = "(unknown date)"

SEEN_FLAG = "\\Seen"
RECENT_FLAG = "\\Recent"
DELETED_FLAG = "\\Deleted"


@dataclass(frozen=True)
class MessageHeaders:
    """Decoded envelope headers of a message.

    Missing headers are replaced with readable placeholders so that a
    notice can always be formatted.
    """

    sender: str = UNKNOWN_SENDER
    recipient: str = UNKNOWN_RECIPIENT
    subject: str = NO_SUBJECT
    date: str = UNKNOWN_DATE
    message_id: str = ""


@dataclass
class MessageRecord:
    """One message as returned by a fetch.

    Attributes:
        seqno: Sequence number at fetch time.
        uid: Server-assigned UID, stable within the folder.
        flags: Flags reported by the server (e.g. ``\\Seen``).
        headers: Decoded envelope headers.
        body: Raw ``TEXT`` section (empty for header-only fetches).
        mime_header: Raw Content-Type / Content-Transfer-Encoding /
            MIME-Version header lines needed to MIME-parse ``body``.
    """

    seqno: int
    uid: int
    flags: tuple[str, ...] = ()
    headers: MessageHeaders = MessageHeaders()
    body: bytes = b""
    mime_header: bytes = b""

    @property
    def is_unread(self) -> bool:
        return SEEN_FLAG not in self.flags

    @property
    def is_recent(self) -> bool:
        return RECENT_FLAG in self.flags


@dataclass(frozen=True)
class FolderInfo:
    """Result of selecting a folder.

    Attributes:
        name: Folder name as requested.
        total: Number of messages in the folder.
        recent: Number of messages with the ``\\Recent`` flag.
        read_only: Whether the folder was opened with EXAMINE.
    """

    name: str
    total: int
    recent: int = 0
    read_only: bool = False
