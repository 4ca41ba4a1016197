# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""IMAP mailbox session.

``MailboxSession`` owns a single ``imaplib`` connection and exposes the
operations the watcher needs: select a folder, search and fetch by UID,
flag and expunge, and wait for IMAP IDLE push notifications.

Errors are split so callers can tell them apart:

- ``ConnectError``: the server could not be reached (DNS, refused, timeout).
- ``AuthError``: the server rejected the credentials.
- ``ProtocolError``: a command failed on an established session.  When
  ``disconnected`` is set the transport is gone and the session is useless.
- ``IdleError``: IDLE is unsupported or broke; a ``ProtocolError``.
"""

from __future__ import annotations

import imaplib
import logging
import os
import re
import select
import ssl
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar
from email.parser import BytesHeaderParser
from email.policy import compat32

from mailbot.config import ConnectionConfig, PostAction
from mailbot.content import decode_header_value
from mailbot.types import (
    DELETED_FLAG,
    NO_SUBJECT,
    SEEN_FLAG,
    UNKNOWN_DATE,
    UNKNOWN_RECIPIENT,
    UNKNOWN_SENDER,
    FolderInfo,
    MessageHeaders,
    MessageRecord,
)

_T = TypeVar("_T")


logger = logging.getLogger(__name__)

HEADER_FIELDS = "HEADER.FIELDS (FROM TO SUBJECT DATE MESSAGE-ID)"
MIME_FIELDS = (
    "HEADER.FIELDS (MIME-VERSION CONTENT-TYPE CONTENT-TRANSFER-ENCODING)"
)

_HEADERS_ONLY_ITEMS = f"(UID FLAGS BODY.PEEK[{HEADER_FIELDS}])"
_FULL_ITEMS = (
    f"(UID FLAGS BODY.PEEK[{HEADER_FIELDS}] BODY.PEEK[{MIME_FIELDS}] "
    f"BODY.PEEK[TEXT])"
)

# RFC 2177 recommends re-issuing IDLE at least every 29 minutes
MAX_IDLE_SECONDS = 29 * 60

_MESSAGE_START = re.compile(rb"^\s*(\d+) \(")
_SECTION = re.compile(
    rb"BODY\[([^\]]*)\](?:<\d+>)? \{\d+\}\s*$", re.IGNORECASE
)
_UID = re.compile(rb"\bUID (\d+)", re.IGNORECASE)
_FLAGS = re.compile(rb"\bFLAGS \(([^)]*)\)", re.IGNORECASE)


class MailboxError(Exception):
    """Base exception for mailbox session errors."""


class ConnectError(MailboxError):
    """Raised when the server cannot be reached or the connection drops
    before the session is established."""


class AuthError(ConnectError):
    """Raised when the server rejects the credentials."""


class ProtocolError(MailboxError):
    """Raised when a command fails on an open session.

    Attributes:
        disconnected: True if the transport is gone and the session must be
            replaced.
    """

    def __init__(self, message: str, *, disconnected: bool = False) -> None:
        super().__init__(message)
        self.disconnected = disconnected


class IdleError(ProtocolError):
    """Raised when IMAP IDLE is unsupported or fails."""


def parse_headers(raw: bytes) -> MessageHeaders:
    """Parse a ``HEADER.FIELDS`` section into decoded headers.

    Args:
        raw: Raw header lines.

    Returns:
        Headers with placeholders for missing fields.
    """
    parsed = BytesHeaderParser(policy=compat32).parsebytes(raw)
    return MessageHeaders(
        sender=decode_header_value(parsed.get("From")) or UNKNOWN_SENDER,
        recipient=decode_header_value(parsed.get("To")) or UNKNOWN_RECIPIENT,
        subject=decode_header_value(parsed.get("Subject")) or NO_SUBJECT,
        date=decode_header_value(parsed.get("Date")) or UNKNOWN_DATE,
        message_id=decode_header_value(parsed.get("Message-ID")),
    )


@dataclass
class _FetchedParts:
    """Pieces of one message collected from a FETCH response."""

    seqno: int
    meta: bytes = b""
    sections: dict[str, bytes] = field(default_factory=dict)

    def to_record(self) -> MessageRecord | None:
        uid_match = _UID.search(self.meta)
        if uid_match is None:
            return None
        flags_match = _FLAGS.search(self.meta)
        flags = (
            tuple(flags_match.group(1).decode(errors="replace").split())
            if flags_match
            else ()
        )

        headers = b""
        mime_header = b""
        body = b""
        for name, data in self.sections.items():
            if name == "TEXT":
                body = data
            elif "CONTENT-TYPE" in name:
                mime_header = data
            elif name.startswith("HEADER"):
                headers = data

        return MessageRecord(
            seqno=self.seqno,
            uid=int(uid_match.group(1)),
            flags=flags,
            headers=parse_headers(headers),
            body=body,
            mime_header=mime_header,
        )


def parse_fetch_response(data: Iterable[object]) -> list[MessageRecord]:
    """Convert ``imaplib`` FETCH response data into message records.

    ``imaplib`` returns a flat list mixing ``(prefix, literal)`` tuples and
    plain byte strings.  A new message starts at an element of the form
    ``b"<seqno> (..."``; each literal belongs to the ``BODY[...]`` section
    named at the end of the prefix preceding it.  UID and FLAGS may appear
    in any prefix or trailing fragment.

    Args:
        data: Second element of an ``imaplib`` FETCH result.

    Returns:
        Records for every message that carried a UID.
    """
    messages: list[_FetchedParts] = []
    current: _FetchedParts | None = None

    for item in data:
        if isinstance(item, tuple):
            meta, literal = item[0], item[1]
        elif isinstance(item, bytes):
            meta, literal = item, None
        else:
            continue

        start = _MESSAGE_START.match(meta)
        if start:
            current = _FetchedParts(seqno=int(start.group(1)))
            messages.append(current)
        if current is None:
            continue

        current.meta += meta + b" "
        if literal is not None:
            section = _SECTION.search(meta)
            if section:
                name = section.group(1).decode(errors="replace").upper()
                current.sections[name] = literal

    records = []
    for parts in messages:
        record = parts.to_record()
        if record is not None:
            records.append(record)
    return records


def _quote_mailbox(name: str) -> str:
    """Quote a mailbox name for use as an IMAP astring."""
    if name.startswith('"') and name.endswith('"'):
        return name
    if re.search(r'[\s(){%*"\\\]]', name):
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return name


def _uid_set(uids: Iterable[int]) -> str:
    return ",".join(str(uid) for uid in uids)


class MailboxSession:
    """One authenticated IMAP connection.

    Not thread-safe: a session must be used from a single thread.  The only
    exception is ``wake()``, which other threads use to cut an IDLE wait
    short.

    Attributes:
        config: Connection settings.
        connection: Underlying ``imaplib`` connection (None when closed).
    """

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self.connection: imaplib.IMAP4 | None = None
        self._disconnected = False
        self._idle_tag: str | None = None

        # Self-pipe that wakes select() in idle_wait() from other threads
        self._wake_read, self._wake_write = os.pipe()
        os.set_blocking(self._wake_read, False)
        os.set_blocking(self._wake_write, False)

    @classmethod
    def open(cls, config: ConnectionConfig) -> MailboxSession:
        """Create a session and connect it.

        Raises:
            ConnectError: If the server cannot be reached.
            AuthError: If the credentials are rejected.
        """
        session = cls(config)
        try:
            session.connect()
        except ConnectError:
            session.close()
            raise
        return session

    @property
    def connected(self) -> bool:
        return self.connection is not None and not self._disconnected

    def connect(self) -> None:
        """Connect and log in, enforcing the connect and auth timeouts.

        Raises:
            ConnectError: On network failure or timeout.
            AuthError: If LOGIN is rejected.
        """
        cfg = self.config
        logger.debug(
            "Connecting to IMAP %s:%d (tls=%s)", cfg.host, cfg.port, cfg.tls
        )

        try:
            if cfg.tls:
                self.connection = imaplib.IMAP4_SSL(
                    cfg.host,
                    cfg.port,
                    ssl_context=self._ssl_context(),
                    timeout=cfg.connect_timeout,
                )
            else:
                self.connection = imaplib.IMAP4(
                    cfg.host, cfg.port, timeout=cfg.connect_timeout
                )
        except (imaplib.IMAP4.error, OSError) as e:
            self.connection = None
            raise ConnectError(
                f"Failed to connect to {cfg.host}:{cfg.port}: {e}"
            ) from e

        conn = self.connection
        try:
            conn.sock.settimeout(cfg.auth_timeout)
            conn.login(cfg.username, cfg.password)
            conn.sock.settimeout(None)
        except (imaplib.IMAP4.abort, OSError) as e:
            self._drop_connection()
            raise ConnectError(
                f"Connection to {cfg.host} lost during login: {e}"
            ) from e
        except imaplib.IMAP4.error as e:
            self._drop_connection()
            raise AuthError(
                f"Authentication failed for {cfg.username}: {e}"
            ) from e

        self._disconnected = False
        logger.info("Connected to IMAP server %s:%d", cfg.host, cfg.port)

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.config.verify_certificate:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _drop_connection(self) -> None:
        if self.connection is not None:
            try:
                self.connection.shutdown()
            except OSError:
                pass
        self.connection = None

    def _run(
        self, action: str, command: Callable[[imaplib.IMAP4], _T]
    ) -> _T:
        """Run an IMAP command, translating failures to ``ProtocolError``."""
        if self.connection is None or self._disconnected:
            raise ProtocolError(
                f"{action} failed: not connected", disconnected=True
            )
        try:
            return command(self.connection)
        except imaplib.IMAP4.abort as e:
            self._disconnected = True
            raise ProtocolError(
                f"{action} failed: {e}", disconnected=True
            ) from e
        except imaplib.IMAP4.error as e:
            raise ProtocolError(f"{action} failed: {e}") from e
        except OSError as e:
            self._disconnected = True
            raise ProtocolError(
                f"{action} failed: {e}", disconnected=True
            ) from e

    @staticmethod
    def _check(action: str, status: str, data: object) -> None:
        if status != "OK":
            raise ProtocolError(f"{action} returned {status}: {data!r}")

    def select_folder(self, name: str, *, read_only: bool) -> FolderInfo:
        """Select a folder (EXAMINE when ``read_only``).

        Returns:
            Folder information with the current message count.

        Raises:
            ProtocolError: If the folder cannot be opened.
        """

        def command(conn: imaplib.IMAP4) -> FolderInfo:
            status, data = conn.select(_quote_mailbox(name), read_only)
            self._check(f"SELECT {name}", status, data)
            total = int(data[0] or 0) if data else 0
            _, recent_data = conn.response("RECENT")
            try:
                recent = int(recent_data[0] or 0) if recent_data else 0
            except (TypeError, ValueError):
                recent = 0
            return FolderInfo(
                name=name, total=total, recent=recent, read_only=read_only
            )

        info = self._run(f"SELECT {name}", command)
        logger.debug(
            "Selected %s (%s): total=%d, recent=%d",
            name,
            "read-only" if read_only else "read-write",
            info.total,
            info.recent,
        )
        return info

    def search(self, *criteria: str) -> list[int]:
        """Run ``UID SEARCH`` and return matching UIDs in server order."""
        criteria = criteria or ("ALL",)

        def command(conn: imaplib.IMAP4) -> list[int]:
            status, data = conn.uid("SEARCH", *criteria)
            self._check(f"SEARCH {' '.join(criteria)}", status, data)
            if not data or not data[0]:
                return []
            return [int(uid) for uid in data[0].split()]

        return self._run("SEARCH", command)

    def fetch(
        self, uids: Iterable[int], *, headers_only: bool = False
    ) -> list[MessageRecord]:
        """Fetch messages by UID without setting ``\\Seen``.

        Args:
            uids: UIDs to fetch.
            headers_only: Skip the body sections.

        Returns:
            Records for the requested UIDs, in server order.
        """
        wanted = list(uids)
        if not wanted:
            return []
        items = _HEADERS_ONLY_ITEMS if headers_only else _FULL_ITEMS

        def command(conn: imaplib.IMAP4) -> list[MessageRecord]:
            status, data = conn.uid("FETCH", _uid_set(wanted), items)
            self._check("FETCH", status, data)
            return parse_fetch_response(data)

        wanted_set = set(wanted)
        # Unsolicited FETCH responses for other messages may be mixed in
        return [
            record
            for record in self._run("FETCH", command)
            if record.uid in wanted_set
        ]

    def fetch_range(self, start: int, end: int) -> list[MessageRecord]:
        """Fetch headers for sequence numbers ``start:end``."""

        def command(conn: imaplib.IMAP4) -> list[MessageRecord]:
            status, data = conn.fetch(f"{start}:{end}", _HEADERS_ONLY_ITEMS)
            self._check("FETCH", status, data)
            return parse_fetch_response(data)

        return self._run("FETCH", command)

    def set_flag(self, uid: int, flag: str) -> None:
        def command(conn: imaplib.IMAP4) -> None:
            status, data = conn.uid("STORE", str(uid), "+FLAGS", f"({flag})")
            self._check(f"STORE {flag}", status, data)

        self._run(f"STORE {flag}", command)
        logger.debug("Set %s on UID %d", flag, uid)

    def expunge(self) -> None:
        def command(conn: imaplib.IMAP4) -> None:
            status, data = conn.expunge()
            self._check("EXPUNGE", status, data)

        self._run("EXPUNGE", command)

    def mark_read(self, uid: int) -> None:
        self.set_flag(uid, SEEN_FLAG)

    def delete(self, uid: int) -> None:
        """Flag a message ``\\Deleted`` and expunge it."""
        self.set_flag(uid, DELETED_FLAG)
        self.expunge()
        logger.debug("Deleted UID %d", uid)

    def apply(self, uid: int, action: PostAction) -> None:
        """Apply a post-notification action to a message."""
        if action is PostAction.DELETE:
            self.delete(uid)
        elif action is PostAction.MARK_READ:
            self.mark_read(uid)

    # -- IDLE push channel --------------------------------------------------

    def idle_start(self) -> None:
        """Enter IDLE mode on the selected folder.

        Raises:
            IdleError: If the server rejects IDLE.
            ProtocolError: If the session is gone.
        """

        def command(conn: imaplib.IMAP4) -> None:
            self._idle_tag = conn._new_tag().decode()
            conn.send(f"{self._idle_tag} IDLE\r\n".encode())
            response = conn.readline()
            if not response:
                raise imaplib.IMAP4.abort("connection closed entering IDLE")
            if not response.startswith(b"+"):
                self._idle_tag = None
                raise IdleError(
                    f"IDLE not accepted: {response.decode(errors='replace')}"
                )

        self._run("IDLE", command)
        logger.debug("Entered IDLE with tag %s", self._idle_tag)

    def idle_wait(self, timeout: float) -> bool:
        """Block until the server reports new mail, ``wake()``, or timeout.

        Args:
            timeout: Maximum seconds to wait.

        Returns:
            True if the server sent an ``EXISTS`` notification.

        Raises:
            ProtocolError: If the server closed the connection.
        """

        def command(conn: imaplib.IMAP4) -> bool:
            sock = conn.socket()
            wait = min(timeout, MAX_IDLE_SECONDS)
            readable, _, _ = select.select(
                [sock, self._wake_read], [], [], wait
            )
            if self._wake_read in readable:
                self._drain_wake_pipe()
                return False
            if sock not in readable:
                return False
            line = conn.readline()
            if not line or line.upper().startswith(b"* BYE"):
                raise imaplib.IMAP4.abort(
                    f"server ended session: {line.decode(errors='replace')}"
                )
            logger.debug("IDLE notification: %s", line.strip())
            return b"EXISTS" in line.upper()

        return self._run("IDLE wait", command)

    def idle_done(self) -> None:
        """Leave IDLE mode, draining untagged responses until the tag."""

        def command(conn: imaplib.IMAP4) -> None:
            conn.send(b"DONE\r\n")
            tag = self._idle_tag.encode() if self._idle_tag else b""
            for _ in range(100):
                response = conn.readline()
                if not response:
                    raise imaplib.IMAP4.abort("connection closed leaving IDLE")
                if response.startswith(b"*"):
                    continue
                if tag and response.startswith(tag) and b"OK" not in response:
                    logger.warning(
                        "IDLE completed with non-OK status: %s",
                        response.strip(),
                    )
                break

        try:
            self._run("IDLE done", command)
        finally:
            self._idle_tag = None

    def wake(self) -> None:
        """Interrupt a pending ``idle_wait()``. Safe from any thread."""
        if self._wake_write is None:
            return
        try:
            os.write(self._wake_write, b"x")
        except OSError:
            # Pipe full or already closed
            pass

    def _drain_wake_pipe(self) -> None:
        try:
            while os.read(self._wake_read, 1024):
                pass
        except OSError:
            pass

    def close(self) -> None:
        """Log out and release resources. Safe to call more than once."""
        if self.connection is not None:
            try:
                if not self._disconnected:
                    self.connection.logout()
                    logger.debug("Logged out from %s", self.config.host)
            except (imaplib.IMAP4.error, OSError) as e:
                logger.debug("Error during IMAP logout: %s", e)
            finally:
                self.connection = None

        for fd_name in ("_wake_read", "_wake_write"):
            fd = getattr(self, fd_name)
            if fd is not None:
                try:
                    os.close(fd)
                except OSError:
                    pass
                setattr(self, fd_name, None)
