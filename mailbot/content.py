# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Message content extraction and cleaning.

Turns the raw ``TEXT`` section of a fetched message into the short, stable
text shown in a notification:

- ``parse()`` MIME-parses the body and picks the plain text and HTML parts.
  It never raises; an unparseable body yields empty content so the notice
  can still be sent with header information only.
- ``clean()`` cuts the text at the first signature boundary while always
  keeping lines that carry codes, passwords or tokens.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from email import policy
from email.errors import HeaderParseError, MessageError
from email.header import decode_header
from email.message import EmailMessage
from email.parser import BytesParser

from mailbot.html_to_text import html_to_text
from mailbot.types import NO_SUBJECT


logger = logging.getLogger(__name__)


# Lines mentioning any of these are never dropped, even when they also look
# like a signature separator.
SENSITIVE_PATTERN = re.compile(
    r"\b(?:verification[\s_-]*code|pass[\s_-]?code|password|passwd|code"
    r"|auth|token|key|otp|pin)\b"
    r"|验证码|校验码|动态码|密码|口令|授权码|令牌|密钥",
    re.IGNORECASE,
)

# Signature separators: "--", "----", "|", "|||"
DECORATIVE_PATTERN = re.compile(r"^(?:\|+|-+)$")

_EMAIL = r"[\w.+'%-]+@[\w-]+(?:\.[\w-]+)+"

BARE_EMAIL_PATTERN = re.compile(rf"^<?{_EMAIL}>?$")

CONTACT_LINE_PATTERN = re.compile(
    rf"^(?:from|e-?mail|mail|contact|邮箱|邮件|联系方式|联系)\s*[:：]\s*"
    rf"<?{_EMAIL}>?$",
    re.IGNORECASE,
)


class ParseError(Exception):
    """Raised when a message body cannot be MIME-parsed."""


@dataclass(frozen=True)
class ParsedContent:
    """Text extracted from a message body.

    Attributes:
        text: Plain text body.  Derived from the HTML part when the message
            has no ``text/plain`` part.
        html: Raw HTML part, empty if absent.
        subject: Subject found in the parsed data, or the no-subject
            placeholder.
    """

    text: str
    html: str
    subject: str


def decode_header_value(raw: str | None) -> str:
    """Decode RFC 2047 encoded-words in a header value.

    Args:
        raw: Raw header value as received (may be None).

    Returns:
        Decoded Unicode string, or empty string if not present.  A value
        with malformed encoded-words is returned as received.
    """
    if not raw:
        return ""

    try:
        chunks = decode_header(raw)
    except (HeaderParseError, ValueError) as e:
        logger.debug("Undecodable header %r: %s", raw, e)
        return raw.strip()

    decoded_parts: list[str] = []
    for data, charset in chunks:
        if isinstance(data, bytes):
            try:
                decoded_parts.append(
                    data.decode(charset or "utf-8", errors="replace")
                )
            except LookupError:
                decoded_parts.append(data.decode("utf-8", errors="replace"))
        else:
            decoded_parts.append(data)
    return "".join(decoded_parts).strip()


def parse(raw_body: bytes | str, mime_header: bytes = b"") -> ParsedContent:
    """Extract text, HTML and subject from a message body.

    Args:
        raw_body: The ``TEXT`` section of the message.  Without
            ``mime_header`` it is treated as a single text/plain part.
        mime_header: Content-Type / Content-Transfer-Encoding header lines
            of the message, required to split multipart bodies.

    Returns:
        Parsed content.  On failure, empty text and HTML with the
        no-subject placeholder.
    """
    try:
        return _parse(raw_body, mime_header)
    except ParseError as e:
        logger.warning("Failed to parse message body: %s", e)
        return ParsedContent(text="", html="", subject=NO_SUBJECT)


def _parse(raw_body: bytes | str, mime_header: bytes) -> ParsedContent:
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8", errors="replace")

    header = mime_header.strip()
    # A leading empty line tells the parser there are no headers at all
    data = header + b"\r\n\r\n" + raw_body if header else b"\r\n" + raw_body

    try:
        message = BytesParser(policy=policy.default).parsebytes(data)
        text, html = _extract_parts(message)
        subject = decode_header_value(message.get("Subject")) or NO_SUBJECT
    except (MessageError, LookupError, ValueError, TypeError) as e:
        raise ParseError(str(e)) from e

    if not text and html:
        text = html_to_text(html)
        logger.debug(
            "Derived text from HTML part (%d chars HTML -> %d chars text)",
            len(html),
            len(text),
        )

    return ParsedContent(text=text.strip(), html=html, subject=subject)


def _extract_parts(message: EmailMessage) -> tuple[str, str]:
    """Return the first inline text/plain and text/html payloads."""
    text = ""
    html = ""
    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        content_type = part.get_content_type()
        if content_type == "text/plain" and not text:
            text = part.get_content()
        elif content_type == "text/html" and not html:
            html = part.get_content()
    return text, html


def is_sensitive(line: str) -> bool:
    """Whether a line mentions a code, password, token or key."""
    return SENSITIVE_PATTERN.search(line) is not None


def is_signature_boundary(line: str) -> bool:
    """Whether a stripped line starts a signature block.

    Decorative separators, bare email addresses and ``From:``-style lines
    holding only an address count as boundaries.
    """
    return bool(
        DECORATIVE_PATTERN.match(line)
        or BARE_EMAIL_PATTERN.match(line)
        or CONTACT_LINE_PATTERN.match(line)
    )


def clean(text: str) -> str:
    """Strip signature and footer noise from a message text.

    Lines are scanned top to bottom.  Blank lines are skipped.  A line with
    sensitive content is always kept; otherwise the first signature
    boundary ends the scan.  Everything else is kept.

    Args:
        text: Plain text body.

    Returns:
        The kept lines joined with newlines, trimmed.
    """
    kept: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if is_sensitive(line):
            kept.append(raw_line.rstrip())
            continue
        if is_signature_boundary(line):
            break
        kept.append(raw_line.rstrip())
    return "\n".join(kept).strip()
