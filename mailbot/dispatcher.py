# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Turns detected messages into notices and sends them.

Messages are processed one at a time in batch order (newest first).  After
a notice is delivered, the configured post action (delete or mark read) is
applied on the server.  A message whose notice could not be delivered is
left untouched on the server; its UID stays reserved in the watcher's
ledger, so it is not announced again during this run.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from mailbot.broadcast import Broadcaster
from mailbot.config import PostAction
from mailbot.content import clean, parse
from mailbot.types import MessageHeaders, MessageRecord


logger = logging.getLogger(__name__)

NOTICE_TITLE = "New mail received"


class PostProcessor(Protocol):
    """Applies server-side actions to announced messages."""

    def apply_action(self, uid: int, action: PostAction) -> None: ...


@dataclass(frozen=True)
class DispatchSummary:
    """Outcome counts of one ``dispatch()`` call."""

    sent: int = 0
    failed: int = 0
    post_failed: int = 0


def normalize_content(text: str) -> str:
    """Collapse blank-line runs to one blank line and inner whitespace."""
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def format_notice(
    headers: MessageHeaders,
    cleaned_text: str,
    *,
    max_content_length: int = 200,
) -> str:
    """Build the notification text for one message.

    Args:
        headers: Decoded message headers.
        cleaned_text: Output of ``content.clean()``.
        max_content_length: Maximum characters of content; longer content
            is cut and suffixed with ``...``.  0 disables the limit.

    Returns:
        Notice text.  The content section is omitted when empty.
    """
    lines = [
        NOTICE_TITLE,
        f"From: {headers.sender}",
        f"Subject: {headers.subject}",
        f"Date: {headers.date}",
    ]

    content = normalize_content(cleaned_text)
    if max_content_length and len(content) > max_content_length:
        content = content[:max_content_length].rstrip() + "..."
    if content:
        lines.append("Content:")
        lines.append(content)

    return "\n".join(lines)


class NotificationDispatcher:
    """Sends a notice per message and post-processes delivered ones."""

    def __init__(
        self,
        broadcaster: Broadcaster,
        post_processor: PostProcessor | None = None,
        *,
        post_action: PostAction = PostAction.DELETE,
        max_content_length: int = 200,
    ) -> None:
        self._broadcaster = broadcaster
        self._post_processor = post_processor
        self._post_action = post_action
        self._max_content_length = max_content_length

    def bind(self, post_processor: PostProcessor) -> None:
        """Set the post processor (usually the watcher) after construction."""
        self._post_processor = post_processor

    def render(self, record: MessageRecord) -> str:
        """Parse, clean and format one message."""
        content = parse(record.body, record.mime_header)
        return format_notice(
            record.headers,
            clean(content.text),
            max_content_length=self._max_content_length,
        )

    def __call__(self, batch: list[MessageRecord]) -> DispatchSummary:
        return self.dispatch(batch)

    def dispatch(self, batch: Iterable[MessageRecord]) -> DispatchSummary:
        """Notify about each message in order.

        Args:
            batch: Messages, newest first.

        Returns:
            Counts of delivered, undelivered and post-processing failures.
        """
        sent = failed = post_failed = 0

        for record in batch:
            subject = record.headers.subject
            logger.info(
                "New mail UID %d from %s: %s",
                record.uid,
                record.headers.sender,
                subject,
            )
            notice = self.render(record)

            try:
                self._broadcaster.broadcast(notice)
            except Exception as e:
                failed += 1
                logger.error(
                    "Failed to send notice for UID %d (%s): %s",
                    record.uid,
                    subject,
                    e,
                )
                logger.warning(
                    "UID %d left on server and will not be retried "
                    "until restart",
                    record.uid,
                )
                continue

            sent += 1
            logger.info("Notice sent for UID %d: %s", record.uid, subject)

            if not self._post_process(record):
                post_failed += 1

        return DispatchSummary(
            sent=sent, failed=failed, post_failed=post_failed
        )

    def _post_process(self, record: MessageRecord) -> bool:
        """Apply the post action; returns False if it failed."""
        action = self._post_action
        if action is PostAction.NONE or self._post_processor is None:
            return True
        try:
            self._post_processor.apply_action(record.uid, action)
        except Exception as e:
            logger.error(
                "Failed to %s UID %d after notifying: %s",
                action.value,
                record.uid,
                e,
            )
            logger.warning(
                "Notice for UID %d was sent but the message remains; "
                "it may be announced again after a restart",
                record.uid,
            )
            return False
        logger.debug("Applied %s to UID %d", action.value, record.uid)
        return True
