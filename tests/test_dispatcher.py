# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for notice formatting and dispatch."""

from unittest.mock import MagicMock, call

from mailbot.broadcast import DispatchError
from mailbot.config import PostAction
from mailbot.dispatcher import (
    DispatchSummary,
    NotificationDispatcher,
    format_notice,
    normalize_content,
)
from mailbot.session import ProtocolError
from mailbot.types import MessageHeaders, MessageRecord


HEADERS = MessageHeaders(
    sender="Alice <alice@example.com>",
    recipient="bot@example.com",
    subject="Login",
    date="Mon, 1 Jan 2024 10:00:00 +0000",
)


def _make_record(uid: int, body: bytes = b"Hello") -> MessageRecord:
    return MessageRecord(seqno=uid, uid=uid, headers=HEADERS, body=body)


class TestFormatNotice:
    def test_template(self) -> None:
        notice = format_notice(HEADERS, "Hello")

        assert notice == (
            "New mail received\n"
            "From: Alice <alice@example.com>\n"
            "Subject: Login\n"
            "Date: Mon, 1 Jan 2024 10:00:00 +0000\n"
            "Content:\n"
            "Hello"
        )

    def test_empty_content_section_omitted(self) -> None:
        notice = format_notice(HEADERS, "  \n ")

        assert "Content:" not in notice
        assert notice.endswith("Date: Mon, 1 Jan 2024 10:00:00 +0000")

    def test_whitespace_normalized(self) -> None:
        assert normalize_content("a\n\n\n\nb   c\t\td \n") == "a\n\nb c d"

    def test_truncated(self) -> None:
        notice = format_notice(HEADERS, "x" * 250, max_content_length=200)

        assert notice.endswith("\n" + "x" * 200 + "...")

    def test_truncation_disabled(self) -> None:
        notice = format_notice(HEADERS, "x" * 250, max_content_length=0)

        assert notice.endswith("x" * 250)


class TestNotificationDispatcher:
    def test_render_cleans_body(self) -> None:
        dispatcher = NotificationDispatcher(MagicMock())
        record = _make_record(
            1, b"Hi,\nYour code is 123456\n--\nJohn Doe\njohn@example.com"
        )

        notice = dispatcher.render(record)

        assert notice.endswith("Content:\nHi,\nYour code is 123456")
        assert "John Doe" not in notice

    def test_sends_in_order_and_deletes(self) -> None:
        broadcaster = MagicMock()
        post = MagicMock()
        dispatcher = NotificationDispatcher(broadcaster, post)

        summary = dispatcher.dispatch([_make_record(2), _make_record(1)])

        assert summary == DispatchSummary(sent=2)
        assert broadcaster.broadcast.call_count == 2
        assert post.apply_action.call_args_list == [
            call(2, PostAction.DELETE),
            call(1, PostAction.DELETE),
        ]

    def test_send_failure_leaves_message_unmarked(self) -> None:
        broadcaster = MagicMock()
        broadcaster.broadcast.side_effect = [DispatchError("down"), None]
        post = MagicMock()
        dispatcher = NotificationDispatcher(
            broadcaster, post, post_action=PostAction.MARK_READ
        )

        summary = dispatcher.dispatch([_make_record(2), _make_record(1)])

        assert summary == DispatchSummary(sent=1, failed=1)
        post.apply_action.assert_called_once_with(1, PostAction.MARK_READ)

    def test_post_failure_does_not_stop_batch(self) -> None:
        broadcaster = MagicMock()
        post = MagicMock()
        post.apply_action.side_effect = [ProtocolError("STORE failed"), None]
        dispatcher = NotificationDispatcher(broadcaster, post)

        summary = dispatcher.dispatch([_make_record(2), _make_record(1)])

        assert summary == DispatchSummary(sent=2, post_failed=1)
        assert broadcaster.broadcast.call_count == 2
        assert post.apply_action.call_count == 2

    def test_post_action_none(self) -> None:
        post = MagicMock()
        dispatcher = NotificationDispatcher(
            MagicMock(), post, post_action=PostAction.NONE
        )

        dispatcher.dispatch([_make_record(1)])

        post.apply_action.assert_not_called()

    def test_bind_and_call(self) -> None:
        broadcaster = MagicMock()
        post = MagicMock()
        dispatcher = NotificationDispatcher(broadcaster)
        dispatcher.bind(post)

        summary = dispatcher([_make_record(5)])

        assert summary.sent == 1
        post.apply_action.assert_called_once_with(5, PostAction.DELETE)

    def test_unparseable_body_still_notifies(self) -> None:
        broadcaster = MagicMock()
        dispatcher = NotificationDispatcher(broadcaster)
        record = MessageRecord(
            seqno=1,
            uid=1,
            headers=HEADERS,
            body=b"\xff\xfe",
            mime_header=b"Content-Type: text/plain; charset=bogus-charset",
        )

        summary = dispatcher.dispatch([record])

        assert summary.sent == 1
        text = broadcaster.broadcast.call_args[0][0]
        assert "Subject: Login" in text
