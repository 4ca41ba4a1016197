# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for notification broadcasters."""

import logging
from unittest.mock import MagicMock, patch

import pytest
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from mailbot.broadcast import (
    DispatchError,
    LogBroadcaster,
    SlackBroadcaster,
    build_broadcaster,
)
from mailbot.config import NotifyConfig


def _api_error() -> SlackApiError:
    return SlackApiError("channel_not_found", response=MagicMock())


class TestSlackBroadcaster:
    def test_posts_to_every_channel(self) -> None:
        client = MagicMock(spec=WebClient)
        broadcaster = SlackBroadcaster(client, ["C1", "C2"])

        broadcaster.broadcast("New mail")

        client.chat_postMessage.assert_any_call(channel="C1", text="New mail")
        client.chat_postMessage.assert_any_call(channel="C2", text="New mail")

    def test_partial_failure_is_success(self, caplog) -> None:
        client = MagicMock(spec=WebClient)
        client.chat_postMessage.side_effect = [_api_error(), MagicMock()]
        broadcaster = SlackBroadcaster(client, ["C1", "C2"])

        broadcaster.broadcast("New mail")

        assert "Slack channel C1" in caplog.text

    def test_total_failure_raises(self) -> None:
        client = MagicMock(spec=WebClient)
        client.chat_postMessage.side_effect = _api_error()
        broadcaster = SlackBroadcaster(client, ["C1", "C2"])

        with pytest.raises(DispatchError):
            broadcaster.broadcast("New mail")

    def test_requires_channels(self) -> None:
        with pytest.raises(ValueError):
            SlackBroadcaster(MagicMock(spec=WebClient), [])


class TestLogBroadcaster:
    def test_logs_notice(self, caplog) -> None:
        caplog.set_level(logging.INFO, logger="mailbot.notices")

        LogBroadcaster().broadcast("New mail received")

        assert "New mail received" in caplog.text


class TestBuildBroadcaster:
    def test_defaults_to_log(self) -> None:
        assert isinstance(build_broadcaster(NotifyConfig()), LogBroadcaster)

    def test_token_without_channels_uses_log(self) -> None:
        config = NotifyConfig(slack_bot_token="xoxb-1")

        assert isinstance(build_broadcaster(config), LogBroadcaster)

    def test_slack(self) -> None:
        config = NotifyConfig(
            slack_bot_token="xoxb-1", slack_channels=("C1",)
        )

        with patch("mailbot.broadcast.WebClient") as mock_client:
            broadcaster = build_broadcaster(config)

        assert isinstance(broadcaster, SlackBroadcaster)
        mock_client.assert_called_once_with(token="xoxb-1")
