# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Notification sinks.

A broadcaster sends one notice to every channel it knows about.  The
watcher has no visibility into recipients; it only learns whether the send
succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from mailbot.config import NotifyConfig


logger = logging.getLogger(__name__)


class DispatchError(Exception):
    """Raised when a notice could not be delivered to any channel."""


class Broadcaster(Protocol):
    """Sends a notice to all active notification channels."""

    def broadcast(self, text: str) -> None:
        """Send ``text``.

        Raises:
            DispatchError: If delivery failed.
        """
        ...


class LogBroadcaster:
    """Writes notices to a logger.  Used when no chat channel is set up."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logging.getLogger("mailbot.notices")

    def broadcast(self, text: str) -> None:
        self._log.info("%s", text)


class SlackBroadcaster:
    """Posts notices to a fixed set of Slack channels.

    Delivery counts as successful when at least one channel accepted the
    message; per-channel failures are logged.
    """

    def __init__(self, client: WebClient, channels: Sequence[str]) -> None:
        if not channels:
            raise ValueError("At least one Slack channel is required")
        self._client = client
        self._channels = tuple(channels)

    def broadcast(self, text: str) -> None:
        delivered = 0
        for channel in self._channels:
            try:
                self._client.chat_postMessage(channel=channel, text=text)
                delivered += 1
            except SlackApiError as e:
                logger.error(
                    "Failed to post notice to Slack channel %s: %s",
                    channel,
                    e,
                )
        if not delivered:
            raise DispatchError(
                f"Notice not delivered to any of {len(self._channels)} "
                f"Slack channels"
            )
        logger.debug(
            "Posted notice to %d/%d Slack channels",
            delivered,
            len(self._channels),
        )


def build_broadcaster(config: NotifyConfig) -> Broadcaster:
    """Create the broadcaster described by the notification config."""
    if config.slack_enabled:
        assert config.slack_bot_token is not None
        logger.info(
            "Notices go to %d Slack channels", len(config.slack_channels)
        )
        return SlackBroadcaster(
            WebClient(token=config.slack_bot_token), config.slack_channels
        )
    logger.info("No Slack channels configured; notices go to the log")
    return LogBroadcaster()
