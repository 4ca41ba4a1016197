# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for the command-line entry point."""

import logging
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mailbot.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_OK,
    main,
)
from mailbot.config import (
    ConfigError,
    ConnectionConfig,
    MailbotConfig,
    PostAction,
    WatcherConfig,
)
from mailbot.mailbox import ListFilter
from mailbot.session import AuthError, ConnectError, ProtocolError
from mailbot.types import MessageHeaders, MessageRecord


def _make_config(**imap_overrides: object) -> MailbotConfig:
    imap = {
        "host": "imap.example.com",
        "username": "bot@example.com",
        "password": "pw",
        **imap_overrides,
    }
    return MailbotConfig(
        imap=ConnectionConfig(**imap),  # type: ignore[arg-type]
        watcher=WatcherConfig(post_action=PostAction.MARK_READ),
    )


@pytest.fixture(autouse=True)
def _no_logging_setup() -> Iterator[MagicMock]:
    """Keep main() from replacing pytest's log handlers."""
    with patch("mailbot.cli.configure_logging") as mock:
        yield mock


@pytest.fixture
def config() -> Iterator[MailbotConfig]:
    cfg = _make_config()
    with patch("mailbot.cli.MailbotConfig.from_yaml", return_value=cfg):
        yield cfg


class TestConfigLoading:
    def test_missing_config(self, tmp_path: Path) -> None:
        code = main(["--config", str(tmp_path / "nope.yaml"), "test"])

        assert code == EXIT_CONFIG_ERROR

    def test_config_error(self) -> None:
        with patch(
            "mailbot.cli.MailbotConfig.from_yaml",
            side_effect=ConfigError("bad"),
        ):
            assert main(["test"]) == EXIT_CONFIG_ERROR

    def test_unconfigured_account(self) -> None:
        with patch(
            "mailbot.cli.MailbotConfig.from_yaml",
            return_value=_make_config(password=""),
        ):
            assert main(["test"]) == EXIT_CONFIG_ERROR

    def test_config_path_passed(self, tmp_path: Path) -> None:
        path = tmp_path / "custom.yaml"

        with (
            patch("mailbot.cli.test_connection"),
            patch("mailbot.cli.MailbotConfig.from_yaml") as mock_load,
        ):
            mock_load.return_value = _make_config()
            main(["--config", str(path), "test"])

        mock_load.assert_called_once_with(path)

    def test_debug_flag(self, config, _no_logging_setup: MagicMock) -> None:
        with patch("mailbot.cli.test_connection"):
            main(["--debug", "test"])

        assert _no_logging_setup.call_args.kwargs["level"] == logging.DEBUG


class TestTestCommand:
    def test_success(self, config, capsys) -> None:
        with patch("mailbot.cli.test_connection") as mock_test:
            code = main(["test"])

        assert code == EXIT_OK
        mock_test.assert_called_once_with(config.imap)
        out = capsys.readouterr().out
        assert "Connection OK" in out
        assert "imap.example.com:993" in out

    def test_auth_failure(self, config, capsys) -> None:
        with patch(
            "mailbot.cli.test_connection", side_effect=AuthError("rejected")
        ):
            code = main(["test"])

        assert code == EXIT_CONNECTION_ERROR
        assert "rejected" in capsys.readouterr().err


class TestListCommand:
    def test_defaults(self, config, capsys) -> None:
        record = MessageRecord(
            seqno=1, uid=7, headers=MessageHeaders(subject="Invoice")
        )

        with patch(
            "mailbot.cli.list_messages", return_value=[record]
        ) as mock_list:
            code = main(["list"])

        assert code == EXIT_OK
        mock_list.assert_called_once_with(
            config.imap, "INBOX", ListFilter.ALL, 10
        )
        assert "Invoice" in capsys.readouterr().out

    def test_options(self, config) -> None:
        with patch("mailbot.cli.list_messages", return_value=[]) as mock_list:
            code = main(["list", "unread", "--limit", "3", "--folder", "Spam"])

        assert code == EXIT_OK
        mock_list.assert_called_once_with(
            config.imap, "Spam", ListFilter.UNREAD, 3
        )

    def test_failure(self, config) -> None:
        with patch(
            "mailbot.cli.list_messages",
            side_effect=ProtocolError("no such folder"),
        ):
            assert main(["list"]) == EXIT_CONNECTION_ERROR

    def test_invalid_filter(self, config) -> None:
        with pytest.raises(SystemExit):
            main(["list", "starred"])

    @pytest.mark.parametrize("limit", ["-1", "0", "51", "ten"])
    def test_limit_out_of_range_rejected(self, config, capsys, limit) -> None:
        with (
            patch("mailbot.cli.list_messages") as mock_list,
            pytest.raises(SystemExit),
        ):
            main(["list", "--limit", limit])

        mock_list.assert_not_called()
        assert "--limit" in capsys.readouterr().err

    def test_limit_upper_bound_accepted(self, config) -> None:
        with patch("mailbot.cli.list_messages", return_value=[]) as mock_list:
            assert main(["list", "--limit", "50"]) == EXIT_OK

        mock_list.assert_called_once_with(
            config.imap, "INBOX", ListFilter.ALL, 50
        )


class TestWatchCommand:
    def test_runs_until_shutdown(self, config) -> None:
        with (
            patch("mailbot.cli.MailboxWatcher") as mock_watcher_cls,
            patch("mailbot.cli.signal.signal") as mock_signal,
            patch("mailbot.cli.threading.Event") as mock_event_cls,
        ):
            mock_event_cls.return_value.wait.return_value = True
            watcher = mock_watcher_cls.return_value

            code = main(["watch"])

        assert code == EXIT_OK
        assert mock_signal.call_count == 2
        watcher.start.assert_called_once()
        assert watcher.start.call_args[0][0] is config.imap
        watcher.stop.assert_called_once()

    def test_dispatcher_bound_to_watcher(self, config) -> None:
        with (
            patch("mailbot.cli.MailboxWatcher") as mock_watcher_cls,
            patch("mailbot.cli.signal.signal"),
            patch("mailbot.cli.threading.Event") as mock_event_cls,
        ):
            mock_event_cls.return_value.wait.return_value = True
            watcher = mock_watcher_cls.return_value

            main(["watch"])

        dispatcher = watcher.start.call_args[0][1]
        assert dispatcher._post_processor is watcher
        assert dispatcher._post_action is PostAction.MARK_READ

    @pytest.mark.parametrize("error", [AuthError("no"), ConnectError("down")])
    def test_start_failure(self, config, error: Exception) -> None:
        with (
            patch("mailbot.cli.MailboxWatcher") as mock_watcher_cls,
            patch("mailbot.cli.signal.signal"),
        ):
            mock_watcher_cls.return_value.start.side_effect = error

            assert main(["watch"]) == EXIT_CONNECTION_ERROR
