# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for mailbot/logging.py."""

import logging

from mailbot.logging import SecretFilter, configure_logging


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="",
        lineno=0,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestSecretFilter:
    """Tests for SecretFilter class."""

    def test_filter_returns_true(self) -> None:
        """Filter should always return True (never suppress records)."""
        assert SecretFilter().filter(_record("test message")) is True

    def test_no_secrets_no_redaction(self) -> None:
        record = _record("login as bot with hunter2")

        SecretFilter().filter(record)

        assert record.msg == "login as bot with hunter2"

    def test_redacts_message_and_args(self) -> None:
        """Secrets are redacted in the format string and string args."""
        SecretFilter.register_secret("hunter2")
        record = _record("password %s, again hunter2, port %d", "hunter2", 993)

        SecretFilter().filter(record)

        assert record.msg == "password %s, again [REDACTED], port %d"
        assert record.args == ("[REDACTED]", 993)
        assert record.getMessage() == (
            "password [REDACTED], again [REDACTED], port 993"
        )

    def test_longest_secret_first(self) -> None:
        """A secret containing another secret is masked as a whole."""
        SecretFilter.register_secret("abc")
        SecretFilter.register_secret("abcdef")
        record = _record("token abcdef")

        SecretFilter().filter(record)

        assert record.msg == "token [REDACTED]"

    def test_empty_secret_ignored(self) -> None:
        SecretFilter.register_secret("")
        record = _record("nothing to hide")

        SecretFilter().filter(record)

        assert record.msg == "nothing to hide"

    def test_clear_secrets(self) -> None:
        SecretFilter.register_secret("hunter2")
        SecretFilter.clear_secrets()
        record = _record("hunter2")

        SecretFilter().filter(record)

        assert record.msg == "hunter2"


class TestConfigureLogging:
    """Tests for configure_logging function."""

    def setup_method(self) -> None:
        root = logging.getLogger()
        self._saved_handlers = root.handlers[:]
        self._saved_level = root.level

    def teardown_method(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in self._saved_handlers:
            root.addHandler(handler)
        root.setLevel(self._saved_level)
        logging.getLogger("slack_sdk").setLevel(logging.NOTSET)

    def test_replaces_root_handlers(self) -> None:
        configure_logging(level=logging.DEBUG)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        filters = root.handlers[0].filters
        assert any(isinstance(f, SecretFilter) for f in filters)

    def test_without_secret_filter(self) -> None:
        configure_logging(add_secret_filter=False)

        assert logging.getLogger().handlers[0].filters == []

    def test_custom_format(self) -> None:
        configure_logging(format_string="%(message)s")

        formatter = logging.getLogger().handlers[0].formatter
        assert formatter is not None
        assert formatter._fmt == "%(message)s"

    def test_quiets_slack_sdk_debug(self) -> None:
        configure_logging(level=logging.DEBUG)

        assert logging.getLogger("slack_sdk").level == logging.INFO
