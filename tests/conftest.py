# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures."""

from collections.abc import Iterator

import pytest

from mailbot.config import ConnectionConfig
from mailbot.dotenv_loader import reset_dotenv_state
from mailbot.logging import SecretFilter


@pytest.fixture(autouse=True)
def _reset_global_state() -> Iterator[None]:
    """Forget secrets and ``.env`` state registered by other tests."""
    SecretFilter.clear_secrets()
    reset_dotenv_state()
    yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()


@pytest.fixture
def imap_config() -> ConnectionConfig:
    """Connection settings for a fake server."""
    return ConnectionConfig(
        host="imap.example.com",
        username="bot@example.com",
        password="hunter2-secret",
    )
