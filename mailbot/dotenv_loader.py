# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""One-time ``.env`` loading for credentials referenced by ``!env`` tags.

Two files are considered, in order: ``~/.config/mailbot/.env`` and ``.env``
in the working directory.  python-dotenv never overrides variables that
are already set, so the XDG file wins over the working directory one and
the real environment wins over both.
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_loaded = False


def _candidates() -> list[Path]:
    from mailbot.config import get_dotenv_path

    return [get_dotenv_path(), Path.cwd() / ".env"]


def load_dotenv_once() -> None:
    """Load the ``.env`` files the first time this is called."""
    global _loaded
    if _loaded:
        return
    _loaded = True

    for env_file in _candidates():
        if env_file.is_file():
            load_dotenv(env_file)
            logger.debug("Loaded environment from %s", env_file)


def reset_dotenv_state() -> None:
    """Allow the next ``load_dotenv_once()`` to load again. For tests."""
    global _loaded
    _loaded = False
