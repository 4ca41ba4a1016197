# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Process-wide logging setup with credential redaction.

The watcher runs unattended and logs every connection attempt, so the
mailbox password and the Slack token must never reach the output.  Config
objects register their secrets with ``SecretFilter`` when constructed; the
filter sits on the root handler installed by ``configure_logging()``.

Library modules only ever do::

    logger = logging.getLogger(__name__)
    logger.info("Connected to %s", host)
"""

import logging
import re
from typing import ClassVar


REDACTED = "[REDACTED]"

DEFAULT_FORMAT = (
    "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"
)


class SecretFilter(logging.Filter):
    """Replace registered secrets in log records with ``[REDACTED]``.

    The registry is class-level, so every instance redacts every secret no
    matter which config object registered it.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Add a secret to the registry. Empty values are ignored."""
        if not secret or secret in cls._secrets:
            return
        cls._secrets.add(secret)
        # Longest first so a secret containing another is fully masked
        alternatives = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(map(re.escape, alternatives)))

    @classmethod
    def clear_secrets(cls) -> None:
        """Empty the registry. Used by tests."""
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def redact(cls, text: str) -> str:
        if cls._pattern is None:
            return text
        return cls._pattern.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact the format string and any string arguments in place.

        Returns:
            Always True; records are rewritten, never dropped.
        """
        if self._pattern is None:
            return True
        record.msg = self.redact(str(record.msg))
        if isinstance(record.args, tuple):
            record.args = tuple(
                self.redact(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def configure_logging(
    level: int = logging.INFO,
    format_string: str | None = None,
    add_secret_filter: bool = True,
) -> None:
    """Install a single stderr handler on the root logger.

    Any handlers already on the root logger are replaced.

    Args:
        level: Root log level.
        format_string: Record format.  Defaults to ``DEFAULT_FORMAT``.
        add_secret_filter: Attach ``SecretFilter`` to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT))
    if add_secret_filter:
        handler.addFilter(SecretFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # slack_sdk logs full request payloads at DEBUG
    logging.getLogger("slack_sdk").setLevel(max(level, logging.INFO))
