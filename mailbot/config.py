# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for the mailbox watcher.

Configuration is loaded from a YAML file.  The default location follows the
XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/mailbot/mailbot.yaml``
    (typically ``~/.config/mailbot/mailbot.yaml``)

``!env`` tags resolve values from environment variables, so credentials can
stay out of the file::

    imap:
      host: imap.example.com
      username: bot@example.com
      password: !env MAILBOT_PASSWORD
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from mailbot.dotenv_loader import load_dotenv_once
from mailbot.logging import SecretFilter


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "mailbot"

#: Seconds allowed for the TCP/TLS handshake.
DEFAULT_CONNECT_TIMEOUT = 60.0

#: Seconds allowed for the LOGIN exchange.
DEFAULT_AUTH_TIMEOUT = 30.0

DEFAULT_POLL_INTERVAL = 10.0
DEFAULT_RECONNECT_DELAY = 10.0
DEFAULT_FETCH_LIMIT = 10
MAX_FETCH_LIMIT = 50

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path (XDG config directory)."""
    return user_config_path(_APP_NAME) / "mailbot.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` path inside the XDG config directory."""
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


class PostAction(Enum):
    """What to do with a message on the server after it was announced.

    Attributes:
        DELETE: Flag ``\\Deleted`` and expunge.
        MARK_READ: Flag ``\\Seen``.
        NONE: Leave the message untouched.
    """

    DELETE = "delete"
    MARK_READ = "mark_read"
    NONE = "none"


@dataclass(frozen=True)
class ConnectionConfig:
    """IMAP connection settings.

    Immutable once a session starts; the watcher keeps its own reference.

    Attributes:
        host: IMAP server hostname.
        username: Account username.
        password: Account password (auto-redacted in logs).
        port: IMAP port.
        tls: Use implicit TLS (IMAPS). Plain IMAP otherwise.
        verify_certificate: Verify the server certificate chain and
            hostname.  Off by default because many self-hosted servers use
            self-signed certificates.
        folder: Folder to watch.
        connect_timeout: Seconds allowed to establish the connection.
        auth_timeout: Seconds allowed for authentication.
    """

    host: str
    username: str
    password: str
    port: int = 993
    tls: bool = True
    verify_certificate: bool = False
    folder: str = "INBOX"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    auth_timeout: float = DEFAULT_AUTH_TIMEOUT

    def __post_init__(self) -> None:
        """Validate settings and register the password for redaction.

        Raises:
            ValueError: If a setting is out of range.
        """
        SecretFilter.register_secret(self.password)

        if not (1 <= self.port <= 65535):
            raise ValueError(f"Invalid IMAP port: {self.port}")
        if not self.folder:
            raise ValueError("Folder name cannot be empty")
        if self.connect_timeout <= 0 or self.auth_timeout <= 0:
            raise ValueError(
                f"Timeouts must be positive: connect={self.connect_timeout}, "
                f"auth={self.auth_timeout}"
            )

    @property
    def is_complete(self) -> bool:
        """Whether host and credentials are all present."""
        return bool(self.host and self.username and self.password)


@dataclass(frozen=True)
class WatcherConfig:
    """Watcher timing and post-processing.

    Attributes:
        poll_interval: Seconds between poll ticks.
        reconnect_delay: Seconds to wait before each reconnect attempt.
        post_action: Server-side action after a successful notification.
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    post_action: PostAction = PostAction.DELETE

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError(
                f"Poll interval must be positive: {self.poll_interval}"
            )
        if self.reconnect_delay <= 0:
            raise ValueError(
                f"Reconnect delay must be positive: {self.reconnect_delay}"
            )


@dataclass(frozen=True)
class NotifyConfig:
    """Notification settings.

    Attributes:
        max_content_length: Characters of cleaned body shown in a notice.
            0 disables truncation.
        slack_bot_token: Slack bot token (auto-redacted in logs).  When
            unset, notices go to the log.
        slack_channels: Slack channel IDs that receive every notice.
    """

    max_content_length: int = 200
    slack_bot_token: str | None = None
    slack_channels: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.slack_bot_token:
            SecretFilter.register_secret(self.slack_bot_token)
        if self.max_content_length < 0:
            raise ValueError(
                f"max_content_length must be >= 0: {self.max_content_length}"
            )

    @property
    def slack_enabled(self) -> bool:
        return bool(self.slack_bot_token and self.slack_channels)


@dataclass(frozen=True)
class MailbotConfig:
    """Complete configuration.

    Attributes:
        imap: Connection settings.
        watcher: Watcher timing and post-processing.
        notify: Notification settings.
        fetch_limit: Default number of messages returned by listings.
    """

    imap: ConnectionConfig
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    fetch_limit: int = DEFAULT_FETCH_LIMIT

    def __post_init__(self) -> None:
        if not (1 <= self.fetch_limit <= MAX_FETCH_LIMIT):
            raise ValueError(
                f"fetch_limit must be between 1 and {MAX_FETCH_LIMIT}: "
                f"{self.fetch_limit}"
            )

    @property
    def is_configured(self) -> bool:
        """Whether the IMAP account is fully configured."""
        return self.imap.is_complete

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "MailbotConfig":
        """Load configuration from a YAML file.

        A ``.env`` file is loaded first if present, then ``!env VAR``
        values are resolved from the environment.

        Args:
            config_path: Path to the YAML file.  Defaults to the XDG path.

        Returns:
            MailbotConfig instance.

        Raises:
            ConfigError: If the file is missing or malformed.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}")

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> "MailbotConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        imap = _section(raw, "imap")
        watcher = _section(raw, "watcher")
        notify = _section(raw, "notify")
        slack = _section(notify, "slack", prefix="notify.")
        listing = _section(raw, "list")

        raw_action = _resolve(
            watcher.get("post_action"), str, default=PostAction.DELETE.value
        )
        try:
            post_action = PostAction(raw_action.lower())
        except ValueError:
            valid = ", ".join(a.value for a in PostAction)
            raise ConfigError(
                f"watcher.post_action must be one of {valid}: {raw_action!r}"
            )

        try:
            return cls(
                imap=ConnectionConfig(
                    host=_resolve(imap.get("host"), str, default=""),
                    username=_resolve(imap.get("username"), str, default=""),
                    password=_resolve(imap.get("password"), str, default=""),
                    port=_resolve(imap.get("port"), int, default=993),
                    tls=_resolve(imap.get("tls"), bool, default=True),
                    verify_certificate=_resolve(
                        imap.get("verify_certificate"), bool, default=False
                    ),
                    folder=_resolve(imap.get("folder"), str, default="INBOX"),
                    connect_timeout=_resolve(
                        imap.get("connect_timeout"),
                        float,
                        default=DEFAULT_CONNECT_TIMEOUT,
                    ),
                    auth_timeout=_resolve(
                        imap.get("auth_timeout"),
                        float,
                        default=DEFAULT_AUTH_TIMEOUT,
                    ),
                ),
                watcher=WatcherConfig(
                    poll_interval=_resolve(
                        watcher.get("poll_interval"),
                        float,
                        default=DEFAULT_POLL_INTERVAL,
                    ),
                    reconnect_delay=_resolve(
                        watcher.get("reconnect_delay"),
                        float,
                        default=DEFAULT_RECONNECT_DELAY,
                    ),
                    post_action=post_action,
                ),
                notify=NotifyConfig(
                    max_content_length=_resolve(
                        notify.get("max_content_length"), int, default=200
                    ),
                    slack_bot_token=_resolve(slack.get("bot_token"), str),
                    slack_channels=tuple(
                        _resolve_string_list(slack.get("channels"))
                    ),
                ),
                fetch_limit=_resolve(
                    listing.get("fetch_limit"),
                    int,
                    default=DEFAULT_FETCH_LIMIT,
                ),
            )
        except ValueError as e:
            raise ConfigError(str(e)) from e


def _section(raw: dict, key: str, *, prefix: str = "") -> dict:
    """Return a nested mapping, treating a missing section as empty."""
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{prefix}{key}' must be a YAML mapping")
    return value


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()

_T = TypeVar("_T")


@overload
def _resolve(value: object, coerce: type[_T], *, default: _T) -> _T: ...


@overload
def _resolve(value: object, coerce: type[_T]) -> _T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a literal
            already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``).
        default: Default when the value is absent.

    Returns:
        The resolved, coerced value, or None when absent without default.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        )


def _resolve_string_list(value: object) -> list[str]:
    """Resolve a list of strings, handling ``!env`` for each element.

    A single string (or ``!env``) is accepted as a one-element list.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]

    result: list[str] = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(resolved)
    return result
