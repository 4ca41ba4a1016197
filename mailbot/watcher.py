# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Mailbox watcher: connection lifecycle and new-mail detection.

The watcher keeps one IMAP session open on the configured folder and turns
two independent triggers into a single "new mail" signal:

- IMAP IDLE push notifications, a latency optimization that not every
  server delivers reliably;
- a poll timer, the correctness backstop.

All session work happens on one actor thread that consumes events from a
queue, so handlers never run concurrently.  Timers and ``stop()`` only post
events and wake the actor.  Each detection pass reserves the UIDs it is
about to fetch in the ``DedupLedger`` before fetching, so overlapping
triggers cannot announce the same message twice.

Lost connections are retried after a fixed delay for as long as the
watcher runs.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from mailbot.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECONNECT_DELAY,
    ConnectionConfig,
    PostAction,
)
from mailbot.ledger import DedupLedger
from mailbot.scheduling import TimerFactory, TimerHandle, start_timer
from mailbot.session import (
    MAX_IDLE_SECONDS,
    IdleError,
    MailboxError,
    MailboxSession,
    ProtocolError,
)
from mailbot.types import MessageRecord


logger = logging.getLogger(__name__)

#: Callback receiving each batch of new messages, newest first.
NewMailCallback = Callable[[list[MessageRecord]], object]

SessionFactory = Callable[[ConnectionConfig], MailboxSession]

_STOP_JOIN_TIMEOUT = 10.0


class WatcherState(Enum):
    """Lifecycle state of a watcher.

    Attributes:
        IDLE: Not running (initial and terminal state).
        CONNECTING: Opening a session.
        LISTENING: Session open, detecting new mail.
        RECONNECTING: Waiting for the reconnect timer.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    LISTENING = "listening"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class WatcherStatus:
    """Snapshot returned by ``MailboxWatcher.status()``.

    Attributes:
        running: Whether the watcher is started.
        last_seen_total: Folder message count at the last successful open.
        state: Current lifecycle state.
    """

    running: bool
    last_seen_total: int
    state: WatcherState


class _EventKind(Enum):
    DETECT = "detect"
    RECONNECT = "reconnect"
    STOP = "stop"


@dataclass(frozen=True)
class _Event:
    kind: _EventKind
    generation: int
    source: str = ""


class MailboxWatcher:
    """Watches one IMAP folder and reports new messages.

    Owns the session, the ledger and both timers.  Only the actor thread
    (or the caller of ``start()``, before the actor exists) touches the
    session; ``stop()`` may be called from any thread.
    """

    def __init__(
        self,
        session_factory: SessionFactory = MailboxSession.open,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        timer_factory: TimerFactory = start_timer,
    ) -> None:
        """Initialize an inert watcher.

        Args:
            session_factory: Opens a connected session for a config.
                Raises ``ConnectError``/``AuthError`` on failure.
            poll_interval: Seconds between poll ticks.
            reconnect_delay: Seconds before each reconnect attempt.
            timer_factory: Creates started one-shot timers.
        """
        self._session_factory = session_factory
        self._poll_interval = poll_interval
        self._reconnect_delay = reconnect_delay
        self._timer_factory = timer_factory

        self._ledger = DedupLedger()
        self._events: queue.Queue[_Event] = queue.Queue()
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

        self._config: ConnectionConfig | None = None
        self._on_new_mail: NewMailCallback | None = None
        self._session: MailboxSession | None = None
        self._poll_timer: TimerHandle | None = None
        self._reconnect_timer: TimerHandle | None = None

        self._running = False
        self._generation = 0
        self._state = WatcherState.IDLE
        self._last_seen_total = 0
        self._idle_supported = True

    @property
    def ledger(self) -> DedupLedger:
        return self._ledger

    def status(self) -> WatcherStatus:
        """Return the current status without side effects."""
        return WatcherStatus(
            running=self._running,
            last_seen_total=self._last_seen_total,
            state=self._state,
        )

    # -- lifecycle -----------------------------------------------------------

    def start(
        self, config: ConnectionConfig, on_new_mail: NewMailCallback
    ) -> None:
        """Connect and start watching.

        The first connection attempt runs in the caller's thread so that
        connection and authentication errors reach the caller.  After that
        the actor thread owns the session.

        Args:
            config: Connection settings.
            on_new_mail: Called with each batch of new messages, newest
                first, on the actor thread.

        Raises:
            ConnectError: If the server cannot be reached.
            AuthError: If the credentials are rejected.
            ProtocolError: If the folder cannot be selected.
        """
        with self._lock:
            if self._running:
                logger.warning("Mailbox watcher is already running")
                return

            logger.info(
                "Starting mailbox watcher for %s@%s/%s",
                config.username,
                config.host,
                config.folder,
            )
            self._config = config
            self._on_new_mail = on_new_mail
            self._events = queue.Queue()
            self._generation += 1
            self._running = True
            self._state = WatcherState.CONNECTING

            try:
                self._connect()
            except Exception as e:
                logger.error("Failed to start mailbox watcher: %s", e)
                self._running = False
                self._cancel_timers()
                self._discard_session()
                self._ledger.clear()
                self._state = WatcherState.IDLE
                raise

            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name=f"MailboxWatcher-{config.host}",
            )
            self._thread.start()

    def stop(self) -> None:
        """Stop watching and release everything.

        Cancels both timers (a timer that already fired is ignored), wakes
        and joins the actor thread, closes the session and clears the
        ledger.  Does nothing when the watcher is not running.
        """
        with self._lock:
            if (
                not self._running
                and self._thread is None
                and self._session is None
            ):
                return

            logger.info("Stopping mailbox watcher")
            self._running = False
            self._generation += 1
            self._cancel_timers()
            self._post(_EventKind.STOP)

            thread = self._thread
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=_STOP_JOIN_TIMEOUT)
                if thread.is_alive():
                    logger.warning(
                        "Watcher thread did not terminate within %.0fs",
                        _STOP_JOIN_TIMEOUT,
                    )
            self._thread = None

            # The actor may have re-armed a timer before it saw the stop
            self._cancel_timers()
            self._discard_session()
            self._ledger.clear()
            self._state = WatcherState.IDLE
            logger.info("Mailbox watcher stopped")

    def apply_action(self, uid: int, action: PostAction) -> None:
        """Apply a post-notification action through the live session.

        Intended for the new-mail callback, which runs on the actor thread.

        Raises:
            ProtocolError: If there is no live session or the command fails.
        """
        if action is PostAction.NONE:
            return
        session = self._session
        if session is None:
            raise ProtocolError(
                f"Cannot {action.value} UID {uid}: not connected",
                disconnected=True,
            )
        session.apply(uid, action)

    # -- actor ---------------------------------------------------------------

    def _post(self, kind: _EventKind, source: str = "") -> None:
        self._post_event(_Event(kind, self._generation, source))

    def _post_event(self, event: _Event) -> None:
        self._events.put(event)
        session = self._session
        if session is not None:
            session.wake()

    def _run(self) -> None:
        """Actor loop: handle events one at a time until stopped."""
        logger.debug("Watcher loop started")
        while self._running:
            event = self._next_event()
            if event is None:
                continue
            try:
                self._handle(event)
            except Exception:
                logger.exception(
                    "Error handling %s event, continuing", event.kind.value
                )
        logger.debug("Watcher loop exited")

    def _next_event(self) -> _Event | None:
        """Return the next queued event, waiting in IDLE when possible."""
        try:
            return self._events.get_nowait()
        except queue.Empty:
            pass

        session = self._session
        if (
            session is not None
            and self._idle_supported
            and self._state is WatcherState.LISTENING
        ):
            return self._wait_for_push(session)

        return self._events.get()

    def _wait_for_push(self, session: MailboxSession) -> _Event | None:
        """Sit in IMAP IDLE until new mail arrives or an event is posted."""
        try:
            session.idle_start()
        except IdleError as e:
            if e.disconnected:
                self._handle_disconnect(str(e))
            else:
                logger.warning("IDLE unavailable, relying on polling: %s", e)
                self._idle_supported = False
            return None
        except ProtocolError as e:
            self._handle_protocol_error(e)
            return None

        try:
            got_mail = session.idle_wait(MAX_IDLE_SECONDS)
            session.idle_done()
        except ProtocolError as e:
            self._handle_protocol_error(e)
            return None

        if got_mail:
            logger.info("Server reported new mail")
            return _Event(_EventKind.DETECT, self._generation, "push")
        return None

    def _handle(self, event: _Event) -> None:
        if not self._running or event.generation != self._generation:
            logger.debug("Ignoring stale %s event", event.kind.value)
            return

        if event.kind is _EventKind.DETECT:
            if event.source == "poll":
                self._arm_poll_timer()
            self._detect(event.source)
        elif event.kind is _EventKind.RECONNECT:
            self._reconnect()

    # -- connection ----------------------------------------------------------

    def _connect(self) -> None:
        """Open a session, select the folder and run the first detection.

        Raises:
            MailboxError: If the session cannot be opened or the folder
                cannot be selected.  No session is kept in that case.
        """
        assert self._config is not None
        config = self._config

        session = self._session_factory(config)
        self._session = session
        self._idle_supported = True

        try:
            info = session.select_folder(config.folder, read_only=False)
        except ProtocolError:
            self._discard_session()
            raise

        self._last_seen_total = info.total
        self._state = WatcherState.LISTENING
        logger.info(
            "Listening on %s (%d messages in folder)", config.folder, info.total
        )

        self._detect("initial")
        self._arm_poll_timer()

    def _reconnect(self) -> None:
        self._reconnect_timer = None
        if self._session is not None:
            return

        assert self._config is not None
        self._state = WatcherState.CONNECTING
        logger.info("Reconnecting to %s", self._config.host)
        try:
            self._connect()
        except MailboxError as e:
            logger.error("Reconnect failed: %s", e)
            self._handle_disconnect(str(e))
            return
        if self._session is not None:
            logger.info("Reconnected to %s", self._config.host)

    def _handle_protocol_error(self, error: ProtocolError) -> None:
        if error.disconnected:
            self._handle_disconnect(str(error))
        else:
            logger.error("IMAP command failed: %s", error)

    def _handle_disconnect(self, reason: str) -> None:
        """Drop the dead session and schedule a reconnect if still running."""
        self._discard_session()
        if not self._running:
            return

        logger.warning(
            "IMAP connection lost (%s); reconnecting in %.0fs",
            reason,
            self._reconnect_delay,
        )
        self._state = WatcherState.RECONNECTING
        self._arm_reconnect_timer()

    def _discard_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            session.close()

    # -- timers --------------------------------------------------------------

    def _arm_poll_timer(self) -> None:
        if self._poll_timer is not None:
            self._poll_timer.cancel()
        if not self._running:
            self._poll_timer = None
            return
        event = _Event(_EventKind.DETECT, self._generation, "poll")
        self._poll_timer = self._timer_factory(
            self._poll_interval,
            lambda: self._post_event(event),
            "MailboxWatcher-poll",
        )

    def _arm_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        event = _Event(_EventKind.RECONNECT, self._generation)
        self._reconnect_timer = self._timer_factory(
            self._reconnect_delay,
            lambda: self._post_event(event),
            "MailboxWatcher-reconnect",
        )

    def _cancel_timers(self) -> None:
        for timer in (self._poll_timer, self._reconnect_timer):
            if timer is not None:
                timer.cancel()
        self._poll_timer = None
        self._reconnect_timer = None

    # -- detection -----------------------------------------------------------

    def _detect(self, source: str) -> None:
        """Run one detection pass.

        Searches for unseen messages, reserves the ones not seen before,
        fetches exactly those and hands them to the callback newest first.
        """
        session = self._session
        if session is None or not self._running:
            logger.debug("Skipping %s detection: not connected", source)
            return

        try:
            unseen = session.search("UNSEEN")
        except ProtocolError as e:
            self._handle_protocol_error(e)
            return

        if not unseen:
            logger.debug("No unread messages (%s)", source)
            return

        new_uids = self._ledger.reserve(unseen)
        if not new_uids:
            logger.debug(
                "All %d unread messages already handled (%s)",
                len(unseen),
                source,
            )
            return

        logger.info(
            "Found %d new messages (%s), fetching", len(new_uids), source
        )
        try:
            records = session.fetch(new_uids)
        except ProtocolError as e:
            self._handle_protocol_error(e)
            return

        if not records:
            return

        records.sort(key=lambda record: record.seqno, reverse=True)
        callback = self._on_new_mail
        if callback is None:
            return
        try:
            callback(records)
        except Exception as e:
            logger.exception("New-mail callback failed: %s", e)
