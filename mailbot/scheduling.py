# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Cancellable one-shot timers for the watcher's poll and reconnect loops."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Protocol


logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    """A scheduled callback that can be cancelled."""

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None], str], TimerHandle]


class OneShotTimer:
    """Run a callback once after a delay unless cancelled first.

    ``threading.Timer.cancel()`` cannot stop a timer whose thread has
    already woken up.  The cancellation flag is checked again right before
    the callback runs, which narrows that window to the callback itself.
    """

    def __init__(
        self, delay: float, callback: Callable[[], None], name: str
    ) -> None:
        self.delay = delay
        self.name = name
        self._callback = callback
        self._cancelled = threading.Event()
        self._timer = threading.Timer(delay, self._fire)
        self._timer.daemon = True
        self._timer.name = name

    def start(self) -> OneShotTimer:
        self._timer.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()
        self._timer.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _fire(self) -> None:
        if self._cancelled.is_set():
            return
        try:
            self._callback()
        except Exception as e:
            logger.exception("Timer %s callback failed: %s", self.name, e)


def start_timer(
    delay: float, callback: Callable[[], None], name: str
) -> OneShotTimer:
    """Create and start a ``OneShotTimer``."""
    return OneShotTimer(delay, callback, name).start()
