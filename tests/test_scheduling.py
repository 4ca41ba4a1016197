# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for one-shot timers."""

import threading
from unittest.mock import MagicMock

from mailbot.scheduling import OneShotTimer, start_timer


class TestOneShotTimer:
    def test_fires_once(self) -> None:
        fired = threading.Event()

        timer = start_timer(0.01, fired.set, "test-timer")

        assert fired.wait(timeout=5)
        assert timer.name == "test-timer"
        assert not timer.cancelled

    def test_cancel_before_fire(self) -> None:
        callback = MagicMock()
        timer = OneShotTimer(60, callback, "test-timer").start()

        timer.cancel()

        assert timer.cancelled
        callback.assert_not_called()

    def test_cancelled_flag_checked_at_fire_time(self) -> None:
        """Test that a timer cancelled after waking does not run."""
        callback = MagicMock()
        timer = OneShotTimer(60, callback, "test-timer")

        timer.cancel()
        timer._fire()

        callback.assert_not_called()

    def test_callback_exception_is_logged(self, caplog) -> None:
        timer = OneShotTimer(
            0, MagicMock(side_effect=RuntimeError("boom")), "test-timer"
        )

        timer._fire()

        assert "Timer test-timer callback failed" in caplog.text
