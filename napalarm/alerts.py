"""
Alert signals fired when the alarm starts ringing.

Desktop notification, vibration and title blinking. All of them are
best-effort and stay quiet while the user is already looking at the alarm.
"""

import logging
import subprocess
import sys
import threading
from typing import Callable, List, Optional

from .clock import Scheduler, TimerHandle
from .platform import Capabilities, notification_command

NOTIFICATION_TITLE = "⏰ Alarm"
NOTIFICATION_BODY = "Time's up"
BLINK_TITLE = "⏰ Time's up"
BLINK_INTERVAL_MS = 900
VIBRATION_PATTERN = [400, 120, 400, 120, 400]


class TerminalTitle:
    """Window title of the controlling terminal (xterm OSC 0)."""

    def __init__(self, initial: str = "napalarm", stream=None):
        self.stream = stream or sys.stdout
        self.text = initial

    def get(self) -> str:
        return self.text

    def set(self, text: str) -> None:
        self.text = text
        if self.stream.isatty():
            self.stream.write(f"\033]0;{text}\007")
            self.stream.flush()


class SignalEmitter:
    """Fires and clears the ring alerts."""

    def __init__(
        self,
        capabilities: Capabilities,
        scheduler: Scheduler,
        title=None,
        is_foreground: Optional[Callable[[], bool]] = None,
        vibrate: Optional[Callable[[List[int]], None]] = None,
        run=subprocess.run,
    ):
        """
        Args:
            capabilities: Platform capability flags
            scheduler: Drives the title blink
            title: Object with get()/set(text) for the page/window title
            is_foreground: Returns True when the user is looking at the alarm
            vibrate: Vibration motor driver (only used if capabilities allow)
            run: subprocess.run-compatible callable for the notifier
        """
        self.capabilities = capabilities
        self.scheduler = scheduler
        self.title = title
        self.is_foreground = is_foreground or (lambda: False)
        self.vibrate = vibrate
        self.run = run
        self.logger = logging.getLogger(__name__)

        self._blinker: Optional[TimerHandle] = None
        self._original_title: Optional[str] = None
        self._notify_thread: Optional[threading.Thread] = None

    @property
    def blinking(self) -> bool:
        return self._blinker is not None

    def fire(self) -> None:
        """Notify, vibrate and start blinking the title (unless foregrounded)."""
        try:
            if self.is_foreground():
                self.logger.debug("Alarm is in the foreground, alerts muted")
                return
        except Exception as e:
            self.logger.debug("Foreground check failed: %s", e)

        self._notify()
        self._vibrate()
        self._start_blink()

    def clear(self) -> None:
        """Stop blinking and restore the title. Idempotent."""
        if self._blinker:
            self._blinker.cancel()
            self._blinker = None
        if self._original_title is not None and self.title is not None:
            try:
                self.title.set(self._original_title)
            except Exception as e:
                self.logger.debug("Could not restore title: %s", e)

    def _notify(self):
        if not self.capabilities.has_notification_api:
            return
        command = notification_command(NOTIFICATION_TITLE, NOTIFICATION_BODY)
        if not command:
            return
        # fire() runs under the engine lock; the notifier may take seconds
        self._notify_thread = threading.Thread(
            target=self._run_notifier, args=(command,), daemon=True, name="AlarmNotify"
        )
        self._notify_thread.start()

    def _run_notifier(self, command):
        try:
            self.run(command, check=False, timeout=5, capture_output=True)
        except (OSError, subprocess.SubprocessError) as e:
            self.logger.warning("Notification failed: %s", e)

    def _vibrate(self):
        if not self.capabilities.has_vibration_api or self.vibrate is None:
            return
        try:
            self.vibrate(list(VIBRATION_PATTERN))
        except Exception as e:
            self.logger.warning("Vibration failed: %s", e)

    def _start_blink(self):
        if self.title is None:
            return
        self.clear()
        if self._original_title is None:
            self._original_title = self.title.get()

        def toggle():
            try:
                current = self.title.get()
                self.title.set(self._original_title if current == BLINK_TITLE else BLINK_TITLE)
            except Exception as e:
                self.logger.debug("Title blink failed: %s", e)

        self._blinker = self.scheduler.call_repeating(BLINK_INTERVAL_MS, toggle)
