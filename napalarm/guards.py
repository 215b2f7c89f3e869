"""
Resource guards: screen wake lock and leave-confirmation guard.

Both are best-effort. Failures are logged and never propagate into the
alarm engine's state transitions.
"""

import logging
import signal
import subprocess
import sys
import threading
from typing import Callable, List, Optional

from .clock import Clock, SystemClock
from .platform import Capabilities, wake_lock_command

logger = logging.getLogger(__name__)

LEAVE_WARNING = "Alarm is running. Press Ctrl+C again to leave anyway."


class WakeLock:
    """
    Keeps the display awake by holding an OS sleep inhibitor process.

    The OS (or the user) may kill the inhibitor at any time; that counts as
    revocation and is detected lazily through `held`.
    """

    def __init__(
        self,
        capabilities: Capabilities,
        command_factory: Callable[[], Optional[List[str]]] = wake_lock_command,
        popen=subprocess.Popen,
    ):
        self.capabilities = capabilities
        self.command_factory = command_factory
        self.popen = popen
        self.logger = logging.getLogger(__name__)

        self._process = None
        # True between a successful acquire() and an explicit release()
        self.was_held = False

    @property
    def held(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def acquire(self) -> bool:
        """
        Request the wake lock.

        Returns:
            True if the lock is held after the call
        """
        if not self.capabilities.has_wake_lock_api:
            self.logger.debug("Wake lock unavailable on this platform")
            return False

        if self.held:
            return True
        if self._process is not None:
            self.logger.info("Wake lock was revoked, re-acquiring")
            self._process = None

        command = self.command_factory()
        if not command:
            self.logger.warning("Wake lock command not found")
            return False

        try:
            self._process = self.popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            self.logger.warning("Wake lock request failed: %s", e)
            self._process = None
            return False

        self.was_held = True
        self.logger.debug("Wake lock acquired (pid %s)", getattr(self._process, "pid", None))
        return True

    def release(self) -> None:
        """Release the wake lock. Safe to call when not held."""
        self.was_held = False
        process = self._process
        self._process = None
        if process is None:
            return
        try:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=1)
                except subprocess.TimeoutExpired:
                    process.kill()
            self.logger.debug("Wake lock released")
        except OSError as e:
            self.logger.warning("Error releasing wake lock: %s", e)


class NavigationGuard:
    """
    Asks for confirmation before the user leaves while an alarm is active.

    The SIGINT handler is installed once (from the main thread); bind() and
    unbind() only flip a flag, so they are idempotent and callable from any
    thread. While bound, a first Ctrl+C only warns; a second one within
    `confirm_window_ms` leaves.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        confirm_window_ms: int = 3000,
        warn: Optional[Callable[[str], None]] = None,
    ):
        self.clock = clock or SystemClock()
        self.confirm_window_ms = confirm_window_ms
        self.warn = warn or self._default_warn
        self.logger = logging.getLogger(__name__)

        self._bound = False
        self._installed = False
        self._previous_handler = None
        self._last_warning_ms: Optional[int] = None

    @staticmethod
    def _default_warn(message: str) -> None:
        sys.stderr.write(f"\n{message}\n")
        sys.stderr.flush()

    @property
    def is_bound(self) -> bool:
        return self._bound

    def install(self) -> bool:
        """Install the SIGINT handler. Must run on the main thread."""
        if self._installed:
            return True
        if threading.current_thread() is not threading.main_thread():
            self.logger.warning("Navigation guard can only be installed from the main thread")
            return False
        try:
            self._previous_handler = signal.signal(signal.SIGINT, self._handle_signal)
        except (ValueError, OSError) as e:
            self.logger.warning("Could not install navigation guard: %s", e)
            return False
        self._installed = True
        return True

    def uninstall(self) -> None:
        if not self._installed:
            return
        try:
            signal.signal(signal.SIGINT, self._previous_handler or signal.default_int_handler)
        except (ValueError, OSError) as e:
            self.logger.warning("Could not restore SIGINT handler: %s", e)
        self._installed = False

    def bind(self) -> None:
        if not self._bound:
            self.logger.debug("Navigation guard bound")
        self._bound = True

    def unbind(self) -> None:
        if self._bound:
            self.logger.debug("Navigation guard unbound")
        self._bound = False
        self._last_warning_ms = None

    def request_leave(self) -> bool:
        """
        Decide whether a leave request may proceed.

        Returns:
            True if leaving is allowed now, False if the user was warned instead
        """
        if not self._bound:
            return True
        now = self.clock.now_ms()
        if (
            self._last_warning_ms is not None
            and now - self._last_warning_ms <= self.confirm_window_ms
        ):
            self._last_warning_ms = None
            return True
        self._last_warning_ms = now
        self.warn(LEAVE_WARNING)
        return False

    def _handle_signal(self, signum, frame):
        if not self.request_leave():
            return
        previous = self._previous_handler
        if callable(previous):
            previous(signum, frame)
        else:
            raise KeyboardInterrupt
