"""
Console host for the alarm engine.

Wires an AlarmEngine to GStreamer audio, yt-dlp video resolution, an OS
sleep inhibitor, desktop notifications, the SIGINT leave-guard and the
terminal title, and drives it from single-line keyboard commands.
"""

import logging
import sys
from typing import Optional

from .alerts import SignalEmitter, TerminalTitle
from .backends import PlaybackBackends
from .clock import Clock, Scheduler, SystemClock, ThreadScheduler
from .engine import AlarmEngine, EngineSettings
from .guards import NavigationGuard, WakeLock
from .models import AlarmSession, AlarmState
from .platform import Capabilities, detect_capabilities

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Commands: [enter] start/pause (stop while ringing)  s snooze  x stop  "
    "r reset  t test sound  v <0-1> volume  esc silence  q quit"
)
RINGING_HINT = "⏰ Ringing! [enter]/x stop  s snooze +{minutes}m"


def build_backends(
    scheduler: Scheduler,
    config_manager=None,
    volume: float = 1.0,
    use_fakesinks: bool = False,
) -> PlaybackBackends:
    """Create the GStreamer tone/audio backends and the yt-dlp video adapter."""
    from .gst_backends import GstAudioPlayer, GstToneGenerator
    from .youtube import YouTubePlayer

    return PlaybackBackends(
        tone=GstToneGenerator(scheduler, config_manager, use_fakesinks=use_fakesinks),
        audio=GstAudioPlayer(config_manager, use_fakesinks=use_fakesinks),
        video=YouTubePlayer(
            GstAudioPlayer(config_manager, use_fakesinks=use_fakesinks), volume=volume
        ),
    )


class ConsoleAlarm:
    """Runs one alarm session in the terminal."""

    def __init__(
        self,
        session: AlarmSession,
        config_manager=None,
        capabilities: Optional[Capabilities] = None,
        backends: Optional[PlaybackBackends] = None,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        wake_lock=None,
        navigation_guard=None,
        stdin=None,
        stdout=None,
    ):
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.config_manager = config_manager
        self.clock = clock or SystemClock()
        self.scheduler = scheduler or ThreadScheduler()
        self.capabilities = capabilities or detect_capabilities()
        self.settings = (
            EngineSettings.from_config(config_manager) if config_manager else EngineSettings()
        )

        if backends is None:
            if not self.capabilities.has_gstreamer:
                raise RuntimeError("GStreamer (PyGObject) is required to play the alarm")
            backends = build_backends(self.scheduler, config_manager, self.settings.volume)

        self.title = TerminalTitle(stream=self.stdout)
        self.wake_lock = wake_lock or WakeLock(self.capabilities)
        self.navigation_guard = navigation_guard or NavigationGuard(
            clock=self.clock, warn=self._print
        )
        self.alerts = SignalEmitter(self.capabilities, self.scheduler, title=self.title)

        self.engine = AlarmEngine(
            session,
            backends,
            clock=self.clock,
            scheduler=self.scheduler,
            wake_lock=self.wake_lock,
            navigation_guard=self.navigation_guard,
            alerts=self.alerts,
            settings=self.settings,
            on_display=self._on_display,
            on_ringing=self._on_ringing,
            config_manager=config_manager,
        )

    def _print(self, message: str) -> None:
        self.stdout.write(f"\n{message}\n")
        self.stdout.flush()

    def _on_display(self, text: str) -> None:
        self.stdout.write(f"\r{text}  ")
        self.stdout.flush()

    def _on_ringing(self, ringing: bool) -> None:
        if ringing:
            self._print(RINGING_HINT.format(minutes=self.settings.default_snooze_minutes))

    def handle_command(self, command: str) -> bool:
        """
        Apply one console command.

        Returns:
            False when the user asked to quit, True otherwise
        """
        engine = self.engine
        cmd = command.strip().lower()

        if cmd in ("", "space"):
            if engine.state == AlarmState.RINGING:
                engine.stop()
            elif engine.state in (AlarmState.IDLE, AlarmState.PAUSED):
                engine.start()
            else:
                engine.pause()
        elif cmd == "s":
            engine.snooze()
        elif cmd == "x":
            engine.stop()
        elif cmd == "r":
            engine.reset()
        elif cmd == "t":
            if not engine.test_sound():
                self._print("Sound preview unavailable right now")
        elif cmd in ("esc", "\x1b"):
            if engine.state == AlarmState.RINGING or engine.remaining_ms <= 0:
                engine.stop()
            else:
                engine.silence()
        elif cmd.startswith("v"):
            value = cmd[1:].strip()
            try:
                engine.set_volume(float(value))
            except ValueError:
                self._print("Usage: v <volume between 0 and 1>")
        elif cmd == "q":
            return False
        else:
            self._print(HELP_TEXT)
        return True

    def run(self) -> int:
        """Start the countdown and process commands until quit or EOF."""
        self.navigation_guard.install()
        self._print(HELP_TEXT)
        self.engine.start()
        try:
            while True:
                line = self.stdin.readline()
                if line == "":
                    break
                if not self.handle_command(line.rstrip("\n")):
                    break
        except KeyboardInterrupt:
            logger.info("Interrupted, leaving")
        finally:
            self.close()
        return 0

    def close(self) -> None:
        """Close the engine, then uninstall the SIGINT handler it was guarded by."""
        self.engine.close()
        self.navigation_guard.uninstall()
        self.stdout.write("\n")
        self.stdout.flush()
