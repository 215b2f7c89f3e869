"""
Alarm engine for napalarm.

Countdown state machine: tracks wall-clock time against an absolute
deadline, rings through the RingCascade at zero, and supports pause,
snooze, stop and reset. Every public method is serialized on one lock,
together with every deferred callback the engine schedules.
"""

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .backends import PlaybackBackends
from .clock import Clock, Scheduler, SystemClock, ThreadScheduler, TimerHandle
from .models import AlarmSession, AlarmState, MusicKind, MusicSource
from .ring import CascadeSettings, RingCascade
from .video_ref import resolve_video_id

PRESS_PLAY_TEXT = "▶ Press play to start the alarm sound"
PREVIEW_BEEP_MS = 800
PREVIEW_BEEP_HZ = 880
VIDEO_PREVIEW_MS = 8000


def format_countdown(remaining_ms: int) -> str:
    """Format remaining time as hh:mm:ss, rounding seconds up."""
    total = max(0, (int(remaining_ms) + 999) // 1000)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass
class EngineSettings:
    """Tunables for one engine instance."""

    tick_interval_ms: int = 200
    video_ready_timeout_ms: int = 2000
    tone_burst_ms: int = 250
    tone_gap_ms: int = 120
    tone_frequency_hz: float = 1000.0
    default_snooze_minutes: int = 5
    volume: float = 1.0
    preview_seconds: int = 3

    @classmethod
    def from_config(cls, config_manager) -> "EngineSettings":
        d = cls()
        return cls(
            tick_interval_ms=config_manager.get_int("tick_interval_ms", d.tick_interval_ms),
            video_ready_timeout_ms=config_manager.get_int(
                "video_ready_timeout_ms", d.video_ready_timeout_ms
            ),
            tone_burst_ms=config_manager.get_int("tone_burst_ms", d.tone_burst_ms),
            tone_gap_ms=config_manager.get_int("tone_gap_ms", d.tone_gap_ms),
            tone_frequency_hz=config_manager.get_float("tone_frequency_hz", d.tone_frequency_hz),
            default_snooze_minutes=config_manager.get_int(
                "snooze_minutes", d.default_snooze_minutes
            ),
            volume=config_manager.get_float("volume", d.volume),
            preview_seconds=config_manager.get_int("preview_seconds", d.preview_seconds),
        )

    def cascade_settings(self) -> CascadeSettings:
        return CascadeSettings(
            tone_burst_ms=self.tone_burst_ms,
            tone_gap_ms=self.tone_gap_ms,
            tone_frequency_hz=self.tone_frequency_hz,
            video_ready_timeout_ms=self.video_ready_timeout_ms,
        )


def create_session(
    duration_ms: int,
    music_url: Optional[str] = None,
    label: Optional[str] = None,
    config_manager=None,
) -> AlarmSession:
    """
    Build an AlarmSession, taking ring limits from configuration if given.

    Raises:
        InvalidDurationError: If duration_ms is outside (0, 24h]
    """
    kwargs: Dict[str, Any] = {}
    if config_manager is not None:
        ring_seconds = config_manager.get_int("ring_seconds")
        video_cap_ms = config_manager.get_int("external_video_cap_ms")
        if ring_seconds:
            kwargs["ring_budget_sec"] = ring_seconds
        if video_cap_ms:
            kwargs["external_video_cap_ms"] = video_cap_ms
    return AlarmSession(
        configured_duration_ms=duration_ms,
        music_source=MusicSource.from_url(music_url, label),
        **kwargs,
    )


class _LockedScheduler(Scheduler):
    """Runs every callback of the wrapped scheduler under the engine lock."""

    def __init__(self, scheduler: Scheduler, lock):
        self.scheduler = scheduler
        self.lock = lock
        self.logger = logging.getLogger(__name__)

    def _wrap(self, callback: Callable[[], None]) -> Callable[[], None]:
        def run():
            with self.lock:
                try:
                    callback()
                except Exception as e:
                    self.logger.error("Error in alarm timer callback: %s", e, exc_info=True)

        return run

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle:
        return self.scheduler.call_later(delay_ms, self._wrap(callback))

    def call_repeating(self, interval_ms: int, callback: Callable[[], None]) -> TimerHandle:
        return self.scheduler.call_repeating(interval_ms, self._wrap(callback))


class AlarmEngine:
    """Countdown -> ring -> snooze/stop state machine for one alarm session."""

    def __init__(
        self,
        session: AlarmSession,
        backends: PlaybackBackends,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        wake_lock=None,
        navigation_guard=None,
        alerts=None,
        settings: Optional[EngineSettings] = None,
        on_display: Optional[Callable[[str], None]] = None,
        on_ringing: Optional[Callable[[bool], None]] = None,
        config_manager=None,
    ):
        """
        Initialize AlarmEngine.

        Args:
            session: The alarm session this engine owns
            backends: Tone, audio and video playback backends
            clock: Wall-clock source (defaults to SystemClock)
            scheduler: Timer source (defaults to ThreadScheduler)
            wake_lock: WakeLock-like object (acquire/release/held/was_held)
            navigation_guard: NavigationGuard-like object (bind/unbind)
            alerts: SignalEmitter-like object (fire/clear)
            settings: EngineSettings
            on_display: Called with the hh:mm:ss text on every render
            on_ringing: Called when the ringing presentation flag flips
            config_manager: Optional ConfigManager; volume changes are saved to it
        """
        self.logger = logging.getLogger(__name__)
        self.session = session
        self.backends = backends
        self.clock = clock or SystemClock()
        self.settings = settings or EngineSettings()
        self.wake_lock = wake_lock
        self.navigation_guard = navigation_guard
        self.alerts = alerts
        self.on_display = on_display
        self.on_ringing = on_ringing
        self.config_manager = config_manager

        self.lock = threading.RLock()
        self.scheduler = _LockedScheduler(scheduler or ThreadScheduler(), self.lock)
        self.volume = _clamp_volume(self.settings.volume)
        self.cascade = RingCascade(
            backends,
            self.scheduler,
            self.settings.cascade_settings(),
            on_started=self._on_ring_started,
            on_expired=self.stop,
            on_failed=self._on_ring_failed,
        )

        self.ringing = False
        self.display_text = format_countdown(session.remaining_ms)
        self.ring_count = 0
        self._tick_handle: Optional[TimerHandle] = None
        self._preview_handle: Optional[TimerHandle] = None
        self._preview_backend = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> AlarmState:
        return self.session.state

    @property
    def remaining_ms(self) -> int:
        """Remaining time, recomputed from the deadline while running."""
        with self.lock:
            if self.session.state == AlarmState.RUNNING and self.session.ends_at_epoch_ms:
                return max(0, self.session.ends_at_epoch_ms - self.clock.now_ms())
            return self.session.remaining_ms

    def get_status(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "state": self.session.state.value,
                "remaining_ms": self.remaining_ms,
                "ends_at_ms": self.session.ends_at_epoch_ms,
                "display": self.display_text,
                "ringing": self.ringing,
                "backend": self.cascade.active_backend,
                "music_kind": self.session.music_source.kind.value,
                "volume": self.volume,
            }

    # =========================================================================
    # Gestures
    # =========================================================================

    def start(self) -> bool:
        """
        Start or resume the countdown.

        Returns:
            True if the engine is running after the call
        """
        with self.lock:
            if self.session.state == AlarmState.RUNNING:
                self.logger.debug("Already running")
                return True
            if self.session.state == AlarmState.RINGING:
                self.logger.debug("Ringing, use stop() or snooze()")
                return False
            if self.session.remaining_ms <= 0:
                self.logger.debug("Nothing left to count down, reset first")
                return False

            try:
                self._stop_preview()
                self.logger.info("Starting countdown: %s ms", self.session.remaining_ms)
                self._begin_countdown(self.session.remaining_ms)
                return True
            except Exception as e:
                self.logger.error("Error starting alarm: %s", e, exc_info=True)
                return False

    def pause(self) -> bool:
        """
        Pause the countdown.

        Returns:
            True if paused, False otherwise
        """
        with self.lock:
            if self.session.state != AlarmState.RUNNING:
                self.logger.debug("Not running, cannot pause")
                return False

            try:
                self._cancel_tick()
                remaining = self._compute_remaining()
                self.session.remaining_ms = remaining
                self.session.ends_at_epoch_ms = None
                self.session.state = AlarmState.PAUSED
                self.logger.info("Paused with %s ms remaining", remaining)
                self._render(remaining)
                self._release_guards()
                self._clear_alerts()
                return True
            except Exception as e:
                self.logger.error("Error pausing alarm: %s", e, exc_info=True)
                return False

    def stop(self) -> bool:
        """
        Stop ringing or counting down and return to IDLE. Idempotent.

        remaining_ms is left as it was; call reset() to restore the
        configured duration.
        """
        with self.lock:
            if self.session.state != AlarmState.IDLE:
                self.logger.info("Stopping alarm (was %s)", self.session.state.value)
            try:
                self._teardown()
                return True
            except Exception as e:
                self.logger.error("Error stopping alarm: %s", e, exc_info=True)
                return False
            finally:
                self.session.state = AlarmState.IDLE
                self.session.ends_at_epoch_ms = None
                self._render(self.session.remaining_ms)

    def snooze(self, minutes: Optional[float] = None) -> bool:
        """
        Silence the alarm and ring again after `minutes`.

        Non-positive or missing values use the configured snooze length.
        """
        with self.lock:
            minutes = self._snooze_minutes(minutes)
            try:
                self._teardown()
                duration_ms = int(round(minutes * 60_000))
                self.logger.info("Snoozing for %s minutes", minutes)
                self._begin_countdown(duration_ms)
                return True
            except Exception as e:
                self.logger.error("Error snoozing alarm: %s", e, exc_info=True)
                return False

    def reset(self) -> bool:
        """Stop everything and restore the configured duration."""
        with self.lock:
            try:
                self._teardown()
                return True
            except Exception as e:
                self.logger.error("Error resetting alarm: %s", e, exc_info=True)
                return False
            finally:
                self.session.state = AlarmState.IDLE
                self.session.ends_at_epoch_ms = None
                self.session.remaining_ms = self.session.configured_duration_ms
                self.logger.info("Alarm reset to %s ms", self.session.remaining_ms)
                self._render(self.session.remaining_ms)

    def test_sound(self) -> bool:
        """
        Preview the alarm sound without touching the session.

        Returns:
            True if a preview started
        """
        with self.lock:
            if self.session.state == AlarmState.RINGING:
                self.logger.debug("Already ringing, no preview")
                return False

            self._stop_preview()
            source = self.session.music_source
            if source.kind == MusicKind.EXTERNAL_VIDEO and self.backends.video is not None:
                return self._preview_video(source.locator)

            if source.kind == MusicKind.ASSET:
                self._preview_backend = self.backends.audio
                try:
                    self.backends.audio.play(source.locator, self.volume, loop=False)
                    self._preview_handle = self.scheduler.call_later(
                        self.settings.preview_seconds * 1000, self._stop_preview
                    )
                    self.logger.info("Playing sound preview of %s", source.locator)
                    return True
                except Exception as e:
                    self.logger.warning("Audio preview failed (%s), beeping instead", e)
                    self._stop_preview()

            try:
                self.backends.tone.beep_once(PREVIEW_BEEP_MS, PREVIEW_BEEP_HZ, self.volume)
                self._preview_backend = self.backends.tone
                self.logger.info("Playing preview beep")
                return True
            except Exception as e:
                self.logger.warning("Sound preview failed: %s", e)
                self._stop_preview()
                return False

    def _preview_video(self, url: str) -> bool:
        video = self.backends.video
        video_id = resolve_video_id(url)
        if not video_id:
            self.logger.warning("No playable video id in %s, nothing to preview", url)
            return False

        self._preview_backend = video
        try:
            video.prepare(video_id)
            video.set_volume(self.volume)
            video.play()
        except Exception as e:
            self.logger.warning("Video preview failed: %s", e)
            self._stop_preview()
            return False
        self._preview_handle = self.scheduler.call_later(VIDEO_PREVIEW_MS, self._stop_preview)
        self.logger.info("Previewing video %s", video_id)
        return True

    def set_volume(self, volume: float) -> bool:
        with self.lock:
            try:
                self.volume = _clamp_volume(volume)
                if self.backends.audio.is_active:
                    self.backends.audio.set_volume(self.volume)
                if self.backends.video is not None:
                    self.backends.video.set_volume(self.volume)
                self.logger.debug("Volume set to %s", self.volume)
                if self.config_manager is not None:
                    self.config_manager.set("volume", self.volume)
                return True
            except Exception as e:
                self.logger.error("Error setting volume: %s", e, exc_info=True)
                return False

    def on_visibility_change(self, visible: bool) -> None:
        """Host window/tab became visible or hidden."""
        with self.lock:
            if not visible:
                return
            try:
                self._clear_alerts()
                if (
                    self.session.state in (AlarmState.RUNNING, AlarmState.RINGING)
                    and self.wake_lock is not None
                    and self.wake_lock.was_held
                    and not self.wake_lock.held
                ):
                    self.logger.info("Visibility regained, re-acquiring wake lock")
                    self.wake_lock.acquire()
            except Exception as e:
                self.logger.warning("Error handling visibility change: %s", e)

    def silence(self) -> bool:
        """Stop any preview sound and alert signals; state is unchanged."""
        with self.lock:
            try:
                self._stop_preview()
                self._clear_alerts()
                return True
            except Exception as e:
                self.logger.error("Error silencing alarm: %s", e, exc_info=True)
                return False

    def close(self) -> None:
        """
        Tear the engine down for good.

        Stops playback, releases the wake lock, unbinds the navigation guard
        and clears alert signals. The SIGINT handler behind the guard is
        installed and uninstalled by the host (ConsoleAlarm.close), since
        that has to happen on the main thread.
        """
        with self.lock:
            self.stop()
            self._clear_alerts()
            self.logger.info("Alarm engine closed")

    # =========================================================================
    # Countdown
    # =========================================================================

    def _begin_countdown(self, duration_ms: int):
        now = self.clock.now_ms()
        self.session.ends_at_epoch_ms = now + duration_ms
        self.session.remaining_ms = duration_ms
        self.session.state = AlarmState.RUNNING
        self._set_ringing(False)
        self._unlock_audio()
        self._prefetch_video()
        self._tick()
        self._bind_guard()
        self._acquire_wake_lock()

    def _compute_remaining(self) -> int:
        if self.session.ends_at_epoch_ms is None:
            return self.session.remaining_ms
        return max(0, self.session.ends_at_epoch_ms - self.clock.now_ms())

    def _tick(self):
        self._tick_handle = None
        if self.session.state != AlarmState.RUNNING:
            return

        remaining = self._compute_remaining()
        self.session.remaining_ms = remaining
        self._render(remaining)

        if remaining <= 0:
            self._ring()
            return

        delay = min(self.settings.tick_interval_ms, remaining)
        self._tick_handle = self.scheduler.call_later(delay, self._tick)

    def _cancel_tick(self):
        if self._tick_handle:
            self._tick_handle.cancel()
            self._tick_handle = None

    def _render(self, remaining_ms: int):
        self.display_text = format_countdown(remaining_ms)
        self._notify_display(self.display_text)

    def _notify_display(self, text: str):
        if self.on_display:
            try:
                self.on_display(text)
            except Exception as e:
                self.logger.debug("Display observer failed: %s", e)

    # =========================================================================
    # Ringing
    # =========================================================================

    def _ring(self):
        self._cancel_tick()
        self._stop_preview()
        self.session.state = AlarmState.RINGING
        self.ring_count += 1
        self.logger.info("Alarm ringing (%s)", self.session.music_source.kind.value)
        self._acquire_wake_lock()
        try:
            self.cascade.run(self.session, self.volume)
        except Exception as e:
            self._on_ring_failed(e)

    def _on_ring_started(self, backend: str):
        self.logger.info("Ring started with %s backend", backend)
        if self.alerts is not None:
            try:
                self.alerts.fire()
            except Exception as e:
                self.logger.warning("Alert signals failed: %s", e)
        self._set_ringing(True)

    def _on_ring_failed(self, error: Exception):
        self.logger.error("No alarm sound could be started: %s", error)
        self.display_text = PRESS_PLAY_TEXT
        self._notify_display(PRESS_PLAY_TEXT)

    def _set_ringing(self, ringing: bool):
        if self.ringing == ringing:
            return
        self.ringing = ringing
        if self.on_ringing:
            try:
                self.on_ringing(ringing)
            except Exception as e:
                self.logger.debug("Ringing observer failed: %s", e)

    def _snooze_minutes(self, minutes) -> float:
        try:
            value = float(minutes)
        except (TypeError, ValueError):
            value = 0.0
        if not math.isfinite(value) or value <= 0:
            return float(self.settings.default_snooze_minutes)
        return value

    # =========================================================================
    # Side effects
    # =========================================================================

    def _teardown(self):
        """Cancel every timer, silence every backend and release guards."""
        self._cancel_tick()
        self.cascade.cancel()
        self._stop_preview()
        self._clear_alerts()
        self._release_guards()
        self._set_ringing(False)

    def _stop_preview(self):
        if self._preview_handle:
            self._preview_handle.cancel()
            self._preview_handle = None
        backend = self._preview_backend
        self._preview_backend = None
        if backend is not None:
            try:
                backend.stop()
            except Exception as e:
                self.logger.warning("Error stopping preview: %s", e)

    def _unlock_audio(self):
        try:
            self.backends.tone.resume()
        except Exception as e:
            self.logger.debug("Tone resume failed: %s", e)
        source = self.session.music_source
        if source.kind == MusicKind.ASSET:
            try:
                self.backends.audio.unlock(source.locator, self.volume)
            except Exception as e:
                self.logger.debug("Audio unlock failed: %s", e)

    def _prefetch_video(self):
        source = self.session.music_source
        if source.kind != MusicKind.EXTERNAL_VIDEO or self.backends.video is None:
            return
        video_id = resolve_video_id(source.locator)
        if not video_id:
            return
        try:
            self.backends.video.prepare(video_id)
        except Exception as e:
            self.logger.warning("Could not prepare video %s: %s", video_id, e)

    def _bind_guard(self):
        if self.navigation_guard is None:
            return
        try:
            self.navigation_guard.bind()
        except Exception as e:
            self.logger.warning("Could not bind navigation guard: %s", e)

    def _acquire_wake_lock(self):
        if self.wake_lock is None:
            return
        try:
            self.wake_lock.acquire()
        except Exception as e:
            self.logger.warning("Wake lock request failed: %s", e)

    def _release_guards(self):
        if self.wake_lock is not None:
            try:
                self.wake_lock.release()
            except Exception as e:
                self.logger.warning("Error releasing wake lock: %s", e)
        if self.navigation_guard is not None:
            try:
                self.navigation_guard.unbind()
            except Exception as e:
                self.logger.warning("Could not unbind navigation guard: %s", e)

    def _clear_alerts(self):
        if self.alerts is None:
            return
        try:
            self.alerts.clear()
        except Exception as e:
            self.logger.debug("Error clearing alerts: %s", e)


def _clamp_volume(volume) -> float:
    try:
        value = float(volume)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(value):
        return 1.0
    return max(0.0, min(1.0, value))
