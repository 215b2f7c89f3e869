"""
Ring cascade for napalarm.

Decides, once per ring cycle, how to make noise: external video first (when
configured and it confirms playback in time), a looped audio URL, or the
synthetic tone as the last resort. Only one backend is ever active; every
timer it arms is tracked and cancelled by cancel().
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .backends import PlaybackBackends
from .clock import BoundedPoll, Scheduler
from .models import AlarmSession, MusicKind, PlayState, RingAttempt
from .video_ref import resolve_video_id

logger = logging.getLogger(__name__)


class RingFailedError(RuntimeError):
    """No playback strategy could be started."""


@dataclass
class CascadeSettings:
    tone_burst_ms: int = 250
    tone_gap_ms: int = 120
    tone_frequency_hz: float = 1000.0
    video_ready_timeout_ms: int = 2000
    video_poll_initial_ms: int = 50
    video_poll_max_ms: int = 400
    video_poll_max_attempts: int = 40


class RingCascade:
    """Runs the ordered playback fallbacks for one engine."""

    def __init__(
        self,
        backends: PlaybackBackends,
        scheduler: Scheduler,
        settings: Optional[CascadeSettings] = None,
        on_started: Optional[Callable[[str], None]] = None,
        on_expired: Optional[Callable[[], None]] = None,
        on_failed: Optional[Callable[[Exception], None]] = None,
    ):
        """
        Args:
            backends: Tone, audio and (optional) video backends
            scheduler: Used for auto-stop timers and readiness polling
            settings: Tone pattern and video wait parameters
            on_started: Called with the backend name once something plays
            on_expired: Called when the ring budget (or video cap) runs out
            on_failed: Called when a deferred fallback could not start anything
        """
        self.backends = backends
        self.scheduler = scheduler
        self.settings = settings or CascadeSettings()
        self.on_started = on_started or (lambda backend: None)
        self.on_expired = on_expired or (lambda: None)
        self.on_failed = on_failed or (lambda error: None)

        self.attempt: Optional[RingAttempt] = None
        self._poll: Optional[BoundedPoll] = None
        self._generation = 0
        self._volume = 1.0

    @property
    def started(self) -> bool:
        return self.attempt is not None and self.attempt.started

    @property
    def active_backend(self) -> Optional[str]:
        return self.attempt.backend if self.attempt else None

    def run(self, session: AlarmSession, volume: float) -> None:
        """
        Start ringing for the session's music source.

        Raises:
            RingFailedError: If no strategy could be started synchronously
        """
        self._discard_attempt()
        self._generation += 1
        self._volume = volume
        source = session.music_source
        budget_ms = session.ring_budget_sec * 1000

        if source.kind == MusicKind.EXTERNAL_VIDEO and self.backends.video is not None:
            video_id = resolve_video_id(source.locator)
            if video_id:
                if self._ring_video(video_id, session):
                    return
            else:
                logger.warning("No playable video id in %s, using tone", source.locator)

        elif source.kind == MusicKind.ASSET:
            try:
                self._ring_asset(source.locator, budget_ms)
                return
            except Exception as e:
                logger.warning("Audio playback failed (%s), falling back to tone", e)
                _safe_stop(self.backends.audio)

        self._ring_tone(budget_ms)

    def cancel(self) -> None:
        """Cancel timers and polls, and stop every backend. Idempotent."""
        self._generation += 1
        self._discard_attempt()
        self.backends.stop_all()

    # =========================================================================
    # Strategies
    # =========================================================================

    def _ring_tone(self, budget_ms: int):
        self.attempt = RingAttempt(backend=self.backends.tone.name)
        s = self.settings
        try:
            self.backends.tone.start_pattern(
                s.tone_burst_ms, s.tone_gap_ms, s.tone_frequency_hz, self._volume
            )
        except Exception as e:
            _safe_stop(self.backends.tone)
            raise RingFailedError(f"Tone could not be started: {e}") from e
        logger.info("Ringing with tone for %s ms", budget_ms)
        self._arm_auto_stop(budget_ms)
        self._mark_started()

    def _ring_asset(self, url: str, budget_ms: int):
        self.attempt = RingAttempt(backend=self.backends.audio.name)
        self.backends.audio.play(url, self._volume, loop=True)
        logger.info("Ringing with %s for %s ms", url, budget_ms)
        self._arm_auto_stop(budget_ms)
        self._mark_started()

    def _ring_video(self, video_id: str, session: AlarmSession) -> bool:
        video = self.backends.video
        self.attempt = RingAttempt(backend=video.name)
        try:
            video.prepare(video_id)
            video.set_volume(self._volume)
            video.play()
        except Exception as e:
            logger.warning("Video %s could not be started (%s), falling back to tone", video_id, e)
            _safe_stop(video)
            return False

        generation = self._generation
        budget_ms = session.ring_budget_sec * 1000
        cap_ms = session.external_video_cap_ms

        def check() -> Optional[bool]:
            state = video.poll_state()
            if state == PlayState.ERROR:
                return None
            return state == PlayState.PLAYING

        def on_done(ok: bool):
            if generation != self._generation:
                return
            self._poll = None
            if ok:
                logger.info("Ringing with video %s (cap %s ms)", video_id, cap_ms)
                self._arm_auto_stop(cap_ms)
                self._mark_started()
                return

            logger.warning("Video %s did not start in time, falling back to tone", video_id)
            _safe_stop(video)
            try:
                self._ring_tone(budget_ms)
            except RingFailedError as e:
                self.on_failed(e)

        s = self.settings
        self._poll = BoundedPoll(
            self.scheduler,
            check,
            on_done,
            timeout_ms=s.video_ready_timeout_ms,
            initial_delay_ms=s.video_poll_initial_ms,
            max_delay_ms=s.video_poll_max_ms,
            max_attempts=s.video_poll_max_attempts,
        )
        self._poll.start()
        return True

    # =========================================================================
    # Helpers
    # =========================================================================

    def _arm_auto_stop(self, delay_ms: int):
        generation = self._generation

        def expire():
            if generation != self._generation:
                return
            logger.info("Ring budget exhausted, stopping")
            self.on_expired()

        if self.attempt.stop_timer:
            self.attempt.stop_timer.cancel()
        self.attempt.stop_timer = self.scheduler.call_later(delay_ms, expire)

    def _mark_started(self):
        self.attempt.started = True
        self.on_started(self.attempt.backend)

    def _discard_attempt(self):
        if self._poll:
            self._poll.cancel()
            self._poll = None
        if self.attempt:
            if self.attempt.stop_timer:
                self.attempt.stop_timer.cancel()
            self.attempt = None


def _safe_stop(backend):
    try:
        backend.stop()
    except Exception as e:
        logger.error("Error stopping %s backend: %s", backend.name, e, exc_info=True)
