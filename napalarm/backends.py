"""
Playback backend abstractions for napalarm.

The ring cascade only talks to these interfaces; concrete implementations
live in gst_backends (GStreamer) and youtube (external video adapter).
Every stop() must be idempotent and safe when nothing is playing.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .models import PlayState

logger = logging.getLogger(__name__)


class PlaybackBackend(ABC):
    """Common contract for anything that makes the alarm audible."""

    name = "backend"

    @abstractmethod
    def stop(self) -> None:
        """Stop playback and release the device. Idempotent."""
        ...

    @property
    @abstractmethod
    def is_active(self) -> bool:
        """True while the backend is producing (or trying to produce) sound."""
        ...


class ToneGenerator(PlaybackBackend):
    """Synthetic tone source."""

    name = "tone"

    @abstractmethod
    def start_pattern(
        self, burst_ms: int, gap_ms: int, frequency_hz: float, volume: float
    ) -> None:
        """
        Start a repeating pattern of tone bursts separated by silence.

        Runs until stop() is called.

        Raises:
            Exception: If the tone could not be started
        """
        ...

    @abstractmethod
    def beep_once(self, duration_ms: int, frequency_hz: float, volume: float) -> None:
        """Play a single tone for duration_ms (used by sound previews)."""
        ...

    def resume(self) -> None:
        """Resume a suspended audio output, if the platform has such a thing."""
        return None


class AudioPlayer(PlaybackBackend):
    """Direct-URL audio player."""

    name = "audio"

    @abstractmethod
    def play(self, url: str, volume: float, loop: bool = True) -> None:
        """
        Play a URL (or local path), looping if requested.

        Raises:
            Exception: If playback is blocked or the source cannot be opened
        """
        ...

    @abstractmethod
    def set_volume(self, volume: float) -> None:
        ...

    def unlock(self, url: str, volume: float) -> None:
        """
        Best-effort pre-roll of a source so later playback starts promptly.

        Mirrors the "mute, play, pause" autoplay unlock: nothing is heard.
        """
        return None


class EmbeddedPlayer(PlaybackBackend):
    """
    Adapter around an external video platform player.

    prepare() may resolve the stream in the background; poll_state() reports
    progress without blocking.
    """

    name = "video"

    @abstractmethod
    def prepare(self, video_id: str) -> None:
        """Load a video without starting audible playback."""
        ...

    @abstractmethod
    def play(self) -> None:
        """Start (or queue the start of) playback of the prepared video."""
        ...

    @abstractmethod
    def poll_state(self) -> PlayState:
        ...

    def set_volume(self, volume: float) -> None:
        return None


@dataclass
class PlaybackBackends:
    """The set of backends one engine instance owns."""

    tone: ToneGenerator
    audio: AudioPlayer
    video: Optional[EmbeddedPlayer] = None

    def stop_all(self) -> None:
        """Stop every backend; one failing stop() does not skip the others."""
        for backend in (self.tone, self.audio, self.video):
            if backend is None:
                continue
            try:
                backend.stop()
            except Exception as e:
                logger.error("Error stopping %s backend: %s", backend.name, e, exc_info=True)
