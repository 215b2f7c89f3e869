"""
YouTube player adapter for napalarm.

Implements the EmbeddedPlayer interface: the audio stream URL of a video is
resolved with yt-dlp in a background thread, then played through an
AudioPlayer. The ring cascade polls poll_state() to learn whether the video
actually started.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Optional

import yt_dlp

from .backends import AudioPlayer, EmbeddedPlayer
from .models import PlayState

StreamResolver = Callable[[str], str]

DEFAULT_YDL_OPTS: Dict[str, Any] = {
    "format": "bestaudio/best",
    "quiet": True,
    "no_warnings": True,
    "noplaylist": True,
    # Try multiple clients for better compatibility
    "extractor_args": {
        "youtube": {
            "player_client": ["android", "web"],
        }
    },
}


def _describe_error(error_msg: str) -> str:
    """Turn yt-dlp errors into something a user can act on."""
    if "403" in error_msg or "Forbidden" in error_msg:
        return "YouTube blocked the stream (403 Forbidden). Try updating yt-dlp."
    if "Private video" in error_msg:
        return "Video is private or unavailable"
    if "Video unavailable" in error_msg:
        return "Video is unavailable or has been removed"
    return error_msg


def resolve_audio_stream(video_id: str, ydl_opts: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve a playable audio stream URL for a YouTube video.

    Args:
        video_id: 11-character YouTube video ID
        ydl_opts: yt-dlp options (defaults to DEFAULT_YDL_OPTS)

    Returns:
        Direct stream URL

    Raises:
        RuntimeError: If no stream could be resolved
    """
    url = f"https://www.youtube.com/watch?v={video_id}"
    with yt_dlp.YoutubeDL(ydl_opts or DEFAULT_YDL_OPTS) as ydl:
        info = ydl.extract_info(url, download=False)

    if not info:
        raise RuntimeError(f"No information returned for {video_id}")

    stream_url = info.get("url")
    if not stream_url:
        for fmt in info.get("requested_formats") or []:
            if fmt.get("acodec") not in (None, "none") and fmt.get("url"):
                stream_url = fmt["url"]
                break
    if not stream_url:
        raise RuntimeError(f"No playable audio stream for {video_id}")
    return stream_url


class YouTubePlayer(EmbeddedPlayer):
    """EmbeddedPlayer backed by yt-dlp stream resolution and an AudioPlayer."""

    def __init__(
        self,
        audio_player: AudioPlayer,
        resolver: Optional[StreamResolver] = None,
        volume: float = 1.0,
    ):
        """
        Initialize YouTubePlayer.

        Args:
            audio_player: Player used for the resolved stream (not shared with
                the direct-URL backend)
            resolver: Function mapping a video id to a stream URL
                (defaults to resolve_audio_stream)
            volume: Initial playback volume
        """
        self.logger = logging.getLogger(__name__)
        self.audio_player = audio_player
        self.resolver = resolver or resolve_audio_stream
        self.volume = volume

        self.video_id: Optional[str] = None
        self.stream_url: Optional[str] = None
        self.error: Optional[str] = None
        self._resolving = False
        self._play_requested = False
        self._playing = False
        self._starting = False
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def is_active(self) -> bool:
        return self._play_requested or self.audio_player.is_active

    def prepare(self, video_id: str) -> None:
        with self._lock:
            if video_id == self.video_id and (self._resolving or self.stream_url):
                self.logger.debug("Video %s already prepared", video_id)
                return

            self._generation += 1
            generation = self._generation
            self.video_id = video_id
            self.stream_url = None
            self.error = None
            self._resolving = True

        def resolve_thread():
            try:
                stream_url = self.resolver(video_id)
                error = None
            except Exception as e:
                stream_url = None
                error = _describe_error(str(e))
                self.logger.error("Error resolving video %s: %s", video_id, error)

            with self._lock:
                if generation != self._generation:
                    return
                self._resolving = False
                self.stream_url = stream_url
                self.error = error
                if stream_url:
                    self.logger.info("Resolved stream for video %s", video_id)
                start = stream_url is not None and self._claim_start()
            if start:
                self._start_playback(generation, stream_url)

        thread = threading.Thread(target=resolve_thread, daemon=True, name="YouTubeResolve")
        thread.start()

    def play(self) -> None:
        """Request playback; starts in the background once the stream is resolved."""
        with self._lock:
            if self.video_id is None:
                raise RuntimeError("play() called before prepare()")
            self._play_requested = True
            if not (self.stream_url and self._claim_start()):
                return
            generation = self._generation
            stream_url = self.stream_url

        thread = threading.Thread(
            target=self._start_playback,
            args=(generation, stream_url),
            daemon=True,
            name="YouTubePlay",
        )
        thread.start()

    def _claim_start(self) -> bool:
        # Caller holds self._lock
        if not self._play_requested or self._playing or self._starting:
            return False
        self._starting = True
        return True

    def _start_playback(self, generation: int, stream_url: str):
        # Never under self._lock: AudioPlayer.play() may block during preroll
        try:
            self.audio_player.play(stream_url, self.volume, loop=False)
            error = None
        except Exception as e:
            error = str(e)

        with self._lock:
            stale = generation != self._generation
            if not stale:
                self._starting = False
                if error:
                    self.logger.error("Error playing video %s: %s", self.video_id, error)
                    self.error = error
                else:
                    self._playing = True
        if stale and error is None:
            self.logger.debug("Video stopped while starting, discarding playback")
            self.audio_player.stop()

    def poll_state(self) -> PlayState:
        with self._lock:
            if self.error:
                return PlayState.ERROR
            if self._playing:
                return PlayState.PLAYING
            if self._resolving or self._play_requested:
                return PlayState.BUFFERING
            return PlayState.UNSTARTED

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self.volume = volume
        self.audio_player.set_volume(volume)

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            self._play_requested = False
            self._playing = False
            self._starting = False
            self._resolving = False
            self.video_id = None
            self.stream_url = None
            self.error = None
        self.audio_player.stop()
