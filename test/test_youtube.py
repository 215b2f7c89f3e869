"""
Unit tests for the yt-dlp backed YouTubePlayer.

Uses a fake resolver and a recording audio player; yt-dlp itself is mocked.
"""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from napalarm.models import PlayState
from napalarm.youtube import YouTubePlayer, resolve_audio_stream


VIDEO_ID = "abcDEFghi12"
STREAM_URL = "https://rr1.googlevideo.com/videoplayback?id=1"


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class GatedResolver:
    """Resolver that blocks until released, so tests control timing."""

    def __init__(self, result=STREAM_URL, error=None):
        self.result = result
        self.error = error
        self.gate = threading.Event()
        self.calls = []

    def __call__(self, video_id):
        self.calls.append(video_id)
        self.gate.wait(2)
        if self.error:
            raise self.error
        return self.result


def test_play_after_resolution(audio):
    resolver = GatedResolver()
    player = YouTubePlayer(audio, resolver=resolver, volume=0.6)

    player.prepare(VIDEO_ID)
    assert player.poll_state() == PlayState.BUFFERING
    resolver.gate.set()
    assert wait_for(lambda: player.stream_url == STREAM_URL)

    player.play()
    assert wait_for(lambda: player.poll_state() == PlayState.PLAYING)
    assert audio.plays == [(STREAM_URL, 0.6, False)]


def test_play_before_resolution_starts_when_ready(audio):
    resolver = GatedResolver()
    player = YouTubePlayer(audio, resolver=resolver)

    player.prepare(VIDEO_ID)
    player.play()
    assert player.poll_state() == PlayState.BUFFERING
    assert player.is_active

    resolver.gate.set()
    assert wait_for(lambda: player.poll_state() == PlayState.PLAYING)
    assert len(audio.plays) == 1


def test_resolution_error_reports_error_state(audio):
    resolver = GatedResolver(error=RuntimeError("ERROR: Private video"))
    player = YouTubePlayer(audio, resolver=resolver)

    player.prepare(VIDEO_ID)
    player.play()
    resolver.gate.set()

    assert wait_for(lambda: player.poll_state() == PlayState.ERROR)
    assert player.error == "Video is private or unavailable"
    assert audio.plays == []


def test_playback_error_reports_error_state(audio):
    audio.fail = True
    resolver = GatedResolver()
    resolver.gate.set()
    player = YouTubePlayer(audio, resolver=resolver)

    player.prepare(VIDEO_ID)
    assert wait_for(lambda: player.stream_url is not None)
    player.play()

    assert wait_for(lambda: player.poll_state() == PlayState.ERROR)


def test_prepare_same_video_is_deduplicated(audio):
    resolver = GatedResolver()
    player = YouTubePlayer(audio, resolver=resolver)

    player.prepare(VIDEO_ID)
    player.prepare(VIDEO_ID)
    resolver.gate.set()
    assert wait_for(lambda: player.stream_url is not None)
    player.prepare(VIDEO_ID)

    assert resolver.calls == [VIDEO_ID]


def test_stop_discards_pending_resolution(audio):
    resolver = GatedResolver()
    player = YouTubePlayer(audio, resolver=resolver)

    player.prepare(VIDEO_ID)
    player.play()
    player.stop()
    resolver.gate.set()
    time.sleep(0.1)

    assert player.poll_state() == PlayState.UNSTARTED
    assert audio.plays == []
    assert not player.is_active


class BlockingAudio:
    """Audio player whose play() blocks until released, like a slow preroll."""

    def __init__(self, audio):
        self.audio = audio
        self.gate = threading.Event()
        self.entered = threading.Event()

    @property
    def is_active(self):
        return self.audio.is_active

    def play(self, url, volume, loop=True):
        self.entered.set()
        self.gate.wait(2)
        self.audio.play(url, volume, loop)

    def set_volume(self, volume):
        self.audio.set_volume(volume)

    def stop(self):
        self.audio.stop()


def test_play_does_not_block_on_slow_audio_start(audio):
    blocking = BlockingAudio(audio)
    resolver = GatedResolver()
    resolver.gate.set()
    player = YouTubePlayer(blocking, resolver=resolver)
    player.prepare(VIDEO_ID)
    assert wait_for(lambda: player.stream_url is not None)

    started = time.monotonic()
    player.play()
    assert blocking.entered.wait(2)

    # The player lock is free while the audio backend is still starting
    assert player.poll_state() == PlayState.BUFFERING
    player.set_volume(0.2)
    assert time.monotonic() - started < 1.0

    blocking.gate.set()
    assert wait_for(lambda: player.poll_state() == PlayState.PLAYING)
    assert len(audio.plays) == 1


def test_stop_while_audio_starting_discards_playback(audio):
    blocking = BlockingAudio(audio)
    resolver = GatedResolver()
    resolver.gate.set()
    player = YouTubePlayer(blocking, resolver=resolver)
    player.prepare(VIDEO_ID)
    assert wait_for(lambda: player.stream_url is not None)

    player.play()
    assert blocking.entered.wait(2)
    player.stop()
    blocking.gate.set()

    assert wait_for(lambda: audio.stop_calls == 2)
    assert not audio.active
    assert player.poll_state() == PlayState.UNSTARTED


def test_play_without_prepare_raises(audio):
    player = YouTubePlayer(audio, resolver=GatedResolver())
    with pytest.raises(RuntimeError):
        player.play()


def test_set_volume_forwards_to_audio(audio):
    player = YouTubePlayer(audio, resolver=GatedResolver())
    player.set_volume(0.3)
    assert player.volume == 0.3
    assert audio.volumes == [0.3]


@patch("napalarm.youtube.yt_dlp.YoutubeDL")
def test_resolve_audio_stream_direct_url(mock_ydl_class):
    ydl = MagicMock()
    ydl.extract_info.return_value = {"url": STREAM_URL}
    mock_ydl_class.return_value.__enter__.return_value = ydl

    assert resolve_audio_stream(VIDEO_ID) == STREAM_URL
    ydl.extract_info.assert_called_once_with(
        f"https://www.youtube.com/watch?v={VIDEO_ID}", download=False
    )


@patch("napalarm.youtube.yt_dlp.YoutubeDL")
def test_resolve_audio_stream_from_requested_formats(mock_ydl_class):
    ydl = MagicMock()
    ydl.extract_info.return_value = {
        "requested_formats": [
            {"acodec": "none", "url": "https://video-only"},
            {"acodec": "opus", "url": "https://audio"},
        ]
    }
    mock_ydl_class.return_value.__enter__.return_value = ydl

    assert resolve_audio_stream(VIDEO_ID) == "https://audio"


@patch("napalarm.youtube.yt_dlp.YoutubeDL")
def test_resolve_audio_stream_without_stream_raises(mock_ydl_class):
    ydl = MagicMock()
    ydl.extract_info.return_value = {"requested_formats": []}
    mock_ydl_class.return_value.__enter__.return_value = ydl

    with pytest.raises(RuntimeError):
        resolve_audio_stream(VIDEO_ID)
