"""
Tests for the ring cascade: video -> audio URL -> tone fallbacks.
"""

import pytest

from napalarm.backends import PlaybackBackends
from napalarm.models import AlarmSession, AlarmState, MusicKind, MusicSource, PlayState
from napalarm.ring import CascadeSettings, RingCascade, RingFailedError

VIDEO_URL = "https://youtu.be/abcDEFghi12"
ASSET_URL = "https://example.com/alarm.mp3"


def ring(engine, scheduler):
    engine.start()
    scheduler.advance(engine.session.remaining_ms)
    assert engine.state == AlarmState.RINGING


def test_none_source_rings_tone_pattern(make_engine, scheduler, tone, alerts):
    engine = make_engine(1_000)
    ring(engine, scheduler)

    assert tone.patterns == [(250, 120, 1000.0, 1.0)]
    assert engine.cascade.active_backend == "tone"
    assert engine.cascade.started
    assert alerts.fired == 1


def test_asset_source_loops_url(make_engine, scheduler, tone, audio):
    engine = make_engine(1_000, ASSET_URL)
    ring(engine, scheduler)

    assert audio.plays == [(ASSET_URL, 1.0, True)]
    assert tone.patterns == []
    assert engine.cascade.active_backend == "audio"

    scheduler.advance(30_000)
    assert engine.state == AlarmState.IDLE
    assert not audio.active


def test_asset_failure_falls_back_to_tone(make_engine, scheduler, tone, audio, alerts):
    audio.fail = True
    engine = make_engine(1_000, ASSET_URL)
    ring(engine, scheduler)

    assert len(tone.patterns) == 1
    assert not audio.active
    assert engine.cascade.active_backend == "tone"
    assert alerts.fired == 1


def test_video_prefetched_on_start(make_engine, video):
    engine = make_engine(60_000, VIDEO_URL)
    engine.start()

    assert video.prepared == ["abcDEFghi12"]
    assert video.play_calls == 0


def test_video_plays_until_cap(make_engine, scheduler, tone, video):
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    assert video.play_calls == 1
    assert engine.cascade.active_backend == "video"
    assert engine.ringing is True
    assert tone.patterns == []

    scheduler.advance(900_000 - 1)
    assert engine.state == AlarmState.RINGING
    scheduler.advance(1)
    assert engine.state == AlarmState.IDLE
    assert not video.active


def test_video_that_never_plays_falls_back_after_wait(make_engine, scheduler, tone, video):
    video.state_after_play = PlayState.BUFFERING
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    scheduler.advance(1_999)
    assert tone.patterns == []
    assert engine.ringing is False

    scheduler.advance(1)
    assert len(tone.patterns) == 1
    assert not video.active
    assert engine.cascade.active_backend == "tone"
    assert engine.ringing is True

    scheduler.advance(29_999)
    assert engine.state == AlarmState.RINGING
    scheduler.advance(1)
    assert engine.state == AlarmState.IDLE


def test_video_that_starts_late_is_kept(make_engine, scheduler, tone, video):
    video.state_after_play = PlayState.BUFFERING
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    scheduler.advance(300)
    video.state = PlayState.PLAYING
    scheduler.advance(100)

    assert engine.ringing is True
    assert engine.cascade.active_backend == "video"
    assert tone.patterns == []


def test_video_error_falls_back_immediately(make_engine, scheduler, tone, video):
    video.state_after_play = PlayState.ERROR
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    assert len(tone.patterns) == 1
    assert video.stop_calls >= 1


def test_video_play_raising_falls_back(make_engine, scheduler, tone, video):
    video.fail = True
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    assert len(tone.patterns) == 1
    assert engine.cascade.active_backend == "tone"


def test_video_url_without_valid_id_uses_tone(make_engine, scheduler, tone, video):
    engine = make_engine(1_000, "https://youtu.be/short")
    assert engine.session.music_source.kind == MusicKind.EXTERNAL_VIDEO
    ring(engine, scheduler)

    assert video.play_calls == 0
    assert len(tone.patterns) == 1


def test_video_and_tone_failure_shows_press_play(make_engine, scheduler, tone, video):
    video.state_after_play = PlayState.BUFFERING
    tone.fail = True
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    scheduler.advance(2_000)
    assert engine.display_text.startswith("▶")
    assert engine.state == AlarmState.RINGING


def test_snooze_during_video_wait_discards_poll(make_engine, scheduler, tone, video):
    video.state_after_play = PlayState.BUFFERING
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)

    engine.snooze(5)
    scheduler.advance(5_000)

    assert tone.patterns == []
    assert not video.active
    assert engine.state == AlarmState.RUNNING


def test_single_backend_after_snooze(make_engine, scheduler, tone, audio, video):
    engine = make_engine(1_000, VIDEO_URL)
    ring(engine, scheduler)
    engine.snooze(1)

    assert not any(b.active for b in (tone, audio, video))


def test_cascade_run_raises_when_nothing_starts(scheduler, tone, audio):
    tone.fail = True
    cascade = RingCascade(PlaybackBackends(tone=tone, audio=audio), scheduler, CascadeSettings())
    session = AlarmSession(configured_duration_ms=1_000)

    with pytest.raises(RingFailedError):
        cascade.run(session, 1.0)
    assert not cascade.started


def test_cascade_without_video_backend_uses_tone(scheduler, tone, audio):
    started = []
    cascade = RingCascade(
        PlaybackBackends(tone=tone, audio=audio),
        scheduler,
        on_started=started.append,
    )
    session = AlarmSession(
        configured_duration_ms=1_000,
        music_source=MusicSource(MusicKind.EXTERNAL_VIDEO, VIDEO_URL),
    )

    cascade.run(session, 0.7)
    assert started == ["tone"]
    assert tone.patterns[0][3] == 0.7


def test_cascade_cancel_is_idempotent(scheduler, tone, audio):
    expired = []
    cascade = RingCascade(
        PlaybackBackends(tone=tone, audio=audio), scheduler, on_expired=lambda: expired.append(1)
    )
    cascade.run(AlarmSession(configured_duration_ms=1_000, ring_budget_sec=5), 1.0)

    cascade.cancel()
    cascade.cancel()
    scheduler.advance(10_000)

    assert expired == []
    assert not tone.active
    assert cascade.attempt is None
