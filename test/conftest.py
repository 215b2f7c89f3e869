"""
Shared fixtures for napalarm tests.

Engine tests run on simulated time: a FakeClock plus a ManualScheduler whose
advance() fires due timers in deadline order. Playback backends, guards and
alerts are recording fakes.
"""

import os
import tempfile

import pytest

from napalarm.backends import AudioPlayer, EmbeddedPlayer, PlaybackBackends, ToneGenerator
from napalarm.clock import Clock, Scheduler, TimerHandle
from napalarm.config_manager import ConfigManager
from napalarm.database import Database
from napalarm.engine import AlarmEngine, EngineSettings, create_session
from napalarm.models import PlayState

START_MS = 1_700_000_000_000


class FakeClock(Clock):
    def __init__(self, now: int = START_MS):
        self.now = now

    def now_ms(self) -> int:
        return self.now


class ManualTimer(TimerHandle):
    def __init__(self, due: int, seq: int, callback, interval=None):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler driven by explicit advance() calls on a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers = []
        self._seq = 0

    def _add(self, delay_ms, callback, interval=None):
        self._seq += 1
        timer = ManualTimer(self.clock.now + max(0, delay_ms), self._seq, callback, interval)
        self.timers.append(timer)
        return timer

    def call_later(self, delay_ms, callback):
        return self._add(delay_ms, callback)

    def call_repeating(self, interval_ms, callback):
        return self._add(interval_ms, callback, interval=interval_ms)

    def advance(self, ms: int) -> None:
        """Move time forward by ms, firing every timer that comes due."""
        target = self.clock.now + ms
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.due, t.seq))
            self.clock.now = max(self.clock.now, timer.due)
            if timer.interval:
                timer.due += timer.interval
            else:
                timer.cancel()
                self.timers.remove(timer)
            timer.callback()
        self.clock.now = max(self.clock.now, target)
        self.timers = [t for t in self.timers if not t.cancelled]

    def jump(self, ms: int) -> None:
        """Move the clock without firing timers, then fire the overdue ones late."""
        self.clock.now += ms
        self.advance(0)

    @property
    def pending(self):
        return [t for t in self.timers if not t.cancelled]


class FakeTone(ToneGenerator):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.active = False
        self.patterns = []
        self.beeps = []
        self.resumed = 0
        self.stop_calls = 0

    @property
    def is_active(self) -> bool:
        return self.active

    def start_pattern(self, burst_ms, gap_ms, frequency_hz, volume):
        if self.fail:
            raise RuntimeError("audio device busy")
        self.active = True
        self.patterns.append((burst_ms, gap_ms, frequency_hz, volume))

    def beep_once(self, duration_ms, frequency_hz, volume):
        if self.fail:
            raise RuntimeError("audio device busy")
        self.active = True
        self.beeps.append((duration_ms, frequency_hz, volume))

    def resume(self):
        self.resumed += 1

    def stop(self):
        self.stop_calls += 1
        self.active = False


class FakeAudio(AudioPlayer):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.active = False
        self.plays = []
        self.unlocks = []
        self.volumes = []
        self.stop_calls = 0

    @property
    def is_active(self) -> bool:
        return self.active

    def play(self, url, volume, loop=True):
        if self.fail:
            raise RuntimeError("playback blocked")
        self.active = True
        self.plays.append((url, volume, loop))

    def set_volume(self, volume):
        self.volumes.append(volume)

    def unlock(self, url, volume):
        self.unlocks.append(url)

    def stop(self):
        self.stop_calls += 1
        self.active = False


class FakeVideo(EmbeddedPlayer):
    """Embedded player whose state after play() is chosen by the test."""

    def __init__(self, state_after_play: PlayState = PlayState.PLAYING, fail: bool = False):
        self.state_after_play = state_after_play
        self.fail = fail
        self.state = PlayState.UNSTARTED
        self.active = False
        self.prepared = []
        self.play_calls = 0
        self.stop_calls = 0
        self.volume = None

    @property
    def is_active(self) -> bool:
        return self.active

    def prepare(self, video_id):
        self.prepared.append(video_id)

    def play(self):
        if self.fail:
            raise RuntimeError("player not ready")
        self.play_calls += 1
        self.active = True
        self.state = self.state_after_play

    def poll_state(self):
        return self.state

    def set_volume(self, volume):
        self.volume = volume

    def stop(self):
        self.stop_calls += 1
        self.active = False
        self.state = PlayState.UNSTARTED


class FakeWakeLock:
    def __init__(self):
        self.held = False
        self.was_held = False
        self.acquire_calls = 0
        self.release_calls = 0

    def acquire(self):
        self.acquire_calls += 1
        self.held = True
        self.was_held = True
        return True

    def release(self):
        self.release_calls += 1
        self.held = False
        self.was_held = False

    def revoke(self):
        """Simulate the OS dropping the lock while the app is hidden."""
        self.held = False


class FakeGuard:
    def __init__(self):
        self.bound = False
        self.bind_calls = 0

    def bind(self):
        self.bind_calls += 1
        self.bound = True

    def unbind(self):
        self.bound = False


class FakeAlerts:
    def __init__(self):
        self.fired = 0
        self.cleared = 0

    def fire(self):
        self.fired += 1

    def clear(self):
        self.cleared += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return ManualScheduler(clock)


@pytest.fixture
def tone():
    return FakeTone()


@pytest.fixture
def audio():
    return FakeAudio()


@pytest.fixture
def video():
    return FakeVideo()


@pytest.fixture
def backends(tone, audio, video):
    return PlaybackBackends(tone=tone, audio=audio, video=video)


@pytest.fixture
def wake_lock():
    return FakeWakeLock()


@pytest.fixture
def nav_guard():
    return FakeGuard()


@pytest.fixture
def alerts():
    return FakeAlerts()


@pytest.fixture
def make_engine(backends, clock, scheduler, wake_lock, nav_guard, alerts):
    """Factory for engines wired to the fakes above."""

    def factory(
        duration_ms=60_000, music_url="", settings=None, config_manager=None, **session_kwargs
    ):
        session = create_session(duration_ms, music_url)
        for key, value in session_kwargs.items():
            setattr(session, key, value)
        displays = []
        ringing = []
        engine = AlarmEngine(
            session,
            backends,
            clock=clock,
            scheduler=scheduler,
            wake_lock=wake_lock,
            navigation_guard=nav_guard,
            alerts=alerts,
            settings=settings or EngineSettings(),
            on_display=displays.append,
            on_ringing=ringing.append,
            config_manager=config_manager,
        )
        engine.displays = displays
        engine.ringing_events = ringing
        return engine

    return factory


@pytest.fixture
def temp_db():
    """Create a temporary database."""
    fd, path = tempfile.mkstemp(suffix=".db")
    os.close(fd)
    db = Database(db_path=path)
    yield db
    db.close()
    os.unlink(path)


@pytest.fixture
def config_manager(temp_db):
    return ConfigManager(temp_db)
