"""
Tests for the console host.
"""

import io

import pytest

from napalarm.engine import create_session
from napalarm.host import HELP_TEXT, ConsoleAlarm
from napalarm.models import AlarmState
from napalarm.platform import Capabilities


class InstallableGuard:
    def __init__(self):
        self.bound = False
        self.installed = False

    def install(self):
        self.installed = True
        return True

    def uninstall(self):
        self.installed = False

    def bind(self):
        self.bound = True

    def unbind(self):
        self.bound = False


@pytest.fixture
def guard():
    return InstallableGuard()


@pytest.fixture
def make_console(backends, clock, scheduler, wake_lock, guard):
    def factory(duration_ms=60_000, music_url="", stdin="", config_manager=None):
        stdout = io.StringIO()
        console = ConsoleAlarm(
            create_session(duration_ms, music_url),
            capabilities=Capabilities(),
            backends=backends,
            clock=clock,
            scheduler=scheduler,
            wake_lock=wake_lock,
            navigation_guard=guard,
            stdin=io.StringIO(stdin),
            stdout=stdout,
            config_manager=config_manager,
        )
        console.output = stdout
        return console

    return factory


def test_requires_gstreamer_without_backends(clock, scheduler):
    with pytest.raises(RuntimeError):
        ConsoleAlarm(
            create_session(60_000),
            capabilities=Capabilities(has_gstreamer=False),
            clock=clock,
            scheduler=scheduler,
            stdout=io.StringIO(),
        )


def test_enter_toggles_start_and_pause(make_console):
    console = make_console()
    engine = console.engine

    assert console.handle_command("") is True
    assert engine.state == AlarmState.RUNNING
    console.handle_command("space")
    assert engine.state == AlarmState.PAUSED
    console.handle_command("")
    assert engine.state == AlarmState.RUNNING


def test_enter_stops_while_ringing(make_console, scheduler):
    console = make_console(1_000)
    console.handle_command("")
    scheduler.advance(1_000)
    assert console.engine.state == AlarmState.RINGING
    assert "Ringing" in console.output.getvalue()

    console.handle_command("")
    assert console.engine.state == AlarmState.IDLE


def test_snooze_command(make_console, scheduler):
    console = make_console(1_000)
    console.handle_command("")
    scheduler.advance(1_000)

    console.handle_command("s")
    assert console.engine.state == AlarmState.RUNNING
    assert console.engine.remaining_ms == 5 * 60_000


def test_stop_and_reset_commands(make_console, scheduler):
    console = make_console(10_000)
    console.handle_command("")
    scheduler.advance(4_000)

    console.handle_command("x")
    assert console.engine.state == AlarmState.IDLE
    assert console.engine.remaining_ms == 6_000

    console.handle_command("r")
    assert console.engine.remaining_ms == 10_000


def test_escape_silences_without_stopping(make_console, tone):
    console = make_console()
    console.handle_command("")
    console.handle_command("t")
    assert tone.active

    console.handle_command("esc")
    assert not tone.active
    assert console.engine.state == AlarmState.RUNNING


def test_escape_stops_while_ringing(make_console, scheduler):
    console = make_console(1_000)
    console.handle_command("")
    scheduler.advance(1_000)

    console.handle_command("\x1b")
    assert console.engine.state == AlarmState.IDLE


def test_test_sound_command(make_console, tone):
    console = make_console()
    console.handle_command("t")
    assert len(tone.beeps) == 1

    tone.fail = True
    console.handle_command("t")
    assert "Sound preview unavailable" in console.output.getvalue()


def test_volume_command(make_console):
    console = make_console()
    console.handle_command("v 0.4")
    assert console.engine.volume == 0.4

    console.handle_command("v loud")
    assert console.engine.volume == 0.4
    assert "Usage: v" in console.output.getvalue()


def test_volume_command_restored_by_next_console(make_console, config_manager):
    console = make_console(config_manager=config_manager)
    console.handle_command("v 0.3")
    console.close()

    next_console = make_console(config_manager=config_manager)
    assert next_console.engine.volume == 0.3


def test_quit_and_unknown_commands(make_console):
    console = make_console()
    assert console.handle_command("q") is False
    assert console.handle_command("wat") is True
    assert HELP_TEXT in console.output.getvalue()


def test_run_processes_stdin_until_quit(make_console, guard, wake_lock):
    console = make_console(stdin="\nq\n")

    assert console.run() == 0
    assert console.engine.state == AlarmState.IDLE
    assert not guard.installed
    assert not guard.bound
    assert not wake_lock.held


def test_run_stops_at_eof(make_console, guard):
    console = make_console(stdin="")

    assert console.run() == 0
    assert console.engine.state == AlarmState.IDLE
    assert not guard.installed


def test_close_uninstalls_guard_after_engine_close(make_console, scheduler, guard, wake_lock):
    console = make_console(duration_ms=1_000)
    guard.install()
    console.engine.start()
    scheduler.advance(1_000)
    assert guard.bound

    console.close()
    assert console.engine.state == AlarmState.IDLE
    assert not guard.bound
    assert not guard.installed
    assert not wake_lock.held
