"""
GStreamer playback backends.

GstToneGenerator synthesizes the alarm tone with audiotestsrc; GstAudioPlayer
plays (and loops) a URL or local file through playbin. Both build their
pipeline on demand and tear it down completely on stop().
"""

import logging
import os
import sys
import threading
from typing import Any, Optional

from .backends import AudioPlayer, ToneGenerator
from .clock import Scheduler, TimerHandle
from .platform import create_audio_sink

# Defer GStreamer imports until actually needed; importing gi at module load
# would make the whole package unusable on machines without it
_Gst = None


def _get_gst():
    """Lazily import and initialize GStreamer."""
    global _Gst
    if _Gst is not None:
        return _Gst

    try:
        import gi

        gi.require_version("GLib", "2.0")
        gi.require_version("GObject", "2.0")
        gi.require_version("Gst", "1.0")
        from gi.repository import Gst as _Gst_module
    except Exception as e:
        logging.getLogger(__name__).error("Failed to import GStreamer: %s", e)
        raise

    if not _Gst_module.is_initialized():
        argv = ["napalarm", "--gst-disable-registry-update"]
        if sys.platform == "darwin":
            os.environ.setdefault("GST_REGISTRY_FORK", "no")
        _Gst_module.init(argv)

    _Gst = _Gst_module
    return _Gst


def _clamp_volume(volume: float) -> float:
    return min(max(float(volume), 0.0), 1.0)


class GstToneGenerator(ToneGenerator):
    """Tone bursts from audiotestsrc, gated by toggling the volume element."""

    def __init__(
        self,
        scheduler: Scheduler,
        config_manager=None,
        use_fakesinks: bool = False,
    ):
        """
        Args:
            scheduler: Drives the burst/gap pattern and one-shot beeps
            config_manager: Optional ConfigManager for sink/device selection
            use_fakesinks: If True, use fakesinks for headless testing
        """
        self.scheduler = scheduler
        self.config_manager = config_manager
        self.use_fakesinks = use_fakesinks
        self.logger = logging.getLogger(__name__)

        self.pipeline: Any = None
        self._volume_element: Any = None
        self._volume = 1.0
        self._pattern_handle: Optional[TimerHandle] = None
        self._generation = 0
        self._lock = threading.RLock()

    @property
    def is_active(self) -> bool:
        return self.pipeline is not None

    def _build_pipeline(self, frequency_hz: float, volume: float):
        Gst = _get_gst()

        pipeline = Gst.Pipeline.new("tone")
        src = Gst.ElementFactory.make("audiotestsrc", "src")
        vol = Gst.ElementFactory.make("volume", "vol")
        convert = Gst.ElementFactory.make("audioconvert", "convert")
        resample = Gst.ElementFactory.make("audioresample", "resample")
        if not all((pipeline, src, vol, convert, resample)):
            raise RuntimeError("Failed to create tone pipeline elements")

        sink_name = device = None
        if self.config_manager:
            sink_name = self.config_manager.get("gstreamer_sink")
            device = self.config_manager.get("audio_output_device")
        sink = create_audio_sink(sink_name, device, self.use_fakesinks)

        # audiotestsrc defaults to a sine wave
        src.set_property("freq", float(frequency_hz))
        src.set_property("is-live", True)
        vol.set_property("volume", 0.3 * _clamp_volume(volume))

        for element in (src, vol, convert, resample, sink):
            pipeline.add(element)
        if not (src.link(vol) and vol.link(convert) and convert.link(resample) and resample.link(sink)):
            raise RuntimeError("Failed to link tone pipeline")

        return pipeline, vol

    def _start_pipeline(self, frequency_hz: float, volume: float):
        Gst = _get_gst()
        pipeline, vol = self._build_pipeline(frequency_hz, volume)
        if pipeline.set_state(Gst.State.PLAYING) == Gst.StateChangeReturn.FAILURE:
            pipeline.set_state(Gst.State.NULL)
            raise RuntimeError("Tone pipeline failed to start")
        self.pipeline = pipeline
        self._volume_element = vol
        self._volume = _clamp_volume(volume)

    def start_pattern(self, burst_ms: int, gap_ms: int, frequency_hz: float, volume: float) -> None:
        with self._lock:
            self.stop()
            self._start_pipeline(frequency_hz, volume)
            self._generation += 1
            generation = self._generation
            self.logger.info(
                "Tone pattern started: %sms on / %sms off at %s Hz", burst_ms, gap_ms, frequency_hz
            )

            def toggle(audible: bool):
                with self._lock:
                    if generation != self._generation or self._volume_element is None:
                        return
                    self._volume_element.set_property("mute", not audible)
                    delay = burst_ms if audible else gap_ms
                    self._pattern_handle = self.scheduler.call_later(
                        delay, lambda: toggle(not audible)
                    )

            self._pattern_handle = self.scheduler.call_later(burst_ms, lambda: toggle(False))

    def beep_once(self, duration_ms: int, frequency_hz: float, volume: float) -> None:
        with self._lock:
            self.stop()
            self._start_pipeline(frequency_hz, volume)
            self._generation += 1
            generation = self._generation

            def finish():
                with self._lock:
                    if generation == self._generation:
                        self.stop()

            self._pattern_handle = self.scheduler.call_later(duration_ms, finish)

    def stop(self) -> None:
        with self._lock:
            self._generation += 1
            if self._pattern_handle:
                self._pattern_handle.cancel()
                self._pattern_handle = None
            if self.pipeline is not None:
                Gst = _get_gst()
                try:
                    self.pipeline.set_state(Gst.State.NULL)
                except Exception as e:
                    self.logger.warning("Error stopping tone pipeline: %s", e)
                self.pipeline = None
                self._volume_element = None
                self.logger.debug("Tone stopped")


class GstAudioPlayer(AudioPlayer):
    """Plays a URL or file through playbin, optionally looping on end-of-stream."""

    def __init__(self, config_manager=None, use_fakesinks: bool = False):
        """
        Args:
            config_manager: Optional ConfigManager for sink/device selection
            use_fakesinks: If True, use fakesinks for headless testing
        """
        self.config_manager = config_manager
        self.use_fakesinks = use_fakesinks
        self.logger = logging.getLogger(__name__)

        self.playbin: Any = None
        self.current_uri: Optional[str] = None
        self.loop = False
        self.error: Optional[str] = None
        self._bus_poll_running = False
        self._bus_poll_thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()

    @property
    def is_active(self) -> bool:
        return self.playbin is not None

    @property
    def is_playing(self) -> bool:
        """True if the pipeline reached PLAYING and has not reported an error."""
        with self._lock:
            if self.playbin is None or self.error:
                return False
            Gst = _get_gst()
            _, state, _ = self.playbin.get_state(0)
            return state == Gst.State.PLAYING

    @staticmethod
    def _to_uri(url: str) -> str:
        if "://" in url:
            return url
        Gst = _get_gst()
        return Gst.filename_to_uri(os.path.abspath(os.path.expanduser(url)))

    def _create_playbin(self, uri: str, volume: float):
        Gst = _get_gst()
        playbin = Gst.ElementFactory.make("playbin", "alarm_playbin")
        if playbin is None:
            raise RuntimeError("Failed to create playbin")

        sink_name = device = None
        if self.config_manager:
            sink_name = self.config_manager.get("gstreamer_sink")
            device = self.config_manager.get("audio_output_device")
        playbin.set_property("audio-sink", create_audio_sink(sink_name, device, self.use_fakesinks))
        # Alarm audio only; never open a video window
        fake_video = Gst.ElementFactory.make("fakesink", None)
        if fake_video is not None:
            playbin.set_property("video-sink", fake_video)

        playbin.set_property("uri", uri)
        playbin.set_property("volume", _clamp_volume(volume))
        return playbin

    def play(self, url: str, volume: float, loop: bool = True) -> None:
        Gst = _get_gst()
        with self._lock:
            self.stop()
            uri = self._to_uri(url)
            self.logger.info("Playing %s (loop=%s)", uri, loop)

            playbin = self._create_playbin(uri, volume)
            self.playbin = playbin
            self.current_uri = uri
            self.loop = loop
            self.error = None

            ret = playbin.set_state(Gst.State.PLAYING)
            if ret == Gst.StateChangeReturn.FAILURE:
                self.stop()
                raise RuntimeError(f"Failed to start playback of {uri}")

            ret, state, _ = playbin.get_state(2 * Gst.SECOND)
            if ret == Gst.StateChangeReturn.FAILURE:
                self.stop()
                raise RuntimeError(f"Pipeline failed to reach PLAYING for {uri}")

            self._start_bus_polling()

    def unlock(self, url: str, volume: float) -> None:
        """Pre-roll the source muted, then drop back to NULL."""
        Gst = _get_gst()
        playbin = self._create_playbin(self._to_uri(url), volume)
        playbin.set_property("mute", True)
        try:
            playbin.set_state(Gst.State.PAUSED)
            playbin.get_state(Gst.SECOND)
        finally:
            playbin.set_state(Gst.State.NULL)
        self.logger.debug("Audio source pre-rolled: %s", url)

    def set_volume(self, volume: float) -> None:
        with self._lock:
            if self.playbin is not None:
                self.playbin.set_property("volume", _clamp_volume(volume))

    def stop(self) -> None:
        with self._lock:
            self._stop_bus_polling()
            if self.playbin is not None:
                Gst = _get_gst()
                try:
                    self.playbin.set_state(Gst.State.NULL)
                except Exception as e:
                    self.logger.warning("Error stopping audio playback: %s", e)
                self.playbin = None
                self.logger.debug("Audio playback stopped: %s", self.current_uri)
            self.current_uri = None

    # =========================================================================
    # Bus Polling (for environments without GLib main loop)
    # =========================================================================

    def _start_bus_polling(self):
        self._bus_poll_running = True
        playbin = self.playbin

        def poll_bus():
            Gst = _get_gst()
            bus = playbin.get_bus()
            while self._bus_poll_running and self.playbin is playbin:
                msg = bus.timed_pop(100 * Gst.MSECOND)
                if not msg:
                    continue
                if msg.type == Gst.MessageType.EOS:
                    self._on_eos(playbin)
                elif msg.type == Gst.MessageType.ERROR:
                    err, debug = msg.parse_error()
                    self.logger.error("GStreamer error: %s", err)
                    self.logger.debug("Debug info: %s", debug)
                    self.error = str(err)

        self._bus_poll_thread = threading.Thread(target=poll_bus, daemon=True, name="GstBusPoll")
        self._bus_poll_thread.start()

    def _stop_bus_polling(self):
        self._bus_poll_running = False
        thread = self._bus_poll_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=1)
        self._bus_poll_thread = None

    def _on_eos(self, playbin):
        Gst = _get_gst()
        if not self.loop:
            self.logger.info("End of stream reached")
            return
        self.logger.debug("End of stream, looping %s", self.current_uri)
        playbin.seek_simple(Gst.Format.TIME, Gst.SeekFlags.FLUSH | Gst.SeekFlags.KEY_UNIT, 0)
