"""
Platform-specific code for macOS and Linux.

Isolates feature detection and OS integration so the engine can branch on
plain capability flags resolved once at startup instead of probing the
environment at every call.
"""

import logging
import shutil
import sys
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger(__name__)


def is_macos() -> bool:
    """Check if running on macOS."""
    return sys.platform == "darwin"


def is_linux() -> bool:
    return sys.platform.startswith("linux")


def gstreamer_available() -> bool:
    """Check if GStreamer Python bindings are importable."""
    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst  # noqa: F401

        return True
    except (ImportError, ValueError):
        return False


def wake_lock_command() -> Optional[List[str]]:
    """
    Command that holds a sleep inhibitor for as long as it runs.

    Returns:
        argv list, or None if the platform has no usable inhibitor
    """
    if is_macos() and shutil.which("caffeinate"):
        return ["caffeinate", "-d", "-i"]
    if is_linux() and shutil.which("systemd-inhibit"):
        return [
            "systemd-inhibit",
            "--what=idle:sleep",
            "--who=napalarm",
            "--why=Alarm is running",
            "--mode=block",
            "sleep",
            "infinity",
        ]
    return None


def notification_command(title: str, body: str) -> Optional[List[str]]:
    """
    Command that shows a desktop notification.

    Returns:
        argv list, or None if no notifier is available
    """
    if is_macos() and shutil.which("osascript"):
        script = 'display notification "%s" with title "%s"' % (
            body.replace('"', "'"),
            title.replace('"', "'"),
        )
        return ["osascript", "-e", script]
    if is_linux() and shutil.which("notify-send"):
        return ["notify-send", "--urgency=critical", title, body]
    return None


@dataclass(frozen=True)
class Capabilities:
    """Platform features, resolved once at startup."""

    has_wake_lock_api: bool = False
    has_notification_api: bool = False
    has_vibration_api: bool = False
    has_gstreamer: bool = False


def detect_capabilities() -> Capabilities:
    """Inspect the platform once and return its capability flags."""
    caps = Capabilities(
        has_wake_lock_api=wake_lock_command() is not None,
        has_notification_api=notification_command("", "") is not None,
        # Desktops have no vibration motor
        has_vibration_api=False,
        has_gstreamer=gstreamer_available(),
    )
    logger.info(
        "Capabilities: wake_lock=%s notification=%s vibration=%s gstreamer=%s",
        caps.has_wake_lock_api,
        caps.has_notification_api,
        caps.has_vibration_api,
        caps.has_gstreamer,
    )
    return caps


def list_audio_output_devices() -> List[dict]:
    """
    List available audio output devices using GStreamer DeviceMonitor.

    Returns:
        List of device dictionaries with 'value' (device identifier) and 'label' (display name).
        Always includes a "System Default" option, even if GStreamer is unavailable.
    """
    devices = []

    if gstreamer_available():
        from gi.repository import Gst

        if not Gst.is_initialized():
            Gst.init(None)

        monitor = None
        try:
            monitor = Gst.DeviceMonitor.new()
            monitor.add_filter("Audio/Sink", None)
            monitor.start()

            for device in monitor.get_devices():
                display_name = device.get_display_name()
                props = device.get_properties()

                device_id = None
                if props:
                    if is_linux() and props.get_string("device.api") == "alsa":
                        card = props.get_string("alsa.card")
                        device_num = props.get_string("alsa.device") or "0"
                        if card is not None:
                            device_id = f"plughw:CARD={card},DEV={device_num}"
                    if device_id is None:
                        device_id = props.get_string("device.name")
                    if device_id is None:
                        device_id = props.get_string("object.id")

                if not device_id:
                    logger.debug("Skipping device without identifier: %s", display_name)
                    continue

                devices.append({"value": device_id, "label": display_name})

        except Exception as e:
            logger.warning("Error enumerating audio devices: %s", e)
        finally:
            if monitor is not None:
                monitor.stop()
    else:
        logger.warning("GStreamer not available for device enumeration")

    devices.insert(0, {"value": "", "label": "System Default"})
    return devices


def create_audio_sink(
    sink_name: Optional[str] = None, device: Optional[str] = None, use_fakesinks: bool = False
):
    """
    Create the audio sink element for the current platform.

    Args:
        sink_name: GStreamer element name (defaults to autoaudiosink)
        device: Output device identifier, for sinks that accept one
        use_fakesinks: If True, create a fakesink for headless testing

    Returns:
        GStreamer audio sink element

    Raises:
        RuntimeError: If unable to create an audio sink
    """
    try:
        from gi.repository import Gst
    except ImportError:
        raise RuntimeError("GStreamer Python bindings not available")

    if use_fakesinks:
        sink = Gst.ElementFactory.make("fakesink", None)
        if sink is None:
            raise RuntimeError("Failed to create fakesink for headless testing")
        sink.set_property("sync", True)
        return sink

    sink = Gst.ElementFactory.make(sink_name or "autoaudiosink", None)
    if sink is None and sink_name != "autoaudiosink":
        logger.warning("%s not available, falling back to autoaudiosink", sink_name)
        sink = Gst.ElementFactory.make("autoaudiosink", None)
    if sink is None:
        raise RuntimeError("No audio sink available")
    if device and sink.find_property("device") is not None:
        sink.set_property("device", device)
    return sink
