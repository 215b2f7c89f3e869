"""
Pytest configuration for napalarm tests.

Provides:
- @pytest.mark.gstreamer marker for tests that need a real GStreamer install
- Auto-skip of those tests when the gi bindings or Gst are unavailable
"""

import pytest


def _is_gstreamer_available():
    """Check if GStreamer Python bindings are importable and initialize."""
    try:
        import gi

        gi.require_version("Gst", "1.0")
        from gi.repository import Gst

        Gst.init(None)
        return Gst.ElementFactory.find("audiotestsrc") is not None
    except (ImportError, ValueError):
        return False


GSTREAMER_AVAILABLE = _is_gstreamer_available()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "gstreamer: test drives a real GStreamer pipeline (skipped if unavailable)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip GStreamer tests on machines without it."""
    if GSTREAMER_AVAILABLE:
        return

    skip_gstreamer = pytest.mark.skip(reason="GStreamer not available (gi or audiotestsrc missing)")
    for item in items:
        if "gstreamer" in item.keywords:
            item.add_marker(skip_gstreamer)
