"""
Alarm form duration handling.

Turns a preset choice or a custom h/m/s entry into milliseconds. Totals are
clamped to 24 hours; zero is rejected so it never reaches an engine.
"""

from typing import Optional, Union

from .errors import InvalidDurationError
from .models import MAX_DURATION_MS

PRESET_MINUTES = (15, 20, 30, 45, 60)
CUSTOM_PRESET = "custom"


def _to_int(value: Union[str, int, float, None]) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def resolve_duration_ms(
    preset: Optional[Union[str, int]],
    custom_hours: Union[str, int, None] = 0,
    custom_minutes: Union[str, int, None] = 0,
    custom_seconds: Union[str, int, None] = 0,
) -> int:
    """
    Resolve a form selection to a duration in milliseconds.

    Args:
        preset: One of PRESET_MINUTES (as int or string) or "custom"
        custom_hours: Hours for a custom duration
        custom_minutes: Minutes for a custom duration
        custom_seconds: Seconds for a custom duration

    Returns:
        Duration in milliseconds, at most 24 hours

    Raises:
        InvalidDurationError: If the resulting duration is zero
    """
    preset_text = str(preset).strip() if preset is not None else ""

    if preset_text == CUSTOM_PRESET:
        total_seconds = (
            _to_int(custom_hours) * 3600 + _to_int(custom_minutes) * 60 + _to_int(custom_seconds)
        )
        total_seconds = max(0, total_seconds)
    elif preset_text.isdigit() and int(preset_text) in PRESET_MINUTES:
        total_seconds = int(preset_text) * 60
    else:
        total_seconds = 0

    duration_ms = min(total_seconds * 1000, MAX_DURATION_MS)
    if duration_ms <= 0:
        raise InvalidDurationError("A zero-length alarm cannot be set")
    return duration_ms
