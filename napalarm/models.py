"""
Data models for napalarm.

Defines typed dataclasses and enums shared by the alarm engine, the
metadata proxy, and the history store.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import InvalidDurationError

MAX_DURATION_MS = 24 * 60 * 60 * 1000

DEFAULT_RING_BUDGET_SEC = 30
DEFAULT_EXTERNAL_VIDEO_CAP_MS = 15 * 60 * 1000


class AlarmState(Enum):
    """Alarm engine state enumeration."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    RINGING = "ringing"


class MusicKind(Enum):
    """Which playback backend a music source is rung through."""

    NONE = "none"
    ASSET = "asset"
    EXTERNAL_VIDEO = "external_video"


class PlayState(Enum):
    """Play state reported by an embedded video player."""

    UNSTARTED = "unstarted"
    BUFFERING = "buffering"
    PLAYING = "playing"
    ENDED = "ended"
    ERROR = "error"


@dataclass(frozen=True)
class MusicSource:
    """Music source descriptor (immutable per session)."""

    kind: MusicKind = MusicKind.NONE
    locator: str = ""
    label: Optional[str] = None

    @classmethod
    def from_url(cls, url: Optional[str], label: Optional[str] = None) -> "MusicSource":
        """
        Infer the source kind from a user-supplied URL.

        Empty input means no music (tone only); external video hosts are
        rung through the embedded player; anything else is a direct audio URL.
        """
        from .video_ref import is_external_video_url

        locator = (url or "").strip()
        if not locator:
            return cls(MusicKind.NONE, "", label)
        if is_external_video_url(locator):
            return cls(MusicKind.EXTERNAL_VIDEO, locator, label)
        return cls(MusicKind.ASSET, locator, label)

    def history_locator(self) -> str:
        """Locator recorded in the history; video links collapse to their watch URL."""
        if self.kind == MusicKind.EXTERNAL_VIDEO:
            from .video_ref import clean_watch_url

            return clean_watch_url(self.locator)
        return self.locator


@dataclass
class AlarmSession:
    """State of one alarm, owned exclusively by one engine instance."""

    configured_duration_ms: int
    music_source: MusicSource = MusicSource()
    ring_budget_sec: int = DEFAULT_RING_BUDGET_SEC
    external_video_cap_ms: int = DEFAULT_EXTERNAL_VIDEO_CAP_MS
    ends_at_epoch_ms: Optional[int] = None
    remaining_ms: int = -1
    state: AlarmState = AlarmState.IDLE

    def __post_init__(self):
        validate_duration_ms(self.configured_duration_ms)
        if self.remaining_ms < 0:
            self.remaining_ms = self.configured_duration_ms
        if self.ring_budget_sec <= 0:
            self.ring_budget_sec = DEFAULT_RING_BUDGET_SEC
        if self.external_video_cap_ms <= 0:
            self.external_video_cap_ms = DEFAULT_EXTERNAL_VIDEO_CAP_MS


@dataclass
class RingAttempt:
    """One ring cycle: which backend was tried and its auto-stop timer."""

    backend: str
    started: bool = False
    stop_timer: Any = None  # TimerHandle


@dataclass(frozen=True)
class CanonicalVideoRef:
    """Result of canonicalizing an external video URL."""

    raw_url: str
    video_id: str
    canonical_watch_url: str


@dataclass
class VideoMetadata:
    """Display metadata for an external video (title, author, thumbnail)."""

    title: Optional[str] = None
    author: Optional[str] = None
    thumbnail_url: Optional[str] = None


@dataclass
class HistoryEntry:
    """A previously configured alarm, as shown in the history list."""

    duration_ms: int
    music_url: str
    kind: str
    label: Optional[str] = None
    at: Optional[int] = None  # epoch ms


def validate_duration_ms(duration_ms: int) -> int:
    """
    Validate an alarm duration.

    Raises:
        InvalidDurationError: If the duration is not in (0, 24h]
    """
    if not isinstance(duration_ms, int) or isinstance(duration_ms, bool):
        raise InvalidDurationError(f"Duration must be an integer, got {duration_ms!r}")
    if duration_ms <= 0:
        raise InvalidDurationError("Duration must be greater than zero")
    if duration_ms > MAX_DURATION_MS:
        raise InvalidDurationError(f"Duration must not exceed {MAX_DURATION_MS} ms (24 hours)")
    return duration_ms
