"""
External video URL handling.

Recognizes links on the allow-listed video hosts, extracts the video id and
builds the canonical watch URL. Shared by the ring cascade (to find what to
play) and the metadata proxy (to find what to look up).
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlsplit

from .errors import InvalidUrlError, InvalidVideoIdError
from .models import CanonicalVideoRef

logger = logging.getLogger(__name__)

SHORT_LINK_HOST = "youtu.be"
VIDEO_HOSTS = frozenset(
    {
        "youtube.com",
        "www.youtube.com",
        "m.youtube.com",
        "music.youtube.com",
        SHORT_LINK_HOST,
    }
)
WATCH_URL = "https://www.youtube.com/watch"

VIDEO_ID_RE = re.compile(r"[A-Za-z0-9_-]{11}")
TIMESTAMP_RE = re.compile(r"\d+s?|(\d+h)?(\d+m)?(\d+s)?")


def _split(url: str):
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None
    return parts


def is_external_video_url(url: str) -> bool:
    """Check whether a URL points at one of the allow-listed video hosts."""
    parts = _split(url or "")
    return parts is not None and parts.hostname.lower() in VIDEO_HOSTS


def extract_video_id(url: str) -> Optional[str]:
    """
    Extract the (unvalidated) video id from an external video URL.

    Tried in order: short-link host path segment, /embed/<id>, /shorts/<id>,
    and the v parameter of a /watch URL.

    Returns:
        The candidate id, or None if the URL has no recognizable id
    """
    parts = _split(url or "")
    if parts is None:
        return None
    host = parts.hostname.lower()
    if host not in VIDEO_HOSTS:
        return None

    segments = [s for s in parts.path.split("/") if s]

    if host == SHORT_LINK_HOST:
        return segments[0] if segments else None

    if len(segments) >= 2 and segments[0] in ("embed", "shorts"):
        return segments[1]

    if segments == ["watch"]:
        values = parse_qs(parts.query).get("v")
        if values and values[0]:
            return values[0]

    return None


def resolve_video_id(url: str) -> Optional[str]:
    """Return a valid 11-character video id for the URL, or None."""
    video_id = extract_video_id(url)
    if video_id and VIDEO_ID_RE.fullmatch(video_id):
        return video_id
    return None


def canonicalize(raw_url: str) -> CanonicalVideoRef:
    """
    Canonicalize an external video URL.

    Args:
        raw_url: Loosely-specified video link (short link, embed, shorts, watch)

    Returns:
        CanonicalVideoRef whose watch URL keeps only v (and t, if present)

    Raises:
        InvalidUrlError: Not an HTTP(S) URL on an allowed host, or no id found
        InvalidVideoIdError: The id found is not 11 chars of [A-Za-z0-9_-]
    """
    raw_url = (raw_url or "").strip()
    parts = _split(raw_url)
    if parts is None:
        raise InvalidUrlError("URL is not a well-formed http(s) URL", url=raw_url)
    if parts.hostname.lower() not in VIDEO_HOSTS:
        raise InvalidUrlError(f"Host not allowed: {parts.hostname}", url=raw_url)

    video_id = extract_video_id(raw_url)
    if not video_id:
        raise InvalidUrlError("No video id found in URL", url=raw_url)
    if not VIDEO_ID_RE.fullmatch(video_id):
        raise InvalidVideoIdError(f"Invalid video id: {video_id!r}", url=raw_url)

    params = {"v": video_id}
    timestamp = (parse_qs(parts.query).get("t") or [None])[0]
    if timestamp and TIMESTAMP_RE.fullmatch(timestamp):
        params["t"] = timestamp

    canonical = f"{WATCH_URL}?{urlencode(params)}"
    logger.debug("Canonicalized %s -> %s", raw_url, canonical)
    return CanonicalVideoRef(raw_url=raw_url, video_id=video_id, canonical_watch_url=canonical)


def clean_watch_url(raw_url: str) -> str:
    """
    Reduce a video link to its bare watch URL (only v, no timestamp).

    Used as the history key so every link shape of one video collapses into
    a single entry. Links that do not canonicalize are returned stripped.
    """
    try:
        video_id = canonicalize(raw_url).video_id
    except (InvalidUrlError, InvalidVideoIdError):
        return (raw_url or "").strip()
    return f"{WATCH_URL}?{urlencode({'v': video_id})}"
