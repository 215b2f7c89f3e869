"""
Metadata proxy client for external video links.

Canonicalizes a video URL, fetches its oEmbed document with a bounded,
manually followed redirect chain, and maps every failure onto the
MetadataError taxonomy so callers never see an unexpected exception.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from .errors import (
    BadResponseError,
    FetchFailedError,
    MetadataError,
    RateLimitedError,
    TooManyRedirectsError,
    UnavailableError,
    UpstreamError,
)
from .models import VideoMetadata
from .video_ref import canonicalize

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://www.youtube.com/oembed"
DEFAULT_USER_AGENT = "NapAlarm/1.0"
DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_REDIRECTS = 3
SNIPPET_LIMIT = 200

UNAVAILABLE_STATUSES = (401, 403, 404)


def safe_snippet(content: bytes, limit: int = SNIPPET_LIMIT) -> str:
    """Decode at most `limit` bytes of a response body for logging."""
    if not content:
        return ""
    return content[:limit].decode("utf-8", errors="replace")


class MetadataProxyClient:
    """Resolves display metadata (title, author, thumbnail) for video links."""

    def __init__(
        self,
        config_manager=None,
        endpoint: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_redirects: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize MetadataProxyClient.

        Explicit arguments win over configuration values, which win over
        the module defaults.

        Args:
            config_manager: Optional ConfigManager for the oembed_* keys
            endpoint: oEmbed endpoint URL
            user_agent: User-Agent header sent upstream
            timeout_seconds: Connect/read timeout per request
            max_redirects: Maximum number of redirects followed
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.config_manager = config_manager
        self.endpoint = endpoint or self._config("oembed_endpoint") or DEFAULT_ENDPOINT
        self.user_agent = user_agent or self._config("oembed_user_agent") or DEFAULT_USER_AGENT
        self.timeout_seconds = (
            timeout_seconds
            or self._config_number("oembed_timeout_seconds")
            or DEFAULT_TIMEOUT_SECONDS
        )
        if max_redirects is None:
            max_redirects = self._config_number("oembed_max_redirects")
        self.max_redirects = int(DEFAULT_MAX_REDIRECTS if max_redirects is None else max_redirects)
        self.transport = transport

    def _config(self, key: str) -> Optional[str]:
        if self.config_manager is None:
            return None
        return self.config_manager.get(key)

    def _config_number(self, key: str) -> Optional[float]:
        if self.config_manager is None:
            return None
        return self.config_manager.get_float(key)

    def resolve_metadata(self, raw_url: str) -> VideoMetadata:
        """
        Resolve metadata for an external video URL.

        Raises:
            MetadataError: One of its subclasses, for every failure
        """
        try:
            ref = canonicalize(raw_url)
            with httpx.Client(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                follow_redirects=False,
                transport=self.transport,
            ) as client:
                request_url = httpx.URL(
                    self.endpoint,
                    params={"format": "json", "url": ref.canonical_watch_url},
                )
                response = self._fetch(client, request_url)
            metadata = self._decode(response)
            logger.info("Resolved metadata for %s: %s", ref.video_id, metadata.title)
            return metadata
        except MetadataError as e:
            logger.warning(
                "Metadata lookup failed for %s: %s%s",
                raw_url,
                e,
                f" body={e.body_snippet!r}" if e.body_snippet else "",
            )
            raise
        except Exception as e:
            logger.error("Metadata lookup failed for %s: %s", raw_url, e, exc_info=True)
            raise FetchFailedError(str(e) or e.__class__.__name__, url=raw_url, cause=e) from e

    def _fetch(self, client: httpx.Client, url: httpx.URL, hops: int = 0) -> httpx.Response:
        """GET url, following up to max_redirects Location headers."""
        try:
            response = client.get(url)
        except httpx.TimeoutException as e:
            raise FetchFailedError(f"Upstream timed out: {e}", url=str(url), cause=e) from e
        except httpx.HTTPError as e:
            raise FetchFailedError(f"Upstream request failed: {e}", url=str(url), cause=e) from e

        status = response.status_code
        if 300 <= status < 400:
            location = response.headers.get("location")
            if not location:
                raise self._status_error(response, "Redirect without Location header")
            if hops >= self.max_redirects:
                raise TooManyRedirectsError(
                    f"More than {self.max_redirects} redirects",
                    url=str(url),
                    upstream_status=status,
                )
            next_url = response.url.join(location)
            logger.debug("Following redirect %s -> %s", url, next_url)
            return self._fetch(client, next_url, hops + 1)

        if not 200 <= status < 300:
            raise self._status_error(response, f"Upstream returned {status}")
        return response

    @staticmethod
    def _status_error(response: httpx.Response, message: str) -> MetadataError:
        status = response.status_code
        if status in UNAVAILABLE_STATUSES:
            exc_type = UnavailableError
        elif status == 429:
            exc_type = RateLimitedError
        else:
            exc_type = UpstreamError
        return exc_type(
            message,
            url=str(response.url),
            upstream_status=status,
            body_snippet=safe_snippet(response.content),
        )

    @staticmethod
    def _decode(response: httpx.Response) -> VideoMetadata:
        try:
            data: Dict[str, Any] = json.loads(response.content)
        except ValueError as e:
            raise BadResponseError(
                f"Malformed JSON from upstream: {e}",
                url=str(response.url),
                upstream_status=response.status_code,
                body_snippet=safe_snippet(response.content),
                cause=e,
            ) from e
        if not isinstance(data, dict):
            raise BadResponseError(
                "Upstream JSON is not an object",
                url=str(response.url),
                upstream_status=response.status_code,
                body_snippet=safe_snippet(response.content),
            )
        return VideoMetadata(
            title=data.get("title"),
            author=data.get("author_name"),
            thumbnail_url=data.get("thumbnail_url"),
        )
