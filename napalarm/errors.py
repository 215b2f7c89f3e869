"""
Exception types for napalarm.

The metadata proxy raises one MetadataError subclass per failure class;
each carries the caller-facing error code and HTTP status plus enough
upstream context (status, truncated body) to diagnose the failure.
"""

from typing import Any, Dict, Optional


class InvalidDurationError(ValueError):
    """Alarm duration outside (0, 24h]."""


class MetadataError(Exception):
    """
    Base exception for metadata proxy failures.

    Attributes:
        code: Machine-readable error code returned to callers
        http_status: Caller-facing HTTP status code
        message: Human-readable description (logged, not returned)
        url: URL being resolved or fetched
        upstream_status: Upstream HTTP status code (if any)
        body_snippet: Truncated upstream body (if any)
        cause: Original exception that triggered this error
    """

    code = "fetch_failed"
    http_status = 502

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        upstream_status: Optional[int] = None,
        body_snippet: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.url = url
        self.upstream_status = upstream_status
        self.body_snippet = body_snippet
        self.cause = cause

    def to_response(self) -> Dict[str, Any]:
        """JSON body for the caller; never includes the upstream payload."""
        return {"error": self.code}

    def __str__(self) -> str:
        parts = [f"{self.code}: {self.message}"]
        if self.upstream_status is not None:
            parts.append(f"(upstream status {self.upstream_status})")
        return " ".join(parts)


class InvalidUrlError(MetadataError):
    """URL malformed, not HTTP(S), not an allowed host, or without a video id."""

    code = "invalid_url"
    http_status = 400


class InvalidVideoIdError(MetadataError):
    """Extracted video id is not 11 characters of [A-Za-z0-9_-]."""

    code = "invalid_video_id"
    http_status = 422


class TooManyRedirectsError(MetadataError):
    code = "too_many_redirects"
    http_status = 502


class UnavailableError(MetadataError):
    """Upstream answered 401, 403 or 404 (private, removed, or not embeddable)."""

    code = "unavailable"
    http_status = 422

    def to_response(self) -> Dict[str, Any]:
        body = super().to_response()
        if self.upstream_status is not None:
            body["upstream"] = self.upstream_status
        return body


class RateLimitedError(MetadataError):
    code = "rate_limited"
    http_status = 429


class UpstreamError(MetadataError):
    code = "upstream_error"
    http_status = 502


class BadResponseError(MetadataError):
    code = "bad_response"
    http_status = 502


class FetchFailedError(MetadataError):
    code = "fetch_failed"
    http_status = 502
