"""Exception taxonomy and per-page error kinds."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a per-page outcome that was not a success."""

    INVALID_URL = "invalid_url"
    ROBOTS_DISALLOWED = "robots_disallowed"
    CONTENT_TYPE_MISMATCH = "content_type_mismatch"
    REDIRECT_OUT_OF_SCOPE = "redirect_out_of_scope"
    NETWORK = "network"
    TIMEOUT = "timeout"
    HTTP_ERROR = "http_error"
    AUTH_REJECTED = "auth_rejected"
    PARSE_FAILURE = "parse_failure"
    STORAGE = "storage"
    CANCELLED = "cancelled"

    @property
    def is_skip(self) -> bool:
        """Skips are counted in `pages_skipped` rather than `pages_failed`."""

        return self in _SKIP_KINDS


_SKIP_KINDS = frozenset(
    {
        ErrorKind.INVALID_URL,
        ErrorKind.ROBOTS_DISALLOWED,
        ErrorKind.CONTENT_TYPE_MISMATCH,
        ErrorKind.REDIRECT_OUT_OF_SCOPE,
    }
)


class CrawlError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind | None = None


class InvalidUrlError(CrawlError, ValueError):
    """URL is malformed or uses a scheme other than http/https."""

    kind = ErrorKind.INVALID_URL

    def __init__(self, url: str, reason: str = "Invalid or unsupported URL") -> None:
        super().__init__(f"{reason}: {url!r}")
        self.url = url


class ConfigValidationError(CrawlError, ValueError):
    """Crawl configuration rejected before a run starts."""


class UnsupportedContentTypeError(CrawlError):
    """Extractor was handed content it cannot parse."""

    kind = ErrorKind.CONTENT_TYPE_MISMATCH

    def __init__(self, content_type: str | None) -> None:
        super().__init__(f"Unsupported content type: {content_type or 'unknown'}")
        self.content_type = content_type


class ParseFailureError(CrawlError):
    """Document could not be turned into page content."""

    kind = ErrorKind.PARSE_FAILURE


class JobNotFoundError(CrawlError, KeyError):
    """No job with the requested id is known to the engine or storage."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Crawl job not found: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        return self.args[0]


class InvalidTransitionError(CrawlError):
    """Requested job status transition is not allowed by the state machine."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot transition job from '{current}' to '{target}'")
        self.current = current
        self.target = target


__all__ = [
    "ConfigValidationError",
    "CrawlError",
    "ErrorKind",
    "InvalidTransitionError",
    "InvalidUrlError",
    "JobNotFoundError",
    "ParseFailureError",
    "UnsupportedContentTypeError",
]
