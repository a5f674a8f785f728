"""Default values and hard limits shared by config, fetcher, and engine."""

from __future__ import annotations


DEFAULT_USER_AGENT = "crawljob/1.0 (+https://github.com/crawljob/crawljob)"
DEFAULT_HTTP_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

DEFAULT_DOMAIN_RESTRICTION = "same"
DEFAULT_CONTENT_TYPES: tuple[str, ...] = ("text/html",)

DEFAULT_MAX_PAGES = 100
DEFAULT_MAX_DEPTH = 3
DEFAULT_REQUEST_DELAY_MS = 1000
DEFAULT_MAX_CONCURRENT = 1
MIN_CONCURRENT = 1
MAX_CONCURRENT = 5
DEFAULT_MAX_PER_ORIGIN = 2

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
ROBOTS_TIMEOUT_SECONDS = 10.0

DEFAULT_RESPECT_ROBOTS = True
DEFAULT_USE_SITEMAPS = True
SITEMAP_URL_LIMIT = 500

WORDS_PER_MINUTE = 200

RETRYABLE_STATUS_CODES = frozenset({408, 429})
AUTH_REJECTED_STATUS_CODES = frozenset({401, 403})

WORKER_POLL_SECONDS = 0.2

JSON_INDENT = 2
SUPPORTED_CONFIG_SUFFIXES = (".json", ".yaml", ".yml")


__all__ = [
    "AUTH_REJECTED_STATUS_CODES",
    "DEFAULT_CONTENT_TYPES",
    "DEFAULT_DOMAIN_RESTRICTION",
    "DEFAULT_HTTP_HEADERS",
    "DEFAULT_MAX_CONCURRENT",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_PAGES",
    "DEFAULT_MAX_PER_ORIGIN",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_REQUEST_DELAY_MS",
    "DEFAULT_RESPECT_ROBOTS",
    "DEFAULT_RETRY_BACKOFF_SECONDS",
    "DEFAULT_TIMEOUT_SECONDS",
    "DEFAULT_USER_AGENT",
    "DEFAULT_USE_SITEMAPS",
    "JSON_INDENT",
    "MAX_CONCURRENT",
    "MIN_CONCURRENT",
    "RETRYABLE_STATUS_CODES",
    "ROBOTS_TIMEOUT_SECONDS",
    "SITEMAP_URL_LIMIT",
    "SUPPORTED_CONFIG_SUFFIXES",
    "WORDS_PER_MINUTE",
    "WORKER_POLL_SECONDS",
]
