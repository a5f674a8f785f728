"""URL fetching with auth injection, per-origin politeness, and retries."""

from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Callable

import requests

from .config import CrawlJobConfig
from .constants import (
    AUTH_REJECTED_STATUS_CODES,
    DEFAULT_HTTP_HEADERS,
    RETRYABLE_STATUS_CODES,
)
from .errors import ErrorKind
from .types import AuthType, FetchResult
from .url import normalize_url, origin_of


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], requests.Session]


def auth_headers(auth_type: AuthType, credentials: str | None) -> dict[str, str]:
    """Translate a configured auth method into request headers."""

    if auth_type == AuthType.NONE or not credentials:
        return {}
    if auth_type == AuthType.BEARER:
        return {"Authorization": f"Bearer {credentials}"}
    if auth_type == AuthType.BASIC:
        token = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {token}"}
    if auth_type == AuthType.COOKIE:
        return {"Cookie": credentials}
    return {}


def build_headers(config: CrawlJobConfig) -> dict[str, str]:
    """Merge defaults < custom headers < auth headers (auth wins on collision)."""

    merged: dict[str, str] = {"User-Agent": config.user_agent}
    merged.update(DEFAULT_HTTP_HEADERS)
    merged.update(config.custom_headers)
    merged.update(auth_headers(config.auth_type, config.auth_credentials))
    return merged


def _is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


class Fetcher:
    """Fetch URLs for one run using a `requests.Session` per worker thread.

    Politeness is per origin: a next-allowed-time map spaces requests to the same
    origin by at least the configured delay, and a per-origin semaphore caps how
    many workers talk to one origin at the same time. Different origins never
    wait on each other.
    """

    def __init__(
        self,
        config: CrawlJobConfig,
        *,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory or requests.Session
        self.headers = build_headers(config)

        self._thread_local = threading.local()
        self._sessions: list[requests.Session] = []
        self._sessions_lock = threading.Lock()

        self._rate_lock = threading.Lock()
        self._next_allowed_time_by_origin: dict[str, float] = {}
        self._origin_slots: dict[str, threading.BoundedSemaphore] = {}

    def fetch(
        self,
        url: str,
        *,
        min_delay_ms: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> FetchResult:
        """Fetch one URL with retries; never raises for per-request failures."""

        normalized = normalize_url(url)
        if normalized is None:
            return FetchResult(
                requested_url=url,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                error="Invalid or unsupported URL",
                error_kind=ErrorKind.INVALID_URL,
            )

        spacing_ms = max(self.config.request_delay_ms, min_delay_ms or 0)
        attempts = max(1, self.config.max_retries)
        last_result: FetchResult | None = None

        for attempt in range(1, attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(normalized, attempt - 1)

            result = self._fetch_once(normalized, spacing_ms / 1000.0, cancel_event)
            result.attempts = attempt
            last_result = result

            if not self._should_retry(result):
                return result

            if attempt < attempts:
                backoff = self.config.retry_backoff_seconds * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying %s in %.2fs (attempt %d/%d): %s",
                    normalized,
                    backoff,
                    attempt,
                    attempts,
                    result.error,
                )
                if backoff > 0:
                    if cancel_event is not None:
                        cancel_event.wait(backoff)
                    else:
                        time.sleep(backoff)

        if last_result is None:
            return FetchResult(
                requested_url=normalized,
                final_url=None,
                status_code=None,
                content_type=None,
                body=None,
                error="Unknown fetch failure",
                error_kind=ErrorKind.NETWORK,
            )
        return last_result

    def close(self) -> None:
        """Close every session opened by worker threads."""

        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            try:
                session.close()
            except Exception as exc:
                logger.debug("Failed to close session: %s", exc)

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _should_retry(result: FetchResult) -> bool:
        if result.error_kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            return True
        if result.error_kind == ErrorKind.HTTP_ERROR and result.status_code is not None:
            return _is_retryable_status(result.status_code)
        return False

    @staticmethod
    def _cancelled(url: str, attempts: int) -> FetchResult:
        return FetchResult(
            requested_url=url,
            final_url=None,
            status_code=None,
            content_type=None,
            body=None,
            attempts=attempts,
            error="Cancelled before request",
            error_kind=ErrorKind.CANCELLED,
        )

    def _fetch_once(
        self,
        url: str,
        spacing_seconds: float,
        cancel_event: threading.Event | None,
    ) -> FetchResult:
        origin = origin_of(url)
        slot = self._origin_slot(origin)

        with slot:
            self._wait_for_rate_limit(origin, spacing_seconds, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                return self._cancelled(url, 0)

            started = time.perf_counter()
            session = self._thread_local_session()
            try:
                response = session.get(
                    url,
                    headers=self.headers,
                    timeout=self.config.timeout_seconds,
                    allow_redirects=True,
                )
            except requests.Timeout as exc:
                return self._failure(url, started, ErrorKind.TIMEOUT, exc)
            except requests.RequestException as exc:
                return self._failure(url, started, ErrorKind.NETWORK, exc)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        status = response.status_code
        body = response.content if response.content is not None else b""

        error: str | None = None
        error_kind: ErrorKind | None = None
        if status in AUTH_REJECTED_STATUS_CODES:
            error, error_kind = f"HTTP {status}", ErrorKind.AUTH_REJECTED
        elif not 200 <= status < 300:
            error, error_kind = f"HTTP {status}", ErrorKind.HTTP_ERROR

        return FetchResult(
            requested_url=url,
            final_url=response.url or url,
            status_code=status,
            content_type=response.headers.get("Content-Type"),
            body=body,
            elapsed_ms=elapsed_ms,
            error=error,
            error_kind=error_kind,
        )

    @staticmethod
    def _failure(url: str, started: float, kind: ErrorKind, exc: Exception) -> FetchResult:
        return FetchResult(
            requested_url=url,
            final_url=None,
            status_code=None,
            content_type=None,
            body=None,
            elapsed_ms=int((time.perf_counter() - started) * 1000),
            error=f"{exc.__class__.__name__}: {exc}",
            error_kind=kind,
        )

    def _thread_local_session(self) -> requests.Session:
        session = getattr(self._thread_local, "session", None)
        if session is None:
            session = self.session_factory()
            self._thread_local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return session

    def _origin_slot(self, origin: str) -> threading.BoundedSemaphore:
        with self._rate_lock:
            slot = self._origin_slots.get(origin)
            if slot is None:
                slot = threading.BoundedSemaphore(self.config.max_per_origin)
                self._origin_slots[origin] = slot
            return slot

    def _wait_for_rate_limit(
        self,
        origin: str,
        spacing_seconds: float,
        cancel_event: threading.Event | None,
    ) -> None:
        if spacing_seconds <= 0:
            return

        while True:
            with self._rate_lock:
                now = time.monotonic()
                next_allowed = self._next_allowed_time_by_origin.get(origin, 0.0)
                if now >= next_allowed:
                    self._next_allowed_time_by_origin[origin] = now + spacing_seconds
                    return
                sleep_for = next_allowed - now

            if cancel_event is not None:
                if cancel_event.wait(sleep_for):
                    return
            else:
                time.sleep(sleep_for)


__all__ = [
    "Fetcher",
    "SessionFactory",
    "auth_headers",
    "build_headers",
]
