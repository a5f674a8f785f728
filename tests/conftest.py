"""Shared fixtures: an in-memory website served through fake HTTP sessions."""

from __future__ import annotations

import threading
import time
from typing import Any, Callable

import pytest
import requests

from crawljob.config import CrawlJobConfig
from crawljob.engine import CrawlEngine
from crawljob.fetcher import Fetcher
from crawljob.robots import RobotsPolicyCache
from crawljob.storage import CrawlStorage, MemoryStorage
from crawljob.url import normalize_url


HTML = "text/html; charset=utf-8"


def html_page(title: str, body: str = "", links: list[str] | tuple[str, ...] = (), nav_links=()) -> str:
    """Small HTML document; `nav_links` go in a <nav> that is not part of the content."""

    anchors = "".join(f'<li><a href="{href}">{href}</a></li>' for href in links)
    nav = "".join(f'<a href="{href}">{href}</a>' for href in nav_links)
    return (
        f"<html><head><title>{title}</title></head><body>"
        f"<nav>{nav}</nav>"
        f"<main><h1>{title}</h1><p>{body or title + ' body text.'}</p><ul>{anchors}</ul></main>"
        f"</body></html>"
    )


class FakeResponse:
    def __init__(self, url: str, status_code: int, body: bytes, content_type: str | None) -> None:
        self.url = url
        self.status_code = status_code
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.content = body

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


class FakeSite:
    """URL -> response table, with request recording, scripted failures and gates."""

    def __init__(self) -> None:
        self.pages: dict[str, tuple[int, bytes, str | None]] = {}
        self.text_files: dict[str, str] = {}
        self.scripted: dict[str, list[Any]] = {}
        self.gates: dict[str, threading.Event] = {}
        self.redirects: dict[str, str] = {}
        self.delay_seconds = 0.0

        self.requests: list[str] = []
        self.request_headers: list[dict[str, str]] = []
        self.text_requests: list[str] = []

        self._lock = threading.Lock()
        self._in_flight: dict[str, int] = {}
        self.max_in_flight = 0
        self._requested = threading.Condition(self._lock)

    # Setup

    def add(self, url: str, body: str | bytes, *, status: int = 200, content_type: str | None = HTML) -> None:
        data = body.encode("utf-8") if isinstance(body, str) else body
        self.pages[normalize_url(url) or url] = (status, data, content_type)

    def add_html(self, url: str, title: str, *, body: str = "", links=(), nav_links=()) -> None:
        self.add(url, html_page(title, body, list(links), list(nav_links)))

    def add_text(self, url: str, text: str) -> None:
        """Serve `url` to the robots/sitemap text fetcher."""

        self.text_files[url] = text

    def script(self, url: str, *outcomes: Any) -> None:
        """Queue outcomes returned before the page itself: status codes or exceptions."""

        self.scripted[normalize_url(url) or url] = list(outcomes)

    def redirect(self, url: str, target: str) -> None:
        """Answer `url` with the page at `target`, reporting `target` as the final URL."""

        self.redirects[normalize_url(url) or url] = normalize_url(target) or target

    def gate(self, url: str) -> threading.Event:
        """Block requests for `url` until the returned event is set."""

        event = threading.Event()
        self.gates[normalize_url(url) or url] = event
        return event

    # Inspection

    def fetched(self) -> list[str]:
        with self._lock:
            return list(self.requests)

    def wait_for_request(self, url: str, timeout: float = 5.0) -> bool:
        key = normalize_url(url) or url
        with self._requested:
            return self._requested.wait_for(lambda: key in self.requests, timeout=timeout)

    # Transport

    def session(self) -> "FakeSession":
        return FakeSession(self)

    def fetch_text(self, url: str) -> tuple[int | None, str | None]:
        with self._lock:
            self.text_requests.append(url)
        if url in self.text_files:
            return 200, self.text_files[url]
        return 404, "Not found"

    def get(self, url: str, headers: dict[str, str] | None = None) -> FakeResponse:
        key = normalize_url(url) or url
        origin = key.split("/", 3)[2]
        with self._requested:
            self.requests.append(key)
            self.request_headers.append(dict(headers or {}))
            self._in_flight[origin] = self._in_flight.get(origin, 0) + 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight[origin])
            self._requested.notify_all()
            scripted = self.scripted.get(key)
            outcome = scripted.pop(0) if scripted else None

        try:
            gate = self.gates.get(key)
            if gate is not None:
                gate.wait(10)
            if self.delay_seconds:
                time.sleep(self.delay_seconds)

            if isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, int):
                return FakeResponse(key, outcome, b"scripted", "text/plain")

            final = self.redirects.get(key, key)
            status, body, content_type = self.pages.get(final, (404, b"Not found", "text/plain"))
            return FakeResponse(final, status, body, content_type)
        finally:
            with self._lock:
                self._in_flight[origin] -= 1


class FakeSession:
    """Quacks like `requests.Session` for `Fetcher`."""

    def __init__(self, site: FakeSite) -> None:
        self.site = site
        self.closed = False

    def get(self, url, headers=None, timeout=None, allow_redirects=True):
        return self.site.get(url, headers)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def make_config() -> Callable[..., CrawlJobConfig]:
    def factory(start_url: str = "https://docs.example.com", **overrides: Any) -> CrawlJobConfig:
        payload: dict[str, Any] = {
            "start_url": start_url,
            "request_delay_ms": 0,
            "retry_backoff_seconds": 0,
            "timeout_seconds": 5,
        }
        payload.update(overrides)
        return CrawlJobConfig.from_dict(payload)

    return factory


@pytest.fixture
def make_fetcher(site: FakeSite) -> Callable[[CrawlJobConfig], Fetcher]:
    def factory(config: CrawlJobConfig) -> Fetcher:
        return Fetcher(config, session_factory=site.session)

    return factory


@pytest.fixture
def make_engine(site: FakeSite, make_fetcher) -> Callable[..., CrawlEngine]:
    def factory(storage: CrawlStorage | None = None) -> CrawlEngine:
        return CrawlEngine(
            storage if storage is not None else MemoryStorage(),
            fetcher_factory=make_fetcher,
            robots_factory=lambda config: RobotsPolicyCache(site.fetch_text, config.user_agent),
        )

    return factory


@pytest.fixture
def timeout_error() -> Exception:
    return requests.Timeout("read timed out")
