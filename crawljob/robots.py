"""Per-origin robots.txt policy cache and sitemap discovery."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable
from urllib.robotparser import RobotFileParser

import requests
from bs4 import BeautifulSoup

from .constants import ROBOTS_TIMEOUT_SECONDS, SITEMAP_URL_LIMIT
from .url import normalize_url, origin_of


logger = logging.getLogger(__name__)

# (status_code, text); status is None when the request never got a response.
TextResponse = tuple[int | None, str | None]
TextFetcher = Callable[[str], TextResponse]


def requests_text_fetcher(
    user_agent: str,
    *,
    timeout_seconds: float = ROBOTS_TIMEOUT_SECONDS,
    headers: dict[str, str] | None = None,
) -> TextFetcher:
    """Build a plain `requests` text fetcher for robots.txt and sitemap files."""

    merged = dict(headers or {})
    merged["User-Agent"] = user_agent

    def fetch_text(url: str) -> TextResponse:
        try:
            response = requests.get(url, headers=merged, timeout=timeout_seconds)
        except requests.RequestException as exc:
            logger.debug("Text fetch failed for %s: %s", url, exc)
            return None, None
        return response.status_code, response.text

    return fetch_text


@dataclass(slots=True)
class RobotsPolicy:
    """Parsed robots.txt rules for one origin; `parser=None` means allow-all."""

    origin: str
    parser: RobotFileParser | None = None
    sitemaps: list[str] = field(default_factory=list)

    def is_allowed(self, url: str, user_agent: str) -> bool:
        if self.parser is None:
            return True
        try:
            return self.parser.can_fetch(user_agent or "*", url)
        except Exception:
            return True

    def crawl_delay_ms(self, user_agent: str) -> int | None:
        if self.parser is None:
            return None
        delay = self.parser.crawl_delay(user_agent or "*")
        if delay is None:
            return None
        return int(float(delay) * 1000)


def parse_robots(origin: str, text: str) -> RobotsPolicy:
    parser = RobotFileParser()
    parser.set_url(f"{origin}/robots.txt")
    parser.parse(text.splitlines())
    sitemaps = [url for url in (parser.site_maps() or []) if url]
    return RobotsPolicy(origin=origin, parser=parser, sitemaps=sitemaps)


def parse_sitemap(xml_text: str) -> tuple[list[str], list[str]]:
    """Return `(page_urls, child_sitemap_urls)` from a sitemap document."""

    soup = BeautifulSoup(xml_text, "xml")
    page_urls: list[str] = []
    child_sitemaps: list[str] = []

    for index in soup.find_all("sitemapindex"):
        for loc in index.find_all("loc"):
            value = loc.get_text(strip=True)
            if value:
                child_sitemaps.append(value)

    for url_node in soup.find_all("url"):
        loc = url_node.find("loc")
        if loc is None:
            continue
        value = loc.get_text(strip=True)
        if value:
            page_urls.append(value)

    return page_urls, child_sitemaps


class RobotsPolicyCache:
    """Fetch robots.txt once per origin for the lifetime of one run.

    Concurrent callers for the same origin serialize on that origin's lock, so
    the file is requested exactly once; other origins are not blocked.
    """

    def __init__(self, fetch_text: TextFetcher, user_agent: str) -> None:
        self.fetch_text = fetch_text
        self.user_agent = user_agent

        self._lock = threading.Lock()
        self._origin_locks: dict[str, threading.Lock] = {}
        self._policies: dict[str, RobotsPolicy] = {}

    def policy_for(self, url: str) -> RobotsPolicy:
        origin = origin_of(url)

        with self._lock:
            policy = self._policies.get(origin)
            if policy is not None:
                return policy
            origin_lock = self._origin_locks.setdefault(origin, threading.Lock())

        with origin_lock:
            with self._lock:
                policy = self._policies.get(origin)
            if policy is not None:
                return policy

            policy = self._load(origin)
            with self._lock:
                self._policies[origin] = policy
            return policy

    def is_allowed(self, url: str) -> bool:
        return self.policy_for(url).is_allowed(url, self.user_agent)

    def crawl_delay_ms(self, origin: str) -> int | None:
        return self.policy_for(origin).crawl_delay_ms(self.user_agent)

    def sitemaps(self, origin: str) -> list[str]:
        return list(self.policy_for(origin).sitemaps)

    def cached_origins(self) -> list[str]:
        with self._lock:
            return sorted(self._policies)

    def discover_sitemap_urls(self, origin: str, limit: int = SITEMAP_URL_LIMIT) -> list[str]:
        """Collect page URLs from the origin's sitemaps, following one index level."""

        sitemap_urls = self.sitemaps(origin) or [f"{origin_of(origin)}/sitemap.xml"]

        found: list[str] = []
        seen: set[str] = set()

        def collect(urls: list[str]) -> None:
            for raw in urls:
                if len(found) >= limit:
                    return
                normalized = normalize_url(raw)
                if normalized and normalized not in seen:
                    seen.add(normalized)
                    found.append(normalized)

        for sitemap_url in sitemap_urls:
            if len(found) >= limit:
                break
            page_urls, children = self._read_sitemap(sitemap_url)
            collect(page_urls)
            for child_url in children:
                if len(found) >= limit:
                    break
                child_pages, _ = self._read_sitemap(child_url)
                collect(child_pages)

        logger.debug("Discovered %d sitemap URLs for %s", len(found), origin)
        return found

    def _read_sitemap(self, url: str) -> tuple[list[str], list[str]]:
        try:
            status, text = self.fetch_text(url)
        except Exception as exc:
            logger.debug("Sitemap fetch failed for %s: %s", url, exc)
            return [], []
        if status is None or status >= 400 or not text:
            return [], []
        try:
            return parse_sitemap(text)
        except Exception as exc:
            logger.debug("Sitemap parse failed for %s: %s", url, exc)
            return [], []

    def _load(self, origin: str) -> RobotsPolicy:
        robots_url = f"{origin}/robots.txt"
        try:
            status, text = self.fetch_text(robots_url)
        except Exception as exc:
            logger.debug("robots.txt fetch failed for %s: %s", origin, exc)
            return RobotsPolicy(origin=origin)

        # Missing, unreachable, or server-error robots.txt all mean allow-all.
        if status is None or status >= 400 or text is None:
            return RobotsPolicy(origin=origin)

        try:
            return parse_robots(origin, text)
        except Exception as exc:
            logger.warning("Could not parse robots.txt for %s: %s", origin, exc)
            return RobotsPolicy(origin=origin)


__all__ = [
    "RobotsPolicy",
    "RobotsPolicyCache",
    "TextFetcher",
    "parse_robots",
    "parse_sitemap",
    "requests_text_fetcher",
]
