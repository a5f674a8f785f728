"""Tests for the robots.txt cache and sitemap discovery."""

import threading
import time

from crawljob.robots import RobotsPolicyCache, parse_robots, parse_sitemap


ROBOTS = """
User-agent: *
Disallow: /private/
Crawl-delay: 2

Sitemap: https://docs.example.com/sitemap_index.xml
"""

SITEMAP_INDEX = """<?xml version="1.0" encoding="UTF-8"?>
<sitemapindex xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <sitemap><loc>https://docs.example.com/sitemap-guides.xml</loc></sitemap>
</sitemapindex>
"""

SITEMAP_PAGES = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://docs.example.com/guide/a</loc></url>
  <url><loc>https://docs.example.com/guide/b/</loc></url>
  <url><loc>https://docs.example.com/guide/a#dup</loc></url>
</urlset>
"""


class TestParseRobots:
    """robots.txt parsing."""

    def test_disallow_and_delay(self):
        policy = parse_robots("https://docs.example.com", ROBOTS)
        assert not policy.is_allowed("https://docs.example.com/private/x", "crawljob")
        assert policy.is_allowed("https://docs.example.com/public", "crawljob")
        assert policy.crawl_delay_ms("crawljob") == 2000
        assert policy.sitemaps == ["https://docs.example.com/sitemap_index.xml"]


class TestParseSitemap:
    """Sitemap XML parsing."""

    def test_urlset(self):
        pages, children = parse_sitemap(SITEMAP_PAGES)
        assert pages[0] == "https://docs.example.com/guide/a"
        assert len(pages) == 3
        assert children == []

    def test_index(self):
        pages, children = parse_sitemap(SITEMAP_INDEX)
        assert pages == []
        assert children == ["https://docs.example.com/sitemap-guides.xml"]


class TestRobotsPolicyCache:
    """Per-origin caching and fallbacks."""

    def test_missing_robots_allows_everything(self, site):
        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        assert cache.is_allowed("https://docs.example.com/private/x")
        assert cache.crawl_delay_ms("https://docs.example.com") is None

    def test_server_error_allows_everything(self):
        cache = RobotsPolicyCache(lambda url: (503, "Disallow: /"), "crawljob")
        assert cache.is_allowed("https://docs.example.com/anything")

    def test_fetch_exception_allows_everything(self):
        def broken(url):
            raise ConnectionError("unreachable")

        cache = RobotsPolicyCache(broken, "crawljob")
        assert cache.is_allowed("https://docs.example.com/anything")

    def test_fetched_once_per_origin(self, site):
        """Concurrent lookups for one origin trigger a single fetch."""
        site.add_text("https://docs.example.com/robots.txt", ROBOTS)
        calls = []

        def slow_fetch(url):
            calls.append(url)
            time.sleep(0.05)
            return site.fetch_text(url)

        cache = RobotsPolicyCache(slow_fetch, "crawljob")
        threads = [
            threading.Thread(target=cache.is_allowed, args=(f"https://docs.example.com/p{i}",))
            for i in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert calls == ["https://docs.example.com/robots.txt"]
        assert cache.cached_origins() == ["https://docs.example.com"]

    def test_origins_are_independent(self, site):
        site.add_text("https://docs.example.com/robots.txt", ROBOTS)
        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        assert not cache.is_allowed("https://docs.example.com/private/x")
        assert cache.is_allowed("https://api.example.com/private/x")
        assert cache.cached_origins() == ["https://api.example.com", "https://docs.example.com"]


class TestSitemapDiscovery:
    """Sitemap URL collection for seeding."""

    def test_follows_index_from_robots(self, site):
        site.add_text("https://docs.example.com/robots.txt", ROBOTS)
        site.add_text("https://docs.example.com/sitemap_index.xml", SITEMAP_INDEX)
        site.add_text("https://docs.example.com/sitemap-guides.xml", SITEMAP_PAGES)

        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        urls = cache.discover_sitemap_urls("https://docs.example.com")
        assert urls == ["https://docs.example.com/guide/a", "https://docs.example.com/guide/b"]

    def test_default_sitemap_location(self, site):
        site.add_text("https://docs.example.com/sitemap.xml", SITEMAP_PAGES)
        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        assert len(cache.discover_sitemap_urls("https://docs.example.com")) == 2

    def test_limit(self, site):
        site.add_text("https://docs.example.com/sitemap.xml", SITEMAP_PAGES)
        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        assert cache.discover_sitemap_urls("https://docs.example.com", limit=1) == [
            "https://docs.example.com/guide/a"
        ]

    def test_no_sitemap(self, site):
        cache = RobotsPolicyCache(site.fetch_text, "crawljob")
        assert cache.discover_sitemap_urls("https://docs.example.com") == []
