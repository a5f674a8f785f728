"""Tests for config resolution and JSON/YAML persistence."""

import pytest

from crawljob.config import CrawlJobConfig, ScheduleConfig, load_config, save_config
from crawljob.constants import DEFAULT_MAX_PAGES, DEFAULT_REQUEST_DELAY_MS, MAX_CONCURRENT
from crawljob.errors import ConfigValidationError
from crawljob.types import AuthType, DomainRestriction, ScheduleFrequency


class TestCrawlJobConfig:
    """Resolution of loose input into an immutable config."""

    def test_defaults(self):
        config = CrawlJobConfig.from_dict({"start_url": "https://Docs.Example.com/"})
        assert config.start_url == "https://docs.example.com/"
        assert config.name == "docs.example.com"
        assert config.max_pages == DEFAULT_MAX_PAGES
        assert config.request_delay_ms == DEFAULT_REQUEST_DELAY_MS
        assert config.domain_restriction == DomainRestriction.SAME
        assert config.content_types == ("text/html",)
        assert config.respect_robots is True

    def test_camel_case_keys(self):
        config = CrawlJobConfig.from_dict(
            {
                "startUrl": "https://docs.example.com",
                "maxPages": 10,
                "maxDepth": 2,
                "excludePatterns": ["/login"],
                "domainRestriction": "subdomains",
                "authType": "bearer",
                "authCredentials": "tok",
                "customHeaders": '{"X-Env": "test"}',
                "scheduleEnabled": True,
                "scheduleFrequency": "weekly",
                "scheduleHour": 6,
                "scheduleDayOfWeek": 1,
            }
        )
        assert config.max_pages == 10
        assert config.max_depth == 2
        assert config.exclude_patterns == ("/login",)
        assert config.domain_restriction == DomainRestriction.SUBDOMAINS
        assert config.auth_type == AuthType.BEARER
        assert config.custom_headers == {"X-Env": "test"}
        assert config.schedule == ScheduleConfig(
            enabled=True, frequency=ScheduleFrequency.WEEKLY, hour=6, day_of_week=1
        )

    def test_zero_means_default_for_budgets(self):
        """UI forms send 0 for unset numeric fields."""
        config = CrawlJobConfig.from_dict({"start_url": "https://docs.example.com", "maxPages": 0})
        assert config.max_pages == DEFAULT_MAX_PAGES

    def test_explicit_zero_delay_is_kept(self):
        config = CrawlJobConfig.from_dict({"start_url": "https://docs.example.com", "request_delay_ms": 0})
        assert config.request_delay_ms == 0

    def test_concurrency_is_clamped(self):
        config = CrawlJobConfig.from_dict(
            {"start_url": "https://docs.example.com", "max_concurrent": 50, "max_per_origin": 40}
        )
        assert config.max_concurrent == MAX_CONCURRENT
        assert config.max_per_origin == MAX_CONCURRENT

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"start_url": "ftp://docs.example.com"},
            {"start_url": "https://docs.example.com", "domain_restriction": "galaxy"},
            {"start_url": "https://docs.example.com", "auth_type": "basic"},
            {"start_url": "https://docs.example.com", "max_pages": "many"},
            {"start_url": "https://docs.example.com", "custom_headers": "{not json"},
            {"start_url": "https://docs.example.com", "respect_robots": "yes"},
            {"start_url": "https://docs.example.com", "schedule": {"enabled": True, "hour": 25}},
        ],
    )
    def test_invalid(self, payload):
        with pytest.raises(ConfigValidationError):
            CrawlJobConfig.from_dict(payload)

    def test_accepts_content_type(self):
        config = CrawlJobConfig.from_dict(
            {"start_url": "https://docs.example.com", "content_types": ["text/html", "application/*"]}
        )
        assert config.accepts_content_type("text/html; charset=utf-8")
        assert config.accepts_content_type("application/xhtml+xml")
        assert not config.accepts_content_type("image/png")
        assert config.accepts_content_type(None)
        assert config.accepts_content_type("")

    def test_missing_content_type_is_html(self):
        json_only = CrawlJobConfig.from_dict(
            {"start_url": "https://docs.example.com", "content_types": ["application/json"]}
        )
        assert not json_only.accepts_content_type(None)

    def test_secrets_can_be_omitted(self):
        config = CrawlJobConfig.from_dict(
            {"start_url": "https://docs.example.com", "auth_type": "cookie", "auth_credentials": "sid=1"}
        )
        assert config.to_dict(include_secrets=False)["auth_credentials"] is None
        assert "sid=1" not in repr(config)


class TestConfigFiles:
    """JSON/YAML load and save."""

    @pytest.mark.parametrize("suffix", [".json", ".yaml"])
    def test_save_and_load(self, tmp_path, suffix):
        config = CrawlJobConfig.from_dict(
            {"start_url": "https://docs.example.com", "include_patterns": ["/guide/"], "max_depth": 4}
        )
        path = tmp_path / f"job{suffix}"
        save_config(config, path)
        assert load_config(path) == config

    def test_yaml_written_by_hand(self, tmp_path):
        path = tmp_path / "job.yml"
        path.write_text(
            "start_url: https://docs.example.com\nmaxPages: 5\nexclude_patterns:\n  - /login\n",
            encoding="utf-8",
        )
        config = load_config(path)
        assert config.max_pages == 5
        assert config.exclude_patterns == ("/login",)

    def test_unsupported_suffix(self, tmp_path):
        with pytest.raises(ConfigValidationError):
            load_config(tmp_path / "job.toml")
