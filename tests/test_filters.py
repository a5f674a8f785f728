"""Tests for domain restriction and include/exclude patterns."""

from crawljob.filters import CompiledPattern, PatternFilter, host_in_scope, is_eligible
from crawljob.types import DomainRestriction


class TestHostInScope:
    """Domain restriction relative to the start host."""

    def test_same(self):
        assert host_in_scope("docs.example.com", "docs.example.com", DomainRestriction.SAME)
        assert not host_in_scope("api.docs.example.com", "docs.example.com", DomainRestriction.SAME)
        assert not host_in_scope("www.docs.example.com", "docs.example.com", DomainRestriction.SAME)

    def test_subdomains(self):
        assert host_in_scope("docs.example.com", "docs.example.com", DomainRestriction.SUBDOMAINS)
        assert host_in_scope("v2.docs.example.com", "docs.example.com", DomainRestriction.SUBDOMAINS)
        assert not host_in_scope("evildocs.example.com", "docs.example.com", DomainRestriction.SUBDOMAINS)
        assert not host_in_scope("example.com", "docs.example.com", DomainRestriction.SUBDOMAINS)

    def test_any(self):
        assert host_in_scope("elsewhere.org", "docs.example.com", DomainRestriction.ANY)


class TestCompiledPattern:
    """Pattern compilation."""

    def test_regex_is_case_insensitive(self):
        pattern = CompiledPattern.compile(r"/API/v\d+")
        assert pattern.matches("https://example.com/api/v2/users")
        assert not pattern.is_substring

    def test_invalid_regex_falls_back_to_substring(self):
        """An unbalanced bracket is matched literally instead of raising."""
        pattern = CompiledPattern.compile("/docs[")
        assert pattern.is_substring
        assert pattern.matches("https://example.com/docs[1]")
        assert not pattern.matches("https://example.com/docs")


class TestPatternFilter:
    """Full eligibility decision."""

    def test_out_of_domain_rejected(self, make_config):
        pattern_filter = PatternFilter(make_config())
        assert pattern_filter.explain("https://other.example.org/page") == "out_of_domain"
        assert pattern_filter.is_eligible("https://docs.example.com/page")

    def test_include_requires_a_match(self, make_config):
        pattern_filter = PatternFilter(make_config(include_patterns=["/guide/", "/api/"]))
        assert pattern_filter.is_eligible("https://docs.example.com/guide/intro")
        assert pattern_filter.explain("https://docs.example.com/blog/post") == "no_include_match"

    def test_exclude_wins_over_include(self, make_config):
        config = make_config(include_patterns=["/guide/"], exclude_patterns=["draft"])
        pattern_filter = PatternFilter(config)
        assert pattern_filter.explain("https://docs.example.com/guide/draft-1") == "excluded:draft"

    def test_invalid_url(self, make_config):
        assert PatternFilter(make_config()).explain("mailto:x@example.com") == "invalid_url"

    def test_filter_preserves_order(self, make_config):
        pattern_filter = PatternFilter(make_config(exclude_patterns=["/login"]))
        urls = [
            "https://docs.example.com/b",
            "https://docs.example.com/login",
            "https://elsewhere.org/",
            "https://docs.example.com/a",
        ]
        assert pattern_filter.filter(urls) == ["https://docs.example.com/b", "https://docs.example.com/a"]

    def test_module_level_helper(self, make_config):
        config = make_config(domain_restriction="subdomains")
        assert is_eligible("https://v1.docs.example.com/x", config)
        assert not is_eligible("https://example.com/x", config)

    def test_deterministic(self, make_config):
        """Repeated checks give the same answer."""
        pattern_filter = PatternFilter(make_config(include_patterns=["guide"]))
        url = "https://docs.example.com/guide"
        assert {pattern_filter.is_eligible(url) for _ in range(5)} == {True}
