"""URL eligibility: domain restriction plus include/exclude patterns."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from .config import CrawlJobConfig
from .types import DomainRestriction
from .url import extract_domain, normalize_url


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CompiledPattern:
    """One include/exclude rule; invalid regexes degrade to substring matching."""

    source: str
    regex: re.Pattern[str] | None

    @classmethod
    def compile(cls, source: str) -> "CompiledPattern":
        try:
            return cls(source=source, regex=re.compile(source, re.IGNORECASE))
        except re.error as exc:
            logger.debug("Pattern %r is not a valid regex (%s); using substring match", source, exc)
            return cls(source=source, regex=None)

    @property
    def is_substring(self) -> bool:
        return self.regex is None

    def matches(self, url: str) -> bool:
        if self.regex is not None:
            return self.regex.search(url) is not None
        return self.source.lower() in url.lower()


def compile_patterns(patterns: Iterable[str]) -> tuple[CompiledPattern, ...]:
    return tuple(CompiledPattern.compile(pattern) for pattern in patterns if pattern)


def host_in_scope(host: str, start_host: str, restriction: DomainRestriction) -> bool:
    """Apply a domain restriction to a host relative to the start host."""

    if restriction == DomainRestriction.ANY:
        return bool(host)
    if restriction == DomainRestriction.SUBDOMAINS:
        return host == start_host or host.endswith("." + start_host)
    return host == start_host


class PatternFilter:
    """Decide whether a discovered URL may enter the frontier.

    Evaluation order is domain restriction, then include patterns (at least one
    must match when any are configured), then exclude patterns (none may match).
    Content types are checked after the fetch, not here. The filter holds no
    mutable state, so the same URL always gets the same answer.
    """

    def __init__(self, config: CrawlJobConfig) -> None:
        self.start_host = config.start_domain
        self.restriction = config.domain_restriction
        self.include = compile_patterns(config.include_patterns)
        self.exclude = compile_patterns(config.exclude_patterns)

    def explain(self, url: str) -> str | None:
        """Return why `url` is rejected, or `None` when it is eligible."""

        normalized = normalize_url(url)
        if normalized is None:
            return "invalid_url"

        host = extract_domain(normalized)
        if not host_in_scope(host, self.start_host, self.restriction):
            return "out_of_domain"

        if self.include and not any(pattern.matches(normalized) for pattern in self.include):
            return "no_include_match"

        for pattern in self.exclude:
            if pattern.matches(normalized):
                return f"excluded:{pattern.source}"

        return None

    def is_eligible(self, url: str) -> bool:
        return self.explain(url) is None

    def filter(self, urls: Iterable[str]) -> list[str]:
        return [url for url in urls if self.is_eligible(url)]


def is_eligible(url: str, config: CrawlJobConfig) -> bool:
    return PatternFilter(config).is_eligible(url)


__all__ = [
    "CompiledPattern",
    "PatternFilter",
    "compile_patterns",
    "host_in_scope",
    "is_eligible",
]
