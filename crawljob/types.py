"""Core type definitions for the crawl engine.

This module is intentionally dependency-light so other crawljob modules can
import shared records without introducing cycles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .errors import ErrorKind


class JobStatus(str, Enum):
    """Lifecycle states of a crawl job."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DomainRestriction(str, Enum):
    """How far links may wander from the start URL's host."""

    SAME = "same"
    SUBDOMAINS = "subdomains"
    ANY = "any"


class AuthType(str, Enum):
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    COOKIE = "cookie"


class ScheduleFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ChangeKind(str, Enum):
    """Diff classification of a page against the previous completed run."""

    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    REMOVED = "removed"


JSONPrimitive = str | int | float | bool | None
JSONValue = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONDict = dict[str, JSONValue]


def utc_now_iso() -> str:
    """Return an RFC3339-like UTC timestamp string with millisecond precision."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def parse_iso_utc(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class FrontierEntry:
    """A crawl candidate tracked by the frontier for one run."""

    url: str
    depth: int
    discovered_from: str | None = None
    enqueued_at: str = field(default_factory=utc_now_iso)
    sequence: int = 0


@dataclass(slots=True)
class FetchResult:
    """Result of attempting to download one URL."""

    requested_url: str
    final_url: str | None
    status_code: int | None
    content_type: str | None
    body: bytes | None
    fetched_at: str = field(default_factory=utc_now_iso)
    elapsed_ms: int | None = None
    attempts: int = 0
    error: str | None = None
    error_kind: ErrorKind | None = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.status_code is not None
            and 200 <= self.status_code < 300
            and self.body is not None
        )

    @property
    def mime_type(self) -> str:
        return (self.content_type or "").split(";", maxsplit=1)[0].strip().lower()

    @property
    def content_length(self) -> int | None:
        return None if self.body is None else len(self.body)


@dataclass(frozen=True, slots=True)
class ImageRef:
    src: str
    alt: str = ""

    def to_json(self) -> JSONDict:
        return {"src": self.src, "alt": self.alt}


@dataclass(frozen=True, slots=True)
class CodeBlock:
    language: str
    code: str

    def to_json(self) -> JSONDict:
        return {"language": self.language, "code": self.code}


@dataclass(slots=True)
class ExtractedContent:
    """Extractor output for one HTML document, before fetch metadata is attached."""

    title: str
    markdown: str
    text: str
    word_count: int
    reading_time_minutes: int
    description: str | None = None
    author: str | None = None
    published_date: str | None = None
    links: list[str] = field(default_factory=list)
    images: list[ImageRef] = field(default_factory=list)
    code_blocks: list[CodeBlock] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PageSignature:
    """Cheap fingerprint used for change detection between runs."""

    url: str
    content_hash: str
    word_count: int

    def to_json(self) -> JSONDict:
        return {
            "url": self.url,
            "content_hash": self.content_hash,
            "word_count": self.word_count,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "PageSignature":
        return cls(
            url=str(payload["url"]),
            content_hash=str(payload["content_hash"]),
            word_count=int(payload.get("word_count", 0)),
        )


@dataclass(frozen=True, slots=True)
class ExtractedPage:
    """One successfully fetched and extracted page of a run."""

    url: str
    final_url: str | None
    title: str
    markdown: str
    raw_word_count: int
    reading_time_minutes: int
    http_status: int
    content_type: str | None
    fetched_at: str
    depth: int
    content_hash: str
    change: ChangeKind
    description: str | None = None
    author: str | None = None
    published_date: str | None = None
    text: str = ""
    links: tuple[str, ...] = ()
    images: tuple[ImageRef, ...] = ()
    code_blocks: tuple[CodeBlock, ...] = ()

    @classmethod
    def from_fetch_and_content(
        cls,
        *,
        url: str,
        depth: int,
        fetch_result: FetchResult,
        content: ExtractedContent,
        signature: PageSignature,
        change: ChangeKind,
    ) -> "ExtractedPage":
        return cls(
            url=url,
            final_url=fetch_result.final_url,
            title=content.title,
            description=content.description,
            author=content.author,
            published_date=content.published_date,
            markdown=content.markdown,
            text=content.text,
            raw_word_count=content.word_count,
            reading_time_minutes=content.reading_time_minutes,
            links=tuple(content.links),
            images=tuple(content.images),
            code_blocks=tuple(content.code_blocks),
            http_status=int(fetch_result.status_code or 0),
            content_type=fetch_result.content_type,
            fetched_at=fetch_result.fetched_at,
            depth=depth,
            content_hash=signature.content_hash,
            change=change,
        )

    @property
    def signature(self) -> PageSignature:
        return PageSignature(url=self.url, content_hash=self.content_hash, word_count=self.raw_word_count)

    def to_json(self) -> JSONDict:
        return {
            "url": self.url,
            "final_url": self.final_url,
            "title": self.title,
            "description": self.description,
            "author": self.author,
            "published_date": self.published_date,
            "markdown": self.markdown,
            "text": self.text,
            "raw_word_count": self.raw_word_count,
            "reading_time_minutes": self.reading_time_minutes,
            "links": list(self.links),
            "images": [image.to_json() for image in self.images],
            "code_blocks": [block.to_json() for block in self.code_blocks],
            "http_status": self.http_status,
            "content_type": self.content_type,
            "fetched_at": self.fetched_at,
            "depth": self.depth,
            "content_hash": self.content_hash,
            "change": self.change.value,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "ExtractedPage":
        return cls(
            url=str(payload["url"]),
            final_url=payload.get("final_url"),
            title=str(payload.get("title") or ""),
            description=payload.get("description"),
            author=payload.get("author"),
            published_date=payload.get("published_date"),
            markdown=str(payload.get("markdown") or ""),
            text=str(payload.get("text") or ""),
            raw_word_count=int(payload.get("raw_word_count", 0)),
            reading_time_minutes=int(payload.get("reading_time_minutes", 0)),
            links=tuple(payload.get("links") or ()),
            images=tuple(ImageRef(**item) for item in payload.get("images") or ()),
            code_blocks=tuple(CodeBlock(**item) for item in payload.get("code_blocks") or ()),
            http_status=int(payload.get("http_status", 0)),
            content_type=payload.get("content_type"),
            fetched_at=str(payload.get("fetched_at") or ""),
            depth=int(payload.get("depth", 0)),
            content_hash=str(payload.get("content_hash") or ""),
            change=ChangeKind(payload.get("change", ChangeKind.NEW.value)),
        )


_COUNTER_FIELDS = (
    "pages_discovered",
    "pages_crawled",
    "pages_successful",
    "pages_failed",
    "pages_skipped",
    "total_words",
    "total_links",
    "error_count",
)


@dataclass(slots=True)
class JobCounters:
    """Run counters of a job; also used as the per-page delta merged into them."""

    pages_discovered: int = 0
    pages_crawled: int = 0
    pages_successful: int = 0
    pages_failed: int = 0
    pages_skipped: int = 0
    total_words: int = 0
    total_links: int = 0
    error_count: int = 0

    def merge(self, other: "JobCounters") -> None:
        for name in _COUNTER_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def copy(self) -> "JobCounters":
        return JobCounters(**{name: getattr(self, name) for name in _COUNTER_FIELDS})

    def to_json(self) -> JSONDict:
        return {name: getattr(self, name) for name in _COUNTER_FIELDS}

    @classmethod
    def from_json(cls, payload: Mapping[str, Any] | None) -> "JobCounters":
        payload = payload or {}
        return cls(**{name: int(payload.get(name, 0)) for name in _COUNTER_FIELDS})


@dataclass(frozen=True, slots=True)
class CrawlRunHistory:
    """Append-only statistics record for one finished run of a job."""

    job_id: str
    run_number: int
    status: JobStatus
    pages_discovered: int
    pages_crawled: int
    pages_successful: int
    pages_failed: int
    pages_skipped: int
    pages_changed: int
    pages_new: int
    pages_unchanged: int
    pages_removed: int
    total_words: int
    total_links: int
    started_at: str
    completed_at: str
    duration_ms: int

    def to_json(self) -> JSONDict:
        return {
            "job_id": self.job_id,
            "run_number": self.run_number,
            "status": self.status.value,
            "pages_discovered": self.pages_discovered,
            "pages_crawled": self.pages_crawled,
            "pages_successful": self.pages_successful,
            "pages_failed": self.pages_failed,
            "pages_skipped": self.pages_skipped,
            "pages_changed": self.pages_changed,
            "pages_new": self.pages_new,
            "pages_unchanged": self.pages_unchanged,
            "pages_removed": self.pages_removed,
            "total_words": self.total_words,
            "total_links": self.total_links,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "CrawlRunHistory":
        return cls(
            job_id=str(payload["job_id"]),
            run_number=int(payload["run_number"]),
            status=JobStatus(payload.get("status", JobStatus.COMPLETED.value)),
            pages_discovered=int(payload.get("pages_discovered", 0)),
            pages_crawled=int(payload.get("pages_crawled", 0)),
            pages_successful=int(payload.get("pages_successful", 0)),
            pages_failed=int(payload.get("pages_failed", 0)),
            pages_skipped=int(payload.get("pages_skipped", 0)),
            pages_changed=int(payload.get("pages_changed", 0)),
            pages_new=int(payload.get("pages_new", 0)),
            pages_unchanged=int(payload.get("pages_unchanged", 0)),
            pages_removed=int(payload.get("pages_removed", 0)),
            total_words=int(payload.get("total_words", 0)),
            total_links=int(payload.get("total_links", 0)),
            started_at=str(payload.get("started_at") or ""),
            completed_at=str(payload.get("completed_at") or ""),
            duration_ms=int(payload.get("duration_ms", 0)),
        )


__all__ = [
    "AuthType",
    "ChangeKind",
    "CodeBlock",
    "CrawlRunHistory",
    "DomainRestriction",
    "ExtractedContent",
    "ExtractedPage",
    "FetchResult",
    "FrontierEntry",
    "ImageRef",
    "JSONDict",
    "JSONPrimitive",
    "JSONValue",
    "JobCounters",
    "JobStatus",
    "PageSignature",
    "ScheduleFrequency",
    "parse_iso_utc",
    "utc_now_iso",
]
