"""Crawl job engine: config, shared types, and crawl components."""

from .config import CrawlJobConfig, ScheduleConfig, load_config, save_config
from .diff import RunDiff, classify, content_hash, content_signature
from .engine import CrawlEngine, StartOutcome
from .errors import (
    ConfigValidationError,
    CrawlError,
    ErrorKind,
    InvalidTransitionError,
    InvalidUrlError,
    JobNotFoundError,
    ParseFailureError,
    UnsupportedContentTypeError,
)
from .extractor import Extractor, ExtractorConfig
from .fetcher import Fetcher
from .filters import PatternFilter, is_eligible
from .frontier import EnqueueResult, EnqueueStatus, Frontier
from .robots import RobotsPolicy, RobotsPolicyCache
from .schedule import next_run_time
from .state import CrawlJob, can_cancel, can_pause, can_resume, can_start_job
from .stats import RunStats
from .storage import CrawlStorage, FileStorage, MemoryStorage
from .types import (
    AuthType,
    ChangeKind,
    CodeBlock,
    CrawlRunHistory,
    DomainRestriction,
    ExtractedContent,
    ExtractedPage,
    FetchResult,
    FrontierEntry,
    ImageRef,
    JobCounters,
    JobStatus,
    PageSignature,
    ScheduleFrequency,
    utc_now_iso,
)
from .url import extract_domain, normalize_url, origin_of, require_normalized_url, resolve_url

__all__ = [
    "AuthType",
    "ChangeKind",
    "CodeBlock",
    "ConfigValidationError",
    "CrawlEngine",
    "CrawlError",
    "CrawlJob",
    "CrawlJobConfig",
    "CrawlRunHistory",
    "CrawlStorage",
    "DomainRestriction",
    "EnqueueResult",
    "EnqueueStatus",
    "ErrorKind",
    "ExtractedContent",
    "ExtractedPage",
    "Extractor",
    "ExtractorConfig",
    "FetchResult",
    "Fetcher",
    "FileStorage",
    "Frontier",
    "FrontierEntry",
    "ImageRef",
    "InvalidTransitionError",
    "InvalidUrlError",
    "JobCounters",
    "JobNotFoundError",
    "JobStatus",
    "MemoryStorage",
    "PageSignature",
    "ParseFailureError",
    "PatternFilter",
    "RobotsPolicy",
    "RobotsPolicyCache",
    "RunDiff",
    "RunStats",
    "ScheduleConfig",
    "ScheduleFrequency",
    "StartOutcome",
    "UnsupportedContentTypeError",
    "can_cancel",
    "can_pause",
    "can_resume",
    "can_start_job",
    "classify",
    "content_hash",
    "content_signature",
    "extract_domain",
    "is_eligible",
    "load_config",
    "next_run_time",
    "normalize_url",
    "origin_of",
    "require_normalized_url",
    "resolve_url",
    "save_config",
    "utc_now_iso",
]
