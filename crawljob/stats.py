"""Thread-safe run counters and diagnostics for one crawl run."""

from __future__ import annotations

from collections import defaultdict
import threading
from typing import Any, Iterable

from .errors import ErrorKind
from .frontier import EnqueueResult, EnqueueStatus
from .types import FetchResult, JobCounters, parse_iso_utc, utc_now_iso


def success_delta(*, words: int, links: int) -> JobCounters:
    return JobCounters(pages_crawled=1, pages_successful=1, total_words=words, total_links=links)


def failure_delta(kind: ErrorKind | None) -> JobCounters:
    """Counter delta for a page that did not succeed."""

    if kind is not None and kind.is_skip:
        return JobCounters(pages_crawled=1, pages_skipped=1)
    return JobCounters(pages_crawled=1, pages_failed=1, error_count=1)


class RunStats:
    """Collect the counters and diagnostics of one run.

    Workers build a per-page `JobCounters` delta locally and hand it to
    `record_page`, which merges it under the lock in one step.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters = JobCounters()
        self.started_at = utc_now_iso()
        self.finished_at: str | None = None

        self._enqueue_counts: dict[str, int] = defaultdict(int)
        self._error_kind_counts: dict[str, int] = defaultdict(int)
        self._status_code_counts: dict[str, int] = defaultdict(int)
        self._fetch_elapsed_ms_total = 0
        self._fetch_elapsed_samples = 0
        self._fetch_bytes_total = 0
        self._fetch_attempts_total = 0
        self._last_error: str | None = None

    def record_enqueue(self, result: EnqueueResult | EnqueueStatus) -> None:
        status = result.status if isinstance(result, EnqueueResult) else result
        with self._lock:
            self._enqueue_counts[status.value] += 1

    def record_enqueue_many(self, results: Iterable[EnqueueResult]) -> None:
        for result in results:
            self.record_enqueue(result)

    def record_fetch(self, result: FetchResult) -> None:
        with self._lock:
            if result.status_code is not None:
                self._status_code_counts[str(result.status_code)] += 1
            if result.elapsed_ms is not None:
                self._fetch_elapsed_ms_total += int(result.elapsed_ms)
                self._fetch_elapsed_samples += 1
            if result.content_length is not None:
                self._fetch_bytes_total += result.content_length
            self._fetch_attempts_total += result.attempts

    def record_page(
        self,
        delta: JobCounters,
        *,
        error_kind: ErrorKind | None = None,
        error: str | None = None,
    ) -> JobCounters:
        """Merge one page's delta; returns a copy of the updated totals."""

        with self._lock:
            self._counters.merge(delta)
            if error_kind is not None:
                self._error_kind_counts[error_kind.value] += 1
            if error and not (error_kind is not None and error_kind.is_skip):
                self._last_error = error
            return self._counters.copy()

    def counters(self) -> JobCounters:
        with self._lock:
            return self._counters.copy()

    @property
    def last_error(self) -> str | None:
        with self._lock:
            return self._last_error

    def finish(self) -> None:
        with self._lock:
            if self.finished_at is None:
                self.finished_at = utc_now_iso()

    def duration_ms(self) -> int:
        start = parse_iso_utc(self.started_at)
        end = parse_iso_utc(self.finished_at or utc_now_iso())
        if start is None or end is None:
            return 0
        return max(0, int((end - start).total_seconds() * 1000))

    def to_json(self) -> dict[str, Any]:
        """Return a JSON-serializable summary payload."""

        duration_ms = self.duration_ms()
        with self._lock:
            elapsed_avg = (
                self._fetch_elapsed_ms_total / self._fetch_elapsed_samples
                if self._fetch_elapsed_samples > 0
                else 0.0
            )
            crawled = self._counters.pages_crawled
            return {
                **self._counters.to_json(),
                "started_at": self.started_at,
                "finished_at": self.finished_at,
                "duration_ms": duration_ms,
                "pages_per_second": crawled / (duration_ms / 1000) if duration_ms > 0 else 0.0,
                "last_error": self._last_error,
                "frontier": dict(self._enqueue_counts),
                "errors": dict(self._error_kind_counts),
                "fetch": {
                    "status_code_counts": dict(self._status_code_counts),
                    "elapsed_ms_total": self._fetch_elapsed_ms_total,
                    "elapsed_ms_avg": elapsed_avg,
                    "bytes_total": self._fetch_bytes_total,
                    "attempts_total": self._fetch_attempts_total,
                },
            }


__all__ = [
    "RunStats",
    "failure_delta",
    "success_delta",
]
