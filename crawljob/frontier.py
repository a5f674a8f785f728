"""Thread-safe breadth-first frontier with dedup, depth and page budgets."""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum

from .types import FrontierEntry
from .url import normalize_url


class EnqueueStatus(str, Enum):
    """Result status for frontier enqueue attempts."""

    ENQUEUED = "enqueued"
    SKIPPED_INVALID_URL = "skipped_invalid_url"
    SKIPPED_DEPTH = "skipped_depth"
    SKIPPED_SEEN = "skipped_seen"
    SKIPPED_BUDGET = "skipped_budget"
    SKIPPED_CLOSED = "skipped_closed"


@dataclass(frozen=True, slots=True)
class EnqueueResult:
    """Outcome of one enqueue attempt."""

    status: EnqueueStatus
    normalized_url: str | None = None
    entry: FrontierEntry | None = None

    @property
    def accepted(self) -> bool:
        return self.status == EnqueueStatus.ENQUEUED


class Frontier:
    """Work queue for one crawl run.

    - URLs are marked seen when accepted, so each URL is handed out at most once.
    - At most `max_pages` URLs are ever accepted; `depth > max_depth` is rejected.
    - Popped entries count as in flight until `task_done`; the run is drained
      only when nothing is queued and nothing is in flight.
    """

    def __init__(self, *, max_pages: int, max_depth: int) -> None:
        self.max_pages = max_pages
        self.max_depth = max_depth

        self._cond = threading.Condition()
        self._queue: deque[FrontierEntry] = deque()

        self._seen_urls: set[str] = set()
        self._offered_urls: set[str] = set()
        self._accepted = 0
        self._in_flight = 0
        self._sequence = 0

        self._dequeued_count = 0
        self._skipped_seen_count = 0
        self._skipped_depth_count = 0
        self._skipped_budget_count = 0
        self._skipped_invalid_count = 0
        self._discarded_count = 0

        self._closed = False
        self._paused = False

    def push(
        self,
        url: str,
        *,
        depth: int,
        discovered_from: str | None = None,
    ) -> EnqueueResult:
        """Attempt to enqueue one URL with constraints enforced."""

        normalized = normalize_url(url)
        if not normalized:
            with self._cond:
                self._skipped_invalid_count += 1
            return EnqueueResult(EnqueueStatus.SKIPPED_INVALID_URL)

        with self._cond:
            if self._closed:
                return EnqueueResult(EnqueueStatus.SKIPPED_CLOSED, normalized_url=normalized)

            if depth > self.max_depth:
                self._skipped_depth_count += 1
                return EnqueueResult(EnqueueStatus.SKIPPED_DEPTH, normalized_url=normalized)

            self._offered_urls.add(normalized)

            if normalized in self._seen_urls:
                self._skipped_seen_count += 1
                return EnqueueResult(EnqueueStatus.SKIPPED_SEEN, normalized_url=normalized)

            if self._accepted >= self.max_pages:
                self._skipped_budget_count += 1
                return EnqueueResult(EnqueueStatus.SKIPPED_BUDGET, normalized_url=normalized)

            self._seen_urls.add(normalized)
            self._accepted += 1
            self._sequence += 1

            entry = FrontierEntry(
                url=normalized,
                depth=depth,
                discovered_from=discovered_from,
                sequence=self._sequence,
            )
            self._queue.append(entry)
            self._cond.notify()

        return EnqueueResult(EnqueueStatus.ENQUEUED, normalized_url=normalized, entry=entry)

    def push_many(
        self,
        urls: list[str],
        *,
        depth: int,
        discovered_from: str | None = None,
    ) -> list[EnqueueResult]:
        """Attempt to enqueue multiple URLs, preserving input order."""

        return [self.push(url, depth=depth, discovered_from=discovered_from) for url in urls]

    def pop(self, *, timeout: float | None = None) -> FrontierEntry | None:
        """Pop the oldest entry and mark it in flight.

        Waits up to `timeout` seconds for work; returns `None` when nothing
        arrived, or immediately when the frontier is drained or closed and empty.
        Nothing is handed out while paused.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._paused or not self._queue:
                if not self._queue and (self._closed or self._in_flight == 0):
                    return None
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None
                self._cond.wait(remaining)

            entry = self._queue.popleft()
            self._in_flight += 1
            self._dequeued_count += 1
            return entry

    def task_done(self) -> None:
        """Mark one popped entry as finished."""

        with self._cond:
            if self._in_flight <= 0:
                raise ValueError("task_done() called more times than pop()")
            self._in_flight -= 1
            self._cond.notify_all()

    def pause(self) -> None:
        """Stop handing out entries; in-flight entries keep running."""

        with self._cond:
            self._paused = True

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()

    @property
    def paused(self) -> bool:
        with self._cond:
            return self._paused

    def discard_pending(self) -> int:
        """Drop every queued entry; in-flight entries are unaffected."""

        with self._cond:
            dropped = len(self._queue)
            self._queue.clear()
            self._discarded_count += dropped
            self._cond.notify_all()
            return dropped

    def is_drained(self) -> bool:
        with self._cond:
            return not self._queue and self._in_flight == 0

    def close(self) -> None:
        """Close frontier to future enqueue attempts."""

        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    @property
    def discovered_count(self) -> int:
        """Distinct in-depth URLs offered so far, including budget rejections."""

        with self._cond:
            return len(self._offered_urls)

    @property
    def accepted_count(self) -> int:
        with self._cond:
            return self._accepted

    def qsize(self) -> int:
        with self._cond:
            return len(self._queue)

    def seen_urls(self) -> set[str]:
        with self._cond:
            return set(self._seen_urls)

    def snapshot(self) -> dict[str, int | bool]:
        """Return frontier counters for logs/stats reporting."""

        with self._cond:
            return {
                "closed": self._closed,
                "paused": self._paused,
                "queue_size": len(self._queue),
                "in_flight": self._in_flight,
                "seen_urls": len(self._seen_urls),
                "discovered": len(self._offered_urls),
                "accepted": self._accepted,
                "dequeued": self._dequeued_count,
                "discarded": self._discarded_count,
                "skipped_seen": self._skipped_seen_count,
                "skipped_depth": self._skipped_depth_count,
                "skipped_budget": self._skipped_budget_count,
                "skipped_invalid": self._skipped_invalid_count,
            }


__all__ = [
    "EnqueueResult",
    "EnqueueStatus",
    "Frontier",
]
