"""Crawl job orchestration: lifecycle signals, worker pool, run finalization."""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from .config import CrawlJobConfig
from .constants import ROBOTS_TIMEOUT_SECONDS, WORKER_POLL_SECONDS
from .diff import RunDiff, classify, content_signature
from .errors import (
    ErrorKind,
    JobNotFoundError,
    ParseFailureError,
    UnsupportedContentTypeError,
)
from .extractor import Extractor
from .fetcher import Fetcher
from .filters import PatternFilter
from .frontier import Frontier
from .robots import RobotsPolicyCache, requests_text_fetcher
from .schedule import next_run_iso
from .state import (
    ACTIVE,
    CrawlJob,
    can_cancel,
    can_pause,
    can_resume,
    can_start_job,
    can_transition,
)
from .stats import RunStats, failure_delta, success_delta
from .storage import CrawlStorage
from .types import (
    CrawlRunHistory,
    ExtractedPage,
    FrontierEntry,
    JobCounters,
    JobStatus,
    utc_now_iso,
)
from .url import normalize_url, origin_of


logger = logging.getLogger(__name__)

FetcherFactory = Callable[[CrawlJobConfig], Fetcher]
RobotsFactory = Callable[[CrawlJobConfig], RobotsPolicyCache]

INTERRUPTED_ERROR = "Run interrupted by process restart"


class StartOutcome(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"


def default_robots_factory(config: CrawlJobConfig) -> RobotsPolicyCache:
    fetch_text = requests_text_fetcher(
        config.user_agent,
        timeout_seconds=min(ROBOTS_TIMEOUT_SECONDS, config.timeout_seconds),
    )
    return RobotsPolicyCache(fetch_text, config.user_agent)


@dataclass(slots=True)
class _RunHandle:
    """Everything owned by one active run of one job."""

    job: CrawlJob
    run_number: int
    frontier: Frontier
    stats: RunStats = field(default_factory=RunStats)
    diff: RunDiff = field(default_factory=RunDiff)
    cancel_event: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None
    reported_discovered: int = 0

    @property
    def job_id(self) -> str:
        return self.job.job_id

    @property
    def config(self) -> CrawlJobConfig:
        return self.job.config


class CrawlEngine:
    """Owns job lifecycles and runs at most one crawl per job at a time.

    Each started run gets its own thread, which seeds a `Frontier`, spawns up to
    `max_concurrent` workers, and always writes a `CrawlRunHistory` when it ends,
    whether the run completed, was cancelled, or failed.
    """

    def __init__(
        self,
        storage: CrawlStorage,
        *,
        fetcher_factory: FetcherFactory | None = None,
        robots_factory: RobotsFactory | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self.storage = storage
        self.fetcher_factory = fetcher_factory or Fetcher
        self.robots_factory = robots_factory or default_robots_factory
        self.extractor = extractor or Extractor()

        self._lock = threading.RLock()
        self._jobs: dict[str, CrawlJob] = {}
        self._runs: dict[str, _RunHandle] = {}

    # Job registry

    def create_job(self, config: CrawlJobConfig | Mapping[str, Any], *, job_id: str | None = None) -> str:
        if not isinstance(config, CrawlJobConfig):
            config = CrawlJobConfig.from_dict(config)

        job = CrawlJob(job_id=job_id or uuid.uuid4().hex, config=config)
        job.next_scheduled_run = next_run_iso(config.schedule)

        with self._lock:
            self.storage.save_job(job)
            self._jobs[job.job_id] = job
        logger.info("Created job %s for %s", job.job_id, config.start_url)
        return job.job_id

    def _get_job(self, job_id: str) -> CrawlJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                job = self.storage.load_job(job_id)
                self._jobs[job_id] = job
            return job

    def status(self, job_id: str) -> CrawlJob:
        with self._lock:
            return self._get_job(job_id).copy()

    def history(self, job_id: str) -> list[CrawlRunHistory]:
        self._get_job(job_id)
        return self.storage.list_run_history(job_id)

    def is_active(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._runs

    # Lifecycle signals

    def start(self, job_id: str) -> StartOutcome:
        """Start a new run; a no-op when the job already has an active run."""

        with self._lock:
            job = self._get_job(job_id)
            if job_id in self._runs or not can_start_job(job.status):
                logger.warning(
                    "JobAlreadyRunning: job %s is %s; start ignored",
                    job_id,
                    job.status.value,
                )
                return StartOutcome.ALREADY_RUNNING

            previous_runs = self.storage.list_run_history(job_id)
            run_number = max((record.run_number for record in previous_runs), default=0) + 1

            job.transition(JobStatus.QUEUED)
            job.counters = JobCounters()
            job.run_count = run_number
            job.started_at = utc_now_iso()
            job.completed_at = None
            job.paused_at = None
            job.last_error = None
            job.last_activity_at = job.started_at
            self.storage.save_job(job)

            handle = _RunHandle(
                job=job,
                run_number=run_number,
                frontier=Frontier(max_pages=job.config.max_pages, max_depth=job.config.max_depth),
            )
            handle.thread = threading.Thread(
                target=self._run,
                args=(handle,),
                name=f"crawljob-{job_id[:8]}-run-{run_number}",
                daemon=True,
            )
            self._runs[job_id] = handle
            handle.thread.start()

        return StartOutcome.STARTED

    def pause(self, job_id: str) -> bool:
        with self._lock:
            job = self._get_job(job_id)
            if job.status == JobStatus.PAUSED:
                return True
            if not can_pause(job.status):
                return False

            handle = self._runs.get(job_id)
            if handle is not None:
                handle.frontier.pause()
            job.transition(JobStatus.PAUSED)
            job.paused_at = utc_now_iso()
            self.storage.save_job(job)

        logger.info("Paused job %s", job_id)
        return True

    def resume(self, job_id: str) -> bool:
        with self._lock:
            job = self._get_job(job_id)
            if job.status == JobStatus.RUNNING:
                return True
            if not can_resume(job.status):
                return False

            handle = self._runs.get(job_id)
            if handle is None:
                logger.warning("Job %s is paused but has no active run; use recover_interrupted", job_id)
                return False

            job.transition(JobStatus.RUNNING)
            job.paused_at = None
            self.storage.save_job(job)
            handle.frontier.resume()

        logger.info("Resumed job %s", job_id)
        return True

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            job = self._get_job(job_id)
            if not can_cancel(job.status):
                return False

            handle = self._runs.get(job_id)
            if handle is not None:
                handle.cancel_event.set()
                dropped = handle.frontier.discard_pending()
                handle.frontier.close()
                handle.frontier.resume()
                logger.info("Cancelling job %s; dropped %d queued URLs", job_id, dropped)

            job.transition(JobStatus.CANCELLED)
            job.paused_at = None
            if handle is None:
                job.completed_at = utc_now_iso()
            self.storage.save_job(job)

        return True

    def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job's active run finishes; True when nothing is running."""

        with self._lock:
            handle = self._runs.get(job_id)
        if handle is None or handle.thread is None:
            return True
        handle.thread.join(timeout)
        return not handle.thread.is_alive()

    def run_sync(self, job_id: str, timeout: float | None = None) -> CrawlRunHistory:
        """Start (or join) a run and return its history record."""

        self.start(job_id)
        if not self.wait(job_id, timeout):
            raise TimeoutError(f"Run of job {job_id} did not finish within {timeout}s")
        records = self.history(job_id)
        if not records:
            raise JobNotFoundError(job_id)
        return records[-1]

    def delete_job(self, job_id: str, timeout: float | None = None) -> None:
        """Delete a job and everything stored for it, cancelling an active run first."""

        self._get_job(job_id)
        if self.is_active(job_id):
            self.cancel(job_id)
            if not self.wait(job_id, timeout):
                raise TimeoutError(f"Run of job {job_id} did not stop within {timeout}s")

        with self._lock:
            self.storage.delete_job(job_id)
            self._jobs.pop(job_id, None)
        logger.info("Deleted job %s", job_id)

    def recover_interrupted(self) -> list[str]:
        """Fail jobs persisted as active that have no run in this process."""

        recovered: list[str] = []
        with self._lock:
            for stored in self.storage.list_jobs():
                if stored.job_id in self._runs or stored.status not in ACTIVE:
                    continue
                job = self._jobs.get(stored.job_id) or stored
                job.transition(JobStatus.FAILED)
                job.last_error = INTERRUPTED_ERROR
                job.completed_at = utc_now_iso()
                job.paused_at = None
                self.storage.save_job(job)
                self._jobs[job.job_id] = job
                recovered.append(job.job_id)

        for job_id in recovered:
            logger.warning("Marked interrupted job %s as failed", job_id)
        return recovered

    def shutdown(self, timeout: float | None = None) -> None:
        """Cancel every active run and wait for their threads."""

        with self._lock:
            job_ids = list(self._runs)
        for job_id in job_ids:
            self.cancel(job_id)
        for job_id in job_ids:
            self.wait(job_id, timeout)

    # Run loop

    def _run(self, handle: _RunHandle) -> None:
        job_id = handle.job_id
        config = handle.config
        fetcher: Fetcher | None = None
        failure: BaseException | None = None

        logger.info("Starting run %d of job %s at %s", handle.run_number, job_id, config.start_url)

        try:
            with self._lock:
                if handle.job.status == JobStatus.QUEUED:
                    handle.job.transition(JobStatus.RUNNING)
                    self.storage.save_job(handle.job)

            handle.diff = RunDiff(self.storage.load_latest_snapshot(job_id))
            fetcher = self.fetcher_factory(config)
            robots = self.robots_factory(config)
            pattern_filter = PatternFilter(config)

            self._seed(handle, robots, pattern_filter)

            workers = [
                threading.Thread(
                    target=self._worker,
                    args=(handle, fetcher, robots, pattern_filter),
                    name=f"crawljob-{job_id[:8]}-worker-{idx}",
                    daemon=True,
                )
                for idx in range(config.max_concurrent)
            ]
            for worker in workers:
                worker.start()
            for worker in workers:
                worker.join()
        except Exception as exc:
            failure = exc
            logger.exception("Run %d of job %s failed", handle.run_number, job_id)
        finally:
            if fetcher is not None:
                fetcher.close()
            self._finalize(handle, failure)

    def _seed(self, handle: _RunHandle, robots: RobotsPolicyCache, pattern_filter: PatternFilter) -> None:
        config = handle.config
        result = handle.frontier.push(config.start_url, depth=0)
        handle.stats.record_enqueue(result)

        if config.use_sitemaps and not handle.cancel_event.is_set():
            sitemap_urls = robots.discover_sitemap_urls(origin_of(config.start_url))
            eligible = pattern_filter.filter(sitemap_urls)
            if eligible:
                results = handle.frontier.push_many(eligible, depth=1, discovered_from=None)
                handle.stats.record_enqueue_many(results)
                logger.info("Seeded %d URLs from sitemaps for job %s", len(eligible), handle.job_id)

        self._apply_delta(handle, JobCounters())

    def _worker(
        self,
        handle: _RunHandle,
        fetcher: Fetcher,
        robots: RobotsPolicyCache,
        pattern_filter: PatternFilter,
    ) -> None:
        frontier = handle.frontier
        while not handle.cancel_event.is_set():
            entry = frontier.pop(timeout=WORKER_POLL_SECONDS)
            if entry is None:
                if frontier.paused:
                    handle.cancel_event.wait(WORKER_POLL_SECONDS)
                    continue
                if frontier.is_drained():
                    return
                continue

            try:
                self._process_entry(handle, entry, fetcher, robots, pattern_filter)
            except Exception as exc:
                logger.exception("Unexpected error while crawling %s", entry.url)
                self._record_failure(handle, entry.url, None, f"{exc.__class__.__name__}: {exc}")
            finally:
                frontier.task_done()

    def _process_entry(
        self,
        handle: _RunHandle,
        entry: FrontierEntry,
        fetcher: Fetcher,
        robots: RobotsPolicyCache,
        pattern_filter: PatternFilter,
    ) -> None:
        config = handle.config
        url = entry.url

        crawl_delay_ms = None
        if config.respect_robots:
            if not robots.is_allowed(url):
                self._record_failure(handle, url, ErrorKind.ROBOTS_DISALLOWED, "Blocked by robots.txt")
                return
            crawl_delay_ms = robots.crawl_delay_ms(origin_of(url))

        result = fetcher.fetch(url, min_delay_ms=crawl_delay_ms, cancel_event=handle.cancel_event)
        handle.stats.record_fetch(result)

        if result.error_kind == ErrorKind.CANCELLED:
            return
        if not result.ok:
            self._record_failure(handle, url, result.error_kind or ErrorKind.HTTP_ERROR, result.error)
            return

        rejection = self._redirect_rejection(config, url, result.final_url, robots, pattern_filter)
        if rejection is not None:
            self._record_failure(
                handle,
                url,
                ErrorKind.REDIRECT_OUT_OF_SCOPE,
                f"Redirected to {result.final_url} ({rejection})",
            )
            return

        if not config.accepts_content_type(result.content_type):
            self._record_failure(
                handle,
                url,
                ErrorKind.CONTENT_TYPE_MISMATCH,
                f"Content type {result.mime_type or 'unknown'} not in {list(config.content_types)}",
            )
            return

        try:
            content = self.extractor.extract(result.body or b"", result.final_url or url, result.content_type)
        except UnsupportedContentTypeError as exc:
            self._record_failure(handle, url, ErrorKind.CONTENT_TYPE_MISMATCH, str(exc))
            return
        except ParseFailureError as exc:
            self._record_failure(handle, url, ErrorKind.PARSE_FAILURE, str(exc))
            return

        if entry.depth < config.max_depth and content.links:
            eligible = pattern_filter.filter(content.links)
            results = handle.frontier.push_many(eligible, depth=entry.depth + 1, discovered_from=url)
            handle.stats.record_enqueue_many(results)

        signature = content_signature(url, content.markdown, content.word_count)
        page = ExtractedPage.from_fetch_and_content(
            url=url,
            depth=entry.depth,
            fetch_result=result,
            content=content,
            signature=signature,
            change=classify(signature, handle.diff.previous),
        )

        try:
            self.storage.save_page(handle.job_id, handle.run_number, page)
        except Exception as exc:
            logger.warning("Could not store page %s: %s", url, exc)
            self._record_failure(handle, url, ErrorKind.STORAGE, f"{exc.__class__.__name__}: {exc}")
            return

        handle.diff.record(signature)
        self._apply_delta(handle, success_delta(words=content.word_count, links=len(content.links)))
        logger.debug("Crawled %s (depth=%d, words=%d, %s)", url, entry.depth, content.word_count, page.change.value)

    @staticmethod
    def _redirect_rejection(
        config: CrawlJobConfig,
        url: str,
        final_url: str | None,
        robots: RobotsPolicyCache,
        pattern_filter: PatternFilter,
    ) -> str | None:
        """Why a followed redirect target may not be crawled, or None when it may."""

        target = normalize_url(final_url) if final_url else url
        if target is None:
            return "invalid_url"
        if target == url:
            return None
        reason = pattern_filter.explain(target)
        if reason is not None:
            return reason
        if config.respect_robots and not robots.is_allowed(target):
            return "robots_disallowed"
        return None

    def _record_failure(
        self,
        handle: _RunHandle,
        url: str,
        kind: ErrorKind | None,
        error: str | None,
    ) -> None:
        message = f"{url}: {error or 'unknown error'}"
        if kind is not None and kind.is_skip:
            logger.debug("Skipped %s (%s)", message, kind.value)
        else:
            logger.warning("Failed %s", message)
        self._apply_delta(handle, failure_delta(kind), error_kind=kind, error=message)

    def _apply_delta(
        self,
        handle: _RunHandle,
        delta: JobCounters,
        *,
        error_kind: ErrorKind | None = None,
        error: str | None = None,
    ) -> None:
        # Merge and persist under one lock so a concurrent save_job never double counts.
        with self._lock:
            discovered = handle.frontier.discovered_count
            delta.pages_discovered += max(0, discovered - handle.reported_discovered)
            handle.reported_discovered = max(discovered, handle.reported_discovered)

            totals = handle.stats.record_page(delta, error_kind=error_kind, error=error)
            job = handle.job
            job.counters = totals
            job.last_activity_at = utc_now_iso()
            if error and not (error_kind is not None and error_kind.is_skip):
                job.last_error = error

            try:
                self.storage.update_job_counters(handle.job_id, delta)
            except Exception as exc:
                logger.warning("Could not persist counters for job %s: %s", handle.job_id, exc)

    def _finalize(self, handle: _RunHandle, failure: BaseException | None) -> None:
        job_id = handle.job_id
        handle.frontier.close()
        handle.stats.finish()

        try:
            self._apply_delta(handle, JobCounters())
        except Exception as exc:
            logger.warning("Could not sync final counters for job %s: %s", job_id, exc)

        with self._lock:
            job = handle.job
            if failure is not None:
                target = JobStatus.FAILED
                job.last_error = f"{failure.__class__.__name__}: {failure}"
            elif handle.cancel_event.is_set():
                target = JobStatus.CANCELLED
            else:
                target = JobStatus.COMPLETED

            if job.status != target:
                if can_transition(job.status, target):
                    job.transition(target)
                else:
                    job.status = target
                    job.touch()
            job.paused_at = None
            job.completed_at = utc_now_iso()
            job.next_scheduled_run = next_run_iso(job.config.schedule)

        counters = handle.stats.counters()
        summary = handle.diff.summary()
        record = CrawlRunHistory(
            job_id=job_id,
            run_number=handle.run_number,
            status=target,
            pages_discovered=counters.pages_discovered,
            pages_crawled=counters.pages_crawled,
            pages_successful=counters.pages_successful,
            pages_failed=counters.pages_failed,
            pages_skipped=counters.pages_skipped,
            pages_changed=summary["changed"],
            pages_new=summary["new"],
            pages_unchanged=summary["unchanged"],
            pages_removed=summary["removed"] if target == JobStatus.COMPLETED else 0,
            total_words=counters.total_words,
            total_links=counters.total_links,
            started_at=handle.stats.started_at,
            completed_at=handle.stats.finished_at or utc_now_iso(),
            duration_ms=handle.stats.duration_ms(),
        )

        try:
            self.storage.save_run_history(record)
            if target == JobStatus.COMPLETED:
                self.storage.save_page_snapshot(job_id, handle.run_number, handle.diff.snapshot())
        except Exception:
            logger.exception("Could not store run history for job %s", job_id)

        with self._lock:
            try:
                self.storage.save_job(job)
            except Exception:
                logger.exception("Could not store final state of job %s", job_id)
            self._runs.pop(job_id, None)

        logger.info(
            "Finished run %d of job %s: %s (crawled=%d ok=%d failed=%d skipped=%d new=%d changed=%d removed=%d)",
            handle.run_number,
            job_id,
            target.value,
            record.pages_crawled,
            record.pages_successful,
            record.pages_failed,
            record.pages_skipped,
            record.pages_new,
            record.pages_changed,
            record.pages_removed,
        )
        logger.debug("Run stats for job %s: %s", job_id, handle.stats.to_json())


__all__ = [
    "CrawlEngine",
    "FetcherFactory",
    "RobotsFactory",
    "StartOutcome",
    "default_robots_factory",
]
