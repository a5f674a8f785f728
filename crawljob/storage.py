"""Storage interface handed to the engine, plus in-memory and filesystem backends.

Storage owns the persisted layout. The engine never builds paths itself.
"""

from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping

from .constants import JSON_INDENT
from .diff import Snapshot
from .errors import JobNotFoundError
from .state import CrawlJob
from .types import CrawlRunHistory, ExtractedPage, JobCounters, PageSignature


_SAFE_JOB_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class CrawlStorage(ABC):
    """Persistence the engine writes jobs, pages, and run history through."""

    @abstractmethod
    def save_job(self, job: CrawlJob) -> None: ...

    @abstractmethod
    def load_job(self, job_id: str) -> CrawlJob:
        """Return the stored job or raise `JobNotFoundError`."""

    @abstractmethod
    def list_jobs(self) -> list[CrawlJob]: ...

    @abstractmethod
    def delete_job(self, job_id: str) -> None:
        """Remove the job with its pages, run history and diff baseline; raise `JobNotFoundError` if unknown."""

    @abstractmethod
    def save_page(self, job_id: str, run_number: int, page: ExtractedPage) -> None: ...

    @abstractmethod
    def list_pages(self, job_id: str, run_number: int) -> list[ExtractedPage]: ...

    @abstractmethod
    def save_run_history(self, record: CrawlRunHistory) -> None: ...

    @abstractmethod
    def list_run_history(self, job_id: str) -> list[CrawlRunHistory]:
        """Return run records ordered by `run_number`."""

    @abstractmethod
    def update_job_counters(self, job_id: str, delta: JobCounters) -> None:
        """Add `delta` to the stored job's counters."""

    @abstractmethod
    def save_page_snapshot(self, job_id: str, run_number: int, snapshot: Mapping[str, PageSignature]) -> None:
        """Replace the job's diff baseline with the snapshot of `run_number`."""

    @abstractmethod
    def load_latest_snapshot(self, job_id: str) -> Snapshot:
        """Return the current diff baseline, or an empty mapping."""


class MemoryStorage(CrawlStorage):
    """Dict-backed storage; jobs are copied in and out so callers cannot alias state."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, CrawlJob] = {}
        self._pages: dict[tuple[str, int], list[ExtractedPage]] = {}
        self._history: dict[str, list[CrawlRunHistory]] = {}
        self._snapshots: dict[str, tuple[int, Snapshot]] = {}

    def save_job(self, job: CrawlJob) -> None:
        with self._lock:
            self._jobs[job.job_id] = job.copy()

    def load_job(self, job_id: str) -> CrawlJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            return job.copy()

    def list_jobs(self) -> list[CrawlJob]:
        with self._lock:
            return [job.copy() for job in self._jobs.values()]

    def delete_job(self, job_id: str) -> None:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise JobNotFoundError(job_id)
            for key in [key for key in self._pages if key[0] == job_id]:
                del self._pages[key]
            self._history.pop(job_id, None)
            self._snapshots.pop(job_id, None)

    def save_page(self, job_id: str, run_number: int, page: ExtractedPage) -> None:
        with self._lock:
            self._pages.setdefault((job_id, run_number), []).append(page)

    def list_pages(self, job_id: str, run_number: int) -> list[ExtractedPage]:
        with self._lock:
            return list(self._pages.get((job_id, run_number), []))

    def save_run_history(self, record: CrawlRunHistory) -> None:
        with self._lock:
            records = self._history.setdefault(record.job_id, [])
            records.append(record)
            records.sort(key=lambda item: item.run_number)

    def list_run_history(self, job_id: str) -> list[CrawlRunHistory]:
        with self._lock:
            return list(self._history.get(job_id, []))

    def update_job_counters(self, job_id: str, delta: JobCounters) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            job.counters.merge(delta)
            job.touch()

    def save_page_snapshot(self, job_id: str, run_number: int, snapshot: Mapping[str, PageSignature]) -> None:
        with self._lock:
            self._snapshots[job_id] = (run_number, dict(snapshot))

    def load_latest_snapshot(self, job_id: str) -> Snapshot:
        with self._lock:
            entry = self._snapshots.get(job_id)
            return dict(entry[1]) if entry else {}


class FileStorage(CrawlStorage):
    """Persist jobs and run output under a single `root_dir`.

    Layout::

        jobs/<job_id>/job.json              atomic JSON
        jobs/<job_id>/history.jsonl         one CrawlRunHistory per line
        jobs/<job_id>/snapshot.json         diff baseline (latest completed run)
        jobs/<job_id>/runs/<n>/pages.jsonl  ExtractedPage rows of run n
        logs/                               CLI log files
    """

    def __init__(self, root_dir: str | Path) -> None:
        self.root_dir = Path(root_dir)
        self.jobs_dir = self.root_dir / "jobs"
        self.logs_dir = self.root_dir / "logs"

        self._jsonl_lock = threading.Lock()
        self._job_lock = threading.Lock()

        self.jobs_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def job_dir(self, job_id: str) -> Path:
        if not _SAFE_JOB_ID.match(job_id):
            raise ValueError(f"Unsafe job id for filesystem storage: {job_id!r}")
        return self.jobs_dir / job_id

    def _job_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "job.json"

    def _history_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "history.jsonl"

    def _snapshot_path(self, job_id: str) -> Path:
        return self.job_dir(job_id) / "snapshot.json"

    def pages_path(self, job_id: str, run_number: int) -> Path:
        return self.job_dir(job_id) / "runs" / str(run_number) / "pages.jsonl"

    def save_job(self, job: CrawlJob) -> None:
        path = self._job_path(job.job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._job_lock:
            self._atomic_write_json(path, job.to_json())

    def load_job(self, job_id: str) -> CrawlJob:
        path = self._job_path(job_id)
        with self._job_lock:
            if not path.exists():
                raise JobNotFoundError(job_id)
            payload = json.loads(path.read_text(encoding="utf-8"))
        return CrawlJob.from_json(payload)

    def list_jobs(self) -> list[CrawlJob]:
        jobs: list[CrawlJob] = []
        for job_path in sorted(self.jobs_dir.glob("*/job.json")):
            jobs.append(self.load_job(job_path.parent.name))
        return jobs

    def delete_job(self, job_id: str) -> None:
        job_dir = self.job_dir(job_id)
        with self._job_lock, self._jsonl_lock:
            if not (job_dir / "job.json").exists():
                raise JobNotFoundError(job_id)
            shutil.rmtree(job_dir)

    def save_page(self, job_id: str, run_number: int, page: ExtractedPage) -> None:
        path = self.pages_path(job_id, run_number)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._append_jsonl(path, page.to_json())

    def list_pages(self, job_id: str, run_number: int) -> list[ExtractedPage]:
        return [ExtractedPage.from_json(row) for row in self._read_jsonl(self.pages_path(job_id, run_number))]

    def save_run_history(self, record: CrawlRunHistory) -> None:
        path = self._history_path(record.job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        self._append_jsonl(path, record.to_json())

    def list_run_history(self, job_id: str) -> list[CrawlRunHistory]:
        records = [CrawlRunHistory.from_json(row) for row in self._read_jsonl(self._history_path(job_id))]
        return sorted(records, key=lambda item: item.run_number)

    def update_job_counters(self, job_id: str, delta: JobCounters) -> None:
        path = self._job_path(job_id)
        with self._job_lock:
            if not path.exists():
                raise JobNotFoundError(job_id)
            job = CrawlJob.from_json(json.loads(path.read_text(encoding="utf-8")))
            job.counters.merge(delta)
            job.touch()
            self._atomic_write_json(path, job.to_json())

    def save_page_snapshot(self, job_id: str, run_number: int, snapshot: Mapping[str, PageSignature]) -> None:
        path = self._snapshot_path(job_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_number": run_number,
            "pages": {url: signature.to_json() for url, signature in snapshot.items()},
        }
        self._atomic_write_json(path, payload)

    def load_latest_snapshot(self, job_id: str) -> Snapshot:
        path = self._snapshot_path(job_id)
        if not path.exists():
            return {}
        payload = json.loads(path.read_text(encoding="utf-8"))
        return {url: PageSignature.from_json(row) for url, row in (payload.get("pages") or {}).items()}

    def _append_jsonl(self, path: Path, payload: Mapping[str, Any]) -> None:
        line = json.dumps(payload, ensure_ascii=False, sort_keys=True)
        with self._jsonl_lock:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def _read_jsonl(self, path: Path) -> list[dict[str, Any]]:
        if not path.exists():
            return []
        rows: list[dict[str, Any]] = []
        with self._jsonl_lock:
            with path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        rows.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
        return rows

    @staticmethod
    def _atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
        # mkstemp creates the file 0600; job.json can hold auth credentials.
        content = json.dumps(payload, ensure_ascii=False, indent=JSON_INDENT, sort_keys=True) + "\n"
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(path.parent),
            prefix=path.name + ".",
            suffix=".tmp",
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path)
        except Exception:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise


__all__ = [
    "CrawlStorage",
    "FileStorage",
    "MemoryStorage",
    "Snapshot",
]
