"""Job lifecycle state machine and the persistent `CrawlJob` entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .config import CrawlJobConfig
from .errors import InvalidTransitionError
from .types import JSONDict, JobCounters, JobStatus, utc_now_iso


STARTABLE = frozenset({JobStatus.IDLE, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
PAUSABLE = frozenset({JobStatus.RUNNING, JobStatus.QUEUED})
RESUMABLE = frozenset({JobStatus.PAUSED})
CANCELLABLE = frozenset({JobStatus.RUNNING, JobStatus.QUEUED, JobStatus.PAUSED})
ACTIVE = frozenset({JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.PAUSED})
TERMINAL = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.IDLE: frozenset({JobStatus.QUEUED}),
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.PAUSED, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset(
        {JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset({JobStatus.QUEUED}),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED}),
    JobStatus.CANCELLED: frozenset({JobStatus.QUEUED}),
}


def can_start_job(status: JobStatus) -> bool:
    return status in STARTABLE


def can_pause(status: JobStatus) -> bool:
    return status in PAUSABLE


def can_resume(status: JobStatus) -> bool:
    return status in RESUMABLE


def can_cancel(status: JobStatus) -> bool:
    return status in CANCELLABLE


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def require_transition(current: JobStatus, target: JobStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


@dataclass(slots=True)
class CrawlJob:
    """A configured crawl, long-lived across runs.

    Mutated only by the engine's run for this job; callers get copies.
    """

    job_id: str
    config: CrawlJobConfig
    status: JobStatus = JobStatus.IDLE
    counters: JobCounters = field(default_factory=JobCounters)
    run_count: int = 0
    started_at: str | None = None
    completed_at: str | None = None
    paused_at: str | None = None
    last_activity_at: str | None = None
    last_error: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    next_scheduled_run: str | None = None

    def transition(self, target: JobStatus) -> None:
        """Move to `target`, raising `InvalidTransitionError` if not allowed."""

        require_transition(self.status, target)
        self.status = target
        self.touch()

    def touch(self) -> None:
        self.updated_at = utc_now_iso()

    def copy(self) -> "CrawlJob":
        return CrawlJob(
            job_id=self.job_id,
            config=self.config,
            status=self.status,
            counters=self.counters.copy(),
            run_count=self.run_count,
            started_at=self.started_at,
            completed_at=self.completed_at,
            paused_at=self.paused_at,
            last_activity_at=self.last_activity_at,
            last_error=self.last_error,
            created_at=self.created_at,
            updated_at=self.updated_at,
            next_scheduled_run=self.next_scheduled_run,
        )

    def to_json(self, *, include_secrets: bool = True) -> JSONDict:
        return {
            "job_id": self.job_id,
            "config": self.config.to_dict(include_secrets=include_secrets),
            "status": self.status.value,
            "counters": self.counters.to_json(),
            "run_count": self.run_count,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "paused_at": self.paused_at,
            "last_activity_at": self.last_activity_at,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "next_scheduled_run": self.next_scheduled_run,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> "CrawlJob":
        return cls(
            job_id=str(payload["job_id"]),
            config=CrawlJobConfig.from_dict(payload["config"]),
            status=JobStatus(payload.get("status", JobStatus.IDLE.value)),
            counters=JobCounters.from_json(payload.get("counters")),
            run_count=int(payload.get("run_count", 0)),
            started_at=payload.get("started_at"),
            completed_at=payload.get("completed_at"),
            paused_at=payload.get("paused_at"),
            last_activity_at=payload.get("last_activity_at"),
            last_error=payload.get("last_error"),
            created_at=str(payload.get("created_at") or utc_now_iso()),
            updated_at=str(payload.get("updated_at") or utc_now_iso()),
            next_scheduled_run=payload.get("next_scheduled_run"),
        )


__all__ = [
    "ACTIVE",
    "CANCELLABLE",
    "PAUSABLE",
    "RESUMABLE",
    "STARTABLE",
    "TERMINAL",
    "TRANSITIONS",
    "CrawlJob",
    "can_cancel",
    "can_pause",
    "can_resume",
    "can_start_job",
    "can_transition",
    "require_transition",
]
