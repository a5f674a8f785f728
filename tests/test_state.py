"""Tests for the job state machine and the CrawlJob record."""

import pytest

from crawljob.errors import InvalidTransitionError
from crawljob.state import (
    CrawlJob,
    can_cancel,
    can_pause,
    can_resume,
    can_start_job,
    can_transition,
)
from crawljob.types import JobCounters, JobStatus


class TestPredicates:
    """Which signals each state accepts."""

    @pytest.mark.parametrize(
        "status, expected",
        [
            (JobStatus.IDLE, True),
            (JobStatus.QUEUED, False),
            (JobStatus.RUNNING, False),
            (JobStatus.PAUSED, False),
            (JobStatus.COMPLETED, True),
            (JobStatus.FAILED, True),
            (JobStatus.CANCELLED, True),
        ],
    )
    def test_can_start_job(self, status, expected):
        assert can_start_job(status) is expected

    def test_pause_resume_cancel(self):
        assert can_pause(JobStatus.RUNNING) and can_pause(JobStatus.QUEUED)
        assert not can_pause(JobStatus.PAUSED)
        assert can_resume(JobStatus.PAUSED)
        assert not can_resume(JobStatus.RUNNING)
        assert can_cancel(JobStatus.PAUSED)
        assert not can_cancel(JobStatus.COMPLETED)

    def test_transitions(self):
        assert can_transition(JobStatus.IDLE, JobStatus.QUEUED)
        assert can_transition(JobStatus.RUNNING, JobStatus.COMPLETED)
        assert not can_transition(JobStatus.IDLE, JobStatus.RUNNING)
        assert not can_transition(JobStatus.COMPLETED, JobStatus.RUNNING)


class TestCrawlJob:
    """The persistent job entity."""

    def test_transition_enforced(self, make_config):
        job = CrawlJob(job_id="job-1", config=make_config())
        job.transition(JobStatus.QUEUED)
        assert job.status == JobStatus.QUEUED
        with pytest.raises(InvalidTransitionError):
            job.transition(JobStatus.IDLE)

    def test_json_round_trip(self, make_config):
        job = CrawlJob(
            job_id="job-1",
            config=make_config(include_patterns=["/guide/"], max_pages=7),
            status=JobStatus.COMPLETED,
            counters=JobCounters(pages_crawled=3, pages_successful=2, pages_failed=1),
            run_count=2,
            last_error="https://docs.example.com/x: HTTP 500",
        )
        restored = CrawlJob.from_json(job.to_json())
        assert restored.config == job.config
        assert restored.status == JobStatus.COMPLETED
        assert restored.counters == job.counters
        assert restored.run_count == 2
        assert restored.last_error == job.last_error

    def test_copy_is_independent(self, make_config):
        job = CrawlJob(job_id="job-1", config=make_config())
        clone = job.copy()
        clone.counters.pages_crawled = 5
        assert job.counters.pages_crawled == 0
