"""Tests for the breadth-first frontier."""

import threading
import time

import pytest

from crawljob.frontier import EnqueueStatus, Frontier


class TestPush:
    """Enqueue constraints."""

    def test_dedup_on_normalized_url(self):
        frontier = Frontier(max_pages=10, max_depth=3)
        assert frontier.push("https://example.com/a", depth=0).accepted
        result = frontier.push("HTTPS://EXAMPLE.com/a/#frag", depth=1)
        assert result.status == EnqueueStatus.SKIPPED_SEEN
        assert frontier.qsize() == 1

    def test_depth_limit(self):
        frontier = Frontier(max_pages=10, max_depth=1)
        assert frontier.push("https://example.com/b", depth=1).accepted
        assert frontier.push("https://example.com/c", depth=2).status == EnqueueStatus.SKIPPED_DEPTH

    def test_budget_counts_accepted_pushes(self):
        """No more than `max_pages` URLs are ever accepted."""
        frontier = Frontier(max_pages=3, max_depth=5)
        results = frontier.push_many([f"https://example.com/p{i}" for i in range(6)], depth=1)
        statuses = [result.status for result in results]
        assert statuses[:3] == [EnqueueStatus.ENQUEUED] * 3
        assert statuses[3:] == [EnqueueStatus.SKIPPED_BUDGET] * 3
        assert frontier.accepted_count == 3

    def test_discovered_includes_budget_rejections(self):
        frontier = Frontier(max_pages=2, max_depth=5)
        frontier.push_many([f"https://example.com/p{i}" for i in range(5)], depth=1)
        frontier.push("https://example.com/p0", depth=1)
        assert frontier.discovered_count == 5

    def test_invalid_url(self):
        frontier = Frontier(max_pages=2, max_depth=5)
        assert frontier.push("ftp://example.com/x", depth=0).status == EnqueueStatus.SKIPPED_INVALID_URL

    def test_closed_rejects(self):
        frontier = Frontier(max_pages=2, max_depth=5)
        frontier.close()
        assert frontier.push("https://example.com/x", depth=0).status == EnqueueStatus.SKIPPED_CLOSED


class TestPop:
    """Dequeue order and draining."""

    def test_fifo_order(self):
        frontier = Frontier(max_pages=10, max_depth=3)
        frontier.push("https://example.com/", depth=0)
        frontier.push_many(["https://example.com/a", "https://example.com/b"], depth=1)
        popped = [frontier.pop(timeout=0.1).url for _ in range(3)]
        assert popped == ["https://example.com/", "https://example.com/a", "https://example.com/b"]

    def test_empty_and_idle_returns_none_immediately(self):
        frontier = Frontier(max_pages=10, max_depth=3)
        started = time.monotonic()
        assert frontier.pop(timeout=5) is None
        assert time.monotonic() - started < 1
        assert frontier.is_drained()

    def test_in_flight_keeps_run_alive(self):
        """A waiting pop receives links pushed by an in-flight page."""
        frontier = Frontier(max_pages=10, max_depth=3)
        frontier.push("https://example.com/", depth=0)
        root = frontier.pop(timeout=0.1)
        assert not frontier.is_drained()

        def finish_root():
            time.sleep(0.05)
            frontier.push("https://example.com/child", depth=1, discovered_from=root.url)
            frontier.task_done()

        threading.Thread(target=finish_root).start()
        child = frontier.pop(timeout=2)
        assert child is not None
        assert child.discovered_from == "https://example.com/"
        frontier.task_done()
        assert frontier.is_drained()

    def test_task_done_without_pop(self):
        with pytest.raises(ValueError):
            Frontier(max_pages=1, max_depth=1).task_done()


class TestPauseAndDiscard:
    """Pause gating and cancellation support."""

    def test_paused_frontier_hands_out_nothing(self):
        frontier = Frontier(max_pages=10, max_depth=3)
        frontier.push("https://example.com/", depth=0)
        frontier.pause()
        assert frontier.pop(timeout=0.1) is None
        assert frontier.qsize() == 1

        frontier.resume()
        assert frontier.pop(timeout=0.1).url == "https://example.com/"

    def test_discard_pending(self):
        frontier = Frontier(max_pages=10, max_depth=3)
        frontier.push_many([f"https://example.com/{i}" for i in range(4)], depth=1)
        assert frontier.discard_pending() == 4
        assert frontier.qsize() == 0
        assert frontier.snapshot()["discarded"] == 4
