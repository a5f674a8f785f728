"""Change detection between a run and the previous completed run of a job."""

from __future__ import annotations

import re
import threading
from collections import Counter
from hashlib import sha256
from typing import Mapping

from .types import ChangeKind, PageSignature


Snapshot = dict[str, PageSignature]


def content_hash(markdown: str) -> str:
    """sha256 of the lower-cased, whitespace-collapsed Markdown."""

    normalized = re.sub(r"\s+", " ", markdown.lower()).strip()
    return sha256(normalized.encode("utf-8")).hexdigest()


def content_signature(url: str, markdown: str, word_count: int | None = None) -> PageSignature:
    if word_count is None:
        word_count = len(markdown.split())
    return PageSignature(url=url, content_hash=content_hash(markdown), word_count=word_count)


def classify(signature: PageSignature, previous: Mapping[str, PageSignature] | None) -> ChangeKind:
    old = (previous or {}).get(signature.url)
    if old is None:
        return ChangeKind.NEW
    if old.content_hash != signature.content_hash or old.word_count != signature.word_count:
        return ChangeKind.CHANGED
    return ChangeKind.UNCHANGED


class RunDiff:
    """Accumulates per-page classifications for one run.

    Workers call `record` concurrently; the baseline is read-only for the run.
    """

    def __init__(self, previous: Mapping[str, PageSignature] | None = None) -> None:
        self.previous: Snapshot = dict(previous or {})
        self._lock = threading.Lock()
        self._current: Snapshot = {}
        self._kinds: dict[str, ChangeKind] = {}

    def record(self, signature: PageSignature) -> ChangeKind:
        kind = classify(signature, self.previous)
        with self._lock:
            self._current[signature.url] = signature
            self._kinds[signature.url] = kind
        return kind

    def snapshot(self) -> Snapshot:
        with self._lock:
            return dict(self._current)

    def removed(self) -> list[str]:
        """Previous-run URLs that were not fetched successfully this run."""

        with self._lock:
            return sorted(url for url in self.previous if url not in self._current)

    def summary(self) -> dict[str, int]:
        with self._lock:
            counts = Counter(self._kinds.values())
            removed = sum(1 for url in self.previous if url not in self._current)
        return {
            ChangeKind.NEW.value: counts.get(ChangeKind.NEW, 0),
            ChangeKind.CHANGED.value: counts.get(ChangeKind.CHANGED, 0),
            ChangeKind.UNCHANGED.value: counts.get(ChangeKind.UNCHANGED, 0),
            ChangeKind.REMOVED.value: removed,
        }


__all__ = [
    "RunDiff",
    "Snapshot",
    "classify",
    "content_hash",
    "content_signature",
]
