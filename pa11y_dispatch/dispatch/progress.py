"""Running progress of one report: completed-url count and accumulated codes."""

import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from pa11y_dispatch.client import ApiClient
from pa11y_dispatch.models import Report

logger = logging.getLogger(__name__)


def merge_codes(codes: list[str], new_codes: Iterable[str]) -> list[str]:
    """Append every code of *new_codes* not already in *codes* (in place) and return it."""
    for code in new_codes:
        if code not in codes:
            codes.append(code)
    return codes


@dataclass(frozen=True)
class ProgressSnapshot:
    completed: int
    total: int
    codes: tuple[str, ...]

    @property
    def ratio(self) -> float:
        if self.total == 0:
            return 1.0
        return self.completed / self.total

    @property
    def percent(self) -> str:
        return f"{self.ratio * 100:.2f}%"

    def to_payload(self) -> dict:
        return {"progress": self.ratio, "codes": list(self.codes)}


class ProgressTracker:
    """Fold url completions into the report's progress and code set.

    ``record`` may be called from several worker threads at once: each call
    is applied as one atomic step. ``publish`` calls are serialized and never
    send a snapshot older than the last one sent.
    """

    def __init__(self, client: ApiClient, report: Report) -> None:
        self._client = client
        self._report_id = report.id
        self._total = len(report.urls)
        self._completed = 0
        self._codes: list[str] = list(report.codes)
        self._lock = threading.Lock()
        self._publish_lock = threading.Lock()
        self._published = -1

    def record(self, codes: Iterable[str]) -> ProgressSnapshot:
        """Count one completed url and merge its codes."""
        with self._lock:
            self._completed += 1
            merge_codes(self._codes, codes)
            return ProgressSnapshot(self._completed, self._total, tuple(self._codes))

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(self._completed, self._total, tuple(self._codes))

    def publish(self, snapshot: ProgressSnapshot) -> bool:
        """``PUT`` *snapshot* to the report. Returns False when it was already superseded."""
        with self._publish_lock:
            if snapshot.completed <= self._published:
                logger.debug("Skipping stale progress %s for report %s", snapshot.percent, self._report_id)
                return False
            self._client.update_report(self._report_id, snapshot.to_payload())
            self._published = snapshot.completed
            return True
