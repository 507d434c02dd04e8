"""Bounded-concurrency job queue.

Drains a report's urls through a WorkerClient with at most ``concurrency``
urls in flight. Successful urls are folded into the ProgressTracker and their
writes (issues, url record, report update) are handed to a thread pool.
Failed urls go back to the end of the queue until the RetryPolicy gives up.

Usage:
    queue  = JobQueue(worker, aggregator, progress, report, concurrency=4)
    report = queue.run()     # raises DispatchFailedError if anything failed
"""

import enum
import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from pa11y_dispatch.client import Pa11yError
from pa11y_dispatch.dispatch.aggregator import ResultAggregator
from pa11y_dispatch.dispatch.progress import ProgressTracker
from pa11y_dispatch.models import Report
from pa11y_dispatch.worker import WorkerClient, WorkerError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PersistentFailureError(Pa11yError):
    """Raised (and recorded) when a url keeps failing after every retry."""

    def __init__(self, url: str, attempts: int) -> None:
        super().__init__(f"Repeated failure: '{url}' failed {attempts} time(s), giving up")
        self.url = url
        self.attempts = attempts


class DispatchFailedError(Pa11yError):
    """Raised after the queue drained when at least one failure was recorded.

    ``errors`` holds every recorded failure in the order it happened; the
    first one is also the exception's ``__cause__``.
    """

    def __init__(self, errors: list[BaseException], report: Report) -> None:
        super().__init__(
            f"{len(errors)} failure(s) while dispatching report {report.id}; first: {errors[0]}"
        )
        self.errors = errors
        self.report = report


class DispatchCancelledError(Pa11yError):
    """Raised when the run was cancelled before every url was processed."""

    def __init__(self, report: Report) -> None:
        super().__init__(f"Dispatch of report {report.id} was cancelled at {report.progress:.2%}")
        self.report = report


# ---------------------------------------------------------------------------
# Tasks and retry policy
# ---------------------------------------------------------------------------

class TaskState(str, enum.Enum):
    PENDING   = "pending"
    IN_FLIGHT = "in-flight"
    SUCCEEDED = "succeeded"
    REQUEUED  = "requeued"
    FAILED    = "failed"


@dataclass
class DispatchTask:
    url: str
    attempts: int = 0
    not_before: float = 0.0
    state: TaskState = TaskState.PENDING


@dataclass(frozen=True)
class RetryPolicy:
    """How often a failing url is retried and how long to wait in between.

    ``max_attempts=None`` retries forever.
    """

    max_attempts: int | None = 5
    backoff_base: float = 1.0
    backoff_max: float = 30.0

    def exhausted(self, attempts: int) -> bool:
        return self.max_attempts is not None and attempts >= self.max_attempts

    def delay(self, attempts: int) -> float:
        if attempts <= 0 or self.backoff_base <= 0:
            return 0.0
        return min(self.backoff_base * 2 ** (attempts - 1), self.backoff_max)


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class JobQueue:
    """Dispatch every url of *report* to *worker*, ``concurrency`` at a time."""

    def __init__(
        self,
        worker: WorkerClient,
        aggregator: ResultAggregator,
        progress: ProgressTracker,
        report: Report,
        concurrency: int = 1,
        retry: RetryPolicy | None = None,
        fail_fast: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self._worker = worker
        self._aggregator = aggregator
        self._progress = progress
        self._report = report
        self._concurrency = concurrency
        self._retry = retry or RetryPolicy()
        self._fail_fast = fail_fast
        self._clock = clock

        self._cond = threading.Condition()
        self._cancelled = threading.Event()
        self._pending: deque[DispatchTask] = deque(DispatchTask(url) for url in report.urls)
        self._tasks = list(self._pending)
        self._in_flight = 0
        self._max_in_flight = 0
        self._errors: list[BaseException] = []

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[DispatchTask]:
        return list(self._tasks)

    @property
    def max_in_flight(self) -> int:
        """Highest number of urls that were in flight at the same time."""
        return self._max_in_flight

    @property
    def errors(self) -> list[BaseException]:
        with self._cond:
            return list(self._errors)

    def cancel(self) -> None:
        """Stop handing out urls. In-flight urls finish, pending ones are left alone."""
        if not self._cancelled.is_set():
            logger.warning("Cancelling dispatch of report %s", self._report.id)
        with self._cond:
            self._cancelled.set()
            self._cond.notify_all()

    def run(self) -> Report:
        """Drain the queue, wait for every write, then return the updated report.

        Raises:
            DispatchFailedError:    at least one failure was recorded
            DispatchCancelledError: cancelled without any recorded failure
        """
        with ThreadPoolExecutor(
            max_workers=max(2, self._concurrency * 2), thread_name_prefix="pa11y-write"
        ) as writes:
            threads = [
                threading.Thread(target=self._work, args=(writes,), name=f"pa11y-worker-{i}", daemon=True)
                for i in range(self._concurrency)
            ]
            for thread in threads:
                thread.start()
            try:
                for thread in threads:
                    thread.join()
            except KeyboardInterrupt:
                self.cancel()
                for thread in threads:
                    thread.join()
                raise
        # Leaving the executor block waited for every pending write.

        snapshot = self._progress.snapshot()
        self._report.progress = snapshot.ratio
        self._report.codes = list(snapshot.codes)

        errors = self.errors
        if errors:
            raise DispatchFailedError(errors, self._report) from errors[0]
        if self._cancelled.is_set() and any(t.state != TaskState.SUCCEEDED for t in self._tasks):
            raise DispatchCancelledError(self._report)
        return self._report

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    def _work(self, writes: ThreadPoolExecutor) -> None:
        while True:
            task = self._next_task()
            if task is None:
                return
            try:
                self._process(task, writes)
            except Exception as exc:
                logger.exception("Unexpected error while dispatching '%s'", task.url)
                task.state = TaskState.FAILED
                self._finish(task)
                self._record_error(exc)
                self.cancel()
                return

    def _next_task(self) -> DispatchTask | None:
        """Pop the next pending task, or None once nothing is left to do.

        Blocks while the queue is empty but other urls are still in flight,
        since a failing one will be requeued.
        """
        with self._cond:
            while True:
                if self._cancelled.is_set():
                    return None
                if self._pending:
                    task = self._pending.popleft()
                    task.state = TaskState.IN_FLIGHT
                    self._in_flight += 1
                    self._max_in_flight = max(self._max_in_flight, self._in_flight)
                    return task
                if self._in_flight == 0:
                    return None
                self._cond.wait()

    def _finish(self, task: DispatchTask, requeue: bool = False) -> None:
        with self._cond:
            self._in_flight -= 1
            if requeue:
                self._pending.append(task)
            self._cond.notify_all()

    def _process(self, task: DispatchTask, writes: ThreadPoolExecutor) -> None:
        delay = task.not_before - self._clock()
        if delay > 0 and self._cancelled.wait(delay):
            # Cancelled while backing off; the url stays unprocessed.
            task.state = TaskState.REQUEUED
            self._finish(task)
            return

        try:
            issues = self._worker.run(task.url)
        except WorkerError as exc:
            task.attempts += 1
            if self._retry.exhausted(task.attempts):
                logger.error("Failed to run a pa11y test on url: %s (%s), giving up", task.url, exc)
                task.state = TaskState.FAILED
                self._finish(task)
                self._record_error(PersistentFailureError(task.url, task.attempts))
                return
            logger.warning(
                "Failed to run a pa11y test on url: %s (attempt %d: %s) retrying...",
                task.url, task.attempts, exc,
            )
            task.not_before = self._clock() + self._retry.delay(task.attempts)
            task.state = TaskState.REQUEUED
            self._finish(task, requeue=True)
            return

        record, futures = self._aggregator.aggregate(self._report.id, task.url, issues, writes)
        snapshot = self._progress.record(record.codes)
        futures.append(writes.submit(self._progress.publish, snapshot))
        for future in futures:
            future.add_done_callback(self._on_write_done)

        logger.info("[%s] Sending data for url: %s", snapshot.percent, task.url)
        task.state = TaskState.SUCCEEDED
        self._finish(task)

    # ------------------------------------------------------------------
    # Failure bookkeeping
    # ------------------------------------------------------------------

    def _on_write_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            self._record_error(exc)

    def _record_error(self, exc: BaseException) -> None:
        logger.error("Dispatch failure recorded for report %s: %s", self._report.id, exc)
        with self._cond:
            self._errors.append(exc)
        if self._fail_fast:
            self.cancel()
