"""Tests for pa11y_dispatch/dispatch/queue.py"""

import threading
import time

import pytest

from pa11y_dispatch.client import PersistenceError
from pa11y_dispatch.dispatch.aggregator import ResultAggregator
from pa11y_dispatch.dispatch.progress import ProgressTracker
from pa11y_dispatch.dispatch.queue import (
    DispatchCancelledError,
    DispatchFailedError,
    JobQueue,
    PersistentFailureError,
    RetryPolicy,
    TaskState,
)
from pa11y_dispatch.models import Issue, Report
from pa11y_dispatch.worker import WorkerError

NO_BACKOFF = RetryPolicy(max_attempts=3, backoff_base=0)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeWorker:
    """Returns one issue per url (code = url) and tracks concurrency."""

    def __init__(self, failing=(), fail_times=None, delay=0.01):
        self.failing = set(failing)
        self.fail_times = dict(fail_times or {})
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def run(self, url):
        with self._lock:
            self.calls.append(url)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            with self._lock:
                if url in self.failing:
                    raise WorkerError(url, "HTTP 404", status_code=404)
                if self.fail_times.get(url, 0) > 0:
                    self.fail_times[url] -= 1
                    raise WorkerError(url, "HTTP 503", status_code=503)
            return [Issue(code=f"code-{url}", type_code=1), Issue(code="shared", type_code=3)]
        finally:
            with self._lock:
                self.in_flight -= 1


class FakeApi:
    def __init__(self, fail_urls_for=()):
        self.fail_urls_for = set(fail_urls_for)
        self.issues = []
        self.urls = []
        self.updates = []
        self._lock = threading.Lock()

    def create_issue(self, payload):
        with self._lock:
            self.issues.append(payload)
        return {}

    def create_url(self, payload):
        if payload["url"] in self.fail_urls_for:
            raise PersistenceError("POST /api/urls failed with 500", status_code=500)
        with self._lock:
            self.urls.append(payload)
        return {}

    def update_report(self, report_id, changes):
        with self._lock:
            self.updates.append(changes)
        return {}


def _queue(urls, worker, api=None, **kwargs) -> tuple[JobQueue, FakeApi, Report]:
    api = api or FakeApi()
    report = Report(id="r1", root_url=urls[0], standard="WCAG2AA", urls=list(urls))
    queue = JobQueue(
        worker=worker,
        aggregator=ResultAggregator(api),
        progress=ProgressTracker(api, report),
        report=report,
        **kwargs,
    )
    return queue, api, report


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

def test_all_urls_dispatched_and_persisted():
    urls = [f"u{i}" for i in range(6)]
    queue, api, _ = _queue(urls, FakeWorker(), concurrency=3, retry=NO_BACKOFF)

    report = queue.run()

    assert report.progress == 1.0
    assert sorted(report.codes) == sorted([f"code-{u}" for u in urls] + ["shared"])
    assert sorted(u["url"] for u in api.urls) == urls
    assert len(api.issues) == 12
    assert all(t.state == TaskState.SUCCEEDED for t in queue.tasks)


def test_concurrency_limit_is_respected():
    worker = FakeWorker(delay=0.02)
    queue, _, _ = _queue([f"u{i}" for i in range(10)], worker, concurrency=3, retry=NO_BACKOFF)
    queue.run()

    assert 1 <= worker.max_in_flight <= 3
    assert queue.max_in_flight <= 3


def test_default_concurrency_is_one():
    worker = FakeWorker()
    queue, _, _ = _queue(["a", "b", "c"], worker)
    queue.run()
    assert worker.max_in_flight == 1
    assert worker.calls == ["a", "b", "c"]


def test_published_progress_is_monotonic_and_complete():
    queue, api, _ = _queue([f"u{i}" for i in range(8)], FakeWorker(), concurrency=4, retry=NO_BACKOFF)
    queue.run()

    progress = [u["progress"] for u in api.updates]
    assert progress == sorted(progress)
    assert progress[-1] == 1.0


def test_invalid_concurrency():
    with pytest.raises(ValueError):
        _queue(["a"], FakeWorker(), concurrency=0)


# ---------------------------------------------------------------------------
# Worker failures and retries
# ---------------------------------------------------------------------------

def test_transient_failure_is_requeued_then_succeeds():
    worker = FakeWorker(fail_times={"u1": 2})
    queue, _, report = _queue(["u0", "u1", "u2"], worker, concurrency=1, retry=NO_BACKOFF)

    queue.run()

    assert report.progress == 1.0
    assert worker.calls.count("u1") == 3
    # requeued at the back: u2 is tried before the first retry of u1
    assert worker.calls.index("u2") < worker.calls.index("u1", 2)


def test_repeated_failure_terminates_with_persistent_failure():
    urls = [f"u{i}" for i in range(1, 6)]
    worker = FakeWorker(failing={"u3"})
    queue, api, report = _queue(urls, worker, concurrency=2, retry=NO_BACKOFF)

    with pytest.raises(DispatchFailedError) as info:
        queue.run()

    errors = info.value.errors
    assert len(errors) == 1
    assert isinstance(errors[0], PersistentFailureError)
    assert errors[0].url == "u3"
    assert errors[0].attempts == 3
    assert "Repeated failure" in str(errors[0])
    assert info.value.__cause__ is errors[0]

    assert worker.calls.count("u3") == 3
    assert sorted(set(worker.calls)) == urls
    assert report.progress == pytest.approx(0.8)
    assert sorted(u["url"] for u in api.urls) == ["u1", "u2", "u4", "u5"]
    states = {t.url: t.state for t in queue.tasks}
    assert states["u3"] == TaskState.FAILED


def test_unbounded_retry_keeps_trying_until_success():
    worker = FakeWorker(fail_times={"a": 7})
    queue, _, report = _queue(["a"], worker, retry=RetryPolicy(max_attempts=None, backoff_base=0))
    queue.run()
    assert worker.calls.count("a") == 8
    assert report.progress == 1.0


def test_backoff_delay_is_applied():
    fake_now = [100.0]
    worker = FakeWorker(fail_times={"a": 1}, delay=0)
    queue, _, _ = _queue(
        ["a"], worker,
        retry=RetryPolicy(max_attempts=2, backoff_base=0.05),
        clock=lambda: fake_now[0],
    )
    started = time.monotonic()
    queue.run()
    assert time.monotonic() - started >= 0.04


def test_retry_policy_delay():
    policy = RetryPolicy(max_attempts=5, backoff_base=1.0, backoff_max=5.0)
    assert [policy.delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    assert policy.exhausted(5)
    assert not policy.exhausted(4)
    assert not RetryPolicy(max_attempts=None).exhausted(1000)


# ---------------------------------------------------------------------------
# Persistence failures
# ---------------------------------------------------------------------------

def test_persistence_failure_is_reported_after_draining():
    api = FakeApi(fail_urls_for={"u1"})
    worker = FakeWorker()
    queue, api, report = _queue(["u0", "u1", "u2"], worker, api=api, concurrency=2, retry=NO_BACKOFF)

    with pytest.raises(DispatchFailedError) as info:
        queue.run()

    assert isinstance(info.value.errors[0], PersistenceError)
    # every url was still dispatched, other writes left in place
    assert sorted(worker.calls) == ["u0", "u1", "u2"]
    assert sorted(u["url"] for u in api.urls) == ["u0", "u2"]
    assert report.progress == 1.0


def test_fail_fast_stops_handing_out_urls():
    api = FakeApi(fail_urls_for={"u0"})
    worker = FakeWorker(delay=0.02)
    queue, _, _ = _queue([f"u{i}" for i in range(20)], worker, api=api,
                         concurrency=1, retry=NO_BACKOFF, fail_fast=True)

    with pytest.raises(DispatchFailedError):
        queue.run()

    assert len(worker.calls) < 20


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

def test_cancel_lets_in_flight_finish_and_drains_nothing_more():
    worker = FakeWorker(delay=0.05)
    queue, api, report = _queue([f"u{i}" for i in range(10)], worker, concurrency=2, retry=NO_BACKOFF)

    timer = threading.Timer(0.07, queue.cancel)
    timer.start()
    with pytest.raises(DispatchCancelledError):
        queue.run()
    timer.join()

    assert len(worker.calls) < 10
    # whatever reached the worker was completed and persisted
    assert len(api.urls) == len(worker.calls)
    assert 0 < report.progress < 1.0
    assert any(t.state == TaskState.PENDING for t in queue.tasks)


def test_unexpected_error_cancels_and_is_reported():
    class BrokenWorker(FakeWorker):
        def run(self, url):
            raise RuntimeError("bug")

    queue, _, _ = _queue(["a", "b"], BrokenWorker(), concurrency=1)
    with pytest.raises(DispatchFailedError) as info:
        queue.run()
    assert isinstance(info.value.errors[0], RuntimeError)
