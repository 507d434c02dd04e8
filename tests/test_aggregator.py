"""Tests for pa11y_dispatch/dispatch/aggregator.py"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from pa11y_dispatch.client import ApiClient, PersistenceError
from pa11y_dispatch.dispatch.aggregator import ResultAggregator, build_url_record
from pa11y_dispatch.models import Issue, UrlRecord

BASE = "https://api.example.com"
URL  = "https://example.com/page"


def _issue(code: str, type_code) -> Issue:
    return Issue(code=code, context="ctx", message="msg", selector="body", type="t", type_code=type_code)


# ---------------------------------------------------------------------------
# build_url_record
# ---------------------------------------------------------------------------

def test_record_counts_by_type_code():
    issues = [_issue("a", 1), _issue("b", 1), _issue("a", 2), _issue("c", 3), _issue("b", 3), _issue("d", 3)]
    record = build_url_record("r1", URL, issues)

    assert record.n_errors   == 2
    assert record.n_warnings == 1
    assert record.n_notices  == 3
    assert record.codes == ("a", "b", "c", "d")


def test_record_ignores_unknown_type_codes():
    record = build_url_record("r1", URL, [_issue("a", 4), _issue("b", None), _issue("c", 1)])
    assert (record.n_errors, record.n_warnings, record.n_notices) == (1, 0, 0)
    # codes are still collected
    assert record.codes == ("a", "b", "c")


def test_record_empty():
    assert build_url_record("r1", URL, []) == UrlRecord(report_id="r1", url=URL)


def test_record_payload_is_camel_case():
    record = build_url_record("r1", URL, [_issue("a", 1)])
    assert record.to_payload() == {
        "reportId": "r1", "url": URL, "codes": ["a"],
        "nErrors": 1, "nWarnings": 0, "nNotices": 0,
    }


# ---------------------------------------------------------------------------
# ResultAggregator
# ---------------------------------------------------------------------------

@pytest.fixture
def aggregator() -> ResultAggregator:
    return ResultAggregator(ApiClient(BASE, "tok"))


def test_persist_issues_posts_each_issue(aggregator, requests_mock):
    adapter = requests_mock.post(f"{BASE}/api/issues", json={})
    count = aggregator.persist_issues("r1", URL, [_issue("a", 1), _issue("b", 2)])

    assert count == 2
    assert adapter.call_count == 2
    body = adapter.request_history[1].json()
    assert body["code"] == "b"
    assert body["typeCode"] == 2
    assert body["reportId"] == "r1"
    assert body["url"] == URL


def test_persist_issues_keeps_going_after_a_failure(aggregator, requests_mock):
    adapter = requests_mock.post(
        f"{BASE}/api/issues",
        [{"status_code": 500}, {"json": {}}, {"json": {}}],
    )
    with pytest.raises(PersistenceError, match="1 of 3") as info:
        aggregator.persist_issues("r1", URL, [_issue("a", 1), _issue("b", 1), _issue("c", 1)])

    assert adapter.call_count == 3
    assert isinstance(info.value.__cause__, PersistenceError)


def test_persist_url_record(aggregator, requests_mock):
    adapter = requests_mock.post(f"{BASE}/api/urls", json={"_id": "u1"})
    record = build_url_record("r1", URL, [_issue("a", 3)])
    assert aggregator.persist_url_record(record) == {"_id": "u1"}
    assert adapter.last_request.json()["nNotices"] == 1


def test_aggregate_returns_record_and_write_futures(aggregator, requests_mock):
    issues_adapter = requests_mock.post(f"{BASE}/api/issues", json={})
    urls_adapter = requests_mock.post(f"{BASE}/api/urls", status_code=500)

    with ThreadPoolExecutor(max_workers=2) as executor:
        record, futures = aggregator.aggregate("r1", URL, [_issue("a", 1)], executor)
        results = [f.exception() for f in futures]

    assert record.codes == ("a",)
    assert results[0] is None
    assert isinstance(results[1], PersistenceError)
    assert issues_adapter.call_count == 1
    assert urls_adapter.call_count == 1
