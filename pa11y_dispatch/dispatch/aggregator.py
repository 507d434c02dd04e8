"""Per-url result aggregation.

Functions:
    build_url_record(report_id, url, issues)  -> UrlRecord

ResultAggregator persists the issues of one url and its UrlRecord.
"""

import logging
from concurrent.futures import Executor, Future
from typing import Sequence

from pa11y_dispatch.client import ApiClient, PersistenceError, Pa11yError
from pa11y_dispatch.models import TYPE_ERROR, TYPE_NOTICE, TYPE_WARNING, Issue, UrlRecord

logger = logging.getLogger(__name__)

# typeCode -> UrlRecord counter. Unknown type codes are not counted.
_COUNTERS = {
    TYPE_ERROR:   "n_errors",
    TYPE_WARNING: "n_warnings",
    TYPE_NOTICE:  "n_notices",
}


def build_url_record(report_id: str, url: str, issues: Sequence[Issue]) -> UrlRecord:
    """Scan *issues* once: distinct codes in first-seen order plus per-severity counts."""
    codes: list[str] = []
    counts = {name: 0 for name in _COUNTERS.values()}

    for issue in issues:
        if issue.code not in codes:
            codes.append(issue.code)
        counter = _COUNTERS.get(issue.type_code)
        if counter:
            counts[counter] += 1

    return UrlRecord(report_id=report_id, url=url, codes=tuple(codes), **counts)


class ResultAggregator:
    """Write a url's issues and metadata through the reporting API."""

    def __init__(self, client: ApiClient) -> None:
        self._client = client

    def aggregate(
        self,
        report_id: str,
        url: str,
        issues: Sequence[Issue],
        executor: Executor,
    ) -> tuple[UrlRecord, list[Future]]:
        """Build the UrlRecord and submit both writes to *executor*.

        Returns the record right away together with the futures of the two
        writes; failures surface through those futures.
        """
        record = build_url_record(report_id, url, issues)
        futures = [
            executor.submit(self.persist_issues, report_id, url, issues),
            executor.submit(self.persist_url_record, record),
        ]
        return record, futures

    def persist_issues(self, report_id: str, url: str, issues: Sequence[Issue]) -> int:
        """Submit every issue independently; return how many were written.

        A failing issue does not prevent the remaining ones from being sent.

        Raises:
            PersistenceError: once all issues were attempted, if any failed
        """
        failures: list[Pa11yError] = []
        for issue in issues:
            try:
                self._client.create_issue(issue.to_payload(report_id, url))
            except Pa11yError as exc:
                logger.debug("Issue %s on %s not persisted: %s", issue.code, url, exc)
                failures.append(exc)

        if failures:
            raise PersistenceError(
                f"{len(failures)} of {len(issues)} issue(s) for '{url}' could not be persisted; "
                f"first error: {failures[0]}"
            ) from failures[0]
        return len(issues)

    def persist_url_record(self, record: UrlRecord) -> dict:
        return self._client.create_url(record.to_payload())
