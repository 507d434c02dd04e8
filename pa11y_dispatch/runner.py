"""Dispatch stages: sitemap -> report creation -> queue drain.

Functions:
    dispatch_sitemap(config, sitemap_url)        -> Report
    run_on_list(config, urls, root_url=None)     -> Report
    create_report(client, root_url, standard, urls) -> Report
    drain(config, client, report)                -> Report
"""

import logging
from typing import Callable, Sequence

from pa11y_dispatch.client import ApiClient, Pa11yError, PersistenceError
from pa11y_dispatch.config import Config
from pa11y_dispatch.dispatch.aggregator import ResultAggregator
from pa11y_dispatch.dispatch.progress import ProgressTracker
from pa11y_dispatch.dispatch.queue import JobQueue
from pa11y_dispatch.models import Report
from pa11y_dispatch.sitemap import fetch_sitemap_urls
from pa11y_dispatch.worker import WorkerClient

logger = logging.getLogger(__name__)

ReportCallback = Callable[[Report], None]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def dispatch_sitemap(
    config: Config,
    sitemap_url: str,
    on_report_created: ReportCallback | None = None,
) -> Report:
    """Audit every page listed in the sitemap at *sitemap_url*.

    Nothing is created on the API if the sitemap cannot be fetched or parsed.
    """
    urls = fetch_sitemap_urls(sitemap_url, timeout=config.timeout)
    return run_on_list(config, urls, root_url=sitemap_url, on_report_created=on_report_created)


def run_on_list(
    config: Config,
    urls: Sequence[str],
    root_url: str | None = None,
    on_report_created: ReportCallback | None = None,
) -> Report:
    """Create a report for *urls* and dispatch them all.

    *root_url* defaults to the first url of the list.
    """
    urls = [u.strip() for u in urls if u and u.strip()]
    if not urls:
        raise Pa11yError("No urls to dispatch")

    client = ApiClient(config.api_url, config.token, timeout=config.timeout)
    report = create_report(client, root_url or urls[0], config.standard, urls)
    if on_report_created is not None:
        on_report_created(report)
    return drain(config, client, report)


def create_report(client: ApiClient, root_url: str, standard: str, urls: Sequence[str]) -> Report:
    data = client.create_report({"rootUrl": root_url, "standard": standard, "urls": list(urls)})
    if not isinstance(data, dict) or not data.get("_id"):
        raise PersistenceError(f"Report creation for {root_url} returned no _id: {str(data)[:200]}")
    report = Report.from_api(data)
    # The API may echo a trimmed body; the urls we were asked to audit stay authoritative.
    if not report.urls:
        report.urls = list(urls)
    logger.info("Report %s created for %s (%d url(s))", report.id, root_url, len(report.urls))
    return report


def drain(config: Config, client: ApiClient, report: Report) -> Report:
    """Run the JobQueue for *report* and return it with its final progress and codes."""
    queue = JobQueue(
        worker=WorkerClient(config.worker_url, config.token, timeout=config.worker_timeout),
        aggregator=ResultAggregator(client),
        progress=ProgressTracker(client, report),
        report=report,
        concurrency=config.concurrency,
        retry=config.retry,
        fail_fast=config.fail_fast,
    )
    report = queue.run()
    logger.info("Report %s complete: %.2f%%, %d distinct code(s)",
                report.id, report.progress * 100, len(report.codes))
    return report
