"""Client for the pa11y worker endpoint.

Usage:
    worker = WorkerClient("http://worker.seoa11y.com", token="xxx")
    issues = worker.run("https://example.com/about")   # -> list[Issue]
"""

import requests

from pa11y_dispatch.client import FetchError, Pa11yError, bearer_session, send
from pa11y_dispatch.models import Issue


class WorkerError(Pa11yError):
    """Raised when the worker could not audit a url (transport or non-2xx)."""

    def __init__(self, url: str, message: str, status_code: int | None = None) -> None:
        super().__init__(f"Worker failed on '{url}': {message}")
        self.url = url
        self.status_code = status_code


class WorkerClient:
    """Send one url at a time to a worker and return the issues it found."""

    def __init__(
        self,
        worker_url: str,
        token: str,
        timeout: float = 120,
        session: requests.Session | None = None,
    ) -> None:
        self.worker_url = worker_url
        self._timeout = timeout
        self._session = session or bearer_session(token)

    def run(self, url: str) -> list[Issue]:
        """POST ``{"url": url}`` to the worker.

        Raises:
            WorkerError: transport failure, non-2xx status, or a body that is
                         not a JSON array of issues
        """
        try:
            response = send(self._session, "POST", self.worker_url, self._timeout, json={"url": url})
        except FetchError as exc:
            raise WorkerError(url, str(exc)) from exc

        if not response.ok:
            raise WorkerError(
                url,
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json() if response.content else None
        except ValueError as exc:
            raise WorkerError(url, "response is not valid JSON", response.status_code) from exc

        if body is None:
            return []
        if not isinstance(body, list):
            raise WorkerError(
                url, f"expected a JSON array of issues, got {type(body).__name__}", response.status_code
            )
        issues: list[Issue] = []
        for n, raw in enumerate(body):
            if not isinstance(raw, dict):
                raise WorkerError(url, f"issue #{n} is not an object", response.status_code)
            issues.append(Issue.from_worker(raw))
        return issues
