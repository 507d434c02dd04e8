"""Reporting API client.

Usage:
    client  = ApiClient(url="https://api.seoa11y.com", token="xxx")
    report  = client.create_report({"rootUrl": ..., "standard": "WCAG2AA", "urls": [...]})
    client.update_report(report["_id"], {"progress": 0.5, "codes": [...]})
    issues  = client.get_issues({"reportId": report["_id"]})
"""

from typing import Any

import requests


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class Pa11yError(Exception):
    """Base exception for all errors raised while dispatching or querying."""


class FetchError(Pa11yError):
    """Raised on connection timeout, unreachable server or failed download."""


class ApiResponseError(Pa11yError):
    """Raised on a non-2xx response from the reporting API."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(ApiResponseError):
    """Raised on HTTP 401 — invalid or expired token."""


class NotFoundError(ApiResponseError):
    """Raised on HTTP 404 — report, issue or url not found."""


class PersistenceError(ApiResponseError):
    """Raised when a report, issue or url record could not be written."""


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def bearer_session(token: str) -> requests.Session:
    """Return a session that attaches ``Authorization: Bearer <token>`` to every call."""
    session = requests.Session()
    session.headers["Authorization"] = f"Bearer {token}"
    return session


def send(
    session: requests.Session,
    method: str,
    url: str,
    timeout: float,
    **kwargs: Any,
) -> requests.Response:
    """Perform one request, translating transport failures into FetchError."""
    try:
        return session.request(method, url, timeout=timeout, **kwargs)
    except requests.exceptions.Timeout as exc:
        raise FetchError(
            f"Request timed out after {timeout}s while contacting '{url}'"
        ) from exc
    except requests.exceptions.ConnectionError as exc:
        raise FetchError(f"Unable to reach '{url}'") from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ApiClient:
    """Thin wrapper around the pa11y reporting REST API."""

    def __init__(self, url: str, token: str, timeout: float = 30) -> None:
        self.base_url = url.rstrip("/")
        self._timeout = timeout
        self._session = bearer_session(token)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_report(self, payload: dict[str, Any]) -> dict:
        """``POST /api/reports`` — returns the created report (with ``_id``)."""
        return self._write("POST", "/api/reports", payload)

    def update_report(self, report_id: str, changes: dict[str, Any]) -> dict:
        """``PUT /api/reports/{id}`` with a partial update such as ``{progress, codes}``."""
        return self._write("PUT", f"/api/reports/{report_id}", changes)

    def create_issue(self, payload: dict[str, Any]) -> dict:
        return self._write("POST", "/api/issues", payload)

    def create_url(self, payload: dict[str, Any]) -> dict:
        return self._write("POST", "/api/urls", payload)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_reports(self, query: dict[str, Any] | None = None) -> list[dict]:
        return self._read("/api/reports", query)

    def get_report(self, report_id: str) -> dict:
        return self._read(f"/api/reports/{report_id}")

    def get_issues(self, query: dict[str, Any] | None = None) -> list[dict]:
        """List issues, optionally filtered (e.g. ``{"reportId": ..., "code": ...}``)."""
        return self._read("/api/issues", query)

    def get_issue(self, issue_id: str) -> dict:
        return self._read(f"/api/issues/{issue_id}")

    def get_contexts(self, query: dict[str, Any] | None = None) -> list[str]:
        """Return only the ``context`` snippet of each issue matching *query*."""
        return [issue.get("context") for issue in self.get_issues(query)]

    def get_urls(self, query: dict[str, Any] | None = None) -> list[dict]:
        return self._read("/api/urls", query)

    def get_url(self, url_id: str) -> dict:
        return self._read(f"/api/urls/{url_id}")

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read(self, endpoint: str, query: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        response = send(self._session, "GET", url, self._timeout, params=query or {})

        if response.status_code == 401:
            raise AuthenticationError(
                "Authentication failed — check that your token is valid and not expired.",
                status_code=401,
            )
        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {url}", status_code=404)
        if not response.ok:
            raise ApiResponseError(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json()

    def _write(self, method: str, endpoint: str, payload: dict[str, Any]) -> Any:
        url = f"{self.base_url}{endpoint}"
        response = send(self._session, method, url, self._timeout, json=payload)

        if not response.ok:
            raise PersistenceError(
                f"{method} {url} failed with {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        # Some endpoints answer 204 No Content
        if not response.content:
            return {}
        return response.json()
