"""Data models exchanged with the worker and the reporting API.

Contains dataclasses with JSON (camelCase) serialization helpers:
    - Issue      one accessibility finding returned by a worker
    - UrlRecord  per-url metadata derived from that url's issues
    - Report     the aggregate record of one audit run
"""

from dataclasses import dataclass, field
from typing import Any

TYPE_ERROR   = 1
TYPE_WARNING = 2
TYPE_NOTICE  = 3

DEFAULT_STANDARD = "WCAG2AA"


@dataclass(frozen=True)
class Issue:
    code: str
    context: str | None = None
    message: str | None = None
    selector: str | None = None
    type: str | None = None
    type_code: int | None = None

    @classmethod
    def from_worker(cls, raw: dict[str, Any]) -> "Issue":
        """Build an Issue from one element of the worker's JSON array."""
        return cls(
            code=raw.get("code"),
            context=raw.get("context"),
            message=raw.get("message"),
            selector=raw.get("selector"),
            type=raw.get("type"),
            type_code=raw.get("typeCode"),
        )

    def to_payload(self, report_id: str, url: str) -> dict[str, Any]:
        return {
            "code":     self.code,
            "context":  self.context,
            "message":  self.message,
            "selector": self.selector,
            "type":     self.type,
            "typeCode": self.type_code,
            "reportId": report_id,
            "url":      url,
        }


@dataclass(frozen=True)
class UrlRecord:
    report_id: str
    url: str
    codes: tuple[str, ...] = ()
    n_errors: int = 0
    n_warnings: int = 0
    n_notices: int = 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "reportId":  self.report_id,
            "url":       self.url,
            "codes":     list(self.codes),
            "nErrors":   self.n_errors,
            "nWarnings": self.n_warnings,
            "nNotices":  self.n_notices,
        }


@dataclass
class Report:
    """A report as stored by the API.

    ``urls`` is fixed once the report is created; ``progress`` and ``codes``
    are updated as urls complete.
    """

    id: str
    root_url: str
    standard: str
    urls: list[str]
    progress: float = 0.0
    codes: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Report":
        return cls(
            id=data["_id"],
            root_url=data.get("rootUrl", ""),
            standard=data.get("standard", DEFAULT_STANDARD),
            urls=list(data.get("urls") or []),
            progress=float(data.get("progress") or 0.0),
            codes=list(data.get("codes") or []),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id":      self.id,
            "rootUrl":  self.root_url,
            "standard": self.standard,
            "urls":     list(self.urls),
            "progress": self.progress,
            "codes":    list(self.codes),
        }
