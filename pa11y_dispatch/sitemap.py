"""Sitemap url extraction.

Functions:
    fetch_sitemap_urls(url)  -> list[str]   download + extract
    extract_urls(xml_text)   -> list[str]   text of every <loc>, in document order
"""

import logging
import xml.etree.ElementTree as ET

import requests
from defusedxml.common import DefusedXmlException
from defusedxml.ElementTree import fromstring

from pa11y_dispatch.client import FetchError, Pa11yError, send

logger = logging.getLogger(__name__)


class ParseError(Pa11yError):
    """Raised when a sitemap document is not well-formed XML."""

    def __init__(self, level: str, message: str, position: tuple[int, int] | None = None) -> None:
        super().__init__(f"[{level}] {message}")
        self.level = level
        self.message = message
        self.position = position


def fetch_sitemap_urls(
    url: str,
    session: requests.Session | None = None,
    timeout: float = 30,
) -> list[str]:
    """Download the sitemap at *url* and return the page urls it lists.

    Raises:
        FetchError: network failure or non-2xx response
        ParseError: the document is not well-formed XML
    """
    session = session or requests.Session()
    response = send(session, "GET", url, timeout)
    if not response.ok:
        raise FetchError(f"Unable to download sitemap '{url}': HTTP {response.status_code}")

    # Raw bytes, so the XML declaration decides the encoding rather than the HTTP headers.
    urls = extract_urls(response.content)
    logger.info("Found %d url(s) in sitemap %s", len(urls), url)
    return urls


def extract_urls(xml_text: str | bytes) -> list[str]:
    """Return the text content of every ``<loc>`` element in document order.

    Namespaces are ignored so both plain and ``sitemaps.org`` documents work.
    Empty ``<loc>`` elements are skipped. Bytes are decoded according to the
    document's own XML declaration (UTF-8 when it has none).
    """
    if not xml_text or not xml_text.strip():
        raise ParseError("fatalError", "document is empty")

    try:
        root = fromstring(xml_text)
    except ET.ParseError as exc:
        raise ParseError("fatalError", str(exc), getattr(exc, "position", None)) from exc
    except DefusedXmlException as exc:
        raise ParseError("error", f"forbidden XML construct: {exc}") from exc

    urls: list[str] = []
    for element in root.iter():
        if not isinstance(element.tag, str) or _local_name(element.tag) != "loc":
            continue
        text = (element.text or "").strip()
        if text:
            urls.append(text)
    return urls


def _local_name(tag: str) -> str:
    # "{http://www.sitemaps.org/schemas/sitemap/0.9}loc" -> "loc"
    return tag.rsplit("}", 1)[-1]
