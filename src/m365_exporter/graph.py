"""
Thin JSON-over-HTTP helper for Microsoft Graph and the other admin APIs.

Handles the two things every collector would otherwise repeat: following
@odata.nextLink pagination, and turning error envelopes into GraphError
with the upstream code and message. The shape helpers below turn a
malformed payload into a ScrapeError before a collector trips over it.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

import httpx

from m365_exporter.errors import GraphError, ScrapeError

log = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"

# Cap on how much of an undecodable error body ends up in the message
MAX_BODY_IN_ERROR = 500


def error_from_response(response: httpx.Response) -> GraphError:
    """Decode {"error": {"code": ..., "message": ...}} if we can, else keep the raw body."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        return GraphError(response.status_code, err.get("code"), err.get("message", ""))

    return GraphError(response.status_code, None, response.text[:MAX_BODY_IN_ERROR])


def expect_object(payload: Any, what: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ScrapeError(f"unexpected payload for {what}: expected an object, got {type(payload).__name__}")
    return payload


def value_list(payload: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
    """The `value` array of an OData response. A missing or null value is empty."""
    items = payload.get("value")
    if items is None:
        return []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise ScrapeError(f"unexpected payload for {what}: value must be a list of objects")
    return items


def number(value: Any, what: str) -> float:
    """A numeric field as float. None, bools and strings are a ScrapeError."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScrapeError(f"expected a number for {what}, got {value!r}")
    return float(value)


class GraphClient:

    def __init__(self, http: httpx.Client, base_url: str = GRAPH_URL):
        self._http = http
        self._base_url = base_url.rstrip("/")

    def _url(self, path: str) -> str:
        if path.startswith("https://") or path.startswith("http://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        json: Any = None,
    ) -> Any:
        """Send one request and return the decoded JSON body."""
        response = self._http.request(method, self._url(path), params=params, headers=headers, json=json)

        if response.status_code != 200:
            raise error_from_response(response)

        try:
            return response.json()
        except ValueError as e:
            body = response.text[:MAX_BODY_IN_ERROR]
            raise ScrapeError(f"error unmarshalling response: body {body!r}, error {e}") from e

    def get(self, path: str, params=None, headers=None) -> Any:
        return self.request("GET", path, params=params, headers=headers)

    def get_object(self, path: str, params=None, headers=None) -> Dict[str, Any]:
        """GET a JSON object. Any other payload shape is a ScrapeError."""
        return expect_object(self.get(path, params=params, headers=headers), path)

    def post_object(self, path: str, json: Any = None) -> Dict[str, Any]:
        return expect_object(self.request("POST", path, json=json), path)

    def get_collection(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        shutdown: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        """All items of a collection, following nextLink until the last page."""
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        page_params = params

        while url:
            if shutdown is not None and shutdown.is_set():
                raise ScrapeError(f"cancelled while paging {path}", partial=items)

            page = self.get_object(url, params=page_params, headers=headers)
            items.extend(value_list(page, path))
            url = page.get("@odata.nextLink")
            # nextLink already carries the query string
            page_params = None

        log.debug("fetched %d items from %s", len(items), path)
        return items


def parse_datetime(value: str) -> datetime:
    """Parse the ISO timestamps these APIs return.

    Graph uses a trailing Z, the Exchange admin API sends seven fractional
    digits and no offset. Naive values are taken as UTC.
    """
    if not isinstance(value, str):
        raise ScrapeError(f"error parsing date {value!r}: expected a string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    offset = ""
    for sign in ("+", "-"):
        pos = text.rfind(sign)
        if pos > text.find("T") > 0:
            text, offset = text[:pos], text[pos:]
            break

    if "." in text:
        head, frac = text.split(".", 1)
        text = f"{head}.{frac[:6].ljust(6, '0')}"

    try:
        parsed = datetime.fromisoformat(text + offset)
    except ValueError as e:
        raise ScrapeError(f"error parsing date {value!r}: {e}") from e

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
