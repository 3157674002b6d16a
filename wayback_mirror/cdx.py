"""Capture-index (CDX) lookups."""

import json
import logging
from typing import List, Optional

from .archive import ArchiveClient
from .models import Capture, CaptureRef
from .urls import domain_of, normalize_url

logger = logging.getLogger("wayback_mirror.cdx")

CDX = "https://web.archive.org/cdx/search/cdx"
CDX_FIELDS = "timestamp,original,mimetype,statuscode,length"


def parse_cdx_rows(text: str) -> List[dict]:
    """CDX JSON output is a header row followed by value rows."""
    if not text.strip():
        return []
    try:
        rows = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Failed to parse JSON response from CDX API: %s...", text[:100])
        return []
    if not rows or len(rows) < 2:
        return []
    header = rows[0]
    return [dict(zip(header, row)) for row in rows[1:]]


def _capture(row: dict) -> Capture:
    return Capture(
        timestamp=row.get("timestamp", ""),
        original_url=row.get("original", ""),
        mimetype=row.get("mimetype", ""),
        status_code=row.get("statuscode", ""),
        length=row.get("length", ""),
    )


class CaptureIndex:
    def __init__(self, client: ArchiveClient, endpoint: str = CDX):
        self.client = client
        self.endpoint = endpoint

    def _query(self, params: dict) -> List[dict]:
        logger.debug("CDX query: %s", params)
        resp = self.client.get(self.endpoint, params={"output": "json", **params})
        return parse_cdx_rows(resp.text)

    def lookup(self, url: str, from_ts: Optional[str] = None, to_ts: Optional[str] = None,
               limit: Optional[int] = None) -> List[Capture]:
        """Successful captures of `url`, oldest first."""
        params = {
            "url": normalize_url(url),
            "filter": "statuscode:200",
            "fl": CDX_FIELDS,
        }
        if from_ts:
            params["from"] = from_ts
        if to_ts:
            params["to"] = to_ts
        if limit is not None:
            params["limit"] = str(limit)
        return [_capture(r) for r in self._query(params) if r.get("timestamp")]

    def latest(self, url: str) -> Optional[CaptureRef]:
        rows = self.lookup(url, limit=-1)
        if not rows:
            return None
        return rows[-1].ref()

    def closest(self, url: str, timestamp: str) -> Optional[CaptureRef]:
        rows = self.lookup(url, from_ts=timestamp, to_ts=timestamp, limit=1)
        if not rows:
            return None
        return rows[0].ref()

    def scan_domain(self, url: str, from_ts: Optional[str] = None, to_ts: Optional[str] = None,
                    limit: int = 500) -> List[Capture]:
        """One capture per archived URL under the domain of `url`."""
        params = {
            "url": f"{domain_of(url)}/*",
            "filter": "statuscode:200",
            "collapse": "urlkey",
            "fl": CDX_FIELDS,
            "limit": str(limit),
        }
        if from_ts:
            params["from"] = from_ts
        if to_ts:
            params["to"] = to_ts
        return [_capture(r) for r in self._query(params)]
