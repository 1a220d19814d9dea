"""subs.ro API client: IMDb search, key validation and page metadata scraping."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

from ..models import PageMetadata, SubtitleRecord
from ..tags import QUALITY_TAGS

log = logging.getLogger("ro_subtitles.sources.subsro")

DEFAULT_API_BASE = "https://subs.ro/api/v1.0"
DEFAULT_KEY_HEADER = "X-Subs-Api-Key"

FPS_RE = re.compile(
    r"(?:fps|frame\s*rate|framerate)\s*[:\-]?\s*(\d{2}(?:[.,]\d{1,3})?)|(\d{2}[.,]\d{1,3})\s*fps",
    re.IGNORECASE,
)
FORMAT_LINE_RE = re.compile(r"^\s*(?:format(?:e|uri)?|release|sursa|source)\s*:?\s*(.+)$", re.IGNORECASE)
FORMAT_SPLIT_RE = re.compile(r"[,/|;]+")


def _status_message(status: int) -> str:
    if status == 429:
        return "Quota exceeded"
    if status == 401:
        return "Invalid API key"
    return f"API error {status}"


class SubsRoClient:
    """Thin async client scoped to one caller API key.

    Every public method swallows upstream failures: search returns ``[]``,
    page metadata returns an empty ``PageMetadata``, validation returns False.
    """

    def __init__(
        self,
        api_key: str,
        http_client: httpx.AsyncClient,
        base_url: str = DEFAULT_API_BASE,
        key_header: str = DEFAULT_KEY_HEADER,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.key_header = key_header
        self._http = http_client

    @property
    def headers(self) -> Dict[str, str]:
        return {self.key_header: self.api_key}

    def download_url(self, record_id: str) -> str:
        return f"{self.base_url}/subtitle/{record_id}/download"

    async def search_by_imdb(self, imdb_id: str) -> List[SubtitleRecord]:
        url = f"{self.base_url}/search/imdbid/{imdb_id}"
        try:
            response = await self._http.get(url, headers=self.headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            log.warning("[subsro] %s for %s", _status_message(exc.response.status_code), imdb_id)
            return []
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("[subsro] Network error for %s: %s", imdb_id, exc)
            return []

        items = payload.get("items") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return []

        records: List[SubtitleRecord] = []
        for item in items:
            record = SubtitleRecord.from_payload(item)
            if record is None:
                log.debug("[subsro] skipping malformed search item for %s: %r", imdb_id, item)
                continue
            records.append(record)
        log.debug("[subsro] search %s -> %s records", imdb_id, len(records))
        return records

    async def fetch_page_metadata(self, page_url: str) -> PageMetadata:
        if not page_url:
            return PageMetadata.empty()
        try:
            response = await self._http.get(page_url, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning("[subsro] page metadata fetch failed for %s: %s", page_url, exc)
            return PageMetadata.empty()
        return parse_page_metadata(response.text)

    async def validate(self) -> bool:
        """Check the key against ``/quota``, which does not consume quota."""
        try:
            response = await self._http.get(f"{self.base_url}/quota", headers=self.headers)
            response.raise_for_status()
            payload: Any = response.json()
        except httpx.HTTPStatusError as exc:
            log.warning("[subsro] validation: %s", _status_message(exc.response.status_code))
            return False
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("[subsro] validation failed: %s", exc)
            return False

        quota = payload.get("quota") if isinstance(payload, dict) else None
        remaining = quota.get("remaining_quota") if isinstance(quota, dict) else None
        return isinstance(remaining, (int, float)) and remaining >= 0


def _extract_fps(text: str) -> Optional[str]:
    match = FPS_RE.search(text)
    if not match:
        return None
    return (match.group(1) or match.group(2)).replace(",", ".")


def _extract_formats(lines: List[str]) -> List[str]:
    formats: List[str] = []
    for line in lines:
        match = FORMAT_LINE_RE.match(line)
        if not match:
            continue
        for chunk in FORMAT_SPLIT_RE.split(match.group(1)):
            value = chunk.strip().upper()
            if not value or value in formats:
                continue
            if any(tag in value for tag in QUALITY_TAGS):
                formats.append(value)
    return formats


def parse_page_metadata(html: str) -> PageMetadata:
    """Pull the declared frame rate and release formats from a subtitle page."""
    if not html:
        return PageMetadata.empty()
    soup = BeautifulSoup(html, "html.parser")
    for node in soup(["script", "style"]):
        node.decompose()
    text = soup.get_text("\n")
    lines = [ln.strip() for ln in text.split("\n") if ln.strip()]
    # Label and value are frequently split across sibling nodes
    joined = [f"{a} {b}" if a.endswith(":") else a for a, b in zip(lines, lines[1:] + [""])]
    return PageMetadata(fps=_extract_fps(" ".join(lines)), formats=tuple(_extract_formats(joined)))


__all__ = ["SubsRoClient", "parse_page_metadata"]
