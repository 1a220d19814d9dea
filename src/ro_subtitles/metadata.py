from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, unquote

from .models import ResolutionRequest, normalize_languages

log = logging.getLogger("ro_subtitles.metadata")


@dataclass
class StremioID:
    base: str
    season: Optional[int]
    episode: Optional[int]
    extra: Dict[str, str] = field(default_factory=dict)


def _decode_twice(raw: str) -> str:
    s = raw or ""
    # Decode up to twice to handle cases like %253A -> %3A -> :
    for _ in range(2):
        decoded = unquote(s)
        if decoded == s:
            break
        s = decoded
    return s


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid season/episode number: {value!r}") from exc


def parse_stremio_id(raw_id: str) -> StremioID:
    """Parse Stremio IDs that may be URL-encoded once or twice.

    - tt0369179                   (movie)
    - tt0369179:1:2               (series S01E02)
    - tt0369179%253A1%253A2       (encoded twice)
    - tt0369179/filename=...      (extras glued to the id)

    Raises ValueError when season or episode are not integers.
    """
    s = _decode_twice(raw_id)
    extra: Dict[str, str] = {}
    if "/" in s:
        s, tail = s.split("/", 1)
        extra = parse_extra(tail)

    parts = s.split(":")
    base = parts[0] if parts else s
    season = _to_int(parts[1]) if len(parts) > 1 else None
    episode = _to_int(parts[2]) if len(parts) > 2 else None
    return StremioID(base=base, season=season, episode=episode, extra=extra)


def parse_extra(raw: Optional[str]) -> Dict[str, str]:
    """Parse the Stremio ``extra`` segment (query-string or JSON)."""
    if not raw:
        return {}
    text = _decode_twice(raw)
    if text.endswith(".json"):
        text = text[: -len(".json")]
    if text.startswith("{"):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            payload = None
        if isinstance(payload, dict):
            return {str(k): str(v) for k, v in payload.items() if v is not None}
    return {k: v for k, v in parse_qsl(text, keep_blank_values=False)}


def decode_config(config: Optional[str]) -> Dict[str, Any]:
    """Decode the URL-safe base64 JSON config path segment; ``{}`` when invalid."""
    if not config:
        return {}
    try:
        padding = "=" * (-len(config) % 4)
        raw = base64.urlsafe_b64decode(config + padding)
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError) as exc:
        log.debug("Invalid config segment: %s", exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def encode_config(payload: Mapping[str, Any]) -> str:
    raw = json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def build_request(
    media_type: str,
    raw_id: str,
    extra: Optional[Mapping[str, str]] = None,
    config: Optional[Mapping[str, Any]] = None,
) -> ResolutionRequest:
    """Build a ``ResolutionRequest`` from the addon route parameters.

    Raises ValueError for unparseable ids.
    """
    tokens = parse_stremio_id(raw_id)
    if not tokens.base:
        raise ValueError("Empty catalog id")
    merged = dict(tokens.extra)
    merged.update(extra or {})
    config = config or {}
    filename = merged.get("filename") or merged.get("videoName") or ""
    return ResolutionRequest(
        media_id=tokens.base,
        season=tokens.season,
        episode=tokens.episode,
        is_series=media_type == "series" and tokens.episode is not None,
        language_filter=normalize_languages(config.get("languages")),
        video_filename=str(filename),
        caller_key=str(config.get("apiKey") or ""),
    )


__all__ = ["StremioID", "parse_stremio_id", "parse_extra", "decode_config", "encode_config", "build_request"]
