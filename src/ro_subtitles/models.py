from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple


class ArchiveKind(str, enum.Enum):
    ZIP = "zip"
    RAR = "rar"
    SEVEN_ZIP = "7z"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolutionRequest:
    """One inbound subtitles lookup. Never mutated after construction."""

    media_id: str
    season: Optional[int] = None
    episode: Optional[int] = None
    is_series: bool = False
    language_filter: FrozenSet[str] = frozenset()
    video_filename: str = ""
    caller_key: str = ""

    @property
    def cache_key(self) -> str:
        return build_cache_key(self)


def build_cache_key(request: ResolutionRequest) -> str:
    """Deterministic key; the language filter is order independent."""
    languages = ",".join(sorted(request.language_filter)) or "all"
    if request.is_series:
        return f"{request.media_id}_s{request.season}e{request.episode}_{languages}"
    return f"{request.media_id}_{languages}"


@dataclass(frozen=True)
class SubtitleRecord:
    """One item returned by the subs.ro search endpoint."""

    id: str
    language: str
    link: str = ""
    translator: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> Optional["SubtitleRecord"]:
        """Build a record from an API item, or ``None`` when id/language are missing."""
        if not isinstance(payload, Mapping):
            return None
        record_id = payload.get("id")
        language = payload.get("language")
        if record_id in (None, "") or not language:
            return None
        return cls(
            id=str(record_id),
            language=str(language),
            link=str(payload.get("link") or ""),
            translator=_optional_text(payload.get("translator")),
            title=_optional_text(payload.get("title")),
            description=_optional_text(payload.get("description")),
        )

    @property
    def is_retail(self) -> bool:
        for value in (self.translator, self.title):
            if value and "retail" in value.lower():
                return True
        return False


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class PageMetadata:
    fps: Optional[str] = None
    formats: Tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "PageMetadata":
        return cls()


@dataclass(frozen=True)
class ArchiveEntry:
    raw_bytes: bytes
    srt_paths: Tuple[str, ...]
    archive_kind: ArchiveKind
    created_at: float


@dataclass
class SubtitleCandidate:
    """A scored subtitle file inside one archive; internal to a resolution."""

    record_id: str
    srt_path: str
    language: str
    match_score: int = field(default=0, compare=False)
    is_retail: bool = False


@dataclass(frozen=True)
class ResolvedSubtitle:
    id: str
    url: str
    lang: str

    def as_dict(self) -> dict:
        return {"id": self.id, "url": self.url, "lang": self.lang}


@dataclass(frozen=True)
class RankedSubtitle:
    """A top candidate without its delivery URL, which is built per caller."""

    id: str
    record_id: str
    encoded_path: str
    lang: str


@dataclass(frozen=True)
class ResponseCacheEntry:
    candidates: Tuple[RankedSubtitle, ...]
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.ttl


def normalize_languages(languages: Optional[Iterable[str]]) -> FrozenSet[str]:
    if not languages:
        return frozenset()
    if isinstance(languages, str):
        languages = languages.split(",")
    return frozenset(str(lang).strip() for lang in languages if str(lang).strip())


__all__ = [
    "ArchiveKind",
    "ResolutionRequest",
    "build_cache_key",
    "SubtitleRecord",
    "PageMetadata",
    "ArchiveEntry",
    "SubtitleCandidate",
    "ResolvedSubtitle",
    "RankedSubtitle",
    "ResponseCacheEntry",
    "normalize_languages",
]
