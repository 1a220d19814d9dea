"""Resolution coordinator: search, archive listing, filtering, ranking, caching.

One ``ResolutionCoordinator`` owns every process-wide cache (responses,
search clients, page metadata) plus the in-flight map, so the whole state is
tied to the coordinator's lifetime instead of module globals.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

import httpx

from .archive_cache import ArchiveCache
from .cache import Clock, SingleFlight, TTLCache
from .episodes import matches_episode
from .extract import ArchiveError, read_subtitle_file
from .limiter import LimiterRegistry
from .metrics import RESOLVE_COUNT, RESOLVE_LATENCY
from .models import (
    PageMetadata,
    RankedSubtitle,
    ResolutionRequest,
    ResolvedSubtitle,
    ResponseCacheEntry,
    SubtitleCandidate,
    SubtitleRecord,
)
from .release import has_release_signal
from .scoring import calculate_match_score
from .settings import Settings
from .sources.subsro import SubsRoClient

log = logging.getLogger("ro_subtitles.service")

ID_PREFIX = "subsro"
DEFAULT_BASE_URL = "http://localhost:7000"

LANGUAGE_MAPPING = {
    "ro": "ron",
    "en": "eng",
    "ita": "ita",
    "fra": "fra",
    "ger": "deu",
    "ung": "hun",
    "gre": "ell",
    "por": "por",
    "spa": "spa",
    "alt": "und",
}

ClientFactory = Callable[[str], SubsRoClient]


def encode_path(path: str) -> str:
    return base64.urlsafe_b64encode(path.encode("utf-8")).decode("ascii").rstrip("=")


def decode_path(encoded: str) -> str:
    try:
        padding = "=" * (-len(encoded) % 4)
        return base64.urlsafe_b64decode(encoded + padding).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ArchiveError(f"Malformed subtitle path token: {encoded!r}") from exc


def delivery_url(base_url: str, caller_key: str, record_id: str, encoded_path: str) -> str:
    return f"{base_url.rstrip('/')}/{caller_key}/proxy/{record_id}/{encoded_path}/sub.srt"


def map_language(code: str) -> str:
    return LANGUAGE_MAPPING.get(code, code)


class ResolutionCoordinator:
    def __init__(
        self,
        config: Settings,
        client_factory: ClientFactory,
        archive_cache: ArchiveCache,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config
        self.archives = archive_cache
        self._client_factory = client_factory
        self._clock = clock
        self._responses = TTLCache(default_ttl=None, max_size=config.response_cache_size, clock=clock)
        self._clients = TTLCache(default_ttl=None, max_size=config.client_cache_size, clock=clock)
        self._page_metadata = TTLCache(
            default_ttl=config.page_metadata_ttl,
            max_size=config.page_metadata_cache_size,
            clock=clock,
        )
        self._inflight = SingleFlight()

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------
    def client_for(self, caller_key: str) -> SubsRoClient:
        return self._clients.get_or_create(caller_key, lambda: self._client_factory(caller_key))

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def cached_response(self, key: str) -> Optional[Tuple[RankedSubtitle, ...]]:
        entry: Optional[ResponseCacheEntry] = self._responses.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            self._responses.delete(key)
            return None
        return entry.candidates

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    async def resolve(self, request: ResolutionRequest, base_url: Optional[str] = None) -> List[ResolvedSubtitle]:
        """Return up to ``top_n`` ranked subtitles; never raises."""
        if not request.caller_key or not request.media_id:
            return []

        key = request.cache_key
        cached = self.cached_response(key)
        if cached is not None:
            RESOLVE_COUNT.labels(outcome="hit").inc()
            return self._deliver(cached, request.caller_key, base_url)

        task, is_owner = self._inflight.start(key, lambda: self._resolve_and_cache(request, key))
        RESOLVE_COUNT.labels(outcome="miss" if is_owner else "joined").inc()
        ranked = await asyncio.shield(task)
        return self._deliver(ranked, request.caller_key, base_url)

    async def _resolve_and_cache(
        self,
        request: ResolutionRequest,
        key: str,
    ) -> Tuple[RankedSubtitle, ...]:
        start = time.perf_counter()
        try:
            subtitles = tuple(await self._resolve_uncached(request))
        except Exception:  # noqa: BLE001
            RESOLVE_COUNT.labels(outcome="error").inc()
            log.exception("Resolution failed for %s", key)
            return ()
        finally:
            RESOLVE_LATENCY.observe(time.perf_counter() - start)

        ttl = self.config.response_cache_ttl if subtitles else self.config.empty_cache_ttl
        self._responses.set(key, ResponseCacheEntry(candidates=subtitles, created_at=self._clock(), ttl=ttl))
        if not subtitles:
            RESOLVE_COUNT.labels(outcome="empty").inc()
        log.info(
            "Served %s subs for %s%s",
            len(subtitles),
            request.media_id,
            f" S{request.season}E{request.episode}" if request.is_series else "",
        )
        return subtitles

    async def _resolve_uncached(self, request: ResolutionRequest) -> List[RankedSubtitle]:
        client = self.client_for(request.caller_key)
        records = await client.search_by_imdb(request.media_id)

        if request.language_filter:
            records = [r for r in records if r.language in request.language_filter]
        if request.is_series and self.config.match_policy == "record":
            records = self._filter_records(records, request)

        candidates: List[SubtitleCandidate] = []
        # The per-key download limiter bounds concurrency
        for record in records:
            try:
                candidates.extend(await self._score_record(client, record, request))
            except Exception:  # noqa: BLE001
                log.exception("Skipping record %s after unexpected error", record.id)

        candidates.sort(key=lambda c: c.match_score, reverse=True)
        top = candidates[: self.config.top_n]

        if self.config.debug_matching and top and request.video_filename:
            log.info("Matching results for %r:", request.video_filename)
            for idx, cand in enumerate(top, start=1):
                log.info("  %s. [Score: %s] %s", idx, cand.match_score, cand.srt_path)

        return [self._rank(cand) for cand in top]

    def _filter_records(self, records: Sequence[SubtitleRecord], request: ResolutionRequest) -> List[SubtitleRecord]:
        """Whole-record episode filter; falls back to every record when none match."""
        matched = [
            r
            for r in records
            if matches_episode(r.title, request.season, request.episode)
            or matches_episode(r.description, request.season, request.episode)
        ]
        if not matched:
            log.debug("No record names S%sE%s; keeping all %s", request.season, request.episode, len(records))
            return list(records)
        return matched

    async def _score_record(
        self,
        client: SubsRoClient,
        record: SubtitleRecord,
        request: ResolutionRequest,
    ) -> List[SubtitleCandidate]:
        paths = await self.archives.get_srt_list(request.caller_key, record.id)
        if request.is_series and self.config.match_policy == "archive":
            paths = [p for p in paths if matches_episode(p, request.season, request.episode)]
        if not paths:
            return []

        metadata: Optional[PageMetadata] = None
        if request.video_filename and record.link and not all(has_release_signal(p) for p in paths):
            metadata = await self._page_metadata_for(client, record.link)

        lang = map_language(record.language)
        retail = record.is_retail
        candidates = []
        for path in paths:
            score = calculate_match_score(
                request.video_filename, path, metadata, self.config.fuzzy_cap, is_retail=retail
            )
            candidates.append(
                SubtitleCandidate(
                    record_id=record.id,
                    srt_path=path,
                    language=lang,
                    match_score=score,
                    is_retail=retail,
                )
            )
        return candidates

    async def _page_metadata_for(self, client: SubsRoClient, link: str) -> Optional[PageMetadata]:
        cached = self._page_metadata.get(link)
        if cached is not None:
            return cached
        try:
            metadata = await client.fetch_page_metadata(link)
        except Exception:  # noqa: BLE001
            log.warning("Page metadata lookup failed for %s", link, exc_info=True)
            return None
        # Pages without metadata are retried on the short empty-result schedule
        ttl = None if (metadata.fps or metadata.formats) else self.config.empty_cache_ttl
        self._page_metadata.set(link, metadata, ttl=ttl)
        return metadata

    def _rank(self, candidate: SubtitleCandidate) -> RankedSubtitle:
        encoded = encode_path(candidate.srt_path)
        subtitle_id = f"{ID_PREFIX}_{candidate.record_id}_{encoded[:8]}" if encoded else f"{ID_PREFIX}_{candidate.record_id}"
        return RankedSubtitle(id=subtitle_id, record_id=candidate.record_id, encoded_path=encoded, lang=candidate.language)

    def _deliver(
        self,
        ranked: Sequence[RankedSubtitle],
        caller_key: str,
        base_url: Optional[str],
    ) -> List[ResolvedSubtitle]:
        """Attach delivery URLs for the current caller."""
        base = base_url or self.config.public_base_url or DEFAULT_BASE_URL
        return [
            ResolvedSubtitle(
                id=item.id,
                url=delivery_url(base, caller_key, item.record_id, item.encoded_path),
                lang=item.lang,
            )
            for item in ranked
        ]

    # ------------------------------------------------------------------
    # Delivery and key validation
    # ------------------------------------------------------------------
    async def fetch_subtitle(self, caller_key: str, record_id: str, encoded_path: str) -> Tuple[str, bytes]:
        """Return ``(filename, raw bytes)`` of one subtitle inside a record's archive.

        Raises ``ArchiveError`` or ``DownloadError``.
        """
        path = decode_path(encoded_path)
        entry = await self.archives.get_entry(caller_key, record_id)
        if path not in entry.srt_paths:
            raise ArchiveError(f"Archive {record_id} does not list {path!r}")
        content = await asyncio.to_thread(read_subtitle_file, entry.raw_bytes, path)
        return path.rsplit("/", 1)[-1], content

    async def validate_key(self, caller_key: str) -> bool:
        if not caller_key:
            return False
        return await self.client_for(caller_key).validate()


def build_coordinator(config: Settings, http_client: httpx.AsyncClient) -> ResolutionCoordinator:
    """Wire the coordinator to subs.ro through ``http_client``."""
    limiters = LimiterRegistry(config, http_client)

    def client_factory(caller_key: str) -> SubsRoClient:
        return SubsRoClient(caller_key, http_client, base_url=config.api_base, key_header=config.api_key_header)

    async def download(caller_key: str, record_id: str) -> bytes:
        url = f"{config.api_base.rstrip('/')}/subtitle/{record_id}/download"
        return await limiters.get(caller_key).download_archive(url, headers={config.api_key_header: caller_key})

    archives = ArchiveCache(
        download,
        ttl=config.archive_cache_ttl,
        max_size=config.archive_cache_size,
        queue_status=lambda key: limiters.get(key).queue_status(),
    )
    return ResolutionCoordinator(config, client_factory, archives)


__all__ = [
    "ResolutionCoordinator",
    "build_coordinator",
    "encode_path",
    "decode_path",
    "delivery_url",
    "map_language",
    "LANGUAGE_MAPPING",
]
