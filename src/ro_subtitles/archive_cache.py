"""Memoized archive download + listing, keyed by subtitle record id.

Archive content does not depend on who asked for it, so entries are shared
by every caller and every resolution that references the same record.
Failures are never cached.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from .cache import Clock, SingleFlight, TTLCache
from .extract import ArchiveError, detect_archive_kind, list_subtitle_files
from .limiter import DownloadError
from .metrics import ARCHIVE_LOOKUPS
from .models import ArchiveEntry, ArchiveKind

log = logging.getLogger("ro_subtitles.archive_cache")

Downloader = Callable[[str, str], Awaitable[bytes]]
Lister = Callable[[bytes], Sequence[str]]
KindDetector = Callable[[bytes], ArchiveKind]
StatusProbe = Callable[[str], dict]


class ArchiveCache:
    def __init__(
        self,
        downloader: Downloader,
        ttl: float = 3600.0,
        max_size: Optional[int] = 300,
        lister: Lister = list_subtitle_files,
        kind_detector: KindDetector = detect_archive_kind,
        queue_status: Optional[StatusProbe] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self._download = downloader
        self._list = lister
        self._detect_kind = kind_detector
        self._queue_status = queue_status
        self._clock = clock
        self._entries = TTLCache(default_ttl=ttl, max_size=max_size, clock=clock)
        self._inflight = SingleFlight()

    def __len__(self) -> int:
        return len(self._entries)

    def peek(self, record_id: str) -> Optional[ArchiveEntry]:
        return self._entries.get(record_id)

    async def get_entry(self, caller_key: str, record_id: str) -> ArchiveEntry:
        """Return the cached archive, downloading it on a miss.

        Raises ``DownloadError`` or ``ArchiveError``; nothing is cached then.
        """
        cached = self._entries.get(record_id)
        if cached is not None:
            ARCHIVE_LOOKUPS.labels(outcome="hit").inc()
            return cached

        ARCHIVE_LOOKUPS.labels(outcome="miss").inc()
        return await self._inflight.do(record_id, lambda: self._load(caller_key, record_id))

    async def _load(self, caller_key: str, record_id: str) -> ArchiveEntry:
        data = await self._download(caller_key, record_id)
        srt_paths = tuple(self._list(data))
        entry = ArchiveEntry(
            raw_bytes=data,
            srt_paths=srt_paths,
            archive_kind=self._detect_kind(data),
            created_at=self._clock(),
        )
        self._entries.set(record_id, entry)

        status = self._queue_status(caller_key) if self._queue_status else {}
        log.debug(
            "Archive %s: %s SRTs (%s) [Active: %s, Pending: %s]",
            record_id,
            len(srt_paths),
            entry.archive_kind.value.upper(),
            status.get("active", "-"),
            status.get("pending", "-"),
        )
        return entry

    async def get_srt_list(self, caller_key: str, record_id: str) -> List[str]:
        try:
            entry = await self.get_entry(caller_key, record_id)
        except (DownloadError, ArchiveError) as exc:
            ARCHIVE_LOOKUPS.labels(outcome="failed").inc()
            log.warning("Error downloading archive %s: %s", record_id, exc)
            return []
        except Exception:  # noqa: BLE001
            ARCHIVE_LOOKUPS.labels(outcome="failed").inc()
            log.exception("Unexpected error listing archive %s", record_id)
            return []
        return list(entry.srt_paths)


__all__ = ["ArchiveCache"]
