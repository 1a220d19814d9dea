"""Per-caller download queue for subs.ro archives.

Every API key gets its own limiter so one user's burst never delays
another's downloads. A limiter bounds concurrent downloads, spaces download
starts, and retries HTTP 429 responses honouring ``Retry-After``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Mapping, Optional

import httpx

from .cache import TTLCache
from .settings import Settings

log = logging.getLogger("ro_subtitles.limiter")

MAX_RETRY_AFTER = 10.0


class DownloadError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DownloadLimiter:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        max_concurrent: int = 2,
        min_interval: float = 0.25,
        retries: int = 2,
    ) -> None:
        self._client = http_client
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent))
        self._min_interval = max(0.0, min_interval)
        self._retries = max(0, retries)
        self._spacing_lock = asyncio.Lock()
        self._last_start = 0.0
        self._active = 0
        self._pending = 0

    def queue_status(self) -> Dict[str, int]:
        return {"active": self._active, "pending": self._pending}

    async def _wait_turn(self) -> None:
        async with self._spacing_lock:
            wait = self._min_interval - (time.monotonic() - self._last_start)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_start = time.monotonic()

    async def download_archive(self, url: str, headers: Optional[Mapping[str, str]] = None) -> bytes:
        self._pending += 1
        queued = True
        try:
            async with self._semaphore:
                self._pending -= 1
                queued = False
                self._active += 1
                try:
                    return await self._download_with_retries(url, headers)
                finally:
                    self._active -= 1
        finally:
            if queued:
                self._pending -= 1

    async def _download_with_retries(self, url: str, headers: Optional[Mapping[str, str]]) -> bytes:
        attempt = 0
        while True:
            await self._wait_turn()
            try:
                response = await self._client.get(url, headers=dict(headers or {}), follow_redirects=True)
            except httpx.HTTPError as exc:
                raise DownloadError(f"Network error downloading {url}: {exc}") from exc

            if response.status_code == 429 and attempt < self._retries:
                attempt += 1
                delay = _retry_after(response, default=float(attempt))
                log.warning("Rate limited downloading %s; retry %s in %.1fs", url, attempt, delay)
                await asyncio.sleep(delay)
                continue

            if response.status_code >= 400:
                raise DownloadError(
                    f"Download failed with HTTP {response.status_code} for {url}",
                    status_code=response.status_code,
                )
            return response.content


def _retry_after(response: httpx.Response, default: float) -> float:
    raw = response.headers.get("retry-after")
    try:
        value = float(raw) if raw is not None else default
    except ValueError:
        value = default
    return max(0.0, min(value, MAX_RETRY_AFTER))


class LimiterRegistry:
    """Hands out one ``DownloadLimiter`` per caller key (LRU bounded)."""

    def __init__(self, config: Settings, http_client: httpx.AsyncClient) -> None:
        self._config = config
        self._client = http_client
        self._limiters = TTLCache(default_ttl=None, max_size=config.client_cache_size)

    def get(self, caller_key: str) -> DownloadLimiter:
        return self._limiters.get_or_create(
            caller_key,
            lambda: DownloadLimiter(
                self._client,
                max_concurrent=self._config.download_concurrency,
                min_interval=self._config.download_min_interval,
                retries=self._config.download_retries,
            ),
        )


__all__ = ["DownloadError", "DownloadLimiter", "LimiterRegistry"]
