from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ro_subtitles import __version__
from ro_subtitles.extract import ArchiveError
from ro_subtitles.limiter import DownloadError
from ro_subtitles.logs import REQUEST_ID, configure_logging
from ro_subtitles.metadata import build_request, decode_config
from ro_subtitles.service import ResolutionCoordinator, build_coordinator
from ro_subtitles.settings import settings

# ---------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------
configure_logging(settings)
log = logging.getLogger("ro_subtitles.app")

SUBTITLES_CACHE_CONTROL = "public, max-age=900"
MANIFEST_CACHE_CONTROL = "public, max-age=86400"

_http_client: Optional[httpx.AsyncClient] = None
_coordinator: Optional[ResolutionCoordinator] = None


def get_coordinator() -> ResolutionCoordinator:
    """Process-wide coordinator, built on first use."""
    global _http_client, _coordinator
    if _coordinator is None:
        _http_client = httpx.AsyncClient(timeout=settings.request_timeout)
        _coordinator = build_coordinator(settings, _http_client)
    return _coordinator


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _http_client, _coordinator
    log.info("Started (version %s)", __version__)
    yield
    log.info("Shutdown")
    if _http_client is not None:
        await _http_client.aclose()
    _http_client = None
    _coordinator = None


# ---------------------------------------------------------------------
# App + middleware
# ---------------------------------------------------------------------
app = FastAPI(title="Romanian Subtitles (subs.ro) for Stremio", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


# ---------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------
MANIFEST: Dict[str, Any] = {
    "id": "ro.subsro.stremio",
    "version": __version__,
    "name": "Subs.ro",
    "description": "Romanian subtitles from subs.ro, ranked against the playing release",
    "catalogs": [],
    "resources": [
        {"name": "subtitles", "types": ["movie", "series"], "idPrefixes": ["tt"]},
    ],
    "types": ["movie", "series"],
    "idPrefixes": ["tt"],
    "behaviorHints": {"configurable": True, "configurationRequired": True},
}


def _manifest_response(config: Optional[str]) -> JSONResponse:
    has_config = bool(decode_config(config))
    payload = {
        **MANIFEST,
        "behaviorHints": {**MANIFEST["behaviorHints"], "configurationRequired": not has_config},
    }
    return JSONResponse(payload, headers={"Cache-Control": MANIFEST_CACHE_CONTROL})


@app.get("/manifest.json")
@app.get("/manifest")
async def manifest() -> JSONResponse:
    return _manifest_response(None)


@app.get("/{config}/manifest.json")
@app.get("/{config}/manifest")
async def manifest_configured(config: str) -> JSONResponse:
    return _manifest_response(config)


@app.get("/")
async def index() -> JSONResponse:
    return JSONResponse({"status": "ok", "manifest": "/manifest.json", "name": MANIFEST["name"]})


# ---------------------------------------------------------------------
# Health and metrics
# ---------------------------------------------------------------------
@app.get("/healthz")
async def healthz() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": __version__})


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------
# API key validation
# ---------------------------------------------------------------------
@app.get("/api/validate/{api_key}")
async def validate_api_key(api_key: str) -> JSONResponse:
    valid = await get_coordinator().validate_key(api_key)
    return JSONResponse({"valid": valid})


# ---------------------------------------------------------------------
# Subtitle search
# ---------------------------------------------------------------------
def _base_url(request: Request) -> str:
    if settings.public_base_url:
        return settings.public_base_url.rstrip("/")
    proto = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{proto}://{host}"


async def _subtitles_response(media_type: str, item_path: str, request: Request, config: Optional[str]) -> JSONResponse:
    if media_type not in {"movie", "series"}:
        raise HTTPException(status_code=404, detail="Unsupported media type")

    if item_path.endswith(".json"):
        item_path = item_path[: -len(".json")]
    user_config = decode_config(config)
    extra = {k: v for k, v in request.query_params.items() if v}

    t0 = time.time()
    try:
        resolution = build_request(media_type, item_path, extra=extra, config=user_config)
    except ValueError as exc:
        log.info("Ignoring malformed id %r: %s", item_path, exc)
        return JSONResponse({"subtitles": []}, headers={"Cache-Control": SUBTITLES_CACHE_CONTROL})

    try:
        results = await get_coordinator().resolve(resolution, base_url=_base_url(request))
    except Exception:  # noqa: BLE001
        log.exception("Subtitle resolution crashed for %s", resolution.media_id)
        return JSONResponse({"subtitles": []}, status_code=500)

    log.debug("Resolved %s in %.0f ms", resolution.cache_key, (time.time() - t0) * 1000)
    return JSONResponse(
        {"subtitles": [item.as_dict() for item in results]},
        headers={"Cache-Control": SUBTITLES_CACHE_CONTROL},
    )


@app.get("/subtitles/{media_type}/{item_path:path}")
async def subtitles(media_type: str, item_path: str, request: Request) -> JSONResponse:
    return await _subtitles_response(media_type, item_path, request, config=None)


@app.get("/{config}/subtitles/{media_type}/{item_path:path}")
async def subtitles_configured(config: str, media_type: str, item_path: str, request: Request) -> JSONResponse:
    return await _subtitles_response(media_type, item_path, request, config=config)


# ---------------------------------------------------------------------
# Subtitle delivery
# ---------------------------------------------------------------------
@app.get("/{api_key}/proxy/{record_id}/{encoded_path}/sub.srt")
async def proxy_subtitle(api_key: str, record_id: str, encoded_path: str) -> Response:
    try:
        filename, content = await get_coordinator().fetch_subtitle(api_key, record_id, encoded_path)
    except (ArchiveError, DownloadError) as exc:
        log.warning("Proxy failed for record %s: %s", record_id, exc)
        raise HTTPException(status_code=502, detail=str(exc))
    safe_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "sub.srt"
    return Response(
        content=content,
        media_type="application/x-subrip",
        headers={
            "Content-Disposition": f'inline; filename="{safe_name}"',
            "Cache-Control": "public, max-age=86400",
        },
    )
