# Copyright (C) 2024 Sonance Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Sonance Server - Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sonance_server import APP_NAME, __version__
from sonance_server.api.schemas import envelope, error_envelope
from sonance_server.api.versions import API_DOCUMENTATION, API_VERSION, API_VERSIONS, check_version
from sonance_server.auth import AuthScheme, select_scheme
from sonance_server.config import Settings
from sonance_server.database import create_engine, create_session_maker, init_db
from sonance_server.errors import SonanceError, UnsupportedVersion
from sonance_server.metrics import counters
from sonance_server.routers import artwork, auth, library, search, status, streaming, subsonic, users
from sonance_server.services.artwork import ArtResolver
from sonance_server.services.catalog import Catalog
from sonance_server.services.tasks import LibraryTasks
from sonance_server.services.transcode import EncoderRegistry
from sonance_server.services.users import ensure_root_user
from sonance_server.services.waveform import WaveformRenderer

logger = logging.getLogger(__name__)

ENDPOINTS = [
    "/albums",
    "/artists",
    "/art",
    "/folders",
    "/login",
    "/logout",
    "/search",
    "/songs",
    "/status",
    "/stream",
    "/subsonic",
    "/transcode",
    "/users",
    "/waveform",
]


async def startup(app: FastAPI, settings: Settings, start_tasks: bool = True) -> None:
    """Build the catalog and services and attach them to app.state."""
    app.state.settings = settings
    app.state.stopping = False

    engine = create_engine(settings.db)
    await init_db(engine)
    catalog = Catalog(create_session_maker(engine))
    app.state.engine = engine
    app.state.catalog = catalog

    await ensure_root_user(catalog, no_root=settings.no_root)

    encoders = EncoderRegistry(settings.ffmpeg_path)
    await encoders.detect()
    app.state.encoders = encoders
    app.state.art = ArtResolver(catalog, settings.art_cache_bytes)
    app.state.waveforms = WaveformRenderer(encoders, settings.waveform_cache_bytes)

    media = str(settings.media.expanduser().resolve())
    tasks = LibraryTasks(
        catalog,
        media,
        orphan_interval=settings.orphan_scan_interval_minutes * 60,
        status_interval=settings.status_interval_minutes * 60,
    )
    app.state.tasks = tasks
    if start_tasks:
        tasks.start(scan_on_startup=settings.scan_on_startup)
    logger.info("%s %s: media %s", APP_NAME, __version__, media)


async def shutdown(app: FastAPI) -> None:
    """Refuse new requests, stop library work, reap encoders, close the database."""
    app.state.stopping = True
    grace = app.state.settings.timeout
    await app.state.tasks.shutdown(grace)
    await app.state.encoders.reap_all(grace)
    await app.state.engine.dispose()
    logger.info("%s: shutdown complete", APP_NAME)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        await startup(app, settings)
        yield
        await shutdown(app)

    app = FastAPI(
        title=APP_NAME,
        description="Self-hosted music library server",
        version=__version__,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log method, path, status, and duration for each request; count bytes in and out."""
        if getattr(request.app.state, "stopping", False):
            return JSONResponse(error_envelope(503, "server is shutting down"), status_code=503)

        start = time.perf_counter()
        length = request.headers.get("content-length")
        if length and length.isdigit():
            counters.add_rx(int(length))
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)

        sent = response.headers.get("content-length")
        if sent and sent.isdigit() and not getattr(request.state, "tx_counted", False):
            counters.add_tx(int(sent))
        return response

    @app.exception_handler(SonanceError)
    async def sonance_error_handler(request: Request, exc: SonanceError):
        if select_scheme(request.url.path) is AuthScheme.SUBSONIC:
            return subsonic.failed_response(exc)
        if exc.status_code >= 500:
            logger.error("%s %s: %s", request.method, request.url.path, exc.message)
        return JSONResponse(error_envelope(exc.status_code, exc.message), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        if select_scheme(request.url.path) is AuthScheme.SUBSONIC:
            return subsonic.failed_response(exc)
        errors = exc.errors()
        message = "invalid input"
        if errors:
            where = errors[0].get("loc", ())
            if where and where[0] == "path" and len(where) > 1:
                message = f"invalid integer {where[1]}"
            else:
                message = f"{'.'.join(str(p) for p in where)}: {errors[0].get('msg', 'invalid')}"
        return JSONResponse(error_envelope(400, message), status_code=400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "request failed"
        if exc.status_code == 404:
            message = "resource not found"
        elif exc.status_code == 405:
            message = "method not allowed"
        return JSONResponse(error_envelope(exc.status_code, message), status_code=exc.status_code)

    api_prefix = "/api/{version}"
    for module in (library, artwork, streaming, search, status, auth, users, subsonic):
        app.include_router(module.router, prefix=api_prefix, dependencies=[Depends(check_version)])

    @app.get("/")
    async def root():
        return {"name": APP_NAME, "version": __version__, "api": "/api"}

    @app.get("/api")
    async def api_info():
        """Static document describing the API."""
        return envelope(
            version=API_VERSION,
            supported=sorted(API_VERSIONS),
            documentation=API_DOCUMENTATION,
            endpoints=ENDPOINTS,
        )

    @app.get("/api/{version}")
    async def api_version_info(version: str):
        if version not in API_VERSIONS:
            raise UnsupportedVersion(version)
        return envelope(
            version=version,
            supported=sorted(API_VERSIONS),
            documentation=API_DOCUMENTATION,
            endpoints=[f"/api/{version}{e}" for e in ENDPOINTS],
        )

    return app
