"""Application factory wiring the stores, the auth gate, the sweeper and the routes."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request

from .config import Settings, load_settings
from .database import Database
from .gate import AuthGateMiddleware
from .security import PasswordHasher
from .sessions import Clock, SessionManager, SessionStore
from .sweeper import ExpirySweeper
from .web import build_templates, register_exception_handlers, register_ui_routes, render_error_page

logger = logging.getLogger("counterauth.service")
access_logger = logging.getLogger("counterauth.access")


def _build_database(settings: Settings, hasher: Optional[PasswordHasher]) -> Database:
    database = Database(
        settings.database_path,
        hasher=hasher,
        pool_size=settings.pool_size,
        pool_timeout=settings.pool_timeout,
    )
    database.initialize()
    logger.info("Using database at %s", settings.database_path)
    return database


def create_app(
    *,
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    hasher: Optional[PasswordHasher] = None,
    clock: Optional[Clock] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application.

    ``database`` and ``clock`` may be supplied by tests; otherwise they are derived
    from ``settings`` (or :func:`load_settings` when no settings are given).
    """

    app_settings = settings or load_settings()
    if database is None:
        database = _build_database(app_settings, hasher)
    else:
        database.initialize()

    store = SessionStore(database, clock=clock)
    manager = SessionManager(database, store)
    sweeper = ExpirySweeper(store, interval=app_settings.sweep_interval_seconds)

    if not app_settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_sweeper:
            sweeper.start()
        try:
            yield
        finally:
            await sweeper.stop()

    app = FastAPI(
        title="Session Counter",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.database = database
    app.state.session_store = store
    app.state.session_manager = manager
    app.state.sweeper = sweeper

    templates = build_templates()
    register_exception_handlers(app, templates)
    register_ui_routes(app, manager, settings=app_settings, templates=templates)

    app.add_middleware(
        AuthGateMiddleware,
        manager=manager,
        render_error=lambda request, exc: render_error_page(templates, request, exc),
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            access_logger.info(
                "%s %s %s %.3f ms",
                request.method,
                request.url.path,
                status_code,
                elapsed_ms,
            )

    return app


__all__ = ["create_app"]
