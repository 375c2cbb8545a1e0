"""Per-request authentication gate for the counter application."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Optional

import anyio
from fastapi import Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .errors import StorageError
from .models import Session
from .sessions import SessionManager

logger = logging.getLogger("counterauth.gate")

SESSION_COOKIE_NAME = "session"
LOGIN_PATH = "/login"
HOME_PATH = "/home"

ErrorRenderer = Callable[[Request, Exception], Response]


class RouteAccess(str, Enum):
    OPEN = "open"
    PROTECTED = "protected"
    PUBLIC_ONLY = "public_only"


_READ_METHODS = frozenset({"GET"})
PROTECTED_PATHS = frozenset({HOME_PATH})
PUBLIC_ONLY_PATHS = frozenset({"/", LOGIN_PATH, "/register"})


def classify_route(method: str, path: str) -> RouteAccess:
    if method.upper() not in _READ_METHODS:
        return RouteAccess.OPEN
    if path in PROTECTED_PATHS:
        return RouteAccess.PROTECTED
    if path in PUBLIC_ONLY_PATHS:
        return RouteAccess.PUBLIC_ONLY
    return RouteAccess.OPEN


def evaluate_route(method: str, path: str, session: Optional[Session]) -> Optional[str]:
    """Return the path to redirect to, or ``None`` when the request may proceed."""

    access = classify_route(method, path)
    if access is RouteAccess.PROTECTED and session is None:
        return LOGIN_PATH
    if access is RouteAccess.PUBLIC_ONLY and session is not None:
        return HOME_PATH
    return None


def _sets_session_cookie(response: Response) -> bool:
    prefix = f"{SESSION_COOKIE_NAME}="
    return any(
        value.startswith(prefix) for value in response.headers.getlist("set-cookie")
    )


class AuthGateMiddleware(BaseHTTPMiddleware):
    """Resolve the ``session`` cookie and enforce route access before handlers run.

    The resolved :class:`Session` (or ``None``) is exposed to handlers as
    ``request.state.session``; the raw cookie value as ``request.state.session_token``.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        manager: SessionManager,
        render_error: ErrorRenderer,
    ) -> None:
        super().__init__(app)
        self._manager = manager
        self._render_error = render_error

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        session: Optional[Session] = None
        if token:
            try:
                session = await anyio.to_thread.run_sync(self._manager.resolve, token)
            except StorageError as exc:
                logger.error("Failed to resolve session for %s: %s", request.url.path, exc)
                return self._render_error(request, exc)

        request.state.session = session
        request.state.session_token = token

        target = evaluate_route(request.method, request.url.path, session)
        if target is not None:
            response: Response = RedirectResponse(target, status_code=status.HTTP_303_SEE_OTHER)
        else:
            response = await call_next(request)

        if token and session is None and not _sets_session_cookie(response):
            response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return response


__all__ = [
    "AuthGateMiddleware",
    "HOME_PATH",
    "LOGIN_PATH",
    "RouteAccess",
    "SESSION_COOKIE_NAME",
    "classify_route",
    "evaluate_route",
]
