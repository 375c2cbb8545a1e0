"""HTML routes for registration, login, the visit counter, and logout."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import anyio
from fastapi import APIRouter, FastAPI, Form, Request, Response, status
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .errors import StorageError
from .gate import HOME_PATH, LOGIN_PATH, SESSION_COOKIE_NAME
from .models import AuthFailure, RegistrationRejected, Session
from .sessions import SessionManager

logger = logging.getLogger("counterauth.web")

BASE_DIR = Path(__file__).resolve().parent
TEMPLATE_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

LOGIN_ERROR = "Invalid username or password."
REGISTER_ERROR = "Registration failed. Choose another username and make sure both passwords match."


def build_templates() -> Jinja2Templates:
    return Jinja2Templates(directory=str(TEMPLATE_DIR))


def render_error_page(templates: Jinja2Templates, request: Request, exc: Exception) -> Response:
    """Render the 500 page with the raw error message."""

    return templates.TemplateResponse(
        request,
        "500.html",
        {"url": request.url.path, "err": str(exc)},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def register_exception_handlers(app: FastAPI, templates: Jinja2Templates) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            return templates.TemplateResponse(
                request,
                "404.html",
                {"url": request.url.path},
                status_code=status.HTTP_404_NOT_FOUND,
            )
        return await http_exception_handler(request, exc)

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.error("Storage failure while handling %s: %s", request.url.path, exc)
        return render_error_page(templates, request, exc)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error while handling %s", request.url.path)
        return render_error_page(templates, request, exc)


def register_ui_routes(
    app: FastAPI,
    manager: SessionManager,
    *,
    settings: Settings,
    templates: Jinja2Templates,
) -> None:
    """Expose the HTML interface on the provided FastAPI app."""

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    router = APIRouter(include_in_schema=False)

    def _render(
        request: Request,
        template: str,
        status_code: int = status.HTTP_200_OK,
        **context: Any,
    ) -> HTMLResponse:
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    def _redirect(path: str) -> RedirectResponse:
        return RedirectResponse(path, status_code=status.HTTP_303_SEE_OTHER)

    def _current_session(request: Request) -> Optional[Session]:
        return getattr(request.state, "session", None)

    def _current_token(request: Request) -> Optional[str]:
        return getattr(request.state, "session_token", None) or request.cookies.get(
            SESSION_COOKIE_NAME
        )

    def _issue_session_cookie(response: Response, session: Session) -> None:
        response.set_cookie(
            SESSION_COOKIE_NAME,
            session.id,
            max_age=session.max_age_seconds,
            secure=settings.secure_cookies,
            httponly=True,
            samesite="strict",
            path="/",
        )

    def _clear_session_cookie(response: Response) -> None:
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")

    @router.get("/", response_class=HTMLResponse, name="landing")
    async def landing(request: Request):
        return _render(request, "index.html")

    @router.get("/login", response_class=HTMLResponse, name="login_form")
    async def login_form(request: Request):
        return _render(
            request,
            "login.html",
            default_max_age=settings.default_session_minutes,
            max_max_age=settings.max_session_minutes,
        )

    @router.post("/login", name="login_submit")
    async def login_submit(
        request: Request,
        username: str = Form(""),
        password: str = Form(""),
        maxAge: str = Form(""),
    ):
        username = username.strip()
        if not username or not password:
            return _render(
                request,
                "login.html",
                username=username,
                error=LOGIN_ERROR,
                default_max_age=settings.default_session_minutes,
                max_max_age=settings.max_session_minutes,
            )

        minutes = settings.session_minutes(maxAge)
        result = await anyio.to_thread.run_sync(manager.login, username, password, minutes)
        if isinstance(result, AuthFailure):
            return _render(
                request,
                "login.html",
                username=username,
                error=LOGIN_ERROR,
                default_max_age=settings.default_session_minutes,
                max_max_age=settings.max_session_minutes,
            )

        existing_token = _current_token(request)
        if existing_token and existing_token != result.id:
            await anyio.to_thread.run_sync(manager.logout, existing_token)

        response = _redirect(HOME_PATH)
        _issue_session_cookie(response, result)
        return response

    @router.get("/logout", name="logout")
    async def logout(request: Request):
        token = _current_token(request)
        if token:
            await anyio.to_thread.run_sync(manager.logout, token)
        response = _redirect(LOGIN_PATH)
        _clear_session_cookie(response)
        return response

    @router.get("/register", response_class=HTMLResponse, name="register_form")
    async def register_form(request: Request):
        return _render(request, "register.html")

    @router.post("/register", name="register_submit")
    async def register_submit(
        request: Request,
        username: str = Form(""),
        password: str = Form(""),
        confirmPassword: str = Form(""),
    ):
        username = username.strip()
        result = await anyio.to_thread.run_sync(
            manager.register, username, password, confirmPassword
        )
        if isinstance(result, RegistrationRejected):
            logger.info("Registration rejected for %r: %s", username, result.reason.value)
            return _render(request, "register.html", username=username, error=REGISTER_ERROR)
        return _redirect(LOGIN_PATH)

    @router.get("/home", response_class=HTMLResponse, name="home")
    async def home(request: Request):
        session = _current_session(request)
        if session is None:
            return _redirect(LOGIN_PATH)

        counter = await anyio.to_thread.run_sync(manager.record_visit, session.id)
        if counter is None:
            # Expired between the gate lookup and the increment.
            response = _redirect(LOGIN_PATH)
            _clear_session_cookie(response)
            return response

        return _render(
            request,
            "home.html",
            username=session.user.username,
            counter=counter,
            maxAge=session.max_age_seconds,
            remaining=session.remaining_seconds(manager.store.now()),
        )

    app.include_router(router)


__all__ = [
    "build_templates",
    "register_exception_handlers",
    "register_ui_routes",
    "render_error_page",
]
