"""Browser-facing user management interface."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from fastapi import FastAPI, Form, HTTPException, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.datastructures import URL
from starlette.middleware.sessions import SessionMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .catalog import load_catalog
from .config import Settings, load_settings
from .database import Database
from .errors import InvalidSetupToken, UserNotFound, ValidationFailed
from .listing import PER_PAGE_CHOICES
from .models import Role, User
from .security import PASSWORD_MIN_LENGTH
from .users import UserService

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

INDEX_COMPONENT = "Users/UserIndexServerSide"
APPEARANCE_COOKIE = "appearance"
APPEARANCE_CHOICES = {"light", "dark", "system"}

logger = logging.getLogger("useradmin.web")

SetupNotifier = Callable[[User, str], None]


def _log_setup_link(user: User, url: str) -> None:
    logger.info("Password setup link for user %s: %s", user.id, url)


def _wants_json(request: Request) -> bool:
    return "application/json" in request.headers.get("accept", "")


async def _read_payload(request: Request) -> Dict[str, Any]:
    """Return the submitted fields from a JSON or form-encoded body."""

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    form = await request.form()
    payload: Dict[str, Any] = {}
    for key in form.keys():
        values = form.getlist(key)
        if key.endswith("[]"):
            payload[key[:-2]] = list(values)
        else:
            payload[key] = values[-1]
    return payload


def _json_safe(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in payload.items()
        if isinstance(value, (str, int, float, bool, list)) or value is None
    }


def create_app(
    *,
    database: Optional[Database] = None,
    settings: Optional[Settings] = None,
    initialize_database: bool = False,
    password_setup_notifier: Optional[SetupNotifier] = None,
) -> FastAPI:
    """Create the user management web application."""

    if settings is None:
        settings = load_settings()

    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    elif initialize_database:
        database.initialize()

    if not settings.session_secret:
        raise RuntimeError(
            "USERADMIN_SESSION_SECRET must be configured to use the management interface"
        )

    catalog = load_catalog(settings.locale)
    service = UserService(database, catalog, setup_ttl=settings.password_setup_ttl)

    app = FastAPI(
        title=settings.app_name,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.trusted_proxies)
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie="useradmin_session",
        https_only=settings.session_secure,
        same_site="lax",
        max_age=settings.session_max_age,
    )
    app.state.database = database
    app.state.settings = settings
    app.state.users = service
    app.state.password_setup_notifier = password_setup_notifier or _log_setup_link

    templates = Jinja2Templates(directory=str(TEMPLATE_DIR))
    templates.env.globals["app_name"] = settings.app_name

    def _flash(request: Request, message: str, *, category: str = "info") -> None:
        messages = request.session.get("flash_messages")
        if not isinstance(messages, list):
            messages = []
        messages.append({"message": message, "category": category})
        request.session["flash_messages"] = messages

    def _consume_flash(request: Request) -> List[Dict[str, str]]:
        messages = request.session.pop("flash_messages", [])
        if isinstance(messages, list):
            return messages
        return []

    def _appearance(request: Request) -> str:
        value = request.cookies.get(APPEARANCE_COOKIE, "system")
        return value if value in APPEARANCE_CHOICES else "system"

    def _render(
        request: Request,
        template: str,
        context: Dict[str, Any],
        *,
        status_code: int = status.HTTP_200_OK,
    ) -> HTMLResponse:
        context.setdefault("appearance", _appearance(request))
        return templates.TemplateResponse(request, template, context, status_code=status_code)

    def _get_current_user(request: Request) -> Optional[User]:
        user_id = request.session.get("user_id")
        if not user_id:
            return None
        try:
            user = database.get_user(int(user_id))
        except (TypeError, ValueError):
            user = None
        if user is None:
            request.session.pop("user_id", None)
        return user

    def _redirect_to_login(request: Request) -> RedirectResponse:
        return RedirectResponse(
            request.url_for("show_login"),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    def _redirect_back(request: Request) -> RedirectResponse:
        referer = request.headers.get("referer")
        if referer:
            target = URL(referer)
            if target.netloc == request.url.netloc:
                return RedirectResponse(str(target), status_code=status.HTTP_303_SEE_OTHER)
        return RedirectResponse(
            request.url_for("users_index"),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    def _authorize(request: Request) -> Tuple[Optional[User], Optional[Response]]:
        user = _get_current_user(request)
        if user is None:
            if _wants_json(request):
                return None, JSONResponse(
                    {"detail": "Unauthenticated."},
                    status_code=status.HTTP_401_UNAUTHORIZED,
                )
            return None, _redirect_to_login(request)
        if not user.is_admin:
            message = catalog.get("auth.forbidden")
            if _wants_json(request):
                return None, JSONResponse({"detail": message}, status_code=status.HTTP_403_FORBIDDEN)
            return None, _render(
                request,
                "error.html",
                {"title": "Forbidden", "message": message, "user": user},
                status_code=status.HTTP_403_FORBIDDEN,
            )
        return user, None

    def _validation_failed(
        request: Request,
        exc: ValidationFailed,
        submitted: Dict[str, Any],
    ) -> Response:
        if _wants_json(request):
            return JSONResponse(
                {"message": catalog.get("validation.failed"), "errors": exc.errors},
                status_code=422,
            )
        request.session["errors"] = exc.errors
        request.session["old"] = _json_safe(submitted)
        return _redirect_back(request)

    def _success(request: Request, key: str) -> RedirectResponse:
        _flash(request, catalog.get(key), category="success")
        return _redirect_back(request)

    def _setup_url(request: Request, token: str) -> str:
        if settings.public_url:
            path = request.app.url_path_for("password_setup", token=token)
            return f"{settings.public_url}{path}"
        return str(request.url_for("password_setup", token=token))

    def _deliver_setup_link(request: Request, user: User, token: str) -> None:
        notifier = getattr(app.state, "password_setup_notifier", None) or _log_setup_link
        notifier(user, _setup_url(request, token))

    def _paginator(request: Request, page) -> Dict[str, Any]:
        def page_url(number: int) -> str:
            return str(request.url.include_query_params(page=number))

        return {
            "data": [user.to_public_dict() for user in page.users],
            "current_page": page.page,
            "last_page": page.last_page,
            "per_page": page.per_page,
            "total": page.total,
            "from": page.first_item,
            "to": page.last_item,
            "next_page_url": page_url(page.page + 1) if page.page < page.last_page else None,
            "prev_page_url": page_url(page.page - 1) if page.page > 1 else None,
        }

    @app.get("/", response_class=HTMLResponse)
    async def root(request: Request):
        user = _get_current_user(request)
        if user is None:
            return _redirect_to_login(request)
        return RedirectResponse(
            request.url_for("users_index"),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.get("/login", response_class=HTMLResponse, name="show_login")
    async def login_form(request: Request):
        user = _get_current_user(request)
        if user is not None:
            return RedirectResponse(
                request.url_for("users_index"),
                status_code=status.HTTP_303_SEE_OTHER,
            )
        error = request.session.pop("login_error", None)
        return _render(
            request,
            "login.html",
            {"title": "Sign in", "error": error, "messages": _consume_flash(request)},
        )

    @app.post("/login", name="process_login")
    async def process_login(request: Request, email: str = Form(...), password: str = Form(...)):
        user = database.authenticate_user(email, password)
        if user is None:
            logger.warning("Failed login attempt for %s", email.strip().lower())
            request.session["login_error"] = catalog.get("auth.invalid_credentials")
            return RedirectResponse(
                request.url_for("show_login"),
                status_code=status.HTTP_303_SEE_OTHER,
            )

        request.session.clear()
        request.session["user_id"] = user.id
        logger.info("User %s signed in", user.id)
        return RedirectResponse(
            request.url_for("users_index"),
            status_code=status.HTTP_303_SEE_OTHER,
        )

    @app.get("/logout", name="logout")
    async def logout(request: Request):
        request.session.clear()
        return _redirect_to_login(request)

    @app.get("/users", response_class=HTMLResponse, name="users_index")
    async def users_index(request: Request):
        user, denied = _authorize(request)
        if denied is not None:
            return denied

        query, page = service.list(request.query_params)
        payload = {
            "component": INDEX_COMPONENT,
            "url": str(request.url),
            "props": {
                "users": _paginator(request, page),
                "perPage": page.per_page,
                "totalRecords": page.total,
                "filters": query.to_filters(),
                "perPageOptions": list(PER_PAGE_CHOICES),
                "roles": [role.value for role in Role],
                "flash": _consume_flash(request),
                "errors": request.session.pop("errors", {}),
                "old": request.session.pop("old", {}),
                "auth": {"user": user.to_public_dict()},
            },
        }

        if _wants_json(request):
            return JSONResponse(payload)
        return _render(request, "app.html", {"title": "Users", "page": payload})

    @app.post("/users", name="users_store")
    async def users_store(request: Request):
        _, denied = _authorize(request)
        if denied is not None:
            return denied

        submitted = await _read_payload(request)
        try:
            created = service.create(submitted)
        except ValidationFailed as exc:
            return _validation_failed(request, exc, submitted)

        _deliver_setup_link(request, created.user, created.setup_token)
        return _success(request, "flash.user_created")

    @app.api_route(
        "/users/bulk-delete",
        methods=["POST", "DELETE"],
        name="users_bulk_delete",
    )
    async def users_bulk_delete(request: Request):
        _, denied = _authorize(request)
        if denied is not None:
            return denied

        submitted = await _read_payload(request)
        try:
            service.bulk_delete(submitted)
        except ValidationFailed as exc:
            return _validation_failed(request, exc, submitted)

        return _success(request, "flash.users_bulk_deleted")

    @app.api_route(
        "/users/{user_id:int}",
        methods=["PUT", "PATCH"],
        name="users_update",
    )
    async def users_update(request: Request, user_id: int):
        _, denied = _authorize(request)
        if denied is not None:
            return denied

        submitted = await _read_payload(request)
        try:
            service.update(user_id, submitted)
        except UserNotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        except ValidationFailed as exc:
            return _validation_failed(request, exc, submitted)

        return _success(request, "flash.user_updated")

    @app.delete("/users/{user_id:int}", name="users_destroy")
    async def users_destroy(request: Request, user_id: int):
        _, denied = _authorize(request)
        if denied is not None:
            return denied

        try:
            service.delete(user_id)
        except UserNotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        return _success(request, "flash.user_deleted")

    @app.post("/users/{user_id:int}/setup-link", name="users_setup_link")
    async def users_setup_link(request: Request, user_id: int):
        _, denied = _authorize(request)
        if denied is not None:
            return denied

        try:
            target = service.get(user_id)
        except UserNotFound:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        token = service.issue_setup_token(target.id)
        _deliver_setup_link(request, target, token)
        return _success(request, "flash.setup_link_sent")

    @app.get("/password/setup/{token}", response_class=HTMLResponse, name="password_setup")
    async def password_setup_form(request: Request, token: str):
        try:
            owner = database.get_user_for_setup_token(token)
        except InvalidSetupToken:
            return _render(
                request,
                "password_setup.html",
                {"title": "Set password", "error": catalog.get("password.invalid_token"), "owner": None},
                status_code=status.HTTP_400_BAD_REQUEST,
            )
        return _render(
            request,
            "password_setup.html",
            {
                "title": "Set password",
                "owner": owner,
                "token": token,
                "password_min_length": PASSWORD_MIN_LENGTH,
            },
        )

    @app.post("/password/setup/{token}", name="complete_password_setup")
    async def complete_password_setup(
        request: Request,
        token: str,
        password: str = Form(...),
        password_confirmation: str = Form(...),
    ):
        error: Optional[str] = None
        if len(password) < PASSWORD_MIN_LENGTH:
            error = catalog.get("password.too_short", min=PASSWORD_MIN_LENGTH)
        elif password != password_confirmation:
            error = catalog.get("password.mismatch")

        if error is None:
            try:
                owner = database.complete_password_setup(token, password)
            except InvalidSetupToken:
                error = catalog.get("password.invalid_token")
            else:
                logger.info("User %s completed password setup", owner.id)
                _flash(request, catalog.get("flash.password_set"), category="success")
                return _redirect_to_login(request)

        try:
            owner = database.get_user_for_setup_token(token)
        except InvalidSetupToken:
            owner = None
        return _render(
            request,
            "password_setup.html",
            {
                "title": "Set password",
                "owner": owner,
                "token": token if owner is not None else None,
                "error": error,
                "password_min_length": PASSWORD_MIN_LENGTH,
            },
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    return app


__all__ = ["INDEX_COMPONENT", "create_app"]
