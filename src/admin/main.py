"""Admin Gateway - FastAPI Application.

HTTP control surface for the OpenPact administrator:
- First-run setup and login
- Session refresh (refresh cookie → access token)
- Secrets, scripts and configuration

Routes under ``/api/auth/*`` and ``/api/session`` are refresh-exempt; all
other protected routes answer an expired access token with
``401 {"error": "token_expired"}`` so clients can refresh and retry.
"""

import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from shared.config import ConfigError, ServerConfig, get_settings
from shared.logging import get_logger, setup_logging
from shared.models import AccessStatus, TokenClaims, TokenPair
from shared.secrets import (
    InvalidSecret,
    SecretEntry,
    SecretExists,
    SecretNotFound,
    SecretStore,
    SecretStoreError,
)
from auth.errors import AuthError, RefreshFailed
from auth.tokens import TokenAuthority
from auth.users import Credentials, UserError, UserStore, WeakPassword, validate_password
from tools.base import ToolError
from tools.scripts import ScriptInfo, list_scripts, load_script

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)

VERSION = "0.1.0"

REFRESH_COOKIE = "refresh"
REFRESH_COOKIE_PATH = "/api/session"
ACCESS_COOKIE = "access_token"


# Request/Response Models
class SetupRequest(BaseModel):
    """First-run account creation."""
    username: str
    password: str = Field(repr=False)
    confirm_password: str = Field(repr=False)


class LogoutRequest(BaseModel):
    """Optional explicit refresh token to revoke on logout."""
    refresh_token: Optional[str] = Field(default=None, repr=False)


class SessionResponse(BaseModel):
    """Access token handed to the client; the refresh token stays in a cookie."""
    access_token: str
    token_type: str = "bearer"
    expires_at: str
    username: str


class SecretCreateRequest(BaseModel):
    name: str
    value: str = Field(repr=False)


class SecretUpdateRequest(BaseModel):
    value: str = Field(repr=False)


class SecretListResponse(BaseModel):
    secrets: list[SecretEntry]
    count: int


class ScriptListResponse(BaseModel):
    scripts: list[ScriptInfo]
    count: int


class APIError(Exception):
    """Rendered as ``{"error": code, "message": message}``."""

    def __init__(self, status_code: int, error: str, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error
        self.message = message


@dataclass
class AdminState:
    """Per-process gateway collaborators."""
    config: ServerConfig
    users: UserStore
    authority: TokenAuthority
    secrets: SecretStore


def build_state(config: ServerConfig, bcrypt_rounds: int = 12) -> AdminState:
    """Create the workspace layout and the stores the gateway needs."""
    config.ensure_dirs()
    users = UserStore(config.data_dir, rounds=bcrypt_rounds)
    return AdminState(
        config=config,
        users=users,
        authority=TokenAuthority.from_config(config, users),
        secrets=SecretStore(config.data_dir),
    )


def error_body(error: str, message: str) -> dict[str, str]:
    return {"error": error, "message": message}


# ----------------------------------------------------------------------
# Cookies
# ----------------------------------------------------------------------

def set_refresh_cookie(response: Response, pair: TokenPair, config: ServerConfig) -> None:
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=pair.refresh_token,
        path=REFRESH_COOKIE_PATH,
        max_age=int(config.refresh_expiry.total_seconds()),
        httponly=True,
        secure=config.secure_cookies,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response, config: ServerConfig) -> None:
    response.delete_cookie(
        key=REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=config.secure_cookies,
        samesite="strict",
    )


def session_response(pair: TokenPair, username: str) -> SessionResponse:
    return SessionResponse(
        access_token=pair.access_token,
        expires_at=pair.access_expiry.isoformat(),
        username=username,
    )


# ----------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------

def get_state(request: Request) -> AdminState:
    state: Optional[AdminState] = getattr(request.app.state, "admin", None)
    if state is None:
        raise APIError(status.HTTP_503_SERVICE_UNAVAILABLE, "not_ready", "Server not initialized")
    return state


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    state: AdminState = Depends(get_state),
) -> TokenClaims:
    """Dependency resolving the bearer token (header, then cookie) to its claims."""
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise APIError(status.HTTP_401_UNAUTHORIZED, "not_authenticated", "Authentication required")

    check = state.authority.validate_access(token)
    if check.status == AccessStatus.EXPIRED:
        raise APIError(status.HTTP_401_UNAUTHORIZED, "token_expired", "Access token expired")
    if not check.valid or check.claims is None:
        raise APIError(status.HTTP_401_UNAUTHORIZED, "invalid_token", "Invalid access token")
    return check.claims


# ----------------------------------------------------------------------
# Public routes
# ----------------------------------------------------------------------

public = APIRouter(prefix="/api", tags=["System"])


@public.get("/version")
async def version() -> dict[str, str]:
    return {"name": "openpact", "version": VERSION}


@public.get("/health")
async def health_check(state: AdminState = Depends(get_state)) -> dict[str, Any]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": VERSION,
        "setup_required": not state.users.has_users(),
    }


@public.get("/setup/status")
async def setup_status(state: AdminState = Depends(get_state)) -> dict[str, Any]:
    required = not state.users.has_users()
    return {"setup_required": required, "setup_step": "account" if required else "complete"}


@public.post("/setup", response_model=SessionResponse)
async def setup(body: SetupRequest, response: Response, state: AdminState = Depends(get_state)):
    """
    Create the administrator account on first run and log it in.

    Refused once any account exists.
    """
    if state.users.has_users():
        raise APIError(status.HTTP_403_FORBIDDEN, "setup_complete", "Setup has already been completed")

    try:
        validate_password(body.password, body.confirm_password)
        user = await run_in_threadpool(state.users.create, body.username, body.password)
    except WeakPassword as e:
        raise APIError(status.HTTP_400_BAD_REQUEST, "weak_password", str(e))
    except UserError as e:
        raise APIError(status.HTTP_400_BAD_REQUEST, "invalid_username", str(e))

    pair = state.authority.issue_tokens(user.username)
    set_refresh_cookie(response, pair, state.config)
    logger.info("Setup completed", username=user.username)
    return session_response(pair, user.username)


# ----------------------------------------------------------------------
# Refresh-exempt routes
# ----------------------------------------------------------------------

session_routes = APIRouter(prefix="/api", tags=["Session"])


@session_routes.post("/auth/login", response_model=SessionResponse)
async def login(body: Credentials, response: Response, state: AdminState = Depends(get_state)):
    try:
        pair = await run_in_threadpool(state.authority.issue_initial_tokens, body)
    except AuthError:
        logger.warning("Login failed", username=body.username)
        raise APIError(status.HTTP_401_UNAUTHORIZED, "invalid_credentials", "Invalid username or password")

    set_refresh_cookie(response, pair, state.config)
    return session_response(pair, body.username)


@session_routes.post("/auth/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    request: Request,
    body: Optional[LogoutRequest] = None,
    state: AdminState = Depends(get_state),
) -> Response:
    """Revoke the refresh token (body or cookie) and clear the cookie."""
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if token:
        state.authority.revoke(token)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    clear_refresh_cookie(response, state.config)
    return response


@session_routes.get("/session", response_model=SessionResponse)
async def session(request: Request, response: Response, state: AdminState = Depends(get_state)):
    """Exchange the refresh cookie for an access token, rotating the cookie."""
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise APIError(status.HTTP_401_UNAUTHORIZED, "no_refresh_token", "No refresh token provided")

    try:
        pair = await state.authority.refresh_session(token)
    except RefreshFailed as e:
        logger.info("Session refresh rejected", reason=str(e))
        failed = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=error_body("invalid_refresh_token", "Invalid or expired refresh token"),
        )
        clear_refresh_cookie(failed, state.config)
        return failed

    username = state.authority.subject_of(pair.access_token) or ""
    set_refresh_cookie(response, pair, state.config)
    return session_response(pair, username)


# ----------------------------------------------------------------------
# Protected routes
# ----------------------------------------------------------------------

protected = APIRouter(prefix="/api", dependencies=[Depends(get_current_user)])


@protected.get("/auth/me", tags=["Session"])
async def me(user: TokenClaims = Depends(get_current_user)) -> dict[str, str]:
    return {"username": user.sub, "role": "admin"}


@protected.get("/secrets", response_model=SecretListResponse, tags=["Secrets"])
async def list_secrets(state: AdminState = Depends(get_state)):
    """List secret names and timestamps. Values are never returned."""
    entries = await state.secrets.list()
    return SecretListResponse(secrets=entries, count=len(entries))


@protected.post("/secrets", response_model=SecretEntry, status_code=status.HTTP_201_CREATED, tags=["Secrets"])
async def create_secret(body: SecretCreateRequest, state: AdminState = Depends(get_state)):
    return await state.secrets.create(body.name, body.value)


@protected.put("/secrets/{name}", response_model=SecretEntry, tags=["Secrets"])
async def update_secret(name: str, body: SecretUpdateRequest, state: AdminState = Depends(get_state)):
    return await state.secrets.update(name, body.value)


@protected.delete("/secrets/{name}", status_code=status.HTTP_204_NO_CONTENT, tags=["Secrets"])
async def delete_secret(name: str, state: AdminState = Depends(get_state)) -> Response:
    await state.secrets.delete(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@protected.get("/scripts", response_model=ScriptListResponse, tags=["Scripts"])
def get_scripts(state: AdminState = Depends(get_state)):
    scripts = list_scripts(state.config.scripts_dir)
    return ScriptListResponse(scripts=scripts, count=len(scripts))


@protected.get("/scripts/{name}", response_model=ScriptInfo, tags=["Scripts"])
def get_script(name: str, state: AdminState = Depends(get_state)):
    try:
        return load_script(state.config.scripts_dir, name, include_source=True)
    except ToolError as e:
        raise APIError(status.HTTP_404_NOT_FOUND, "script_not_found", str(e))


@protected.get("/config", tags=["System"])
async def get_config(state: AdminState = Depends(get_state)) -> dict[str, Any]:
    """Effective configuration, without credentials."""
    config = state.config
    return {
        "workspace_path": str(config.workspace_path),
        "data_dir": str(config.data_dir),
        "scripts_dir": str(config.scripts_dir),
        "ai_data_dir": str(config.ai_data_dir),
        "features": sorted(config.features),
        "bind_address": config.bind_address,
        "dev_mode": config.dev_mode,
        "access_expiry_seconds": int(config.access_expiry.total_seconds()),
        "refresh_expiry_seconds": int(config.refresh_expiry.total_seconds()),
        "max_concurrency": config.max_concurrency,
        "audit_enabled": config.audit_enabled,
    }


# ----------------------------------------------------------------------
# Application
# ----------------------------------------------------------------------

_SECRET_ERRORS: dict[type[SecretStoreError], tuple[int, str]] = {
    SecretNotFound: (status.HTTP_404_NOT_FOUND, "secret_not_found"),
    SecretExists: (status.HTTP_409_CONFLICT, "secret_exists"),
    InvalidSecret: (status.HTTP_400_BAD_REQUEST, "invalid_secret"),
}


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.error, exc.message), headers=headers)


async def secret_error_handler(request: Request, exc: SecretStoreError) -> JSONResponse:
    status_code, error = _SECRET_ERRORS.get(
        type(exc), (status.HTTP_500_INTERNAL_SERVER_ERROR, "secret_store_error")
    )
    if status_code >= 500:
        logger.error("Secret store failure", error=str(exc))
    return JSONResponse(status_code=status_code, content=error_body(error, str(exc)))


def create_app(config: Optional[ServerConfig] = None, bcrypt_rounds: int = 12) -> FastAPI:
    """
    Build the gateway.

    With an explicit ``config`` the stores are created immediately;
    otherwise the lifespan loads process settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        if getattr(app.state, "admin", None) is None:
            app.state.admin = build_state(get_settings(), bcrypt_rounds)
        logger.info(
            "Admin gateway started",
            bind=app.state.admin.config.bind_address,
            secure_cookies=app.state.admin.config.secure_cookies,
        )
        yield
        logger.info("Shutting down admin gateway")

    app = FastAPI(
        title="OpenPact Admin",
        description="Administration API for the OpenPact gateway",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.admin = build_state(config, bcrypt_rounds) if config is not None else None

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(SecretStoreError, secret_error_handler)

    app.include_router(public)
    app.include_router(session_routes)
    app.include_router(protected)
    return app


def parse_bind_address(bind_address: str) -> tuple[str, int]:
    host, _, port = bind_address.rpartition(":")
    if not host or not port.isdigit():
        raise ConfigError(f"invalid bind address: {bind_address!r}")
    return host, int(port)


def main() -> None:
    """Run the admin gateway."""
    import uvicorn

    try:
        settings = get_settings()
        host, port = parse_bind_address(settings.bind_address)
    except ConfigError as e:
        setup_logging(stream=sys.stderr)
        logger.error("Invalid configuration", error=str(e))
        sys.exit(2)

    setup_logging(settings.log_level, json_output=settings.json_logs)

    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
