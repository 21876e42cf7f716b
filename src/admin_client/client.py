"""Admin API client.

Async client for the OpenPact admin gateway. Holds the access token in
memory and the refresh token in the HTTP cookie jar. Any 401 from a
protected route drives a single-flight session refresh followed by a
bounded retry of the original call.
"""

from typing import Any, Optional

import httpx
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.logging import get_logger
from auth.coordinator import RefreshCoordinator
from auth.errors import AuthError, RefreshFailed

logger = get_logger(__name__)

REFRESH_COOKIE = "refresh"

# Calls to these never trigger a refresh, so a failing refresh cannot loop.
EXEMPT_PREFIXES = ("/api/auth/", "/api/session")


class AdminClientError(Exception):
    """Base exception for admin client errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, error: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class AdminConnectionError(AdminClientError):
    """Connection to the admin gateway failed."""
    pass


class Session(BaseModel):
    """Access credential returned by login and session refresh."""
    access_token: str
    token_type: str = "bearer"
    expires_at: str
    username: str


def is_exempt(path: str) -> bool:
    return path.startswith(EXEMPT_PREFIXES)


class AdminClient:
    """
    Client for the admin gateway.

    Provides methods for:
    - Login, logout and transparent session refresh
    - Secrets, scripts and configuration
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout: float = 30.0,
        max_auth_retries: int = 1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_auth_retries = max_auth_retries
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self._session: Optional[Session] = None
        self.coordinator: RefreshCoordinator[Session] = RefreshCoordinator(
            self._refresh_session, name="admin-client"
        )

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def username(self) -> Optional[str]:
        return self._session.username if self._session else None

    @property
    def authenticated(self) -> bool:
        return self._session is not None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "AdminClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> dict[str, str]:
        if self._session is None:
            return {}
        return {"Authorization": f"Bearer {self._session.access_token}"}

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _send_idempotent(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, path, headers=self._headers(), **kwargs)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send one request with the current access token."""
        try:
            if method.upper() == "GET":
                return await self._send_idempotent(method, path, **kwargs)
            return await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise AdminConnectionError(f"Cannot reach admin gateway: {e}") from e

    def _clear_session(self) -> None:
        self._session = None
        self._client.cookies.clear()

    async def _refresh_session(self) -> Session:
        """The underlying refresh call: exchange the refresh cookie."""
        response = await self._send("GET", "/api/session")
        if response.status_code != 200:
            raise RefreshFailed(_error_code(response) or f"session refresh failed ({response.status_code})")
        self._session = Session(**response.json())
        return self._session

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request, refreshing the session on 401 for protected routes.

        Raises:
            RefreshFailed: The session could not be refreshed and was cleared
            AuthError: Still unauthorized after the allowed retries
            AdminConnectionError: The gateway is unreachable
        """
        if is_exempt(path):
            return await self._send(method, path, **kwargs)

        try:
            return await self.coordinator.call_with_refresh(
                lambda: self._send(method, path, **kwargs),
                is_expired=lambda response: response.status_code == 401,
                max_retries=self.max_auth_retries,
            )
        except RefreshFailed:
            logger.warning("Session expired, re-authentication required", path=path)
            self._clear_session()
            raise

    async def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.request(method, path, **kwargs)
        _raise_for_error(response)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def login(self, username: str, password: str) -> Session:
        """
        Log in and hold the returned access token.

        Raises:
            AuthError: If the credentials are rejected
        """
        response = await self._send("POST", "/api/auth/login", json={"username": username, "password": password})
        if response.status_code == 401:
            raise AuthError("Invalid username or password")
        _raise_for_error(response)
        self._session = Session(**response.json())
        logger.info("Logged in", username=self._session.username)
        return self._session

    async def setup(self, username: str, password: str) -> Session:
        """Create the first administrator account and log in."""
        response = await self._send(
            "POST",
            "/api/setup",
            json={"username": username, "password": password, "confirm_password": password},
        )
        _raise_for_error(response)
        self._session = Session(**response.json())
        return self._session

    async def logout(self) -> None:
        refresh_token = self._client.cookies.get(REFRESH_COOKIE)
        try:
            response = await self._send(
                "POST",
                "/api/auth/logout",
                json={"refresh_token": refresh_token} if refresh_token else None,
            )
            _raise_for_error(response)
        finally:
            self._clear_session()

    async def me(self) -> dict[str, Any]:
        return await self._json("GET", "/api/auth/me")

    # ------------------------------------------------------------------
    # Data endpoints
    # ------------------------------------------------------------------

    async def version(self) -> dict[str, Any]:
        return await self._json("GET", "/api/version")

    async def setup_status(self) -> dict[str, Any]:
        return await self._json("GET", "/api/setup/status")

    async def list_secrets(self) -> list[dict[str, Any]]:
        data = await self._json("GET", "/api/secrets")
        return data.get("secrets", [])

    async def create_secret(self, name: str, value: str) -> dict[str, Any]:
        return await self._json("POST", "/api/secrets", json={"name": name, "value": value})

    async def update_secret(self, name: str, value: str) -> dict[str, Any]:
        return await self._json("PUT", f"/api/secrets/{name}", json={"value": value})

    async def delete_secret(self, name: str) -> None:
        await self._json("DELETE", f"/api/secrets/{name}")

    async def list_scripts(self) -> list[dict[str, Any]]:
        data = await self._json("GET", "/api/scripts")
        return data.get("scripts", [])

    async def get_script(self, name: str) -> dict[str, Any]:
        return await self._json("GET", f"/api/scripts/{name}")

    async def get_config(self) -> dict[str, Any]:
        return await self._json("GET", "/api/config")


def _error_code(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("error") if isinstance(body, dict) else None


def _raise_for_error(response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    error = _error_code(response)
    try:
        message = response.json().get("message") or response.text
    except (ValueError, AttributeError):
        message = response.text
    raise AdminClientError(
        f"{response.request.method} {response.request.url.path} failed ({response.status_code}): {message}",
        status_code=response.status_code,
        error=error,
    )
