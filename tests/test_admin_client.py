"""Tests for the admin API client."""

import asyncio
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from admin.main import create_app
from admin_client import AdminClient, AdminClientError, AdminConnectionError, Session
from auth.errors import AuthError, RefreshFailed
from auth.tokens import TokenAuthority

from conftest import TEST_JWT_SECRET

USERNAME = "admin"
PASSWORD = "correct-horse-battery-staple"
BASE_URL = "http://testserver"


class CountingTransport(httpx.ASGITransport):
    """ASGI transport that counts session refreshes and slows them down."""

    def __init__(self, app, refresh_delay: float = 0.1) -> None:
        super().__init__(app=app)
        self.refresh_delay = refresh_delay
        self.session_calls = 0

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/session":
            self.session_calls += 1
            await asyncio.sleep(self.refresh_delay)
        return await super().handle_async_request(request)


def expire(client: AdminClient) -> None:
    """Swap the held access token for an expired one."""
    authority = TokenAuthority(TEST_JWT_SECRET, timedelta(seconds=-10), timedelta(hours=1))
    client._session = client._session.model_copy(
        update={"access_token": authority.issue_tokens(USERNAME).access_token}
    )


@pytest.fixture
def transport(config):
    return CountingTransport(create_app(config, bcrypt_rounds=4))


@pytest_asyncio.fixture
async def admin(transport):
    client = AdminClient(BASE_URL, transport=transport)
    await client.setup(USERNAME, PASSWORD)
    yield client
    await client.close()


class TestAdminClientSession:
    """Tests for login and transparent refresh against the real gateway."""

    @pytest.mark.asyncio
    async def test_setup_and_login(self, transport):
        async with AdminClient(BASE_URL, transport=transport) as client:
            assert (await client.setup_status())["setup_required"] is True
            await client.setup(USERNAME, PASSWORD)
            await client.logout()
            assert not client.authenticated

            session = await client.login(USERNAME, PASSWORD)

            assert isinstance(session, Session)
            assert client.username == USERNAME
            assert (await client.me())["username"] == USERNAME

    @pytest.mark.asyncio
    async def test_login_rejected(self, admin):
        with pytest.raises(AuthError):
            await admin.login(USERNAME, "wrong-password-123")

    @pytest.mark.asyncio
    async def test_expired_token_refreshed_transparently(self, admin, transport):
        await admin.create_secret("API_KEY", "value-123456")
        expire(admin)
        stale = admin.access_token

        secrets = await admin.list_secrets()

        assert [s["name"] for s in secrets] == ["API_KEY"]
        assert admin.access_token != stale
        assert transport.session_calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_expired_calls_refresh_once(self, admin, transport):
        expire(admin)

        results = await asyncio.gather(*(admin.list_secrets() for _ in range(5)))

        assert results == [[]] * 5
        assert transport.session_calls == 1

    @pytest.mark.asyncio
    async def test_refresh_failure_clears_session(self, admin):
        expire(admin)
        admin._client.cookies.clear()

        with pytest.raises(RefreshFailed):
            await admin.list_secrets()

        assert not admin.authenticated

    @pytest.mark.asyncio
    async def test_logout_ends_session(self, admin, transport):
        await admin.logout()

        assert not admin.authenticated
        with pytest.raises(RefreshFailed):
            await admin.list_secrets()
        assert transport.session_calls == 1

    @pytest.mark.asyncio
    async def test_error_mapping(self, admin):
        with pytest.raises(AdminClientError) as exc_info:
            await admin.get_script("missing")

        assert exc_info.value.status_code == 404
        assert exc_info.value.error == "script_not_found"


class TestAdminClientTransport:
    """Tests for retry bounds and connection handling with a mock transport."""

    def session_payload(self) -> dict:
        return {"access_token": "fresh", "expires_at": "2030-01-01T00:00:00+00:00", "username": USERNAME}

    @pytest.mark.asyncio
    async def test_auth_retry_is_bounded(self):
        calls = {"secrets": 0, "session": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/session":
                calls["session"] += 1
                return httpx.Response(200, json=self.session_payload())
            calls["secrets"] += 1
            return httpx.Response(401, json={"error": "token_expired", "message": "expired"})

        async with AdminClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(AuthError) as exc_info:
                await client.list_secrets()

        assert not isinstance(exc_info.value, RefreshFailed)
        assert calls == {"secrets": 2, "session": 1}

    @pytest.mark.asyncio
    async def test_exempt_paths_never_refresh(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(401, json={"error": "token_expired", "message": "expired"})

        async with AdminClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(AdminClientError):
                await client.me()

        assert calls == ["/api/auth/me"]

    @pytest.mark.asyncio
    async def test_get_retried_on_connection_error(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"name": "openpact", "version": "0.1.0"})

        async with AdminClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            assert (await client.version())["name"] == "openpact"

        assert attempts == 3

    @pytest.mark.asyncio
    async def test_post_not_retried(self):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            raise httpx.ConnectError("connection refused", request=request)

        async with AdminClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(AdminConnectionError):
                await client.create_secret("API_KEY", "value")

        assert attempts == 1
