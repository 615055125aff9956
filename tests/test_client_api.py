"""Tests for ApiClient: bearer attachment and single-flight token refresh."""

import asyncio
import json

import httpx
import pytest

from rankhub.client.api import ApiClient, RefreshState, SessionExpiredError
from rankhub.client.session import SessionManager

BASE_URL = "http://api.test/api/v1"
USER = {"id": 1, "email": "lee@example.com", "role": "user"}


class FakeServer:
    """Accepts one access token; /auth/refresh hands out ``issued_token``."""

    def __init__(self, *, accepted="access-2", issued="access-2", refresh_status=200):
        self.accepted = accepted
        self.issued = issued
        self.refresh_status = refresh_status
        self.refresh_calls = 0
        self.refresh_bodies: list[dict] = []
        self.log: list[tuple[str, str | None, int]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        if path == "/auth/refresh":
            self.refresh_calls += 1
            self.refresh_bodies.append(json.loads(request.content))
            await asyncio.sleep(0.01)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"detail": "Invalid or expired refresh token"})
            return httpx.Response(
                200,
                json={"user": USER, "accessToken": self.issued, "refreshToken": "refresh-2"},
            )
        if path == "/auth/login":
            return httpx.Response(401, json={"detail": "Invalid email or password"})
        if path == "/missing":
            return httpx.Response(404, json={"detail": "Not found"})
        if path == "/broken":
            return httpx.Response(500, json={"detail": "Internal server error"})

        status = 200 if request.headers.get("Authorization") == f"Bearer {self.accepted}" else 401
        self.log.append((path, request.url.params.get("n"), status))
        return httpx.Response(status, json={"path": path})


def _session(access="access-1", refresh="refresh-1") -> SessionManager:
    session = SessionManager()
    session.post_login_actions({"user": USER, "accessToken": access, "refreshToken": refresh})
    return session


def _client(server, session, on_login_required=None) -> ApiClient:
    return ApiClient(
        BASE_URL,
        session,
        transport=httpx.MockTransport(server),
        on_login_required=on_login_required,
    )


@pytest.mark.asyncio
async def test_attaches_bearer_token():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={})

    async with _client(handler, _session()) as client:
        resp = await client.get("/articles")
    assert resp.status_code == 200
    assert seen == ["Bearer access-1"]


@pytest.mark.asyncio
async def test_no_token_sends_unauthenticated():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        return httpx.Response(200, json={})

    async with _client(handler, SessionManager()) as client:
        await client.get("/articles")
    assert seen == [None]


@pytest.mark.asyncio
async def test_concurrent_401s_trigger_a_single_refresh():
    """Three requests faulting on the same expired token share one refresh."""
    server = FakeServer()
    session = _session()
    async with _client(server, session) as client:
        responses = await asyncio.gather(
            *(client.get("/articles", params={"n": str(i)}) for i in range(3))
        )
        assert client.state is RefreshState.IDLE

    assert [r.status_code for r in responses] == [200, 200, 200]
    assert server.refresh_calls == 1
    assert server.refresh_bodies == [{"refreshToken": "refresh-1"}]
    assert session.get_access_token() == "access-2"
    assert session.get_refresh_token() == "refresh-2"

    faulted = [n for _, n, status in server.log if status == 401]
    retried = [n for _, n, status in server.log if status == 200]
    assert sorted(faulted) == sorted(retried) == ["0", "1", "2"]
    # Queued requests resume in the order they faulted.
    assert [n for n in retried if n != faulted[0]] == faulted[1:]


@pytest.mark.asyncio
async def test_refresh_failure_rejects_every_waiter():
    server = FakeServer(refresh_status=401)
    session = _session()
    redirects = []

    async with _client(server, session, lambda: redirects.append("login")) as client:
        results = await asyncio.gather(
            *(client.get("/articles") for _ in range(3)), return_exceptions=True
        )
        assert client.state is RefreshState.IDLE

    assert all(isinstance(r, SessionExpiredError) for r in results)
    assert server.refresh_calls == 1
    assert redirects == ["login"]
    assert session.get_access_token() is None
    assert session.get_refresh_token() is None
    assert session.get_user() is None


@pytest.mark.asyncio
async def test_missing_refresh_token_fails_without_calling_refresh():
    server = FakeServer()
    session = SessionManager()
    session.set_access_token("access-1")
    redirects = []

    async with _client(server, session, lambda: redirects.append("login")) as client:
        with pytest.raises(SessionExpiredError):
            await client.get("/articles")

    assert server.refresh_calls == 0
    assert redirects == ["login"]
    assert session.get_access_token() is None


@pytest.mark.asyncio
async def test_network_error_during_refresh():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/auth/refresh"):
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(401, json={})

    session = _session()
    async with _client(handler, session) as client:
        with pytest.raises(SessionExpiredError):
            await client.get("/articles")
    assert session.get_refresh_token() is None


@pytest.mark.asyncio
async def test_second_401_after_retry_is_final():
    """The refreshed token is rejected too: no second refresh, session ends."""
    server = FakeServer(accepted="nothing-works", issued="access-2")
    session = _session()
    redirects = []

    async with _client(server, session, lambda: redirects.append("login")) as client:
        with pytest.raises(SessionExpiredError):
            await client.get("/articles")

    assert server.refresh_calls == 1
    assert [status for _, _, status in server.log] == [401, 401]
    assert redirects == ["login"]
    assert session.get_access_token() is None


@pytest.mark.asyncio
@pytest.mark.parametrize("path, status", [("/missing", 404), ("/broken", 500)])
async def test_other_errors_pass_through(path, status):
    server = FakeServer()
    async with _client(server, _session()) as client:
        resp = await client.get(path)
    assert resp.status_code == status
    assert server.refresh_calls == 0


@pytest.mark.asyncio
async def test_auth_endpoint_401_is_not_intercepted():
    server = FakeServer()
    session = _session()
    async with _client(server, session) as client:
        resp = await client.post("/auth/login", json={"email": "x@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert server.refresh_calls == 0
    assert session.get_access_token() == "access-1"


@pytest.mark.asyncio
async def test_request_faulting_after_completed_refresh_reuses_new_token():
    """If the stored token already changed, retry with it instead of refreshing."""
    session = _session()
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization")
        calls.append(auth)
        if auth == "Bearer access-1":
            # Another flow finished a refresh while this request was in flight.
            session.set_access_token("access-2")
            return httpx.Response(401, json={})
        if request.url.path.endswith("/auth/refresh"):
            raise AssertionError("refresh must not be called")
        return httpx.Response(200, json={})

    async with _client(handler, session) as client:
        resp = await client.get("/articles")
    assert resp.status_code == 200
    assert calls == ["Bearer access-1", "Bearer access-2"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        [],
        "not an object",
        {"user": 5, "accessToken": "access-2", "refreshToken": "refresh-2"},
        {"user": USER, "accessToken": "access-2"},
    ],
)
async def test_malformed_refresh_body_rejects_every_waiter(body):
    """A 200 refresh with an unusable body ends the session instead of wedging."""
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/auth/refresh"):
            return httpx.Response(200, json=body)
        return httpx.Response(401, json={})

    session = _session()
    redirects = []
    async with _client(handler, session, lambda: redirects.append("login")) as client:
        results = await asyncio.wait_for(
            asyncio.gather(*(client.get("/articles") for _ in range(3)), return_exceptions=True),
            timeout=2,
        )
        assert client.state is RefreshState.IDLE

        # The client is usable again: the next 401 fails fast rather than queueing.
        with pytest.raises(SessionExpiredError):
            await asyncio.wait_for(client.get("/articles"), timeout=2)

    assert all(isinstance(r, SessionExpiredError) for r in results)
    assert redirects == ["login", "login"]
    assert session.get_access_token() is None
    assert session.get_refresh_token() is None


class BrokenStorage:
    """Reads work; every write fails like a full or read-only disk."""

    def __init__(self, values):
        self.values = dict(values)

    def get_item(self, key):
        return self.values.get(key)

    def set_item(self, key, value):
        raise OSError("read-only file system")

    def remove_item(self, key):
        self.values.pop(key, None)


@pytest.mark.asyncio
async def test_storage_failure_during_refresh_rejects_every_waiter():
    server = FakeServer()
    session = SessionManager(
        BrokenStorage({"accessToken": "access-1", "refreshToken": "refresh-1"})
    )
    async with _client(server, session) as client:
        results = await asyncio.wait_for(
            asyncio.gather(*(client.get("/articles") for _ in range(3)), return_exceptions=True),
            timeout=2,
        )
        assert client.state is RefreshState.IDLE

    assert all(isinstance(r, SessionExpiredError) for r in results)
    assert server.refresh_calls == 1


@pytest.mark.asyncio
async def test_cancelled_refresh_releases_waiters():
    started = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/auth/refresh"):
            started.set()
            await asyncio.sleep(10)
        return httpx.Response(401, json={})

    async with _client(handler, _session()) as client:
        leader = asyncio.create_task(client.get("/articles"))
        await started.wait()
        follower = asyncio.create_task(client.get("/articles"))
        await asyncio.sleep(0.01)

        leader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leader
        with pytest.raises(SessionExpiredError):
            await asyncio.wait_for(follower, timeout=2)
        assert client.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_async_login_required_callback_is_awaited():
    server = FakeServer(refresh_status=401)
    redirects = []

    async def on_login_required():
        await asyncio.sleep(0)
        redirects.append("login")

    async with _client(server, _session(), on_login_required) as client:
        with pytest.raises(SessionExpiredError):
            await client.get("/articles")

    assert redirects == ["login"]


@pytest.mark.parametrize(
    "url, exempt",
    [
        ("/auth/login", True),
        ("/auth/register", True),
        ("/auth/refresh/", True),
        ("http://api.test/api/v1/auth/logout", True),
        ("/auth/password-reset/request", False),
        ("/current-user", False),
    ],
)
def test_is_auth_endpoint(url, exempt):
    assert ApiClient.is_auth_endpoint(url) is exempt


# ── Login / logout helpers ──────────────────────────────────────────
@pytest.mark.asyncio
async def test_login_and_logout_helpers():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/auth/login"):
            return httpx.Response(
                200, json={"user": USER, "accessToken": "access-1", "refreshToken": "refresh-1"}
            )
        return httpx.Response(204)

    session = SessionManager()
    async with _client(handler, session) as client:
        user = await client.login("lee@example.com", "password123")
        assert user == USER
        assert session.get_access_token() == "access-1"

        await client.logout()

    assert requests[-1] == ("/api/v1/auth/logout", {"refreshToken": "refresh-1"})
    assert session.get_refresh_token() is None
    assert session.get_user() is None


@pytest.mark.asyncio
async def test_login_failure_raises_and_keeps_session_empty():
    session = SessionManager()
    async with _client(FakeServer(), session) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await client.login("lee@example.com", "wrong")
    assert session.get_access_token() is None


@pytest.mark.asyncio
async def test_logout_clears_locally_when_server_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    session = _session()
    async with _client(handler, session) as client:
        await client.logout()
    assert session.get_access_token() is None


# ── Against the real application ────────────────────────────────────
@pytest.mark.asyncio
async def test_refresh_against_application(app, create_user):
    await create_user("lee@example.com")
    session = SessionManager()
    client = ApiClient(
        "http://test/api/v1", session, transport=httpx.ASGITransport(app=app)
    )
    async with client:
        await client.login("lee@example.com", "password123")
        first_refresh = session.get_refresh_token()
        session.set_access_token("tampered")

        resp = await client.get("/current-user")

    assert resp.status_code == 200
    assert resp.json()["email"] == "lee@example.com"
    assert session.get_access_token() != "tampered"
    assert session.get_refresh_token() != first_refresh
