"""
HTTP client for the rankhub API with transparent access-token refresh.

Every request carries the stored access token.  When a protected call comes
back 401 the client refreshes the token pair once, replays the call with the
new token, and hands the caller the replayed response.  Concurrent requests
that hit a 401 while a refresh is in flight queue up behind it and are all
released (in arrival order) with its outcome, so at most one refresh call is
ever outstanding.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import httpx

from rankhub.client.session import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# 401s from these are real answers, never a reason to refresh.
AUTH_ENDPOINTS = ("/auth/login", "/auth/register", "/auth/refresh", "/auth/logout")


class SessionExpiredError(Exception):
    """The session could not be renewed; the user has to log in again."""


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class ApiClient:
    def __init__(
        self,
        base_url: str,
        session: SessionManager | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        on_login_required: Callable[[], Awaitable[None] | None] | None = None,
    ) -> None:
        self.session = session if session is not None else SessionManager()
        self.on_login_required = on_login_required
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self.state = RefreshState.IDLE
        self._waiters: deque[asyncio.Future[str]] = deque()

    async def __aenter__(self) -> ApiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @staticmethod
    def is_auth_endpoint(url: str | httpx.URL) -> bool:
        path = httpx.URL(str(url)).path.rstrip("/")
        return any(path.endswith(endpoint) for endpoint in AUTH_ENDPOINTS)

    # ── Requests ────────────────────────────────────────────────────
    async def _send(
        self, method: str, url: str, token: str | None, kwargs: dict[str, Any]
    ) -> httpx.Response:
        options = dict(kwargs)
        headers = dict(options.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return await self._http.request(method, url, headers=headers, **options)

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, refreshing the session once on a 401.

        Raises ``SessionExpiredError`` when the refresh fails or the replayed
        request is rejected again; any other response is returned as is.
        """
        token = self.session.get_access_token()
        response = await self._send(method, url, token, kwargs)
        if response.status_code != 401 or self.is_auth_endpoint(url):
            return response

        new_token = await self._fresh_access_token(token)
        retried = await self._send(method, url, new_token, kwargs)
        if retried.status_code == 401:
            logger.warning("%s %s rejected again after token refresh", method, url)
            await self._end_session()
            raise SessionExpiredError("Request was rejected after refreshing the session")
        return retried

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    # ── Refresh ─────────────────────────────────────────────────────
    async def _fresh_access_token(self, stale: str | None) -> str:
        current = self.session.get_access_token()
        if current and current != stale:
            # Another request already refreshed while this one was in flight.
            return current

        if self.state is RefreshState.REFRESHING:
            waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            return await waiter

        self.state = RefreshState.REFRESHING
        try:
            new_token = await self._refresh()
        except SessionExpiredError as exc:
            self._finish_refresh(error=exc)
            await self._end_session()
            raise
        else:
            self._finish_refresh(token=new_token)
            return new_token
        finally:
            if self.state is RefreshState.REFRESHING:
                # Cancelled or failed unexpectedly: the queue must still drain.
                self._finish_refresh(error=SessionExpiredError("Token refresh did not complete"))

    async def _refresh(self) -> str:
        refresh_token = self.session.get_refresh_token()
        if not refresh_token:
            raise SessionExpiredError("No refresh token available")

        # Straight to the transport: a 401 here must not trigger another refresh.
        try:
            response = await self._http.post(
                "/auth/refresh", json={"refreshToken": refresh_token}
            )
        except httpx.HTTPError as exc:
            logger.warning("Token refresh failed: %s", exc)
            raise SessionExpiredError("Token refresh failed") from exc

        if not response.is_success:
            logger.info("Token refresh rejected with status %d", response.status_code)
            raise SessionExpiredError("Refresh token was rejected")

        try:
            data = response.json()
            self.session.post_login_actions(data)
        except (ValueError, TypeError, OSError) as exc:
            logger.warning("Token refresh returned an unusable response: %s", exc)
            raise SessionExpiredError("Malformed refresh response") from exc
        return data["accessToken"]

    def _finish_refresh(
        self, *, token: str | None = None, error: BaseException | None = None
    ) -> None:
        self.state = RefreshState.IDLE
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(token)

    async def _end_session(self) -> None:
        self.session.clear()
        if self.on_login_required is not None:
            result = self.on_login_required()
            if inspect.isawaitable(result):
                await result

    # ── Account helpers ─────────────────────────────────────────────
    async def login(self, email: str, password: str) -> dict[str, Any]:
        """Log in and store the session; returns the user profile."""
        response = await self._http.post(
            "/auth/login", json={"email": email, "password": password}
        )
        response.raise_for_status()
        data = response.json()
        self.session.post_login_actions(data)
        return data["user"]

    async def logout(self) -> None:
        """Revoke the refresh token server-side (best effort) and forget the session."""
        refresh_token = self.session.get_refresh_token()
        if refresh_token:
            try:
                await self._http.post("/auth/logout", json={"refreshToken": refresh_token})
            except httpx.HTTPError as exc:
                logger.warning("Logout request failed: %s", exc)
        self.session.clear()
