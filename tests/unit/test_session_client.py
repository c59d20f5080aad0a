"""Unit tests for SessionClient single-flight refresh.

The API is faked with ``httpx.MockTransport`` so the tests control exactly
when a refresh completes relative to the requests queued behind it.
"""

import asyncio
from typing import Optional

import httpx
import pytest

from eventauth.client.session import (
    RefreshTimeoutError,
    SessionClient,
    SessionExpiredError,
    error_message,
)

BASE_URL = "http://testserver"


def _cookies(request: httpx.Request) -> dict:
    header = request.headers.get("cookie", "")
    pairs = (part.split("=", 1) for part in header.split("; ") if "=" in part)
    return {name: value for name, value in pairs}


async def _until(predicate, attempts: int = 1000) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class FakeAPI:
    """Cookie-authenticated API with a rotating token pair."""

    def __init__(self):
        self.version = 0
        self.access: Optional[str] = None
        self.refresh: Optional[str] = None
        self.refresh_calls = 0
        self.logout_calls = 0
        self.refresh_gate: Optional[asyncio.Event] = None
        self.slow_gate = asyncio.Event()
        self.seen: list[tuple[str, str]] = []

    def _issue(self) -> list[tuple[str, str]]:
        self.version += 1
        self.access = f"access-{self.version}"
        self.refresh = f"refresh-{self.version}"
        return [
            ("set-cookie", f"accessToken={self.access}; Path=/; HttpOnly"),
            ("set-cookie", f"refreshToken={self.refresh}; Path=/; HttpOnly"),
        ]

    def expire_access(self) -> None:
        self.access = "expired"

    def revoke_refresh(self) -> None:
        self.refresh = "revoked"

    async def handler(self, request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0)
        path = request.url.path
        cookies = _cookies(request)
        self.seen.append((request.method, path))

        if path == "/auth/login":
            return httpx.Response(200, headers=self._issue(), json={"message": "Login successful"})
        if path == "/auth/refresh":
            self.refresh_calls += 1
            if self.refresh_gate is not None:
                await self.refresh_gate.wait()
            if cookies.get("refreshToken") != self.refresh:
                return httpx.Response(401, json={"error": "Invalid refresh token"})
            return httpx.Response(
                200, headers=self._issue(), json={"message": "Token refreshed successfully"}
            )
        if path == "/auth/logout":
            self.logout_calls += 1
            return httpx.Response(200, json={"message": "Logged out successfully"})
        if path == "/boom":
            return httpx.Response(500, json={"error": "Internal server error"})
        if path == "/forbidden":
            return httpx.Response(403, json={"error": "Forbidden"})
        if path == "/always-401":
            return httpx.Response(401, json={"error": "Invalid token"})
        if path == "/slow":
            await self.slow_gate.wait()

        if cookies.get("accessToken") != self.access:
            return httpx.Response(401, json={"error": "Token expired"})
        return httpx.Response(200, json={"path": path, "version": self.version})

    def count(self, method: str, path: str) -> int:
        return self.seen.count((method, path))


@pytest.fixture
def api():
    return FakeAPI()


@pytest.fixture
async def session(api):
    client = SessionClient(
        BASE_URL, refresh_timeout=2.0, transport=httpx.MockTransport(api.handler)
    )
    await client.post("/auth/login")
    yield client
    await client.close()


class TestPassThrough:
    async def test_success_is_returned_as_is(self, session, api):
        response = await session.get("/events")

        assert response.status_code == 200
        assert session.refresh_count == 0
        assert api.refresh_calls == 0

    @pytest.mark.parametrize("path,status", [("/boom", 500), ("/forbidden", 403)])
    async def test_non_401_errors_are_not_retried(self, session, api, path, status):
        response = await session.get(path)

        assert response.status_code == status
        assert api.count("GET", path) == 1
        assert api.refresh_calls == 0

    async def test_auth_endpoints_are_not_intercepted(self, session, api):
        api.revoke_refresh()

        response = await session.post("/auth/refresh")

        assert response.status_code == 401
        assert api.refresh_calls == 1
        assert session.refresh_count == 0
        assert api.logout_calls == 0

    async def test_transport_errors_propagate(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await client.get("/events")


class TestRefresh:
    async def test_expired_session_is_refreshed_and_replayed(self, session, api):
        api.expire_access()

        response = await session.get("/events")

        assert response.status_code == 200
        assert session.refresh_count == 1
        assert api.seen[-3:] == [
            ("GET", "/events"),
            ("POST", "/auth/refresh"),
            ("GET", "/events"),
        ]
        assert session.cookies.get("accessToken") == api.access

    async def test_replayed_request_is_not_retried_again(self, session, api):
        response = await session.get("/always-401")

        assert response.status_code == 401
        assert api.count("GET", "/always-401") == 2
        assert api.refresh_calls == 1

    async def test_concurrent_401s_share_one_refresh(self, session, api):
        api.expire_access()
        api.refresh_gate = asyncio.Event()

        tasks = [asyncio.create_task(session.get(f"/events/{i}")) for i in range(5)]
        await _until(lambda: session.pending == 4)
        assert session.refreshing
        api.refresh_gate.set()
        responses = await asyncio.gather(*tasks)

        assert [r.status_code for r in responses] == [200] * 5
        assert session.refresh_count == 1
        assert api.refresh_calls == 1
        assert not session.refreshing
        assert session.pending == 0

    async def test_queued_requests_resume_in_arrival_order(self, session, api):
        api.expire_access()
        api.refresh_gate = asyncio.Event()

        leader = asyncio.create_task(session.get("/events/leader"))
        await _until(lambda: session.refreshing)
        followers = []
        for i in range(3):
            followers.append(asyncio.create_task(session.get(f"/events/{i}")))
            await _until(lambda: session.pending == i + 1)

        api.refresh_gate.set()
        await asyncio.gather(leader, *followers)

        follower_paths = [
            path for _, path in api.seen if path.startswith("/events/") and path != "/events/leader"
        ]
        assert follower_paths[-3:] == ["/events/0", "/events/1", "/events/2"]

    async def test_401_after_completed_refresh_replays_without_refreshing(self, session, api):
        api.expire_access()

        # Sent with the stale cookie, answered only after the refresh below
        slow = asyncio.create_task(session.get("/slow"))
        await _until(lambda: api.count("GET", "/slow") == 1)

        assert (await session.get("/events")).status_code == 200
        assert session.refresh_count == 1

        api.slow_gate.set()
        response = await slow

        assert response.status_code == 200
        assert session.refresh_count == 1
        assert api.refresh_calls == 1

    async def test_new_refresh_after_a_later_expiry(self, session, api):
        api.expire_access()
        await session.get("/events")
        api.expire_access()
        await session.get("/events")

        assert session.refresh_count == 2


class TestRefreshFailure:
    async def test_failure_rejects_every_queued_request(self, session, api):
        api.expire_access()
        api.revoke_refresh()
        api.refresh_gate = asyncio.Event()

        tasks = [asyncio.create_task(session.get(f"/events/{i}")) for i in range(3)]
        await _until(lambda: session.pending == 2)
        api.refresh_gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, SessionExpiredError) for r in results)
        assert all(str(r) == "Invalid refresh token" for r in results)
        assert api.refresh_calls == 1
        assert api.logout_calls == 1
        assert not session.refreshing
        assert session.pending == 0

    async def test_failed_request_is_not_replayed(self, session, api):
        api.expire_access()
        api.revoke_refresh()

        with pytest.raises(SessionExpiredError):
            await session.get("/events")

        assert api.count("GET", "/events") == 1

    async def test_401_after_failed_refresh_does_not_refresh_again(self, session, api):
        api.expire_access()
        api.revoke_refresh()

        # Sent with the stale cookie, answered only after the refresh below fails
        slow = asyncio.create_task(session.get("/slow"))
        await _until(lambda: api.count("GET", "/slow") == 1)

        with pytest.raises(SessionExpiredError, match="Invalid refresh token"):
            await session.get("/events")

        api.slow_gate.set()
        with pytest.raises(SessionExpiredError, match="Invalid refresh token"):
            await slow

        assert api.refresh_calls == 1
        assert api.logout_calls == 1
        assert session.refresh_count == 1
        assert api.count("GET", "/slow") == 1

    async def test_login_after_failed_refresh_lets_stale_requests_replay(self, session, api):
        api.expire_access()
        api.revoke_refresh()

        slow = asyncio.create_task(session.get("/slow"))
        await _until(lambda: api.count("GET", "/slow") == 1)
        with pytest.raises(SessionExpiredError):
            await session.get("/events")

        await session.post("/auth/login")
        api.slow_gate.set()
        response = await slow

        assert response.status_code == 200
        assert api.refresh_calls == 1
        assert api.count("GET", "/slow") == 2

    async def test_refresh_timeout_fails_the_session(self, api):
        api.refresh_gate = asyncio.Event()
        async with SessionClient(
            BASE_URL, refresh_timeout=0.05, transport=httpx.MockTransport(api.handler)
        ) as client:
            await client.post("/auth/login")
            api.expire_access()

            with pytest.raises(SessionExpiredError, match="timed out"):
                await client.get("/events")

            assert not client.refreshing
            assert api.logout_calls == 1

    async def test_logout_failure_is_swallowed(self, api):
        def handler(request):
            if request.url.path == "/auth/logout":
                raise httpx.ConnectError("connection refused", request=request)
            if request.url.path == "/auth/refresh":
                return httpx.Response(401, json={"error": "Refresh token not found"})
            return httpx.Response(401, json={"error": "Access token required"})

        async with SessionClient(BASE_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(SessionExpiredError, match="Refresh token not found"):
                await client.get("/events")


class TestWaiters:
    async def test_waiter_gives_up_after_refresh_timeout(self, api):
        async with SessionClient(
            BASE_URL, refresh_timeout=0.05, transport=httpx.MockTransport(api.handler)
        ) as client:
            await client.post("/auth/login")
            api.expire_access()
            # A refresh that never settles
            client._refreshing = True

            with pytest.raises(RefreshTimeoutError):
                await client.get("/events")

            assert client.pending == 0

    async def test_cancelled_waiter_leaves_the_queue(self, session, api):
        api.expire_access()
        api.refresh_gate = asyncio.Event()

        leader = asyncio.create_task(session.get("/events/leader"))
        await _until(lambda: session.refreshing)
        follower = asyncio.create_task(session.get("/events/follower"))
        await _until(lambda: session.pending == 1)

        follower.cancel()
        with pytest.raises(asyncio.CancelledError):
            await follower
        assert session.pending == 0

        api.refresh_gate.set()
        assert (await leader).status_code == 200

    async def test_cancelling_the_refreshing_caller_rejects_waiters(self, session, api):
        api.expire_access()
        api.refresh_gate = asyncio.Event()

        leader = asyncio.create_task(session.get("/events/leader"))
        await _until(lambda: session.refreshing)
        follower = asyncio.create_task(session.get("/events/follower"))
        await _until(lambda: session.pending == 1)

        leader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leader
        with pytest.raises(SessionExpiredError, match="cancelled"):
            await follower
        assert not session.refreshing


class TestErrorMessage:
    def test_reads_error_field(self):
        response = httpx.Response(401, json={"error": "Invalid refresh token"})
        assert error_message(response, "fallback") == "Invalid refresh token"

    def test_falls_back_on_non_json(self):
        response = httpx.Response(502, text="Bad Gateway")
        assert error_message(response, "fallback") == "fallback"

    def test_falls_back_without_error_field(self):
        response = httpx.Response(400, json={"detail": "nope"})
        assert error_message(response, "fallback") == "fallback"
