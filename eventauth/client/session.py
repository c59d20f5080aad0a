"""HTTP session client that transparently refreshes expired sessions.

Auth cookies live in the client's cookie jar, so requests are sent
unmodified. When a request comes back ``401``, one ``POST /auth/refresh`` is
made no matter how many requests failed at the same time: requests that hit
``401`` while that refresh is running wait in a FIFO queue and are replayed
once it succeeds, or fail together once it fails.
"""

import asyncio
from collections import deque
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)

REFRESH_PATH = "/auth/refresh"
LOGOUT_PATH = "/auth/logout"

# Endpoints whose 401 means "bad credentials", never "session expired"
AUTH_PATHS = (
    "/auth/login",
    "/auth/register",
    "/auth/verify-otp",
    REFRESH_PATH,
    LOGOUT_PATH,
)


class SessionError(Exception):
    """Base class for session client failures."""


class SessionExpiredError(SessionError):
    """The session could not be refreshed; the user must sign in again."""


class RefreshTimeoutError(SessionError):
    """Gave up waiting for an in-flight refresh."""


def error_message(response: httpx.Response, fallback: str) -> str:
    """Extract the server's ``{"error": ...}`` message, if any."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return fallback


class SessionClient:
    """``httpx.AsyncClient`` wrapper with single-flight token refresh.

    Args:
        base_url: API root, e.g. ``http://localhost:3001/api``
        timeout: Per-request timeout in seconds
        refresh_timeout: Upper bound on a refresh call and on how long a
            queued request waits for it
        transport: Optional transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        refresh_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.refresh_timeout = refresh_timeout
        self.refresh_count = 0
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._refreshing = False
        # Bumped whenever the session cookies change or a refresh fails
        self._generation = 0
        self._refresh_failure: Optional[SessionExpiredError] = None
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def cookies(self) -> httpx.Cookies:
        return self._client.cookies

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending(self) -> int:
        """Number of requests queued behind the in-flight refresh."""
        return len(self._waiters)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SessionClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @staticmethod
    def _is_auth_path(url: str) -> bool:
        path = httpx.URL(url).path
        return any(path.endswith(auth_path) for auth_path in AUTH_PATHS)

    @staticmethod
    def _is_logout_path(url: str) -> bool:
        return httpx.URL(url).path.endswith(LOGOUT_PATH)

    def _new_session(self) -> None:
        self._generation += 1
        self._refresh_failure = None

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, refreshing the session and replaying once on ``401``.

        Non-401 responses are returned as-is and transport errors propagate
        unchanged. A replayed request is never retried again.

        Raises:
            SessionExpiredError: If the refresh this request depended on failed
            RefreshTimeoutError: If the in-flight refresh did not settle in time
        """
        generation = self._generation
        response = await self._client.request(method, url, **kwargs)

        if self._is_auth_path(url):
            if response.is_success and not self._is_logout_path(url):
                self._new_session()
            return response
        if response.status_code != 401:
            return response

        logger.info("session_unauthorized", method=method, url=url)

        if self._refreshing:
            await self._wait_for_refresh()
        elif self._generation == generation:
            await self._run_refresh()
        elif self._refresh_failure is not None:
            # Sent before a refresh that has since failed
            raise SessionExpiredError(str(self._refresh_failure))
        # else: a refresh completed while this request was in flight

        return await self._client.request(method, url, **kwargs)

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

    async def _wait_for_refresh(self) -> None:
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, self.refresh_timeout)
        except asyncio.TimeoutError:
            logger.warning("session_refresh_wait_timed_out", timeout=self.refresh_timeout)
            raise RefreshTimeoutError(
                f"Session refresh did not complete within {self.refresh_timeout}s"
            ) from None
        finally:
            # Timed out or cancelled waiters leave the queue
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    async def _run_refresh(self) -> None:
        self._refreshing = True
        self.refresh_count += 1
        logger.info("session_refresh_started", queued=len(self._waiters))

        try:
            await asyncio.wait_for(self._refresh(), self.refresh_timeout)
        except asyncio.CancelledError:
            self._settle(SessionExpiredError("Session refresh was cancelled"))
            raise
        except Exception as e:
            if isinstance(e, SessionExpiredError):
                failure = e
            elif isinstance(e, asyncio.TimeoutError):
                failure = SessionExpiredError("Session refresh timed out")
            else:
                failure = SessionExpiredError(f"Session refresh failed: {e}")
            logger.warning("session_refresh_failed", error=str(failure))
            self._generation += 1
            self._refresh_failure = failure
            self._settle(failure)
            await self._logout_best_effort()
            if failure is e:
                raise
            raise failure from e

        self._new_session()
        logger.info("session_refresh_succeeded")
        self._settle(None)

    async def _refresh(self) -> None:
        response = await self._client.post(REFRESH_PATH)
        if response.status_code != 200:
            raise SessionExpiredError(error_message(response, "Token refresh failed"))

    def _settle(self, failure: Optional[SessionExpiredError]) -> None:
        """End the refresh and release (or reject) every waiter in FIFO order."""
        self._refreshing = False
        waiters, self._waiters = self._waiters, deque()
        for waiter in waiters:
            if waiter.done():
                continue
            if failure is None:
                waiter.set_result(None)
            else:
                error = SessionExpiredError(str(failure))
                error.__cause__ = failure
                waiter.set_exception(error)

    async def _logout_best_effort(self) -> None:
        try:
            await self._client.post(LOGOUT_PATH)
        except httpx.HTTPError as e:
            logger.warning("session_logout_failed", error=str(e))
