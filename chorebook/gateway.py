import asyncio
import logging
import uuid

import httpx

from .config import API_BASE_URL, HTTP_TIMEOUT_SECONDS
from .errors import ApiError, ConflictError, NetworkError, ReauthenticationRequired
from .session import SessionContext

logger = logging.getLogger(__name__)

REFRESH_PATH = "/auth/refresh-token"


def _base_headers(token: str | None):
    headers = {"X-Request-Id": str(uuid.uuid4())}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or f"HTTP {resp.status_code}")
    return resp.text


class Gateway:
    """
    Authenticated request gateway.

    Attaches the session's bearer token to every call. A 401 triggers exactly
    one refresh and one retry of the original call; if the refresh fails the
    session is cleared and ReauthenticationRequired is raised.
    """

    def __init__(
        self,
        session: SessionContext,
        base_url: str = API_BASE_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session = session
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport)
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # -------- credential writers --------

    def sign_in(self, token: str, refresh_token: str | None = None) -> None:
        self.session._store(token, refresh_token)

    def sign_out(self) -> None:
        self.session._clear()

    async def refresh(self, stale_token: str) -> str:
        async with self._refresh_lock:
            current = self.session.token
            if current is None:
                # signed out (or a concurrent refresh failed) while we waited
                raise ReauthenticationRequired("Session expired. Please log in again.")
            if current != stale_token:
                # another call already rotated it while we waited
                return current

            credential = self.session.refresh_token or stale_token
            try:
                resp = await self._send("POST", REFRESH_PATH, None, None, credential)
            except NetworkError as e:
                logger.warning("token refresh failed: %s", e.message)
                self.sign_out()
                raise ReauthenticationRequired("Session expired. Please log in again.")

            body = {}
            if resp.is_success and resp.content:
                try:
                    body = resp.json()
                except ValueError:
                    body = {}

            new_token = body.get("token") if isinstance(body, dict) and body.get("success") else None
            if not new_token:
                logger.warning("token refresh rejected: status=%s", resp.status_code)
                self.sign_out()
                raise ReauthenticationRequired("Session expired. Please log in again.")

            self.session._store(new_token, body.get("refreshToken"))
            logger.info("access token refreshed")
            return new_token

    # -------- transport --------

    async def _send(self, method, path, payload, params, token) -> httpx.Response:
        try:
            return await self._client.request(
                method,
                path,
                json=payload,
                params=params,
                headers=_base_headers(token),
            )
        except httpx.TimeoutException:
            raise NetworkError(f"Timeout calling upstream: {path}")
        except httpx.TransportError as e:
            raise NetworkError(f"Network error calling upstream: {path} ({e.__class__.__name__})")

    async def request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        token = self.session.token
        if not token:
            raise ReauthenticationRequired("Authentication required. Please login again.")

        resp = await self._send(method, path, payload, params, token)

        if resp.status_code == 401:
            new_token = await self.refresh(token)
            resp = await self._send(method, path, payload, params, new_token)
            if resp.status_code == 401:
                self.sign_out()
                raise ReauthenticationRequired("Session expired. Please log in again.")

        if resp.status_code == 409:
            raise ConflictError(409, _error_message(resp))
        if not resp.is_success:
            # upstream responded but with error code
            raise ApiError(resp.status_code, _error_message(resp))

        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            raise ApiError(resp.status_code, f"Invalid JSON from upstream: {path}")

    async def get(self, path: str, params: dict | None = None) -> dict:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: dict | None = None) -> dict:
        return await self.request("POST", path, payload=payload)
