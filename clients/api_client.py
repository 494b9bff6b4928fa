"""Async JSON client shared by every backend service wrapper."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
from loguru import logger

from config.settings import settings


class ApiError(RuntimeError):
    """A backend call failed (transport error or non-2xx status)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(ApiError):
    """HTTP 401.  The cached access token has already been cleared."""


class RequestTimeoutError(ApiError):
    pass


class ApiClient:
    """
    Thin async wrapper over ``httpx.AsyncClient`` for JSON request/response calls.

    * Adds the bearer token when one is set.
    * Returns ``None`` for 204 No Content (e.g. an empty queue long-poll).
    * Maps 401 to ``UnauthorizedError`` and clears the token.
    * Maps timeouts to ``RequestTimeoutError`` and other failures to ``ApiError``.
    """

    DEFAULT_HEADERS = {
        "User-Agent": "payment-autopilot/1.0",
        "Content-Type": "application/json",
        "Accept": "application/json",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = settings.request_timeout_seconds if timeout is None else timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._access_token: Optional[str] = None

    async def __aenter__(self) -> "ApiClient":
        self._ensure_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=self.DEFAULT_HEADERS,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── Token ─────────────────────────────────────────────────────────────────

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    # ── Requests ──────────────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        url: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        authenticated: bool = True,
    ) -> Any:
        client = self._ensure_client()
        headers: Dict[str, str] = {}
        if authenticated and self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        effective_timeout = self._timeout if timeout is None else timeout
        try:
            response = await client.request(
                method,
                url,
                json=json,
                params=params,
                headers=headers,
                timeout=effective_timeout,
            )
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Request timeout after {effective_timeout}s: {method} {url}") from exc
        except httpx.RequestError as exc:
            raise ApiError(f"Request error for {method} {url}: {exc}") from exc

        if response.status_code == 401:
            self._access_token = None
            raise UnauthorizedError("Unauthorized: token expired or invalid", status_code=401)
        if response.is_error:
            raise ApiError(
                f"API request failed: {response.status_code} {response.reason_phrase} - {response.text}",
                status_code=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None

        logger.debug(f"{method} {url} -> {response.status_code}")
        return response.json()

    async def get(self, url: str, **kwargs: Any) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("POST", url, json=data, **kwargs)

    async def put(self, url: str, data: Any = None, **kwargs: Any) -> Any:
        return await self.request("PUT", url, json=data, **kwargs)

    async def put_bytes(self, url: str, content: bytes, content_type: str) -> None:
        """Raw upload to a pre-signed URL.  No bearer token, no JSON."""
        client = self._ensure_client()
        try:
            response = await client.put(url, content=content, headers={"Content-Type": content_type})
        except httpx.TimeoutException as exc:
            raise RequestTimeoutError(f"Upload timeout: {exc}") from exc
        except httpx.RequestError as exc:
            raise ApiError(f"Upload request error: {exc}") from exc
        if response.is_error:
            raise ApiError(
                f"Upload failed: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
