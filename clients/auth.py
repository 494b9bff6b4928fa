"""Operator authentication: identity token exchange and refresh-token rotation."""

from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, ValidationError

from clients.api_client import ApiClient, ApiError
from config.settings import settings
from storage.state_store import KeyValueStore

REFRESH_TOKEN_KEY = "refreshToken"
TOKEN_EXPIRY_KEY = "tokenExpiry"


class AuthError(RuntimeError):
    """Token exchange or refresh failed.  Interactive authentication is required."""


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: float
    operator_id: Optional[str] = None


class IdentityProvider(Protocol):
    """Produces an identity token, prompting the operator if needed."""

    async def get_token(self, interactive: bool = True) -> Optional[str]: ...


class AuthService:
    def __init__(
        self,
        api: ApiClient,
        identity: IdentityProvider,
        store: KeyValueStore,
        base_url: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._api = api
        self._identity = identity
        self._store = store
        self._base_url = (base_url if base_url is not None else settings.auth_service_url).rstrip("/")
        self._clock = clock
        self._refresh_token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self.operator_id: Optional[str] = None

    async def _apply(self, tokens: TokenResponse) -> None:
        self._refresh_token = tokens.refresh_token
        self._expires_at = self._clock() + tokens.expires_in
        if tokens.operator_id:
            self.operator_id = tokens.operator_id
        self._api.set_access_token(tokens.access_token)
        await self._store.set(REFRESH_TOKEN_KEY, self._refresh_token)
        await self._store.set(TOKEN_EXPIRY_KEY, self._expires_at)

    async def _clear(self) -> None:
        self._refresh_token = None
        self._expires_at = None
        self._api.set_access_token(None)
        await self._store.remove(REFRESH_TOKEN_KEY)
        await self._store.remove(TOKEN_EXPIRY_KEY)

    async def authenticate(self) -> None:
        """Interactive sign-in: exchange an identity token for backend tokens."""
        try:
            identity_token = await self._identity.get_token(interactive=True)
            if not identity_token:
                raise AuthError("Failed to get identity token")
            data = await self._api.post(
                f"{self._base_url}/api/v1/auth/exchange",
                {"token": identity_token},
                authenticated=False,
            )
            await self._apply(TokenResponse.model_validate(data or {}))
        except (ApiError, ValidationError, AuthError) as exc:
            logger.error(f"Authentication failed: {exc}")
            await self._clear()
            if isinstance(exc, AuthError):
                raise
            raise AuthError(f"Auth exchange failed: {exc}") from exc
        logger.info("Authentication successful")

    async def refresh_if_needed(self) -> None:
        if not self._refresh_token:
            self._refresh_token = await self._store.get(REFRESH_TOKEN_KEY)
            self._expires_at = await self._store.get(TOKEN_EXPIRY_KEY)

        if not self._refresh_token:
            logger.warning("No refresh token available")
            return

        margin = settings.token_refresh_margin_seconds
        if self._api.access_token and self._expires_at and self._clock() < self._expires_at - margin:
            return

        try:
            data = await self._api.post(
                f"{self._base_url}/api/v1/auth/refresh",
                {"refresh_token": self._refresh_token},
                authenticated=False,
            )
            await self._apply(TokenResponse.model_validate(data or {}))
        except (ApiError, ValidationError) as exc:
            logger.error(f"Token refresh failed: {exc}")
            await self._clear()
            raise AuthError(f"Token refresh failed: {exc}") from exc
        logger.info("Token refreshed successfully")

    async def is_authenticated(self) -> bool:
        if self._api.access_token and self._expires_at and self._clock() < self._expires_at:
            return True
        try:
            await self.refresh_if_needed()
        except AuthError:
            return False
        return self._api.access_token is not None


class StaticIdentityProvider:
    """Identity token supplied up front (environment / .env) for headless runs."""

    def __init__(self, token: Optional[str] = None) -> None:
        self._token = settings.operator_identity_token if token is None else token

    async def get_token(self, interactive: bool = True) -> Optional[str]:
        return self._token or None
