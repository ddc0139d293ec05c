"""Bearer token providers for Supabase requests."""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import httpx
import structlog

from ar_sync.errors import AuthenticationError, SupabaseAPIError

logger = structlog.get_logger(__name__)

# Refresh this long before the access token actually expires
REFRESH_MARGIN = timedelta(seconds=60)


class TokenProvider(Protocol):
    """Supplies a valid bearer token for each privileged request."""

    async def get_token(self) -> str: ...


class StaticTokenProvider:
    """Always returns the same token, e.g. the project's anon key."""

    def __init__(self, token: str):
        self._token = token

    async def get_token(self) -> str:
        return self._token


class SessionTokenProvider:
    """Signs in with email/password and keeps the session token fresh."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        email: str,
        password: str,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._anon_key = anon_key
        self._email = email
        self._password = password
        self._timeout = timeout

        self._access_token: str | None = None
        self._refresh_token: str | None = None
        self._expires_at: datetime | None = None

        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_token(self) -> str:
        """Return the current access token, signing in or refreshing as needed."""
        async with self._lock:
            if not self._access_token:
                await self.sign_in()
            elif self._expires_at and datetime.now(UTC) >= self._expires_at - REFRESH_MARGIN:
                await self.refresh()
            assert self._access_token is not None
            return self._access_token

    async def sign_in(self) -> None:
        """Password grant."""
        data = await self._token_request(
            "password", {"email": self._email, "password": self._password}
        )
        self._store(data)
        logger.info("signed_in", email=self._email)

    async def refresh(self) -> None:
        """Refresh grant; falls back to a full sign-in when the refresh token is rejected."""
        if not self._refresh_token:
            await self.sign_in()
            return
        try:
            data = await self._token_request(
                "refresh_token", {"refresh_token": self._refresh_token}
            )
        except AuthenticationError:
            logger.info("refresh_rejected_signing_in_again")
            await self.sign_in()
            return
        self._store(data)
        logger.debug("session_refreshed")

    async def _token_request(self, grant_type: str, body: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(
            "/auth/v1/token",
            params={"grant_type": grant_type},
            json=body,
            headers={"apikey": self._anon_key, "Content-Type": "application/json"},
        )
        if response.status_code in (400, 401, 403):
            raise AuthenticationError(
                "Supabase rejected the credentials", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise SupabaseAPIError(
                f"Auth error: {response.status_code}", status_code=response.status_code
            )
        data = response.json()
        if not isinstance(data, dict) or "access_token" not in data:
            raise SupabaseAPIError("Invalid token response format")
        return data

    def _store(self, data: dict[str, Any]) -> None:
        self._access_token = data["access_token"]
        self._refresh_token = data.get("refresh_token", self._refresh_token)
        expires_in = int(data.get("expires_in", 3600))
        self._expires_at = datetime.now(UTC) + timedelta(seconds=expires_in)
