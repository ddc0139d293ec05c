"""Supabase client for the payment application edge functions and tables."""

import asyncio
from typing import Any

import httpx
import structlog

from ar_sync.auth import StaticTokenProvider, TokenProvider
from ar_sync.config import get_settings
from ar_sync.errors import AuthenticationError, RateLimitError, SupabaseAPIError
from ar_sync.models import ResyncResult, WorkItem

logger = structlog.get_logger(__name__)

FETCH_APPLICATIONS_PATH = "/functions/v1/fetch-payment-applications"
RESYNC_APPLICATIONS_PATH = "/functions/v1/resync-all-payment-applications"
PAYMENTS_TABLE_PATH = "/rest/v1/acumatica_payments"
PAYMENTS_WITH_APPLICATIONS_RPC = "/rest/v1/rpc/get_payment_ids_with_applications"

PAYMENT_COLUMNS = (
    "id,reference_number,type,customer_id,payment_amount,application_date,status,balance"
)


class SupabaseClient:
    """Async client for the Supabase REST and edge function endpoints.

    Bearer tokens come from an injected ``TokenProvider``; the anon key is
    always sent as ``apikey`` and is the default bearer token.
    """

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.supabase_url).rstrip("/")
        self._anon_key = anon_key or settings.supabase_anon_key.get_secret_value()
        self._token_provider: TokenProvider = token_provider or StaticTokenProvider(
            self._anon_key
        )
        self._timeout = timeout if timeout is not None else settings.supabase_timeout
        self._max_retries = (
            max_retries if max_retries is not None else settings.supabase_max_retries
        )
        self._transport = transport

        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _get_headers(self) -> dict[str, str]:
        token = await self._token_provider.get_token()
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    # === Generic Request Methods ===

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | list[tuple[str, str]] | None = None,
        json: dict[str, Any] | None = None,
        retry_count: int = 0,
    ) -> Any:
        """Make an authenticated request with retry on transport errors."""
        client = await self._get_client()
        headers = await self._get_headers()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=headers,
            )
        except httpx.RequestError as e:
            if retry_count < self._max_retries:
                logger.debug("request_retry", path=path, attempt=retry_count + 1, error=str(e))
                await asyncio.sleep(2**retry_count)
                return await self._request(method, path, params, json, retry_count + 1)
            raise SupabaseAPIError(f"Request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"Not authorized: {response.status_code}",
                status_code=response.status_code,
                details=self._error_detail(response),
            )

        if response.status_code == 429:
            retry_after = int(response.headers.get("Retry-After", "60"))
            raise RateLimitError(
                f"Rate limited, retry after {retry_after}s",
                status_code=429,
                details={"retry_after": retry_after},
            )

        if response.status_code >= 400:
            raise SupabaseAPIError(
                f"HTTP {response.status_code}",
                status_code=response.status_code,
                details=self._error_detail(response),
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise SupabaseAPIError(
                "Response body is not valid JSON",
                status_code=response.status_code,
                details={"raw": response.text[:500]},
            ) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> Any:
        try:
            return response.json() if response.content else {}
        except ValueError:
            return {"raw": response.text[:500] if response.text else "empty response"}

    # === Edge Functions ===

    async def fetch_payment_applications(
        self, reference_number: str, doc_type: str | None = None
    ) -> dict[str, Any]:
        """Ask the edge function to pull one payment's applications from the ERP."""
        params = {"paymentRef": reference_number}
        if doc_type:
            params["type"] = doc_type
        result = await self._request("GET", FETCH_APPLICATIONS_PATH, params=params)
        if not isinstance(result, dict):
            raise SupabaseAPIError(
                "Invalid fetch-payment-applications response format", details=result
            )
        return result

    async def resync_payment_applications(
        self, batch_size: int, skip: int, clear_first: bool = False
    ) -> ResyncResult:
        """Run one server-side resync batch starting at ``skip``."""
        result = await self._request(
            "POST",
            RESYNC_APPLICATIONS_PATH,
            json={"batchSize": batch_size, "skip": skip, "clearFirst": clear_first},
        )
        if not isinstance(result, dict):
            raise SupabaseAPIError("Invalid resync response format", details=result)
        return ResyncResult.from_dict(result)

    # === Tables and RPCs ===

    async def get_payment_ids_with_applications(self) -> set[str]:
        """IDs of payments that already have at least one application."""
        result = await self._request("POST", PAYMENTS_WITH_APPLICATIONS_RPC, json={})
        if not isinstance(result, list):
            return set()
        return {str(row["id"]) for row in result if isinstance(row, dict) and "id" in row}

    async def list_payments(
        self,
        limit: int | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        balanced_only: bool = False,
    ) -> list[WorkItem]:
        """List payments, newest application date first."""
        params: list[tuple[str, str]] = [
            ("select", PAYMENT_COLUMNS),
            ("order", "application_date.desc"),
            ("limit", str(limit or get_settings().fetch_limit)),
        ]
        if date_from:
            params.append(("application_date", f"gte.{date_from}"))
        if date_to:
            params.append(("application_date", f"lte.{date_to}"))
        if balanced_only:
            params.append(("balance", "eq.0"))

        # PostgREST filters repeat column names, so params go as a list of pairs
        rows = await self._request("GET", PAYMENTS_TABLE_PATH, params=params)
        if not isinstance(rows, list):
            raise SupabaseAPIError("Invalid payments response format", details=rows)
        return [WorkItem.from_row(row) for row in rows]

    async def list_payments_without_applications(
        self,
        limit: int | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        balanced_only: bool = False,
    ) -> list[WorkItem]:
        """Payments that have no applications recorded yet."""
        with_apps = await self.get_payment_ids_with_applications()
        payments = await self.list_payments(
            limit=limit, date_from=date_from, date_to=date_to, balanced_only=balanced_only
        )
        without = [p for p in payments if p.id not in with_apps]
        logger.info(
            "payments_without_applications_loaded",
            loaded=len(payments),
            with_applications=len(with_apps),
            without_applications=len(without),
        )
        return without
