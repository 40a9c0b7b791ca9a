"""Async HTTP client for the Unleashed Software REST API."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from unleashed_sync.config import settings

logger = logging.getLogger(__name__)


class UnleashedError(Exception):
    """Base exception for Unleashed client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class UnleashedAuthError(UnleashedError):
    """Authentication error (401/403)."""

    pass


class UnleashedNotFoundError(UnleashedError):
    """Resource not found (404)."""

    pass


class UnleashedRateLimitError(UnleashedError):
    """Rate limit exceeded (429)."""

    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class UnleashedTransientError(UnleashedError):
    """Retryable Unleashed error (5xx, timeouts, network issues)."""


def sign_query(query_string: str, api_key: str) -> str:
    """HMAC-SHA256 of the raw query string, base64 encoded."""
    digest = hmac.new(api_key.encode("utf-8"), query_string.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class UnleashedClient:
    """
    HTTP client for the Unleashed REST API.

    Features:
    - Per-request HMAC signature (api-auth-id / api-auth-signature)
    - Automatic retry with exponential backoff
    - Page walking via ``Pagination.NumberOfPages``
    """

    def __init__(
        self,
        api_id: str,
        api_key: str,
        base_url: str | None = None,
        page_size: int | None = None,
        timeout: int | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the Unleashed client.

        Args:
            api_id: Unleashed API id (api-auth-id header)
            api_key: Unleashed API key used to sign query strings
            base_url: API root, defaults to settings.unleashed_api_url
            page_size: Items per page for list endpoints
            timeout: Request timeout in seconds
            retries: Number of retry attempts
            retry_delay: Initial delay between retries (exponential backoff)
            transport: Optional httpx transport (tests)
        """
        self.api_id = api_id
        self.api_key = api_key
        self.base_url = (base_url or settings.unleashed_api_url).rstrip("/")
        self.page_size = page_size or settings.unleashed_page_size
        self.timeout = timeout or settings.http_timeout_seconds
        self.retries = settings.http_max_retries if retries is None else retries
        self.retry_delay = settings.http_retry_delay if retry_delay is None else retry_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _headers(self, query_string: str) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "api-auth-id": self.api_id,
            "api-auth-signature": sign_query(query_string, self.api_key),
            "Client-Type": settings.unleashed_client_type,
        }

    def _handle_response(self, response: httpx.Response) -> dict:
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.status_code in (401, 403):
            raise UnleashedAuthError(
                f"Authentication failed: {response.status_code}",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code == 404:
            raise UnleashedNotFoundError("Resource not found", status_code=404, response=data)

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise UnleashedRateLimitError(
                "Rate limit exceeded",
                retry_after=int(retry_after) if retry_after else None,
            )

        if response.status_code >= 500:
            raise UnleashedTransientError(
                f"Unleashed server error ({response.status_code})",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code >= 400:
            if isinstance(data, dict):
                error_msg = data.get("description") or data.get("Message") or str(data)
            else:
                error_msg = str(data)
            logger.warning("UNLEASHED_API_ERROR status=%s body=%s", response.status_code, data)
            raise UnleashedError(
                f"API error ({response.status_code}): {error_msg}",
                status_code=response.status_code,
                response=data,
            )

        return data if isinstance(data, dict) else {}

    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict:
        """Signed GET with retry logic."""
        client = self._get_client()
        query_string = urlencode(params or {})
        url = f"/{path.lstrip('/')}"
        if query_string:
            url = f"{url}?{query_string}"

        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = await client.get(url, headers=self._headers(query_string))
                return self._handle_response(response)

            except UnleashedRateLimitError as e:
                last_error = e
                if attempt >= self.retries:
                    break
                wait_time = e.retry_after or (self.retry_delay * (2**attempt))
                logger.warning("UNLEASHED_RATE_LIMITED path=%s wait=%.1fs", path, wait_time)
                await asyncio.sleep(wait_time)

            except UnleashedTransientError as e:
                last_error = e
                if attempt >= self.retries:
                    break
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("UNLEASHED_TRANSIENT_ERROR path=%s wait=%.1fs error=%s", path, wait_time, e)
                await asyncio.sleep(wait_time)

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_error = e
                if attempt >= self.retries:
                    raise UnleashedTransientError(f"Connection error after {self.retries} retries: {e}") from e
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("UNLEASHED_REQUEST_FAILED path=%s wait=%.1fs error=%s", path, wait_time, e)
                await asyncio.sleep(wait_time)

        if isinstance(last_error, UnleashedError):
            raise last_error
        raise UnleashedTransientError(f"Request failed after {self.retries} retries: {last_error}")

    async def get_all(self, resource: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Fetch every page of a list resource (``{resource}/{page}``)."""
        items: list[dict] = []
        page = 1
        while True:
            data = await self.get(f"{resource}/{page}", {"pageSize": self.page_size, **(params or {})})
            items.extend(data.get("Items") or [])
            pages = int((data.get("Pagination") or {}).get("NumberOfPages") or 1)
            logger.debug("UNLEASHED_PAGE resource=%s page=%d/%d", resource, page, pages)
            if page >= pages:
                return items
            page += 1

    # ============ Resources ============

    async def get_warehouses(self) -> list[dict]:
        return await self.get_all("Warehouses")

    async def get_customers(self) -> list[dict]:
        return await self.get_all("Customers")

    async def get_customer_contacts(self, customer: dict) -> list[dict]:
        """Contacts of one customer, annotated with the owning customer."""
        try:
            data = await self.get(f"Customers/{customer['Guid']}/Contacts")
        except UnleashedNotFoundError:
            return []
        return [
            {
                **contact,
                "CustomerGuid": customer.get("Guid"),
                "CustomerCode": customer.get("CustomerCode"),
                "CustomerName": customer.get("CustomerName"),
                "SellPriceTier": customer.get("SellPriceTier"),
            }
            for contact in data.get("Items") or []
        ]

    async def get_contacts(self, customers: list[dict], concurrency: int = 10) -> list[dict]:
        """Contacts for every customer, fetched ``concurrency`` customers at a time."""
        contacts: list[dict] = []
        with_guid = [customer for customer in customers if customer.get("Guid")]
        for start in range(0, len(with_guid), concurrency):
            batch = with_guid[start : start + concurrency]
            results = await asyncio.gather(*(self.get_customer_contacts(c) for c in batch))
            for items in results:
                contacts.extend(items)
        return contacts

    async def get_products(self) -> list[dict]:
        return await self.get_all("Products", {"includeAttributes": "true"})

    async def get_stock_on_hand(self) -> dict[str, list[dict]]:
        """Stock entries grouped by product code."""
        entries = await self.get_all("StockOnHand")
        grouped: dict[str, list[dict]] = {}
        for entry in entries:
            code = entry.get("ProductCode") or (entry.get("Product") or {}).get("ProductCode")
            if code:
                grouped.setdefault(code, []).append(entry)
        return grouped

    async def get_products_with_stock(self) -> list[dict]:
        products, stock = await asyncio.gather(self.get_products(), self.get_stock_on_hand())
        return [
            {**product, "StockOnHand": stock.get(product.get("ProductCode"), [])}
            for product in products
        ]
