"""Async HTTP client for the Shopify Admin GraphQL API."""

from __future__ import annotations

import asyncio
import logging

import httpx

from unleashed_sync.config import settings

logger = logging.getLogger(__name__)


class ShopifyError(Exception):
    """Base exception for Shopify client errors."""

    def __init__(self, message: str, status_code: int | None = None, response: dict | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class ShopifyAuthError(ShopifyError):
    """Authentication error (401/403)."""

    pass


class ShopifyRateLimitError(ShopifyError):
    """Rate limit exceeded (429 or THROTTLED)."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class ShopifyTransientError(ShopifyError):
    """Retryable Shopify error (5xx, timeouts, network issues)."""


class ShopifyGraphQLError(ShopifyError):
    """The GraphQL response carried top-level ``errors``."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message, response={"errors": errors or []})
        self.errors = errors or []


def _is_throttled(errors: list[dict]) -> bool:
    return any((error.get("extensions") or {}).get("code") == "THROTTLED" for error in errors)


class ShopifyClient:
    """
    Client for one shop's Admin GraphQL endpoint.

    Features:
    - Access token authentication (X-Shopify-Access-Token)
    - Retry with exponential backoff on 429/5xx/timeouts and THROTTLED errors
    - Cursor pagination helper
    - Staged upload and result file download for bulk operations
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str | None = None,
        timeout: int | None = None,
        retries: int | None = None,
        retry_delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.shop_domain = shop_domain.rstrip("/")
        self.access_token = access_token
        self.api_version = api_version or settings.shopify_api_version
        self.timeout = timeout or settings.http_timeout_seconds
        self.retries = settings.http_max_retries if retries is None else retries
        self.retry_delay = settings.http_retry_delay if retry_delay is None else retry_delay
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def graphql_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}/graphql.json"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    def _handle_response(self, response: httpx.Response) -> dict:
        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if response.status_code in (401, 403):
            raise ShopifyAuthError(
                f"Authentication failed: {response.status_code}",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            raise ShopifyRateLimitError(
                "Rate limit exceeded",
                retry_after=float(retry_after) if retry_after else None,
            )

        if response.status_code >= 500:
            raise ShopifyTransientError(
                f"Shopify server error ({response.status_code})",
                status_code=response.status_code,
                response=data,
            )

        if response.status_code >= 400:
            logger.warning("SHOPIFY_API_ERROR status=%s body=%s", response.status_code, data)
            raise ShopifyError(
                f"API error ({response.status_code}): {data}",
                status_code=response.status_code,
                response=data,
            )

        if not isinstance(data, dict):
            raise ShopifyError("Unexpected response body", status_code=response.status_code)

        errors = data.get("errors")
        if errors:
            if isinstance(errors, list) and _is_throttled(errors):
                raise ShopifyRateLimitError("Query throttled")
            if not isinstance(errors, list):
                errors = [{"message": str(errors)}]
            messages = "; ".join(str(error.get("message")) for error in errors)
            raise ShopifyGraphQLError(f"GraphQL errors: {messages}", errors=errors)

        return data.get("data") or {}

    async def execute(self, query: str, variables: dict | None = None) -> dict:
        """Run one GraphQL document and return its ``data`` object."""
        client = self._get_client()
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        last_error: Exception | None = None
        for attempt in range(self.retries + 1):
            try:
                response = await client.post(
                    self.graphql_url,
                    json={"query": query, "variables": variables or {}},
                    headers=headers,
                )
                return self._handle_response(response)

            except ShopifyRateLimitError as e:
                last_error = e
                if attempt >= self.retries:
                    break
                wait_time = e.retry_after or (self.retry_delay * (2**attempt))
                logger.warning("SHOPIFY_RATE_LIMITED wait=%.1fs attempt=%d", wait_time, attempt + 1)
                await asyncio.sleep(wait_time)

            except ShopifyTransientError as e:
                last_error = e
                if attempt >= self.retries:
                    break
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("SHOPIFY_TRANSIENT_ERROR wait=%.1fs error=%s", wait_time, e)
                await asyncio.sleep(wait_time)

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                last_error = e
                if attempt >= self.retries:
                    raise ShopifyTransientError(f"Connection error after {self.retries} retries: {e}") from e
                wait_time = self.retry_delay * (2**attempt)
                logger.warning("SHOPIFY_REQUEST_FAILED wait=%.1fs error=%s", wait_time, e)
                await asyncio.sleep(wait_time)

        if isinstance(last_error, ShopifyError):
            raise last_error
        raise ShopifyTransientError(f"Request failed after {self.retries} retries: {last_error}")

    async def paginate(
        self,
        query: str,
        connection: str,
        variables: dict | None = None,
    ) -> list[dict]:
        """Collect every node of a top-level connection.

        The query must accept an ``$after`` cursor and select
        ``pageInfo { hasNextPage endCursor }`` on ``connection``.
        """
        nodes: list[dict] = []
        cursor: str | None = None
        while True:
            data = await self.execute(query, {**(variables or {}), "after": cursor})
            page = data.get(connection) or {}
            nodes.extend(edge["node"] for edge in page.get("edges") or [])
            page_info = page.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return nodes
            cursor = page_info.get("endCursor")

    async def upload_staged_file(self, target: dict, content: bytes, filename: str) -> None:
        """POST a file to a staged upload target as multipart form data."""
        client = self._get_client()
        form = {param["name"]: param["value"] for param in target.get("parameters") or []}
        response = await client.post(
            target["url"],
            data=form,
            files={"file": (filename, content, "text/plain")},
        )
        if response.status_code >= 400:
            raise ShopifyError(
                f"Staged upload failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

    async def download_text(self, url: str) -> str:
        client = self._get_client()
        response = await client.get(url)
        if response.status_code >= 400:
            raise ShopifyError(
                f"Download failed ({response.status_code})",
                status_code=response.status_code,
            )
        return response.text


def user_errors(payload: dict | None, key: str = "userErrors") -> list[dict]:
    """Normalize a mutation payload's ``userErrors`` (or ``key``) list."""
    errors = (payload or {}).get(key) or []
    return [
        {
            "field": ".".join(str(part) for part in error.get("field") or []) or None,
            "message": error.get("message"),
        }
        for error in errors
    ]


def format_user_errors(errors: list[dict]) -> str:
    return "; ".join(
        f"{error['field']}: {error['message']}" if error.get("field") else str(error.get("message"))
        for error in errors
    )
