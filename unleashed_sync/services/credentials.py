"""Credential lookup: tenant domain → Unleashed and Shopify credentials.

Bundles are stored in Redis as JSON under ``{prefix}{domain}``::

    {"unleashed": {"apiId": "...", "apiKey": "..."},
     "shopify": {"accessToken": "...", "shopDomain": "example.myshopify.com"}}
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from unleashed_sync.config import settings

if TYPE_CHECKING:
    from redis import Redis

logger = logging.getLogger(__name__)


class CredentialsError(Exception):
    """Credentials for a domain are missing or incomplete."""


@dataclass(frozen=True)
class CredentialBundle:
    domain: str
    unleashed_api_id: str
    unleashed_api_key: str
    shopify_access_token: str
    shop_domain: str

    @classmethod
    def from_dict(cls, domain: str, data: dict) -> CredentialBundle:
        unleashed = data.get("unleashed") or {}
        shopify = data.get("shopify") or {}
        missing = [
            name
            for name, value in (
                ("unleashed.apiId", unleashed.get("apiId")),
                ("unleashed.apiKey", unleashed.get("apiKey")),
                ("shopify.accessToken", shopify.get("accessToken")),
                ("shopify.shopDomain", shopify.get("shopDomain")),
            )
            if not value
        ]
        if missing:
            raise CredentialsError(f"Incomplete credentials for {domain}: missing {', '.join(missing)}")
        return cls(
            domain=domain,
            unleashed_api_id=unleashed["apiId"],
            unleashed_api_key=unleashed["apiKey"],
            shopify_access_token=shopify["accessToken"],
            shop_domain=clean_domain(shopify["shopDomain"]),
        )


def clean_domain(domain: str | None) -> str:
    """Strip protocol, path and trailing slashes from a domain."""
    value = (domain or "").strip()
    value = re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", value)
    return value.split("/", 1)[0].strip().lower()


class CredentialStore(Protocol):
    def get(self, domain: str) -> CredentialBundle: ...


class StaticCredentialStore:
    """In-memory store, keyed by cleaned domain."""

    def __init__(self, bundles: dict[str, dict] | None = None):
        self._bundles = {clean_domain(domain): data for domain, data in (bundles or {}).items()}

    def get(self, domain: str) -> CredentialBundle:
        key = clean_domain(domain)
        data = self._bundles.get(key)
        if not data:
            raise CredentialsError(f"No authentication data found for domain: {key}")
        return CredentialBundle.from_dict(key, data)


class RedisCredentialStore:
    def __init__(self, redis_client: Redis | None = None, prefix: str | None = None):
        self._redis = redis_client
        self.prefix = settings.credentials_key_prefix if prefix is None else prefix

    def _get_redis(self) -> Redis:
        if self._redis is None:
            import redis

            self._redis = redis.from_url(settings.redis_url, decode_responses=True)
        return self._redis

    def get(self, domain: str) -> CredentialBundle:
        key = clean_domain(domain)
        if not key:
            raise CredentialsError("Domain is required")
        try:
            raw = self._get_redis().get(f"{self.prefix}{key}")
        except Exception as e:
            logger.error("CREDENTIALS_LOOKUP_FAILED domain=%s error=%s", key, e)
            raise CredentialsError(f"Failed to get authentication data: {e}") from e
        if not raw:
            raise CredentialsError(f"No authentication data found for domain: {key}")
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CredentialsError(f"Malformed authentication data for domain: {key}") from e
        return CredentialBundle.from_dict(key, data)
