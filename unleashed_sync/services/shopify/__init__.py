"""Shopify Admin GraphQL integration."""

from unleashed_sync.services.shopify.client import (
    ShopifyAuthError,
    ShopifyClient,
    ShopifyError,
    ShopifyGraphQLError,
    ShopifyRateLimitError,
    ShopifyTransientError,
)

__all__ = [
    "ShopifyClient",
    "ShopifyError",
    "ShopifyAuthError",
    "ShopifyGraphQLError",
    "ShopifyRateLimitError",
    "ShopifyTransientError",
]
