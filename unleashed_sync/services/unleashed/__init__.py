"""Unleashed Software API integration."""

from unleashed_sync.services.unleashed.client import (
    UnleashedAuthError,
    UnleashedClient,
    UnleashedError,
    UnleashedNotFoundError,
    UnleashedRateLimitError,
    UnleashedTransientError,
    sign_query,
)

__all__ = [
    "UnleashedClient",
    "UnleashedError",
    "UnleashedAuthError",
    "UnleashedNotFoundError",
    "UnleashedRateLimitError",
    "UnleashedTransientError",
    "sign_query",
]
