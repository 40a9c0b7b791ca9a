from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture()
def no_sleep():
    """Skip real backoff, batch and poll delays; yields the sleep mock."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def _graphql_router(handlers: dict):
    """Build an ``execute`` side effect dispatching on the GraphQL operation.

    ``handlers`` maps a substring of the document (e.g. ``"locationAdd"``) to
    either a data dict, an exception instance, or a callable receiving the
    variables.
    """

    async def execute(query, variables=None):
        for marker, handler in handlers.items():
            if marker in query:
                if isinstance(handler, Exception):
                    raise handler
                if callable(handler):
                    return handler(variables or {})
                return handler
        raise AssertionError(f"Unexpected GraphQL document: {query[:60]}")

    return execute


@pytest.fixture()
def shopify_client():
    """A stand-in ShopifyClient; set ``execute.side_effect`` per test."""
    client = MagicMock()
    client.execute = AsyncMock()
    client.paginate = AsyncMock(return_value=[])
    client.upload_staged_file = AsyncMock()
    client.download_text = AsyncMock(return_value="")
    client.close = AsyncMock()
    return client


@pytest.fixture()
def graphql_router():
    return _graphql_router
