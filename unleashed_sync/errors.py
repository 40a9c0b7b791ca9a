"""HTTP mapping for service-level exceptions."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from unleashed_sync.services.credentials import CredentialsError
from unleashed_sync.services.shopify.client import ShopifyAuthError, ShopifyError
from unleashed_sync.services.sync.models import MappingError
from unleashed_sync.services.unleashed.client import UnleashedAuthError, UnleashedError

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "detail": detail})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CredentialsError)
    async def _credentials_error(request: Request, exc: CredentialsError):
        logger.warning("API_CREDENTIALS_ERROR path=%s error=%s", request.url.path, exc)
        return _error_response(400, "credentials_error", str(exc))

    @app.exception_handler(MappingError)
    async def _mapping_error(request: Request, exc: MappingError):
        return _error_response(422, "mapping_error", str(exc))

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError):
        return _error_response(422, "invalid_request", str(exc))

    @app.exception_handler(UnleashedAuthError)
    @app.exception_handler(ShopifyAuthError)
    async def _upstream_auth_error(request: Request, exc: Exception):
        logger.warning("API_UPSTREAM_AUTH_ERROR path=%s error=%s", request.url.path, exc)
        return _error_response(502, "upstream_auth_error", str(exc))

    @app.exception_handler(UnleashedError)
    @app.exception_handler(ShopifyError)
    async def _upstream_error(request: Request, exc: Exception):
        logger.error("API_UPSTREAM_ERROR path=%s error=%s", request.url.path, exc)
        return _error_response(502, "upstream_error", str(exc))
