"""Error payloads and exception handlers for the Kraken gateway.

The gateway answers failures with 400 for client input problems (including
missing credentials on private routes) and with 500 when the delegated Kraken
call fails.  Handlers raise :class:`GatewayError` and the
application-level handler turns it into the JSON body.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    """An error carrying the HTTP status and JSON body to return."""

    def __init__(self, status_code: int, payload: Mapping[str, Any]) -> None:
        super().__init__(payload.get("error", "gateway error"))
        self.status_code = status_code
        self.payload: Dict[str, Any] = dict(payload)


def missing_parameter(
    message: str,
    *,
    error: str = "Missing required parameter",
    **details: Any,
) -> GatewayError:
    payload: Dict[str, Any] = {"error": error, "message": message}
    payload.update(details)
    return GatewayError(status.HTTP_400_BAD_REQUEST, payload)


def invalid_parameter(error: str, message: str, **details: Any) -> GatewayError:
    payload: Dict[str, Any] = {"error": error, "message": message}
    payload.update(details)
    return GatewayError(status.HTTP_400_BAD_REQUEST, payload)


def credentials_not_configured() -> GatewayError:
    return GatewayError(
        status.HTTP_400_BAD_REQUEST,
        {
            "error": "Kraken API credentials not configured",
            "message": "Please set KRAKEN_API_KEY and KRAKEN_API_SECRET environment variables",
        },
    )


def upstream_failure(failure: str, exc: BaseException, *, hint: Optional[str] = None) -> GatewayError:
    payload: Dict[str, Any] = {"error": failure, "details": str(exc)}
    if hint:
        payload["hint"] = hint
    return GatewayError(status.HTTP_500_INTERNAL_SERVER_ERROR, payload)


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    return JSONResponse(exc.payload, status_code=exc.status_code)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("Rejected %s %s: invalid parameters", request.method, request.url.path)
    return JSONResponse(
        {
            "error": "Invalid request parameters",
            "message": "One or more parameters have an invalid type or format",
            "details": jsonable_encoder(exc.errors()),
        },
        status_code=status.HTTP_400_BAD_REQUEST,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error while serving %s %s", request.method, request.url.path)
    return JSONResponse(
        {"error": "Internal server error"},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(GatewayError, _gateway_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)


__all__ = [
    "GatewayError",
    "credentials_not_configured",
    "invalid_parameter",
    "missing_parameter",
    "register_error_handlers",
    "upstream_failure",
]
