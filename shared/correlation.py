"""Correlation ID utilities and middleware."""
from __future__ import annotations

import logging
import uuid
from contextvars import ContextVar
from typing import Any, Awaitable, Callable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

_correlation_id_ctx: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def get_correlation_id() -> Optional[str]:
    """Return the correlation ID for the current request context if present."""
    return _correlation_id_ctx.get()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Middleware that accepts or assigns a correlation ID for every request."""

    header_name = "X-Correlation-ID"

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Any]]
    ) -> Any:
        incoming_id = request.headers.get(self.header_name)
        correlation_id = incoming_id or str(uuid.uuid4())
        token = _correlation_id_ctx.set(correlation_id)
        logger.debug("Assigned correlation id %s", correlation_id)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_ctx.reset(token)
        response.headers[self.header_name] = correlation_id
        return response


class CorrelationIdFilter(logging.Filter):
    """Logging filter stamping ``record.correlation_id`` (``-`` outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True


__all__ = [
    "CorrelationIdFilter",
    "CorrelationIdMiddleware",
    "get_correlation_id",
]
