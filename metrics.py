"""Shared Prometheus metrics helpers for the gateway."""

from __future__ import annotations

import time
from typing import Dict, Optional

from fastapi import FastAPI, Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

_REGISTRY = CollectorRegistry()

_http_requests_total = Counter(
    "gateway_http_requests_total",
    "HTTP requests served by the gateway.",
    ["service", "method", "route", "status"],
    registry=_REGISTRY,
)
_http_request_latency_seconds = Histogram(
    "gateway_http_request_latency_seconds",
    "Latency of HTTP requests served by the gateway.",
    ["service", "method", "route"],
    registry=_REGISTRY,
)
_upstream_errors_total = Counter(
    "gateway_upstream_errors_total",
    "Delegated Kraken calls that failed.",
    ["service", "operation"],
    registry=_REGISTRY,
)

_METRICS: Dict[str, Counter | Histogram] = {
    "gateway_http_requests_total": _http_requests_total,
    "gateway_http_request_latency_seconds": _http_request_latency_seconds,
    "gateway_upstream_errors_total": _upstream_errors_total,
}

_SERVICE_NAME = "service"


def _normalised(value: Optional[str], default: str) -> str:
    if value and value.strip():
        return value.strip()
    return default


def _service_value(service: Optional[str] = None) -> str:
    return service or _SERVICE_NAME or "service"


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or "unmatched"


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Starlette middleware recording request counts and latency per route."""

    def __init__(self, app: FastAPI, service_name: str):
        super().__init__(app)
        self._service_name = service_name

    async def dispatch(self, request: Request, call_next):
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            route = _route_label(request)
            _http_requests_total.labels(
                service=self._service_name,
                method=request.method,
                route=route,
                status=str(status_code),
            ).inc()
            _http_request_latency_seconds.labels(
                service=self._service_name, method=request.method, route=route
            ).observe(time.perf_counter() - started)


def init_metrics(service_name: str = "service") -> Dict[str, Counter | Histogram]:
    """Store the configured service name and return the metric registry map."""

    global _SERVICE_NAME
    _SERVICE_NAME = _normalised(service_name, "service")
    return _METRICS


def get_registry() -> CollectorRegistry:
    return _REGISTRY


def setup_metrics(app: FastAPI, service_name: str = "service") -> None:
    """Attach the Prometheus /metrics endpoint and request metrics middleware."""

    init_metrics(service_name)

    if not any(
        getattr(middleware, "cls", None) is RequestMetricsMiddleware
        for middleware in app.user_middleware
    ):
        app.add_middleware(RequestMetricsMiddleware, service_name=_SERVICE_NAME)

    if not any(getattr(route, "path", None) == "/metrics" for route in app.routes):
        @app.get("/metrics", include_in_schema=False)
        async def metrics_endpoint() -> Response:  # pragma: no cover - simple I/O
            payload = generate_latest(_REGISTRY)
            return Response(payload, media_type=CONTENT_TYPE_LATEST)


def increment_upstream_error(operation: str, *, service: Optional[str] = None) -> None:
    _upstream_errors_total.labels(
        service=_service_value(service), operation=_normalised(operation, "unknown")
    ).inc()


__all__ = [
    "RequestMetricsMiddleware",
    "get_registry",
    "increment_upstream_error",
    "init_metrics",
    "setup_metrics",
]
