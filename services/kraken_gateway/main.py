"""Kraken gateway service: application factory and process entrypoint."""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from metrics import setup_metrics
from services.kraken_gateway.config import (
    GatewaySettings,
    load_settings,
    missing_credentials,
)
from services.kraken_gateway.errors import register_error_handlers
from services.kraken_gateway.kraken_rest import KrakenRESTClient, static_credentials
from services.kraken_gateway.routes import SERVICE_NAME, ExchangeClient, router
from shared.correlation import CorrelationIdFilter, CorrelationIdMiddleware
from shared.graceful_shutdown import setup_graceful_shutdown

logger = logging.getLogger(__name__)

METRICS_SERVICE_NAME = "kraken-gateway"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(existing, CorrelationIdFilter) for existing in handler.filters):
            handler.addFilter(CorrelationIdFilter())


def _build_kraken_client(settings: GatewaySettings) -> KrakenRESTClient:
    return KrakenRESTClient(
        credential_getter=static_credentials(settings.api_key, settings.api_secret),
        base_url=settings.kraken_api_url,
        timeout=settings.request_timeout,
        max_retries=settings.max_retries,
    )


def create_app(
    *,
    settings: Optional[GatewaySettings] = None,
    client: Optional[ExchangeClient] = None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title=SERVICE_NAME)

    shutdown = setup_graceful_shutdown(
        app,
        service_name=METRICS_SERVICE_NAME,
        shutdown_timeout=settings.shutdown_timeout,
        logger_instance=logger,
    )
    setup_metrics(app, service_name=METRICS_SERVICE_NAME)

    @app.middleware("http")
    async def _log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
        return response

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[CorrelationIdMiddleware.header_name],
    )
    register_error_handlers(app)

    kraken_client = client if client is not None else _build_kraken_client(settings)
    close = getattr(kraken_client, "close", None)
    if callable(close):
        shutdown.register_flush_callback(close)

    app.state.settings = settings
    app.state.kraken_client = kraken_client
    app.include_router(router)

    logger.info("Kraken API client initialized")
    return app


def _log_startup_banner(settings: GatewaySettings) -> None:
    base = f"http://localhost:{settings.port}"
    logger.info("Kraken API service listening on %s:%s", settings.host, settings.port)
    logger.info("Health check: %s/health", base)
    logger.info("Server time: %s/api/time", base)
    logger.info(
        "Market data (GET): %s",
        ", ".join(
            f"{base}{path}"
            for path in (
                "/api/system-status",
                "/api/assets",
                "/api/asset-pairs",
                "/api/ticker?pair=XXBTZUSD",
                "/api/ohlc?pair=XXBTZUSD",
                "/api/depth?pair=XXBTZUSD",
                "/api/trades?pair=XXBTZUSD",
                "/api/spread?pair=XXBTZUSD",
            )
        ),
    )
    logger.info("Account (GET, authenticated): %s/api/balance", base)
    logger.info(
        "Trading (POST, authenticated): %s",
        ", ".join(
            f"{base}{path}"
            for path in (
                "/api/add-order",
                "/api/cancel-order",
                "/api/cancel-all",
                "/api/cancel-all-orders-after",
            )
        ),
    )
    logger.info("Self-test: %s/test?format=summary", base)


def main() -> None:
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    missing = missing_credentials()
    if missing:
        logger.error("Missing required environment variables: %s", ", ".join(missing))
        logger.error("Set them in the service environment before starting the gateway")
        raise SystemExit(1)

    settings = load_settings()
    logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))
    app = create_app(settings=settings)
    _log_startup_banner(settings)

    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


__all__ = ["configure_logging", "create_app", "main"]


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    main()
