"""HTTP routes forwarding gateway requests to the Kraken client.

Each handler checks its required parameters, performs exactly one delegated
call and returns Kraken's ``result`` unchanged.  Failures of the delegated
call surface as 500 responses carrying the upstream message and a hint.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Protocol

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse

from metrics import increment_upstream_error
from services.kraken_gateway.config import GatewaySettings
from services.kraken_gateway.errors import (
    credentials_not_configured,
    invalid_parameter,
    missing_parameter,
    upstream_failure,
)
from services.kraken_gateway.schemas import (
    ADD_ORDER_OPTIONAL_FIELDS,
    ADD_ORDER_REQUIRED_FIELDS,
    AddOrderRequest,
    CancelAllOrdersAfterRequest,
    CancelOrderRequest,
    MAX_CANCEL_AFTER_TIMEOUT,
)
from services.kraken_gateway.selftest import (
    DEFAULT_TIMEOUT,
    MAX_TIMEOUT,
    REPORT_FORMATS,
    render_html,
    run_self_test,
)

LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "Kraken API Service"

router = APIRouter()


class ExchangeClient(Protocol):
    async def time(self) -> Any: ...

    async def system_status(self) -> Any: ...

    async def assets(self, params: Optional[Mapping[str, Any]] = None) -> Any: ...

    async def asset_pairs(self, params: Optional[Mapping[str, Any]] = None) -> Any: ...

    async def ticker(self, params: Mapping[str, Any]) -> Any: ...

    async def ohlc(self, params: Mapping[str, Any]) -> Any: ...

    async def depth(self, params: Mapping[str, Any]) -> Any: ...

    async def trades(self, params: Mapping[str, Any]) -> Any: ...

    async def spread(self, params: Mapping[str, Any]) -> Any: ...

    async def balance(self) -> Any: ...

    async def add_order(self, params: Mapping[str, Any]) -> Any: ...

    async def cancel_order(self, params: Mapping[str, Any]) -> Any: ...

    async def cancel_all(self) -> Any: ...

    async def cancel_all_orders_after(self, params: Mapping[str, Any]) -> Any: ...


def get_kraken_client(request: Request) -> ExchangeClient:
    return request.app.state.kraken_client


def get_settings(request: Request) -> GatewaySettings:
    return request.app.state.settings


def require_credentials(settings: GatewaySettings = Depends(get_settings)) -> None:
    if not settings.has_credentials:
        raise credentials_not_configured()


async def _delegate(
    operation: str,
    call: Callable[[], Awaitable[Any]],
    *,
    failure: str,
    hint: Optional[str] = None,
) -> Any:
    try:
        return await call()
    except Exception as exc:
        LOGGER.exception("Kraken %s call failed", operation)
        increment_upstream_error(operation)
        raise upstream_failure(failure, exc, hint=hint) from exc


def _optional_int(name: str, value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        raise invalid_parameter(
            f"Invalid {name} value", f"{name} must be an integer", provided=value
        ) from None


def _require_pair(pair: Optional[str], example: str) -> str:
    if not pair:
        raise missing_parameter("pair parameter is required", example=example)
    return pair


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "OK", "service": SERVICE_NAME}


@router.get("/api/time")
async def server_time(client: ExchangeClient = Depends(get_kraken_client)) -> Any:
    return await _delegate("time", client.time, failure="Failed to get server time")


# Market data (public) ----------------------------------------------------


@router.get("/api/system-status")
async def system_status(client: ExchangeClient = Depends(get_kraken_client)) -> Any:
    return await _delegate(
        "system_status", client.system_status, failure="Failed to get system status"
    )


@router.get("/api/assets")
async def assets(
    asset: Optional[str] = None,
    aclass: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {}
    if asset:
        params["asset"] = asset
    if aclass:
        params["aclass"] = aclass
    return await _delegate(
        "assets",
        lambda: client.assets(params),
        failure="Failed to get assets",
        hint="Optional query parameters: asset (comma-separated), aclass (currency class)",
    )


@router.get("/api/asset-pairs")
async def asset_pairs(
    pair: Optional[str] = None,
    info: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {}
    if pair:
        params["pair"] = pair
    if info:
        params["info"] = info
    return await _delegate(
        "asset_pairs",
        lambda: client.asset_pairs(params),
        failure="Failed to get asset pairs",
        hint="Optional query parameters: pair (comma-separated), info (leverage|fees|margin)",
    )


@router.get("/api/ticker")
async def ticker(
    pair: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params = {"pair": _require_pair(pair, "/api/ticker?pair=XXBTZUSD")}
    return await _delegate(
        "ticker",
        lambda: client.ticker(params),
        failure="Failed to get ticker",
        hint="Required query parameter: pair (e.g., XXBTZUSD, XETHZUSD)",
    )


@router.get("/api/ohlc")
async def ohlc(
    pair: Optional[str] = None,
    interval: Optional[str] = None,
    since: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {"pair": _require_pair(pair, "/api/ohlc?pair=XXBTZUSD&interval=60")}
    interval_value = _optional_int("interval", interval)
    if interval_value is not None:
        params["interval"] = interval_value
    if since:
        params["since"] = since
    return await _delegate(
        "ohlc",
        lambda: client.ohlc(params),
        failure="Failed to get OHLC data",
        hint=(
            "Required: pair. Optional: interval (1,5,15,30,60,240,1440,10080,21600), "
            "since (timestamp)"
        ),
    )


@router.get("/api/depth")
async def depth(
    pair: Optional[str] = None,
    count: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {"pair": _require_pair(pair, "/api/depth?pair=XXBTZUSD&count=10")}
    count_value = _optional_int("count", count)
    if count_value is not None:
        params["count"] = count_value
    return await _delegate(
        "depth",
        lambda: client.depth(params),
        failure="Failed to get order book depth",
        hint="Required: pair. Optional: count (maximum number of asks/bids, default 100)",
    )


@router.get("/api/trades")
async def trades(
    pair: Optional[str] = None,
    since: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {"pair": _require_pair(pair, "/api/trades?pair=XXBTZUSD")}
    if since:
        params["since"] = since
    return await _delegate(
        "trades",
        lambda: client.trades(params),
        failure="Failed to get recent trades",
        hint="Required: pair. Optional: since (timestamp)",
    )


@router.get("/api/spread")
async def spread(
    pair: Optional[str] = None,
    since: Optional[str] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    params: Dict[str, Any] = {"pair": _require_pair(pair, "/api/spread?pair=XXBTZUSD")}
    if since:
        params["since"] = since
    return await _delegate(
        "spread",
        lambda: client.spread(params),
        failure="Failed to get spread data",
        hint="Required: pair. Optional: since (timestamp)",
    )


# Account and trading (private) -------------------------------------------


@router.get("/api/balance", dependencies=[Depends(require_credentials)])
async def balance(client: ExchangeClient = Depends(get_kraken_client)) -> Any:
    return await _delegate(
        "balance",
        client.balance,
        failure="Failed to get account balance",
        hint='Make sure your API key has "Query Funds" permission',
    )


@router.post("/api/add-order", dependencies=[Depends(require_credentials)])
async def add_order(
    body: Optional[AddOrderRequest] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    order = body or AddOrderRequest()
    if order.missing_fields():
        raise missing_parameter(
            "pair, type, ordertype, and volume are required",
            error="Missing required parameters",
            required=ADD_ORDER_REQUIRED_FIELDS,
            optional=ADD_ORDER_OPTIONAL_FIELDS,
        )
    params = order.to_params()
    return await _delegate(
        "add_order",
        lambda: client.add_order(params),
        failure="Failed to add order",
        hint='Make sure your API key has "Create & Modify Orders" permission',
    )


@router.post("/api/cancel-order", dependencies=[Depends(require_credentials)])
async def cancel_order(
    body: Optional[CancelOrderRequest] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    txid = body.txid if body is not None else None
    if not txid:
        raise missing_parameter(
            "txid is required",
            required={"txid": "Transaction ID of the order to cancel"},
            example={"txid": "OQCLML-BW3P3-BUCMWZ"},
        )
    return await _delegate(
        "cancel_order",
        lambda: client.cancel_order({"txid": txid}),
        failure="Failed to cancel order",
        hint='Make sure your API key has "Cancel Orders" permission and the order ID is valid',
    )


@router.post("/api/cancel-all", dependencies=[Depends(require_credentials)])
async def cancel_all(client: ExchangeClient = Depends(get_kraken_client)) -> Any:
    return await _delegate(
        "cancel_all",
        client.cancel_all,
        failure="Failed to cancel all orders",
        hint='Make sure your API key has "Cancel Orders" permission',
    )


@router.post("/api/cancel-all-orders-after", dependencies=[Depends(require_credentials)])
async def cancel_all_orders_after(
    body: Optional[CancelAllOrdersAfterRequest] = None,
    client: ExchangeClient = Depends(get_kraken_client),
) -> Any:
    timeout = body.timeout if body is not None else None
    if timeout is None:
        raise missing_parameter(
            "timeout is required",
            required={"timeout": f"Timeout in seconds (0 to disable, max {MAX_CANCEL_AFTER_TIMEOUT})"},
            examples={
                "disable": {"timeout": 0},
                "oneHour": {"timeout": 3600},
                "oneDay": {"timeout": MAX_CANCEL_AFTER_TIMEOUT},
            },
        )
    if not 0 <= timeout <= MAX_CANCEL_AFTER_TIMEOUT:
        raise invalid_parameter(
            "Invalid timeout value",
            f"Timeout must be between 0 and {MAX_CANCEL_AFTER_TIMEOUT} seconds (24 hours)",
            provided=timeout,
        )
    return await _delegate(
        "cancel_all_orders_after",
        lambda: client.cancel_all_orders_after({"timeout": timeout}),
        failure="Failed to set cancel-all-orders-after",
        hint='Make sure your API key has "Cancel Orders" permission',
    )


# Self-test ----------------------------------------------------------------


@router.get("/test")
async def self_test(
    request: Request,
    report_format: str = Query("json", alias="format"),
    timeout: float = Query(DEFAULT_TIMEOUT),
    settings: GatewaySettings = Depends(get_settings),
) -> Any:
    if report_format not in REPORT_FORMATS:
        raise invalid_parameter(
            "Invalid format",
            f"format must be one of: {', '.join(REPORT_FORMATS)}",
            provided=report_format,
        )
    if not 0 < timeout <= MAX_TIMEOUT:
        raise invalid_parameter(
            "Invalid timeout value",
            f"timeout must be greater than 0 and at most {MAX_TIMEOUT:g} seconds",
            provided=timeout,
        )

    if settings.self_test_url:
        report = await run_self_test(base_url=settings.self_test_url, timeout=timeout)
    else:
        report = await run_self_test(app=request.app, timeout=timeout)

    if report_format == "html":
        return HTMLResponse(render_html(report))
    if report_format == "summary":
        return {"summary": report.summary(), "timestamp": report.timestamp}
    return report.as_dict()


__all__ = [
    "ExchangeClient",
    "SERVICE_NAME",
    "get_kraken_client",
    "get_settings",
    "require_credentials",
    "router",
]
