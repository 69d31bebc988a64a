from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from services.kraken_gateway.config import GatewaySettings
from services.kraken_gateway.kraken_rest import KrakenRESTError
from services.kraken_gateway.main import create_app
from tests.mocks.mock_kraken import DEFAULT_RESULTS, MockKrakenClient


def test_health_reports_service_name(gateway_client: TestClient) -> None:
    response = gateway_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "OK", "service": "Kraken API Service"}


@pytest.mark.parametrize(
    ("path", "operation", "params"),
    [
        ("/api/time", "time", None),
        ("/api/system-status", "system_status", None),
        ("/api/assets", "assets", {}),
        ("/api/asset-pairs", "asset_pairs", {}),
        ("/api/ticker?pair=XXBTZUSD", "ticker", {"pair": "XXBTZUSD"}),
        ("/api/ohlc?pair=XXBTZUSD", "ohlc", {"pair": "XXBTZUSD"}),
        ("/api/depth?pair=XXBTZUSD", "depth", {"pair": "XXBTZUSD"}),
        ("/api/trades?pair=XXBTZUSD", "trades", {"pair": "XXBTZUSD"}),
        ("/api/spread?pair=XXBTZUSD", "spread", {"pair": "XXBTZUSD"}),
        ("/api/balance", "balance", None),
    ],
)
def test_get_routes_forward_to_kraken(
    gateway_client: TestClient,
    mock_kraken_client: MockKrakenClient,
    path: str,
    operation: str,
    params: object,
) -> None:
    response = gateway_client.get(path)

    assert response.status_code == 200
    assert response.json() == DEFAULT_RESULTS[operation]
    assert mock_kraken_client.calls == [(operation, params)]


def test_optional_query_parameters_are_forwarded_when_present(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    gateway_client.get("/api/assets", params={"asset": "XBT,ETH", "aclass": "currency"})
    gateway_client.get("/api/asset-pairs", params={"pair": "XXBTZUSD", "info": "fees"})
    gateway_client.get("/api/ohlc", params={"pair": "XXBTZUSD", "interval": 60, "since": "1700000000"})
    gateway_client.get("/api/depth", params={"pair": "XXBTZUSD", "count": 5})
    gateway_client.get("/api/trades", params={"pair": "XXBTZUSD", "since": "1700000000"})
    gateway_client.get("/api/spread", params={"pair": "XXBTZUSD", "since": "1700000000"})

    assert mock_kraken_client.calls_for("assets") == [{"asset": "XBT,ETH", "aclass": "currency"}]
    assert mock_kraken_client.calls_for("asset_pairs") == [{"pair": "XXBTZUSD", "info": "fees"}]
    assert mock_kraken_client.calls_for("ohlc") == [
        {"pair": "XXBTZUSD", "interval": 60, "since": "1700000000"}
    ]
    assert mock_kraken_client.calls_for("depth") == [{"pair": "XXBTZUSD", "count": 5}]
    assert mock_kraken_client.calls_for("trades") == [{"pair": "XXBTZUSD", "since": "1700000000"}]
    assert mock_kraken_client.calls_for("spread") == [{"pair": "XXBTZUSD", "since": "1700000000"}]


@pytest.mark.parametrize(
    "path", ["/api/ticker", "/api/ohlc", "/api/depth", "/api/trades", "/api/spread"]
)
def test_pair_is_required(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient, path: str
) -> None:
    response = gateway_client.get(path)

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Missing required parameter"
    assert payload["message"] == "pair parameter is required"
    assert payload["example"].startswith(path + "?pair=")
    assert mock_kraken_client.calls == []


def test_non_numeric_interval_is_rejected(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    response = gateway_client.get("/api/ohlc", params={"pair": "XXBTZUSD", "interval": "hourly"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid interval value"
    assert response.json()["provided"] == "hourly"
    assert mock_kraken_client.calls == []


def test_zero_count_and_interval_are_forwarded(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    gateway_client.get("/api/depth", params={"pair": "XXBTZUSD", "count": "0"})
    gateway_client.get("/api/ohlc", params={"pair": "XXBTZUSD", "interval": "0"})

    assert mock_kraken_client.calls_for("depth") == [{"pair": "XXBTZUSD", "count": 0}]
    assert mock_kraken_client.calls_for("ohlc") == [{"pair": "XXBTZUSD", "interval": 0}]


def test_empty_optional_query_parameters_are_skipped(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    ohlc = gateway_client.get("/api/ohlc?pair=XXBTZUSD&interval=&since=")
    depth = gateway_client.get("/api/depth?pair=XXBTZUSD&count=")

    assert ohlc.status_code == 200
    assert depth.status_code == 200
    assert mock_kraken_client.calls_for("ohlc") == [{"pair": "XXBTZUSD"}]
    assert mock_kraken_client.calls_for("depth") == [{"pair": "XXBTZUSD"}]


@pytest.mark.parametrize(
    ("method", "path", "body"),
    [
        ("GET", "/api/balance", None),
        ("POST", "/api/add-order", {"pair": "XXBTZUSD", "type": "buy", "ordertype": "market", "volume": "1"}),
        ("POST", "/api/cancel-order", {"txid": "OQCLML-BW3P3-BUCMWZ"}),
        ("POST", "/api/cancel-all", None),
        ("POST", "/api/cancel-all-orders-after", {"timeout": 60}),
    ],
)
def test_private_routes_require_credentials(
    anonymous_client: TestClient,
    mock_kraken_client: MockKrakenClient,
    method: str,
    path: str,
    body: object,
) -> None:
    response = anonymous_client.request(method, path, json=body)

    assert response.status_code == 400
    assert response.json() == {
        "error": "Kraken API credentials not configured",
        "message": "Please set KRAKEN_API_KEY and KRAKEN_API_SECRET environment variables",
    }
    assert mock_kraken_client.calls == []


def test_public_routes_work_without_credentials(
    anonymous_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    response = anonymous_client.get("/api/ticker", params={"pair": "XXBTZUSD"})

    assert response.status_code == 200
    assert mock_kraken_client.calls_for("ticker") == [{"pair": "XXBTZUSD"}]


@pytest.mark.parametrize("body", [{}, None, {"pair": "XXBTZUSD", "type": "buy", "ordertype": "limit"}])
def test_add_order_requires_core_fields(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient, body: object
) -> None:
    response = gateway_client.post("/api/add-order", json=body)

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Missing required parameters"
    assert set(payload["required"]) == {"pair", "type", "ordertype", "volume"}
    assert "validate" in payload["optional"]
    assert mock_kraken_client.calls == []


def test_add_order_forwards_only_supplied_fields(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    response = gateway_client.post(
        "/api/add-order",
        json={
            "pair": "XXBTZUSD",
            "type": "buy",
            "ordertype": "limit",
            "volume": "0.001",
            "price": "30000",
            "validate": True,
        },
    )

    assert response.status_code == 200
    assert response.json() == DEFAULT_RESULTS["add_order"]
    assert mock_kraken_client.calls_for("add_order") == [
        {
            "pair": "XXBTZUSD",
            "type": "buy",
            "ordertype": "limit",
            "volume": "0.001",
            "price": "30000",
            "validate": True,
        }
    ]


def test_cancel_order_requires_txid(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    response = gateway_client.post("/api/cancel-order", json={})

    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "txid is required"
    assert payload["example"] == {"txid": "OQCLML-BW3P3-BUCMWZ"}
    assert mock_kraken_client.calls == []


def test_cancel_order_and_cancel_all_forward(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    cancelled = gateway_client.post("/api/cancel-order", json={"txid": "OQCLML-BW3P3-BUCMWZ"})
    cancelled_all = gateway_client.post("/api/cancel-all")

    assert cancelled.json() == {"count": 1}
    assert cancelled_all.json() == {"count": 3}
    assert mock_kraken_client.calls == [
        ("cancel_order", {"txid": "OQCLML-BW3P3-BUCMWZ"}),
        ("cancel_all", None),
    ]


def test_cancel_all_orders_after_requires_timeout(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient
) -> None:
    response = gateway_client.post("/api/cancel-all-orders-after", json={})

    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "timeout is required"
    assert payload["examples"]["disable"] == {"timeout": 0}
    assert mock_kraken_client.calls == []


@pytest.mark.parametrize("timeout", [-1, 86401, 99999])
def test_cancel_all_orders_after_rejects_out_of_range(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient, timeout: int
) -> None:
    response = gateway_client.post("/api/cancel-all-orders-after", json={"timeout": timeout})

    assert response.status_code == 400
    payload = response.json()
    assert payload["error"] == "Invalid timeout value"
    assert payload["provided"] == timeout
    assert mock_kraken_client.calls == []


@pytest.mark.parametrize("timeout", [0, 86400])
def test_cancel_all_orders_after_accepts_boundaries(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient, timeout: int
) -> None:
    response = gateway_client.post("/api/cancel-all-orders-after", json={"timeout": timeout})

    assert response.status_code == 200
    assert mock_kraken_client.calls_for("cancel_all_orders_after") == [{"timeout": timeout}]


def test_upstream_failure_returns_details_and_hint(gateway_settings: GatewaySettings) -> None:
    client = MockKrakenClient(failures={"balance": KrakenRESTError("EAPI:Invalid key")})
    app = create_app(settings=gateway_settings, client=client)

    with TestClient(app) as test_client:
        response = test_client.get("/api/balance")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to get account balance",
        "details": "EAPI:Invalid key",
        "hint": 'Make sure your API key has "Query Funds" permission',
    }


def test_server_time_failure_has_no_hint(
    gateway_settings: GatewaySettings, failing_kraken_client: MockKrakenClient
) -> None:
    app = create_app(settings=gateway_settings, client=failing_kraken_client)

    with TestClient(app) as test_client:
        response = test_client.get("/api/time")

    assert response.status_code == 500
    assert response.json() == {
        "error": "Failed to get server time",
        "details": "EService:Unavailable",
    }


def test_correlation_id_is_echoed(gateway_client: TestClient) -> None:
    response = gateway_client.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"


def test_metrics_endpoint_exposes_request_counters(gateway_client: TestClient) -> None:
    gateway_client.get("/health")

    response = gateway_client.get("/metrics")

    assert response.status_code == 200
    assert "gateway_http_requests_total" in response.text


def test_client_is_closed_on_shutdown(
    gateway_settings: GatewaySettings, mock_kraken_client: MockKrakenClient
) -> None:
    app = create_app(settings=gateway_settings, client=mock_kraken_client)

    with TestClient(app):
        assert mock_kraken_client.closed is False

    assert mock_kraken_client.closed is True


def test_unexpected_errors_return_generic_500(gateway_settings: GatewaySettings) -> None:
    app = create_app(settings=gateway_settings, client=MockKrakenClient())

    @app.get("/boom")
    async def _boom() -> None:
        raise RuntimeError("unexpected")

    with TestClient(app, raise_server_exceptions=False) as test_client:
        response = test_client.get("/boom")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


@pytest.mark.parametrize("timeout", [True, "60", 1.5])
def test_cancel_all_orders_after_rejects_non_integer_timeout(
    gateway_client: TestClient, mock_kraken_client: MockKrakenClient, timeout: object
) -> None:
    response = gateway_client.post("/api/cancel-all-orders-after", json={"timeout": timeout})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request parameters"
    assert mock_kraken_client.calls == []
