"""Shared pytest configuration for the gateway test suite."""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from services.kraken_gateway.config import GatewaySettings
from services.kraken_gateway.main import create_app
from tests.mocks.mock_kraken import (  # noqa: F401 - re-exported fixtures
    MockKrakenClient,
    failing_kraken_client,
    mock_kraken_client,
)

# base64("kraken-test-secret")
TEST_API_SECRET = "a3Jha2VuLXRlc3Qtc2VjcmV0"


@pytest.fixture
def gateway_settings() -> GatewaySettings:
    return GatewaySettings(api_key="test-key", api_secret=TEST_API_SECRET)


@pytest.fixture
def anonymous_settings() -> GatewaySettings:
    return GatewaySettings()


@pytest.fixture
def gateway_client(
    gateway_settings: GatewaySettings, mock_kraken_client: MockKrakenClient
) -> Iterator[TestClient]:
    app = create_app(settings=gateway_settings, client=mock_kraken_client)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def anonymous_client(
    anonymous_settings: GatewaySettings, mock_kraken_client: MockKrakenClient
) -> Iterator[TestClient]:
    app = create_app(settings=anonymous_settings, client=mock_kraken_client)
    with TestClient(app) as client:
        yield client
