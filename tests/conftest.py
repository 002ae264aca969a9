"""
Pytest configuration and fixtures for CourierHub tests.

Every vendor interaction goes through httpx.MockTransport; nothing here
touches the network.
"""
import json
import os
from typing import Callable, List, Tuple

import httpx
import pytest

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "DEBUG"

from courierhub.core.http_client import ResilientHTTPClient, RetryConfig  # noqa: E402
from courierhub.modules.shipping.types import (  # noqa: E402
    LineItem,
    PackageDimensions,
    PaymentMode,
    ProviderConfig,
    ShippingRequest,
)

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingTransport:
    """MockTransport handler that remembers every request it served."""

    def __init__(self, handler: Handler):
        self.handler = handler
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    @property
    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]

    def json_body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


def route(routes: dict, default: httpx.Response = None) -> Handler:
    """
    Build a handler answering by URL path suffix.

    Values may be a Response or a callable taking the request.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        for suffix, answer in routes.items():
            if request.url.path.endswith(suffix):
                return answer(request) if callable(answer) else answer
        if default is not None:
            return default
        return httpx.Response(404, json={"message": f"no route for {request.url.path}"})
    return handler


@pytest.fixture
def path_router() -> Callable[..., Handler]:
    return route


@pytest.fixture
def fast_retry() -> RetryConfig:
    """Retry config with no waiting between attempts."""
    return RetryConfig(timeout_ms=2000, max_retries=2, backoff_ms=0, jitter_ms=0)


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_http_client(fast_retry, sleeps) -> Callable[[Handler], Tuple[ResilientHTTPClient, RecordingTransport]]:
    """Factory: (handler) -> (ResilientHTTPClient on MockTransport, recorder)."""

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    def _make(handler: Handler, retry_config: RetryConfig = None):
        recorder = RecordingTransport(handler)
        client = ResilientHTTPClient(
            retry_config=retry_config or fast_retry,
            client=httpx.AsyncClient(transport=httpx.MockTransport(recorder)),
            sleep=fake_sleep,
            rng=lambda: 0.5,
        )
        return client, recorder

    return _make


@pytest.fixture
def sample_request() -> ShippingRequest:
    """Complete domestic request, New Delhi -> Mumbai."""
    return ShippingRequest(
        order_id="ORD-1001",
        pickup_pincode="110001",
        delivery_pincode="400001",
        weight=1250,
        invoice_value=1499.0,
        payment_method=PaymentMode.PREPAID,
        dimensions=PackageDimensions(length=30, width=20, height=5),
        customer_name="Asha Rao",
        customer_address="12 Marine Drive",
        customer_city="Mumbai",
        customer_state="Maharashtra",
        customer_phone="9876543210",
        customer_email="asha@example.com",
        pickup_location="Main Warehouse",
        pickup_address="4 Connaught Place",
        pickup_city="New Delhi",
        pickup_state="Delhi",
        pickup_phone="9123456780",
        items=(LineItem(name="Comic Box Set", sku="CBX-1", quantity=1, price=1499.0),),
    )


@pytest.fixture
def shiprocket_config() -> ProviderConfig:
    return ProviderConfig(
        id="shiprocket",
        credentials={"email": "ops@example.com", "password": "pw", "apiKey": "key"},
    )


@pytest.fixture
def shipway_config() -> ProviderConfig:
    return ProviderConfig(
        id="shipway",
        credentials={"username": "merchant", "licenseKey": "lic-123"},
    )


@pytest.fixture
def shipyaari_config() -> ProviderConfig:
    return ProviderConfig(
        id="shipyaari",
        credentials={"userId": "u-1", "apiKey": "sy-key"},
    )
