"""
Tests for the Shipway adapter.
"""
import dataclasses

import httpx
import pytest

from courierhub.core.exceptions import ErrorCode
from courierhub.modules.shipping.providers.shipway import ShipwayProvider
from courierhub.modules.shipping.types import NormalizedStatus, PickupLocation, ProviderConfig

RATES = {
    "success": True,
    "couriers": [
        {"name": "Xpressbees", "service_id": 301, "courier_id": 9, "rate": 72.0, "estimated_days": 5},
        {"name": "Ekart", "service": "EKART-STD", "rate": 64.5,
         "insurance_available": True, "insurance_rate": 12.0},
    ],
}


@pytest.fixture
def provider_for(make_http_client, shipway_config):
    def _make(handler, config=None):
        client, recorder = make_http_client(handler)
        return ShipwayProvider(config or shipway_config, client), recorder
    return _make


class TestConfiguration:
    def test_requires_username_and_license_key(self, provider_for):
        provider, _ = provider_for(lambda r: httpx.Response(200))
        partial, _ = provider_for(
            lambda r: httpx.Response(200), ProviderConfig(id="shipway", credentials={"username": "merchant"})
        )

        assert provider.is_configured()
        assert not partial.is_configured()

    def test_test_mode_selects_staging(self, provider_for, shipway_config):
        live, _ = provider_for(lambda r: httpx.Response(200))
        staging, _ = provider_for(lambda r: httpx.Response(200), dataclasses.replace(shipway_config, test_mode=True))

        assert live.base_url == "https://shipway.in/api"
        assert staging.base_url == "https://staging.shipway.in/api"


class TestRates:
    @pytest.mark.asyncio
    async def test_rates_carry_credentials_and_package(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            "/courier/serviceability": httpx.Response(200, json=RATES),
        }))

        rates = await provider.get_rates(sample_request)

        body = recorder.json_body()
        assert body["username"] == "merchant"
        assert body["license_key"] == "lic-123"
        assert body["pickup_pincode"] == "110001"
        assert body["delivery_pincode"] == "400001"
        assert body["weight"] == 1.25
        assert body["invoice_value"] == 1499.0
        assert body["payment_type"] == "Prepaid"

        assert [r.service_id for r in rates] == ["301", "EKART-STD"]
        assert rates[0].carrier_id == "9"
        assert rates[0].estimated_delivery_days == 5
        # No quoted transit time falls back to the default
        assert rates[1].estimated_delivery_days == 3
        assert rates[1].has_insurance
        assert rates[1].insurance_cost == 12.0

    @pytest.mark.asyncio
    async def test_transit_range_uses_lower_bound(self, provider_for, path_router, sample_request):
        provider, _ = provider_for(path_router({
            "/courier/serviceability": httpx.Response(200, json={"success": True, "couriers": [
                {"name": "Delhivery", "service_id": 305, "rate": 80.0, "estimated_days": "2-3"},
            ]}),
        }))

        rates = await provider.get_rates(sample_request)

        assert rates[0].estimated_delivery_days == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"success": False, "message": "Pincode not serviceable"},
        {"success": True, "couriers": []},
    ])
    async def test_unserviceable_is_empty_list(self, provider_for, path_router, sample_request, body):
        provider, _ = provider_for(path_router({"/courier/serviceability": httpx.Response(200, json=body)}))

        assert await provider.get_rates(sample_request) == []

    @pytest.mark.asyncio
    async def test_persistent_outage_is_empty_list(self, provider_for, sample_request):
        provider, recorder = provider_for(lambda r: httpx.Response(503))

        assert await provider.get_rates(sample_request) == []
        assert recorder.call_count == 3


class TestShipments:
    @pytest.mark.asyncio
    async def test_create_shipment(self, provider_for, path_router, sample_request):
        request = dataclasses.replace(sample_request, insurance_required=True, insurance_value=1499.0)
        provider, recorder = provider_for(path_router({
            "/orders/create": httpx.Response(200, json={
                "success": True, "tracking_number": "SW998", "label_url": "https://labels.test/sw.pdf",
                "shipment_id": 44, "courier_name": "Xpressbees", "expected_delivery_date": "2024-05-06",
            }),
        }))

        resp = await provider.create_shipment(request, "301")

        assert resp.success
        assert resp.tracking_id == "SW998"
        assert resp.shipment_id == "44"
        assert resp.insurance_details.policy_number == "SW998"
        assert resp.insurance_details.coverage_amount == 1499.0

        body = recorder.json_body()
        assert body["service_id"] == "301"
        assert body["customer_pincode"] == "400001"
        assert body["insurance"] == "Yes"
        assert "webhook_url" not in body

    @pytest.mark.asyncio
    async def test_webhook_url_is_forwarded(self, provider_for, path_router, sample_request, shipway_config):
        config = dataclasses.replace(shipway_config, webhook_url="https://shop.test/hooks/shipway")
        provider, recorder = provider_for(
            path_router({"/orders/create": httpx.Response(200, json={"success": True, "awb": "SW1"})}),
            config,
        )

        resp = await provider.create_shipment(sample_request, "301")

        assert resp.tracking_id == "SW1"
        assert recorder.json_body()["webhook_url"] == "https://shop.test/hooks/shipway"

    @pytest.mark.asyncio
    async def test_business_rejection(self, provider_for, path_router, sample_request):
        provider, _ = provider_for(path_router({
            "/orders/create": httpx.Response(200, json={"success": False, "message": "Duplicate order"}),
        }))

        resp = await provider.create_shipment(sample_request, "301")

        assert not resp.success
        assert resp.error == ErrorCode.VENDOR_ERROR
        assert "Duplicate order" in resp.message

    @pytest.mark.asyncio
    async def test_numeric_awb_is_accepted(self, provider_for, path_router, sample_request):
        provider, _ = provider_for(path_router({
            "/orders/create": httpx.Response(200, json={"success": True, "tracking_number": 7788990011, "shipment_id": 45}),
        }))

        resp = await provider.create_shipment(sample_request, "301")

        assert resp.success
        assert resp.tracking_id == "7788990011"

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_parse_error(self, provider_for, path_router, sample_request):
        provider, _ = provider_for(path_router({
            "/orders/create": httpx.Response(200, json=["unexpected"]),
        }))

        resp = await provider.create_shipment(sample_request, "301")

        assert not resp.success
        assert resp.error == ErrorCode.PARSE_ERROR


class TestTrackingAndCancel:
    @pytest.mark.asyncio
    async def test_tracking(self, provider_for, path_router):
        provider, recorder = provider_for(path_router({
            "/tracking": httpx.Response(200, json={
                "success": True,
                "courier_name": "Xpressbees",
                "current_status": {"status": "In Transit", "description": "Arrived at hub", "location": "Pune"},
                "tracking_history": [
                    {"status": "In Transit", "date": "2024-05-02", "time": "09:15:00", "location": "Pune"},
                    {"status": "Picked Up", "date": None, "location": "Delhi", "remarks": "Pickup done"},
                ],
            }),
        }))

        resp = await provider.track_shipment("SW998")

        assert recorder.json_body()["awb"] == "SW998"
        assert resp.success
        assert resp.status == "In Transit"
        assert resp.current_location == "Pune"
        assert resp.message == "Arrived at hub"
        assert resp.history[0].timestamp.hour == 9
        assert resp.history[1].timestamp is None
        assert resp.history[1].description == "Pickup done"

    @pytest.mark.asyncio
    async def test_cancel_success_is_a_status_string(self, provider_for, path_router):
        provider, recorder = provider_for(path_router({
            "/CancelShipment": httpx.Response(200, json={"status": "Success", "message": "Cancelled", "code": 200}),
        }))

        resp = await provider.cancel_shipment("SW998")

        assert resp.success
        assert resp.cancellation_id == "SW998"
        assert resp.response_code == "200"
        assert recorder.json_body() == {
            "username": "merchant", "password": "lic-123", "carrier": "shipway", "awb": "SW998",
        }

    @pytest.mark.asyncio
    async def test_cancel_rejected(self, provider_for, path_router):
        provider, _ = provider_for(path_router({
            "/CancelShipment": httpx.Response(200, json={"status": "Failed", "message": "Already shipped"}),
        }))

        resp = await provider.cancel_shipment("SW998")

        assert not resp.success
        assert resp.message == "Already shipped"

    @pytest.mark.asyncio
    async def test_cancel_test_mode_url(self, provider_for, path_router, shipway_config):
        provider, recorder = provider_for(
            path_router({"/CancelShipment/test": httpx.Response(200, json={"status": "success"})}),
            dataclasses.replace(shipway_config, test_mode=True),
        )

        resp = await provider.cancel_shipment("SW998")

        assert resp.success
        assert recorder.paths == ["/api/CancelShipment/test"]


class TestPickupReturnsAndNdr:
    @pytest.mark.asyncio
    async def test_pickup_locations(self, provider_for, path_router):
        provider, _ = provider_for(path_router({
            "/pickup/locations": httpx.Response(200, json={"success": True, "pickup_locations": [
                {"id": 3, "name": "Main Warehouse", "address": "4 CP", "city": "New Delhi",
                 "state": "Delhi", "pincode": "110001", "phone": "9123456780", "is_default": 1},
            ]}),
        }))

        locations = await provider.get_pickup_locations()

        assert locations[0].id == "3"
        assert locations[0].is_default

    @pytest.mark.asyncio
    async def test_create_pickup_location(self, provider_for, path_router):
        provider, _ = provider_for(path_router({
            "/pickup/create": httpx.Response(200, json={"success": True, "id": 17}),
        }))
        location = PickupLocation(
            id="", name="Annex", address="9 Ring Rd", city="Delhi", state="Delhi",
            pincode="110002", phone="9000000000",
        )

        resp = await provider.create_pickup_location(location)

        assert resp.success
        assert resp.location.id == "17"
        assert resp.location.name == "Annex"

    @pytest.mark.asyncio
    async def test_return_swaps_addresses(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            "/returns/create": httpx.Response(200, json={"success": True, "awb": "RET-1"}),
        }))

        resp = await provider.create_return_shipment("SW998", sample_request)

        body = recorder.json_body()
        assert resp.success
        assert resp.tracking_id == "RET-1"
        assert body["pickup_pincode"] == sample_request.delivery_pincode
        assert body["delivery_pincode"] == sample_request.pickup_pincode

    @pytest.mark.asyncio
    async def test_resolve_ndr(self, provider_for, path_router):
        provider, recorder = provider_for(path_router({
            "/ndr/resolve": httpx.Response(200, json={"success": True, "message": "Reattempt scheduled"}),
        }))

        resp = await provider.resolve_ndr("SW998", action="rto")

        assert resp.success
        assert recorder.json_body()["action"] == "rto"

    @pytest.mark.asyncio
    async def test_resolve_ndr_rejects_unknown_action(self, provider_for):
        provider, recorder = provider_for(lambda r: httpx.Response(200))

        resp = await provider.resolve_ndr("SW998", action="shrug")

        assert resp.error == ErrorCode.VALIDATION_ERROR
        assert recorder.call_count == 0


class TestWebhooks:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [
        ("delivered", NormalizedStatus.DELIVERED),
        ("out_for_delivery", NormalizedStatus.SHIPPED),
        ("picked_up", NormalizedStatus.SHIPPED),
        ("cancelled", NormalizedStatus.CANCELLED),
        ("rto_initiated", None),
    ])
    async def test_status_mapping(self, provider_for, status, expected):
        provider, _ = provider_for(lambda r: httpx.Response(200))

        event = await provider.process_webhook_event({"status": status, "awb": "SW998", "order_id": "ORD-1001"})

        assert event.normalized_status == expected
        assert event.awb == "SW998"

    @pytest.mark.asyncio
    async def test_ndr_event_carries_reason(self, provider_for):
        provider, _ = provider_for(lambda r: httpx.Response(200))

        event = await provider.process_webhook_event({"status": "NDR", "awb": "SW998"})

        assert event.ndr_reason == "Unknown reason"
        assert event.normalized_status is None

    @pytest.mark.asyncio
    async def test_event_without_status_is_dropped(self, provider_for):
        provider, _ = provider_for(lambda r: httpx.Response(200))

        assert await provider.process_webhook_event({"awb": "SW998"}) is None
