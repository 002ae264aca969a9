"""
Tests for the Shipyaari adapter.
"""
import dataclasses

import httpx
import pytest

from courierhub.core.exceptions import ErrorCode
from courierhub.modules.shipping.providers.shipyaari import ShipyaariProvider
from courierhub.modules.shipping.types import PickupLocation, ProviderConfig

RATES_PATH = "/SearchAvailability_new.php"
CREATE_PATH = "/CreateOrder.php"
TRACK_PATH = "/TrackOrder.php"
VERIFY_PATH = "/v1/track_order"
CANCEL_PATH = "/v1/cancel_shipment"

TRACKING = {
    "success": True,
    "current_status": {"status": "Out For Delivery"},
    "courier_name": "Delhivery",
    "estimated_delivery_date": "2024-05-05",
    "scan_details": [
        {"scan_status": "Out For Delivery", "date": "2024-05-05 08:00:00", "location": "Andheri"},
        {"status": "Picked Up", "date": "2024-05-01 12:00:00", "location": "Delhi"},
    ],
}


@pytest.fixture
def provider_for(make_http_client, shipyaari_config):
    def _make(handler, config=None):
        client, recorder = make_http_client(handler)
        return ShipyaariProvider(config or shipyaari_config, client), recorder
    return _make


class TestConfiguration:
    def test_requires_user_id_and_api_key(self, provider_for):
        provider, _ = provider_for(lambda r: httpx.Response(200))
        partial, _ = provider_for(lambda r: httpx.Response(200), ProviderConfig(id="shipyaari", credentials={"apiKey": "k"}))

        assert provider.is_configured()
        assert not partial.is_configured()

    def test_international_flag(self, provider_for, shipyaari_config):
        provider, _ = provider_for(lambda r: httpx.Response(200))
        enabled, _ = provider_for(
            lambda r: httpx.Response(200),
            ProviderConfig(id="shipyaari", credentials={**shipyaari_config.credentials, "enableInternational": "true"}),
        )

        assert not provider.supports_international_shipping()
        assert enabled.supports_international_shipping()


class TestRates:
    @pytest.mark.asyncio
    async def test_rates(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            RATES_PATH: httpx.Response(200, json={"success": True, "data": {"available_courier_companies": [
                {"courier_name": "Delhivery", "courier_id": 11, "service_id": "DEL-SFC", "total_amount": 91.0, "etd": "4"},
                {"courier_name": "DTDC", "courier_id": 12, "freight_charge": 70.0},
            ]}}),
        }))

        rates = await provider.get_rates(sample_request)

        body = recorder.json_body()
        assert body["api_key"] == "sy-key"
        assert body["user_id"] == "u-1"
        assert body["order_type"] == "PPD"
        assert body["weight"] == "1.25"
        assert body["length"] == "30"
        assert body["invoice_value"] == sample_request.invoice_value

        assert rates[0].service_id == "DEL-SFC"
        assert rates[0].cost == 91.0
        assert rates[0].estimated_delivery_days == 4
        assert rates[1].service_id == "12"
        assert rates[1].cost == 70.0
        assert rates[1].estimated_delivery_days == 3

    @pytest.mark.asyncio
    async def test_test_mode_uses_v1_api(self, provider_for, path_router, sample_request, shipyaari_config):
        provider, recorder = provider_for(
            path_router({"/test/search_availability": httpx.Response(200, json={"success": False})}),
            dataclasses.replace(shipyaari_config, test_mode=True),
        )

        assert await provider.get_rates(sample_request) == []
        assert recorder.paths == ["/v1/test/search_availability"]

    @pytest.mark.asyncio
    async def test_vendor_4xx_is_empty_list(self, provider_for, sample_request):
        provider, recorder = provider_for(lambda r: httpx.Response(401, json={"message": "bad key"}))

        assert await provider.get_rates(sample_request) == []
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_international_rates_use_default(self, provider_for, sample_request):
        provider, recorder = provider_for(lambda r: httpx.Response(200))

        assert await provider.get_international_rates(sample_request) == []
        assert recorder.call_count == 0


class TestCreateShipment:
    @pytest.mark.asyncio
    async def test_missing_contact_fields_make_no_calls(self, provider_for, sample_request):
        provider, recorder = provider_for(lambda r: httpx.Response(200, json={"success": True}))
        request = dataclasses.replace(sample_request, customer_phone=None, pickup_address=None)

        resp = await provider.create_shipment(request, "DEL-SFC")

        assert not resp.success
        assert resp.error == ErrorCode.MISSING_PARAMETERS
        assert "customer_phone" in resp.message
        assert "pickup_address" in resp.message
        assert recorder.call_count == 0

    @pytest.mark.asyncio
    async def test_create_enriches_with_tracking(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            CREATE_PATH: httpx.Response(200, json={
                "success": True, "awb_number": "SY777", "shipment_id": 9001, "label": "https://labels.test/sy.pdf",
            }),
            TRACK_PATH: httpx.Response(200, json=TRACKING),
        }))

        resp = await provider.create_shipment(sample_request, "DEL-SFC")

        assert resp.success
        assert resp.tracking_id == "SY777"
        assert resp.shipment_id == "9001"
        assert resp.label_url == "https://labels.test/sy.pdf"
        assert resp.carrier_name == "Delhivery"
        assert resp.estimated_delivery_date.day == 5
        assert recorder.json_body(0)["service_type"] == "DEL-SFC"
        assert recorder.json_body(1)["awb_number"] == "SY777"

    @pytest.mark.asyncio
    async def test_numeric_awb_is_accepted(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            CREATE_PATH: httpx.Response(200, json={"success": True, "awb_number": 1234567890123, "shipment_id": 9001}),
            TRACK_PATH: httpx.Response(200, json={**TRACKING, "weight": 0.5}),
        }))

        resp = await provider.create_shipment(sample_request, "DEL-SFC")

        assert resp.success
        assert resp.error is None
        assert resp.tracking_id == "1234567890123"
        assert resp.carrier_name == "Delhivery"
        assert recorder.json_body(1)["awb_number"] == "1234567890123"

    @pytest.mark.asyncio
    async def test_create_without_awb_is_flagged(self, provider_for, path_router, sample_request):
        provider, recorder = provider_for(path_router({
            CREATE_PATH: httpx.Response(200, json={"success": True, "order_id": "SYO-1"}),
        }))

        resp = await provider.create_shipment(sample_request, "DEL-SFC")

        assert resp.success
        assert resp.error == ErrorCode.MISSING_AWB
        assert resp.tracking_id is None
        assert resp.shipment_id == "SYO-1"
        assert recorder.call_count == 1

    @pytest.mark.asyncio
    async def test_create_rejected(self, provider_for, path_router, sample_request):
        provider, _ = provider_for(path_router({
            CREATE_PATH: httpx.Response(200, json={"success": False, "message": "Pincode not serviceable"}),
        }))

        resp = await provider.create_shipment(sample_request, "DEL-SFC")

        assert not resp.success
        assert resp.message == "Pincode not serviceable"


class TestTrackingAndCancel:
    @pytest.mark.asyncio
    async def test_tracking_location_is_latest_scan(self, provider_for, path_router):
        provider, _ = provider_for(path_router({TRACK_PATH: httpx.Response(200, json=TRACKING)}))

        resp = await provider.track_shipment("SY777")

        assert resp.status == "Out For Delivery"
        assert resp.current_location == "Andheri"
        assert resp.history[0].status == "Out For Delivery"

    @pytest.mark.asyncio
    async def test_fractional_weight(self, provider_for, path_router):
        provider, _ = provider_for(path_router({TRACK_PATH: httpx.Response(200, json={**TRACKING, "weight": 0.5})}))

        resp = await provider.track_shipment("SY777")

        assert resp.success
        assert resp.extra.shipment_weight == "0.5"

    @pytest.mark.asyncio
    async def test_tracking_not_found(self, provider_for, path_router):
        provider, _ = provider_for(path_router({
            TRACK_PATH: httpx.Response(200, json={"success": False, "message": "AWB not found"}),
        }))

        resp = await provider.track_shipment("SY000")

        assert not resp.success
        assert resp.error == ErrorCode.TRACKING_NOT_FOUND

    @pytest.mark.asyncio
    async def test_cancel_verifies_first(self, provider_for, path_router):
        provider, recorder = provider_for(path_router({
            VERIFY_PATH: httpx.Response(200, json={"success": True, "data": {"awb": "SY777"}}),
            CANCEL_PATH: httpx.Response(200, json={"status": "success", "cancellation_id": "C-5"}),
        }))

        resp = await provider.cancel_shipment("SY777")

        assert resp.success
        assert resp.cancellation_id == "C-5"
        assert resp.response_code == "200"
        assert recorder.paths == ["/v1/track_order", "/v1/cancel_shipment"]
        assert recorder.json_body()["reason"] == "Cancelled by merchant"

    @pytest.mark.asyncio
    async def test_cancel_unknown_awb(self, provider_for, path_router):
        provider, recorder = provider_for(path_router({
            VERIFY_PATH: httpx.Response(200, json={"success": False, "message": "Invalid AWB"}),
        }))

        resp = await provider.cancel_shipment("SY000")

        assert not resp.success
        assert resp.error == ErrorCode.TRACKING_NOT_FOUND
        assert recorder.call_count == 1


class TestOptionalCapabilities:
    @pytest.mark.asyncio
    async def test_defaults(self, provider_for, sample_request):
        provider, recorder = provider_for(lambda r: httpx.Response(200))
        location = PickupLocation(
            id="", name="Annex", address="9 Ring Rd", city="Delhi", state="Delhi",
            pincode="110002", phone="9000000000",
        )

        assert await provider.get_pickup_locations() == []
        assert (await provider.create_pickup_location(location)).error == ErrorCode.NOT_IMPLEMENTED
        assert (await provider.create_return_shipment("SY777", sample_request)).error == ErrorCode.NOT_IMPLEMENTED
        assert recorder.call_count == 0
