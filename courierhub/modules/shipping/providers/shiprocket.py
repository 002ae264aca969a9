"""
Shiprocket Provider Implementation v1.0.0

- Bearer-token auth via /auth/login, token cached for 24h
- Domestic and international serviceability (rates)
- Order creation is two calls: adhoc order, then AWB/pickup generation
- Cancel and returns resolve the Shiprocket order id from tracking first
- Registered via @register_provider
"""
import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from courierhub.core.exceptions import (
    ErrorCode,
    ShippingError,
    ShippingValidationError,
    ShippingVendorError,
)
from courierhub.modules.shipping.providers import register_provider
from courierhub.modules.shipping.providers.base import BaseShippingProvider, VendorSchema
from courierhub.modules.shipping.types import (
    InsuranceDetails,
    NormalizedStatus,
    PickupLocation,
    PickupLocationResponse,
    ShipmentCancellationResponse,
    ShipmentResponse,
    ShipmentTrackingResponse,
    ShippingRate,
    ShippingRequest,
    TrackingEvent,
    TrackingExtra,
)
from courierhub.modules.shipping.utils import (
    grams_to_kg,
    has_valid_pincodes,
    parse_transit_days,
    parse_vendor_date,
    resolve_dimensions,
)

logger = logging.getLogger(__name__)

SHIPROCKET_BASE_URL = "https://apiv2.shiprocket.in/v1/external"

TOKEN_TTL = timedelta(hours=24)

# International lanes without a quoted transit time
DEFAULT_INTERNATIONAL_DAYS = 7

WEBHOOK_EVENT_STATUS = {
    "order.dispatched": NormalizedStatus.SHIPPED,
    "order.delivered": NormalizedStatus.DELIVERED,
    "order.cancelled": NormalizedStatus.CANCELLED,
}

Id = Union[int, str]


# =============================================================================
# Wire schemas
# =============================================================================

class AuthResponse(VendorSchema):
    token: str


class CourierCompany(VendorSchema):
    courier_name: str
    courier_company_id: Id
    courier_code: Optional[str] = None
    rate: float
    estimated_delivery_days: Optional[Id] = None
    insurance_amount: Optional[float] = None
    currency: Optional[str] = None


class ServiceabilityData(VendorSchema):
    available_courier_companies: List[CourierCompany] = []


class ServiceabilityResponse(VendorSchema):
    data: Optional[ServiceabilityData] = None


class OrderCreateResponse(VendorSchema):
    order_id: Optional[Id] = None
    shipment_id: Optional[Id] = None
    awb_code: Optional[str] = None


class GeneratePickupResponse(VendorSchema):
    shipment_id: Optional[Id] = None
    awb: Optional[str] = None
    tracking_number: Optional[str] = None
    label_url: Optional[str] = None
    manifest_url: Optional[str] = None
    estimated_delivery_date: Optional[str] = None
    courier_name: Optional[str] = None
    insurance_provider: Optional[str] = None
    policy_number: Optional[str] = None
    insurance_value: Optional[float] = None


class ShipmentTrack(VendorSchema):
    current_status: Optional[str] = None
    current_location: Optional[str] = None
    courier_name: Optional[str] = None
    etd: Optional[str] = None
    pickup_date: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    track_url: Optional[str] = None
    weight: Optional[Union[float, str]] = None


class TrackingDetail(VendorSchema):
    status: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    activity: Optional[str] = None


class TrackingData(VendorSchema):
    order_id: Optional[Id] = None
    shipment_track: Optional[List[ShipmentTrack]] = None
    tracking_details: Optional[List[TrackingDetail]] = None


class TrackingResponse(VendorSchema):
    tracking_data: Optional[TrackingData] = None


class CancelResponse(VendorSchema):
    message: Optional[str] = None


class PickupAddress(VendorSchema):
    id: Id
    pickup_location: Optional[str] = None
    address: str = ""
    city: str = ""
    state: str = ""
    pin_code: Id = ""
    phone: Id = ""
    email: Optional[str] = None
    primary: Optional[int] = None


class PickupListData(VendorSchema):
    shipping_address: List[PickupAddress] = []


class PickupListResponse(VendorSchema):
    data: Optional[PickupListData] = None


class AddPickupResponse(VendorSchema):
    success: bool = False
    message: Optional[str] = None


class ReturnOrderResponse(VendorSchema):
    order_id: Optional[Id] = None
    shipment_id: Optional[Id] = None
    awb: Optional[str] = None


class LabelResponse(VendorSchema):
    label_created: Optional[int] = None
    label_url: Optional[str] = None


def _courier_id(service: str) -> Id:
    return int(service) if service.isdigit() else service


@register_provider("shiprocket")
class ShiprocketProvider(BaseShippingProvider):
    """
    Shiprocket aggregator.

    Credentials: email, password, apiKey. All calls after login carry the
    bearer token; concurrent callers share one login.
    """

    provider_id = "shiprocket"
    display_name = "Shiprocket"

    def __init__(self, config, http_client):
        super().__init__(config, http_client)
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        # Created on first use so it belongs to the loop serving requests
        self._token_lock: Optional[asyncio.Lock] = None

    def is_configured(self) -> bool:
        return all(self._config.get(k) for k in ("email", "password", "apiKey"))

    def supports_international_shipping(self) -> bool:
        return True

    # =========================================================================
    # Auth
    # =========================================================================

    def _token_valid(self) -> bool:
        return bool(
            self._token
            and self._token_expires_at
            and datetime.now(timezone.utc) < self._token_expires_at
        )

    async def _ensure_token(self) -> str:
        """Ensure we have a valid bearer token."""
        if self._token_valid():
            return self._token

        if self._token_lock is None:
            self._token_lock = asyncio.Lock()
        async with self._token_lock:
            # Another caller may have logged in while we waited
            if self._token_valid():
                return self._token

            try:
                auth = await self._call(
                    "POST",
                    f"{SHIPROCKET_BASE_URL}/auth/login",
                    AuthResponse,
                    "authentication",
                    json={"email": self._config.get("email"), "password": self._config.get("password")},
                )
            except ShippingVendorError as e:
                raise ShippingVendorError(
                    "Failed to authenticate with Shiprocket",
                    provider_id=self.provider_id,
                    status_code=e.details.get("status_code"),
                    code=ErrorCode.AUTH_FAILED,
                ) from e

            self._token = auth.token
            self._token_expires_at = datetime.now(timezone.utc) + TOKEN_TTL
            logger.info("[SHIPROCKET] Auth token obtained")
            return self._token

    async def _authed_call(self, method: str, path: str, schema, action: str, **kwargs):
        token = await self._ensure_token()
        headers = {"Authorization": f"Bearer {token}"}
        return await self._call(method, f"{SHIPROCKET_BASE_URL}{path}", schema, action, headers=headers, **kwargs)

    # =========================================================================
    # Rates
    # =========================================================================

    def build_rate_params(self, request: ShippingRequest) -> Dict[str, str]:
        return {
            "pickup_postcode": request.pickup_pincode,
            "delivery_postcode": request.delivery_pincode,
            "weight": grams_to_kg(request.weight),
            "cod": str(request.cod_amount),
            "order_id": request.order_id,
        }

    async def get_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        if request.is_international and request.destination_country:
            return await self.get_international_rates(request)

        if not has_valid_pincodes(request):
            logger.warning(f"[SHIPROCKET] Invalid pincodes for order {request.order_id}")
            return []

        params = self.build_rate_params(request)
        try:
            body = await self._authed_call(
                "GET", "/courier/serviceability", ServiceabilityResponse, "rates", params=params
            )
        except ShippingError as e:
            self._log_failure("get rates", e)
            return []

        couriers = body.data.available_courier_companies if body.data else []
        if not couriers:
            logger.warning(
                f"[SHIPROCKET] No available couriers: {request.pickup_pincode} -> "
                f"{request.delivery_pincode}, {params['weight']}kg"
            )
            return []

        return [
            ShippingRate(
                carrier=c.courier_name,
                service_id=c.courier_code or str(c.courier_company_id),
                carrier_id=str(c.courier_company_id),
                cost=c.rate,
                estimated_delivery_days=parse_transit_days(c.estimated_delivery_days, 0),
                currency="INR",
            )
            for c in couriers
        ]

    async def get_international_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        if not request.destination_country:
            logger.error("[SHIPROCKET] Destination country is required for international rates")
            return []

        params = {
            "pickup_postcode": request.pickup_pincode,
            "delivery_country": request.destination_country,
            "weight": grams_to_kg(request.weight),
            # International shipments are never COD
            "cod": "0",
            "order_id": request.order_id,
        }
        if request.delivery_pincode:
            params["delivery_postcode"] = request.delivery_pincode

        try:
            body = await self._authed_call(
                "GET",
                "/courier/international/serviceability",
                ServiceabilityResponse,
                "international rates",
                params=params,
            )
        except ShippingError as e:
            self._log_failure("get international rates", e)
            return []

        couriers = body.data.available_courier_companies if body.data else []
        if not couriers:
            logger.warning(f"[SHIPROCKET] No international couriers to {request.destination_country}")
            return []

        return [
            ShippingRate(
                carrier=c.courier_name,
                service_id=c.courier_code or str(c.courier_company_id),
                carrier_id=str(c.courier_company_id),
                cost=c.rate,
                estimated_delivery_days=parse_transit_days(c.estimated_delivery_days, DEFAULT_INTERNATIONAL_DAYS),
                has_insurance=bool(c.insurance_amount),
                insurance_cost=c.insurance_amount or 0.0,
                is_international=True,
                currency=c.currency or "INR",
            )
            for c in couriers
        ]

    # =========================================================================
    # Shipments
    # =========================================================================

    def build_order_payload(self, request: ShippingRequest) -> Dict[str, Any]:
        dims = resolve_dimensions(request)
        payload: Dict[str, Any] = {
            "order_id": request.order_id,
            "order_date": date.today().isoformat(),
            "pickup_location": request.pickup_location or "",
            "billing_customer_name": request.customer_name or "Customer",
            "billing_last_name": "",
            "billing_address": request.customer_address or "",
            "billing_city": request.customer_city or "",
            "billing_pincode": request.delivery_pincode,
            "billing_state": request.customer_state or "",
            "billing_country": request.customer_country or "India",
            "billing_email": request.customer_email or "",
            "billing_phone": request.customer_phone or "",
            "shipping_is_billing": not request.is_international,
            "order_items": [
                {
                    "name": item.name,
                    "sku": item.sku or item.name[:10],
                    "units": item.quantity,
                    "selling_price": item.price,
                    "discount": item.discount,
                    "tax": item.tax,
                    "hsn": item.hsn or "",
                }
                for item in request.items
            ],
            "payment_method": "COD" if request.is_cod else "Prepaid",
            "sub_total": request.invoice_value,
            "length": dims.length,
            "breadth": dims.width,
            "height": dims.height,
            "weight": grams_to_kg(request.weight),
        }

        if request.insurance_required and request.insurance_value:
            payload["is_insurance"] = 1
            payload["insurance_value"] = request.insurance_value

        if request.is_international and request.destination_country and request.destination_country != "India":
            payload.update({
                "shipping_is_billing": False,
                "shipping_customer_name": request.customer_name or "Customer",
                "shipping_address": request.customer_address or "",
                "shipping_city": request.customer_city or "",
                "shipping_state": request.customer_state or "",
                "shipping_country": request.destination_country,
                "shipping_pincode": request.delivery_pincode,
                "shipping_email": request.customer_email or "",
                "shipping_phone": request.customer_phone or "",
                "customs_value": request.customs_value or request.invoice_value,
                "customs_description": request.customs_description or "Merchandise",
                "customs_content_type": request.customs_content_type or "Merchandise",
            })

        return payload

    async def create_shipment(self, request: ShippingRequest, service: str) -> ShipmentResponse:
        if not request.is_international and not has_valid_pincodes(request):
            return ShipmentResponse.failure("Invalid pickup or delivery pincode", ErrorCode.INVALID_PINCODE)

        try:
            order = await self._authed_call(
                "POST", "/orders/create/adhoc", OrderCreateResponse, "create order",
                json=self.build_order_payload(request),
            )
            if not order.order_id:
                return ShipmentResponse.failure(
                    "Order created but no order ID returned", ErrorCode.PARSE_ERROR
                )

            shipment = await self._authed_call(
                "POST", "/courier/generate/pickup", GeneratePickupResponse, "generate shipment",
                json={"shipment_id": order.shipment_id, "courier_id": _courier_id(service)},
            )
        except ShippingError as e:
            self._log_failure("create shipment", e)
            return ShipmentResponse.failure(e.message, e.code)

        shipment_id = shipment.shipment_id if shipment.shipment_id is not None else order.shipment_id
        insurance = None
        if shipment.policy_number:
            insurance = InsuranceDetails(
                insurance_provider=shipment.insurance_provider or "",
                policy_number=shipment.policy_number,
                coverage_amount=shipment.insurance_value or request.insurance_value or 0.0,
            )

        logger.info(f"[SHIPROCKET] Shipment created for order {request.order_id}: {shipment.awb}")
        return ShipmentResponse(
            success=True,
            message="Shipment created successfully",
            shipment_id=str(shipment_id) if shipment_id is not None else None,
            tracking_id=shipment.awb or shipment.tracking_number or (str(shipment_id) if shipment_id else None),
            label_url=shipment.label_url or "",
            manifest_url=shipment.manifest_url or "",
            carrier_name=shipment.courier_name or "",
            estimated_delivery_date=parse_vendor_date(shipment.estimated_delivery_date),
            insurance_details=insurance,
        )

    # =========================================================================
    # Tracking / cancellation
    # =========================================================================

    async def _fetch_tracking(self, tracking_id: str) -> TrackingData:
        body = await self._authed_call("GET", f"/courier/track/awb/{tracking_id}", TrackingResponse, "tracking")
        if body.tracking_data is None:
            raise ShippingVendorError(
                "No tracking information available",
                provider_id=self.provider_id,
                code=ErrorCode.TRACKING_NOT_FOUND,
            )
        return body.tracking_data

    async def track_shipment(self, tracking_id: str) -> ShipmentTrackingResponse:
        if not tracking_id:
            return ShipmentTrackingResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        try:
            data = await self._fetch_tracking(tracking_id)
        except ShippingError as e:
            self._log_failure("track shipment", e)
            return ShipmentTrackingResponse.failure(tracking_id, e.message, e.code)

        if not data.shipment_track:
            logger.warning(f"[SHIPROCKET] Tracking data missing for {tracking_id}")
            return ShipmentTrackingResponse.failure(
                tracking_id, "No tracking information available", ErrorCode.TRACKING_NOT_FOUND
            )

        track = data.shipment_track[0]
        history = [
            TrackingEvent(
                status=d.status or "Unknown",
                timestamp=parse_vendor_date(d.date),
                location=d.location or "",
                description=d.activity or d.status or "",
            )
            for d in data.tracking_details or []
        ]

        return ShipmentTrackingResponse(
            success=True,
            message="Tracking information retrieved successfully",
            tracking_id=tracking_id,
            status=track.current_status or "Unknown",
            current_location=track.current_location or "",
            carrier_name=track.courier_name or "",
            estimated_delivery_date=parse_vendor_date(track.etd),
            history=history,
            extra=TrackingExtra(
                pickup_date=parse_vendor_date(track.pickup_date),
                origin_city=track.origin or "",
                destination_city=track.destination or "",
                carrier_url=track.track_url or "",
                shipment_weight=str(track.weight or ""),
            ),
        )

    async def _resolve_order_id(self, tracking_id: str) -> str:
        data = await self._fetch_tracking(tracking_id)
        if data.order_id in (None, ""):
            raise ShippingVendorError(
                "Could not find order ID for the given tracking number",
                provider_id=self.provider_id,
                code=ErrorCode.TRACKING_NOT_FOUND,
            )
        return str(data.order_id)

    async def cancel_shipment(self, tracking_id: str) -> ShipmentCancellationResponse:
        if not tracking_id:
            return ShipmentCancellationResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        try:
            order_id = await self._resolve_order_id(tracking_id)
            await self._authed_call(
                "POST", "/orders/cancel", CancelResponse, "cancel",
                json={"ids": [_courier_id(order_id)]},
            )
        except ShippingError as e:
            self._log_failure("cancel shipment", e)
            return ShipmentCancellationResponse.failure(tracking_id, e.message, e.code)

        logger.info(f"[SHIPROCKET] Cancelled order {order_id} (AWB {tracking_id})")
        return ShipmentCancellationResponse(
            success=True,
            message="Shipment cancelled successfully",
            tracking_id=tracking_id,
            cancellation_id=order_id,
            cancelled_at=datetime.now(timezone.utc),
        )

    # =========================================================================
    # Pickup locations
    # =========================================================================

    async def _list_pickup_locations(self) -> List[PickupLocation]:
        body = await self._authed_call("GET", "/settings/company/pickup", PickupListResponse, "pickup locations")
        if body.data is None:
            return []
        return [
            PickupLocation(
                id=str(loc.id),
                name=loc.pickup_location or loc.address,
                address=loc.address,
                city=loc.city,
                state=loc.state,
                pincode=str(loc.pin_code),
                phone=str(loc.phone),
                email=loc.email or "",
                is_default=loc.primary == 1,
            )
            for loc in body.data.shipping_address
        ]

    async def get_pickup_locations(self) -> List[PickupLocation]:
        try:
            return await self._list_pickup_locations()
        except ShippingError as e:
            self._log_failure("get pickup locations", e)
            return []

    async def create_pickup_location(self, location: PickupLocation) -> PickupLocationResponse:
        body = {
            "pickup_location": location.name,
            "name": location.name,
            "email": location.email,
            "phone": location.phone,
            "address": location.address,
            "address_2": "",
            "city": location.city,
            "state": location.state,
            "country": "India",
            "pin_code": location.pincode,
        }

        try:
            result = await self._authed_call(
                "POST", "/settings/company/addpickup", AddPickupResponse, "create pickup location", json=body
            )
            if not result.success:
                raise ShippingVendorError(
                    f"Failed to create pickup location: {result.message or 'Unknown error'}",
                    provider_id=self.provider_id,
                )

            # The add call does not echo the new id; find it by name and pincode
            created = next(
                (
                    loc for loc in await self._list_pickup_locations()
                    if loc.name == location.name and loc.pincode == location.pincode
                ),
                None,
            )
        except ShippingError as e:
            self._log_failure("create pickup location", e)
            return PickupLocationResponse.failure(e.message, e.code)

        if created is None:
            return PickupLocationResponse.failure(
                "Could not find the created pickup location", ErrorCode.VENDOR_ERROR
            )
        return PickupLocationResponse(success=True, message="Pickup location created", location=created)

    # =========================================================================
    # Returns
    # =========================================================================

    async def create_return_shipment(self, tracking_id: str, request: ShippingRequest) -> ShipmentResponse:
        try:
            if not tracking_id:
                raise ShippingValidationError(
                    "Original tracking ID is required", field="tracking_id", code=ErrorCode.MISSING_PARAMETERS
                )

            order_id = await self._resolve_order_id(tracking_id)
            ret = await self._authed_call(
                "POST", "/orders/create/return", ReturnOrderResponse, "create return",
                json={
                    "order_id": order_id,
                    "order_date": date.today().isoformat(),
                    "channel_id": "",
                    "return_reason": request.return_reason or "Customer initiated return",
                    "subtotal": request.invoice_value,
                },
            )
            if ret.shipment_id is None:
                raise ShippingVendorError(
                    "Return created but no shipment ID returned",
                    provider_id=self.provider_id,
                    code=ErrorCode.PARSE_ERROR,
                )
        except ShippingError as e:
            self._log_failure("create return shipment", e)
            return ShipmentResponse.failure(e.message, e.code)

        # A missing label does not undo the return
        label_url = ""
        try:
            label = await self._authed_call(
                "POST", "/courier/generate/label", LabelResponse, "generate label",
                json={"shipment_id": [ret.shipment_id]},
            )
            label_url = label.label_url or ""
        except ShippingError as e:
            self._log_failure("generate return label", e)

        return ShipmentResponse(
            success=True,
            message="Return shipment created successfully",
            tracking_id=ret.awb or "",
            shipment_id=str(ret.shipment_id),
            label_url=label_url,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _build_webhook_event(self, payload):
        if not isinstance(payload.get("data"), dict):
            return None
        return super()._build_webhook_event(payload)

    def map_webhook_status(self, event_type: str, status: str) -> Optional[NormalizedStatus]:
        if event_type in WEBHOOK_EVENT_STATUS:
            return WEBHOOK_EVENT_STATUS[event_type]
        return super().map_webhook_status(event_type, status)
