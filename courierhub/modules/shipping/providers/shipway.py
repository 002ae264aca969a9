"""
Shipway Provider Implementation v1.0.0

- Credentials (username / license key) travel inside every JSON body
- Staging and production base URLs selected by test mode
- Business success is a `success` boolean, except cancellation which
  answers with a `status` string
- NDR (non-delivery report) resolution is an explicit operation; webhooks
  only surface the NDR reason
"""
import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from courierhub.core.exceptions import ErrorCode, ShippingError, ShippingVendorError
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
    grams_to_kg_float,
    has_valid_pincodes,
    parse_transit_days,
    parse_vendor_date,
    resolve_dimensions,
)

logger = logging.getLogger(__name__)

SHIPWAY_PRODUCTION_URL = "https://shipway.in/api"
SHIPWAY_STAGING_URL = "https://staging.shipway.in/api"
SHIPWAY_CANCEL_URL = "https://shipway.in/api/CancelShipment"

DEFAULT_DELIVERY_DAYS = 3

NDR_ACTIONS = ("redelivery", "cancel", "rto")

WEBHOOK_STATUS = {
    "delivered": NormalizedStatus.DELIVERED,
    "out_for_delivery": NormalizedStatus.SHIPPED,
    "in_transit": NormalizedStatus.SHIPPED,
    "picked_up": NormalizedStatus.SHIPPED,
    "cancelled": NormalizedStatus.CANCELLED,
}

Id = Union[int, str]


# =============================================================================
# Wire schemas
# =============================================================================

class ShipwayResult(VendorSchema):
    success: bool = False
    message: Optional[str] = None


class Courier(VendorSchema):
    name: str
    service_id: Optional[Id] = None
    service: Optional[str] = None
    courier_id: Optional[Id] = None
    rate: float
    estimated_days: Optional[Id] = None
    insurance_available: Optional[bool] = None
    insurance_rate: Optional[float] = None


class RatesResponse(ShipwayResult):
    couriers: Optional[List[Courier]] = None


class OrderResponse(ShipwayResult):
    tracking_number: Optional[str] = None
    awb: Optional[str] = None
    label_url: Optional[str] = None
    manifest_url: Optional[str] = None
    invoice_url: Optional[str] = None
    shipment_id: Optional[Id] = None
    courier_name: Optional[str] = None
    expected_delivery_date: Optional[str] = None


class CurrentStatus(VendorSchema):
    status: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


class ScanEvent(VendorSchema):
    status: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    remarks: Optional[str] = None


class TrackingResponse(ShipwayResult):
    courier_name: Optional[str] = None
    current_status: Optional[CurrentStatus] = None
    expected_delivery_date: Optional[str] = None
    pickup_date: Optional[str] = None
    origin: Optional[str] = None
    destination: Optional[str] = None
    tracking_url: Optional[str] = None
    tracking_history: List[ScanEvent] = []


class CancelResponse(VendorSchema):
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    code: Optional[Id] = None
    cancellationId: Optional[Id] = None
    refund_amount: Optional[float] = None
    additional_info: Optional[str] = None


class ShipwayPickup(VendorSchema):
    id: Id
    name: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    pincode: Id = ""
    phone: Id = ""
    email: Optional[str] = None
    is_default: Optional[Union[bool, int]] = None


class PickupListResponse(ShipwayResult):
    pickup_locations: Optional[List[ShipwayPickup]] = None


class PickupCreateResponse(ShipwayResult):
    id: Optional[Id] = None


def _scan_timestamp(scan: ScanEvent) -> Optional[datetime]:
    if scan.date and scan.time:
        return parse_vendor_date(f"{scan.date} {scan.time}")
    return parse_vendor_date(scan.date)


@register_provider("shipway")
class ShipwayProvider(BaseShippingProvider):
    """
    Shipway aggregator.

    Credentials: username, licenseKey; optional testMode and webhookUrl.
    """

    provider_id = "shipway"
    display_name = "Shipway"

    def is_configured(self) -> bool:
        return bool(self._config.get("username") and self._config.get("licenseKey"))

    @property
    def base_url(self) -> str:
        return SHIPWAY_STAGING_URL if self.test_mode else SHIPWAY_PRODUCTION_URL

    def _credentials(self) -> Dict[str, str]:
        return {
            "username": self._config.get("username"),
            "license_key": self._config.get("licenseKey"),
        }

    async def _post(self, path: str, schema, action: str, body: Dict[str, Any]):
        """POST with credentials; success=False is a vendor rejection."""
        result = await self._call(
            "POST", f"{self.base_url}{path}", schema, action, json={**self._credentials(), **body}
        )
        if not result.success:
            raise ShippingVendorError(
                f"Shipway {action} failed: {result.message or 'Unknown error'}",
                provider_id=self.provider_id,
            )
        return result

    def _package_fields(self, request: ShippingRequest) -> Dict[str, Any]:
        dims = resolve_dimensions(request)
        return {
            "weight": grams_to_kg_float(request.weight),
            "length": dims.length,
            "width": dims.width,
            "height": dims.height,
        }

    # =========================================================================
    # Rates
    # =========================================================================

    def build_rate_body(self, request: ShippingRequest) -> Dict[str, Any]:
        return {
            "pickup_pincode": request.pickup_pincode,
            "delivery_pincode": request.delivery_pincode,
            "invoice_value": request.invoice_value,
            "payment_type": "COD" if request.is_cod else "Prepaid",
            **self._package_fields(request),
        }

    async def get_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        if not has_valid_pincodes(request):
            logger.warning(f"[SHIPWAY] Invalid pincodes for order {request.order_id}")
            return []

        try:
            body = await self._call(
                "POST",
                f"{self.base_url}/courier/serviceability",
                RatesResponse,
                "rates",
                json={**self._credentials(), **self.build_rate_body(request)},
            )
        except ShippingError as e:
            self._log_failure("get rates", e)
            return []

        if not body.success or not body.couriers:
            logger.warning(
                f"[SHIPWAY] No available couriers: {request.pickup_pincode} -> {request.delivery_pincode}"
            )
            return []

        rates = []
        for c in body.couriers:
            service_id = c.service_id if c.service_id is not None else c.service
            rates.append(ShippingRate(
                carrier=c.name,
                service_id=str(service_id or ""),
                carrier_id=str(c.courier_id) if c.courier_id is not None else None,
                cost=c.rate,
                estimated_delivery_days=parse_transit_days(c.estimated_days, DEFAULT_DELIVERY_DAYS) or DEFAULT_DELIVERY_DAYS,
                has_insurance=bool(c.insurance_available),
                insurance_cost=c.insurance_rate or 0.0,
                currency="INR",
            ))
        return rates

    # =========================================================================
    # Shipments
    # =========================================================================

    def build_order_body(self, request: ShippingRequest, service: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "order_id": request.order_id,
            "service_id": service,
            "pickup_name": request.pickup_location,
            "pickup_address": request.pickup_address,
            "pickup_city": request.pickup_city,
            "pickup_state": request.pickup_state,
            "pickup_pincode": request.pickup_pincode,
            "pickup_phone": request.pickup_phone or "",
            "pickup_email": request.pickup_email or "",
            "customer_name": request.customer_name,
            "customer_address": request.customer_address,
            "customer_city": request.customer_city,
            "customer_state": request.customer_state,
            "customer_pincode": request.delivery_pincode,
            "customer_phone": request.customer_phone,
            "customer_email": request.customer_email,
            "payment_type": "COD" if request.is_cod else "Prepaid",
            "cod_amount": request.cod_amount,
            "invoice_value": request.invoice_value,
            "product_description": ", ".join(item.name for item in request.items) or "Product",
            "items": [
                {
                    "name": item.name,
                    "sku": item.sku,
                    "units": item.quantity,
                    "price": item.price,
                    "discount": item.discount,
                }
                for item in request.items
            ],
            **self._package_fields(request),
        }
        if request.insurance_required and request.insurance_value:
            body["insurance"] = "Yes"
            body["insurance_value"] = request.insurance_value
        if self._config.webhook_url:
            body["webhook_url"] = self._config.webhook_url
        return body

    async def create_shipment(self, request: ShippingRequest, service: str) -> ShipmentResponse:
        if not has_valid_pincodes(request):
            return ShipmentResponse.failure("Invalid pickup or delivery pincode", ErrorCode.INVALID_PINCODE)

        try:
            data = await self._post("/orders/create", OrderResponse, "create order", self.build_order_body(request, service))
        except ShippingError as e:
            self._log_failure("create shipment", e)
            return ShipmentResponse.failure(e.message, e.code)

        awb = data.tracking_number or data.awb
        insurance = None
        if request.insurance_required:
            insurance = InsuranceDetails(
                insurance_provider=self.display_name,
                policy_number=awb or "",
                coverage_amount=request.insurance_value or 0.0,
            )

        logger.info(f"[SHIPWAY] Shipment created for order {request.order_id}: {awb}")
        return ShipmentResponse(
            success=True,
            message="Shipment created successfully",
            tracking_id=awb,
            label_url=data.label_url,
            manifest_url=data.manifest_url,
            invoice_url=data.invoice_url,
            shipment_id=str(data.shipment_id) if data.shipment_id is not None else None,
            carrier_name=data.courier_name,
            estimated_delivery_date=parse_vendor_date(data.expected_delivery_date),
            insurance_details=insurance,
        )

    async def track_shipment(self, tracking_id: str) -> ShipmentTrackingResponse:
        if not tracking_id:
            return ShipmentTrackingResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        try:
            data = await self._post("/tracking", TrackingResponse, "tracking", {"awb": tracking_id})
        except ShippingError as e:
            self._log_failure("track shipment", e)
            return ShipmentTrackingResponse.failure(tracking_id, e.message, e.code)

        current = data.current_status or CurrentStatus()
        return ShipmentTrackingResponse(
            success=True,
            message=current.description or "Tracking information retrieved successfully",
            tracking_id=tracking_id,
            status=current.status or "",
            current_location=current.location or "",
            carrier_name=data.courier_name or "",
            estimated_delivery_date=parse_vendor_date(data.expected_delivery_date),
            history=[
                TrackingEvent(
                    status=scan.status or "Unknown",
                    timestamp=_scan_timestamp(scan),
                    location=scan.location or "",
                    description=scan.description or scan.remarks or scan.status or "",
                )
                for scan in data.tracking_history
            ],
            extra=TrackingExtra(
                pickup_date=parse_vendor_date(data.pickup_date),
                origin_city=data.origin or "",
                destination_city=data.destination or "",
                carrier_url=data.tracking_url or "",
            ),
        )

    async def cancel_shipment(self, tracking_id: str) -> ShipmentCancellationResponse:
        if not tracking_id:
            return ShipmentCancellationResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        url = f"{SHIPWAY_CANCEL_URL}/test" if self.test_mode else SHIPWAY_CANCEL_URL
        # This endpoint predates the JSON API and names the license key "password"
        payload = {
            "username": self._config.get("username"),
            "password": self._config.get("licenseKey"),
            "carrier": "shipway",
            "awb": tracking_id,
        }

        try:
            data = await self._call("POST", url, CancelResponse, "cancellation", json=payload)
        except ShippingError as e:
            self._log_failure("cancel shipment", e)
            return ShipmentCancellationResponse.failure(tracking_id, e.message, e.code)

        if (data.status or "").lower() != "success":
            logger.warning(f"[SHIPWAY] Cancellation rejected for {tracking_id}: {data.message or data.error}")
            return ShipmentCancellationResponse.failure(
                tracking_id,
                data.message or "Cancellation failed",
                data.error or ErrorCode.VENDOR_ERROR,
            )

        logger.info(f"[SHIPWAY] Shipment {tracking_id} cancelled")
        return ShipmentCancellationResponse(
            success=True,
            message=data.message or "Shipment cancelled successfully",
            tracking_id=tracking_id,
            cancellation_id=str(data.cancellationId) if data.cancellationId is not None else tracking_id,
            refund_amount=data.refund_amount,
            cancelled_at=datetime.now(timezone.utc),
            response_code=str(data.code) if data.code is not None else None,
            additional_info=data.additional_info,
        )

    # =========================================================================
    # Pickup locations
    # =========================================================================

    async def get_pickup_locations(self) -> List[PickupLocation]:
        try:
            data = await self._call(
                "POST", f"{self.base_url}/pickup/locations", PickupListResponse, "pickup locations",
                json=self._credentials(),
            )
        except ShippingError as e:
            self._log_failure("get pickup locations", e)
            return []

        if not data.success or not data.pickup_locations:
            return []
        return [
            PickupLocation(
                id=str(loc.id),
                name=loc.name,
                address=loc.address,
                city=loc.city,
                state=loc.state,
                pincode=str(loc.pincode),
                phone=str(loc.phone),
                email=loc.email or "",
                is_default=loc.is_default in (True, 1),
            )
            for loc in data.pickup_locations
        ]

    async def create_pickup_location(self, location: PickupLocation) -> PickupLocationResponse:
        body = {
            "name": location.name,
            "address": location.address,
            "city": location.city,
            "state": location.state,
            "pincode": location.pincode,
            "phone": location.phone,
            "email": location.email,
            "is_default": 1 if location.is_default else 0,
        }
        try:
            data = await self._post("/pickup/create", PickupCreateResponse, "create pickup location", body)
        except ShippingError as e:
            self._log_failure("create pickup location", e)
            return PickupLocationResponse.failure(e.message, e.code)

        if data.id is None:
            return PickupLocationResponse.failure("Pickup location created but no ID returned", ErrorCode.PARSE_ERROR)
        return PickupLocationResponse(
            success=True,
            message="Pickup location created",
            location=dataclasses.replace(location, id=str(data.id)),
        )

    # =========================================================================
    # Returns / NDR
    # =========================================================================

    async def create_return_shipment(self, tracking_id: str, request: ShippingRequest) -> ShipmentResponse:
        if not tracking_id:
            return ShipmentResponse.failure("Original tracking ID is required", ErrorCode.MISSING_PARAMETERS)
        if not has_valid_pincodes(request):
            return ShipmentResponse.failure("Invalid pickup or delivery pincode", ErrorCode.INVALID_PINCODE)

        # The customer ships back to the original pickup address
        body: Dict[str, Any] = {
            "awb": tracking_id,
            "order_id": request.order_id or f"RET-{tracking_id}",
            "pickup_name": request.customer_name,
            "pickup_address": request.customer_address,
            "pickup_city": request.customer_city,
            "pickup_state": request.customer_state,
            "pickup_pincode": request.delivery_pincode,
            "pickup_phone": request.customer_phone,
            "delivery_name": request.pickup_location,
            "delivery_address": request.pickup_address,
            "delivery_city": request.pickup_city,
            "delivery_state": request.pickup_state,
            "delivery_pincode": request.pickup_pincode,
            "delivery_phone": request.pickup_phone,
            "payment_type": "Prepaid",
            "invoice_value": request.invoice_value,
            "return_reason": request.return_reason or "Customer initiated return",
            **self._package_fields(request),
        }
        if self._config.webhook_url:
            body["webhook_url"] = self._config.webhook_url

        try:
            data = await self._post("/returns/create", OrderResponse, "create return", body)
        except ShippingError as e:
            self._log_failure("create return shipment", e)
            return ShipmentResponse.failure(e.message, e.code)

        return ShipmentResponse(
            success=True,
            message="Return shipment created successfully",
            tracking_id=data.tracking_number or data.awb,
            label_url=data.label_url,
            manifest_url=data.manifest_url,
            shipment_id=str(data.shipment_id) if data.shipment_id is not None else None,
            carrier_name=data.courier_name,
        )

    async def resolve_ndr(
        self,
        awb: str,
        action: str = "redelivery",
        comments: Optional[str] = None,
    ) -> ShipmentResponse:
        """
        Act on a non-delivery report.

        Args:
            awb: Tracking number the NDR was raised for
            action: One of redelivery, cancel, rto
            comments: Free text forwarded to the courier
        """
        if not awb:
            return ShipmentResponse.failure("AWB is required", ErrorCode.MISSING_AWB)
        if action not in NDR_ACTIONS:
            return ShipmentResponse.failure(f"Unknown NDR action: {action}", ErrorCode.VALIDATION_ERROR)

        body = {"awb": awb, "action": action, "comments": comments or f"Requesting {action} after NDR"}
        try:
            data = await self._post("/ndr/resolve", ShipwayResult, "NDR resolution", body)
        except ShippingError as e:
            self._log_failure("resolve NDR", e)
            return ShipmentResponse.failure(e.message, e.code)

        logger.info(f"[SHIPWAY] NDR {action} requested for AWB {awb}")
        return ShipmentResponse(success=True, message=data.message or f"NDR {action} requested", tracking_id=awb)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _build_webhook_event(self, payload):
        if not payload.get("status"):
            return None
        event = super()._build_webhook_event(payload)
        if event is not None and event.status.lower() == "ndr":
            event = dataclasses.replace(
                event,
                ndr_reason=payload.get("ndr_reason") or "Unknown reason",
                ndr_comments=payload.get("ndr_comments"),
            )
            logger.warning(f"[SHIPWAY] NDR for order {event.order_id}: {event.ndr_reason}")
        elif event is not None and event.status.lower() == "rto_initiated":
            logger.warning(f"[SHIPWAY] RTO initiated for order {event.order_id}")
        return event

    def map_webhook_status(self, event_type: str, status: str) -> Optional[NormalizedStatus]:
        return WEBHOOK_STATUS.get(status)
