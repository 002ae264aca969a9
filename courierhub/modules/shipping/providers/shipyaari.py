"""
Shipyaari Provider Implementation v1.0.0

- Credentials (user id / API key) travel inside every JSON body
- Legacy PHP webservice in production, versioned JSON API in test mode
- Create checks contact fields locally and enriches the result with a
  follow-up tracking call
- Pickup locations, returns and international rates use the base defaults
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from courierhub.core.exceptions import ErrorCode, ShippingError, ShippingVendorError
from courierhub.modules.shipping.providers import register_provider
from courierhub.modules.shipping.providers.base import BaseShippingProvider, VendorSchema
from courierhub.modules.shipping.types import (
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

SHIPYAARI_ENDPOINTS = {
    # operation: (production, test)
    "rates": (
        "https://ship.shipyaari.com/logistic/webservice/SearchAvailability_new.php",
        "https://api.shipyaari.com/v1/test/search_availability",
    ),
    "create": (
        "https://ship.shipyaari.com/logistic/webservice/CreateOrder.php",
        "https://api.shipyaari.com/v1/test/create_order",
    ),
    "track": (
        "https://ship.shipyaari.com/logistic/webservice/TrackOrder.php",
        "https://api.shipyaari.com/v1/test/track_order",
    ),
    "verify": (
        "https://api.shipyaari.com/v1/track_order",
        "https://api.shipyaari.com/v1/test/track_order",
    ),
    "cancel": (
        "https://api.shipyaari.com/v1/cancel_shipment",
        "https://api.shipyaari.com/v1/test/cancel_shipment",
    ),
}

DEFAULT_DELIVERY_DAYS = 3

# Fields create_shipment needs before it may call the vendor
REQUIRED_SHIPMENT_FIELDS = (
    "order_id",
    "customer_name",
    "customer_address",
    "customer_city",
    "customer_state",
    "delivery_pincode",
    "customer_phone",
    "pickup_address",
    "pickup_pincode",
)

Id = Union[int, str]


# =============================================================================
# Wire schemas
# =============================================================================

class AvailableService(VendorSchema):
    courier_name: Optional[str] = None
    courier_id: Id
    service_id: Optional[Id] = None
    total_amount: Optional[float] = None
    freight_charge: Optional[float] = None
    etd: Optional[Id] = None
    estimated_delivery_time: Optional[Id] = None


class AvailabilityData(VendorSchema):
    available_courier_companies: Optional[List[AvailableService]] = None


class AvailabilityResponse(VendorSchema):
    success: bool = False
    message: Optional[str] = None
    data: Optional[AvailabilityData] = None


class CreateOrderResponse(VendorSchema):
    success: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    awb_number: Optional[str] = None
    awb: Optional[str] = None
    tracking_number: Optional[str] = None
    shipment_id: Optional[Id] = None
    order_id: Optional[Id] = None
    label_url: Optional[str] = None
    label: Optional[str] = None
    manifest_url: Optional[str] = None
    courier_name: Optional[str] = None


class CurrentStatus(VendorSchema):
    status: Optional[str] = None


class ScanDetail(VendorSchema):
    status: Optional[str] = None
    scan_status: Optional[str] = None
    date: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    scan_description: Optional[str] = None


class TrackOrderResponse(VendorSchema):
    success: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    status: Optional[str] = None
    current_status: Optional[CurrentStatus] = None
    courier_name: Optional[str] = None
    scan_details: List[ScanDetail] = []
    estimated_delivery_date: Optional[str] = None
    origin_city: Optional[str] = None
    destination_city: Optional[str] = None
    tracking_url: Optional[str] = None
    weight: Optional[Union[float, str]] = None


class VerifyResponse(VendorSchema):
    success: bool = False
    message: Optional[str] = None
    data: Optional[Any] = None


class CancelResponse(VendorSchema):
    success: bool = False
    status: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    cancellation_id: Optional[Id] = None
    code: Optional[Id] = None
    refund_amount: Optional[float] = None
    additional_info: Optional[str] = None


def _days(service: AvailableService) -> int:
    value = service.etd if service.etd not in (None, "") else service.estimated_delivery_time
    return parse_transit_days(value, DEFAULT_DELIVERY_DAYS)


@register_provider("shipyaari")
class ShipyaariProvider(BaseShippingProvider):
    """
    Shipyaari aggregator.

    Credentials: userId, apiKey; optional testMode and enableInternational.
    """

    provider_id = "shipyaari"
    display_name = "Shipyaari"

    def is_configured(self) -> bool:
        return bool(self._config.get("userId") and self._config.get("apiKey"))

    def supports_international_shipping(self) -> bool:
        return self._config.get("enableInternational").lower() == "true"

    def _url(self, operation: str) -> str:
        production, test = SHIPYAARI_ENDPOINTS[operation]
        return test if self.test_mode else production

    def _credentials(self) -> Dict[str, str]:
        return {"api_key": self._config.get("apiKey"), "user_id": self._config.get("userId")}

    def _package_fields(self, request: ShippingRequest) -> Dict[str, Any]:
        dims = resolve_dimensions(request)
        return {
            "weight": grams_to_kg(request.weight),
            "length": str(dims.length),
            "width": str(dims.width),
            "height": str(dims.height),
        }

    # =========================================================================
    # Rates
    # =========================================================================

    def build_rate_body(self, request: ShippingRequest) -> Dict[str, Any]:
        return {
            "pickup_pincode": request.pickup_pincode,
            "delivery_pincode": request.delivery_pincode,
            "order_type": "COD" if request.is_cod else "PPD",
            "cod_amount": request.cod_amount,
            "invoice_value": request.invoice_value,
            "product_type": "parcel",
            **self._package_fields(request),
        }

    async def get_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        if not has_valid_pincodes(request):
            logger.warning(f"[SHIPYAARI] Rates request missing or invalid pincodes for order {request.order_id}")
            return []

        try:
            data = await self._call(
                "POST", self._url("rates"), AvailabilityResponse, "rates",
                json={**self._credentials(), **self.build_rate_body(request)},
            )
        except ShippingError as e:
            self._log_failure("get rates", e)
            return []

        services = data.data.available_courier_companies if data.data else None
        if not data.success or not services:
            logger.warning(
                f"[SHIPYAARI] No available couriers: {request.pickup_pincode} -> {request.delivery_pincode}"
            )
            return []

        return [
            ShippingRate(
                carrier=s.courier_name or "Unknown",
                service_id=str(s.service_id if s.service_id is not None else s.courier_id),
                carrier_id=str(s.courier_id),
                cost=s.total_amount if s.total_amount is not None else (s.freight_charge or 0.0),
                estimated_delivery_days=_days(s),
                currency="INR",
            )
            for s in services
        ]

    # =========================================================================
    # Shipments
    # =========================================================================

    def missing_shipment_fields(self, request: ShippingRequest) -> List[str]:
        return [name for name in REQUIRED_SHIPMENT_FIELDS if not getattr(request, name)]

    def build_order_body(self, request: ShippingRequest, service: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "service_type": service,
            "order_number": request.order_id,
            "customer_name": request.customer_name,
            "customer_address": request.customer_address,
            "customer_city": request.customer_city,
            "customer_state": request.customer_state,
            "customer_pincode": request.delivery_pincode,
            "customer_phone": request.customer_phone,
            "customer_email": request.customer_email or "",
            "pickup_address": request.pickup_address,
            "pickup_city": request.pickup_city or "",
            "pickup_state": request.pickup_state or "",
            "pickup_pincode": request.pickup_pincode,
            "pickup_phone": request.pickup_phone or "",
            "pickup_email": request.pickup_email or "",
            "pickup_company": request.pickup_location or "",
            "payment_mode": "COD" if request.is_cod else "PPD",
            "cod_amount": request.cod_amount,
            "invoice_value": request.invoice_value,
            "package_count": 1,
            "product_description": ", ".join(item.name for item in request.items) or "Package",
            "product_type": "parcel",
            "product_category": "ecommerce",
            **self._package_fields(request),
        }
        if request.items:
            body["order_items"] = [
                {"name": item.name, "qty": item.quantity, "price": item.price, "sku": item.sku}
                for item in request.items
            ]
        if request.insurance_required and request.insurance_value:
            body["is_insurance"] = "yes"
            body["insurance_value"] = request.insurance_value
        return body

    async def create_shipment(self, request: ShippingRequest, service: str) -> ShipmentResponse:
        missing = self.missing_shipment_fields(request)
        if missing:
            logger.error(f"[SHIPYAARI] Create shipment missing fields: {', '.join(missing)}")
            return ShipmentResponse.failure(
                f"Missing required parameters for shipment creation: {', '.join(missing)}",
                ErrorCode.MISSING_PARAMETERS,
            )
        if not has_valid_pincodes(request):
            return ShipmentResponse.failure("Invalid pickup or delivery pincode", ErrorCode.INVALID_PINCODE)

        try:
            data = await self._call(
                "POST", self._url("create"), CreateOrderResponse, "create order",
                json={**self._credentials(), **self.build_order_body(request, service)},
            )
        except ShippingError as e:
            self._log_failure("create shipment", e)
            return ShipmentResponse.failure(e.message, e.code)

        if not data.success:
            logger.error(f"[SHIPYAARI] Create order rejected: {data.message}")
            return ShipmentResponse.failure(
                data.message or "Failed to create shipment", data.error or ErrorCode.VENDOR_ERROR
            )

        shipment_id = str(data.shipment_id or data.order_id or request.order_id)
        awb = data.awb_number or data.awb or data.tracking_number
        if not awb:
            # Order exists at the vendor; report success but flag the gap
            logger.error(f"[SHIPYAARI] Order {request.order_id} created without an AWB")
            return ShipmentResponse(
                success=True,
                message="Shipment created but tracking number not found in response",
                shipment_id=shipment_id,
                error=ErrorCode.MISSING_AWB,
            )

        tracking = await self.track_shipment(awb)
        if not tracking.success:
            logger.warning(f"[SHIPYAARI] Order created but tracking unavailable for {awb}")

        return ShipmentResponse(
            success=True,
            message="Shipment created successfully",
            tracking_id=awb,
            shipment_id=shipment_id,
            label_url=data.label_url or data.label or "",
            manifest_url=data.manifest_url or "",
            estimated_delivery_date=tracking.estimated_delivery_date if tracking.success else None,
            carrier_name=data.courier_name or (tracking.carrier_name if tracking.success else ""),
        )

    # =========================================================================
    # Tracking / cancellation
    # =========================================================================

    async def track_shipment(self, tracking_id: str) -> ShipmentTrackingResponse:
        if not tracking_id:
            return ShipmentTrackingResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        try:
            data = await self._call(
                "POST", self._url("track"), TrackOrderResponse, "tracking",
                # The legacy endpoint reads awb_number, the v1 API reads awb
                json={**self._credentials(), "awb_number": tracking_id, "awb": tracking_id},
            )
        except ShippingError as e:
            self._log_failure("track shipment", e)
            return ShipmentTrackingResponse.failure(tracking_id, e.message, e.code)

        if not data.success:
            logger.warning(f"[SHIPYAARI] No tracking for {tracking_id}: {data.message}")
            return ShipmentTrackingResponse.failure(
                tracking_id,
                data.message or "No tracking information available",
                data.error or ErrorCode.TRACKING_NOT_FOUND,
            )

        history = [
            TrackingEvent(
                status=d.status or d.scan_status or "Unknown",
                timestamp=parse_vendor_date(d.date),
                location=d.location or "",
                description=d.description or d.scan_description or d.status or "",
            )
            for d in data.scan_details
        ]
        status = (data.current_status.status if data.current_status else None) or data.status or "Unknown"

        return ShipmentTrackingResponse(
            success=True,
            message="Tracking information retrieved successfully",
            tracking_id=tracking_id,
            status=status,
            # Scans arrive newest first
            current_location=history[0].location if history else "",
            carrier_name=data.courier_name or "Unknown",
            estimated_delivery_date=parse_vendor_date(data.estimated_delivery_date),
            history=history,
            extra=TrackingExtra(
                origin_city=data.origin_city or "",
                destination_city=data.destination_city or "",
                carrier_url=data.tracking_url or "",
                shipment_weight=str(data.weight or ""),
            ),
        )

    async def cancel_shipment(self, tracking_id: str) -> ShipmentCancellationResponse:
        if not tracking_id:
            return ShipmentCancellationResponse.failure(tracking_id, "Tracking ID is required", ErrorCode.MISSING_AWB)

        try:
            verify = await self._call(
                "POST", self._url("verify"), VerifyResponse, "tracking verification",
                json={**self._credentials(), "awb": tracking_id},
            )
            if not verify.success or not verify.data:
                raise ShippingVendorError(
                    f"Tracking ID not found or invalid: {verify.message or 'verification failed'}",
                    provider_id=self.provider_id,
                    code=ErrorCode.TRACKING_NOT_FOUND,
                )

            data = await self._call(
                "POST", self._url("cancel"), CancelResponse, "cancellation",
                json={**self._credentials(), "awb": tracking_id, "reason": "Cancelled by merchant"},
            )
        except ShippingError as e:
            self._log_failure("cancel shipment", e)
            return ShipmentCancellationResponse.failure(tracking_id, e.message, e.code)

        if not (data.success or data.status == "success"):
            logger.warning(f"[SHIPYAARI] Cancellation rejected for {tracking_id}: {data.message or data.error}")
            return ShipmentCancellationResponse.failure(
                tracking_id,
                data.message or "Cancellation failed",
                data.error or ErrorCode.VENDOR_ERROR,
            )

        logger.info(f"[SHIPYAARI] Shipment {tracking_id} cancelled")
        return ShipmentCancellationResponse(
            success=True,
            message=data.message or "Shipment cancelled successfully",
            tracking_id=tracking_id,
            cancellation_id=str(data.cancellation_id) if data.cancellation_id is not None else tracking_id,
            refund_amount=data.refund_amount or 0.0,
            cancelled_at=datetime.now(timezone.utc),
            response_code=str(data.code) if data.code is not None else "200",
            additional_info=data.additional_info,
        )
