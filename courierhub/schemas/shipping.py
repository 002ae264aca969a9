"""
Shipping API Schemas

Pydantic models for the inbound HTTP surface. Requests are converted into
the canonical ShippingRequest before they reach the service.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from courierhub.modules.shipping.types import (
    LineItem,
    PackageDimensions,
    PaymentMode,
    PickupLocation,
    PickupLocationResponse,
    ShipmentCancellationResponse,
    ShipmentResponse,
    ShipmentTrackingResponse,
    ShippingRate,
    ShippingRequest,
)


# ==================== Request Schemas ====================


class DimensionsIn(BaseModel):
    """Package dimensions in centimetres."""
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)


class LineItemIn(BaseModel):
    name: str = Field(..., min_length=1)
    sku: str = ""
    quantity: int = Field(1, ge=1)
    price: float = Field(0.0, ge=0)
    discount: float = 0.0
    tax: float = 0.0
    hsn: Optional[str] = None


class RateRequest(BaseModel):
    """
    Rate-shopping request.

    Pincodes are passed through unvalidated; a malformed pincode yields an
    empty result, not a 422.
    """
    order_id: str = Field(..., min_length=1)
    pickup_pincode: str
    delivery_pincode: str
    weight: int = Field(..., gt=0, description="grams")
    invoice_value: float = Field(..., gt=0)
    payment_method: PaymentMode = PaymentMode.PREPAID
    dimensions: Optional[DimensionsIn] = None
    items: List[LineItemIn] = []
    is_international: bool = False
    destination_country: Optional[str] = None

    @field_validator("pickup_pincode", "delivery_pincode")
    @classmethod
    def strip_pincode(cls, v):
        return v.strip()

    def to_request(self) -> ShippingRequest:
        fields = self.model_dump(exclude={"dimensions", "items"})
        return ShippingRequest(
            **fields,
            dimensions=PackageDimensions(**self.dimensions.model_dump()) if self.dimensions else None,
            items=tuple(LineItem(**item.model_dump()) for item in self.items),
        )


class ShipmentRequestIn(RateRequest):
    """Rate request plus the contact and customs details a booking needs."""
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    customer_city: Optional[str] = None
    customer_state: Optional[str] = None
    customer_country: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None

    pickup_location: Optional[str] = None
    pickup_address: Optional[str] = None
    pickup_city: Optional[str] = None
    pickup_state: Optional[str] = None
    pickup_phone: Optional[str] = None
    pickup_email: Optional[str] = None

    return_reason: Optional[str] = None
    customs_value: Optional[float] = None
    customs_description: Optional[str] = None
    customs_content_type: Optional[str] = None
    insurance_required: bool = False
    insurance_value: Optional[float] = None


class CreateShipmentRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1, description="service_id of a quoted rate")
    request: ShipmentRequestIn


class PickupLocationIn(BaseModel):
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str
    state: str
    pincode: str
    phone: str
    email: str = ""
    is_default: bool = False

    def to_location(self) -> PickupLocation:
        return PickupLocation(id="", **self.model_dump())


class ConnectionTestRequest(BaseModel):
    """Credentials to try, keyed like the configuration store's configFields."""
    config: Dict[str, Any] = {}


# ==================== Response Schemas ====================


class RateOut(BaseModel):
    carrier: str
    service_id: str
    carrier_id: Optional[str] = None
    cost: float
    currency: str
    estimated_delivery_days: int
    is_available: bool
    has_insurance: bool = False
    insurance_cost: float = 0.0
    is_international: bool = False

    @classmethod
    def from_rate(cls, rate: ShippingRate) -> "RateOut":
        return cls(**rate.to_dict())


class RateShoppingResponse(BaseModel):
    """Rates keyed by provider id; a provider with no service maps to []."""
    rates: Dict[str, List[RateOut]]
    cheapest: Optional[RateOut] = None
    cheapest_provider: Optional[str] = None


class ProvidersResponse(BaseModel):
    providers: List[str]
    default_provider: Optional[str] = None


class WebhookAck(BaseModel):
    """Returned with 200 for every authenticated callback, processed or not."""
    status: str
    provider_id: str
    event_type: Optional[str] = None
    awb: Optional[str] = None
    normalized_status: Optional[str] = None
    message: Optional[str] = None


class InsuranceOut(BaseModel):
    insurance_provider: str
    policy_number: str
    coverage_amount: float


class ShipmentOut(BaseModel):
    success: bool
    message: str
    tracking_id: Optional[str] = None
    shipment_id: Optional[str] = None
    label_url: Optional[str] = None
    manifest_url: Optional[str] = None
    invoice_url: Optional[str] = None
    carrier_name: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    insurance_details: Optional[InsuranceOut] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ShipmentResponse) -> "ShipmentOut":
        return cls.model_validate(result.to_dict())


class TrackingEventOut(BaseModel):
    status: str
    timestamp: Optional[datetime] = None
    location: str = ""
    description: str = ""


class TrackingExtraOut(BaseModel):
    pickup_date: Optional[datetime] = None
    origin_city: str = ""
    destination_city: str = ""
    carrier_url: str = ""
    shipment_weight: str = ""


class TrackingOut(BaseModel):
    success: bool
    message: str
    tracking_id: str = ""
    status: Optional[str] = None
    current_location: str = ""
    carrier_name: str = ""
    estimated_delivery_date: Optional[datetime] = None
    history: List[TrackingEventOut] = []
    extra: Optional[TrackingExtraOut] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ShipmentTrackingResponse) -> "TrackingOut":
        return cls.model_validate(result.to_dict())


class CancellationOut(BaseModel):
    success: bool
    message: str
    tracking_id: str
    cancellation_id: Optional[str] = None
    refund_amount: Optional[float] = None
    cancelled_at: Optional[datetime] = None
    response_code: Optional[str] = None
    additional_info: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ShipmentCancellationResponse) -> "CancellationOut":
        return cls.model_validate(result.to_dict())


class PickupLocationOut(BaseModel):
    id: str
    name: str
    address: str
    city: str
    state: str
    pincode: str
    phone: str
    email: str = ""
    is_default: bool = False


class PickupLocationResultOut(BaseModel):
    success: bool
    message: str
    location: Optional[PickupLocationOut] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: PickupLocationResponse) -> "PickupLocationResultOut":
        return cls.model_validate(result.to_dict())


class ConnectionTestData(BaseModel):
    aggregator_name: str
    rates_available: bool
    sample_rates: List[RateOut] = []


class ConnectionTestResponse(BaseModel):
    success: bool
    data: Optional[ConnectionTestData] = None
    error: Optional[str] = None
    code: Optional[str] = None


class ProviderServiceability(BaseModel):
    provider_id: str
    available: bool
    services: int


class DeliveryEstimate(BaseModel):
    min: int
    max: int


class ServiceabilityResponse(BaseModel):
    """Whether any live provider can deliver to a pincode."""
    serviceable: bool
    providers: List[ProviderServiceability]
    estimated_delivery_days: Optional[DeliveryEstimate] = None
    pickup_pincode: str
    delivery_pincode: str
