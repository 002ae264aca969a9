"""
Canonical Shipping Model v1.0.0

Vendor-agnostic request/response shapes. Every provider adapter translates
to and from these; callers never see a vendor wire format.

- Request values are frozen; derive variants with dataclasses.replace()
- A result with success=False always carries a message or an error code
"""
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from courierhub.core.exceptions import ShippingValidationError


class PaymentMode(str, Enum):
    COD = "cod"
    PREPAID = "prepaid"


class NormalizedStatus(str, Enum):
    """Coarse status derived from webhook callbacks."""
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _serialize(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_serialize(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _serialize(v) for k, v in value.items()}
    return value


class Serializable:
    def to_dict(self) -> Dict[str, Any]:
        return _serialize(self)


class ResultMixin(Serializable):
    """Shared invariant for structured results."""

    def _check_failure_reason(self) -> None:
        if not self.success and not (self.message or self.error):
            raise ValueError(
                f"{self.__class__.__name__} with success=False needs a message or error"
            )


# =============================================================================
# Requests
# =============================================================================

@dataclass(frozen=True)
class PackageDimensions(Serializable):
    """Package dimensions in centimetres."""
    length: float
    width: float
    height: float

    def __post_init__(self):
        for name in ("length", "width", "height"):
            if getattr(self, name) <= 0:
                raise ShippingValidationError(f"Package {name} must be positive", field=name)


@dataclass(frozen=True)
class LineItem(Serializable):
    name: str
    sku: str = ""
    quantity: int = 1
    price: float = 0.0
    discount: float = 0.0
    tax: float = 0.0
    hsn: Optional[str] = None  # Harmonized System Nomenclature, international only


@dataclass(frozen=True)
class ShippingRequest(Serializable):
    """
    One shipping request. Weight is in grams, money in the invoice currency.

    Postal codes are NOT validated here: the orchestrator and adapters check
    them before any network call and answer with a structured failure.
    """
    order_id: str
    pickup_pincode: str
    delivery_pincode: str
    weight: int
    invoice_value: float
    payment_method: PaymentMode = PaymentMode.PREPAID
    dimensions: Optional[PackageDimensions] = None

    # Customer (delivery) contact
    customer_name: Optional[str] = None
    customer_address: Optional[str] = None
    customer_city: Optional[str] = None
    customer_state: Optional[str] = None
    customer_country: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None

    # Pickup contact
    pickup_location: Optional[str] = None
    pickup_address: Optional[str] = None
    pickup_city: Optional[str] = None
    pickup_state: Optional[str] = None
    pickup_phone: Optional[str] = None
    pickup_email: Optional[str] = None

    items: Tuple[LineItem, ...] = ()
    return_reason: Optional[str] = None
    is_reverse_pickup: bool = False

    # International
    is_international: bool = False
    destination_country: Optional[str] = None
    customs_value: Optional[float] = None
    customs_description: Optional[str] = None
    customs_content_type: Optional[str] = None
    insurance_required: bool = False
    insurance_value: Optional[float] = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "payment_method", PaymentMode(self.payment_method))
        except ValueError:
            raise ShippingValidationError(
                f"Unknown payment mode: {self.payment_method!r}", field="payment_method"
            )
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

        if isinstance(self.weight, bool) or not isinstance(self.weight, int) or self.weight <= 0:
            raise ShippingValidationError(
                "Weight must be a positive integer number of grams", field="weight"
            )
        if self.invoice_value <= 0:
            raise ShippingValidationError("Invoice value must be positive", field="invoice_value")

    @property
    def is_cod(self) -> bool:
        return self.payment_method == PaymentMode.COD

    @property
    def cod_amount(self) -> float:
        return self.invoice_value if self.is_cod else 0


# =============================================================================
# Results
# =============================================================================

@dataclass(frozen=True)
class ShippingRate(Serializable):
    """One vendor service offer."""
    carrier: str
    service_id: str
    cost: float
    estimated_delivery_days: int
    is_available: bool = True
    currency: str = "INR"
    carrier_id: Optional[str] = None
    has_insurance: bool = False
    insurance_cost: float = 0.0
    is_international: bool = False


@dataclass(frozen=True)
class InsuranceDetails(Serializable):
    insurance_provider: str
    policy_number: str
    coverage_amount: float


@dataclass(frozen=True)
class ShipmentResponse(ResultMixin):
    success: bool
    message: str
    tracking_id: Optional[str] = None
    shipment_id: Optional[str] = None
    label_url: Optional[str] = None
    manifest_url: Optional[str] = None
    invoice_url: Optional[str] = None
    carrier_name: Optional[str] = None
    estimated_delivery_date: Optional[datetime] = None
    insurance_details: Optional[InsuranceDetails] = None
    error: Optional[str] = None

    def __post_init__(self):
        self._check_failure_reason()

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "ShipmentResponse":
        return cls(success=False, message=message, error=error)


@dataclass(frozen=True)
class TrackingEvent(Serializable):
    status: str
    timestamp: Optional[datetime]
    location: str = ""
    description: str = ""


@dataclass(frozen=True)
class TrackingExtra(Serializable):
    pickup_date: Optional[datetime] = None
    origin_city: str = ""
    destination_city: str = ""
    carrier_url: str = ""
    shipment_weight: str = ""


@dataclass(frozen=True)
class ShipmentTrackingResponse(ResultMixin):
    """
    `status` is the vendor-native string. It is deliberately not mapped onto
    a fixed enum; vendors add statuses without notice.
    """
    success: bool
    message: str
    tracking_id: str = ""
    status: Optional[str] = None
    current_location: str = ""
    carrier_name: str = ""
    estimated_delivery_date: Optional[datetime] = None
    history: Tuple[TrackingEvent, ...] = ()
    extra: Optional[TrackingExtra] = None
    error: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.history, tuple):
            object.__setattr__(self, "history", tuple(self.history))
        self._check_failure_reason()

    @classmethod
    def failure(cls, tracking_id: str, message: str, error: Optional[str] = None) -> "ShipmentTrackingResponse":
        return cls(success=False, message=message, tracking_id=tracking_id, error=error)


@dataclass(frozen=True)
class ShipmentCancellationResponse(ResultMixin):
    success: bool
    message: str
    tracking_id: str
    cancellation_id: Optional[str] = None
    refund_amount: Optional[float] = None
    cancelled_at: Optional[datetime] = None
    response_code: Optional[str] = None
    additional_info: Optional[str] = None
    error: Optional[str] = None

    def __post_init__(self):
        self._check_failure_reason()

    @classmethod
    def failure(cls, tracking_id: str, message: str, error: Optional[str] = None) -> "ShipmentCancellationResponse":
        return cls(success=False, message=message, tracking_id=tracking_id, error=error)


@dataclass(frozen=True)
class PickupLocation(Serializable):
    id: str
    name: str
    address: str
    city: str
    state: str
    pincode: str
    phone: str
    email: str = ""
    is_default: bool = False


@dataclass(frozen=True)
class PickupLocationResponse(ResultMixin):
    success: bool
    message: str
    location: Optional[PickupLocation] = None
    error: Optional[str] = None

    def __post_init__(self):
        self._check_failure_reason()

    @classmethod
    def failure(cls, message: str, error: Optional[str] = None) -> "PickupLocationResponse":
        return cls(success=False, message=message, error=error)


@dataclass(frozen=True)
class WebhookEvent(Serializable):
    """Normalized view of a vendor status callback."""
    provider_id: str
    event_type: str
    status: str = ""
    awb: Optional[str] = None
    order_id: Optional[str] = None
    normalized_status: Optional[NormalizedStatus] = None
    ndr_reason: Optional[str] = None
    ndr_comments: Optional[str] = None
    estimated_delivery_days: Optional[int] = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


# =============================================================================
# Provider configuration (external input, read-only)
# =============================================================================

def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


@dataclass(frozen=True)
class ProviderConfig:
    """
    One entry of the provider-configuration store.

    `credentials` is an opaque key/value map; only the matching adapter
    knows which keys it needs.
    """
    id: str
    enabled: bool = True
    credentials: Mapping[str, str] = field(default_factory=dict)
    test_mode: bool = False
    webhook_url: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "credentials", MappingProxyType(dict(self.credentials)))

    def get(self, key: str, default: str = "") -> str:
        value = self.credentials.get(key)
        return default if value is None else str(value)

    @classmethod
    def from_aggregator(cls, data: Mapping[str, Any]) -> "ProviderConfig":
        """
        Build from the configuration store's document shape:

            {"id": "shipway", "enabled": true,
             "configFields": {"username": {"value": "..."}, ...},
             "webhookUrl": "..."}

        Flat `credentialFields`/`credentials` maps of plain strings are
        accepted too.
        """
        raw_fields = data.get("configFields") or data.get("credentialFields") or data.get("credentials") or {}
        credentials: Dict[str, str] = {}
        for key, value in raw_fields.items():
            if isinstance(value, Mapping):
                value = value.get("value")
            if value is not None:
                credentials[key] = str(value)

        test_mode = data.get("testMode", data.get("test_mode", credentials.get("testMode", False)))
        return cls(
            id=str(data["id"]),
            enabled=bool(data.get("enabled", False)),
            credentials=credentials,
            test_mode=_truthy(test_mode),
            webhook_url=data.get("webhookUrl") or data.get("webhook_url") or credentials.get("webhookUrl"),
        )
