"""
Base Shipping Provider Interface v1.0.0

- All courier aggregators implement this interface
- Adapters translate canonical requests into vendor wire format and vendor
  responses back into the canonical model
- Expected failures (validation, network, vendor rejection, bad payloads)
  never escape an adapter: they come back as structured results or, for
  rate queries, as an empty list
- Optional capabilities (pickup locations, returns, international) have
  documented defaults here
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from courierhub.core.exceptions import (
    ErrorCode,
    ShippingError,
    ShippingTransportError,
    ShippingVendorError,
)
from courierhub.core.http_client import RETRYABLE_EXCEPTIONS, ResilientHTTPClient
from courierhub.core.log_utils import sanitize_for_logging
from courierhub.modules.shipping.types import (
    NormalizedStatus,
    PickupLocation,
    PickupLocationResponse,
    ProviderConfig,
    ShipmentCancellationResponse,
    ShipmentResponse,
    ShipmentTrackingResponse,
    ShippingRate,
    ShippingRequest,
    WebhookEvent,
)
from courierhub.modules.shipping.utils import parse_transit_days

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class VendorSchema(BaseModel):
    """
    Base for vendor response schemas.

    Vendors send AWBs, ids and weights as numbers or strings depending on the
    courier; numbers are accepted wherever a string is declared.
    """

    model_config = ConfigDict(coerce_numbers_to_str=True)


class BaseShippingProvider(ABC):
    """
    Abstract base class for all shipping aggregators.

    Subclasses set `provider_id` and `display_name` and are registered with
    @register_provider.
    """

    provider_id: str = ""
    display_name: str = ""

    def __init__(self, config: ProviderConfig, http_client: ResilientHTTPClient):
        """
        Args:
            config: Provider configuration with credentials and flags
            http_client: Shared resilient transport
        """
        self._config = config
        self._http = http_client

    @property
    def name(self) -> str:
        return self.display_name or self.provider_id

    @property
    def test_mode(self) -> bool:
        return self._config.test_mode

    @property
    def config(self) -> ProviderConfig:
        return self._config

    # =========================================================================
    # Required capabilities
    # =========================================================================

    @abstractmethod
    def is_configured(self) -> bool:
        """
        True when every credential this vendor needs is present.

        Must be a pure function of the credential map: the registry uses it
        to drop half-configured vendors without touching the network.
        """

    @abstractmethod
    async def get_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        """
        Rate quotes for a request. No service available is an empty list,
        not an error.
        """

    @abstractmethod
    async def create_shipment(self, request: ShippingRequest, service: str) -> ShipmentResponse:
        """
        Create a shipment with the selected vendor service.

        Args:
            request: Canonical shipping request
            service: Vendor service/courier identifier from a ShippingRate
        """

    @abstractmethod
    async def track_shipment(self, tracking_id: str) -> ShipmentTrackingResponse:
        """Current status and scan history for an AWB."""

    @abstractmethod
    async def cancel_shipment(self, tracking_id: str) -> ShipmentCancellationResponse:
        """Cancel a shipment by AWB."""

    # =========================================================================
    # Optional capabilities with defaults
    # =========================================================================

    async def get_pickup_locations(self) -> List[PickupLocation]:
        """Default: vendor has no pickup-location API, so none are listed."""
        return []

    async def create_pickup_location(self, location: PickupLocation) -> PickupLocationResponse:
        """Default: NOT_IMPLEMENTED failure."""
        return PickupLocationResponse.failure(
            f"Pickup location management not supported by {self.name}",
            ErrorCode.NOT_IMPLEMENTED,
        )

    async def create_return_shipment(self, tracking_id: str, request: ShippingRequest) -> ShipmentResponse:
        """Default: NOT_IMPLEMENTED failure."""
        return ShipmentResponse.failure(
            f"Return shipment creation not supported by {self.name}",
            ErrorCode.NOT_IMPLEMENTED,
        )

    def supports_international_shipping(self) -> bool:
        return False

    async def get_international_rates(self, request: ShippingRequest) -> List[ShippingRate]:
        """Default: no international services."""
        logger.warning(f"[{self.provider_id.upper()}] International shipping not supported")
        return []

    async def process_webhook_event(self, payload: Any) -> Optional[WebhookEvent]:
        """
        Normalize a vendor status callback.

        The payload is vendor-specific and unauthenticated at this point.
        Invalid payloads are logged and dropped (None): the vendor has
        already fired and forgotten the HTTP call.
        """
        if not isinstance(payload, Mapping):
            logger.warning(f"[WEBHOOK] {self.provider_id}: ignoring non-object payload")
            return None

        event = self._build_webhook_event(payload)
        if event is None:
            logger.warning(f"[WEBHOOK] {self.provider_id}: invalid event {sanitize_for_logging(dict(payload))}")
            return None

        logger.info(
            f"[WEBHOOK] {self.provider_id}: {event.event_type or event.status} "
            f"awb={event.awb} order={event.order_id}"
        )
        return event

    def _build_webhook_event(self, payload: Mapping[str, Any]) -> Optional[WebhookEvent]:
        """Generic extraction; adapters override map_webhook_status()."""
        data = payload.get("data") or payload.get("payload") or payload
        if not isinstance(data, Mapping):
            return None

        event_type = str(payload.get("event") or payload.get("type") or payload.get("status") or "").lower()
        status = str(data.get("status") or data.get("current_status") or payload.get("status") or "")
        awb = data.get("awb_code") or data.get("awb") or data.get("tracking_number") \
            or payload.get("awb") or payload.get("tracking_number")
        order_id = data.get("order_id") or payload.get("order_id") or payload.get("orderId")

        eta_days = parse_transit_days(data.get("estimated_delivery_days") or data.get("etd"), None)

        return WebhookEvent(
            provider_id=self.provider_id,
            event_type=event_type,
            status=status,
            awb=str(awb) if awb else None,
            order_id=str(order_id) if order_id else None,
            normalized_status=self.map_webhook_status(event_type, status.lower()),
            estimated_delivery_days=eta_days,
            raw=dict(payload),
        )

    def map_webhook_status(self, event_type: str, status: str) -> Optional[NormalizedStatus]:
        """Coarse status from a lower-cased event type and vendor status."""
        if "delivered" in status:
            return NormalizedStatus.DELIVERED
        if any(s in status for s in ("in transit", "picked", "out for delivery")):
            return NormalizedStatus.SHIPPED
        if "cancel" in status:
            return NormalizedStatus.CANCELLED
        return None

    # =========================================================================
    # Vendor call helpers
    # =========================================================================

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Transport call; exhausted retries become ShippingTransportError."""
        try:
            return await self._http.request(method, url, **kwargs)
        except RETRYABLE_EXCEPTIONS as e:
            raise ShippingTransportError(
                f"{self.name} did not respond: {type(e).__name__}",
                url=url,
                attempts=self._http.retry_config.max_retries + 1,
            ) from e
        except httpx.HTTPError as e:
            raise ShippingTransportError(f"{self.name} request failed: {e}", url=url) from e

    def _ensure_ok(self, response: httpx.Response, action: str) -> None:
        """Non-2xx after retries is a vendor rejection."""
        if response.is_success:
            return
        detail = response.reason_phrase or str(response.status_code)
        try:
            body = response.json()
            if isinstance(body, Mapping) and body.get("message"):
                detail = str(body["message"])
        except ValueError:
            pass
        logger.error(
            f"[{self.provider_id.upper()}] {action} failed: status={response.status_code} "
            f"body={sanitize_for_logging(response.text)}"
        )
        raise ShippingVendorError(
            f"{self.name} {action} failed: {detail}",
            provider_id=self.provider_id,
            status_code=response.status_code,
        )

    def _decode(self, response: httpx.Response, schema: Type[SchemaT], action: str) -> SchemaT:
        """Decode a vendor body against its declared schema or raise PARSE_ERROR."""
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"[{self.provider_id.upper()}] {action}: body is not JSON")
            raise ShippingVendorError(
                f"Failed to parse {self.name} {action} response",
                provider_id=self.provider_id,
                status_code=response.status_code,
                code=ErrorCode.PARSE_ERROR,
            ) from e

        try:
            return schema.model_validate(data)
        except ValidationError as e:
            logger.error(
                f"[{self.provider_id.upper()}] {action}: unexpected response shape "
                f"({e.error_count()} errors) body={sanitize_for_logging(data)}"
            )
            raise ShippingVendorError(
                f"Unexpected {self.name} {action} response",
                provider_id=self.provider_id,
                status_code=response.status_code,
                code=ErrorCode.PARSE_ERROR,
            ) from e

    async def _call(
        self,
        method: str,
        url: str,
        schema: Type[SchemaT],
        action: str,
        **kwargs,
    ) -> SchemaT:
        response = await self._send(method, url, **kwargs)
        self._ensure_ok(response, action)
        return self._decode(response, schema, action)

    def _log_failure(self, action: str, error: ShippingError) -> None:
        logger.error(f"[{self.provider_id.upper()}] {action} error: {error.code}: {error.message}")
