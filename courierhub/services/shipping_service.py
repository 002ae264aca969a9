"""
Shipping Aggregation Service v1.0.0

- Builds the live provider set from the configuration store's entries
- Elects a default provider
- Fans rate-shopping queries out to every provider concurrently; one slow or
  failing vendor never aborts its siblings
- Routes single-provider operations (create/track/cancel/return/pickup/
  webhook) to the named adapter

The provider set is an immutable snapshot. initialize_providers() builds a
new one and swaps it in with a single assignment, so concurrent readers see
either the old set or the new one, never a mix.

Usage:
    service = ShippingService()
    service.initialize_providers(configs, default_id="shiprocket")
    rates = await service.get_all_rates(request)
"""
import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from courierhub.core.exceptions import ErrorCode, ProviderConfigurationError
from courierhub.core.http_client import ResilientHTTPClient
from courierhub.modules.shipping.providers import ProviderRegistry, provider_registry
from courierhub.modules.shipping.providers.base import BaseShippingProvider
from courierhub.modules.shipping.types import (
    LineItem,
    PaymentMode,
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
from courierhub.modules.shipping.utils import has_valid_pincodes

logger = logging.getLogger(__name__)

ConfigEntry = Union[ProviderConfig, Mapping[str, Any]]

SAMPLE_RATE_COUNT = 3


@dataclass(frozen=True)
class ProviderSnapshot:
    """Live adapters keyed by provider id, plus the elected default."""
    providers: Mapping[str, BaseShippingProvider]
    default_provider: Optional[str] = None


EMPTY_SNAPSHOT = ProviderSnapshot(providers=MappingProxyType({}))


def _as_config(entry: ConfigEntry) -> ProviderConfig:
    if isinstance(entry, ProviderConfig):
        return entry
    return ProviderConfig.from_aggregator(entry)


def _not_found(provider_id: str) -> Tuple[str, str]:
    """(message, code) of a lookup miss, for the results' failure() helpers."""
    error = ProviderConfigurationError(f"Provider {provider_id} not found or not enabled", provider_id=provider_id)
    return error.message, error.code


class ShippingService:
    """
    Facade over the configured provider adapters.

    Expected failures (unknown provider, bad pincode, vendor errors) come
    back as structured results or empty lists; nothing here raises for them.
    """

    def __init__(
        self,
        http_client: Optional[ResilientHTTPClient] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self._http = http_client or ResilientHTTPClient()
        self._registry = registry or provider_registry
        self._snapshot: ProviderSnapshot = EMPTY_SNAPSHOT

    @property
    def http_client(self) -> ResilientHTTPClient:
        return self._http

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    async def close(self) -> None:
        await self._http.close()

    # =========================================================================
    # Provider set
    # =========================================================================

    def build_snapshot(
        self,
        configs: Iterable[ConfigEntry],
        default_id: Optional[str] = None,
    ) -> ProviderSnapshot:
        """Build a provider snapshot without installing it."""
        providers: Dict[str, BaseShippingProvider] = {}

        for entry in configs:
            config = _as_config(entry)
            if not config.enabled:
                continue

            provider = self._registry.create(config, self._http)
            if provider is None:
                logger.warning(f"[SHIPPING] Unknown shipping provider: {config.id}")
                continue

            if not provider.is_configured():
                logger.warning(f"[SHIPPING] Provider {config.id} is enabled but not properly configured")
                continue

            providers[config.id] = provider

        if default_id and default_id in providers:
            default = default_id
        elif providers:
            default = next(iter(providers))
            if default_id:
                logger.info(f"[SHIPPING] Default provider {default_id} unavailable, using {default}")
        else:
            default = None
            logger.warning("[SHIPPING] No shipping providers configured properly")

        return ProviderSnapshot(providers=MappingProxyType(providers), default_provider=default)

    def initialize_providers(
        self,
        configs: Iterable[ConfigEntry],
        default_id: Optional[str] = None,
    ) -> None:
        """
        Replace the live provider set.

        Args:
            configs: ProviderConfig objects or configuration-store documents
            default_id: Preferred default; ignored if that provider did not load
        """
        snapshot = self.build_snapshot(configs, default_id)
        self._snapshot = snapshot
        logger.info(
            f"[SHIPPING] Providers loaded: {list(snapshot.providers) or 'none'} "
            f"(default: {snapshot.default_provider})"
        )

    # Reconfiguration is a full rebuild
    reload = initialize_providers

    def get_available_providers(self) -> List[str]:
        return list(self._snapshot.providers)

    def get_default_provider(self) -> Optional[str]:
        return self._snapshot.default_provider

    def get_provider(self, provider_id: str) -> Optional[BaseShippingProvider]:
        return self._snapshot.providers.get(provider_id)

    def _lookup(self, provider_id: str, action: str) -> Optional[BaseShippingProvider]:
        provider = self.get_provider(provider_id)
        if provider is None:
            logger.warning(f"[SHIPPING] {action}: provider {provider_id} not found or not enabled")
        return provider

    # =========================================================================
    # Rates
    # =========================================================================

    async def _rates_for(self, provider_id: str, provider: BaseShippingProvider, request: ShippingRequest) -> List[ShippingRate]:
        try:
            return await provider.get_rates(request)
        except Exception as e:
            logger.error(f"[SHIPPING] Error getting rates from {provider_id}: {type(e).__name__}: {e}")
            return []

    async def get_all_rates(self, request: ShippingRequest) -> Dict[str, List[ShippingRate]]:
        """
        Rate-shop every live provider concurrently and wait for all of them.

        Returns:
            {provider_id: [ShippingRate, ...]}; a failing provider maps to [].
            An empty dict if either pincode is malformed.
        """
        if not has_valid_pincodes(request):
            logger.warning(
                f"[SHIPPING] Invalid pincode in shipping request: "
                f"{request.pickup_pincode} -> {request.delivery_pincode}"
            )
            return {}

        providers = self._snapshot.providers
        if not providers:
            return {}

        ids = list(providers)
        results = await asyncio.gather(
            *(self._rates_for(pid, providers[pid], request) for pid in ids)
        )

        rates = dict(zip(ids, results))
        logger.info(
            f"[SHIPPING] Rates for order {request.order_id}: "
            + ", ".join(f"{pid}={len(r)}" for pid, r in rates.items())
        )
        return rates

    async def get_rates(self, provider_id: str, request: ShippingRequest) -> List[ShippingRate]:
        provider = self._lookup(provider_id, "get rates")
        if provider is None:
            return []
        if not has_valid_pincodes(request):
            logger.warning(
                f"[SHIPPING] Invalid pincode in shipping request: "
                f"{request.pickup_pincode} -> {request.delivery_pincode}"
            )
            return []
        return await self._rates_for(provider_id, provider, request)

    def supports_international_shipping(self, provider_id: str) -> bool:
        provider = self.get_provider(provider_id)
        return provider.supports_international_shipping() if provider else False

    async def get_international_rates(self, provider_id: str, request: ShippingRequest) -> List[ShippingRate]:
        provider = self._lookup(provider_id, "get international rates")
        if provider is None:
            return []
        if not request.is_international:
            request = dataclasses.replace(request, is_international=True)
        return await provider.get_international_rates(request)

    # =========================================================================
    # Shipments
    # =========================================================================

    async def create_shipment(self, provider_id: str, request: ShippingRequest, service: str) -> ShipmentResponse:
        provider = self._lookup(provider_id, "create shipment")
        if provider is None:
            return ShipmentResponse.failure(*_not_found(provider_id))
        if not has_valid_pincodes(request):
            return ShipmentResponse.failure(
                f"Invalid pincode in shipping request: {request.pickup_pincode} -> {request.delivery_pincode}",
                ErrorCode.INVALID_PINCODE,
            )
        return await provider.create_shipment(request, service)

    async def track_shipment(self, provider_id: str, tracking_id: str) -> ShipmentTrackingResponse:
        provider = self._lookup(provider_id, "track shipment")
        if provider is None:
            return ShipmentTrackingResponse.failure(tracking_id, *_not_found(provider_id))
        return await provider.track_shipment(tracking_id)

    async def cancel_shipment(self, provider_id: str, tracking_id: str) -> ShipmentCancellationResponse:
        provider = self._lookup(provider_id, "cancel shipment")
        if provider is None:
            return ShipmentCancellationResponse.failure(
                tracking_id, *_not_found(provider_id)
            )
        return await provider.cancel_shipment(tracking_id)

    async def create_return_shipment(
        self,
        provider_id: str,
        tracking_id: str,
        request: ShippingRequest,
    ) -> ShipmentResponse:
        provider = self._lookup(provider_id, "create return shipment")
        if provider is None:
            return ShipmentResponse.failure(*_not_found(provider_id))
        return await provider.create_return_shipment(
            tracking_id, dataclasses.replace(request, is_reverse_pickup=True)
        )

    # =========================================================================
    # Pickup locations
    # =========================================================================

    async def get_pickup_locations(self, provider_id: str) -> List[PickupLocation]:
        provider = self._lookup(provider_id, "get pickup locations")
        if provider is None:
            return []
        return await provider.get_pickup_locations()

    async def create_pickup_location(self, provider_id: str, location: PickupLocation) -> PickupLocationResponse:
        provider = self._lookup(provider_id, "create pickup location")
        if provider is None:
            return PickupLocationResponse.failure(*_not_found(provider_id))
        return await provider.create_pickup_location(location)

    # =========================================================================
    # Webhooks
    # =========================================================================

    async def process_webhook_event(self, provider_id: str, payload: Any) -> Optional[WebhookEvent]:
        """
        Route a vendor callback. Unknown providers are logged and dropped;
        the vendor has already fired and forgotten the call.
        """
        provider = self.get_provider(provider_id)
        if provider is None:
            logger.warning(f"[WEBHOOK] Received webhook for unknown provider: {provider_id}")
            return None
        return await provider.process_webhook_event(payload)


# =============================================================================
# Connection test
# =============================================================================

def sample_rate_request() -> ShippingRequest:
    """New Delhi -> Mumbai, 500 g, Rs 1000 prepaid."""
    return ShippingRequest(
        order_id=f"test-{int(time.time() * 1000)}",
        pickup_pincode="110001",
        delivery_pincode="400001",
        weight=500,
        invoice_value=1000,
        payment_method=PaymentMode.PREPAID,
        customer_name="Test Customer",
        customer_address="Test Address",
        customer_city="Mumbai",
        customer_state="Maharashtra",
        customer_phone="9999999999",
        customer_email="test@example.com",
        pickup_location="Test Warehouse",
        pickup_address="Test Warehouse Address",
        pickup_city="New Delhi",
        pickup_state="Delhi",
        items=(LineItem(name="Test Product", sku="TEST-1", quantity=1, price=1000),),
    )


async def test_shipping_provider(
    provider_id: str,
    credential_fields: Mapping[str, Any],
    http_client: Optional[ResilientHTTPClient] = None,
    registry: Optional[ProviderRegistry] = None,
) -> Dict[str, Any]:
    """
    Check a set of credentials before an administrator saves them.

    Builds a throw-away adapter, checks it is configured and runs one sample
    rate query.

    Returns:
        {"success": True, "data": {"aggregator_name", "rates_available", "sample_rates"}}
        or {"success": False, "error": "...", "code": ErrorCode}
    """
    registry = registry or provider_registry
    if not registry.is_registered(provider_id):
        return {"success": False, "error": "Invalid provider ID", "code": ErrorCode.INVALID_PROVIDER}

    config = ProviderConfig.from_aggregator({"id": provider_id, "enabled": True, "configFields": credential_fields})

    owns_client = http_client is None
    http_client = http_client or ResilientHTTPClient()
    try:
        provider = registry.create(config, http_client)
        if not provider.is_configured():
            return {
                "success": False,
                "error": "Provider is not properly configured. Please check all required fields.",
                "code": ErrorCode.PROVIDER_NOT_CONFIGURED,
            }

        rates = await provider.get_rates(sample_rate_request())
        logger.info(f"[SHIPPING] Connection test for {provider_id}: {len(rates)} rates")
        return {
            "success": True,
            "data": {
                "aggregator_name": provider.name,
                "rates_available": bool(rates),
                "sample_rates": [r.to_dict() for r in rates[:SAMPLE_RATE_COUNT]],
            },
        }
    finally:
        if owns_client:
            await http_client.close()


# Not a pytest test despite the name
test_shipping_provider.__test__ = False


# Singleton
_service: Optional[ShippingService] = None


def get_shipping_service() -> ShippingService:
    global _service
    if _service is None:
        _service = ShippingService()
    return _service
