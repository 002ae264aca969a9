"""
Shipping API Routes

Provides endpoints for:
- Provider listing (live providers and the default)
- Rate shopping across every live provider, or one with ?provider=
- Public pincode serviceability check
- Shipment booking, tracking, cancellation and returns on a named provider
- Pickup location management
- Credential connection tests
- Vendor webhook callbacks, routed by provider id
"""
import logging
import time
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from courierhub.api.deps import get_service, verify_webhook_secret
from courierhub.core.config import Settings, get_settings
from courierhub.modules.shipping.types import PaymentMode, ShippingRate, ShippingRequest
from courierhub.modules.shipping.utils import is_valid_pincode
from courierhub.schemas.shipping import (
    CancellationOut,
    ConnectionTestRequest,
    ConnectionTestResponse,
    CreateShipmentRequest,
    DeliveryEstimate,
    PickupLocationIn,
    PickupLocationOut,
    PickupLocationResultOut,
    ProviderServiceability,
    ProvidersResponse,
    RateOut,
    RateRequest,
    RateShoppingResponse,
    ServiceabilityResponse,
    ShipmentOut,
    ShipmentRequestIn,
    TrackingOut,
    WebhookAck,
)
from courierhub.services import shipping_service as shipping_module
from courierhub.services.shipping_service import ShippingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shipping", tags=["shipping"])

# Serviceability checks never quote below these
MIN_SERVICEABILITY_WEIGHT_G = 100
MIN_SERVICEABILITY_VALUE = 1


def _require_provider(service: ShippingService, provider_id: str) -> None:
    if service.get_provider(provider_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider {provider_id} not found or not enabled",
        )


def _rate_shopping_response(results: Dict[str, List[ShippingRate]]) -> RateShoppingResponse:
    rates = {pid: [RateOut.from_rate(r) for r in provider_rates] for pid, provider_rates in results.items()}

    cheapest = None
    cheapest_provider = None
    for pid, provider_rates in rates.items():
        for rate in provider_rates:
            if rate.is_available and (cheapest is None or rate.cost < cheapest.cost):
                cheapest, cheapest_provider = rate, pid

    return RateShoppingResponse(rates=rates, cheapest=cheapest, cheapest_provider=cheapest_provider)


# ==================== Providers ====================


@router.get("/providers", response_model=ProvidersResponse)
async def list_providers(service: ShippingService = Depends(get_service)):
    """Providers that are enabled and fully configured."""
    return ProvidersResponse(
        providers=service.get_available_providers(),
        default_provider=service.get_default_provider(),
    )


@router.post("/test-connection/{provider_id}", response_model=ConnectionTestResponse)
async def check_connection(
    provider_id: str,
    body: ConnectionTestRequest,
    service: ShippingService = Depends(get_service),
):
    """
    Try a set of credentials with one sample rate query.

    The provider does not need to be live; nothing is saved.
    """
    result = await shipping_module.test_shipping_provider(
        provider_id, body.config, http_client=service.http_client, registry=service.registry
    )
    return ConnectionTestResponse.model_validate(result)


# ==================== Rates ====================


@router.post("/rates", response_model=RateShoppingResponse)
async def shop_rates(
    rate_request: RateRequest,
    provider: Optional[str] = Query(None, description="Quote a single provider"),
    service: ShippingService = Depends(get_service),
):
    """
    Rate-shop every live provider, or only `provider`.

    A malformed pincode, or every provider failing, still answers 200 with
    an empty or all-empty map.
    """
    request = rate_request.to_request()
    if provider:
        _require_provider(service, provider)
        results = {provider: await service.get_rates(provider, request)}
    else:
        results = await service.get_all_rates(request)

    return _rate_shopping_response(results)


@router.get("/serviceability", response_model=ServiceabilityResponse)
async def check_serviceability(
    pincode: str = Query(..., description="Delivery pincode"),
    weight: int = Query(500, description="grams"),
    invoice_value: float = Query(1000),
    service: ShippingService = Depends(get_service),
    settings: Settings = Depends(get_settings),
):
    """Public check: can any live provider deliver to this pincode?"""
    delivery_pincode = pincode.strip()
    if not is_valid_pincode(delivery_pincode):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid pincode is required")

    pickup_pincode = settings.SHIPPING_DEFAULT_PICKUP_PINCODE
    request = ShippingRequest(
        order_id=f"svc-{int(time.time() * 1000)}",
        pickup_pincode=pickup_pincode,
        delivery_pincode=delivery_pincode,
        weight=max(MIN_SERVICEABILITY_WEIGHT_G, weight),
        invoice_value=max(MIN_SERVICEABILITY_VALUE, invoice_value),
        payment_method=PaymentMode.PREPAID,
    )
    results = await service.get_all_rates(request)

    providers = [
        ProviderServiceability(provider_id=pid, available=bool(rates), services=len(rates))
        for pid, rates in results.items()
    ]
    etas = [r.estimated_delivery_days for rates in results.values() for r in rates]

    return ServiceabilityResponse(
        serviceable=any(p.available for p in providers),
        providers=providers,
        estimated_delivery_days=DeliveryEstimate(min=min(etas), max=max(etas)) if etas else None,
        pickup_pincode=pickup_pincode,
        delivery_pincode=delivery_pincode,
    )


# ==================== Shipments ====================


@router.post("/shipment", response_model=ShipmentOut)
async def create_shipment(
    body: CreateShipmentRequest,
    service: ShippingService = Depends(get_service),
):
    """
    Book a shipment with a quoted service of a named provider.

    Vendor rejections come back as success=false with an error code.
    """
    _require_provider(service, body.provider_id)
    result = await service.create_shipment(body.provider_id, body.request.to_request(), body.service)
    return ShipmentOut.from_result(result)


@router.get("/track/{provider_id}/{tracking_id}", response_model=TrackingOut)
async def track_shipment(
    provider_id: str,
    tracking_id: str,
    service: ShippingService = Depends(get_service),
):
    _require_provider(service, provider_id)
    result = await service.track_shipment(provider_id, tracking_id)
    return TrackingOut.from_result(result)


@router.post("/cancel/{provider_id}/{tracking_id}", response_model=CancellationOut)
async def cancel_shipment(
    provider_id: str,
    tracking_id: str,
    service: ShippingService = Depends(get_service),
):
    """Cancel by AWB. A vendor refusal is a 400 carrying the vendor's message."""
    _require_provider(service, provider_id)
    result = await service.cancel_shipment(provider_id, tracking_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return CancellationOut.from_result(result)


@router.post("/return/{provider_id}/{tracking_id}", response_model=ShipmentOut)
async def create_return_shipment(
    provider_id: str,
    tracking_id: str,
    body: ShipmentRequestIn,
    service: ShippingService = Depends(get_service),
):
    _require_provider(service, provider_id)
    result = await service.create_return_shipment(provider_id, tracking_id, body.to_request())
    return ShipmentOut.from_result(result)


# ==================== Pickup Locations ====================


@router.get("/pickup-locations/{provider_id}", response_model=List[PickupLocationOut])
async def list_pickup_locations(
    provider_id: str,
    service: ShippingService = Depends(get_service),
):
    _require_provider(service, provider_id)
    locations = await service.get_pickup_locations(provider_id)
    return [PickupLocationOut.model_validate(location.to_dict()) for location in locations]


@router.post("/pickup-locations/{provider_id}", response_model=PickupLocationResultOut)
async def create_pickup_location(
    provider_id: str,
    body: PickupLocationIn,
    service: ShippingService = Depends(get_service),
):
    """Register a warehouse with the vendor. Unsupported vendors answer NOT_IMPLEMENTED."""
    _require_provider(service, provider_id)
    result = await service.create_pickup_location(provider_id, body.to_location())
    return PickupLocationResultOut.from_result(result)


# ==================== Webhooks ====================


@router.post("/webhook/{provider_id}", response_model=WebhookAck)
async def receive_webhook(
    provider_id: str,
    request: Request,
    authenticated: bool = Depends(verify_webhook_secret),
    service: ShippingService = Depends(get_service),
):
    """
    Vendor status callback.

    Returns 200 even for payloads that cannot be processed (to prevent
    retries); only a wrong shared secret is rejected.
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.error(f"[WEBHOOK] {provider_id}: failed to parse payload: {e}")
        return WebhookAck(status="error", provider_id=provider_id, message="Invalid JSON")

    if not authenticated:
        logger.debug(f"[WEBHOOK] {provider_id}: no secret configured, accepting unauthenticated callback")

    event = await service.process_webhook_event(provider_id, payload)
    if event is None:
        return WebhookAck(status="ignored", provider_id=provider_id)

    return WebhookAck(
        status="ok",
        provider_id=provider_id,
        event_type=event.event_type,
        awb=event.awb,
        normalized_status=event.normalized_status.value if event.normalized_status else None,
    )
