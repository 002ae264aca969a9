"""
API dependencies
"""
import hmac
import logging

from fastapi import Depends, HTTPException, Request, status

from courierhub.core.config import Settings, get_settings
from courierhub.services.shipping_service import ShippingService, get_shipping_service

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


def get_service(request: Request) -> ShippingService:
    """Orchestrator installed by the app factory, else the process-wide one."""
    service = getattr(request.app.state, "shipping_service", None)
    return service or get_shipping_service()


async def verify_webhook_secret(
    provider_id: str,
    request: Request,
    settings: Settings = Depends(get_settings),
) -> bool:
    """
    Shared-secret check for vendor callbacks.

    Applied only when a secret is configured for the provider (or the
    global fallback). With none configured callbacks are accepted
    unauthenticated and False is returned.
    """
    secret = settings.webhook_secret_for(provider_id)
    if not secret:
        return False

    supplied = request.headers.get(WEBHOOK_SECRET_HEADER, "")
    if not supplied or not hmac.compare_digest(supplied.encode(), secret.encode()):
        logger.warning(f"[WEBHOOK] {provider_id}: invalid or missing {WEBHOOK_SECRET_HEADER}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )
    return True
