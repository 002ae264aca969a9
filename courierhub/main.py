"""
CourierHub
FastAPI application entry point

- Shipping routes under /api
- Provider set loaded from the configuration store's entries on startup
- Shared HTTP client closed on shutdown
"""
import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import FastAPI

from courierhub import __version__
from courierhub.api.routes import shipping
from courierhub.core.config import settings
from courierhub.core.log_utils import configure_logging
from courierhub.services.shipping_service import ConfigEntry, ShippingService, get_shipping_service

logger = logging.getLogger(__name__)


def create_app(
    service: Optional[ShippingService] = None,
    provider_configs: Optional[Iterable[ConfigEntry]] = None,
    default_provider: Optional[str] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        service: Orchestrator to serve; defaults to the process-wide one
        provider_configs: Configuration-store entries loaded on startup
        default_provider: Preferred default provider id
    """
    configure_logging()
    service = service or get_shipping_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if provider_configs is not None:
            service.initialize_providers(provider_configs, default_provider)
        logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")

        yield

        # Close HTTP clients to prevent connection leaks
        await service.close()
        logger.info("Shipping HTTP client closed")

    app = FastAPI(
        lifespan=lifespan,
        title=f"{settings.APP_NAME} API",
        description="Rate shopping and webhook intake over third-party courier aggregators.",
        version=__version__,
    )

    app.include_router(shipping.router, prefix="/api")
    app.state.shipping_service = service

    @app.get("/health")
    async def health():
        return {"status": "ok", "providers": service.get_available_providers()}

    return app
