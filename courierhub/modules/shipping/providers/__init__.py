"""
Provider Registry and Factory v1.0.0

- Explicit provider id -> adapter factory mapping, populated at import time
- Adding a vendor means registering a factory, not editing a conditional
- The orchestrator owns which configured providers are live; this module
  only knows how to build them
"""
from typing import Callable, Dict, List, Optional
import logging

from courierhub.core.http_client import ResilientHTTPClient
from courierhub.modules.shipping.providers.base import BaseShippingProvider
from courierhub.modules.shipping.types import ProviderConfig

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderConfig, ResilientHTTPClient], BaseShippingProvider]


class ProviderRegistry:
    """
    Registry of provider adapter factories keyed by provider id.

    Usage:
        registry = ProviderRegistry()

        @registry.register("shipway")
        class ShipwayProvider(BaseShippingProvider):
            ...

        provider = registry.create(config, http_client)
    """

    def __init__(self):
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, provider_id: str):
        """Decorator registering a provider class (or any factory callable)."""
        def decorator(factory: ProviderFactory):
            self.add(provider_id, factory)
            return factory
        return decorator

    def add(self, provider_id: str, factory: ProviderFactory) -> None:
        if provider_id in self._factories:
            logger.warning(f"Replacing provider factory for: {provider_id}")
        self._factories[provider_id] = factory
        logger.debug(f"Registered provider: {provider_id} -> {getattr(factory, '__name__', factory)}")

    def is_registered(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def create(
        self,
        config: ProviderConfig,
        http_client: ResilientHTTPClient,
    ) -> Optional[BaseShippingProvider]:
        """
        Build an adapter for a configuration entry.

        Returns:
            BaseShippingProvider instance, or None for an unknown provider id
        """
        factory = self._factories.get(config.id)
        if not factory:
            logger.warning(f"No implementation registered for provider: {config.id}")
            return None
        return factory(config, http_client)

    def registered_providers(self) -> List[str]:
        """Get list of all registered provider ids."""
        return list(self._factories.keys())


# Process-wide registry used by the default orchestrator
provider_registry = ProviderRegistry()
register_provider = provider_registry.register


# Import providers to trigger registration
# These imports must be at the bottom to avoid circular imports
from courierhub.modules.shipping.providers.shiprocket import ShiprocketProvider  # noqa: E402, F401
from courierhub.modules.shipping.providers.shipway import ShipwayProvider  # noqa: E402, F401
from courierhub.modules.shipping.providers.shipyaari import ShipyaariProvider  # noqa: E402, F401
