"""
Shipping Module v1.0.0

- Canonical request/response model shared by every vendor
- BaseShippingProvider interface for all aggregator adapters
- ProviderRegistry mapping provider ids to adapter factories
"""
from courierhub.modules.shipping.providers import (
    ProviderRegistry,
    provider_registry,
    register_provider,
)
from courierhub.modules.shipping.providers.base import BaseShippingProvider

__all__ = [
    "ProviderRegistry",
    "provider_registry",
    "register_provider",
    "BaseShippingProvider",
]
