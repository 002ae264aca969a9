import httpx
import pytest

from courierhub.modules.shipping.providers import ProviderRegistry, provider_registry
from courierhub.modules.shipping.providers.shiprocket import ShiprocketProvider
from courierhub.modules.shipping.types import ProviderConfig


class TestProviderRegistry:
    def test_builtin_vendors_are_registered(self):
        assert {"shiprocket", "shipway", "shipyaari"} <= set(provider_registry.registered_providers())

    def test_create_builds_registered_adapter(self, make_http_client, shiprocket_config):
        client, _ = make_http_client(lambda r: httpx.Response(200))

        provider = provider_registry.create(shiprocket_config, client)

        assert isinstance(provider, ShiprocketProvider)
        assert provider.config is shiprocket_config

    def test_unknown_id_creates_nothing(self, make_http_client):
        client, _ = make_http_client(lambda r: httpx.Response(200))

        assert provider_registry.create(ProviderConfig(id="fedex"), client) is None

    def test_register_decorator_returns_class(self):
        registry = ProviderRegistry()

        @registry.register("stub")
        class Stub:
            def __init__(self, config, http_client):
                self.config = config

        assert Stub.__name__ == "Stub"
        assert registry.is_registered("stub")
        assert isinstance(registry.create(ProviderConfig(id="stub"), None), Stub)

    @pytest.mark.parametrize("provider_id", ["shiprocket", "shipway", "shipyaari"])
    def test_empty_credentials_are_not_configured(self, make_http_client, provider_id):
        client, _ = make_http_client(lambda r: httpx.Response(200))

        provider = provider_registry.create(ProviderConfig(id=provider_id), client)

        assert not provider.is_configured()
