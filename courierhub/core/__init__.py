from courierhub.core.config import settings, get_settings, Settings
from courierhub.core.http_client import ResilientHTTPClient, RetryConfig
from courierhub.core.exceptions import (
    CourierHubError,
    ErrorCode,
    ShippingError,
    ShippingValidationError,
    ShippingTransportError,
    ShippingVendorError,
    ProviderConfigurationError,
)
