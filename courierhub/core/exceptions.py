"""
CourierHub Exception Hierarchy

Structured exception classes for the shipping-aggregation layer.
All exceptions include code, message, and details for audit trail and
debugging. Adapters raise these internally and convert them into structured
failure results at their public boundary.

Exception Hierarchy:
    CourierHubError
    └── ShippingError
        ├── ShippingValidationError
        ├── ShippingTransportError
        ├── ShippingVendorError
        └── ProviderConfigurationError
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ErrorCode:
    """Machine-readable codes carried in the `error` field of failure results."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_PINCODE = "INVALID_PINCODE"
    MISSING_PARAMETERS = "MISSING_PARAMETERS"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    VENDOR_ERROR = "VENDOR_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    AUTH_FAILED = "AUTH_FAILED"
    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"
    INVALID_PROVIDER = "INVALID_PROVIDER"
    PROVIDER_NOT_CONFIGURED = "PROVIDER_NOT_CONFIGURED"
    MISSING_AWB = "MISSING_AWB"
    TRACKING_NOT_FOUND = "TRACKING_NOT_FOUND"


class CourierHubError(Exception):
    """
    Base exception for all CourierHub errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "COURIERHUB_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# SHIPPING ERRORS
# =============================================================================

class ShippingError(CourierHubError):
    """Base exception for shipping-related errors."""
    default_code = "SHIPPING_ERROR"
    default_severity = "P1"


class ShippingValidationError(ShippingError):
    """Malformed input detected before any network call."""
    default_code = ErrorCode.VALIDATION_ERROR
    default_severity = "P3"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["field"] = field
        super().__init__(message, details=details, **kwargs)


class ShippingTransportError(ShippingError):
    """Timeout, connection reset or abort after retries were exhausted."""
    default_code = ErrorCode.TRANSPORT_ERROR

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        attempts: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "url": url,
            "attempts": attempts,
        })
        super().__init__(message, details=details, **kwargs)


class ShippingVendorError(ShippingError):
    """Vendor returned a well-formed rejection or an unparsable body."""
    default_code = ErrorCode.VENDOR_ERROR
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "provider_id": provider_id,
            "status_code": status_code,
        })
        super().__init__(message, details=details, **kwargs)


class ProviderConfigurationError(ShippingError):
    """Operation requested against an unknown or unconfigured provider."""
    default_code = ErrorCode.INVALID_PROVIDER
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        provider_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["provider_id"] = provider_id
        super().__init__(message, details=details, **kwargs)


# =============================================================================
# EXCEPTION CATALOG
# =============================================================================

EXCEPTION_CATALOG = {
    ErrorCode.VALIDATION_ERROR: {"class": ShippingValidationError, "severity": "P3"},
    ErrorCode.INVALID_PINCODE: {"class": ShippingValidationError, "severity": "P3"},
    ErrorCode.MISSING_PARAMETERS: {"class": ShippingValidationError, "severity": "P3"},
    ErrorCode.TRANSPORT_ERROR: {"class": ShippingTransportError, "severity": "P1"},
    ErrorCode.VENDOR_ERROR: {"class": ShippingVendorError, "severity": "P2"},
    ErrorCode.PARSE_ERROR: {"class": ShippingVendorError, "severity": "P2"},
    ErrorCode.AUTH_FAILED: {"class": ShippingVendorError, "severity": "P1"},
    ErrorCode.INVALID_PROVIDER: {"class": ProviderConfigurationError, "severity": "P2"},
    ErrorCode.PROVIDER_NOT_CONFIGURED: {"class": ProviderConfigurationError, "severity": "P2"},
}
