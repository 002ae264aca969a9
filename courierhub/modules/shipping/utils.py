"""
Shared helpers for provider adapters: postal-code checks, unit conversion,
vendor date parsing.
"""
import logging
import re
from datetime import datetime
from typing import Any, Optional

from courierhub.modules.shipping.types import PackageDimensions, ShippingRequest

logger = logging.getLogger(__name__)

# Indian PIN codes: exactly six ASCII digits
PINCODE_PATTERN = re.compile(r"[0-9]{6}")

VENDOR_DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%d-%m-%Y %H:%M:%S",
    "%d-%m-%Y",
    "%d/%m/%Y",
    "%d %b %Y",
)


def is_valid_pincode(pincode: Any) -> bool:
    return isinstance(pincode, str) and PINCODE_PATTERN.fullmatch(pincode) is not None


def has_valid_pincodes(request: ShippingRequest) -> bool:
    return is_valid_pincode(request.pickup_pincode) and is_valid_pincode(request.delivery_pincode)


def grams_to_kg(grams: int, precision: int = 2) -> str:
    """Fixed-precision kilogram string, e.g. 1250 -> "1.25"."""
    return f"{grams / 1000:.{precision}f}"


def grams_to_kg_float(grams: int) -> float:
    return round(grams / 1000, 3)


def resolve_dimensions(request: ShippingRequest, default: Optional[float] = None) -> PackageDimensions:
    """Request dimensions, or a cube of `default` cm when none were sent."""
    if request.dimensions is not None:
        return request.dimensions
    if default is None:
        from courierhub.core.config import settings
        default = settings.SHIPPING_DEFAULT_DIMENSION_CM
    return PackageDimensions(length=default, width=default, height=default)


def parse_vendor_date(value: Any) -> Optional[datetime]:
    """
    Parse the assorted date strings vendors send. Unparsable values give
    None rather than an error; a bad ETA must not fail a tracking call.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value

    text = str(value).strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass

    for fmt in VENDOR_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    logger.debug(f"[SHIPPING] Unparsable vendor date: {text!r}")
    return None


def parse_transit_days(value: Any, default: Optional[int]) -> Optional[int]:
    """Vendor transit time, which may be an int, a digit string, or a range like "3-4"."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        head = str(value).split("-")[0].strip()
        return int(head) if head.isdigit() else default
