"""
Logging helpers.

configure_logging() is called once by the app factory. sanitize_for_logging()
must wrap any vendor request or response body before it is written to a log.
"""
import json
import logging
import re
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Keys whose values are never logged, matched case-insensitively
SECRET_KEYS = ("password", "api_key", "apikey", "license_key", "licensekey", "token", "secret")


def configure_logging(level: Optional[str] = None) -> None:
    from courierhub.core.config import settings

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO, including URLs with query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {
            k: ("[REDACTED]" if any(s in str(k).lower() for s in SECRET_KEYS) else _redact(v))
            for k, v in obj.items()
        }
    if isinstance(obj, list):
        return [_redact(v) for v in obj]
    return obj


def sanitize_for_logging(payload: Any, max_length: int = 500) -> str:
    """
    Remove credentials and PII from a payload for safe logging.

    Args:
        payload: dict/list (redacted by key) or text
        max_length: Maximum length of result

    Returns:
        Sanitized text safe for logging
    """
    if payload is None or payload == "":
        return ""

    if isinstance(payload, (dict, list)):
        try:
            text = json.dumps(_redact(payload), default=str)
        except (TypeError, ValueError):
            text = str(payload)
    else:
        text = str(payload)

    sanitized = text[:max_length]

    patterns = [
        # Indian mobile numbers, with or without +91
        (r'(\+91[-\s]?)?\b[6-9]\d{9}\b', '[PHONE]'),
        (r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b', '[EMAIL]'),
        (r'(Bearer\s+)[A-Za-z0-9._\-]+', r'\1[REDACTED]'),
    ]

    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
