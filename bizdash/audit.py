import logging
from typing import Any, Optional

security_logger = logging.getLogger("bizdash.security")
usage_logger = logging.getLogger("bizdash.usage")


def _format_details(details: dict) -> str:
    return " ".join(f"{key}={value!r}" for key, value in sorted(details.items()))


def log_security(event: str, **details: Any) -> None:
    """Record an authentication or account-management event."""
    security_logger.info("%s %s", event, _format_details(details))


def log_api_usage(endpoint: str, user_id: Optional[Any], **details: Any) -> None:
    usage_logger.info("%s user=%s %s", endpoint, user_id, _format_details(details))
