from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import settings

GENERAL_LIMIT_MESSAGE = "Too many requests from this IP, please try again later"
AUTH_LIMIT_MESSAGE = "Too many authentication attempts, please try again later"
CHAT_LIMIT_MESSAGE = "Too many AI requests, please slow down"

# Counters live in process memory and are keyed by client address.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)

# One counter for every credential endpoint.
auth_limit = limiter.shared_limit(
    settings.rate_limit_auth, scope="auth", error_message=AUTH_LIMIT_MESSAGE
)
chat_limit = limiter.limit(settings.rate_limit_chat, error_message=CHAT_LIMIT_MESSAGE)
