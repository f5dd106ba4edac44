# middleware/rate_limit.py
"""
Per-caller rate limiting with slowapi.

SlowAPIMiddleware (see main.py) applies the default limit to every route.
A route that hits the brokerage harder can tighten it with
`@limiter.limit("10/minute")`.
"""
from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from config.settings import get_settings
from services.tinkoff.client import hash_token


def _bearer_token(request: Request) -> Optional[str]:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _get_rate_limit_key(request: Request) -> str:
    """
    Bucket by brokerage credential when one is sent, else by client address.

    The upstream throttles per token, so several clients sharing one token
    share one bucket. Only a prefix of the token hash is kept.
    """
    token = _bearer_token(request)
    if token is None:
        return get_remote_address(request)
    return "token:" + hash_token(token)[:16]


limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[get_settings().rate_limit_default],
    storage_uri="memory://",
    strategy="fixed-window",
)
