"""
Owner Token Helpers

An owner token is the hex HMAC-SHA256 of a restaurant id under
OWNER_TOKEN_SECRET. The same token authorises the owner REST endpoints
(``Authorization: Bearer <token>``) and the real-time ``join`` message.
"""

import hashlib
import hmac
import logging
from typing import Optional

from qrmenu.core.config import get_settings

logger = logging.getLogger(__name__)


def owner_token(restaurant_id: str, secret: Optional[str] = None) -> str:
    """Derive the owner token for a restaurant."""
    secret = secret or get_settings().owner_token_secret
    if not secret:
        raise RuntimeError("OWNER_TOKEN_SECRET is not configured")
    return hmac.new(
        secret.encode("utf-8"),
        restaurant_id.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_owner_token(
    restaurant_id: str,
    token: Optional[str],
    secret: Optional[str] = None,
) -> bool:
    """
    Check a presented token against the restaurant's owner token.

    Always succeeds when no secret is configured.
    """
    secret = secret or get_settings().owner_token_secret
    if not secret:
        return True
    if not token:
        return False
    expected = owner_token(restaurant_id, secret)
    return hmac.compare_digest(expected, token)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
