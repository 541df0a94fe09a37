"""
Verification of compact signed tokens (JWS) issued by the entitlement service.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt

from .errors import IntegrityError

logger = logging.getLogger(__name__)

# The service signs with RSA keys
SUPPORTED_ALGORITHMS = ["RS256", "RS384", "RS512"]


def verify_token(token: str | bytes, key: Any | None) -> bytes:
    """
    Verify a compact signed token and return its payload.

    Only the signature is checked. Expiry, audience and other claims are the
    caller's business.

    Passing ``key=None`` skips verification: the payload is returned as-is,
    so any token claiming to come from the service is accepted. Use this only
    when the transport itself is trusted.

    Args:
        token: Compact serialized JWS
        key: RSA public key (object or PEM), or None for unverified mode

    Returns:
        Payload bytes

    Raises:
        IntegrityError: If the token is malformed, signed with an unsupported
            algorithm, or the signature does not match the key
    """
    token = token.strip()
    jws = jwt.PyJWS()
    try:
        if key is None:
            logger.debug("Reading signed token payload without verification")
            return jws.decode(token, options={"verify_signature": False})
        return jws.decode(token, key=key, algorithms=SUPPORTED_ALGORITHMS)
    except jwt.PyJWTError as e:
        raise IntegrityError(f"Signed token verification failed: {e}") from e
