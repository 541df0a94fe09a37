"""
Data models for OAuth authorization state.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import ProtocolError

SERIALIZATION_VERSION = 1


@dataclass(frozen=True)
class AuthorizationRequestArgs:
    """
    Per-request arguments for one sign-on attempt.

    Attributes:
        state: Opaque anti-CSRF value. If set, the redirect must return it unchanged.
        nonce: Opaque value bound into the ID token to prevent replay
    """
    state: str | None = None
    nonce: str | None = None


@dataclass
class Authorization:
    """
    Credentials obtained from a completed authorization flow.

    Attributes:
        access_token: Bearer token for the entitlement API
        token_type: Token type as reported by the server
        expires_at: Access token expiry (Unix epoch), None if unknown
        refresh_token: Refresh token, if issued
        id_token: Raw OpenID Connect ID token, if issued
        id_token_claims: Claims decoded from the ID token
    """
    access_token: str
    token_type: str = "Bearer"
    expires_at: float | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    id_token_claims: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, leeway_s: float = 0.0) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= time.time() + leeway_s

    def display_name(self) -> str | None:
        """
        Name of the signed-on user from the ID token claims.

        Prefers ``name``, falling back to ``given_name`` and ``family_name``.
        Returns None if none of them is set.
        """
        name = self.id_token_claims.get("name")
        if name:
            return str(name)

        parts = [
            str(self.id_token_claims[claim])
            for claim in ("given_name", "family_name")
            if self.id_token_claims.get(claim)
        ]
        return " ".join(parts) or None

    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


@dataclass(frozen=True)
class AuthorizationResult:
    """
    Successful outcome of an authorization flow.

    Attributes:
        state: OAuth state as returned by the server, None if not used
        authorization: The obtained credentials
    """
    state: str | None
    authorization: Authorization


def serialize_authorization(authorization: Authorization) -> bytes:
    """Serialize an Authorization to bytes for storage."""
    data = {"version": SERIALIZATION_VERSION, "authorization": asdict(authorization)}
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def deserialize_authorization(data: bytes) -> Authorization:
    """
    Restore an Authorization from serialize_authorization() output.

    Raises:
        ProtocolError: If the data is not a serialized Authorization
    """
    try:
        document = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Stored authorization is not valid JSON: {e}") from e

    if not isinstance(document, dict) or document.get("version") != SERIALIZATION_VERSION:
        raise ProtocolError("Unsupported stored authorization format")

    fields = document.get("authorization")
    if not isinstance(fields, dict) or not isinstance(fields.get("access_token"), str):
        raise ProtocolError("Stored authorization has no access token")

    try:
        return Authorization(**fields)
    except TypeError as e:
        raise ProtocolError(f"Stored authorization has unexpected fields: {e}") from e
