"""
Token endpoint and user info endpoint calls.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from .config import OAuthConfig
from .errors import ConfigurationError, ProtocolError, TransportError
from .models import Authorization
from .signature import verify_token

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 15.0


def raise_for_response(response: httpx.Response, what: str) -> None:
    """Raise TransportError for a non-2xx response."""
    if not response.is_success:
        raise TransportError(
            f"{what} failed with HTTP {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )


def decode_id_token(id_token: str, signer_key: Any | None) -> dict[str, Any]:
    """
    Decode ID token claims, verifying the signature when a key is given.

    Raises:
        IntegrityError: If the signature does not verify
        ProtocolError: If the payload is not a JSON object
    """
    payload = verify_token(id_token, signer_key)
    try:
        claims = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"ID token payload is not valid JSON: {e}") from e
    if not isinstance(claims, dict):
        raise ProtocolError("ID token payload is not a JSON object")
    return claims


def authorization_from_token_response(
    data: dict[str, Any],
    signer_key: Any | None,
) -> Authorization:
    """
    Build an Authorization from an access token response.

    Works for both the token endpoint JSON and implicit grant fragment
    parameters, where every value is a string.

    Raises:
        ProtocolError: If there is no access token or expires_in is not a number
    """
    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ProtocolError("Access token response has no access_token")

    expires_at = None
    if data.get("expires_in") is not None:
        try:
            expires_at = time.time() + float(data["expires_in"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Invalid expires_in: {data['expires_in']!r}") from e

    id_token = data.get("id_token") or None
    claims = decode_id_token(id_token, signer_key) if id_token else {}

    return Authorization(
        access_token=access_token,
        token_type=data.get("token_type") or "Bearer",
        expires_at=expires_at,
        refresh_token=data.get("refresh_token") or None,
        id_token=id_token,
        id_token_claims=claims,
    )


class TokenClient:
    """
    Client for the OAuth token and user info endpoints.

    Args:
        config: OAuth configuration
        timeout_s: Request timeout in seconds. Default: 15.0
    """

    def __init__(self, config: OAuthConfig, timeout_s: float = DEFAULT_TIMEOUT_S):
        self.config = config
        self.timeout_s = timeout_s

    def exchange_code(self, code: str) -> Authorization:
        """
        Exchange an authorization code for an access token.

        The client secret is sent only if one is configured.

        Raises:
            ConfigurationError: If token_uri is not configured
            TransportError: On network errors or non-2xx responses
            ProtocolError: If the response is not a valid token response
            IntegrityError: If the ID token signature does not verify
        """
        if not self.config.token_uri:
            raise ConfigurationError("OAuthConfig.token_uri must be specified")

        form = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": self.config.client_id,
        }
        if self.config.redirect_uri is not None:
            form["redirect_uri"] = self.config.redirect_uri
        if self.config.client_secret is not None:
            form["client_secret"] = self.config.client_secret

        logger.debug("Exchanging authorization code at %s", self.config.token_uri)
        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.post(
                    self.config.token_uri,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"Token request failed: {e}") from e

        raise_for_response(response, "Token request")
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"Token response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError("Token response is not a JSON object")

        return authorization_from_token_response(data, self.config.signer_key)

    def fetch_user_info(self, authorization: Authorization) -> dict[str, Any]:
        """
        Fetch OpenID Connect user info for the signed-on user.

        Raises:
            ConfigurationError: If userinfo_uri is not configured
            TransportError: On network errors or non-2xx responses
            ProtocolError: If the response is not a JSON object
        """
        if not self.config.userinfo_uri:
            raise ConfigurationError("OAuthConfig.userinfo_uri must be specified")

        try:
            with httpx.Client(timeout=self.timeout_s) as client:
                response = client.get(
                    self.config.userinfo_uri,
                    headers={"Authorization": authorization.authorization_header()},
                )
        except httpx.HTTPError as e:
            raise TransportError(f"User info request failed: {e}") from e

        raise_for_response(response, "User info request")
        try:
            data = response.json()
        except ValueError as e:
            raise ProtocolError(f"User info response is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ProtocolError("User info response is not a JSON object")
        return data
