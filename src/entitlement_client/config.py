"""
OAuth 2.0 client configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.serialization import load_pem_public_key

from .errors import ConfigurationError

ENV_PREFIX = "ENTCLIENT_"


def load_public_key(pem: str | bytes) -> RSAPublicKey:
    """
    Load an RSA public key from PEM text.

    Args:
        pem: PEM encoded ``PUBLIC KEY`` block

    Returns:
        The public key object

    Raises:
        ConfigurationError: If the PEM cannot be parsed or is not an RSA key
    """
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        key = load_pem_public_key(data)
    except ValueError as e:
        raise ConfigurationError(f"Invalid signer public key: {e}") from e

    if not isinstance(key, RSAPublicKey):
        raise ConfigurationError(
            f"Signer public key must be an RSA key, got {type(key).__name__}"
        )
    return key


@dataclass(frozen=True)
class OAuthConfig:
    """
    Immutable OAuth 2.0 configuration for one client application.

    Attributes:
        authz_uri: Authorization endpoint. Required.
        client_id: OAuth client identifier. Required.
        token_uri: Token endpoint, required by the authorization code grant
        userinfo_uri: OpenID Connect user info endpoint
        client_secret: Client secret, only for confidential clients
        redirect_uri: Redirect URI registered for the client
        scope: Space separated scope string, e.g. "openid profile email"
        signer_key: Public key for verifying tokens signed by the service.
            If None, signed responses are accepted without verification.
    """
    authz_uri: str | None
    client_id: str | None
    token_uri: str | None = None
    userinfo_uri: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    scope: str | None = None
    signer_key: Any = None

    def validate(self) -> None:
        """Raise ConfigurationError if a mandatory value is missing."""
        if not self.client_id:
            raise ConfigurationError("OAuthConfig.client_id must be specified")
        if not self.authz_uri:
            raise ConfigurationError("OAuthConfig.authz_uri must be specified")

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> OAuthConfig:
        """
        Build configuration from environment variables.

        Reads ``{prefix}AUTHZ_URI``, ``TOKEN_URI``, ``USERINFO_URI``,
        ``CLIENT_ID``, ``CLIENT_SECRET``, ``REDIRECT_URI``, ``SCOPE`` and
        either ``SIGNER_KEY`` (PEM text) or ``SIGNER_KEY_FILE`` (path to PEM).

        Raises:
            ConfigurationError: If the signer key is set but unreadable
        """
        def env(name: str) -> str | None:
            return os.environ.get(f"{prefix}{name}") or None

        signer_key = None
        pem = env("SIGNER_KEY")
        key_file = env("SIGNER_KEY_FILE")
        if pem is None and key_file is not None:
            try:
                pem = Path(key_file).read_text()
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot read signer key file {key_file}: {e}"
                ) from e
        if pem is not None:
            signer_key = load_public_key(pem)

        return cls(
            authz_uri=env("AUTHZ_URI"),
            client_id=env("CLIENT_ID"),
            token_uri=env("TOKEN_URI"),
            userinfo_uri=env("USERINFO_URI"),
            client_secret=env("CLIENT_SECRET"),
            redirect_uri=env("REDIRECT_URI"),
            scope=env("SCOPE"),
            signer_key=signer_key,
        )
