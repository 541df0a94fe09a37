"""
Entitlement client: sign-on, authorization persistence and API access.
"""

from __future__ import annotations

import logging
from typing import Any, Callable
from urllib.parse import urlsplit, urlunsplit

from .authz import AuthzApi
from .computer_id import default_computer_id
from .config import OAuthConfig
from .errors import ConfigurationError, ProtocolError
from .flow import AuthorizationCodeGrant, AuthorizationFlow, GrantVariant, InteractiveSurface
from .models import (
    Authorization,
    AuthorizationRequestArgs,
    AuthorizationResult,
    deserialize_authorization,
    serialize_authorization,
)
from .storage import AuthorizationStore
from .token import DEFAULT_TIMEOUT_S, TokenClient

logger = logging.getLogger(__name__)


def default_authz_api_uri(authz_uri: str) -> str:
    """
    Derive the authorization API base URI from the authorization endpoint.

    Examples:
        >>> default_authz_api_uri("https://ent.example.com/user/oauth20/authz")
        'https://ent.example.com/authz/'
    """
    parts = urlsplit(authz_uri)
    return urlunsplit((parts.scheme, parts.netloc, "/authz/", "", ""))


def _default_surface_factory() -> InteractiveSurface:
    try:
        from .surfaces.loopback import LoopbackBrowserSurface
    except ImportError as e:
        raise ConfigurationError(
            "No interactive surface configured. Pass surface_factory or "
            'install the browser extra: pip install "entitlement-client[browser]"'
        ) from e
    return LoopbackBrowserSurface()


class EntClient:
    """
    Client for signing on to and using the entitlement service.

    Args:
        config: OAuth configuration
        authz_api_uri: Base URI of the authorization API. Default: ``/authz/``
            on the authorization server host
        surface_factory: Creates the browser used for sign-on. Default: the
            system browser with a loopback redirect receiver (needs the
            ``browser`` extra)
        grant: Grant variant. Default: authorization code grant
        computer_id: Identifier of this installation. Default: computed
        store: Where store_authorization() keeps the authorization
        timeout_s: HTTP request timeout in seconds. Default: 15.0

    Example:
        >>> client = EntClient(OAuthConfig.from_env(), store=FileAuthorizationStore())
        >>> if not client.load_stored_authorization():
        ...     client.authorize_sync()
        >>> if client.is_authorized():
        ...     decisions = client.authz_api.check_or_consume_sync(["Pro"])
    """

    def __init__(
        self,
        config: OAuthConfig,
        authz_api_uri: str | None = None,
        surface_factory: Callable[[], InteractiveSurface] | None = None,
        grant: GrantVariant | None = None,
        computer_id: str | None = None,
        store: AuthorizationStore | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self.config = config
        self.authz_api_uri = authz_api_uri
        self.surface_factory = surface_factory or _default_surface_factory
        self.grant = grant
        self.computer_id = computer_id or default_computer_id()
        self.store = store
        self.timeout_s = timeout_s
        self.authorization: Authorization | None = None
        self._authz_api: AuthzApi | None = None

    def is_authorized(self) -> bool:
        return self.authorization is not None and not self.authorization.is_expired()

    def authorize_sync(
        self,
        args: AuthorizationRequestArgs | None = None,
    ) -> AuthorizationResult | None:
        """
        Sign on interactively and keep the resulting authorization.

        Returns:
            AuthorizationResult, or None if the user cancelled. A cancelled
            sign-on leaves the current authorization untouched.
        """
        grant = self.grant or self._default_grant()
        with AuthorizationFlow(self.config, self.surface_factory, grant) as flow:
            result = flow.authorize_sync(args)
        if result is not None:
            self.authorization = result.authorization
        return result

    @property
    def authz_api(self) -> AuthzApi:
        """
        Authorization API bound to the current authorization.

        The same instance is returned until the authorization changes.

        Raises:
            RuntimeError: If not authorized
        """
        if self.authorization is None:
            raise RuntimeError("Not authorized, call authorize_sync() first")
        if not self.config.authz_uri and not self.authz_api_uri:
            raise ConfigurationError("Authorization API URI cannot be determined")
        if self._authz_api is None or self._authz_api.authorization is not self.authorization:
            self._authz_api = AuthzApi(
                self.authz_api_uri or default_authz_api_uri(self.config.authz_uri),
                self.authorization,
                computer_id=self.computer_id,
                verify_with_key=self.config.signer_key,
                timeout_s=self.timeout_s,
            )
        return self._authz_api

    def user_info(self) -> dict[str, Any]:
        """Fetch user info of the signed-on user."""
        if self.authorization is None:
            raise RuntimeError("Not authorized, call authorize_sync() first")
        return self._token_client().fetch_user_info(self.authorization)

    def store_authorization(self) -> bool:
        """
        Write the current authorization to the store.

        Returns:
            True if stored, False if there is no store or no authorization
        """
        if self.store is None or self.authorization is None:
            return False
        self.store.write(serialize_authorization(self.authorization))
        return True

    def load_stored_authorization(self) -> bool:
        """
        Use a previously stored authorization.

        Unreadable or expired stored authorizations are ignored.

        Returns:
            True if a usable stored authorization was loaded
        """
        if self.store is None:
            return False
        data = self.store.read()
        if data is None:
            return False
        try:
            authorization = deserialize_authorization(data)
        except ProtocolError as e:
            logger.warning("Ignoring unreadable stored authorization: %s", e)
            return False
        if authorization.is_expired():
            logger.info("Stored authorization has expired")
            return False
        self.authorization = authorization
        return True

    def clear_authorization(self) -> None:
        """Forget the current authorization and remove the stored copy."""
        self.authorization = None
        if self.store is not None:
            self.store.clear()

    def _token_client(self) -> TokenClient:
        return TokenClient(self.config, timeout_s=self.timeout_s)

    def _default_grant(self) -> GrantVariant:
        return AuthorizationCodeGrant(self._token_client())
