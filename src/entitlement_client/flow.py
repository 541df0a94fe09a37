"""
Browser-mediated OAuth 2.0 authorization flow.

One AuthorizationFlow drives one sign-on at a time:

    IDLE -> STARTED -> AWAITING_USER_INTERACTION -> COMPLETED | CANCELLED | FAILED

The grant variant decides the ``response_type`` and where the redirect
carries its parameters (query for the authorization code grant, fragment for
the implicit grant). The interactive surface (an embedded or system browser)
is acquired when the flow starts waiting for the user and is closed on every
way out of that state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from .config import OAuthConfig
from .errors import ProtocolError, ProviderError, StateMismatchError
from .models import Authorization, AuthorizationRequestArgs, AuthorizationResult
from .token import TokenClient, authorization_from_token_response
from .uris import build_authorization_uri, parse_fragment_parameters, parse_query_parameters

logger = logging.getLogger(__name__)


class FlowState(enum.Enum):
    IDLE = "idle"
    STARTED = "started"
    AWAITING_USER_INTERACTION = "awaiting_user_interaction"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_RUNNING_STATES = frozenset({FlowState.STARTED, FlowState.AWAITING_USER_INTERACTION})


@dataclass(frozen=True)
class SurfaceOutcome:
    """
    What the interactive surface reports back.

    Exactly one of ``final_uri`` (the redirect the browser landed on) and
    ``cancelled`` is meaningful.
    """
    final_uri: str | None = None
    cancelled: bool = False

    @classmethod
    def redirected(cls, final_uri: str) -> SurfaceOutcome:
        return cls(final_uri=final_uri)

    @classmethod
    def cancel(cls) -> SurfaceOutcome:
        return cls(cancelled=True)


class InteractiveSurface(Protocol):
    """A browser the user signs on with."""

    def show(self, initial_uri: str, redirect_uri_prefix: str | None) -> SurfaceOutcome:
        """
        Open ``initial_uri`` and block until the browser navigates to a URI
        starting with ``redirect_uri_prefix`` or the user dismisses it.
        """
        ...

    def close(self) -> None:
        ...


class GrantVariant(Protocol):
    """What differs between OAuth grants driven by the same flow."""

    @property
    def response_type(self) -> str:
        ...

    def parse_redirect_parameters(self, uri: str | None) -> dict[str, str]:
        ...

    def finalize(self, params: dict[str, str], config: OAuthConfig) -> Authorization:
        ...


class AuthorizationCodeGrant:
    """
    Authorization code grant: ``code`` in the redirect query, exchanged for
    an access token at the token endpoint.
    """

    response_type = "code"

    def __init__(self, token_client: TokenClient | None = None):
        self.token_client = token_client

    def parse_redirect_parameters(self, uri: str | None) -> dict[str, str]:
        return parse_query_parameters(uri)

    def finalize(self, params: dict[str, str], config: OAuthConfig) -> Authorization:
        code = params.get("code")
        if not code:
            raise ProtocolError("Authorization response has no code")
        client = self.token_client or TokenClient(config)
        return client.exchange_code(code)


class ImplicitGrant:
    """Implicit grant: access token (and optional ID token) in the redirect fragment."""

    def __init__(self, response_type: str = "token"):
        self._response_type = response_type

    @property
    def response_type(self) -> str:
        return self._response_type

    def parse_redirect_parameters(self, uri: str | None) -> dict[str, str]:
        return parse_fragment_parameters(uri)

    def finalize(self, params: dict[str, str], config: OAuthConfig) -> Authorization:
        return authorization_from_token_response(params, config.signer_key)


StateListener = Callable[[FlowState, FlowState], Any]


class AuthorizationFlow:
    """
    Runs the interactive OAuth authorization.

    Args:
        config: OAuth configuration
        surface_factory: Returns a new interactive surface for each attempt
        grant: Grant variant. Default: authorization code grant
        on_state_change: Called with (old, new) on every state transition

    Example:
        >>> flow = AuthorizationFlow(config, LoopbackBrowserSurface)
        >>> with flow:
        ...     result = flow.authorize_sync(AuthorizationRequestArgs(state="xyz"))
        >>> if result is None:
        ...     print("Sign-on cancelled")
    """

    def __init__(
        self,
        config: OAuthConfig,
        surface_factory: Callable[[], InteractiveSurface],
        grant: GrantVariant | None = None,
        on_state_change: StateListener | None = None,
    ):
        self.config = config
        self.surface_factory = surface_factory
        self.grant = grant or AuthorizationCodeGrant()
        self.on_state_change = on_state_change
        self._state = FlowState.IDLE
        self._surface: InteractiveSurface | None = None

    @property
    def state(self) -> FlowState:
        return self._state

    def authorize_sync(
        self,
        args: AuthorizationRequestArgs | None = None,
    ) -> AuthorizationResult | None:
        """
        Run the authorization and wait for it to finish.

        Args:
            args: Optional state and nonce to send with the request

        Returns:
            AuthorizationResult on success, None if the user cancelled

        Raises:
            RuntimeError: If this flow is already running
            ConfigurationError: If the configuration is incomplete
            StateMismatchError: If the returned state differs from args.state
            ProviderError: If the server redirected back with an error
            ProtocolError: If the redirect or token response is malformed
            TransportError: If the token exchange fails
            IntegrityError: If the ID token signature does not verify
        """
        if self._state in _RUNNING_STATES:
            raise RuntimeError("Authorization flow is already in progress")

        self._transition(FlowState.STARTED)
        try:
            authz_uri = build_authorization_uri(self.config, args, self.grant.response_type)
            outcome = self._await_user_interaction(authz_uri)
        except BaseException:
            self._transition(FlowState.FAILED)
            raise

        if outcome.cancelled:
            logger.info("Authorization cancelled by the user")
            self._transition(FlowState.CANCELLED)
            return None

        try:
            result = self._read_response(args, outcome.final_uri)
        except BaseException:
            self._transition(FlowState.FAILED)
            raise

        self._transition(FlowState.COMPLETED)
        logger.info("Authorization completed")
        return result

    def close(self) -> None:
        """Release the interactive surface if one is still held."""
        self._release_surface()

    def __enter__(self) -> AuthorizationFlow:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_surface", None) is not None:
            self._release_surface()

    def _await_user_interaction(self, authz_uri: str) -> SurfaceOutcome:
        try:
            self._surface = self.surface_factory()
            self._transition(FlowState.AWAITING_USER_INTERACTION)
            return self._surface.show(authz_uri, self.config.redirect_uri)
        finally:
            self._release_surface()

    def _read_response(
        self,
        args: AuthorizationRequestArgs | None,
        final_uri: str | None,
    ) -> AuthorizationResult:
        params = self.grant.parse_redirect_parameters(final_uri)

        expected_state = args.state if args is not None else None
        returned_state = params.get("state")
        if expected_state is not None and returned_state != expected_state:
            raise StateMismatchError(expected_state, returned_state)

        if "error" in params:
            raise ProviderError(
                params["error"],
                description=params.get("error_description"),
                error_uri=params.get("error_uri"),
            )

        authorization = self.grant.finalize(params, self.config)

        expected_nonce = args.nonce if args is not None else None
        if expected_nonce is not None and authorization.id_token_claims:
            returned_nonce = authorization.id_token_claims.get("nonce")
            if returned_nonce != expected_nonce:
                raise ProtocolError(
                    f"ID token nonce mismatch: expected {expected_nonce!r}, "
                    f"received {returned_nonce!r}"
                )

        return AuthorizationResult(state=returned_state, authorization=authorization)

    def _release_surface(self) -> None:
        surface, self._surface = self._surface, None
        if surface is not None:
            logger.debug("Closing interactive surface")
            surface.close()

    def _transition(self, new_state: FlowState) -> None:
        old_state, self._state = self._state, new_state
        logger.debug("Authorization flow %s -> %s", old_state.value, new_state.value)
        if self.on_state_change is not None:
            self.on_state_change(old_state, new_state)
