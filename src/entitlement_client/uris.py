"""
Authorization request URI construction and redirect response parsing.
"""

from __future__ import annotations

from urllib.parse import SplitResult, parse_qsl, urlencode, urlsplit, urlunsplit

from .config import OAuthConfig
from .errors import ProtocolError
from .models import AuthorizationRequestArgs


def build_authorization_uri(
    config: OAuthConfig,
    args: AuthorizationRequestArgs | None,
    response_type: str,
) -> str:
    """
    Build the URI that starts the authorization on the identity provider.

    Query parameters already present on ``config.authz_uri`` are kept;
    parameters generated here replace same-named ones.

    The provider is always asked to hide its "Remember me" option
    (``showRememberMe=false``); the application decides whether the
    authorization is stored.

    Args:
        config: OAuth configuration
        args: Per-request state and nonce, may be None
        response_type: OAuth ``response_type`` of the grant in use

    Returns:
        The authorization URI

    Raises:
        ConfigurationError: If client_id or authz_uri is missing

    Examples:
        >>> config = OAuthConfig(authz_uri="https://idp/authz", client_id="abc",
        ...                      redirect_uri="https://app/cb")
        >>> build_authorization_uri(config, None, "code")
        'https://idp/authz?client_id=abc&response_type=code&redirect_uri=https%3A%2F%2Fapp%2Fcb&showRememberMe=false'
    """
    config.validate()
    parts = urlsplit(config.authz_uri)

    params: dict[str, str] = dict(parse_qsl(parts.query, keep_blank_values=True))
    params["client_id"] = config.client_id
    params["response_type"] = response_type
    if config.redirect_uri is not None:
        params["redirect_uri"] = config.redirect_uri
    params["showRememberMe"] = "false"
    if config.scope is not None:
        params["scope"] = config.scope
    if args is not None and args.state is not None:
        params["state"] = args.state
    if args is not None and args.nonce is not None:
        params["nonce"] = args.nonce

    return urlunsplit(parts._replace(query=urlencode(params)))


def _split_redirect_uri(uri: str | None) -> SplitResult:
    if not uri or not isinstance(uri, str):
        raise ProtocolError("No redirect URI received from the authorization server")
    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise ProtocolError(f"Malformed redirect URI: {e}") from e
    if not parts.scheme:
        raise ProtocolError(f"Malformed redirect URI: {uri!r}")
    return parts


def _parse_parameters(component: str) -> dict[str, str]:
    # dict() keeps the last value of a repeated name
    return dict(parse_qsl(component, keep_blank_values=True))


def parse_query_parameters(uri: str | None) -> dict[str, str]:
    """
    Read OAuth response parameters from the query of a redirect URI.

    Used by the authorization code grant.

    Examples:
        >>> parse_query_parameters("https://app/cb?code=x%2By&state=s1&state=s2")
        {'code': 'x+y', 'state': 's2'}

    Raises:
        ProtocolError: If the URI is missing or malformed
    """
    return _parse_parameters(_split_redirect_uri(uri).query)


def parse_fragment_parameters(uri: str | None) -> dict[str, str]:
    """
    Read OAuth response parameters from the fragment of a redirect URI.

    Used by the implicit grant, which returns tokens in the fragment.

    Raises:
        ProtocolError: If the URI is missing or malformed
    """
    return _parse_parameters(_split_redirect_uri(uri).fragment)
