"""
Entitlement Client SDK for Python

Sign on to an entitlement service with OAuth 2.0 in a browser, then check,
consume and release licenses with the resulting bearer token.
"""

from .authz import AuthzApi
from .client import EntClient
from .computer_id import default_computer_id
from .config import OAuthConfig, load_public_key
from .decision import AuthorizationDecision, ResponseType, parse_decision
from .errors import (
    ConfigurationError,
    EntitlementClientError,
    IntegrityError,
    ProtocolError,
    ProviderError,
    ServerReportedFailure,
    StateMismatchError,
    TransportError,
)
from .flow import (
    AuthorizationCodeGrant,
    AuthorizationFlow,
    FlowState,
    ImplicitGrant,
    SurfaceOutcome,
)
from .models import (
    Authorization,
    AuthorizationRequestArgs,
    AuthorizationResult,
    deserialize_authorization,
    serialize_authorization,
)
from .signature import verify_token
from .storage import FileAuthorizationStore
from .uris import build_authorization_uri, parse_fragment_parameters, parse_query_parameters

__version__ = "0.1.0"

__all__ = [
    "Authorization",
    "AuthorizationCodeGrant",
    "AuthorizationDecision",
    "AuthorizationFlow",
    "AuthorizationRequestArgs",
    "AuthorizationResult",
    "AuthzApi",
    "ConfigurationError",
    "EntClient",
    "EntitlementClientError",
    "FileAuthorizationStore",
    "FlowState",
    "ImplicitGrant",
    "IntegrityError",
    "OAuthConfig",
    "ProtocolError",
    "ProviderError",
    "ResponseType",
    "ServerReportedFailure",
    "StateMismatchError",
    "SurfaceOutcome",
    "TransportError",
    "build_authorization_uri",
    "default_computer_id",
    "deserialize_authorization",
    "load_public_key",
    "parse_decision",
    "parse_fragment_parameters",
    "parse_query_parameters",
    "serialize_authorization",
    "verify_token",
]

# Browser surface import - optional, requires the "browser" extra
try:
    from .surfaces.loopback import LoopbackBrowserSurface
    __all__.append("LoopbackBrowserSurface")
except ImportError:
    pass
