"""
Exception types raised by the entitlement client.

User cancellation of the sign-on is not an error: the flow returns ``None``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .decision import AuthorizationDecision


class EntitlementClientError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(EntitlementClientError):
    """Required configuration is missing or invalid."""


class ProtocolError(EntitlementClientError):
    """
    A response did not follow the OAuth or entitlement API protocol.

    Raised for malformed redirect URIs and malformed decision bodies.
    """


class StateMismatchError(ProtocolError):
    """The ``state`` returned with the redirect differs from the one sent."""

    def __init__(self, expected: str, actual: str | None):
        super().__init__(
            f"OAuth state mismatch: expected {expected!r}, received {actual!r}"
        )
        self.expected = expected
        self.actual = actual


class ProviderError(ProtocolError):
    """The identity provider redirected back with an ``error`` parameter."""

    def __init__(
        self,
        error: str,
        description: str | None = None,
        error_uri: str | None = None,
    ):
        message = f"Authorization server returned error: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.error = error
        self.description = description
        self.error_uri = error_uri


class IntegrityError(EntitlementClientError):
    """A signed token failed verification or could not be decoded."""


class TransportError(EntitlementClientError):
    """
    An HTTP call failed.

    ``status_code`` and ``body`` are set for non-2xx responses and ``None``
    for network failures (the original ``httpx`` error is chained).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ServerReportedFailure(EntitlementClientError):
    """The entitlement service explicitly refused a consume or release."""

    def __init__(self, message: str, decision: AuthorizationDecision | None = None):
        super().__init__(message)
        self.decision = decision

    @property
    def raw_response(self) -> str | None:
        return self.decision.raw_response if self.decision is not None else None
