"""
Authorization decisions returned by the entitlement service.

A decision body arrives in one of three encodings, selected by content type:
a signed token (``application/jwt``), plain JSON (``application/json``) or a
bare ``true``/``false`` literal. All three are decoded into the same
immutable field set so lookups behave identically.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Union

from .errors import ProtocolError, ServerReportedFailure
from .signature import verify_token

logger = logging.getLogger(__name__)

JSONValue = Union[None, bool, int, float, str, list["JSONValue"], dict[str, "JSONValue"]]

JWT_CONTENT_TYPE = "application/jwt"
JSON_CONTENT_TYPE = "application/json"
TEXT_CONTENT_TYPE = "text/plain"

# Field carrying the token identifier of a consumed license
TOKEN_ID_FIELD = "jti"
ERROR_CODE_SUFFIX = "_errorCode"


class ResponseType(enum.Enum):
    """Response formats the entitlement API can be asked for."""

    JWT = ("jwt", JWT_CONTENT_TYPE)
    JSON = ("json", JSON_CONTENT_TYPE)
    TEXT = ("txt", TEXT_CONTENT_TYPE)

    def __init__(self, extension: str, content_type: str):
        self.extension = extension
        self.content_type = content_type

    @classmethod
    def from_extension(cls, extension: str) -> ResponseType:
        """
        Look up a response type by file extension.

        Examples:
            >>> ResponseType.from_extension(".jwt")
            <ResponseType.JWT: ('jwt', 'application/jwt')>
            >>> ResponseType.from_extension("JSON")
            <ResponseType.JSON: ('json', 'application/json')>
        """
        normalized = extension.strip().lstrip(".").lower()
        for member in cls:
            if member.extension == normalized:
                return member
        raise ValueError(f"Unknown response type extension: {extension!r}")


def media_type(content_type: str | None) -> str:
    """Strip parameters from a Content-Type value and lowercase it."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


def _hashable(value: Any) -> Any:
    if isinstance(value, Mapping):
        return frozenset((k, _hashable(v)) for k, v in value.items())
    if isinstance(value, tuple):
        return tuple(_hashable(v) for v in value)
    return value


@dataclass(frozen=True)
class AuthorizationDecision:
    """
    One verdict from the entitlement service.

    Attributes:
        raw_response: Response body exactly as received (token, JSON or text)
        fields: Decoded decision fields. Read-only; nested objects and arrays
            are frozen as well.

    Equality and serialization only look at ``fields``.
    """
    raw_response: str = field(compare=False)
    fields: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", _freeze(dict(self.fields)))

    def __hash__(self) -> int:
        return hash(_hashable(self.fields))

    def __contains__(self, name: str) -> bool:
        return name in self.fields

    def __getitem__(self, name: str) -> JSONValue:
        return self.get(name)

    def get(self, name: str) -> JSONValue:
        """Return the field value, or None if the field is absent."""
        return _thaw(self.fields.get(name))

    def get_bool(self, name: str) -> bool | None:
        """
        Return a boolean field.

        Returns None if the field is absent.

        Raises:
            TypeError: If the field holds a non-boolean JSON value
        """
        if name not in self.fields:
            return None
        value = self.fields[name]
        if value is None:
            return None
        if not isinstance(value, bool):
            raise TypeError(
                f"Decision field {name!r} is not a boolean: {_thaw(value)!r}"
            )
        return value

    def is_granted(self, authorized_item: str) -> bool:
        """True only if the service explicitly granted the item."""
        return self.get_bool(authorized_item) is True

    def error_code(self, authorized_item: str) -> str | None:
        """Error code reported for the item, e.g. ``noConsumptionFoundById``."""
        value = self.fields.get(authorized_item + ERROR_CODE_SUFFIX)
        return value if isinstance(value, str) else None

    @property
    def token_id(self) -> str | None:
        value = self.fields.get(TOKEN_ID_FIELD)
        return value if isinstance(value, str) else None

    def is_releasable(self, authorized_item: str) -> bool:
        """
        Whether the decision holds a consumed license that can be released.

        Presence of a token id is enough; expiry is not checked here.
        """
        return self.is_granted(authorized_item) and self.token_id is not None

    def ensure_granted(self, authorized_item: str) -> None:
        """Raise ServerReportedFailure unless the item was granted."""
        if not self.is_granted(authorized_item):
            code = self.error_code(authorized_item)
            message = f"Authorization denied for {authorized_item!r}"
            if code:
                message = f"{message}: {code}"
            raise ServerReportedFailure(message, decision=self)

    def to_dict(self) -> dict[str, JSONValue]:
        """Return a mutable copy of the decision fields."""
        return _thaw(self.fields)

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def __str__(self) -> str:
        return self.to_json()


def _decode_json_object(text: str, source: str) -> dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid JSON in {source}: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(
            f"Expected a JSON object in {source}, got {type(data).__name__}"
        )
    return data


def _as_text(body: str | bytes) -> str:
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError(f"Decision body is not valid UTF-8: {e}") from e
    return body


def from_json(body: str | bytes) -> AuthorizationDecision:
    """Parse a JSON decision body. No signature check is done."""
    text = _as_text(body)
    return AuthorizationDecision(
        raw_response=text,
        fields=_decode_json_object(text, "authorization decision"),
    )


def from_jwt(body: str | bytes, verify_with_key: Any | None) -> AuthorizationDecision:
    """
    Parse a signed-token decision body.

    Args:
        body: Compact serialized JWS
        verify_with_key: Service public key. None skips verification.

    Raises:
        IntegrityError: If signature verification fails
        ProtocolError: If the verified payload is not a JSON object
    """
    text = _as_text(body).strip()
    payload = verify_token(text, verify_with_key)
    try:
        payload_text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Signed decision payload is not valid UTF-8: {e}") from e
    return AuthorizationDecision(
        raw_response=text,
        fields=_decode_json_object(payload_text, "signed authorization decision"),
    )


def from_plain_text(body: str | bytes, authorized_item: str) -> AuthorizationDecision:
    """
    Parse a bare ``true``/``false`` decision for a single item.

    The result has one field named after the item, so lookups work the same
    way as for JSON and signed decisions.

    Raises:
        ProtocolError: If the body is anything but ``true`` or ``false``
    """
    text = _as_text(body)
    literal = text.strip()
    if literal == "true":
        granted = True
    elif literal == "false":
        granted = False
    else:
        raise ProtocolError(
            f"Invalid plain-text authorization decision for {authorized_item!r}: {literal!r}"
        )
    return AuthorizationDecision(raw_response=text, fields={authorized_item: granted})


def parse_decision(
    authorized_item: str,
    body: str | bytes,
    content_type: str | None,
    verify_with_key: Any | None = None,
) -> AuthorizationDecision:
    """
    Parse an authorization decision response.

    Args:
        authorized_item: Item the decision was requested for
        body: Response body
        content_type: Response Content-Type header value
        verify_with_key: Service public key for signed responses. None skips
            verification.

    Returns:
        The decoded AuthorizationDecision

    Raises:
        IntegrityError: If a signed response fails verification
        ProtocolError: If the body cannot be decoded
    """
    kind = media_type(content_type)
    if kind == JWT_CONTENT_TYPE:
        return from_jwt(body, verify_with_key)
    if kind == JSON_CONTENT_TYPE:
        return from_json(body)
    return from_plain_text(body, authorized_item)
