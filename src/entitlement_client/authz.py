"""
Client for the entitlement service authorization API.

Requests name the authorized items as bare query parameters, e.g.
``GET /authz/.jwt?ItemA&ItemB&hw=<computer id>``. Consumption adds
``doConsume=true`` and is sent as a form POST. Releasing a consumed license
posts ``release=true`` and the license token id.

A signed token or JSON object may carry one decision covering every
requested item. Otherwise there is one decision per item in request order:
one per line for signed and plain text responses, a JSON array for JSON
responses.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence
from urllib.parse import quote

import httpx

from .decision import (
    JSON_CONTENT_TYPE,
    JWT_CONTENT_TYPE,
    AuthorizationDecision,
    ResponseType,
    media_type,
    parse_decision,
)
from .errors import ProtocolError, ServerReportedFailure, TransportError
from .models import Authorization
from .token import DEFAULT_TIMEOUT_S, raise_for_response

logger = logging.getLogger(__name__)

COMPUTER_ID_PARAM = "hw"
CONSUME_PARAM = "doConsume"
RELEASE_PARAM = "release"
# Error code for releasing a license that is not (or no longer) consumed
NO_CONSUMPTION_FOUND = "noConsumptionFoundById"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def build_query(names: Sequence[str], extra: dict[str, str] | None = None) -> str:
    """
    Build a query string with bare names followed by key=value pairs.

    Examples:
        >>> build_query(["Item A", "B"], {"hw": "abc"})
        'Item%20A&B&hw=abc'
    """
    parts = [quote(name, safe="") for name in names]
    for key, value in (extra or {}).items():
        parts.append(f"{quote(key, safe='')}={quote(value, safe='')}")
    return "&".join(parts)


def _split_batch(
    items: Sequence[str],
    body: str,
    content_type: str | None,
    verify_with_key: Any | None,
) -> list[AuthorizationDecision]:
    """Decode a batch response into decisions aligned with ``items``."""
    if media_type(content_type) == JSON_CONTENT_TYPE:
        try:
            document = json.loads(body)
        except json.JSONDecodeError as e:
            raise ProtocolError(f"Invalid JSON in authorization response: {e}") from e
        if isinstance(document, list):
            decisions = []
            for element in document:
                if not isinstance(element, dict):
                    raise ProtocolError("Authorization response array must contain objects")
                decisions.append(
                    AuthorizationDecision(raw_response=json.dumps(element), fields=element)
                )
            return _align(items, decisions)
        shared = parse_decision(items[0], body, content_type, verify_with_key)
        return [shared] * len(items)

    lines = [line.strip() for line in body.splitlines() if line.strip()]
    if not lines:
        raise ProtocolError("Empty authorization response")
    # A bare literal answers a single item, a signed token may cover all of them
    if len(lines) == 1 and len(items) > 1 and media_type(content_type) == JWT_CONTENT_TYPE:
        shared_line = lines[0]
        return [
            parse_decision(item, shared_line, content_type, verify_with_key)
            for item in items
        ]
    if len(lines) != len(items):
        raise ProtocolError(
            f"Authorization response has {len(lines)} decisions for {len(items)} items"
        )
    return [
        parse_decision(item, line, content_type, verify_with_key)
        for item, line in zip(items, lines)
    ]


def _align(
    items: Sequence[str],
    decisions: list[AuthorizationDecision],
) -> list[AuthorizationDecision]:
    if len(decisions) == 1:
        return decisions * len(items)
    if len(decisions) != len(items):
        raise ProtocolError(
            f"Authorization response has {len(decisions)} decisions for {len(items)} items"
        )
    return decisions


def check_release(token_id: str, decision: AuthorizationDecision) -> AuthorizationDecision:
    """
    Interpret a release response.

    Releasing a license the server no longer knows as consumed counts as
    success.

    Raises:
        ServerReportedFailure: If the server did not confirm the release
    """
    if decision.get(token_id) is True:
        return decision
    if decision.error_code(token_id) == NO_CONSUMPTION_FOUND:
        logger.info("License %s was already released", token_id)
        return decision
    raise ServerReportedFailure(
        f"Releasing license {token_id} failed: {decision.raw_response}",
        decision=decision,
    )


class AuthzApi:
    """
    Authorization API of the entitlement service.

    Args:
        authz_api_uri: Base URI of the authorization API, e.g.
            https://ent.example.com/authz/
        authorization: Authorization holding the bearer token. Treated as read-only.
        computer_id: Identifier of this installation, sent with every request
        verify_with_key: Service public key for signed responses.
            If None, signed responses are accepted without verification.
        timeout_s: Request timeout in seconds. Default: 15.0

    Example:
        >>> api = AuthzApi("https://ent.example.com/authz/", authorization, computer_id)
        >>> decisions = api.check_or_consume_sync(["Pro", "Export"], consume=True)
        >>> decisions[0].is_granted("Pro")
        True
    """

    def __init__(
        self,
        authz_api_uri: str,
        authorization: Authorization,
        computer_id: str | None = None,
        verify_with_key: Any | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        self.authz_api_uri = authz_api_uri
        self.authorization = authorization
        self.computer_id = computer_id
        self.verify_with_key = verify_with_key
        self.timeout_s = timeout_s
        if verify_with_key is None:
            logger.warning("No signer key configured, signed responses will not be verified")

    async def check_or_consume(
        self,
        authorized_items: Sequence[str],
        consume: bool = False,
        response_type: ResponseType = ResponseType.JWT,
    ) -> list[AuthorizationDecision]:
        """
        Check or consume authorized items asynchronously.

        Args:
            authorized_items: Item names, in the order the decisions are wanted
            consume: Consume the items instead of only checking them
            response_type: Requested response format

        Returns:
            One decision per item, in the order of ``authorized_items``

        Raises:
            TransportError: On network errors or non-2xx responses
            ProtocolError: If the response cannot be decoded or aligned
            IntegrityError: If a signed response fails verification
        """
        items = self._validate_items(authorized_items)
        method, url, body = self._check_or_consume_request(items, consume, response_type)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            response = await self._send_async(client, method, url, body, response_type)
        return self._parse_batch(items, response)

    def check_or_consume_sync(
        self,
        authorized_items: Sequence[str],
        consume: bool = False,
        response_type: ResponseType = ResponseType.JWT,
    ) -> list[AuthorizationDecision]:
        """
        Check or consume authorized items synchronously.

        See check_or_consume().
        """
        items = self._validate_items(authorized_items)
        method, url, body = self._check_or_consume_request(items, consume, response_type)
        with httpx.Client(timeout=self.timeout_s) as client:
            response = self._send_sync(client, method, url, body, response_type)
        return self._parse_batch(items, response)

    async def release_license(
        self,
        token_id: str,
        response_type: ResponseType = ResponseType.JWT,
    ) -> AuthorizationDecision:
        """
        Release a consumed license asynchronously.

        Args:
            token_id: Token id (``jti``) of the decision that consumed the license
            response_type: Requested response format

        Returns:
            The release decision

        Raises:
            ServerReportedFailure: If the server did not confirm the release
            TransportError: On network errors or non-2xx responses
            ProtocolError: If the response cannot be decoded
            IntegrityError: If a signed response fails verification
        """
        url, body = self._release_request(token_id, response_type)
        async with httpx.AsyncClient(timeout=self.timeout_s) as client:
            response = await self._send_async(client, "POST", url, body, response_type)
        return self._parse_release(token_id, response)

    def release_license_sync(
        self,
        token_id: str,
        response_type: ResponseType = ResponseType.JWT,
    ) -> AuthorizationDecision:
        """
        Release a consumed license synchronously.

        See release_license().
        """
        url, body = self._release_request(token_id, response_type)
        with httpx.Client(timeout=self.timeout_s) as client:
            response = self._send_sync(client, "POST", url, body, response_type)
        return self._parse_release(token_id, response)

    def _endpoint(self, response_type: ResponseType) -> str:
        base = self.authz_api_uri if self.authz_api_uri.endswith("/") else self.authz_api_uri + "/"
        return f"{base}.{response_type.extension}"

    def _common_params(self) -> dict[str, str]:
        if self.computer_id is None:
            return {}
        return {COMPUTER_ID_PARAM: self.computer_id}

    @staticmethod
    def _validate_items(authorized_items: Sequence[str]) -> list[str]:
        if isinstance(authorized_items, str):
            raise TypeError("authorized_items must be a sequence of names, not a string")
        items = list(authorized_items)
        if not items:
            raise ValueError("At least one authorized item must be given")
        return items

    def _check_or_consume_request(
        self,
        items: list[str],
        consume: bool,
        response_type: ResponseType,
    ) -> tuple[str, str, str | None]:
        endpoint = self._endpoint(response_type)
        params = self._common_params()
        if consume:
            params[CONSUME_PARAM] = "true"
            return "POST", endpoint, build_query(items, params)
        return "GET", f"{endpoint}?{build_query(items, params)}", None

    def _release_request(self, token_id: str, response_type: ResponseType) -> tuple[str, str]:
        params = {RELEASE_PARAM: "true", **self._common_params()}
        return self._endpoint(response_type), build_query([token_id], params)

    def _headers(self, response_type: ResponseType, has_body: bool) -> dict[str, str]:
        headers = {
            "Authorization": self.authorization.authorization_header(),
            "Accept": response_type.content_type,
        }
        if has_body:
            headers["Content-Type"] = FORM_CONTENT_TYPE
        return headers

    async def _send_async(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        body: str | None,
        response_type: ResponseType,
    ) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            return await client.request(
                method,
                url,
                content=body,
                headers=self._headers(response_type, body is not None),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Authorization request failed: {e}") from e

    def _send_sync(
        self,
        client: httpx.Client,
        method: str,
        url: str,
        body: str | None,
        response_type: ResponseType,
    ) -> httpx.Response:
        logger.debug("%s %s", method, url)
        try:
            return client.request(
                method,
                url,
                content=body,
                headers=self._headers(response_type, body is not None),
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Authorization request failed: {e}") from e

    def _parse_batch(
        self,
        items: list[str],
        response: httpx.Response,
    ) -> list[AuthorizationDecision]:
        raise_for_response(response, "Authorization request")
        return _split_batch(
            items,
            response.text,
            response.headers.get("content-type"),
            self.verify_with_key,
        )

    def _parse_release(self, token_id: str, response: httpx.Response) -> AuthorizationDecision:
        raise_for_response(response, "License release")
        decision = parse_decision(
            token_id,
            response.text,
            response.headers.get("content-type"),
            self.verify_with_key,
        )
        return check_release(token_id, decision)
