"""Tests for the authorization flow state machine."""

from dataclasses import replace
from urllib.parse import parse_qs, urlencode, urlsplit

import pytest

from entitlement_client.errors import (
    ConfigurationError,
    ProtocolError,
    ProviderError,
    StateMismatchError,
    TransportError,
)
from entitlement_client.flow import (
    AuthorizationCodeGrant,
    AuthorizationFlow,
    FlowState,
    ImplicitGrant,
    SurfaceOutcome,
)
from entitlement_client.models import AuthorizationRequestArgs

TOKEN_URI = "https://idp.example.com/oauth2/token"


class FakeSurface:
    """Interactive surface that answers with a scripted outcome."""

    def __init__(self, respond):
        self.respond = respond
        self.shown = []
        self.closed = 0

    def show(self, initial_uri, redirect_uri_prefix):
        self.shown.append((initial_uri, redirect_uri_prefix))
        return self.respond(initial_uri)

    def close(self):
        self.closed += 1


def redirect_with(**params):
    """Respond with a redirect carrying the sent state plus ``params``."""
    def respond(initial_uri):
        sent = parse_qs(urlsplit(initial_uri).query)
        query = dict(params)
        if "state" in sent and "state" not in query:
            query["state"] = sent["state"][0]
        return SurfaceOutcome.redirected(f"https://app/cb?{urlencode(query)}")
    return respond


def make_flow(oauth_config, respond, **kwargs):
    surfaces = []

    def factory():
        surface = FakeSurface(respond)
        surfaces.append(surface)
        return surface

    return AuthorizationFlow(oauth_config, factory, **kwargs), surfaces


class TestAuthorizationCodeFlow:
    """Tests for AuthorizationFlow with the authorization code grant."""

    def test_success(self, oauth_config, mock_http, sign):
        """Code is exchanged and the authorization is returned."""
        id_token = sign({"sub": "u1", "name": "Jane Doe", "nonce": "n1"})
        route = mock_http.post(TOKEN_URI).respond(json={
            "access_token": "at-1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "rt-1",
            "id_token": id_token,
        })
        transitions = []
        flow, surfaces = make_flow(
            oauth_config,
            redirect_with(code="the-code"),
            on_state_change=lambda old, new: transitions.append(new),
        )

        result = flow.authorize_sync(AuthorizationRequestArgs(state="s1", nonce="n1"))

        assert result is not None
        assert result.state == "s1"
        assert result.authorization.access_token == "at-1"
        assert result.authorization.refresh_token == "rt-1"
        assert result.authorization.display_name() == "Jane Doe"
        assert flow.state is FlowState.COMPLETED
        assert transitions == [
            FlowState.STARTED,
            FlowState.AWAITING_USER_INTERACTION,
            FlowState.COMPLETED,
        ]
        assert surfaces[0].closed == 1

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["grant_type"] == ["authorization_code"]
        assert form["code"] == ["the-code"]
        assert form["client_secret"] == ["s3cret"]
        assert form["redirect_uri"] == ["https://app/cb"]

    def test_surface_receives_uri_and_redirect_prefix(self, oauth_config, mock_http):
        mock_http.post(TOKEN_URI).respond(json={"access_token": "at"})
        flow, surfaces = make_flow(oauth_config, redirect_with(code="c"))

        flow.authorize_sync()

        initial_uri, prefix = surfaces[0].shown[0]
        assert initial_uri.startswith("https://idp.example.com/oauth2/authz?client_id=abc")
        assert "response_type=code" in initial_uri
        assert prefix == "https://app/cb"

    def test_cancelled(self, oauth_config, mock_http):
        """User cancel gives no result and no token request."""
        route = mock_http.post(TOKEN_URI).respond(json={"access_token": "at"})
        flow, surfaces = make_flow(oauth_config, lambda uri: SurfaceOutcome.cancel())

        assert flow.authorize_sync(AuthorizationRequestArgs(state="s1")) is None
        assert flow.state is FlowState.CANCELLED
        assert surfaces[0].closed == 1
        assert not route.called

    def test_state_mismatch(self, oauth_config, mock_http):
        """A different state never completes."""
        route = mock_http.post(TOKEN_URI).respond(json={"access_token": "at"})
        flow, surfaces = make_flow(oauth_config, redirect_with(code="c", state="evil"))

        with pytest.raises(StateMismatchError) as exc_info:
            flow.authorize_sync(AuthorizationRequestArgs(state="good"))

        assert exc_info.value.expected == "good"
        assert exc_info.value.actual == "evil"
        assert flow.state is FlowState.FAILED
        assert surfaces[0].closed == 1
        assert not route.called

    def test_state_missing_in_response(self, oauth_config):
        flow, _ = make_flow(
            oauth_config,
            lambda uri: SurfaceOutcome.redirected("https://app/cb?code=c"),
        )
        with pytest.raises(StateMismatchError):
            flow.authorize_sync(AuthorizationRequestArgs(state="good"))
        assert flow.state is FlowState.FAILED

    def test_provider_error(self, oauth_config):
        flow, _ = make_flow(
            oauth_config,
            redirect_with(error="access_denied", error_description="User said no"),
        )
        with pytest.raises(ProviderError) as exc_info:
            flow.authorize_sync(AuthorizationRequestArgs(state="s"))

        assert exc_info.value.error == "access_denied"
        assert exc_info.value.description == "User said no"
        assert flow.state is FlowState.FAILED

    def test_no_code(self, oauth_config):
        flow, _ = make_flow(oauth_config, redirect_with())
        with pytest.raises(ProtocolError, match="no code"):
            flow.authorize_sync()

    def test_missing_redirect_uri_from_surface(self, oauth_config):
        """Browser that never navigated is a protocol error, not a cancel."""
        flow, _ = make_flow(oauth_config, lambda uri: SurfaceOutcome(final_uri=None))
        with pytest.raises(ProtocolError):
            flow.authorize_sync()
        assert flow.state is FlowState.FAILED

    def test_token_endpoint_error(self, oauth_config, mock_http):
        mock_http.post(TOKEN_URI).respond(status_code=400, json={"error": "invalid_grant"})
        flow, surfaces = make_flow(oauth_config, redirect_with(code="c"))

        with pytest.raises(TransportError) as exc_info:
            flow.authorize_sync()

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert flow.state is FlowState.FAILED
        assert surfaces[0].closed == 1

    def test_nonce_mismatch(self, oauth_config, mock_http, sign):
        mock_http.post(TOKEN_URI).respond(json={
            "access_token": "at",
            "id_token": sign({"sub": "u1", "nonce": "other"}),
        })
        flow, _ = make_flow(oauth_config, redirect_with(code="c"))
        with pytest.raises(ProtocolError, match="nonce"):
            flow.authorize_sync(AuthorizationRequestArgs(nonce="mine"))

    def test_config_error_before_ui(self, oauth_config):
        """Missing client id fails before any surface is created."""
        config = replace(oauth_config, client_id=None)
        flow, surfaces = make_flow(config, redirect_with(code="c"))

        with pytest.raises(ConfigurationError):
            flow.authorize_sync()
        assert surfaces == []
        assert flow.state is FlowState.FAILED

    def test_surface_exception_releases_surface(self, oauth_config):
        def explode(uri):
            raise TimeoutError("no redirect")

        flow, surfaces = make_flow(oauth_config, explode)
        with pytest.raises(TimeoutError):
            flow.authorize_sync()
        assert surfaces[0].closed == 1
        assert flow.state is FlowState.FAILED

    def test_listener_exception_releases_surface(self, oauth_config):
        def listener(old, new):
            if new is FlowState.AWAITING_USER_INTERACTION:
                raise ValueError("listener failed")

        flow, surfaces = make_flow(
            oauth_config, redirect_with(code="c1"), on_state_change=listener
        )
        with pytest.raises(ValueError, match="listener failed"):
            flow.authorize_sync()

        assert surfaces[0].closed == 1
        assert surfaces[0].shown == []
        assert flow.state is FlowState.FAILED
        assert flow._surface is None

    def test_reentrant_call_rejected(self, oauth_config):
        """A second sign-on while waiting for the user is a caller error."""
        holder = {}

        def respond(uri):
            with pytest.raises(RuntimeError, match="already in progress"):
                holder["flow"].authorize_sync()
            return SurfaceOutcome.cancel()

        flow, _ = make_flow(oauth_config, respond)
        holder["flow"] = flow
        assert flow.authorize_sync() is None

    def test_flow_can_be_rerun(self, oauth_config, mock_http):
        mock_http.post(TOKEN_URI).respond(json={"access_token": "at"})
        outcomes = iter([SurfaceOutcome.cancel(), SurfaceOutcome.redirected("https://app/cb?code=c")])
        flow, surfaces = make_flow(oauth_config, lambda uri: next(outcomes))

        assert flow.authorize_sync() is None
        result = flow.authorize_sync()

        assert result.authorization.access_token == "at"
        assert [s.closed for s in surfaces] == [1, 1]

    def test_close_releases_held_surface(self, oauth_config):
        flow, _ = make_flow(oauth_config, redirect_with())
        surface = FakeSurface(redirect_with())
        flow._surface = surface

        with flow:
            pass

        assert surface.closed == 1
        flow.close()
        assert surface.closed == 1


class TestImplicitFlow:
    """Tests for AuthorizationFlow with the implicit grant."""

    def test_token_from_fragment(self, oauth_config, sign):
        id_token = sign({"given_name": "Jane", "family_name": "Doe"})

        def respond(uri):
            state = parse_qs(urlsplit(uri).query)["state"][0]
            return SurfaceOutcome.redirected(
                f"https://app/cb#access_token=at-f&token_type=Bearer&expires_in=60"
                f"&id_token={id_token}&state={state}"
            )

        flow, _ = make_flow(oauth_config, respond, grant=ImplicitGrant("id_token token"))
        result = flow.authorize_sync(AuthorizationRequestArgs(state="s9"))

        assert result.state == "s9"
        assert result.authorization.access_token == "at-f"
        assert result.authorization.expires_at is not None
        assert result.authorization.display_name() == "Jane Doe"

    def test_response_type_in_request(self, oauth_config):
        flow, surfaces = make_flow(oauth_config, lambda uri: SurfaceOutcome.cancel(), grant=ImplicitGrant())
        flow.authorize_sync()
        assert "response_type=token" in surfaces[0].shown[0][0]

    def test_query_response_ignored(self, oauth_config):
        """Implicit grant reads only the fragment."""
        flow, _ = make_flow(
            oauth_config,
            lambda uri: SurfaceOutcome.redirected("https://app/cb?access_token=at"),
            grant=ImplicitGrant(),
        )
        with pytest.raises(ProtocolError, match="access_token"):
            flow.authorize_sync()


def test_default_grant_is_authorization_code(oauth_config):
    flow = AuthorizationFlow(oauth_config, lambda: None)
    assert isinstance(flow.grant, AuthorizationCodeGrant)
    assert flow.state is FlowState.IDLE
