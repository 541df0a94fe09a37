"""Shared fixtures."""

import jwt
import pytest
import respx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from entitlement_client import OAuthConfig
from entitlement_client.models import Authorization


@pytest.fixture(scope="session")
def signer_private_key():
    """RSA key the fake entitlement service signs with."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signer_public_key(signer_private_key):
    return signer_private_key.public_key()


@pytest.fixture(scope="session")
def signer_public_pem(signer_public_key):
    return signer_public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


@pytest.fixture(scope="session")
def other_public_key():
    """A public key that did not sign anything."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048).public_key()


@pytest.fixture(scope="session")
def sign(signer_private_key):
    """Sign a payload dict as the entitlement service would."""
    def _sign(payload, algorithm="RS256"):
        return jwt.encode(payload, signer_private_key, algorithm=algorithm)
    return _sign


@pytest.fixture
def oauth_config(signer_public_key):
    return OAuthConfig(
        authz_uri="https://idp.example.com/oauth2/authz",
        client_id="abc",
        token_uri="https://idp.example.com/oauth2/token",
        userinfo_uri="https://idp.example.com/userinfo",
        client_secret="s3cret",
        redirect_uri="https://app/cb",
        scope="openid profile",
        signer_key=signer_public_key,
    )


@pytest.fixture
def authorization():
    return Authorization(access_token="access-123", expires_at=None)


@pytest.fixture
def mock_http():
    """Create a respx mock for outgoing HTTP."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock
