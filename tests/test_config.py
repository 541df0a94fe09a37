"""Tests for OAuthConfig."""

import pytest

from entitlement_client.config import OAuthConfig
from entitlement_client.errors import ConfigurationError


class TestOAuthConfig:
    """Tests for OAuthConfig."""

    def test_immutable(self):
        config = OAuthConfig(authz_uri="https://idp/authz", client_id="abc")
        with pytest.raises(AttributeError):
            config.client_id = "other"

    def test_validate(self):
        OAuthConfig(authz_uri="https://idp/authz", client_id="abc").validate()
        with pytest.raises(ConfigurationError):
            OAuthConfig(authz_uri="https://idp/authz", client_id="").validate()

    def test_from_env(self, monkeypatch, signer_public_pem, signer_public_key):
        monkeypatch.setenv("ENTCLIENT_AUTHZ_URI", "https://idp/authz")
        monkeypatch.setenv("ENTCLIENT_CLIENT_ID", "abc")
        monkeypatch.setenv("ENTCLIENT_REDIRECT_URI", "http://127.0.0.1:8765/callback")
        monkeypatch.setenv("ENTCLIENT_SCOPE", "openid profile")
        monkeypatch.setenv("ENTCLIENT_SIGNER_KEY", signer_public_pem)
        monkeypatch.delenv("ENTCLIENT_CLIENT_SECRET", raising=False)

        config = OAuthConfig.from_env()

        assert config.authz_uri == "https://idp/authz"
        assert config.client_id == "abc"
        assert config.scope == "openid profile"
        assert config.client_secret is None
        assert config.signer_key.public_numbers() == signer_public_key.public_numbers()

    def test_from_env_key_file(self, monkeypatch, tmp_path, signer_public_pem):
        key_file = tmp_path / "signer.pem"
        key_file.write_text(signer_public_pem)
        monkeypatch.delenv("APP_SIGNER_KEY", raising=False)
        monkeypatch.setenv("APP_SIGNER_KEY_FILE", str(key_file))
        monkeypatch.setenv("APP_CLIENT_ID", "xyz")

        config = OAuthConfig.from_env(prefix="APP_")

        assert config.client_id == "xyz"
        assert config.signer_key is not None

    def test_from_env_missing_key_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("APP_SIGNER_KEY", raising=False)
        monkeypatch.setenv("APP_SIGNER_KEY_FILE", str(tmp_path / "missing.pem"))
        with pytest.raises(ConfigurationError, match="Cannot read signer key file"):
            OAuthConfig.from_env(prefix="APP_")
