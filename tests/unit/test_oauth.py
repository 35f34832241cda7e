"""Unit tests for the Google OAuth client with mocked flow and userinfo API."""

import os
from unittest.mock import MagicMock, patch

import pytest

from invoicing.mail.oauth import SCOPES, GoogleOAuthClient
from invoicing.shared.config import Settings
from invoicing.shared.errors import AuthError, ConfigError


@pytest.fixture
def oauth_settings() -> Settings:
    """Create settings with OAuth client configured."""
    return Settings(
        google_client_id="test-client-id.apps.googleusercontent.com",
        google_client_secret="test-client-secret",
        google_redirect_uri="http://localhost:8000/api/gmail/oauth2callback",
    )


@pytest.fixture
def mock_flow() -> MagicMock:
    """Flow that returns a consent URL and credentials."""
    flow = MagicMock()
    flow.authorization_url.return_value = ("https://accounts.google.com/o/oauth2/auth?x=1", "state")
    flow.credentials.to_json.return_value = '{"token": "ya29.access", "refresh_token": "1//r"}'
    return flow


def test_client_config_shape(oauth_settings: Settings) -> None:
    """Client config follows the web client secrets layout."""
    config = GoogleOAuthClient(oauth_settings).client_config()

    assert config["web"]["client_id"] == "test-client-id.apps.googleusercontent.com"
    assert config["web"]["redirect_uris"] == ["http://localhost:8000/api/gmail/oauth2callback"]


def test_scopes_include_send_and_identity() -> None:
    """Requested scopes cover sending and identifying the account."""
    assert "https://www.googleapis.com/auth/gmail.send" in SCOPES
    assert "https://www.googleapis.com/auth/userinfo.email" in SCOPES
    assert "openid" in SCOPES


def test_relaxed_token_scope_set_on_import() -> None:
    """Scope relaxation is configured once, not per request."""
    assert "OAUTHLIB_RELAX_TOKEN_SCOPE" in os.environ


class TestAuthorizationUrl:
    """Consent URL creation."""

    def test_offline_consent(self, oauth_settings: Settings, mock_flow: MagicMock) -> None:
        """Consent asks for offline access and forces the prompt."""
        with patch("invoicing.mail.oauth.Flow") as mock_flow_cls:
            mock_flow_cls.from_client_config.return_value = mock_flow

            url, state = GoogleOAuthClient(oauth_settings).authorization_url()

        assert url.startswith("https://accounts.google.com/")
        assert state == "state"
        mock_flow.authorization_url.assert_called_once_with(
            access_type="offline", prompt="consent"
        )
        kwargs = mock_flow_cls.from_client_config.call_args.kwargs
        assert kwargs["redirect_uri"] == "http://localhost:8000/api/gmail/oauth2callback"
        assert kwargs["scopes"] == list(SCOPES)

    def test_missing_config(self) -> None:
        """Without client credentials no URL is built."""
        settings = Settings(google_client_id="", google_client_secret="", google_redirect_uri="")

        with pytest.raises(ConfigError, match="Missing Google OAuth configuration"):
            GoogleOAuthClient(settings).authorization_url()


class TestExchangeCode:
    """Callback code exchange."""

    def test_success(self, oauth_settings: Settings, mock_flow: MagicMock) -> None:
        """Returns the account email and token JSON."""
        with (
            patch("invoicing.mail.oauth.Flow") as mock_flow_cls,
            patch("invoicing.mail.oauth.build") as mock_build,
        ):
            mock_flow_cls.from_client_config.return_value = mock_flow
            mock_build.return_value.userinfo.return_value.get.return_value.execute.return_value = {
                "email": "owner@studionine.com"
            }

            email, token = GoogleOAuthClient(oauth_settings).exchange_code("auth-code")

        assert email == "owner@studionine.com"
        assert token == {"token": "ya29.access", "refresh_token": "1//r"}
        mock_flow.fetch_token.assert_called_once_with(code="auth-code")
        assert mock_build.call_args.args[:2] == ("oauth2", "v2")

    def test_exchange_failure(self, oauth_settings: Settings, mock_flow: MagicMock) -> None:
        """Token endpoint errors become AuthError."""
        mock_flow.fetch_token.side_effect = Exception("invalid_grant")

        with patch("invoicing.mail.oauth.Flow") as mock_flow_cls:
            mock_flow_cls.from_client_config.return_value = mock_flow

            with pytest.raises(AuthError, match="invalid_grant"):
                GoogleOAuthClient(oauth_settings).exchange_code("bad-code")

    def test_userinfo_without_email(self, oauth_settings: Settings, mock_flow: MagicMock) -> None:
        """Userinfo lacking an email is an auth failure."""
        with (
            patch("invoicing.mail.oauth.Flow") as mock_flow_cls,
            patch("invoicing.mail.oauth.build") as mock_build,
        ):
            mock_flow_cls.from_client_config.return_value = mock_flow
            mock_build.return_value.userinfo.return_value.get.return_value.execute.return_value = {}

            with pytest.raises(AuthError, match="Failed to get user email"):
                GoogleOAuthClient(oauth_settings).exchange_code("auth-code")
