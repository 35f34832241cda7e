"""Google OAuth web flow for authorizing mail senders.

Builds the consent URL and exchanges the callback code for a token set,
then asks the userinfo endpoint which email the tokens belong to.

Based on google-auth-oauthlib documentation:
https://google-auth-oauthlib.readthedocs.io/en/latest/reference/google_auth_oauthlib.flow.html
"""

import json
import logging
import os
from typing import Any

from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from invoicing.shared.config import Settings
from invoicing.shared.errors import AuthError

logger = logging.getLogger(__name__)

SCOPES = (
    "https://www.googleapis.com/auth/gmail.send",
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Google may echo scopes in a different form than requested
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")


class GoogleOAuthClient:
    """Creates consent URLs and exchanges authorization codes."""

    def __init__(self, settings: Settings) -> None:
        """Initialize OAuth client.

        Args:
            settings: Application settings with Google client credentials
        """
        self.settings = settings

    def client_config(self) -> dict[str, Any]:
        return {
            "web": {
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
                "redirect_uris": [self.settings.google_redirect_uri],
            }
        }

    def _flow(self) -> Flow:
        self.settings.require_google_oauth()
        return Flow.from_client_config(
            self.client_config(),
            scopes=list(SCOPES),
            redirect_uri=self.settings.google_redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self) -> tuple[str, str]:
        """Consent URL requesting offline access to send mail.

        Returns:
            ``(url, state)``; the callback must present the same state

        Raises:
            ConfigError: If client credentials are not configured
        """
        url, state = self._flow().authorization_url(
            access_type="offline",
            prompt="consent",
        )
        return url, state

    def exchange_code(self, code: str) -> tuple[str, dict[str, Any]]:
        """Exchange an authorization code for tokens and resolve the account email.

        Args:
            code: Code from the OAuth callback query string

        Returns:
            ``(email, token)`` where token is the authorized-user JSON info

        Raises:
            ConfigError: If client credentials are not configured
            AuthError: If the exchange or the userinfo lookup fails
        """
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
            credentials = flow.credentials
            userinfo = (
                build("oauth2", "v2", credentials=credentials, cache_discovery=False)
                .userinfo()
                .get()
                .execute()
            )
        except Exception as e:
            logger.error(f"OAuth code exchange failed: {e}")
            raise AuthError(f"Failed to exchange code: {e}") from e

        email = userinfo.get("email")
        if not email:
            logger.error("Userinfo response did not include an email")
            raise AuthError("Failed to get user email")

        logger.info(f"Authorized mail identity {email}")
        return email, json.loads(credentials.to_json())
