"""OAuth 2.0 helpers: account linking, token refresh, and Gmail service construction."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from mail_tasker.core.exceptions import AuthExpired, MailTaskerError
from mail_tasker.core.models import AccountCredential, TokenRefresh

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


def authorize_account(client_secrets_path: Path) -> Credentials:
    """Run the installed-app OAuth flow to link a new Gmail account.

    Args:
        client_secrets_path: Path to OAuth 2.0 client credentials JSON.

    Returns:
        Google OAuth2 credentials holding an access and refresh token.

    Raises:
        MailTaskerError: If the secrets file is missing or the flow fails.
    """
    if not client_secrets_path.exists():
        raise MailTaskerError(
            f"Client secrets file not found: {client_secrets_path}. "
            "Download it from Google Cloud Console."
        )

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(client_secrets_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise MailTaskerError(f"OAuth flow failed: {e}") from e

    logger.info("Authorization successful")
    return creds


def build_gmail_service(access_token: str) -> Resource:
    """Build a Gmail API service resource bound to a bare access token.

    The credentials carry no refresh token, so google-auth never refreshes on
    its own and a 401 surfaces to GmailClient as an HttpError.
    """
    creds = Credentials(token=access_token)
    return build("gmail", "v1", credentials=creds, cache_discovery=False)


class GoogleTokenRefresher:
    """Exchanges a refresh token for a new access token at Google's token endpoint."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_uri: str = "https://oauth2.googleapis.com/token",
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_uri = token_uri

    def __call__(self, credential: AccountCredential) -> TokenRefresh:
        """Refresh ``credential``'s access token.

        Returns:
            TokenRefresh with the new access token. ``refresh_token`` is set only
            when Google rotated it.

        Raises:
            AuthExpired: If there is no refresh token or Google rejects it.
        """
        if not credential.refresh_token:
            raise AuthExpired(f"Account {credential.account_id} has no refresh token")

        creds = Credentials(
            token=None,
            refresh_token=credential.refresh_token,
            token_uri=self._token_uri,
            client_id=self._client_id,
            client_secret=self._client_secret,
            scopes=SCOPES,
        )
        try:
            creds.refresh(Request())
        except (RefreshError, TransportError) as e:
            raise AuthExpired(
                f"Token refresh failed for account {credential.account_id}: {e}"
            ) from e

        rotated = creds.refresh_token if creds.refresh_token != credential.refresh_token else None
        logger.info("Refreshed access token for account %s", credential.account_id)
        return TokenRefresh(
            access_token=creds.token,
            refresh_token=rotated,
            expiry=creds.expiry,
        )
