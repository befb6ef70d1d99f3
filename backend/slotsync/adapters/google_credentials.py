from __future__ import annotations
import os
from datetime import timezone

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials

from ..errors import AuthError, TransientError
from ..ports.credential_source import CredentialSource, RefreshedToken

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"


class GoogleCredentialSource(CredentialSource):
    def __init__(self, client_id: str | None = None, client_secret: str | None = None):
        self.client_id = client_id or os.getenv("GOOGLE_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("GOOGLE_CLIENT_SECRET")

    def refresh(self, refresh_token: str) -> RefreshedToken:
        if not self.client_id or not self.client_secret:
            raise AuthError("OAUTH_CONFIG_MISSING", "Google OAuth credentials not configured")
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=GOOGLE_TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(GoogleRequest())
        except google_auth_exceptions.RefreshError as e:
            if getattr(e, "retryable", False):
                raise TransientError("TOKEN_REFRESH_UNAVAILABLE", f"Google token endpoint error: {e}")
            raise AuthError("TOKEN_REFRESH_FAILED", f"Failed to refresh token: {e}")
        except google_auth_exceptions.TransportError as e:
            raise TransientError("TOKEN_REFRESH_UNAVAILABLE", f"Google token endpoint unreachable: {e}")
        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            # google-auth reports naive UTC
            expiry = expiry.replace(tzinfo=timezone.utc)
        return RefreshedToken(
            access_token=credentials.token,
            expires_at=expiry,
            refresh_token=credentials.refresh_token if credentials.refresh_token != refresh_token else None,
        )

    def revoke(self, token: str) -> None:
        requests.post(
            GOOGLE_REVOKE_URI,
            params={"token": token},
            headers={"content-type": "application/x-www-form-urlencoded"},
            timeout=10,
        )
