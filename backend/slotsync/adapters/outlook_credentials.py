from __future__ import annotations
import os
from datetime import datetime, timedelta, timezone

import requests

from ..errors import AuthError, TransientError
from ..ports.credential_source import CredentialSource, RefreshedToken

TOKEN_URL_TEMPLATE = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
CALENDAR_SCOPES = ["offline_access", "Calendars.ReadWrite"]


class OutlookCredentialSource(CredentialSource):
    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        tenant: str | None = None,
        session: requests.Session | None = None,
    ):
        self.client_id = client_id or os.getenv("OUTLOOK_CLIENT_ID")
        self.client_secret = client_secret or os.getenv("OUTLOOK_CLIENT_SECRET")
        self.tenant = tenant or os.getenv("OUTLOOK_TENANT", "common")
        self._session = session or requests.Session()

    def refresh(self, refresh_token: str) -> RefreshedToken:
        if not self.client_id or not self.client_secret:
            raise AuthError("OAUTH_CONFIG_MISSING", "Outlook OAuth credentials not configured")
        try:
            resp = self._session.post(
                TOKEN_URL_TEMPLATE.format(tenant=self.tenant),
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    "scope": " ".join(CALENDAR_SCOPES),
                },
                timeout=30,
            )
        except requests.RequestException as e:
            raise TransientError("TOKEN_REFRESH_UNAVAILABLE", f"Microsoft token endpoint unreachable: {e}")
        if resp.status_code >= 500 or resp.status_code == 429:
            raise TransientError("TOKEN_REFRESH_UNAVAILABLE", f"Microsoft token endpoint error: {resp.status_code}")
        if resp.status_code != 200:
            raise AuthError("TOKEN_REFRESH_FAILED", f"Failed to refresh token: {resp.text}")
        data = resp.json()
        expires_in = int(data.get("expires_in", 3600))
        return RefreshedToken(
            access_token=data["access_token"],
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            refresh_token=data.get("refresh_token"),
        )

    def revoke(self, token: str) -> None:
        # Graph has no per-token revocation endpoint; sign-in sessions are revoked instead.
        self._session.post(
            "https://graph.microsoft.com/v1.0/me/revokeSignInSessions",
            headers={"Authorization": f"Bearer {token}"},
            timeout=10,
        )
