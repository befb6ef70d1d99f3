from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Optional


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: Optional[datetime]
    # Some vendors rotate the refresh token on every use
    refresh_token: Optional[str] = None


class CredentialSource(Protocol):
    """Vendor token endpoint used by the token vault."""

    def refresh(self, refresh_token: str) -> RefreshedToken:
        """Exchange a refresh token. Raises AuthError when the grant is revoked."""
        ...

    def revoke(self, token: str) -> None:
        ...
