"""Process-wide collaborators shared by the routers.

Built lazily on first use; tests swap them through ``app.dependency_overrides``.
"""
from __future__ import annotations
from functools import lru_cache

from fastapi import Header

from ..config import get_settings
from ..errors import AuthError
from ..services.availability_service import AvailabilityService
from ..services.booking_service import BookingService
from ..services.calendar_write_back import BookingWriteBack
from ..services.token_vault import TokenVault
from ..usecases.disconnect_connection import DisconnectConnectionUseCase
from ..usecases.sync_connection import SyncConnectionUseCase
from ..usecases.sync_scheduler import SyncScheduler


@lru_cache(maxsize=1)
def get_token_vault() -> TokenVault:
    return TokenVault()


@lru_cache(maxsize=1)
def get_sync_scheduler() -> SyncScheduler:
    return SyncScheduler(SyncConnectionUseCase(get_token_vault()))


def get_availability_service() -> AvailabilityService:
    return AvailabilityService()


def get_booking_service() -> BookingService:
    return BookingService(write_back=BookingWriteBack(get_token_vault()))


def get_disconnect_usecase() -> DisconnectConnectionUseCase:
    return DisconnectConnectionUseCase(get_token_vault())


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """Bearer check for the scheduled-pass endpoint (open when CRON_SECRET is unset)."""
    secret = get_settings().cron_secret
    if not secret:
        return
    if authorization != f"Bearer {secret}":
        raise AuthError("UNAUTHORIZED", "invalid cron secret")
