"""Pick the adapter pair for a connection's vendor tag."""
from __future__ import annotations

from ..domain.enums import Vendor
from ..ports.calendar_provider import CalendarProvider
from ..ports.credential_source import CredentialSource


def build_provider(vendor: str, calendar_id: str = "primary") -> CalendarProvider:
    """
    Args:
        vendor: "google" or "outlook"
        calendar_id: remote calendar to mirror

    Raises:
        ValueError: unsupported vendor
    """
    if vendor == Vendor.GOOGLE.value:
        from .google_calendar_provider import GoogleCalendarProvider
        return GoogleCalendarProvider(calendar_id)
    elif vendor == Vendor.OUTLOOK.value:
        from .outlook_calendar_provider import OutlookCalendarProvider
        return OutlookCalendarProvider(calendar_id)
    else:
        raise ValueError(f"Unsupported vendor: {vendor}")


def build_credential_source(vendor: str) -> CredentialSource:
    if vendor == Vendor.GOOGLE.value:
        from .google_credentials import GoogleCredentialSource
        return GoogleCredentialSource()
    elif vendor == Vendor.OUTLOOK.value:
        from .outlook_credentials import OutlookCredentialSource
        return OutlookCredentialSource()
    else:
        raise ValueError(f"Unsupported vendor: {vendor}")
