"""Domain enumerations for strong typing & validation."""
from enum import Enum

class Vendor(str, Enum):
    GOOGLE = "google"
    OUTLOOK = "outlook"

class ConnectionStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"
    DISABLED = "disabled"

class SyncState(str, Enum):
    START = "start"
    TOKEN_ACQUIRED = "token_acquired"
    FETCHED = "fetched"
    DIFFED = "diffed"
    APPLIED = "applied"
    CURSOR_COMMITTED = "cursor_committed"
    FAILED = "failed"

class FailureReason(str, Enum):
    AUTH = "auth"
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    APPLY = "apply"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
    REJECTED = "rejected"
    INTERNAL = "internal"

class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
