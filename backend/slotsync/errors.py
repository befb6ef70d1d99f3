from fastapi import status

class BaseAppException(Exception):
    def __init__(self, code: str, message: str, http_status: int):
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)

class NotFoundError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_404_NOT_FOUND)

class ConflictError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_409_CONFLICT)

class ValidationAppError(BaseAppException):
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_400_BAD_REQUEST)

class InternalServerError(BaseAppException):
    def __init__(self, message: str = "internal error"):
        super().__init__("INTERNAL_ERROR", message, status.HTTP_500_INTERNAL_SERVER_ERROR)


# --- Sync taxonomy ---

class AuthError(BaseAppException):
    """Credential invalid or revoked; the owner has to reconnect."""
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_401_UNAUTHORIZED)

class TransientError(BaseAppException):
    """Network failure or vendor hiccup, retried within a pass."""
    def __init__(self, code: str, message: str, retry_after: float | None = None):
        self.retry_after = retry_after
        super().__init__(code, message, status.HTTP_503_SERVICE_UNAVAILABLE)

class RateLimitError(TransientError):
    def __init__(self, message: str = "vendor rate limit", retry_after: float | None = None):
        super().__init__("RATE_LIMITED", message, retry_after=retry_after)

class DataError(BaseAppException):
    """A single remote record could not be parsed."""
    def __init__(self, code: str, message: str):
        super().__init__(code, message, status.HTTP_502_BAD_GATEWAY)

class CursorInvalidError(BaseAppException):
    def __init__(self, message: str = "sync cursor expired"):
        super().__init__("CURSOR_INVALID", message, status.HTTP_410_GONE)

class SyncTimeoutError(TransientError):
    def __init__(self, message: str = "sync run exceeded its deadline"):
        super().__init__("SYNC_TIMEOUT", message)

class ProviderRejectedError(BaseAppException):
    """Vendor refused the request outright (4xx other than auth or throttling)."""
    def __init__(self, code: str, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(code, message, status.HTTP_502_BAD_GATEWAY)

class ConnectionDisabledError(BaseAppException):
    """Connection switched off by its owner; it keeps its status and is not synced."""
    def __init__(self, message: str = "connection is disabled"):
        super().__init__("CONNECTION_DISABLED", message, status.HTTP_409_CONFLICT)
