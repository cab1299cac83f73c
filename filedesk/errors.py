"""
Error taxonomy for FileDesk.
Every failure a handler can report is one of these; the HTTP layer turns them
into the response envelope.
"""
from typing import Optional

GENERIC_SERVER_ERROR = "Something went wrong on the server"


class FileDeskError(Exception):
    """Base class carrying the HTTP status and the caller-facing message."""

    status_code = 500
    default_message = GENERIC_SERVER_ERROR

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        self.message = message or self.default_message
        # detail is for the log only, never for the response body
        self.detail = detail
        super().__init__(detail or self.message)

    @property
    def public_message(self) -> str:
        return self.message


class InputError(FileDeskError):
    """Malformed or missing request fields; reported verbatim."""
    status_code = 400
    default_message = "Invalid request"


class AuthenticationFailure(FileDeskError):
    """Bad credentials or an invalid session."""
    status_code = 401
    default_message = "Invalid or expired session"


class AuthorizationFailure(FileDeskError):
    """Valid session with insufficient role, or a CSRF mismatch."""
    status_code = 403
    default_message = "Access denied"


class NotFound(FileDeskError):
    """Resource absent or not owned by the caller."""
    status_code = 404
    default_message = "File not found or access denied"


class IntegrityFault(FileDeskError):
    """Stored data violates an expected invariant."""

    @property
    def public_message(self) -> str:
        return GENERIC_SERVER_ERROR


class StorageFault(FileDeskError):
    """Disk or metadata-store operation failed."""

    @property
    def public_message(self) -> str:
        return GENERIC_SERVER_ERROR
