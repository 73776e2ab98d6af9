"""
Error taxonomy shared by the services and mapped to HTTP responses in main.py.
"""
from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(AppError):
    """Raised when input is malformed."""
    pass


class NotFoundError(AppError):
    """Raised when an application, participant or credential row does not exist."""
    pass


class CredentialMissing(AppError):
    """Raised when no OAuth credential is stored for an external account."""
    pass


class RefreshFailed(AppError):
    """Raised when the token endpoint rejects a refresh. Stored credentials are left untouched."""
    pass


class ExternalApiError(AppError):
    """Raised when a CRM call fails (transport error or non-2xx)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code
        self.body = body


class DatabaseError(AppError):
    """Raised when a durable write fails."""
    pass


class InvalidVerificationCode(ValidationError):
    pass


class ExpiredVerificationCode(ValidationError):
    pass
