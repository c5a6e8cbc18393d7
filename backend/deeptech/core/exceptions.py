"""
Domain errors raised by the account lifecycle.

Each error carries the HTTP status it maps to and optional context that is
merged into the JSON error envelope by the handlers in main.py.
"""
from typing import Any, Dict, Optional

from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_502_BAD_GATEWAY,
)


class AccountError(Exception):
    status_code: int = HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, **self.context}


class ValidationError(AccountError):
    default_message = "Invalid request data"


class ConflictError(AccountError):
    default_message = "Resource already exists"


class NotFoundError(AccountError):
    status_code = HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class UnverifiedError(AccountError):
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "Please verify your email first"


class PasswordNotSetError(AccountError):
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "Please set up your password first"


class ExpiredError(AccountError):
    default_message = "Verification code has expired"


class MismatchError(AccountError):
    default_message = "Verification details do not match"


class InvalidCredentialsError(AccountError):
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class UnauthorizedError(AccountError):
    status_code = HTTP_401_UNAUTHORIZED
    default_message = "Access token required"


class ForbiddenError(AccountError):
    status_code = HTTP_403_FORBIDDEN
    default_message = "Access denied"


class NotificationError(AccountError):
    status_code = HTTP_502_BAD_GATEWAY
    default_message = "Failed to send notification email"
