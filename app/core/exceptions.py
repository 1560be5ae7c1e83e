"""
Custom exception classes
Delivery errors raised inside channel providers and HTTP errors for the API layer
"""

from fastapi import HTTPException, status
from typing import Any, Dict, Optional


class NotificationError(Exception):
    """Base class for notification delivery failures"""

    error_code = "NOTIFICATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(NotificationError):
    """Provider credentials are missing, no request was attempted"""

    error_code = "CONFIGURATION_ERROR"


class ValidationError(NotificationError):
    """Input was malformed, no request was attempted"""

    error_code = "VALIDATION_ERROR"


class TemplateNotFound(NotificationError):
    """Email template lookup miss"""

    error_code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_key: str):
        super().__init__("Template not found")
        self.template_key = template_key


class ProviderError(NotificationError):
    """The vendor rejected or failed a request that was attempted"""

    error_code = "PROVIDER_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SubscriptionGone(ProviderError):
    """Push endpoint reported as permanently unreachable (404/410)"""

    error_code = "SUBSCRIPTION_GONE"


# HTTP exceptions

class NotificationHTTPException(HTTPException):
    """Base exception class for the HTTP layer"""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class BadRequestException(NotificationHTTPException):
    """400 Bad Request"""

    def __init__(self, detail: str, error_code: str = "BAD_REQUEST"):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code=error_code
        )


class UnauthorizedException(NotificationHTTPException):
    """401 Unauthorized"""

    def __init__(self, detail: str = "Unauthorized", error_code: str = "UNAUTHORIZED"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenException(NotificationHTTPException):
    """403 Forbidden"""

    def __init__(self, detail: str = "Forbidden", error_code: str = "FORBIDDEN"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code=error_code
        )


class InternalServerException(NotificationHTTPException):
    """500 Internal Server Error"""

    def __init__(
        self,
        detail: str = "Internal server error",
        error_code: str = "INTERNAL_ERROR"
    ):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code=error_code
        )
