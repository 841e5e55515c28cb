from fastapi import status
from typing import Optional, Dict, Any


class AppBaseException(Exception):
    """
    Base exception class for all custom application exceptions.
    """
    def __init__(
        self,
        message: str = "An unexpected error occurred",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationException(AppBaseException):
    """
    Exception raised when the caller identity is missing or invalid.
    """
    def __init__(
        self,
        message: str = "Authentication failed",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            details=details
        )


class ExternalServiceException(AppBaseException):
    """
    Exception raised for errors in external service calls (the AI provider).
    """
    def __init__(
        self,
        service_name: str,
        message: str = "External service request failed",
        details: Optional[Dict[str, Any]] = None,
        status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE
    ):
        if not details:
            details = {}

        details["service"] = service_name

        super().__init__(
            message=f"{message} ({service_name})",
            status_code=status_code,
            details=details
        )


class UpstreamTimeoutException(ExternalServiceException):
    """
    Exception raised when the external service does not answer in time.
    """
    def __init__(
        self,
        service_name: str,
        timeout_seconds: float,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        details["timeout_seconds"] = timeout_seconds

        super().__init__(
            service_name=service_name,
            message="External service timed out",
            details=details,
            status_code=status.HTTP_504_GATEWAY_TIMEOUT
        )


class RateLimitException(AppBaseException):
    """
    Exception raised when a caller exceeds a rate limit.
    Rendered with the throttle contract rather than the generic error body.
    """
    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 0,
        limit: int = 0,
        details: Optional[Dict[str, Any]] = None
    ):
        if not details:
            details = {}

        details["retry_after"] = retry_after
        self.retry_after = retry_after
        self.limit = limit

        super().__init__(
            message=message,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details=details
        )
