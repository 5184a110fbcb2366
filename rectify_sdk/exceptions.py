"""
Exception classes for the RECtify client SDK
"""

from typing import Optional, Dict, Any


class RectifyError(Exception):
    """Base exception for all SDK errors"""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 response_data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}


class AuthenticationError(RectifyError):
    """Raised when the session token is missing or rejected"""
    pass


class AuthorizationError(RectifyError):
    """Raised when user lacks permission for requested action"""
    pass


class RateLimitError(RectifyError):
    """Raised when API rate limit is exceeded"""

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ValidationError(RectifyError):
    """Raised when request validation fails, locally or on the server"""

    def __init__(self, message: str, validation_errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors or []


class APIError(RectifyError):
    """Raised for remote-reported failures and unexpected server responses"""
    pass


class NetworkError(RectifyError):
    """Raised for network-related errors"""
    pass


class RequestTimeoutError(NetworkError):
    """Raised when request times out"""
    pass


class CredentialStoreError(RectifyError):
    """Raised when the persisted token slot cannot be read or written"""
    pass
