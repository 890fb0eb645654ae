"""
Shared error handling for the Access Layer Auth Service.

Every failure surfaced by token validation is an ``AccessLayerException``
carrying a stable ``code`` plus ``details`` describing which check failed.
Details must never include key material or the raw token.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ExternalServiceError(AccessLayerException):
    """External service errors."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


# Key retrieval

class KeyFetchError(ExternalServiceError):
    """The identity provider could not be reached or returned an unusable document."""

    code = "KEY_FETCH_FAILED"
    service = "identity-provider"

    def __init__(self, message: str, url: Optional[str] = None, cause: Optional[BaseException] = None,
                 details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if url:
            details["url"] = url
        if cause is not None:
            details["cause"] = f"{type(cause).__name__}: {cause}"
        super().__init__(self.service, message, details)
        self.code = type(self).code
        self.url = url
        self.cause = cause


class DiscoveryFetchFailed(KeyFetchError):
    """The OpenID discovery document could not be fetched or lacked ``jwks_uri``."""

    code = "DISCOVERY_FETCH_FAILED"


class KeySetFetchFailed(KeyFetchError):
    """The signing key set could not be fetched or parsed."""

    code = "KEY_SET_FETCH_FAILED"


# Token validation

class TokenValidationError(AuthenticationError):
    """Base class for every reason a token is rejected."""

    code = "TOKEN_INVALID"
    default_message = "Invalid token"

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.default_message, details)
        self.code = type(self).code


class MalformedTokenError(TokenValidationError):
    code = "MALFORMED_TOKEN"
    default_message = "Token could not be parsed"


class AlgorithmMismatchError(TokenValidationError):
    code = "ALGORITHM_MISMATCH"
    default_message = "Invalid token. Invalid algorithm in header."


class KeyNotFoundError(TokenValidationError):
    code = "KEY_NOT_FOUND"
    default_message = "Invalid token. Could not verify authenticity."


class AuthenticityFailedError(TokenValidationError):
    code = "AUTHENTICITY_FAILED"
    default_message = "Invalid token. Signature verification failed."


class ClaimsInvalidError(TokenValidationError):
    """A standard or policy claim check failed; ``details["check"]`` names it."""

    code = "CLAIMS_INVALID"
    default_message = "Invalid token claims"

    def __init__(self, check: str, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details["check"] = check
        super().__init__(message, details)
        self.check = check


class InternalInvariantError(AccessLayerException):
    """State that should be unreachable, surfaced instead of defaulted."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("INTERNAL_INVARIANT", message, details)
