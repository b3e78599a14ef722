"""
Custom exceptions for the HR-SM license guard with comprehensive error handling.
Every license failure carries a stable machine-readable code and an HTTP status.
"""
import uuid
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categorization for better handling and monitoring."""
    LICENSING = "licensing"
    VALIDATION = "validation"
    EXTERNAL_SERVICE = "external_service"
    SECURITY = "security"
    SYSTEM = "system"


class HRSMError(Exception):
    """Base exception for all HR-SM errors with enhanced context."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        user_message: Optional[str] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.error_code = error_code or self._generate_error_code()
        self.severity = severity
        self.category = category
        self.user_message = user_message or message
        self.correlation_id = correlation_id or str(uuid.uuid4())
        self.context = context or {}

    def _generate_error_code(self) -> str:
        """Generate a unique error code for tracking."""
        class_name = self.__class__.__name__
        return f"{class_name.upper()}_{int(self.timestamp.timestamp() * 1000)}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "correlation_id": self.correlation_id,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }


# ============================================================================
# LICENSE EXCEPTIONS
# ============================================================================

class LicenseError(HRSMError):
    """
    Base class for license failures surfaced to the caller.

    ``error_code`` is the stable code clients switch on (``LICENSE_REQUIRED``,
    ``FEATURE_NOT_LICENSED``...), ``status_code`` the HTTP status it maps to and
    ``context`` the extra response fields (tenantId, feature, moduleKey...).
    """

    status_code: int = 403
    default_code: str = "LICENSE_INVALID"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('category', ErrorCategory.LICENSING)
        super().__init__(message, error_code=error_code or self.default_code, **kwargs)
        if status_code is not None:
            self.status_code = status_code

    def to_response(self) -> Dict[str, Any]:
        """Response body sent to the client."""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.error_code,
            "message": self.user_message,
        }
        body.update({k: v for k, v in self.context.items() if v is not None})
        return body


class LicenseRequiredError(LicenseError):
    """No license token, or no license info attached to the request."""

    default_code = "LICENSE_REQUIRED"


class LicenseInvalidError(LicenseError):
    """The license authority rejected the token, or answered with garbage."""

    default_code = "LICENSE_INVALID"


class FeatureNotLicensedError(LicenseError):
    default_code = "FEATURE_NOT_LICENSED"


class ModuleNotLicensedError(LicenseError):
    default_code = "MODULE_NOT_LICENSED"


class LicenseExpiredError(LicenseError):
    default_code = "LICENSE_EXPIRED"


class TenantIdRequiredError(LicenseError):
    status_code = 400
    default_code = "TENANT_ID_REQUIRED"


class LicenseServerUnavailableError(LicenseError):
    """The authority could not be reached and no offline verdict exists."""

    status_code = 503
    default_code = "LICENSE_SERVER_UNAVAILABLE"

    def __init__(self, message: str = "License validation service is temporarily unavailable", details: Optional[str] = None, **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)
        self.context.setdefault('details', details)


class LicenseValidationFault(LicenseError):
    """Unexpected internal failure while validating a license."""

    status_code = 500
    default_code = "LICENSE_VALIDATION_ERROR"

    def __init__(self, message: str = "An error occurred during license validation", **kwargs):
        kwargs.setdefault('severity', ErrorSeverity.HIGH)
        super().__init__(message, **kwargs)


class LicenseRateLimitError(LicenseError):
    status_code = 429
    default_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str, retry_after: int, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.context['retryAfter'] = retry_after


class UsageLimitExceededError(LicenseError):
    status_code = 429
    default_code = "LIMIT_EXCEEDED"


class LimitCheckFailedError(LicenseError):
    status_code = 500
    default_code = "LIMIT_CHECK_FAILED"


# ============================================================================
# LICENSE AUTHORITY TRANSPORT EXCEPTIONS
# ============================================================================

class ExternalServiceError(HRSMError):
    """Raised when external service calls fail."""

    def __init__(
        self,
        message: str,
        service_name: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault('category', ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault('user_message', 'An external service is currently unavailable. Please try again later.')
        super().__init__(message, **kwargs)

        self.service_name = service_name
        self.status_code = status_code

        self.context.update({
            'service_name': service_name,
            'status_code': status_code
        })


class AuthorityTransportError(ExternalServiceError):
    """
    The license authority call failed before a usable answer arrived.

    ``transient`` tells the retry policy whether another attempt can help:
    connection failures, timeouts and 5xx are transient, 4xx are not.
    """

    def __init__(self, message: str, transient: bool, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, service_name="license_authority", status_code=status_code, **kwargs)
        self.transient = transient


class RetryExhaustedError(HRSMError):
    """Raised by the retry policy once every attempt has failed."""

    def __init__(self, message: str, attempts: int, last_error: Optional[BaseException] = None, **kwargs):
        kwargs.setdefault('category', ErrorCategory.EXTERNAL_SERVICE)
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.last_error = last_error
        self.context.update({'attempts': attempts})


class AuthorityResponseError(ExternalServiceError):
    """The license authority answered, but the body is not a usable verdict."""

    def __init__(self, message: str, body: Any = None, **kwargs):
        super().__init__(message, service_name="license_authority", **kwargs)
        self.body = body
