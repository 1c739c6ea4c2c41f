"""
Error codes, error source classification and domain exceptions
for the feature management service.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Error codes surfaced in API error payloads."""

    # ========== Input ==========
    INPUT_ERROR = "INPUT_ERROR"
    INPUT_VALIDATION_FAILED = "INPUT_VALIDATION_FAILED"

    # ========== Auth ==========
    UNAUTHORIZED = "UNAUTHORIZED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # ========== Business rules ==========
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    DATA_NOT_FOUND = "DATA_NOT_FOUND"

    # ========== System ==========
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    DATA_CORRUPTION = "DATA_CORRUPTION"


class ErrorSource(str, Enum):
    INPUT = "input"
    SYSTEM = "system"
    CONFIGURATION = "config"
    SECURITY = "security"
    STORAGE = "storage"


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ExtendedError:
    """Structured error information."""
    code: ErrorCode
    source: ErrorSource
    severity: ErrorSeverity
    message: str
    stage: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code.value,
            "source": self.source.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.stage:
            result["stage"] = self.stage
        if self.context:
            result["context"] = self.context
        return result


ERROR_SOURCE_MAPPING: Dict[ErrorCode, ErrorSource] = {
    ErrorCode.INPUT_ERROR: ErrorSource.INPUT,
    ErrorCode.INPUT_VALIDATION_FAILED: ErrorSource.INPUT,
    ErrorCode.BUSINESS_RULE_VIOLATION: ErrorSource.INPUT,
    ErrorCode.DATA_NOT_FOUND: ErrorSource.INPUT,
    ErrorCode.UNAUTHORIZED: ErrorSource.SECURITY,
    ErrorCode.PERMISSION_DENIED: ErrorSource.SECURITY,
    ErrorCode.CONFIGURATION_ERROR: ErrorSource.CONFIGURATION,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorSource.STORAGE,
    ErrorCode.DATA_CORRUPTION: ErrorSource.STORAGE,
    ErrorCode.INTERNAL_ERROR: ErrorSource.SYSTEM,
}


ERROR_SEVERITY_MAPPING: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.SERVICE_UNAVAILABLE: ErrorSeverity.CRITICAL,
    ErrorCode.DATA_CORRUPTION: ErrorSeverity.CRITICAL,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.ERROR,
    ErrorCode.CONFIGURATION_ERROR: ErrorSeverity.ERROR,
    ErrorCode.UNAUTHORIZED: ErrorSeverity.WARNING,
    ErrorCode.PERMISSION_DENIED: ErrorSeverity.WARNING,
    ErrorCode.INPUT_ERROR: ErrorSeverity.INFO,
    ErrorCode.INPUT_VALIDATION_FAILED: ErrorSeverity.INFO,
    ErrorCode.BUSINESS_RULE_VIOLATION: ErrorSeverity.INFO,
    ErrorCode.DATA_NOT_FOUND: ErrorSeverity.INFO,
}


def get_error_source(error_code: ErrorCode) -> ErrorSource:
    return ERROR_SOURCE_MAPPING.get(error_code, ErrorSource.SYSTEM)


def get_error_severity(error_code: ErrorCode) -> ErrorSeverity:
    return ERROR_SEVERITY_MAPPING.get(error_code, ErrorSeverity.ERROR)


def create_extended_error(
    error_code: ErrorCode,
    message: str,
    stage: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None,
) -> ExtendedError:
    return ExtendedError(
        code=error_code,
        source=get_error_source(error_code),
        severity=get_error_severity(error_code),
        message=message,
        stage=stage,
        context=context,
    )


def build_error(
    error_code: ErrorCode,
    stage: str,
    message: str,
    **context: Any,
) -> Dict[str, Any]:
    """Unified error dict builder for API responses.

    Returns a dict suitable for direct inclusion under `detail`.
    """
    return create_extended_error(
        error_code=error_code,
        message=message,
        stage=stage,
        context=context or None,
    ).to_dict()


class FeatureManagementError(Exception):
    """Base class for errors raised by the feature management core."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    stage: str = "feature_management"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        return build_error(self.code, self.stage, self.message, **self.context)


class FeatureNotInAllowlistError(FeatureManagementError):
    """Raised when opting into a feature that is not offered for opt-in."""

    code = ErrorCode.BUSINESS_RULE_VIOLATION
    stage = "opt_in"

    def __init__(self, feature_slug: str):
        super().__init__(
            "Feature is not available for opt-in", feature_slug=feature_slug
        )
        self.feature_slug = feature_slug


class FlagStoreError(FeatureManagementError):
    """Infrastructure failure in a flag store adapter."""

    code = ErrorCode.SERVICE_UNAVAILABLE
    stage = "flag_store"


class FlagConfigurationError(FeatureManagementError):
    """Invalid settings, allowlist or seed data."""

    code = ErrorCode.CONFIGURATION_ERROR
    stage = "configuration"


__all__ = [
    "ErrorCode",
    "ErrorSource",
    "ErrorSeverity",
    "ExtendedError",
    "create_extended_error",
    "build_error",
    "FeatureManagementError",
    "FeatureNotInAllowlistError",
    "FlagStoreError",
    "FlagConfigurationError",
]
