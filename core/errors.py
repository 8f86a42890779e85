"""
Error Code Definitions and Classification.

Centralized error code management with retry classification and
consistent error responses across the query pipeline.

Key Features:
    - Explicit error codes for all failure modes
    - Validator reason codes share values with ErrorCode
    - Retry classification (PERMANENT, TRANSIENT, THROTTLING)
    - Helper function to determine if a caller may retry

Exports:
    ErrorCode: Standardized error codes enum
    ErrorClassification: Error category enum
    is_retryable: Helper to check if error should be retried
"""

from enum import Enum
from typing import Dict, Any


class ErrorCode(str, Enum):
    """
    Standardized error codes for all pipeline errors.

    These codes are returned in verdicts, exceptions and API responses to
    provide explicit error classification for logging and retry decisions.
    """

    # ========================================================================
    # QUERY CONSTRUCTION / VALIDATION (HTTP 400, NOT RETRYABLE)
    # ========================================================================

    MALFORMED_QUERY = "MALFORMED_QUERY"  # Compiler structural violation
    VALIDATION_ERROR = "VALIDATION_ERROR"  # Generic validation failure
    EMPTY_STATEMENT = "EMPTY_STATEMENT"  # Nothing to validate
    WRITE_OPERATION_BLOCKED = "WRITE_OPERATION_BLOCKED"  # Non read-only SQL
    INJECTION_PATTERN_DETECTED = "INJECTION_PATTERN_DETECTED"  # Stacked/commented/probing SQL
    DANGEROUS_FUNCTION_BLOCKED = "DANGEROUS_FUNCTION_BLOCKED"  # pg_sleep, dblink, ...
    SCHEMA_NOT_ALLOWED = "SCHEMA_NOT_ALLOWED"  # Relation outside allow-list
    UNVALIDATED_STATEMENT = "UNVALIDATED_STATEMENT"  # Executor contract violation

    # ========================================================================
    # EXECUTION (HTTP 500/503)
    # ========================================================================

    TIMED_OUT = "TIMED_OUT"  # Statement timeout, server-side cancel
    QUERY_CANCELLED = "QUERY_CANCELLED"  # Caller cancelled
    CONNECTION_ERROR = "CONNECTION_ERROR"  # Pool/connection failure
    QUERY_FAILED = "QUERY_FAILED"  # PostgreSQL statement error

    # ========================================================================
    # PUBLISHING
    # ========================================================================

    INFERENCE_FAILED = "INFERENCE_FAILED"  # Geometry column unresolved
    PUBLISH_ERROR = "PUBLISH_ERROR"  # GeoServer REST failure
    THROTTLED = "THROTTLED"  # GeoServer 429

    # ========================================================================
    # GENERIC
    # ========================================================================

    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    CONFIG_ERROR = "CONFIG_ERROR"
    PROVIDER_ERROR = "PROVIDER_ERROR"  # NL-to-SQL adaptor failure
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class ErrorClassification(str, Enum):
    """
    Error classification for caller retry decisions.

    The pipeline itself never retries; this only informs the caller.
    """

    PERMANENT = "PERMANENT"  # Never retry (client error, won't fix itself)
    TRANSIENT = "TRANSIENT"  # Retry with exponential backoff (temporary issue)
    THROTTLING = "THROTTLING"  # Retry with longer delay (rate limiting)


_ERROR_CLASSIFICATION: Dict[ErrorCode, ErrorClassification] = {
    # PERMANENT - the same input fails the same way
    ErrorCode.MALFORMED_QUERY: ErrorClassification.PERMANENT,
    ErrorCode.VALIDATION_ERROR: ErrorClassification.PERMANENT,
    ErrorCode.EMPTY_STATEMENT: ErrorClassification.PERMANENT,
    ErrorCode.WRITE_OPERATION_BLOCKED: ErrorClassification.PERMANENT,
    ErrorCode.INJECTION_PATTERN_DETECTED: ErrorClassification.PERMANENT,
    ErrorCode.DANGEROUS_FUNCTION_BLOCKED: ErrorClassification.PERMANENT,
    ErrorCode.SCHEMA_NOT_ALLOWED: ErrorClassification.PERMANENT,
    ErrorCode.UNVALIDATED_STATEMENT: ErrorClassification.PERMANENT,
    ErrorCode.QUERY_FAILED: ErrorClassification.PERMANENT,
    ErrorCode.QUERY_CANCELLED: ErrorClassification.PERMANENT,
    ErrorCode.INFERENCE_FAILED: ErrorClassification.PERMANENT,
    ErrorCode.RESOURCE_NOT_FOUND: ErrorClassification.PERMANENT,
    ErrorCode.CONFIG_ERROR: ErrorClassification.PERMANENT,

    # TRANSIENT - caller may retry with backoff
    ErrorCode.TIMED_OUT: ErrorClassification.TRANSIENT,
    ErrorCode.CONNECTION_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.PUBLISH_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.PROVIDER_ERROR: ErrorClassification.TRANSIENT,
    ErrorCode.UNEXPECTED_ERROR: ErrorClassification.TRANSIENT,

    # THROTTLING
    ErrorCode.THROTTLED: ErrorClassification.THROTTLING,
}


def is_retryable(error_code: ErrorCode) -> bool:
    """
    Determine if an error code allows a caller-side retry.

    Args:
        error_code: ErrorCode enum value

    Returns:
        True if error may be retried, False otherwise

    Example:
        >>> is_retryable(ErrorCode.WRITE_OPERATION_BLOCKED)
        False
        >>> is_retryable(ErrorCode.TIMED_OUT)
        True
    """
    classification = _ERROR_CLASSIFICATION.get(error_code, ErrorClassification.TRANSIENT)
    return classification != ErrorClassification.PERMANENT


def get_error_classification(error_code: ErrorCode) -> ErrorClassification:
    """Get the classification for an error code."""
    return _ERROR_CLASSIFICATION.get(error_code, ErrorClassification.TRANSIENT)


def get_http_status_code(error_code: ErrorCode) -> int:
    """
    Get the appropriate HTTP status code for an error code.

    Example:
        >>> get_http_status_code(ErrorCode.SCHEMA_NOT_ALLOWED)
        403
        >>> get_http_status_code(ErrorCode.TIMED_OUT)
        504
    """
    if error_code == ErrorCode.RESOURCE_NOT_FOUND:
        return 404

    if error_code in {
        ErrorCode.WRITE_OPERATION_BLOCKED,
        ErrorCode.INJECTION_PATTERN_DETECTED,
        ErrorCode.DANGEROUS_FUNCTION_BLOCKED,
        ErrorCode.SCHEMA_NOT_ALLOWED,
    }:
        return 403

    if error_code in {
        ErrorCode.MALFORMED_QUERY,
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.EMPTY_STATEMENT,
        ErrorCode.QUERY_FAILED,
        ErrorCode.INFERENCE_FAILED,
    }:
        return 400

    if error_code == ErrorCode.TIMED_OUT:
        return 504

    if error_code in {
        ErrorCode.CONNECTION_ERROR,
        ErrorCode.PUBLISH_ERROR,
        ErrorCode.PROVIDER_ERROR,
        ErrorCode.THROTTLED,
    }:
        return 503

    return 500


def create_error_response(
    error_code: ErrorCode,
    message: str,
    **kwargs: Any
) -> Dict[str, Any]:
    """
    Create a standardized error response dictionary.

    Example:
        >>> create_error_response(
        ...     ErrorCode.SCHEMA_NOT_ALLOWED,
        ...     "Relation 'pg_catalog.pg_authid' is not in the allow-list",
        ...     relation="pg_catalog.pg_authid"
        ... )
        {
            "success": False,
            "error": "SCHEMA_NOT_ALLOWED",
            "error_type": "SQLRejectedError",
            "message": "...",
            "retryable": False,
            "http_status": 403,
            "relation": "pg_catalog.pg_authid"
        }
    """
    response = {
        "success": False,
        "error": error_code.value,
        "error_type": kwargs.pop("error_type", "ValidationError"),
        "message": message,
        "retryable": is_retryable(error_code),
        "http_status": get_http_status_code(error_code),
        **kwargs
    }

    return response
