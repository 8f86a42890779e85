"""
Custom Exception Hierarchy

Distinguishes between:
1. Contract Violations (programming bugs that need fixing)
2. Business Logic Failures (expected runtime issues)

This separation ensures bugs are found quickly while the pipeline
remains robust to expected failures (rejected SQL, timeouts, remote
GeoServer errors).

Every business error carries a machine-readable ErrorCode so callers can
render targeted messages or make their own retry decisions. Nothing in
this package retries automatically.
"""

from typing import Any, Dict, Optional

from core.errors import ErrorCode, is_retryable


class ContractViolationError(TypeError):
    """
    Raised when component contracts are violated (programming bugs).

    These indicate:
    - Wrong types passed to functions
    - Unvalidated SQL handed to the executor or publisher
    - Interface contract violations

    These should NEVER be caught and handled - they indicate bugs
    that need to be fixed in the code.
    """
    error_code: ErrorCode = ErrorCode.UNEXPECTED_ERROR


class UnvalidatedStatementError(ContractViolationError):
    """
    SQL reached the executor without an ACCEPT/REWRITE verdict.

    Examples:
        - Bare string passed instead of a ValidatedStatement
        - Verdict was REJECT
        - Verdict belongs to a different SQL text
    """
    error_code = ErrorCode.UNVALIDATED_STATEMENT


class BusinessLogicError(Exception):
    """
    Base class for expected runtime business logic failures.

    These are normal failures that occur during system operation
    and should be handled gracefully without crashing.

    Subclasses represent specific categories of business failures.
    """
    default_code: ErrorCode = ErrorCode.UNEXPECTED_ERROR

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    @property
    def retryable(self) -> bool:
        """Whether the caller may reasonably retry (the core never does)."""
        return is_retryable(self.error_code)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for API responses and logs."""
        return {
            "error": self.error_code.value,
            "error_type": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
            **self.details,
        }


class ValidationError(BusinessLogicError):
    """
    Business validation failed.

    Note: This is different from ContractViolationError.
    This is for business rule validation, not type contracts.
    """
    default_code = ErrorCode.VALIDATION_ERROR


class MalformedQueryError(ValidationError):
    """
    Structural problem in a Query Definition, found before any SQL is emitted.

    Examples:
        - Aggregated column mixed with a column that is neither aggregated nor grouped
        - Empty IN list
        - BETWEEN without exactly two values
        - Identifier that is not a plain SQL name
    """
    default_code = ErrorCode.MALFORMED_QUERY


class SQLRejectedError(ValidationError):
    """
    The Safety Validator rejected a SQL text.

    Carries the full verdict; error_code is the first rejection reason.
    """

    def __init__(self, verdict):
        reasons = list(verdict.rejection_reasons)
        code = reasons[0].error_code if reasons else ErrorCode.VALIDATION_ERROR
        message = "; ".join(verdict.messages) or "SQL rejected by safety validator"
        super().__init__(message, error_code=code, details={"reasons": [r.value for r in reasons]})
        self.verdict = verdict


class DatabaseError(BusinessLogicError):
    """
    Database operation failures.

    Examples:
        - Connection lost
        - Query timeout
        - Statement error raised by PostgreSQL
    """
    default_code = ErrorCode.QUERY_FAILED


class DatabaseConnectionError(DatabaseError):
    """No connection could be obtained or the connection dropped."""
    default_code = ErrorCode.CONNECTION_ERROR


class QueryTimeoutError(DatabaseError):
    """Statement exceeded its timeout and was cancelled server-side."""
    default_code = ErrorCode.TIMED_OUT


class QueryCancelledError(DatabaseError):
    """Statement was cancelled through the caller's cancellation token."""
    default_code = ErrorCode.QUERY_CANCELLED


class QueryExecutionError(DatabaseError):
    """PostgreSQL raised an error while running a validated statement."""
    default_code = ErrorCode.QUERY_FAILED


class InferenceFailedError(BusinessLogicError):
    """
    No single unambiguous geometry column could be determined.

    Blocks publishing only. Callers supply geometry column, type and SRID
    explicitly to proceed.
    """
    default_code = ErrorCode.INFERENCE_FAILED

    def __init__(self, message: str, candidates: Optional[list] = None):
        super().__init__(message, details={"candidates": list(candidates or [])})
        self.candidates = list(candidates or [])


class PublishError(BusinessLogicError):
    """
    GeoServer rejected or failed a SQL View operation.

    The remote message is kept verbatim; the core cannot repair remote state.
    """
    default_code = ErrorCode.PUBLISH_ERROR

    def __init__(self, message: str, status_code: Optional[int] = None,
                 remote_message: Optional[str] = None, operation: Optional[str] = None):
        super().__init__(message, details={
            "status_code": status_code,
            "remote_message": remote_message,
            "operation": operation,
        })
        self.status_code = status_code
        self.remote_message = remote_message
        self.operation = operation


class ResourceNotFoundError(BusinessLogicError):
    """
    Requested resource does not exist.

    Examples:
        - Saved query name unknown
        - Published layer not found on GeoServer
    """
    default_code = ErrorCode.RESOURCE_NOT_FOUND


class ProviderError(BusinessLogicError):
    """Natural-language SQL provider failed or returned nothing usable."""
    default_code = ErrorCode.PROVIDER_ERROR


class ConfigurationError(Exception):
    """
    System configuration error.

    These are typically fatal and indicate misconfiguration
    that prevents the system from operating.

    Examples:
        - Missing required environment variables
        - Invalid connection settings
    """
    error_code: ErrorCode = ErrorCode.CONFIG_ERROR
