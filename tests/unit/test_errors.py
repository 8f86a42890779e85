"""
Error code classification and exception hierarchy tests.
"""

import pytest

from core.errors import (
    ErrorClassification,
    ErrorCode,
    create_error_response,
    get_error_classification,
    get_http_status_code,
    is_retryable,
)
from core.models import ValidationReason, ValidationVerdict, VerdictOutcome
from exceptions import (
    BusinessLogicError,
    ContractViolationError,
    DatabaseError,
    MalformedQueryError,
    PublishError,
    QueryTimeoutError,
    SQLRejectedError,
    UnvalidatedStatementError,
    ValidationError,
)


class TestErrorClassification:
    def test_every_code_is_classified(self):
        for code in ErrorCode:
            assert isinstance(get_error_classification(code), ErrorClassification)

    @pytest.mark.parametrize("code", [
        ErrorCode.MALFORMED_QUERY,
        ErrorCode.WRITE_OPERATION_BLOCKED,
        ErrorCode.INJECTION_PATTERN_DETECTED,
        ErrorCode.SCHEMA_NOT_ALLOWED,
        ErrorCode.INFERENCE_FAILED,
    ])
    def test_rejections_are_not_retryable(self, code):
        assert not is_retryable(code)

    @pytest.mark.parametrize("code", [ErrorCode.TIMED_OUT, ErrorCode.CONNECTION_ERROR])
    def test_execution_failures_are_retryable(self, code):
        assert is_retryable(code)

    def test_http_status_codes(self):
        assert get_http_status_code(ErrorCode.SCHEMA_NOT_ALLOWED) == 403
        assert get_http_status_code(ErrorCode.MALFORMED_QUERY) == 400
        assert get_http_status_code(ErrorCode.TIMED_OUT) == 504
        assert get_http_status_code(ErrorCode.RESOURCE_NOT_FOUND) == 404
        assert get_http_status_code(ErrorCode.PUBLISH_ERROR) == 503

    def test_create_error_response(self):
        response = create_error_response(ErrorCode.TIMED_OUT, "too slow", timeout_seconds=30)
        assert response["success"] is False
        assert response["error"] == "TIMED_OUT"
        assert response["retryable"] is True
        assert response["timeout_seconds"] == 30


class TestExceptionHierarchy:
    def test_unvalidated_statement_is_contract_violation(self):
        assert issubclass(UnvalidatedStatementError, ContractViolationError)
        assert issubclass(ContractViolationError, TypeError)

    def test_malformed_query_is_business_validation(self):
        error = MalformedQueryError("bad")
        assert isinstance(error, ValidationError)
        assert isinstance(error, BusinessLogicError)
        assert error.error_code is ErrorCode.MALFORMED_QUERY

    def test_timeout_is_database_error(self):
        error = QueryTimeoutError("slow")
        assert isinstance(error, DatabaseError)
        assert error.retryable

    def test_sql_rejected_takes_first_rejection_code(self):
        verdict = ValidationVerdict(
            outcome=VerdictOutcome.REJECT,
            reasons=(ValidationReason.INJECTION_PATTERN_DETECTED, ValidationReason.WRITE_OPERATION_BLOCKED),
            messages=("stacked", "write"),
            sql="SELECT 1; DELETE FROM t",
        )
        error = SQLRejectedError(verdict)
        assert error.error_code is ErrorCode.INJECTION_PATTERN_DETECTED
        assert error.verdict is verdict
        assert error.details["reasons"] == ["InjectionPatternDetected", "WriteOperationBlocked"]

    def test_publish_error_keeps_remote_message(self):
        error = PublishError("failed", status_code=500, remote_message="Feature type already exists", operation="create")
        payload = error.to_dict()
        assert payload["remote_message"] == "Feature type already exists"
        assert payload["status_code"] == 500
        assert payload["error"] == "PUBLISH_ERROR"
