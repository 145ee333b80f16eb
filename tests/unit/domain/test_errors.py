from trlo.domain.errors import (
    APIError, CycleError, RateLimitExceededError, ThrottledError, ValidationError,
)
from trlo.domain.models.batch import (
    BatchReport, BatchStatus, ErrorDescriptor, ExecutionResult, OperationStatus,
)


def test_validation_error_names_operation_and_field():
    error = ValidationError("missing required parameter 'name'", operation_id="board", field="name")

    assert error.message == "operation 'board': missing required parameter 'name'"
    assert error.to_dict() == {
        "kind": "ValidationError",
        "message": "operation 'board': missing required parameter 'name'",
        "details": {"field": "name"},
    }


def test_cycle_error_closes_the_path():
    error = CycleError(["a", "b"])
    assert "a -> b -> a" in error.message
    assert error.to_dict()["details"] == {"members": ["a", "b"]}


def test_empty_details_are_omitted():
    assert "details" not in APIError("boom").to_dict()


def test_throttled_is_an_api_error():
    error = ThrottledError(retry_after=3)
    assert isinstance(error, APIError)
    assert error.status_code == 429


def test_descriptor_from_batch_error():
    descriptor = ErrorDescriptor.from_exception(RateLimitExceededError(attempts=6, operation_id="c"))

    assert descriptor.kind == "RateLimitExceededError"
    assert descriptor.details == {"attempts": 6}


def test_descriptor_from_foreign_exception():
    descriptor = ErrorDescriptor.from_exception(KeyError())
    assert descriptor.kind == "KeyError"
    assert descriptor.message == "KeyError"


def test_terminal_statuses():
    assert OperationStatus.SKIPPED.is_terminal
    assert OperationStatus.PLANNED.is_terminal
    assert not OperationStatus.RUNNING.is_terminal


def test_report_counts_and_exit_codes():
    report = BatchReport(
        results=(
            ExecutionResult("a", "create-board", OperationStatus.SUCCESS),
            ExecutionResult("b", "create-list", OperationStatus.FAILED),
            ExecutionResult("c", "create-card", OperationStatus.SKIPPED),
        ),
        status=BatchStatus.PARTIAL,
    )

    assert report.summary() == {"total": 3, "succeeded": 1, "failed": 1, "skipped": 1, "planned": 0}
    assert report.exit_code == 1
    assert BatchReport(results=(), status=BatchStatus.ABORTED).exit_code == 2
    assert BatchReport(results=(), status=BatchStatus.PLANNED).exit_code == 0
