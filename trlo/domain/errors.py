"""Error taxonomy of the batch engine.

Structural errors (ValidationError, CycleError) abort a batch before any
remote call. Operation errors are recorded against a single operation and
drive cascading skip of its dependents. InternalSchedulerError is fatal.
Every error exposes a stable `kind` used in batch reports.
"""

from typing import Any, Dict, Iterable, Optional

from trlo.domain.models.common import ErrorDetails


class BatchError(Exception):
    """Base class for all batch engine errors."""

    kind = "BatchError"

    def __init__(self, message: str, operation_id: Optional[str] = None):
        self.message = message
        self.operation_id = operation_id
        super().__init__(message)

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        details = {k: v for k, v in self.details.items() if v is not None}
        if details:
            data["details"] = details
        return data


# --- Structural errors (batch-level) ---

class ValidationError(BatchError):
    """Unknown operation type, missing/invalid field or malformed batch document."""

    kind = "ValidationError"

    def __init__(self, message: str, operation_id: Optional[str] = None, field: Optional[str] = None):
        self.field = field
        prefix = f"operation '{operation_id}': " if operation_id else ""
        super().__init__(f"{prefix}{message}", operation_id=operation_id)

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails(field=self.field)


class CycleError(BatchError):
    """The dependency relation contains a cycle."""

    kind = "CycleError"

    def __init__(self, members: Iterable[str]):
        self.members = list(members)
        path = " -> ".join(self.members + self.members[:1])
        super().__init__(f"dependency cycle detected: {path}")

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails(members=list(self.members))


# --- Operation errors (recorded per operation) ---

class OperationError(BatchError):
    """An error recorded against a single operation."""

    kind = "OperationError"


class UnresolvedReferenceError(OperationError):
    """A Reference points at a non-successful operation or a missing field."""

    kind = "UnresolvedReferenceError"

    def __init__(self, message: str, operation_id: Optional[str] = None, reference: Optional[str] = None):
        self.reference = reference
        super().__init__(message, operation_id=operation_id)

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails(field=self.reference)


class APIError(OperationError):
    """The remote service rejected the call (not found, permission denied, ...)."""

    kind = "APIError"

    def __init__(self, message: str, status_code: Optional[int] = None, operation_id: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, operation_id=operation_id)

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails(status_code=self.status_code)


class ThrottledError(APIError):
    """Signal raised by a client when the remote service throttles a call.

    Never recorded against an operation: the retry service either retries or
    converts it into RateLimitExceededError.
    """

    kind = "ThrottledError"

    def __init__(self, message: str = "rate limited by remote service", retry_after: Optional[float] = None,
                 status_code: Optional[int] = 429):
        self.retry_after = retry_after
        super().__init__(message, status_code=status_code)


class RateLimitExceededError(OperationError):
    """Throttling persisted past the retry budget."""

    kind = "RateLimitExceededError"

    def __init__(self, attempts: int, operation_id: Optional[str] = None, retry_after: Optional[float] = None):
        self.attempts = attempts
        self.retry_after = retry_after
        super().__init__(f"still rate limited after {attempts} attempt(s)", operation_id=operation_id)

    @property
    def details(self) -> ErrorDetails:
        return ErrorDetails(attempts=self.attempts, retry_after=self.retry_after)


class OperationTimeoutError(OperationError):
    """The operation did not complete within its deadline."""

    kind = "TimeoutError"

    def __init__(self, timeout: float, operation_id: Optional[str] = None):
        self.timeout = timeout
        super().__init__(f"operation did not complete within {timeout:g}s", operation_id=operation_id)


class OperationCancelledError(OperationError):
    """The in-flight call was cancelled by an explicit batch abort."""

    kind = "CancelledError"


class SkippedOperation(OperationError):
    """Reason attached to an operation that never ran."""

    kind = "Skipped"


# --- Fatal / configuration errors ---

class InternalSchedulerError(BatchError):
    """Scheduler invariant violation. Should never occur in correct operation."""

    kind = "InternalSchedulerError"


class MissingCredentialsError(BatchError):
    """No Trello API key/token available for a batch that needs the remote service."""

    kind = "MissingCredentialsError"
