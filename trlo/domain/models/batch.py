"""Domain models of the batch engine.

Operations and requests are immutable once parsed. Results are written
exactly once per operation by the scheduler and assembled into a report in
declaration order by the aggregator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .common import FieldPath, OperationId, OperationType


class OperationStatus(str, Enum):
    """Lifecycle state of a single operation."""
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    PLANNED = "planned"  # dry-run pseudo-status

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    OperationStatus.SUCCESS,
    OperationStatus.FAILED,
    OperationStatus.SKIPPED,
    OperationStatus.PLANNED,
})


class BatchStatus(str, Enum):
    """Overall outcome of a batch."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    ABORTED = "aborted"
    PLANNED = "planned"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Reference:
    """Placeholder for the value at `field_path` in the result of `operation_id`."""
    operation_id: OperationId
    field_path: FieldPath

    def __str__(self) -> str:
        return "${" + ".".join((self.operation_id,) + tuple(self.field_path)) + "}"


@dataclass(frozen=True)
class ReferenceTemplate:
    """A string with one or more References embedded in literal text."""
    parts: Tuple[Union[str, Reference], ...]

    @property
    def references(self) -> Tuple[Reference, ...]:
        return tuple(p for p in self.parts if isinstance(p, Reference))

    def __str__(self) -> str:
        return "".join(str(p) for p in self.parts)


@dataclass(frozen=True)
class Operation:
    """One declared API action."""
    id: OperationId
    type: OperationType
    params: Mapping[str, Any]
    depends_on: Tuple[OperationId, ...] = ()
    position: int = 0  # index in the original declaration order


@dataclass(frozen=True)
class BatchOptions:
    """Batch-level execution options."""
    concurrency: int = 4
    continue_on_error: bool = False
    dry_run: bool = False
    timeout_per_operation: Optional[float] = 30.0


@dataclass(frozen=True)
class BatchRequest:
    """Ordered operations plus the options they run under."""
    operations: Tuple[Operation, ...]
    options: BatchOptions = field(default_factory=BatchOptions)


@dataclass(frozen=True)
class ErrorDescriptor:
    """Serializable description of why an operation failed or was skipped."""
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorDescriptor":
        to_dict = getattr(exc, "to_dict", None)
        if callable(to_dict):
            data = to_dict()
            return cls(kind=data["kind"], message=data["message"], details=data.get("details", {}))
        return cls(kind=type(exc).__name__, message=str(exc) or type(exc).__name__)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            data["details"] = dict(self.details)
        return data


@dataclass(frozen=True)
class ExecutionResult:
    """Terminal outcome of one operation."""
    operation_id: OperationId
    operation_type: OperationType
    status: OperationStatus
    response: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDescriptor] = None
    resolved_params: Optional[Dict[str, Any]] = None
    dispatched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.dispatched_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.dispatched_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.operation_id,
            "type": self.operation_type,
            "status": self.status.value,
        }
        if self.resolved_params is not None:
            data["params"] = self.resolved_params
        if self.response is not None:
            data["response"] = self.response
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.dispatched_at is not None:
            data["dispatched_at"] = self.dispatched_at.isoformat()
        if self.completed_at is not None:
            data["completed_at"] = self.completed_at.isoformat()
        return data


EXIT_CODES = {
    BatchStatus.SUCCESS: 0,
    BatchStatus.PLANNED: 0,
    BatchStatus.PARTIAL: 1,
    BatchStatus.FAILED: 1,
    BatchStatus.CANCELLED: 1,
    BatchStatus.ABORTED: 2,
}


@dataclass(frozen=True)
class BatchReport:
    """Declaration-ordered results plus summary of a batch run."""
    results: Tuple[ExecutionResult, ...]
    status: BatchStatus
    dry_run: bool = False
    error: Optional[ErrorDescriptor] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def _count(self, status: OperationStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def succeeded(self) -> int:
        return self._count(OperationStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(OperationStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(OperationStatus.SKIPPED)

    @property
    def planned(self) -> int:
        return self._count(OperationStatus.PLANNED)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.status]

    def result_for(self, operation_id: str) -> ExecutionResult:
        for result in self.results:
            if result.operation_id == operation_id:
                return result
        raise KeyError(operation_id)

    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "planned": self.planned,
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "status": self.status.value,
            "dry_run": self.dry_run,
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.started_at is not None:
            data["started_at"] = self.started_at.isoformat()
        if self.finished_at is not None:
            data["finished_at"] = self.finished_at.isoformat()
        return data
