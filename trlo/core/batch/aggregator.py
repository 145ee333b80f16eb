"""Result Aggregator: collects per-operation outcomes into a BatchReport."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from trlo.core.batch.parser import BatchGraph
from trlo.domain.errors import InternalSchedulerError, SkippedOperation
from trlo.domain.models.batch import (
    BatchReport, BatchStatus, ErrorDescriptor, ExecutionResult, OperationStatus,
)
from trlo.domain.models.common import OperationId, OperationType

logger = logging.getLogger(__name__)


class ResultAggregator:
    """Stores results as they arrive and builds the declaration-ordered report."""

    def __init__(self, graph: BatchGraph):
        self.graph = graph
        self._results: Dict[str, ExecutionResult] = {}
        self.started_at = datetime.now(timezone.utc)

    def record(self, result: ExecutionResult) -> None:
        """Stores the terminal result of one operation.

        Raises:
            InternalSchedulerError: If the operation already has a result
                or is not part of the batch.
        """
        if result.operation_id not in self.graph.index_by_id:
            raise InternalSchedulerError(f"result for unknown operation '{result.operation_id}'")
        if result.operation_id in self._results:
            raise InternalSchedulerError(f"duplicate result for operation '{result.operation_id}'")
        self._results[result.operation_id] = result
        logger.debug(f"Recorded {result.operation_id}: {result.status.value}")

    def __len__(self) -> int:
        return len(self._results)

    def build_report(self, error: Optional[BaseException] = None, cancelled: bool = False) -> BatchReport:
        """Assembles the report in declaration order.

        Operations without a recorded result (only possible after a fatal
        scheduler error) are listed as skipped.
        """
        ordered: List[ExecutionResult] = []
        for node in self.graph.nodes:
            op = node.operation
            result = self._results.get(op.id)
            if result is None:
                result = _skipped(op.id, op.type, "no result was recorded")
            ordered.append(result)

        options = self.graph.options
        if error is not None:
            status = BatchStatus.FAILED
        elif cancelled:
            status = BatchStatus.CANCELLED
        else:
            status = _overall_status(ordered, options.continue_on_error, options.dry_run)

        report = BatchReport(
            results=tuple(ordered),
            status=status,
            dry_run=options.dry_run,
            error=ErrorDescriptor.from_exception(error) if error is not None else None,
            started_at=self.started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(f"Batch finished: {status.value} {report.summary()}")
        return report

    @staticmethod
    def aborted(error: BaseException, descriptors: Sequence[Any] = (), dry_run: bool = False) -> BatchReport:
        """Report for a batch rejected before any call: every declared operation is skipped."""
        reason = f"batch aborted: {error}"
        results = []
        for position, descriptor in enumerate(descriptors or ()):
            op_id, op_type = _describe(descriptor, position)
            results.append(_skipped(op_id, op_type, reason))
        now = datetime.now(timezone.utc)
        return BatchReport(
            results=tuple(results),
            status=BatchStatus.ABORTED,
            dry_run=dry_run,
            error=ErrorDescriptor.from_exception(error),
            started_at=now,
            finished_at=now,
        )


def _overall_status(results: Sequence[ExecutionResult], continue_on_error: bool, dry_run: bool) -> BatchStatus:
    if dry_run:
        if any(r.status is not OperationStatus.PLANNED for r in results):
            return BatchStatus.FAILED
        return BatchStatus.PLANNED
    succeeded = sum(1 for r in results if r.status is OperationStatus.SUCCESS)
    if succeeded == len(results):
        return BatchStatus.SUCCESS
    if continue_on_error and succeeded > 0:
        return BatchStatus.PARTIAL
    return BatchStatus.FAILED


def _skipped(op_id: str, op_type: str, reason: str) -> ExecutionResult:
    return ExecutionResult(
        operation_id=OperationId(op_id),
        operation_type=OperationType(op_type),
        status=OperationStatus.SKIPPED,
        error=ErrorDescriptor.from_exception(SkippedOperation(reason, operation_id=op_id)),
    )


def _describe(descriptor: Any, position: int):
    """Best-effort id/type of a descriptor that may not have validated."""
    op_id, op_type = f"#{position + 1}", "unknown"
    if isinstance(descriptor, dict):
        if isinstance(descriptor.get("id"), str) and descriptor["id"].strip():
            op_id = descriptor["id"].strip()
        if isinstance(descriptor.get("type"), str) and descriptor["type"].strip():
            op_type = descriptor["type"].strip()
    return op_id, op_type
