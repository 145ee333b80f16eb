"""Execution Scheduler: runs a BatchGraph in dependency order.

A single coordinator owns the per-batch status table and is the only writer
of state transitions:

    pending -> ready -> running -> success | failed
    pending | ready -> skipped

A fixed pool of worker tasks (size = concurrency) pulls dispatched
operations from a shared work queue, resolves references, calls the remote
client through the retry service and posts a completion message back. The
coordinator never hands out more operations than there are workers, so at
most `concurrency` remote calls are in flight.

Failure handling:
    - dependents of a failed or skipped operation are skipped transitively,
      whatever `continue_on_error` says
    - with `continue_on_error=False` the first failure stops further
      dispatch and skips every pending/ready operation; calls already in
      flight finish on their own merits
    - an explicit cancellation stops dispatch and cancels in-flight calls
    - the per-operation timeout bounds each client attempt; throttle
      backoff and token waits are not counted against it
"""

import asyncio
import heapq
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from trlo.core.batch.parser import BatchGraph
from trlo.core.batch.resolver import ReferenceResolver, placeholder_for
from trlo.domain.errors import (
    APIError, InternalSchedulerError, OperationCancelledError, OperationError,
    SkippedOperation,
)
from trlo.domain.events.batch_events import (
    BatchHalted, DomainEvent, EventListener, OperationDispatched, OperationFailed,
    OperationPlanned, OperationSkipped, OperationSucceeded,
)
from trlo.domain.interfaces.board_api import BoardApiClient
from trlo.domain.models.batch import (
    ErrorDescriptor, ExecutionResult, OperationStatus, Reference,
)
from trlo.domain.models.common import FieldPath
from trlo.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

ResultCallback = Callable[[ExecutionResult], None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Completion:
    """Message a worker posts to the coordinator when an operation finishes."""
    index: int
    status: OperationStatus
    response: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    resolved_params: Optional[Dict[str, Any]] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class _CancelRequested:
    """Wake-up message posted when the batch cancellation signal fires."""


class _BatchRun:
    """Per-batch status table. Mutated only by the coordinator."""

    def __init__(self, graph: BatchGraph, on_result: Optional[ResultCallback],
                 emit: Callable[[DomainEvent], None]):
        self.graph = graph
        self.status: List[OperationStatus] = [OperationStatus.PENDING] * len(graph.nodes)
        self.results: Dict[str, ExecutionResult] = {}
        self.ready: List[int] = []  # heap of declaration indexes
        self.halted = False
        self.cancelled = False
        self._on_result = on_result
        self._emit = emit

    def seed(self) -> None:
        for node in self.graph.nodes:
            if not node.dependencies:
                self.status[node.index] = OperationStatus.READY
                heapq.heappush(self.ready, node.index)

    def all_terminal(self) -> bool:
        return all(s.is_terminal for s in self.status)

    def indexes_in(self, *states: OperationStatus) -> List[int]:
        return [i for i, s in enumerate(self.status) if s in states]

    def mark_running(self, index: int) -> None:
        if self.status[index] is not OperationStatus.READY:
            raise InternalSchedulerError(
                f"cannot dispatch '{self._id(index)}' from state {self.status[index].value}"
            )
        self.status[index] = OperationStatus.RUNNING

    def record(self, index: int, result: ExecutionResult) -> None:
        """Writes the single terminal result of an operation."""
        if self.status[index].is_terminal:
            raise InternalSchedulerError(f"result for '{self._id(index)}' written twice")
        if not result.status.is_terminal:
            raise InternalSchedulerError(f"non-terminal result for '{self._id(index)}'")
        self.status[index] = result.status
        self.results[result.operation_id] = result
        if self._on_result is not None:
            self._on_result(result)

    def complete(self, completion: _Completion) -> None:
        index = completion.index
        if self.status[index] is not OperationStatus.RUNNING:
            raise InternalSchedulerError(
                f"completion for '{self._id(index)}' which is {self.status[index].value}, not running"
            )
        op = self.graph.nodes[index].operation
        error = ErrorDescriptor.from_exception(completion.error) if completion.error is not None else None
        self.record(index, ExecutionResult(
            operation_id=op.id,
            operation_type=op.type,
            status=completion.status,
            response=completion.response,
            error=error,
            resolved_params=completion.resolved_params,
            dispatched_at=completion.started_at,
            completed_at=completion.finished_at,
        ))
        if completion.status is OperationStatus.SUCCESS:
            latency = None
            if completion.started_at and completion.finished_at:
                latency = (completion.finished_at - completion.started_at).total_seconds() * 1000
            self._emit(OperationSucceeded(operation_id=op.id, latency_ms=latency))
            self.release_dependents(index)
        else:
            self._emit(OperationFailed(operation_id=op.id, error_type=error.kind if error else "Error",
                                       error_message=error.message if error else ""))
            self.cascade_skip(index)

    def release_dependents(self, index: int) -> None:
        """Marks dependents whose dependencies all succeeded as ready."""
        for child in self.graph.nodes[index].dependents:
            if self.status[child] is not OperationStatus.PENDING:
                continue
            deps = self.graph.nodes[child].dependencies
            if all(self.status[d] is OperationStatus.SUCCESS for d in deps):
                if self.halted:
                    self.skip(child, "batch halted before dispatch")
                else:
                    self.status[child] = OperationStatus.READY
                    heapq.heappush(self.ready, child)

    def cascade_skip(self, index: int) -> None:
        """Skips every pending transitive dependent of a failed or skipped operation."""
        stack = [index]
        while stack:
            current = stack.pop()
            cause = self._id(current)
            verb = "failed" if self.status[current] is OperationStatus.FAILED else "was skipped"
            for child in self.graph.nodes[current].dependents:
                if self.status[child] in (OperationStatus.PENDING, OperationStatus.READY):
                    self.skip(child, f"dependency '{cause}' {verb}", cascade=False)
                    stack.append(child)

    def skip(self, index: int, reason: str, cascade: bool = True) -> None:
        op = self.graph.nodes[index].operation
        self.record(index, ExecutionResult(
            operation_id=op.id,
            operation_type=op.type,
            status=OperationStatus.SKIPPED,
            error=ErrorDescriptor.from_exception(SkippedOperation(reason, operation_id=op.id)),
        ))
        self._emit(OperationSkipped(operation_id=op.id, reason=reason))
        if cascade:
            self.cascade_skip(index)

    def halt(self, reason: str) -> None:
        """Stops dispatch and skips every pending or ready operation."""
        if self.halted:
            return
        self.halted = True
        self._emit(BatchHalted(reason=reason))
        self.ready.clear()
        for index in self.indexes_in(OperationStatus.PENDING, OperationStatus.READY):
            if not self.status[index].is_terminal:
                self.skip(index, f"not dispatched: {reason}", cascade=False)

    def abort_non_terminal(self, reason: str) -> None:
        """Fatal path: every non-terminal operation, running ones included, ends skipped."""
        self.halted = True
        self.ready.clear()
        for index, state in enumerate(self.status):
            if not state.is_terminal:
                self.skip(index, reason, cascade=False)

    def _id(self, index: int) -> str:
        return self.graph.nodes[index].operation.id


class BatchScheduler:
    """Walks a BatchGraph, dispatching ready operations to a bounded worker pool."""

    def __init__(
        self,
        client: Optional[BoardApiClient],
        api_retry_service: Optional[ApiRetryService],
        resolver: Optional[ReferenceResolver] = None,
        event_listener: Optional[EventListener] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initializes the scheduler.

        Args:
            client: Remote API client. May be None for dry runs only.
            api_retry_service: Rate limiting + throttle retry wrapper for client calls.
            resolver: Reference resolver (a default one is created if omitted).
            event_listener: Optional callback receiving scheduler events.
            clock: Source of dispatch/completion timestamps.
        """
        self.client = client
        self.api_retry_service = api_retry_service
        self.resolver = resolver or ReferenceResolver()
        self.event_listener = event_listener
        self._clock = clock
        self.cancelled = False  # whether the last execute() was cancelled

    def _emit(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        if self.event_listener is not None:
            self.event_listener(event)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        graph: BatchGraph,
        on_result: Optional[ResultCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, ExecutionResult]:
        """Executes every operation of the graph until all are terminal.

        Args:
            graph: The validated batch graph.
            on_result: Called once per operation as its result is written.
            cancel_event: Batch-level abort signal.

        Returns:
            Results keyed by operation id, in completion order.

        Raises:
            InternalSchedulerError: On invariant violation, after every
                non-terminal operation has been marked skipped.
        """
        if self.client is None or self.api_retry_service is None:
            raise InternalSchedulerError("execute() needs a client and a retry service; use plan() for dry runs")

        run = _BatchRun(graph, on_result, self._emit)
        self.cancelled = False
        if not graph.nodes:
            return run.results

        concurrency = max(1, graph.options.concurrency)
        work_queue: "asyncio.Queue[int]" = asyncio.Queue()
        completions: "asyncio.Queue[Any]" = asyncio.Queue()
        results_view = MappingProxyType(run.results)
        tasks = [
            asyncio.create_task(self._worker(graph, results_view, work_queue, completions))
            for _ in range(min(concurrency, len(graph.nodes)))
        ]
        if cancel_event is not None:
            tasks.append(asyncio.create_task(self._watch_cancel(cancel_event, completions)))

        logger.info(f"Executing batch: {len(graph.nodes)} operation(s), concurrency={concurrency}, "
                    f"continue_on_error={graph.options.continue_on_error}")
        try:
            await self._coordinate(run, work_queue, completions, concurrency, cancel_event)
        except InternalSchedulerError as e:
            logger.error(f"Internal scheduler error: {e}", exc_info=True)
            run.abort_non_terminal(f"aborted: {e}")
            raise
        finally:
            self.cancelled = run.cancelled
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return run.results

    async def _coordinate(
        self,
        run: _BatchRun,
        work_queue: "asyncio.Queue[int]",
        completions: "asyncio.Queue[Any]",
        concurrency: int,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        continue_on_error = run.graph.options.continue_on_error
        in_flight = 0
        run.seed()

        while not run.all_terminal():
            if cancel_event is not None and cancel_event.is_set() and not run.cancelled:
                self._cancel(run)
                break

            while run.ready and not run.halted and in_flight < concurrency:
                index = heapq.heappop(run.ready)
                run.mark_running(index)
                op = run.graph.nodes[index].operation
                self._emit(OperationDispatched(operation_id=op.id, operation_type=op.type))
                work_queue.put_nowait(index)
                in_flight += 1

            if run.all_terminal():
                break
            if in_flight == 0:
                raise InternalSchedulerError("no operation is running or ready but the batch is incomplete")

            message = await completions.get()
            if isinstance(message, _CancelRequested):
                continue

            in_flight -= 1
            run.complete(message)
            if message.status is OperationStatus.FAILED and not continue_on_error:
                failed_id = run.graph.nodes[message.index].operation.id
                run.halt(f"operation '{failed_id}' failed and continue-on-error is off")

    def _cancel(self, run: _BatchRun) -> None:
        run.cancelled = True
        run.halt("batch cancelled")
        now = self._clock()
        for index in run.indexes_in(OperationStatus.RUNNING):
            op = run.graph.nodes[index].operation
            run.complete(_Completion(
                index=index,
                status=OperationStatus.FAILED,
                error=OperationCancelledError("in-flight call cancelled", operation_id=op.id),
                finished_at=now,
            ))

    @staticmethod
    async def _watch_cancel(cancel_event: asyncio.Event, completions: "asyncio.Queue[Any]") -> None:
        await cancel_event.wait()
        completions.put_nowait(_CancelRequested())

    async def _worker(
        self,
        graph: BatchGraph,
        results: Mapping[str, ExecutionResult],
        work_queue: "asyncio.Queue[int]",
        completions: "asyncio.Queue[Any]",
    ) -> None:
        timeout = graph.options.timeout_per_operation
        while True:
            index = await work_queue.get()
            op = graph.nodes[index].operation
            started_at = self._clock()
            resolved: Optional[Dict[str, Any]] = None
            try:
                resolved = self.resolver.resolve(op, results)
                response = await self._call(op.id, op.type, resolved, timeout)
                completion = _Completion(index, OperationStatus.SUCCESS, response=response)
            except OperationError as e:
                logger.warning(f"Operation {op.id} failed: {e.kind}: {e}")
                completion = _Completion(index, OperationStatus.FAILED, error=e)
            except Exception as e:
                logger.error(f"Unexpected error executing {op.id}: {e}", exc_info=True)
                completion = _Completion(index, OperationStatus.FAILED,
                                         error=APIError(f"unexpected client error: {e}", operation_id=op.id))
            completion.resolved_params = resolved
            completion.started_at = started_at
            completion.finished_at = self._clock()
            completions.put_nowait(completion)

    async def _call(self, op_id: str, op_type: str, params: Dict[str, Any],
                    timeout: Optional[float]) -> Dict[str, Any]:
        payload = await self.api_retry_service.execute_with_retry(
            self.client.execute, op_type, params, endpoint_name=op_type, operation_id=op_id,
            attempt_timeout=timeout,
        )
        if isinstance(payload, Mapping):
            return dict(payload)
        return {"value": payload}

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def plan(self, graph: BatchGraph, on_result: Optional[ResultCallback] = None) -> Dict[str, ExecutionResult]:
        """Simulates the batch without calling the remote client.

        Operations are walked in deterministic topological order, references
        are resolved against echoed payloads (placeholders where a field is
        unknown) and every operation is reported as `planned`.
        """
        run = _BatchRun(graph, on_result, self._emit)
        for index in graph.topological_order():
            if run.status[index].is_terminal:
                continue
            op = graph.nodes[index].operation
            run.status[index] = OperationStatus.RUNNING
            try:
                resolved = self.resolver.resolve(op, run.results, dry_run=True)
            except OperationError as e:
                run.complete(_Completion(index, OperationStatus.FAILED, error=e))
                continue
            response = dict(resolved)
            response.setdefault("id", resolved.get("target", placeholder_for(
                Reference(operation_id=op.id, field_path=FieldPath(("id",)))
            )))
            self._emit(OperationPlanned(operation_id=op.id, operation_type=op.type))
            run.record(index, ExecutionResult(
                operation_id=op.id,
                operation_type=op.type,
                status=OperationStatus.PLANNED,
                response=response,
                resolved_params=dict(resolved),
            ))
        logger.info(f"Planned {len(run.results)} operation(s) (dry run)")
        return run.results
