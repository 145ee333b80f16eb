"""Domain Events related to batch execution and API resilience.

Examples include events for when operations are dispatched, complete, are
skipped, or when calls are deferred or retried because of rate limits.
"""

from dataclasses import dataclass, field
import time
from typing import Callable, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


EventListener = Callable[[DomainEvent], None]

# --- Scheduler Events ---

@dataclass
class OperationDispatched(DomainEvent):
    """Event triggered when an operation is handed to a worker."""
    operation_id: str
    operation_type: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class OperationSucceeded(DomainEvent):
    """Event triggered when an operation completes successfully."""
    operation_id: str
    latency_ms: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class OperationFailed(DomainEvent):
    """Event triggered when an operation fails definitively."""
    operation_id: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class OperationSkipped(DomainEvent):
    """Event triggered when an operation is skipped without running."""
    operation_id: str
    reason: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class OperationPlanned(DomainEvent):
    """Event triggered for every operation walked during a dry run."""
    operation_id: str
    operation_type: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class BatchHalted(DomainEvent):
    """Event triggered when dispatch stops early (fail-fast or abort)."""
    reason: str
    timestamp: float = field(default_factory=time.time)

# --- Resilience Events ---

@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when an API call is deferred due to rate limiting."""
    endpoint: str
    wait_time_seconds: float
    operation_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a throttled API call is scheduled for retry."""
    endpoint: str
    attempt_number: int
    delay_seconds: float
    operation_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


def describe_event(event: DomainEvent) -> str:
    """Returns a short human-readable line for a domain event."""
    if isinstance(event, OperationDispatched):
        return f"dispatched {event.operation_id} ({event.operation_type})"
    if isinstance(event, OperationSucceeded):
        latency = f" in {event.latency_ms:.0f}ms" if event.latency_ms is not None else ""
        return f"succeeded {event.operation_id}{latency}"
    if isinstance(event, OperationFailed):
        return f"failed {event.operation_id}: {event.error_type}: {event.error_message}"
    if isinstance(event, OperationSkipped):
        return f"skipped {event.operation_id}: {event.reason}"
    if isinstance(event, OperationPlanned):
        return f"planned {event.operation_id} ({event.operation_type})"
    if isinstance(event, BatchHalted):
        return f"halted: {event.reason}"
    if isinstance(event, ApiCallDeferred):
        return f"rate limit: waiting {event.wait_time_seconds:.2f}s before {event.endpoint}"
    if isinstance(event, RetryScheduled):
        return f"throttled: retry #{event.attempt_number} of {event.endpoint} in {event.delay_seconds:.2f}s"
    return repr(event)
