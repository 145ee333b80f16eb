"""
Core service for running batch documents.

Coordinates loading options, parsing the operation graph, scheduling the
remote calls (or planning them in a dry run) and aggregating the results
into a BatchReport.
"""

import asyncio
import logging
from typing import Any, Mapping, Optional, Sequence

from trlo.core.batch.aggregator import ResultAggregator
from trlo.core.batch.loader import MAX_CONCURRENCY, build_options, extract_operations
from trlo.core.batch.parser import BatchGraph, OperationParser
from trlo.core.batch.resolver import ReferenceResolver
from trlo.core.batch.scheduler import BatchScheduler
from trlo.domain.errors import (
    CycleError, InternalSchedulerError, MissingCredentialsError, ValidationError,
)
from trlo.domain.events.batch_events import EventListener
from trlo.domain.interfaces.board_api import BoardApiClient
from trlo.domain.models.batch import BatchOptions, BatchReport
from trlo.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)


class BatchService:
    """Orchestrates the batch functionality."""

    def __init__(
        self,
        client: Optional[BoardApiClient],
        api_retry_service: Optional[ApiRetryService],
        parser: Optional[OperationParser] = None,
        resolver: Optional[ReferenceResolver] = None,
        defaults: Optional[BatchOptions] = None,
        event_listener: Optional[EventListener] = None,
        max_concurrency: int = MAX_CONCURRENCY,
    ):
        """Initializes the BatchService with its dependencies.

        Args:
            client: Remote API client, or None when no credentials are
                configured (only dry runs are possible then).
            api_retry_service: Rate limiting + retry wrapper shared by all calls.
            parser: Operation parser.
            resolver: Reference resolver.
            defaults: Batch options from configuration.
            event_listener: Optional callback receiving scheduler and retry events.
            max_concurrency: Upper bound accepted for the concurrency option.
        """
        self.client = client
        self.api_retry_service = api_retry_service
        self.parser = parser or OperationParser()
        self.resolver = resolver or ReferenceResolver()
        self.defaults = defaults or BatchOptions()
        self.event_listener = event_listener
        self.max_concurrency = max_concurrency
        logger.info(
            f"BatchService initialized with client: "
            f"{client.__class__.__name__ if client is not None else 'none (dry run only)'}"
        )

    def prepare(self, document: Any, overrides: Optional[Mapping[str, Any]] = None) -> BatchGraph:
        """Validates a parsed batch document into a BatchGraph.

        Raises:
            ValidationError: On malformed documents, options or operations.
            CycleError: If the operations depend on each other in a cycle.
        """
        descriptors = extract_operations(document)
        options = build_options(document, overrides, self.defaults, self.max_concurrency)
        return self.parser.parse(descriptors, options)

    async def run_document(
        self,
        document: Any,
        overrides: Optional[Mapping[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Validates and runs a parsed batch document.

        A structurally invalid batch never reaches the remote service: it
        yields an `aborted` report listing every declared operation as skipped.

        Raises:
            MissingCredentialsError: If the batch needs the remote service and
                no client is configured.
        """
        try:
            graph = self.prepare(document, overrides)
        except (ValidationError, CycleError) as e:
            logger.error(f"Batch rejected: {e}")
            return ResultAggregator.aborted(e, _declared(document), dry_run=_wants_dry_run(overrides))
        return await self.run_graph(graph, cancel_event)

    async def run_graph(self, graph: BatchGraph, cancel_event: Optional[asyncio.Event] = None) -> BatchReport:
        """Executes (or plans) a validated graph and aggregates the report."""
        aggregator = ResultAggregator(graph)
        scheduler = BatchScheduler(
            self.client, self.api_retry_service, resolver=self.resolver, event_listener=self.event_listener,
        )

        if graph.options.dry_run:
            scheduler.plan(graph, on_result=aggregator.record)
            return aggregator.build_report()

        if self.client is None or self.api_retry_service is None:
            raise MissingCredentialsError(
                "Trello credentials are not configured. Set TRELLO_API_KEY and TRELLO_TOKEN "
                "(or pass --api-key/--token), or use --dry-run."
            )

        try:
            await scheduler.execute(graph, on_result=aggregator.record, cancel_event=cancel_event)
        except InternalSchedulerError as e:
            return aggregator.build_report(error=e)
        finally:
            await self.client.aclose()
        return aggregator.build_report(cancelled=scheduler.cancelled)


def _declared(document: Any) -> Sequence[Any]:
    try:
        return extract_operations(document)
    except ValidationError:
        return []


def _wants_dry_run(overrides: Optional[Mapping[str, Any]]) -> bool:
    return bool((overrides or {}).get("dry_run"))
