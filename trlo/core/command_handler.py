"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py), loads batch
documents, delegates the work to the BatchService and renders the outcome
through the UserInterface. Every handler returns the process exit code.
"""

import asyncio
import logging
import signal
from typing import Any, Mapping, Optional

from trlo.core.batch.loader import load_batch_file, load_batch_text
from trlo.core.batch.operation_types import OPERATION_TYPES
from trlo.core.services.batch_service import BatchService
from trlo.domain.errors import MissingCredentialsError, ValidationError
from trlo.domain.interfaces.user_interface import UserInterface
from trlo.domain.models.batch import EXIT_CODES, BatchReport, BatchStatus

logger = logging.getLogger(__name__)

EXIT_FAILURE = EXIT_CODES[BatchStatus.FAILED]
EXIT_INVALID = EXIT_CODES[BatchStatus.ABORTED]


class CommandHandler:
    """Handles incoming commands and delegates to the batch service."""

    def __init__(self, batch_service: BatchService, ui: UserInterface):
        self.batch_service = batch_service
        self.ui = ui

    async def handle_batch_file(
        self,
        path: str,
        overrides: Optional[Mapping[str, Any]] = None,
        output_format: str = "table",
        quiet: bool = False,
    ) -> int:
        """Handles the 'batch file' command."""
        logger.info(f"Handling 'batch file' command for: {path}")
        try:
            document = load_batch_file(path)
        except ValidationError as e:
            logger.error(f"Could not load batch file {path}: {e}")
            self.ui.display_error(str(e))
            return EXIT_INVALID
        return await self._run(document, overrides, output_format, quiet)

    async def handle_batch_stdin(
        self,
        text: str,
        overrides: Optional[Mapping[str, Any]] = None,
        output_format: str = "table",
        quiet: bool = False,
    ) -> int:
        """Handles the 'batch stdin' command."""
        logger.info(f"Handling 'batch stdin' command ({len(text)} bytes)")
        try:
            document = load_batch_text(text)
        except ValidationError as e:
            logger.error(f"Could not parse batch from stdin: {e}")
            self.ui.display_error(str(e))
            return EXIT_INVALID
        return await self._run(document, overrides, output_format, quiet)

    def handle_list_operations(self) -> int:
        """Handles the 'operations' command: lists registered operation types."""
        rows = [
            (spec.name, ", ".join(spec.required) + (" + fields to change" if spec.requires_changes else ""),
             spec.description)
            for spec in OPERATION_TYPES.values()
        ]
        self.ui.display_operation_types(rows)
        return 0

    async def _run(self, document: Any, overrides: Optional[Mapping[str, Any]],
                   output_format: str, quiet: bool) -> int:
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        installed = self._install_interrupt_handler(loop, cancel_event)
        try:
            report = await self.batch_service.run_document(document, overrides, cancel_event)
        except MissingCredentialsError as e:
            logger.error(f"Missing credentials: {e}")
            self.ui.display_error(str(e))
            return EXIT_FAILURE
        except Exception as e:
            logger.error(f"Batch command failed: {e}", exc_info=True)
            self.ui.display_error(f"Batch failed: {e}")
            return EXIT_FAILURE
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

        self._render(report, output_format, quiet)
        return report.exit_code

    def _render(self, report: BatchReport, output_format: str, quiet: bool) -> None:
        if report.status is BatchStatus.ABORTED and report.error is not None:
            self.ui.display_error(f"{report.error.kind}: {report.error.message}")
        elif report.status is BatchStatus.CANCELLED:
            self.ui.display_warning("Batch cancelled; completed results are kept below.")
        if quiet and output_format == "table":
            # Machine-readable output is always printed; only the table is suppressed.
            return
        self.ui.display_report(report, output_format)

    @staticmethod
    def _install_interrupt_handler(loop: asyncio.AbstractEventLoop, cancel_event: asyncio.Event) -> bool:
        """Routes Ctrl-C to the batch cancellation signal where the platform allows it."""
        try:
            loop.add_signal_handler(signal.SIGINT, cancel_event.set)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug("SIGINT handler not supported here; Ctrl-C will interrupt without a report")
            return False
        return True
