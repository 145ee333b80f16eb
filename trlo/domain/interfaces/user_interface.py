"""Interface for interacting with the user (output only).

Defines the contract for displaying batch reports, errors, warnings and
progress, allowing different UI implementations (e.g., rich console, plain
text for pipes).
"""

import abc
from typing import Any

from trlo.domain.events.batch_events import DomainEvent
from trlo.domain.models.batch import BatchReport


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_report(self, report: BatchReport, output_format: str = "table", **kwargs: Any) -> None:
        """Displays a batch report.

        Args:
            report: The report to render.
            output_format: One of 'table', 'json' or 'markdown'.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user.

        Args:
            warning_message: The warning message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user.

        Args:
            info_message: The informational message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    def display_event(self, event: DomainEvent) -> None:
        """Displays a progress event emitted during batch execution.

        Args:
            event: The domain event to render.
        """
        pass

    def display_operation_types(self, rows: list) -> None:
        """Displays the registered operation types.

        Args:
            rows: (type, required parameters, description) tuples.
        """
        pass
