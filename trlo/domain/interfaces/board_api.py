"""Interface for the remote project-board service.

Defines the narrow contract the batch engine uses to execute one operation
against the remote API (e.g., Trello). Implementations translate operation
types into concrete requests.
"""

import abc

from trlo.domain.models.common import OperationType, ResolvedParams, ResponsePayload


class BoardApiClient(abc.ABC):
    """Abstract Base Class for executing a single board operation."""

    @abc.abstractmethod
    async def execute(self, operation_type: OperationType, params: ResolvedParams) -> ResponsePayload:
        """Executes one operation with fully resolved parameters.

        Args:
            operation_type: Registered operation type (e.g., 'create-card').
            params: Parameters with every Reference already substituted.

        Returns:
            The decoded response payload.

        Raises:
            ThrottledError: If the service throttled the call (retryable).
            APIError: If the service rejected the call for a domain reason.
        """
        pass

    async def aclose(self) -> None:
        """Releases any network resources held by the client."""
        return None
