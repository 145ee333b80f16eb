"""Reference Resolver.

Substitutes References in an operation's parameters with values from the
responses of the operations they point at. Resolution runs immediately
before dispatch and is pure: the same completed-result table always yields
the same resolved parameters.
"""

import copy
import logging
from typing import Any, Mapping

from trlo.core.batch.references import FieldPathError, lookup_field, substitute
from trlo.domain.errors import UnresolvedReferenceError
from trlo.domain.models.batch import ExecutionResult, Operation, OperationStatus, Reference
from trlo.domain.models.common import ResolvedParams

logger = logging.getLogger(__name__)


def placeholder_for(reference: Reference) -> str:
    """Stand-in value used for references during a dry run."""
    return "<" + ".".join((reference.operation_id,) + tuple(reference.field_path)) + ">"


class ReferenceResolver:
    """Resolves References against a table of completed ExecutionResults."""

    def resolve(
        self,
        operation: Operation,
        results: Mapping[str, ExecutionResult],
        dry_run: bool = False,
    ) -> ResolvedParams:
        """Returns the operation's parameters with every Reference substituted.

        Args:
            operation: The operation about to be dispatched.
            results: Completed results keyed by operation id.
            dry_run: Accept `planned` results and fall back to placeholders
                for fields a planned payload does not contain.

        Raises:
            UnresolvedReferenceError: If a referenced operation did not
                succeed or the field path is missing from its payload.
        """
        def lookup(reference: Reference) -> Any:
            return self._lookup(operation, reference, results, dry_run)

        resolved = substitute(operation.params, lookup)
        logger.debug(f"Resolved params for {operation.id}: {resolved}")
        return ResolvedParams(resolved)

    @staticmethod
    def _lookup(
        operation: Operation,
        reference: Reference,
        results: Mapping[str, ExecutionResult],
        dry_run: bool,
    ) -> Any:
        result = results.get(reference.operation_id)
        accepted = {OperationStatus.SUCCESS, OperationStatus.PLANNED} if dry_run else {OperationStatus.SUCCESS}
        if result is None or result.status not in accepted:
            state = result.status.value if result is not None else "not completed"
            raise UnresolvedReferenceError(
                f"reference {reference} needs '{reference.operation_id}' to succeed (status: {state})",
                operation_id=operation.id,
                reference=str(reference),
            )
        try:
            value = lookup_field(result.response or {}, reference.field_path)
        except FieldPathError as e:
            if dry_run and result.status is OperationStatus.PLANNED:
                return placeholder_for(reference)
            raise UnresolvedReferenceError(
                f"reference {reference}: field '{e}' not found in the result of '{reference.operation_id}'",
                operation_id=operation.id,
                reference=str(reference),
            ) from e
        # Resolved params never alias a recorded response.
        return copy.deepcopy(value)
