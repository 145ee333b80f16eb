"""Operation Parser: raw batch descriptors -> validated, frozen dependency graph.

Validation happens once, before anything executes:
    - every descriptor has a well-formed, unique id and a known type
    - all parameters required by the type are present
    - explicit dependencies name declared operations
    - every Reference points at an operation declared earlier or listed in
      the referencing operation's explicit dependencies
    - the combined dependency relation is acyclic

The graph is an arena: nodes are addressed by declaration index and edges
are stored as index tuples.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from trlo.core.batch.operation_types import OPERATION_TYPES, get_operation_type
from trlo.core.batch.references import (
    OPERATION_ID_PATTERN, MalformedReferenceError, compile_value, iter_references,
)
from trlo.domain.errors import CycleError, ValidationError
from trlo.domain.models.batch import BatchOptions, BatchRequest, Operation
from trlo.domain.models.common import OperationId, OperationType

logger = logging.getLogger(__name__)

# Accepted spellings of descriptor keys.
_DEPENDS_ON_KEYS = ("dependsOn", "depends_on")
_KNOWN_KEYS = {"id", "type", "target", "params", *_DEPENDS_ON_KEYS}


@dataclass(frozen=True)
class OperationNode:
    """An operation plus its index-based edges."""
    index: int
    operation: Operation
    dependencies: Tuple[int, ...]
    dependents: Tuple[int, ...]


@dataclass(frozen=True)
class BatchGraph:
    """Validated, immutable dependency graph of a batch."""
    request: BatchRequest
    nodes: Tuple[OperationNode, ...]
    index_by_id: Mapping[str, int]

    @property
    def options(self) -> BatchOptions:
        return self.request.options

    def node(self, operation_id: str) -> OperationNode:
        return self.nodes[self.index_by_id[operation_id]]

    def topological_order(self) -> List[int]:
        """Kahn's algorithm; ties broken by declaration order so the result is deterministic."""
        incoming = {node.index: len(node.dependencies) for node in self.nodes}
        ready = sorted(i for i, count in incoming.items() if count == 0)
        order: List[int] = []
        while ready:
            index = ready.pop(0)
            order.append(index)
            for child in self.nodes[index].dependents:
                incoming[child] -= 1
                if incoming[child] == 0:
                    ready.append(child)
                    ready.sort()
        return order


class OperationParser:
    """Turns raw operation descriptors into a BatchGraph."""

    def parse(self, descriptors: Sequence[Any], options: Optional[BatchOptions] = None) -> BatchGraph:
        """Validates descriptors and builds the dependency graph.

        Args:
            descriptors: Ordered raw operation descriptors (mappings).
            options: Batch options the request will run under.

        Returns:
            A frozen BatchGraph.

        Raises:
            ValidationError: On malformed descriptors, unknown types, missing
                fields, unknown dependencies or forward references.
            CycleError: If the dependency relation is not acyclic.
        """
        options = options or BatchOptions()
        if not isinstance(descriptors, (list, tuple)):
            raise ValidationError("'operations' must be a list", field="operations")

        operations: List[Operation] = []
        index_by_id: Dict[str, int] = {}
        for position, descriptor in enumerate(descriptors):
            operation = self.parse_operation(descriptor, position)
            if operation.id in index_by_id:
                raise ValidationError("duplicate operation id", operation_id=operation.id, field="id")
            index_by_id[operation.id] = position
            operations.append(operation)

        dependencies = [self._collect_dependencies(op, index_by_id) for op in operations]
        self._check_acyclic(operations, dependencies)

        dependents: List[List[int]] = [[] for _ in operations]
        for index, deps in enumerate(dependencies):
            for dep in deps:
                dependents[dep].append(index)

        nodes = tuple(
            OperationNode(
                index=i,
                operation=op,
                dependencies=tuple(sorted(dependencies[i])),
                dependents=tuple(sorted(dependents[i])),
            )
            for i, op in enumerate(operations)
        )
        request = BatchRequest(operations=tuple(operations), options=options)
        logger.debug(f"Parsed batch of {len(nodes)} operation(s)")
        return BatchGraph(request=request, nodes=nodes, index_by_id=MappingProxyType(dict(index_by_id)))

    def parse_operation(self, descriptor: Any, position: int) -> Operation:
        """Validates a single descriptor and compiles its parameters."""
        if not isinstance(descriptor, Mapping):
            raise ValidationError(f"operation #{position + 1} must be a mapping", field="operations")

        raw_id = descriptor.get("id")
        if not isinstance(raw_id, str) or not raw_id.strip():
            raise ValidationError(f"operation #{position + 1} is missing a string 'id'", field="id")
        op_id = raw_id.strip()
        if not OPERATION_ID_PATTERN.match(op_id):
            raise ValidationError("id may only contain letters, digits, '-' and '_'",
                                  operation_id=op_id, field="id")

        unknown_keys = sorted(set(descriptor) - _KNOWN_KEYS)
        if unknown_keys:
            raise ValidationError(f"unknown key(s): {', '.join(unknown_keys)}",
                                  operation_id=op_id, field=unknown_keys[0])

        raw_type = descriptor.get("type")
        if not isinstance(raw_type, str) or not raw_type.strip():
            raise ValidationError("missing operation 'type'", operation_id=op_id, field="type")
        type_spec = get_operation_type(raw_type)
        if type_spec is None:
            raise ValidationError(
                f"unknown operation type '{raw_type}' (valid: {', '.join(sorted(OPERATION_TYPES))})",
                operation_id=op_id, field="type",
            )

        raw_params = descriptor.get("params") or {}
        if not isinstance(raw_params, Mapping):
            raise ValidationError("'params' must be a mapping", operation_id=op_id, field="params")
        params = dict(raw_params)
        if "target" in descriptor and descriptor["target"] is not None:
            if "target" in params:
                raise ValidationError("'target' given both at top level and in params",
                                      operation_id=op_id, field="target")
            params["target"] = descriptor["target"]

        for name in type_spec.required:
            if _is_blank(params.get(name)):
                raise ValidationError(f"missing required parameter '{name}' for {type_spec.name}",
                                      operation_id=op_id, field=name)
        if type_spec.requires_changes and not [k for k in params if k != "target"]:
            raise ValidationError(f"{type_spec.name} needs at least one field to change",
                                  operation_id=op_id, field="params")

        depends_on = self._parse_depends_on(descriptor, op_id)
        try:
            compiled = compile_value(params)
        except MalformedReferenceError as e:
            raise ValidationError(str(e), operation_id=op_id, field="params") from e
        return Operation(
            id=OperationId(op_id),
            type=OperationType(type_spec.name),
            params=MappingProxyType(compiled),
            depends_on=depends_on,
            position=position,
        )

    @staticmethod
    def _parse_depends_on(descriptor: Mapping, op_id: str) -> Tuple[OperationId, ...]:
        raw = None
        for key in _DEPENDS_ON_KEYS:
            if key in descriptor:
                raw = descriptor[key]
                break
        if raw is None:
            return ()
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, (list, tuple)) or not all(isinstance(d, str) and d.strip() for d in raw):
            raise ValidationError("'dependsOn' must be a list of operation ids",
                                  operation_id=op_id, field="dependsOn")
        seen: List[OperationId] = []
        for dep in raw:
            dep_id = OperationId(dep.strip())
            if dep_id not in seen:
                seen.append(dep_id)
        return tuple(seen)

    @staticmethod
    def _collect_dependencies(operation: Operation, index_by_id: Mapping[str, int]) -> Set[int]:
        deps: Set[int] = set()
        for dep_id in operation.depends_on:
            if dep_id not in index_by_id:
                raise ValidationError(f"depends on unknown operation '{dep_id}'",
                                      operation_id=operation.id, field="dependsOn")
            deps.add(index_by_id[dep_id])

        for reference in iter_references(dict(operation.params)):
            ref_id = reference.operation_id
            if ref_id not in index_by_id:
                raise ValidationError(f"reference {reference} points at unknown operation '{ref_id}'",
                                      operation_id=operation.id, field=str(reference))
            ref_index = index_by_id[ref_id]
            if ref_index >= operation.position and ref_id not in operation.depends_on:
                raise ValidationError(
                    f"reference {reference} points forward; declare '{ref_id}' earlier or list it in dependsOn",
                    operation_id=operation.id, field=str(reference),
                )
            deps.add(ref_index)
        return deps

    @staticmethod
    def _check_acyclic(operations: Sequence[Operation], dependencies: Sequence[Set[int]]) -> None:
        """Depth-first search with an explicit recursion stack."""
        unvisited, on_stack, done = 0, 1, 2
        state = [unvisited] * len(operations)
        for root in range(len(operations)):
            if state[root] != unvisited:
                continue
            path: List[int] = [root]
            iterators = [iter(sorted(dependencies[root]))]
            state[root] = on_stack
            while iterators:
                child = next(iterators[-1], None)
                if child is None:
                    state[path.pop()] = done
                    iterators.pop()
                    continue
                if state[child] == on_stack:
                    members = path[path.index(child):]
                    raise CycleError(operations[i].id for i in members)
                if state[child] == unvisited:
                    state[child] = on_stack
                    path.append(child)
                    iterators.append(iter(sorted(dependencies[child])))


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
