import pytest

from trlo.core.batch.resolver import ReferenceResolver
from trlo.domain.errors import UnresolvedReferenceError
from trlo.domain.models.batch import ExecutionResult, OperationStatus


def _result(op_id, status=OperationStatus.SUCCESS, response=None):
    return ExecutionResult(operation_id=op_id, operation_type="create-board", status=status, response=response)


@pytest.fixture
def graph(parse):
    return parse([
        {"id": "board", "type": "create-board", "params": {"name": "Sprint"}},
        {"id": "todo", "type": "create-list",
         "params": {"name": "Todo for ${board.name}", "board": "${board.id}", "pos": "${board.prefs.pos}"}},
    ])


def test_resolves_whole_and_embedded_references(graph):
    results = {"board": _result("board", response={"id": "b1", "name": "Sprint", "prefs": {"pos": 2}})}

    resolved = ReferenceResolver().resolve(graph.node("todo").operation, results)

    assert resolved == {"name": "Todo for Sprint", "board": "b1", "pos": 2}


def test_resolution_is_deterministic(graph):
    results = {"board": _result("board", response={"id": "b1", "name": "S", "prefs": {"pos": 1}})}
    resolver = ReferenceResolver()
    operation = graph.node("todo").operation
    assert resolver.resolve(operation, results) == resolver.resolve(operation, results)


def test_resolved_values_do_not_alias_responses(parse):
    graph = parse([
        {"id": "c", "type": "get-card", "target": "x"},
        {"id": "u", "type": "update-card", "target": "${c.id}", "params": {"labels": "${c.labels}"}},
    ])
    response = {"id": "c1", "labels": ["l1"]}
    resolved = ReferenceResolver().resolve(graph.node("u").operation, {"c": _result("c", response=response)})

    resolved["labels"].append("l2")
    assert response["labels"] == ["l1"]


@pytest.mark.parametrize("status", [OperationStatus.FAILED, OperationStatus.SKIPPED])
def test_reference_to_unsuccessful_operation_fails(graph, status):
    with pytest.raises(UnresolvedReferenceError) as exc_info:
        ReferenceResolver().resolve(graph.node("todo").operation, {"board": _result("board", status)})
    assert exc_info.value.operation_id == "todo"
    assert exc_info.value.kind == "UnresolvedReferenceError"


def test_reference_to_missing_result_fails(graph):
    with pytest.raises(UnresolvedReferenceError):
        ReferenceResolver().resolve(graph.node("todo").operation, {})


def test_missing_field_fails(graph):
    results = {"board": _result("board", response={"id": "b1", "name": "S"})}
    with pytest.raises(UnresolvedReferenceError, match="prefs"):
        ReferenceResolver().resolve(graph.node("todo").operation, results)


def test_dry_run_uses_placeholders_for_unknown_fields(graph):
    results = {"board": _result("board", OperationStatus.PLANNED, response={"id": "<board.id>", "name": "Sprint"})}

    resolved = ReferenceResolver().resolve(graph.node("todo").operation, results, dry_run=True)

    assert resolved == {"name": "Todo for Sprint", "board": "<board.id>", "pos": "<board.prefs.pos>"}


def test_planned_results_are_rejected_outside_dry_run(graph):
    results = {"board": _result("board", OperationStatus.PLANNED, response={"id": "x"})}
    with pytest.raises(UnresolvedReferenceError):
        ReferenceResolver().resolve(graph.node("todo").operation, results)
