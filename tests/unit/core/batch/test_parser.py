import pytest

from trlo.core.batch.parser import OperationParser
from trlo.domain.errors import CycleError, ValidationError
from trlo.domain.models.batch import BatchOptions, Reference


@pytest.fixture
def parser():
    return OperationParser()


def test_parse_builds_edges_from_references_and_depends_on(parser):
    graph = parser.parse([
        {"id": "board", "type": "create-board", "params": {"name": "Sprint"}},
        {"id": "todo", "type": "create-list", "params": {"name": "Todo", "board": "${board.id}"}},
        {"id": "card", "type": "create-card", "params": {"name": "Task", "list": "${todo.id}"},
         "dependsOn": ["board"]},
    ])

    assert [n.operation.id for n in graph.nodes] == ["board", "todo", "card"]
    assert graph.node("todo").dependencies == (0,)
    assert graph.node("card").dependencies == (0, 1)
    assert graph.node("board").dependents == (1, 2)
    assert graph.node("todo").operation.params["board"] == Reference("board", ("id",))


def test_options_are_carried_on_the_graph(parser):
    options = BatchOptions(concurrency=2, continue_on_error=True)
    graph = parser.parse([{"id": "b", "type": "create-board", "params": {"name": "x"}}], options)
    assert graph.options is options


def test_type_names_are_normalized(parser):
    graph = parser.parse([{"id": "b", "type": "Create_Board", "params": {"name": "x"}}])
    assert graph.nodes[0].operation.type == "create-board"


def test_target_is_folded_into_params(parser):
    graph = parser.parse([{"id": "arch", "type": "archive-card", "target": "abc123"}])
    assert graph.nodes[0].operation.params["target"] == "abc123"


def test_target_given_twice_is_rejected(parser):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse([{"id": "arch", "type": "archive-card", "target": "a", "params": {"target": "b"}}])
    assert exc_info.value.field == "target"


def test_duplicate_ids_are_rejected(parser):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse([
            {"id": "b", "type": "create-board", "params": {"name": "x"}},
            {"id": "b", "type": "create-board", "params": {"name": "y"}},
        ])
    assert exc_info.value.operation_id == "b"
    assert exc_info.value.field == "id"


@pytest.mark.parametrize("descriptor, field", [
    ({"type": "create-board", "params": {"name": "x"}}, "id"),
    ({"id": "bad id", "type": "create-board", "params": {"name": "x"}}, "id"),
    ({"id": "b", "params": {"name": "x"}}, "type"),
    ({"id": "b", "type": "create-spaceship"}, "type"),
    ({"id": "b", "type": "create-board"}, "name"),
    ({"id": "b", "type": "create-board", "params": {"name": "  "}}, "name"),
    ({"id": "u", "type": "update-card", "target": "c1"}, "params"),
    ({"id": "b", "type": "create-board", "params": ["name"]}, "params"),
    ({"id": "b", "type": "create-board", "params": {"name": "x"}, "colour": "red"}, "colour"),
    ({"id": "b", "type": "create-board", "params": {"name": "x"}, "dependsOn": [1]}, "dependsOn"),
])
def test_invalid_descriptors_name_the_offending_field(parser, descriptor, field):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse([descriptor])
    assert exc_info.value.field == field


def test_unknown_dependency_is_rejected(parser):
    with pytest.raises(ValidationError, match="unknown operation 'ghost'"):
        parser.parse([{"id": "b", "type": "create-board", "params": {"name": "x"}, "dependsOn": ["ghost"]}])


def test_reference_to_unknown_operation_is_rejected(parser):
    with pytest.raises(ValidationError, match="unknown operation 'ghost'"):
        parser.parse([{"id": "l", "type": "create-list", "params": {"name": "x", "board": "${ghost.id}"}}])


def test_forward_reference_without_depends_on_is_rejected(parser):
    with pytest.raises(ValidationError, match="points forward"):
        parser.parse([
            {"id": "l", "type": "create-list", "params": {"name": "x", "board": "${b.id}"}},
            {"id": "b", "type": "create-board", "params": {"name": "x"}},
        ])


def test_forward_reference_listed_in_depends_on_is_accepted(parser):
    graph = parser.parse([
        {"id": "l", "type": "create-list", "params": {"name": "x", "board": "${b.id}"}, "dependsOn": ["b"]},
        {"id": "b", "type": "create-board", "params": {"name": "x"}},
    ])
    assert graph.node("l").dependencies == (1,)
    assert graph.topological_order() == [1, 0]


def test_mutual_dependency_raises_cycle_error(parser):
    with pytest.raises(CycleError) as exc_info:
        parser.parse([
            {"id": "a", "type": "archive-card", "target": "x", "dependsOn": ["b"]},
            {"id": "b", "type": "archive-card", "target": "y", "dependsOn": ["a"]},
        ])
    assert set(exc_info.value.members) == {"a", "b"}
    assert "dependency cycle detected" in str(exc_info.value)


def test_long_chain_does_not_hit_recursion_limit(parser):
    descriptors = [{"id": "n0", "type": "create-board", "params": {"name": "root"}}]
    for i in range(1, 3000):
        descriptors.append({"id": f"n{i}", "type": "archive-card", "target": f"${{n{i - 1}.id}}"})
    graph = parser.parse(descriptors)
    assert graph.topological_order() == list(range(3000))


def test_topological_order_breaks_ties_by_declaration(parser):
    graph = parser.parse([
        {"id": "c", "type": "get-card", "target": "1", "dependsOn": ["a"]},
        {"id": "b", "type": "get-card", "target": "2"},
        {"id": "a", "type": "get-card", "target": "3"},
    ])
    assert [graph.nodes[i].operation.id for i in graph.topological_order()] == ["b", "a", "c"]


def test_empty_batch_is_valid(parser):
    graph = parser.parse([])
    assert graph.nodes == ()


def test_malformed_reference_is_a_validation_error(parser):
    with pytest.raises(ValidationError) as exc_info:
        parser.parse([
            {"id": "board", "type": "create-board", "params": {"name": "b"}},
            {"id": "todo", "type": "create-list", "params": {"name": "x", "board": "${board}"}},
        ])
    assert exc_info.value.operation_id == "todo"
    assert exc_info.value.field == "params"
    assert "${board}" in exc_info.value.message
