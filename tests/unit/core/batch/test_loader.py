import pytest

from trlo.core.batch.loader import (
    build_options, extract_operations, load_batch_file, load_batch_text, parse_duration,
)
from trlo.domain.errors import ValidationError
from trlo.domain.models.batch import BatchOptions


def test_json_document_is_loaded():
    document = load_batch_text('{"operations": [{"id": "b", "type": "create-board"}], "concurrency": 2}')
    assert document["concurrency"] == 2


def test_yaml_document_is_loaded():
    text = """
continueOnError: true
operations:
  - id: b
    type: create-board
    params:
      name: Sprint
"""
    document = load_batch_text(text)
    assert extract_operations(document)[0]["params"] == {"name": "Sprint"}
    assert build_options(document).continue_on_error is True


def test_garbage_is_a_validation_error():
    with pytest.raises(ValidationError):
        load_batch_text("operations: [unclosed")


def test_empty_input_is_a_validation_error():
    with pytest.raises(ValidationError, match="empty"):
        load_batch_text("   \n")


def test_missing_file_is_a_validation_error(tmp_path):
    with pytest.raises(ValidationError, match="not found"):
        load_batch_file(tmp_path / "nope.json")


def test_file_is_read(tmp_path):
    path = tmp_path / "batch.yaml"
    path.write_text("- id: b\n  type: create-board\n", encoding="utf-8")
    assert extract_operations(load_batch_file(path)) == [{"id": "b", "type": "create-board"}]


@pytest.mark.parametrize("document", [{"concurrency": 2}, "just text", 42, {"operations": {"id": "b"}}])
def test_documents_without_an_operations_list_are_rejected(document):
    with pytest.raises(ValidationError):
        extract_operations(document)


@pytest.mark.parametrize("value, expected", [
    (30, 30.0),
    (1.5, 1.5),
    ("500ms", 0.5),
    ("10s", 10.0),
    ("2m", 120.0),
    ("45", 45.0),
    ("none", None),
    (None, None),
    (0, None),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["soon", "-5s", True, [1]])
def test_parse_duration_rejects_invalid_values(value):
    with pytest.raises(ValidationError):
        parse_duration(value)


def test_options_precedence_cli_over_document_over_defaults():
    defaults = BatchOptions(concurrency=3, timeout_per_operation=15.0)
    document = {"operations": [], "concurrency": 6, "timeoutPerOperation": "5s", "dry_run": True}

    options = build_options(document, {"concurrency": 8, "dry_run": None}, defaults)

    assert options.concurrency == 8
    assert options.timeout_per_operation == 5.0
    assert options.dry_run is True
    assert options.continue_on_error is False


def test_bare_list_document_uses_defaults():
    options = build_options([], defaults=BatchOptions(concurrency=7))
    assert options.concurrency == 7


@pytest.mark.parametrize("document, field", [
    ({"operations": [], "concurrency": 0}, "concurrency"),
    ({"operations": [], "concurrency": 99}, "concurrency"),
    ({"operations": [], "concurrency": "many"}, "concurrency"),
    ({"operations": [], "continueOnError": "maybe"}, "continueOnError"),
    ({"operations": [], "parallel": True}, "parallel"),
])
def test_invalid_options_are_rejected(document, field):
    with pytest.raises(ValidationError) as exc_info:
        build_options(document)
    assert exc_info.value.field == field
