import pytest

from trlo.core.batch.references import (
    FieldPathError, MalformedReferenceError, compile_value, iter_references, lookup_field, substitute,
)
from trlo.domain.models.batch import Reference, ReferenceTemplate


def test_whole_string_token_compiles_to_reference():
    compiled = compile_value("${board.id}")
    assert compiled == Reference("board", ("id",))


def test_embedded_tokens_compile_to_template():
    compiled = compile_value("Card for ${board.name} in ${list.id}!")
    assert isinstance(compiled, ReferenceTemplate)
    assert compiled.references == (Reference("board", ("name",)), Reference("list", ("id",)))
    assert str(compiled) == "Card for ${board.name} in ${list.id}!"


def test_plain_values_are_untouched():
    assert compile_value("no refs here") == "no refs here"
    assert compile_value(42) == 42
    assert compile_value("$board.id") == "$board.id"


def test_nested_structures_are_scanned():
    compiled = compile_value({"labels": ["${l1.id}", "static"], "meta": {"owner": "${m.members.0.id}"}})
    refs = list(iter_references(compiled))
    assert Reference("l1", ("id",)) in refs
    assert Reference("m", ("members", "0", "id")) in refs


def test_lookup_field_walks_mappings_and_lists():
    payload = {"labels": [{"id": "a"}, {"id": "b"}], "prefs": {"color": "blue"}}
    assert lookup_field(payload, ("labels", "1", "id")) == "b"
    assert lookup_field(payload, ("prefs", "color")) == "blue"


def test_lookup_field_reports_missing_path():
    with pytest.raises(FieldPathError) as exc_info:
        lookup_field({"labels": []}, ("labels", "0", "id"))
    assert str(exc_info.value) == "labels.0"


def test_substitute_keeps_type_for_whole_tokens_and_interpolates_text():
    compiled = compile_value({"pos": "${c.pos}", "name": "copy of ${c.name}", "closed": "${c.closed}"})
    values = {("c", ("pos",)): 3, ("c", ("name",)): "Task", ("c", ("closed",)): False}

    resolved = substitute(compiled, lambda ref: values[(ref.operation_id, tuple(ref.field_path))])

    assert resolved == {"pos": 3, "name": "copy of Task", "closed": False}


def test_template_renders_booleans_lowercase():
    compiled = compile_value("closed=${c.closed}")
    assert substitute(compiled, lambda ref: True) == "closed=true"


@pytest.mark.parametrize("raw, token", [
    ("${op1}", "${op1}"),
    ("${op 1.id}", "${op 1.id}"),
    ("Card for ${board.id} in ${todo", "${todo"),
])
def test_malformed_tokens_are_rejected(raw, token):
    with pytest.raises(MalformedReferenceError) as exc_info:
        compile_value({"name": raw})
    assert exc_info.value.token == token


def test_text_without_token_start_is_left_alone():
    assert compile_value("costs $5 {approx}") == "costs $5 {approx}"
