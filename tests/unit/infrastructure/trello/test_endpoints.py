import pytest

from trlo.core.batch.operation_types import OPERATION_TYPES
from trlo.domain.errors import APIError
from trlo.infrastructure.trello.endpoints import ENDPOINTS, build_request


def test_every_operation_type_has_an_endpoint():
    assert set(ENDPOINTS) == set(OPERATION_TYPES)


def test_create_list_renames_board():
    request = build_request("create-list", {"name": "Todo", "board": "B1", "position": "top"})
    assert request.method == "POST"
    assert request.path == "/lists"
    assert request.json == {"name": "Todo", "idBoard": "B1", "pos": "top"}


def test_path_parameters_are_consumed_and_quoted():
    request = build_request("delete-attachment", {"target": "card/1", "attachment": "A1"})
    assert request.method == "DELETE"
    assert request.path == "/cards/card%2F1/attachments/A1"
    assert request.json is None
    assert request.query == {}


def test_add_label_sends_value():
    request = build_request("add-label", {"target": "C1", "label": "L1"})
    assert request.path == "/cards/C1/idLabels"
    assert request.json == {"value": "L1"}


def test_copy_card_uses_source_field():
    request = build_request("copy-card", {"target": "C1", "list": "L2"})
    assert request.path == "/cards"
    assert request.json == {"idCardSource": "C1", "idList": "L2"}


def test_archive_adds_fixed_fields():
    assert build_request("archive-card", {"target": "C1"}).json == {"closed": True}
    assert build_request("archive-list", {"target": "L1"}).json == {"value": True}


def test_get_sends_extra_params_as_query():
    request = build_request("get-board", {"target": "B1", "fields": ["name", "url"], "lists": "open"})
    assert request.method == "GET"
    assert request.query == {"fields": "name,url", "lists": "open"}


def test_missing_path_parameter_is_an_api_error():
    with pytest.raises(APIError, match="target"):
        build_request("get-card", {})


def test_unknown_type_is_an_api_error():
    with pytest.raises(APIError):
        build_request("launch-rocket", {})
