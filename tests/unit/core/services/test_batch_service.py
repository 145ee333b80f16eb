import asyncio

import pytest

from conftest import FakeBoardApi
from trlo.core.services.batch_service import BatchService
from trlo.domain.errors import APIError, MissingCredentialsError
from trlo.domain.models.batch import BatchOptions, BatchStatus, OperationStatus


def _document(*operations, **options):
    return {"operations": list(operations), **options}


BOARD = {"id": "board", "type": "create-board", "params": {"name": "Sprint"}}
LIST = {"id": "todo", "type": "create-list", "params": {"name": "Todo", "board": "${board.id}"}}


def test_run_document_executes_and_closes_client(fake_api, retry_service):
    service = BatchService(fake_api, retry_service)

    report = asyncio.run(service.run_document(_document(BOARD, LIST)))

    assert report.status is BatchStatus.SUCCESS
    assert len(fake_api.calls) == 2
    assert fake_api.closed is True


def test_cycle_aborts_before_any_call(fake_api, retry_service):
    document = _document(
        {"id": "a", "type": "archive-card", "target": "x", "dependsOn": ["b"]},
        {"id": "b", "type": "archive-card", "target": "y", "dependsOn": ["a"]},
    )

    report = asyncio.run(BatchService(fake_api, retry_service).run_document(document))

    assert report.status is BatchStatus.ABORTED
    assert report.exit_code == 2
    assert report.error.kind == "CycleError"
    assert [r.operation_id for r in report.results] == ["a", "b"]
    assert fake_api.calls == []


def test_invalid_options_abort(fake_api, retry_service):
    report = asyncio.run(BatchService(fake_api, retry_service).run_document(_document(BOARD, concurrency=0)))
    assert report.status is BatchStatus.ABORTED
    assert report.error.details == {"field": "concurrency"}


def test_dry_run_needs_no_client():
    service = BatchService(None, None)

    report = asyncio.run(service.run_document(_document(BOARD, LIST), overrides={"dry_run": True}))

    assert report.status is BatchStatus.PLANNED
    assert report.planned == 2
    assert report.result_for("todo").resolved_params == {"name": "Todo", "board": "<board.id>"}


def test_missing_client_raises_for_real_runs():
    with pytest.raises(MissingCredentialsError):
        asyncio.run(BatchService(None, None).run_document(_document(BOARD)))


def test_defaults_apply_when_document_is_silent(retry_service):
    def handler(op_type, params):
        if params["name"] == "bad":
            raise APIError("rejected", status_code=400)
        return {"id": params["name"]}

    api = FakeBoardApi(handler)
    service = BatchService(api, retry_service, defaults=BatchOptions(continue_on_error=True))
    document = _document(
        {"id": "bad", "type": "create-board", "params": {"name": "bad"}},
        {"id": "good", "type": "create-board", "params": {"name": "good"}},
    )

    report = asyncio.run(service.run_document(document))

    assert report.status is BatchStatus.PARTIAL
    assert report.result_for("good").status is OperationStatus.SUCCESS
