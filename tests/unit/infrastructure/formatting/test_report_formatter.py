import json
from datetime import datetime, timezone

import pytest

from trlo.domain.models.batch import (
    BatchReport, BatchStatus, ErrorDescriptor, ExecutionResult, OperationStatus,
)
from trlo.infrastructure.formatting.report_formatter import format_report


@pytest.fixture
def report():
    start = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)
    return BatchReport(
        results=(
            ExecutionResult("board", "create-board", OperationStatus.SUCCESS, response={"id": "B1"},
                            resolved_params={"name": "Sprint"}, dispatched_at=start,
                            completed_at=datetime(2026, 1, 5, 12, 0, 0, 250000, tzinfo=timezone.utc)),
            ExecutionResult("todo", "create-list", OperationStatus.FAILED,
                            error=ErrorDescriptor("APIError", "invalid board", {"status_code": 400})),
            ExecutionResult("card", "create-card", OperationStatus.SKIPPED,
                            error=ErrorDescriptor("Skipped", "dependency 'todo' failed")),
        ),
        status=BatchStatus.FAILED,
        started_at=start,
        finished_at=start,
    )


def test_json_has_stable_keys(report):
    data = json.loads(format_report(report, "json"))

    assert data["status"] == "failed"
    assert data["summary"] == {"total": 3, "succeeded": 1, "failed": 1, "skipped": 1, "planned": 0}
    assert [r["id"] for r in data["results"]] == ["board", "todo", "card"]
    assert data["results"][0]["response"] == {"id": "B1"}
    assert data["results"][1]["error"] == {"kind": "APIError", "message": "invalid board",
                                          "details": {"status_code": 400}}
    assert data["started_at"] == "2026-01-05T12:00:00+00:00"


def test_markdown_lists_each_operation(report):
    text = format_report(report, "markdown")

    assert text.startswith("# Batch Operation Results")
    assert "**Total Operations:** 3" in text
    assert "## board ✅" in text
    assert "- **Result ID:** B1" in text
    assert "- **Duration:** 250 ms" in text
    assert "- **Error:** APIError: invalid board" in text
    assert text.index("## board") < text.index("## todo") < text.index("## card")


def test_unknown_format_is_rejected(report):
    with pytest.raises(ValueError):
        format_report(report, "xml")
