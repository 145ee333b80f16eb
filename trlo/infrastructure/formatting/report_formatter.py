"""Text renderings of a BatchReport (JSON and Markdown)."""

import json
from typing import List

from trlo.domain.models.batch import BatchReport, OperationStatus

OUTPUT_FORMATS = ("table", "json", "markdown")

STATUS_MARKS = {
    OperationStatus.SUCCESS: "✅",
    OperationStatus.FAILED: "❌",
    OperationStatus.SKIPPED: "⏭️",
    OperationStatus.PLANNED: "📝",
}


def format_json(report: BatchReport) -> str:
    return json.dumps(report.to_dict(), indent=2, ensure_ascii=False, default=str)


def format_markdown(report: BatchReport) -> str:
    """Heading, summary counts, then one section per operation in declaration order."""
    summary = report.summary()
    lines: List[str] = [
        "# Batch Operation Results",
        "",
        f"**Status:** {report.status.value}" + (" (dry run)" if report.dry_run else ""),
        f"**Total Operations:** {summary['total']}",
        f"**Successful:** {summary['succeeded']}",
        f"**Failed:** {summary['failed']}",
        f"**Skipped:** {summary['skipped']}",
    ]
    if report.dry_run:
        lines.append(f"**Planned:** {summary['planned']}")
    if report.error is not None:
        lines.append(f"**Error:** {report.error.kind}: {report.error.message}")
    lines.append("")

    for result in report.results:
        mark = STATUS_MARKS.get(result.status, "")
        lines.append(f"## {result.operation_id} {mark}".rstrip())
        lines.append(f"- **Type:** {result.operation_type}")
        lines.append(f"- **Status:** {result.status.value}")
        if result.response and "id" in result.response:
            lines.append(f"- **Result ID:** {result.response['id']}")
        if result.duration_ms is not None:
            lines.append(f"- **Duration:** {result.duration_ms:.0f} ms")
        if result.error is not None:
            lines.append(f"- **Error:** {result.error.kind}: {result.error.message}")
        lines.append("")
    return "\n".join(lines)


def format_report(report: BatchReport, output_format: str) -> str:
    """Renders a report as 'json' or 'markdown'.

    Raises:
        ValueError: For any other format.
    """
    if output_format == "json":
        return format_json(report)
    if output_format == "markdown":
        return format_markdown(report)
    raise ValueError(f"unsupported format: {output_format}")
