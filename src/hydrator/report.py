"""Run reports: JSON, Markdown and CSV renderings of a RunContext."""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import ReportFormat
from .context import RunContext

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("category", "name", "type", "action", "status", "timestamp", "path", "id",
               "platform", "state")

EXTENSIONS: dict[ReportFormat, str] = {
    ReportFormat.JSON: "json",
    ReportFormat.MARKDOWN: "md",
    ReportFormat.CSV: "csv",
}


def report_data(context: RunContext, **metadata: Any) -> dict[str, Any]:
    """Everything a report contains, as plain data."""
    return {
        "tenant_id": context.tenant_id,
        "environment": context.environment.value,
        "started_at": context.started_at.isoformat(),
        "duration_seconds": round(context.duration_seconds, 2),
        **metadata,
        "summary": context.summary().to_dict(),
        "categories": {
            category: {
                "summary": context.summary(category).to_dict(),
                "results": [record.to_dict() for record in context.results_for(category)],
            }
            for category in context.categories
        },
    }


def render_json(context: RunContext, **metadata: Any) -> str:
    return json.dumps(report_data(context, **metadata), indent=2)


def _cell(value: Any) -> str:
    text = "" if value is None else str(value)
    return text.replace("|", "\\|").replace("\n", " ")


def render_markdown(context: RunContext, **metadata: Any) -> str:
    """Summary table followed by one results table per category."""
    summary = context.summary()
    lines = [
        "# Intune Hydration Report",
        "",
        f"- Tenant: `{context.tenant_id}`",
        f"- Environment: {context.environment.value}",
        f"- Started: {context.started_at.isoformat()}",
    ]
    lines.extend(f"- {key.replace('_', ' ').capitalize()}: {value}" for key, value in metadata.items())
    lines += [
        f"- Result: {'Success' if summary.success else 'Completed with failures'}",
        "",
        "## Summary",
        "",
        "| Category | Created | Updated | Skipped | Deleted | Failed | Total |",
        "|---|---|---|---|---|---|---|",
    ]
    for category in context.categories:
        s = context.summary(category)
        lines.append(
            f"| {category} | {s.created + s.would_create} | {s.updated + s.would_update} "
            f"| {s.skipped} | {s.deleted + s.would_delete} | {s.failed} | {s.total} |"
        )
    lines.append(
        f"| **Total** | {summary.created + summary.would_create} "
        f"| {summary.updated + summary.would_update} | {summary.skipped} "
        f"| {summary.deleted + summary.would_delete} | {summary.failed} | {summary.total} |"
    )

    for category in context.categories:
        lines += [
            "",
            f"## {category}",
            "",
            "| Name | Action | Status | Platform | State | Id |",
            "|---|---|---|---|---|---|",
        ]
        for record in context.results_for(category):
            lines.append(
                f"| {_cell(record.name)} | {record.action.value} | {_cell(record.status)} "
                f"| {_cell(record.platform)} | {_cell(record.state)} | {_cell(record.id)} |"
            )
    return "\n".join(lines) + "\n"


def render_csv(context: RunContext, **metadata: Any) -> str:
    """One row per record."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for category in context.categories:
        for record in context.results_for(category):
            writer.writerow({"category": category, **record.to_dict()})
    return buffer.getvalue()


RENDERERS = {
    ReportFormat.JSON: render_json,
    ReportFormat.MARKDOWN: render_markdown,
    ReportFormat.CSV: render_csv,
}


def write_reports(
    context: RunContext,
    reports_dir: Path,
    formats: Iterable[ReportFormat],
    **metadata: Any,
) -> list[Path]:
    """Write the selected report renderings.

    Returns:
        Paths of the written files.
    """
    reports_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")

    written: list[Path] = []
    for report_format in formats:
        path = reports_dir / f"hydration-report-{stamp}.{EXTENSIONS[report_format]}"
        path.write_text(RENDERERS[report_format](context, **metadata), encoding="utf-8")
        written.append(path)
        logger.info("Report written", extra={"report_path": str(path), "format": report_format.value})
    return written
