"""Tests for run report rendering."""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path

import pytest

from hydrator.config import ReportFormat
from hydrator.context import RunContext
from hydrator.report import (
    CSV_COLUMNS,
    render_csv,
    render_json,
    render_markdown,
    write_reports,
)
from hydrator.results import ResultAction, ResultRecord

TENANT_ID = "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def context() -> RunContext:
    context = RunContext(tenant_id=TENANT_ID)
    context.add_results(
        "Groups",
        [
            ResultRecord(name="Pilot | Users", resource_type="group",
                         action=ResultAction.CREATED, status="Created", id="g-1"),
            ResultRecord(name="Broken", resource_type="group",
                         action=ResultAction.FAILED, status="Quota exceeded"),
        ],
    )
    context.add_results(
        "ConditionalAccess",
        [
            ResultRecord(name="Require MFA", resource_type="conditionalAccessPolicy",
                         action=ResultAction.SKIPPED, status="Already exists and matches template",
                         state="disabled"),
        ],
    )
    return context


class TestRenderers:
    def test_json(self, context: RunContext) -> None:
        data = json.loads(render_json(context, mode="create", dry_run=False))

        assert data["tenant_id"] == TENANT_ID
        assert data["mode"] == "create"
        assert data["summary"]["total"] == 3
        assert data["summary"]["success"] is False
        assert list(data["categories"]) == ["Groups", "ConditionalAccess"]
        assert data["categories"]["Groups"]["summary"]["failed"] == 1
        record = data["categories"]["ConditionalAccess"]["results"][0]
        assert record["name"] == "Require MFA"
        assert record["state"] == "disabled"

    def test_markdown(self, context: RunContext) -> None:
        markdown = render_markdown(context, mode="create")

        assert markdown.startswith("# Intune Hydration Report")
        assert "- Mode: create" in markdown
        assert "- Result: Completed with failures" in markdown
        assert "| Groups | 1 | 0 | 0 | 0 | 1 | 2 |" in markdown
        assert "| **Total** | 1 | 0 | 1 | 0 | 1 | 3 |" in markdown
        assert "## ConditionalAccess" in markdown
        # Table cells are escaped
        assert "Pilot \\| Users" in markdown

    def test_markdown_counts_dry_run_outcomes(self) -> None:
        context = RunContext(tenant_id=TENANT_ID)
        context.add_results("Groups", [
            ResultRecord(name="A", resource_type="group", action=ResultAction.WOULD_CREATE,
                         status="Would create"),
        ])

        markdown = render_markdown(context)

        assert "| Groups | 1 | 0 | 0 | 0 | 0 | 1 |" in markdown
        assert "- Result: Success" in markdown

    def test_csv(self, context: RunContext) -> None:
        rows = list(csv.DictReader(io.StringIO(render_csv(context))))

        assert tuple(rows[0]) == CSV_COLUMNS
        assert [(r["category"], r["name"], r["action"]) for r in rows] == [
            ("Groups", "Pilot | Users", "Created"),
            ("Groups", "Broken", "Failed"),
            ("ConditionalAccess", "Require MFA", "Skipped"),
        ]
        assert rows[1]["id"] == ""


class TestWriteReports:
    def test_writes_selected_formats(self, context: RunContext, tmp_path: Path) -> None:
        reports_dir = tmp_path / "out" / "reports"

        paths = write_reports(context, reports_dir, [ReportFormat.JSON, ReportFormat.CSV])

        assert [p.suffix for p in paths] == [".json", ".csv"]
        assert all(p.parent == reports_dir and p.exists() for p in paths)
        assert all(p.name.startswith("hydration-report-") for p in paths)

    def test_no_formats(self, context: RunContext, tmp_path: Path) -> None:
        assert write_reports(context, tmp_path, []) == []
