"""Tests for exporting completed task results."""
import csv
import io
import json

import pytest
from openpyxl import load_workbook

from investigator.models.enums import Actor, AuditEventKind, ExportFormat
from investigator.services.audit_log import AuditFilter
from investigator.services.errors import InvalidTransition


class TestExport:

    def test_csv_export(self, exporter, completed_task):
        exported = exporter.export(completed_task.id, ExportFormat.CSV)

        rows = list(csv.reader(io.StringIO(exported.content.decode("utf-8"))))

        assert exported.file_name == f"task-{completed_task.id}-report.csv"
        assert exported.media_type == "text/csv"
        assert rows[0] == ["Date", "Source", "Finding", "Confidence"]
        assert rows[1] == ["2024-01-15", "Document_A.pdf", "Suspicious transaction of $10,000", "High"]
        assert len(rows) == 4

    def test_json_export(self, exporter, completed_task):
        exported = exporter.export(completed_task.id, ExportFormat.JSON)

        payload = json.loads(exported.content)

        assert payload["task_id"] == completed_task.id
        assert payload["task"] == "Analyze financial transactions"
        assert payload["summary"] == completed_task.result.summary
        assert [r["confidence"] for r in payload["rows"]] == ["High", "Medium", "High"]

    def test_xlsx_export(self, exporter, completed_task):
        exported = exporter.export(completed_task.id, "xlsx")

        workbook = load_workbook(io.BytesIO(exported.content))

        assert workbook.sheetnames == ["Results", "Summary"]
        results = [list(r) for r in workbook["Results"].iter_rows(values_only=True)]
        assert results[0] == ["Date", "Source", "Finding", "Confidence"]
        assert len(results) == 4
        summary = {r[0]: r[1] for r in workbook["Summary"].iter_rows(values_only=True)}
        assert summary["Rows"] == 3

    def test_export_is_audited(self, exporter, audit_log, completed_task):
        exported = exporter.export(completed_task.id, ExportFormat.CSV)

        [event] = audit_log.query(AuditFilter(kind=AuditEventKind.EXPORT))

        assert event.actor == Actor.USER
        assert event.title == "Report Export"
        assert event.source_file_ids == completed_task.output_file_ids
        assert event.output_file_ids == [exported.file_name]
        assert event.records_processed == 3

    def test_unfinished_task_refused(self, exporter, pipeline, audit_log, sample_document):
        task = pipeline.submit("Analyze financial transactions", [sample_document.id])
        before = len(audit_log.query())

        with pytest.raises(InvalidTransition):
            exporter.export(task.id, ExportFormat.JSON)

        assert len(audit_log.query()) == before
