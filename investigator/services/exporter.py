"""Export of a completed task's result rows (JSON, CSV or Excel)."""
import csv
import io
import json
import logging

from openpyxl import Workbook

from investigator.models.domain import Task, utcnow
from investigator.models.enums import Actor, AuditEventKind, ExportFormat, TaskStage
from investigator.models.results import ExportedFile, TaskResult
from investigator.services.audit_log import AuditEntry, AuditLog
from investigator.services.errors import InvalidTransition
from investigator.services.task_pipeline import TaskPipeline

logger = logging.getLogger(__name__)

COLUMNS = ["Date", "Source", "Finding", "Confidence"]

_MEDIA_TYPES = {
    ExportFormat.JSON: "application/json",
    ExportFormat.CSV: "text/csv",
    ExportFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _rows(result: TaskResult) -> list:
    return [[r.date, r.source, r.finding, r.confidence.value] for r in result.rows]


def render_json(task: Task, result: TaskResult) -> bytes:
    payload = {
        "task_id": task.id,
        "task": task.original_input,
        "summary": result.summary,
        "rows": [row.model_dump(mode="json") for row in result.rows],
    }
    return json.dumps(payload, indent=2).encode("utf-8")


def render_csv(task: Task, result: TaskResult) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(COLUMNS)
    writer.writerows(_rows(result))
    return buffer.getvalue().encode("utf-8")


def render_xlsx(task: Task, result: TaskResult) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Results"
    sheet.append(COLUMNS)
    for row in _rows(result):
        sheet.append(row)

    summary = workbook.create_sheet("Summary")
    summary.append(["Task", task.original_input])
    summary.append(["Summary", result.summary])
    summary.append(["Rows", len(result.rows)])

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


_RENDERERS = {
    ExportFormat.JSON: render_json,
    ExportFormat.CSV: render_csv,
    ExportFormat.XLSX: render_xlsx,
}


class ResultExporter:
    """Renders a completed task's result rows for download."""

    def __init__(self, pipeline: TaskPipeline, audit_log: AuditLog):
        self._pipeline = pipeline
        self._audit = audit_log

    def export(self, task_id: int, fmt: ExportFormat) -> ExportedFile:
        """Render a completed task's result and record the export."""
        task = self._pipeline.get_task(task_id)
        result = task.result
        if task.stage != TaskStage.COMPLETED or result is None:
            raise InvalidTransition(
                f"Cannot export task {task_id}: stage is {task.stage.value}, "
                f"only {TaskStage.COMPLETED.value} tasks have results"
            )

        fmt = ExportFormat(fmt)
        content = _RENDERERS[fmt](task, result)
        file_name = f"task-{task.id}-report.{fmt.value}"

        self._audit.record(AuditEntry(
            kind=AuditEventKind.EXPORT,
            actor=Actor.USER,
            title="Report Export",
            description=f"Exported results of task {task.id} as {fmt.value.upper()}",
            entity_type="Task",
            entity_id=str(task.id),
            source_file_ids=list(task.output_file_ids or []),
            output_file_ids=[file_name],
            records_processed=len(result.rows),
            parameters={"format": fmt.value},
        ))
        logger.info("Exported task %s as %s", task.id, fmt.value)
        return ExportedFile(
            file_name=file_name,
            media_type=_MEDIA_TYPES[fmt],
            content=content,
            generated_at=utcnow(),
        )
