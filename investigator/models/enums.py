"""Enums for the investigation assistant - these define the valid values for stages, kinds and levels."""
from enum import Enum


class MimeKind(str, Enum):
    """File kinds accepted for upload. Anything else is refused."""
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"
    JSON = "json"


class DocumentType(str, Enum):
    EVIDENCE = "Evidence"
    REPORT = "Report"
    STATEMENT = "Statement"
    FINANCIAL = "Financial"
    COMMUNICATION = "Communication"


class IntelligenceLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TaskStage(str, Enum):
    """The five stages a Task can be in. No other stages are allowed."""
    SUBMITTED = "Submitted"
    ANALYZED = "Analyzed"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStage.COMPLETED, TaskStage.FAILED)


class Confidence(str, Enum):
    """Confidence attached to a single result row."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class AuditEventKind(str, Enum):
    UPLOAD = "Upload"
    ANALYSIS = "Analysis"
    QUERY = "Query"
    EXPORT = "Export"
    CHAIN = "Chain"


class Actor(str, Enum):
    USER = "User"
    AI = "AI"


class AuditStatus(str, Enum):
    COMPLETED = "Completed"
    FAILED = "Failed"
    IN_PROGRESS = "InProgress"


class QueryKind(str, Enum):
    """Response shapes the query router can classify a question into."""
    TIMELINE = "Timeline"
    LOCATION_TABLE = "LocationTable"
    FINANCIAL_SUMMARY = "FinancialSummary"
    PLAIN_TEXT = "PlainText"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
    XLSX = "xlsx"
