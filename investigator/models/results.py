"""
Value objects exchanged with the analysis engine.

These are frozen: a plan or result never changes once it has been attached to
a Task, and a document snapshot never follows later edits of the Document.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from investigator.models.enums import (
    Confidence,
    DocumentType,
    IntelligenceLevel,
    MimeKind,
    QueryKind,
)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DocumentSnapshot(_Frozen):
    """By-value copy of a Document, captured when a task is submitted."""
    id: Optional[int] = None  # None for derived inputs such as a parent task's output
    file_name: str
    mime_kind: MimeKind
    size_bytes: int = 0
    document_type: DocumentType = DocumentType.EVIDENCE
    intelligence_level: IntelligenceLevel = IntelligenceLevel.MEDIUM
    definition: str = ""


class TaskPlan(_Frozen):
    paraphrased_task: str
    logic_summary: str
    suggested_format: str
    estimated_time: str
    # Human-readable description recorded as the audit event's transformation logic
    transformation_logic: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ResultRow(_Frozen):
    date: str
    source: str
    finding: str
    confidence: Confidence


class TaskResult(_Frozen):
    summary: str
    rows: List[ResultRow] = Field(default_factory=list)
    # Engine-supplied overall confidence; derived from the rows when absent
    confidence: Optional[int] = Field(default=None, ge=0, le=100)

    def derived_confidence(self) -> int:
        """Engine value if supplied, else the share of High rows as a percentage."""
        if self.confidence is not None:
            return self.confidence
        if not self.rows:
            return 0
        high = sum(1 for row in self.rows if row.confidence == Confidence.HIGH)
        return round(high * 100 / len(self.rows))


class ClassifiedQuery(_Frozen):
    kind: QueryKind
    text: str
    documents: List[DocumentSnapshot] = Field(default_factory=list)


class TimelineEvent(_Frozen):
    date: str
    event: str
    details: Dict[str, str] = Field(default_factory=dict)


class TimelineResponse(_Frozen):
    kind: Literal["timeline"] = "timeline"
    content: str = ""
    events: List[TimelineEvent] = Field(default_factory=list)


class TableResponse(_Frozen):
    kind: Literal["table"] = "table"
    content: str = ""
    columns: List[str] = Field(default_factory=list)
    rows: List[List[str]] = Field(default_factory=list)


class FinancialSummaryResponse(_Frozen):
    kind: Literal["financial_summary"] = "financial_summary"
    content: str = ""
    total: str
    suspicious_count: int = Field(ge=0)
    note: str


class TextResponse(_Frozen):
    kind: Literal["text"] = "text"
    content: str


TypedResponse = Annotated[
    Union[TimelineResponse, TableResponse, FinancialSummaryResponse, TextResponse],
    Field(discriminator="kind"),
]


class ExportedFile(_Frozen):
    file_name: str
    media_type: str
    content: bytes
    generated_at: datetime
