"""Domain models - uploaded documents and the tasks run against them."""
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Enum as SQLEnum, JSON, Text

from investigator.database import Base
from investigator.models.enums import (
    DocumentType,
    IntelligenceLevel,
    MimeKind,
    TaskStage,
)
from investigator.models.results import DocumentSnapshot, TaskPlan, TaskResult


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Document(Base):
    """
    An uploaded source artifact.

    Invariants:
    - mime_kind is one of the accepted kinds (checked by the document store)
    - Only file_name, document_type, intelligence_level and definition are editable
    """
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    file_name = Column(String, nullable=False)
    mime_kind = Column(SQLEnum(MimeKind), nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    document_type = Column(SQLEnum(DocumentType), nullable=False, default=DocumentType.EVIDENCE)
    intelligence_level = Column(SQLEnum(IntelligenceLevel), nullable=False, default=IntelligenceLevel.MEDIUM)
    definition = Column(Text, nullable=False, default="")
    ingested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            id=self.id,
            file_name=self.file_name,
            mime_kind=self.mime_kind,
            size_bytes=self.size_bytes,
            document_type=self.document_type,
            intelligence_level=self.intelligence_level,
            definition=self.definition or "",
        )


class Task(Base):
    """
    A task progresses through stages: Submitted → Analyzed → Executing → Completed/Failed.

    Invariants enforced by the task pipeline:
    - Stage never moves backwards
    - plan is attached once, on Submitted → Analyzed
    - result is attached once, on Executing → Completed
    - parent_task_id is set at creation and never changed
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    original_input = Column(Text, nullable=False)
    stage = Column(SQLEnum(TaskStage), nullable=False, default=TaskStage.SUBMITTED, index=True)
    parent_task_id = Column(Integer, ForeignKey("tasks.id"), nullable=True, index=True)

    # Captured by value at submission
    context_document_ids = Column(JSON, nullable=False, default=list)
    context_snapshot = Column(JSON, nullable=False, default=list)

    plan_json = Column(JSON, nullable=True)
    result_json = Column(JSON, nullable=True)
    output_file_ids = Column(JSON, nullable=False, default=list)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def plan(self) -> Optional[TaskPlan]:
        if self.plan_json is None:
            return None
        return TaskPlan.model_validate(self.plan_json)

    @property
    def result(self) -> Optional[TaskResult]:
        if self.result_json is None:
            return None
        return TaskResult.model_validate(self.result_json)

    @property
    def documents(self) -> List[DocumentSnapshot]:
        return [DocumentSnapshot.model_validate(item) for item in self.context_snapshot or []]
