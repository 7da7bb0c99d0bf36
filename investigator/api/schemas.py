"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from investigator.models.enums import (
    Actor,
    AuditEventKind,
    AuditStatus,
    DocumentType,
    IntelligenceLevel,
    MimeKind,
    QueryKind,
    TaskStage,
)
from investigator.models.results import TaskPlan, TaskResult, TypedResponse
from investigator.services.document_store import format_size


# Document schemas
class DocumentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    file_name: str
    mime_kind: MimeKind
    size_bytes: int
    document_type: DocumentType
    intelligence_level: IntelligenceLevel
    definition: str
    ingested_at: datetime

    @computed_field
    @property
    def size_label(self) -> str:
        return format_size(self.size_bytes)


class DocumentUpdate(BaseModel):
    file_name: Optional[str] = Field(None, min_length=1, max_length=255)
    document_type: Optional[DocumentType] = None
    intelligence_level: Optional[IntelligenceLevel] = None
    definition: Optional[str] = Field(None, max_length=2000)


# Task schemas
class TaskCreate(BaseModel):
    input_text: str
    context_document_ids: List[int] = []


class TaskChain(BaseModel):
    input_text: str


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_input: str
    stage: TaskStage
    parent_task_id: Optional[int]
    # Document ids, or the parent's output ids for a chained task
    context_document_ids: List[Union[int, str]]
    plan: Optional[TaskPlan]
    result: Optional[TaskResult]
    output_file_ids: List[str]
    failure_reason: Optional[str]
    created_at: datetime
    updated_at: datetime


# Query schemas
class QueryRequest(BaseModel):
    query: str
    # None means every uploaded document
    document_ids: Optional[List[int]] = None


class QueryResponse(BaseModel):
    query: str
    classification: QueryKind
    response: TypedResponse


# Audit schemas
class AuditEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    timestamp: datetime
    kind: AuditEventKind
    actor: Actor
    title: str
    description: str
    status: AuditStatus
    entity_type: Optional[str]
    entity_id: Optional[str]
    source_file_ids: List[str]
    output_file_ids: List[str]
    transformation_logic: Optional[str]
    confidence: Optional[int]
    records_processed: Optional[int]
    execution_time_ms: Optional[int]
    parameters: Optional[Dict[str, Any]]


# Error response
class ErrorResponse(BaseModel):
    """Response when an operation is refused."""
    error: str
    message: str
