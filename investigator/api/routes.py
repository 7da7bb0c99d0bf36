"""API routes for documents, the task pipeline, data chat and the audit trail."""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile, status

from investigator.api.schemas import (
    AuditEventResponse,
    DocumentResponse,
    DocumentUpdate,
    ErrorResponse,
    QueryRequest,
    QueryResponse,
    TaskChain,
    TaskCreate,
    TaskResponse,
)
from investigator.models.enums import Actor, AuditEventKind, ExportFormat, TaskStage
from investigator.services.audit_log import AuditFilter
from investigator.services.container import Services
from investigator.services.document_store import DocumentMetadata, RawFile
from investigator.services.errors import (
    InvalidTransition,
    NotFound,
    PipelineError,
    UnsupportedFileKind,
    ValidationError,
)
from investigator.services.query_router import SUGGESTED_QUESTIONS, classify

router = APIRouter()

_REFUSALS = {
    404: {"model": ErrorResponse, "description": "Unknown id"},
    409: {"model": ErrorResponse, "description": "Refusal - task is in the wrong stage"},
    422: {"model": ErrorResponse, "description": "Refusal - invalid input"},
}


def get_services(request: Request) -> Services:
    """Dependency returning the services wired in create_app."""
    return request.app.state.services


def _refusal(exc: PipelineError) -> HTTPException:
    if isinstance(exc, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, InvalidTransition):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        code = 422
    else:
        code = status.HTTP_400_BAD_REQUEST
    detail = {"error": type(exc).__name__, "message": exc.message}
    if isinstance(exc, UnsupportedFileKind):
        detail["file_names"] = exc.file_names
    return HTTPException(status_code=code, detail=detail)


# Document endpoints
@router.post("/documents", response_model=List[DocumentResponse], status_code=status.HTTP_201_CREATED,
             responses=_REFUSALS)
def upload_documents(files: List[UploadFile] = File(...), services: Services = Depends(get_services)):
    """
    Upload one or more documents (PDF, Word, Excel or JSON).

    WILL REFUSE the whole batch if any file has an unsupported type.
    """
    raw = [
        RawFile(file_name=f.filename or "upload", content=f.file.read(), content_type=f.content_type)
        for f in files
    ]
    try:
        return services.documents.add_batch(raw)
    except PipelineError as e:
        raise _refusal(e)


@router.get("/documents", response_model=List[DocumentResponse])
def list_documents(services: Services = Depends(get_services)):
    """List documents in upload order."""
    return services.documents.list_all()


@router.patch("/documents/{document_id}", response_model=DocumentResponse, responses=_REFUSALS)
def update_document(document_id: int, changes: DocumentUpdate, services: Services = Depends(get_services)):
    """Edit document metadata. Only the fields sent are changed."""
    try:
        return services.documents.update_metadata(
            document_id, DocumentMetadata(**changes.model_dump(exclude_unset=True))
        )
    except PipelineError as e:
        raise _refusal(e)


@router.delete("/documents/{document_id}", status_code=status.HTTP_204_NO_CONTENT, responses=_REFUSALS)
def remove_document(document_id: int, services: Services = Depends(get_services)):
    try:
        services.documents.remove(document_id)
    except PipelineError as e:
        raise _refusal(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Task endpoints
@router.post("/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED, responses=_REFUSALS)
def submit_task(task_data: TaskCreate, services: Services = Depends(get_services)):
    """Submit a task described in natural language. It starts in Submitted."""
    try:
        return services.pipeline.submit(task_data.input_text, task_data.context_document_ids)
    except PipelineError as e:
        raise _refusal(e)


@router.get("/tasks", response_model=List[TaskResponse])
def list_tasks(stage: Optional[TaskStage] = None, services: Services = Depends(get_services)):
    return services.pipeline.list_tasks(stage)


@router.get("/tasks/{task_id}", response_model=TaskResponse, responses=_REFUSALS)
def get_task(task_id: int, services: Services = Depends(get_services)):
    """Poll a task. Failed tasks stay visible with their failure reason."""
    try:
        return services.pipeline.get_task(task_id)
    except PipelineError as e:
        raise _refusal(e)


@router.post("/tasks/{task_id}/analyze", response_model=TaskResponse, responses=_REFUSALS)
def analyze_task(task_id: int, services: Services = Depends(get_services)):
    """
    Produce the task plan.

    Engine failures come back as a Failed task, not as an error response.
    """
    try:
        return services.pipeline.analyze(task_id)
    except PipelineError as e:
        raise _refusal(e)


@router.post("/tasks/{task_id}/execute", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED,
             responses=_REFUSALS)
def execute_task(task_id: int, services: Services = Depends(get_services)):
    """
    Start running an analyzed task. Returns at once with the task Executing.

    WILL REFUSE if the task is not Analyzed, including when it is already executing.
    """
    try:
        return services.pipeline.execute(task_id)
    except PipelineError as e:
        raise _refusal(e)


@router.post("/tasks/{task_id}/cancel", response_model=TaskResponse, responses=_REFUSALS)
def cancel_task(task_id: int, services: Services = Depends(get_services)):
    try:
        return services.pipeline.cancel(task_id)
    except PipelineError as e:
        raise _refusal(e)


@router.post("/tasks/{task_id}/chain", response_model=TaskResponse, status_code=status.HTTP_201_CREATED,
             responses=_REFUSALS)
def chain_task(task_id: int, chain_data: TaskChain, services: Services = Depends(get_services)):
    """Start a new task that takes this completed task's output as its input."""
    try:
        return services.pipeline.chain(task_id, chain_data.input_text)
    except PipelineError as e:
        raise _refusal(e)


@router.get("/tasks/{task_id}/lineage", response_model=List[TaskResponse], responses=_REFUSALS)
def task_lineage(task_id: int, services: Services = Depends(get_services)):
    """Ancestors of a chained task, nearest first."""
    try:
        return services.pipeline.lineage(task_id)
    except PipelineError as e:
        raise _refusal(e)


@router.get("/tasks/{task_id}/export", responses=_REFUSALS)
def export_task(
    task_id: int,
    fmt: ExportFormat = Query(ExportFormat.JSON, alias="format"),
    services: Services = Depends(get_services),
):
    try:
        exported = services.exporter.export(task_id, fmt)
    except PipelineError as e:
        raise _refusal(e)
    return Response(
        content=exported.content,
        media_type=exported.media_type,
        headers={"Content-Disposition": f'attachment; filename="{exported.file_name}"'},
    )


@router.get("/results", response_model=List[TaskResponse])
def explore_results(search: Optional[str] = None, services: Services = Depends(get_services)):
    """Completed task results, optionally filtered by a search term."""
    return services.pipeline.search_results(search)


# Data chat endpoints
@router.post("/queries", response_model=QueryResponse, responses=_REFUSALS)
def ask(query_data: QueryRequest, services: Services = Depends(get_services)):
    """Answer a free-text question with a text, table, timeline or financial summary."""
    try:
        if query_data.document_ids is None:
            documents = [d.snapshot() for d in services.documents.list_all()]
        else:
            documents = services.documents.snapshot(query_data.document_ids)
        response = services.queries.route(query_data.query, documents)
    except PipelineError as e:
        raise _refusal(e)
    return QueryResponse(
        query=query_data.query,
        classification=classify(query_data.query),
        response=response,
    )


@router.get("/queries/suggestions", response_model=List[str])
def suggested_questions():
    return SUGGESTED_QUESTIONS


# Audit trail endpoints
@router.get("/audit-events", response_model=List[AuditEventResponse])
def list_audit_events(
    search: Optional[str] = None,
    kind: Optional[AuditEventKind] = None,
    actor: Optional[Actor] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Audit trail in recording order, filtered by text, kind and actor."""
    return services.audit_log.query(AuditFilter(
        text=search,
        kind=kind,
        actor=actor,
        entity_type=entity_type,
        entity_id=entity_id,
    ))
