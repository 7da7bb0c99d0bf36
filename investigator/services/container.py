"""Wiring of the services around one session factory and one analysis engine."""
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from investigator.services.analysis_engine import AnalysisEngine
from investigator.services.audit_log import AuditLog
from investigator.services.document_store import DocumentStore
from investigator.services.exporter import ResultExporter
from investigator.services.query_router import QueryRouter
from investigator.services.task_pipeline import TaskPipeline


@dataclass
class Services:
    audit_log: AuditLog
    documents: DocumentStore
    pipeline: TaskPipeline
    queries: QueryRouter
    exporter: ResultExporter


def build_services(session_factory: sessionmaker, engine: AnalysisEngine, max_workers: int = 4) -> Services:
    # All writers share a single AuditLog so id assignment has one serialization point
    audit_log = AuditLog(session_factory)
    documents = DocumentStore(session_factory, audit_log)
    pipeline = TaskPipeline(session_factory, audit_log, documents, engine, max_workers=max_workers)
    return Services(
        audit_log=audit_log,
        documents=documents,
        pipeline=pipeline,
        queries=QueryRouter(engine, audit_log),
        exporter=ResultExporter(pipeline, audit_log),
    )
