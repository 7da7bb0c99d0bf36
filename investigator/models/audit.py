"""
Audit trail model.

Every lifecycle event of documents, tasks and queries lands here as one row.
Rows are the provenance record of the system: which inputs produced which
outputs through which transformation.
"""
from sqlalchemy import Column, String, Integer, DateTime, Enum as SQLEnum, JSON, Text, event

from investigator.database import Base
from investigator.models.domain import utcnow
from investigator.models.enums import Actor, AuditEventKind, AuditStatus


class AuditImmutableError(RuntimeError):
    """Raised when something tries to change or remove a written audit row."""


class AuditEvent(Base):
    """
    Immutable audit event.

    Invariants:
    - Once written, never edited or deleted
    - id is assigned at write time and is the authoritative order
    - Source file names are snapshots, not references to live documents
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    kind = Column(SQLEnum(AuditEventKind), nullable=False, index=True)
    actor = Column(SQLEnum(Actor), nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    status = Column(SQLEnum(AuditStatus), nullable=False, default=AuditStatus.COMPLETED)

    entity_type = Column(String, nullable=True)  # e.g. "Task", "Document", "Query"
    entity_id = Column(String, nullable=True, index=True)

    source_file_ids = Column(JSON, nullable=False, default=list)
    output_file_ids = Column(JSON, nullable=False, default=list)
    transformation_logic = Column(Text, nullable=True)

    # Metadata
    confidence = Column(Integer, nullable=True)  # 0..100
    records_processed = Column(Integer, nullable=True)
    execution_time_ms = Column(Integer, nullable=True)
    parameters = Column(JSON, nullable=True)


@event.listens_for(AuditEvent, "before_update")
def _refuse_update(mapper, connection, target):
    raise AuditImmutableError(f"Audit event {target.id} is append-only and cannot be updated")


@event.listens_for(AuditEvent, "before_delete")
def _refuse_delete(mapper, connection, target):
    raise AuditImmutableError(f"Audit event {target.id} is append-only and cannot be deleted")
