"""
Append-only audit log.

All lifecycle events are written through AuditLog.record - no other code
constructs AuditEvent rows. The lock around the insert is the one global
serialization point of the system: ids handed out under it are strictly
increasing in the order record() calls complete.
"""
import logging
import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from investigator.models.audit import AuditEvent
from investigator.models.enums import Actor, AuditEventKind, AuditStatus
from investigator.services.errors import (
    AuditTrailFailure,
    ConfidenceOutOfRange,
    NotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)


class AuditEntry(BaseModel):
    """What a service wants recorded. AuditLog turns it into an AuditEvent."""
    kind: AuditEventKind
    actor: Actor
    title: str
    description: str = ""
    status: AuditStatus = AuditStatus.COMPLETED
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    source_file_ids: List[str] = Field(default_factory=list)
    output_file_ids: List[str] = Field(default_factory=list)
    transformation_logic: Optional[str] = None
    confidence: Optional[int] = None
    records_processed: Optional[int] = None
    execution_time_ms: Optional[int] = None
    parameters: Optional[Dict[str, Any]] = None


class AuditFilter(BaseModel):
    """Absent fields match everything."""
    text: Optional[str] = None
    kind: Optional[AuditEventKind] = None
    actor: Optional[Actor] = None
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


def _unique(values: List[str]) -> List[str]:
    # File id lists are sets; keep first-seen order for display
    return list(dict.fromkeys(values))


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class AuditLog:
    """Writes and reads the audit trail."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> AuditEvent:
        """
        Append one event and return it with its id assigned.

        Malformed metadata (confidence outside 0..100, negative counts) is
        refused. A storage failure is not recoverable and propagates as
        AuditTrailFailure.
        """
        self._validate(entry)

        with self._lock:
            db = self._session_factory()
            try:
                event = AuditEvent(
                    kind=entry.kind,
                    actor=entry.actor,
                    title=entry.title,
                    description=entry.description,
                    status=entry.status,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    source_file_ids=_unique(entry.source_file_ids),
                    output_file_ids=_unique(entry.output_file_ids),
                    transformation_logic=entry.transformation_logic,
                    confidence=entry.confidence,
                    records_processed=entry.records_processed,
                    execution_time_ms=entry.execution_time_ms,
                    parameters=entry.parameters,
                )
                db.add(event)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.critical("Audit trail write failed: %s", exc, exc_info=True)
                raise AuditTrailFailure(f"Could not append to audit trail: {exc}") from exc
            finally:
                db.close()

        logger.debug(
            "Audit event recorded",
            extra={"audit_id": event.id, "kind": event.kind.value, "status": event.status.value},
        )
        return event

    def query(self, audit_filter: Optional[AuditFilter] = None) -> List[AuditEvent]:
        """Return matching events in ascending id order."""
        audit_filter = audit_filter or AuditFilter()
        with self._session_factory() as db:
            q = db.query(AuditEvent)
            if audit_filter.text:
                pattern = f"%{_escape_like(audit_filter.text)}%"
                q = q.filter(or_(
                    AuditEvent.title.ilike(pattern, escape="\\"),
                    AuditEvent.description.ilike(pattern, escape="\\"),
                ))
            if audit_filter.kind is not None:
                q = q.filter(AuditEvent.kind == audit_filter.kind)
            if audit_filter.actor is not None:
                q = q.filter(AuditEvent.actor == audit_filter.actor)
            if audit_filter.entity_type is not None:
                q = q.filter(AuditEvent.entity_type == audit_filter.entity_type)
            if audit_filter.entity_id is not None:
                q = q.filter(AuditEvent.entity_id == audit_filter.entity_id)
            return q.order_by(AuditEvent.id.asc()).all()

    def get(self, event_id: int) -> AuditEvent:
        with self._session_factory() as db:
            event = db.get(AuditEvent, event_id)
            if event is None:
                raise NotFound(f"Audit event {event_id} not found")
            return event

    @staticmethod
    def _validate(entry: AuditEntry) -> None:
        if entry.confidence is not None and not 0 <= entry.confidence <= 100:
            raise ConfidenceOutOfRange(
                f"Confidence must be between 0 and 100, got {entry.confidence}"
            )
        if entry.records_processed is not None and entry.records_processed < 0:
            raise ValidationError("records_processed cannot be negative")
        if entry.execution_time_ms is not None and entry.execution_time_ms < 0:
            raise ValidationError("execution_time_ms cannot be negative")
