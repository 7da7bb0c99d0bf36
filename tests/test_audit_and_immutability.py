"""
Tests for audit logging and audit trail immutability.

These tests prove:
- Audit events are created for uploads, analysis and chaining
- Event ids increase in recording order, also under concurrent writers
- Audit rows are provably immutable at the ORM layer
"""
import threading

import pytest

from investigator.models.audit import AuditEvent, AuditImmutableError
from investigator.models.enums import Actor, AuditEventKind, AuditStatus
from investigator.services.audit_log import AuditEntry, AuditFilter
from investigator.services.document_store import RawFile
from investigator.services.errors import ConfidenceOutOfRange, NotFound, ValidationError

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _entry(title, kind=AuditEventKind.ANALYSIS, actor=Actor.AI, **fields):
    return AuditEntry(kind=kind, actor=actor, title=title, **fields)


class TestAuditLogging:
    """Test that audit events are created for the mandatory actions."""

    def test_upload_audit(self, document_store, audit_log):
        """Audit event created when documents are uploaded."""
        docs = document_store.add_batch([
            RawFile("Case_Report.pdf", b"%PDF-1.4", "application/pdf"),
            RawFile("Financial_Records_C.xlsx", b"PK", XLSX),
        ])

        [audit] = audit_log.query(AuditFilter(kind=AuditEventKind.UPLOAD))

        assert audit.actor == Actor.USER
        assert audit.title == "Document Upload"
        assert audit.entity_type == "Document"
        assert audit.entity_id == ",".join(str(d.id) for d in docs)
        assert audit.source_file_ids == ["Case_Report.pdf", "Financial_Records_C.xlsx"]
        assert audit.records_processed == 2

    def test_single_upload_mentions_size(self, document_store, audit_log):
        document_store.add(RawFile("notes.json", b"x" * 1536, "application/json"))

        [audit] = audit_log.query()

        assert audit.description == "Uploaded notes.json (1.5 KB)"

    def test_analysis_audit(self, pipeline, audit_log, sample_document):
        """Audit event created when a task is analyzed."""
        task = pipeline.submit("Analyze financial transactions", [sample_document.id])
        task = pipeline.analyze(task.id)

        [audit] = audit_log.query(AuditFilter(entity_type="Task", entity_id=str(task.id)))

        assert audit.kind == AuditEventKind.ANALYSIS
        assert audit.actor == Actor.AI
        assert audit.status == AuditStatus.COMPLETED
        assert audit.description == task.plan.paraphrased_task
        assert audit.source_file_ids == ["Financial_Records_C.xlsx"]
        assert audit.transformation_logic == task.plan.transformation_logic

    def test_completion_audit_carries_execution_window(self, audit_log, completed_task):
        audit = audit_log.query(AuditFilter(entity_id=str(completed_task.id)))[-1]

        assert audit.title == "Task Completed"
        assert audit.output_file_ids == completed_task.output_file_ids
        assert audit.parameters["started_at"] <= audit.parameters["finished_at"]
        assert audit.execution_time_ms >= 0

    def test_chain_audit(self, pipeline, audit_log, completed_task):
        """Chain event lists the parent's outputs as its sources."""
        child = pipeline.chain(completed_task.id, "Build a timeline from these findings")

        [audit] = audit_log.query(AuditFilter(kind=AuditEventKind.CHAIN))

        assert audit.actor == Actor.USER
        assert audit.entity_id == str(child.id)
        assert audit.source_file_ids == completed_task.output_file_ids
        assert audit.parameters == {"parent_task_id": completed_task.id}

    def test_removal_keeps_audit_names(self, document_store, audit_log, sample_document):
        """Removing a document does not touch the audit rows that name it."""
        document_store.remove(sample_document.id)

        [audit] = audit_log.query()

        assert audit.source_file_ids == ["Financial_Records_C.xlsx"]

    def test_duplicate_file_ids_collapsed(self, audit_log):
        event = audit_log.record(_entry("Dedup", source_file_ids=["a.pdf", "b.pdf", "a.pdf"]))

        assert event.source_file_ids == ["a.pdf", "b.pdf"]


class TestAuditOrdering:

    def test_ids_increase_in_recording_order(self, audit_log):
        first = audit_log.record(_entry("First"))
        second = audit_log.record(_entry("Second"))
        third = audit_log.record(_entry("Third"))

        assert first.id < second.id < third.id
        assert [e.title for e in audit_log.query()] == ["First", "Second", "Third"]

    def test_concurrent_writers_get_distinct_increasing_ids(self, audit_log):
        """
        INVARIANT: Concurrent record() calls never share an id and query returns
        them in ascending id order.
        """
        barrier = threading.Barrier(4)

        def write(n):
            barrier.wait()
            for i in range(5):
                audit_log.record(_entry(f"writer-{n}-{i}"))

        threads = [threading.Thread(target=write, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        ids = [e.id for e in audit_log.query()]
        assert len(ids) == 20
        assert ids == sorted(ids)
        assert len(set(ids)) == 20

        # Each writer's own events appear in the order it wrote them
        for n in range(4):
            titles = [e.title for e in audit_log.query(AuditFilter(text=f"writer-{n}-"))]
            assert titles == [f"writer-{n}-{i}" for i in range(5)]


class TestAuditQueries:

    def test_text_filter_is_case_insensitive(self, audit_log):
        audit_log.record(_entry("Task Analysis", description="Wire transfers reviewed"))
        audit_log.record(_entry("Document Upload", kind=AuditEventKind.UPLOAD, actor=Actor.USER))

        assert [e.title for e in audit_log.query(AuditFilter(text="WIRE"))] == ["Task Analysis"]
        assert [e.title for e in audit_log.query(AuditFilter(text="upload"))] == ["Document Upload"]

    def test_kind_and_actor_filters(self, audit_log):
        audit_log.record(_entry("Plan", kind=AuditEventKind.ANALYSIS, actor=Actor.AI))
        audit_log.record(_entry("Ask", kind=AuditEventKind.QUERY, actor=Actor.USER))
        audit_log.record(_entry("Upload", kind=AuditEventKind.UPLOAD, actor=Actor.USER))

        assert [e.title for e in audit_log.query(AuditFilter(actor=Actor.USER))] == ["Ask", "Upload"]
        assert [e.title for e in audit_log.query(
            AuditFilter(kind=AuditEventKind.QUERY, actor=Actor.USER)
        )] == ["Ask"]
        assert audit_log.query(AuditFilter(kind=AuditEventKind.EXPORT)) == []

    def test_text_filter_matches_wildcards_literally(self, audit_log):
        audit_log.record(_entry("Growth of 50% in transfers"))
        audit_log.record(_entry("Growth of 500 in transfers"))

        assert [e.title for e in audit_log.query(AuditFilter(text="50%"))] == ["Growth of 50% in transfers"]

    def test_get_unknown_event(self, audit_log):
        with pytest.raises(NotFound):
            audit_log.get(12345)

    def test_get_returns_event(self, audit_log):
        event = audit_log.record(_entry("Lookup"))
        assert audit_log.get(event.id).title == "Lookup"


class TestAuditValidation:

    def test_confidence_above_range_refused(self, audit_log):
        with pytest.raises(ConfidenceOutOfRange):
            audit_log.record(_entry("Too sure", confidence=101))
        assert audit_log.query() == []

    def test_confidence_bounds_accepted(self, audit_log):
        audit_log.record(_entry("None", confidence=0))
        audit_log.record(_entry("Full", confidence=100))
        assert [e.confidence for e in audit_log.query()] == [0, 100]

    def test_negative_counts_refused(self, audit_log):
        with pytest.raises(ValidationError):
            audit_log.record(_entry("Negative", records_processed=-1))
        with pytest.raises(ValidationError):
            audit_log.record(_entry("Negative", execution_time_ms=-5))
        assert audit_log.query() == []


class TestAuditImmutability:
    """
    Test that audit rows cannot be changed once written.
    """

    def test_update_is_refused(self, session_factory, audit_log):
        event = audit_log.record(_entry("Original title"))

        with session_factory() as db:
            row = db.get(AuditEvent, event.id)
            row.title = "Rewritten history"
            with pytest.raises(AuditImmutableError):
                db.commit()
            db.rollback()

        assert audit_log.get(event.id).title == "Original title"

    def test_delete_is_refused(self, session_factory, audit_log):
        event = audit_log.record(_entry("Keep me"))

        with session_factory() as db:
            db.delete(db.get(AuditEvent, event.id))
            with pytest.raises(AuditImmutableError):
                db.commit()
            db.rollback()

        assert [e.id for e in audit_log.query()] == [event.id]

    def test_audit_log_has_no_update_methods(self, audit_log):
        """AuditLog exposes no way to edit or delete events."""
        for name in ("update", "delete", "remove", "edit", "clear"):
            assert not hasattr(audit_log, name)

    def test_events_accumulate(self, pipeline, audit_log, completed_task):
        """Later operations only ever append."""
        before = audit_log.query()
        pipeline.chain(completed_task.id, "Next step")
        after = audit_log.query()

        assert len(after) == len(before) + 1
        assert [(e.id, e.title) for e in after[:len(before)]] == [(e.id, e.title) for e in before]
