"""Tests for data chat classification and routing."""
import pytest

from investigator.models.enums import Actor, AuditEventKind, AuditStatus, QueryKind
from investigator.models.results import (
    FinancialSummaryResponse,
    TableResponse,
    TextResponse,
    TimelineResponse,
)
from investigator.services.audit_log import AuditFilter
from investigator.services.errors import EmptyInput, EngineError
from investigator.services.query_router import SUGGESTED_QUESTIONS, classify


class TestClassification:

    @pytest.mark.parametrize("question,kind", [
        ("Generate a timeline of all events", QueryKind.TIMELINE),
        ("What EVENTS happened in March?", QueryKind.TIMELINE),
        ("Where was the suspect on June 12?", QueryKind.LOCATION_TABLE),
        ("List every location we have", QueryKind.LOCATION_TABLE),
        ("Show me financial transactions above $10,000", QueryKind.FINANCIAL_SUMMARY),
        ("Any unusual transaction patterns?", QueryKind.FINANCIAL_SUMMARY),
        ("What are the communication patterns between suspects?", QueryKind.PLAIN_TEXT),
        ("Find anomalies in the phone records", QueryKind.PLAIN_TEXT),
    ])
    def test_keyword_rules(self, question, kind):
        assert classify(question) == kind

    def test_first_rule_wins(self):
        # Mentions both a timeline and transactions
        assert classify("Timeline of the financial transactions") == QueryKind.TIMELINE
        assert classify("Where did the transaction happen?") == QueryKind.LOCATION_TABLE

    def test_suggestions_cover_prototype_questions(self):
        assert len(SUGGESTED_QUESTIONS) == 5
        assert {classify(q) for q in SUGGESTED_QUESTIONS} == set(QueryKind)


class TestRouting:

    @pytest.mark.parametrize("question,response_type", [
        ("Generate a timeline of all events", TimelineResponse),
        ("Where was the suspect on June 12?", TableResponse),
        ("Show me financial transactions above $10,000", FinancialSummaryResponse),
        ("Who called whom?", TextResponse),
    ])
    def test_response_shape_follows_classification(self, router, question, response_type):
        assert isinstance(router.route(question), response_type)

    def test_one_event_per_round_trip(self, router, audit_log, sample_document):
        router.route("Where was the suspect on June 12?", [sample_document.snapshot()])

        [event] = audit_log.query(AuditFilter(kind=AuditEventKind.QUERY))

        assert event.kind == AuditEventKind.QUERY
        assert event.actor == Actor.USER
        assert event.title == "Data Chat Query"
        assert event.description == 'Asked: "Where was the suspect on June 12?"'
        assert event.source_file_ids == ["Financial_Records_C.xlsx"]
        assert event.parameters == {"classification": "LocationTable", "response_kind": "table"}

    def test_financial_summary_fields(self, router):
        response = router.route("Show me financial transactions above $10,000")

        assert response.total == "$287,450"
        assert response.suspicious_count == 5

    def test_engine_failure_degrades_to_text(self, router, engine, audit_log):
        engine.answer_error = EngineError("model unavailable")

        response = router.route("Generate a timeline of all events")

        assert isinstance(response, TextResponse)
        assert "model unavailable" in response.content
        [event] = audit_log.query()
        assert event.status == AuditStatus.FAILED
        assert event.parameters["response_kind"] == "text"

    def test_unexpected_engine_exception_degrades_to_text(self, router, engine, audit_log):
        engine.answer_error = RuntimeError("boom")

        response = router.route("Generate a timeline of all events")

        assert isinstance(response, TextResponse)
        assert "boom" in response.content
        [event] = audit_log.query()
        assert event.kind == AuditEventKind.QUERY
        assert event.status == AuditStatus.FAILED
        assert event.parameters == {"classification": "Timeline", "response_kind": "text"}

    def test_empty_question_refused(self, router, audit_log):
        with pytest.raises(EmptyInput):
            router.route("   ")
        assert audit_log.query() == []
