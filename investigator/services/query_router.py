"""
Query router for the data chat.

Classification is a fixed keyword rule set, checked in order, first match
wins (case-insensitive):

    "timeline", "events"         -> Timeline
    "location", "where"          -> LocationTable
    "financial", "transaction"   -> FinancialSummary
    anything else                -> PlainText

PlainText is the fallback, so route() answers every non-empty question.
One Query audit event is written per question/answer round trip.
"""
import logging
import time
from typing import List, Sequence, Tuple

from investigator.models.enums import Actor, AuditEventKind, AuditStatus, QueryKind
from investigator.models.results import ClassifiedQuery, DocumentSnapshot, TextResponse, TypedResponse
from investigator.services.analysis_engine import AnalysisEngine
from investigator.services.audit_log import AuditEntry, AuditLog
from investigator.services.errors import EmptyInput, EngineError

logger = logging.getLogger(__name__)

_RULES: List[Tuple[Tuple[str, ...], QueryKind]] = [
    (("timeline", "events"), QueryKind.TIMELINE),
    (("location", "where"), QueryKind.LOCATION_TABLE),
    (("financial", "transaction"), QueryKind.FINANCIAL_SUMMARY),
]

SUGGESTED_QUESTIONS = [
    "Where was the suspect on June 12?",
    "Show me financial transactions above $10,000",
    "What are the communication patterns between suspects?",
    "Generate a timeline of all events",
    "Find anomalies in the phone records",
]


def classify(query_text: str) -> QueryKind:
    lowered = query_text.lower()
    for keywords, kind in _RULES:
        if any(keyword in lowered for keyword in keywords):
            return kind
    return QueryKind.PLAIN_TEXT


class QueryRouter:
    """Answers data chat questions and records one Query event per round trip."""

    def __init__(self, engine: AnalysisEngine, audit_log: AuditLog):
        self._engine = engine
        self._audit = audit_log

    def route(self, query_text: str, documents: Sequence[DocumentSnapshot] = ()) -> TypedResponse:
        text = (query_text or "").strip()
        if not text:
            raise EmptyInput("Question cannot be empty")

        kind = classify(text)
        query = ClassifiedQuery(kind=kind, text=text, documents=list(documents))
        status = AuditStatus.COMPLETED
        started = time.monotonic()
        try:
            response = self._engine.answer(query)
        except EngineError as exc:
            logger.warning("Engine could not answer %s query: %s", kind.value, exc)
            status = AuditStatus.FAILED
            response = TextResponse(content=f"I couldn't answer that right now: {exc}")
        except Exception as exc:
            logger.exception("Analysis engine raised while answering a %s query", kind.value)
            status = AuditStatus.FAILED
            response = TextResponse(content=f"I couldn't answer that right now: {exc}")

        self._audit.record(AuditEntry(
            kind=AuditEventKind.QUERY,
            actor=Actor.USER,
            title="Data Chat Query",
            description=f'Asked: "{text}"',
            status=status,
            entity_type="Query",
            source_file_ids=[d.file_name for d in documents],
            transformation_logic=f"Classified as {kind.value} by keyword rules",
            records_processed=len(documents),
            execution_time_ms=max(0, int((time.monotonic() - started) * 1000)),
            parameters={"classification": kind.value, "response_kind": response.kind},
        ))
        return response
