"""
Analysis engine boundary.

The pipeline and the query router only see the AnalysisEngine interface. The
mock engine returns the fixed payloads of the investigation prototype, after
an optional artificial delay that honours cancellation.
"""
import abc
import threading
from typing import Optional, Sequence

from investigator.models.enums import Confidence, QueryKind
from investigator.models.results import (
    ClassifiedQuery,
    DocumentSnapshot,
    FinancialSummaryResponse,
    ResultRow,
    TableResponse,
    TaskPlan,
    TaskResult,
    TextResponse,
    TimelineEvent,
    TimelineResponse,
    TypedResponse,
)
from investigator.services.errors import Cancelled, EngineError


class CancellationToken:
    """Cooperative cancellation flag handed to the engine with each call."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled()

    def sleep(self, seconds: float) -> None:
        """Wait up to ``seconds``, waking early (and raising) on cancellation."""
        if seconds > 0 and self._event.wait(seconds):
            raise Cancelled()
        self.raise_if_cancelled()


class AnalysisEngine(abc.ABC):
    """Capability the pipeline delegates interpretation to. Failures raise EngineError."""

    @abc.abstractmethod
    def plan(
        self,
        input_text: str,
        documents: Sequence[DocumentSnapshot],
        token: Optional[CancellationToken] = None,
    ) -> TaskPlan:
        ...

    @abc.abstractmethod
    def run(
        self,
        plan: TaskPlan,
        documents: Sequence[DocumentSnapshot],
        token: Optional[CancellationToken] = None,
    ) -> TaskResult:
        ...

    @abc.abstractmethod
    def answer(self, query: ClassifiedQuery) -> TypedResponse:
        ...


class MockAnalysisEngine(AnalysisEngine):
    """Canned answers for demos and tests."""

    def __init__(self, delay_seconds: float = 0.0):
        self.delay_seconds = delay_seconds

    def _pause(self, token: Optional[CancellationToken]) -> None:
        (token or CancellationToken()).sleep(self.delay_seconds)

    def plan(self, input_text, documents, token=None):
        self._pause(token)
        sources = ", ".join(d.file_name for d in documents) or "no documents"
        return TaskPlan(
            paraphrased_task=f"Analysis Request: {input_text}",
            logic_summary=(
                "The AI will process your uploaded documents and extract relevant "
                "information based on pattern recognition and keyword analysis."
            ),
            suggested_format="Table with columns: Date, Source, Finding, Confidence Level",
            estimated_time="2-3 minutes",
            transformation_logic=(
                f"Pattern recognition and keyword analysis over {len(documents)} "
                f"document(s): {sources}."
            ),
            parameters={"documents": len(documents)},
        )

    def run(self, plan, documents, token=None):
        self._pause(token)
        rows = [
            ResultRow(date="2024-01-15", source="Document_A.pdf",
                      finding="Suspicious transaction of $10,000", confidence=Confidence.HIGH),
            ResultRow(date="2024-01-16", source="Statement_B.docx",
                      finding="Meeting mentioned at Central Plaza", confidence=Confidence.MEDIUM),
            ResultRow(date="2024-01-17", source="Records_C.xlsx",
                      finding="Phone call to unknown number", confidence=Confidence.HIGH),
        ]
        return TaskResult(
            summary=f"Found {len(rows)} significant patterns across your uploaded documents.",
            rows=rows,
        )

    def answer(self, query):
        if query.kind == QueryKind.TIMELINE:
            return TimelineResponse(
                content="Here's a timeline of key events based on your investigation data:",
                events=[
                    TimelineEvent(date="2024-01-10", event="Initial contact made",
                                  details={"location": "Central Plaza"}),
                    TimelineEvent(date="2024-01-12", event="Financial transaction",
                                  details={"amount": "$12,500"}),
                    TimelineEvent(date="2024-01-15", event="Phone call logged",
                                  details={"duration": "15 minutes"}),
                ],
            )
        if query.kind == QueryKind.LOCATION_TABLE:
            return TableResponse(
                content="Based on the evidence, here are the suspect's known locations:",
                columns=["Date", "Time", "Location", "Source", "Confidence"],
                rows=[
                    ["2024-06-12", "09:30 AM", "Downtown Office Building", "CCTV Footage", "High"],
                    ["2024-06-12", "12:15 PM", "Restaurant District", "Credit Card Transaction", "High"],
                    ["2024-06-12", "15:45 PM", "Residential Area", "Cell Tower Data", "Medium"],
                    ["2024-06-12", "18:20 PM", "Shopping Mall", "Witness Statement", "Medium"],
                ],
            )
        if query.kind == QueryKind.FINANCIAL_SUMMARY:
            return FinancialSummaryResponse(
                content="I found several significant financial transactions. Here's the analysis:",
                total="$287,450",
                suspicious_count=5,
                note="Found 23 transactions above $10,000 in the past 30 days",
            )
        if query.kind == QueryKind.PLAIN_TEXT:
            return TextResponse(content=(
                f'I understand you\'re asking about: "{query.text}". Let me analyze your '
                "investigation data and provide relevant insights. Based on the documents "
                "you've uploaded, I can see patterns related to your query."
            ))
        raise EngineError(f"No answer strategy for query kind {query.kind}")

