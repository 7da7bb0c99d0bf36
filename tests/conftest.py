"""Pytest configuration and shared fixtures."""
import threading

import pytest

from investigator.database import Base, make_engine, make_session_factory
from investigator.models.audit import AuditEvent  # noqa: F401
from investigator.models.domain import Document, Task  # noqa: F401
from investigator.services.analysis_engine import MockAnalysisEngine
from investigator.services.audit_log import AuditLog
from investigator.services.document_store import DocumentStore, RawFile
from investigator.services.exporter import ResultExporter
from investigator.services.query_router import QueryRouter
from investigator.services.task_pipeline import TaskPipeline

XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class ScriptedEngine(MockAnalysisEngine):
    """
    Mock engine that tests can steer.

    Set *_error to make a call fail, run_result to replace the canned result,
    or a *_gate Event to hold a call until the test releases it (cancellation
    still wakes it).
    """

    def __init__(self):
        super().__init__()
        self.plan_error = None
        self.run_error = None
        self.answer_error = None
        self.run_result = None
        self.plan_gate = None
        self.run_gate = None
        self.plan_started = threading.Event()
        self.run_started = threading.Event()
        self.plan_calls = 0
        self.run_calls = 0

    @staticmethod
    def _hold(gate, token):
        while not gate.wait(0.01):
            if token is not None:
                token.raise_if_cancelled()

    def plan(self, input_text, documents, token=None):
        self.plan_calls += 1
        self.plan_started.set()
        if self.plan_gate is not None:
            self._hold(self.plan_gate, token)
        if self.plan_error is not None:
            raise self.plan_error
        return super().plan(input_text, documents, token)

    def run(self, plan, documents, token=None):
        self.run_calls += 1
        self.run_started.set()
        if self.run_gate is not None:
            self._hold(self.run_gate, token)
        if self.run_error is not None:
            raise self.run_error
        if self.run_result is not None:
            return self.run_result
        return super().run(plan, documents, token)

    def answer(self, query):
        if self.answer_error is not None:
            raise self.answer_error
        return super().answer(query)


@pytest.fixture
def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test (worker threads need their own connections)."""
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(engine)

    yield make_session_factory(engine)

    engine.dispose()


@pytest.fixture
def engine():
    return ScriptedEngine()


@pytest.fixture
def audit_log(session_factory):
    return AuditLog(session_factory)


@pytest.fixture
def document_store(session_factory, audit_log):
    return DocumentStore(session_factory, audit_log)


@pytest.fixture
def pipeline(session_factory, audit_log, document_store, engine):
    pipeline = TaskPipeline(session_factory, audit_log, document_store, engine, max_workers=4)
    yield pipeline
    pipeline.shutdown(wait=True)


@pytest.fixture
def router(engine, audit_log):
    return QueryRouter(engine, audit_log)


@pytest.fixture
def exporter(pipeline, audit_log):
    return ResultExporter(pipeline, audit_log)


@pytest.fixture
def sample_document(document_store):
    """One uploaded spreadsheet."""
    return document_store.add(RawFile("Financial_Records_C.xlsx", b"PK\x03\x04 spreadsheet", XLSX))


@pytest.fixture
def completed_task(pipeline, sample_document):
    """A task run all the way to Completed."""
    task = pipeline.submit("Analyze financial transactions", [sample_document.id])
    pipeline.analyze(task.id)
    pipeline.execute(task.id)
    return pipeline.wait(task.id, timeout=5)
