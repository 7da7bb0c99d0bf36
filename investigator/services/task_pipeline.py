"""
Task pipeline - the state machine every task moves through.

Submitted → Analyzed → Executing → Completed | Failed

This is the core enforcement mechanism - all stage transitions MUST go through
here. Each transition is a compare-and-swap on the stored stage, so two
callers racing on the same task can never both win.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import sessionmaker

from investigator.logging_config import task_context
from investigator.models.domain import Task, utcnow
from investigator.models.enums import (
    Actor,
    AuditEventKind,
    AuditStatus,
    DocumentType,
    MimeKind,
    TaskStage,
)
from investigator.models.results import DocumentSnapshot, TaskResult
from investigator.services.analysis_engine import AnalysisEngine, CancellationToken
from investigator.services.audit_log import AuditEntry, AuditLog
from investigator.services.document_store import DocumentStore
from investigator.services.errors import (
    Cancelled,
    EmptyInput,
    EngineError,
    InvalidTransition,
    NotFound,
    ParentNotCompleted,
)

logger = logging.getLogger(__name__)

# Allowed edges. Terminal stages have none.
_TRANSITIONS: Dict[TaskStage, Set[TaskStage]] = {
    TaskStage.SUBMITTED: {TaskStage.ANALYZED, TaskStage.FAILED},
    TaskStage.ANALYZED: {TaskStage.EXECUTING},
    TaskStage.EXECUTING: {TaskStage.COMPLETED, TaskStage.FAILED},
    TaskStage.COMPLETED: set(),
    TaskStage.FAILED: set(),
}

CompletionListener = Callable[[Task], None]


def can_transition(from_stage: TaskStage, to_stage: TaskStage) -> bool:
    return to_stage in _TRANSITIONS[from_stage]


def output_file_id(task_id: int) -> str:
    return f"task-{task_id}-results.json"


def result_document(task_id: int, output_id: str, result: Optional[TaskResult]) -> DocumentSnapshot:
    """Present a completed task's output as an input document of a chained task."""
    summary = result.summary if result else ""
    return DocumentSnapshot(
        file_name=output_id,
        mime_kind=MimeKind.JSON,
        document_type=DocumentType.REPORT,
        definition=f"Output of task {task_id}: {summary}",
    )


def _describe_failure(exc: BaseException) -> str:
    if isinstance(exc, Cancelled):
        return f"Cancelled: {exc}"
    return f"Engine error: {exc}"


class TaskPipeline:
    """Runs tasks through their stages and writes one audit event per transition."""

    def __init__(
        self,
        session_factory: sessionmaker,
        audit_log: AuditLog,
        documents: DocumentStore,
        engine: AnalysisEngine,
        max_workers: int = 4,
    ):
        self._session_factory = session_factory
        self._audit = audit_log
        self._documents = documents
        self._engine = engine
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="task-exec")

        # Guards the bookkeeping dicts below, never held across engine calls
        self._guard = threading.RLock()
        self._analysis_locks: Dict[int, threading.Lock] = {}
        self._inflight: Dict[int, Future] = {}
        self._tokens: Dict[int, CancellationToken] = {}
        self._listeners: List[CompletionListener] = []
        self._closed = False

    # -- reads ---------------------------------------------------------------

    def get_task(self, task_id: int) -> Task:
        with self._session_factory() as db:
            task = db.get(Task, task_id)
            if task is None:
                raise NotFound(f"Task {task_id} not found")
            return task

    def list_tasks(self, stage: Optional[TaskStage] = None) -> List[Task]:
        with self._session_factory() as db:
            q = db.query(Task)
            if stage is not None:
                q = q.filter(Task.stage == stage)
            return q.order_by(Task.id.asc()).all()

    def search_results(self, text: Optional[str] = None) -> List[Task]:
        """Completed tasks, optionally narrowed to those whose input or result mentions ``text``."""
        completed = self.list_tasks(TaskStage.COMPLETED)
        if not text:
            return completed
        needle = text.lower()
        return [
            t for t in completed
            if needle in t.original_input.lower() or needle in (t.result.summary.lower() if t.result else "")
        ]

    def lineage(self, task_id: int) -> List[Task]:
        """
        Ancestors of a task, nearest first.

        Parents always exist before their children and are never reassigned,
        so the walk terminates.
        """
        ancestors = []
        task = self.get_task(task_id)
        while task.parent_task_id is not None:
            task = self.get_task(task.parent_task_id)
            ancestors.append(task)
        return ancestors

    # -- operations ----------------------------------------------------------

    def submit(self, input_text: str, context_document_ids: Iterable[int] = ()) -> Task:
        """
        Create a task in Submitted.

        Documents are captured by value now; later edits or removals do not
        reach the task. No engine call and no audit event.
        """
        text = (input_text or "").strip()
        if not text:
            raise EmptyInput("Task description cannot be empty")
        snapshot = self._documents.snapshot(context_document_ids)
        task = self._create_task(text, [d.id for d in snapshot], snapshot)
        logger.info("Task %s submitted with %d document(s)", task.id, len(snapshot))
        return task

    def analyze(self, task_id: int) -> Task:
        """
        Ask the engine for a plan. Submitted → Analyzed, or → Failed on engine failure.

        Engine failures are not raised; the returned task reflects them.
        """
        lock = self._analysis_lock(task_id)
        if not lock.acquire(blocking=False):
            raise InvalidTransition(f"Cannot analyze task {task_id}: analysis already in progress")
        try:
            task = self.get_task(task_id)
            if task.stage != TaskStage.SUBMITTED:
                raise InvalidTransition(
                    f"Cannot analyze task {task_id}: stage is {task.stage.value}, "
                    f"expected {TaskStage.SUBMITTED.value}"
                )
            with task_context(task_id):
                return self._analyze(task)
        finally:
            lock.release()
            with self._guard:
                self._analysis_locks.pop(task_id, None)

    def execute(self, task_id: int) -> Task:
        """
        Analyzed → Executing, then run the plan on a worker.

        Returns immediately with the task in Executing. Completion is observed
        through get_task, wait or a completion listener. The stage swap makes
        execution at-most-once: a second caller gets InvalidTransition.
        """
        token = CancellationToken()
        # Held across the swap so shutdown cannot close the executor in between
        with self._guard:
            if self._closed:
                raise InvalidTransition(f"Cannot execute task {task_id}: pipeline is shut down")
            task = self._transition(task_id, TaskStage.ANALYZED, TaskStage.EXECUTING, "execute")
            started_at = utcnow()
            self._tokens[task_id] = token
            future = self._executor.submit(self._run_execution, task, token, started_at)
            self._inflight[task_id] = future
        future.add_done_callback(lambda f: self._forget(task_id, f))
        logger.info("Task %s executing", task_id)
        return task

    def chain(self, parent_task_id: int, new_input_text: str) -> Task:
        """Start a new task whose context is the output of a completed task."""
        parent = self.get_task(parent_task_id)
        if parent.stage != TaskStage.COMPLETED:
            raise ParentNotCompleted(
                f"Cannot chain from task {parent_task_id}: stage is {parent.stage.value}, "
                f"only {TaskStage.COMPLETED.value} tasks can be chained"
            )
        text = (new_input_text or "").strip()
        if not text:
            raise EmptyInput("Task description cannot be empty")

        outputs = list(parent.output_file_ids or [])
        context = [result_document(parent.id, output_id, parent.result) for output_id in outputs]
        child = self._create_task(text, outputs, context, parent_task_id=parent.id)

        self._audit.record(AuditEntry(
            kind=AuditEventKind.CHAIN,
            actor=Actor.USER,
            title="Chained Analysis Task",
            description=f"Connected results of task {parent.id} to task {child.id}: {text}",
            entity_type="Task",
            entity_id=str(child.id),
            source_file_ids=outputs,
            parameters={"parent_task_id": parent.id},
        ))
        logger.info("Task %s chained from task %s", child.id, parent.id)
        return child

    def cancel(self, task_id: int) -> Task:
        """Signal the in-flight engine call of a task to stop. The task ends Failed."""
        with self._guard:
            token = self._tokens.get(task_id)
        if token is None:
            task = self.get_task(task_id)
            raise InvalidTransition(
                f"Cannot cancel task {task_id}: nothing in flight (stage is {task.stage.value})"
            )
        token.cancel()
        logger.info("Cancellation requested for task %s", task_id)
        return self.get_task(task_id)

    def wait(self, task_id: int, timeout: Optional[float] = None) -> Task:
        """Block until the task's execution settles, then return the task."""
        with self._guard:
            future = self._inflight.get(task_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.get_task(task_id)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        """Call ``listener`` with the settled task whenever an execution finishes."""
        with self._guard:
            self._listeners.append(listener)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel in-flight engine calls and stop accepting executions."""
        with self._guard:
            self._closed = True
            tokens = list(self._tokens.values())
        for token in tokens:
            token.cancel()
        self._executor.shutdown(wait=wait)

    # -- internals -----------------------------------------------------------

    def _analyze(self, task: Task) -> Task:
        token = CancellationToken()
        with self._guard:
            self._tokens[task.id] = token
        started = time.monotonic()
        try:
            plan = self._engine.plan(task.original_input, task.documents, token)
        except EngineError as exc:
            return self._fail(task, TaskStage.SUBMITTED, _describe_failure(exc), started, "Task Analysis")
        except Exception as exc:
            logger.exception("Analysis engine raised while planning")
            return self._fail(task, TaskStage.SUBMITTED, _describe_failure(exc), started, "Task Analysis")
        finally:
            with self._guard:
                self._tokens.pop(task.id, None)

        analyzed = self._transition(
            task.id, TaskStage.SUBMITTED, TaskStage.ANALYZED, "analyze",
            plan_json=plan.model_dump(mode="json"),
        )
        self._audit.record(AuditEntry(
            kind=AuditEventKind.ANALYSIS,
            actor=Actor.AI,
            title="Task Analysis",
            description=plan.paraphrased_task,
            entity_type="Task",
            entity_id=str(task.id),
            source_file_ids=[d.file_name for d in task.documents],
            transformation_logic=plan.transformation_logic or plan.logic_summary,
            execution_time_ms=_elapsed_ms(started),
            parameters=plan.parameters or None,
        ))
        logger.info("Task %s analyzed", task.id)
        return analyzed

    def _run_execution(self, task: Task, token: CancellationToken, started_at) -> Task:
        with task_context(task.id):
            started = time.monotonic()
            try:
                result = self._engine.run(task.plan, task.documents, token)
            except EngineError as exc:
                settled = self._fail(task, TaskStage.EXECUTING, _describe_failure(exc), started,
                                     "Task Execution", started_at)
            except Exception as exc:
                logger.exception("Analysis engine raised while executing")
                settled = self._fail(task, TaskStage.EXECUTING, _describe_failure(exc), started,
                                     "Task Execution", started_at)
            else:
                settled = self._complete(task, result, started, started_at)
            self._notify(settled)
            return settled

    def _complete(self, task: Task, result: TaskResult, started: float, started_at) -> Task:
        output_id = output_file_id(task.id)
        completed = self._transition(
            task.id, TaskStage.EXECUTING, TaskStage.COMPLETED, "complete",
            result_json=result.model_dump(mode="json"),
            output_file_ids=[output_id],
        )
        plan = task.plan
        self._audit.record(AuditEntry(
            kind=AuditEventKind.ANALYSIS,
            actor=Actor.AI,
            title="Task Completed",
            description=result.summary,
            entity_type="Task",
            entity_id=str(task.id),
            source_file_ids=[d.file_name for d in task.documents],
            output_file_ids=[output_id],
            transformation_logic=plan.logic_summary if plan else None,
            confidence=result.derived_confidence(),
            records_processed=len(result.rows),
            execution_time_ms=_elapsed_ms(started),
            parameters=_execution_window(started_at),
        ))
        logger.info("Task %s completed with %d row(s)", task.id, len(result.rows))
        return completed

    def _fail(
        self,
        task: Task,
        from_stage: TaskStage,
        reason: str,
        started: float,
        title: str,
        started_at=None,
    ) -> Task:
        failed = self._transition(
            task.id, from_stage, TaskStage.FAILED, "fail",
            failure_reason=reason,
        )
        self._audit.record(AuditEntry(
            kind=AuditEventKind.ANALYSIS,
            actor=Actor.AI,
            title=f"{title} Failed",
            description=reason,
            status=AuditStatus.FAILED,
            entity_type="Task",
            entity_id=str(task.id),
            source_file_ids=[d.file_name for d in task.documents],
            execution_time_ms=_elapsed_ms(started),
            parameters=_execution_window(started_at) if started_at else None,
        ))
        logger.warning("Task %s failed: %s", task.id, reason)
        return failed

    def _create_task(
        self,
        text: str,
        context_ids: list,
        snapshot: List[DocumentSnapshot],
        parent_task_id: Optional[int] = None,
    ) -> Task:
        with self._session_factory() as db:
            task = Task(
                original_input=text,
                stage=TaskStage.SUBMITTED,
                parent_task_id=parent_task_id,
                context_document_ids=context_ids,
                context_snapshot=[d.model_dump(mode="json") for d in snapshot],
                output_file_ids=[],
            )
            db.add(task)
            db.commit()
            return task

    def _transition(
        self,
        task_id: int,
        from_stage: TaskStage,
        to_stage: TaskStage,
        action: str,
        **values,
    ) -> Task:
        """Compare-and-swap the stage. Refuses if the stored stage is not ``from_stage``."""
        if not can_transition(from_stage, to_stage):
            raise InvalidTransition(f"Invalid transition: {from_stage.value} -> {to_stage.value}")

        values.update(stage=to_stage, updated_at=utcnow())
        with self._session_factory() as db:
            swapped = db.query(Task).filter(
                Task.id == task_id,
                Task.stage == from_stage,
            ).update(values, synchronize_session=False)
            db.commit()
            task = db.get(Task, task_id)

        if task is None:
            raise NotFound(f"Task {task_id} not found")
        if not swapped:
            raise InvalidTransition(
                f"Cannot {action} task {task_id}: stage is {task.stage.value}, "
                f"expected {from_stage.value}"
            )
        return task

    def _analysis_lock(self, task_id: int) -> threading.Lock:
        with self._guard:
            return self._analysis_locks.setdefault(task_id, threading.Lock())

    def _forget(self, task_id: int, future: Future) -> None:
        with self._guard:
            if self._inflight.get(task_id) is future:
                del self._inflight[task_id]
            self._tokens.pop(task_id, None)
        exc = future.exception()
        if exc is not None:
            logger.error("Execution of task %s crashed outside the engine: %s", task_id, exc)

    def _notify(self, task: Task) -> None:
        with self._guard:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(task)
            except Exception:
                logger.exception("Completion listener failed for task %s", task.id)


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


def _execution_window(started_at) -> Dict[str, str]:
    return {"started_at": started_at.isoformat(), "finished_at": utcnow().isoformat()}
