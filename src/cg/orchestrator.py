"""Run state machine driving baseline, analysis, planning and execution.

Each phase is a separate state object. A state exposes exactly one
transition method returning the next state, so executing before planning
cannot be expressed, and a state that already transitioned refuses to run
again with :class:`~cg.errors.PhaseError`. All mutable run data lives on a
shared :class:`RunContext`.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from .analyzers import build_analyzers
from .analyzers.base import Analyzer, run_analyzers
from .analyzers.diagnostics import DiagnosticsAnalyzer
from .config import EngineConfig
from .errors import CheckpointRestoreError, FixError, PhaseError
from .fixes import FixRegistry, default_registry
from .memory.schema import (
    AnalysisResult,
    ExecutionPlan,
    Issue,
    Metrics,
    RunPhase,
    Task,
    TaskStatus,
    ValidationResult,
)
from .memory.store import IssueStore
from .planning.planner import TaskPlanner
from .report import FinalReport, build_report
from .tools.checkpoints import CheckpointManager, SnapshotBackend, build_backend, is_file_resource
from .tools.validation import DiagnosticProvider, ValidationPipeline

LOGGER = logging.getLogger(__name__)


class ProgressListener:
    """Receives run progress. Override the callbacks you need."""

    def on_phase(self, phase: RunPhase, context: "RunContext") -> None:
        pass

    def on_task(self, task: Task, context: "RunContext") -> None:
        pass

    def on_metrics(self, metrics: Metrics, context: "RunContext") -> None:
        pass


@dataclass
class RunContext:
    """Everything one run reads and mutates, passed from phase to phase."""

    config: EngineConfig
    store: IssueStore
    checkpoints: CheckpointManager
    validation: ValidationPipeline
    registry: FixRegistry
    analyzers: List[Analyzer]
    abort_event: threading.Event
    listeners: List[ProgressListener] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid4().hex[:12])
    phase: RunPhase = RunPhase.IDLE
    metrics: Metrics = field(default_factory=Metrics)
    baseline: Optional[ValidationResult] = None
    analysis_results: List[AnalysisResult] = field(default_factory=list)
    plan: Optional[ExecutionPlan] = None
    halted_reason: Optional[str] = None
    started: float = field(default_factory=time.monotonic)

    @property
    def root(self) -> Path:
        return self.config.repo_root

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def enter(self, phase: RunPhase) -> None:
        self.phase = phase
        LOGGER.info("Run %s: %s", self.run_id, phase.value)
        for listener in self.listeners:
            listener.on_phase(phase, self)

    def task_updated(self, task: Task) -> None:
        for listener in self.listeners:
            listener.on_task(task, self)

    def metrics_updated(self) -> None:
        self.metrics.elapsed_seconds = round(time.monotonic() - self.started, 3)
        for listener in self.listeners:
            listener.on_metrics(self.metrics, self)


class _RunState:
    phase: RunPhase = RunPhase.IDLE

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self._consumed = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def report(self) -> FinalReport:
        """Summarise the run as it stands in this state."""

        return build_report(self.context)

    def _consume(self) -> RunContext:
        if self._consumed:
            raise PhaseError(f"{type(self).__name__} has already transitioned; start a new run")
        self._consumed = True
        return self.context


class IdleRun(_RunState):
    phase = RunPhase.IDLE

    def establish_baseline(self) -> "BaselinedRun":
        """Run the check battery once and record its findings as the baseline."""

        context = self._consume()
        context.metrics = Metrics()
        context.started = time.monotonic()
        context.baseline = context.validation.capture_baseline()
        context.enter(RunPhase.BASELINE_ESTABLISHED)
        return BaselinedRun(context)


class BaselinedRun(_RunState):
    phase = RunPhase.BASELINE_ESTABLISHED

    def analyze(self) -> "AnalyzedRun":
        context = self._consume()
        analysis = context.config.analysis
        context.analysis_results = run_analyzers(
            context.analyzers,
            context.root,
            timeout=analysis.timeout_seconds,
            max_workers=analysis.max_workers,
        )
        context.store.add_results(context.analysis_results)
        context.validation.extend_baseline(context.store.all())
        context.metrics.issues_found = len(context.store)
        context.enter(RunPhase.ANALYZED)
        context.metrics_updated()
        return AnalyzedRun(context)


class AnalyzedRun(_RunState):
    phase = RunPhase.ANALYZED

    def plan(self) -> "PlannedRun":
        context = self._consume()
        planner = TaskPlanner(
            context.registry,
            assessor=context.config.planning.assessor(),
            ordering_rules=context.config.planning.ordering_rules,
        )
        context.plan = planner.plan(context.store.all())
        context.enter(RunPhase.PLANNED)
        return PlannedRun(context)


class PlannedRun(_RunState):
    phase = RunPhase.PLANNED

    def execute(self) -> "CompletedRun":
        """Execute every batch in plan order.

        A failing task is rolled back and the run continues. A failed
        restore raises :class:`CheckpointRestoreError` and halts the run.
        """

        context = self._consume()
        context.enter(RunPhase.EXECUTING)
        executor = _TaskExecutor(context)
        try:
            executor.run(context.plan or ExecutionPlan())
        except CheckpointRestoreError as error:
            context.halted_reason = str(error)
            LOGGER.error("Run %s halted: %s", context.run_id, error)
            context.enter(RunPhase.HALTED)
            raise
        finally:
            context.metrics_updated()
        context.checkpoints.release_all()
        context.enter(RunPhase.COMPLETE)
        return CompletedRun(context)


class CompletedRun(_RunState):
    phase = RunPhase.COMPLETE


class _TaskExecutor:
    """Snapshot, apply, validate, then commit or roll back."""

    def __init__(self, context: RunContext) -> None:
        self.context = context
        self._fingerprints: Dict[str, Dict[str, Optional[str]]] = {}

    def run(self, plan: ExecutionPlan) -> None:
        concurrent = self.context.config.execution.batch_mode == "concurrent"
        if concurrent and self.context.checkpoints.backend.name != "files":
            LOGGER.warning("Concurrent batches need per-file checkpoints; running sequentially")
            concurrent = False

        for index, batch in enumerate(plan.batches, start=1):
            if self.context.aborted:
                LOGGER.warning("Abort requested; %d batch(es) left pending", len(plan.batches) - index + 1)
                return
            LOGGER.info("Batch %d/%d: %d task(s)", index, len(plan.batches), len(batch))
            if concurrent and len(batch) > 1:
                self._run_batch(batch)
                continue
            for task in batch:
                if self.context.aborted:
                    LOGGER.warning("Abort requested; stopping before %s", task.id)
                    return
                self._run_task(task)

    # ------------------------------------------------------------ sequential
    def _run_task(self, task: Task) -> None:
        self._start(task)
        try:
            modified = self._apply(task)
        except Exception as error:  # noqa: BLE001 - any handler failure fails the task
            self._fail(task, error)
            return
        LOGGER.debug("%s modified %s", task.id, ", ".join(modified) or "nothing")
        result = self.context.validation.validate(self._targets([task]))
        if result.passed:
            self._commit(task)
        else:
            self._roll_back(task, result)

    # ------------------------------------------------------------ concurrent
    def _run_batch(self, batch: Sequence[Task]) -> None:
        for task in batch:
            self._start(task)

        errors: Dict[str, Exception] = {}
        workers = min(self.context.config.execution.max_workers, len(batch))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cg-fix") as pool:
            futures = [(task, pool.submit(self._apply, task)) for task in batch]
            for task, future in futures:
                error = future.exception()
                if error is not None:
                    errors[task.id] = error

        for task in reversed(batch):
            if task.id in errors:
                self._fail(task, errors[task.id])
        applied = [task for task in batch if task.id not in errors]
        if not applied:
            return

        result = self.context.validation.validate(self._targets(applied))
        if result.passed:
            for task in applied:
                self._commit(task)
            return
        for task in reversed(applied):
            self._roll_back(task, result)

    # -------------------------------------------------------------- helpers
    def _start(self, task: Task) -> None:
        paths = [resource for resource in task.resource_footprint if is_file_resource(resource)]
        self._fingerprints[task.id] = _fingerprint(self.context.root, paths)
        task.checkpoint_id = self.context.checkpoints.snapshot(
            f"task {task.id}",
            paths,
            task_id=task.id,
            metrics=self.context.metrics,
        )
        task.transition(TaskStatus.RUNNING)

    def _targets(self, tasks: Sequence[Task]) -> List[Issue]:
        found = (self.context.store.get(task.issue_ref) for task in tasks)
        return [issue for issue in found if issue is not None]

    def _apply(self, task: Task) -> List[str]:
        issue = self.context.store.get(task.issue_ref)
        if issue is None:
            raise FixError(f"Issue {task.issue_ref} is no longer tracked")
        modified = [str(path) for path in self.context.registry.apply(self.context.root, issue) or []]
        outside = sorted(path for path in modified if path not in task.resource_footprint)
        if outside:
            raise FixError(f"Fix wrote outside its footprint: {', '.join(outside)}")
        return modified

    def _commit(self, task: Task) -> None:
        before = self._fingerprints.pop(task.id, {})
        after = _fingerprint(self.context.root, before)
        task.modified_files = sorted(path for path in before if before[path] != after[path])
        task.transition(TaskStatus.COMMITTED)
        metrics = self.context.metrics
        metrics.issues_fixed += 1
        metrics.files_modified += len(task.modified_files)
        LOGGER.info("Committed %s (%d file(s) changed)", task.id, len(task.modified_files))
        self._settled(task)

    def _roll_back(self, task: Task, result: ValidationResult) -> None:
        self._restore(task)
        task.error = result.reason
        task.transition(TaskStatus.ROLLEDBACK)
        self.context.metrics.tasks_rolled_back += 1
        self.context.metrics.regressions_prevented += 1
        LOGGER.warning("Rolled back %s: %s", task.id, result.reason)
        self._settled(task)

    def _fail(self, task: Task, error: BaseException) -> None:
        self._restore(task)
        task.error = f"{type(error).__name__}: {error}"
        task.transition(TaskStatus.FAILED)
        self.context.metrics.tasks_failed += 1
        LOGGER.warning("Fix for %s failed: %s", task.id, error)
        self._settled(task)

    def _restore(self, task: Task) -> None:
        self._fingerprints.pop(task.id, None)
        if task.checkpoint_id is None:
            raise CheckpointRestoreError(f"{task.id} has no checkpoint to restore")
        self.context.checkpoints.restore(task.checkpoint_id)

    def _settled(self, task: Task) -> None:
        self.context.task_updated(task)
        self.context.metrics_updated()


def _fingerprint(root: Path, paths: Iterable[str]) -> Dict[str, Optional[str]]:
    digests: Dict[str, Optional[str]] = {}
    for relative in paths:
        path = root / relative
        try:
            digests[relative] = hashlib.sha256(path.read_bytes()).hexdigest() if path.is_file() else None
        except OSError:
            digests[relative] = None
    return digests


class Orchestrator:
    """Build run contexts from configuration and drive them.

    Collaborators default to what the configuration describes and can be
    injected for embedding and tests.
    """

    def __init__(
        self,
        config: EngineConfig,
        *,
        analyzers: Sequence[Analyzer] | None = None,
        registry: FixRegistry | None = None,
        providers: Sequence[DiagnosticProvider] | None = None,
        backend: SnapshotBackend | None = None,
        listeners: Iterable[ProgressListener] = (),
    ) -> None:
        self.config = config
        self.registry = registry or default_registry()
        self.providers = list(providers) if providers is not None else config.validation.providers()
        self._analyzers = list(analyzers) if analyzers is not None else None
        self._backend = backend
        self.listeners = list(listeners)
        self.abort_event = threading.Event()

    def abort(self) -> None:
        """Stop after the in-flight task reaches commit or rollback."""

        self.abort_event.set()

    def build_analyzers(self) -> List[Analyzer]:
        if self._analyzers is not None:
            return list(self._analyzers)
        settings = self.config.analysis
        analyzers = build_analyzers(settings.pattern_analyzers)
        if settings.uses_diagnostics:
            analyzers.append(DiagnosticsAnalyzer(self.providers, timeout=self.config.validation.default_timeout))
        return analyzers

    def start(self) -> IdleRun:
        """Create a fresh run context and return its idle state."""

        analyzers = self.build_analyzers()
        backend = self._backend or build_backend(
            self.config.execution.checkpoint_backend,
            self.config.repo_root,
            exclude=self.config.checkpoint_excludes,
        )
        validation = ValidationPipeline(
            self.config.repo_root,
            self.providers,
            issue_probe=self._issue_probe(analyzers) if self.config.validation.reanalyze else None,
            fail_fast=self.config.validation.fail_fast,
            default_timeout=self.config.validation.default_timeout,
            tolerate_baseline_failures=self.config.validation.tolerate_baseline_failures,
        )
        context = RunContext(
            config=self.config,
            store=IssueStore(),
            checkpoints=CheckpointManager(backend),
            validation=validation,
            registry=self.registry,
            analyzers=analyzers,
            abort_event=self.abort_event,
            listeners=list(self.listeners),
        )
        context.enter(RunPhase.IDLE)
        return IdleRun(context)

    def run(self) -> CompletedRun:
        """Drive all four phases; see :meth:`PlannedRun.execute` for failure modes."""

        return self.start().establish_baseline().analyze().plan().execute()

    def _issue_probe(self, analyzers: Sequence[Analyzer]) -> Callable[[], List[Issue]]:
        # Diagnostics are already covered by the validation checks themselves.
        probes = [analyzer for analyzer in analyzers if not isinstance(analyzer, DiagnosticsAnalyzer)]
        root = self.config.repo_root
        timeout = self.config.analysis.timeout_seconds

        def _probe() -> List[Issue]:
            results = run_analyzers(probes, root, timeout=timeout, max_workers=self.config.analysis.max_workers)
            return [issue for result in results for issue in result.issues]

        return _probe


__all__ = [
    "AnalyzedRun",
    "BaselinedRun",
    "CompletedRun",
    "IdleRun",
    "Orchestrator",
    "PlannedRun",
    "ProgressListener",
    "RunContext",
]
