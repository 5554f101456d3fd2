from __future__ import annotations

from pathlib import Path
from typing import Callable, List

import pytest

from cg.analyzers.base import Analyzer
from cg.errors import CheckpointRestoreError, PhaseError
from cg.fixes import default_registry
from cg.memory.schema import AnalysisResult, FixDescriptor, Issue, RunPhase, Severity, TaskStatus
from cg.orchestrator import Orchestrator, ProgressListener
from cg.report import Disposition
from cg.tools.checkpoints import FileSnapshotBackend
from cg.tools.validation import CallableDiagnosticProvider


class _Recorder(ProgressListener):
    def __init__(self) -> None:
        self.phases: List[RunPhase] = []
        self.tasks: List[tuple[str, TaskStatus]] = []

    def on_phase(self, phase, context) -> None:
        self.phases.append(phase)

    def on_task(self, task, context) -> None:
        self.tasks.append((task.issue_ref, task.status))


class _StaticAnalyzer(Analyzer):
    name = "static"

    def __init__(self, issues: List[Issue], fixed: Callable[[Path], bool] | None = None) -> None:
        self.issues = issues
        self.fixed = fixed

    def analyze(self, root: Path) -> AnalysisResult:
        if self.fixed is not None and self.fixed(root):
            return self.result([])
        return self.result(list(self.issues))


class _UnrestorableBackend(FileSnapshotBackend):
    def restore(self, state) -> None:
        raise OSError("checkpoint storage vanished")


def _dispositions(report) -> dict[str, Disposition]:
    return {entry.type: entry.disposition for entry in report.issues}


def _break_debugger_fix(root: Path, issue: Issue) -> list[str]:
    target = root / issue.file
    target.write_text("garbage", encoding="utf-8")
    raise RuntimeError("handler crashed halfway")


def test_full_run_fixes_every_finding(web_repo) -> None:
    recorder = _Recorder()

    completed = Orchestrator(web_repo.config(), listeners=[recorder]).run()
    report = completed.report()

    assert completed.phase is RunPhase.COMPLETE
    assert report.metrics.issues_found == 3
    assert report.metrics.issues_fixed == 3
    assert report.metrics.files_modified == 3
    assert report.metrics.tasks_rolled_back == 0
    assert set(_dispositions(report).values()) == {Disposition.FIXED}
    gallery = web_repo.read("src/Gallery.jsx")
    assert "console.log" not in gallery
    assert '<img loading="lazy" src="/hero.png" alt="Hero" />' in gallery
    assert "debugger" not in web_repo.read("src/utils.js")
    assert recorder.phases == [
        RunPhase.IDLE,
        RunPhase.BASELINE_ESTABLISHED,
        RunPhase.ANALYZED,
        RunPhase.PLANNED,
        RunPhase.EXECUTING,
        RunPhase.COMPLETE,
    ]
    assert [status for _, status in recorder.tasks] == [TaskStatus.COMMITTED] * 3
    assert len(completed.context.checkpoints) == 0
    assert all(task.checkpoint_id for task in report.tasks)


def test_plan_schedules_same_file_fixes_in_separate_batches(web_repo) -> None:
    planned = Orchestrator(web_repo.config()).start().establish_baseline().analyze().plan()

    plan = planned.context.plan
    assert [len(batch) for batch in plan.batches] == [2, 1]
    assert planned.report().disposition_counts()["pending"] == 3


def test_fix_that_introduces_new_finding_is_rolled_back(web_repo) -> None:
    def _swap_debugger_for_logging(root: Path, issue: Issue) -> list[str]:
        target = root / issue.file
        target.write_text(target.read_text(encoding="utf-8").replace("debugger;", "console.log(values);"), encoding="utf-8")
        return [issue.file]

    registry = default_registry().copy()
    registry.register("remove_debugger", _swap_debugger_for_logging, replace=True)
    checks = [CallableDiagnosticProvider(name="test", func=lambda root: True, category="test")]
    original_utils = web_repo.read("src/utils.js")

    report = Orchestrator(web_repo.config(), registry=registry, providers=checks).run().report()

    assert web_repo.read("src/utils.js") == original_utils
    assert report.metrics.tasks_rolled_back == 1
    assert report.metrics.regressions_prevented == 1
    assert report.metrics.issues_fixed == 2
    assert _dispositions(report)["debugger_statements"] is Disposition.ROLLED_BACK
    rolled_back = next(task for task in report.tasks if task.status is TaskStatus.ROLLEDBACK)
    assert "console_statements" in rolled_back.error


def test_failing_handler_leaves_files_byte_identical(web_repo) -> None:
    registry = default_registry().copy()
    registry.register("remove_debugger", _break_debugger_fix, replace=True)
    original = (web_repo.root / "src/utils.js").read_bytes()

    report = Orchestrator(web_repo.config(), registry=registry).run().report()

    assert (web_repo.root / "src/utils.js").read_bytes() == original
    assert report.metrics.tasks_failed == 1
    assert report.metrics.regressions_prevented == 0
    failed = next(task for task in report.tasks if task.status is TaskStatus.FAILED)
    assert failed.error == "RuntimeError: handler crashed halfway"
    assert report.metrics.issues_fixed == 2


def test_inline_console_call_is_left_for_review(web_repo) -> None:
    web_repo.write(
        "src/a.js",
        'export function load(debug) {\n  if (debug) console.log("keep-me?");\n  console.log("second");\n}\n',
    )

    report = Orchestrator(web_repo.config()).run().report()

    assert web_repo.read("src/a.js") == 'export function load(debug) {\n  if (debug) console.log("keep-me?");\n}\n'
    entries = [(entry.line, entry.disposition) for entry in report.issues if entry.file == "src/a.js"]
    assert entries == [(3, Disposition.FIXED)]
    assert report.metrics.issues_fixed == 4
    assert report.metrics.tasks_failed == 0


def test_fix_that_misses_its_own_finding_is_rolled_back(web_repo) -> None:
    def _drop_first_line(root: Path, issue: Issue) -> list[str]:
        target = root / issue.file
        lines = target.read_text(encoding="utf-8").splitlines(keepends=True)
        target.write_text("".join(lines[1:]), encoding="utf-8")
        return [issue.file]

    registry = default_registry().copy()
    registry.register("remove_console_statement", _drop_first_line, replace=True)

    report = Orchestrator(web_repo.config(), registry=registry).run().report()

    gallery = web_repo.read("src/Gallery.jsx")
    assert gallery.startswith('import React from "react";')
    assert 'console.log("rendering gallery");' in gallery
    assert _dispositions(report)["console_statements"] is Disposition.ROLLED_BACK
    rolled_back = next(task for task in report.tasks if task.status is TaskStatus.ROLLEDBACK)
    assert "still reported at src/Gallery.jsx:4" in rolled_back.error
    assert report.metrics.issues_fixed == 2


def test_handler_writing_outside_its_footprint_fails(web_repo) -> None:
    def _sprawl(root: Path, issue: Issue) -> list[str]:
        return [issue.file, "src/elsewhere.js"]

    registry = default_registry().copy()
    registry.register("remove_debugger", _sprawl, replace=True)

    report = Orchestrator(web_repo.config(), registry=registry).run().report()

    failed = next(task for task in report.tasks if task.status is TaskStatus.FAILED)
    assert "outside its footprint" in failed.error


def test_custom_analyzer_and_handler(tmp_path: Path) -> None:
    from cg.config import EngineConfig

    (tmp_path / "a.png").write_bytes(b"\x89PNG placeholder")
    issue = Issue(
        type="missing_lazy_loading",
        severity=Severity.LOW,
        source_analyzer="static",
        file="a.png",
        line=1,
        message="asset not optimised",
        auto_fixable=True,
        fix_descriptor=FixDescriptor(kind="optimise_asset", resources=frozenset({"a.png"})),
    )
    calls: list[str] = []

    def _optimise(root: Path, found: Issue) -> list[str]:
        calls.append(found.id)
        (root / "a.png").write_bytes(b"\x89PNG small")
        return ["a.png"]

    registry = default_registry().copy()
    registry.register("optimise_asset", _optimise)
    config = EngineConfig.for_repo(tmp_path)

    report = Orchestrator(config, analyzers=[_StaticAnalyzer([])], registry=registry).run().report()
    assert report.metrics.issues_found == 0

    optimised = _StaticAnalyzer([issue], fixed=lambda root: (root / "a.png").read_bytes() == b"\x89PNG small")
    report = Orchestrator(config, analyzers=[optimised], registry=registry).run().report()

    assert calls == [issue.id]
    assert report.metrics.issues_fixed == 1
    assert report.metrics.tasks_rolled_back == 0
    assert report.tasks[0].modified_files == ["a.png"]
    assert (tmp_path / "a.png").read_bytes() == b"\x89PNG small"


def test_unfixable_and_manual_issues_are_reported_not_executed(tmp_path: Path) -> None:
    from cg.config import EngineConfig

    secret = Issue(
        type="hardcoded_secret",
        severity=Severity.CRITICAL,
        source_analyzer="static",
        file="src/config.js",
        line=1,
        message="Credential appears to be hardcoded.",
    )
    no_handler = Issue(
        type="missing_alt_text",
        severity=Severity.HIGH,
        source_analyzer="static",
        file="src/App.jsx",
        line=2,
        message="Image has no alt attribute.",
        auto_fixable=True,
        fix_descriptor=FixDescriptor(kind="describe_image", resources=frozenset({"src/App.jsx"})),
    )
    config = EngineConfig.for_repo(tmp_path)

    report = Orchestrator(config, analyzers=[_StaticAnalyzer([secret, no_handler])]).run().report()

    assert report.tasks == []
    assert _dispositions(report) == {
        "hardcoded_secret": Disposition.UNFIXABLE,
        "missing_alt_text": Disposition.MANUAL_ONLY,
    }
    assert [entry.type for entry in report.unresolved()] == ["hardcoded_secret", "missing_alt_text"]


def test_abort_leaves_remaining_tasks_pending(web_repo) -> None:
    orchestrator = Orchestrator(web_repo.config())

    class _AbortAfterFirst(ProgressListener):
        def on_task(self, task, context) -> None:
            orchestrator.abort()

    orchestrator.listeners.append(_AbortAfterFirst())

    completed = orchestrator.run()
    report = completed.report()

    assert completed.phase is RunPhase.COMPLETE
    assert report.task_counts() == {"pending": 2, "running": 0, "committed": 1, "rolledback": 0, "failed": 0}
    assert report.disposition_counts()["pending"] == 2
    assert "debugger" not in web_repo.read("src/utils.js")
    assert "console.log" in web_repo.read("src/Gallery.jsx")


def test_restore_failure_halts_the_run(web_repo) -> None:
    registry = default_registry().copy()
    registry.register("remove_debugger", _break_debugger_fix, replace=True)
    orchestrator = Orchestrator(
        web_repo.config(),
        registry=registry,
        backend=_UnrestorableBackend(web_repo.root),
    )
    planned = orchestrator.start().establish_baseline().analyze().plan()

    with pytest.raises(CheckpointRestoreError, match="checkpoint storage vanished"):
        planned.execute()

    context = planned.context
    assert context.phase is RunPhase.HALTED
    assert "checkpoint storage vanished" in context.halted_reason
    report = planned.report()
    assert report.phase is RunPhase.HALTED
    assert report.task_counts()["pending"] == 2


def test_states_cannot_be_reused(web_repo) -> None:
    idle = Orchestrator(web_repo.config()).start()
    baselined = idle.establish_baseline()

    assert idle.consumed
    with pytest.raises(PhaseError):
        idle.establish_baseline()

    analyzed = baselined.analyze()
    analyzed.plan()
    with pytest.raises(PhaseError):
        analyzed.plan()


def test_each_run_starts_with_fresh_metrics(web_repo) -> None:
    orchestrator = Orchestrator(web_repo.config())

    first = orchestrator.run().report()
    second = orchestrator.run().report()

    assert first.metrics.issues_fixed == 3
    assert second.metrics.issues_found == 0
    assert second.metrics.issues_fixed == 0
    assert first.run_id != second.run_id


def test_concurrent_batches_fix_everything(web_repo) -> None:
    web_repo.configure(batch_mode="concurrent")

    report = Orchestrator(web_repo.config()).run().report()

    assert report.metrics.issues_fixed == 3
    assert report.parallelizable_tasks == 2
    assert "console.log" not in web_repo.read("src/Gallery.jsx")


def test_concurrent_batch_rolls_back_every_task_on_regression(web_repo) -> None:
    web_repo.configure(batch_mode="concurrent")

    def _lazy_with_logging(root: Path, issue: Issue) -> list[str]:
        target = root / issue.file
        text = target.read_text(encoding="utf-8").replace("<img ", '<img loading="lazy" ')
        target.write_text(text.replace("return (", 'console.log("again");\n  return ('), encoding="utf-8")
        return [issue.file]

    registry = default_registry().copy()
    registry.register("add_lazy_loading", _lazy_with_logging, replace=True)
    original_utils = web_repo.read("src/utils.js")

    report = Orchestrator(web_repo.config(), registry=registry).run().report()

    statuses = {task.issue_ref.split("-")[0]: task.status for task in report.tasks}
    assert statuses["debugger_statements"] is TaskStatus.ROLLEDBACK
    assert statuses["missing_lazy_loading"] is TaskStatus.ROLLEDBACK
    assert statuses["console_statements"] is TaskStatus.COMMITTED
    assert web_repo.read("src/utils.js") == original_utils
    assert report.metrics.regressions_prevented == 2


def test_git_backend_run(git_web_repo) -> None:
    report = Orchestrator(git_web_repo.config()).run().report()

    assert report.metrics.issues_fixed == 3
    status = git_web_repo.git("status", "--porcelain").stdout
    assert "src/Gallery.jsx" in status
    assert "src/utils.js" in status


def test_git_backend_rolls_back_failed_fix(git_web_repo) -> None:
    git_web_repo.configure(batch_mode="concurrent", backend="git")
    registry = default_registry().copy()
    registry.register("remove_debugger", _break_debugger_fix, replace=True)
    original = git_web_repo.read("src/utils.js")

    report = Orchestrator(git_web_repo.config(), registry=registry).run().report()

    assert git_web_repo.read("src/utils.js") == original
    assert report.metrics.tasks_failed == 1
    assert report.metrics.issues_fixed == 2
