from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from cg.errors import CodeGuardError
from cg.memory.schema import (
    CheckResult,
    ExecutionPlan,
    FixDescriptor,
    Issue,
    ManualItem,
    Metrics,
    RunPhase,
    Severity,
    Task,
    TaskStatus,
    ValidationResult,
)
from cg.memory.store import IssueStore
from cg.report import (
    Disposition,
    build_report,
    latest_report,
    load_report,
    render_text,
    write_report,
)


def _issue(issue_type: str, severity: str, line: int, *, source: str = "security", fixable: bool = True) -> Issue:
    return Issue(
        type=issue_type,
        severity=Severity(severity),
        source_analyzer=source,
        file="src/app.js",
        line=line,
        message=f"{issue_type} found",
        auto_fixable=fixable,
        fix_descriptor=FixDescriptor(kind=issue_type) if fixable else None,
    )


def _task(issue: Issue, status: TaskStatus, *, error: str | None = None) -> Task:
    return Task(
        id=f"task-{issue.id}",
        issue_ref=issue.id,
        resource_footprint=frozenset({"src/app.js"}),
        priority=issue.severity.weight,
        status=status,
        checkpoint_id="chk-0001-task",
        error=error,
    )


@pytest.fixture()
def run_context(tmp_path: Path) -> SimpleNamespace:
    fixed = _issue("remove_debugger", "medium", 1, source="code_quality")
    reverted = _issue("add_alt_text", "high", 2, source="accessibility")
    manual = _issue("rename_token", "high", 3)
    risky = _issue("pin_dependency", "low", 4, source="dependency")
    secret = _issue("hardcoded_secret", "critical", 5, fixable=False)
    store = IssueStore([fixed, reverted, manual, risky, secret])
    plan = ExecutionPlan(
        batches=[[
            _task(fixed, TaskStatus.COMMITTED),
            _task(reverted, TaskStatus.ROLLEDBACK, error="1 regression(s), first: eval_usage in src/app.js"),
        ]],
        manual_only=[ManualItem(issue_id=manual.id, reason="no fix handler for 'rename_token'")],
        high_risk=[risky.id],
    )
    return SimpleNamespace(
        run_id="run-123",
        phase=RunPhase.COMPLETE,
        root=tmp_path,
        metrics=Metrics(issues_found=5, issues_fixed=1, tasks_rolled_back=1, regressions_prevented=1),
        baseline=ValidationResult(passed=False, checks=[CheckResult(name="lint", passed=False, detail="3 errors")]),
        store=store,
        plan=plan,
        halted_reason=None,
    )


def test_every_issue_has_exactly_one_disposition(run_context) -> None:
    report = build_report(run_context)

    assert {entry.type: entry.disposition for entry in report.issues} == {
        "hardcoded_secret": Disposition.UNFIXABLE,
        "add_alt_text": Disposition.ROLLED_BACK,
        "rename_token": Disposition.MANUAL_ONLY,
        "remove_debugger": Disposition.FIXED,
        "pin_dependency": Disposition.HIGH_RISK,
    }
    assert [entry.severity for entry in report.issues][0] is Severity.CRITICAL
    assert report.baseline.failing_checks == ["lint"]
    assert report.task_counts()["committed"] == 1


def test_unresolved_respects_threshold(run_context) -> None:
    report = build_report(run_context)

    assert [entry.type for entry in report.unresolved("critical")] == ["hardcoded_secret"]
    assert {entry.type for entry in report.unresolved()} == {"hardcoded_secret", "add_alt_text", "rename_token"}
    assert len(report.unresolved("low")) == 4


def test_recommendations_group_unresolved_work(run_context) -> None:
    report = build_report(run_context)

    by_category = {item.category: item for item in report.recommendations}
    assert report.recommendations[0].category == "security"
    assert by_category["security"].count == 2
    assert by_category["security"].priority is Severity.CRITICAL
    assert by_category["dependency"].count == 1
    assert by_category["remediation"].action_items == [
        f"{run_context.store.all()[1].id}: 1 regression(s), first: eval_usage in src/app.js"
    ]
    assert "code_quality" not in by_category


def test_unplanned_fixable_issues_are_pending(run_context) -> None:
    run_context.plan = None

    report = build_report(run_context)

    assert report.disposition_counts()["pending"] == 4
    assert report.disposition_counts()["unfixable"] == 1
    assert report.tasks == []


def test_write_and_load_report(run_context, tmp_path: Path) -> None:
    report = build_report(run_context)
    directory = tmp_path / "reports"

    path = write_report(report, directory)
    loaded = load_report(path)

    assert path.parent == directory
    assert path.name.endswith("-run-123.json")
    assert loaded.run_id == "run-123"
    assert loaded.disposition_counts() == report.disposition_counts()
    assert latest_report(directory) == path
    assert latest_report(tmp_path / "missing") is None


def test_latest_report_orders_reports_within_the_same_second(run_context, tmp_path: Path) -> None:
    directory = tmp_path / "reports"
    first = build_report(run_context).model_copy(
        update={"run_id": "zzz-first", "generated_at": datetime(2026, 3, 1, 12, 0, 0, 1000, tzinfo=timezone.utc)}
    )
    second = build_report(run_context).model_copy(
        update={"run_id": "aaa-second", "generated_at": datetime(2026, 3, 1, 12, 0, 0, 2000, tzinfo=timezone.utc)}
    )

    write_report(first, directory)
    newest = write_report(second, directory)

    assert latest_report(directory) == newest


def test_load_report_rejects_other_json(tmp_path: Path) -> None:
    path = tmp_path / "other.json"
    path.write_text('{"hello": "world"}', encoding="utf-8")

    with pytest.raises(CodeGuardError):
        load_report(path)
    with pytest.raises(CodeGuardError):
        load_report(tmp_path / "absent.json")


def test_render_text_summarises_the_run(run_context) -> None:
    run_context.halted_reason = "Restoring files failed: disk full"

    text = render_text(build_report(run_context))

    assert text.startswith("CodeGuard run run-123 (complete)")
    assert "Regressions prevented: 1" in text
    assert "HALTED: Restoring files failed: disk full" in text
    assert "Baseline failing checks: lint" in text
    assert "critical hardcoded_secret src/app.js:5 -> unfixable" in text
    assert "Recommendations:" in text
