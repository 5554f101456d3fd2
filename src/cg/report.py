"""Final run report: every issue with its disposition, task outcomes, metrics."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional

from pydantic import Field, ValidationError

from .errors import CodeGuardError
from .memory.schema import (
    ExecutionPlan,
    Issue,
    ManualItem,
    Metrics,
    RecordModel,
    RunPhase,
    Severity,
    Task,
    TaskStatus,
    utc_now,
)
from .utils.slug import slugify

if TYPE_CHECKING:
    from .orchestrator import RunContext


class Disposition(str, Enum):
    FIXED = "fixed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    MANUAL_ONLY = "manual_only"
    HIGH_RISK = "high_risk"
    UNFIXABLE = "unfixable"
    PENDING = "pending"


RESOLVED_DISPOSITIONS = frozenset({Disposition.FIXED})

_TASK_DISPOSITIONS: Dict[TaskStatus, Disposition] = {
    TaskStatus.COMMITTED: Disposition.FIXED,
    TaskStatus.ROLLEDBACK: Disposition.ROLLED_BACK,
    TaskStatus.FAILED: Disposition.FAILED,
    TaskStatus.PENDING: Disposition.PENDING,
    TaskStatus.RUNNING: Disposition.PENDING,
}


class IssueEntry(RecordModel):
    id: str
    type: str
    severity: Severity
    file: Optional[str] = None
    line: Optional[int] = None
    source_analyzer: str
    message: str = ""
    disposition: Disposition
    reason: Optional[str] = None


class TaskEntry(RecordModel):
    id: str
    issue_ref: str
    status: TaskStatus
    priority: float
    footprint: List[str] = Field(default_factory=list)
    checkpoint_id: Optional[str] = None
    modified_files: List[str] = Field(default_factory=list)
    error: Optional[str] = None


class BaselineSummary(RecordModel):
    passed: bool = True
    failing_checks: List[str] = Field(default_factory=list)
    issues: Dict[str, int] = Field(default_factory=dict)


class Recommendation(RecordModel):
    """Grouped follow-up work for issues the run left unresolved."""

    category: str
    priority: Severity
    count: int
    auto_fixable_count: int = 0
    description: str
    action_items: List[str] = Field(default_factory=list)


class FinalReport(RecordModel):
    """Structured artifact written at the end of a run."""

    run_id: str
    phase: RunPhase
    repo_root: str
    generated_at: datetime = Field(default_factory=utc_now)
    metrics: Metrics = Field(default_factory=Metrics)
    baseline: BaselineSummary = Field(default_factory=BaselineSummary)
    issues: List[IssueEntry] = Field(default_factory=list)
    tasks: List[TaskEntry] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    parallelizable_tasks: int = 0
    estimated_duration_minutes: int = 0
    halted_reason: Optional[str] = None

    def disposition_counts(self) -> Dict[str, int]:
        counts = {disposition.value: 0 for disposition in Disposition}
        for entry in self.issues:
            counts[entry.disposition.value] += 1
        return counts

    def task_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        for entry in self.tasks:
            counts[entry.status.value] += 1
        return counts

    def unresolved(self, min_severity: Severity | str = Severity.HIGH) -> List[IssueEntry]:
        """Issues at or above ``min_severity`` that the run did not fix."""

        level = Severity(min_severity)
        return [
            entry
            for entry in self.issues
            if entry.disposition not in RESOLVED_DISPOSITIONS and entry.severity >= level
        ]


def _disposition(
    issue: Issue,
    plan: Optional[ExecutionPlan],
    tasks: Dict[str, Task],
    manual: Dict[str, ManualItem],
) -> tuple[Disposition, Optional[str]]:
    task = tasks.get(issue.id)
    if task is not None:
        return _TASK_DISPOSITIONS[task.status], task.error
    if issue.id in manual:
        return Disposition.MANUAL_ONLY, manual[issue.id].reason
    if plan is not None and issue.id in plan.high_risk:
        return Disposition.HIGH_RISK, "automated fix judged high risk"
    if plan is None and issue.auto_fixable:
        return Disposition.PENDING, "not planned yet"
    return Disposition.UNFIXABLE, None


def build_recommendations(issues: List[IssueEntry], tasks: List[TaskEntry]) -> List[Recommendation]:
    grouped: Dict[str, List[IssueEntry]] = defaultdict(list)
    for entry in issues:
        if entry.disposition in RESOLVED_DISPOSITIONS:
            continue
        if entry.severity >= Severity.HIGH or entry.disposition is Disposition.HIGH_RISK:
            grouped[entry.source_analyzer].append(entry)

    recommendations: List[Recommendation] = []
    for category, entries in grouped.items():
        actions = list(dict.fromkeys(entry.message for entry in entries if entry.message))[:3]
        recommendations.append(
            Recommendation(
                category=category,
                priority=max((entry.severity for entry in entries), key=lambda level: level.weight),
                count=len(entries),
                auto_fixable_count=sum(
                    1 for entry in entries if entry.disposition is not Disposition.UNFIXABLE
                ),
                description=f"{len(entries)} unresolved {category} finding(s) need attention",
                action_items=actions,
            )
        )

    reverted = [task for task in tasks if task.status in {TaskStatus.ROLLEDBACK, TaskStatus.FAILED}]
    if reverted:
        recommendations.append(
            Recommendation(
                category="remediation",
                priority=Severity.MEDIUM,
                count=len(reverted),
                description="Automated fixes were reverted; review them manually",
                action_items=[f"{task.issue_ref}: {task.error or task.status.value}" for task in reverted[:3]],
            )
        )
    recommendations.sort(key=lambda item: (-item.priority.weight, -item.count, item.category))
    return recommendations


def build_report(context: "RunContext") -> FinalReport:
    plan = context.plan
    tasks = {task.issue_ref: task for task in plan.tasks} if plan is not None else {}
    manual = {item.issue_id: item for item in plan.manual_only} if plan is not None else {}

    entries: List[IssueEntry] = []
    for issue in sorted(context.store.all(), key=lambda item: (-item.severity.weight, item.key)):
        disposition, reason = _disposition(issue, plan, tasks, manual)
        entries.append(
            IssueEntry(
                id=issue.id,
                type=issue.type,
                severity=issue.severity,
                file=issue.file,
                line=issue.line,
                source_analyzer=issue.source_analyzer,
                message=issue.message,
                disposition=disposition,
                reason=reason,
            )
        )

    task_entries = [
        TaskEntry(
            id=task.id,
            issue_ref=task.issue_ref,
            status=task.status,
            priority=task.priority,
            footprint=sorted(task.resource_footprint),
            checkpoint_id=task.checkpoint_id,
            modified_files=list(task.modified_files),
            error=task.error,
        )
        for task in (plan.tasks if plan is not None else [])
    ]

    baseline = context.baseline
    return FinalReport(
        run_id=context.run_id,
        phase=context.phase,
        repo_root=context.root.as_posix(),
        metrics=context.metrics.model_copy(),
        baseline=BaselineSummary(
            passed=baseline.passed if baseline is not None else True,
            failing_checks=[check.name for check in baseline.checks if not check.passed] if baseline else [],
            issues=dict(context.store.counts()),
        ),
        issues=entries,
        tasks=task_entries,
        recommendations=build_recommendations(entries, task_entries),
        parallelizable_tasks=plan.parallelizable_tasks if plan is not None else 0,
        estimated_duration_minutes=plan.estimated_duration_minutes if plan is not None else 0,
        halted_reason=context.halted_reason,
    )


def write_report(report: FinalReport, directory: Path | str) -> Path:
    """Write ``report`` as JSON under ``directory`` and return the path."""

    target_dir = Path(directory)
    target_dir.mkdir(parents=True, exist_ok=True)
    stamp = report.generated_at.strftime("%Y%m%dT%H%M%S%f")
    path = target_dir / f"{stamp}-{slugify(report.run_id, fallback='run')}.json"
    path.write_text(report.model_dump_json(indent=2), encoding="utf-8")
    return path


def load_report(path: Path | str) -> FinalReport:
    source = Path(path)
    try:
        return FinalReport.model_validate_json(source.read_text(encoding="utf-8"))
    except OSError as error:
        raise CodeGuardError(f"Unable to read report {source}: {error}") from error
    except ValidationError as error:
        raise CodeGuardError(f"{source} is not a CodeGuard report: {error}") from error


def latest_report(directory: Path | str) -> Optional[Path]:
    candidates = sorted(Path(directory).glob("*.json")) if Path(directory).is_dir() else []
    return candidates[-1] if candidates else None


def render_text(report: FinalReport) -> str:
    """Human-readable summary of ``report``."""

    metrics = report.metrics
    lines = [
        f"CodeGuard run {report.run_id} ({report.phase.value})",
        f"Repository: {report.repo_root}",
        "",
        f"Issues found: {metrics.issues_found}",
        f"Fixed: {metrics.issues_fixed}",
        f"Rolled back: {metrics.tasks_rolled_back}",
        f"Failed: {metrics.tasks_failed}",
        f"Regressions prevented: {metrics.regressions_prevented}",
        f"Files modified: {metrics.files_modified}",
        f"Elapsed: {metrics.elapsed_seconds:.1f}s",
    ]
    if report.halted_reason:
        lines.extend(["", f"HALTED: {report.halted_reason}"])

    if not report.baseline.passed:
        lines.extend(["", "Baseline failing checks: " + ", ".join(report.baseline.failing_checks)])

    counts = {name: count for name, count in report.disposition_counts().items() if count}
    if counts:
        lines.extend(["", "Dispositions: " + ", ".join(f"{name}={count}" for name, count in counts.items())])

    if report.tasks:
        lines.extend(["", "Tasks:"])
        for task in report.tasks:
            suffix = f" ({task.error})" if task.error else ""
            lines.append(f"  [{task.status.value}] {task.issue_ref}{suffix}")

    if report.issues:
        lines.extend(["", "Issues:"])
        for entry in report.issues:
            location = entry.file or "(repository)"
            if entry.line:
                location = f"{location}:{entry.line}"
            lines.append(f"  {entry.severity.value:<8} {entry.type} {location} -> {entry.disposition.value}")

    if report.recommendations:
        lines.extend(["", "Recommendations:"])
        for item in report.recommendations:
            lines.append(f"  [{item.priority.value}] {item.description}")
            lines.extend(f"    - {action}" for action in item.action_items)
    return "\n".join(lines)


__all__ = [
    "BaselineSummary",
    "Disposition",
    "FinalReport",
    "IssueEntry",
    "Recommendation",
    "TaskEntry",
    "build_recommendations",
    "build_report",
    "latest_report",
    "load_report",
    "render_text",
    "write_report",
]
