"""Typed records exchanged between the CodeGuard engine components."""

from __future__ import annotations

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import InvalidTransitionError


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class Severity(str, Enum):
    """Severity of the underlying problem, totally ordered."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return _SEVERITY_WEIGHTS[self]

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight >= other.weight

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight > other.weight

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight <= other.weight

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight < other.weight


_SEVERITY_WEIGHTS: Dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


class Confidence(str, Enum):
    """How sure an analyzer is about a finding."""

    CERTAIN = "certain"
    HEURISTIC = "heuristic"


class FixRisk(str, Enum):
    """Risk of applying the automated fix, independent of bug severity."""

    LOW = "low"
    HIGH = "high"


class RunPhase(str, Enum):
    """Orchestrator states, in order."""

    IDLE = "idle"
    BASELINE_ESTABLISHED = "baseline_established"
    ANALYZED = "analyzed"
    PLANNED = "planned"
    EXECUTING = "executing"
    COMPLETE = "complete"
    HALTED = "halted"


class TaskStatus(str, Enum):
    """Lifecycle states for a remediation task."""

    PENDING = "pending"
    RUNNING = "running"
    COMMITTED = "committed"
    ROLLEDBACK = "rolledback"
    FAILED = "failed"


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset(
    {TaskStatus.COMMITTED, TaskStatus.ROLLEDBACK, TaskStatus.FAILED}
)

_ALLOWED_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING}),
    TaskStatus.RUNNING: frozenset(
        {TaskStatus.COMMITTED, TaskStatus.ROLLEDBACK, TaskStatus.FAILED}
    ),
    TaskStatus.COMMITTED: frozenset(),
    TaskStatus.ROLLEDBACK: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def identity_key(issue_type: str, file: Optional[str], line: Optional[int]) -> Tuple[str, str, int]:
    """Return the de-duplication key for a finding."""
    return (issue_type, file or "", line or 0)


def issue_id_for(issue_type: str, file: Optional[str], line: Optional[int]) -> str:
    """Derive a stable issue identifier from the identity key."""
    key = identity_key(issue_type, file, line)
    digest = hashlib.sha1("|".join(str(part) for part in key).encode("utf-8")).hexdigest()
    return f"{issue_type}-{digest[:10]}"


class FixDescriptor(BaseModel):
    """Tagged remediation payload; ``kind`` selects the fix handler."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: str
    resources: FrozenSet[str] = Field(default_factory=frozenset)
    payload: Dict[str, Any] = Field(default_factory=dict)
    risk: Optional[FixRisk] = None


class Issue(BaseModel):
    """Single detected problem. Immutable once created."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = ""
    type: str
    severity: Severity
    source_analyzer: str
    file: Optional[str] = None
    line: Optional[int] = None
    message: str
    recommendation: str = ""
    auto_fixable: bool = False
    fix_descriptor: Optional[FixDescriptor] = None
    impact_tags: FrozenSet[str] = Field(default_factory=frozenset)
    confidence: Confidence = Confidence.CERTAIN

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("id"):
            data = dict(data)
            data["id"] = issue_id_for(data.get("type", ""), data.get("file"), data.get("line"))
        return data

    @property
    def key(self) -> Tuple[str, str, int]:
        return identity_key(self.type, self.file, self.line)

    @property
    def fix_kind(self) -> str:
        if self.fix_descriptor is not None:
            return self.fix_descriptor.kind
        return self.type

    def footprint(self) -> FrozenSet[str]:
        """Return the resources a fix for this issue will touch."""
        if self.fix_descriptor is not None and self.fix_descriptor.resources:
            return self.fix_descriptor.resources
        if self.file:
            return frozenset({self.file})
        return frozenset()

    def with_severity(self, severity: Severity) -> "Issue":
        return self.model_copy(update={"severity": severity})


class Task(RecordModel):
    """Actionable remediation derived from exactly one auto-fixable issue."""

    id: str
    issue_ref: str
    resource_footprint: FrozenSet[str]
    priority: float
    risk_level: FixRisk = FixRisk.LOW
    status: TaskStatus = TaskStatus.PENDING
    checkpoint_id: Optional[str] = None
    error: Optional[str] = None
    modified_files: List[str] = Field(default_factory=list)

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: TaskStatus) -> None:
        """Move the task to ``status`` enforcing the lifecycle."""
        allowed = _ALLOWED_TRANSITIONS[self.status]
        if status not in allowed:
            raise InvalidTransitionError(
                f"Task {self.id} cannot move from {self.status.value} to {status.value}"
            )
        if status is TaskStatus.RUNNING and not self.checkpoint_id:
            raise InvalidTransitionError(f"Task {self.id} has no checkpoint; refusing to run it")
        self.status = status


class ManualItem(RecordModel):
    """Issue excluded from automatic execution."""

    issue_id: str
    reason: str


class ExecutionPlan(RecordModel):
    """Ordered batches of tasks with pairwise disjoint footprints."""

    batches: List[List[Task]] = Field(default_factory=list)
    manual_only: List[ManualItem] = Field(default_factory=list)
    high_risk: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def tasks(self) -> List[Task]:
        return [task for batch in self.batches for task in batch]

    @property
    def parallelizable_tasks(self) -> int:
        return sum(len(batch) for batch in self.batches if len(batch) > 1)

    @property
    def estimated_duration_minutes(self) -> int:
        # One validation round per task, roughly two minutes each.
        return len(self.tasks) * 2

    def task_for_issue(self, issue_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.issue_ref == issue_id:
                return task
        return None


class Metrics(RecordModel):
    """Process-wide counters for one run."""

    issues_found: int = 0
    issues_fixed: int = 0
    tasks_rolled_back: int = 0
    tasks_failed: int = 0
    regressions_prevented: int = 0
    files_modified: int = 0
    elapsed_seconds: float = 0.0
    started_at: datetime = Field(default_factory=utc_now)


class Checkpoint(RecordModel):
    """Restorable snapshot of repository state."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    id: str
    label: str
    timestamp: datetime = Field(default_factory=utc_now)
    state_ref: Any = Field(default=None, exclude=True)
    preceding_metrics: Optional[Metrics] = None
    task_id: Optional[str] = None


class CheckResult(RecordModel):
    """Outcome of a single validation check."""

    name: str
    passed: bool
    detail: str = ""
    duration_seconds: float = 0.0
    timed_out: bool = False
    skipped: bool = False


class ValidationResult(RecordModel):
    """Aggregated outcome of the validation battery."""

    passed: bool
    checks: List[CheckResult] = Field(default_factory=list)
    regressions: List[Issue] = Field(default_factory=list)
    unresolved: List[Issue] = Field(default_factory=list)

    @property
    def reason(self) -> str:
        if self.passed:
            return "all checks passed"
        if self.regressions:
            first = self.regressions[0]
            location = first.file or "(repository)"
            return f"{len(self.regressions)} regression(s), first: {first.type} in {location}"
        if self.unresolved:
            first = self.unresolved[0]
            return f"{first.type} still reported at {first.file or '(repository)'}:{first.line or 0} after the fix"
        for check in self.checks:
            if not check.passed:
                return f"{check.name} failed: {check.detail}".strip()
        return "validation failed"


class AnalysisResult(RecordModel):
    """Findings and summary metrics returned by one analyzer."""

    analyzer: str
    issues: List[Issue] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    duration_seconds: float = 0.0
    error: Optional[str] = None


__all__ = [
    "AnalysisResult",
    "CheckResult",
    "Checkpoint",
    "Confidence",
    "ExecutionPlan",
    "FixDescriptor",
    "FixRisk",
    "Issue",
    "ManualItem",
    "Metrics",
    "RecordModel",
    "RunPhase",
    "Severity",
    "TERMINAL_STATUSES",
    "Task",
    "TaskStatus",
    "ValidationResult",
    "identity_key",
    "issue_id_for",
    "utc_now",
]
