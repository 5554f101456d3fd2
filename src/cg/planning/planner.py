"""Turn prioritised issues into conflict-free, ordered execution batches."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from fnmatch import fnmatch
from typing import Any, Dict, Iterable, List, Sequence, Set

from ..fixes.registry import FixRegistry
from ..memory.schema import ExecutionPlan, FixRisk, Issue, ManualItem, Task
from .risk import RiskAssessor

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderingRule:
    """Tasks whose issue type matches ``before`` run ahead of those matching ``after``.

    Both sides are shell-style patterns over issue types.
    """

    before: str
    after: str

    def applies(self, first: Issue, second: Issue) -> bool:
        return fnmatch(first.type, self.before) and fnmatch(second.type, self.after)

    @classmethod
    def parse(cls, entry: Any) -> "OrderingRule | None":
        if isinstance(entry, OrderingRule):
            return entry
        if isinstance(entry, Mapping):
            before = entry.get("before")
            after = entry.get("after")
            if isinstance(before, str) and isinstance(after, str) and before and after:
                return cls(before=before, after=after)
            return None
        if isinstance(entry, str) and ">" in entry:
            before, after = (part.strip() for part in entry.split(">", 1))
            if before and after:
                return cls(before=before, after=after)
        return None


# Dependency installs must land before type fixes that rely on the new types.
DEFAULT_ORDERING_RULES: tuple[OrderingRule, ...] = (
    OrderingRule(before="dependency_*", after="type_*"),
    OrderingRule(before="dependency_*", after="typecheck_*"),
)


class TaskPlanner:
    """Build an :class:`ExecutionPlan` from issues.

    Only auto-fixable issues whose fix is low risk and whose handler is
    registered become tasks. Two tasks conflict when their resource
    footprints intersect or an ordering rule relates them. Batches are
    extracted greedily as maximal independent sets of the conflict graph,
    restricted to tasks whose predecessors are already scheduled, so every
    batch is footprint-disjoint and batches respect the ordering rules.
    Ordering cycles never raise: the lowest-priority task on a cycle is
    demoted to manual-only until the precedence graph is acyclic.
    """

    def __init__(
        self,
        registry: FixRegistry,
        *,
        assessor: RiskAssessor | None = None,
        ordering_rules: Sequence[OrderingRule] = DEFAULT_ORDERING_RULES,
    ) -> None:
        self.registry = registry
        self.assessor = assessor or RiskAssessor()
        self.ordering_rules = list(ordering_rules)

    # ------------------------------------------------------------------ public
    def plan(self, issues: Iterable[Issue]) -> ExecutionPlan:
        plan = ExecutionPlan()
        tasks: List[Task] = []
        issue_for: Dict[str, Issue] = {}

        for issue in self.assessor.rank(issues):
            if not issue.auto_fixable:
                continue
            score = self.assessor.score(issue)
            if score.risk_level is FixRisk.HIGH:
                LOGGER.debug("Not scheduling %s: %s", issue.id, "; ".join(score.reasons))
                plan.high_risk.append(issue.id)
                continue
            if not self.registry.has(issue.fix_kind):
                plan.manual_only.append(
                    ManualItem(issue_id=issue.id, reason=f"no fix handler for '{issue.fix_kind}'")
                )
                continue
            footprint = issue.footprint()
            if not footprint:
                plan.manual_only.append(ManualItem(issue_id=issue.id, reason="fix footprint unknown"))
                continue
            task = Task(
                id=f"task-{issue.id}",
                issue_ref=issue.id,
                resource_footprint=footprint,
                priority=score.priority,
                risk_level=score.risk_level,
            )
            tasks.append(task)
            issue_for[task.id] = issue

        successors = self.precedence_graph(tasks, issue_for)
        dropped = self._break_cycles(tasks, successors)
        for task in dropped:
            LOGGER.warning("Ordering cycle: %s demoted to manual-only", task.issue_ref)
            plan.manual_only.append(ManualItem(issue_id=task.issue_ref, reason="ordering cycle"))

        dropped_ids = {task.id for task in dropped}
        remaining = [task for task in tasks if task.id not in dropped_ids]
        plan.batches = self._batches(remaining, successors)
        LOGGER.info(
            "Planned %d task(s) in %d batch(es); %d manual-only, %d high-risk",
            len(remaining),
            len(plan.batches),
            len(plan.manual_only),
            len(plan.high_risk),
        )
        return plan

    def precedence_graph(self, tasks: Sequence[Task], issue_for: Mapping[str, Issue]) -> Dict[str, Set[str]]:
        """Return ``task id -> ids that must run after it``."""

        successors: Dict[str, Set[str]] = {task.id: set() for task in tasks}
        for first in tasks:
            for second in tasks:
                if first.id == second.id:
                    continue
                first_issue = issue_for[first.id]
                second_issue = issue_for[second.id]
                if any(rule.applies(first_issue, second_issue) for rule in self.ordering_rules):
                    successors[first.id].add(second.id)
        return successors

    @staticmethod
    def conflict_graph(tasks: Sequence[Task], successors: Mapping[str, Set[str]]) -> Dict[str, Set[str]]:
        """Return the undirected conflict graph (shared resources or ordering)."""

        conflicts: Dict[str, Set[str]] = {task.id: set() for task in tasks}
        for index, first in enumerate(tasks):
            for second in tasks[index + 1 :]:
                related = second.id in successors.get(first.id, ()) or first.id in successors.get(second.id, ())
                if related or first.resource_footprint & second.resource_footprint:
                    conflicts[first.id].add(second.id)
                    conflicts[second.id].add(first.id)
        return conflicts

    # --------------------------------------------------------------- internals
    def _break_cycles(self, tasks: List[Task], successors: Dict[str, Set[str]]) -> List[Task]:
        by_id = {task.id: task for task in tasks}
        dropped: List[Task] = []
        while True:
            cyclic = [component for component in _strongly_connected(successors) if len(component) > 1]
            if not cyclic:
                return dropped
            for component in cyclic:
                victim = min(
                    (by_id[task_id] for task_id in component),
                    key=lambda task: (task.priority, _reverse_key(task.id)),
                )
                dropped.append(victim)
                successors.pop(victim.id, None)
                for targets in successors.values():
                    targets.discard(victim.id)

    def _batches(self, tasks: List[Task], successors: Mapping[str, Set[str]]) -> List[List[Task]]:
        predecessors: Dict[str, Set[str]] = {task.id: set() for task in tasks}
        for source, targets in successors.items():
            for target in targets:
                if target in predecessors and source in predecessors:
                    predecessors[target].add(source)

        pending = sorted(tasks, key=lambda task: (-task.priority, task.id))
        scheduled: Set[str] = set()
        batches: List[List[Task]] = []
        while pending:
            ready = [task for task in pending if predecessors[task.id] <= scheduled]
            batch: List[Task] = []
            claimed: Set[str] = set()
            for task in ready:
                if task.resource_footprint & claimed:
                    continue
                batch.append(task)
                claimed |= task.resource_footprint
            batches.append(batch)
            scheduled.update(task.id for task in batch)
            pending = [task for task in pending if task.id not in scheduled]
        return batches


def _reverse_key(value: str) -> tuple[int, ...]:
    # Among equal priorities drop the lexically greatest id.
    return tuple(-ord(char) for char in value)


def _strongly_connected(graph: Mapping[str, Set[str]]) -> List[List[str]]:
    """Tarjan's algorithm, iterative; nodes visited in sorted order."""

    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    components: List[List[str]] = []
    counter = 0

    for root in sorted(graph):
        if root in index_of:
            continue
        work: List[tuple[str, Iterable[str]]] = [(root, iter(sorted(graph.get(root, ()))))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        while work:
            node, children = work[-1]
            advanced = False
            for child in children:
                if child not in graph:
                    continue
                if child not in index_of:
                    index_of[child] = lowlink[child] = counter
                    counter += 1
                    stack.append(child)
                    on_stack.add(child)
                    work.append((child, iter(sorted(graph.get(child, ())))))
                    advanced = True
                    break
                if child in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[child])
            if advanced:
                continue
            work.pop()
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
            if lowlink[node] == index_of[node]:
                component: List[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(sorted(component))
    return components


def rules_from_config(raw: Iterable[Any] | None) -> List[OrderingRule]:
    """Parse ``planning.ordering_rules``; ``None`` yields the defaults."""

    if raw is None:
        return list(DEFAULT_ORDERING_RULES)
    rules: List[OrderingRule] = []
    for entry in raw:
        parsed = OrderingRule.parse(entry)
        if parsed is None:
            LOGGER.warning("Ignoring malformed ordering rule: %r", entry)
            continue
        rules.append(parsed)
    return rules


__all__ = ["DEFAULT_ORDERING_RULES", "OrderingRule", "TaskPlanner", "rules_from_config"]
