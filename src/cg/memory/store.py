"""In-memory aggregation of analyzer findings."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .schema import AnalysisResult, Issue, Severity

LOGGER = logging.getLogger(__name__)

IssueKey = Tuple[str, str, int]


class IssueStore:
    """Deduplicated, provenance-annotated collection of issues.

    Issues are keyed by ``(type, file, line)``. When two analyzers report the
    same key with different severities the higher severity wins; the first
    reported record is otherwise kept. Every analyzer that reported a key is
    remembered so the report can show provenance.
    """

    def __init__(self, issues: Iterable[Issue] | None = None) -> None:
        self._issues: Dict[IssueKey, Issue] = {}
        self._sources: Dict[IssueKey, List[str]] = {}
        if issues:
            self.extend(issues)

    # ---------------------------------------------------------------- mutation
    def add(self, issue: Issue) -> Issue:
        """Insert ``issue`` and return the stored (possibly merged) record."""

        key = issue.key
        existing = self._issues.get(key)
        sources = self._sources.setdefault(key, [])
        if issue.source_analyzer not in sources:
            sources.append(issue.source_analyzer)

        if existing is None:
            self._issues[key] = issue
            return issue

        if issue.severity > existing.severity:
            LOGGER.debug(
                "Raising severity of %s from %s to %s (reported by %s)",
                existing.id,
                existing.severity.value,
                issue.severity.value,
                issue.source_analyzer,
            )
            existing = existing.with_severity(issue.severity)
            self._issues[key] = existing
        return existing

    def extend(self, issues: Iterable[Issue]) -> None:
        for issue in issues:
            self.add(issue)

    def add_results(self, results: Sequence[AnalysisResult]) -> None:
        """Merge the issues of several analyzer results in order."""

        for result in results:
            self.extend(result.issues)

    # ----------------------------------------------------------------- queries
    def __len__(self) -> int:
        return len(self._issues)

    def __iter__(self):
        return iter(list(self._issues.values()))

    def __contains__(self, issue_id: object) -> bool:
        return any(issue.id == issue_id for issue in self._issues.values())

    def all(self) -> List[Issue]:
        return list(self._issues.values())

    def get(self, issue_id: str) -> Optional[Issue]:
        for issue in self._issues.values():
            if issue.id == issue_id:
                return issue
        return None

    def keys(self) -> frozenset[IssueKey]:
        return frozenset(self._issues)

    def by_severity(self, severity: Severity | str) -> List[Issue]:
        level = Severity(severity)
        return [issue for issue in self._issues.values() if issue.severity is level]

    def at_least(self, severity: Severity | str) -> List[Issue]:
        level = Severity(severity)
        return [issue for issue in self._issues.values() if issue.severity >= level]

    def by_analyzer(self, analyzer: str) -> List[Issue]:
        return [
            issue
            for key, issue in self._issues.items()
            if analyzer in self._sources.get(key, ())
        ]

    def auto_fixable(self) -> List[Issue]:
        return [issue for issue in self._issues.values() if issue.auto_fixable]

    def sources(self, issue_id: str) -> List[str]:
        for key, issue in self._issues.items():
            if issue.id == issue_id:
                return list(self._sources.get(key, ()))
        return []

    def counts(self) -> Mapping[str, int]:
        """Return issue counts per severity, always listing every level."""

        counter = Counter(issue.severity.value for issue in self._issues.values())
        return {level.value: counter.get(level.value, 0) for level in Severity}

    def snapshot(self) -> Tuple[Issue, ...]:
        return tuple(self._issues.values())


__all__ = ["IssueKey", "IssueStore"]
