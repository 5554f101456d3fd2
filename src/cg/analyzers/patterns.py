"""Line-oriented pattern rules shared by the built-in analyzers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, List, Pattern

from ..memory.schema import Confidence, FixDescriptor, Issue, Severity
from .base import Analyzer, relative_path


@dataclass(frozen=True)
class PatternRule:
    """Regex rule producing one issue per matching line."""

    issue_type: str
    pattern: Pattern[str]
    severity: Severity
    message: str
    recommendation: str = ""
    fix_kind: str | None = None
    exclude: Pattern[str] | None = None
    confidence: Confidence = Confidence.CERTAIN
    impact_tags: FrozenSet[str] = field(default_factory=frozenset)

    def matches(self, line: str) -> bool:
        if not self.pattern.search(line):
            return False
        if self.exclude is not None and self.exclude.search(line):
            return False
        return True


def rule(
    issue_type: str,
    pattern: str,
    severity: str,
    message: str,
    *,
    recommendation: str = "",
    fix_kind: str | None = None,
    exclude: str | None = None,
    heuristic: bool = False,
    tags: tuple[str, ...] = (),
) -> PatternRule:
    return PatternRule(
        issue_type=issue_type,
        pattern=re.compile(pattern),
        severity=Severity(severity),
        message=message,
        recommendation=recommendation,
        fix_kind=fix_kind,
        exclude=re.compile(exclude) if exclude else None,
        confidence=Confidence.HEURISTIC if heuristic else Confidence.CERTAIN,
        impact_tags=frozenset(tags),
    )


def scan_file(analyzer: Analyzer, root: Path, path: Path, rules: List[PatternRule]) -> List[Issue]:
    """Apply ``rules`` to every line of ``path``."""

    relative = relative_path(root, path)
    text = path.read_text(encoding="utf-8", errors="replace")
    issues: List[Issue] = []
    for number, line in enumerate(text.splitlines(), start=1):
        for entry in rules:
            if not entry.matches(line):
                continue
            fix = None
            if entry.fix_kind:
                fix = FixDescriptor(kind=entry.fix_kind, resources=frozenset({relative}))
            issues.append(
                analyzer.issue(
                    entry.issue_type,
                    entry.severity,
                    entry.message,
                    file=relative,
                    line=number,
                    recommendation=entry.recommendation,
                    auto_fixable=fix is not None,
                    fix=fix,
                    impact_tags=entry.impact_tags,
                    confidence=entry.confidence,
                )
            )
    return issues


__all__ = ["PatternRule", "rule", "scan_file"]
