"""Priority scoring for issues and risk classification for their fixes.

The assessor produces two independent scores:

``priority``
    How urgent the underlying problem is. Severity weight (critical=4 ...
    low=1), halved for heuristic findings, raised for every impact tag that
    touches a shared subsystem.

``risk_level``
    How dangerous the *automated fix* is. Fixes confined to a few isolated
    files are ``low``; fixes touching shared configuration, the build
    pipeline, or more than ``max_files`` resources are ``high`` and are only
    ever reported.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatch
from typing import FrozenSet, Iterable, List

from ..memory.schema import Confidence, FixRisk, Issue

DEFAULT_SHARED_SUBSYSTEMS: FrozenSet[str] = frozenset(
    {"auth", "build", "config", "database", "dependencies", "deployment", "routing", "shared"}
)

DEFAULT_SHARED_PATHS: tuple[str, ...] = (
    "package.json",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "pnpm-workspace.yaml",
    "tsconfig*.json",
    "*/tsconfig*.json",
    "next.config.*",
    "vite.config.*",
    "webpack.config.*",
    "babel.config.*",
    ".babelrc",
    "turbo.json",
    "Dockerfile",
    "docker-compose*.yml",
    "docker-compose*.yaml",
    ".github/workflows/*",
    ".gitlab-ci.yml",
    ".env",
    ".env.local",
    ".env.production",
    "config:*",
)

DEFAULT_MAX_FILES = 3
HEURISTIC_MULTIPLIER = 0.5
BLAST_WEIGHT = 0.25


@dataclass(frozen=True, slots=True)
class RiskScore:
    """Priority of an issue and risk of its automated fix."""

    priority: float
    risk_level: FixRisk
    reasons: tuple[str, ...] = ()


@dataclass(slots=True)
class RiskAssessor:
    """Score issues for urgency and their fixes for risk."""

    shared_subsystems: FrozenSet[str] = DEFAULT_SHARED_SUBSYSTEMS
    shared_paths: tuple[str, ...] = DEFAULT_SHARED_PATHS
    max_files: int = DEFAULT_MAX_FILES
    heuristic_multiplier: float = HEURISTIC_MULTIPLIER
    blast_weight: float = BLAST_WEIGHT

    def blast_radius(self, issue: Issue) -> int:
        return len(issue.impact_tags & self.shared_subsystems)

    def priority(self, issue: Issue) -> float:
        value = float(issue.severity.weight)
        if issue.confidence is Confidence.HEURISTIC:
            value *= self.heuristic_multiplier
        value *= 1.0 + self.blast_weight * self.blast_radius(issue)
        return round(value, 4)

    def fix_risk(self, issue: Issue) -> tuple[FixRisk, tuple[str, ...]]:
        reasons: List[str] = []
        descriptor = issue.fix_descriptor
        if descriptor is not None and descriptor.risk is FixRisk.HIGH:
            reasons.append("fix declared high risk")
        footprint = issue.footprint()
        if len(footprint) > self.max_files:
            reasons.append(f"touches {len(footprint)} resources (limit {self.max_files})")
        for resource in sorted(footprint):
            if self.is_shared(resource):
                reasons.append(f"touches shared resource {resource}")
        return (FixRisk.HIGH if reasons else FixRisk.LOW), tuple(reasons)

    def is_shared(self, resource: str) -> bool:
        name = resource.rsplit("/", 1)[-1]
        for pattern in self.shared_paths:
            if fnmatch(resource, pattern):
                return True
            if "/" not in pattern and fnmatch(name, pattern):
                return True
        return False

    def score(self, issue: Issue) -> RiskScore:
        risk_level, reasons = self.fix_risk(issue)
        return RiskScore(priority=self.priority(issue), risk_level=risk_level, reasons=reasons)

    def rank(self, issues: Iterable[Issue]) -> List[Issue]:
        """Return issues by descending priority; ties broken by id."""

        return sorted(issues, key=lambda issue: (-self.priority(issue), issue.id))


__all__ = [
    "BLAST_WEIGHT",
    "DEFAULT_MAX_FILES",
    "DEFAULT_SHARED_PATHS",
    "DEFAULT_SHARED_SUBSYSTEMS",
    "HEURISTIC_MULTIPLIER",
    "RiskAssessor",
    "RiskScore",
]
