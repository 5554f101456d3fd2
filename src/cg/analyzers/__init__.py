"""Built-in analyzers and the registry used to resolve them by name."""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List

from .accessibility import AccessibilityAnalyzer
from .base import Analyzer, run_analyzers
from .code_quality import CodeQualityAnalyzer
from .deployment import DeploymentAnalyzer
from .dependency import DependencyAnalyzer
from .performance import PerformanceAnalyzer
from .security import SecurityAnalyzer
from .testing import TestingAnalyzer

ANALYZER_REGISTRY: Dict[str, Callable[[], Analyzer]] = {
    SecurityAnalyzer.name: SecurityAnalyzer,
    PerformanceAnalyzer.name: PerformanceAnalyzer,
    AccessibilityAnalyzer.name: AccessibilityAnalyzer,
    DependencyAnalyzer.name: DependencyAnalyzer,
    TestingAnalyzer.name: TestingAnalyzer,
    CodeQualityAnalyzer.name: CodeQualityAnalyzer,
    DeploymentAnalyzer.name: DeploymentAnalyzer,
}

DEFAULT_ANALYZERS: tuple[str, ...] = tuple(ANALYZER_REGISTRY)


def build_analyzers(names: Iterable[str] | None = None) -> List[Analyzer]:
    """Instantiate analyzers by name, preserving the requested order."""

    selected = list(names) if names is not None else list(DEFAULT_ANALYZERS)
    analyzers: List[Analyzer] = []
    for name in selected:
        factory = ANALYZER_REGISTRY.get(name)
        if factory is None:
            known = ", ".join(sorted(ANALYZER_REGISTRY))
            raise KeyError(f"Unknown analyzer '{name}' (known: {known})")
        analyzers.append(factory())
    return analyzers


__all__ = [
    "ANALYZER_REGISTRY",
    "AccessibilityAnalyzer",
    "Analyzer",
    "CodeQualityAnalyzer",
    "DEFAULT_ANALYZERS",
    "DependencyAnalyzer",
    "DeploymentAnalyzer",
    "PerformanceAnalyzer",
    "SecurityAnalyzer",
    "TestingAnalyzer",
    "build_analyzers",
    "run_analyzers",
]
