"""Expose diagnostic providers (tsc, eslint, ...) as an analyzer."""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence

from ..memory.schema import Issue
from ..tools.validation import DEFAULT_CHECK_TIMEOUT, DiagnosticProvider
from .base import Analyzer


class DiagnosticsAnalyzer(Analyzer):
    """Report the findings of the configured diagnostic providers as issues."""

    name = "diagnostics"
    capabilities = frozenset({"type_diagnostics", "compile_errors"})

    def __init__(self, providers: Sequence[DiagnosticProvider] = (), *, timeout: float | None = DEFAULT_CHECK_TIMEOUT) -> None:
        self.providers = list(providers)
        self.timeout = timeout

    def analyze(self, root: Path):
        issues: List[Issue] = []
        ran: List[str] = []
        for provider in self.providers:
            self.guarded(
                provider.name,
                lambda provider=provider: self._collect(root, provider, ran),
                issues,
            )
        return self.result(issues, checks_run=len(ran))

    def _collect(self, root: Path, provider: DiagnosticProvider, ran: List[str]) -> List[Issue]:
        outcome = provider.run(root, self.timeout)
        if outcome.skipped:
            return []
        ran.append(provider.name)
        found = list(outcome.issues)
        if outcome.timed_out:
            found.insert(0, self.incomplete(provider.name, outcome.detail))
        return found
