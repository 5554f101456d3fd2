"""Analyzer contract and the parallel analysis phase."""

from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Iterable, Iterator, List, Sequence

from ..memory.schema import AnalysisResult, Confidence, FixDescriptor, Issue, Severity

LOGGER = logging.getLogger(__name__)

DEFAULT_ANALYSIS_TIMEOUT = 120.0

# Directories never scanned by the built-in analyzers.
IGNORED_DIRECTORIES: FrozenSet[str] = frozenset(
    {
        ".git",
        ".hg",
        ".next",
        ".turbo",
        ".venv",
        "__pycache__",
        "build",
        "coverage",
        "dist",
        "node_modules",
        "venv",
        ".codeguard",
    }
)


def iter_source_files(root: Path, suffixes: Iterable[str]) -> Iterator[Path]:
    """Yield files under ``root`` with one of ``suffixes`` in sorted order."""

    wanted = {suffix.lower() for suffix in suffixes}
    for current, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in IGNORED_DIRECTORIES)
        for filename in sorted(filenames):
            path = Path(current) / filename
            if path.suffix.lower() in wanted:
                yield path


def relative_path(root: Path, path: Path) -> str:
    return path.resolve().relative_to(root.resolve()).as_posix()


class Analyzer(ABC):
    """Pluggable unit that inspects a repository without modifying it.

    Subclasses implement :meth:`analyze`. Sub-checks should go through
    :meth:`guarded` so that a failing check degrades to an
    ``analysis_incomplete`` issue instead of aborting the analyzer.
    """

    name: ClassVar[str] = "analyzer"
    capabilities: ClassVar[FrozenSet[str]] = frozenset()

    @abstractmethod
    def analyze(self, root: Path) -> AnalysisResult:
        raise NotImplementedError

    # ----------------------------------------------------------------- helpers
    def issue(
        self,
        issue_type: str,
        severity: Severity | str,
        message: str,
        *,
        file: str | None = None,
        line: int | None = None,
        recommendation: str = "",
        auto_fixable: bool = False,
        fix: FixDescriptor | None = None,
        impact_tags: Iterable[str] = (),
        confidence: Confidence = Confidence.CERTAIN,
    ) -> Issue:
        return Issue(
            type=issue_type,
            severity=Severity(severity),
            source_analyzer=self.name,
            file=file,
            line=line,
            message=message,
            recommendation=recommendation,
            auto_fixable=auto_fixable,
            fix_descriptor=fix,
            impact_tags=frozenset(impact_tags),
            confidence=confidence,
        )

    def incomplete(self, check: str, error: BaseException | str) -> Issue:
        return Issue(
            type="analysis_incomplete",
            severity=Severity.LOW,
            source_analyzer=self.name,
            file=f"<{self.name}:{check}>",
            message=f"{self.name} check '{check}' could not complete: {error}",
            recommendation="Inspect the analyzer logs and re-run the analysis.",
        )

    def guarded(
        self,
        check: str,
        func: Callable[[], Iterable[Issue]],
        issues: List[Issue],
    ) -> None:
        """Run ``func`` and extend ``issues``, degrading failures to a low issue."""

        try:
            issues.extend(func())
        except Exception as error:  # noqa: BLE001 - sub-check failures degrade
            LOGGER.warning("%s: check %s failed: %s", self.name, check, error)
            issues.append(self.incomplete(check, error))

    def result(self, issues: List[Issue], **metrics: Any) -> AnalysisResult:
        summary: Dict[str, Any] = {"issues": len(issues)}
        summary.update(metrics)
        return AnalysisResult(analyzer=self.name, issues=issues, metrics=summary)


def _failure_result(analyzer: Analyzer, issue_type: str, message: str) -> AnalysisResult:
    issue = Issue(
        type=issue_type,
        severity=Severity.LOW,
        source_analyzer=analyzer.name,
        file=f"<{analyzer.name}>",
        message=message,
        recommendation="Re-run the analyzer or inspect its configuration.",
    )
    return AnalysisResult(analyzer=analyzer.name, issues=[issue], error=message)


def _timed_analyze(analyzer: Analyzer, root: Path) -> AnalysisResult:
    started = time.monotonic()
    result = analyzer.analyze(root)
    result.duration_seconds = time.monotonic() - started
    return result


def run_analyzers(
    analyzers: Sequence[Analyzer],
    root: Path,
    *,
    timeout: float | None = DEFAULT_ANALYSIS_TIMEOUT,
    max_workers: int | None = None,
) -> List[AnalysisResult]:
    """Run every analyzer concurrently and collect their results.

    An analyzer that raises or does not finish within ``timeout`` seconds
    contributes a single low-severity diagnostic issue instead of findings.
    Results are returned in the order the analyzers were supplied.
    """

    if not analyzers:
        return []

    workers = max_workers or len(analyzers)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cg-analyzer")
    futures: Dict[Future[AnalysisResult], Analyzer] = {}
    try:
        for analyzer in analyzers:
            LOGGER.info("Launching %s analyzer", analyzer.name)
            futures[executor.submit(_timed_analyze, analyzer, root)] = analyzer
        done, _pending = wait(futures, timeout=timeout)
    finally:
        # Hung analyzers are abandoned rather than joined.
        executor.shutdown(wait=False, cancel_futures=True)

    results: List[AnalysisResult] = []
    for future, analyzer in futures.items():
        if future not in done:
            message = f"{analyzer.name} analyzer timed out after {timeout}s"
            LOGGER.warning(message)
            results.append(_failure_result(analyzer, "analyzer_timeout", message))
            continue
        error = future.exception()
        if error is not None:
            message = f"{analyzer.name} analyzer failed: {error}"
            LOGGER.warning(message)
            results.append(_failure_result(analyzer, "analyzer_failed", message))
            continue
        result = future.result()
        LOGGER.info("%s analyzer completed: %d issue(s)", analyzer.name, len(result.issues))
        results.append(result)
    return results


__all__ = [
    "Analyzer",
    "DEFAULT_ANALYSIS_TIMEOUT",
    "IGNORED_DIRECTORIES",
    "iter_source_files",
    "relative_path",
    "run_analyzers",
]
