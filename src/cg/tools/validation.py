"""Post-fix validation battery.

The pipeline runs a fixed, ordered list of diagnostic providers (type-check,
build, tests, lint) and compares everything they report, plus an optional
re-analysis of the repository, against the pre-run baseline. A new finding
is a regression and fails validation on its own, even when every check
passed.
"""

from __future__ import annotations

import difflib
import logging
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..memory.schema import CheckResult, Issue, Severity, ValidationResult
from ..memory.store import IssueKey
from .diagnostic_output import Diagnostic, resolve_parser

LOGGER = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT = 600.0
TIMEOUT_EXIT_CODE = 124

# Cheap, high-signal checks first.
STANDARD_CHECK_ORDER: tuple[str, ...] = ("typecheck", "build", "test", "lint")

_LEVEL_SEVERITY = {"error": Severity.HIGH, "warning": Severity.LOW, "note": Severity.LOW}
_CATEGORY_SEVERITY = {"typecheck": Severity.HIGH, "build": Severity.HIGH, "test": Severity.HIGH}


@dataclass(slots=True)
class DiagnosticResult:
    """Boolean-plus-detail outcome of a diagnostic provider."""

    passed: bool
    detail: str = ""
    issues: List[Issue] = field(default_factory=list)
    timed_out: bool = False
    skipped: bool = False


class DiagnosticProvider(ABC):
    """Source of compile, build, test or lint results."""

    name: str
    category: str
    timeout: float | None

    @abstractmethod
    def run(self, root: Path, timeout: float | None) -> DiagnosticResult:
        raise NotImplementedError


def diagnostics_to_issues(
    diagnostics: Iterable[Diagnostic],
    *,
    source: str,
    category: str,
) -> List[Issue]:
    """Convert tool findings into issue records keyed by tool code."""

    issues: List[Issue] = []
    for diagnostic in diagnostics:
        code = (diagnostic.code or "error").lower().replace("/", "_")
        severity = _CATEGORY_SEVERITY.get(category) or _LEVEL_SEVERITY.get(diagnostic.level, Severity.MEDIUM)
        if diagnostic.level == "warning":
            severity = Severity.LOW
        issues.append(
            Issue(
                type=f"{category}_{code}",
                severity=severity,
                source_analyzer=source,
                file=diagnostic.path or None,
                line=diagnostic.line or None,
                message=diagnostic.message,
                recommendation=f"Resolve the {category} diagnostic reported by {source}.",
            )
        )
    return issues


def _ensure_text(data: str | bytes | None) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data or ""


@dataclass(slots=True)
class CommandDiagnosticProvider(DiagnosticProvider):
    """Run an external command; exit code zero means the check passed."""

    name: str
    command: Sequence[str]
    category: str = "lint"
    optional: bool = True
    timeout: float | None = None
    output_format: str | None = None

    def run(self, root: Path, timeout: float | None) -> DiagnosticResult:
        executable = self.command[0]
        if shutil.which(executable) is None:
            detail = f"Executable not available: {executable}"
            if self.optional:
                return DiagnosticResult(passed=True, detail=detail, skipped=True)
            return DiagnosticResult(passed=False, detail=detail)

        effective_timeout = self.timeout if self.timeout is not None else timeout
        try:
            process = subprocess.run(  # noqa: S603  # command is sourced from config
                list(self.command),
                cwd=root,
                check=False,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as error:
            output = _ensure_text(error.stdout) + _ensure_text(error.stderr)
            detail = f"Command timed out after {effective_timeout:.1f}s"
            LOGGER.warning("%s: %s", self.name, detail)
            return DiagnosticResult(
                passed=False,
                detail=detail,
                issues=self._parse(output, root),
                timed_out=True,
            )

        combined = "\n".join(part for part in (process.stdout, process.stderr) if part)
        issues = self._parse(combined, root)
        if process.returncode == 0:
            return DiagnosticResult(passed=True, detail="exit code 0", issues=issues)
        return DiagnosticResult(
            passed=False,
            detail=self._failure_snippet(combined, process.returncode),
            issues=issues,
        )

    def _parse(self, output: str, root: Path) -> List[Issue]:
        tokens = [self.output_format or "", self.name, *self.command]
        parser = resolve_parser(tokens)
        try:
            diagnostics = parser(output)
        except (TypeError, ValueError) as error:
            LOGGER.debug("%s: unable to parse output: %s", self.name, error)
            return []
        return diagnostics_to_issues(diagnostics, source=self.name, category=self.category)

    @staticmethod
    def _failure_snippet(output: str, exit_code: int) -> str:
        for line in output.splitlines():
            if line.strip():
                return line.strip()
        return f"exit code {exit_code}"


@dataclass(slots=True)
class CallableDiagnosticProvider(DiagnosticProvider):
    """Wrap a Python callable returning ``DiagnosticResult`` or ``bool``."""

    name: str
    func: Callable[[Path], DiagnosticResult | bool]
    category: str = "lint"
    timeout: float | None = None

    def run(self, root: Path, timeout: float | None) -> DiagnosticResult:
        effective_timeout = self.timeout if self.timeout is not None else timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"cg-check-{self.name}")
        try:
            future = executor.submit(self.func, root)
            try:
                outcome = future.result(timeout=effective_timeout)
            except FutureTimeoutError:
                return DiagnosticResult(
                    passed=False,
                    detail=f"Check timed out after {effective_timeout}s",
                    timed_out=True,
                )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        if isinstance(outcome, DiagnosticResult):
            return outcome
        return DiagnosticResult(passed=bool(outcome), detail="passed" if outcome else "failed")


def order_providers(providers: Iterable[DiagnosticProvider]) -> List[DiagnosticProvider]:
    """Sort providers into the standard battery order (stable for unknowns)."""

    def _rank(item: tuple[int, DiagnosticProvider]) -> tuple[int, int]:
        index, provider = item
        try:
            return (STANDARD_CHECK_ORDER.index(provider.category), index)
        except ValueError:
            return (len(STANDARD_CHECK_ORDER), index)

    return [provider for _, provider in sorted(enumerate(providers), key=_rank)]


IssueProbe = Callable[[], Sequence[Issue]]
LineMap = Dict[int, int]


class ValidationPipeline:
    """Run the check battery and detect regressions against a baseline.

    Baseline findings are pinned to the file contents seen when they were
    recorded. Before comparing, their line numbers are carried through a
    line diff of those contents against the current files, so a finding
    only matches the baseline where it sits on the same source line.
    """

    def __init__(
        self,
        root: Path | str,
        providers: Iterable[DiagnosticProvider] = (),
        *,
        issue_probe: IssueProbe | None = None,
        baseline_keys: Iterable[IssueKey] = (),
        fail_fast: bool = False,
        default_timeout: float | None = DEFAULT_CHECK_TIMEOUT,
        tolerate_baseline_failures: bool = False,
    ) -> None:
        self.root = Path(root).resolve()
        self.providers = order_providers(providers)
        self.issue_probe = issue_probe
        self.baseline_keys: set[IssueKey] = set(baseline_keys)
        self.fail_fast = fail_fast
        self.default_timeout = default_timeout
        self.tolerate_baseline_failures = tolerate_baseline_failures
        self.baseline_failures: set[str] = set()
        self._baseline_sources: Dict[str, Optional[List[str]]] = {}

    def extend_baseline(self, issues: Iterable[Issue]) -> None:
        for issue in issues:
            self.baseline_keys.add(issue.key)
            if issue.file and issue.file not in self._baseline_sources:
                self._baseline_sources[issue.file] = self._read_lines(issue.file)

    def capture_baseline(self) -> ValidationResult:
        """Run every check once and record its findings as the baseline."""

        result, found = self._run_checks(fail_fast=False)
        self.extend_baseline(found)
        self.baseline_failures = {check.name for check in result if not check.passed}
        if self.baseline_failures:
            LOGGER.warning("Baseline checks failing: %s", ", ".join(sorted(self.baseline_failures)))
        return ValidationResult(passed=not self.baseline_failures, checks=result)

    def validate(self, resolving: Iterable[Issue] = ()) -> ValidationResult:
        """Run the battery after a fix.

        ``resolving`` lists the findings the fix was meant to remove; any of
        them still reported at its (translated) location fails validation.
        """

        checks, found = self._run_checks(fail_fast=self.fail_fast)
        checks_ok = all(self._check_ok(check) for check in checks)

        if self.issue_probe is not None and (checks_ok or not self.fail_fast):
            started = time.monotonic()
            try:
                found.extend(self.issue_probe())
                checks.append(
                    CheckResult(
                        name="reanalysis",
                        passed=True,
                        detail="repository re-analysed",
                        duration_seconds=time.monotonic() - started,
                    )
                )
            except Exception as error:  # noqa: BLE001 - probe failure fails validation
                LOGGER.warning("Re-analysis failed during validation: %s", error)
                checks.append(
                    CheckResult(
                        name="reanalysis",
                        passed=False,
                        detail=str(error),
                        duration_seconds=time.monotonic() - started,
                    )
                )
                checks_ok = False

        unique: Dict[IssueKey, Issue] = {}
        for issue in found:
            unique.setdefault(issue.key, issue)

        line_maps = self._line_maps()
        regressions = self._regressions(unique, line_maps)
        unresolved = [
            issue for issue in resolving if _translate(issue.key, line_maps) in unique
        ]
        passed = checks_ok and not regressions and not unresolved
        result = ValidationResult(passed=passed, checks=checks, regressions=regressions, unresolved=unresolved)
        if not passed:
            LOGGER.info("Validation failed: %s", result.reason)
        return result

    # ---------------------------------------------------------------- internals
    def _check_ok(self, check: CheckResult) -> bool:
        if check.passed:
            return True
        return (
            self.tolerate_baseline_failures
            and check.name in self.baseline_failures
            and not check.timed_out
        )

    def _run_checks(self, *, fail_fast: bool) -> tuple[List[CheckResult], List[Issue]]:
        checks: List[CheckResult] = []
        found: List[Issue] = []
        for provider in self.providers:
            started = time.monotonic()
            try:
                outcome = provider.run(self.root, self.default_timeout)
            except Exception as error:  # noqa: BLE001 - a crashing provider is a failed check
                LOGGER.warning("Check %s crashed: %s", provider.name, error)
                outcome = DiagnosticResult(passed=False, detail=f"check crashed: {error}")
            duration = time.monotonic() - started
            checks.append(
                CheckResult(
                    name=provider.name,
                    passed=outcome.passed,
                    detail=outcome.detail,
                    duration_seconds=duration,
                    timed_out=outcome.timed_out,
                    skipped=outcome.skipped,
                )
            )
            found.extend(outcome.issues)
            LOGGER.debug("Check %s: %s (%.2fs)", provider.name, "passed" if outcome.passed else "failed", duration)
            if fail_fast and not self._check_ok(checks[-1]):
                break
        return checks, found

    def _read_lines(self, relative: str) -> Optional[List[str]]:
        path = self.root / relative
        try:
            if not path.is_file():
                return None
            return path.read_bytes().decode("utf-8", errors="replace").splitlines()
        except OSError:
            return None

    def _line_maps(self) -> Dict[str, LineMap]:
        """Map baseline line numbers to current ones for every changed file."""

        maps: Dict[str, LineMap] = {}
        for relative, before in self._baseline_sources.items():
            if before is None:
                continue
            after = self._read_lines(relative) or []
            if after == before:
                continue
            mapping: LineMap = {}
            matcher = difflib.SequenceMatcher(None, before, after, autojunk=False)
            for tag, i1, i2, j1, j2 in matcher.get_opcodes():
                if tag not in ("equal", "replace"):
                    continue
                # Rewritten lines keep their position inside a replaced block.
                for offset in range(min(i2 - i1, j2 - j1)):
                    mapping[i1 + offset + 1] = j1 + offset + 1
            maps[relative] = mapping
        return maps

    def _regressions(self, unique: Mapping[IssueKey, Issue], line_maps: Mapping[str, LineMap]) -> List[Issue]:
        """Findings that match no baseline finding on the same source line."""

        expected = {_translate(key, line_maps) for key in self.baseline_keys}
        expected.discard(None)
        return [issue for key, issue in unique.items() if key not in expected]


def _translate(key: IssueKey, line_maps: Mapping[str, LineMap]) -> Optional[IssueKey]:
    """Carry ``key`` to the current file contents; ``None`` if its line is gone."""

    issue_type, path, line = key
    mapping = line_maps.get(path)
    if not line or mapping is None:
        return key
    current = mapping.get(line)
    if current is None:
        return None
    return (issue_type, path, current)


def _as_timeout(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)) and value > 0:
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def providers_from_config(raw: Iterable[Any] | None) -> List[DiagnosticProvider]:
    """Expand ``validation.checks`` entries into command providers."""

    providers: List[DiagnosticProvider] = []
    for entry in raw or []:
        if isinstance(entry, str):
            parts = entry.split()
            if not parts:
                continue
            providers.append(CommandDiagnosticProvider(name=parts[0], command=parts, category=parts[0]))
            continue

        if isinstance(entry, Mapping):
            command = entry.get("command") or entry.get("cmd")
            if isinstance(command, str):
                cmd_parts = command.split()
            else:
                cmd_parts = [str(part) for part in (command or [])]
            if not cmd_parts:
                continue
            name = str(entry.get("name")) if entry.get("name") else cmd_parts[0]
            category = str(entry.get("category") or name)
            providers.append(
                CommandDiagnosticProvider(
                    name=name,
                    command=cmd_parts,
                    category=category,
                    optional=bool(entry.get("optional", True)),
                    timeout=_as_timeout(entry.get("timeout")),
                    output_format=str(entry["format"]) if entry.get("format") else None,
                )
            )
    return providers


__all__ = [
    "CallableDiagnosticProvider",
    "CommandDiagnosticProvider",
    "DEFAULT_CHECK_TIMEOUT",
    "DiagnosticProvider",
    "DiagnosticResult",
    "STANDARD_CHECK_ORDER",
    "ValidationPipeline",
    "diagnostics_to_issues",
    "order_providers",
    "providers_from_config",
]
