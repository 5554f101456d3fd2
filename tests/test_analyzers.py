from __future__ import annotations

import threading
from pathlib import Path

import pytest

from cg.analyzers import (
    AccessibilityAnalyzer,
    CodeQualityAnalyzer,
    DependencyAnalyzer,
    DeploymentAnalyzer,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    TestingAnalyzer,
    build_analyzers,
    run_analyzers,
)
from cg.analyzers.base import Analyzer
from cg.analyzers.diagnostics import DiagnosticsAnalyzer
from cg.memory.schema import AnalysisResult, Confidence, Severity
from cg.tools.validation import CallableDiagnosticProvider, DiagnosticResult


class _Raising(Analyzer):
    name = "raising"

    def analyze(self, root: Path) -> AnalysisResult:
        raise RuntimeError("parser exploded")


class _Hanging(Analyzer):
    name = "hanging"

    def __init__(self) -> None:
        self.release = threading.Event()

    def analyze(self, root: Path) -> AnalysisResult:
        self.release.wait(5)
        return self.result([])


def _summary(results: list[AnalysisResult]) -> set[tuple[str, str | None, int | None]]:
    return {(issue.type, issue.file, issue.line) for result in results for issue in result.issues}


def test_web_repo_findings(web_repo) -> None:
    analyzers = build_analyzers(["performance", "accessibility", "code_quality"])

    results = run_analyzers(analyzers, web_repo.root)

    assert [result.analyzer for result in results] == ["performance", "accessibility", "code_quality"]
    assert _summary(results) == {
        ("console_statements", "src/Gallery.jsx", 4),
        ("missing_lazy_loading", "src/Gallery.jsx", 7),
        ("debugger_statements", "src/utils.js", 2),
    }
    console = next(issue for issue in results[0].issues if issue.type == "console_statements")
    assert console.confidence is Confidence.HEURISTIC
    assert console.fix_descriptor is not None
    assert console.fix_descriptor.kind == "remove_console_statement"


def test_analysis_is_deterministic(web_repo) -> None:
    first = run_analyzers(build_analyzers(), web_repo.root)
    second = run_analyzers(build_analyzers(), web_repo.root)

    assert _summary(first) == _summary(second)
    assert [result.analyzer for result in first] == [result.analyzer for result in second]


def test_raising_analyzer_degrades_to_low_issue(web_repo) -> None:
    results = run_analyzers([_Raising(), CodeQualityAnalyzer()], web_repo.root)

    failed, quality = results
    assert failed.error is not None
    assert [(issue.type, issue.severity) for issue in failed.issues] == [("analyzer_failed", Severity.LOW)]
    assert [issue.type for issue in quality.issues] == ["debugger_statements"]


def test_hanging_analyzer_times_out(web_repo) -> None:
    hanging = _Hanging()
    try:
        results = run_analyzers([hanging, CodeQualityAnalyzer()], web_repo.root, timeout=0.5)
    finally:
        hanging.release.set()

    assert [issue.type for issue in results[0].issues] == ["analyzer_timeout"]
    assert results[1].error is None


def test_unknown_analyzer_name_is_rejected() -> None:
    with pytest.raises(KeyError):
        build_analyzers(["performance", "astrology"])


def test_security_findings_are_never_auto_fixable(tmp_path: Path) -> None:
    (tmp_path / "config.js").write_text(
        'const apiKey = "sk-live-1234567890";\nconst fromEnv = process.env.API_KEY;\neval(input);\n',
        encoding="utf-8",
    )

    result = SecurityAnalyzer().analyze(tmp_path)

    assert [(issue.type, issue.severity, issue.line) for issue in result.issues] == [
        ("hardcoded_secret", Severity.CRITICAL, 1),
        ("eval_usage", Severity.HIGH, 3),
    ]
    assert not any(issue.auto_fixable for issue in result.issues)


def test_accessibility_checks_markup(tmp_path: Path) -> None:
    (tmp_path / "Card.jsx").write_text(
        '<div onClick={open}>\n  <img src="/a.png" />\n  <img src="/b.png" alt="" />\n</div>\n',
        encoding="utf-8",
    )

    result = AccessibilityAnalyzer().analyze(tmp_path)

    assert [(issue.type, issue.line) for issue in result.issues] == [
        ("click_without_keyboard", 1),
        ("missing_alt_text", 2),
    ]
    assert result.issues[1].fix_descriptor.kind == "add_alt_text"


def test_dependency_analyzer_flags_manifest_problems(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text(
        '{"dependencies": {"react": "^18.2.0", "left-pad": "*", "moment": "2.29.4"}}',
        encoding="utf-8",
    )

    result = DependencyAnalyzer().analyze(tmp_path)

    types = sorted(issue.type for issue in result.issues)
    assert types == ["dependency_deprecated", "dependency_missing_lockfile", "dependency_unpinned"]
    unpinned = next(issue for issue in result.issues if issue.type == "dependency_unpinned")
    assert "config:dependencies" in unpinned.fix_descriptor.resources


def test_malformed_manifest_degrades(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text("{not json", encoding="utf-8")

    result = DependencyAnalyzer().analyze(tmp_path)

    assert [issue.type for issue in result.issues] == ["analysis_incomplete"]
    assert result.issues[0].severity is Severity.LOW


def test_deployment_analyzer_proposes_env_example(tmp_path: Path) -> None:
    (tmp_path / "server.js").write_text("const url = process.env.DATABASE_URL;\nconst port = process.env.PORT;\n", encoding="utf-8")
    (tmp_path / "Dockerfile").write_text("FROM node:20\n", encoding="utf-8")

    result = DeploymentAnalyzer().analyze(tmp_path)

    env_issue = next(issue for issue in result.issues if issue.type == "missing_env_example")
    assert env_issue.fix_descriptor.payload == {"variables": ["DATABASE_URL", "PORT"]}
    assert {issue.type for issue in result.issues} == {"missing_env_example", "missing_dockerignore"}


def test_testing_analyzer_only_scans_test_files(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src/math.test.js").write_text("it.only('adds', () => {});\nit.skip('later', () => {});\n", encoding="utf-8")
    (tmp_path / "src/math.js").write_text("// it.only('not a test')\n", encoding="utf-8")

    result = TestingAnalyzer().analyze(tmp_path)

    assert [(issue.type, issue.file) for issue in result.issues] == [
        ("focused_test", "src/math.test.js"),
        ("skipped_test", "src/math.test.js"),
    ]


def test_ignored_directories_are_skipped(tmp_path: Path) -> None:
    (tmp_path / "node_modules/lib").mkdir(parents=True)
    (tmp_path / "node_modules/lib/index.js").write_text("debugger;\n", encoding="utf-8")

    assert CodeQualityAnalyzer().analyze(tmp_path).issues == []
    assert PerformanceAnalyzer().analyze(tmp_path).metrics["files_analyzed"] == 0


def test_diagnostics_analyzer_reports_provider_findings(tmp_path: Path) -> None:
    from cg.memory.schema import Issue

    finding = Issue(
        type="typecheck_ts2322",
        severity=Severity.HIGH,
        source_analyzer="typecheck",
        file="src/api.ts",
        line=4,
        message="Type mismatch",
    )
    providers = [
        CallableDiagnosticProvider(
            name="typecheck",
            func=lambda root: DiagnosticResult(passed=False, issues=[finding]),
            category="typecheck",
        ),
        CallableDiagnosticProvider(
            name="lint",
            func=lambda root: DiagnosticResult(passed=True, skipped=True),
        ),
    ]

    result = DiagnosticsAnalyzer(providers).analyze(tmp_path)

    assert [issue.type for issue in result.issues] == ["typecheck_ts2322"]
    assert result.metrics["checks_run"] == 1


def test_each_dependency_finding_keeps_its_own_line(tmp_path: Path) -> None:
    from cg.memory.store import IssueStore

    (tmp_path / "package.json").write_text(
        "{\n"
        '  "name": "web-app",\n'
        '  "dependencies": {\n'
        '    "a": "*",\n'
        '    "moment": "2.29.4"\n'
        "  },\n"
        '  "devDependencies": {\n'
        '    "b": "latest",\n'
        '    "request": "2.88.2"\n'
        "  }\n"
        "}\n",
        encoding="utf-8",
    )
    (tmp_path / "package-lock.json").write_text("{}", encoding="utf-8")

    result = DependencyAnalyzer().analyze(tmp_path)
    store = IssueStore(result.issues)

    assert len(result.issues) == 4
    assert len(store) == 4
    assert sorted((issue.type, issue.line) for issue in store) == [
        ("dependency_deprecated", 5),
        ("dependency_deprecated", 9),
        ("dependency_unpinned", 4),
        ("dependency_unpinned", 8),
    ]


def test_console_rule_flags_only_standalone_statements(tmp_path: Path) -> None:
    source = tmp_path / "src" / "app.js"
    source.parent.mkdir()
    source.write_text('if (debug) console.log("keep");\n  console.log("drop");\n', encoding="utf-8")

    result = PerformanceAnalyzer().analyze(tmp_path)

    assert [(issue.type, issue.line) for issue in result.issues] == [("console_statements", 2)]


def test_diagnostics_analyzer_survives_a_crashing_provider(tmp_path: Path) -> None:
    from cg.memory.schema import Issue

    finding = Issue(
        type="lint_no-console",
        severity=Severity.LOW,
        source_analyzer="lint",
        file="src/app.js",
        line=3,
        message="Unexpected console statement",
    )

    def _crash(root: Path) -> bool:
        raise RuntimeError("tsc binary corrupted")

    providers = [
        CallableDiagnosticProvider("typecheck", _crash, "typecheck"),
        CallableDiagnosticProvider("lint", lambda root: DiagnosticResult(passed=False, issues=[finding])),
    ]

    result = DiagnosticsAnalyzer(providers).analyze(tmp_path)

    assert [issue.type for issue in result.issues] == ["analysis_incomplete", "lint_no-console"]
    assert "typecheck" in result.issues[0].message
    assert result.error is None
    assert result.metrics["checks_run"] == 1
