from __future__ import annotations

from cg.memory.schema import Confidence, FixDescriptor, FixRisk, Issue, Severity
from cg.planning.risk import RiskAssessor


def _issue(
    *,
    severity: str = "high",
    file: str = "src/App.jsx",
    resources: frozenset[str] | None = None,
    tags: tuple[str, ...] = (),
    confidence: Confidence = Confidence.CERTAIN,
    risk: FixRisk | None = None,
) -> Issue:
    return Issue(
        type="missing_alt_text",
        severity=Severity(severity),
        source_analyzer="accessibility",
        file=file,
        line=3,
        message="no alt",
        auto_fixable=True,
        fix_descriptor=FixDescriptor(kind="add_alt_text", resources=resources or frozenset({file}), risk=risk),
        impact_tags=frozenset(tags),
        confidence=confidence,
    )


def test_priority_uses_severity_weight() -> None:
    assessor = RiskAssessor()

    assert assessor.priority(_issue(severity="critical")) == 4.0
    assert assessor.priority(_issue(severity="low")) == 1.0


def test_heuristic_findings_are_discounted() -> None:
    assessor = RiskAssessor()

    assert assessor.priority(_issue(severity="high", confidence=Confidence.HEURISTIC)) == 1.5


def test_shared_subsystem_tags_raise_priority() -> None:
    assessor = RiskAssessor()

    assert assessor.priority(_issue(severity="medium", tags=("auth", "ui"))) == 2.5
    assert assessor.blast_radius(_issue(tags=("auth", "routing", "ui"))) == 2


def test_fix_risk_is_independent_of_severity() -> None:
    assessor = RiskAssessor()

    critical_local = assessor.score(_issue(severity="critical"))
    low_shared = assessor.score(_issue(severity="low", file="package.json"))

    assert critical_local.risk_level is FixRisk.LOW
    assert low_shared.risk_level is FixRisk.HIGH
    assert low_shared.priority < critical_local.priority
    assert "touches shared resource package.json" in low_shared.reasons


def test_wide_or_declared_risky_fixes_are_high_risk() -> None:
    assessor = RiskAssessor(max_files=2)
    wide = _issue(resources=frozenset({"a.js", "b.js", "c.js"}))
    declared = _issue(risk=FixRisk.HIGH)

    assert assessor.score(wide).risk_level is FixRisk.HIGH
    assert assessor.score(declared).risk_level is FixRisk.HIGH


def test_shared_path_patterns_match_nested_and_logical_resources() -> None:
    assessor = RiskAssessor()

    assert assessor.is_shared("apps/web/tsconfig.json")
    assert assessor.is_shared(".github/workflows/ci.yml")
    assert assessor.is_shared("config:dependencies")
    assert not assessor.is_shared("src/components/Button.tsx")


def test_rank_orders_by_priority_then_id() -> None:
    assessor = RiskAssessor()
    low = _issue(severity="low", file="b.jsx")
    high = _issue(severity="high", file="a.jsx")
    other_high = _issue(severity="high", file="c.jsx")

    ranked = assessor.rank([low, other_high, high])

    assert ranked[-1] is low
    assert [issue.id for issue in ranked[:2]] == sorted([high.id, other_high.id])
