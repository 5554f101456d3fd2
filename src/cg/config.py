"""Load ``codeguard.yaml`` into typed engine settings."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .analyzers import ANALYZER_REGISTRY, DEFAULT_ANALYZERS
from .analyzers.base import DEFAULT_ANALYSIS_TIMEOUT
from .errors import ConfigError
from .planning.planner import OrderingRule, rules_from_config
from .planning.risk import (
    DEFAULT_MAX_FILES,
    DEFAULT_SHARED_PATHS,
    DEFAULT_SHARED_SUBSYSTEMS,
    HEURISTIC_MULTIPLIER,
    RiskAssessor,
)
from .tools.checkpoints import BACKENDS
from .tools.validation import DEFAULT_CHECK_TIMEOUT, DiagnosticProvider, providers_from_config

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "codeguard.yaml"
DIAGNOSTICS_ANALYZER = "diagnostics"
BATCH_MODES = ("sequential", "concurrent")

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "analysis": {
        "analyzers": list(DEFAULT_ANALYZERS),
        "timeout_seconds": int(DEFAULT_ANALYSIS_TIMEOUT),
        "max_workers": None,
    },
    "planning": {
        "max_low_risk_files": DEFAULT_MAX_FILES,
        "heuristic_multiplier": HEURISTIC_MULTIPLIER,
        "shared_subsystems": sorted(DEFAULT_SHARED_SUBSYSTEMS),
        "shared_paths": list(DEFAULT_SHARED_PATHS),
        "ordering_rules": ["dependency_* > type_*", "dependency_* > typecheck_*"],
    },
    "validation": {
        "checks": [
            {"name": "typecheck", "command": "npx tsc --noEmit", "timeout": 600, "optional": True, "format": "tsc"},
            {"name": "build", "command": "npm run build", "timeout": 600, "optional": True},
            {"name": "test", "command": "npm test", "timeout": 600, "optional": True},
            {
                "name": "lint",
                "command": "npx eslint . -f json",
                "timeout": 600,
                "optional": True,
                "format": "eslint-json",
            },
        ],
        "fail_fast": False,
        "reanalyze": True,
        "tolerate_baseline_failures": False,
    },
    "execution": {
        "batch_mode": "sequential",
        "checkpoint_backend": "files",
        "max_workers": 4,
    },
    "paths": {
        "data": ".codeguard",
        "reports": ".codeguard/reports",
    },
}


def _as_int(value: Any, *, minimum: int | None = None) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        candidate = int(value)
    except (TypeError, ValueError):
        return None
    if minimum is not None and candidate < minimum:
        return minimum
    return candidate


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return None


def _as_str_list(value: Any, *, key: str) -> List[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    raise ConfigError(f"'{key}' must be a list of strings")


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


@dataclass(slots=True)
class AnalysisSettings:
    analyzers: List[str] = field(default_factory=lambda: list(DEFAULT_ANALYZERS))
    timeout_seconds: float = DEFAULT_ANALYSIS_TIMEOUT
    max_workers: Optional[int] = None

    @property
    def uses_diagnostics(self) -> bool:
        return DIAGNOSTICS_ANALYZER in self.analyzers

    @property
    def pattern_analyzers(self) -> List[str]:
        return [name for name in self.analyzers if name != DIAGNOSTICS_ANALYZER]


@dataclass(slots=True)
class PlanningSettings:
    max_low_risk_files: int = DEFAULT_MAX_FILES
    heuristic_multiplier: float = HEURISTIC_MULTIPLIER
    shared_subsystems: frozenset[str] = DEFAULT_SHARED_SUBSYSTEMS
    shared_paths: tuple[str, ...] = DEFAULT_SHARED_PATHS
    ordering_rules: List[OrderingRule] = field(default_factory=lambda: rules_from_config(None))

    def assessor(self) -> RiskAssessor:
        return RiskAssessor(
            shared_subsystems=self.shared_subsystems,
            shared_paths=self.shared_paths,
            max_files=self.max_low_risk_files,
            heuristic_multiplier=self.heuristic_multiplier,
        )


@dataclass(slots=True)
class ValidationSettings:
    checks: List[Any] = field(default_factory=list)
    fail_fast: bool = False
    reanalyze: bool = True
    tolerate_baseline_failures: bool = False
    default_timeout: float = DEFAULT_CHECK_TIMEOUT

    def providers(self) -> List[DiagnosticProvider]:
        return providers_from_config(self.checks)


@dataclass(slots=True)
class ExecutionSettings:
    batch_mode: str = "sequential"
    checkpoint_backend: str = "files"
    max_workers: int = 4


@dataclass(slots=True)
class EngineConfig:
    """Resolved settings for one engine run."""

    repo_root: Path
    data_dir: Path
    reports_dir: Path
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    planning: PlanningSettings = field(default_factory=PlanningSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    execution: ExecutionSettings = field(default_factory=ExecutionSettings)
    source: Optional[Path] = None

    @classmethod
    def for_repo(cls, repo_root: Path | str) -> "EngineConfig":
        """Default settings for ``repo_root`` with no validation checks."""

        root = Path(repo_root).resolve()
        return cls(repo_root=root, data_dir=root / ".codeguard", reports_dir=root / ".codeguard" / "reports")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, base_dir: Path | str = ".") -> "EngineConfig":
        """Build settings from parsed YAML; relative paths resolve against ``base_dir``."""

        base = Path(base_dir).resolve()
        project = _section(data, "project")
        repo_value = project.get("repo_root") or "."
        repo_root = Path(str(repo_value)).expanduser()
        if not repo_root.is_absolute():
            repo_root = (base / repo_root).resolve()

        paths = _section(data, "paths")
        data_dir = _resolve_path(paths.get("data"), repo_root, ".codeguard")
        reports_dir = _resolve_path(paths.get("reports"), repo_root, None) or data_dir / "reports"

        config = cls(repo_root=repo_root, data_dir=data_dir, reports_dir=reports_dir)
        config.analysis = _analysis_settings(_section(data, "analysis"))
        config.planning = _planning_settings(_section(data, "planning"))
        config.validation = _validation_settings(_section(data, "validation"))
        config.execution = _execution_settings(_section(data, "execution"))
        return config

    @property
    def checkpoint_excludes(self) -> tuple[str, ...]:
        excludes = [".git", "node_modules"]
        for directory in (self.data_dir, self.reports_dir):
            try:
                excludes.append(directory.relative_to(self.repo_root).as_posix())
            except ValueError:
                continue
        return tuple(dict.fromkeys(excludes))


def _resolve_path(value: Any, repo_root: Path, default: str | None) -> Path | None:
    raw = value.strip() if isinstance(value, str) and value.strip() else default
    if raw is None:
        return None
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = repo_root / candidate
    return candidate.resolve()


def _analysis_settings(section: Mapping[str, Any]) -> AnalysisSettings:
    settings = AnalysisSettings()
    names = _as_str_list(section.get("analyzers"), key="analysis.analyzers")
    if names is not None:
        unknown = [name for name in names if name not in ANALYZER_REGISTRY and name != DIAGNOSTICS_ANALYZER]
        if unknown:
            raise ConfigError(f"Unknown analyzer(s): {', '.join(unknown)}")
        settings.analyzers = list(dict.fromkeys(names))
    timeout = _as_float(section.get("timeout_seconds"))
    if timeout is not None and timeout > 0:
        settings.timeout_seconds = timeout
    settings.max_workers = _as_int(section.get("max_workers"), minimum=1)
    return settings


def _planning_settings(section: Mapping[str, Any]) -> PlanningSettings:
    settings = PlanningSettings()
    max_files = _as_int(section.get("max_low_risk_files"), minimum=1)
    if max_files is not None:
        settings.max_low_risk_files = max_files
    multiplier = _as_float(section.get("heuristic_multiplier"))
    if multiplier is not None:
        settings.heuristic_multiplier = min(max(multiplier, 0.0), 1.0)
    subsystems = _as_str_list(section.get("shared_subsystems"), key="planning.shared_subsystems")
    if subsystems is not None:
        settings.shared_subsystems = frozenset(subsystems)
    shared_paths = _as_str_list(section.get("shared_paths"), key="planning.shared_paths")
    if shared_paths is not None:
        settings.shared_paths = tuple(shared_paths)
    rules = section.get("ordering_rules")
    if rules is not None and not isinstance(rules, (list, tuple)):
        raise ConfigError("'planning.ordering_rules' must be a list")
    settings.ordering_rules = rules_from_config(rules)
    return settings


def _validation_settings(section: Mapping[str, Any]) -> ValidationSettings:
    settings = ValidationSettings()
    checks = section.get("checks")
    if checks is not None:
        if not isinstance(checks, (list, tuple)):
            raise ConfigError("'validation.checks' must be a list")
        settings.checks = list(checks)
    for name in ("fail_fast", "reanalyze", "tolerate_baseline_failures"):
        flag = _as_bool(section.get(name))
        if flag is not None:
            setattr(settings, name, flag)
    timeout = _as_float(section.get("default_timeout"))
    if timeout is not None and timeout > 0:
        settings.default_timeout = timeout
    return settings


def _execution_settings(section: Mapping[str, Any]) -> ExecutionSettings:
    settings = ExecutionSettings()
    mode = section.get("batch_mode")
    if mode is not None:
        mode = str(mode).strip().lower()
        if mode not in BATCH_MODES:
            raise ConfigError(f"execution.batch_mode must be one of {', '.join(BATCH_MODES)}; got '{mode}'")
        settings.batch_mode = mode
    backend = section.get("checkpoint_backend")
    if backend is not None:
        backend = str(backend).strip().lower()
        if backend not in BACKENDS:
            raise ConfigError(f"execution.checkpoint_backend must be one of {', '.join(sorted(BACKENDS))}")
        settings.checkpoint_backend = backend
    workers = _as_int(section.get("max_workers"), minimum=1)
    if workers is not None:
        settings.max_workers = workers
    return settings


def load_config(config_path: Path | str) -> EngineConfig:
    """Load ``config_path`` and return resolved settings."""

    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise ConfigError(f"Failed to parse config: {error}") from error
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration must be a mapping at the top level.")

    config = EngineConfig.from_mapping(data, base_dir=path.resolve().parent)
    config.source = path.resolve()
    LOGGER.debug("Loaded configuration from %s (repo root %s)", path, config.repo_root)
    return config


def default_config_data() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def write_config(config_path: Path, config_data: Mapping[str, Any]) -> None:
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(dict(config_data), handle, sort_keys=False)


__all__ = [
    "AnalysisSettings",
    "DEFAULT_CONFIG_NAME",
    "DEFAULT_CONFIG_TEMPLATE",
    "EngineConfig",
    "ExecutionSettings",
    "PlanningSettings",
    "ValidationSettings",
    "default_config_data",
    "load_config",
    "write_config",
]
