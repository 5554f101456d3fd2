"""Deployment readiness checks."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List

from ..memory.schema import FixDescriptor, Issue
from .base import Analyzer, iter_source_files

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")
ENV_EXAMPLE = ".env.example"
_ENV_REFERENCE = re.compile(r"process\.env\.([A-Z][A-Z0-9_]*)")


class DeploymentAnalyzer(Analyzer):
    name = "deployment"
    capabilities = frozenset({"environment_config", "container_config"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        self.guarded("env_example", lambda: self._env_example(root), issues)
        self.guarded("dockerignore", lambda: self._dockerignore(root), issues)
        return self.result(issues)

    def _env_example(self, root: Path) -> List[Issue]:
        if (root / ENV_EXAMPLE).exists():
            return []
        variables: set[str] = set()
        for path in iter_source_files(root, SOURCE_SUFFIXES):
            text = path.read_text(encoding="utf-8", errors="replace")
            variables.update(_ENV_REFERENCE.findall(text))
        if not variables:
            return []
        return [
            self.issue(
                "missing_env_example",
                "medium",
                f"{len(variables)} environment variable(s) are referenced but undocumented.",
                file=ENV_EXAMPLE,
                recommendation=f"Add {ENV_EXAMPLE} listing every required variable.",
                auto_fixable=True,
                fix=FixDescriptor(
                    kind="create_env_example",
                    resources=frozenset({ENV_EXAMPLE}),
                    payload={"variables": sorted(variables)},
                ),
                impact_tags=("deployment",),
            )
        ]

    def _dockerignore(self, root: Path) -> List[Issue]:
        if not (root / "Dockerfile").exists() or (root / ".dockerignore").exists():
            return []
        return [
            self.issue(
                "missing_dockerignore",
                "low",
                "Dockerfile without .dockerignore sends the whole tree to the daemon.",
                file=".dockerignore",
                recommendation="Add a .dockerignore excluding node_modules, .git and build output.",
                impact_tags=("deployment", "build"),
            )
        ]
