"""package.json dependency checks."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List

from ..memory.schema import FixDescriptor, Issue
from .base import Analyzer

MANIFEST = "package.json"
LOCKFILES = ("package-lock.json", "yarn.lock", "pnpm-lock.yaml")
UNPINNED_RANGES = {"*", "latest", ""}
DEPRECATED_PACKAGES: Dict[str, str] = {
    "moment": "date-fns or dayjs",
    "request": "undici or the fetch API",
    "node-sass": "sass",
    "tslint": "eslint with typescript-eslint",
}


class DependencyAnalyzer(Analyzer):
    name = "dependency"
    capabilities = frozenset({"version_pinning", "deprecation", "lockfile"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        manifest_path = root / MANIFEST
        if not manifest_path.is_file():
            return self.result(issues, manifests=0)

        manifest: Dict[str, Any] = {}
        lines: Dict[str, int] = {}

        def _load() -> List[Issue]:
            text = manifest_path.read_text(encoding="utf-8")
            manifest.update(json.loads(text))
            lines.update(dependency_lines(text, _all_dependencies(manifest)))
            return []

        self.guarded("manifest", _load, issues)
        if not manifest:
            return self.result(issues, manifests=1)

        self.guarded("pinning", lambda: self._unpinned(manifest, lines), issues)
        self.guarded("deprecated", lambda: self._deprecated(manifest, lines), issues)
        self.guarded("lockfile", lambda: self._lockfile(root), issues)
        return self.result(issues, manifests=1, dependencies=len(_all_dependencies(manifest)))

    def _unpinned(self, manifest: Dict[str, Any], lines: Dict[str, int]) -> List[Issue]:
        issues: List[Issue] = []
        for name, spec in sorted(_all_dependencies(manifest).items()):
            if str(spec).strip() not in UNPINNED_RANGES:
                continue
            issues.append(
                self.issue(
                    "dependency_unpinned",
                    "medium",
                    f"Dependency '{name}' is not pinned ({spec!r}).",
                    file=MANIFEST,
                    line=lines.get(name),
                    recommendation=f"Pin '{name}' to a semver range.",
                    auto_fixable=True,
                    fix=FixDescriptor(
                        kind="pin_dependency",
                        resources=frozenset({MANIFEST, "config:dependencies"}),
                        payload={"package": name},
                    ),
                    impact_tags=("dependencies", "build"),
                )
            )
        return issues

    def _deprecated(self, manifest: Dict[str, Any], lines: Dict[str, int]) -> List[Issue]:
        issues: List[Issue] = []
        for name in sorted(_all_dependencies(manifest)):
            replacement = DEPRECATED_PACKAGES.get(name)
            if replacement is None:
                continue
            issues.append(
                self.issue(
                    "dependency_deprecated",
                    "medium",
                    f"Dependency '{name}' is deprecated.",
                    file=MANIFEST,
                    line=lines.get(name),
                    recommendation=f"Migrate to {replacement}.",
                    impact_tags=("dependencies",),
                )
            )
        return issues

    def _lockfile(self, root: Path) -> List[Issue]:
        if any((root / name).exists() for name in LOCKFILES):
            return []
        return [
            self.issue(
                "dependency_missing_lockfile",
                "high",
                "No lockfile found; installs are not reproducible.",
                file=MANIFEST,
                recommendation="Commit the lockfile produced by your package manager.",
                impact_tags=("dependencies", "build", "deployment"),
            )
        ]


def dependency_lines(text: str, names: Iterable[str]) -> Dict[str, int]:
    """Return the 1-based line declaring each dependency in ``text``.

    The first ``"name":`` key after a ``dependencies`` or
    ``devDependencies`` section opens wins. Names that cannot be located
    are left out.
    """

    wanted = set(names)
    found: Dict[str, int] = {}
    in_section = False
    for number, line in enumerate(text.splitlines(), start=1):
        if re.search(r'"(dev)?[dD]ependencies"\s*:', line):
            in_section = True
        if not in_section:
            continue
        for match in re.finditer(r'"([^"]+)"\s*:', line):
            name = match.group(1)
            if name in wanted and name not in found:
                found[name] = number
        if "}" in line:
            in_section = False
    return found


def _all_dependencies(manifest: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {}
    for section in ("dependencies", "devDependencies"):
        entries = manifest.get(section)
        if isinstance(entries, dict):
            merged.update(entries)
    return merged
