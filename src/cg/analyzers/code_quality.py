"""Maintainability checks."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..memory.schema import Issue
from .base import Analyzer, iter_source_files, relative_path
from .patterns import rule, scan_file

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx")
MAX_FILE_LINES = 500

RULES = [
    rule(
        "debugger_statements",
        r"^\s*debugger\s*;?\s*$",
        "medium",
        "debugger statement left in code.",
        recommendation="Remove the debugger statement.",
        fix_kind="remove_debugger",
    ),
    rule(
        "explicit_any",
        r":\s*any\b",
        "low",
        "Explicit any disables type checking.",
        recommendation="Replace any with a precise type or unknown.",
        heuristic=True,
    ),
]


class CodeQualityAnalyzer(Analyzer):
    name = "code_quality"
    capabilities = frozenset({"code_smells", "complexity", "maintainability"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        files = list(iter_source_files(root, SOURCE_SUFFIXES))
        for path in files:
            relative = relative_path(root, path)
            self.guarded(f"scan:{relative}", lambda path=path: scan_file(self, root, path, RULES), issues)
            self.guarded(f"size:{relative}", lambda path=path: self._file_size(root, path), issues)
        return self.result(issues, files_analyzed=len(files))

    def _file_size(self, root: Path, path: Path) -> List[Issue]:
        count = len(path.read_text(encoding="utf-8", errors="replace").splitlines())
        if count <= MAX_FILE_LINES:
            return []
        return [
            self.issue(
                "large_file",
                "low",
                f"File has {count} lines (limit {MAX_FILE_LINES}).",
                file=relative_path(root, path),
                recommendation="Split the module by responsibility.",
            )
        ]
