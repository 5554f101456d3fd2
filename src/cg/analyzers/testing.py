"""Test-suite hygiene checks."""

from __future__ import annotations

import re
from pathlib import Path
from typing import List

from ..memory.schema import Issue
from .base import Analyzer, iter_source_files, relative_path
from .patterns import rule, scan_file

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx")
_TEST_FILE = re.compile(r"(\.test\.|\.spec\.|__tests__/)")

RULES = [
    rule(
        "focused_test",
        r"\b(it|describe|test)\.only\s*\(",
        "high",
        "Focused test silently skips the rest of the suite.",
        recommendation="Remove .only before committing.",
        fix_kind="remove_focused_test",
        tags=("shared",),
    ),
    rule(
        "skipped_test",
        r"\b(it|describe|test)\.skip\s*\(|\bx(it|describe)\s*\(",
        "low",
        "Test is skipped.",
        recommendation="Fix or delete the skipped test.",
    ),
]


class TestingAnalyzer(Analyzer):
    name = "testing"
    capabilities = frozenset({"test_structure", "flaky_test_detection"})

    __test__ = False  # not a pytest test class

    def analyze(self, root: Path):
        issues: List[Issue] = []
        test_files = [
            path
            for path in iter_source_files(root, SOURCE_SUFFIXES)
            if _TEST_FILE.search(relative_path(root, path))
        ]
        for path in test_files:
            self.guarded(
                f"scan:{relative_path(root, path)}",
                lambda path=path: scan_file(self, root, path, RULES),
                issues,
            )
        return self.result(issues, test_files=len(test_files))
