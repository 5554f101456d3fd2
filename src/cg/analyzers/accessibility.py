"""WCAG-oriented markup checks."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..memory.schema import Issue
from .base import Analyzer, iter_source_files, relative_path
from .patterns import rule, scan_file

SOURCE_SUFFIXES = (".jsx", ".tsx", ".html", ".vue")

RULES = [
    rule(
        "missing_alt_text",
        r"<img\b",
        "high",
        "Image has no alt attribute.",
        recommendation="Describe the image in an alt attribute (empty for decorative images).",
        fix_kind="add_alt_text",
        exclude=r"\balt\s*=",
        tags=("ui",),
    ),
    rule(
        "missing_html_lang",
        r"<html\b",
        "medium",
        "Document does not declare its language.",
        recommendation='Add a lang attribute, e.g. <html lang="en">.',
        exclude=r"\blang\s*=",
    ),
    rule(
        "positive_tabindex",
        r"tabIndex\s*=\s*\{?\s*['\"]?[1-9]",
        "medium",
        "Positive tabIndex breaks the natural focus order.",
        recommendation="Use tabIndex 0 or -1 and rely on DOM order.",
    ),
    rule(
        "click_without_keyboard",
        r"<div\b[^>]*\bonClick=",
        "medium",
        "Clickable div is not reachable by keyboard.",
        recommendation="Use a <button> or add role, tabIndex and key handlers.",
        exclude=r"\bonKey(Down|Up|Press)=",
        heuristic=True,
        tags=("ui",),
    ),
]


class AccessibilityAnalyzer(Analyzer):
    name = "accessibility"
    capabilities = frozenset({"wcag_compliance", "keyboard_navigation", "screen_reader"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        files = list(iter_source_files(root, SOURCE_SUFFIXES))
        for path in files:
            self.guarded(
                f"scan:{relative_path(root, path)}",
                lambda path=path: scan_file(self, root, path, RULES),
                issues,
            )
        return self.result(issues, components_analyzed=len(files))
