"""Source-level security checks. Findings are reported, never auto-fixed."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..memory.schema import Issue
from .base import Analyzer, iter_source_files, relative_path
from .patterns import rule, scan_file

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs")

RULES = [
    rule(
        "hardcoded_secret",
        r"""(?i)(api[_-]?key|secret|password|access[_-]?token)\s*[:=]\s*['"][^'"\s]{8,}['"]""",
        "critical",
        "Credential appears to be hardcoded.",
        recommendation="Move the value to an environment variable or secret store.",
        exclude=r"process\.env",
        tags=("auth", "config"),
    ),
    rule(
        "eval_usage",
        r"\beval\s*\(",
        "high",
        "eval() executes arbitrary code.",
        recommendation="Parse data explicitly instead of evaluating it.",
        heuristic=True,
    ),
    rule(
        "dangerous_inner_html",
        r"dangerouslySetInnerHTML",
        "medium",
        "Raw HTML injection is an XSS vector.",
        recommendation="Sanitise the HTML (e.g. DOMPurify) or render text nodes.",
        heuristic=True,
        tags=("ui",),
    ),
    rule(
        "insecure_http_url",
        r"""['"]http://(?!localhost|127\.0\.0\.1)""",
        "low",
        "Plain HTTP URL.",
        recommendation="Use HTTPS.",
        heuristic=True,
    ),
]


class SecurityAnalyzer(Analyzer):
    name = "security"
    capabilities = frozenset({"secret_detection", "xss_detection", "code_injection"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        files = list(iter_source_files(root, SOURCE_SUFFIXES))
        for path in files:
            self.guarded(
                f"scan:{relative_path(root, path)}",
                lambda path=path: scan_file(self, root, path, RULES),
                issues,
            )
        return self.result(issues, files_scanned=len(files))
