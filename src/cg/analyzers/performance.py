"""Bundle and runtime performance checks."""

from __future__ import annotations

from pathlib import Path
from typing import List

from ..memory.schema import Issue
from .base import Analyzer, iter_source_files, relative_path
from .patterns import rule, scan_file

SOURCE_SUFFIXES = (".js", ".jsx", ".ts", ".tsx", ".html", ".vue")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif")
MAX_IMAGE_BYTES = 500_000

# A statement on its own line; the removal fix deletes exactly such lines.
CONSOLE_STATEMENT = r"^\s*console\.log\(.*\)\s*;?\s*$"

RULES = [
    rule(
        "missing_lazy_loading",
        r"<img\b",
        "low",
        "Image is loaded eagerly.",
        recommendation='Add loading="lazy" to below-the-fold images.',
        fix_kind="add_lazy_loading",
        exclude=r"\bloading\s*=",
        tags=("rendering",),
    ),
    rule(
        "console_statements",
        CONSOLE_STATEMENT,
        "low",
        "console.log left in production code.",
        recommendation="Remove debugging output or route it through a logger.",
        fix_kind="remove_console_statement",
        heuristic=True,
    ),
    rule(
        "heavy_dependency",
        r"""import\s+.*\s+from\s+['"]moment['"]""",
        "high",
        "moment adds a large, non tree-shakeable bundle.",
        recommendation="Replace moment with date-fns or native Intl APIs.",
        tags=("dependencies", "build"),
    ),
    rule(
        "inefficient_import",
        r"""import\s+\*\s+as\s+\w+\s+from\s+['"]lodash['"]""",
        "medium",
        "Namespace import of lodash defeats tree shaking.",
        recommendation="Import individual lodash functions.",
        tags=("build",),
    ),
]


class PerformanceAnalyzer(Analyzer):
    name = "performance"
    capabilities = frozenset({"bundle_analysis", "asset_optimization", "runtime_profiling"})

    def analyze(self, root: Path):
        issues: List[Issue] = []
        files = list(iter_source_files(root, SOURCE_SUFFIXES))
        for path in files:
            self.guarded(
                f"scan:{relative_path(root, path)}",
                lambda path=path: scan_file(self, root, path, RULES),
                issues,
            )
        self.guarded("assets", lambda: self._oversized_images(root), issues)
        return self.result(issues, files_analyzed=len(files))

    def _oversized_images(self, root: Path) -> List[Issue]:
        issues: List[Issue] = []
        for path in iter_source_files(root, IMAGE_SUFFIXES):
            size = path.stat().st_size
            if size <= MAX_IMAGE_BYTES:
                continue
            issues.append(
                self.issue(
                    "oversized_image",
                    "medium",
                    f"Image is {size // 1000}KB (budget {MAX_IMAGE_BYTES // 1000}KB).",
                    file=relative_path(root, path),
                    recommendation="Compress the image or convert it to WebP/AVIF.",
                    impact_tags=("rendering",),
                )
            )
        return issues
