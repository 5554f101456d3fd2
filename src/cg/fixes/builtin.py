"""Small, well-understood fixes for the built-in analyzers."""

from __future__ import annotations

import html
import re
from pathlib import Path
from typing import List

from ..analyzers.performance import CONSOLE_STATEMENT
from ..errors import FixError
from ..memory.schema import Issue
from .registry import FixRegistry

_IMG_TAG = re.compile(r"<img\b")
_CONSOLE_CALL = re.compile(CONSOLE_STATEMENT)
_DEBUGGER = re.compile(r"^\s*debugger\s*;?\s*$")
_FOCUSED = re.compile(r"\b(it|describe|test)\.only(\s*\()")
_HAS_LOADING = re.compile(r"\bloading\s*=")
_HAS_ALT = re.compile(r"\balt\s*=")

# How far a finding may have drifted since analysis.
LOCATE_WINDOW = 50


def _target(root: Path, issue: Issue) -> Path:
    if not issue.file:
        raise FixError(f"{issue.id} has no file to fix")
    path = (root / issue.file).resolve()
    try:
        path.relative_to(root.resolve())
    except ValueError:
        raise FixError(f"{issue.file} is outside the repository") from None
    if not path.is_file():
        raise FixError(f"{issue.file} does not exist")
    return path


def _locate(lines: List[str], line: int, pattern: re.Pattern[str], skip: re.Pattern[str] | None) -> int | None:
    """Find the finding near ``line``; earlier fixes may have shifted it."""

    def _matches(index: int) -> bool:
        text = lines[index]
        return bool(pattern.search(text)) and not (skip is not None and skip.search(text))

    origin = line - 1
    for distance in range(LOCATE_WINDOW + 1):
        for index in (origin - distance, origin + distance):
            if 0 <= index < len(lines) and _matches(index):
                return index
    return None


def _edit_line(
    root: Path,
    issue: Issue,
    pattern: re.Pattern[str],
    edit,
    *,
    skip: re.Pattern[str] | None = None,
) -> List[str]:
    """Apply ``edit`` to the issue's line; ``edit`` returns the new line or ``None`` to drop it."""

    path = _target(root, issue)
    if not issue.line:
        raise FixError(f"{issue.id} has no line number")
    lines = path.read_text(encoding="utf-8").splitlines(keepends=True)
    index = _locate(lines, issue.line, pattern, skip)
    if index is None:
        raise FixError(f"{issue.file}:{issue.line} no longer matches the finding")
    replacement = edit(lines[index])
    if replacement is None:
        del lines[index]
    else:
        lines[index] = replacement
    path.write_text("".join(lines), encoding="utf-8")
    return [issue.file]


def add_lazy_loading(root: Path, issue: Issue) -> List[str]:
    return _edit_line(
        root,
        issue,
        _IMG_TAG,
        lambda line: _IMG_TAG.sub('<img loading="lazy"', line, count=1),
        skip=_HAS_LOADING,
    )


def add_alt_text(root: Path, issue: Issue) -> List[str]:
    payload = issue.fix_descriptor.payload if issue.fix_descriptor else {}
    alt = html.escape(str(payload.get("alt", "")), quote=True)
    return _edit_line(
        root,
        issue,
        _IMG_TAG,
        lambda line: _IMG_TAG.sub(lambda _: f'<img alt="{alt}"', line, count=1),
        skip=_HAS_ALT,
    )


def remove_console_statement(root: Path, issue: Issue) -> List[str]:
    return _edit_line(root, issue, _CONSOLE_CALL, lambda line: None)


def remove_debugger(root: Path, issue: Issue) -> List[str]:
    return _edit_line(root, issue, _DEBUGGER, lambda line: None)


def remove_focused_test(root: Path, issue: Issue) -> List[str]:
    return _edit_line(root, issue, _FOCUSED, lambda line: _FOCUSED.sub(r"\1\2", line, count=1))


def create_env_example(root: Path, issue: Issue) -> List[str]:
    payload = issue.fix_descriptor.payload if issue.fix_descriptor else {}
    variables = sorted(str(name) for name in payload.get("variables") or [])
    if not variables:
        raise FixError("No variables to document")
    target = root / ".env.example"
    if target.exists():
        raise FixError(".env.example already exists")
    target.write_text("".join(f"{name}=\n" for name in variables), encoding="utf-8")
    return [".env.example"]


def default_registry() -> FixRegistry:
    registry = FixRegistry()
    registry.register("add_lazy_loading", add_lazy_loading)
    registry.register("add_alt_text", add_alt_text)
    registry.register("remove_console_statement", remove_console_statement)
    registry.register("remove_debugger", remove_debugger)
    registry.register("remove_focused_test", remove_focused_test)
    registry.register("create_env_example", create_env_example)
    return registry


__all__ = [
    "add_alt_text",
    "add_lazy_loading",
    "create_env_example",
    "default_registry",
    "remove_console_statement",
    "remove_debugger",
    "remove_focused_test",
]
