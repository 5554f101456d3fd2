"""Parse diagnostic tool output into structured findings."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Sequence

__all__ = ["Diagnostic", "PARSERS", "parse_eslint_json", "parse_generic", "parse_tsc", "resolve_parser"]


@dataclass(frozen=True)
class Diagnostic:
    """Single finding reported by an external tool."""

    path: str
    line: int
    message: str
    code: str | None = None
    level: str = "error"


_TSC_RE = re.compile(r"^(?P<path>[^\s(][^(]*)\((?P<line>\d+),(?P<col>\d+)\): (?P<level>error|warning) (?P<code>TS\d+): (?P<message>.+)$")
_GENERIC_RE = re.compile(
    r"^(?P<path>[^\s:][^:]*):(?P<line>\d+)(?::(?P<col>\d+))?:\s*(?:(?P<level>error|warning|note)\s*:?\s*)?(?P<message>.+?)(?:\s+\[(?P<code>[\w/@.-]+)\])?$"
)


def _normalise_path(path: str) -> str:
    cleaned = path.strip().replace("\\", "/")
    if cleaned.startswith("./"):
        cleaned = cleaned[2:]
    return cleaned


def parse_tsc(text: str) -> List[Diagnostic]:
    """Parse ``tsc --noEmit`` output (``file(line,col): error TSxxxx: msg``)."""

    findings: List[Diagnostic] = []
    for raw_line in text.splitlines():
        match = _TSC_RE.match(raw_line.strip())
        if match is None:
            continue
        findings.append(
            Diagnostic(
                path=_normalise_path(match.group("path")),
                line=int(match.group("line")),
                message=match.group("message").strip(),
                code=match.group("code"),
                level=match.group("level"),
            )
        )
    return findings


def parse_generic(text: str) -> List[Diagnostic]:
    """Parse ``path:line[:col]: [level] message [code]`` lines (ruff, mypy, eslint unix)."""

    findings: List[Diagnostic] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if not stripped:
            continue
        match = _GENERIC_RE.match(stripped)
        if match is None:
            continue
        findings.append(
            Diagnostic(
                path=_normalise_path(match.group("path")),
                line=int(match.group("line")),
                message=match.group("message").strip(),
                code=match.group("code"),
                level=match.group("level") or "error",
            )
        )
    return findings


def parse_eslint_json(text: str, *, root: Path | None = None) -> List[Diagnostic]:
    """Parse ``eslint --format json`` output."""

    if not text.strip():
        return []
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return []
    if not isinstance(payload, list):
        return []

    findings: List[Diagnostic] = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        path = str(entry.get("filePath") or "")
        if root is not None and path:
            try:
                path = Path(path).resolve().relative_to(root.resolve()).as_posix()
            except ValueError:
                pass
        for message in entry.get("messages") or []:
            if not isinstance(message, dict):
                continue
            findings.append(
                Diagnostic(
                    path=_normalise_path(path),
                    line=int(message.get("line") or 0),
                    message=str(message.get("message") or "").strip(),
                    code=message.get("ruleId"),
                    level="error" if message.get("severity") == 2 else "warning",
                )
            )
    return findings


PARSERS: Dict[str, Callable[[str], List[Diagnostic]]] = {
    "tsc": parse_tsc,
    "eslint-json": parse_eslint_json,
    "generic": parse_generic,
}


def resolve_parser(tokens: Sequence[str] | Iterable[str]) -> Callable[[str], List[Diagnostic]]:
    """Pick a parser from an explicit format name or the command tokens."""

    lowered = [str(token).strip().lower() for token in tokens if str(token).strip()]
    for token in lowered:
        if token in PARSERS:
            return PARSERS[token]
    for token in lowered:
        stem = Path(token).stem
        if stem in {"tsc", "vue-tsc"}:
            return parse_tsc
        if stem == "eslint" and "json" in lowered:
            return parse_eslint_json
    return parse_generic
