"""Capture and replay snapshots of a git workspace for checkpoint restores."""

from __future__ import annotations

import base64
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from .vcs import GitError, GitRepository

__all__ = [
    "UntrackedFile",
    "WorkspaceState",
    "apply_workspace_state",
    "capture_workspace_state",
]


@dataclass(slots=True)
class UntrackedFile:
    path: str
    content: bytes
    mode: int | None = None


@dataclass(slots=True)
class WorkspaceState:
    """Workspace contents relative to a git commit."""

    captured_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    repo_root: str | None = None
    label: str | None = None
    head: str | None = None
    diff: str = ""
    untracked: list[UntrackedFile] = field(default_factory=list)

    @property
    def untracked_paths(self) -> set[str]:
        return {entry.path for entry in self.untracked}

    def to_dict(self) -> dict[str, Any]:
        """Return a plain ``dict`` representation suitable for JSON logs."""
        return {
            "captured_at": self.captured_at,
            "repo_root": self.repo_root,
            "label": self.label,
            "head": self.head,
            "diff": self.diff,
            "untracked": [
                {
                    "path": entry.path,
                    "encoding": "base64",
                    "content": base64.b64encode(entry.content).decode("ascii"),
                    "mode": oct(entry.mode) if entry.mode is not None else None,
                }
                for entry in self.untracked
            ],
        }


def capture_workspace_state(
    repo: GitRepository,
    *,
    label: str | None = None,
    exclude: Sequence[str] = (),
) -> WorkspaceState:
    """Capture HEAD, the tracked diff and every untracked file.

    Paths under any ``exclude`` prefix are left out of the snapshot and are
    never touched by :func:`apply_workspace_state`.
    """

    state = WorkspaceState(repo_root=repo.root.as_posix(), label=label, head=repo.head())
    if state.head is None:
        raise GitError("Repository has no commits; cannot snapshot the workspace")

    state.diff = repo.git("diff", "--binary", "HEAD").stdout or ""

    for relative in repo.untracked_files():
        posix = relative.as_posix()
        if _excluded(posix, exclude):
            continue
        absolute = repo.root / relative
        if not absolute.is_file():
            continue
        try:
            data = absolute.read_bytes()
        except OSError as exc:
            raise GitError(f"Unable to read untracked file {posix}: {exc}") from exc
        state.untracked.append(UntrackedFile(path=posix, content=data, mode=_file_mode(absolute)))
    return state


def apply_workspace_state(
    repo: GitRepository,
    state: WorkspaceState,
    *,
    exclude: Sequence[str] = (),
) -> list[str]:
    """Return the workspace to ``state`` without touching commits.

    Tracked files are reset to the recorded commit and the recorded diff is
    re-applied. Untracked files that appeared after the snapshot are removed
    and recorded untracked payloads are rewritten. Returns the paths whose
    untracked payloads were rewritten.
    """

    if not state.head:
        raise GitError("Workspace snapshot has no HEAD to restore")

    for relative in repo.untracked_files():
        posix = relative.as_posix()
        if _excluded(posix, exclude) or posix in state.untracked_paths:
            continue
        (repo.root / relative).unlink(missing_ok=True)

    repo.git("reset", "--hard", state.head)
    if state.diff.strip():
        repo.git("apply", "--whitespace=nowarn", "--binary", "-", input_text=state.diff)

    restored: list[str] = []
    for entry in state.untracked:
        target = (repo.root / entry.path).resolve()
        try:
            target.relative_to(repo.root)
        except ValueError:
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(entry.content)
        if entry.mode is not None:
            os.chmod(target, entry.mode)
        restored.append(entry.path)
    return restored


def workspace_matches(repo: GitRepository, state: WorkspaceState, *, exclude: Sequence[str] = ()) -> bool:
    """Return ``True`` when the live workspace equals ``state``."""

    if repo.head() != state.head:
        return False
    if (repo.git("diff", "--binary", "HEAD").stdout or "") != state.diff:
        return False
    live = {path.as_posix() for path in repo.untracked_files() if not _excluded(path.as_posix(), exclude)}
    if live != state.untracked_paths:
        return False
    for entry in state.untracked:
        try:
            if (repo.root / entry.path).read_bytes() != entry.content:
                return False
        except OSError:
            return False
    return True


def _excluded(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        cleaned = prefix.strip("/")
        if cleaned and (path == cleaned or path.startswith(cleaned + "/")):
            return True
    return False


def _file_mode(path: Path) -> int | None:
    try:
        return path.stat().st_mode & 0o777
    except OSError:
        return None
