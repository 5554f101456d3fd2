"""Minimal git helpers used by the git checkpoint backend."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import List, Sequence, Set

from ..errors import CodeGuardError


class GitError(CodeGuardError):
    """Raised when a git command fails or the repository cannot be used."""


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    @classmethod
    def initialise(cls, root: Path | str) -> "GitRepository":
        """Initialise a repository at ``root`` and commit its current contents."""

        path = Path(root).resolve()
        path.mkdir(parents=True, exist_ok=True)
        _run_git(path, ["init"])
        for key, value in (("user.email", "codeguard@example.com"), ("user.name", "CodeGuard")):
            probe = _run_git(path, ["config", "--get", key], check=False)
            if probe.returncode != 0 or not probe.stdout.strip():
                _run_git(path, ["config", key, value])
        _run_git(path, ["add", "."])
        _run_git(path, ["commit", "--allow-empty", "-m", "Initial commit"])
        return cls(path)

    # ------------------------------------------------------------------ git IO
    def git(self, *args: str, check: bool = True, input_text: str | None = None) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return _run_git(self.root, list(args), check=check, input_text=input_text)

    def head(self) -> str | None:
        result = self.git("rev-parse", "--verify", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    # ------------------------------------------------------------- repo status
    def status_entries(self) -> List[tuple[str, Path]]:
        """Return porcelain status entries as ``(status, path)`` pairs."""

        result = self.git("status", "--porcelain", "--untracked-files=all")
        entries: List[tuple[str, Path]] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            status = line[:2]
            raw_path = line[3:]
            if status[0] in {"R", "C"} and " -> " in raw_path:
                raw_path = raw_path.split(" -> ", 1)[1]
            entries.append((status.strip() or status, Path(raw_path.strip().strip('"'))))
        return entries

    def untracked_files(self) -> List[Path]:
        return [path for status, path in self.status_entries() if status == "??"]

    def working_tree_changes(self, *, include_untracked: bool = True) -> List[Path]:
        paths: Set[Path] = set()
        for status, path in self.status_entries():
            if status == "??" and not include_untracked:
                continue
            paths.add(path)
        return sorted(paths, key=lambda item: item.as_posix())

    def is_clean(self, *, include_untracked: bool = True) -> bool:
        return not self.working_tree_changes(include_untracked=include_untracked)


def _run_git(
    cwd: Path,
    args: Sequence[str],
    *,
    check: bool = True,
    input_text: str | None = None,
) -> subprocess.CompletedProcess[str]:
    command = ["git", *args]
    process = subprocess.run(
        command,
        cwd=cwd,
        capture_output=True,
        input=input_text.encode("utf-8") if input_text is not None else None,
        text=False,
        check=False,
    )
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
    if check and result.returncode != 0:
        message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
        raise GitError(f"git {' '.join(args)} failed: {message}")
    return result


__all__ = ["GitError", "GitRepository"]
