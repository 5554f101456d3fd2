"""Restorable snapshots of repository state taken before every task."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ..errors import CheckpointError, CheckpointRestoreError
from ..memory.schema import Checkpoint, Metrics
from ..utils.slug import slugify
from .vcs import GitError, GitRepository
from .workspace_state import apply_workspace_state, capture_workspace_state, workspace_matches

LOGGER = logging.getLogger(__name__)

DEFAULT_EXCLUDES: tuple[str, ...] = (".git", ".codeguard", "node_modules")

_RESOURCE_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9_-]*:")


def is_file_resource(resource: str) -> bool:
    """``config:dependencies`` style resources are logical, not files."""

    return bool(resource) and not _RESOURCE_SCHEME.match(resource)


class SnapshotBackend(ABC):
    """Storage strategy behind :class:`CheckpointManager`."""

    name: str = "backend"

    @abstractmethod
    def capture(self, paths: Optional[Sequence[str]]) -> Any:
        """Capture ``paths`` (or the whole repository) and return opaque state."""

    @abstractmethod
    def restore(self, state: Any) -> None:
        """Return the repository to ``state``; raise on any failure."""

    @abstractmethod
    def verify(self, state: Any) -> bool:
        """Return ``True`` when the repository currently matches ``state``."""


# --------------------------------------------------------------------- files
@dataclass(slots=True)
class FileEntry:
    content: Optional[bytes]
    mode: Optional[int] = None

    @property
    def existed(self) -> bool:
        return self.content is not None


@dataclass(slots=True)
class FileSnapshot:
    entries: Dict[str, FileEntry] = field(default_factory=dict)
    complete: bool = False


class FileSnapshotBackend(SnapshotBackend):
    """Copy file bytes and modes into memory.

    With explicit ``paths`` only those files are captured, and a missing
    file is recorded as absent so that restoring deletes it again. Without
    ``paths`` every repository file outside ``exclude`` is captured and a
    restore also removes files created afterwards.
    """

    name = "files"

    def __init__(self, root: Path | str, *, exclude: Sequence[str] = DEFAULT_EXCLUDES) -> None:
        self.root = Path(root).resolve()
        self.exclude = tuple(item.strip("/") for item in exclude if item.strip("/"))

    def capture(self, paths: Optional[Sequence[str]]) -> FileSnapshot:
        complete = paths is None
        targets = self._all_files() if paths is None else sorted({p for p in paths if is_file_resource(p)})
        snapshot = FileSnapshot(complete=complete)
        for relative in targets:
            path = self._resolve(relative)
            try:
                if path.is_file():
                    snapshot.entries[relative] = FileEntry(
                        content=path.read_bytes(), mode=path.stat().st_mode & 0o777
                    )
                else:
                    snapshot.entries[relative] = FileEntry(content=None)
            except OSError as exc:
                raise CheckpointError(f"Unable to snapshot {relative}: {exc}") from exc
        return snapshot

    def restore(self, state: FileSnapshot) -> None:
        try:
            if state.complete:
                for relative in self._all_files():
                    if relative not in state.entries:
                        self._resolve(relative).unlink(missing_ok=True)
            for relative, entry in sorted(state.entries.items()):
                path = self._resolve(relative)
                if entry.content is None:
                    if path.is_file() or path.is_symlink():
                        path.unlink()
                    continue
                _atomic_write(path, entry.content)
                if entry.mode is not None:
                    os.chmod(path, entry.mode)
        except OSError as exc:
            raise CheckpointRestoreError(f"Restoring files failed: {exc}") from exc

    def verify(self, state: FileSnapshot) -> bool:
        for relative, entry in state.entries.items():
            path = self._resolve(relative)
            try:
                current = path.read_bytes() if path.is_file() else None
            except OSError:
                return False
            if current != entry.content:
                LOGGER.debug("Verification mismatch for %s", relative)
                return False
        if state.complete and set(self._all_files()) != set(state.entries):
            return False
        return True

    def _resolve(self, relative: str) -> Path:
        path = (self.root / relative).resolve()
        try:
            path.relative_to(self.root)
        except ValueError:
            raise CheckpointError(f"{relative} is outside the repository") from None
        return path

    def _all_files(self) -> List[str]:
        files: List[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            base = Path(dirpath).relative_to(self.root)
            dirnames[:] = sorted(
                name for name in dirnames if not self._excluded((base / name).as_posix())
            )
            for filename in sorted(filenames):
                relative = (base / filename).as_posix()
                if not self._excluded(relative):
                    files.append(relative)
        return files

    def _excluded(self, relative: str) -> bool:
        return any(relative == item or relative.startswith(item + "/") for item in self.exclude)


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".cg")
    try:
        with os.fdopen(handle, "wb") as stream:
            stream.write(data)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


# ----------------------------------------------------------------------- git
class GitSnapshotBackend(SnapshotBackend):
    """Snapshot the whole git workspace; ``paths`` is ignored."""

    name = "git"

    def __init__(self, root: Path | str, *, exclude: Sequence[str] = DEFAULT_EXCLUDES) -> None:
        try:
            self.repo = GitRepository(root)
        except GitError as exc:
            raise CheckpointError(str(exc)) from exc
        self.exclude = tuple(item for item in exclude if item.strip("/") != ".git")

    def capture(self, paths: Optional[Sequence[str]]) -> Any:
        try:
            return capture_workspace_state(self.repo, exclude=self.exclude)
        except GitError as exc:
            raise CheckpointError(str(exc)) from exc

    def restore(self, state: Any) -> None:
        try:
            apply_workspace_state(self.repo, state, exclude=self.exclude)
        except (GitError, OSError) as exc:
            raise CheckpointRestoreError(f"Restoring git workspace failed: {exc}") from exc

    def verify(self, state: Any) -> bool:
        try:
            return workspace_matches(self.repo, state, exclude=self.exclude)
        except GitError:
            return False


BACKENDS = {
    FileSnapshotBackend.name: FileSnapshotBackend,
    GitSnapshotBackend.name: GitSnapshotBackend,
}


def build_backend(kind: str, root: Path | str, *, exclude: Sequence[str] = DEFAULT_EXCLUDES) -> SnapshotBackend:
    try:
        factory = BACKENDS[kind]
    except KeyError:
        raise CheckpointError(f"Unknown checkpoint backend '{kind}'") from None
    return factory(root, exclude=exclude)


# ------------------------------------------------------------------- manager
class CheckpointManager:
    """Create, retain and restore checkpoints for one run.

    Every checkpoint is kept until :meth:`release_all`, so any earlier
    checkpoint can be restored, not only the most recent one.
    """

    def __init__(self, backend: SnapshotBackend) -> None:
        self.backend = backend
        self._checkpoints: Dict[str, Checkpoint] = {}
        self._counter = 0

    def __len__(self) -> int:
        return len(self._checkpoints)

    def snapshot(
        self,
        label: str,
        paths: Optional[Iterable[str]] = None,
        *,
        task_id: str | None = None,
        metrics: Metrics | None = None,
    ) -> str:
        state = self.backend.capture(sorted(paths) if paths is not None else None)
        self._counter += 1
        checkpoint_id = f"chk-{self._counter:04d}-{slugify(label, fallback='checkpoint')}"
        self._checkpoints[checkpoint_id] = Checkpoint(
            id=checkpoint_id,
            label=label,
            state_ref=state,
            preceding_metrics=metrics.model_copy() if metrics is not None else None,
            task_id=task_id,
        )
        LOGGER.debug("Captured checkpoint %s (%s backend)", checkpoint_id, self.backend.name)
        return checkpoint_id

    def restore(self, checkpoint_id: str) -> Checkpoint:
        """Restore ``checkpoint_id``; any failure raises :class:`CheckpointRestoreError`."""

        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is None:
            raise CheckpointRestoreError(f"Unknown checkpoint '{checkpoint_id}'")
        try:
            self.backend.restore(checkpoint.state_ref)
        except CheckpointRestoreError:
            LOGGER.error("Restore of checkpoint %s failed", checkpoint_id)
            raise
        except (CheckpointError, OSError) as exc:
            LOGGER.error("Restore of checkpoint %s failed: %s", checkpoint_id, exc)
            raise CheckpointRestoreError(str(exc)) from exc
        if not self.backend.verify(checkpoint.state_ref):
            LOGGER.error("Checkpoint %s did not verify after restore", checkpoint_id)
            raise CheckpointRestoreError(f"Workspace does not match checkpoint '{checkpoint_id}' after restore")
        LOGGER.info("Restored checkpoint %s", checkpoint_id)
        return checkpoint

    def get(self, checkpoint_id: str) -> Checkpoint:
        try:
            return self._checkpoints[checkpoint_id]
        except KeyError:
            raise CheckpointError(f"Unknown checkpoint '{checkpoint_id}'") from None

    def checkpoints(self) -> List[Checkpoint]:
        return list(self._checkpoints.values())

    def release_all(self) -> int:
        released = len(self._checkpoints)
        self._checkpoints.clear()
        return released


__all__ = [
    "BACKENDS",
    "CheckpointManager",
    "DEFAULT_EXCLUDES",
    "FileSnapshotBackend",
    "GitSnapshotBackend",
    "SnapshotBackend",
    "build_backend",
    "is_file_resource",
]
