"""Repository tooling used by the execution phase."""

from .checkpoints import (
    CheckpointManager,
    FileSnapshotBackend,
    GitSnapshotBackend,
    SnapshotBackend,
    build_backend,
)
from .diagnostic_output import Diagnostic, resolve_parser
from .validation import (
    CallableDiagnosticProvider,
    CommandDiagnosticProvider,
    DiagnosticProvider,
    DiagnosticResult,
    ValidationPipeline,
    providers_from_config,
)
from .vcs import GitError, GitRepository
from .workspace_state import WorkspaceState, apply_workspace_state, capture_workspace_state

__all__ = [
    "CallableDiagnosticProvider",
    "CheckpointManager",
    "CommandDiagnosticProvider",
    "Diagnostic",
    "DiagnosticProvider",
    "DiagnosticResult",
    "FileSnapshotBackend",
    "GitError",
    "GitRepository",
    "GitSnapshotBackend",
    "SnapshotBackend",
    "ValidationPipeline",
    "WorkspaceState",
    "apply_workspace_state",
    "build_backend",
    "capture_workspace_state",
    "providers_from_config",
    "resolve_parser",
]
