"""Exception hierarchy shared by the CodeGuard engine."""

from __future__ import annotations


class CodeGuardError(RuntimeError):
    """Base class for engine errors."""


class ConfigError(CodeGuardError):
    """Raised when the configuration file cannot be loaded or is malformed."""


class PhaseError(CodeGuardError):
    """Raised when a run phase object is reused after it has transitioned."""


class InvalidTransitionError(CodeGuardError):
    """Raised when a task is moved into a state it cannot reach."""


class FixError(CodeGuardError):
    """Raised by fix handlers when a fix cannot be applied."""


class MissingFixHandlerError(CodeGuardError):
    """Raised when no handler is registered for a fix descriptor kind."""


class CheckpointError(CodeGuardError):
    """Raised when a checkpoint cannot be captured or located."""


class CheckpointRestoreError(CheckpointError):
    """Raised when restoring a checkpoint fails.

    This is fatal for a run: once a restore fails the engine can no longer
    guarantee that every executed task is either validated or fully reverted.
    """


__all__ = [
    "CheckpointError",
    "CheckpointRestoreError",
    "CodeGuardError",
    "ConfigError",
    "FixError",
    "InvalidTransitionError",
    "MissingFixHandlerError",
    "PhaseError",
]
