"""Registry mapping fix descriptor kinds to handler callables."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Iterator, Sequence

from ..errors import MissingFixHandlerError
from ..memory.schema import Issue

FixHandler = Callable[[Path, Issue], Sequence[str]]


class FixRegistry:
    """Resolve ``kind -> handler``; consulted at plan time and at fix time.

    A handler mutates the repository for one issue and returns the
    repository-relative paths it wrote.
    """

    def __init__(self, handlers: Dict[str, FixHandler] | None = None) -> None:
        self._handlers: Dict[str, FixHandler] = dict(handlers or {})

    def register(self, kind: str, handler: FixHandler, *, replace: bool = False) -> None:
        if kind in self._handlers and not replace:
            raise ValueError(f"Fix handler already registered for '{kind}'")
        self._handlers[kind] = handler

    def handler(self, kind: str) -> Callable[[FixHandler], FixHandler]:
        """Decorator form of :meth:`register`."""

        def _decorator(func: FixHandler) -> FixHandler:
            self.register(kind, func)
            return func

        return _decorator

    def has(self, kind: str) -> bool:
        return kind in self._handlers

    def resolve(self, kind: str) -> FixHandler:
        try:
            return self._handlers[kind]
        except KeyError:
            raise MissingFixHandlerError(f"No fix handler registered for '{kind}'") from None

    def apply(self, root: Path, issue: Issue) -> Sequence[str]:
        return self.resolve(issue.fix_kind)(root, issue)

    def kinds(self) -> Iterator[str]:
        return iter(sorted(self._handlers))

    def copy(self) -> "FixRegistry":
        return FixRegistry(self._handlers)


__all__ = ["FixHandler", "FixRegistry"]
