"""Fix handlers applied by the execution phase."""

from .builtin import default_registry
from .registry import FixHandler, FixRegistry

__all__ = ["FixHandler", "FixRegistry", "default_registry"]
