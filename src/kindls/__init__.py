"""kindls package root."""

from kindls.exceptions import EngineFailure, KindLsError, MergeConflict
from kindls.invariants import never

__all__ = ["__version__", "EngineFailure", "KindLsError", "MergeConflict", "never"]

__version__ = "0.3.0"
