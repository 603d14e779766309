"""
Exception taxonomy for the closcore engine.

Structural and configuration errors abort a whole run; a reliability
coefficient or achievement percentage computed on truncated or misaligned
data is worse than no number at all.
"""
from __future__ import annotations

from typing import Iterable, List, Sequence


class EngineError(Exception):
    """Base class for every error raised by closcore."""


class MalformedGridError(EngineError, ValueError):
    """The answer grid does not have the expected shape."""


class DegenerateInputError(EngineError, ArithmeticError):
    """A statistic is undefined for the given input (k <= 1, zero variance)."""


class ConfigurationError(EngineError, ValueError):
    """CLO / instrument / outcome-group configuration is inconsistent."""


class StudentNotFoundError(EngineError, LookupError):
    """A grid row's identifier has no counterpart in the roster."""

    def __init__(self, identifier: str, suggestions: Sequence[str] = ()):
        self.identifier = identifier
        self.suggestions = list(suggestions)
        msg = f"Student '{identifier}' not found in roster"
        if self.suggestions:
            msg += f" (closest: {', '.join(self.suggestions)})"
        super().__init__(msg)


class RosterMismatchError(EngineError):
    """
    Identifiers present in one source and absent from the other.

    Raised once per batch so the caller sees every mismatch at the same time.
    """

    def __init__(self, missing_from_roster: Iterable[str] = (), missing_from_grid: Iterable[str] = ()):
        self.missing_from_roster: List[str] = list(missing_from_roster)
        self.missing_from_grid: List[str] = list(missing_from_grid)
        parts = []
        if self.missing_from_roster:
            parts.append(f"{len(self.missing_from_roster)} grid student(s) not on roster: "
                         f"{', '.join(self.missing_from_roster)}")
        if self.missing_from_grid:
            parts.append(f"{len(self.missing_from_grid)} roster student(s) missing from grid: "
                         f"{', '.join(self.missing_from_grid)}")
        super().__init__("; ".join(parts) or "Roster mismatch")


__all__ = [
    "EngineError",
    "MalformedGridError",
    "DegenerateInputError",
    "ConfigurationError",
    "StudentNotFoundError",
    "RosterMismatchError",
]
