#!/usr/bin/env python3
"""
closcore
roster_tools.py
Roster loading, identifier normalization and grid/roster validation

Matching is exact after normalization (trim + lowercase). Fuzzy matching is
only used to suggest likely intended identifiers in error messages; it never
decides a match on its own.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import pandas as pd

try:
    from rapidfuzz import fuzz, process
except ImportError:
    raise ImportError(
        "rapidfuzz is required for student roster matching. "
        "Install it with: pip install rapidfuzz"
    )

from ..errors import ConfigurationError, RosterMismatchError, StudentNotFoundError

logger = logging.getLogger(__name__)

_ID_KEYS = ("studentid", "id", "student_id", "sid", "identifier")
_NAME_KEYS = ("studentname", "name", "student_name", "displayname", "display_name")


def normalize_identifier(value: Any) -> str:
    """
    Canonical form of a student identifier: trimmed and lowercased.

    Spreadsheet readers hand back numeric IDs as floats (4410001.0); integral
    floats are printed without the trailing ".0" so they match their text form.
    """
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:  # NaN
            return ""
        if value.is_integer():
            value = int(value)
    return str(value).strip().lower()


@dataclass(frozen=True)
class RosterEntry:
    identifier: str
    display_name: str = ""

    @property
    def key(self) -> str:
        return normalize_identifier(self.identifier)


class Roster:
    """Ordered, immutable set of students keyed by normalized identifier."""

    def __init__(self, entries: Iterable[RosterEntry]):
        self._entries: Dict[str, RosterEntry] = {}
        for entry in entries:
            key = entry.key
            if not key:
                raise ConfigurationError(f"Roster entry without identifier: {entry!r}")
            if key in self._entries:
                raise ConfigurationError(f"Duplicate roster identifier: '{entry.identifier}'")
            self._entries[key] = entry

    @classmethod
    def from_records(cls, records: Iterable[Union[Mapping[str, Any], Sequence[Any]]]) -> "Roster":
        """
        Build a roster from dicts ({studentId, studentName} or {id, name}) or
        (identifier, name) pairs.
        """
        entries = []
        for rec in records:
            if isinstance(rec, Mapping):
                lowered = {str(k).lower().strip(): v for k, v in rec.items()}
                ident = next((lowered[k] for k in _ID_KEYS if k in lowered), None)
                name = next((lowered[k] for k in _NAME_KEYS if k in lowered), "")
                if ident is None:
                    raise ConfigurationError(
                        f"Roster record needs an identifier field ({'/'.join(_ID_KEYS)}): {dict(rec)}"
                    )
            else:
                rec = list(rec)
                if not rec:
                    raise ConfigurationError("Empty roster record")
                ident, name = rec[0], (rec[1] if len(rec) > 1 else "")
            entries.append(RosterEntry(identifier=_display_id(ident), display_name=str(name or "").strip()))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[RosterEntry]:
        return iter(self._entries.values())

    def __contains__(self, identifier: Any) -> bool:
        return normalize_identifier(identifier) in self._entries

    @property
    def keys(self) -> List[str]:
        return list(self._entries)

    def get(self, identifier: Any) -> Optional[RosterEntry]:
        return self._entries.get(normalize_identifier(identifier))

    def lookup(self, identifier: Any) -> RosterEntry:
        """Return the entry for ``identifier`` or raise StudentNotFoundError with suggestions."""
        entry = self.get(identifier)
        if entry is None:
            raise StudentNotFoundError(_display_id(identifier), suggest_matches(identifier, self))
        return entry


def _display_id(value: Any) -> str:
    if isinstance(value, float) and value == value and value.is_integer():
        value = int(value)
    return "" if value is None else str(value).strip()


def suggest_matches(identifier: Any, roster: Roster, limit: int = 3, score_cutoff: float = 80.0) -> List[str]:
    """Roster identifiers that look like a typo of ``identifier`` (best first)."""
    key = normalize_identifier(identifier)
    if not key or not len(roster):
        return []
    hits = process.extract(key, roster.keys, scorer=fuzz.ratio, limit=limit, score_cutoff=score_cutoff)
    return [roster.get(match).identifier for match, _score, _idx in hits]


def validate_roster(identifiers: Iterable[Any], roster: Roster) -> None:
    """
    Two-way check: every grid identifier is on the roster and every roster
    student appears in the grid. Raises RosterMismatchError listing all
    offenders on either side.
    """
    seen = set()
    missing_from_roster = []
    for ident in identifiers:
        key = normalize_identifier(ident)
        seen.add(key)
        if key not in roster:
            missing_from_roster.append(_display_id(ident))
    missing_from_grid = [e.identifier for e in roster if e.key not in seen]
    if missing_from_roster or missing_from_grid:
        raise RosterMismatchError(missing_from_roster, missing_from_grid)


def load_roster(roster_path: str) -> Roster:
    """
    Load a class roster CSV.

    Expected columns (case-insensitive, auto-detected):
    - StudentID / ID / Student_ID
    - StudentName / Name (optional)
    """
    df = pd.read_csv(roster_path, dtype=str, keep_default_na=False)

    col_map = {}
    for col in df.columns:
        col_lower = col.lower().strip()
        if col_lower in _ID_KEYS:
            col_map[col] = "studentId"
        elif col_lower in _NAME_KEYS:
            col_map[col] = "studentName"

    if "studentId" not in col_map.values():
        raise ConfigurationError(
            f"Roster CSV must have a student ID column. "
            f"Expected: StudentID/ID/Student_ID. Found: {list(df.columns)}"
        )

    df = df.rename(columns=col_map)
    if "studentName" not in df.columns:
        df["studentName"] = ""

    records: List[Tuple[str, str]] = [
        (str(row.studentId).strip(), str(row.studentName).strip())
        for row in df[["studentId", "studentName"]].itertuples(index=False)
        if str(row.studentId).strip()
    ]
    logger.debug("Loaded %d roster entries from %s", len(records), roster_path)
    return Roster.from_records(records)


__all__ = [
    "normalize_identifier",
    "RosterEntry",
    "Roster",
    "suggest_matches",
    "validate_roster",
    "load_roster",
]
