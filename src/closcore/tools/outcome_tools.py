#!/usr/bin/env python3
"""
closcore
outcome_tools.py
Per-instrument CLO scoring and multi-instrument aggregation

An instrument's weight is spread evenly over every question mapped to its
CLOs: marks_per_question = weight / question_count. A CLO is worth
weight * (its questions / question_count) in that instrument. Marks are
rounded to 2 decimals when stored so rounding drift cannot build up
differently from one student to the next.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config_io import InstrumentConfig, InstrumentMode
from ..defaults import GRID_DEFAULTS, GridDefaults
from ..errors import ConfigurationError, MalformedGridError, RosterMismatchError, StudentNotFoundError
from .grid_tools import AnswerGrid, ParsedGrid, StudentRow, cell_number, cell_text, is_binary_correct, parse_answer_grid
from .roster_tools import Roster, normalize_identifier

logger = logging.getLogger(__name__)


class MismatchPolicy(str, Enum):
    """What to do with a grid row whose identifier is not on the roster."""
    ABORT = "abort"      # raise StudentNotFoundError at the first unknown student
    COLLECT = "collect"  # scan the whole grid, then raise RosterMismatchError listing all
    SKIP = "skip"        # log a warning, record it on the result, keep going


@dataclass(frozen=True)
class CloResult:
    marks_scored: float = 0.0
    marks_possible: float = 0.0
    correct_count: int = 0
    question_count: int = 0

    @property
    def percentage(self) -> float:
        return self.marks_scored / self.marks_possible * 100 if self.marks_possible else 0.0

    def __add__(self, other: "CloResult") -> "CloResult":
        if not isinstance(other, CloResult):
            return NotImplemented
        return CloResult(
            marks_scored=round(self.marks_scored + other.marks_scored, 2),
            marks_possible=round(self.marks_possible + other.marks_possible, 2),
            correct_count=self.correct_count + other.correct_count,
            question_count=self.question_count + other.question_count,
        )


@dataclass(frozen=True)
class StudentOutcome:
    student_id: str
    student_name: str
    clo_results: Mapping[str, CloResult]

    @property
    def marks_scored(self) -> float:
        return round(sum(r.marks_scored for r in self.clo_results.values()), 2)

    @property
    def marks_possible(self) -> float:
        return round(sum(r.marks_possible for r in self.clo_results.values()), 2)

    @property
    def percentage(self) -> float:
        possible = self.marks_possible
        return round(self.marks_scored / possible * 100, 2) if possible else 0.0


@dataclass(frozen=True)
class InstrumentResult:
    instrument: InstrumentConfig
    students: Tuple[StudentOutcome, ...]
    question_key: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    unmatched: Tuple[str, ...] = ()


@dataclass(frozen=True)
class CourseOutcomes:
    clo_ids: Tuple[str, ...]
    marks_possible: Mapping[str, float]
    question_counts: Mapping[str, int]
    students: Tuple[StudentOutcome, ...]
    instruments: Tuple[str, ...] = ()

    def student(self, identifier: str) -> StudentOutcome:
        key = normalize_identifier(identifier)
        for s in self.students:
            if normalize_identifier(s.student_id) == key:
                return s
        raise StudentNotFoundError(identifier)


# ----------------------------
# Scoring one instrument
# ----------------------------

def _correct_flags(parsed: ParsedGrid, student: StudentRow, mode: InstrumentMode) -> List[bool]:
    answers = parsed.answers(student)
    if mode is InstrumentMode.BINARY:
        return [is_binary_correct(a) for a in answers]
    flags = []
    for q, a in zip(parsed.questions, answers):
        ans = cell_text(a).upper()
        flags.append(bool(ans) and ans == parsed.key[q])
    return flags


def _question_clo_results(instrument: InstrumentConfig, flags: Sequence[bool]) -> Dict[str, CloResult]:
    mpq = instrument.marks_per_question
    results: Dict[str, CloResult] = {}
    for clo, nums in instrument.clos.items():
        correct = sum(1 for n in nums if flags[n - 1])
        results[clo] = CloResult(
            marks_scored=round(correct * mpq, 2),
            marks_possible=instrument.clo_marks_possible(clo),
            correct_count=correct,
            question_count=len(nums),
        )
    return results


def _aggregate_out_of(parsed: ParsedGrid, instrument: InstrumentConfig) -> float:
    """Total the aggregate mark is out of: the key-row cell, else the instrument weight."""
    col = parsed.question_cols[0]
    out_of = cell_number(parsed.key_row[col], "aggregate total") if col < len(parsed.key_row) else 0.0
    return out_of if out_of > 0 else instrument.weight


def _aggregate_clo_results(
    instrument: InstrumentConfig, parsed: ParsedGrid, student: StudentRow, out_of: float
) -> Dict[str, CloResult]:
    raw = cell_number(student.cells[parsed.question_cols[0]], f"mark for '{student.student_id}'")
    scaled = raw * instrument.weight / out_of if out_of else raw
    results: Dict[str, CloResult] = {}
    for clo in instrument.clos:
        results[clo] = CloResult(
            marks_scored=round(scaled * instrument.clo_share(clo), 2),
            marks_possible=instrument.clo_marks_possible(clo),
            correct_count=1 if raw > 0 else 0,
            question_count=1,
        )
    return results


def _check_question_range(instrument: InstrumentConfig, parsed: ParsedGrid) -> None:
    if instrument.mode is InstrumentMode.AGGREGATE:
        return
    bad = {clo: [n for n in nums if n > parsed.num_questions] for clo, nums in instrument.clos.items()}
    bad = {clo: nums for clo, nums in bad.items() if nums}
    if bad:
        raise ConfigurationError(
            f"Instrument '{instrument.name}' maps question numbers beyond the "
            f"{parsed.num_questions} question(s) in its grid: {bad}"
        )


def score_instrument(
    instrument: InstrumentConfig,
    grid: Union[AnswerGrid, ParsedGrid],
    roster: Optional[Roster],
    *,
    on_missing: MismatchPolicy,
    layout: GridDefaults = GRID_DEFAULTS,
) -> InstrumentResult:
    """
    Marks and correct counts per student per CLO for one instrument.

    ``on_missing`` has no default: the caller must decide how unknown students
    are handled, since dropping them quietly changes every percentage computed
    downstream.
    """
    policy = MismatchPolicy(on_missing)
    parsed = grid if isinstance(grid, ParsedGrid) else parse_answer_grid(grid, layout)
    _check_question_range(instrument, parsed)

    out_of = _aggregate_out_of(parsed, instrument) if instrument.mode is InstrumentMode.AGGREGATE else 0.0

    outcomes: List[StudentOutcome] = []
    missing: List[str] = []
    seen: Dict[str, int] = {}

    for student in parsed.students:
        key = normalize_identifier(student.student_id)
        student_id, student_name = student.student_id, student.name
        try:
            if not key:
                raise StudentNotFoundError(f"<blank ID in row {student.row_index}>")
            if roster is not None:
                entry = roster.lookup(student.student_id)
                student_id, student_name = entry.identifier, entry.display_name or student.name
        except StudentNotFoundError as exc:
            if policy is MismatchPolicy.ABORT:
                raise
            if policy is MismatchPolicy.SKIP:
                logger.warning("%s: skipping row %d, %s", instrument.name, student.row_index, exc)
            missing.append(exc.identifier)
            continue

        if key in seen:
            raise MalformedGridError(
                f"Student '{student.student_id}' appears twice in '{instrument.name}' "
                f"(rows {seen[key]} and {student.row_index})"
            )
        seen[key] = student.row_index

        if instrument.mode is InstrumentMode.AGGREGATE:
            clo_results = _aggregate_clo_results(instrument, parsed, student, out_of)
        else:
            clo_results = _question_clo_results(instrument, _correct_flags(parsed, student, instrument.mode))

        outcomes.append(StudentOutcome(
            student_id=student_id,
            student_name=student_name,
            clo_results=MappingProxyType(clo_results),
        ))

    if missing and policy is MismatchPolicy.COLLECT:
        raise RosterMismatchError(missing_from_roster=missing)

    logger.debug("Scored %s (%s): %d student(s), %d CLO(s), %.4f marks/question",
                 instrument.name, instrument.mode.value, len(outcomes), len(instrument.clos),
                 instrument.marks_per_question)

    question_key = parsed.key if instrument.mode is InstrumentMode.KEYED else MappingProxyType({})
    return InstrumentResult(
        instrument=instrument,
        students=tuple(outcomes),
        question_key=question_key,
        unmatched=tuple(missing),
    )


# ----------------------------
# Aggregating instruments
# ----------------------------

def aggregate_instruments(
    results: Sequence[InstrumentResult],
    roster: Optional[Roster] = None,
) -> CourseOutcomes:
    """
    Fold instrument results into per-student per-CLO totals.

    Students are the union over all instruments (first appearance order); a
    student missing from an instrument scores 0 there but keeps the full
    marks possible. Zero-weight instruments contribute nothing. With a
    ``roster``, roster students found in no instrument follow with 0 marks.
    """
    clo_ids: Dict[str, None] = {}
    possible: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    acc: Dict[str, Dict[str, CloResult]] = {}
    names: Dict[str, Tuple[str, str]] = {}
    used: List[str] = []

    for result in results:
        inst = result.instrument
        if inst.weight == 0 or not inst.clos:
            logger.warning("Instrument '%s' has no weight or no CLOs; it contributes nothing", inst.name)
            continue
        used.append(inst.name)
        for clo, nums in inst.clos.items():
            clo_ids.setdefault(clo, None)
            possible[clo] = round(possible.get(clo, 0.0) + inst.clo_marks_possible(clo), 2)
            n_items = 1 if inst.mode is InstrumentMode.AGGREGATE else len(nums)
            counts[clo] = counts.get(clo, 0) + n_items

        for outcome in result.students:
            key = normalize_identifier(outcome.student_id)
            if key not in names:
                names[key] = (outcome.student_id, outcome.student_name)
                acc[key] = {}
            elif not names[key][1] and outcome.student_name:
                names[key] = (names[key][0], outcome.student_name)
            student_acc = acc[key]
            for clo, res in outcome.clo_results.items():
                # possible marks and question counts come from the configs below
                student_acc[clo] = student_acc.get(clo, CloResult()) + CloResult(
                    marks_scored=res.marks_scored, correct_count=res.correct_count,
                )

    if roster is not None:
        for entry in roster:
            if entry.key not in names:
                names[entry.key] = (entry.identifier, entry.display_name)
                acc[entry.key] = {}

    students: List[StudentOutcome] = []
    for key, (student_id, student_name) in names.items():
        per_clo = {}
        for clo in clo_ids:
            got = acc[key].get(clo, CloResult())
            per_clo[clo] = CloResult(
                marks_scored=got.marks_scored,
                marks_possible=possible[clo],
                correct_count=got.correct_count,
                question_count=counts[clo],
            )
        students.append(StudentOutcome(student_id, student_name, MappingProxyType(per_clo)))

    return CourseOutcomes(
        clo_ids=tuple(clo_ids),
        marks_possible=MappingProxyType(possible),
        question_counts=MappingProxyType(counts),
        students=tuple(students),
        instruments=tuple(used),
    )


__all__ = [
    "MismatchPolicy",
    "CloResult",
    "StudentOutcome",
    "InstrumentResult",
    "CourseOutcomes",
    "score_instrument",
    "aggregate_instruments",
]
