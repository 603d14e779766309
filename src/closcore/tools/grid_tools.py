#!/usr/bin/env python3
"""
closcore
grid_tools.py
Parse exported answer grids into a question key, student rows and a
correctness matrix.

Grid convention ('Results Grid' sheet):
    row 0   header labels; question labels (Q1..Qn) start at answer_start_col
    row 1   answer key, aligned with the header
    row 2+  one row per student: name, ID, ..., answers
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from ..defaults import GRID_DEFAULTS, GridDefaults
from ..errors import MalformedGridError

logger = logging.getLogger(__name__)

AnswerGrid = Sequence[Sequence[Any]]

ANSWER_MODES = ("letters", "binary")


# ----------------------------
# Cell helpers
# ----------------------------

def cell_text(value: Any) -> str:
    """Spreadsheet cell as trimmed text; None/NaN become '' and 12.0 becomes '12'."""
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def cell_number(value: Any, what: str = "value") -> float:
    """Numeric cell (accepts '87.5%'); blank counts as 0."""
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return 0.0 if value != value else float(value)
    text = cell_text(value).replace("%", "").strip()
    if not text:
        return 0.0
    try:
        return float(text)
    except ValueError:
        raise MalformedGridError(f"Non-numeric {what}: {value!r}")


def is_binary_correct(value: Any) -> bool:
    """Pre-scored cell: correct when it holds the number 1."""
    text = cell_text(value)
    if not text:
        return False
    try:
        return float(text) == 1.0
    except ValueError:
        return False


def _question_label(value: Any) -> str:
    return re.sub(r"\s+", "", cell_text(value)).upper()


def _is_blank_row(row: Optional[Sequence[Any]]) -> bool:
    return not row or all(cell_text(c) == "" for c in row)


# ----------------------------
# Parsed structures
# ----------------------------

@dataclass(frozen=True)
class StudentRow:
    """One student line of the grid, padded to the header width."""
    row_index: int
    name: str
    student_id: str
    cells: Tuple[Any, ...]


@dataclass(frozen=True)
class StudentScore:
    identifier: str
    name: str
    raw_score: float
    total_possible: float
    percentage: float


@dataclass(frozen=True)
class ParsedGrid:
    header: Tuple[str, ...]
    questions: Tuple[str, ...]
    question_cols: Tuple[int, ...]
    key: Mapping[str, str]
    key_row: Tuple[Any, ...]
    students: Tuple[StudentRow, ...]
    layout: GridDefaults = field(default=GRID_DEFAULTS)

    @property
    def num_questions(self) -> int:
        return len(self.questions)

    @property
    def num_students(self) -> int:
        return len(self.students)

    def answers(self, student: StudentRow) -> List[Any]:
        return [student.cells[c] for c in self.question_cols]

    def column_index(self, label: str) -> Optional[int]:
        """Header column whose label matches ``label`` case-insensitively."""
        wanted = label.strip().lower()
        for idx, name in enumerate(self.header):
            if name.strip().lower() == wanted:
                return idx
        return None


# ----------------------------
# Extraction
# ----------------------------

def _check_shape(grid: AnswerGrid) -> None:
    if grid is None or len(grid) < 3:
        raise MalformedGridError(
            f"Answer grid needs a header row, a key row and at least one student row "
            f"(got {0 if grid is None else len(grid)} rows)"
        )
    if len(grid[0]) != len(grid[1]):
        raise MalformedGridError(
            f"Header row has {len(grid[0])} columns but answer key row has {len(grid[1])}"
        )


def extract_question_key(grid: AnswerGrid, answer_start_col: int = 6, question_prefix: str = "Q") -> Dict[str, str]:
    """
    Map question label -> correct answer (upper case).

    Only header cells at or after ``answer_start_col`` whose label starts with
    ``question_prefix`` are questions.
    """
    _check_shape(grid)
    header, key_row = grid[0], grid[1]
    prefix = question_prefix.upper()
    keys: Dict[str, str] = {}
    for col in range(answer_start_col, len(header)):
        label = _question_label(header[col])
        if not label.startswith(prefix):
            continue
        if label in keys:
            raise MalformedGridError(f"Duplicate question label '{label}' in header")
        keys[label] = cell_text(key_row[col]).upper()
    return keys


def parse_answer_grid(grid: AnswerGrid, layout: GridDefaults = GRID_DEFAULTS) -> ParsedGrid:
    """Validate the grid shape and split it into key and student rows."""
    key = extract_question_key(grid, layout.answer_start_col, layout.question_prefix)
    if not key:
        raise MalformedGridError(
            f"No question columns found from column {layout.answer_start_col} "
            f"(expected labels starting with '{layout.question_prefix}')"
        )

    header = tuple(cell_text(c) for c in grid[0])
    width = len(header)
    prefix = layout.question_prefix.upper()
    question_cols = tuple(
        col for col in range(layout.answer_start_col, width)
        if _question_label(grid[0][col]).startswith(prefix)
    )

    students: List[StudentRow] = []
    for idx in range(2, len(grid)):
        row = grid[idx]
        if _is_blank_row(row):
            logger.debug("Skipping blank grid row %d", idx)
            continue
        if len(row) > width:
            raise MalformedGridError(
                f"Row {idx} has {len(row)} columns, wider than the {width}-column header"
            )
        cells = tuple(row) + ("",) * (width - len(row))
        students.append(StudentRow(
            row_index=idx,
            name=cell_text(cells[layout.name_col]) if layout.name_col < width else "",
            student_id=cell_text(cells[layout.id_col]) if layout.id_col < width else "",
            cells=cells,
        ))

    if not students:
        raise MalformedGridError("Answer grid has no student rows")

    return ParsedGrid(
        header=header,
        questions=tuple(key),
        question_cols=question_cols,
        key=MappingProxyType(dict(key)),
        key_row=tuple(grid[1]),
        students=tuple(students),
        layout=layout,
    )


def prepare_correctness_matrix(parsed: ParsedGrid, answers_mode: str = "letters") -> Tuple[pd.DataFrame, pd.Series]:
    """
    Build the 0/1 item matrix (rows = students, columns = questions) and the
    per-student total of correct answers.

    answers_mode:
      letters  compare each answer with the key (case-insensitive)
      binary   cells are already scored 1/0
    """
    if answers_mode not in ANSWER_MODES:
        raise ValueError(f"answers_mode must be one of {ANSWER_MODES}, got '{answers_mode}'")

    blank_keys = [q for q, ans in parsed.key.items() if not ans]
    if answers_mode == "letters" and blank_keys:
        logger.warning("Answer key is blank for %s; nobody can score on them", ", ".join(blank_keys))

    rows = []
    for student in parsed.students:
        answers = parsed.answers(student)
        if answers_mode == "binary":
            rows.append([int(is_binary_correct(a)) for a in answers])
        else:
            marks = []
            for q, a in zip(parsed.questions, answers):
                ans = cell_text(a).upper()
                marks.append(int(bool(ans) and ans == parsed.key[q]))
            rows.append(marks)

    index = pd.Index([s.student_id for s in parsed.students], name="student_id")
    items_num = pd.DataFrame(rows, index=index, columns=list(parsed.questions), dtype=int)
    total_scores = items_num.sum(axis=1).astype(float)
    total_scores.name = "total"
    return items_num, total_scores


def extract_student_scores(parsed: ParsedGrid, total_scores: Optional[pd.Series] = None) -> List[StudentScore]:
    """
    Per-student raw score and percentage.

    The grid's score / percent columns win when present; otherwise the score is
    the number of correct answers (``total_scores``) out of the question count.
    A grid with a Score column but no Percent header carries its percentage
    in ``layout.percent_col`` (column C of the export); the score may then be
    in marks rather than a count of correct answers.
    """
    layout = parsed.layout
    score_col = parsed.column_index(layout.score_label) if layout.score_label else None
    percent_col = parsed.column_index(layout.percent_label) if layout.percent_label else None
    if percent_col is None and score_col is not None and _is_info_col(parsed, layout.percent_col):
        percent_col = layout.percent_col
    k = parsed.num_questions

    if score_col is None and total_scores is None:
        _, total_scores = prepare_correctness_matrix(parsed)

    scores: List[StudentScore] = []
    for pos, student in enumerate(parsed.students):
        if score_col is not None:
            raw = cell_number(student.cells[score_col], f"score for '{student.student_id}'")
        else:
            raw = float(total_scores.iloc[pos])
        total = float(k)
        if percent_col is not None and cell_text(student.cells[percent_col]):
            pct = cell_number(student.cells[percent_col], f"percentage for '{student.student_id}'")
            if score_col is not None and pct > 0:
                total = round(raw / pct * 100, 2)
        else:
            pct = raw / k * 100 if k else 0.0
        if not 0 <= pct <= 100:
            raise MalformedGridError(
                f"Percentage for '{student.student_id}' (row {student.row_index}) is outside 0-100: {pct:g}"
            )
        scores.append(StudentScore(
            identifier=student.student_id,
            name=student.name,
            raw_score=raw,
            total_possible=total,
            percentage=pct,
        ))
    return scores


def _is_info_col(parsed: ParsedGrid, col: int) -> bool:
    return 0 <= col < len(parsed.header) and col not in parsed.question_cols


__all__ = [
    "AnswerGrid",
    "ANSWER_MODES",
    "cell_text",
    "cell_number",
    "is_binary_correct",
    "StudentRow",
    "StudentScore",
    "ParsedGrid",
    "extract_question_key",
    "parse_answer_grid",
    "prepare_correctness_matrix",
    "extract_student_scores",
]
