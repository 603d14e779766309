#!/usr/bin/env python3
"""
closcore
grade_tools.py
Letter grades, grade distribution and pass/fail summary
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Sequence

from ..defaults import FAIL_GRADE, GRADE_BANDS


@dataclass(frozen=True)
class GradeCount:
    grade: str
    count: int
    percentage: float


@dataclass(frozen=True)
class PassFailSummary:
    attended: int
    passed: int
    failed: int
    pass_pct: float
    fail_pct: float


def assign_grade(percentage: float) -> str:
    """A+ for >=95 down to D for >=60; anything lower (or negative) is F."""
    for grade, minimum in GRADE_BANDS:
        if percentage >= minimum and grade != FAIL_GRADE:
            return grade
    return FAIL_GRADE


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def distribute_grades(percentages: Iterable[float]) -> List[GradeCount]:
    """Count and share of students per band, bands always listed A+ .. F."""
    grades = [assign_grade(p) for p in percentages]
    total = len(grades)
    return [
        GradeCount(grade=g, count=grades.count(g), percentage=_pct(grades.count(g), total))
        for g, _ in GRADE_BANDS
    ]


def summarize_pass_fail(percentages: Sequence[float]) -> PassFailSummary:
    total = len(percentages)
    failed = sum(1 for p in percentages if assign_grade(p) == FAIL_GRADE)
    passed = total - failed
    return PassFailSummary(
        attended=total,
        passed=passed,
        failed=failed,
        pass_pct=_pct(passed, total),
        fail_pct=_pct(failed, total),
    )


__all__ = ["GradeCount", "PassFailSummary", "assign_grade", "distribute_grades", "summarize_pass_fail"]
