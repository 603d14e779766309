#!/usr/bin/env python3
"""
closcore
performance_tools.py
Student performance against the class: spread per instrument, z-score
bands, grade distributions and the score-range curve

Scores are percentages of the marks possible. Spread is the population
standard deviation. A student is Low below -1 sigma, High above +1 sigma
and Average in between (both edges inclusive).
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..defaults import PERFORMANCE_BAND_Z, SCORE_RANGE_EDGES
from .grade_tools import GradeCount, distribute_grades
from .outcome_tools import CourseOutcomes, InstrumentResult, StudentOutcome
from .roster_tools import normalize_identifier

logger = logging.getLogger(__name__)


class PerformanceBand(str, Enum):
    LOW = "Low"
    AVERAGE = "Average"
    HIGH = "High"


@dataclass(frozen=True)
class Standing:
    score: float
    z_score: Optional[float]
    band: PerformanceBand


@dataclass(frozen=True)
class InstrumentSpread:
    instrument: str
    num_students: int
    mean: float
    std_dev: float
    grades: Tuple[GradeCount, ...]


@dataclass(frozen=True)
class StudentPerformance:
    student_id: str
    student_name: str
    by_instrument: Mapping[str, Standing]
    overall: Standing


@dataclass(frozen=True)
class ScoreRange:
    low: float
    high: float
    count: int

    @property
    def label(self) -> str:
        return f"{self.low:g}-{self.high:g}"


@dataclass(frozen=True)
class PerformanceCurve:
    ranges: Tuple[ScoreRange, ...]
    total_students: int
    mean: Optional[float] = None
    median: Optional[float] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


@dataclass(frozen=True)
class PerformanceAnalysis:
    instruments: Tuple[InstrumentSpread, ...]
    students: Tuple[StudentPerformance, ...]
    overall_mean: float
    overall_std_dev: float
    overall_grades: Tuple[GradeCount, ...]
    curve: PerformanceCurve


# ----------------------------
# Standings
# ----------------------------

def performance_band(z_score: Optional[float], cutoff: float = PERFORMANCE_BAND_Z) -> PerformanceBand:
    """Low below -cutoff, High above +cutoff; an undefined z-score is Average."""
    if z_score is None or z_score != z_score:
        return PerformanceBand.AVERAGE
    if z_score < -cutoff:
        return PerformanceBand.LOW
    if z_score <= cutoff:
        return PerformanceBand.AVERAGE
    return PerformanceBand.HIGH


def spread(scores: pd.Series) -> Tuple[float, float]:
    """Mean and population standard deviation; (0, 0) for no scores."""
    if scores.empty:
        return 0.0, 0.0
    return float(scores.mean()), float(scores.std(ddof=0))


def standings(scores: pd.Series) -> Dict[str, Standing]:
    """
    Standing of every score against the whole series.

    When all scores are equal the z-score is undefined; it is reported as
    None and the student counts as Average.
    """
    mean, std = spread(scores)
    flat = math.isclose(std, 0.0, abs_tol=1e-9)
    out: Dict[str, Standing] = {}
    for key, score in scores.items():
        z = None if flat else (float(score) - mean) / std
        out[key] = Standing(
            score=round(float(score), 2),
            z_score=None if z is None else round(z, 4),
            band=performance_band(z),
        )
    return out


# ----------------------------
# Performance curve
# ----------------------------

def score_ranges(scores: Sequence[float], edges: Sequence[float] = SCORE_RANGE_EDGES) -> List[ScoreRange]:
    """Students per [low, high) bucket; the top bucket also takes its upper edge."""
    values = np.asarray(list(scores), dtype=float)
    counts, _ = np.histogram(values, bins=np.asarray(edges, dtype=float))
    outside = int(values.size - counts.sum())
    if outside:
        logger.warning("%d score(s) fall outside %g-%g and are not bucketed", outside, edges[0], edges[-1])
    return [ScoreRange(low=float(lo), high=float(hi), count=int(n)) for lo, hi, n in zip(edges, edges[1:], counts)]


def performance_curve(scores: Sequence[float]) -> PerformanceCurve:
    """Bucket counts plus mean, median, min and max (1 decimal)."""
    series = pd.Series(list(scores), dtype=float)
    ranges = tuple(score_ranges(series.tolist()))
    if series.empty:
        return PerformanceCurve(ranges=ranges, total_students=0)
    return PerformanceCurve(
        ranges=ranges,
        total_students=int(series.size),
        mean=round(float(series.mean()), 1),
        median=round(float(series.median()), 1),
        minimum=round(float(series.min()), 1),
        maximum=round(float(series.max()), 1),
    )


# ----------------------------
# Whole course
# ----------------------------

def _percentages(students: Sequence[StudentOutcome]) -> pd.Series:
    return pd.Series(
        [s.percentage for s in students],
        index=[normalize_identifier(s.student_id) for s in students],
        dtype=float,
    )


def analyze_performance(results: Sequence[InstrumentResult], outcomes: CourseOutcomes) -> PerformanceAnalysis:
    """
    Spread and standings per instrument over the students in that grid, and
    an overall standing from each student's course percentage (instrument
    weights applied, a missed instrument counting 0).
    """
    spreads: List[InstrumentSpread] = []
    per_student: Dict[str, Dict[str, Standing]] = {}
    for result in results:
        inst = result.instrument
        if inst.weight == 0 or not inst.clos:
            continue
        scores = _percentages(result.students)
        mean, std = spread(scores)
        spreads.append(InstrumentSpread(
            instrument=inst.name,
            num_students=int(scores.size),
            mean=round(mean, 2),
            std_dev=round(std, 2),
            grades=tuple(distribute_grades(scores.tolist())),
        ))
        for key, standing in standings(scores).items():
            per_student.setdefault(key, {})[inst.name] = standing
        logger.debug("%s: mean %.2f, sigma %.2f over %d student(s)", inst.name, mean, std, scores.size)

    overall_scores = _percentages(outcomes.students)
    overall = standings(overall_scores)
    overall_mean, overall_std = spread(overall_scores)

    students: List[StudentPerformance] = []
    for student in outcomes.students:
        key = normalize_identifier(student.student_id)
        students.append(StudentPerformance(
            student_id=student.student_id,
            student_name=student.student_name,
            by_instrument=MappingProxyType(per_student.get(key, {})),
            overall=overall[key],
        ))

    return PerformanceAnalysis(
        instruments=tuple(spreads),
        students=tuple(students),
        overall_mean=round(overall_mean, 2),
        overall_std_dev=round(overall_std, 2),
        overall_grades=tuple(distribute_grades(overall_scores.tolist())),
        curve=performance_curve(overall_scores.tolist()),
    )


__all__ = [
    "PerformanceBand",
    "Standing",
    "InstrumentSpread",
    "StudentPerformance",
    "ScoreRange",
    "PerformanceCurve",
    "PerformanceAnalysis",
    "performance_band",
    "spread",
    "standings",
    "score_ranges",
    "performance_curve",
    "analyze_performance",
]
