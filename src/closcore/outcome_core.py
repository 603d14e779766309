#!/usr/bin/env python3
"""
closcore
outcome_core.py  —  Course-wide CLO achievement report

Pipeline:
  every instrument grid -> per-CLO marks (score_instrument)
                        -> per-student totals (aggregate_instruments)
                        -> achievement per benchmark threshold
                        -> direct / indirect rollup per outcome group
                        -> class spread and z-score standing per student
The engine always recomputes from the inputs it is given; keeping the last
result around is the caller's business.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .config_io import CourseConfig
from .errors import ConfigurationError, RosterMismatchError
from .tools.achievement_tools import (
    AchievementRow,
    OutcomeGroup,
    OutcomeGroupMap,
    compute_achievement,
    compute_benchmarks,
    rollup_outcomes,
)
from .tools.grid_tools import AnswerGrid
from .tools.outcome_tools import (
    CourseOutcomes,
    InstrumentResult,
    MismatchPolicy,
    aggregate_instruments,
    score_instrument,
)
from .tools.performance_tools import PerformanceAnalysis, analyze_performance
from .tools.roster_tools import Roster, normalize_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutcomeReport:
    course_name: str
    outcomes: CourseOutcomes
    instrument_results: Tuple[InstrumentResult, ...]
    achievement: Mapping[int, Tuple[AchievementRow, ...]]
    achievement_threshold: int
    benchmark: float
    groups: Tuple[OutcomeGroup, ...] = ()
    absent: Tuple[str, ...] = ()
    performance: Optional[PerformanceAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict/list/str/float structure for templating or JSON."""
        return {
            "course_name": self.course_name,
            "benchmark": self.benchmark,
            "achievement_threshold": self.achievement_threshold,
            "clo_ids": list(self.outcomes.clo_ids),
            "clo_marks_possible": dict(self.outcomes.marks_possible),
            "instruments": [
                {
                    "type": r.instrument.name,
                    "mode": r.instrument.mode.value,
                    "weight": r.instrument.weight,
                    "clos": {clo: list(nums) for clo, nums in r.instrument.clos.items()},
                    "unmatched": list(r.unmatched),
                }
                for r in self.instrument_results
            ],
            "absent": list(self.absent),
            "students": [
                {
                    "student_id": s.student_id,
                    "student_name": s.student_name,
                    "marks_scored": s.marks_scored,
                    "marks_possible": s.marks_possible,
                    "clos": {
                        clo: {
                            "marks_scored": res.marks_scored,
                            "marks_possible": res.marks_possible,
                            "correct_count": res.correct_count,
                            "question_count": res.question_count,
                        }
                        for clo, res in s.clo_results.items()
                    },
                }
                for s in self.outcomes.students
            ],
            "achievement": {
                str(t): [
                    {
                        "clo": row.clo,
                        "cutoff": row.cutoff,
                        "students_achieving": row.students_achieving,
                        "total_students": row.total_students,
                        "percentage_achieving": row.percentage_achieving,
                    }
                    for row in rows
                ]
                for t, rows in self.achievement.items()
            },
            "groups": [
                {
                    "name": g.name,
                    "mean_direct": g.mean_direct,
                    "mean_indirect": g.mean_indirect,
                    "rows": [
                        {
                            "clo": r.clo,
                            "mapped_codes": list(r.mapped_codes),
                            "weightage": r.weightage,
                            "direct": {"actual": r.direct_actual, "target": r.direct_target,
                                       "comment": r.direct_comment},
                            "indirect": {"actual": r.indirect_actual, "target": r.indirect_target,
                                         "comment": r.indirect_comment},
                        }
                        for r in g.rows
                    ],
                }
                for g in self.groups
            ],
            "performance": _performance_dict(self.performance) if self.performance is not None else None,
        }


def _grades_dict(grades) -> List[Dict[str, Any]]:
    return [{"grade": g.grade, "count": g.count, "percentage": g.percentage} for g in grades]


def _standing_dict(standing) -> Dict[str, Any]:
    return {"score": standing.score, "z_score": standing.z_score, "band": standing.band.value}


def _performance_dict(perf: PerformanceAnalysis) -> Dict[str, Any]:
    curve = perf.curve
    return {
        "instruments": [
            {
                "type": s.instrument,
                "num_students": s.num_students,
                "mean": s.mean,
                "std_dev": s.std_dev,
                "grades": _grades_dict(s.grades),
            }
            for s in perf.instruments
        ],
        "students": [
            {
                "student_id": s.student_id,
                "student_name": s.student_name,
                "instruments": {name: _standing_dict(st) for name, st in s.by_instrument.items()},
                "overall": _standing_dict(s.overall),
            }
            for s in perf.students
        ],
        "overall": {
            "mean": perf.overall_mean,
            "std_dev": perf.overall_std_dev,
            "grades": _grades_dict(perf.overall_grades),
        },
        "curve": {
            "ranges": [{"label": r.label, "count": r.count} for r in curve.ranges],
            "total_students": curve.total_students,
            "mean": curve.mean,
            "median": curve.median,
            "min": curve.minimum,
            "max": curve.maximum,
        },
    }


def score_course(
    course: CourseConfig,
    grids: Mapping[str, AnswerGrid],
    *,
    on_missing: MismatchPolicy,
) -> List[InstrumentResult]:
    """Score every configured instrument; each one needs a grid."""
    by_name = {name.strip().lower(): grid for name, grid in grids.items()}
    known = {inst.name.lower() for inst in course.instruments}
    extra = sorted(n for n in by_name if n not in known)
    if extra:
        raise ConfigurationError(f"Grids supplied for unknown instruments: {extra}")
    missing = [inst.name for inst in course.instruments if inst.name.lower() not in by_name]
    if missing:
        raise ConfigurationError(f"No grid supplied for instrument(s): {missing}")

    results = []
    for inst in course.instruments:
        results.append(score_instrument(
            inst, by_name[inst.name.lower()], course.roster, on_missing=on_missing, layout=course.layout,
        ))
    return results


def absent_from_grids(results: Sequence[InstrumentResult], roster: Roster) -> List[str]:
    """Roster identifiers that no instrument grid mentions."""
    seen = {normalize_identifier(s.student_id) for r in results for s in r.students}
    return [entry.identifier for entry in roster if entry.key not in seen]


def analyze_outcomes(
    course: CourseConfig,
    grids: Mapping[str, AnswerGrid],
    *,
    on_missing: MismatchPolicy,
    group_by: str = "category",
) -> OutcomeReport:
    """Full CLO report: per-student marks, achievement per threshold, outcome rollup."""
    results = score_course(course, grids, on_missing=on_missing)
    absent: List[str] = []
    if course.roster is not None:
        absent = absent_from_grids(results, course.roster)
        if absent and MismatchPolicy(on_missing) is not MismatchPolicy.SKIP:
            raise RosterMismatchError(missing_from_grid=absent)
        if absent:
            logger.warning("%d roster student(s) appear in no grid; they score 0: %s",
                           len(absent), ", ".join(absent))
    outcomes = aggregate_instruments(results, course.roster)

    achievement = {t: tuple(rows) for t, rows in compute_benchmarks(outcomes, course.thresholds).items()}
    direct_rows = achievement.get(course.achievement_threshold)
    if direct_rows is None:
        direct_rows = tuple(compute_achievement(outcomes, course.achievement_threshold))

    groups: Tuple[OutcomeGroup, ...] = ()
    if course.outcome_groups is not None:
        groups = tuple(rollup_outcomes(
            direct_rows,
            OutcomeGroupMap(course.outcome_groups),
            direct_target=course.benchmark,
            indirect=course.indirect,
            by=group_by,
        ))
    else:
        logger.info("No outcome group map configured; skipping rollup")

    logger.info("Outcome report for %s: %d student(s), %d CLO(s), %d instrument(s)",
                course.name or "course", len(outcomes.students), len(outcomes.clo_ids), len(results))
    return OutcomeReport(
        course_name=course.name,
        outcomes=outcomes,
        instrument_results=tuple(results),
        achievement=MappingProxyType(achievement),
        achievement_threshold=course.achievement_threshold,
        benchmark=course.benchmark,
        groups=groups,
        absent=tuple(absent),
        performance=analyze_performance(results, outcomes),
    )


__all__ = ["OutcomeReport", "score_course", "absent_from_grids", "analyze_outcomes"]
