#!/usr/bin/env python3
"""
closcore
kr_core.py  —  Single-instrument item analysis and KR-20 reliability report

Pipeline:
  grid -> question key + student rows -> 0/1 item matrix
       -> p / q / pq per item, classification, discrimination
       -> KR-20 (population variance of totals), KR-21, verdict
       -> letter-grade distribution and pass/fail
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .defaults import GRID_DEFAULTS, ITEM_DEFAULTS, GridDefaults, ItemDefaults
from .tools.grade_tools import GradeCount, PassFailSummary, distribute_grades, summarize_pass_fail
from .tools.grid_tools import (
    AnswerGrid,
    StudentScore,
    extract_student_scores,
    parse_answer_grid,
    prepare_correctness_matrix,
)
from .tools.roster_tools import Roster, validate_roster
from .tools.stats_tools import (
    AcceptanceSummary,
    ItemGroup,
    ItemStat,
    compute_discrimination,
    compute_item_statistics,
    extract_item_analysis,
    group_by_classification,
    kr20,
    kr21,
    reliability_verdict,
    score_variance,
    summarize_acceptance,
    total_pq,
)

logger = logging.getLogger(__name__)


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    return value if value is not None and math.isfinite(value) else None


@dataclass(frozen=True)
class ReliabilityReport:
    num_questions: int
    num_students: int
    total_pq: float
    variance: float
    mean_score: float
    kr20: float
    kr21: float
    verdict: str
    question_key: Mapping[str, str]
    item_stats: Tuple[ItemStat, ...]
    item_groups: Tuple[ItemGroup, ...]
    acceptance: AcceptanceSummary
    grades: Tuple[GradeCount, ...]
    pass_fail: PassFailSummary
    student_scores: Tuple[StudentScore, ...]

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict/list/str/float structure for templating or JSON."""
        return {
            "num_questions": self.num_questions,
            "num_students": self.num_students,
            "total_pq": self.total_pq,
            "variance": self.variance,
            "mean_score": self.mean_score,
            "kr20": self.kr20,
            "kr21": self.kr21,
            "verdict": self.verdict,
            "question_key": dict(self.question_key),
            "items": [
                {
                    "question": s.question,
                    "p": s.p,
                    "q": s.q,
                    "pq": s.pq,
                    "discrimination": _finite_or_none(s.discrimination),
                    "classification": s.classification.value,
                }
                for s in self.item_stats
            ],
            "item_groups": [
                {
                    "classification": g.classification.label,
                    "questions": list(g.questions),
                    "percentage": g.percentage,
                    "comment": g.comment,
                }
                for g in self.item_groups
            ],
            "acceptance": {
                "accepted": self.acceptance.accepted,
                "rejected": self.acceptance.rejected,
                "accepted_pct": self.acceptance.accepted_pct,
                "rejected_pct": self.acceptance.rejected_pct,
            },
            "grades": [{"grade": g.grade, "count": g.count, "percentage": g.percentage} for g in self.grades],
            "pass_fail": {
                "attended": self.pass_fail.attended,
                "passed": self.pass_fail.passed,
                "failed": self.pass_fail.failed,
                "pass_pct": self.pass_fail.pass_pct,
                "fail_pct": self.pass_fail.fail_pct,
            },
            "students": [
                {
                    "identifier": s.identifier,
                    "name": s.name,
                    "raw_score": s.raw_score,
                    "total_possible": s.total_possible,
                    "percentage": s.percentage,
                }
                for s in self.student_scores
            ],
        }


def analyze_reliability(
    grid: AnswerGrid,
    *,
    layout: GridDefaults = GRID_DEFAULTS,
    answers_mode: str = "letters",
    roster: Optional[Roster] = None,
    discrimination: Optional[Mapping[str, float]] = None,
    item_analysis_rows: Optional[Sequence[Sequence[Any]]] = None,
    compute_point_biserial: bool = False,
    item_params: ItemDefaults = ITEM_DEFAULTS,
) -> ReliabilityReport:
    """
    Build the reliability report for one answer grid.

    Discrimination indices, used to flag Poor items, come from (first match):
    ``discrimination``, an exported item-analysis sheet (``item_analysis_rows``),
    or the point-biserial computed from the grid when ``compute_point_biserial``.
    Without any of them items are classified on difficulty alone.
    """
    parsed = parse_answer_grid(grid, layout)
    if roster is not None:
        validate_roster((s.student_id for s in parsed.students), roster)

    items_num, totals = prepare_correctness_matrix(parsed, answers_mode)

    if discrimination is None and item_analysis_rows is not None:
        discrimination = extract_item_analysis(item_analysis_rows)
    elif discrimination is None and compute_point_biserial:
        discrimination = compute_discrimination(items_num, totals)

    stats = compute_item_statistics(items_num, discrimination, item_params)
    sum_pq = total_pq(stats)
    scores = extract_student_scores(parsed, totals)
    raw = [s.raw_score for s in scores]
    variance = score_variance(raw)
    mean_score = sum(raw) / len(raw) if raw else 0.0
    k = parsed.num_questions

    kr20_val = kr20(k, sum_pq, variance)
    kr21_val = kr21(k, mean_score, variance)
    verdict = reliability_verdict(kr20_val)
    logger.info("KR-20 = %.3f over %d items / %d students (%s)", kr20_val, k, len(scores), verdict)

    percentages = [s.percentage for s in scores]
    return ReliabilityReport(
        num_questions=k,
        num_students=len(scores),
        total_pq=sum_pq,
        variance=variance,
        mean_score=mean_score,
        kr20=kr20_val,
        kr21=kr21_val,
        verdict=verdict,
        question_key=parsed.key,
        item_stats=tuple(stats),
        item_groups=tuple(group_by_classification(stats)),
        acceptance=summarize_acceptance(stats),
        grades=tuple(distribute_grades(percentages)),
        pass_fail=summarize_pass_fail(percentages),
        student_scores=tuple(scores),
    )


__all__ = ["ReliabilityReport", "analyze_reliability"]
