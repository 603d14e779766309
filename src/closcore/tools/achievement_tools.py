#!/usr/bin/env python3
"""
closcore
achievement_tools.py
CLO achievement rates against benchmark thresholds and the direct/indirect
rollup per outcome group (knowledge / skills / values, or PLO)
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config_io import normalize_clo_id
from ..defaults import BENCHMARK_DEFAULTS
from ..errors import ConfigurationError
from .outcome_tools import CourseOutcomes

logger = logging.getLogger(__name__)

CATEGORY_PREFIXES = {"K": "knowledge", "S": "skills", "V": "values"}
CATEGORIES = ("knowledge", "skills", "values")
GROUP_BY = ("category", "plo")


@dataclass(frozen=True)
class AchievementRow:
    clo: str
    threshold: int
    marks_possible: float
    cutoff: float
    students_achieving: int
    total_students: int
    percentage_achieving: float


# ----------------------------
# Benchmarks
# ----------------------------

def _check_threshold(threshold: float) -> None:
    if isinstance(threshold, bool) or not (0 < threshold <= 100):
        raise ValueError(f"Benchmark threshold must be within (0, 100], got {threshold!r}")


def compute_achievement(outcomes: CourseOutcomes, threshold: int) -> List[AchievementRow]:
    """
    For each CLO: cutoff = marks_possible * threshold / 100 and the share of
    students whose CLO marks reach it.
    """
    _check_threshold(threshold)
    decimals = BENCHMARK_DEFAULTS.decimals
    total = len(outcomes.students)
    rows: List[AchievementRow] = []
    for clo in outcomes.clo_ids:
        possible = outcomes.marks_possible[clo]
        cutoff = possible * threshold / 100
        if possible > 0:
            achieving = sum(1 for s in outcomes.students if s.clo_results[clo].marks_scored >= cutoff)
        else:
            logger.warning("%s has no marks possible; reporting 0%% achieving", clo)
            achieving = 0
        rows.append(AchievementRow(
            clo=clo,
            threshold=int(threshold),
            marks_possible=possible,
            cutoff=round(cutoff, decimals),
            students_achieving=achieving,
            total_students=total,
            percentage_achieving=round(achieving / total * 100, decimals) if total else 0.0,
        ))
    return rows


def compute_benchmarks(
    outcomes: CourseOutcomes,
    thresholds: Iterable[int] = BENCHMARK_DEFAULTS.thresholds,
) -> Dict[int, List[AchievementRow]]:
    return {int(t): compute_achievement(outcomes, t) for t in thresholds}


# ----------------------------
# Outcome groups
# ----------------------------

class OutcomeGroupMap:
    """
    Static CLO -> group mapping. Codes are PLO codes whose first letter names
    the category (K1, S2, V1) or bare category names ('knowledge').
    """

    def __init__(self, mapping: Mapping[str, Iterable[str]]):
        self._codes: Dict[str, Tuple[str, ...]] = {}
        for clo, codes in mapping.items():
            if isinstance(codes, str):
                codes = [codes]
            cleaned = []
            for code in codes:
                code = str(code).strip()
                if not code:
                    continue
                code = code.lower() if code.lower() in CATEGORIES else code.upper()
                if code not in cleaned:
                    cleaned.append(code)
            self._codes[normalize_clo_id(clo)] = tuple(cleaned)

    @property
    def clo_ids(self) -> List[str]:
        return list(self._codes)

    def codes(self, clo: str) -> Tuple[str, ...]:
        return self._codes.get(normalize_clo_id(clo), ())

    def categories(self, clo: str) -> List[str]:
        found = set()
        for code in self.codes(clo):
            if code in CATEGORIES:
                found.add(code)
            elif code[:1] in CATEGORY_PREFIXES:
                found.add(CATEGORY_PREFIXES[code[:1]])
        return [c for c in CATEGORIES if c in found]

    def plo_codes(self) -> List[str]:
        """Every code in first-appearance order."""
        out: Dict[str, None] = {}
        for codes in self._codes.values():
            for code in codes:
                out.setdefault(code, None)
        return list(out)

    def validate(self, clo_ids: Iterable[str]) -> None:
        """Both sides must agree: no unknown CLO in the map, no unmapped CLO in the course."""
        defined = [normalize_clo_id(c) for c in clo_ids]
        undefined = [c for c in self._codes if c not in defined]
        unmapped = [c for c in defined if c not in self._codes]
        problems = []
        if undefined:
            problems.append(f"CLOs in the outcome group map but in no instrument: {undefined}")
        if unmapped:
            problems.append(f"CLOs missing from the outcome group map: {unmapped}")
        if problems:
            raise ConfigurationError("; ".join(problems))


@dataclass(frozen=True)
class RollupRow:
    clo: str
    mapped_codes: Tuple[str, ...]
    weightage: float
    direct_actual: float
    direct_target: float
    direct_comment: str
    indirect_actual: Optional[float]
    indirect_target: float
    indirect_comment: str


@dataclass(frozen=True)
class OutcomeGroup:
    name: str
    rows: Tuple[RollupRow, ...]

    @property
    def mean_direct(self) -> Optional[float]:
        if not self.rows:
            return None
        return round(sum(r.direct_actual for r in self.rows) / len(self.rows), 2)

    @property
    def mean_indirect(self) -> Optional[float]:
        vals = [r.indirect_actual for r in self.rows if r.indirect_actual is not None]
        return round(sum(vals) / len(vals), 2) if vals else None


def deviation_comment(actual: Optional[float], target: float) -> str:
    if actual is None:
        return "-"
    if actual == target:
        return "The actual level equals the target level"
    delta = actual - target
    relation = "greater" if delta > 0 else "less"
    return f"The actual level is {relation} than the target level by {abs(delta):.1f}%"


def rollup_outcomes(
    rows: Sequence[AchievementRow],
    group_map: OutcomeGroupMap,
    *,
    direct_target: float = BENCHMARK_DEFAULTS.direct_target,
    indirect: Optional[Mapping[str, float]] = None,
    indirect_target: float = BENCHMARK_DEFAULTS.indirect_target,
    by: str = "category",
) -> List[OutcomeGroup]:
    """
    Pair each CLO's direct achievement (``rows`` for one threshold) with its
    indirect (survey) achievement and group the pairs.

    by="category" gives knowledge / skills / values groups (always all three);
    by="plo" gives one group per PLO code in map order. A CLO mapped to
    several groups appears in each.
    """
    if by not in GROUP_BY:
        raise ValueError(f"by must be one of {GROUP_BY}, got '{by}'")
    if len({r.threshold for r in rows}) > 1:
        raise ValueError("rollup_outcomes expects achievement rows for a single threshold")

    group_map.validate(r.clo for r in rows)
    indirect = {normalize_clo_id(k): float(v) for k, v in (indirect or {}).items()}
    unknown_indirect = [c for c in indirect if c not in group_map.clo_ids]
    if unknown_indirect:
        raise ConfigurationError(f"Indirect results for CLOs no instrument defines: {unknown_indirect}")

    rollup_rows: Dict[str, RollupRow] = {}
    for r in rows:
        clo = normalize_clo_id(r.clo)
        indirect_actual = indirect.get(clo)
        rollup_rows[clo] = RollupRow(
            clo=r.clo,
            mapped_codes=group_map.codes(clo),
            weightage=r.marks_possible,
            direct_actual=r.percentage_achieving,
            direct_target=float(direct_target),
            direct_comment=deviation_comment(r.percentage_achieving, float(direct_target)),
            indirect_actual=indirect_actual,
            indirect_target=float(indirect_target),
            indirect_comment=deviation_comment(indirect_actual, float(indirect_target)),
        )

    if by == "category":
        uncategorised = [c for c in rollup_rows if not group_map.categories(c)]
        if uncategorised:
            raise ConfigurationError(
                f"CLOs mapped to no knowledge/skills/values code: {uncategorised}"
            )
        return [
            OutcomeGroup(name=cat, rows=tuple(row for c, row in rollup_rows.items() if cat in group_map.categories(c)))
            for cat in CATEGORIES
        ]

    return [
        OutcomeGroup(name=code, rows=tuple(row for c, row in rollup_rows.items() if code in group_map.codes(c)))
        for code in group_map.plo_codes()
        if code not in CATEGORIES
    ]


__all__ = [
    "AchievementRow",
    "compute_achievement",
    "compute_benchmarks",
    "OutcomeGroupMap",
    "RollupRow",
    "OutcomeGroup",
    "deviation_comment",
    "rollup_outcomes",
]
