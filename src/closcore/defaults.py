#!/usr/bin/env python3
"""
closcore
defaults.py  —  Central defaults for grid layout, item analysis and benchmarks

Every tunable lives in a frozen dataclass with a module-level instance.
Callers derive variants with the apply_*_overrides helpers, which ignore
``None`` so CLI options can be passed straight through.
"""

from __future__ import annotations
import os
from dataclasses import dataclass, replace
from typing import Tuple


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# ----------------------------
# Answer grid layout
# ----------------------------

@dataclass(frozen=True)
class GridDefaults:
    """Column conventions of an exported 'Results Grid' sheet."""
    answer_start_col: int = 6      # Q1 lives in column G
    question_prefix: str = "Q"
    name_col: int = 0              # Student name
    id_col: int = 1                # Student ID number
    score_label: str = "Score"     # header of the raw-score column, if any
    percent_label: str = "Percent" # header of the percentage column, if any
    percent_col: int = 2           # percentage column (C) when no header carries the label


GRID_DEFAULTS = GridDefaults(answer_start_col=_env_int("CLOSCORE_ANSWER_START_COL", 6))


def apply_grid_overrides(base: GridDefaults = GRID_DEFAULTS, **overrides) -> GridDefaults:
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})


# ----------------------------
# Item analysis / reliability
# ----------------------------

@dataclass(frozen=True)
class ItemDefaults:
    # Difficulty bands on p*100; lower bounds inclusive.
    difficult_min: float = 21.0
    good_min: float = 31.0
    easy_min: float = 71.0
    very_easy_min: float = 81.0
    # Discrimination at or below this forces an item into "Poor".
    poor_discrimination: float = -0.01


ITEM_DEFAULTS = ItemDefaults()


def apply_item_overrides(base: ItemDefaults = ITEM_DEFAULTS, **overrides) -> ItemDefaults:
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})


# Ordered top-down; first cutoff the coefficient reaches wins.
KR20_VERDICTS: Tuple[Tuple[float, str], ...] = (
    (0.90, "Excellent reliability; at the level of the best standardized tests."),
    (0.85, "Exam seems to be very good and reliable."),
    (0.80, "Exam seems to be good and reliable."),
    (0.71, "Value lies within the marginally acceptable range. Items could be improved."),
    (0.61, "Somewhat low. Supplement with other measures for grading."),
    (0.51, "Revision needed. Supplement with more tests."),
)
KR20_FALLBACK_VERDICT = "Questionable reliability."


# ----------------------------
# Grades
# ----------------------------

# (grade, minimum percentage) from best to worst; F catches everything else.
GRADE_BANDS: Tuple[Tuple[str, float], ...] = (
    ("A+", 95.0),
    ("A", 90.0),
    ("B+", 85.0),
    ("B", 80.0),
    ("C+", 75.0),
    ("C", 70.0),
    ("D+", 65.0),
    ("D", 60.0),
    ("F", 0.0),
)
FAIL_GRADE = "F"


# ----------------------------
# CLO benchmarks
# ----------------------------

@dataclass(frozen=True)
class BenchmarkDefaults:
    thresholds: Tuple[int, ...] = (60, 70, 80, 90)
    achievement_threshold: int = 60   # threshold whose rows feed the rollup
    direct_target: float = 60.0       # course benchmark for direct assessment
    indirect_target: float = 80.0     # survey target, fixed by policy
    decimals: int = 2


BENCHMARK_DEFAULTS = BenchmarkDefaults()


def apply_benchmark_overrides(base: BenchmarkDefaults = BENCHMARK_DEFAULTS, **overrides) -> BenchmarkDefaults:
    return replace(base, **{k: v for k, v in overrides.items() if v is not None})


# ----------------------------
# Student performance
# ----------------------------

# |z| beyond this is Low / High; within it (inclusive) is Average.
PERFORMANCE_BAND_Z = 1.0

# Score-range buckets for the performance curve; the last one includes 100.
SCORE_RANGE_EDGES: Tuple[float, ...] = (0, 60, 65, 70, 75, 80, 85, 90, 95, 100)


__all__ = [
    "GridDefaults", "GRID_DEFAULTS", "apply_grid_overrides",
    "ItemDefaults", "ITEM_DEFAULTS", "apply_item_overrides",
    "KR20_VERDICTS", "KR20_FALLBACK_VERDICT",
    "GRADE_BANDS", "FAIL_GRADE",
    "BenchmarkDefaults", "BENCHMARK_DEFAULTS", "apply_benchmark_overrides",
    "PERFORMANCE_BAND_Z", "SCORE_RANGE_EDGES",
]
