#!/usr/bin/env python3
"""
closcore
stats_tools.py
Item difficulty, discrimination and test reliability (KR-20 / KR-21)

Item classification follows the department's item-analysis guide:
    p*100 in [0,21)   Very Difficult
              [21,31)  Difficult
              [31,71)  Good
              [71,81)  Easy
              [81,100] Very Easy
Items with a discrimination index at or below the poor threshold are Poor
whatever their difficulty.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..defaults import ITEM_DEFAULTS, ItemDefaults, KR20_FALLBACK_VERDICT, KR20_VERDICTS
from ..errors import DegenerateInputError
from .grid_tools import cell_text

logger = logging.getLogger(__name__)


class ItemClass(str, Enum):
    POOR = "Poor"
    VERY_DIFFICULT = "Very Difficult"
    DIFFICULT = "Difficult"
    GOOD = "Good"
    EASY = "Easy"
    VERY_EASY = "Very Easy"

    @property
    def label(self) -> str:
        if self is ItemClass.POOR:
            return "Poor (Bad) Questions"
        return f"{self.value} Questions"

    @property
    def accepted(self) -> bool:
        return self in (ItemClass.GOOD, ItemClass.EASY, ItemClass.DIFFICULT)


ITEM_COMMENTS: Dict[ItemClass, str] = {
    ItemClass.POOR: "Discrimination is too low. Reject or revise these items before re-use.",
    ItemClass.VERY_DIFFICULT: "Check the keys of these items. Items should be rejected.",
    ItemClass.DIFFICULT: "Check the keys of these items.",
    ItemClass.GOOD: "Items could be stored in the question bank for further use.",
    ItemClass.EASY: "Revise these items before re-use.",
    ItemClass.VERY_EASY: "Reject or revise these items before re-use.",
}


@dataclass(frozen=True)
class ItemStat:
    question: str
    p: float
    q: float
    pq: float
    classification: ItemClass
    discrimination: Optional[float] = None

    @property
    def difficulty_pct(self) -> float:
        return self.p * 100


@dataclass(frozen=True)
class ItemGroup:
    classification: ItemClass
    questions: Tuple[str, ...]
    percentage: float

    @property
    def comment(self) -> str:
        return ITEM_COMMENTS[self.classification]


@dataclass(frozen=True)
class AcceptanceSummary:
    accepted: int
    rejected: int
    accepted_pct: float
    rejected_pct: float


# ----------------------------
# Classification
# ----------------------------

def classify_item(p: float, discrimination: Optional[float] = None, params: ItemDefaults = ITEM_DEFAULTS) -> ItemClass:
    """Bucket an item by difficulty ``p`` (0..1), forcing Poor on negative discrimination."""
    if p is None or not (0.0 <= p <= 1.0):
        raise ValueError(f"Item difficulty must be within [0, 1], got {p!r}")
    if discrimination is not None and not math.isnan(discrimination) and discrimination <= params.poor_discrimination:
        return ItemClass.POOR

    pct = round(p * 100, 9)  # 0.29*100 == 28.999999999999996
    if pct < params.difficult_min:
        return ItemClass.VERY_DIFFICULT
    if pct < params.good_min:
        return ItemClass.DIFFICULT
    if pct < params.easy_min:
        return ItemClass.GOOD
    if pct < params.very_easy_min:
        return ItemClass.EASY
    return ItemClass.VERY_EASY


# ----------------------------
# Item statistics
# ----------------------------

def compute_item_statistics(
    items_num: pd.DataFrame,
    discrimination: Optional[Mapping[str, float]] = None,
    params: ItemDefaults = ITEM_DEFAULTS,
) -> List[ItemStat]:
    """p, q and pq per question column of a 0/1 item matrix."""
    n_students = len(items_num.index)
    discrimination = discrimination or {}
    stats: List[ItemStat] = []
    for col in items_num.columns:
        correct = int(items_num[col].sum())
        p = correct / n_students if n_students > 0 else 0.0
        q = 1 - p
        disc = discrimination.get(col)
        stats.append(ItemStat(
            question=str(col),
            p=p,
            q=q,
            pq=p * q,
            classification=classify_item(p, disc, params),
            discrimination=disc,
        ))
    return stats


def total_pq(stats: Iterable[ItemStat]) -> float:
    return sum(s.pq for s in stats)


def point_biserial(item: pd.Series, rest_total: pd.Series) -> float:
    """
    Correlation between a 0/1 item and the total score without that item.
    NaN when either side has no spread.
    """
    x = item.fillna(0).astype(float).to_numpy()
    y = rest_total.astype(float).to_numpy()
    if len(x) < 2:
        return float("nan")
    sx, sy = x.std(), y.std()
    if sx == 0 or sy == 0:
        return float("nan")
    return float(np.mean((x - x.mean()) * (y - y.mean())) / (sx * sy))


def compute_discrimination(items_num: pd.DataFrame, total_scores: pd.Series) -> Dict[str, float]:
    pb_vals: Dict[str, float] = {}
    for col in items_num.columns:
        item_series = items_num[col]
        pb_vals[str(col)] = point_biserial(item_series, total_scores - item_series)
    return pb_vals


def extract_item_analysis(
    rows: Sequence[Sequence[object]],
    question_col: int = 0,
    disc_col: int = 9,
    start_row: int = 5,
) -> Dict[str, float]:
    """
    Read discrimination indices from an exported 'Item Analysis' sheet.

    Question labels sit in column A and the discrimination index in column J,
    from the sixth row on. Rows whose label is not a question or whose index
    is not numeric are skipped.
    """
    out: Dict[str, float] = {}
    for row in rows[start_row:]:
        if not row or len(row) <= max(question_col, disc_col):
            continue
        label = cell_text(row[question_col]).replace(" ", "").upper()
        if not label.startswith("Q"):
            continue
        value = row[disc_col]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
            text = cell_text(value)
            try:
                value = float(text)
            except ValueError:
                logger.debug("No discrimination index for %s (%r)", label, row[disc_col])
                continue
        out[label] = float(value)
    return out


def group_by_classification(stats: Sequence[ItemStat]) -> List[ItemGroup]:
    """Every classification in fixed order with its questions and share of all items."""
    total = len(stats)
    groups: List[ItemGroup] = []
    for cls in ItemClass:
        questions = tuple(s.question for s in stats if s.classification is cls)
        pct = round(len(questions) / total * 100, 2) if total else 0.0
        groups.append(ItemGroup(classification=cls, questions=questions, percentage=pct))
    return groups


def summarize_acceptance(stats: Sequence[ItemStat]) -> AcceptanceSummary:
    total = len(stats)
    accepted = sum(1 for s in stats if s.classification.accepted)
    rejected = total - accepted
    return AcceptanceSummary(
        accepted=accepted,
        rejected=rejected,
        accepted_pct=round(accepted / total * 100, 2) if total else 0.0,
        rejected_pct=round(rejected / total * 100, 2) if total else 0.0,
    )


# ----------------------------
# Reliability
# ----------------------------

def score_variance(scores: Iterable[float]) -> float:
    """Population variance (divides by N) of student totals; 0 for no students."""
    arr = np.asarray(list(scores), dtype=float)
    if arr.size == 0:
        return 0.0
    return float(np.var(arr, ddof=0))


def _check_degenerate(k: int, variance: float) -> None:
    if k <= 1:
        raise DegenerateInputError(f"Reliability needs at least 2 items (k={k})")
    if not math.isfinite(variance) or math.isclose(variance, 0.0, abs_tol=1e-12):
        raise DegenerateInputError("All students have the same total score (variance is 0)")


def kr20(k: int, total_pq: float, variance: float) -> float:
    """KR-20 = k/(k-1) * (1 - sum(pq) / variance)."""
    _check_degenerate(k, variance)
    return (k / (k - 1)) * (1 - total_pq / variance)


def kr21(k: int, mean: float, variance: float) -> float:
    """KR-21 = k/(k-1) * (1 - mean*(k-mean) / (k*variance)); assumes equal item difficulty."""
    _check_degenerate(k, variance)
    return (k / (k - 1)) * (1 - mean * (k - mean) / (k * variance))


def reliability_verdict(value: float) -> str:
    for cutoff, verdict in KR20_VERDICTS:
        if value >= cutoff:
            return verdict
    return KR20_FALLBACK_VERDICT


__all__ = [
    "ItemClass",
    "ITEM_COMMENTS",
    "ItemStat",
    "ItemGroup",
    "AcceptanceSummary",
    "classify_item",
    "compute_item_statistics",
    "total_pq",
    "point_biserial",
    "compute_discrimination",
    "extract_item_analysis",
    "group_by_classification",
    "summarize_acceptance",
    "score_variance",
    "kr20",
    "kr21",
    "reliability_verdict",
]
