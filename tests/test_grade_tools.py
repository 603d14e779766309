"""
Tests for letter grades, grade distribution and pass/fail summary.
"""
import pytest

from closcore.defaults import GRADE_BANDS
from closcore.tools.grade_tools import assign_grade, distribute_grades, summarize_pass_fail


@pytest.mark.parametrize("pct,grade", [
    (100, "A+"), (95, "A+"), (94.99, "A"), (90, "A"), (85, "B+"), (80, "B"),
    (79.5, "C+"), (70, "C"), (65, "D+"), (60, "D"), (59.99, "F"), (0, "F"), (-5, "F"),
])
def test_assign_grade(pct, grade):
    assert assign_grade(pct) == grade


def test_distribution_lists_every_band_in_order():
    rows = distribute_grades([96, 91, 91, 62, 10])
    assert [r.grade for r in rows] == [g for g, _ in GRADE_BANDS]
    counts = {r.grade: r.count for r in rows}
    assert counts["A+"] == 1 and counts["A"] == 2 and counts["D"] == 1 and counts["F"] == 1
    assert {r.grade: r.percentage for r in rows}["A"] == 40.0


def test_distribution_percentages_sum_to_100():
    rows = distribute_grades([100, 88, 73, 73, 61, 45, 30])
    assert sum(r.percentage for r in rows) == pytest.approx(100, abs=0.1)


def test_empty_distribution_is_all_zero():
    rows = distribute_grades([])
    assert len(rows) == 9
    assert all(r.count == 0 and r.percentage == 0.0 for r in rows)


def test_pass_fail():
    summary = summarize_pass_fail([100, 50, 50, 0])
    assert (summary.attended, summary.passed, summary.failed) == (4, 1, 3)
    assert (summary.pass_pct, summary.fail_pct) == (25.0, 75.0)


def test_pass_fail_empty():
    summary = summarize_pass_fail([])
    assert (summary.attended, summary.pass_pct, summary.fail_pct) == (0, 0.0, 0.0)
