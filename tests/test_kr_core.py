"""
Tests for the single-instrument reliability report.
"""
import json

import pytest

from closcore.errors import DegenerateInputError, MalformedGridError, RosterMismatchError
from closcore.kr_core import analyze_reliability
from closcore.tools.stats_tools import ItemClass


@pytest.fixture
def five_by_four(make_grid):
    # totals 4, 3, 3, 2, 0: sum pq 0.88, variance 1.84, KR-20 ~ 0.696
    pattern = {
        "S1": [1, 1, 1, 1],
        "S2": [1, 1, 0, 1],
        "S3": [1, 0, 1, 1],
        "S4": [0, 1, 0, 1],
        "S5": [0, 0, 0, 0],
    }
    return make_grid(
        ["A", "A", "A", "A"],
        [(ident, ident, ["A" if hit else "B" for hit in hits]) for ident, hits in pattern.items()],
    )


def test_two_item_scenario(two_item_grid):
    report = analyze_reliability(two_item_grid)
    assert report.num_questions == 2
    assert report.num_students == 4
    assert report.total_pq == pytest.approx(0.5)
    assert report.variance == pytest.approx(0.5)
    assert report.kr20 == pytest.approx(0.0)
    assert report.verdict == "Questionable reliability."
    grades = {g.grade: g.count for g in report.grades}
    assert grades["A+"] == 1 and grades["F"] == 3
    assert report.pass_fail.passed == 1
    assert [s.raw_score for s in report.student_scores] == [2.0, 1.0, 1.0, 0.0]


def test_reliability_of_a_consistent_exam(five_by_four):
    report = analyze_reliability(five_by_four)
    assert report.total_pq == pytest.approx(0.88)
    assert report.variance == pytest.approx(1.84)
    assert report.kr20 == pytest.approx(0.6957, abs=1e-3)
    assert report.verdict.startswith("Somewhat low")
    assert 0 < report.kr20 <= 1


def test_identical_totals_are_degenerate(make_grid):
    grid = make_grid(["A", "B"], [("Ann", "S1", ["A", "C"]), ("Ben", "S2", ["C", "B"])])
    with pytest.raises(DegenerateInputError):
        analyze_reliability(grid)


def test_single_question_is_degenerate(make_grid):
    grid = make_grid(["A"], [("Ann", "S1", ["A"]), ("Ben", "S2", ["B"])])
    with pytest.raises(DegenerateInputError):
        analyze_reliability(grid)


def test_malformed_grid(two_item_grid):
    two_item_grid[1].append("C")
    with pytest.raises(MalformedGridError):
        analyze_reliability(two_item_grid)


def test_roster_is_validated_both_ways(make_grid, roster):
    grid = make_grid(["A", "B"], [("Ann", "S1", ["A", "B"]), ("Ben", "S2", ["A", "C"]), ("Zed", "Z1", ["C", "C"])])
    with pytest.raises(RosterMismatchError) as exc_info:
        analyze_reliability(grid, roster=roster)
    assert exc_info.value.missing_from_roster == ["Z1"]
    assert exc_info.value.missing_from_grid == ["S3", "S4"]


def test_item_analysis_sheet_marks_poor_items(two_item_grid):
    rows = [[] for _ in range(5)]
    rows.append(["Q1", "", "", "", "", "", "", "", "", -0.4])
    rows.append(["Q2", "", "", "", "", "", "", "", "", 0.3])
    report = analyze_reliability(two_item_grid, item_analysis_rows=rows)
    assert [s.classification for s in report.item_stats] == [ItemClass.POOR, ItemClass.GOOD]
    assert report.acceptance.rejected == 1


def test_explicit_discrimination_wins(two_item_grid):
    rows = [[] for _ in range(5)] + [["Q1", "", "", "", "", "", "", "", "", -0.4]]
    report = analyze_reliability(two_item_grid, discrimination={"Q1": 0.2}, item_analysis_rows=rows)
    assert report.item_stats[0].classification is ItemClass.GOOD


def test_point_biserial_from_grid(two_item_grid):
    report = analyze_reliability(two_item_grid, compute_point_biserial=True)
    assert report.item_stats[0].discrimination == pytest.approx(0.0)
    assert report.item_stats[0].classification is ItemClass.GOOD


def test_to_dict_is_json_ready(two_item_grid):
    data = analyze_reliability(two_item_grid).to_dict()
    assert json.loads(json.dumps(data)) == data
    assert data["verdict"] == "Questionable reliability."
    assert [g["classification"] for g in data["item_groups"]][0] == "Poor (Bad) Questions"
    assert data["items"][0]["classification"] == "Good"
    assert data["question_key"] == {"Q1": "A", "Q2": "B"}


def test_undefined_discrimination_serializes_as_null(make_grid):
    grid = make_grid(["A", "B", "C"], [
        ("Ann", "S1", ["A", "B", "C"]),
        ("Ben", "S2", ["A", "B", "X"]),
        ("Cat", "S3", ["A", "X", "X"]),
    ])
    report = analyze_reliability(grid, compute_point_biserial=True)
    assert report.item_stats[0].classification is ItemClass.VERY_EASY
    data = report.to_dict()
    assert data["items"][0]["discrimination"] is None
    assert json.loads(json.dumps(data)) == data
