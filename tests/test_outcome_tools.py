"""
Tests for per-instrument CLO scoring and multi-instrument aggregation.
"""
import pytest

from closcore.config_io import InstrumentConfig
from closcore.errors import ConfigurationError, MalformedGridError, RosterMismatchError, StudentNotFoundError
from closcore.tools.outcome_tools import CloResult, MismatchPolicy, aggregate_instruments, score_instrument


def _marks(result, clo):
    return [s.clo_results[clo].marks_scored for s in result.students]


class TestKeyedScoring:
    def test_marks_per_clo(self, quiz, quiz_grid, roster):
        result = score_instrument(quiz, quiz_grid, roster, on_missing=MismatchPolicy.ABORT)
        assert _marks(result, "clo1") == [6.67, 6.67, 3.33, 0.0]
        assert _marks(result, "clo2") == [3.33, 0.0, 3.33, 0.0]
        first = result.students[0]
        assert first.clo_results["clo1"].marks_possible == 6.67
        assert first.clo_results["clo1"].correct_count == 2
        assert first.clo_results["clo1"].question_count == 2
        assert first.student_name == "Ann A."
        assert result.question_key == {"Q1": "A", "Q2": "B", "Q3": "C"}

    def test_possible_marks_add_up_to_weight(self, quiz, quiz_grid):
        result = score_instrument(quiz, quiz_grid, None, on_missing=MismatchPolicy.ABORT)
        possible = sum(r.marks_possible for r in result.students[0].clo_results.values())
        assert possible == pytest.approx(quiz.weight, abs=0.01 * len(quiz.clos))

    def test_question_beyond_grid_raises(self, quiz_grid):
        inst = InstrumentConfig(name="Quiz 1", weight=10, clos={"clo1": [1, 4]})
        with pytest.raises(ConfigurationError):
            score_instrument(inst, quiz_grid, None, on_missing=MismatchPolicy.ABORT)

    def test_duplicate_student_raises(self, quiz, make_grid):
        grid = make_grid(["A", "B", "C"], [("Ann", "S1", ["A", "B", "C"]), ("Ann", " s1", ["A", "A", "A"])])
        with pytest.raises(MalformedGridError):
            score_instrument(quiz, grid, None, on_missing=MismatchPolicy.ABORT)

    def test_policy_is_required(self, quiz, quiz_grid):
        with pytest.raises(TypeError):
            score_instrument(quiz, quiz_grid, None)


class TestBinaryScoring:
    def test_cells_equal_to_one_are_correct(self, make_grid):
        inst = InstrumentConfig(name="Lab", weight=4, clos={"clo1": [1, 2], "clo2": [3, 4]}, mode="binary")
        grid = make_grid(["", "", "", ""], [("Ann", "S1", ["1", "0", 1, ""]), ("Ben", "S2", ["1", "1", "1", "1"])])
        result = score_instrument(inst, grid, None, on_missing="abort")
        assert _marks(result, "clo1") == [1.0, 2.0]
        assert _marks(result, "clo2") == [1.0, 2.0]
        assert result.question_key == {}


class TestAggregateScoring:
    def test_mark_is_rescaled_by_key_total(self, project, project_grid):
        result = score_instrument(project, project_grid, None, on_missing=MismatchPolicy.ABORT)
        assert _marks(result, "clo2") == [10.0, 5.0, 8.0, 2.0]
        assert _marks(result, "clo3") == [10.0, 5.0, 8.0, 2.0]
        assert result.students[0].clo_results["clo2"].marks_possible == 10.0
        assert result.students[0].clo_results["clo2"].correct_count == 1

    def test_blank_key_means_mark_is_out_of_weight(self, project, make_grid):
        grid = make_grid([""], [("Ann", "S1", ["15"]), ("Ben", "S2", ["0"])])
        result = score_instrument(project, grid, None, on_missing=MismatchPolicy.ABORT)
        assert _marks(result, "clo2") == [7.5, 0.0]
        assert result.students[1].clo_results["clo2"].correct_count == 0

    def test_non_numeric_mark_raises(self, project, make_grid):
        grid = make_grid(["50"], [("Ann", "S1", ["absent"])])
        with pytest.raises(MalformedGridError):
            score_instrument(project, grid, None, on_missing=MismatchPolicy.ABORT)


class TestMismatchPolicy:
    @pytest.fixture
    def grid_with_strangers(self, make_grid):
        return make_grid(["A", "B", "C"], [
            ("Ann", "S1", ["A", "B", "C"]),
            ("Xavier", "X9", ["A", "B", "C"]),
            ("Ben", "S2", ["A", "B", "D"]),
            ("Xena", "X8", ["A", "A", "A"]),
        ])

    def test_abort_stops_at_first_unknown(self, quiz, grid_with_strangers, roster):
        with pytest.raises(StudentNotFoundError) as exc_info:
            score_instrument(quiz, grid_with_strangers, roster, on_missing=MismatchPolicy.ABORT)
        assert exc_info.value.identifier == "X9"

    def test_collect_reports_every_unknown(self, quiz, grid_with_strangers, roster):
        with pytest.raises(RosterMismatchError) as exc_info:
            score_instrument(quiz, grid_with_strangers, roster, on_missing=MismatchPolicy.COLLECT)
        assert exc_info.value.missing_from_roster == ["X9", "X8"]

    def test_skip_records_unknowns_and_continues(self, quiz, grid_with_strangers, roster):
        result = score_instrument(quiz, grid_with_strangers, roster, on_missing="skip")
        assert [s.student_id for s in result.students] == ["S1", "S2"]
        assert result.unmatched == ("X9", "X8")

    def test_blank_identifier_goes_through_policy(self, quiz, make_grid):
        grid = make_grid(["A", "B", "C"], [("Ann", "S1", ["A", "B", "C"]), ("Eve", "", ["A", "B", "C"])])
        with pytest.raises(StudentNotFoundError):
            score_instrument(quiz, grid, None, on_missing=MismatchPolicy.ABORT)
        result = score_instrument(quiz, grid, None, on_missing=MismatchPolicy.SKIP)
        assert result.unmatched == ("<blank ID in row 3>",)


class TestAggregateInstruments:
    def test_totals_across_instruments(self, quiz, quiz_grid, project, project_grid):
        results = [
            score_instrument(quiz, quiz_grid, None, on_missing=MismatchPolicy.ABORT),
            score_instrument(project, project_grid, None, on_missing=MismatchPolicy.ABORT),
        ]
        outcomes = aggregate_instruments(results)
        assert outcomes.clo_ids == ("clo1", "clo2", "clo3")
        assert dict(outcomes.marks_possible) == {"clo1": 6.67, "clo2": 13.33, "clo3": 10.0}
        assert dict(outcomes.question_counts) == {"clo1": 2, "clo2": 2, "clo3": 1}
        ann = outcomes.student("s1")
        assert ann.clo_results["clo2"].marks_scored == 13.33
        assert ann.clo_results["clo2"].correct_count == 2
        assert ann.marks_possible == 30.0
        assert ann.marks_scored == 30.0
        assert outcomes.instruments == ("Quiz 1", "Project")

    def test_student_missing_from_an_instrument_scores_zero(self, quiz, quiz_grid, project, make_grid):
        partial = make_grid(["50"], [("Ann", "S1", ["50"])])
        outcomes = aggregate_instruments([
            score_instrument(quiz, quiz_grid, None, on_missing=MismatchPolicy.ABORT),
            score_instrument(project, partial, None, on_missing=MismatchPolicy.ABORT),
        ])
        dan = outcomes.student("S4")
        assert dan.clo_results["clo3"].marks_scored == 0.0
        assert dan.clo_results["clo3"].marks_possible == 10.0

    def test_zero_weight_instrument_changes_nothing(self, quiz, quiz_grid, make_grid):
        a = score_instrument(quiz, quiz_grid, None, on_missing=MismatchPolicy.ABORT)
        empty = InstrumentConfig(name="Practice", weight=0, clos={"clo1": [1]})
        b = score_instrument(empty, make_grid(["A"], [("Zed", "S9", ["A"])]), None, on_missing=MismatchPolicy.ABORT)
        alone, both = aggregate_instruments([a]), aggregate_instruments([a, b])
        assert alone.clo_ids == both.clo_ids
        assert dict(alone.marks_possible) == dict(both.marks_possible)
        assert [s.student_id for s in alone.students] == [s.student_id for s in both.students]
        for x, y in zip(alone.students, both.students):
            assert dict(x.clo_results) == dict(y.clo_results)

    def test_roster_students_without_results_score_zero(self, quiz, make_grid, roster):
        grid = make_grid(["A", "B", "C"], [("Ann", "S1", ["A", "B", "C"])])
        outcomes = aggregate_instruments(
            [score_instrument(quiz, grid, roster, on_missing=MismatchPolicy.ABORT)], roster,
        )
        assert [s.student_id for s in outcomes.students] == ["S1", "S2", "S3", "S4"]
        assert outcomes.student("S3").student_name == "Cat C."
        assert outcomes.student("S3").marks_scored == 0.0
        assert outcomes.student("S3").marks_possible == 10.0

    def test_unknown_student_lookup(self, quiz, quiz_grid):
        outcomes = aggregate_instruments([score_instrument(quiz, quiz_grid, None, on_missing=MismatchPolicy.ABORT)])
        with pytest.raises(StudentNotFoundError):
            outcomes.student("nobody")


def test_clo_results_add():
    total = CloResult(3.33, 6.67, 1, 2) + CloResult(3.34, 3.33, 1, 1)
    assert total == CloResult(6.67, 10.0, 2, 3)
