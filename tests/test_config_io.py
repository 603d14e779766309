"""
Tests for instrument configuration and the course YAML loader.
"""
import textwrap

import pytest

from closcore.config_io import InstrumentConfig, InstrumentMode, load_course_config, normalize_clo_id, parse_course_config
from closcore.defaults import BENCHMARK_DEFAULTS, GRID_DEFAULTS, apply_benchmark_overrides
from closcore.errors import ConfigurationError


class TestInstrumentConfig:
    def test_marks_are_spread_over_mapped_questions(self, quiz):
        assert quiz.question_count == 3
        assert quiz.marks_per_question == pytest.approx(10 / 3)
        assert quiz.clo_marks_possible("clo1") == 6.67
        assert quiz.clo_marks_possible("clo2") == 3.33
        assert sum(quiz.clo_marks_possible(c) for c in quiz.clos) == pytest.approx(10, abs=0.01 * len(quiz.clos))

    def test_clo_ids_are_normalized(self):
        inst = InstrumentConfig(name="Mid", weight=5, clos={"CLO 1": ["Q1", 2]})
        assert list(inst.clos) == ["clo1"]
        assert inst.clos["clo1"] == (1, 2)
        assert normalize_clo_id(" Clo 3 ") == "clo3"

    def test_clos_are_read_only(self, quiz):
        with pytest.raises(TypeError):
            quiz.clos["clo9"] = (1,)

    def test_defaults_to_keyed(self, quiz):
        assert quiz.mode is InstrumentMode.KEYED

    @pytest.mark.parametrize("kwargs", [
        {"weight": -1, "clos": {"clo1": [1]}},
        {"weight": "ten", "clos": {"clo1": [1]}},
        {"weight": 10, "clos": {"clo1": [1, 1]}},
        {"weight": 10, "clos": {"clo1": [0]}},
        {"weight": 10, "clos": {"clo1": ["first"]}},
        {"weight": 10, "clos": {"CLO1": [1], "clo1": [2]}},
        {"weight": 10, "clos": {"clo1": [1]}, "mode": "essay"},
    ])
    def test_invalid_instruments(self, kwargs):
        with pytest.raises(ConfigurationError):
            InstrumentConfig(name="Quiz", **kwargs)

    def test_overlapping_questions_count_toward_each_clo(self):
        inst = InstrumentConfig(name="Lab", weight=12, clos={"clo1": [1, 2], "clo2": [2, 3]})
        assert inst.question_count == 4
        assert inst.clo_marks_possible("clo1") == 6.0
        assert inst.clo_marks_possible("clo2") == 6.0

    def test_zero_weight_is_allowed(self):
        inst = InstrumentConfig(name="Practice", weight=0, clos={"clo1": [1]})
        assert inst.marks_per_question == 0.0


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


class TestCourseConfig:
    def test_load_full_config(self, tmp_path):
        _write(tmp_path, "roster.csv", "ID,Name\nS1,Ann\nS2,Ben\n")
        path = _write(tmp_path, "course.yaml", """
            name: CHEM 101
            benchmark: 70
            achievement_threshold: 70
            thresholds: [60, 70]
            roster: roster.csv
            instruments:
              - type: Quiz 1
                weight: 10
                clos:
                  CLO1: [1, 2]
                  CLO2: [3]
              - type: Project
                mode: aggregate
                weight: 20
                clos:
                  clo2: [1]
                  clo3: [1]
            outcome_groups:
              clo1: [K1]
              clo2: S1, S2
              clo3: [values]
            indirect:
              - {clo: CLO1, achievementPercentage: 85}
              - {clo: clo2, achievementPercentage: "72.5"}
            layout:
              answer_start_col: 4
        """)
        cfg = load_course_config(str(path))
        assert cfg.name == "CHEM 101"
        assert cfg.benchmark == 70.0
        assert cfg.thresholds == (60, 70)
        assert [i.name for i in cfg.instruments] == ["Quiz 1", "Project"]
        assert cfg.instrument("project").mode is InstrumentMode.AGGREGATE
        assert cfg.clo_ids == ["clo1", "clo2", "clo3"]
        assert len(cfg.roster) == 2
        assert cfg.outcome_groups["clo2"] == ("S1", "S2")
        assert dict(cfg.indirect) == {"clo1": 85.0, "clo2": 72.5}
        assert cfg.layout.answer_start_col == 4
        assert cfg.layout.name_col == GRID_DEFAULTS.name_col

    def test_defaults(self):
        cfg = parse_course_config({"instruments": [{"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}]})
        assert cfg.roster is None
        assert cfg.outcome_groups is None
        assert cfg.thresholds == BENCHMARK_DEFAULTS.thresholds
        assert cfg.achievement_threshold == 60
        assert cfg.layout == GRID_DEFAULTS

    def test_inline_roster(self):
        cfg = parse_course_config({
            "roster": [{"id": "S1", "name": "Ann"}, ["S2", "Ben"]],
            "instruments": [{"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}],
        })
        assert cfg.roster.lookup("s2").display_name == "Ben"

    def test_missing_field_names_the_instrument(self):
        with pytest.raises(ConfigurationError, match="weight"):
            parse_course_config({"instruments": [{"type": "Quiz", "clos": {"clo1": [1]}}]})

    def test_no_instruments(self):
        with pytest.raises(ConfigurationError):
            parse_course_config({"name": "empty"})

    def test_duplicate_instrument_types(self):
        block = {"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}
        with pytest.raises(ConfigurationError):
            parse_course_config({"instruments": [block, dict(block, type="quiz")]})

    def test_unknown_layout_field(self):
        with pytest.raises(ConfigurationError):
            parse_course_config({
                "instruments": [{"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}],
                "layout": {"answer_col": 3},
            })

    def test_threshold_out_of_range(self):
        with pytest.raises(ConfigurationError):
            parse_course_config({
                "instruments": [{"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}],
                "thresholds": [0, 60],
            })

    def test_unknown_instrument_lookup(self):
        cfg = parse_course_config({"instruments": [{"type": "Quiz", "weight": 5, "clos": {"clo1": [1]}}]})
        with pytest.raises(ConfigurationError):
            cfg.instrument("Final")

    def test_invalid_yaml(self, tmp_path):
        path = _write(tmp_path, "broken.yaml", "instruments: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_course_config(str(path))


def test_benchmark_overrides_ignore_none():
    custom = apply_benchmark_overrides(direct_target=75, indirect_target=None)
    assert custom.direct_target == 75
    assert custom.indirect_target == BENCHMARK_DEFAULTS.indirect_target
