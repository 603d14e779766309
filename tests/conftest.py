import csv

import pytest

from closcore.config_io import InstrumentConfig
from closcore.tools.roster_tools import Roster

INFO_HEADER = ["Name", "ID", "Email", "Section", "Attempt", "Date"]


def build_grid(key, students, questions=None):
    """
    Answer grid in the exported 'Results Grid' layout.

    ``students`` is a list of (name, id, answers); answers start at column 6.
    """
    questions = questions or [f"Q{i}" for i in range(1, len(key) + 1)]
    grid = [
        INFO_HEADER + list(questions),
        [""] * len(INFO_HEADER) + list(key),
    ]
    for name, ident, answers in students:
        grid.append([name, ident, "", "", "", ""] + list(answers))
    return grid


@pytest.fixture
def make_grid():
    return build_grid


@pytest.fixture
def two_item_grid():
    # totals 2, 1, 1, 0: p = 0.5 / 0.5, sum pq = 0.5, variance 0.5, KR-20 = 0
    return build_grid(
        ["A", "B"],
        [
            ("Ann", "S1", ["A", "B"]),
            ("Ben", "S2", ["A", "C"]),
            ("Cat", "S3", ["C", "B"]),
            ("Dan", "S4", ["C", "C"]),
        ],
    )


@pytest.fixture
def quiz_grid():
    return build_grid(
        ["A", "B", "C"],
        [
            ("Ann", "S1", ["A", "B", "C"]),
            ("Ben", "S2", ["A", "B", "D"]),
            ("Cat", "S3", ["a", "D", " c "]),
            ("Dan", "S4", ["D", "D", ""]),
        ],
    )


@pytest.fixture
def project_grid():
    # aggregate mark out of 50 (key row)
    return build_grid(
        ["50"],
        [
            ("Ann", "S1", ["50"]),
            ("Ben", "S2", ["25"]),
            ("Cat", "S3", ["40"]),
            ("Dan", "S4", ["10"]),
        ],
    )


@pytest.fixture
def quiz():
    return InstrumentConfig(name="Quiz 1", weight=10, clos={"CLO1": [1, 2], "CLO2": [3]})


@pytest.fixture
def project():
    return InstrumentConfig(name="Project", weight=20, clos={"clo2": [1], "clo3": [1]}, mode="aggregate")


@pytest.fixture
def roster():
    return Roster.from_records([("S1", "Ann A."), ("S2", "Ben B."), ("S3", "Cat C."), ("S4", "Dan D.")])


@pytest.fixture
def write_csv(tmp_path):
    def _write(name, rows):
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerows(rows)
        return path
    return _write
