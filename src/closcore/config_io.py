#!/usr/bin/env python3
"""
closcore
config_io.py  —  Course configuration (instruments, CLO maps, roster, benchmarks)

Example course.yaml:

name: CHEM 101
benchmark: 70                 # direct target: % of students expected to achieve
achievement_threshold: 60     # CLO score (%) a student needs to count as achieving
thresholds: [60, 70, 80, 90]
roster: roster.csv            # CSV path (relative to this file) or inline list
# roster:
#   - {id: "4410001", name: "Sara Ali"}
instruments:
  - type: Quiz 1
    mode: keyed               # keyed | binary | aggregate
    weight: 10
    clos:
      clo1: [1, 2]
      clo2: [3]
  - type: Project
    mode: aggregate
    weight: 20
    clos:
      clo2: [1]
      clo3: [1]
outcome_groups:               # CLO -> PLO codes (K*, S*, V*) or category names
  clo1: [K1]
  clo2: [S1, S2]
  clo3: [V1]
indirect:                     # survey-based achievement percentages
  clo1: 85.0
  clo2: 72.5
  clo3: 90.0
layout:                       # optional answer-grid overrides
  answer_start_col: 6
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .defaults import BENCHMARK_DEFAULTS, GRID_DEFAULTS, GridDefaults, apply_grid_overrides
from .errors import ConfigurationError
from .tools.roster_tools import Roster, load_roster

logger = logging.getLogger(__name__)


class InstrumentMode(str, Enum):
    KEYED = "keyed"          # letters compared with an answer key
    BINARY = "binary"        # cells pre-scored 1/0
    AGGREGATE = "aggregate"  # one total mark per student


def normalize_clo_id(value: Any) -> str:
    """'CLO 1' / 'clo1 ' -> 'clo1'."""
    return re.sub(r"\s+", "", str(value)).lower()


def _question_number(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{where}: invalid question number {value!r}")
    if isinstance(value, (int, float)) and float(value).is_integer():
        num = int(value)
    else:
        m = re.fullmatch(r"\s*[Qq]?\s*(\d+)\s*", str(value))
        if not m:
            raise ConfigurationError(f"{where}: invalid question number {value!r}")
        num = int(m.group(1))
    if num < 1:
        raise ConfigurationError(f"{where}: question numbers start at 1 (got {num})")
    return num


@dataclass(frozen=True)
class InstrumentConfig:
    """One assessment instrument: its marks and which questions feed which CLO."""
    name: str
    weight: float
    clos: Mapping[str, Tuple[int, ...]]
    mode: InstrumentMode = InstrumentMode.KEYED

    def __post_init__(self):
        if not str(self.name).strip():
            raise ConfigurationError("Instrument needs a name/type")
        try:
            weight = float(self.weight)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Instrument '{self.name}': weight must be a number, got {self.weight!r}")
        if weight < 0 or weight != weight:
            raise ConfigurationError(f"Instrument '{self.name}': weight must be >= 0, got {self.weight!r}")
        try:
            mode = InstrumentMode(self.mode)
        except ValueError:
            raise ConfigurationError(
                f"Instrument '{self.name}': mode must be one of {[m.value for m in InstrumentMode]}, got {self.mode!r}"
            )

        clos: Dict[str, Tuple[int, ...]] = {}
        seen: Dict[int, str] = {}
        for raw_clo, questions in (self.clos or {}).items():
            clo = normalize_clo_id(raw_clo)
            where = f"Instrument '{self.name}', {clo}"
            if not clo:
                raise ConfigurationError(f"Instrument '{self.name}': empty CLO id")
            if clo in clos:
                raise ConfigurationError(f"{where}: CLO listed twice")
            if isinstance(questions, (str, int)):
                questions = [questions]
            nums = tuple(_question_number(q, where) for q in questions)
            if len(set(nums)) != len(nums):
                raise ConfigurationError(f"{where}: repeated question number in {list(nums)}")
            for n in nums:
                if n in seen:
                    logger.warning("%s: Q%d is also mapped to %s; it counts toward both", where, n, seen[n])
                seen.setdefault(n, clo)
            clos[clo] = nums

        object.__setattr__(self, "name", str(self.name).strip())
        object.__setattr__(self, "weight", weight)
        object.__setattr__(self, "mode", mode)
        object.__setattr__(self, "clos", MappingProxyType(clos))

    @property
    def question_count(self) -> int:
        """Question numbers summed over every CLO (the redistribution denominator)."""
        return sum(len(qs) for qs in self.clos.values())

    @property
    def max_question(self) -> int:
        return max((max(qs) for qs in self.clos.values() if qs), default=0)

    @property
    def marks_per_question(self) -> float:
        count = self.question_count
        return self.weight / count if count else 0.0

    def clo_share(self, clo: str) -> float:
        count = self.question_count
        return len(self.clos.get(clo, ())) / count if count else 0.0

    def clo_marks_possible(self, clo: str) -> float:
        return round(self.weight * self.clo_share(clo), 2)


@dataclass(frozen=True)
class CourseConfig:
    instruments: Tuple[InstrumentConfig, ...]
    name: str = ""
    roster: Optional[Roster] = None
    benchmark: float = BENCHMARK_DEFAULTS.direct_target
    achievement_threshold: int = BENCHMARK_DEFAULTS.achievement_threshold
    thresholds: Tuple[int, ...] = BENCHMARK_DEFAULTS.thresholds
    outcome_groups: Optional[Mapping[str, Tuple[str, ...]]] = None
    indirect: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    layout: GridDefaults = GRID_DEFAULTS

    @property
    def clo_ids(self) -> List[str]:
        """CLOs in first-appearance order across instruments."""
        out: Dict[str, None] = {}
        for inst in self.instruments:
            for clo in inst.clos:
                out.setdefault(clo, None)
        return list(out)

    def instrument(self, name: str) -> InstrumentConfig:
        wanted = name.strip().lower()
        for inst in self.instruments:
            if inst.name.lower() == wanted:
                return inst
        raise ConfigurationError(
            f"No instrument named '{name}'. Known: {[i.name for i in self.instruments]}"
        )


# ---------------------------------------------------------------------------

def _parse_instrument(index: int, section: Dict[str, Any]) -> InstrumentConfig:
    if not isinstance(section, dict):
        raise ConfigurationError(f"Instrument #{index + 1} must be a mapping, got {type(section).__name__}")
    name = section.get("type", section.get("name"))
    missing = [k for k, v in (("type", name), ("weight", section.get("weight")), ("clos", section.get("clos")))
               if v is None]
    if missing:
        label = f"'{name}'" if name is not None else f"#{index + 1}"
        raise ConfigurationError(f"Instrument {label} missing required fields: {missing}")
    if not isinstance(section["clos"], dict):
        raise ConfigurationError(f"Instrument '{name}': clos must map CLO ids to question lists")
    return InstrumentConfig(
        name=str(name),
        weight=section["weight"],
        clos=section["clos"],
        mode=str(section.get("mode", InstrumentMode.KEYED.value)).lower(),
    )


def _parse_outcome_groups(data: Any) -> Optional[Mapping[str, Tuple[str, ...]]]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConfigurationError("outcome_groups must map CLO ids to PLO codes")
    out: Dict[str, Tuple[str, ...]] = {}
    for clo, codes in data.items():
        if isinstance(codes, str):
            codes = [c for c in re.split(r"[,\s]+", codes) if c]
        out[normalize_clo_id(clo)] = tuple(str(c).strip() for c in (codes or []))
    return MappingProxyType(out)


def _parse_indirect(data: Any) -> Mapping[str, float]:
    if data is None:
        return MappingProxyType({})
    if isinstance(data, list):
        # [{clo: clo1, achievementPercentage: 85.0}, ...]
        pairs = []
        for rec in data:
            if not isinstance(rec, dict) or "clo" not in rec:
                raise ConfigurationError(f"Indirect record needs a 'clo' field: {rec!r}")
            value = rec.get("achievementPercentage", rec.get("percentage"))
            pairs.append((rec["clo"], value))
    elif isinstance(data, dict):
        pairs = list(data.items())
    else:
        raise ConfigurationError("indirect must be a mapping or a list of records")
    out: Dict[str, float] = {}
    for clo, value in pairs:
        try:
            out[normalize_clo_id(clo)] = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Indirect percentage for {clo} is not a number: {value!r}")
    return MappingProxyType(out)


def _parse_layout(data: Any) -> GridDefaults:
    if not data:
        return GRID_DEFAULTS
    if not isinstance(data, dict):
        raise ConfigurationError("layout must be a mapping")
    known = {f.name for f in fields(GridDefaults)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown layout fields: {unknown}. Known: {sorted(known)}")
    return apply_grid_overrides(GRID_DEFAULTS, **data)


def parse_course_config(data: Dict[str, Any], base_dir: Optional[Path] = None) -> CourseConfig:
    """Validate a course configuration mapping (as loaded from YAML)."""
    if not isinstance(data, dict):
        raise ConfigurationError("Course configuration must be a mapping")
    instruments_data = data.get("instruments") or []
    if not instruments_data:
        raise ConfigurationError("Course configuration lists no instruments")
    instruments = tuple(_parse_instrument(i, block) for i, block in enumerate(instruments_data))
    names = [i.name.lower() for i in instruments]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"Duplicate instrument types: {dupes}")

    roster_data = data.get("roster")
    roster: Optional[Roster] = None
    if isinstance(roster_data, str):
        path = Path(roster_data)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        roster = load_roster(str(path))
    elif roster_data is not None:
        roster = Roster.from_records(roster_data)

    thresholds = tuple(int(t) for t in data.get("thresholds", BENCHMARK_DEFAULTS.thresholds))
    achievement_threshold = int(data.get("achievement_threshold", BENCHMARK_DEFAULTS.achievement_threshold))
    bad = [t for t in thresholds + (achievement_threshold,) if not 0 < t <= 100]
    if bad:
        raise ConfigurationError(f"Benchmark thresholds must be within (0, 100], got {bad}")

    return CourseConfig(
        instruments=instruments,
        name=str(data.get("name", "")),
        roster=roster,
        benchmark=float(data.get("benchmark", BENCHMARK_DEFAULTS.direct_target)),
        achievement_threshold=achievement_threshold,
        thresholds=thresholds,
        outcome_groups=_parse_outcome_groups(data.get("outcome_groups")),
        indirect=_parse_indirect(data.get("indirect")),
        layout=_parse_layout(data.get("layout")),
    )


def load_course_config(path: str) -> CourseConfig:
    """Load and validate a course YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
    cfg = parse_course_config(data, base_dir=Path(path).parent)
    logger.info("Loaded course config %s: %d instrument(s), %d CLO(s)", path, len(cfg.instruments), len(cfg.clo_ids))
    return cfg


__all__ = [
    "InstrumentMode",
    "normalize_clo_id",
    "InstrumentConfig",
    "CourseConfig",
    "parse_course_config",
    "load_course_config",
]
