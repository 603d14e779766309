from __future__ import annotations

import json
import logging
import sys
from typing import Dict, List, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config_io import load_course_config
from .defaults import GRID_DEFAULTS, apply_grid_overrides
from .errors import EngineError
from .grid_io import DEFAULT_SHEET, load_grid
from .kr_core import ReliabilityReport, analyze_reliability
from .outcome_core import OutcomeReport, analyze_outcomes
from .tools.achievement_tools import GROUP_BY
from .tools.grid_tools import ANSWER_MODES
from .tools.outcome_tools import MismatchPolicy
from .tools.roster_tools import load_roster

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="closcore: KR-20 reliability and CLO achievement reports from exam answer grids.",
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline details (DEBUG)"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _fail(what: str, e: Exception) -> None:
    rprint(f"[red]{what}:[/red] {escape(str(e))}")
    raise typer.Exit(code=2)


def _write_json(path: str, data: Dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    rprint(f"[green]Wrote:[/green] {path}")


def _parse_grid_args(entries: List[str]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for entry in entries:
        name, sep, path = entry.partition("=")
        if not sep or not name.strip() or not path.strip():
            raise typer.BadParameter(f"Expected TYPE=PATH, got '{entry}'", param_hint="--grid")
        out[name.strip()] = path.strip()
    return out


# ---------------------- RELIABILITY ----------------------
def _print_reliability(report: ReliabilityReport) -> None:
    rprint(f"[bold]KR-20:[/bold] {report.kr20:.3f}   [bold]KR-21:[/bold] {report.kr21:.3f}")
    rprint(f"[cyan]{escape(report.verdict)}[/cyan]")
    rprint(f"{report.num_questions} question(s), {report.num_students} student(s), "
           f"Σpq = {report.total_pq:.3f}, variance = {report.variance:.3f}")

    items = Table(title="Item groups")
    items.add_column("Classification")
    items.add_column("Questions")
    items.add_column("%", justify="right")
    for g in report.item_groups:
        items.add_row(g.classification.label, ", ".join(g.questions) or "-", f"{g.percentage:.2f}")
    rprint(items)
    acc = report.acceptance
    rprint(f"Accepted: {acc.accepted} ({acc.accepted_pct:.2f}%)   "
           f"Rejected: {acc.rejected} ({acc.rejected_pct:.2f}%)")

    grades = Table(title="Grade distribution")
    grades.add_column("Grade")
    grades.add_column("Students", justify="right")
    grades.add_column("%", justify="right")
    for g in report.grades:
        grades.add_row(g.grade, str(g.count), f"{g.percentage:.2f}")
    rprint(grades)
    pf = report.pass_fail
    rprint(f"Passed: {pf.passed} ({pf.pass_pct:.2f}%)   Failed: {pf.failed} ({pf.fail_pct:.2f}%)")


@app.command()
def reliability(
    grid_path: str = typer.Argument(..., help="Answer grid workbook (.xlsx) or CSV"),
    sheet: str = typer.Option(DEFAULT_SHEET, "--sheet", help="Worksheet holding the answer grid"),
    item_analysis_sheet: Optional[str] = typer.Option(
        None, "--item-analysis-sheet", help="Worksheet with exported discrimination indices (column J)"),
    answer_start_col: Optional[int] = typer.Option(
        None, "--answer-start-col", help=f"0-based column of Q1 (default {GRID_DEFAULTS.answer_start_col})"),
    answers_mode: str = typer.Option("letters", "--answers-mode", help="letters|binary"),
    point_biserial: bool = typer.Option(
        False, "--point-biserial/--no-point-biserial", help="Compute discrimination from the grid"),
    roster: Optional[str] = typer.Option(None, "--roster", help="Roster CSV to validate student IDs against"),
    json_out: Optional[str] = typer.Option(None, "--json-out", help="Write the full report as JSON"),
):
    """
    Item difficulty groups, KR-20/KR-21 reliability and grade distribution for one exam.
    """
    if answers_mode not in ANSWER_MODES:
        raise typer.BadParameter(f"must be one of {ANSWER_MODES}", param_hint="--answers-mode")
    layout = apply_grid_overrides(GRID_DEFAULTS, answer_start_col=answer_start_col)
    try:
        grid = load_grid(grid_path, sheet)
        ia_rows = load_grid(grid_path, item_analysis_sheet) if item_analysis_sheet else None
        report = analyze_reliability(
            grid,
            layout=layout,
            answers_mode=answers_mode,
            roster=load_roster(roster) if roster else None,
            item_analysis_rows=ia_rows,
            compute_point_biserial=point_biserial,
        )
    except (EngineError, OSError) as e:
        _fail("Reliability analysis failed", e)

    _print_reliability(report)
    if json_out:
        _write_json(json_out, report.to_dict())


# ---------------------- OUTCOMES ----------------------
def _print_outcomes(report: OutcomeReport) -> None:
    title = f"CLO achievement ({report.course_name})" if report.course_name else "CLO achievement"
    table = Table(title=title)
    table.add_column("CLO")
    table.add_column("Marks possible", justify="right")
    thresholds = list(report.achievement)
    for t in thresholds:
        table.add_column(f"≥{t}%", justify="right")
    for i, clo in enumerate(report.outcomes.clo_ids):
        cells = [clo, f"{report.outcomes.marks_possible[clo]:.2f}"]
        cells += [f"{report.achievement[t][i].percentage_achieving:.2f}" for t in thresholds]
        table.add_row(*cells)
    rprint(table)

    for result in report.instrument_results:
        if result.unmatched:
            rprint(f"[yellow]{escape(result.instrument.name)}:[/yellow] skipped "
                   f"{len(result.unmatched)} student(s) not on the roster: {escape(', '.join(result.unmatched))}")
    if report.absent:
        rprint(f"[yellow]Absent from every grid (scored 0):[/yellow] {escape(', '.join(report.absent))}")

    for group in report.groups:
        gt = Table(title=f"{group.name} (benchmark {report.benchmark:g}%)")
        gt.add_column("CLO")
        gt.add_column("Codes")
        gt.add_column("Direct", justify="right")
        gt.add_column("Direct comment")
        gt.add_column("Indirect", justify="right")
        gt.add_column("Indirect comment")
        for r in group.rows:
            gt.add_row(
                r.clo,
                ", ".join(r.mapped_codes),
                f"{r.direct_actual:.2f}",
                r.direct_comment,
                "-" if r.indirect_actual is None else f"{r.indirect_actual:.2f}",
                r.indirect_comment,
            )
        rprint(gt)

    perf = report.performance
    if perf is None:
        return
    pt = Table(title="Student performance")
    pt.add_column("Instrument")
    pt.add_column("Students", justify="right")
    pt.add_column("Mean", justify="right")
    pt.add_column("σ", justify="right")
    for s in perf.instruments:
        pt.add_row(s.instrument, str(s.num_students), f"{s.mean:.2f}", f"{s.std_dev:.2f}")
    pt.add_row("Overall", str(len(perf.students)), f"{perf.overall_mean:.2f}", f"{perf.overall_std_dev:.2f}")
    rprint(pt)
    curve = perf.curve
    if curve.total_students:
        rprint(f"Scores: mean {curve.mean}, median {curve.median}, range {curve.minimum}-{curve.maximum}; "
               + ", ".join(f"{r.label}: {r.count}" for r in curve.ranges))


@app.command()
def outcomes(
    config: str = typer.Argument(..., help="Course YAML (instruments, CLO maps, roster, benchmarks)"),
    grid: List[str] = typer.Option(..., "--grid", "-g", help="TYPE=PATH; repeat once per instrument"),
    sheet: str = typer.Option(DEFAULT_SHEET, "--sheet", help="Worksheet holding each answer grid"),
    on_missing: MismatchPolicy = typer.Option(
        MismatchPolicy.ABORT, "--on-missing", case_sensitive=False,
        help="Students missing from the roster or from every grid: abort | collect (report all, then fail) | skip"),
    group_by: str = typer.Option("category", "--group-by", help="Rollup groups: category|plo"),
    json_out: Optional[str] = typer.Option(None, "--json-out", help="Write the full report as JSON"),
):
    """
    Per-student CLO marks, achievement per benchmark threshold and the direct/indirect rollup.
    """
    if group_by not in GROUP_BY:
        raise typer.BadParameter(f"must be one of {GROUP_BY}", param_hint="--group-by")
    grid_paths = _parse_grid_args(grid)
    try:
        course = load_course_config(config)
        grids = {name: load_grid(path, sheet) for name, path in grid_paths.items()}
        report = analyze_outcomes(course, grids, on_missing=on_missing, group_by=group_by)
    except (EngineError, OSError) as e:
        _fail("Outcome analysis failed", e)

    _print_outcomes(report)
    if json_out:
        _write_json(json_out, report.to_dict())


def app_main(
    argv: Optional[List[str]] = None,
):
    try:
        app(args=argv)
    except KeyboardInterrupt:
        rprint("\n[red]Interrupted[/red]")
        sys.exit(130)


if __name__ == "__main__":
    app_main()
