#!/usr/bin/env python3
"""
closcore
grid_io.py
Read exported answer grids (.xlsx sheet or .csv) into a list of rows
"""

from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, List, Optional

import pandas as pd

from .errors import MalformedGridError

logger = logging.getLogger(__name__)

DEFAULT_SHEET = "Results Grid"
EXCEL_SUFFIXES = {".xlsx", ".xlsm"}


def _clean(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    if isinstance(value, str):
        return value.strip()
    return value


def frame_to_rows(df: pd.DataFrame) -> List[List[Any]]:
    """Header-less frame -> rows with blank cells as '' and trailing blanks dropped."""
    rows: List[List[Any]] = []
    for record in df.itertuples(index=False, name=None):
        row = [_clean(v) for v in record]
        while row and row[-1] == "":
            row.pop()
        rows.append(row)
    while rows and not rows[-1]:
        rows.pop()
    # the answer key row keeps the header width even when its last keys are blank
    if len(rows) > 1 and len(rows[1]) < len(rows[0]):
        rows[1] += [""] * (len(rows[0]) - len(rows[1]))
    return rows


def load_grid(path: str, sheet_name: Optional[str] = DEFAULT_SHEET) -> List[List[Any]]:
    """
    Load one sheet of a workbook (or a CSV file) as raw rows.

    CSV cells are read as text so identifiers keep their leading zeros;
    ``sheet_name`` is ignored for CSV input.
    """
    p = Path(path)
    suffix = p.suffix.lower()
    try:
        if suffix in EXCEL_SUFFIXES:
            df = pd.read_excel(p, sheet_name=sheet_name or 0, header=None, dtype=object, engine="openpyxl")
        elif suffix == ".csv":
            df = pd.read_csv(p, header=None, dtype=str, keep_default_na=False)
        else:
            raise MalformedGridError(f"Unsupported grid file type '{p.suffix}' ({path}); use .xlsx or .csv")
    except pd.errors.EmptyDataError:
        raise MalformedGridError(f"Grid file is empty: {path}")
    except ValueError as e:
        if isinstance(e, MalformedGridError):
            raise
        # openpyxl / pandas report a missing worksheet as ValueError
        raise MalformedGridError(f"Cannot read sheet '{sheet_name}' from {path}: {e}")

    rows = frame_to_rows(df)
    logger.debug("Loaded %d row(s) from %s%s", len(rows), path,
                 f" [{sheet_name}]" if suffix in EXCEL_SUFFIXES else "")
    return rows


__all__ = ["DEFAULT_SHEET", "frame_to_rows", "load_grid"]
