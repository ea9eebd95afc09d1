#!/usr/bin/env python3
"""
Shared table loader
load_table_auto
"""

from __future__ import annotations

import csv
import gzip
from pathlib import Path
from typing import Optional

import pandas as pd


def _sniff_sep(p: Path) -> str:
    opener = gzip.open if p.suffix.lower() == ".gz" else open
    with opener(p, "rt", encoding="utf-8", errors="ignore", newline="") as f:
        sample = f.read(8192)
    try:
        return csv.Sniffer().sniff(sample, delimiters=[",", "\t", ";", "|"]).delimiter
    except csv.Error:
        return ","  # sane default


def load_table_auto(path: str, index_col: Optional[int] = None, **kwargs) -> pd.DataFrame:
    """
    Load a delimited table with smart delimiter detection and light robustness.

    Supports
    --------
    - .csv → comma
    - .tsv / .txt / .sf → tab
    - Other extensions (and .gz) → sniff between [',', '\\t', ';', '|']
    - Lines starting with '#' are treated as comments
    - UTF-8 by default; falls back to latin-1 if needed

    Parameters
    ----------
    path : str
        File path to load.
    index_col : int | None
        Optional 0-based index column to set.
    **kwargs
        Passed through to ``pandas.read_csv`` (e.g. ``dtype``).

    Returns
    -------
    pandas.DataFrame
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Table not found: {path}")

    ext = p.suffix.lower()
    if ext == ".csv":
        sep = ","
    elif ext in {".tsv", ".txt", ".sf"}:
        sep = "\t"
    else:
        sep = _sniff_sep(p)

    opts = dict(sep=sep, index_col=index_col, comment="#", low_memory=False)
    opts.update(kwargs)
    try:
        return pd.read_csv(path, **opts)
    except UnicodeDecodeError:
        return pd.read_csv(path, encoding="latin-1", **opts)
