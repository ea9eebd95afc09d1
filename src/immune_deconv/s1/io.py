# src/immune_deconv/s1/io.py
"""
S1 (prep) — Quantification loader
find_quant_files, sample_id_from_path, read_quant_file, load_quant_dir
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

import numpy as np
import pandas as pd

from ..config import QuantSchema
from ..errors import FormatError

logger = logging.getLogger(__name__)

TRANSCRIPT_COLUMNS = ["transcript_id", "length", "effective_length", "estimated_count", "abundance"]

# file stems that name the tool rather than the sample (salmon: <sample>/quant.sf)
_GENERIC_STEMS = {"quant", "quant.genes", "abundance"}


class TranscriptRecord(NamedTuple):
    transcript_id: str
    length: Optional[int]
    effective_length: float
    estimated_count: float
    abundance: float


def find_quant_files(root_or_file: str, ext: str = ".sf") -> List[str]:
    """
    If given a file, return [that file].
    If given a directory, return every file under it ending with `ext`
    (recursive), sorted by path so discovery order is stable.
    """
    p = Path(root_or_file)
    if p.is_file():
        return [str(p.resolve())]
    if p.is_dir():
        return sorted(str(q.resolve()) for q in p.rglob(f"*{ext}") if q.is_file())
    raise FileNotFoundError(f"Not a file/dir or missing: {root_or_file}")


def sample_id_from_path(path: str, ext: str = ".sf") -> str:
    """'S1.sf' -> 'S1'; 'S1/quant.sf' -> 'S1'."""
    name = os.path.basename(path)
    stem = name[: -len(ext)] if ext and name.endswith(ext) else Path(name).stem
    if stem.lower() in _GENERIC_STEMS:
        return Path(path).parent.name
    return stem


def read_quant_file(path: str, schema: Optional[QuantSchema] = None) -> pd.DataFrame:
    """
    Parse one tab-separated quantification file into the canonical transcript
    table (columns: TRANSCRIPT_COLUMNS). Optional columns the tool does not
    provide are filled with NaN.

    Raises FormatError if a required column is missing, abundance is not
    numeric, or abundance is negative.
    """
    schema = schema or QuantSchema()
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Quantification file not found: {path}")

    try:
        df = pd.read_csv(path, sep="\t", dtype={schema.transcript_id: str})
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise FormatError(f"Unreadable quantification table: {e}", path) from e

    cols = schema.columns()
    for key in QuantSchema.REQUIRED:
        if cols[key] not in df.columns:
            raise FormatError(
                f"Missing required column {cols[key]!r} ({key}); found {list(df.columns)}", path
            )

    out = pd.DataFrame(index=df.index)
    for key, src in cols.items():
        if key == "transcript_id":
            out[key] = df[src].astype(str).str.strip()
        elif src is not None and src in df.columns:
            out[key] = pd.to_numeric(df[src], errors="coerce")
        else:
            out[key] = np.nan

    bad = out["abundance"].isna() & df[cols["abundance"]].notna()
    if bad.any():
        raise FormatError(f"{int(bad.sum())} non-numeric value(s) in column {cols['abundance']!r}", path)
    if (out["abundance"] < 0).any():
        raise FormatError(f"Negative values in column {cols['abundance']!r}", path)

    return out[TRANSCRIPT_COLUMNS].reset_index(drop=True)


def load_quant_dir(
    root_or_file: str,
    schema: Optional[QuantSchema] = None,
    ext: str = ".sf",
) -> Dict[str, pd.DataFrame]:
    """
    Discover and parse every quantification file under `root_or_file`.
    Returns {sample_id: transcript table}, keys sorted lexically.
    """
    files = find_quant_files(root_or_file, ext=ext)
    logger.info("[S1] Found %d quantification file(s) under %s", len(files), root_or_file)

    samples: Dict[str, pd.DataFrame] = {}
    origin: Dict[str, str] = {}
    for path in files:
        sid = sample_id_from_path(path, ext=ext)
        if sid in samples:
            raise FormatError(f"Duplicate sample id {sid!r} (also from {origin[sid]})", path)
        samples[sid] = read_quant_file(path, schema)
        origin[sid] = path
        logger.debug("[S1] %s: %d transcripts", sid, len(samples[sid]))

    return {sid: samples[sid] for sid in sorted(samples)}


def iter_records(table: pd.DataFrame):
    """Yield TranscriptRecord rows from a canonical transcript table (length None when absent)."""
    for tid, length, eff_len, est, abundance in table[TRANSCRIPT_COLUMNS].itertuples(index=False, name=None):
        yield TranscriptRecord(tid, None if pd.isna(length) else int(length), eff_len, est, abundance)
