#!/usr/bin/env python3
"""
S3 (analysis) — Cohort stratification
derive_subject, sample_attributes, stratify, count_tumors, collapse,
parse_boundaries, load_clinical
"""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union

import pandas as pd

from ..errors import FormatError, ParseError
from ..io_utils import load_table_auto

logger = logging.getLogger(__name__)

# 'patient1tumor2' -> subject 'patient1', tumor 'tumor2'
DEFAULT_SAMPLE_PATTERN = r"(?P<subject>.+?)(?P<tumor>tumou?r[-_]?\d+)"

Boundary = Union[int, Tuple[int, int]]


def _compile(pattern: Union[str, "re.Pattern[str]"]) -> "re.Pattern[str]":
    rx = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern, re.IGNORECASE)
    if "subject" not in rx.groupindex:
        raise ValueError(f"Sample pattern {rx.pattern!r} needs a named group (?P<subject>...)")
    return rx


def split_sample_id(sample_id: str, pattern: Union[str, "re.Pattern[str]"] = DEFAULT_SAMPLE_PATTERN) -> Tuple[str, str]:
    """(subject_id, tumor_id) for a composite sample id; ParseError if it does not fit."""
    sid = str(sample_id).strip()
    m = _compile(pattern).fullmatch(sid)
    if m is None:
        raise ParseError(sid)
    subject = (m.group("subject") or "").rstrip("-_ .")
    if not subject:
        raise ParseError(sid, "Sample id has no subject portion")
    tumor = m.groupdict().get("tumor") or sid[len(m.group("subject")):]
    return subject, tumor


def derive_subject(sample_id: str, pattern: Union[str, "re.Pattern[str]"] = DEFAULT_SAMPLE_PATTERN) -> str:
    """Subject id = sample id with its trailing tumor designator removed."""
    return split_sample_id(sample_id, pattern)[0]


def sample_attributes(
    sample_ids: Iterable[str],
    pattern: Union[str, "re.Pattern[str]"] = DEFAULT_SAMPLE_PATTERN,
) -> pd.DataFrame:
    """One row per distinct sample id: sample_id, subject_id, tumor_id."""
    rx = _compile(pattern)
    rows = []
    for sid in dict.fromkeys(map(str, sample_ids)):
        subject, tumor = split_sample_id(sid, rx)
        rows.append((sid, subject, tumor))
    return pd.DataFrame(rows, columns=["sample_id", "subject_id", "tumor_id"])


def count_tumors(attributes: pd.DataFrame) -> pd.Series:
    """subject_id -> number of distinct sample ids (tumors sampled)."""
    counts = (
        attributes.drop_duplicates("sample_id")
        .groupby("subject_id")["sample_id"]
        .nunique()
        .astype(int)
        .sort_index()
    )
    counts.name = "tumor_count"
    counts.index.name = "subject_id"
    return counts


def stratify(
    sample_ids: Iterable[str],
    pattern: Union[str, "re.Pattern[str]"] = DEFAULT_SAMPLE_PATTERN,
) -> pd.Series:
    """
    Cohort assignment: subject_id -> tumor_count.

    >>> stratify(["patient1tumor1", "patient1tumor2", "patient2tumor1"]).to_dict()
    {'patient1': 2, 'patient2': 1}
    """
    return count_tumors(sample_attributes(sample_ids, pattern))


# ---------------- tumor-count bucketing ----------------
def collapse(tumor_count: int, boundaries: Mapping[Boundary, str]) -> str:
    """
    Coarsen a tumor count into a group label.

    Keys are exact counts (int) or inclusive (lo, hi) ranges; the first
    matching key wins. Counts no key covers keep their own value as label.

    >>> collapse(4, {2: "2", (3, 4): "3-4"})
    '3-4'
    """
    n = int(tumor_count)
    for key, label in boundaries.items():
        if isinstance(key, tuple):
            lo, hi = key
            if lo <= n <= hi:
                return str(label)
        elif n == int(key):
            return str(label)
    return str(n)


def parse_boundaries(spec: str) -> Dict[Boundary, str]:
    """'1=1,2=2,3-4=3-4' -> {1: '1', 2: '2', (3, 4): '3-4'}"""
    out: Dict[Boundary, str] = {}
    for part in filter(None, (p.strip() for p in str(spec or "").split(","))):
        key, sep, label = part.partition("=")
        key = key.strip()
        try:
            if "-" in key:
                lo, hi = (int(x) for x in key.split("-", 1))
                if lo > hi:
                    raise ValueError
                out[(lo, hi)] = label.strip() if sep else key
            else:
                out[int(key)] = label.strip() if sep else key
        except ValueError:
            raise ValueError(f"Bad tumor-group boundary {part!r}; expected 'N=label' or 'LO-HI=label'")
    return out


# ---------------- clinical attributes ----------------
def load_clinical(
    path: str,
    sample_col: str = "sample_id",
    subject_col: Optional[str] = None,
    pattern: Union[str, "re.Pattern[str]"] = DEFAULT_SAMPLE_PATTERN,
) -> pd.DataFrame:
    """
    Read the clinical attributes table (CSV). Returns one row per sample with
    sample_id, subject_id, tumor_id and every other column passed through.
    If `subject_col` is not given the subject is derived from the sample id.
    """
    meta = load_table_auto(path, index_col=None, dtype=str)
    if sample_col not in meta.columns:
        raise FormatError(f"Clinical table missing column {sample_col!r}", path)
    if subject_col and subject_col not in meta.columns:
        raise FormatError(f"Clinical table missing column {subject_col!r}", path)

    meta = meta.rename(columns={sample_col: "sample_id"})
    meta["sample_id"] = meta["sample_id"].astype(str).str.strip()

    if subject_col:
        meta = meta.rename(columns={subject_col: "subject_id"})
        meta["subject_id"] = meta["subject_id"].astype(str).str.strip()
        if "tumor_id" not in meta.columns:
            meta["tumor_id"] = meta["sample_id"]
    else:
        derived = sample_attributes(meta["sample_id"], pattern).set_index("sample_id")
        meta = meta.drop(columns=[c for c in ("subject_id", "tumor_id") if c in meta.columns])
        meta["subject_id"] = meta["sample_id"].map(derived["subject_id"])
        meta["tumor_id"] = meta["sample_id"].map(derived["tumor_id"])

    subjects_per_sample = meta.groupby("sample_id")["subject_id"].nunique()
    conflicting = subjects_per_sample[subjects_per_sample > 1]
    if not conflicting.empty:
        raise ParseError(conflicting.index[0], "Sample id maps to more than one subject")

    meta = meta.drop_duplicates("sample_id").reset_index(drop=True)
    front = ["sample_id", "subject_id", "tumor_id"]
    logger.info("[S3] Clinical attributes: %d samples, %d subjects", len(meta), meta["subject_id"].nunique())
    return meta[front + [c for c in meta.columns if c not in front]]
