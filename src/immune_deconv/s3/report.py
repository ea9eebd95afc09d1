#!/usr/bin/env python3
"""
S3 (analysis) — Reshaping and group comparison
melt_matrix, pivot_long, to_long, add_tumor_groups, compare_groups, compare_all
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import numpy as np
import pandas as pd
from scipy import stats

from ..errors import InsufficientDataError, JoinError
from .cohort import Boundary, collapse

logger = logging.getLogger(__name__)

LONG_COLUMNS = ["cell_type", "sample_id", "fraction", "subject_id", "tumor_count"]
MIN_GROUP_SIZE = 2


# ---------------- wide <-> long ----------------
def melt_matrix(matrix: pd.DataFrame, value_name: str = "value") -> pd.DataFrame:
    """
    Wide (rows x samples) -> long (row, sample_id, value), row-major order.
    Missing cells (NaN) are not emitted.
    """
    row_name = matrix.index.name or "feature"
    col_name = matrix.columns.name or "sample_id"
    n_rows, n_cols = matrix.shape
    long = pd.DataFrame({
        row_name: np.repeat(matrix.index.to_numpy(), n_cols),
        col_name: np.tile(matrix.columns.to_numpy(), n_rows),
        value_name: matrix.to_numpy().ravel(),
    })
    return long[long[value_name].notna()].reset_index(drop=True)


def pivot_long(long: pd.DataFrame, value_name: str = "value") -> pd.DataFrame:
    """Inverse of melt_matrix; row/column order follows first appearance."""
    row_name, col_name = [c for c in long.columns if c != value_name][:2]
    rows = pd.unique(long[row_name])
    cols = pd.unique(long[col_name])
    wide = long.pivot(index=row_name, columns=col_name, values=value_name)
    return wide.reindex(index=rows, columns=cols).rename_axis(index=row_name, columns=col_name)


def to_long(
    fractions: pd.DataFrame,
    cohort: pd.Series,
    attributes: pd.DataFrame,
) -> pd.DataFrame:
    """
    Flatten a cell_type x sample fraction matrix and attach subject_id and
    tumor_count. Extra attribute columns (clinical passthrough) are kept.

    Raises JoinError when a sample has no attributes or its subject has no
    cohort assignment.
    """
    attrs = attributes.drop_duplicates("sample_id").set_index("sample_id")
    samples = [str(c) for c in fractions.columns]

    missing = [s for s in samples if s not in attrs.index]
    if missing:
        raise JoinError(missing, "sample_id")
    subjects = attrs.loc[samples, "subject_id"]
    orphan = sorted(set(subjects) - set(cohort.index))
    if orphan:
        raise JoinError(orphan, "subject_id")

    mat = fractions.copy()
    mat.columns = samples
    mat.index.name = "cell_type"
    mat.columns.name = "sample_id"
    long = melt_matrix(mat, value_name="fraction")
    dropped = mat.size - len(long)
    if dropped:
        empty = mat.columns[mat.isna().all(axis=0)].tolist()
        logger.warning("[S3] Dropped %d missing fraction(s); samples with no fractions: %s", dropped, empty)

    long["subject_id"] = long["sample_id"].map(attrs["subject_id"])
    long["tumor_count"] = long["subject_id"].map(cohort).astype(int)

    extra = [c for c in attrs.columns if c not in LONG_COLUMNS]
    if extra:
        long = long.join(attrs[extra], on="sample_id")
    return long


def add_tumor_groups(long: pd.DataFrame, boundaries: Mapping[Boundary, str]) -> pd.DataFrame:
    out = long.copy()
    out["tumor_group"] = out["tumor_count"].map(lambda n: collapse(n, boundaries))
    return out


# ---------------- statistics ----------------
def _group_column(records: pd.DataFrame, group_col: Optional[str]) -> str:
    """tumor_group when present (after add_tumor_groups), else raw tumor_count."""
    if group_col is None:
        group_col = "tumor_group" if "tumor_group" in records.columns else "tumor_count"
    missing = [c for c in ("cell_type", "fraction", group_col) if c not in records.columns]
    if missing:
        raise JoinError(missing, "record column")
    return group_col


def compare_groups(
    records: pd.DataFrame,
    cell_type: str,
    group_a: str,
    group_b: str,
    group_col: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Welch's two-sided t-test of `cell_type` fractions between two groups.

    Groups are labels of `group_col`; by default tumor_group if the records
    carry it, otherwise tumor_count.

    Raises InsufficientDataError if either group has fewer than 2 observations.
    """
    group_col = _group_column(records, group_col)
    sub = records[records["cell_type"] == cell_type]
    labels = sub[group_col].astype(str)
    a = pd.to_numeric(sub.loc[labels == str(group_a), "fraction"], errors="coerce").dropna().to_numpy()
    b = pd.to_numeric(sub.loc[labels == str(group_b), "fraction"], errors="coerce").dropna().to_numpy()

    if len(a) < MIN_GROUP_SIZE or len(b) < MIN_GROUP_SIZE:
        raise InsufficientDataError(
            f"{cell_type}: need >= {MIN_GROUP_SIZE} observations per group, "
            f"got {group_a}={len(a)}, {group_b}={len(b)}"
        )

    statistic, p_value = stats.ttest_ind(a, b, equal_var=False)
    return {
        "cell_type": cell_type,
        "group_a": str(group_a),
        "group_b": str(group_b),
        "n_a": int(len(a)),
        "n_b": int(len(b)),
        "mean_a": float(np.mean(a)),
        "mean_b": float(np.mean(b)),
        "statistic": float(statistic),
        "p_value": float(p_value),
    }


def compare_all(
    records: pd.DataFrame,
    group_a: str,
    group_b: str,
    group_col: Optional[str] = None,
    cell_types: Optional[list] = None,
    strict: bool = False,
) -> pd.DataFrame:
    """
    compare_groups for every cell type (or just `cell_types`), plus
    BH-adjusted p-values. Cell types with too few observations are skipped
    unless `strict`, in which case InsufficientDataError propagates.
    """
    group_col = _group_column(records, group_col)
    rows = []
    for ct in cell_types or pd.unique(records["cell_type"]):
        try:
            rows.append(compare_groups(records, ct, group_a, group_b, group_col=group_col))
        except InsufficientDataError as e:
            if strict:
                raise
            logger.info("[S3] Skipping test: %s", e)

    cols = ["cell_type", "group_a", "group_b", "n_a", "n_b", "mean_a", "mean_b", "statistic", "p_value"]
    comp = pd.DataFrame(rows, columns=cols)
    comp["mean_difference"] = comp["mean_a"] - comp["mean_b"]
    comp["p_adj"] = np.nan
    ok = comp["p_value"].notna()
    if ok.any():
        comp.loc[ok, "p_adj"] = stats.false_discovery_control(comp.loc[ok, "p_value"].to_numpy(), method="bh")
    comp["Significant"] = comp["p_value"] < 0.05
    return comp.sort_values("p_value", na_position="last").reset_index(drop=True)
