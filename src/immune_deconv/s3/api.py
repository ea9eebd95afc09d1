#!/usr/bin/env python3
"""
S3 (analysis) — Public wrapper
s3_cohort_analysis
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .analyzer import DEF_BOUNDARIES, CohortAnalyzer
from .cohort import DEFAULT_SAMPLE_PATTERN, Boundary

__all__ = ["s3_cohort_analysis"]


def s3_cohort_analysis(
    input_tsv: str,
    clinical_path: Optional[str] = None,
    sample_col: str = "sample_id",
    subject_col: Optional[str] = None,
    sample_pattern: str = DEFAULT_SAMPLE_PATTERN,
    boundaries: Optional[Mapping[Boundary, str]] = None,
    group_a: str = "2",
    group_b: str = "3-4",
    cell_type: Optional[str] = None,
    out_dir: str = "cohort_analysis",
    plots: bool = True,
) -> Dict[str, Any]:
    """
    High-level convenience API for S3 analysis.

    Parameters
    ----------
    input_tsv : str
        Path to `cell_fractions.tsv` (cell types in the first column, one column per sample).
    clinical_path : str | None
        Optional clinical attributes table; must contain `sample_col`. Other
        columns are carried into the long output untouched.
    sample_col : str
        Column in the clinical table that holds sample ids.
    subject_col : str | None
        Column in the clinical table with subject ids; derived from the sample id if None.
    sample_pattern : str
        Regex with `subject` and `tumor` groups used to split sample ids.
    boundaries : Mapping | None
        Tumor-count bucketing, e.g. {2: "2", (3, 4): "3-4"}.
    group_a, group_b : str
        Tumor-group labels compared by the t-test.
    cell_type : str | None
        Restrict the test to one cell type (all cell types if None).
    out_dir : str
        Output directory root for plots/, data/, reports/.
    plots : bool
        If True, renders figures via `s3.plots`.

    Returns
    -------
    Dict[str, Any]
        Result dictionary from `CohortAnalyzer.analyze(...)`.
    """
    analyzer = CohortAnalyzer(
        output_dir=out_dir,
        plots_enabled=plots,
        sample_pattern=sample_pattern,
        boundaries=dict(boundaries) if boundaries else dict(DEF_BOUNDARIES),
    )
    return analyzer.analyze(
        fractions_file=input_tsv,
        clinical_file=clinical_path,
        sample_col=sample_col,
        subject_col=subject_col,
        group_a=group_a,
        group_b=group_b,
        cell_type=cell_type,
    )
