# src/immune_deconv/s3/run.py
from __future__ import annotations
import logging
import os
from pathlib import Path
from .api import s3_cohort_analysis
from .cohort import parse_boundaries

logger = logging.getLogger(__name__)

def _pick_fractions_file(out_s2: str) -> str:
    """cell_fractions.tsv from S2; a file path is accepted as-is."""
    p = Path(out_s2)
    if p.is_file():
        return str(p)
    candidate = p / "cell_fractions.tsv"
    if candidate.exists():
        return str(candidate)
    raise FileNotFoundError(f"[S3] Expected fractions file not found: {candidate}")

def run_s3(
    *,
    out_s2: str,
    clinical: str | None,
    sample_col: str,
    subject_col: str | None,
    sample_pattern: str,
    tumor_groups: str,
    group_a: str,
    group_b: str,
    cell_type: str | None,
    out_s3: str,
):
    """
    Stage 3: stratify S2 fractions by tumors per patient and compare groups.
    """
    os.makedirs(out_s3, exist_ok=True)
    logger.info("[S3] Starting post-processing. Input (S2): %s", out_s2)

    props_path = _pick_fractions_file(out_s2)
    logger.info("[S3] Using fractions file: %s", props_path)

    result = s3_cohort_analysis(
        input_tsv=props_path,
        clinical_path=clinical or None,
        sample_col=sample_col,
        subject_col=subject_col or None,
        sample_pattern=sample_pattern,
        boundaries=parse_boundaries(tumor_groups),
        group_a=group_a,
        group_b=group_b,
        cell_type=cell_type or None,
        out_dir=out_s3,
        plots=True,
    )
    logger.info("[S3] Analysis outputs in: %s", out_s3)
    return result
