#!/usr/bin/env python3
"""
S3 (analysis) — CohortAnalyzer
fractions + cohort stratification -> long table, group tests, plots, reports
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
import pandas as pd

from ..io_utils import load_table_auto
from .cohort import DEFAULT_SAMPLE_PATTERN, Boundary, count_tumors, load_clinical, sample_attributes
from .report import add_tumor_groups, compare_all, to_long

logger = logging.getLogger(__name__)

DEF_BOUNDARIES: Dict[Boundary, str] = {1: "1", 2: "2", (3, 4): "3-4"}


@dataclass
class CohortAnalyzer:
    """Stratify deconvolution fractions by tumors-per-patient and test group differences."""
    output_dir: str = "cohort_analysis"
    plots_enabled: bool = True
    sample_pattern: str = DEFAULT_SAMPLE_PATTERN
    boundaries: Mapping[Boundary, str] = field(default_factory=lambda: dict(DEF_BOUNDARIES))
    results: Dict[str, Any] = field(default_factory=dict)

    # Internal state
    _meta: Dict[str, Any] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        self.out = Path(self.output_dir)
        (self.out / "plots").mkdir(parents=True, exist_ok=True)
        (self.out / "data").mkdir(exist_ok=True)
        (self.out / "reports").mkdir(exist_ok=True)
        self._meta = {
            "analysis_date": datetime.now().isoformat(),
            "analyzer": "immune_deconv CohortAnalyzer",
            "sample_pattern": self.sample_pattern,
            "tumor_groups": {str(k): v for k, v in self.boundaries.items()},
        }

    # ---------------- IO & validation ----------------
    def load_fractions(self, fractions_file: str) -> pd.DataFrame:
        """Load the S2 cell_type x sample table."""
        logger.info("[S3] Loading fractions from: %s", fractions_file)
        df = load_table_auto(fractions_file, index_col=0)
        df = df.apply(pd.to_numeric, errors="coerce").replace([np.inf, -np.inf], np.nan)
        if df.empty or df.shape[0] == 0 or df.shape[1] == 0:
            raise ValueError("Fractions file seems empty or malformed.")
        if df.isna().all(axis=None):
            raise ValueError("All values are NaN after coercion—check the input file.")
        if (df < 0).any().any():
            logger.warning("[S3] Negative fractions detected; downstream stats may be unreliable.")

        df.index = df.index.astype(str)
        df.columns = [str(c) for c in df.columns]
        df.index.name = "cell_type"
        df.columns.name = "sample_id"
        self._meta["input_fractions_path"] = str(fractions_file)
        self._meta["n_cell_types"] = int(df.shape[0])
        self._meta["n_samples"] = int(df.shape[1])
        return df

    def sample_table(
        self,
        fractions: pd.DataFrame,
        clinical_file: Optional[str] = None,
        sample_col: str = "sample_id",
        subject_col: Optional[str] = None,
    ) -> pd.DataFrame:
        """Sample attributes from the clinical file, or derived from the sample ids."""
        if clinical_file:
            attrs = load_clinical(clinical_file, sample_col=sample_col, subject_col=subject_col,
                                  pattern=self.sample_pattern)
            self._meta["grouping"] = {"mode": "clinical", "path": str(clinical_file),
                                      "sample_col": sample_col, "subject_col": subject_col}
            # only samples that were deconvolved count towards tumors per subject
            return attrs[attrs["sample_id"].isin(fractions.columns)].reset_index(drop=True)
        self._meta["grouping"] = {"mode": "sample_id"}
        return sample_attributes(fractions.columns, self.sample_pattern)

    # ---------------- Stats ----------------
    def compare(
        self,
        long: pd.DataFrame,
        group_a: str,
        group_b: str,
        cell_type: Optional[str] = None,
    ) -> pd.DataFrame:
        logger.info("[S3] Comparing tumor groups %s vs %s", group_a, group_b)
        if cell_type:
            if cell_type not in set(long["cell_type"]):
                raise ValueError(f"Cell type {cell_type!r} not in deconvolution result.")
            # a single requested test must not be skipped silently
            return compare_all(long, group_a, group_b, cell_types=[cell_type], strict=True)
        return compare_all(long, group_a, group_b)

    # ---------------- Summaries ----------------
    def generate_summary_report(
        self,
        fractions: pd.DataFrame,
        cohort: pd.Series,
        long: pd.DataFrame,
        comparison: pd.DataFrame,
    ) -> Dict[str, Any]:
        group_sizes = long.drop_duplicates("sample_id")["tumor_group"].value_counts().sort_index()
        significant = comparison[comparison["Significant"] == True]  # noqa: E712
        return {
            "overview": {
                "total_cell_types": int(fractions.shape[0]),
                "n_samples": int(fractions.shape[1]),
                "n_subjects": int(cohort.shape[0]),
                "tumor_count_distribution": {int(k): int(v) for k, v in cohort.value_counts().sort_index().items()},
                "samples_per_tumor_group": {str(k): int(v) for k, v in group_sizes.items()},
            },
            "statistical_analysis": {
                "test": "Welch two-sample t-test (two-sided)",
                "total_tested": int(comparison.shape[0]),
                "significant_changes": int(significant.shape[0]),
                "significant_cell_types": significant["cell_type"].tolist(),
            },
        }

    # ---------------- Save artifacts ----------------
    def save_data_outputs(
        self,
        long: pd.DataFrame,
        cohort: pd.Series,
        comparison: pd.DataFrame,
        summary: Dict[str, Any],
    ) -> Dict[str, str]:
        data_dir = self.out / "data"
        reports_dir = self.out / "reports"
        files: Dict[str, str] = {}

        l_tsv = data_dir / "fractions_long.tsv"
        c_tsv = data_dir / "cohort_assignment.tsv"
        g_tsv = data_dir / "group_comparison.tsv"
        long.to_csv(l_tsv, sep="\t", index=False)
        cohort.to_frame().to_csv(c_tsv, sep="\t")
        comparison.to_csv(g_tsv, sep="\t", index=False)
        files["fractions_long_tsv"] = str(l_tsv)
        files["cohort_assignment_tsv"] = str(c_tsv)
        files["comparison_tsv"] = str(g_tsv)

        s_json = reports_dir / "analysis_summary.json"
        with open(s_json, "w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2, default=str)
        files["summary_json"] = str(s_json)

        m_json = reports_dir / "analysis_metadata.json"
        with open(m_json, "w", encoding="utf-8") as f:
            json.dump(self._meta, f, indent=2, default=str)
        files["metadata_json"] = str(m_json)
        return files

    def generate_text_report(self, summary: Dict[str, Any], comparison: pd.DataFrame) -> str:
        ov = summary["overview"]
        stat = summary["statistical_analysis"]
        lines: List[str] = [
            "=" * 80,
            "IMMUNE DECONVOLUTION COHORT REPORT",
            "=" * 80,
            f"Analysis Date: {self._meta.get('analysis_date')}",
            "",
            "1. COHORT",
            "-" * 30,
            f"Cell Types: {ov['total_cell_types']}",
            f"Samples: {ov['n_samples']}  Subjects: {ov['n_subjects']}",
            "Subjects by number of tumors sampled:",
        ]
        for n, k in ov["tumor_count_distribution"].items():
            lines.append(f"  • {n} tumor(s): {k} subject(s)")
        lines.append("Samples per tumor group:")
        for g, k in ov["samples_per_tumor_group"].items():
            lines.append(f"  • {g}: {k}")

        lines.extend([
            "",
            "2. GROUP COMPARISON",
            "-" * 30,
            f"Test: {stat['test']}",
            f"Significant (p < 0.05): {stat['significant_changes']}/{stat['total_tested']} tested",
            "",
            f"{'Cell Type':<35} {'Mean A':<10} {'Mean B':<10} {'t':<10} {'P-Value':<10} {'P-Adj':<10}",
            "-" * 85,
        ])
        for _, r in comparison.iterrows():
            p_adj = f"{r['p_adj']:.3f}" if pd.notna(r["p_adj"]) else "N/A"
            lines.append(
                f"{str(r['cell_type'])[:34]:<35} {r['mean_a']:<10.3f} {r['mean_b']:<10.3f} "
                f"{r['statistic']:<10.3f} {r['p_value']:<10.3f} {p_adj:<10}"
            )
        lines.extend(["", "=" * 80])

        report_path = self.out / "reports" / "analysis_report.txt"
        with open(report_path, "w", encoding="utf-8") as f:
            f.write("\n".join(lines))
        return str(report_path)

    def analyze(
        self,
        fractions_file: str,
        clinical_file: Optional[str] = None,
        sample_col: str = "sample_id",
        subject_col: Optional[str] = None,
        group_a: str = "2",
        group_b: str = "3-4",
        cell_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """High-level API: load → stratify → long table → stats → plots → save → report."""
        logger.info("[S3] Output directory: %s", self.out)
        fractions = self.load_fractions(fractions_file)

        attrs = self.sample_table(fractions, clinical_file, sample_col, subject_col)
        cohort = count_tumors(attrs)
        long = add_tumor_groups(to_long(fractions, cohort, attrs), self.boundaries)

        comparison = self.compare(long, group_a, group_b, cell_type=cell_type)
        summary = self.generate_summary_report(fractions, cohort, long, comparison)

        plot_files: Dict[str, str] = {}
        if self.plots_enabled:
            from . import plots  # late import keeps matplotlib off the stats-only path
            plot_files = plots.make_default_panel(fractions, long, self.out / "plots")

        files = self.save_data_outputs(long, cohort, comparison, summary)
        files["report_txt"] = self.generate_text_report(summary, comparison)

        self.results = {
            "fractions": fractions,
            "cohort": cohort,
            "long": long,
            "comparison": comparison,
            "summary": summary,
            "files": files,
            "plot_files": plot_files,
        }
        return self.results
