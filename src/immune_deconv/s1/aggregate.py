#!/usr/bin/env python3
"""
S1 (prep) — Gene-level aggregation
MappingReport, aggregate_to_genes

Transcript abundances (TPM) are summed per gene symbol and sample. Transcripts
the mapper cannot resolve are dropped from the matrix but counted, because a
silent id mismatch (wrong genome build, annotation release) still yields a
valid-looking matrix.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Tuple

import pandas as pd

from ..errors import MappingGapWarning
from .io import iter_records
from .mapping import Resolver

logger = logging.getLogger(__name__)

DEF_WARN_UNMAPPED_FRACTION = 0.5


@dataclass
class MappingReport:
    """Per-sample transcript resolution counts."""
    total: Dict[str, int] = field(default_factory=dict)
    unmapped: Dict[str, int] = field(default_factory=dict)
    unmapped_ids: Dict[str, List[str]] = field(default_factory=dict, repr=False)

    @property
    def n_total(self) -> int:
        return int(sum(self.total.values()))

    @property
    def n_unmapped(self) -> int:
        return int(sum(self.unmapped.values()))

    @property
    def unmapped_fraction(self) -> float:
        return self.n_unmapped / self.n_total if self.n_total else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "n_samples": len(self.total),
            "n_transcripts_total": self.n_total,
            "n_transcripts_unmapped": self.n_unmapped,
            "unmapped_fraction": round(self.unmapped_fraction, 6),
            "per_sample": {
                sid: {"total": self.total[sid], "unmapped": self.unmapped.get(sid, 0)}
                for sid in self.total
            },
        }

    def unmapped_table(self) -> pd.DataFrame:
        rows = [(sid, tid) for sid, ids in self.unmapped_ids.items() for tid in ids]
        return pd.DataFrame(rows, columns=["sample_id", "transcript_id"])


def _resolve(table: pd.DataFrame, mapper: Resolver) -> pd.Series:
    if hasattr(mapper, "resolve_series"):
        return mapper.resolve_series(table["transcript_id"])
    genes = [mapper.resolve(rec.transcript_id) for rec in iter_records(table)]
    return pd.Series(genes, index=table.index, dtype=object)


def aggregate_to_genes(
    samples: Mapping[str, pd.DataFrame],
    mapper: Resolver,
    warn_unmapped_fraction: float = DEF_WARN_UNMAPPED_FRACTION,
) -> Tuple[pd.DataFrame, MappingReport]:
    """
    Sum transcript abundances into a gene x sample matrix.

    Parameters
    ----------
    samples : Mapping[str, DataFrame]
        sample_id -> canonical transcript table (see s1.io.read_quant_file).
    mapper : Resolver
        Anything exposing resolve(transcript_id) -> gene | None; a
        resolve_series(Series) method is used when available.
    warn_unmapped_fraction : float
        Emit MappingGapWarning when the overall unmapped fraction exceeds this.

    Returns
    -------
    (DataFrame, MappingReport)
        Matrix indexed by gene symbol (sorted), columns = sample ids (sorted),
        0.0 where no transcript contributed.
    """
    report = MappingReport()
    columns: Dict[str, pd.Series] = {}

    for sid in sorted(samples):
        table = samples[sid]
        genes = _resolve(table, mapper)
        hit = genes.notna()

        report.total[sid] = int(len(table))
        report.unmapped[sid] = int((~hit).sum())
        report.unmapped_ids[sid] = table.loc[~hit, "transcript_id"].astype(str).tolist()

        per_gene = table.loc[hit, "abundance"].astype(float).groupby(genes[hit].values).sum()
        columns[sid] = per_gene
        logger.info(
            "[S1] %s: %d transcripts -> %d genes (%d unmapped)",
            sid, report.total[sid], per_gene.size, report.unmapped[sid],
        )

    if columns:
        matrix = pd.concat(columns, axis=1, sort=True).fillna(0.0).astype(float)
    else:
        matrix = pd.DataFrame(dtype=float)
    matrix.index.name = "gene"
    matrix.columns.name = "sample_id"

    if report.n_unmapped:
        logger.info(
            "[S1] Unmapped transcripts: %d of %d (%.1f%%)",
            report.n_unmapped, report.n_total, 100 * report.unmapped_fraction,
        )
    if report.n_total and report.unmapped_fraction > warn_unmapped_fraction:
        msg = (
            f"{report.unmapped_fraction:.1%} of transcripts could not be mapped to a gene; "
            "check that the tx2gene reference matches the genome build / annotation "
            "release used for quantification"
        )
        logger.warning("[S1] %s", msg)
        warnings.warn(msg, MappingGapWarning, stacklevel=2)

    return matrix, report
