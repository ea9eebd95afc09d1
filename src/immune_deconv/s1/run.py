# src/immune_deconv/s1/run.py
#!/usr/bin/env python3
"""
S1 (prep) — Entrypoint
s1_load_and_aggregate
"""
from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional, Tuple

from ..config import QuantSchema, get_schema
from ..utils import write_json
from .aggregate import DEF_WARN_UNMAPPED_FRACTION, aggregate_to_genes
from .io import load_quant_dir
from .mapping import Resolver, load_tx2gene

logger = logging.getLogger(__name__)

# -------------------- Defaults --------------------
DEF_QUANT_EXT = ".sf"
DEF_QUANT_TOOL = "salmon"
DEF_GENE_MATRIX_NAME = "gene_abundance.tsv"


def s1_load_and_aggregate(
    quant_dir: str,
    outdir: str,
    tx2gene: Optional[str] = None,
    mapper: Optional[Resolver] = None,
    tx_col: str = "transcript_id",
    gene_col: str = "gene_name",
    ignore_version: bool = True,
    quant_ext: str = DEF_QUANT_EXT,
    quant_tool: str = DEF_QUANT_TOOL,
    schema: Optional[QuantSchema] = None,
    warn_unmapped_fraction: float = DEF_WARN_UNMAPPED_FRACTION,
    gene_matrix_name: str = DEF_GENE_MATRIX_NAME,
) -> Tuple[Dict[str, str], Dict[str, Any]]:
    """
    Load per-sample quantifications, map transcripts to genes and write the
    gene x sample abundance matrix.

    Either `tx2gene` (path to a table or GTF) or a ready `mapper` is required.
    """
    if mapper is None:
        if not tx2gene:
            raise ValueError("S1 needs a tx2gene reference (path) or a mapper object.")
        mapper = load_tx2gene(tx2gene, tx_col=tx_col, gene_col=gene_col, ignore_version=ignore_version)
    schema = schema or get_schema(quant_tool)
    os.makedirs(outdir, exist_ok=True)

    # 1) Quantification files
    samples = load_quant_dir(quant_dir, schema=schema, ext=quant_ext)
    if not samples:
        logger.warning("[S1] No '*%s' files found under %s; matrix will be empty", quant_ext, quant_dir)

    # 2) Transcript -> gene aggregation
    matrix, report = aggregate_to_genes(samples, mapper, warn_unmapped_fraction=warn_unmapped_fraction)

    # 3) Exports
    matrix_path = os.path.join(outdir, gene_matrix_name)
    matrix.to_csv(matrix_path, sep="\t", encoding="utf-8")

    unmapped_path = os.path.join(outdir, "unmapped_transcripts.tsv")
    report.unmapped_table().to_csv(unmapped_path, sep="\t", index=False, encoding="utf-8")

    map_sum = report.to_dict()
    map_sum.update({
        "n_genes": int(matrix.shape[0]),
        "ignore_version": bool(getattr(mapper, "ignore_version", ignore_version)),
        "warn_unmapped_fraction": float(warn_unmapped_fraction),
    })
    map_json_path = write_json(map_sum, os.path.join(outdir, "mapping_summary.json"))

    paths = {
        "gene_abundance": matrix_path,
        "unmapped_transcripts": unmapped_path,
        "mapping_summary": map_json_path,
    }
    summaries = {
        "mapping_summary": map_sum,
        "prep": {
            "quant_dir": quant_dir,
            "quant_ext": quant_ext,
            "quant_tool": quant_tool,
            "tx2gene": tx2gene,
            "samples": list(matrix.columns),
            "measure": "abundance (TPM)",
        },
    }

    logger.info("[S1] Gene abundance matrix (%d genes x %d samples): %s",
                matrix.shape[0], matrix.shape[1], matrix_path)
    return paths, summaries
