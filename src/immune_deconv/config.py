#!/usr/bin/env python3
"""
immune_deconv.config

Contains:
- USER_DEFAULTS: baseline defaults for CLI & drivers
- QuantSchema / QUANT_SCHEMAS: column-name conventions of quantification tools
- resolve_paths(args): expand user paths, normalize relative ones
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional


# -------------------------------------------------------------
# Default user-configurable parameters (used by CLI & drivers)
# -------------------------------------------------------------
# Central defaults used by the CLI. Make sure EVERY key the CLI reads exists here.
USER_DEFAULTS = {
    # Inputs
    "quant_dir":   "",             # folder of per-sample quantification files (or a single file)
    "quant_ext":   ".sf",          # salmon quant.sf; kallisto uses abundance.tsv
    "quant_tool":  "salmon",       # salmon | kallisto
    "tx2gene":     "",             # tx2gene table (CSV/TSV) or GTF annotation
    "tx_col":      "transcript_id",
    "gene_col":    "gene_name",
    "ignore_version": "true",
    "clinical":    "",             # optional clinical attributes CSV

    # Outputs
    "outdir":     "",
    "s2_outdir":  "",
    "enh_outdir": "",

    # S1 diagnostics
    "warn_unmapped_fraction": "0.5",

    # S2 tuning (strings on purpose; CLI passes through)
    "method":       "quantiseq",
    "signature":    "",            # gene x cell-type signature (nnls backend only)
    "tumor_mode":   "true",        # immunedeconv: quantiseq/epic tumor setting
    "arrays":       "false",
    "scale_mrna":   "true",
    "rscript":      "Rscript",

    # S3 labels
    "sample_col":     "sample_id",
    "subject_col":    "",          # blank: derive subject from the sample id
    "sample_pattern": "",          # blank: s3.cohort.DEFAULT_SAMPLE_PATTERN ('patient1tumor2')
    "tumor_groups":   "1=1,2=2,3-4=3-4",
    "group_a":        "2",
    "group_b":        "3-4",
    "cell_type":      "",          # blank: compare every cell type
}


# -------------------------------------------------------------
# Quantification tool conventions
# -------------------------------------------------------------
@dataclass(frozen=True)
class QuantSchema:
    """On-disk column names for the canonical transcript-table columns."""
    transcript_id: str = "Name"
    abundance: str = "TPM"
    length: Optional[str] = "Length"
    effective_length: Optional[str] = "EffectiveLength"
    estimated_count: Optional[str] = "NumReads"

    REQUIRED = ("transcript_id", "abundance")

    def columns(self) -> Dict[str, Optional[str]]:
        """canonical name -> on-disk name (None if the tool has no such column)"""
        return {
            "transcript_id": self.transcript_id,
            "length": self.length,
            "effective_length": self.effective_length,
            "estimated_count": self.estimated_count,
            "abundance": self.abundance,
        }


QUANT_SCHEMAS: Dict[str, QuantSchema] = {
    "salmon": QuantSchema(),
    "kallisto": QuantSchema(
        transcript_id="target_id",
        abundance="tpm",
        length="length",
        effective_length="eff_length",
        estimated_count="est_counts",
    ),
}


def get_schema(tool: str) -> QuantSchema:
    try:
        return QUANT_SCHEMAS[str(tool).lower()]
    except KeyError:
        raise ValueError(f"Unknown quantification tool {tool!r}; choose from {sorted(QUANT_SCHEMAS)}")


def as_bool(v: Any) -> bool:
    """CLI flags arrive as strings ('true', 'no', '1', ...)."""
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "t", "true", "y", "yes"}


# -------------------------------------------------------------
# Helper: normalize and expand paths
# -------------------------------------------------------------
def _expand_path(p: Optional[str]) -> Optional[str]:
    """Expand ~ and make absolute, or None if blank."""
    if p is None:
        return None
    p = str(p).strip()
    if not p:
        return None
    path = Path(p).expanduser()
    return str(path if path.is_absolute() else path.resolve())


def resolve_paths(args: Any) -> Dict[str, Optional[str]]:
    """
    Normalize all input/output paths in a CLI namespace or dict.

    Works with argparse.Namespace or plain dict.
    Returns a dict of resolved absolute paths (None for blank entries).

    Examples
    --------
    >>> resolve_paths({"quant_dir": "", "outdir": "/tmp/out"})["outdir"]
    '/tmp/out'
    """
    if hasattr(args, "__dict__"):
        items = vars(args)
    elif isinstance(args, dict):
        items = args
    else:
        raise TypeError("resolve_paths() expects dict or argparse.Namespace")

    keys = [
        "quant_dir", "tx2gene", "clinical", "signature",
        "outdir", "s2_outdir", "enh_outdir",
    ]
    resolved = {}
    for k in keys:
        v = items.get(k)
        resolved[k] = _expand_path(v)
    return resolved


# -------------------------------------------------------------
# Optional: run as script to print defaults
# -------------------------------------------------------------
if __name__ == "__main__":
    import json
    print(json.dumps(USER_DEFAULTS, indent=2))
