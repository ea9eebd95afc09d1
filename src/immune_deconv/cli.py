# src/immune_deconv/cli.py
from __future__ import annotations

import argparse
import logging
import os
import sys

from .config import USER_DEFAULTS, resolve_paths
from .errors import ExternalModelError, FormatError, InsufficientDataError, JoinError, ParseError
from .utils import timestamped_run_root


def _D(key: str, fallback):
    """pull from USER_DEFAULTS with a safe fallback"""
    return USER_DEFAULTS.get(key, fallback)


def _parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        "immune-deconv",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Quantifications -> gene abundance (S1) -> immune deconvolution (S2) "
                    "-> tumors-per-patient stratification & group tests (S3).",
    )

    # ---------- Inputs ----------
    ap.add_argument("--quant_dir",  default=_D("quant_dir", ""), help="Folder of per-sample quantification files")
    ap.add_argument("--quant_ext",  default=_D("quant_ext", ".sf"), help="File-name suffix of quantification files")
    ap.add_argument("--quant_tool", default=_D("quant_tool", "salmon"), choices=["salmon", "kallisto"])
    ap.add_argument("--tx2gene",    default=_D("tx2gene", ""), help="tx2gene table (CSV/TSV) or GTF")
    ap.add_argument("--tx_col",     default=_D("tx_col", "transcript_id"))
    ap.add_argument("--gene_col",   default=_D("gene_col", "gene_name"))
    ap.add_argument("--ignore_version", default=_D("ignore_version", "true"),
                    help="Strip transcript version suffixes before lookup")
    ap.add_argument("--clinical",   default=_D("clinical", ""), help="Clinical attributes CSV (optional)")

    # ---------- Outputs ----------
    ap.add_argument("--outdir",     default=_D("outdir", ""), help="S1 output dir")
    ap.add_argument("--s2_outdir",  default=_D("s2_outdir", ""), help="S2 output dir")
    ap.add_argument("--enh_outdir", default=_D("enh_outdir", ""), help="S3 output dir")

    # ---------- S1 ----------
    ap.add_argument("--warn_unmapped_fraction", default=_D("warn_unmapped_fraction", "0.5"))

    # ---------- S2 ----------
    ap.add_argument("--method",     default=_D("method", "quantiseq"),
                    choices=["quantiseq", "epic", "cibersort", "cibersort_abs", "mcp_counter", "xcell",
                             "timer", "abis", "estimate", "consensus_tme", "nnls"])
    ap.add_argument("--signature",  default=_D("signature", ""), help="Signature matrix for --method nnls")
    ap.add_argument("--tumor_mode", default=_D("tumor_mode", "true"))
    ap.add_argument("--arrays",     default=_D("arrays", "false"))
    ap.add_argument("--scale_mrna", default=_D("scale_mrna", "true"))
    ap.add_argument("--rscript",    default=_D("rscript", "Rscript"))

    # ---------- S3 ----------
    ap.add_argument("--sample_col",     default=_D("sample_col", "sample_id"))
    ap.add_argument("--subject_col",    default=_D("subject_col", ""))
    ap.add_argument("--sample_pattern", default=_D("sample_pattern", ""))
    ap.add_argument("--tumor_groups",   default=_D("tumor_groups", "1=1,2=2,3-4=3-4"))
    ap.add_argument("--group_a",        default=_D("group_a", "2"))
    ap.add_argument("--group_b",        default=_D("group_b", "3-4"))
    ap.add_argument("--cell_type",      default=_D("cell_type", ""))

    # ---------- Orchestration toggles ----------
    ap.add_argument("--skip_s1", action="store_true", help="Skip S1")
    ap.add_argument("--skip_s2", action="store_true", help="Skip S2")
    ap.add_argument("--skip_s3", action="store_true", help="Skip S3")
    ap.add_argument("--log_level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    return ap.parse_args(argv)


def main(argv=None) -> None:
    a = _parse_args(argv)
    logging.basicConfig(level=getattr(logging, a.log_level),
                        format="%(asctime)s - %(levelname)s - %(message)s")

    # --- resolve paths ---
    p = resolve_paths(a)
    if not a.skip_s1:
        if not p["quant_dir"]:
            raise SystemExit("Quantification input required (--quant_dir).")
        if not p["tx2gene"]:
            raise SystemExit("Transcript-to-gene reference required (--tx2gene).")

    out_s1, out_s2, out_s3 = p["outdir"], p["s2_outdir"], p["enh_outdir"]
    if not (out_s1 and out_s2 and out_s3):
        rr = timestamped_run_root()
        out_s1 = out_s1 or f"{rr}/s1"
        out_s2 = out_s2 or f"{rr}/s2"
        out_s3 = out_s3 or f"{rr}/s3"

    from .drivers import run_s1, run_s2, run_s3  # import late

    try:
        # --- S1 ---
        gene_tsv = os.path.join(out_s1, "gene_abundance.tsv")
        if not a.skip_s1:
            gene_tsv = run_s1(
                quant_dir=p["quant_dir"],
                out_s1=out_s1,
                tx2gene=p["tx2gene"],
                tx_col=a.tx_col,
                gene_col=a.gene_col,
                ignore_version=a.ignore_version,
                quant_ext=a.quant_ext,
                quant_tool=a.quant_tool,
                warn_unmapped_fraction=a.warn_unmapped_fraction,
            )
        else:
            print("[CLI] Skipping S1")

        # --- S2 ---
        if not a.skip_s2:
            run_s2(
                gene_tsv=gene_tsv,
                out_s2=out_s2,
                method=a.method,
                signature=p["signature"],
                rscript=a.rscript,
                tumor_mode=a.tumor_mode,
                arrays=a.arrays,
                scale_mrna=a.scale_mrna,
            )
        else:
            print("[CLI] Skipping S2")

        # --- S3 ---
        if not a.skip_s3:
            from .s3.cohort import DEFAULT_SAMPLE_PATTERN
            run_s3(
                out_s2=out_s2,
                clinical=p["clinical"],
                sample_col=a.sample_col,
                subject_col=a.subject_col,
                sample_pattern=a.sample_pattern or DEFAULT_SAMPLE_PATTERN,
                tumor_groups=a.tumor_groups,
                group_a=a.group_a,
                group_b=a.group_b,
                cell_type=a.cell_type,
                out_s3=out_s3,
            )
        else:
            print("[CLI] Skipping S3")
    except (FormatError, ParseError, JoinError, ExternalModelError, InsufficientDataError) as e:
        logging.getLogger(__name__).error("%s: %s", type(e).__name__, e)
        raise SystemExit(1)


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
