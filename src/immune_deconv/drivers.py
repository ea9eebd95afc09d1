from __future__ import annotations

from .config import as_bool

def run_s1(*, quant_dir, out_s1, tx2gene, tx_col, gene_col, ignore_version, quant_ext, quant_tool,
           warn_unmapped_fraction):
    from .s1.run import s1_load_and_aggregate  # import late
    paths, _ = s1_load_and_aggregate(
        quant_dir=quant_dir,
        outdir=out_s1,
        tx2gene=tx2gene,
        tx_col=tx_col,
        gene_col=gene_col,
        ignore_version=as_bool(ignore_version),
        quant_ext=quant_ext,
        quant_tool=quant_tool,
        warn_unmapped_fraction=float(warn_unmapped_fraction),
    )
    return paths["gene_abundance"]

def run_s2(*, gene_tsv, out_s2, method, signature, rscript, tumor_mode, arrays, scale_mrna):
    from .s2.deconv import s2_deconvolve  # import late
    return s2_deconvolve(
        gene_tsv=gene_tsv,
        out_dir=out_s2,
        method=method,
        signature=signature,
        rscript=rscript,
        tumor=as_bool(tumor_mode),
        arrays=as_bool(arrays),
        scale_mrna=as_bool(scale_mrna),
    )

def run_s3(**kwargs):
    from .s3.run import run_s3 as _run_s3  # import late
    return _run_s3(**kwargs)
