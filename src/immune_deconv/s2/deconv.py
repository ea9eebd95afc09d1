# src/immune_deconv/s2/deconv.py
from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Optional, Protocol

import numpy as np
import pandas as pd
from scipy.optimize import nnls

from ..errors import ExternalModelError
from ..io_utils import load_table_auto

logger = logging.getLogger(__name__)

# immunedeconv method names, plus the in-process NNLS backend
METHODS = (
    "quantiseq", "epic", "cibersort", "cibersort_abs", "mcp_counter",
    "xcell", "timer", "abis", "estimate", "consensus_tme", "nnls",
)
R_METHODS = METHODS[:-1]

DEF_METHOD = "quantiseq"
DEF_MIN_OVERLAP = 50


class Deconvolver(Protocol):
    def deconvolve(self, matrix: pd.DataFrame, method: str) -> pd.DataFrame: ...


# ---------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------
def validate_matrix(matrix: pd.DataFrame) -> None:
    """Reject matrices the external model cannot sensibly consume."""
    if matrix is None or matrix.shape[0] == 0 or matrix.shape[1] == 0:
        raise ExternalModelError(
            "Abundance matrix is empty "
            f"({0 if matrix is None else matrix.shape[0]} genes x "
            f"{0 if matrix is None else matrix.shape[1]} samples); nothing to deconvolve."
        )
    idx = pd.Series(matrix.index)
    if not idx.map(lambda g: isinstance(g, str) and g.strip() != "").all():
        raise ExternalModelError("Abundance matrix rows must be non-empty gene symbols.")
    if matrix.index.has_duplicates:
        dups = matrix.index[matrix.index.duplicated()].unique().tolist()[:5]
        raise ExternalModelError(f"Duplicate gene symbols in abundance matrix: {dups}")
    if matrix.columns.has_duplicates:
        raise ExternalModelError("Duplicate sample ids in abundance matrix columns.")
    if not all(pd.api.types.is_numeric_dtype(t) for t in matrix.dtypes):
        raise ExternalModelError("Abundance matrix contains non-numeric columns.")


def deconvolve(matrix: pd.DataFrame, method: str, backend: Deconvolver) -> pd.DataFrame:
    """
    Estimate cell-type fractions from a gene x sample abundance matrix.

    Single-shot: the backend is called once, failures surface as
    ExternalModelError. Returns a cell_type x sample_id frame whose columns
    follow the input sample order.
    """
    method = str(method).lower()
    if method not in METHODS:
        raise ExternalModelError(f"Unknown deconvolution method {method!r}; choose from {list(METHODS)}")
    validate_matrix(matrix)

    samples = [str(c) for c in matrix.columns]
    logger.info("[S2] Deconvolving %d genes x %d samples with %s",
                matrix.shape[0], matrix.shape[1], method)
    try:
        result = backend.deconvolve(matrix.copy(), method)
    except ExternalModelError:
        raise
    except Exception as e:
        raise ExternalModelError(f"Deconvolution backend failed ({method}): {e}") from e

    if result is None or result.shape[0] == 0 or result.shape[1] == 0:
        raise ExternalModelError(f"Deconvolution ({method}) returned no rows/columns.")

    result = result.copy()
    result.columns = [str(c) for c in result.columns]
    missing = [s for s in samples if s not in result.columns]
    if missing:
        raise ExternalModelError(f"Deconvolution ({method}) result lacks sample(s): {missing[:10]}")

    fractions = result[samples].apply(pd.to_numeric, errors="coerce").astype(float)
    fractions.index = fractions.index.astype(str)
    fractions.index.name = "cell_type"
    fractions.columns.name = "sample_id"

    if (fractions < 0).any().any() or (fractions > 1).any().any():
        logger.warning("[S2] Some fractions fall outside [0, 1]; %s scores may not be proportions.", method)
    return fractions


# ---------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------
class RscriptDeconvolver:
    """
    Run the R `immunedeconv` package through the bundled immunedeconv.R.

    Options travel to R as *_PY environment variables; the matrix and the
    result are exchanged as TSV files in `work_dir` (a temp dir if None).
    """

    def __init__(
        self,
        work_dir: Optional[str] = None,
        rscript: str = "Rscript",
        tumor: bool = True,
        arrays: bool = False,
        scale_mrna: bool = True,
    ):
        self.work_dir = work_dir
        self.rscript = rscript
        self.tumor = tumor
        self.arrays = arrays
        self.scale_mrna = scale_mrna
        self.r_script = Path(__file__).with_name("immunedeconv.R")

    def deconvolve(self, matrix: pd.DataFrame, method: str) -> pd.DataFrame:
        if method not in R_METHODS:
            raise ExternalModelError(f"{method!r} is not an immunedeconv method.")
        if not self.r_script.exists():
            raise FileNotFoundError(f"[S2] Missing R script: {self.r_script}")

        if self.work_dir:
            return self._run(matrix, method, Path(self.work_dir))
        with tempfile.TemporaryDirectory(prefix="immune_deconv_") as tmp:
            return self._run(matrix, method, Path(tmp))

    def _run(self, matrix: pd.DataFrame, method: str, work: Path) -> pd.DataFrame:
        work.mkdir(parents=True, exist_ok=True)
        in_tsv = work / "r_input_gene_abundance.tsv"
        out_tsv = work / "r_output_fractions.tsv"
        matrix.to_csv(in_tsv, sep="\t")

        env = os.environ.copy()
        env.update({
            "EXPR_FILE_PY": str(in_tsv.resolve()),
            "OUT_FILE_PY": str(out_tsv.resolve()),
            "METHOD_PY": method,
            "TUMOR_PY": "true" if self.tumor else "false",
            "ARRAYS_PY": "true" if self.arrays else "false",
            "SCALE_MRNA_PY": "true" if self.scale_mrna else "false",
        })

        log_file = work / "R_console.log"
        err_file = work / "R_stderr.log"
        cmd = [self.rscript, str(self.r_script)]
        logger.info("[S2] Running: %s", " ".join(cmd))

        try:
            result = subprocess.run(cmd, check=True, env=env, capture_output=True, text=True)
        except FileNotFoundError as e:
            raise ExternalModelError(
                f"{self.rscript} not found on PATH. Install R and ensure 'Rscript' is available."
            ) from e
        except subprocess.CalledProcessError as e:
            log_file.write_text(e.stdout or "")
            err_file.write_text(e.stderr or "")
            tail = (e.stderr or "").splitlines()[-20:]
            logger.error("[S2][R stderr tail]\n%s", "\n".join(tail))
            raise ExternalModelError(
                f"immunedeconv R step failed (exit {e.returncode}). See logs:\n  {log_file}\n  {err_file}"
            ) from e

        log_file.write_text(result.stdout or "")
        err_file.write_text(result.stderr or "")
        if not out_tsv.exists():
            raise ExternalModelError(f"Expected R output not found: {out_tsv}")
        return pd.read_csv(out_tsv, sep="\t", index_col=0)


class NNLSDeconvolver:
    """
    In-process non-negative least squares against a gene x cell-type
    signature matrix; each sample's coefficients are rescaled to sum to 1.
    """

    def __init__(self, signature: pd.DataFrame, min_overlap: int = DEF_MIN_OVERLAP):
        self.signature = signature.apply(pd.to_numeric, errors="coerce").fillna(0.0)
        self.signature.index = self.signature.index.astype(str)
        self.min_overlap = int(min_overlap)

    @classmethod
    def from_file(cls, path: str, min_overlap: int = DEF_MIN_OVERLAP) -> "NNLSDeconvolver":
        return cls(load_table_auto(path, index_col=0), min_overlap=min_overlap)

    def deconvolve(self, matrix: pd.DataFrame, method: str = "nnls") -> pd.DataFrame:
        genes = self.signature.index.intersection(matrix.index)
        if len(genes) < self.min_overlap:
            raise ExternalModelError(
                f"Only {len(genes)} genes shared with the signature (need >= {self.min_overlap})."
            )
        logger.info("[S2] NNLS on %d shared genes, %d cell types", len(genes), self.signature.shape[1])

        A = self.signature.loc[genes].to_numpy(dtype=float)
        out = {}
        for sample in matrix.columns:
            coef, _ = nnls(A, matrix.loc[genes, sample].to_numpy(dtype=float))
            total = coef.sum()
            out[sample] = coef / total if total > 0 else np.full_like(coef, np.nan)
        return pd.DataFrame(out, index=self.signature.columns.astype(str))


def make_backend(
    method: str,
    signature: Optional[str] = None,
    work_dir: Optional[str] = None,
    rscript: str = "Rscript",
    tumor: bool = True,
    arrays: bool = False,
    scale_mrna: bool = True,
) -> Deconvolver:
    """Backend for `method`: NNLS needs a signature file, everything else goes to R."""
    if method == "nnls":
        if not signature:
            raise ValueError("method 'nnls' requires a signature matrix (--signature).")
        return NNLSDeconvolver.from_file(signature)
    return RscriptDeconvolver(work_dir=work_dir, rscript=rscript, tumor=tumor, arrays=arrays, scale_mrna=scale_mrna)


# ---------------------------------------------------------------------
# Stage entrypoint
# ---------------------------------------------------------------------
def s2_deconvolve(
    *,
    gene_tsv: str,
    out_dir: str,
    method: str = DEF_METHOD,
    backend: Optional[Deconvolver] = None,
    signature: Optional[str] = None,
    rscript: str = "Rscript",
    tumor: bool = True,
    arrays: bool = False,
    scale_mrna: bool = True,
) -> str:
    """
    Stage 2: deconvolve the S1 gene abundance matrix.

    Returns
    -------
    str
        Path to cell_fractions.tsv (cell types x samples)
    """
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    logger.info("[S2] Input matrix: %s", gene_tsv)
    logger.info("[S2] Writing to:   %s", out_dir)

    method = str(method).lower()
    try:
        matrix = pd.read_csv(gene_tsv, sep="\t", index_col=0)
    except pd.errors.EmptyDataError:
        matrix = pd.DataFrame(dtype=float)
    matrix.index = matrix.index.astype(str)
    if backend is None:
        # reject empty input before touching R
        validate_matrix(matrix)
        backend = make_backend(
            method, signature=signature, work_dir=str(out), rscript=rscript,
            tumor=tumor, arrays=arrays, scale_mrna=scale_mrna,
        )

    fractions = deconvolve(matrix, method, backend)

    props_tsv = out / "cell_fractions.tsv"
    fractions.to_csv(props_tsv, sep="\t")

    summary = {
        "gene_tsv": str(Path(gene_tsv).resolve()),
        "out_dir": str(out.resolve()),
        "method": method,
        "backend": type(backend).__name__,
        "shape_cell_fractions": list(map(int, fractions.shape)),
        "cell_types": fractions.index.tolist(),
        "index_is_cell_type": True,
    }
    with open(out / "deconvolution_summary.json", "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)

    logger.info("[S2] Wrote %s", props_tsv)
    return str(props_tsv)
