#!/usr/bin/env python3
"""
S1 (prep) — Transcript-to-gene mapping
TranscriptGeneMap (from_table, from_gtf), strip_version
"""

from __future__ import annotations

import csv
import logging
import re
from typing import Dict, Mapping, Optional, Protocol

import pandas as pd

from ..errors import FormatError
from ..io_utils import load_table_auto

logger = logging.getLogger(__name__)

# 'ENST00000456328.2' -> 'ENST00000456328'; 'ENST00000383070.1_PAR_Y' keeps its _PAR_Y tag
_VERSION_RE = re.compile(r"\.\d+(?=(_PAR_Y)?$)")

_GTF_COLUMNS = ["seqname", "source", "feature", "start", "end", "score", "strand", "frame", "attribute"]


def strip_version(transcript_id: str) -> str:
    """Remove an Ensembl version suffix like '.12'."""
    return _VERSION_RE.sub("", str(transcript_id).strip())


def _strip_version_series(s: pd.Series) -> pd.Series:
    return s.astype(str).str.strip().str.replace(_VERSION_RE, "", regex=True)


class Resolver(Protocol):
    def resolve(self, transcript_id: str) -> Optional[str]: ...


class TranscriptGeneMap:
    """
    Read-only transcript -> gene symbol lookup.

    Parameters
    ----------
    mapping : Mapping[str, str]
        transcript id -> gene symbol. Entries with blank symbols are dropped.
    ignore_version : bool
        Strip trailing '.N' version suffixes from both the keys and the queried
        ids, so quantifications built on a different annotation release still match.
    """

    def __init__(self, mapping: Mapping[str, str], ignore_version: bool = True):
        self.ignore_version = bool(ignore_version)
        table: Dict[str, str] = {}
        n_blank = n_conflict = 0
        for tx, gene in mapping.items():
            if gene is None or pd.isna(gene) or not str(gene).strip():
                n_blank += 1
                continue
            key = self._normalize(tx)
            gene = str(gene).strip()
            if key in table:
                if table[key] != gene:
                    n_conflict += 1
                continue
            table[key] = gene
        if n_blank:
            logger.debug("[S1] Dropped %d transcript(s) without a gene symbol", n_blank)
        if n_conflict:
            logger.warning("[S1] %d transcript id(s) map to several genes; kept the first", n_conflict)
        self._map = table

    def _normalize(self, transcript_id: str) -> str:
        tid = str(transcript_id).strip()
        return strip_version(tid) if self.ignore_version else tid

    def __len__(self) -> int:
        return len(self._map)

    def __contains__(self, transcript_id: str) -> bool:
        return self._normalize(transcript_id) in self._map

    def resolve(self, transcript_id: str) -> Optional[str]:
        """Gene symbol for `transcript_id`, or None if the map has no entry."""
        return self._map.get(self._normalize(transcript_id))

    def resolve_series(self, ids: pd.Series) -> pd.Series:
        """Vectorised resolve(); unresolved ids become NaN."""
        keys = _strip_version_series(ids) if self.ignore_version else ids.astype(str).str.strip()
        return keys.map(self._map)

    @property
    def genes(self) -> set:
        return set(self._map.values())

    # ---------------- constructors ----------------
    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        tx_col: str = "transcript_id",
        gene_col: str = "gene_name",
        ignore_version: bool = True,
    ) -> "TranscriptGeneMap":
        for c in (tx_col, gene_col):
            if c not in df.columns:
                raise FormatError(f"tx2gene table missing column {c!r}; found {list(df.columns)}")
        pairs = df[[tx_col, gene_col]].dropna(subset=[tx_col])
        return cls(dict(zip(pairs[tx_col].astype(str), pairs[gene_col])), ignore_version=ignore_version)

    @classmethod
    def from_table(
        cls,
        path: str,
        tx_col: str = "transcript_id",
        gene_col: str = "gene_name",
        ignore_version: bool = True,
    ) -> "TranscriptGeneMap":
        """Load a tx2gene CSV/TSV (delimiter auto-detected)."""
        df = load_table_auto(path, index_col=None, dtype=str)
        try:
            out = cls.from_frame(df, tx_col=tx_col, gene_col=gene_col, ignore_version=ignore_version)
        except FormatError as e:
            raise FormatError(str(e), path) from e
        logger.info("[S1] Loaded %d transcript->gene entries from %s", len(out), path)
        return out

    @classmethod
    def from_gtf(
        cls,
        path: str,
        gene_attr: str = "gene_name",
        ignore_version: bool = True,
    ) -> "TranscriptGeneMap":
        """
        Build the map from the 'transcript' rows of an Ensembl/GENCODE GTF
        (plain or .gz).
        """
        gtf = pd.read_csv(
            path, sep="\t", comment="#", header=None, names=_GTF_COLUMNS,
            usecols=["feature", "attribute"], dtype=str, quoting=csv.QUOTE_NONE,
        )
        tx = gtf.loc[gtf["feature"] == "transcript", "attribute"]
        if tx.empty:
            raise FormatError("GTF has no 'transcript' features", path)
        df = pd.DataFrame({
            "transcript_id": tx.str.extract(r'transcript_id "([^"]+)"', expand=False),
            gene_attr: tx.str.extract(rf'{re.escape(gene_attr)} "([^"]+)"', expand=False),
        })
        out = cls.from_frame(df, tx_col="transcript_id", gene_col=gene_attr, ignore_version=ignore_version)
        logger.info("[S1] Parsed %d transcript->gene entries from GTF %s", len(out), path)
        return out


def load_tx2gene(
    path: str,
    tx_col: str = "transcript_id",
    gene_col: str = "gene_name",
    ignore_version: bool = True,
) -> TranscriptGeneMap:
    """Pick the GTF or table constructor from the file name."""
    name = str(path).lower()
    if name.endswith((".gtf", ".gtf.gz")):
        return TranscriptGeneMap.from_gtf(path, gene_attr=gene_col, ignore_version=ignore_version)
    return TranscriptGeneMap.from_table(path, tx_col=tx_col, gene_col=gene_col, ignore_version=ignore_version)
