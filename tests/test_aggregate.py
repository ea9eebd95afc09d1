import warnings

import numpy as np
import pandas as pd
import pytest

from immune_deconv.errors import MappingGapWarning
from immune_deconv.s1.aggregate import aggregate_to_genes
from immune_deconv.s1.io import load_quant_dir
from immune_deconv.s1.mapping import TranscriptGeneMap


def _table(rows):
    return pd.DataFrame({
        "transcript_id": [r[0] for r in rows],
        "length": np.nan,
        "effective_length": np.nan,
        "estimated_count": np.nan,
        "abundance": [r[1] for r in rows],
    })


class DictResolver:
    """Plain resolve()-only collaborator (no vectorised path)."""

    def __init__(self, mapping):
        self.mapping = mapping

    def resolve(self, transcript_id):
        return self.mapping.get(transcript_id)


def test_isoforms_sum_into_their_gene():
    mapper = TranscriptGeneMap({"T1": "A", "T2": "A", "T3": "B"})
    matrix, report = aggregate_to_genes({"S1": _table([("T1", 2.0), ("T2", 3.0), ("T3", 1.0)])}, mapper)
    assert matrix.to_dict() == {"S1": {"A": 5.0, "B": 1.0}}
    assert report.unmapped == {"S1": 0}


def test_unmapped_transcript_is_counted_and_excluded():
    mapper = TranscriptGeneMap({"T1": "A"})
    matrix, report = aggregate_to_genes({"S1": _table([("T1", 2.0), ("T9", 7.0)])}, mapper)
    assert list(matrix.index) == ["A"]
    assert matrix.loc["A", "S1"] == 2.0
    assert report.unmapped == {"S1": 1}
    assert report.unmapped_ids == {"S1": ["T9"]}
    assert report.unmapped_fraction == pytest.approx(0.5)
    assert report.unmapped_table().to_dict("records") == [{"sample_id": "S1", "transcript_id": "T9"}]


def test_plain_resolver_gives_same_matrix():
    mapping = {"T1": "A", "T2": "A", "T3": "B"}
    samples = {"S2": _table([("T3", 4.0)]), "S1": _table([("T1", 2.0), ("T2", 3.0), ("T4", 1.0)])}
    vec, rep_vec = aggregate_to_genes(samples, TranscriptGeneMap(mapping, ignore_version=False))
    plain, rep_plain = aggregate_to_genes(samples, DictResolver(mapping))
    pd.testing.assert_frame_equal(vec, plain)
    assert rep_vec.to_dict() == rep_plain.to_dict()


def test_columns_sorted_and_missing_pairs_zero():
    mapper = TranscriptGeneMap({"T1": "A", "T3": "B"})
    samples = {"S2": _table([("T3", 4.0)]), "S1": _table([("T1", 2.0)])}
    matrix, _ = aggregate_to_genes(samples, mapper)
    assert list(matrix.columns) == ["S1", "S2"]
    assert list(matrix.index) == ["A", "B"]
    assert matrix.loc["B", "S1"] == 0.0
    assert matrix.loc["A", "S2"] == 0.0
    assert matrix.index.name == "gene"
    assert matrix.columns.name == "sample_id"


def test_gene_total_equals_sum_of_resolved_transcripts(quant_dir, tx2gene_frame):
    mapper = TranscriptGeneMap.from_frame(tx2gene_frame)
    samples = load_quant_dir(str(quant_dir))
    matrix, report = aggregate_to_genes(samples, mapper)

    for sid, table in samples.items():
        genes = table["transcript_id"].map(mapper.resolve)
        expected = table.groupby(genes)["abundance"].sum()
        for gene in matrix.index:
            assert matrix.loc[gene, sid] == pytest.approx(expected.get(gene, 0.0))
    # ENST9999 is not in the reference
    assert report.unmapped == {"patient1tumor1": 0, "patient1tumor2": 1, "patient2tumor1": 0}
    assert (matrix >= 0).all().all()


def test_high_unmapped_fraction_warns():
    mapper = TranscriptGeneMap({"T1": "A"})
    with pytest.warns(MappingGapWarning, match="genome build"):
        _, report = aggregate_to_genes({"S1": _table([("T1", 1.0), ("X1", 1.0), ("X2", 1.0)])}, mapper)
    assert report.n_unmapped == 2


def test_low_unmapped_fraction_is_silent():
    mapper = TranscriptGeneMap({"T1": "A", "T2": "B"})
    with warnings.catch_warnings():
        warnings.simplefilter("error", MappingGapWarning)
        aggregate_to_genes({"S1": _table([("T1", 1.0), ("T2", 1.0), ("X1", 1.0)])}, mapper)


def test_empty_input_gives_empty_matrix():
    matrix, report = aggregate_to_genes({}, TranscriptGeneMap({"T1": "A"}))
    assert matrix.shape == (0, 0)
    assert report.n_total == 0
    assert report.unmapped_fraction == 0.0
