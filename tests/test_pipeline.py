import json

import pandas as pd
import pytest

from immune_deconv.errors import ExternalModelError, JoinError
from immune_deconv.s1.run import s1_load_and_aggregate
from immune_deconv.s2.deconv import s2_deconvolve
from immune_deconv.s3.api import s3_cohort_analysis
from immune_deconv.s3.run import run_s3


def test_s1_writes_matrix_and_mapping_summary(tmp_path, quant_dir, tx2gene_tsv):
    paths, summaries = s1_load_and_aggregate(
        quant_dir=str(quant_dir), outdir=str(tmp_path / "s1"), tx2gene=str(tx2gene_tsv),
    )
    matrix = pd.read_csv(paths["gene_abundance"], sep="\t", index_col=0)
    assert list(matrix.columns) == ["patient1tumor1", "patient1tumor2", "patient2tumor1"]
    assert matrix.loc["CD8A", "patient1tumor1"] == pytest.approx(5.0)
    assert matrix.loc["FOXP3", "patient2tumor1"] == 0.0

    mapping = json.loads(open(paths["mapping_summary"]).read())
    assert mapping["n_transcripts_unmapped"] == 1
    assert mapping["per_sample"]["patient1tumor2"] == {"total": 3, "unmapped": 1}
    unmapped = pd.read_csv(paths["unmapped_transcripts"], sep="\t")
    assert unmapped["transcript_id"].tolist() == ["ENST9999.1"]
    assert summaries["prep"]["samples"] == list(matrix.columns)


def test_s1_requires_reference(tmp_path, quant_dir):
    with pytest.raises(ValueError, match="tx2gene"):
        s1_load_and_aggregate(quant_dir=str(quant_dir), outdir=str(tmp_path / "s1"))


def test_empty_quant_dir_stops_at_deconvolution(tmp_path, tx2gene_tsv, fake_backend):
    empty = tmp_path / "no_quants"
    empty.mkdir()
    paths, _ = s1_load_and_aggregate(quant_dir=str(empty), outdir=str(tmp_path / "s1"), tx2gene=str(tx2gene_tsv))
    with pytest.raises(ExternalModelError):
        s2_deconvolve(gene_tsv=paths["gene_abundance"], out_dir=str(tmp_path / "s2"), backend=fake_backend)
    assert fake_backend.calls == []


def test_s1_to_s3_with_fake_model(tmp_path, quant_dir, tx2gene_tsv, fake_backend):
    paths, _ = s1_load_and_aggregate(
        quant_dir=str(quant_dir), outdir=str(tmp_path / "s1"), tx2gene=str(tx2gene_tsv),
    )
    props = s2_deconvolve(gene_tsv=paths["gene_abundance"], out_dir=str(tmp_path / "s2"), backend=fake_backend)
    result = s3_cohort_analysis(props, out_dir=str(tmp_path / "s3"), plots=False, group_a="1", group_b="2")

    assert result["cohort"].to_dict() == {"patient1": 2, "patient2": 1}
    assert len(result["long"]) == 2 * 3
    # group "1" has a single sample, so nothing is testable
    assert result["comparison"].empty
    assert (tmp_path / "s3" / "data" / "fractions_long.tsv").exists()


def test_s3_analysis_outputs(tmp_path, cohort_fractions):
    props = tmp_path / "s2" / "cell_fractions.tsv"
    props.parent.mkdir()
    cohort_fractions.to_csv(props, sep="\t")

    result = run_s3(
        out_s2=str(props.parent), clinical=None, sample_col="sample_id", subject_col=None,
        sample_pattern=r"(?P<subject>.+?)(?P<tumor>tumou?r[-_]?\d+)", tumor_groups="2=2,3-4=3-4",
        group_a="2", group_b="3-4", cell_type=None, out_s3=str(tmp_path / "s3"),
    )

    summary = result["summary"]
    assert summary["overview"]["n_subjects"] == 3
    assert summary["overview"]["tumor_count_distribution"] == {2: 2, 3: 1}
    assert summary["overview"]["samples_per_tumor_group"] == {"2": 4, "3-4": 3}
    assert "T cell CD8+" in summary["statistical_analysis"]["significant_cell_types"]

    files = result["files"]
    comp = pd.read_csv(files["comparison_tsv"], sep="\t")
    assert set(comp["cell_type"]) == set(cohort_fractions.index)
    assert "IMMUNE DECONVOLUTION COHORT REPORT" in open(files["report_txt"]).read()
    assert set(result["plot_files"]) == {"composition", "heatmap", "group_boxes"}


def test_s3_single_cell_type_and_clinical_join(tmp_path, cohort_fractions):
    props = tmp_path / "cell_fractions.tsv"
    cohort_fractions.to_csv(props, sep="\t")
    clinical = tmp_path / "clinical.csv"
    pd.DataFrame({
        "sample_id": list(cohort_fractions.columns),
        "diagnosis": ["PDAC"] * 4 + ["IPMN"] * 3,
    }).to_csv(clinical, index=False)

    result = s3_cohort_analysis(
        str(props), clinical_path=str(clinical), cell_type="B cell",
        boundaries={2: "2", (3, 4): "3-4"}, out_dir=str(tmp_path / "s3"), plots=False,
    )
    assert result["comparison"]["cell_type"].tolist() == ["B cell"]
    assert set(result["long"]["diagnosis"]) == {"PDAC", "IPMN"}


def test_s3_clinical_table_missing_sample(tmp_path, cohort_fractions):
    props = tmp_path / "cell_fractions.tsv"
    cohort_fractions.to_csv(props, sep="\t")
    clinical = tmp_path / "clinical.csv"
    pd.DataFrame({"sample_id": list(cohort_fractions.columns[:-1])}).to_csv(clinical, index=False)

    with pytest.raises(JoinError, match="patient3tumor3"):
        s3_cohort_analysis(str(props), clinical_path=str(clinical), out_dir=str(tmp_path / "s3"), plots=False)
