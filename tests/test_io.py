import pandas as pd
import pytest

from immune_deconv.config import QUANT_SCHEMAS, QuantSchema
from immune_deconv.errors import FormatError
from immune_deconv.s1.io import (
    TRANSCRIPT_COLUMNS,
    TranscriptRecord,
    find_quant_files,
    iter_records,
    load_quant_dir,
    read_quant_file,
    sample_id_from_path,
)

from conftest import write_salmon


def test_read_salmon_file_to_canonical_columns(tmp_path):
    path = write_salmon(tmp_path / "S1.sf", [("ENST0001.1", 2.5), ("ENST0002.1", 0.0)])
    df = read_quant_file(str(path))
    assert list(df.columns) == TRANSCRIPT_COLUMNS
    assert df["transcript_id"].tolist() == ["ENST0001.1", "ENST0002.1"]
    assert df["abundance"].tolist() == [2.5, 0.0]
    assert df["estimated_count"].tolist() == [25.0, 0.0]


def test_records_are_named_tuples(tmp_path):
    path = write_salmon(tmp_path / "S1.sf", [("ENST0001.1", 2.5)])
    (rec,) = list(iter_records(read_quant_file(str(path))))
    assert isinstance(rec, TranscriptRecord)
    assert rec.transcript_id == "ENST0001.1"
    assert rec.abundance == 2.5
    assert rec.length == 1500 and isinstance(rec.length, int)


def test_missing_required_column_names_the_file(tmp_path):
    path = tmp_path / "bad.sf"
    pd.DataFrame({"Name": ["ENST0001"], "NumReads": [3]}).to_csv(path, sep="\t", index=False)
    with pytest.raises(FormatError) as exc:
        read_quant_file(str(path))
    assert "TPM" in str(exc.value)
    assert exc.value.path == str(path)


def test_non_numeric_and_negative_abundance_rejected(tmp_path):
    p1 = tmp_path / "text.sf"
    pd.DataFrame({"Name": ["a", "b"], "TPM": ["1.0", "high"]}).to_csv(p1, sep="\t", index=False)
    with pytest.raises(FormatError):
        read_quant_file(str(p1))

    p2 = tmp_path / "neg.sf"
    pd.DataFrame({"Name": ["a"], "TPM": [-1.0]}).to_csv(p2, sep="\t", index=False)
    with pytest.raises(FormatError):
        read_quant_file(str(p2))


def test_optional_columns_filled_when_absent(tmp_path):
    path = tmp_path / "min.sf"
    pd.DataFrame({"Name": ["ENST0001"], "TPM": [1.0]}).to_csv(path, sep="\t", index=False)
    df = read_quant_file(str(path))
    assert df["length"].isna().all()
    assert df.loc[0, "abundance"] == 1.0
    (rec,) = list(iter_records(df))
    assert rec.length is None


def test_kallisto_schema(tmp_path):
    path = tmp_path / "S2" / "abundance.tsv"
    path.parent.mkdir()
    pd.DataFrame({
        "target_id": ["ENST0001.1"], "length": [900], "eff_length": [750.2],
        "est_counts": [12.0], "tpm": [3.3],
    }).to_csv(path, sep="\t", index=False)
    df = read_quant_file(str(path), QUANT_SCHEMAS["kallisto"])
    assert df.loc[0, "transcript_id"] == "ENST0001.1"
    assert df.loc[0, "abundance"] == pytest.approx(3.3)
    assert sample_id_from_path(str(path), ext=".tsv") == "S2"


def test_custom_schema_column_names(tmp_path):
    path = tmp_path / "S3.txt"
    pd.DataFrame({"tx": ["ENST0001"], "expr": [8.0]}).to_csv(path, sep="\t", index=False)
    schema = QuantSchema(transcript_id="tx", abundance="expr", length=None,
                         effective_length=None, estimated_count=None)
    assert read_quant_file(str(path), schema)["abundance"].tolist() == [8.0]


def test_find_files_sorted_and_recursive(quant_dir):
    files = find_quant_files(str(quant_dir), ext=".sf")
    assert [sample_id_from_path(f) for f in files] == ["patient1tumor1", "patient1tumor2", "patient2tumor1"]
    assert files == sorted(files)


def test_find_files_missing_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        find_quant_files(str(tmp_path / "nope"))


def test_sample_id_from_flat_file_name():
    assert sample_id_from_path("/data/patient3tumor1.sf") == "patient3tumor1"
    assert sample_id_from_path("/data/patient3tumor1/quant.sf") == "patient3tumor1"


def test_load_quant_dir(quant_dir):
    samples = load_quant_dir(str(quant_dir))
    assert list(samples) == ["patient1tumor1", "patient1tumor2", "patient2tumor1"]
    assert len(samples["patient2tumor1"]) == 1


def test_load_quant_dir_duplicate_sample(tmp_path):
    write_salmon(tmp_path / "a" / "S1.sf", [("ENST0001", 1.0)])
    write_salmon(tmp_path / "b" / "S1.sf", [("ENST0001", 1.0)])
    with pytest.raises(FormatError, match="Duplicate sample id"):
        load_quant_dir(str(tmp_path))


def test_load_quant_dir_empty(tmp_path):
    assert load_quant_dir(str(tmp_path)) == {}
