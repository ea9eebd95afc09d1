import numpy as np
import pandas as pd
import pytest

SALMON_HEADER = ["Name", "Length", "EffectiveLength", "TPM", "NumReads"]


def write_salmon(path, rows):
    """rows: iterable of (transcript_id, tpm); other columns get plausible values."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df = pd.DataFrame(
        [(tid, 1500, 1320.5, tpm, tpm * 10) for tid, tpm in rows],
        columns=SALMON_HEADER,
    )
    df.to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def tx2gene_frame():
    return pd.DataFrame({
        "transcript_id": ["ENST0001.1", "ENST0002.3", "ENST0003.1", "ENST0004.2"],
        "gene_name": ["CD8A", "CD8A", "CD4", "FOXP3"],
    })


@pytest.fixture
def tx2gene_tsv(tmp_path, tx2gene_frame):
    path = tmp_path / "tx2gene.tsv"
    tx2gene_frame.to_csv(path, sep="\t", index=False)
    return path


@pytest.fixture
def quant_dir(tmp_path):
    """Salmon layout <sample>/quant.sf; versions differ from the reference on purpose."""
    root = tmp_path / "quants"
    write_salmon(root / "patient1tumor1" / "quant.sf",
                 [("ENST0001.2", 2.0), ("ENST0002.3", 3.0), ("ENST0003.1", 1.0)])
    write_salmon(root / "patient1tumor2" / "quant.sf",
                 [("ENST0001.2", 4.0), ("ENST0004.2", 6.0), ("ENST9999.1", 9.0)])
    write_salmon(root / "patient2tumor1" / "quant.sf",
                 [("ENST0003.1", 7.0)])
    return root


@pytest.fixture
def cohort_fractions():
    """cell_type x sample fractions for 3 patients with 2, 2 and 3 tumors."""
    samples = [
        "patient1tumor1", "patient1tumor2",
        "patient2tumor1", "patient2tumor2",
        "patient3tumor1", "patient3tumor2", "patient3tumor3",
    ]
    t_cells = [0.30, 0.34, 0.28, 0.31, 0.10, 0.12, 0.09]
    b_cells = [0.20, 0.18, 0.22, 0.19, 0.21, 0.20, 0.23]
    other = 1.0 - np.array(t_cells) - np.array(b_cells)
    df = pd.DataFrame(
        [t_cells, b_cells, other],
        index=pd.Index(["T cell CD8+", "B cell", "uncharacterized cell"], name="cell_type"),
        columns=pd.Index(samples, name="sample_id"),
    )
    return df


class FakeDeconvolver:
    """Returns a fixed cell-type x sample frame and records its calls."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def deconvolve(self, matrix, method):
        self.calls.append((matrix.shape, method))
        if self.error is not None:
            raise self.error
        if self.result is not None:
            return self.result
        # reversed column order to check that the adapter restores input order
        cols = list(matrix.columns)[::-1]
        n = len(cols)
        return pd.DataFrame(
            [[0.6] * n, [0.4] * n],
            index=["T cell CD8+", "Macrophage M2"],
            columns=cols,
        )


@pytest.fixture
def fake_backend():
    return FakeDeconvolver()
