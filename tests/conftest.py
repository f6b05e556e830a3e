import gzip
from pathlib import Path

import numpy as np
import pandas as pd
import pytest
from scipy import io as scipy_io
from scipy import sparse as sp

from platemerge.config import load_config

# Composite index → well, shared by every plate
INDEX_ROWS = [
    ("i7_N701_i5_S502", "A1"),
    ("i7_N702_i5_S502", "A2"),
    ("i7_N701_i5_S503", "B1"),
    ("i7_N702_i5_S503", "B2"),
]

# Raw barcode → sample code; sample codes follow the v1 layout
SAMPLE_CODES = {
    "AAAA": "SC_N701_x_S502",   # A1
    "CCCC": "SC_N702_x_S502",   # A2
    "GGGG": "SC_N701_x_S503",   # B1
    "TTTT": "SC_N702_x_S503",   # B2
}


def write_table(path: Path, columns, rows, sep="\t"):
    path.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows, columns=columns).to_csv(path, sep=sep, index=False)
    return path


def write_mtx_dir(directory: Path, counts, gene_ids, barcodes, gzipped=False):
    """Write a genes x cells MatrixMarket triplet."""
    directory.mkdir(parents=True, exist_ok=True)
    mtx = directory / "matrix.mtx"
    scipy_io.mmwrite(str(mtx), sp.coo_matrix(np.asarray(counts, dtype=np.int64)))
    if gzipped:
        with open(mtx, "rb") as f_in, gzip.open(directory / "matrix.mtx.gz", "wb") as f_out:
            f_out.write(f_in.read())
        mtx.unlink()
    opener = gzip.open if gzipped else open
    suffix = ".gz" if gzipped else ""
    with opener(directory / f"features.tsv{suffix}", "wt") as f:
        for g in gene_ids:
            f.write(f"{g}\t{g}\tGene Expression\n")
    with opener(directory / f"barcodes.tsv{suffix}", "wt") as f:
        for bc in barcodes:
            f.write(f"{bc}\n")
    return directory


def make_plate(plates_dir: Path, plate_id: str, gene_ids, gene_names, barcodes, counts,
               sample_codes=None):
    """Create a plate directory with the default file layout."""
    plate_dir = plates_dir / plate_id
    write_mtx_dir(plate_dir / "expression" / "umicount", counts, gene_ids, barcodes)
    write_table(plate_dir / "gene_names.txt", ["gene_id", "gene_name"],
                list(gene_names.items()))
    codes = sample_codes if sample_codes is not None else SAMPLE_CODES
    write_table(plate_dir / "barcodes.txt", ["BC", "sample"],
                [(bc, codes[bc]) for bc in barcodes if bc in codes])
    return plate_dir


@pytest.fixture
def index_file(tmp_path):
    return write_table(tmp_path / "references" / "index_wells.tsv",
                       ["indexstring", "well"], INDEX_ROWS)


@pytest.fixture
def two_plate_project(tmp_path, index_file):
    """PlateA: genes {G1,G2}, wells {A1,A2}; PlateB: genes {G2,G3}, wells {A1,B2}."""
    plates_dir = tmp_path / "plates"
    make_plate(
        plates_dir, "PlateA",
        gene_ids=["ENSG1", "ENSG2"],
        gene_names={"ENSG1": "G1", "ENSG2": "G2"},
        barcodes=["AAAA", "CCCC"],
        counts=[[1, 2],
                [3, 4]],
    )
    make_plate(
        plates_dir, "PlateB",
        gene_ids=["ENSG2", "ENSG3"],
        gene_names={"ENSG2": "G2", "ENSG3": "G3"},
        barcodes=["AAAA", "TTTT"],
        counts=[[5, 6],
                [7, 8]],
    )
    write_table(
        tmp_path / "metadata" / "facs.csv",
        ["Plate", "Well", "FACSannotation"],
        [("PlateA", "A2", "GFP+"), ("PlateB", "A1", "GFP-"), ("PlateB", "B2", "GFP+")],
        sep=",",
    )
    return tmp_path


@pytest.fixture
def project_config(two_plate_project, monkeypatch):
    """Config for the two-plate project with QC thresholds relaxed to keep every cell."""
    monkeypatch.delenv("PIPELINE_ROOT", raising=False)

    def _make(**sections):
        overrides = {
            "project_root": str(two_plate_project),
            "inputs": {
                "index_table": "references/index_wells.tsv",
                "plates_dir": "plates",
                "annotations": "metadata/facs.csv",
            },
            "qc": {"enabled": False, "min_genes_per_cell": 0, "min_cells_per_gene": 0},
            "output": {"dir": "results"},
        }
        for key, value in sections.items():
            overrides.setdefault(key, {}).update(value)
        return load_config(str(_empty_yaml(two_plate_project)), overrides=overrides)
    return _make


def _empty_yaml(root: Path) -> Path:
    path = root / "empty_config.yaml"
    if not path.exists():
        path.write_text("{}\n")
    return path
