import numpy as np
import pytest
from scipy import sparse as sp

from platemerge.barcodes import BarcodeTable
from platemerge.config import DEFAULT_CONFIG
from platemerge.count_matrix import CountMatrix
from platemerge.errors import DuplicateKeyError, MissingFileError, ShapeMismatchError
from platemerge.genes import GeneMap
from platemerge.index_table import IndexTable
from platemerge.plates import discover_plates, load_plate, normalize_plate, normalize_plate_with_stats

PLATE_FILES = DEFAULT_CONFIG["plate_files"]


@pytest.fixture
def index():
    return IndexTable({"i7_N701_i5_S502": "A1", "i7_N702_i5_S502": "A2"})


@pytest.fixture
def raw():
    return CountMatrix(sp.csr_matrix(np.array([[1, 2], [3, 4]])),
                       ["ENSG1", "ENSG2"], ["AAAA", "CCCC"])


def test_normalize_relabels_rows_and_columns(raw, index):
    gene_map = GeneMap({"ENSG1": "Actb", "ENSG2": "Gapdh"})
    barcodes = BarcodeTable({"AAAA": "SC_N701_x_S502", "CCCC": "SC_N702_x_S502"})
    m = normalize_plate(raw, gene_map, barcodes, index, plate_id="P1")
    assert m.genes == ("Actb", "Gapdh")
    assert m.cells == ("A1", "A2")
    np.testing.assert_array_equal(m.counts.toarray(), raw.counts.toarray())


def test_normalize_reports_stats(raw, index):
    gene_map = GeneMap({"ENSG1": "Actb"})
    barcodes = BarcodeTable({"AAAA": "SC_N701_x_S502"})
    result = normalize_plate_with_stats(raw, gene_map, barcodes, index, plate_id="P1")
    assert result.matrix.cells == ("A1", "CCCC")
    assert result.matrix.genes == ("Actb", "ENSG2")
    assert result.barcode_stats["resolved"] == 1
    assert result.barcode_stats["no_sample"] == 1
    assert result.gene_stats["no_entry"] == 1


def test_normalize_empty_tables(raw, index):
    barcodes = BarcodeTable({"AAAA": "SC_N701_x_S502"})
    with pytest.raises(ShapeMismatchError) as excinfo:
        normalize_plate(raw, GeneMap({}), barcodes, index, plate_id="P1")
    assert excinfo.value.plate == "P1"
    with pytest.raises(ShapeMismatchError):
        normalize_plate(raw, GeneMap({"ENSG1": "Actb"}), BarcodeTable({}), index)


def test_normalize_gene_table_for_other_plate(raw, index):
    gene_map = GeneMap({"OTHER1": "Actb", "OTHER2": "Gapdh"}, path="P1/gene_names.txt")
    barcodes = BarcodeTable({"AAAA": "SC_N701_x_S502"})
    with pytest.raises(ShapeMismatchError) as excinfo:
        normalize_plate(raw, gene_map, barcodes, index, plate_id="P1")
    assert excinfo.value.plate == "P1"
    assert excinfo.value.path == "P1/gene_names.txt"


def test_normalize_duplicate_cell_labels(raw, index):
    # Both barcodes point at well A1
    barcodes = BarcodeTable({"AAAA": "SC_N701_x_S502", "CCCC": "XX_N701_y_S502"})
    with pytest.raises(DuplicateKeyError):
        normalize_plate(raw, GeneMap({"ENSG1": "Actb"}), barcodes, index, plate_id="P1")


def test_discover_plates_sorted(two_plate_project):
    (two_plate_project / "plates" / ".cache").mkdir()
    plates = discover_plates(two_plate_project / "plates", PLATE_FILES)
    assert [p.plate_id for p in plates] == ["PlateA", "PlateB"]
    assert plates[0].gene_names.name == "gene_names.txt"


def test_discover_named_plates(two_plate_project):
    plates = discover_plates(two_plate_project / "plates", PLATE_FILES, names=["PlateB"])
    assert [p.plate_id for p in plates] == ["PlateB"]
    with pytest.raises(MissingFileError):
        discover_plates(two_plate_project / "plates", PLATE_FILES, names=["PlateZ"])


def test_discover_missing_dir(tmp_path):
    with pytest.raises(MissingFileError):
        discover_plates(tmp_path / "none", PLATE_FILES)


def test_load_plate(two_plate_project, index_file):
    index = IndexTable.load(index_file)
    plate = discover_plates(two_plate_project / "plates", PLATE_FILES, names=["PlateB"])[0]
    result = load_plate(plate, index)
    assert result.plate_id == "PlateB"
    assert result.matrix.genes == ("G2", "G3")
    assert result.matrix.cells == ("A1", "B2")


def test_load_plate_missing_file(two_plate_project, index_file):
    index = IndexTable.load(index_file)
    (two_plate_project / "plates" / "PlateA" / "gene_names.txt").unlink()
    plate = discover_plates(two_plate_project / "plates", PLATE_FILES, names=["PlateA"])[0]
    assert plate.missing_files() == [plate.gene_names]
    with pytest.raises(MissingFileError) as excinfo:
        load_plate(plate, index)
    assert excinfo.value.plate == "PlateA"
    assert excinfo.value.path.endswith("gene_names.txt")
