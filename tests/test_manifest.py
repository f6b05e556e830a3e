import json

from platemerge.config import DEFAULT_CONFIG
from platemerge.manifest import create_run_manifest, file_record, md5sum
from platemerge.plates import discover_plates


def test_md5sum(tmp_path):
    path = tmp_path / "f.txt"
    path.write_bytes(b"abc")
    assert md5sum(path) == "900150983cd24fb0d6963f7d28e17f72"


def test_file_record_missing_file(tmp_path):
    assert file_record(tmp_path / "absent.tsv") == {"path": str(tmp_path / "absent.tsv")}


def test_manifest_records_each_plate(two_plate_project, index_file):
    plates = discover_plates(two_plate_project / "plates", DEFAULT_CONFIG["plate_files"])
    (two_plate_project / "plates" / "PlateB" / "barcodes.txt").unlink()
    out = two_plate_project / "manifest.json"
    config = {"qc": {"enabled": False}, "_project_root": two_plate_project}

    create_run_manifest(
        index_file, plates, {}, config, {"merged": {"n_cells": 2}}, out,
        annotations=two_plate_project / "metadata" / "facs.csv",
        skipped={"PlateB": str(plates[1].barcodes)},
    )
    manifest = json.loads(out.read_text())

    inputs = manifest["inputs"]
    assert "md5" in inputs["index_table"]
    assert "md5" in inputs["annotations"]
    assert sorted(inputs["plates"]) == ["PlateA", "PlateB"]

    plate_a = inputs["plates"]["PlateA"]
    matrix_files = sorted(r["path"].rsplit("/", 1)[-1] for r in plate_a["matrix"])
    assert matrix_files == ["barcodes.tsv", "features.tsv", "matrix.mtx"]
    assert all("md5" in r for r in plate_a["matrix"])
    assert "md5" in plate_a["gene_names"]

    assert "md5" not in inputs["plates"]["PlateB"]["barcodes"]
    assert list(manifest["skipped_plates"]) == ["PlateB"]
    assert manifest["config"] == {"qc": {"enabled": False}}
    assert manifest["stats"]["merged"]["n_cells"] == 2
