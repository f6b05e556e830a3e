"""
manifest.py — JSON run manifest.

Ties a merged matrix to the exact files it was built from:

    inputs.index_table          shared index → well table
    inputs.annotations          annotation sheet (if any)
    inputs.plates.<PlateID>     matrix (every member file of an MTX
                                directory), gene table, barcode table
    skipped_plates              {PlateID: missing file}
    outputs                     written .h5ad files

Every existing file is recorded with its md5 and size. The config snapshot,
per-plate resolution statistics, timestamp and git commit (when run from a
checkout) complete the record.
"""

import hashlib
import json
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from platemerge.plates import PlateInputs

BLOCK_SIZE = 1 << 20


def md5sum(path) -> str:
    digest = hashlib.md5()
    with open(path, "rb") as f:
        block = f.read(BLOCK_SIZE)
        while block:
            digest.update(block)
            block = f.read(BLOCK_SIZE)
    return digest.hexdigest()


def file_record(path) -> dict:
    """{'path', 'md5', 'size_bytes'}; only 'path' for a file that does not exist."""
    path = Path(path)
    record = {"path": str(path)}
    if path.is_file():
        record["md5"] = md5sum(path)
        record["size_bytes"] = path.stat().st_size
    return record


def _matrix_record(path: Path) -> Union[dict, List[dict]]:
    if path.is_dir():
        return [file_record(p) for p in sorted(path.iterdir()) if p.is_file()]
    return file_record(path)


def plate_records(plates: Sequence[PlateInputs]) -> Dict[str, dict]:
    return {
        p.plate_id: {
            "matrix": _matrix_record(Path(p.matrix)),
            "gene_names": file_record(p.gene_names),
            "barcodes": file_record(p.barcodes),
        }
        for p in plates
    }


def git_commit() -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return result.stdout.strip() if result.returncode == 0 else None


def create_run_manifest(
    index_table,
    plates: Sequence[PlateInputs],
    outputs: Dict[str, str],
    config: dict,
    stats: dict,
    output_path,
    annotations=None,
    skipped: Optional[Dict[str, str]] = None,
) -> dict:
    """
    Write the run manifest to ``output_path`` and return it.

    Args:
        index_table: Path of the global index table.
        plates: Every discovered plate, including skipped ones.
        outputs: {label: path} of files written by the run.
        config: Loaded config; keys starting with '_' are runtime-only and
            left out.
        stats: Run statistics (per-plate resolution counts, QC, ...).
        output_path: Where to write the JSON.
        annotations: Path of the annotation sheet, if one was joined.
        skipped: {PlateID: missing file} for plates skipped by policy.
    """
    manifest = {
        "timestamp": datetime.now().isoformat(),
        "inputs": {
            "index_table": file_record(index_table),
            "annotations": file_record(annotations) if annotations is not None else None,
            "plates": plate_records(plates),
        },
        "skipped_plates": dict(skipped or {}),
        "outputs": {label: file_record(p) for label, p in outputs.items()},
        "config": {k: v for k, v in config.items() if not k.startswith("_")},
        "stats": stats,
    }
    commit = git_commit()
    if commit:
        manifest["git_commit"] = commit

    with open(output_path, "w") as f:
        json.dump(manifest, f, indent=2, default=str)
    return manifest
