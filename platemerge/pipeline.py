"""
pipeline.py — End-to-end plate merging run.

Steps:
    1. Load the global index table
    2. Discover plate directories
    3. Load + normalize every plate (independent; optionally in parallel)
    4. Align and merge plates                  ← synchronization point
    5. Join annotation records
    6. Quality filters / normalization handoff (optional)
    7. Label-filtered subset (optional)
    8. Write merged .h5ad, subset .h5ad and run manifest

Structural errors abort the run before anything is written. A missing plate
file either aborts or skips the plate, per validation.on_missing_plate_file;
skipped plates are logged and listed in the manifest.
"""

import logging
import time
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd
from tqdm import tqdm

from platemerge.align import align_and_merge
from platemerge.config import MissingFilePolicy, resolve_path
from platemerge.errors import MissingFileError
from platemerge.index_table import IndexTable
from platemerge.manifest import create_run_manifest
from platemerge.metadata import join_annotations, load_annotations
from platemerge.plates import PlateInputs, PlateResult, discover_plates, load_plate
from platemerge.qc import apply_quality_filters, normalize_counts, subset_by_label

logger = logging.getLogger(__name__)

# Per-cell columns added after the annotation join
PLATE_ID_COLUMN = "plate_id"
WELL_ID_COLUMN = "well"


@dataclass
class RunResult:
    """What a pipeline run produced."""
    adata: Optional[ad.AnnData] = None
    subset: Optional[ad.AnnData] = None
    plates: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    stats: Dict = field(default_factory=dict)


# ============================================================
# PLATE LOADING
# ============================================================

def _skip_or_raise(error: MissingFileError, policy: str, skipped: Dict[str, str]):
    if policy != MissingFilePolicy.SKIP:
        raise error
    logger.warning(f"Skipping plate {error.plate}: missing {error.path}")
    skipped[error.plate] = error.path


def load_plates(
    plates: Sequence[PlateInputs],
    index: IndexTable,
    config: dict,
) -> Tuple[List[PlateResult], Dict[str, str]]:
    """
    Load and normalize plates, in input order.

    Returns:
        results: one PlateResult per loaded plate, same order as ``plates``
        skipped: {plate_id: missing file} for plates skipped by policy
    """
    policy = config["validation"]["on_missing_plate_file"]
    dup_policy = config["validation"]["duplicate_keys"]
    fmt = config["barcodes"]["sample_code_format"]
    workers = min(config["runtime"]["workers"], max(1, len(plates)))

    by_plate: Dict[str, PlateResult] = {}
    skipped: Dict[str, str] = {}

    if workers <= 1:
        for plate in tqdm(plates, desc="Plates", unit="plate"):
            try:
                by_plate[plate.plate_id] = load_plate(plate, index, dup_policy, fmt)
            except MissingFileError as e:
                _skip_or_raise(e, policy, skipped)
    else:
        logger.info(f"Loading {len(plates)} plates with {workers} workers...")
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(load_plate, plate, index, dup_policy, fmt): plate
                for plate in plates
            }
            for future in tqdm(as_completed(futures), total=len(futures),
                               desc="Plates", unit="plate"):
                plate = futures[future]
                try:
                    by_plate[plate.plate_id] = future.result()
                except MissingFileError as e:
                    _skip_or_raise(e, policy, skipped)

    results = [by_plate[p.plate_id] for p in plates if p.plate_id in by_plate]
    return results, skipped


# ============================================================
# MERGE + ANNOTATE
# ============================================================

def build_annotated_matrix(results: Sequence[PlateResult],
                           annotations: Optional[pd.DataFrame] = None) -> ad.AnnData:
    """Align plate matrices, join annotations, and record plate/well per cell."""
    merged = align_and_merge([(r.plate_id, r.matrix) for r in results])
    adata = join_annotations(merged, annotations)
    clashes = {c: f"annotation_{c}" for c in (PLATE_ID_COLUMN, WELL_ID_COLUMN)
               if c in adata.obs.columns}
    if clashes:
        logger.warning(f"Annotation column(s) {sorted(clashes)} clash with per-cell columns; "
                       f"kept as {sorted(clashes.values())}")
        adata.obs = adata.obs.rename(columns=clashes)
    adata.obs[PLATE_ID_COLUMN] = pd.Categorical(
        np.repeat([r.plate_id for r in results], [r.matrix.n_cells for r in results])
    )
    adata.obs[WELL_ID_COLUMN] = [c for r in results for c in r.matrix.cells]
    return adata


# ============================================================
# RUN
# ============================================================

def _log_dry_run(plates: Sequence[PlateInputs]):
    for plate in plates:
        logger.info(f"Plate {plate.plate_id}:")
        for label, p in [("matrix", plate.matrix), ("gene names", plate.gene_names),
                         ("barcodes", plate.barcodes)]:
            exists = '✓ exists' if p.exists() else '✗ missing'
            logger.info(f"  {label}: {p} [{exists}]")


def run_pipeline(config: dict, dry_run: bool = False) -> RunResult:
    """Run the full merge described by ``config`` (see config.load_config)."""
    t_start = time.time()
    inputs = config["inputs"]
    validation = config["validation"]
    result = RunResult()

    logger.info("=" * 60)
    logger.info("PLATE MERGE")
    logger.info(f"Mode: {'DRY RUN' if dry_run else 'EXECUTE'}")
    logger.info("=" * 60)

    # ── Step 1: index table ──
    index_path = resolve_path(config, inputs["index_table"])
    index = IndexTable.load(index_path, validation["duplicate_keys"])

    # ── Step 2: discover plates ──
    plates = discover_plates(resolve_path(config, inputs["plates_dir"]),
                             config["plate_files"], names=inputs.get("plates"))
    logger.info(f"Found {len(plates)} plates: {[p.plate_id for p in plates]}")

    if dry_run:
        _log_dry_run(plates)
        result.plates = [p.plate_id for p in plates]
        return result

    # ── Step 3: per-plate normalization ──
    plate_results, skipped = load_plates(plates, index, config)
    result.plates = [r.plate_id for r in plate_results]
    result.skipped = {k: str(v) for k, v in skipped.items()}
    if skipped:
        logger.warning(f"{len(skipped)} plate(s) skipped: {sorted(skipped)}")

    # ── Step 4 + 5: align, annotate ──
    annotations = None
    annotation_path = None
    if inputs.get("annotations"):
        annotation_path = resolve_path(config, inputs["annotations"])
        annotations = load_annotations(annotation_path, sheet=inputs["annotation_sheet"],
                                       duplicate_policy=validation["duplicate_keys"])
    adata = build_annotated_matrix(plate_results, annotations)

    stats = {
        "plates": {
            r.plate_id: {
                "n_genes": r.matrix.n_genes,
                "n_cells": r.matrix.n_cells,
                "genes": r.gene_stats,
                "barcodes": r.barcode_stats,
            }
            for r in plate_results
        },
        "skipped_plates": result.skipped,
        "merged": {"n_cells": adata.n_obs, "n_genes": adata.n_vars},
    }

    # ── Step 6: QC ──
    qc = config["qc"]
    if qc["enabled"]:
        adata, stats["qc"] = apply_quality_filters(adata, qc)
        if qc["normalize"]:
            adata = normalize_counts(adata, target_sum=qc["target_sum"])

    # ── Step 7: subset ──
    subset_cfg = config["output"]["subset"]
    subset = None
    if subset_cfg.get("field"):
        subset = subset_by_label(adata, subset_cfg["field"], subset_cfg["values"])
        stats["subset"] = {"field": subset_cfg["field"], "n_cells": subset.n_obs}

    # ── Step 8: write ──
    out_dir = resolve_path(config, config["output"]["dir"])
    out_dir.mkdir(parents=True, exist_ok=True)
    merged_path = out_dir / config["output"]["merged"]
    adata.write_h5ad(merged_path)
    result.outputs["merged"] = str(merged_path)
    logger.info(f"Wrote {merged_path} ({adata.n_obs:,} cells x {adata.n_vars:,} genes)")

    if subset is not None:
        subset_path = out_dir / subset_cfg["filename"]
        subset.write_h5ad(subset_path)
        result.outputs["subset"] = str(subset_path)
        logger.info(f"Wrote {subset_path} ({subset.n_obs:,} cells)")

    elapsed = time.time() - t_start
    stats["elapsed_seconds"] = round(elapsed, 2)
    manifest_path = out_dir / config["output"]["manifest"]
    create_run_manifest(index_path, plates, dict(result.outputs), config, stats,
                        manifest_path, annotations=annotation_path, skipped=result.skipped)
    result.outputs["manifest"] = str(manifest_path)

    result.adata = adata
    result.subset = subset
    result.stats = stats

    logger.info("=" * 60)
    logger.info("SUMMARY")
    logger.info(f"  Plates merged:  {len(plate_results)}")
    logger.info(f"  Plates skipped: {len(skipped)}")
    logger.info(f"  Cells:          {adata.n_obs:,}")
    logger.info(f"  Genes:          {adata.n_vars:,}")
    logger.info(f"  Time:           {elapsed:.1f}s")
    logger.info("=" * 60)
    return result
