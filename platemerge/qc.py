"""
qc.py — Quality filters, normalization handoff and label subsets.

Thin plumbing over scanpy. The thresholds are configuration, not decisions
made here: see the 'qc' section of pipeline_config.yaml.

Filter sequence:
    1. Cells with < min_genes_per_cell detected genes
    2. Cells with mitochondrial count fraction > max_mito_fraction
    3. Genes detected in < min_cells_per_gene of the remaining cells
"""

import logging
from typing import Dict, Sequence, Tuple

import anndata as ad
import numpy as np
import scanpy as sc

from platemerge.errors import ConfigError

logger = logging.getLogger(__name__)

MITO_FLAG = "mito"


def identify_mito_genes(gene_names: Sequence[str], prefixes: Sequence[str]) -> np.ndarray:
    """Boolean mask: True for genes whose label starts with a mito prefix."""
    prefixes = tuple(prefixes)
    return np.array([str(g).startswith(prefixes) for g in gene_names], dtype=bool)


def apply_quality_filters(adata: ad.AnnData, qc: dict) -> Tuple[ad.AnnData, Dict]:
    """
    Apply cell and gene filters.

    Args:
        adata: cells × genes AnnData with raw counts in X.
        qc: config 'qc' section (min_genes_per_cell, max_mito_fraction,
            min_cells_per_gene, mito_prefixes).

    Returns:
        adata_qc: filtered copy (input untouched); per-cell metrics in obs
        stats: counts of cells/genes removed by each filter
    """
    adata = adata.copy()
    adata.var[MITO_FLAG] = identify_mito_genes(adata.var_names, qc["mito_prefixes"])
    sc.pp.calculate_qc_metrics(adata, qc_vars=[MITO_FLAG], percent_top=None,
                               log1p=False, inplace=True)

    n_initial_cells = adata.n_obs
    n_initial_genes = adata.n_vars

    genes_per_cell = adata.obs["n_genes_by_counts"].to_numpy()
    mito_fraction = adata.obs[f"pct_counts_{MITO_FLAG}"].fillna(0).to_numpy() / 100.0

    # ── Filter 1: minimum genes per cell ──
    pass_min_genes = genes_per_cell >= qc["min_genes_per_cell"]
    # ── Filter 2: mitochondrial fraction ──
    pass_mito = mito_fraction <= qc["max_mito_fraction"]

    keep = pass_min_genes & pass_mito
    adata = adata[keep].copy()

    # ── Filter 3: genes seen in too few cells ──
    if qc["min_cells_per_gene"] > 0 and adata.n_obs > 0:
        sc.pp.filter_genes(adata, min_cells=qc["min_cells_per_gene"])

    stats = {
        "n_cells_initial": n_initial_cells,
        "n_cells_fail_min_genes": int(np.sum(~pass_min_genes)),
        "n_cells_fail_mito": int(np.sum(pass_min_genes & ~pass_mito)),
        "n_cells_after_qc": adata.n_obs,
        "n_genes_initial": n_initial_genes,
        "n_genes_after_qc": adata.n_vars,
        "n_mito_genes": int(adata.var[MITO_FLAG].sum()),
    }
    logger.info(
        f"QC: {stats['n_cells_after_qc']:,} / {n_initial_cells:,} cells kept "
        f"({stats['n_cells_fail_min_genes']} < {qc['min_genes_per_cell']} genes, "
        f"{stats['n_cells_fail_mito']} mito > {qc['max_mito_fraction']:.0%}); "
        f"{stats['n_genes_after_qc']:,} / {n_initial_genes:,} genes kept"
    )
    return adata, stats


def normalize_counts(adata: ad.AnnData, target_sum: float = 1e4) -> ad.AnnData:
    """Library-size normalize + log1p, keeping raw counts in layers['counts']."""
    adata = adata.copy()
    adata.layers["counts"] = adata.X.copy()
    adata.X = adata.X.astype(np.float32)
    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)
    return adata


def subset_by_label(adata: ad.AnnData, field: str, values: Sequence[str]) -> ad.AnnData:
    """Cells whose obs[field] is one of ``values``."""
    if field not in adata.obs.columns:
        raise ConfigError(
            f"Subset field '{field}' not found in cell metadata; "
            f"available: {list(adata.obs.columns)}"
        )
    mask = adata.obs[field].astype(str).isin([str(v) for v in values]).to_numpy()
    subset = adata[mask].copy()
    logger.info(f"Subset {field} in {list(values)}: {subset.n_obs:,} / {adata.n_obs:,} cells")
    return subset
