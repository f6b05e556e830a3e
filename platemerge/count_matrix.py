"""
count_matrix.py — Labelled sparse count matrix and per-plate matrix loaders.

A CountMatrix is genes × cells (rows = gene labels, columns = cell labels),
the orientation of zUMIs/10x MatrixMarket output. It is immutable: every
transformation returns a new CountMatrix and leaves its input untouched.
Conversion to the cells × genes AnnData container happens only at the end of
the pipeline (to_anndata).

Supported on-disk formats:
    - MatrixMarket directory: matrix.mtx[.gz] + features.tsv[.gz] (or
      genes.tsv[.gz]) + barcodes.tsv[.gz]
    - h5ad (AnnData, cells × genes; layers['counts'] preferred over X)
    - Dense delimited table, genes × cells, first column = gene ID
"""

import gzip
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import anndata as ad
import numpy as np
import pandas as pd
from scipy import io as scipy_io
from scipy import sparse as sp

from platemerge.errors import (
    InconsistentRowOrderError,
    MalformedMatrixError,
    MissingFileError,
    ShapeMismatchError,
)
from platemerge.tables import delimiter_for

logger = logging.getLogger(__name__)

COUNT_DTYPE = np.int64

MTX_NAMES = ["matrix.mtx.gz", "matrix.mtx"]
FEATURE_NAMES = ["features.tsv.gz", "features.tsv", "genes.tsv.gz", "genes.tsv"]
BARCODE_NAMES = ["barcodes.tsv.gz", "barcodes.tsv"]


def duplicated_labels(labels: Iterable[str]) -> List[str]:
    """Labels occurring more than once, sorted.

    >>> duplicated_labels(["A1", "B1", "A1"])
    ['A1']
    """
    return sorted(label for label, n in Counter(labels).items() if n > 1)


def _as_counts(X, plate: Optional[str] = None, path=None) -> sp.csr_matrix:
    """Coerce a matrix to CSR with non-negative integer entries."""
    X = sp.csr_matrix(X)
    data = X.data
    if data.size:
        if not np.issubdtype(data.dtype, np.integer):
            if not np.all(np.isfinite(data)) or not np.array_equal(data, np.round(data)):
                raise MalformedMatrixError(
                    "Matrix holds non-integer values; expected raw counts",
                    plate=plate, path=path,
                )
        if data.min() < 0:
            raise MalformedMatrixError(
                f"Matrix holds negative values (min={data.min()})",
                plate=plate, path=path,
            )
    if X.dtype != COUNT_DTYPE:
        X = X.astype(COUNT_DTYPE)
    return X


# ============================================================
# COUNT MATRIX
# ============================================================

@dataclass(frozen=True, eq=False)
class CountMatrix:
    """
    Immutable genes × cells sparse count matrix.

    Attributes:
        counts: scipy CSR matrix, shape (len(genes), len(cells)), int64
        genes: row labels
        cells: column labels
    """
    counts: sp.csr_matrix
    genes: Tuple[str, ...]
    cells: Tuple[str, ...]

    def __post_init__(self):
        counts = _as_counts(self.counts)
        genes = tuple(str(g) for g in self.genes)
        cells = tuple(str(c) for c in self.cells)
        if counts.shape != (len(genes), len(cells)):
            raise ShapeMismatchError(
                f"Matrix shape {counts.shape} does not match "
                f"{len(genes)} row labels x {len(cells)} column labels"
            )
        object.__setattr__(self, "counts", counts)
        object.__setattr__(self, "genes", genes)
        object.__setattr__(self, "cells", cells)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.counts.shape

    @property
    def n_genes(self) -> int:
        return len(self.genes)

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    def relabel(self, genes: Optional[Sequence[str]] = None,
                cells: Optional[Sequence[str]] = None) -> "CountMatrix":
        """Same counts, new labels (lengths must match)."""
        return CountMatrix(
            self.counts.copy(),
            self.genes if genes is None else tuple(genes),
            self.cells if cells is None else tuple(cells),
        )

    def with_zero_rows(self, genes: Sequence[str]) -> "CountMatrix":
        """Append all-zero rows labelled ``genes`` below the existing rows."""
        genes = tuple(genes)
        if not genes:
            return self.relabel()
        zeros = sp.csr_matrix((len(genes), self.n_cells), dtype=COUNT_DTYPE)
        return CountMatrix(
            sp.vstack([self.counts, zeros], format="csr"),
            self.genes + genes,
            self.cells,
        )

    def sorted_rows(self, key=None) -> "CountMatrix":
        """Rows reordered by gene label (lexicographic unless ``key`` is given)."""
        if key is None:
            order = sorted(range(self.n_genes), key=self.genes.__getitem__)
        else:
            order = sorted(range(self.n_genes), key=lambda i: key(self.genes[i]))
        return CountMatrix(
            self.counts[order, :] if order else self.counts.copy(),
            tuple(self.genes[i] for i in order),
            self.cells,
        )

    def prefixed_columns(self, prefix: str, sep: str = "_") -> "CountMatrix":
        """Column labels rewritten as ``<prefix><sep><label>``."""
        return self.relabel(cells=[f"{prefix}{sep}{c}" for c in self.cells])

    @classmethod
    def hstack(cls, matrices: Sequence["CountMatrix"]) -> "CountMatrix":
        """Concatenate column-wise. All inputs must share identical row labels."""
        if not matrices:
            raise ValueError("Nothing to concatenate")
        genes = matrices[0].genes
        for i, m in enumerate(matrices[1:], start=1):
            if m.genes != genes:
                raise InconsistentRowOrderError(
                    f"Row labels of matrix {i} differ from matrix 0; "
                    f"refusing to concatenate misaligned rows"
                )
        cells = tuple(c for m in matrices for c in m.cells)
        counts = sp.hstack([m.counts for m in matrices], format="csr")
        return cls(counts, genes, cells)

    def get(self, gene: str, cell: str) -> int:
        return int(self.counts[self.genes.index(gene), self.cells.index(cell)])

    def to_frame(self) -> pd.DataFrame:
        """Dense genes × cells DataFrame (small matrices / debugging only)."""
        return pd.DataFrame(self.counts.toarray(), index=list(self.genes),
                            columns=list(self.cells))

    def to_anndata(self, obs: Optional[pd.DataFrame] = None) -> ad.AnnData:
        """cells × genes AnnData with raw counts in X."""
        if obs is None:
            obs = pd.DataFrame(index=pd.Index(self.cells))
        var = pd.DataFrame(index=pd.Index(self.genes))
        return ad.AnnData(X=self.counts.T.tocsr(), obs=obs, var=var)


# ============================================================
# LOADERS
# ============================================================

def _find_file(directory: Path, candidates: List[str]) -> Optional[Path]:
    for name in candidates:
        p = directory / name
        if p.is_file():
            return p
    return None


def _read_label_column(path: Path) -> List[str]:
    opener = gzip.open if path.name.endswith(".gz") else open
    with opener(path, "rt") as f:
        return [line.rstrip("\n").split("\t")[0] for line in f if line.strip()]


def load_mtx_dir(directory, plate: Optional[str] = None) -> CountMatrix:
    """Load a MatrixMarket triplet directory (genes × cells)."""
    directory = Path(directory)
    mtx = _find_file(directory, MTX_NAMES)
    features = _find_file(directory, FEATURE_NAMES)
    barcodes = _find_file(directory, BARCODE_NAMES)
    for label, found, names in [("matrix", mtx, MTX_NAMES),
                                ("features", features, FEATURE_NAMES),
                                ("barcodes", barcodes, BARCODE_NAMES)]:
        if found is None:
            raise MissingFileError(
                f"No {label} file ({' / '.join(names)}) in matrix directory",
                plate=plate, path=directory,
            )

    try:
        X = scipy_io.mmread(str(mtx))
    except (ValueError, OSError) as e:
        raise MalformedMatrixError(f"Cannot read MatrixMarket file: {e}",
                                   plate=plate, path=mtx) from e

    gene_ids = _read_label_column(features)
    cells = _read_label_column(barcodes)
    if len(gene_ids) != X.shape[0]:
        raise ShapeMismatchError(
            f"Feature table lists {len(gene_ids)} genes but matrix has {X.shape[0]} rows",
            plate=plate, path=features,
        )
    if len(cells) != X.shape[1]:
        raise ShapeMismatchError(
            f"Barcode list has {len(cells)} entries but matrix has {X.shape[1]} columns",
            plate=plate, path=barcodes,
        )

    return CountMatrix(_as_counts(X, plate, mtx), tuple(gene_ids), tuple(cells))


def load_h5ad(path, plate: Optional[str] = None) -> CountMatrix:
    """Load raw counts from an AnnData file, transposing to genes × cells."""
    try:
        adata = ad.read_h5ad(path)
    except (OSError, KeyError) as e:
        raise MalformedMatrixError(f"Cannot read h5ad: {e}", plate=plate, path=path) from e

    X = adata.layers["counts"] if "counts" in adata.layers else adata.X
    counts = _as_counts(sp.csr_matrix(X).T, plate, path)
    return CountMatrix(counts, tuple(adata.var_names), tuple(adata.obs_names))


def load_dense_table(path, plate: Optional[str] = None) -> CountMatrix:
    """Load a dense genes × cells table (zUMIs-style .txt/.tsv/.csv)."""
    try:
        df = pd.read_csv(path, sep=delimiter_for(path), index_col=0, compression="infer")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise MalformedMatrixError(f"Cannot parse count table: {e}",
                                   plate=plate, path=path) from e
    if not all(pd.api.types.is_numeric_dtype(t) for t in df.dtypes):
        raise MalformedMatrixError("Count table has non-numeric columns",
                                   plate=plate, path=path)
    counts = _as_counts(sp.csr_matrix(df.to_numpy()), plate, path)
    return CountMatrix(counts, tuple(df.index.astype(str)), tuple(df.columns.astype(str)))


def load_count_matrix(path, plate: Optional[str] = None) -> CountMatrix:
    """Load a plate's raw count matrix, dispatching on the path type."""
    path = Path(path)
    if path.is_dir():
        return load_mtx_dir(path, plate=plate)
    if not path.is_file():
        raise MissingFileError("Count matrix not found", plate=plate, path=path)
    if path.suffix == ".h5ad":
        return load_h5ad(path, plate=plate)
    return load_dense_table(path, plate=plate)
