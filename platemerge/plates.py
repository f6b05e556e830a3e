"""
plates.py — Per-plate input discovery, loading and label normalization.

Each plate lives in its own directory under the plates root; the directory
name is the PlateID. A plate directory holds three inputs (names are
configurable, see config 'plate_files'):

    <plates_dir>/<PlateID>/
        <matrix>       raw counts, genes × barcodes (MTX dir, .h5ad or table)
        <gene_names>   gene_id → gene_name table
        <barcodes>     BC → sample table

normalize_plate() turns a raw matrix into one with gene-symbol rows and
well-label columns. Plates are independent of each other at this stage.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from platemerge.barcodes import (
    DEFAULT_SAMPLE_CODE_FORMAT,
    BarcodeOutcome,
    BarcodeTable,
    resolve_barcodes,
)
from platemerge.count_matrix import CountMatrix, duplicated_labels, load_count_matrix
from platemerge.errors import DuplicateKeyError, MissingFileError, ShapeMismatchError
from platemerge.genes import GeneMap, resolve_genes_with_stats
from platemerge.index_table import IndexTable
from platemerge.tables import DuplicatePolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlateInputs:
    """Resolved input paths for one plate."""
    plate_id: str
    matrix: Path
    gene_names: Path
    barcodes: Path

    def missing_files(self) -> List[Path]:
        return [p for p in (self.matrix, self.gene_names, self.barcodes) if not p.exists()]

    def check_files(self):
        """Raise MissingFileError for the first absent input."""
        missing = self.missing_files()
        if missing:
            raise MissingFileError("Required plate file is missing",
                                   plate=self.plate_id, path=missing[0])


@dataclass(frozen=True)
class PlateResult:
    """A normalized plate and the resolution statistics behind it."""
    plate_id: str
    matrix: CountMatrix
    gene_stats: Dict[str, int]
    barcode_stats: Dict[str, int]


def discover_plates(plates_dir, plate_files: Dict[str, str],
                    names: Optional[Sequence[str]] = None) -> List[PlateInputs]:
    """
    List plate inputs under ``plates_dir``, sorted by PlateID.

    Args:
        plates_dir: Directory holding one subdirectory per plate.
        plate_files: {'matrix', 'gene_names', 'barcodes'} relative paths.
        names: Restrict to these PlateIDs (each must exist as a directory).
    """
    plates_dir = Path(plates_dir)
    if not plates_dir.is_dir():
        raise MissingFileError("Plates directory not found", path=plates_dir)

    if names:
        plate_dirs = []
        for name in names:
            d = plates_dir / name
            if not d.is_dir():
                raise MissingFileError("Plate directory not found", plate=name, path=d)
            plate_dirs.append(d)
    else:
        plate_dirs = [d for d in plates_dir.iterdir()
                      if d.is_dir() and not d.name.startswith(".")]

    plates = [
        PlateInputs(
            plate_id=d.name,
            matrix=d / plate_files["matrix"],
            gene_names=d / plate_files["gene_names"],
            barcodes=d / plate_files["barcodes"],
        )
        for d in plate_dirs
    ]
    return sorted(plates, key=lambda p: p.plate_id)


def normalize_plate_with_stats(
    raw: CountMatrix,
    gene_map: GeneMap,
    barcode_table: BarcodeTable,
    index: IndexTable,
    plate_id: Optional[str] = None,
    sample_code_format: str = DEFAULT_SAMPLE_CODE_FORMAT,
) -> PlateResult:
    """
    Resolve a raw plate matrix's row and column labels.

    Rows: gene IDs → unique gene symbols (genes.resolve_genes).
    Columns: raw barcodes → well labels (barcodes.resolve_barcodes).
    The counts are carried over unchanged.

    Raises:
        ShapeMismatchError if the gene table is empty or shares no gene ID
            with the matrix rows, or the barcode table is empty while the
            matrix has columns.
        DuplicateKeyError if two columns resolve to the same cell label.
    """
    if raw.n_genes and len(gene_map) == 0:
        raise ShapeMismatchError(
            f"Gene table is empty but matrix has {raw.n_genes} rows",
            plate=plate_id, path=gene_map.path,
        )
    if raw.n_genes and not any(g in gene_map for g in raw.genes):
        raise ShapeMismatchError(
            f"None of the {raw.n_genes} matrix gene IDs appear in the gene table "
            f"(e.g. {list(raw.genes[:3])}); wrong gene_names file for this plate?",
            plate=plate_id, path=gene_map.path,
        )
    if raw.n_cells and len(barcode_table) == 0:
        raise ShapeMismatchError(
            f"Barcode table is empty but matrix has {raw.n_cells} columns",
            plate=plate_id, path=barcode_table.path,
        )

    genes, gene_stats = resolve_genes_with_stats(gene_map, raw.genes)
    cells, barcode_stats = resolve_barcodes(barcode_table, index, raw.cells,
                                            sample_code_format)

    dups = duplicated_labels(cells)
    if dups:
        raise DuplicateKeyError(
            f"{len(dups)} cell label(s) occur more than once after barcode "
            f"resolution, e.g. {dups[:5]}",
            plate=plate_id, path=barcode_table.path,
        )

    n_unresolved_bc = raw.n_cells - barcode_stats[BarcodeOutcome.RESOLVED]
    if n_unresolved_bc:
        logger.warning(
            f"{n_unresolved_bc} of {raw.n_cells} barcodes unresolved in plate {plate_id} "
            f"(no sample: {barcode_stats[BarcodeOutcome.NO_SAMPLE]}, "
            f"malformed sample code: {barcode_stats[BarcodeOutcome.MALFORMED_SAMPLE]}, "
            f"no well: {barcode_stats[BarcodeOutcome.NO_WELL]}); kept raw barcodes"
        )
    n_unresolved_genes = gene_stats["no_entry"] + gene_stats["empty_symbol"]
    if n_unresolved_genes:
        logger.warning(
            f"{n_unresolved_genes} of {raw.n_genes} gene IDs without symbol in plate "
            f"{plate_id}; kept gene IDs"
        )
    if gene_stats["renamed"]:
        logger.info(f"Plate {plate_id}: {gene_stats['renamed']} duplicate gene symbols suffixed")

    return PlateResult(
        plate_id=plate_id,
        matrix=raw.relabel(genes=genes, cells=cells),
        gene_stats=gene_stats,
        barcode_stats=barcode_stats,
    )


def normalize_plate(
    raw: CountMatrix,
    gene_map: GeneMap,
    barcode_table: BarcodeTable,
    index: IndexTable,
    plate_id: Optional[str] = None,
    sample_code_format: str = DEFAULT_SAMPLE_CODE_FORMAT,
) -> CountMatrix:
    """Same as normalize_plate_with_stats, returning only the relabelled matrix."""
    return normalize_plate_with_stats(raw, gene_map, barcode_table, index,
                                      plate_id, sample_code_format).matrix


def load_plate(
    plate: PlateInputs,
    index: IndexTable,
    duplicate_policy: str = DuplicatePolicy.ERROR,
    sample_code_format: str = DEFAULT_SAMPLE_CODE_FORMAT,
) -> PlateResult:
    """Read one plate's three inputs and normalize its labels."""
    plate.check_files()
    raw = load_count_matrix(plate.matrix, plate=plate.plate_id)
    gene_map = GeneMap.load(plate.gene_names, duplicate_policy, plate=plate.plate_id)
    barcode_table = BarcodeTable.load(plate.barcodes, duplicate_policy, plate=plate.plate_id)
    logger.info(
        f"Plate {plate.plate_id}: {raw.n_genes:,} genes x {raw.n_cells:,} barcodes "
        f"({len(gene_map):,} gene names, {len(barcode_table):,} barcode entries)"
    )
    return normalize_plate_with_stats(raw, gene_map, barcode_table, index,
                                      plate_id=plate.plate_id,
                                      sample_code_format=sample_code_format)
