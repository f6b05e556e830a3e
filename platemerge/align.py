"""
align.py — Merge normalized plate matrices into one count matrix.

Plates detect different gene sets and reuse the same well labels, so they
cannot be concatenated as-is. align_and_merge():

    1. all_genes = union of every plate's genes
    2. per plate, append zero rows for the genes it never observed
       (absent = not observed = count 0)
    3. sort each plate's rows lexicographically by gene label
    4. prefix every cell label with "<PlateID>_"
    5. concatenate column-wise

This is a pure function of the (PlateID, CountMatrix) sequence; no plate
matrix is modified.
"""

import logging
from typing import FrozenSet, Iterable, List, Sequence, Tuple

from platemerge.count_matrix import CountMatrix, duplicated_labels
from platemerge.errors import (
    DuplicateKeyError,
    EmptyPlateSetError,
    InconsistentRowOrderError,
)

logger = logging.getLogger(__name__)

PLATE_SEPARATOR = "_"


def gene_union(matrices: Iterable[CountMatrix]) -> FrozenSet[str]:
    """Union of the row labels of all matrices."""
    genes = set()
    for m in matrices:
        genes.update(m.genes)
    return frozenset(genes)


def zero_fill(matrix: CountMatrix, all_genes: FrozenSet[str]) -> CountMatrix:
    """Add zero rows for every gene in ``all_genes`` the matrix lacks."""
    missing = sorted(all_genes.difference(matrix.genes))
    return matrix.with_zero_rows(missing)


def sort_key(gene: str) -> str:
    """Row order used by the aligner: plain lexicographic order on the label."""
    return gene


def cell_label(plate_id: str, well: str) -> str:
    """Global cell label for a well on a plate.

    >>> cell_label("PlateA", "A1")
    'PlateA_A1'
    """
    return f"{plate_id}{PLATE_SEPARATOR}{well}"


def align_and_merge(plates: Sequence[Tuple[str, CountMatrix]]) -> CountMatrix:
    """
    Merge plates into one matrix over the union of their genes.

    Args:
        plates: ordered (PlateID, CountMatrix) pairs; column order of the
                result follows this order.

    Returns:
        CountMatrix with sorted rows = union of genes, and columns = the
        plates' cell labels prefixed with their PlateID.

    Raises:
        EmptyPlateSetError: no plates given.
        DuplicateKeyError: a PlateID occurs twice.
        InconsistentRowOrderError: rows still differ after zero-fill + sort.
    """
    if not plates:
        raise EmptyPlateSetError("No plates to merge")

    dup_ids = duplicated_labels(pid for pid, _ in plates)
    if dup_ids:
        raise DuplicateKeyError(f"Plate ID(s) given more than once: {dup_ids}")

    all_genes = gene_union(m for _, m in plates)
    logger.info(f"Aligning {len(plates)} plates over {len(all_genes):,} genes")

    aligned: List[CountMatrix] = []
    for plate_id, matrix in plates:
        n_missing = len(all_genes) - len(set(matrix.genes))
        filled = zero_fill(matrix, all_genes)
        ordered = filled.sorted_rows(key=sort_key)
        aligned.append(ordered.prefixed_columns(plate_id, sep=PLATE_SEPARATOR))
        logger.debug(f"Plate {plate_id}: zero-filled {n_missing:,} genes, "
                     f"{matrix.n_cells:,} cells")

    reference = aligned[0].genes
    for (plate_id, _), m in zip(plates, aligned):
        if m.genes != reference:
            raise InconsistentRowOrderError(
                f"Row labels of plate {plate_id} differ from plate {plates[0][0]} "
                f"after alignment",
                plate=plate_id,
            )

    merged = CountMatrix.hstack(aligned)
    logger.info(f"Merged matrix: {merged.n_genes:,} genes x {merged.n_cells:,} cells")
    return merged
