"""
genes.py — Gene accession ID → gene symbol resolution with unique labels.

Gene symbols are not 1:1 with accession IDs (paralogs, annotation versions),
so several IDs on one plate can resolve to the same symbol. Resolved labels
are always made unique by suffixing repeats (``Actin``, ``Actin.1``, …) so
that two distinct genes never share a matrix row.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

import anndata as ad
import pandas as pd

from platemerge.lookup import Lookup, LookupStatus, lookup_value
from platemerge.tables import DuplicatePolicy, build_mapping, read_delimited

logger = logging.getLogger(__name__)

GENE_ID_COLUMN = "gene_id"
GENE_NAME_COLUMN = "gene_name"

UNIQUE_SEPARATOR = "."


class GeneMap:
    """Per-plate gene_id → gene_name table."""

    def __init__(self, symbols: Dict[str, str], path: Optional[str] = None):
        self.symbols = dict(symbols)
        self.path = path

    @classmethod
    def load(cls, path, duplicate_policy: str = DuplicatePolicy.ERROR,
             plate: Optional[str] = None) -> "GeneMap":
        df = read_delimited(path, [GENE_ID_COLUMN, GENE_NAME_COLUMN], plate=plate)
        symbols = build_mapping(df, GENE_ID_COLUMN, GENE_NAME_COLUMN,
                                duplicate_policy=duplicate_policy,
                                plate=plate, path=path)
        return cls(symbols, path=str(path))

    def lookup(self, gene_id: str) -> Lookup:
        return lookup_value(self.symbols, gene_id)

    def __len__(self):
        return len(self.symbols)

    def __contains__(self, item):
        return item in self.symbols


def make_unique(labels: Sequence[str], sep: str = UNIQUE_SEPARATOR) -> List[str]:
    """
    Suffix repeated labels so every output label is unique.

    The first occurrence of a label keeps it bare; later repeats get the
    lowest ``<label><sep><n>`` (n = 1, 2, ...) not already used anywhere in
    the input, so a label that occurs only once is never renamed.

    >>> make_unique(["Actin", "Actin", "Actin"])
    ['Actin', 'Actin.1', 'Actin.2']
    >>> make_unique(["A", "A", "A.1"])
    ['A', 'A.2', 'A.1']
    """
    return list(ad.utils.make_index_unique(pd.Index(list(labels), dtype=object), join=sep))


def resolve_genes_with_stats(
    gene_map: GeneMap, gene_ids: Sequence[str]
) -> Tuple[List[str], Dict[str, int]]:
    """Resolve gene IDs to unique labels and count how each was resolved.

    Returns:
        labels: unique labels, same order and length as gene_ids
        stats: {'resolved', 'no_entry', 'empty_symbol', 'renamed'}
    """
    stats = {"resolved": 0, "no_entry": 0, "empty_symbol": 0, "renamed": 0}
    raw_labels = []
    for gid in gene_ids:
        result = gene_map.lookup(gid)
        if result.is_resolved:
            stats["resolved"] += 1
        elif result.status == LookupStatus.EMPTY:
            stats["empty_symbol"] += 1
        else:
            stats["no_entry"] += 1
        raw_labels.append(result.value_or(gid))

    labels = make_unique(raw_labels)
    stats["renamed"] = sum(1 for a, b in zip(raw_labels, labels) if a != b)
    return labels, stats


def resolve_genes(gene_map: GeneMap, gene_ids: Sequence[str]) -> List[str]:
    """Gene symbols for ``gene_ids`` (falling back to the ID), made unique."""
    labels, _ = resolve_genes_with_stats(gene_map, gene_ids)
    return labels
