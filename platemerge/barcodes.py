"""
barcodes.py — Raw cell barcode → well label resolution for one plate.

Resolution chain:
    raw barcode  --BarcodeTable-->  sample code  --parse_sample_code-->
    composite index  --IndexTable-->  well label

Any break in the chain falls back to the raw barcode so no cell is dropped.

SAMPLE CODE FORMAT CONTRACT
    The sample code is an underscore-delimited string whose positional fields
    carry the i7 and i5 index names. The field positions are a fixed contract
    with the sample-naming convention of the sequencing facility; they are NOT
    inferred. A format change silently produces wrong wells, so every
    supported layout is registered in SAMPLE_CODE_FORMATS under an explicit
    version name and has its own unit tests.

    v1:  <any>_<i7>_<any>_<i5>[_<any>...]   →   i7_<i7>_i5_<i5>
         e.g. "SC_N701_x_S502"              →   "i7_N701_i5_S502"
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from platemerge.index_table import IndexTable
from platemerge.lookup import Lookup, lookup_value
from platemerge.tables import DuplicatePolicy, build_mapping, read_delimited

logger = logging.getLogger(__name__)

BARCODE_COLUMN = "BC"
SAMPLE_COLUMN = "sample"

SAMPLE_CODE_DELIMITER = "_"

# version → (i7 field position, i5 field position), zero-based
SAMPLE_CODE_FORMATS = {
    "v1": (1, 3),
}
DEFAULT_SAMPLE_CODE_FORMAT = "v1"


# ============================================================
# OUTCOMES
# ============================================================

class BarcodeOutcome:
    RESOLVED = "resolved"
    NO_SAMPLE = "no_sample"                 # barcode absent from barcode table
    MALFORMED_SAMPLE = "malformed_sample"   # sample code does not parse
    NO_WELL = "no_well"                     # composite index absent from index table

    ALL = (RESOLVED, NO_SAMPLE, MALFORMED_SAMPLE, NO_WELL)


# ============================================================
# SAMPLE CODE PARSING
# ============================================================

def parse_sample_code(sample_code: str,
                      format_version: str = DEFAULT_SAMPLE_CODE_FORMAT) -> Optional[str]:
    """
    Build the composite index string encoded in a sample code.

    Returns None when the code has too few fields for the format.

    >>> parse_sample_code("SC_N701_x_S502")
    'i7_N701_i5_S502'
    >>> parse_sample_code("SC_N701") is None
    True
    """
    if format_version not in SAMPLE_CODE_FORMATS:
        raise ValueError(
            f"Unknown sample code format {format_version!r}; "
            f"known: {sorted(SAMPLE_CODE_FORMATS)}"
        )
    i7_pos, i5_pos = SAMPLE_CODE_FORMATS[format_version]
    parts = sample_code.split(SAMPLE_CODE_DELIMITER)
    if len(parts) <= max(i7_pos, i5_pos):
        return None
    i7, i5 = parts[i7_pos], parts[i5_pos]
    if not i7 or not i5:
        return None
    return f"i7_{i7}_i5_{i5}"


# ============================================================
# BARCODE TABLE
# ============================================================

class BarcodeTable:
    """Per-plate raw barcode → sample code table (columns BC, sample)."""

    def __init__(self, samples: Dict[str, str], path: Optional[str] = None):
        self.samples = dict(samples)
        self.path = path

    @classmethod
    def load(cls, path, duplicate_policy: str = DuplicatePolicy.ERROR,
             plate: Optional[str] = None) -> "BarcodeTable":
        df = read_delimited(path, [BARCODE_COLUMN, SAMPLE_COLUMN], plate=plate)
        samples = build_mapping(df, BARCODE_COLUMN, SAMPLE_COLUMN,
                                duplicate_policy=duplicate_policy,
                                plate=plate, path=path)
        return cls(samples, path=str(path))

    def lookup(self, raw_barcode: str) -> Lookup:
        return lookup_value(self.samples, raw_barcode)

    def __len__(self):
        return len(self.samples)

    def __contains__(self, item):
        return item in self.samples


# ============================================================
# RESOLUTION
# ============================================================

def _resolve(table: BarcodeTable, index: IndexTable, raw_barcode: str,
             format_version: str) -> Tuple[str, str]:
    sample = table.lookup(raw_barcode)
    if not sample.is_resolved:
        return raw_barcode, BarcodeOutcome.NO_SAMPLE

    composite = parse_sample_code(sample.value, format_version)
    if composite is None:
        return raw_barcode, BarcodeOutcome.MALFORMED_SAMPLE

    well = index.lookup(composite)
    if not well.is_resolved:
        return raw_barcode, BarcodeOutcome.NO_WELL

    return well.value, BarcodeOutcome.RESOLVED


def resolve_barcode(table: BarcodeTable, index: IndexTable, raw_barcode: str,
                    format_version: str = DEFAULT_SAMPLE_CODE_FORMAT) -> str:
    """Well label for ``raw_barcode``, or the barcode itself if unresolvable."""
    label, _ = _resolve(table, index, raw_barcode, format_version)
    return label


def resolve_barcodes(
    table: BarcodeTable,
    index: IndexTable,
    raw_barcodes: Sequence[str],
    format_version: str = DEFAULT_SAMPLE_CODE_FORMAT,
) -> Tuple[List[str], Dict[str, int]]:
    """Resolve a sequence of barcodes.

    Returns:
        labels: one cell label per input barcode, same order
        stats: count per BarcodeOutcome
    """
    labels = []
    outcomes = Counter({o: 0 for o in BarcodeOutcome.ALL})
    for bc in raw_barcodes:
        label, outcome = _resolve(table, index, bc, format_version)
        labels.append(label)
        outcomes[outcome] += 1
    return labels, dict(outcomes)
