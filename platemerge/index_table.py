"""
index_table.py — Global mapping from composite index strings to well labels.

The index table is shared by every plate. Each row pairs a composite index
string (e.g. ``i7_N701_i5_S502``) with the well it was pipetted into
(e.g. ``A1``). It is loaded once per run and never modified.
"""

import logging
from typing import Dict, Optional

from platemerge.errors import MalformedIndexError
from platemerge.lookup import Lookup, lookup_value
from platemerge.tables import DuplicatePolicy, build_mapping, read_delimited

logger = logging.getLogger(__name__)

INDEX_COLUMN = "indexstring"
WELL_COLUMN = "well"


class IndexTable:
    """
    Loaded composite-index → well table.

    Attributes:
        wells: dict {indexstring: well}
        path: source file
    """

    def __init__(self, wells: Dict[str, str], path: Optional[str] = None):
        self.wells = dict(wells)
        self.path = path

    @classmethod
    def load(cls, path, duplicate_policy: str = DuplicatePolicy.ERROR) -> "IndexTable":
        """Read the index table.

        Raises:
            MissingFileError if the file is absent.
            MalformedIndexError if 'indexstring' or 'well' is missing.
            DuplicateKeyError on repeated index strings (policy 'error').
        """
        df = read_delimited(path, [INDEX_COLUMN, WELL_COLUMN], error_cls=MalformedIndexError)
        wells = build_mapping(df, INDEX_COLUMN, WELL_COLUMN,
                              duplicate_policy=duplicate_policy, path=path)
        table = cls(wells, path=str(path))
        logger.info(f"Loaded index table: {len(table):,} index strings from {path}")
        return table

    def lookup(self, composite_index: str) -> Lookup:
        return lookup_value(self.wells, composite_index)

    def resolve(self, composite_index: str) -> Optional[str]:
        """Well label for a composite index string, or None if there is none."""
        result = self.lookup(composite_index)
        return result.value if result.is_resolved else None

    def __len__(self):
        return len(self.wells)

    def __contains__(self, item):
        return item in self.wells
