"""
tables.py — Reading the delimited identifier tables.

All per-plate and global tables (index, barcode, gene names) are small
delimited text files. They are read as strings so barcodes and well labels
never get coerced to numbers, validated for required columns, and turned into
plain dicts for lookup.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type

import pandas as pd

from platemerge.errors import (
    DuplicateKeyError,
    MalformedTableError,
    MissingFileError,
)

logger = logging.getLogger(__name__)


class DuplicatePolicy:
    ERROR = "error"     # fail fast at load time
    FIRST = "first"     # keep the first row, warn

    ALL = (ERROR, FIRST)


def delimiter_for(path) -> str:
    """Comma for .csv (optionally gzipped), tab for everything else.

    >>> delimiter_for("wells.csv.gz")
    ','
    >>> delimiter_for("barcodes.txt")
    '\\t'
    """
    name = Path(path).name.lower()
    if name.endswith(".gz"):
        name = name[:-3]
    return "," if name.endswith(".csv") else "\t"


def read_delimited(
    path,
    required_columns: Sequence[str],
    error_cls: Type[MalformedTableError] = MalformedTableError,
    plate: Optional[str] = None,
) -> pd.DataFrame:
    """Read a delimited table as strings and check its header.

    Args:
        path: Table path (.csv → comma, otherwise tab; gzip is detected).
        required_columns: Columns that must be present.
        error_cls: Error raised when a required column is absent.
        plate: Plate ID, for error context.

    Raises:
        MissingFileError if the file does not exist.
        error_cls if a required column is missing or the file cannot be parsed.
    """
    path = Path(path)
    if not path.is_file():
        raise MissingFileError("Required table not found", plate=plate, path=path)

    try:
        df = pd.read_csv(
            path,
            sep=delimiter_for(path),
            dtype=str,
            keep_default_na=False,
            compression="infer",
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise error_cls(f"Cannot parse table: {e}", plate=plate, path=path) from e

    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in required_columns if c not in df.columns]
    if missing:
        raise error_cls(
            f"Missing required column(s) {missing}; found {list(df.columns)}",
            plate=plate, path=path,
        )

    for col in required_columns:
        df[col] = df[col].fillna("").str.strip()
    return df


def build_mapping(
    df: pd.DataFrame,
    key_column: str,
    value_column: str,
    duplicate_policy: str = DuplicatePolicy.ERROR,
    plate: Optional[str] = None,
    path=None,
) -> Dict[str, str]:
    """Turn two columns of a table into a key → value dict.

    Rows with an empty key are ignored. Duplicate keys either raise
    DuplicateKeyError or keep the first occurrence, depending on policy.
    """
    if duplicate_policy not in DuplicatePolicy.ALL:
        raise ValueError(f"Unknown duplicate policy: {duplicate_policy!r}")

    keys = df[key_column]
    df = df[keys != ""]
    dup_mask = df[key_column].duplicated(keep="first")
    n_dup = int(dup_mask.sum())

    if n_dup:
        examples: List[str] = sorted(set(df.loc[dup_mask, key_column]))[:5]
        if duplicate_policy == DuplicatePolicy.ERROR:
            raise DuplicateKeyError(
                f"{n_dup} duplicate '{key_column}' row(s), e.g. {examples}",
                plate=plate, path=path,
            )
        logger.warning(
            f"{n_dup} duplicate '{key_column}' row(s) in {path} "
            f"(plate={plate}); keeping first occurrence. Examples: {examples}"
        )
        df = df[~dup_mask]

    return dict(zip(df[key_column], df[value_column]))
