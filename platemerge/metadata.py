"""
metadata.py — Per-cell annotation loading and joining.

Annotations come from a spreadsheet (e.g. the FACS sort sheet) with one row
per sorted well: a 'Plate' column, a 'Well' column and free-form fields such
as 'FACSannotation'. Rows are keyed by the same "<Plate>_<Well>" convention
the aligner uses for cell labels, and joined onto the merged matrix by exact
key match. Cells without an annotation row keep all fields missing (NaN).
"""

import logging
from pathlib import Path
from typing import Optional, Union

import anndata as ad
import pandas as pd

from platemerge.align import cell_label
from platemerge.count_matrix import CountMatrix
from platemerge.errors import DuplicateKeyError, MalformedTableError, MissingFileError
from platemerge.tables import DuplicatePolicy, delimiter_for

logger = logging.getLogger(__name__)

PLATE_COLUMN = "Plate"
WELL_COLUMN = "Well"
EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


def read_annotation_sheet(path, sheet: Union[int, str] = 0) -> pd.DataFrame:
    """Read an annotation spreadsheet (.xlsx/.xls) or delimited text file."""
    path = Path(path)
    if not path.is_file():
        raise MissingFileError("Annotation sheet not found", path=path)
    try:
        if path.suffix.lower() in EXCEL_SUFFIXES:
            return pd.read_excel(path, sheet_name=sheet)
        return pd.read_csv(path, sep=delimiter_for(path), compression="infer")
    except (ValueError, pd.errors.ParserError) as e:
        raise MalformedTableError(f"Cannot read annotation sheet: {e}", path=path) from e


def _clean_key_part(values: pd.Series) -> pd.Series:
    # Excel hands plate numbers back as floats (1.0)
    def to_str(v):
        if pd.isna(v):
            return ""
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        return str(v).strip()
    return values.map(to_str)


def load_annotations(
    path,
    sheet: Union[int, str] = 0,
    plate_column: str = PLATE_COLUMN,
    well_column: str = WELL_COLUMN,
    duplicate_policy: str = DuplicatePolicy.ERROR,
) -> pd.DataFrame:
    """
    Load annotation records indexed by cell ID ("<Plate>_<Well>").

    Rows with an empty plate or well are dropped. All other columns
    (including Plate and Well) become per-cell fields.

    Raises:
        MissingFileError, MalformedTableError (missing Plate/Well columns),
        DuplicateKeyError (repeated cell ID with policy 'error').
    """
    df = read_annotation_sheet(path, sheet)
    df.columns = [str(c).strip() for c in df.columns]
    missing = [c for c in (plate_column, well_column) if c not in df.columns]
    if missing:
        raise MalformedTableError(
            f"Annotation sheet lacks column(s) {missing}; found {list(df.columns)}",
            path=path,
        )

    plates = _clean_key_part(df[plate_column])
    wells = _clean_key_part(df[well_column])
    keep = (plates != "") & (wells != "")
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.warning(f"Dropped {n_dropped} annotation rows without plate or well")

    df = df.loc[keep].copy()
    df.index = pd.Index(
        [cell_label(p, w) for p, w in zip(plates[keep], wells[keep])], name=None
    )

    dup_mask = df.index.duplicated(keep="first")
    n_dup = int(dup_mask.sum())
    if n_dup:
        examples = sorted(set(df.index[dup_mask]))[:5]
        if duplicate_policy == DuplicatePolicy.ERROR:
            raise DuplicateKeyError(
                f"{n_dup} duplicate plate/well annotation row(s), e.g. {examples}",
                path=path,
            )
        logger.warning(f"{n_dup} duplicate plate/well annotation row(s) in {path}; "
                       f"keeping first occurrence. Examples: {examples}")
        df = df[~dup_mask]

    # Mixed str/number object columns cannot be written to h5ad
    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].map(lambda v: v if pd.isna(v) else str(v))

    logger.info(f"Loaded {len(df):,} annotation records from {path}")
    return df


def join_annotations(matrix: CountMatrix,
                     annotations: Optional[pd.DataFrame] = None) -> ad.AnnData:
    """
    Attach annotation records to the merged matrix's cells.

    Args:
        matrix: merged genes × cells matrix.
        annotations: records indexed by cell ID; None means no annotations.

    Returns:
        AnnData (cells × genes) whose obs holds one annotation record per
        cell; unmatched cells have every field missing. X is the unchanged
        count data.
    """
    cells = pd.Index(matrix.cells)
    if annotations is None:
        return matrix.to_anndata()

    obs = annotations.reindex(cells)
    n_matched = int(cells.isin(annotations.index).sum())
    n_unmatched = matrix.n_cells - n_matched
    logger.info(f"{n_matched:,} of {matrix.n_cells:,} cells annotated")
    if n_unmatched:
        logger.warning(f"{n_unmatched:,} cells have no annotation record; fields left missing")
    return matrix.to_anndata(obs=obs)
