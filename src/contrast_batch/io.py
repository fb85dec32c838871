from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from .lookup import NameLookup

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = {".xlsx", ".xls"}
_TAB_SUFFIXES = {".tsv", ".txt", ".tab"}


def load_counts_matrix(
    counts_path: str | Path,
    sheet_name: str | int = 0,
    feature_id_col: Optional[str] = "featureId",
    skip_first_col_if_unknown: bool = True,
) -> pd.DataFrame:
    """
    Reads the raw count matrix.

    Expected:
      - one column holding feature IDs (default 'featureId').
      - remaining columns are sample ids, values are raw integer counts.
    """
    counts_path = Path(counts_path)
    df = _read_table(counts_path, sheet_name=sheet_name)
    df = _norm_cols(df)

    if feature_id_col is not None and feature_id_col in df.columns:
        id_col = feature_id_col
    elif skip_first_col_if_unknown:
        id_col = df.columns[0]
    else:
        raise ValueError(f"Could not determine feature id column in {counts_path}.")

    df[id_col] = df[id_col].astype(str)
    df = df.set_index(id_col)
    df.index.name = "featureId"

    # coerce to int raw counts
    df = df.apply(pd.to_numeric, errors="raise").fillna(0).astype(int)

    logger.info(f"Loaded counts: {df.shape[0]} features x {df.shape[1]} samples")
    return df


def load_sample_metadata(
    metadata_path: str | Path,
    sheet_name: str | int = 0,
    sample_id_col: str = "sample_id",
) -> pd.DataFrame:
    """
    Reads the sample metadata table.

    One row per sample; every other column is a factor (donor, tlr,
    dendrimer, ...). Values are kept as strings.
    """
    metadata_path = Path(metadata_path)
    smeta = _read_table(metadata_path, sheet_name=sheet_name)
    smeta = _norm_cols(smeta)

    # Find the sample_id column - check for common names
    id_col_found = None
    if sample_id_col in smeta.columns:
        id_col_found = sample_id_col
    else:
        # Check for unnamed index column that pandas creates when reading Excel with index
        for candidate in ["Unnamed: 0", "index"]:
            if candidate in smeta.columns:
                id_col_found = candidate
                break

    if id_col_found is None:
        raise ValueError(f"{metadata_path} missing '{sample_id_col}' column.")

    smeta[id_col_found] = smeta[id_col_found].astype(str)
    smeta = smeta.set_index(id_col_found)
    smeta.index.name = "sample_id"

    logger.info(f"Loaded metadata: {len(smeta)} samples, factors {list(smeta.columns)}")
    return smeta


def load_comparison_table(
    table_path: str | Path,
    skip_rows: int = 0,
    sheet_name: str | int = 0,
) -> pd.DataFrame:
    """
    Reads the raw comparison definition table.

    The first ``skip_rows`` lines above the header are ignored. No validation
    happens here; see :func:`contrast_batch.comparisons.load_comparison_specs`.
    """
    table_path = Path(table_path)
    table = _read_table(table_path, sheet_name=sheet_name, skiprows=skip_rows, dtype=object)
    return _norm_cols(table)


def load_name_lookup(
    names_path: str | Path,
    id_col: Optional[str] = None,
    name_col: Optional[str] = None,
    sheet_name: str | int = 0,
) -> NameLookup:
    """
    Reads a feature id -> name table.

    Defaults to the first two columns when ``id_col``/``name_col`` are not given.
    """
    names_path = Path(names_path)
    df = _norm_cols(_read_table(names_path, sheet_name=sheet_name, dtype=str))
    if df.shape[1] < 2:
        raise ValueError(f"{names_path} needs at least an id and a name column.")

    id_col = id_col or df.columns[0]
    name_col = name_col or df.columns[1]
    missing = [c for c in (id_col, name_col) if c not in df.columns]
    if missing:
        raise ValueError(f"{names_path} missing required columns: {missing}")

    lookup = NameLookup.from_frame(df, id_col=id_col, name_col=name_col)
    logger.info(f"Loaded {len(lookup)} feature names from {names_path}")
    return lookup


def _read_table(path: Path, sheet_name: str | int = 0, **kwargs) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Input table does not exist: {path}")

    suffix = path.suffix.lower()
    if suffix in _EXCEL_SUFFIXES:
        return pd.read_excel(path, sheet_name=sheet_name, **kwargs)
    if suffix in _TAB_SUFFIXES:
        return pd.read_csv(path, sep="\t", **kwargs)
    return pd.read_csv(path, **kwargs)


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df
