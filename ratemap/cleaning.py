"""Record cleaning for raw county count tables.

Keys arrive with inconsistent width and type (``1001``, ``1001.0``,
``"01001"``) and count columns may carry markers such as ``"Unknown"``.
:func:`clean_records` normalises both and drops rows that cannot be placed
on the map.  Nothing here raises for bad rows; they are counted and logged.
"""

from __future__ import annotations

import logging
from typing import List

import pandas as pd

from .config import DEFAULT_CONFIG, KEY_WIDTH, PipelineConfig

logger = logging.getLogger(__name__)


def ensure_columns(df: pd.DataFrame, required: List[str]) -> None:
    """Raise an error if the DataFrame lacks any of the required columns."""
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise KeyError(f"Missing expected columns: {missing}")


def clean_keys(series: pd.Series, width: int = KEY_WIDTH) -> pd.Series:
    """Left-pad entity keys with zeros to ``width`` characters.

    Parameters
    ----------
    series : pd.Series
        Keys as read from a file: strings, integers or floats (a float
        column is what ``read_csv`` produces for integer codes with gaps).
    width : int, optional
        Target width; defaults to 5 (county FIPS).

    Returns
    -------
    pd.Series
        A ``string`` dtype Series.  Absent or blank keys stay ``<NA>``; keys
        longer than ``width`` are returned unchanged so callers can reject
        them.
    """
    keys = series.astype("string").str.strip()
    keys = keys.str.replace(r"\.0$", "", regex=True)
    keys = keys.mask(keys == "")
    return keys.str.zfill(width)


def clean_records(
    raw: pd.DataFrame, config: PipelineConfig = DEFAULT_CONFIG
) -> pd.DataFrame:
    """Normalise keys, numbers and dates, and drop unusable rows.

    * Keys are padded with :func:`clean_keys`.
    * ``config.value_col`` and every column in ``config.numeric_cols`` that
      is present are coerced to numbers; non-numeric tokens become ``NaN``
      and the row is kept.
    * The date column is parsed; unparseable dates become ``NaT``.
    * Rows with an absent key, a key that is not exactly
      ``config.key_width`` characters, or an absent date are dropped.

    Parameters
    ----------
    raw : pd.DataFrame
        Raw count rows with at least the key, date and value columns.
    config : PipelineConfig, optional
        Column names and key width.

    Returns
    -------
    pd.DataFrame
        A new DataFrame with a fresh index.
    """
    key_col, date_col = config.key_col, config.date_col
    ensure_columns(raw, [key_col, date_col, config.value_col])

    df = raw.copy()
    df[key_col] = clean_keys(df[key_col], config.key_width)

    numeric = dict.fromkeys([config.value_col, *config.numeric_cols])
    for col in numeric:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")

    df[date_col] = pd.to_datetime(df[date_col], errors="coerce")

    valid = (
        df[key_col].notna()
        & (df[key_col].str.len() == config.key_width)
        & df[date_col].notna()
    )
    valid = valid.fillna(False).astype(bool)

    dropped = int((~valid).sum())
    if dropped:
        logger.info(
            "Dropped %d of %d rows with a missing/malformed key or date",
            dropped,
            len(df),
        )
    return df.loc[valid].reset_index(drop=True)
