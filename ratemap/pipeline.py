"""Core pipeline logic: turn cumulative county counts into choropleth rates.

This module chains the batch stages that take three already-loaded tables

* cumulative counts per county and date (e.g. the NYT county file),
* a population estimate per county (ACS 5-year ``B01003_001``),
* county boundary polygons (Census cartographic boundaries),

and produce one GeoDataFrame with a per-100k rate, a category index and
label for every mapped county, plus the bounding box of what was kept.

The primary entry point is :func:`run_pipeline`.  Every stage is a pure
function over its input and returns a new frame; bad rows are filtered and
counted along the way rather than raised.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd

from .cleaning import clean_keys, clean_records, ensure_columns
from .config import (
    DEFAULT_CONFIG,
    PER_CAPITA,
    RATE_COL,
    PipelineConfig,
    validate_breaks,
)
from .geometry import prepare_geometry

# Module‑level logger
logger = logging.getLogger(__name__)

__all__ = [
    "assemble_map",
    "bounding_box",
    "category_labels",
    "classify_rate",
    "classify_rates",
    "clean_keys",
    "clean_records",
    "compute_daily_deltas",
    "compute_rates",
    "compute_rolling_sums",
    "latest_snapshot",
    "run_pipeline",
    "validate_breaks",
]


# ---------------------------------------------------------------------------
# Rolling aggregation
# ---------------------------------------------------------------------------


def compute_daily_deltas(
    df: pd.DataFrame, config: PipelineConfig = DEFAULT_CONFIG
) -> pd.DataFrame:
    """Derive daily new counts from a cumulative count column.

    Rows are sorted by key and date, and duplicate ``(key, date)`` pairs
    keep their last occurrence.  For each entity the first observation is
    its own "previous" value, so its delta is 0 rather than the whole
    cumulative total.  Deltas are clamped at 0 so a downward correction of
    the cumulative count never shows up as negative new counts.  An absent
    count makes the delta absent for that row and the row after it.

    Parameters
    ----------
    df : pd.DataFrame
        Cleaned records (see :func:`~ratemap.cleaning.clean_records`).
    config : PipelineConfig, optional
        Key, date and value column names.

    Returns
    -------
    pd.DataFrame
        Sorted copy with an extra ``new_<value_col>`` column.
    """
    key_col, date_col, value_col = config.key_col, config.date_col, config.value_col
    ensure_columns(df, [key_col, date_col, value_col])

    ordered = (
        df.sort_values([key_col, date_col], kind="mergesort")
        .drop_duplicates(subset=[key_col, date_col], keep="last")
        .reset_index(drop=True)
    )

    previous = ordered.groupby(key_col, sort=False)[value_col].shift(1)
    first_obs = ordered.groupby(key_col, sort=False).cumcount() == 0
    previous = previous.where(~first_obs, ordered[value_col])

    ordered[f"new_{value_col}"] = (ordered[value_col] - previous).clip(lower=0)
    return ordered


def compute_rolling_sums(
    df: pd.DataFrame, config: PipelineConfig = DEFAULT_CONFIG
) -> pd.DataFrame:
    """Add a trailing ``config.window``-observation sum of daily new counts.

    The window is positional: it covers the current row and the
    ``window - 1`` rows before it for the same entity, in the order produced
    by :func:`compute_daily_deltas`.  A value is only defined once a full
    window exists; earlier positions, and windows containing an absent
    delta, are ``NaN`` (never zero or a partial sum).
    """
    delta_col = f"new_{config.value_col}"
    ensure_columns(df, [config.key_col, delta_col])

    window = config.window
    out = df.copy()
    out[f"{delta_col}_{window}d"] = out.groupby(config.key_col, sort=False)[
        delta_col
    ].transform(lambda s: s.rolling(window=window, min_periods=window).sum())
    return out


def latest_snapshot(
    df: pd.DataFrame,
    value_col: str,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Keep each entity's most recent row, if its value there is defined.

    Entities whose latest value is absent (e.g. an incomplete rolling
    window) are excluded from the snapshot; they do not fall back to an
    older date.

    Returns
    -------
    pd.DataFrame
        Columns ``key``, ``date`` and ``value_col``; one row per entity.
    """
    key_col, date_col = config.key_col, config.date_col
    ensure_columns(df, [key_col, date_col, value_col])

    latest = (
        df.sort_values([key_col, date_col], kind="mergesort")
        .groupby(key_col, sort=False)
        .tail(1)
    )
    absent = latest[value_col].isna()
    if absent.any():
        logger.info(
            "Excluded %d entities without a defined %s on their latest date",
            int(absent.sum()),
            value_col,
        )
    return latest.loc[~absent, [key_col, date_col, value_col]].reset_index(drop=True)


# ---------------------------------------------------------------------------
# Rates
# ---------------------------------------------------------------------------


def compute_rates(
    snapshot: pd.DataFrame,
    population: pd.DataFrame,
    value_col: str,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Join a snapshot to population estimates and compute per-100k rates.

    Entities with no population row, or a population that is not strictly
    positive, are excluded rather than given a default denominator.  Rows
    with an absent or negative numerator are excluded as well, so every
    returned rate is finite and non-negative.

    Parameters
    ----------
    snapshot : pd.DataFrame
        One row per entity, as produced by :func:`latest_snapshot`.
    population : pd.DataFrame
        Table with ``config.population_key_col`` and
        ``config.population_col``.
    value_col : str
        Numerator column in ``snapshot``.
    config : PipelineConfig, optional
        Column names and key width.

    Returns
    -------
    pd.DataFrame
        Columns ``key``, ``date``, ``value_col``, population and
        ``rate_per_100k``.
    """
    key_col = config.key_col
    pop_key, pop_col = config.population_key_col, config.population_col
    ensure_columns(snapshot, [key_col, config.date_col, value_col])
    ensure_columns(population, [pop_key, pop_col])

    pop = population[[pop_key, pop_col]].copy()
    pop[pop_key] = clean_keys(pop[pop_key], config.key_width)
    pop[pop_col] = pd.to_numeric(pop[pop_col], errors="coerce")
    pop = pop.dropna(subset=[pop_key])

    duplicated = pop[pop_key].duplicated(keep="last")
    if duplicated.any():
        logger.warning(
            "Population table has %d duplicated keys; keeping the last row for each",
            int(duplicated.sum()),
        )
        pop = pop.loc[~duplicated]
    pop = pop.rename(columns={pop_key: key_col})

    left = snapshot.copy()
    left[key_col] = clean_keys(left[key_col], config.key_width)
    merged = left.merge(pop, on=key_col, how="left", validate="many_to_one")

    valid = (
        merged[pop_col].notna()
        & (merged[pop_col] > 0)
        & merged[value_col].notna()
        & (merged[value_col] >= 0)
    )
    valid = valid.fillna(False).astype(bool)
    excluded = int((~valid).sum())
    if excluded:
        logger.info(
            "Excluded %d of %d entities with a missing/non-positive population",
            excluded,
            len(merged),
        )

    rates = merged.loc[valid, [key_col, config.date_col, value_col, pop_col]].copy()
    rates[RATE_COL] = PER_CAPITA * rates[value_col] / rates[pop_col]
    rates = rates[np.isfinite(rates[RATE_COL].astype(float))]
    return rates.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def classify_rate(rate: Optional[float], breaks: Sequence[float]) -> Optional[int]:
    """Return the index ``i`` with ``breaks[i] <= rate < breaks[i + 1]``.

    Intervals are left-closed and right-open; the last one is unbounded, so
    a rate equal to a breakpoint lands in the interval that starts there.
    An absent rate (``None`` or ``NaN``) has no category and returns
    ``None``.

    >>> classify_rate(250, [0, 250, 480, 680, float("inf")])
    1
    """
    validate_breaks(breaks)
    if rate is None or pd.isna(rate):
        return None

    value = float(rate)
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"Cannot classify rate {rate!r}; expected finite and >= 0.")

    bounds = [float(b) for b in breaks]
    for index, (lower, upper) in enumerate(zip(bounds, bounds[1:])):
        if lower <= value < upper:
            return index
    raise ValueError(f"Rate {rate!r} falls outside breaks {bounds}.")


def classify_rates(rates: pd.Series, breaks: Sequence[float]) -> pd.Series:
    """Vectorised :func:`classify_rate`; absent rates stay ``<NA>``."""
    validate_breaks(breaks)
    codes = pd.cut(
        rates.astype(float),
        bins=[float(b) for b in breaks],
        right=False,
        labels=False,
    )
    return pd.Series(codes, index=rates.index, name="category").astype("Int64")


def _format_break(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def category_labels(breaks: Sequence[float]) -> List[str]:
    """Human-readable interval labels, e.g. ``["0–250", ..., "680+"]``."""
    validate_breaks(breaks)
    bounds = [float(b) for b in breaks]
    labels = [
        f"{_format_break(lower)}–{_format_break(upper)}"
        for lower, upper in zip(bounds[:-2], bounds[1:-1])
    ]
    labels.append(f"{_format_break(bounds[-2])}+")
    return labels


# ---------------------------------------------------------------------------
# Map assembly
# ---------------------------------------------------------------------------


def bounding_box(gdf: gpd.GeoDataFrame) -> Optional[Tuple[float, float, float, float]]:
    """Return ``(xmin, ymin, xmax, ymax)`` of ``gdf``, or ``None`` if empty."""
    if gdf.empty:
        return None
    bounds = gdf.total_bounds
    if np.isnan(bounds).any():
        return None
    xmin, ymin, xmax, ymax = (float(v) for v in bounds)
    return xmin, ymin, xmax, ymax


def assemble_map(
    geometry: gpd.GeoDataFrame,
    rates: pd.DataFrame,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> gpd.GeoDataFrame:
    """Join prepared geometry with rates and attach categories.

    All geometry rows are kept through the join.  What happens to rows
    without a rate depends on ``config.missing``:

    * ``"drop"``: they are removed.
    * ``"keep"``: they stay, with ``category`` ``<NA>`` and
      ``category_label`` set to ``config.missing_label``.

    Returns
    -------
    gpd.GeoDataFrame
        Geometry columns plus the rate columns, ``category`` (``Int64``)
        and ``category_label`` (ordered categorical).
    """
    key_col = config.key_col
    ensure_columns(geometry, [key_col])
    ensure_columns(rates, [key_col, RATE_COL])

    right = rates.copy()
    right[key_col] = clean_keys(right[key_col], config.key_width)
    merged = geometry.merge(right, on=key_col, how="left", validate="many_to_one")

    has_rate = merged[RATE_COL].notna()
    if config.missing == "drop":
        dropped = int((~has_rate).sum())
        if dropped:
            logger.info("Dropped %d features without a rate", dropped)
        merged = merged.loc[has_rate].copy()

    labels = category_labels(config.breaks)
    categories = list(labels)
    if config.missing == "keep":
        categories.append(config.missing_label)

    merged["category"] = classify_rates(merged[RATE_COL], config.breaks)
    codes = merged["category"].fillna(len(labels)).astype(int).to_numpy()
    merged["category_label"] = pd.Categorical.from_codes(
        codes, categories=categories, ordered=True
    )
    return merged.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------


def run_pipeline(
    counts: pd.DataFrame,
    population: pd.DataFrame,
    boundaries: gpd.GeoDataFrame,
    config: PipelineConfig = DEFAULT_CONFIG,
) -> Dict[str, object]:
    """Run every stage and return the choropleth payload.

    Parameters
    ----------
    counts : pd.DataFrame
        Raw cumulative counts with key, date and ``config.value_col``.
    population : pd.DataFrame
        Population estimates per key.
    boundaries : gpd.GeoDataFrame
        Raw boundary polygons with key, name and region columns.
    config : PipelineConfig, optional
        Run parameters; defaults to the 7-day case rate preset.

    Returns
    -------
    Dict[str, object]
        ``"map"`` (GeoDataFrame), ``"rates"`` (DataFrame), ``"bbox"``
        (tuple or ``None``), ``"latest_date"`` (Timestamp or ``None``) and
        the ``"config"`` used.
    """
    # 1. Clean raw rows
    records = clean_records(counts, config)

    # 2. Reduce each entity's series to one value
    if config.mode == "rolling":
        series = compute_rolling_sums(compute_daily_deltas(records, config), config)
    else:
        series = records
    snapshot = latest_snapshot(series, config.measure_col, config)

    # 3. Rates per 100k
    rates = compute_rates(snapshot, population, config.measure_col, config)

    # 4. Geometry, join, classification, framing
    geometry = prepare_geometry(boundaries, config)
    map_table = assemble_map(geometry, rates, config)
    bbox = bounding_box(map_table)

    latest_date = records[config.date_col].max() if not records.empty else None
    if latest_date is not None and pd.isna(latest_date):
        latest_date = None

    logger.info(
        "Pipeline finished: %d rated entities, %d map features",
        len(rates),
        len(map_table),
    )
    return {
        "map": map_table,
        "rates": rates,
        "bbox": bbox,
        "latest_date": latest_date,
        "config": config,
    }
