"""
Handles downloads of the raw inputs: county counts (NYT), population
estimates (Census ACS API) and county boundaries (Census cartographic files).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

import geopandas as gpd
import pandas as pd
import requests

from .cleaning import ensure_columns
from .config import (
    ACS_ENDPOINT,
    ACS_POPULATION_VARIABLE,
    ACS_YEAR,
    BOUNDARIES_SOURCE,
    COUNTS_SOURCE,
    DEFAULT_SEP,
    KEY_COL,
    POPULATION_COL,
    POPULATION_KEY_COL,
)

logger = logging.getLogger(__name__)


def load_counts(
    source: str | Path = COUNTS_SOURCE,
    sep: str = DEFAULT_SEP,
    key_col: str = KEY_COL,
) -> pd.DataFrame:
    """Read the county count CSV, keeping the key column as text."""
    logger.info("Loading county counts from %s", source)
    return pd.read_csv(source, sep=sep, dtype={key_col: str})


def fetch_population(
    year: int = ACS_YEAR,
    variable: str = ACS_POPULATION_VARIABLE,
    api_key: Optional[str] = None,
) -> pd.DataFrame:
    """Fetch county population estimates from the ACS 5-year API.

    The API answers with a JSON array whose first row is the header, e.g.
    ``["NAME", "B01003_001E", "state", "county"]``.  The county key is
    rebuilt as state + county codes.

    Parameters
    ----------
    year : int, optional
        ACS vintage.
    variable : str, optional
        ACS variable holding the estimate.
    api_key : Optional[str], optional
        Census API key; falls back to the ``CENSUS_API_KEY`` environment
        variable.  Small request volumes work without one.

    Returns
    -------
    pd.DataFrame
        Columns ``GEOID`` and ``population``.
    """
    api_key = api_key or os.getenv("CENSUS_API_KEY")
    params = {"get": f"NAME,{variable}", "for": "county:*"}
    if api_key:
        params["key"] = api_key

    url = ACS_ENDPOINT.format(year=year)
    logger.info("Fetching ACS %s population (%s)", year, variable)
    response = requests.get(url, params=params, timeout=30)
    response.raise_for_status()

    rows = response.json()
    if not rows:
        return pd.DataFrame(columns=[POPULATION_KEY_COL, POPULATION_COL])

    header, *body = rows
    raw = pd.DataFrame(body, columns=header)
    ensure_columns(raw, [variable, "state", "county"])

    return pd.DataFrame(
        {
            POPULATION_KEY_COL: raw["state"].str.zfill(2) + raw["county"].str.zfill(3),
            POPULATION_COL: pd.to_numeric(raw[variable], errors="coerce"),
        }
    )


def load_boundaries(source: str | Path = BOUNDARIES_SOURCE) -> gpd.GeoDataFrame:
    """Read county boundary polygons (any format ``geopandas`` can open)."""
    logger.info("Loading county boundaries from %s", source)
    return gpd.read_file(source)
