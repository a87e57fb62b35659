"""Boundary preparation for the choropleth.

County polygons are filtered to the mapped territory, reprojected into one
equal-area CRS, and outlying regions are moved next to the main landmass
using the :data:`~ratemap.config.REGION_SHIFTS` table.
"""

from __future__ import annotations

import logging
from typing import Mapping, Tuple

import geopandas as gpd

from .cleaning import clean_keys, ensure_columns
from .config import DEFAULT_CONFIG, PipelineConfig, RegionShift

logger = logging.getLogger(__name__)


def _bbox_centre(geoms: gpd.GeoSeries) -> Tuple[float, float]:
    xmin, ymin, xmax, ymax = geoms.total_bounds
    return (xmin + xmax) / 2, (ymin + ymax) / 2


def shift_regions(
    gdf: gpd.GeoDataFrame,
    shifts: Mapping[str, RegionShift],
    region_col: str,
    target_crs: str,
) -> gpd.GeoDataFrame:
    """Reproject ``gdf`` to ``target_crs`` and reposition the listed regions.

    Each region is moved as one block: it is projected into the shift's own
    CRS, scaled about the centre of its bounding box there, and translated
    so that centre lands on the shift's position in ``target_crs``.  The
    relative layout of its polygons is preserved.  Rows whose region is not
    a key of ``shifts`` get a plain reprojection.

    Parameters
    ----------
    gdf : gpd.GeoDataFrame
        Boundaries with a region code column and a CRS.
    shifts : Mapping[str, RegionShift]
        Region code -> move to apply.
    region_col : str
        Column holding the region code.
    target_crs : str
        CRS of the returned frame.

    Returns
    -------
    gpd.GeoDataFrame
        A new GeoDataFrame in ``target_crs`` with the same index and columns.
    """
    out = gdf.to_crs(target_crs)
    geom_col = out.geometry.name
    for region, shift in shifts.items():
        mask = (gdf[region_col] == region).fillna(False).astype(bool)
        if not mask.any():
            continue

        if shift.position is None:
            destination = _bbox_centre(out.geometry[mask])
        else:
            destination = shift.position

        local = gdf.geometry[mask].to_crs(shift.crs or target_crs)
        origin = _bbox_centre(local)
        moved = local.scale(xfact=shift.scale, yfact=shift.scale, origin=origin)
        moved = moved.translate(
            xoff=destination[0] - origin[0], yoff=destination[1] - origin[1]
        )
        out.loc[mask, geom_col] = moved.set_crs(out.crs, allow_override=True)
        logger.debug("Shifted %d features in region %s", int(mask.sum()), region)
    return out


def prepare_geometry(
    boundaries: gpd.GeoDataFrame, config: PipelineConfig = DEFAULT_CONFIG
) -> gpd.GeoDataFrame:
    """Filter, reproject and reposition county boundaries.

    Steps, in order:

    1. Drop rows whose region code is in ``config.excluded_regions``.
    2. Reproject to ``config.target_crs``, moving the regions listed in
       ``config.region_shifts`` into their slots (:func:`shift_regions`).

    Parameters
    ----------
    boundaries : gpd.GeoDataFrame
        Raw boundaries with key, name and region columns and a CRS.
    config : PipelineConfig, optional
        Column names, exclusion set, shift table and target CRS.

    Returns
    -------
    gpd.GeoDataFrame
        Columns ``<key_col>``, ``name``, ``region`` and ``geometry`` in
        ``config.target_crs``.
    """
    key_col = config.boundary_key_col
    name_col = config.boundary_name_col
    region_col = config.region_col
    ensure_columns(boundaries, [key_col, name_col, region_col])
    if boundaries.crs is None:
        raise ValueError("Boundary geometry has no CRS; cannot reproject.")

    gdf = boundaries.copy()
    gdf[region_col] = clean_keys(gdf[region_col], width=2)

    excluded = gdf[region_col].isin(config.excluded_regions).fillna(False)
    if excluded.any():
        logger.info(
            "Excluded %d features in regions %s",
            int(excluded.sum()),
            sorted(gdf.loc[excluded, region_col].unique()),
        )
    gdf = gdf.loc[~excluded].reset_index(drop=True)

    gdf = shift_regions(
        gdf, dict(config.region_shifts), region_col, config.target_crs
    )

    geom_col = gdf.geometry.name
    prepared = gdf[[key_col, name_col, region_col, geom_col]].rename(
        columns={
            key_col: config.key_col,
            name_col: "name",
            region_col: "region",
            geom_col: "geometry",
        }
    )
    prepared = prepared.set_geometry("geometry")
    prepared[config.key_col] = clean_keys(prepared[config.key_col], config.key_width)
    return prepared
