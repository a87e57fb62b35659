"""Data manager for loading and caching the pipeline inputs.

Downloading the county file, the ACS population table and the boundary
shapefile is the slow part of a run, so the raw inputs are persisted to
disk after the first fetch and reused afterwards.  The cache files include
a version tag to make it easy to invalidate them when the shape of the
cached tables changes.
"""

import os
import tempfile
import logging
from pathlib import Path
from typing import Dict, Optional
from functools import lru_cache

import geopandas as gpd
import pandas as pd

from . import pipeline, sources
from .config import DEFAULT_CONFIG, KEY_COL, POPULATION_KEY_COL, PipelineConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Cache setup
# ---------------------------------------------------------------------------
# Bump whenever the cached input layout changes.
CACHE_VERSION: str = "v1"


def _is_writable(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
        sentinel = path / ".write_test"
        sentinel.write_text("ok", encoding="utf-8")
        sentinel.unlink()
    except OSError:
        return False
    return True


def _resolve_cache_dir() -> Path:
    """Pick the directory that holds the downloaded inputs.

    ``DATA_CACHE_DIR`` wins when set; otherwise the repository's ``data``
    folder is used, and a ``ratemap_cache`` folder under the system temp
    directory is the last resort (created even if the check fails, so the
    downloads still have somewhere to go).
    """
    fallback = Path(tempfile.gettempdir()) / "ratemap_cache"
    candidates: list[Path] = []
    env = os.getenv("DATA_CACHE_DIR")
    if env:
        candidates.append(Path(env).expanduser().resolve())
    candidates.append(Path(__file__).resolve().parent.parent / "data")
    candidates.append(fallback)

    for path in candidates:
        if _is_writable(path):
            return path

    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


# Resolve the directory once at import time
DATA_DIR: Path = _resolve_cache_dir()


def cache_paths(data_dir: Optional[Path] = None) -> Dict[str, Path]:
    """Versioned cache file locations, e.g. ``counts_v1.csv``."""
    base = data_dir or DATA_DIR
    return {
        "counts": base / f"counts_{CACHE_VERSION}.csv",
        "population": base / f"population_{CACHE_VERSION}.csv",
        "boundaries": base / f"boundaries_{CACHE_VERSION}.gpkg",
    }


def _atomic_to_csv(df: pd.DataFrame, path: Path) -> None:
    """Save a raw input table; readers never see a half-written CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    df.to_csv(tmp_path, index=False)
    tmp_path.replace(path)


def _atomic_to_gpkg(gdf: gpd.GeoDataFrame, path: Path) -> None:
    """Write a GeoDataFrame to a GeoPackage via a temporary file and a rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.stem}.tmp{path.suffix}")
    if tmp_path.exists():
        tmp_path.unlink()
    gdf.to_file(tmp_path, driver="GPKG")
    tmp_path.replace(path)


@lru_cache(maxsize=1)
def _fetch_inputs() -> Dict[str, pd.DataFrame]:
    """Download all three inputs once per process."""
    return {
        "counts": sources.load_counts(),
        "population": sources.fetch_population(),
        "boundaries": sources.load_boundaries(),
    }


def _read_cached(paths: Dict[str, Path]) -> Dict[str, pd.DataFrame]:
    return {
        "counts": pd.read_csv(paths["counts"], dtype={KEY_COL: str}),
        "population": pd.read_csv(paths["population"], dtype={POPULATION_KEY_COL: str}),
        "boundaries": gpd.read_file(paths["boundaries"]),
    }


def load_inputs(
    force_refresh: bool = False, data_dir: Optional[Path] = None
) -> Dict[str, pd.DataFrame]:
    """
    Load the raw inputs from the disk cache if available, otherwise fetch
    and save them.

    Parameters
    ----------
    force_refresh : bool, optional
        If ``True``, download again even if cache files exist.
    data_dir : Optional[Path], optional
        Cache directory; defaults to :data:`DATA_DIR`.

    Returns
    -------
    Dict[str, pd.DataFrame]
        Keys ``"counts"``, ``"population"`` and ``"boundaries"`` (the last
        one a GeoDataFrame).
    """
    paths = cache_paths(data_dir)

    if not force_refresh and all(path.exists() for path in paths.values()):
        logger.info("Loading inputs from cache directory %s", paths["counts"].parent)
        try:
            return _read_cached(paths)
        except Exception as exc:
            # If reading the cache fails, fall back to fetching
            logger.warning(
                "Error reading cache files in %s: %s; falling back to fetch",
                paths["counts"].parent,
                exc,
            )

    if force_refresh:
        _fetch_inputs.cache_clear()

    logger.info("Fetching inputs – this may take a while…")
    inputs = _fetch_inputs()

    try:
        _atomic_to_csv(inputs["counts"], paths["counts"])
        _atomic_to_csv(inputs["population"], paths["population"])
        _atomic_to_gpkg(inputs["boundaries"], paths["boundaries"])
        logger.info(
            "Cache updated: %s",
            ", ".join(path.name for path in paths.values()),
        )
    except Exception as exc:
        logger.warning("Could not write cache files: %s", exc)

    return inputs


def load_payload(
    config: PipelineConfig = DEFAULT_CONFIG,
    force_refresh: bool = False,
    data_dir: Optional[Path] = None,
) -> Dict[str, object]:
    """Load (or fetch) the inputs and run :func:`pipeline.run_pipeline`."""
    inputs = load_inputs(force_refresh=force_refresh, data_dir=data_dir)
    return pipeline.run_pipeline(
        inputs["counts"],
        inputs["population"],
        inputs["boundaries"],
        config=config,
    )
