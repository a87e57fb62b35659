"""
Configuration constants for the per-capita rate choropleth pipeline.
"""

import math
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Literal, Optional, Sequence, Tuple

# ======================================================
#  DATA SOURCES / CONSTANTS
# ======================================================
# NYT county file (last ~30 days); swap for us-counties.csv for the full history.
COUNTS_SOURCE: str = (
    "https://raw.githubusercontent.com/nytimes/covid-19-data/master/"
    "us-counties-recent.csv"
)

# Cartographic (generalised) county boundaries, 2022 vintage, NAD83.
BOUNDARIES_SOURCE: str = (
    "https://www2.census.gov/geo/tiger/GENZ2022/shp/cb_2022_us_county_20m.zip"
)

# ACS 5-year total population
ACS_ENDPOINT: str = "https://api.census.gov/data/{year}/acs/acs5"
ACS_YEAR: int = 2022
ACS_POPULATION_VARIABLE: str = "B01003_001E"

DEFAULT_SEP: str = ","

# ======================================================
#  COLUMN NAMES
# ======================================================
KEY_COL: str = "fips"
DATE_COL: str = "date"
POPULATION_COL: str = "population"
RATE_COL: str = "rate_per_100k"

BOUNDARY_KEY_COL: str = "GEOID"
BOUNDARY_NAME_COL: str = "NAME"
BOUNDARY_REGION_COL: str = "STATEFP"
POPULATION_KEY_COL: str = "GEOID"

KEY_WIDTH: int = 5

# ======================================================
#  PIPELINE DEFAULTS
# ======================================================
DEFAULT_WINDOW: int = 7
PER_CAPITA: int = 100_000

CASE_BREAKS: Tuple[float, ...] = (0, 5, 10, 25, 50, 100, 200, float("inf"))
DEATH_BREAKS: Tuple[float, ...] = (0, 250, 480, 680, float("inf"))

# American Samoa, Guam, Northern Mariana Islands, U.S. Virgin Islands.
# Puerto Rico (72) stays on the map.
EXCLUDED_REGIONS: FrozenSet[str] = frozenset({"60", "66", "69", "78"})

TARGET_CRS: str = "EPSG:5070"

MODES: List[str] = ["rolling", "cumulative"]
MISSING_POLICIES: List[str] = ["drop", "keep"]
DEFAULT_MISSING_LABEL: str = "No data"


def validate_breaks(breaks: Sequence[float]) -> None:
    """Raise ``ValueError`` unless ``breaks`` is a usable breakpoint sequence.

    Valid sequences have at least two entries, increase strictly, start at
    zero and end at ``inf`` so every non-negative finite rate falls in exactly
    one interval.
    """
    values = [float(b) for b in breaks]
    if len(values) < 2:
        raise ValueError("breaks needs at least two entries.")
    if values[0] != 0:
        raise ValueError(f"First breakpoint must be 0, got {values[0]}.")
    if values[-1] != math.inf:
        raise ValueError(f"Last breakpoint must be inf, got {values[-1]}.")
    if any(lo >= hi for lo, hi in zip(values, values[1:])):
        raise ValueError(f"breaks must increase strictly: {values}")


@dataclass(frozen=True)
class RegionShift:
    """Move one region into a slot of the target CRS.

    The region is projected into ``crs`` (``None`` means the target CRS
    itself), scaled by ``scale`` about the centre of its bounding box there,
    and translated so that centre lands on ``position``, given in target-CRS
    units.  ``position=None`` keeps the centre where a plain reprojection
    puts it.  Scaling in a local equal-area projection keeps the region's
    shape and shrinks its area by ``scale ** 2``.
    """

    scale: float = 1.0
    position: Optional[Tuple[float, float]] = None
    crs: Optional[str] = None


# Alaska shrunk and parked below the south-west; Hawaii placed east of it.
# Positions are EPSG:5070 metres.
REGION_SHIFTS: Dict[str, RegionShift] = {
    "02": RegionShift(scale=0.35, position=(-1_650_000.0, 400_000.0), crs="EPSG:3338"),
    "15": RegionShift(scale=1.0, position=(-600_000.0, 250_000.0), crs="ESRI:102007"),
}


@dataclass(frozen=True)
class PipelineConfig:
    """Parameters for one choropleth run.

    ``value_col`` names the cumulative count to map.  ``mode="rolling"``
    turns it into trailing ``window``-day sums of new counts;
    ``mode="cumulative"`` maps the latest cumulative value as-is.
    """

    value_col: str = "cases"
    mode: Literal["rolling", "cumulative"] = "rolling"
    window: int = DEFAULT_WINDOW
    breaks: Tuple[float, ...] = CASE_BREAKS
    excluded_regions: FrozenSet[str] = EXCLUDED_REGIONS
    # Region code -> move, as sorted pairs so the record stays hashable.
    region_shifts: Tuple[Tuple[str, RegionShift], ...] = tuple(
        sorted(REGION_SHIFTS.items())
    )
    target_crs: str = TARGET_CRS
    missing: Literal["drop", "keep"] = "drop"
    missing_label: str = DEFAULT_MISSING_LABEL
    numeric_cols: Tuple[str, ...] = ("cases", "deaths")
    key_col: str = KEY_COL
    date_col: str = DATE_COL
    key_width: int = KEY_WIDTH
    population_key_col: str = POPULATION_KEY_COL
    population_col: str = POPULATION_COL
    boundary_key_col: str = BOUNDARY_KEY_COL
    boundary_name_col: str = BOUNDARY_NAME_COL
    region_col: str = BOUNDARY_REGION_COL

    def __post_init__(self) -> None:
        if isinstance(self.window, bool) or not isinstance(self.window, int):
            raise ValueError(f"window must be an int, got {self.window!r}")
        if self.window < 1:
            raise ValueError(f"window must be positive, got {self.window}")
        if self.mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {self.mode!r}")
        if self.missing not in MISSING_POLICIES:
            raise ValueError(
                f"missing must be one of {MISSING_POLICIES}, got {self.missing!r}"
            )
        validate_breaks(self.breaks)
        object.__setattr__(self, "breaks", tuple(float(b) for b in self.breaks))
        object.__setattr__(self, "excluded_regions", frozenset(self.excluded_regions))
        object.__setattr__(
            self, "region_shifts", tuple(sorted(dict(self.region_shifts).items()))
        )
        object.__setattr__(self, "numeric_cols", tuple(self.numeric_cols))

    @property
    def measure_col(self) -> str:
        """Column holding the numerator fed into the rate calculation."""
        if self.mode == "rolling":
            return f"new_{self.value_col}_{self.window}d"
        return self.value_col


# ======================================================
#  PRESETS
# ======================================================
SEVEN_DAY_CASES = PipelineConfig(
    value_col="cases",
    mode="rolling",
    window=DEFAULT_WINDOW,
    breaks=CASE_BREAKS,
)

# The all-time map keeps state codes 01-56 only, so Puerto Rico is left out.
ALL_TIME_DEATHS = PipelineConfig(
    value_col="deaths",
    mode="cumulative",
    breaks=DEATH_BREAKS,
    excluded_regions=EXCLUDED_REGIONS | {"72"},
)

PRESETS: Dict[str, PipelineConfig] = {
    "cases-7day": SEVEN_DAY_CASES,
    "deaths-all-time": ALL_TIME_DEATHS,
}

DEFAULT_CONFIG: PipelineConfig = SEVEN_DAY_CASES
