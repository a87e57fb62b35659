import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box


@pytest.fixture
def boundaries() -> gpd.GeoDataFrame:
    """A handful of county-like boxes in NAD83 lon/lat."""
    rows = [
        ("01001", "Autauga", "01", box(-87.0, 32.0, -86.0, 33.0)),
        ("01003", "Baldwin", "01", box(-88.0, 30.0, -87.0, 31.0)),
        ("02013", "Aleutians East", "02", box(-165.0, 54.0, -160.0, 56.0)),
        ("02016", "Aleutians West", "02", box(172.0, 51.0, 179.0, 53.0)),
        ("15001", "Hawaii", "15", box(-156.0, 19.0, -155.0, 20.0)),
        ("60010", "Eastern", "60", box(-171.0, -15.0, -170.0, -14.0)),
        ("72001", "Adjuntas", "72", box(-67.0, 18.0, -66.0, 18.5)),
    ]
    return gpd.GeoDataFrame(
        {
            "GEOID": [r[0] for r in rows],
            "NAME": [r[1] for r in rows],
            "STATEFP": [r[2] for r in rows],
        },
        geometry=[r[3] for r in rows],
        crs="EPSG:4269",
    )


@pytest.fixture
def population() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "GEOID": ["01001", "01003", "15001", "02013"],
            "population": [25000, 0, 200000, 3000],
        }
    )


@pytest.fixture
def counts() -> pd.DataFrame:
    """Eight days of cumulative counts for four counties.

    01001: 7-day new cases on the last day = 6 * 5 + 20 = 50, deaths = 170.
    01003: same counts but population 0.
    15001: only three days, so no complete 7-day window.
    72001: no population row at all.
    """
    dates = pd.date_range("2023-03-01", periods=8, freq="D").strftime("%Y-%m-%d")
    cases = [100, 105, 110, 115, 120, 125, 130, 150]
    deaths = [150, 152, 155, 158, 160, 162, 165, 170]

    frames = []
    for fips in ("1001", "1003", "72001"):
        frames.append(
            pd.DataFrame(
                {
                    "date": list(dates),
                    "county": "x",
                    "state": "y",
                    "fips": fips,
                    "cases": cases,
                    "deaths": deaths,
                }
            )
        )
    frames.append(
        pd.DataFrame(
            {
                "date": list(dates[-3:]),
                "county": "Hawaii",
                "state": "Hawaii",
                "fips": "15001",
                "cases": [10, 12, 20],
                "deaths": [1, 1, 2],
            }
        )
    )
    # State-level and unknown-county rows that must be dropped
    frames.append(
        pd.DataFrame(
            {
                "date": [dates[-1], dates[-1]],
                "county": ["Unknown", "New York City"],
                "state": ["Alabama", "New York"],
                "fips": [None, "123456"],
                "cases": [5, 9],
                "deaths": [0, 1],
            }
        )
    )
    return pd.concat(frames, ignore_index=True)
