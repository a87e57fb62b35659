import dataclasses

import pytest

from ratemap.config import (
    ALL_TIME_DEATHS,
    DEFAULT_CONFIG,
    EXCLUDED_REGIONS,
    PRESETS,
    REGION_SHIFTS,
    SEVEN_DAY_CASES,
    PipelineConfig,
)


def test_presets():
    assert set(PRESETS) == {"cases-7day", "deaths-all-time"}
    assert DEFAULT_CONFIG is SEVEN_DAY_CASES
    assert SEVEN_DAY_CASES.window == 7
    assert SEVEN_DAY_CASES.measure_col == "new_cases_7d"
    assert ALL_TIME_DEATHS.measure_col == "deaths"
    assert ALL_TIME_DEATHS.breaks == (0.0, 250.0, 480.0, 680.0, float("inf"))


def test_defaults_keep_puerto_rico_and_shift_alaska_hawaii():
    assert "72" not in EXCLUDED_REGIONS
    assert EXCLUDED_REGIONS == {"60", "66", "69", "78"}
    assert set(REGION_SHIFTS) == {"02", "15"}
    assert REGION_SHIFTS["02"].scale < 1


def test_replace_revalidates_and_updates_measure():
    config = dataclasses.replace(SEVEN_DAY_CASES, window=14)
    assert config.measure_col == "new_cases_14d"

    with pytest.raises(ValueError, match="window"):
        dataclasses.replace(SEVEN_DAY_CASES, window=0)


@pytest.mark.parametrize(
    "overrides",
    [
        {"window": 0},
        {"window": -3},
        {"window": 2.5},
        {"window": True},
        {"mode": "weekly"},
        {"missing": "zero"},
        {"breaks": (0, 10, 5, float("inf"))},
        {"breaks": (0, 10)},
    ],
)
def test_invalid_config_rejected(overrides):
    with pytest.raises(ValueError):
        PipelineConfig(**overrides)


def test_config_is_frozen_and_normalised():
    config = PipelineConfig(excluded_regions=["60"], breaks=[0, 1, float("inf")])
    assert config.excluded_regions == frozenset({"60"})
    assert config.breaks == (0.0, 1.0, float("inf"))
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.window = 3


def test_config_is_hashable():
    assert hash(PipelineConfig()) == hash(PipelineConfig())
    assert len({SEVEN_DAY_CASES, ALL_TIME_DEATHS, PipelineConfig()}) == 2

    config = PipelineConfig(region_shifts={"15": REGION_SHIFTS["15"]})
    assert config.region_shifts == (("15", REGION_SHIFTS["15"]),)
    assert hash(config) != hash(PipelineConfig())


def test_region_shifts_accept_mapping_or_pairs():
    from_mapping = PipelineConfig(region_shifts=REGION_SHIFTS)
    from_pairs = PipelineConfig(region_shifts=list(REGION_SHIFTS.items())[::-1])
    assert from_mapping == from_pairs == PipelineConfig()
    assert dict(from_mapping.region_shifts) == REGION_SHIFTS


def test_all_time_deaths_leaves_out_puerto_rico():
    assert "72" in ALL_TIME_DEATHS.excluded_regions
    assert "72" not in SEVEN_DAY_CASES.excluded_regions
    assert EXCLUDED_REGIONS < ALL_TIME_DEATHS.excluded_regions
