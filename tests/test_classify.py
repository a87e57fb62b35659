import math

import numpy as np
import pandas as pd
import pytest

from ratemap.config import CASE_BREAKS, DEATH_BREAKS
from ratemap.pipeline import (
    category_labels,
    classify_rate,
    classify_rates,
    validate_breaks,
)

INF = float("inf")


def test_boundary_value_maps_to_interval_it_starts():
    assert classify_rate(250, DEATH_BREAKS) == 1
    assert classify_rate(0, DEATH_BREAKS) == 0
    assert classify_rate(249.999, DEATH_BREAKS) == 0


def test_just_below_and_at_top_breakpoint():
    labels = category_labels(DEATH_BREAKS)
    assert labels[classify_rate(679.999, DEATH_BREAKS)] == "480–680"
    assert labels[classify_rate(680.0, DEATH_BREAKS)] == "680+"


def test_very_large_rate_lands_in_open_interval():
    assert classify_rate(1e12, CASE_BREAKS) == len(CASE_BREAKS) - 2


def test_absent_rate_has_no_category():
    assert classify_rate(None, DEATH_BREAKS) is None
    assert classify_rate(float("nan"), DEATH_BREAKS) is None
    assert classify_rate(pd.NA, DEATH_BREAKS) is None


@pytest.mark.parametrize("rate", [-0.1, INF])
def test_out_of_domain_rate_raises(rate):
    with pytest.raises(ValueError):
        classify_rate(rate, DEATH_BREAKS)


@pytest.mark.parametrize(
    "breaks",
    [
        [0],
        [0, 10, 5, INF],
        [0, 10, 10, INF],
        [0, 10, 20],
        [1, 10, INF],
        [-5, 10, INF],
    ],
)
def test_invalid_breaks_rejected(breaks):
    with pytest.raises(ValueError):
        validate_breaks(breaks)
    with pytest.raises(ValueError):
        classify_rate(1.0, breaks)


def test_vectorised_matches_scalar():
    values = [0, 0.5, 4.999, 5, 10, 24, 25, 99.9, 100, 200, 5000, np.nan]
    series = pd.Series(values, index=list("abcdefghijkl"))

    codes = classify_rates(series, CASE_BREAKS)

    assert codes.dtype == "Int64"
    assert codes.index.tolist() == list("abcdefghijkl")
    for value, code in zip(values, codes):
        expected = classify_rate(value, CASE_BREAKS)
        if expected is None:
            assert pd.isna(code)
        else:
            assert code == expected


def test_every_rate_gets_exactly_one_category():
    bounds = list(DEATH_BREAKS)
    for rate in np.linspace(0, 2000, 401):
        index = classify_rate(rate, bounds)
        matches = [
            i for i in range(len(bounds) - 1) if bounds[i] <= rate < bounds[i + 1]
        ]
        assert matches == [index]


def test_labels_for_presets():
    assert category_labels(DEATH_BREAKS) == ["0–250", "250–480", "480–680", "680+"]
    assert category_labels(CASE_BREAKS) == [
        "0–5",
        "5–10",
        "10–25",
        "25–50",
        "50–100",
        "100–200",
        "200+",
    ]


def test_labels_keep_fractional_breaks():
    assert category_labels([0, 2.5, INF]) == ["0–2.5", "2.5+"]
    assert category_labels([0, INF]) == ["0+"]
    assert math.isinf(DEATH_BREAKS[-1])
