"""
Shared fixtures for the pycreel test suite.

The synthetic survey used throughout:

- weekday stratum: 4 sampled days, target 5 each, actual 1 each
  -> weight 20 / 4 = 5.0
- weekend stratum: 2 sampled days (target 4, actual 1) plus one unsampled
  day (actual 0) -> weight 8 / 2 = 4.0
"""

import polars as pl
import pytest

from pycreel import SurveyDesign, build_day_design

WEEKDAYS = ["2024-06-03", "2024-06-04", "2024-06-05", "2024-06-06"]
WEEKENDS = ["2024-06-01", "2024-06-02"]


@pytest.fixture
def calendar():
    """Survey calendar with two day-type strata and one unsampled day."""
    return pl.DataFrame(
        {
            "date": WEEKENDS + WEEKDAYS + ["2024-06-08"],
            "day_type": ["weekend"] * 2 + ["weekday"] * 4 + ["weekend"],
            "target_sample": [4, 4, 5, 5, 5, 5, 4],
            "actual_sample": [1, 1, 1, 1, 1, 1, 0],
        }
    )


@pytest.fixture
def day_design(calendar):
    """Day-level design stratified by day type."""
    return build_day_design(calendar, strata_vars=["day_type"])


@pytest.fixture
def interviews():
    """Two interviews per sampled day, split across two lakes."""
    dates = [d for d in WEEKENDS + WEEKDAYS for _ in range(2)]
    return pl.DataFrame(
        {
            "date": dates,
            "location": ["lake_a", "lake_b"] * 6,
            "species": ["walleye", "perch", "perch", "walleye", "walleye", "perch"] * 2,
            "catch_total": [3, 1, 0, 4, 2, 2, 5, 0, 1, 3, 2, 1],
            "catch_kept": [2, 1, 0, 2, 1, 2, 3, 0, 1, 1, 2, 0],
            "hours_fished": [2.0, 1.5, 3.0, 4.0, 2.5, 2.0, 5.0, 1.0, 2.0, 3.5, 2.0, 1.5],
            "trip_complete": [True] * 12,
        }
    )


@pytest.fixture
def aerial_counts():
    """Four 60-minute aerial counts per day at lake_a, 240 minutes represented."""
    rows = []
    values = {
        "2024-06-01": [10, 12, 8, 15],
        "2024-06-02": [6, 9, 7, 10],
        "2024-06-03": [4, 5, 3, 4],
        "2024-06-04": [2, 6, 5, 3],
        "2024-06-05": [5, 5, 6, 4],
        "2024-06-06": [3, 4, 2, 7],
    }
    for date, counts in values.items():
        for count in counts:
            rows.append(
                {
                    "date": date,
                    "location": "lake_a",
                    "count": count,
                    "interval_minutes": 60,
                    "total_minutes": 240,
                }
            )
    return pl.DataFrame(rows)


@pytest.fixture
def simple_design():
    """
    Four units in one stratum, one record each, weight 10.

    y = [2, 4, 6, 8]: total 200, PSU totals z = [20, 40, 60, 80],
    V = 4/3 * Σ(z - 50)^2 = 4/3 * 2000 = 2666.67.
    """
    data = pl.DataFrame(
        {
            "date": ["d1", "d2", "d3", "d4"],
            "y": [2.0, 4.0, 6.0, 8.0],
            "x": [1.0, 2.0, 2.0, 3.0],
            "_WEIGHT": [10.0] * 4,
        }
    )
    return SurveyDesign(data=data, unit_col="date")
