"""
Tests for the design-based variance formulas.

The linearized estimator is the with-replacement stratified cluster
formula, with the sampling unit (survey day) as PSU:

    V = sum_h n_h / (n_h - 1) * sum_j (z_hj - zbar_h)^2

where z_hj is the PSU total of the influence values. Replicate variance is

    V = scale * sum_r rscale_r * (theta_r - center)^2

The tests verify:
1. Single and multi-stratum linearized variance against hand calculations
2. Domain estimation: units without records enter with zero totals
3. Singleton strata and unavailable variance
4. Replicate variance centering (replicate mean vs full-sample)
5. Normal quantiles, confidence intervals and safe helpers
"""

import math

import numpy as np
import polars as pl
import pytest

from pycreel.core.design import STRATUM_COL
from pycreel.core.exceptions import InvalidConfigError
from pycreel.estimation.variance import (
    GROUP_COL,
    INFLUENCE_COL,
    calculate_confidence_interval,
    calculate_cv,
    calculate_linearized_variance,
    calculate_percentile_interval,
    calculate_replicate_variance,
    safe_divide,
    safe_sqrt,
    z_score,
)

# =============================================================================
# Helpers
# =============================================================================


def _units(unit_ids, strata):
    return pl.DataFrame({"date": unit_ids, STRATUM_COL: strata})


def _records(unit_ids, z_values, group=0):
    return pl.DataFrame(
        {
            GROUP_COL: [group] * len(unit_ids),
            "date": unit_ids,
            INFLUENCE_COL: z_values,
        },
        schema_overrides={GROUP_COL: pl.UInt32},
    )


def _groups(*indices):
    return pl.DataFrame({GROUP_COL: list(indices)}, schema={GROUP_COL: pl.UInt32})


# =============================================================================
# TestLinearizedVariance
# =============================================================================


class TestLinearizedVariance:
    """Hand-calculated stratified PSU variance."""

    def test_single_stratum_exact(self):
        """
        z = [20, 40, 60, 80], zbar = 50
        sum of squares = 900 + 100 + 100 + 900 = 2000
        V = 4/3 * 2000 = 2666.67
        """
        units = _units(["d1", "d2", "d3", "d4"], ["1"] * 4)
        records = _records(["d1", "d2", "d3", "d4"], [20.0, 40.0, 60.0, 80.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        z = np.array([20.0, 40.0, 60.0, 80.0])
        expected = 4 / 3 * ((z - z.mean()) ** 2).sum()
        assert result["variance"][0] == pytest.approx(expected)
        assert result["variance"][0] == pytest.approx(2666.6667, rel=1e-6)
        assert result["n_units"][0] == 4

    def test_equals_weighted_sample_variance_form(self):
        """With equal weights w and one record per PSU, V = w^2 * s^2 * n."""
        y = np.array([0.8, 1.0, 0.6, 0.9])
        w = 1000.0
        units = _units(["p1", "p2", "p3", "p4"], ["1"] * 4)
        records = _records(["p1", "p2", "p3", "p4"], list(w * y))

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        expected = w**2 * np.var(y, ddof=1) * 4
        assert result["variance"][0] == pytest.approx(expected)
        assert result["variance"][0] == pytest.approx(116666.67, rel=1e-6)

    def test_two_strata_sum(self):
        """
        Stratum A: z = [1, 3], zbar = 2, ss = 2, V_A = 2/1 * 2 = 4
        Stratum B: z = [2, 4, 9], zbar = 5, ss = 26, V_B = 3/2 * 26 = 39
        V = 43
        """
        units = _units(["a1", "a2", "b1", "b2", "b3"], ["A", "A", "B", "B", "B"])
        records = _records(["a1", "a2", "b1", "b2", "b3"], [1.0, 3.0, 2.0, 4.0, 9.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        assert result["variance"][0] == pytest.approx(43.0)
        assert result["n_singleton_strata"][0] == 0

    def test_identical_psu_totals_zero_variance(self):
        units = _units(["d1", "d2", "d3"], ["1"] * 3)
        records = _records(["d1", "d2", "d3"], [5.0, 5.0, 5.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        assert result["variance"][0] == 0.0

    def test_multiple_records_per_psu_are_summed(self):
        """Two records on d1 (z = 4 + 6) act as one PSU total of 10."""
        units = _units(["d1", "d2"], ["1", "1"])
        records = _records(["d1", "d1", "d2"], [4.0, 6.0, 20.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        # z = [10, 20]: 2/1 * (25 + 25) = 100
        assert result["variance"][0] == pytest.approx(100.0)


class TestDomainVariance:
    """Units without records in a domain contribute zero totals."""

    def test_roster_units_without_records_enter_as_zero(self):
        """
        Domain has records only on d1 (z = 10); roster has d1..d4.
        z = [10, 0, 0, 0], zbar = 2.5, ss = 56.25 + 3 * 6.25 = 75
        V = 4/3 * 75 = 100
        """
        units = _units(["d1", "d2", "d3", "d4"], ["1"] * 4)
        records = _records(["d1"], [10.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        assert result["variance"][0] == pytest.approx(100.0)
        assert result["n_units"][0] == 4

    def test_groups_are_computed_independently(self):
        units = _units(["d1", "d2"], ["1", "1"])
        records = pl.concat(
            [_records(["d1", "d2"], [1.0, 3.0], group=0), _records(["d2"], [4.0], group=1)]
        )

        result = calculate_linearized_variance(records, units, _groups(0, 1), unit_col="date")

        # group 0: z = [1, 3] -> 2 * 2 = 4; group 1: z = [0, 4] -> 2 * 8 = 16
        assert result.sort(GROUP_COL)["variance"].to_list() == pytest.approx([4.0, 16.0])


class TestSingletonStrata:
    """Single-unit strata cannot contribute to the variance."""

    def test_singleton_stratum_contributes_zero(self):
        units = _units(["a1", "a2", "b1"], ["A", "A", "B"])
        records = _records(["a1", "a2", "b1"], [1.0, 3.0, 100.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        assert result["variance"][0] == pytest.approx(4.0)
        assert result["n_singleton_strata"][0] == 1

    def test_all_singleton_strata_gives_null_variance(self):
        units = _units(["a1", "b1"], ["A", "B"])
        records = _records(["a1", "b1"], [1.0, 3.0])

        result = calculate_linearized_variance(records, units, _groups(0), unit_col="date")

        assert result["variance"][0] is None
        assert result["n_singleton_strata"][0] == 2


# =============================================================================
# TestReplicateVariance
# =============================================================================


class TestReplicateVariance:
    def test_centered_on_replicate_mean(self):
        theta = np.array([[1.0, 2.0, 3.0]])
        variance = calculate_replicate_variance(theta, np.array([1.5]), 1.0, (1.0, 1.0, 1.0))
        assert variance[0] == pytest.approx(2.0)

    def test_mse_centered_on_full_estimate(self):
        theta = np.array([[1.0, 2.0, 3.0]])
        variance = calculate_replicate_variance(
            theta, np.array([1.5]), 1.0, (1.0, 1.0, 1.0), mse=True
        )
        # 0.25 + 0.25 + 2.25
        assert variance[0] == pytest.approx(2.75)

    def test_scale_and_rscales_applied(self):
        theta = np.array([[1.0, 3.0]])
        variance = calculate_replicate_variance(theta, np.array([2.0]), 0.5, (1.0, 3.0))
        # 0.5 * (1 * 1 + 3 * 1) = 2
        assert variance[0] == pytest.approx(2.0)

    def test_non_finite_replicate_gives_nan(self):
        theta = np.array([[1.0, np.nan, 3.0], [1.0, 2.0, 3.0]])
        variance = calculate_replicate_variance(theta, np.array([2.0, 2.0]), 1.0, (1.0,) * 3)
        assert np.isnan(variance[0])
        assert variance[1] == pytest.approx(2.0)

    def test_percentile_interval(self):
        theta = np.arange(1, 101, dtype=float)[None, :]
        lower, upper = calculate_percentile_interval(theta, 0.90)
        assert lower[0] == pytest.approx(np.quantile(theta, 0.05))
        assert upper[0] == pytest.approx(np.quantile(theta, 0.95))


# =============================================================================
# TestConfidenceIntervals
# =============================================================================


class TestConfidenceIntervals:
    @pytest.mark.parametrize(
        "conf_level,expected",
        [(0.90, 1.6448536), (0.95, 1.9599640), (0.99, 2.5758293)],
    )
    def test_common_levels(self, conf_level, expected):
        assert z_score(conf_level) == pytest.approx(expected, abs=1e-7)

    def test_quantile_is_continuous_in_level(self):
        assert z_score(0.95) == pytest.approx(z_score(0.95 + 1e-12), abs=1e-9)

    def test_other_levels_use_normal_quantile(self):
        assert z_score(0.80) == pytest.approx(1.2816, abs=1e-4)

    @pytest.mark.parametrize("conf_level", [0.0, 1.0, 1.5, -0.2])
    def test_invalid_level(self, conf_level):
        with pytest.raises(InvalidConfigError):
            z_score(conf_level)

    def test_wald_interval(self):
        low, high = calculate_confidence_interval(10.0, 2.0, 0.95)
        assert low == pytest.approx(10.0 - 1.959964 * 2.0, rel=1e-6)
        assert high == pytest.approx(10.0 + 1.959964 * 2.0, rel=1e-6)

    def test_unavailable_se_gives_unavailable_interval(self):
        assert calculate_confidence_interval(10.0, None) == (None, None)
        assert calculate_confidence_interval(10.0, float("nan")) == (None, None)


# =============================================================================
# TestSafeHelpers
# =============================================================================


class TestSafeHelpers:
    def test_safe_sqrt(self):
        df = pl.DataFrame({"v": [4.0, -1.0, None]})
        out = df.select(safe_sqrt(pl.col("v")).alias("s"))["s"].to_list()
        assert out == [2.0, 0.0, None]

    def test_safe_sqrt_null_default(self):
        df = pl.DataFrame({"v": [9.0, -1.0]})
        out = df.select(safe_sqrt(pl.col("v"), None).alias("s"))["s"].to_list()
        assert out == [3.0, None]

    def test_safe_divide(self):
        df = pl.DataFrame({"a": [1.0, 2.0], "b": [2.0, 0.0]})
        out = df.select(safe_divide(pl.col("a"), pl.col("b")).alias("r"))["r"].to_list()
        assert out == [0.5, 0.0]

    def test_cv(self):
        assert calculate_cv(200.0, 20.0) == pytest.approx(10.0)
        assert calculate_cv(0.0, 5.0) == 0.0
        assert math.isclose(calculate_cv(-50.0, 5.0), 10.0)
