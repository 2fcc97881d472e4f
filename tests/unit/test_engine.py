"""
Tests for the generic estimation engine.

Hand calculations use the ``simple_design`` fixture: four days in one
stratum, one record each, weight 10, y = [2, 4, 6, 8], x = [1, 2, 2, 3].
"""

import warnings

import numpy as np
import polars as pl
import pytest
from scipy.stats import norm

from pycreel import (
    DroppedColumnsWarning,
    InvalidConfigError,
    MissingColumnError,
    NoReplicatesError,
    PyCreelWarning,
    SurveyDesign,
    VarianceUnavailable,
    build_replicate_design,
    estimate,
)
from pycreel.estimation.base import RESULT_COLUMNS

Y = np.array([2.0, 4.0, 6.0, 8.0])
X = np.array([1.0, 2.0, 2.0, 3.0])
W = 10.0
Z95 = norm.ppf(0.975)
Z90 = norm.ppf(0.95)


def _psu_variance(z):
    z = np.asarray(z, dtype=float)
    n = len(z)
    return n / (n - 1) * ((z - z.mean()) ** 2).sum()


class TestTotal:
    def test_total_hand_calculation(self, simple_design):
        result = estimate(simple_design, "y", statistic="total")

        assert result.estimate == pytest.approx(200.0)
        expected_var = _psu_variance(W * Y)
        assert result.table["variance"][0] == pytest.approx(expected_var)
        assert result.se == pytest.approx(np.sqrt(2666.6667), rel=1e-6)
        assert result.table["n"][0] == 4

    def test_wald_interval(self, simple_design):
        result = estimate(simple_design, "y", conf_level=0.95)
        row = result.table.row(0, named=True)
        assert row["ci_low"] == pytest.approx(row["estimate"] - Z95 * row["se"])
        assert row["ci_high"] == pytest.approx(row["estimate"] + Z95 * row["se"])

    def test_other_conf_level(self, simple_design):
        result = estimate(simple_design, "y", conf_level=0.90)
        row = result.table.row(0, named=True)
        assert row["ci_high"] - row["estimate"] == pytest.approx(Z90 * row["se"])

    def test_design_effect_equal_weights_is_one(self, simple_design):
        """Equal weights, one record per PSU: design variance equals SRS variance."""
        result = estimate(simple_design, "y")
        assert result.table["deff"][0] == pytest.approx(1.0)

    def test_deff_can_be_disabled(self, simple_design):
        result = estimate(simple_design, "y", calculate_deff=False)
        assert result.table["deff"][0] is None

    def test_output_layout(self, simple_design):
        result = estimate(simple_design, "y")
        assert result.table.columns == RESULT_COLUMNS
        assert result.method == "total:y"
        assert result.table["method"][0] == "total:y"

    def test_custom_tag(self, simple_design):
        result = estimate(simple_design, "y", tag="catch_total:y")
        assert result.method == "catch_total:y"


class TestMeanAndRatio:
    def test_mean(self, simple_design):
        """Influence z = w(y - 5)/40; V = 4/3 * 1.25."""
        result = estimate(simple_design, "y", statistic="mean")

        assert result.estimate == pytest.approx(5.0)
        z = W * (Y - 5.0) / (4 * W)
        assert result.table["variance"][0] == pytest.approx(_psu_variance(z))
        assert result.table["variance"][0] == pytest.approx(np.var(Y, ddof=1) / 4)

    def test_ratio_is_combined_ratio(self, simple_design):
        """R = Σwy / Σwx = 200 / 80 = 2.5, not the mean of y/x (2.4167)."""
        result = estimate(simple_design, "y", statistic="ratio", denominator="x")

        assert result.estimate == pytest.approx(2.5)
        assert result.estimate != pytest.approx(np.mean(Y / X))

    def test_ratio_variance(self, simple_design):
        result = estimate(simple_design, "y", statistic="ratio", denominator="x")

        residual = Y - 2.5 * X
        z = W * residual / (W * X.sum())
        assert result.table["variance"][0] == pytest.approx(_psu_variance(z))
        assert result.table["variance"][0] == pytest.approx(0.0520833, rel=1e-5)

    def test_ratio_requires_denominator(self, simple_design):
        with pytest.raises(ValueError, match="denominator"):
            estimate(simple_design, "y", statistic="ratio")


class TestGrouping:
    @pytest.fixture
    def grouped_design(self, simple_design):
        data = simple_design.data.with_columns(pl.Series("g", ["a", "a", "b", "b"]))
        return simple_design.with_data(data)

    def test_group_totals_and_domain_variance(self, grouped_design):
        result = estimate(grouped_design, "y", by="g")
        table = result.table

        assert table["g"].to_list() == ["a", "b"]
        assert table["estimate"].to_list() == pytest.approx([60.0, 140.0])
        # Units without records in the group enter with zero totals
        assert table["variance"][0] == pytest.approx(_psu_variance([20, 40, 0, 0]))
        assert table["variance"][1] == pytest.approx(_psu_variance([0, 0, 60, 80]))
        assert table["n"].to_list() == [2, 2]

    def test_missing_group_column_is_dropped_with_warning(self, simple_design):
        with pytest.warns(DroppedColumnsWarning, match="species"):
            result = estimate(simple_design, "y", by=["species"])
        assert len(result) == 1
        assert result.group_cols == []

    def test_null_group_value_is_its_own_group(self, simple_design):
        data = simple_design.data.with_columns(pl.Series("g", ["a", None, "a", None]))
        result = estimate(simple_design.with_data(data), "y", by="g")
        assert result.table["g"].to_list() == ["a", None]
        assert result.table["estimate"].to_list() == pytest.approx([80.0, 120.0])

    def test_scalar_access_on_grouped_result_raises(self, grouped_design):
        result = estimate(grouped_design, "y", by="g")
        with pytest.raises(ValueError, match="2 rows"):
            _ = result.estimate


class TestInvalidValues:
    def test_null_response_excluded_from_n(self, simple_design):
        data = simple_design.data.with_columns(pl.Series("y", [2.0, None, 6.0, 8.0]))
        result = estimate(simple_design.with_data(data), "y")

        assert result.estimate == pytest.approx(160.0)
        assert result.table["n"][0] == 3
        assert result.diagnostics["n_invalid"] == 1
        # The day without a valid record still counts: z = [20, 0, 60, 80]
        assert result.table["variance"][0] == pytest.approx(_psu_variance([20, 0, 60, 80]))

    def test_missing_response_column(self, simple_design):
        with pytest.raises(MissingColumnError) as excinfo:
            estimate(simple_design, "catch_total")
        assert excinfo.value.columns == ["catch_total"]

    def test_missing_denominator_column(self, simple_design):
        with pytest.raises(MissingColumnError, match="hours"):
            estimate(simple_design, "y", statistic="ratio", denominator="hours")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"statistic": "median"},
            {"method": "brr_magic"},
            {"ci_method": "bca"},
            {"ci_method": "percentile", "method": "linearization"},
        ],
    )
    def test_invalid_options(self, simple_design, kwargs):
        with pytest.raises(InvalidConfigError):
            estimate(simple_design, "y", **kwargs)


class TestUnavailableVariance:
    def test_singleton_strata_warn_and_report_null_se(self):
        data = pl.DataFrame(
            {
                "date": ["d1", "d2"],
                "stratum": ["A", "B"],
                "y": [1.0, 2.0],
                "_WEIGHT": [1.0, 1.0],
            }
        )
        design = SurveyDesign(data=data, unit_col="date", strata_cols=("stratum",))

        with pytest.warns(VarianceUnavailable):
            result = estimate(design, "y")

        row = result.table.row(0, named=True)
        assert row["estimate"] == pytest.approx(3.0)
        assert row["se"] is None
        assert row["ci_low"] is None
        assert result.diagnostics["n_variance_unavailable"] == 1

    def test_one_group_unavailable_does_not_abort_siblings(self, simple_design):
        data = simple_design.data.with_columns(pl.Series("x", [0.0, 0.0, 2.0, 3.0]))
        data = data.with_columns(pl.Series("g", ["a", "a", "b", "b"]))
        design = simple_design.with_data(data)

        with pytest.warns(VarianceUnavailable):
            result = estimate(design, "y", statistic="ratio", denominator="x", by="g")

        table = result.table
        assert table["estimate"][0] is None
        assert table["se"][0] is None
        assert table["estimate"][1] == pytest.approx(14.0 / 5.0)
        assert table["se"][1] is not None


class TestReplicateVariance:
    def test_resampling_without_replicates_raises(self, simple_design):
        with pytest.raises(NoReplicatesError):
            estimate(simple_design, "y", method="bootstrap")

    def test_jackknife_total_matches_linearization(self, simple_design):
        """For a total, JKn variance equals the with-replacement PSU variance."""
        linear = estimate(simple_design, "y")
        jack = estimate(simple_design, "y", method="jackknife", n_replicates=4)

        assert jack.estimate == pytest.approx(linear.estimate)
        assert jack.se == pytest.approx(linear.se)
        assert jack.diagnostics["replicate_type"] == "jackknife"
        assert jack.diagnostics["n_replicates"] == 4

    def test_bootstrap_is_reproducible_with_seed(self, simple_design):
        first = estimate(simple_design, "y", method="bootstrap", n_replicates=200, seed=42)
        second = estimate(simple_design, "y", method="bootstrap", n_replicates=200, seed=42)

        assert first.se == second.se
        assert first.se > 0

    def test_bootstrap_percentile_interval(self, simple_design):
        result = estimate(
            simple_design,
            "y",
            method="bootstrap",
            n_replicates=200,
            seed=1,
            ci_method="percentile",
        )
        row = result.table.row(0, named=True)
        assert row["ci_low"] <= row["estimate"] <= row["ci_high"]

    def test_attached_replicates_govern_on_type_mismatch(self, simple_design):
        design = build_replicate_design(simple_design, "jackknife")
        with pytest.warns(PyCreelWarning, match="jackknife"):
            result = estimate(design, "y", method="bootstrap")
        assert result.diagnostics["replicate_type"] == "jackknife"

    def test_attached_replicates_ignore_n_replicates(self, simple_design):
        design = build_replicate_design(simple_design, "bootstrap", replicates=50, seed=3)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            result = estimate(design, "y", method="bootstrap", n_replicates=500)
        assert result.diagnostics["n_replicates"] == 50


class TestDeterminism:
    def test_repeated_runs_identical(self, simple_design):
        first = estimate(simple_design, "y", statistic="ratio", denominator="x")
        second = estimate(simple_design, "y", statistic="ratio", denominator="x")
        assert first.table.equals(second.table)
