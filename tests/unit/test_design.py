"""
Tests for design construction: day weights, aggregate attachment,
replicate weights, post-stratification, calibration and diagnostics.
"""

import numpy as np
import polars as pl
import pytest

from pycreel import (
    ApproximationWarning,
    CreelData,
    DesignKind,
    DroppedColumnsWarning,
    EmptyDesignError,
    InvalidConfigError,
    MissingColumnError,
    NoReplicatesError,
    SurveyDesign,
    WeightAlignmentError,
    attach_group_design,
    build_day_design,
    build_replicate_design,
    calibrate,
    design_diagnostics,
    post_stratify,
    resolve_design,
    with_replicate_weights,
)
from pycreel.core.design import STRATUM_COL, WEIGHT_COL

# =============================================================================
# TestBuildDayDesign
# =============================================================================


class TestBuildDayDesign:
    def test_stratum_weights(self, day_design):
        weights = dict(
            zip(day_design.data["date"].to_list(), day_design.weights.to_list())
        )
        assert weights["2024-06-03"] == pytest.approx(5.0)
        assert weights["2024-06-01"] == pytest.approx(4.0)

    def test_unsampled_days_excluded(self, day_design):
        assert "2024-06-08" not in day_design.data["date"].to_list()
        assert day_design.n_units == 6
        assert day_design.n_strata == 2

    def test_weight_identity_per_stratum(self, day_design):
        """Σ weight × actual_sample per stratum reproduces Σ target_sample."""
        check = (
            day_design.data.group_by("day_type")
            .agg(
                (pl.col(WEIGHT_COL) * pl.col("actual_sample")).sum().alias("expanded"),
                pl.col("target_sample").sum().alias("target"),
            )
            .sort("day_type")
        )
        assert check["expanded"].to_list() == pytest.approx(check["target"].to_list())

    def test_unstratified_calendar_is_one_stratum(self, calendar):
        design = build_day_design(calendar, strata_vars=None)
        assert design.n_strata == 1
        # (4 + 4 + 5 * 4) / 6 sampled days
        assert design.weights.unique().to_list() == pytest.approx([28 / 6])

    def test_absent_strata_columns_dropped_with_warning(self, calendar):
        with pytest.warns(DroppedColumnsWarning, match="season"):
            design = build_day_design(calendar, strata_vars=["day_type", "season"])
        assert design.strata_cols == ("day_type",)

    def test_default_strata_use_what_is_present(self, calendar):
        with pytest.warns(DroppedColumnsWarning):
            design = build_day_design(calendar)
        assert design.strata_cols == ("day_type",)

    def test_actual_sample_zero_clamped_denominator(self):
        calendar = pl.DataFrame(
            {
                "date": ["d1", "d2"],
                "target_sample": [3, 3],
                "actual_sample": [0.5, 0.25],
            }
        )
        design = build_day_design(calendar, strata_vars=None)
        # Σactual = 0.75 is clamped to 1
        assert design.weights.to_list() == pytest.approx([6.0, 6.0])

    def test_no_sampled_days(self, calendar):
        with pytest.raises(EmptyDesignError):
            build_day_design(calendar.with_columns(pl.lit(0).alias("actual_sample")))

    def test_missing_calendar_columns(self, calendar):
        with pytest.raises(MissingColumnError) as excinfo:
            build_day_design(calendar.drop("target_sample"), strata_vars=["day_type"])
        assert excinfo.value.columns == ["target_sample"]

    def test_duplicate_days(self, calendar):
        doubled = pl.concat([calendar, calendar.head(1)])
        with pytest.raises(ValueError, match="duplicate"):
            build_day_design(doubled, strata_vars=["day_type"])

    def test_null_strata_values_form_a_stratum(self):
        calendar = pl.DataFrame(
            {
                "date": ["d1", "d2", "d3"],
                "day_type": ["weekday", None, None],
                "target_sample": [2, 3, 3],
                "actual_sample": [1, 1, 1],
            }
        )
        design = build_day_design(calendar, strata_vars=["day_type"])
        assert design.weights.to_list() == pytest.approx([2.0, 3.0, 3.0])
        assert design.n_strata == 2


# =============================================================================
# TestSurveyDesign
# =============================================================================


class TestSurveyDesign:
    def test_kind_and_repr(self, day_design):
        assert day_design.kind is DesignKind.RAW
        assert "units=6" in repr(day_design)

    def test_null_weight_is_an_alignment_error(self):
        data = pl.DataFrame({"date": ["d1", "d2"], WEIGHT_COL: [1.0, None]})
        with pytest.raises(WeightAlignmentError):
            SurveyDesign(data=data, unit_col="date")

    def test_unit_in_two_strata_rejected(self):
        data = pl.DataFrame(
            {"date": ["d1", "d1"], "s": ["a", "b"], WEIGHT_COL: [1.0, 1.0]}
        )
        with pytest.raises(ValueError, match="single stratum"):
            SurveyDesign(data=data, unit_col="date", strata_cols=("s",))

    def test_subset_keeps_unit_roster(self, day_design):
        subset = day_design.subset(pl.col("day_type") == "weekday")
        assert subset.n_records == 4
        assert subset.n_units == day_design.n_units

    def test_resolve_design_rejects_other_types(self):
        with pytest.raises(TypeError):
            resolve_design(pl.DataFrame({"a": [1]}))


# =============================================================================
# TestAttachGroupDesign
# =============================================================================


class TestAttachGroupDesign:
    def test_rows_inherit_day_weight(self, day_design, interviews):
        design = attach_group_design(day_design, interviews, "date")

        assert design.n_records == interviews.height
        weekday = design.data.filter(pl.col("date") == "2024-06-04")
        assert weekday[WEIGHT_COL].to_list() == pytest.approx([5.0, 5.0])
        assert design.strata_cols == ("day_type",)

    def test_unmatched_day_raises(self, day_design, interviews):
        extra = interviews.head(1).with_columns(pl.lit("2024-06-08").alias("date"))
        with pytest.raises(WeightAlignmentError) as excinfo:
            attach_group_design(day_design, pl.concat([interviews, extra]), "date")
        assert excinfo.value.unmatched == ["2024-06-08"]

    def test_missing_day_column(self, day_design, interviews):
        with pytest.raises(MissingColumnError):
            attach_group_design(day_design, interviews.drop("date"), "date")

    def test_roster_restricted_to_days_in_aggregate(self, day_design, interviews):
        partial = interviews.filter(pl.col("date") != "2024-06-05")
        design = attach_group_design(day_design, partial, "date")
        assert design.n_units == 5

    def test_day_id_dtype_cast(self):
        calendar = pl.DataFrame(
            {"day": [1, 2, 3], "target_sample": [3, 3, 3], "actual_sample": [1, 1, 1]}
        )
        day_design = build_day_design(calendar, day_id="day", strata_vars=None)
        aggregate = pl.DataFrame({"day": ["1", "2", "3"], "effort": [1.0, 2.0, 3.0]})

        design = attach_group_design(day_design, aggregate, "day")
        assert design.weights.to_list() == pytest.approx([3.0, 3.0, 3.0])

    def test_uncastable_day_ids(self):
        calendar = pl.DataFrame(
            {"day": [1, 2], "target_sample": [2, 2], "actual_sample": [1, 1]}
        )
        day_design = build_day_design(calendar, day_id="day", strata_vars=None)
        aggregate = pl.DataFrame({"day": ["1", "monday"], "effort": [1.0, 2.0]})

        with pytest.raises(WeightAlignmentError, match="monday"):
            attach_group_design(day_design, aggregate, "day")

    def test_replicates_joined_by_day_and_duplicated(self, day_design, interviews):
        replicated = build_replicate_design(day_design, "bootstrap", replicates=5, seed=11)
        design = attach_group_design(replicated, interviews, "date")

        assert design.replicates == replicated.replicates
        day_reps = replicated.data.select(["date", *replicated.replicate_cols])
        check = design.data.select(["date", *design.replicate_cols]).join(
            day_reps, on="date", suffix="_day"
        )
        for col in design.replicate_cols:
            assert check[col].to_list() == pytest.approx(check[f"{col}_day"].to_list())

    def test_post_strata_require_population(self, day_design, interviews):
        with pytest.raises(ValueError, match="population"):
            attach_group_design(day_design, interviews, "date", post_strata="location")


# =============================================================================
# TestReplicateWeights
# =============================================================================


class TestReplicateWeights:
    def test_bootstrap_metadata(self, day_design):
        design = build_replicate_design(day_design, "bootstrap", replicates=20, seed=1)

        assert design.kind is DesignKind.REPLICATE
        assert design.replicates.type == "bootstrap"
        assert design.replicates.n_replicates == 20
        assert design.replicates.scale == pytest.approx(1 / 19)
        assert design.replicates.rscales == (1.0,) * 20

    def test_bootstrap_preserves_stratum_weight_totals(self, day_design):
        """Rao-Wu multipliers sum to n_h within every stratum."""
        design = build_replicate_design(day_design, "bootstrap", replicates=30, seed=5)
        base = design.data.group_by("day_type").agg(pl.col(WEIGHT_COL).sum()).sort("day_type")
        reps = (
            design.data.group_by("day_type")
            .agg([pl.col(c).sum() for c in design.replicate_cols])
            .sort("day_type")
        )
        for col in design.replicate_cols:
            assert reps[col].to_list() == pytest.approx(base[WEIGHT_COL].to_list())

    def test_bootstrap_seed_reproducible(self, day_design):
        a = build_replicate_design(day_design, "bootstrap", replicates=10, seed=9)
        b = build_replicate_design(day_design, "bootstrap", replicates=10, seed=9)
        assert a.data.equals(b.data)

    def test_jackknife_one_replicate_per_unit(self, day_design):
        design = build_replicate_design(day_design, "jackknife")

        assert design.replicates.n_replicates == 6
        assert design.replicates.scale == 1.0
        assert sorted(set(design.replicates.rscales)) == pytest.approx([0.5, 0.75])

    def test_jackknife_deletes_one_unit(self, simple_design):
        design = build_replicate_design(simple_design, "jackknife")
        first = design.data[design.replicate_cols[0]].to_list()
        assert sorted(first) == pytest.approx([0.0, 40 / 3, 40 / 3, 40 / 3])

    def test_jackknife_needs_two_units_in_a_stratum(self):
        data = pl.DataFrame(
            {"date": ["d1", "d2"], "s": ["a", "b"], WEIGHT_COL: [1.0, 1.0]}
        )
        design = SurveyDesign(data=data, unit_col="date", strata_cols=("s",))
        with pytest.raises(NoReplicatesError):
            build_replicate_design(design, "jackknife")

    def test_unknown_method(self, day_design):
        with pytest.raises(InvalidConfigError):
            build_replicate_design(day_design, "brr")

    def test_external_matrix_joined_by_unit_id(self, simple_design):
        """Rows given in reverse order still land on the right units."""
        matrix = pl.DataFrame(
            {
                "date": ["d4", "d3", "d2", "d1"],
                "r1": [4.0, 3.0, 2.0, 1.0],
                "r2": [40.0, 30.0, 20.0, 10.0],
            }
        )
        design = with_replicate_weights(simple_design, matrix, type="brr")

        by_day = dict(zip(design.data["date"].to_list(), design.data["_REP_1"].to_list()))
        assert by_day == {"d1": 1.0, "d2": 2.0, "d3": 3.0, "d4": 4.0}
        assert design.replicates.scale == pytest.approx(0.5)

    def test_multiplier_matrix_converted_to_weights(self, simple_design):
        matrix = pl.DataFrame({"date": ["d1", "d2", "d3", "d4"], "r1": [0.0, 2.0, 1.0, 1.0]})
        design = with_replicate_weights(
            simple_design, matrix, type="jackknife", combined_weights=False
        )
        assert design.data["_REP_1"].to_list() == pytest.approx([0.0, 20.0, 10.0, 10.0])
        assert design.replicates.combined_weights is True

    def test_matrix_missing_unit(self, simple_design):
        matrix = pl.DataFrame({"date": ["d1", "d2", "d3"], "r1": [1.0, 1.0, 1.0]})
        with pytest.raises(WeightAlignmentError, match="d4"):
            with_replicate_weights(simple_design, matrix)

    def test_matrix_duplicate_unit(self, simple_design):
        matrix = pl.DataFrame(
            {"date": ["d1", "d1", "d2", "d3", "d4"], "r1": [1.0] * 5}
        )
        with pytest.raises(ValueError, match="more than one row"):
            with_replicate_weights(simple_design, matrix)


# =============================================================================
# TestPostStratification
# =============================================================================


class TestPostStratification:
    def test_weighted_counts_match_population(self, day_design, interviews):
        design = attach_group_design(day_design, interviews, "date")
        population = pl.DataFrame({"location": ["lake_a", "lake_b"], "Freq": [30, 10]})

        adjusted = post_stratify(design, "location", population)

        totals = (
            adjusted.data.group_by("location")
            .agg(pl.col(WEIGHT_COL).sum())
            .sort("location")[WEIGHT_COL]
            .to_list()
        )
        assert totals == pytest.approx([30.0, 10.0])

    def test_replicate_weights_adjusted_too(self, day_design, interviews):
        replicated = build_replicate_design(day_design, "jackknife")
        population = pl.DataFrame({"location": ["lake_a", "lake_b"], "Freq": [30, 10]})
        design = attach_group_design(
            replicated, interviews, "date", post_strata="location", population=population
        )
        rep_totals = design.data.group_by("location").agg(pl.col("_REP_1").sum())
        assert sorted(rep_totals["_REP_1"].to_list()) == pytest.approx([10.0, 30.0])

    def test_missing_category(self, day_design, interviews):
        design = attach_group_design(day_design, interviews, "date")
        population = pl.DataFrame({"location": ["lake_a"], "Freq": [30]})
        with pytest.raises(WeightAlignmentError, match="lake_b"):
            post_stratify(design, "location", population)

    def test_missing_frequency_column(self, day_design, interviews):
        design = attach_group_design(day_design, interviews, "date")
        population = pl.DataFrame({"location": ["lake_a", "lake_b"], "N": [30, 10]})
        with pytest.raises(MissingColumnError, match="Freq"):
            post_stratify(design, "location", population)


# =============================================================================
# TestCalibration
# =============================================================================


class TestCalibration:
    @pytest.mark.parametrize("calfun", ["linear", "raking", "logit"])
    def test_totals_achieved(self, simple_design, calfun):
        totals = {"intercept": 44.0, "x": 90.0}
        design = calibrate(simple_design, totals, calfun=calfun)

        w = design.weights.to_numpy()
        x = design.data["x"].to_numpy()
        assert w.sum() == pytest.approx(44.0, rel=1e-5)
        assert (w * x).sum() == pytest.approx(90.0, rel=1e-5)

    def test_raking_keeps_weights_positive(self, simple_design):
        design = calibrate(simple_design, {"intercept": 20.0}, calfun="raking")
        assert np.all(design.weights.to_numpy() > 0)
        assert design.weights.to_list() == pytest.approx([5.0] * 4)

    def test_unknown_calibration_function(self, simple_design):
        with pytest.raises(InvalidConfigError):
            calibrate(simple_design, {"intercept": 40.0}, calfun="cubic")

    def test_unknown_auxiliary_column(self, simple_design):
        with pytest.raises(MissingColumnError):
            calibrate(simple_design, {"boats": 12.0})


# =============================================================================
# TestDesignDiagnostics
# =============================================================================


class TestDesignDiagnostics:
    def test_summary(self, day_design):
        diag = design_diagnostics(day_design)

        assert diag["kind"] == "raw"
        assert diag["n_units"] == 6
        assert diag["n_strata"] == 2
        assert diag["min_stratum_size"] == 2
        assert diag["max_stratum_size"] == 4
        assert diag["small_strata"] == 2
        assert diag["min_weight"] == pytest.approx(4.0)
        assert diag["max_weight"] == pytest.approx(5.0)
        weights = day_design.weights.to_numpy()
        cv = weights.std(ddof=1) / weights.mean()
        assert diag["kish_deff"] == pytest.approx(1 + cv**2)
        assert diag["has_replicates"] is False
        assert any("small sample" in issue.lower() for issue in diag["issues"])

    def test_replicate_information(self, day_design):
        diag = design_diagnostics(build_replicate_design(day_design, "jackknife"))
        assert diag["has_replicates"] is True
        assert diag["replicate_type"] == "jackknife"
        assert diag["n_replicates"] == 6


# =============================================================================
# TestCreelData
# =============================================================================


class TestCreelData:
    def test_calendar_builds_attached_design(self, calendar, interviews):
        creel = CreelData(interviews=interviews, calendar=calendar, strata_vars=("day_type",))
        design = resolve_design(creel)
        assert design.n_records == interviews.height
        assert design.n_strata == 2

    def test_without_calendar_equal_weights(self, interviews):
        creel = CreelData(interviews=interviews)
        with pytest.warns(ApproximationWarning, match="calendar"):
            design = resolve_design(creel)
        assert design.n_units == interviews.height
        assert design.weights.unique().to_list() == [1.0]

    def test_missing_table(self, calendar):
        with pytest.raises(ValueError, match="interviews"):
            resolve_design(CreelData(calendar=calendar))

    def test_roster_stratum_key(self, day_design):
        assert STRATUM_COL in day_design.units.columns
