"""
Angler effort estimation from count data.

Raw count events are first reduced to one row per day x group with a
method-specific formula, then attached to the day-level design and
expanded with a design-weighted total:

- aerial / instantaneous:
      adjusted = count / max(visibility, 0.1) × calibration
      effort_day = mean(adjusted) × total_minutes_represented / 60
- progressive (roving):
      pass_effort = Σ count × route_minutes / 60     (within each pass)
      effort_day  = Σ pass_effort                    (across passes)
- bus route (Horvitz-Thompson):
      effort_day = Σ (count × route_minutes / 60) / inclusion_prob

Without a day-level design a weaker, non-design variance is reported: the
within-day standard error scaled to effort units, summed in quadrature
across days, with no stratification or clustering correction.
"""

from __future__ import annotations

import logging
import sys
import warnings
from abc import abstractmethod
from collections.abc import Sequence
from typing import Any

import polars as pl

from ...core.design import CreelData, SurveyDesign
from ...core.exceptions import (
    ApproximationWarning,
    InvalidConfigError,
    MissingColumnError,
    PyCreelWarning,
)
from ..base import RESULT_COLUMNS, AggregationResult, BaseEstimator, EstimationResult
from ..constants import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_DAY_ID,
    DEFAULT_EFFORT_BY,
    DEFAULT_INCLUSION_PROB_COL,
    EFFORT_METHODS,
    MIN_VISIBILITY,
    MINUTES_COLUMNS,
    MINUTES_PER_HOUR,
    PASS_ID_COLUMNS,
    ROUTE_MINUTES_COLUMNS,
    TOTAL_MINUTES_COLUMNS,
)
from ..design import attach_group_design, build_day_design
from ..engine import estimate
from ..utils import filter_group_columns, first_present, normalize_group_cols, require_columns
from ..variance import safe_sqrt, z_score

logger = logging.getLogger(__name__)

EFFORT_DAY_COL = "effort_day"
DAY_SE_COL = "_SE_DAY"


class EffortEstimator(BaseEstimator):
    """
    Base class for count-based effort estimators.

    Parameters
    ----------
    counts : pl.DataFrame or CreelData
        Count events with ``count``, the day id and grouping columns.
    config : dict
        Keys: ``design`` (day-level SurveyDesign or CreelData with a
        calendar; omit for the non-design fallback), ``by``,
        ``covariates``, ``day_id``, ``conf_level``, ``variance_method``,
        ``n_replicates``, ``seed``, ``design_diagnostics``,
        ``post_strata``, ``population``, ``freq_col``,
        ``calibration_totals``, ``calfun``.
    """

    source_table = "counts"
    method_tag = "effort"

    def __init__(self, counts: pl.DataFrame | CreelData, config: dict):
        source = config.get("design")
        if isinstance(counts, CreelData):
            if source is None and counts.calendar is not None:
                source = counts
            counts = counts.counts
        if counts is None:
            raise ValueError("Effort estimation requires a counts table")
        super().__init__(source, config)
        self.counts = counts
        self.day_id = config.get("day_id", DEFAULT_DAY_ID)
        by = config.get("by", DEFAULT_EFFORT_BY)
        covariates = normalize_group_cols(config.get("covariates"))
        requested = list(dict.fromkeys(normalize_group_cols(by) + covariates))
        self.group_cols = [c for c in requested if c != self.day_id]
        if self.day_id in requested:
            logger.debug("'%s' is the sampling unit; not used as a grouping column", self.day_id)
        self.aggregation: AggregationResult | None = None

    # Template -------------------------------------------------------------

    def estimate(self) -> EstimationResult:
        require_columns(self.counts, [self.day_id, "count"], context=f"{self.method_tag} counts")
        group_cols = filter_group_columns(self.counts, self.group_cols)
        self.aggregation = self.aggregate(self.counts, group_cols)
        logger.debug(
            "%s: %d count rows reduced to %d day x group rows",
            self.method_tag,
            self.counts.height,
            self.aggregation.results.height,
        )
        if self.source is None:
            return self.format_output(self.non_design_estimate(self.aggregation))
        return super().estimate()

    def resolve(self) -> SurveyDesign:
        if isinstance(self.source, CreelData):
            if self.source.calendar is None:
                raise ValueError(
                    "CreelData needs a calendar to build the day-level design for effort"
                )
            strata = self.source.strata_vars
            if strata is None:
                return build_day_design(self.source.calendar, self.source.day_id)
            return build_day_design(self.source.calendar, self.source.day_id, strata)
        return self.source

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        return attach_group_design(
            design,
            self.aggregation.results,
            self.day_id,
            post_strata=self.config.get("post_strata"),
            population=self.config.get("population"),
            freq_col=self.config.get("freq_col", "Freq"),
            calibration_totals=self.config.get("calibration_totals"),
            calfun=self.config.get("calfun", "linear"),
        )

    def compute(self, design: SurveyDesign) -> EstimationResult:
        result = estimate(
            design,
            EFFORT_DAY_COL,
            statistic="total",
            by=self.aggregation.group_cols,
            tag=self.method_tag,
            **self.engine_options(),
        )
        return result.relabel(
            self.method_tag,
            variance="design",
            n_day_groups=self.aggregation.results.height,
            **self.aggregation_diagnostics(),
        )

    # Method specific ------------------------------------------------------

    @abstractmethod
    def aggregate(self, counts: pl.DataFrame, group_cols: list[str]) -> AggregationResult:
        """Reduce count events to one row per day x group with effort_day."""

    def aggregation_diagnostics(self) -> dict[str, Any]:
        return {}

    # Non-design fallback --------------------------------------------------

    def non_design_estimate(self, aggregation: AggregationResult) -> EstimationResult:
        """Sum day x group effort with a within-day SE; no design correction."""
        warnings.warn(
            f"No day-level design supplied for {self.method_tag} effort; reporting a "
            "non-design standard error without stratification or clustering correction",
            ApproximationWarning,
            stacklevel=3,
        )
        group_cols = aggregation.group_cols
        z = z_score(self.conf_level)
        day_se = pl.col(DAY_SE_COL)

        agg_exprs = [
            pl.col(EFFORT_DAY_COL).sum().alias("estimate"),
            pl.when(day_se.is_null().any())
            .then(None)
            .otherwise((day_se**2).sum())
            .alias("variance"),
            pl.len().cast(pl.Int64).alias("n"),
        ]
        if group_cols:
            table = aggregation.results.group_by(group_cols).agg(agg_exprs)
        else:
            table = aggregation.results.select(agg_exprs)

        method = f"{self.method_tag}:non_design"
        table = table.with_columns(safe_sqrt(pl.col("variance"), None).alias("se")).with_columns(
            (pl.col("estimate") - z * pl.col("se")).alias("ci_low"),
            (pl.col("estimate") + z * pl.col("se")).alias("ci_high"),
            pl.lit(None, dtype=pl.Float64).alias("deff"),
            pl.lit(method).alias("method"),
        )
        if group_cols:
            table = table.sort(group_cols, nulls_last=True)
        table = table.select(group_cols + RESULT_COLUMNS).with_columns(
            [pl.col(c).cast(pl.Float64) for c in ("estimate", "se", "ci_low", "ci_high", "variance")]
        )

        return EstimationResult(
            table=table,
            method=method,
            group_cols=group_cols,
            variance_method="non_design",
            conf_level=self.conf_level,
            diagnostics={
                "variance": "non_design",
                "variance_note": (
                    "weaker: within-day standard error scaled to effort units, "
                    "no stratification or clustering correction"
                ),
                "n_day_groups": aggregation.results.height,
                **self.aggregation_diagnostics(),
            },
        )


class AerialEffortEstimator(EffortEstimator):
    """
    Effort from aerial (instantaneous) counts.

    Config keys in addition to :class:`EffortEstimator`:
    ``visibility_correction`` and ``calibration_factor`` (number or column
    name, default 1), ``minutes_col`` and ``total_minutes_col`` (candidate
    column names, first present is used).
    """

    method_tag = "aerial"

    def __init__(self, counts: pl.DataFrame | CreelData, config: dict):
        super().__init__(counts, config)
        self.visibility = config.get("visibility_correction", 1.0)
        self.calibration = config.get("calibration_factor", 1.0)
        self.minutes_candidates = _candidates(config.get("minutes_col"), MINUTES_COLUMNS)
        self.total_minutes_candidates = _candidates(
            config.get("total_minutes_col"), TOTAL_MINUTES_COLUMNS
        )
        self._minutes_approximated = False

    def adjustment_exprs(self, counts: pl.DataFrame) -> tuple[pl.Expr, pl.Expr]:
        return (
            _numeric_or_column(counts, self.visibility, "visibility_correction"),
            _numeric_or_column(counts, self.calibration, "calibration_factor"),
        )

    def aggregate(self, counts: pl.DataFrame, group_cols: list[str]) -> AggregationResult:
        minutes_col = first_present(counts, self.minutes_candidates)
        if minutes_col is None:
            raise MissingColumnError(
                self.minutes_candidates,
                context=f"{self.method_tag} counts",
                hint="Provide one per-count minutes column",
            )
        total_col = first_present(counts, self.total_minutes_candidates)
        self._minutes_approximated = total_col is None
        if total_col is None:
            warnings.warn(
                f"{self.method_tag.capitalize()}: no total-minutes column found; using the sum "
                f"of '{minutes_col}' per day x group as minutes represented. Provide one "
                f"of {', '.join(self.total_minutes_candidates)} for proper expansion",
                ApproximationWarning,
                stacklevel=4,
            )
            total_minutes = pl.col(minutes_col).sum()
        else:
            total_minutes = pl.col(total_col).first()

        visibility, calibration = self.adjustment_exprs(counts)
        adjusted = counts.with_columns(
            (
                pl.col("count").cast(pl.Float64)
                / pl.max_horizontal(visibility.fill_null(1.0), pl.lit(MIN_VISIBILITY))
                * calibration.fill_null(1.0)
            ).alias("adjusted_count")
        )

        keys = [self.day_id, *group_cols]
        day_group = (
            adjusted.group_by(keys)
            .agg(
                [
                    pl.col("adjusted_count").mean().alias("mean_count"),
                    pl.col("adjusted_count").std().alias("_SD_COUNT"),
                    pl.len().alias("n_counts"),
                    total_minutes.cast(pl.Float64).alias("total_minutes"),
                ]
            )
            .with_columns(
                (pl.col("mean_count") * pl.col("total_minutes") / MINUTES_PER_HOUR).alias(
                    EFFORT_DAY_COL
                ),
                (
                    pl.col("_SD_COUNT")
                    / pl.col("n_counts").cast(pl.Float64).sqrt()
                    * pl.col("total_minutes")
                    / MINUTES_PER_HOUR
                ).alias(DAY_SE_COL),
            )
            .drop("_SD_COUNT")
            .sort(keys, nulls_last=True)
        )
        return AggregationResult(results=day_group, records=adjusted, group_cols=group_cols)

    def aggregation_diagnostics(self) -> dict[str, Any]:
        return {"minutes_approximated": self._minutes_approximated}


class InstantaneousEffortEstimator(AerialEffortEstimator):
    """Instantaneous counts: the aerial formula without visibility or calibration."""

    method_tag = "instantaneous"

    def adjustment_exprs(self, counts: pl.DataFrame) -> tuple[pl.Expr, pl.Expr]:
        return pl.lit(1.0), pl.lit(1.0)


class ProgressiveEffortEstimator(EffortEstimator):
    """
    Effort from progressive (roving) counts.

    Config keys in addition to :class:`EffortEstimator`:
    ``route_minutes_col`` and ``pass_id`` (candidate column names). Without
    a pass id column the rows of each day x group form a single pass,
    so the non-design SE of that day is unavailable.
    """

    method_tag = "progressive"

    def __init__(self, counts: pl.DataFrame | CreelData, config: dict):
        super().__init__(counts, config)
        self.route_candidates = _candidates(
            config.get("route_minutes_col"), ROUTE_MINUTES_COLUMNS
        )
        self.pass_candidates = _candidates(config.get("pass_id"), PASS_ID_COLUMNS)
        self._pass_col: str | None = None

    def aggregate(self, counts: pl.DataFrame, group_cols: list[str]) -> AggregationResult:
        route_col = first_present(counts, self.route_candidates)
        if route_col is None:
            raise MissingColumnError(
                self.route_candidates,
                context="progressive counts",
                hint="Provide one route minutes column",
            )
        self._pass_col = first_present(counts, self.pass_candidates)

        keys = [self.day_id, *group_cols]
        contribution = (pl.col("count") * pl.col(route_col)).cast(pl.Float64)
        # Without pass ids the day x group is one pass
        pass_keys = keys if self._pass_col is None else [*keys, self._pass_col]
        passes = counts.group_by(pass_keys).agg(
            (contribution.sum() / MINUTES_PER_HOUR).alias("pass_effort")
        )

        day_group = (
            passes.group_by(keys)
            .agg(
                [
                    pl.col("pass_effort").sum().alias(EFFORT_DAY_COL),
                    pl.len().alias("n_passes"),
                    pl.col("pass_effort").std().alias("_SD_PASS"),
                ]
            )
            .with_columns(
                (pl.col("n_passes").cast(pl.Float64).sqrt() * pl.col("_SD_PASS")).alias(
                    DAY_SE_COL
                )
            )
            .drop("_SD_PASS")
            .sort(keys, nulls_last=True)
        )
        return AggregationResult(results=day_group, records=passes, group_cols=group_cols)

    def aggregation_diagnostics(self) -> dict[str, Any]:
        return {"pass_id": self._pass_col}


class BusRouteEffortEstimator(EffortEstimator):
    """
    Effort from bus-route counts with Horvitz-Thompson expansion.

    Each observed party contributes ``count × route_minutes / 60`` hours
    (or a precomputed ``contrib_hours_col``) divided by its inclusion
    probability. Config keys in addition to :class:`EffortEstimator`:
    ``inclusion_prob_col``, ``route_minutes_col`` and ``contrib_hours_col``.
    """

    method_tag = "busroute_ht"

    def __init__(self, counts: pl.DataFrame | CreelData, config: dict):
        super().__init__(counts, config)
        self.inclusion_col = config.get("inclusion_prob_col", DEFAULT_INCLUSION_PROB_COL)
        self.route_candidates = _candidates(
            config.get("route_minutes_col"), ROUTE_MINUTES_COLUMNS
        )
        self.contrib_col = config.get("contrib_hours_col")
        self._dropped = 0
        self._clamped = 0

    def contribution_expr(self, counts: pl.DataFrame) -> pl.Expr:
        """Observed hours per count row before expansion."""
        if self.contrib_col is not None and self.contrib_col in counts.columns:
            return pl.col(self.contrib_col).cast(pl.Float64)
        route_col = first_present(counts, self.route_candidates)
        if route_col is None:
            raise MissingColumnError(
                self.route_candidates,
                context="bus-route counts",
                hint="Provide a route minutes column or contrib_hours_col",
            )
        return (pl.col("count") * pl.col(route_col)).cast(pl.Float64) / MINUTES_PER_HOUR

    def aggregate(self, counts: pl.DataFrame, group_cols: list[str]) -> AggregationResult:
        require_columns(counts, [self.inclusion_col], context="bus-route counts")
        contribution = self.contribution_expr(counts)

        pi = pl.col(self.inclusion_col).cast(pl.Float64)
        self._clamped = counts.select(((pi <= 0) | (pi > 1)).fill_null(False).sum()).item()
        if self._clamped:
            warnings.warn(
                f"{self._clamped} row(s) have inclusion probabilities outside (0, 1]; "
                "values were clamped",
                PyCreelWarning,
                stacklevel=4,
            )
        pi = pi.clip(sys.float_info.epsilon, 1.0)

        records = counts.with_columns(
            contribution.alias("_CONTRIB_HOURS"), pi.alias("_PI")
        ).filter(
            pl.col("_CONTRIB_HOURS").is_not_null()
            & pl.col("_PI").is_not_null()
            & pl.col(self.day_id).is_not_null()
        )
        self._dropped = counts.height - records.height
        if self._dropped:
            logger.info(
                "Dropped %d bus-route row(s) with missing contribution, inclusion "
                "probability or day id",
                self._dropped,
            )
        records = records.with_columns(
            (pl.col("_CONTRIB_HOURS") / pl.col("_PI")).alias("ht_contrib")
        )

        keys = [self.day_id, *group_cols]
        day_group = (
            records.group_by(keys)
            .agg(
                [
                    pl.col("ht_contrib").sum().alias(EFFORT_DAY_COL),
                    pl.len().alias("n_obs"),
                    pl.col("ht_contrib").std().alias("_SD_OBS"),
                ]
            )
            .with_columns(
                (pl.col("n_obs").cast(pl.Float64).sqrt() * pl.col("_SD_OBS")).alias(DAY_SE_COL)
            )
            .drop("_SD_OBS")
            .sort(keys, nulls_last=True)
        )
        return AggregationResult(results=day_group, records=records, group_cols=group_cols)

    def aggregation_diagnostics(self) -> dict[str, Any]:
        return {
            "inclusion_prob_col": self.inclusion_col,
            "n_dropped": self._dropped,
            "n_clamped": self._clamped,
        }


def _candidates(value: str | Sequence[str] | None, default: Sequence[str]) -> list[str]:
    if value is None:
        return list(default)
    return normalize_group_cols(value)


def _numeric_or_column(counts: pl.DataFrame, value: float | str, name: str) -> pl.Expr:
    if isinstance(value, str):
        if value not in counts.columns:
            raise MissingColumnError([value], context="counts", hint=f"{name} names a column")
        return pl.col(value).cast(pl.Float64)
    return pl.lit(float(value))


def _effort_config(
    design, by, covariates, day_id, conf_level, variance_method, n_replicates, seed,
    design_diagnostics, post_strata, population, calibration_totals, calfun,
) -> dict[str, Any]:
    return {
        "design": design,
        "by": by,
        "covariates": covariates,
        "day_id": day_id,
        "conf_level": conf_level,
        "variance_method": variance_method,
        "n_replicates": n_replicates,
        "seed": seed,
        "design_diagnostics": design_diagnostics,
        "post_strata": post_strata,
        "population": population,
        "calibration_totals": calibration_totals,
        "calfun": calfun,
    }


def est_effort_aerial(
    counts: pl.DataFrame | CreelData,
    design: SurveyDesign | CreelData | None = None,
    by: str | list[str] | None = DEFAULT_EFFORT_BY,
    visibility_correction: float | str = 1.0,
    calibration_factor: float | str = 1.0,
    minutes_col: str | Sequence[str] | None = None,
    total_minutes_col: str | Sequence[str] | None = None,
    day_id: str = DEFAULT_DAY_ID,
    covariates: str | list[str] | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
    post_strata: str | None = None,
    population: pl.DataFrame | None = None,
    calibration_totals: dict[str, float] | None = None,
    calfun: str = "linear",
) -> EstimationResult:
    """
    Estimate angler-hours from aerial counts.

    Parameters
    ----------
    counts : pl.DataFrame or CreelData
        Aerial counts with ``count``, the day id, grouping columns and one
        per-count minutes column.
    design : SurveyDesign or CreelData, optional
        Day-level design. Without it a non-design SE is reported and the
        method tag gains ``:non_design``.
    by : str or list of str, default ('location',)
        Grouping columns.
    visibility_correction : float or str, default 1.0
        Detection probability, as a number or a column name. Values below
        0.1 are clamped to 0.1.
    calibration_factor : float or str, default 1.0
        Calibration multiplier, as a number or a column name.
    minutes_col : str or list of str, optional
        Per-count minutes column candidates. Defaults to
        interval_minutes, count_duration, flight_minutes.
    total_minutes_col : str or list of str, optional
        Minutes represented per day x group. Defaults to total_minutes,
        total_day_minutes, block_total_minutes. When none is present the
        per-count minutes are summed, with a warning.
    day_id : str, default 'date'
        Day (sampling unit) column.
    covariates : str or list of str, optional
        Extra grouping columns.
    conf_level : float, default 0.95
        Confidence level.
    variance_method : {'linearization', 'bootstrap', 'jackknife'}
        Design variance method.
    n_replicates, seed : optional
        Replicate construction for resampling methods.
    design_diagnostics : bool, default False
        Add a design summary under ``diagnostics['design']``.
    post_strata, population, calibration_totals, calfun : optional
        Weight adjustments passed to :func:`attach_group_design`.

    Returns
    -------
    EstimationResult
        Effort totals per group with method tag ``"aerial"``.

    Examples
    --------
    >>> day_design = build_day_design(calendar, strata_vars=["day_type"])
    >>> result = est_effort_aerial(counts, design=day_design, by="location")
    """
    config = _effort_config(
        design, by, covariates, day_id, conf_level, variance_method, n_replicates,
        seed, design_diagnostics, post_strata, population, calibration_totals, calfun,
    )
    config.update(
        visibility_correction=visibility_correction,
        calibration_factor=calibration_factor,
        minutes_col=minutes_col,
        total_minutes_col=total_minutes_col,
    )
    return AerialEffortEstimator(counts, config).estimate()


def est_effort_instantaneous(
    counts: pl.DataFrame | CreelData,
    design: SurveyDesign | CreelData | None = None,
    by: str | list[str] | None = DEFAULT_EFFORT_BY,
    minutes_col: str | Sequence[str] | None = None,
    total_minutes_col: str | Sequence[str] | None = None,
    day_id: str = DEFAULT_DAY_ID,
    covariates: str | list[str] | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
    post_strata: str | None = None,
    population: pl.DataFrame | None = None,
    calibration_totals: dict[str, float] | None = None,
    calfun: str = "linear",
) -> EstimationResult:
    """
    Estimate angler-hours from instantaneous counts.

    Same as :func:`est_effort_aerial` with no visibility or calibration
    adjustment. Method tag ``"instantaneous"``.
    """
    config = _effort_config(
        design, by, covariates, day_id, conf_level, variance_method, n_replicates,
        seed, design_diagnostics, post_strata, population, calibration_totals, calfun,
    )
    config.update(minutes_col=minutes_col, total_minutes_col=total_minutes_col)
    return InstantaneousEffortEstimator(counts, config).estimate()


def est_effort_progressive(
    counts: pl.DataFrame | CreelData,
    design: SurveyDesign | CreelData | None = None,
    by: str | list[str] | None = DEFAULT_EFFORT_BY,
    route_minutes_col: str | Sequence[str] | None = None,
    pass_id: str | Sequence[str] | None = None,
    day_id: str = DEFAULT_DAY_ID,
    covariates: str | list[str] | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
    post_strata: str | None = None,
    population: pl.DataFrame | None = None,
    calibration_totals: dict[str, float] | None = None,
    calfun: str = "linear",
) -> EstimationResult:
    """
    Estimate angler-hours from progressive (roving) counts.

    Parameters
    ----------
    counts : pl.DataFrame or CreelData
        Counts with ``count``, the day id, grouping columns, a route
        minutes column and optionally a pass id.
    design : SurveyDesign or CreelData, optional
        Day-level design. Without it a non-design SE is reported.
    by : str or list of str, default ('location',)
        Grouping columns.
    route_minutes_col : str or list of str, optional
        Defaults to route_minutes, circuit_minutes.
    pass_id : str or list of str, optional
        Defaults to pass_id, circuit_id. Without one, the rows of a
        day x group form one pass.
    day_id : str, default 'date'
        Day (sampling unit) column.

    Returns
    -------
    EstimationResult
        Effort totals per group with method tag ``"progressive"``.
    """
    config = _effort_config(
        design, by, covariates, day_id, conf_level, variance_method, n_replicates,
        seed, design_diagnostics, post_strata, population, calibration_totals, calfun,
    )
    config.update(route_minutes_col=route_minutes_col, pass_id=pass_id)
    return ProgressiveEffortEstimator(counts, config).estimate()


def est_effort_busroute(
    counts: pl.DataFrame | CreelData,
    design: SurveyDesign | CreelData | None = None,
    by: str | list[str] | None = DEFAULT_EFFORT_BY,
    inclusion_prob_col: str = DEFAULT_INCLUSION_PROB_COL,
    route_minutes_col: str | Sequence[str] | None = None,
    contrib_hours_col: str | None = None,
    day_id: str = DEFAULT_DAY_ID,
    covariates: str | list[str] | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
    post_strata: str | None = None,
    population: pl.DataFrame | None = None,
    calibration_totals: dict[str, float] | None = None,
    calfun: str = "linear",
) -> EstimationResult:
    """
    Estimate angler-hours from bus-route counts.

    Parameters
    ----------
    counts : pl.DataFrame or CreelData
        Counts with ``count``, the day id, grouping columns, an inclusion
        probability and a route minutes column.
    design : SurveyDesign or CreelData, optional
        Day-level design. Without it a non-design SE is reported.
    inclusion_prob_col : str, default 'inclusion_prob'
        Probability that the observed party was included. Values outside
        (0, 1] are clamped, with a warning.
    route_minutes_col : str or list of str, optional
        Defaults to route_minutes, circuit_minutes.
    contrib_hours_col : str, optional
        Precomputed observed hours per row, used instead of
        ``count × route_minutes / 60`` when present.

    Returns
    -------
    EstimationResult
        Effort totals per group with method tag ``"busroute_ht"``. Rows
        dropped for missing values and clamped probabilities are counted
        in the diagnostics.
    """
    config = _effort_config(
        design, by, covariates, day_id, conf_level, variance_method, n_replicates,
        seed, design_diagnostics, post_strata, population, calibration_totals, calfun,
    )
    config.update(
        inclusion_prob_col=inclusion_prob_col,
        route_minutes_col=route_minutes_col,
        contrib_hours_col=contrib_hours_col,
    )
    return BusRouteEffortEstimator(counts, config).estimate()


def est_effort(
    counts: pl.DataFrame | CreelData,
    method: str = "instantaneous",
    **kwargs: Any,
) -> EstimationResult:
    """
    Estimate effort with the named count method.

    Parameters
    ----------
    counts : pl.DataFrame or CreelData
        Count data.
    method : {'instantaneous', 'aerial', 'progressive', 'busroute'}
        Count method.
    **kwargs
        Passed to :func:`est_effort_instantaneous`, :func:`est_effort_aerial`,
        :func:`est_effort_progressive` or :func:`est_effort_busroute`.
    """
    dispatch = {
        "instantaneous": est_effort_instantaneous,
        "aerial": est_effort_aerial,
        "progressive": est_effort_progressive,
        "busroute": est_effort_busroute,
    }
    if method not in dispatch:
        raise InvalidConfigError("effort method", method, EFFORT_METHODS)
    return dispatch[method](counts, **kwargs)
