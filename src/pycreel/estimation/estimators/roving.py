"""
CPUE from roving (incomplete-trip) interviews.

Roving creel clerks meet anglers part-way through their trips, so the
per-trip catch rate r_i = catch_i / effort_i is observed on trips that are
still in progress. Two adjustments are applied:

- trips shorter than ``min_trip_hours`` are truncated, since very short
  partial trips give unstable rates;
- optionally, the Pollock et al. (1997) length-bias correction. The chance
  of meeting an angler grows with the length of the trip, so each trip is
  down-weighted by 1 / T_i, where T_i is the angler's stated total planned
  trip length:

      R = Σ w_i·r_i/T_i / Σ w_i/T_i

  which is the design-weighted mean of r_i under weights w_i / T_i. It is
  estimated as a combined ratio so the variance accounts for the random
  denominator.

Without the correction the estimate is the design-weighted mean of r_i.
"""

from __future__ import annotations

import warnings

import polars as pl

from ...core.design import CreelData, SurveyDesign
from ...core.exceptions import EmptyAfterFilterError, InvalidConfigError, PyCreelWarning
from ..base import EstimationResult
from ..constants import (
    DEFAULT_CONF_LEVEL,
    DEFAULT_CPUE_RESPONSE,
    DEFAULT_EFFORT_COL,
    DEFAULT_MIN_TRIP_HOURS,
    LENGTH_BIAS_CORRECTIONS,
    MAX_QUIET_TRUNCATION_RATE,
)
from ..engine import estimate
from ..utils import require_columns
from .cpue import CPUE_COL, CPUEEstimator

BIAS_WEIGHT_COL = "_LENGTH_BIAS_WEIGHT"
WEIGHTED_CPUE_COL = "_CPUE_LENGTH_BIAS"


class RovingCPUEEstimator(CPUEEstimator):
    """
    Mean-of-ratios CPUE for roving interviews.

    Parameters
    ----------
    source : SurveyDesign or CreelData
        Interview-level design.
    config : dict
        Keys: ``response``, ``effort_col``, ``min_trip_hours``
        (default 0.5), ``length_bias_correction`` ('none' or 'pollock'),
        ``total_trip_effort_col`` (required for 'pollock'), ``by``,
        ``conf_level``, ``variance_method``, ``n_replicates``, ``seed``,
        ``design_diagnostics``.
    """

    def __init__(self, source: SurveyDesign | CreelData, config: dict):
        super().__init__(source, {**config, "mode": "mean_of_ratios"})
        self.correction = config.get("length_bias_correction", "none")
        self.total_effort_col = config.get("total_trip_effort_col")
        self.truncation: dict = {}

        if self.correction not in LENGTH_BIAS_CORRECTIONS:
            raise InvalidConfigError(
                "length_bias_correction", self.correction, LENGTH_BIAS_CORRECTIONS
            )
        if self.min_trip_hours is None or not self.min_trip_hours > 0:
            raise InvalidConfigError("min_trip_hours", self.min_trip_hours, ["a positive number"])
        if self.correction == "pollock" and self.total_effort_col is None:
            raise InvalidConfigError(
                "total_trip_effort_col",
                None,
                ["the column holding anglers' stated total planned trip hours"],
            )

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        columns = [self.response, self.effort_col]
        if self.correction == "pollock":
            columns.append(self.total_effort_col)
        require_columns(
            design.data,
            columns,
            context="roving interviews",
            hint="Pass total_trip_effort_col= to name the planned trip length column",
        )

        n_original = design.n_records
        truncated, n_truncated = self.truncate(design)
        rate = n_truncated / n_original if n_original else 0.0
        if rate > MAX_QUIET_TRUNCATION_RATE:
            warnings.warn(
                f"Truncating {n_truncated} trip(s) shorter than {self.min_trip_hours} hours, "
                f"{100 * rate:.1f}% of the interviews. Consider lowering min_trip_hours",
                PyCreelWarning,
                stacklevel=4,
            )
        if truncated.n_records == 0:
            raise EmptyAfterFilterError(
                f"No trips remain after truncation: all {n_original} are shorter than "
                f"min_trip_hours={self.min_trip_hours}"
            )

        self.truncation = {
            "n_original": n_original,
            "n_truncated": n_truncated,
            "n_used": truncated.n_records,
            "truncation_rate": rate,
            "min_trip_hours": self.min_trip_hours,
        }
        return super().prepare(truncated)

    def compute(self, design: SurveyDesign) -> EstimationResult:
        diagnostics = {**self.truncation, **_trip_summary(design, self.effort_col)}
        diagnostics["length_bias_correction"] = self.correction
        diagnostics["correction_applied"] = self.correction == "pollock"

        if self.correction == "pollock":
            design, weights = self.length_bias_weights(design)
            diagnostics.update(weights)
            result = estimate(
                design,
                WEIGHTED_CPUE_COL,
                statistic="ratio",
                by=self.group_cols,
                denominator=BIAS_WEIGHT_COL,
                tag=f"cpue_roving:{self.response}",
                **self.engine_options(),
            )
        else:
            result = self.mean_of_ratios(design, self.group_cols)

        method = f"cpue_roving:mean_of_ratios:{self.response}:{self.correction}"
        return result.relabel(method, **diagnostics)

    def length_bias_weights(self, design: SurveyDesign) -> tuple[SurveyDesign, dict]:
        """
        Attach the 1/T length-bias weight and the weighted per-trip rate.

        Planned totals below the effort already fished are raised to it.
        Trips whose 1/T is undefined get weight zero.
        """
        effort = pl.col(self.effort_col).cast(pl.Float64)
        total = pl.col(self.total_effort_col).cast(pl.Float64)

        n_adjusted = design.data.select((total < effort).fill_null(False).sum()).item()
        if n_adjusted:
            warnings.warn(
                f"{n_adjusted} interview(s) have total planned effort below the effort "
                "already fished; using the observed effort as the planned total",
                PyCreelWarning,
                stacklevel=5,
            )

        total = pl.when(total < effort).then(effort).otherwise(total)
        inverse = 1.0 / total
        weight = pl.when(inverse.is_finite()).then(inverse).otherwise(0.0)
        cpue = pl.col(CPUE_COL)
        data = design.data.with_columns(
            pl.when(cpue.is_not_null()).then(weight).otherwise(None).alias(BIAS_WEIGHT_COL),
            total.alias(self.total_effort_col),
        ).with_columns((cpue * pl.col(BIAS_WEIGHT_COL)).alias(WEIGHTED_CPUE_COL))

        summary = data.select(
            pl.col(self.total_effort_col).mean().alias("mean_total_effort"),
            pl.col(BIAS_WEIGHT_COL).mean().alias("mean_bias_weight"),
        ).row(0, named=True)
        return design.with_data(data), {"n_total_effort_adjusted": int(n_adjusted), **summary}


def _trip_summary(design: SurveyDesign, effort_col: str) -> dict:
    """Unweighted mean and SD of effort and catch rate over the trips used."""
    effort = pl.col(effort_col).cast(pl.Float64)
    return design.data.select(
        effort.mean().alias("mean_effort"),
        effort.std().alias("sd_effort"),
        pl.col(CPUE_COL).mean().alias("mean_catch_rate"),
        pl.col(CPUE_COL).std().alias("sd_catch_rate"),
        pl.col(CPUE_COL).null_count().alias("n_undefined_rate"),
    ).row(0, named=True)


def est_cpue_roving(
    design: SurveyDesign | CreelData,
    by: str | list[str] | None = None,
    response: str = DEFAULT_CPUE_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    min_trip_hours: float = DEFAULT_MIN_TRIP_HOURS,
    length_bias_correction: str = "none",
    total_trip_effort_col: str | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
) -> EstimationResult:
    """
    Estimate CPUE from roving interviews of incomplete trips.

    Parameters
    ----------
    design : SurveyDesign or CreelData
        Interview-level design.
    by : str or list of str, optional
        Grouping columns.
    response : str, default 'catch_total'
        Catch column.
    effort_col : str, default 'hours_fished'
        Hours fished at the time of the interview.
    min_trip_hours : float, default 0.5
        Trips shorter than this are dropped. Must be positive.
    length_bias_correction : {'none', 'pollock'}, default 'none'
        'pollock' weights each trip by 1 / planned total trip length.
    total_trip_effort_col : str, optional
        Planned total trip hours, required for the 'pollock' correction.
    conf_level : float, default 0.95
        Confidence level.
    variance_method : {'linearization', 'bootstrap', 'jackknife'}
        Variance method.
    n_replicates : int, optional
        Replicates to build when the design has none.
    seed : int, optional
        Seed for replicate construction.
    design_diagnostics : bool, default False
        Add a design summary under ``diagnostics['design']``.

    Returns
    -------
    EstimationResult
        Method tag ``cpue_roving:mean_of_ratios:<response>:<correction>``.
        Diagnostics report the truncation counts, effort and catch-rate
        summaries and, with the correction, the mean planned trip length
        and mean 1/T weight.

    Raises
    ------
    InvalidConfigError
        For an unknown correction, a non-positive ``min_trip_hours`` or
        'pollock' without ``total_trip_effort_col``.
    MissingColumnError
        If a named column is absent.
    EmptyAfterFilterError
        If every trip is shorter than ``min_trip_hours``.

    Examples
    --------
    >>> est_cpue_roving(
    ...     design,
    ...     length_bias_correction="pollock",
    ...     total_trip_effort_col="planned_hours",
    ... ).estimate
    """
    config = {
        "by": by,
        "response": response,
        "effort_col": effort_col,
        "min_trip_hours": min_trip_hours,
        "length_bias_correction": length_bias_correction,
        "total_trip_effort_col": total_trip_effort_col,
        "conf_level": conf_level,
        "variance_method": variance_method,
        "n_replicates": n_replicates,
        "seed": seed,
        "design_diagnostics": design_diagnostics,
    }
    return RovingCPUEEstimator(design, config).estimate()
