"""
Catch-per-unit-effort estimation.

Two estimators are available:

- ratio-of-means: R = Σ w·catch / Σ w·effort (combined ratio), robust for
  incomplete trips once very short trips are truncated;
- mean-of-ratios: the weighted mean of per-trip catch/effort, suited to
  complete trips.

In ``mode='auto'`` the interviews are classified by trip completeness and
routed to the estimator that fits them:

    all complete    -> mean-of-ratios
    all incomplete  -> truncate trips shorter than min_trip_hours, then
                       ratio-of-means
    mixed           -> both, on the complete and incomplete subsets, then
                       an effort-weighted combination

The combination weights each subset by its summed raw effort hours
(w_c = E_c / (E_c + E_i)) and takes the delta-method variance
w_c²·Var(R_c) + w_i²·Var(R_i), treating the subsets as independent.
"""

from __future__ import annotations

import logging
import math
import warnings
from enum import Enum

import polars as pl

from ...core.design import CreelData, SurveyDesign
from ...core.exceptions import (
    ApproximationWarning,
    EmptyAfterFilterError,
    InvalidConfigError,
    NoCompletenessFieldError,
    PyCreelWarning,
)
from ..base import RESULT_COLUMNS, BaseEstimator, EstimationResult, HybridDiagnostics
from ..constants import (
    COMPLETE_VALUES,
    CPUE_MODES,
    DEFAULT_COMPLETENESS_COL,
    DEFAULT_CONF_LEVEL,
    DEFAULT_CPUE_RESPONSE,
    DEFAULT_EFFORT_COL,
    DEFAULT_MIN_TRIP_HOURS,
    INCOMPLETE_VALUES,
)
from ..engine import estimate
from ..utils import require_columns
from ..variance import calculate_confidence_interval

logger = logging.getLogger(__name__)

CPUE_COL = "_CPUE"
COMPLETE_COL = "_COMPLETE"


class TripCompleteness(str, Enum):
    COMPLETE = "complete"
    INCOMPLETE = "incomplete"
    UNKNOWN = "unknown"

    @classmethod
    def from_flag(cls, flag: bool | None) -> TripCompleteness:
        if flag is None:
            return cls.UNKNOWN
        return cls.COMPLETE if flag else cls.INCOMPLETE


class RoutingState(str, Enum):
    """States of the auto-mode router."""

    ALL_COMPLETE = "all_complete"
    ALL_INCOMPLETE = "all_incomplete"
    MIXED = "mixed"


def classify_trips(data: pl.DataFrame, column: str = DEFAULT_COMPLETENESS_COL) -> pl.Series:
    """
    Classify interviews as complete (True), incomplete (False) or unknown (null).

    Accepts boolean flags, numeric 0/1 codes and text labels such as
    'yes'/'no', 'true'/'false' or 'complete'/'incomplete' (case and
    surrounding whitespace ignored). Any other value is unknown.

    Parameters
    ----------
    data : pl.DataFrame
        Interview records.
    column : str, default 'trip_complete'
        Trip-completeness column.

    Returns
    -------
    pl.Series
        Boolean series named '_COMPLETE' with nulls for unknown trips.
    """
    if column not in data.columns:
        raise NoCompletenessFieldError(column)

    dtype = data.schema[column]
    col = pl.col(column)
    if dtype == pl.Boolean:
        expr = col
    elif dtype.is_numeric():
        expr = pl.when(col == 1).then(True).when(col == 0).then(False).otherwise(None)
    elif dtype in (pl.Utf8, pl.Categorical, pl.Enum):
        text = col.cast(pl.Utf8).str.strip_chars().str.to_lowercase()
        expr = (
            pl.when(text.is_in(list(COMPLETE_VALUES)))
            .then(True)
            .when(text.is_in(list(INCOMPLETE_VALUES)))
            .then(False)
            .otherwise(None)
        )
    else:
        expr = pl.lit(None, dtype=pl.Boolean)

    return data.select(expr.cast(pl.Boolean).alias(COMPLETE_COL)).to_series()


def combine_hybrid(
    cpue_complete: float,
    se_complete: float | None,
    effort_complete: float,
    cpue_incomplete: float,
    se_incomplete: float | None,
    effort_incomplete: float,
) -> tuple[float, float | None, float, float]:
    """
    Effort-weighted combination of complete and incomplete trip CPUE.

    Parameters
    ----------
    cpue_complete, se_complete : float
        Mean-of-ratios estimate and SE for complete trips.
    effort_complete : float
        Summed raw effort hours of the complete trips.
    cpue_incomplete, se_incomplete : float
        Ratio-of-means estimate and SE for incomplete trips.
    effort_incomplete : float
        Summed raw effort hours of the incomplete trips used.

    Returns
    -------
    tuple
        (estimate, se, weight_complete, weight_incomplete). The SE is None
        when either component SE is unavailable.

    Examples
    --------
    >>> est, se, w_c, w_i = combine_hybrid(2.0, 0.1, 100, 3.0, 0.2, 50)
    >>> round(est, 4), round(se, 4)
    (2.3333, 0.0943)
    """
    effort_total = effort_complete + effort_incomplete
    if effort_total <= 0:
        raise EmptyAfterFilterError(
            "Cannot weight hybrid CPUE components: total effort of complete and "
            "incomplete trips is zero"
        )
    w_complete = effort_complete / effort_total
    w_incomplete = 1.0 - w_complete

    combined = cpue_complete * w_complete + cpue_incomplete * w_incomplete
    if se_complete is None or se_incomplete is None:
        return combined, None, w_complete, w_incomplete

    se = math.sqrt(w_complete**2 * se_complete**2 + w_incomplete**2 * se_incomplete**2)
    return combined, se, w_complete, w_incomplete


class CPUEEstimator(BaseEstimator):
    """
    Catch-per-unit-effort estimator with an auto-mode router.

    Parameters
    ----------
    source : SurveyDesign or CreelData
        Interview-level design.
    config : dict
        Keys: ``response`` (default 'catch_total'), ``effort_col``
        (default 'hours_fished'), ``mode`` ('auto', 'ratio_of_means',
        'mean_of_ratios'), ``min_trip_hours`` (default 0.5),
        ``completeness_col`` (default 'trip_complete'), ``by``,
        ``conf_level``, ``variance_method``, ``n_replicates``, ``seed``,
        ``design_diagnostics``.
    """

    def __init__(self, source: SurveyDesign | CreelData, config: dict):
        super().__init__(source, config)
        self.response = config.get("response", DEFAULT_CPUE_RESPONSE)
        self.effort_col = config.get("effort_col", DEFAULT_EFFORT_COL)
        self.mode = config.get("mode", "auto")
        self.min_trip_hours = config.get("min_trip_hours", DEFAULT_MIN_TRIP_HOURS)
        self.completeness_col = config.get("completeness_col", DEFAULT_COMPLETENESS_COL)
        if self.mode not in CPUE_MODES:
            raise InvalidConfigError("mode", self.mode, CPUE_MODES)

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        require_columns(
            design.data,
            [self.response, self.effort_col],
            context="interviews",
            hint="Pass response= and effort_col= to name the catch and effort columns",
        )

        effort = pl.col(self.effort_col)
        n_bad = design.data.select(((effort <= 0) | effort.is_null()).sum()).item()
        if n_bad:
            warnings.warn(
                f"{n_bad} interview(s) have zero, negative or missing '{self.effort_col}'; "
                "their per-trip CPUE is undefined and is excluded from mean-of-ratios",
                PyCreelWarning,
                stacklevel=4,
            )

        cpue = pl.col(self.response).cast(pl.Float64) / effort.cast(pl.Float64)
        return design.with_data(
            design.data.with_columns(
                pl.when(cpue.is_finite()).then(cpue).otherwise(None).alias(CPUE_COL)
            )
        )

    def compute(self, design: SurveyDesign) -> EstimationResult:
        if self.mode == "ratio_of_means":
            return self.ratio_of_means(design, self.group_cols)
        if self.mode == "mean_of_ratios":
            return self.mean_of_ratios(design, self.group_cols)
        return self.route(design)

    def ratio_of_means(self, design: SurveyDesign, by: list[str]) -> EstimationResult:
        return estimate(
            design,
            self.response,
            statistic="ratio",
            by=by,
            denominator=self.effort_col,
            tag=f"cpue_ratio_of_means:{self.response}",
            **self.engine_options(),
        )

    def mean_of_ratios(self, design: SurveyDesign, by: list[str]) -> EstimationResult:
        return estimate(
            design,
            CPUE_COL,
            statistic="mean",
            by=by,
            tag=f"cpue_mean_of_ratios:{self.response}",
            **self.engine_options(),
        )

    def truncate(self, design: SurveyDesign) -> tuple[SurveyDesign, int]:
        """Drop trips with effort below ``min_trip_hours``; records with missing effort stay."""
        short = pl.col(self.effort_col) < self.min_trip_hours
        n_truncated = design.data.select(short.fill_null(False).sum()).item()
        if n_truncated:
            logger.info(
                "Truncating %d incomplete trip(s) shorter than %s hours",
                n_truncated,
                self.min_trip_hours,
            )
        return design.subset(~short.fill_null(False)), int(n_truncated)

    def route(self, design: SurveyDesign) -> EstimationResult:
        """Classify trips, pick the estimator and run it."""
        flags = classify_trips(design.data, self.completeness_col)
        design = design.with_data(design.data.with_columns(flags))

        n_unknown = flags.null_count()
        if n_unknown:
            warnings.warn(
                f"{n_unknown} interview(s) with unknown '{self.completeness_col}' excluded",
                PyCreelWarning,
                stacklevel=4,
            )
        known = design.subset(pl.col(COMPLETE_COL).is_not_null())
        n_total = known.n_records
        if n_total == 0:
            raise EmptyAfterFilterError(
                f"No interviews left after excluding unknown '{self.completeness_col}' values"
            )

        n_complete = int(known.data[COMPLETE_COL].sum())
        n_incomplete = n_total - n_complete
        routing = {
            "n_input": design.n_records,
            "n_unknown": n_unknown,
            "n_complete": n_complete,
            "n_incomplete": n_incomplete,
            "pct_complete": round(100 * n_complete / n_total, 1),
            "pct_incomplete": round(100 * n_incomplete / n_total, 1),
            "min_trip_hours": self.min_trip_hours,
            "counts": {
                TripCompleteness.from_flag(flag).value: count
                for flag, count in ((True, n_complete), (False, n_incomplete), (None, n_unknown))
            },
        }

        if n_incomplete == 0:
            routing.update(state=RoutingState.ALL_COMPLETE.value, method="mean_of_ratios")
            self._log_routing(routing)
            result = self.mean_of_ratios(known, self.group_cols)
            return result.relabel(result.method, routing=routing)

        if n_complete == 0:
            truncated, n_truncated = self.truncate(known)
            routing.update(
                state=RoutingState.ALL_INCOMPLETE.value,
                method="ratio_of_means",
                n_truncated=n_truncated,
            )
            self._log_routing(routing)
            if truncated.n_records == 0:
                raise EmptyAfterFilterError(
                    f"All {n_incomplete} incomplete trips are shorter than "
                    f"min_trip_hours={self.min_trip_hours}"
                )
            result = self.ratio_of_means(truncated, self.group_cols)
            return result.relabel(result.method, routing=routing)

        routing.update(state=RoutingState.MIXED.value, method="hybrid")
        return self.hybrid(known, routing)

    def hybrid(self, design: SurveyDesign, routing: dict) -> EstimationResult:
        """Effort-weighted combination of the complete and incomplete subsets."""
        if self.group_cols:
            warnings.warn(
                "Grouping is not supported in hybrid CPUE mode; returning the overall "
                f"estimate and ignoring by={self.group_cols}",
                ApproximationWarning,
                stacklevel=4,
            )
            routing["ignored_by"] = list(self.group_cols)

        complete = design.subset(pl.col(COMPLETE_COL))
        incomplete, n_truncated = self.truncate(design.subset(~pl.col(COMPLETE_COL)))
        routing["n_truncated"] = n_truncated
        self._log_routing(routing)

        result_complete = self.mean_of_ratios(complete, [])
        if incomplete.n_records == 0:
            warnings.warn(
                "Every incomplete trip was truncated; using complete trips only",
                ApproximationWarning,
                stacklevel=4,
            )
            routing.update(method="mean_of_ratios", fallback="complete_only")
            return result_complete.relabel(result_complete.method, routing=routing)
        result_incomplete = self.ratio_of_means(incomplete, [])

        effort_complete = _effort_sum(complete, self.effort_col)
        effort_incomplete = _effort_sum(incomplete, self.effort_col)
        r_c, se_c = result_complete.estimate, result_complete.se
        r_i, se_i = result_incomplete.estimate, result_incomplete.se
        if r_c is None or r_i is None:
            raise EmptyAfterFilterError(
                "Hybrid CPUE needs an estimable CPUE for both complete and incomplete trips"
            )
        combined, se, w_c, w_i = combine_hybrid(
            r_c, se_c, effort_complete, r_i, se_i, effort_incomplete
        )
        ci_low, ci_high = calculate_confidence_interval(combined, se, self.conf_level)

        hybrid = HybridDiagnostics(
            cpue_complete=r_c,
            cpue_incomplete=r_i,
            se_complete=se_c,
            se_incomplete=se_i,
            effort_complete=effort_complete,
            effort_incomplete=effort_incomplete,
            weight_complete=w_c,
            weight_incomplete=w_i,
            n_complete=complete.n_records,
            n_incomplete=incomplete.n_records,
            n_truncated=n_truncated,
        )
        logger.info(
            "Hybrid CPUE: complete %.3f (w=%.3f), incomplete %.3f (w=%.3f), combined %.3f",
            r_c,
            w_c,
            r_i,
            w_i,
            combined,
        )

        method = f"cpue_hybrid:{self.response}"
        table = pl.DataFrame(
            {
                "estimate": [combined],
                "se": [se],
                "ci_low": [ci_low],
                "ci_high": [ci_high],
                "deff": [None],
                "n": [complete.n_records + incomplete.n_records],
                "method": [method],
                "variance": [None if se is None else se**2],
            },
            schema={
                "estimate": pl.Float64,
                "se": pl.Float64,
                "ci_low": pl.Float64,
                "ci_high": pl.Float64,
                "deff": pl.Float64,
                "n": pl.Int64,
                "method": pl.Utf8,
                "variance": pl.Float64,
            },
        ).select(RESULT_COLUMNS)

        return EstimationResult(
            table=table,
            method=method,
            group_cols=[],
            variance_method=self.variance_method,
            conf_level=self.conf_level,
            diagnostics={"routing": routing, "hybrid": hybrid},
        )

    @staticmethod
    def _log_routing(routing: dict) -> None:
        logger.info(
            "Auto CPUE routing: %s (%d complete %.1f%%, %d incomplete %.1f%%, "
            "%d unknown excluded, %d truncated) -> %s",
            routing["state"],
            routing["n_complete"],
            routing["pct_complete"],
            routing["n_incomplete"],
            routing["pct_incomplete"],
            routing["n_unknown"],
            routing.get("n_truncated", 0),
            routing["method"],
        )


def _effort_sum(design: SurveyDesign, effort_col: str) -> float:
    """Raw (unweighted) effort hours of a subset, ignoring missing values."""
    effort = pl.col(effort_col).cast(pl.Float64)
    return float(design.data.select(effort.filter(effort.is_finite()).sum()).item())


def est_cpue(
    design: SurveyDesign | CreelData,
    by: str | list[str] | None = None,
    response: str = DEFAULT_CPUE_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    mode: str = "auto",
    min_trip_hours: float = DEFAULT_MIN_TRIP_HOURS,
    completeness_col: str = DEFAULT_COMPLETENESS_COL,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
) -> EstimationResult:
    """
    Estimate catch per unit effort from interview data.

    Parameters
    ----------
    design : SurveyDesign or CreelData
        Interview-level design, e.g. from :func:`attach_group_design`.
    by : str or list of str, optional
        Grouping columns. Not supported in the hybrid (mixed) auto route.
    response : str, default 'catch_total'
        Catch column (e.g. 'catch_total', 'catch_kept', 'weight_total').
    effort_col : str, default 'hours_fished'
        Effort column in hours.
    mode : {'auto', 'ratio_of_means', 'mean_of_ratios'}, default 'auto'
        Estimator choice. 'auto' routes on trip completeness.
    min_trip_hours : float, default 0.5
        Incomplete trips shorter than this are truncated in auto mode.
    completeness_col : str, default 'trip_complete'
        Trip completeness flag used by auto mode.
    conf_level : float, default 0.95
        Confidence level.
    variance_method : {'linearization', 'bootstrap', 'jackknife'}
        Variance method.
    n_replicates : int, optional
        Replicates to build when the design has none and a resampling
        method is requested.
    seed : int, optional
        Seed for replicate construction.
    design_diagnostics : bool, default False
        Add a design summary under ``diagnostics['design']``.

    Returns
    -------
    EstimationResult
        Method tag ``cpue_ratio_of_means:<response>``,
        ``cpue_mean_of_ratios:<response>`` or ``cpue_hybrid:<response>``.
        Auto mode stores its routing decision under
        ``diagnostics['routing']`` and hybrid components under
        ``diagnostics['hybrid']``.

    Examples
    --------
    >>> result = est_cpue(design, mode="auto")
    >>> result.table.select("estimate", "se", "method")
    """
    config = {
        "by": by,
        "response": response,
        "effort_col": effort_col,
        "mode": mode,
        "min_trip_hours": min_trip_hours,
        "completeness_col": completeness_col,
        "conf_level": conf_level,
        "variance_method": variance_method,
        "n_replicates": n_replicates,
        "seed": seed,
        "design_diagnostics": design_diagnostics,
    }
    return CPUEEstimator(design, config).estimate()
