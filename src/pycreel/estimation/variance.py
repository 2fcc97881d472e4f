"""
Variance calculation functions for creel survey estimation.

This module provides the variance formulas shared by every estimator. All
of them work on the record table of a :class:`~pycreel.core.SurveyDesign`
after the engine has attached a group index and per-record influence
values.

Linearized (Taylor series) variance:
------------------------------------

Sampling units (survey days) are treated as PSUs drawn with replacement
within strata. For a statistic with influence values z_i:

    V = Σ_h n_h/(n_h - 1) × Σ_j (z_hj - z̄_h)²

Where:
- n_h = number of sampled units in stratum h (the full roster, not only
  units with records in the domain)
- z_hj = Σ_i∈j z_i, the unit total of the influence values
- z̄_h = mean of z_hj over the units of stratum h

Influence values:
- total:  z_i = w_i × y_i
- mean:   z_i = w_i × (y_i - R) / X̂         (x_i ≡ 1 in the domain)
- ratio:  z_i = w_i × (y_i - R × x_i) / X̂    (combined ratio R = Ŷ/X̂)

Strata with a single sampled unit contribute nothing; when no stratum has
two or more units the variance is not available.

Replicate variance:
-------------------

    V = scale × Σ_r rscale_r × (θ_r - c)²

Where θ_r is the estimate under replicate weight r and c is the mean of
the replicate estimates (or the full-sample estimate for MSE-style
replicates).

Design effect:
--------------

    deff = V / V_srs

- total:       V_srs = Ŵ² × s²_w(y) / n
- mean, ratio: V_srs = s²_w(e) / (n × x̄_w²), e_i = y_i - R × x_i

with Ŵ the sum of weights in the domain and s²_w the weighted variance
with the n/(n-1) correction.

Reference:
    Wolter, K. M. 2007. Introduction to Variance Estimation, 2nd ed.
    Springer. Chapters 1-2 (replication) and 6 (Taylor series).
    Pollock, K. H.; Jones, C. M.; Brown, T. L. 1994. Angler Survey
    Methods and Their Applications in Fisheries Management. American
    Fisheries Society Special Publication 25.
"""

from __future__ import annotations

import logging

import numpy as np
import polars as pl
from scipy import stats

from ..core.design import STRATUM_COL
from ..core.exceptions import InvalidConfigError

logger = logging.getLogger(__name__)

GROUP_COL = "_GROUP"
INFLUENCE_COL = "_Z"


def calculate_linearized_variance(
    records: pl.DataFrame,
    units: pl.DataFrame,
    groups: pl.DataFrame,
    unit_col: str,
    z_col: str = INFLUENCE_COL,
    group_col: str = GROUP_COL,
    stratum_col: str = STRATUM_COL,
) -> pl.DataFrame:
    """
    Calculate the stratified with-replacement PSU variance for every group.

    Every group is crossed with the complete unit roster before the
    stratum sums are taken, so units without records in a group enter
    the formula with a zero total.

    Parameters
    ----------
    records : pl.DataFrame
        Record-level data with ``group_col``, ``unit_col`` and ``z_col``.
        Records outside every group must already be removed.
    units : pl.DataFrame
        Sampling unit roster with ``unit_col`` and ``stratum_col``.
    groups : pl.DataFrame
        One row per group with ``group_col``.
    unit_col : str
        Sampling unit identifier column.
    z_col : str, default '_Z'
        Influence value column.
    group_col : str, default '_GROUP'
        Group index column.
    stratum_col : str, default '_STRATUM'
        Stratum key column in ``units``.

    Returns
    -------
    pl.DataFrame
        One row per group with columns:
        - variance: linearized variance (null when no stratum has 2+ units)
        - n_units: number of sampled units in the design
        - n_singleton_strata: strata that could not contribute
    """
    unit_totals = records.group_by([group_col, unit_col]).agg(
        pl.col(z_col).sum().alias("z_j")
    )

    expanded = (
        groups.select(group_col)
        .join(units.select([unit_col, stratum_col]), how="cross")
        .join(unit_totals, on=[group_col, unit_col], how="left")
        .with_columns(pl.col("z_j").fill_null(0.0).cast(pl.Float64))
    )

    strata_stats = expanded.group_by([group_col, stratum_col]).agg(
        [
            pl.len().alias("n_h"),
            ((pl.col("z_j") - pl.col("z_j").mean()) ** 2).sum().alias("ss_h"),
        ]
    )

    strata_stats = strata_stats.with_columns(
        pl.when(pl.col("n_h") > 1)
        .then(pl.col("n_h") / (pl.col("n_h") - 1) * pl.col("ss_h"))
        .otherwise(0.0)
        .alias("v_h")
    )

    variance_by_group = strata_stats.group_by(group_col).agg(
        [
            pl.sum("v_h").alias("variance"),
            pl.sum("n_h").alias("n_units"),
            (pl.col("n_h") > 1).sum().alias("n_variance_strata"),
            (pl.col("n_h") == 1).sum().alias("n_singleton_strata"),
        ]
    )

    # Clamp rounding noise and null out groups with no usable stratum
    variance_by_group = variance_by_group.with_columns(
        pl.when(pl.col("n_variance_strata") == 0)
        .then(None)
        .when(pl.col("variance") < 0)
        .then(0.0)
        .otherwise(pl.col("variance"))
        .alias("variance")
    )

    return variance_by_group.select(
        [group_col, "variance", "n_units", "n_singleton_strata"]
    ).sort(group_col)


def calculate_replicate_variance(
    replicate_estimates: np.ndarray,
    full_estimates: np.ndarray,
    scale: float,
    rscales: np.ndarray | tuple[float, ...],
    mse: bool = False,
) -> np.ndarray:
    """
    Calculate replicate-weight variance for one or more groups.

    Parameters
    ----------
    replicate_estimates : np.ndarray
        Array of shape (n_groups, n_replicates) with the estimate under
        each replicate weight.
    full_estimates : np.ndarray
        Full-sample estimates, shape (n_groups,).
    scale : float
        Overall variance scale factor.
    rscales : array-like
        Per-replicate scale factors, length n_replicates.
    mse : bool, default False
        Center on the full-sample estimate instead of the replicate mean.

    Returns
    -------
    np.ndarray
        Variance per group. NaN where any replicate estimate is not finite.
    """
    theta = np.atleast_2d(np.asarray(replicate_estimates, dtype=float))
    full = np.asarray(full_estimates, dtype=float).reshape(-1)
    rscales = np.asarray(rscales, dtype=float)

    if mse:
        center = full[:, None]
    else:
        center = theta.mean(axis=1, keepdims=True)

    variance = scale * ((theta - center) ** 2 * rscales[None, :]).sum(axis=1)
    variance = np.where(np.isfinite(theta).all(axis=1), variance, np.nan)
    return np.maximum(variance, 0.0)


def calculate_percentile_interval(
    replicate_estimates: np.ndarray, conf_level: float = 0.95
) -> tuple[np.ndarray, np.ndarray]:
    """Percentile bootstrap interval per group from replicate estimates."""
    alpha = 1.0 - conf_level
    theta = np.atleast_2d(np.asarray(replicate_estimates, dtype=float))
    lower = np.quantile(theta, alpha / 2, axis=1)
    upper = np.quantile(theta, 1 - alpha / 2, axis=1)
    return lower, upper


def z_score(conf_level: float = 0.95) -> float:
    """
    Two-sided normal quantile for a confidence level.

    Parameters
    ----------
    conf_level : float
        Confidence level in (0, 1).

    Returns
    -------
    float
        z_(1 - α/2) with α = 1 - conf_level.
    """
    if not 0 < conf_level < 1:
        raise InvalidConfigError("conf_level", conf_level, ["a number in (0, 1)"])
    return float(stats.norm.ppf(1 - (1 - conf_level) / 2))


def safe_divide(
    numerator: pl.Expr, denominator: pl.Expr, default: float | None = 0.0
) -> pl.Expr:
    """
    Safe division that handles zero denominators.

    Parameters
    ----------
    numerator : pl.Expr
        Numerator expression
    denominator : pl.Expr
        Denominator expression
    default : float or None
        Value when the denominator is zero

    Returns
    -------
    pl.Expr
        Safe division expression
    """
    return pl.when(denominator != 0).then(numerator / denominator).otherwise(default)


def safe_sqrt(expr: pl.Expr, default: float | None = 0.0) -> pl.Expr:
    """
    Safe square root that handles negative values.

    Null inputs stay null.

    Parameters
    ----------
    expr : pl.Expr
        Expression to take square root of
    default : float or None
        Default value for negative inputs

    Returns
    -------
    pl.Expr
        Safe square root expression
    """
    return (
        pl.when(expr.is_null())
        .then(None)
        .when(expr >= 0)
        .then(expr.sqrt())
        .otherwise(default)
    )


def calculate_confidence_interval(
    estimate: float, se: float | None, conf_level: float = 0.95
) -> tuple[float | None, float | None]:
    """
    Calculate confidence interval using normal approximation.

    Parameters
    ----------
    estimate : float
        Point estimate
    se : float or None
        Standard error. None gives an unavailable interval.
    conf_level : float
        Confidence level (default 0.95 for 95% CI)

    Returns
    -------
    tuple
        Lower and upper bounds of confidence interval
    """
    if se is None or estimate is None or np.isnan(se):
        return None, None
    z = z_score(conf_level)
    return estimate - z * se, estimate + z * se


def calculate_cv(estimate: float, se: float) -> float:
    """
    Calculate coefficient of variation as percentage.

    Parameters
    ----------
    estimate : float
        Point estimate
    se : float
        Standard error

    Returns
    -------
    float
        Coefficient of variation as percentage
    """
    if estimate != 0:
        return 100 * se / abs(estimate)
    return 0.0
