"""
Generic design-based estimation engine.

Every estimator in pycreel reduces to one call of :func:`estimate`:
a weighted total, mean or combined ratio over a :class:`SurveyDesign`,
optionally by group, with linearized or replicate-weight variance and a
Wald (or bootstrap percentile) confidence interval.

Records whose response (or denominator) is null or not finite are outside
the estimation domain: they contribute zero to every sum but their day
stays in the unit roster for variance purposes.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable

import numpy as np
import polars as pl

from ..core.design import SurveyDesign, key_expr
from ..core.exceptions import (
    InvalidConfigError,
    NoReplicatesError,
    PyCreelWarning,
    VarianceUnavailable,
)
from .base import RESULT_COLUMNS, EstimationResult
from .constants import (
    CI_METHODS,
    DEFAULT_CONF_LEVEL,
    RESAMPLING_METHODS,
    STATISTICS,
    VARIANCE_METHODS,
)
from .design import build_replicate_design
from .utils import filter_group_columns, finite_expr, normalize_group_cols, require_columns
from .variance import (
    GROUP_COL,
    INFLUENCE_COL,
    calculate_linearized_variance,
    calculate_percentile_interval,
    calculate_replicate_variance,
    safe_sqrt,
    z_score,
)

logger = logging.getLogger(__name__)

_Y = "_Y"
_X = "_X"
_VALID = "_VALID"
_GKEY = "_GKEY"


def estimate(
    design: SurveyDesign,
    response: str,
    statistic: str = "total",
    by: str | Iterable[str] | None = None,
    denominator: str | None = None,
    method: str = "linearization",
    conf_level: float = DEFAULT_CONF_LEVEL,
    n_replicates: int | None = None,
    seed: int | None = None,
    calculate_deff: bool = True,
    ci_method: str = "wald",
    tag: str | None = None,
) -> EstimationResult:
    """
    Estimate a weighted total, mean or ratio with design-based variance.

    Parameters
    ----------
    design : SurveyDesign
        Design whose records hold ``response`` (and ``denominator``).
    response : str
        Numeric response column.
    statistic : {'total', 'mean', 'ratio'}, default 'total'
        'ratio' is the combined ratio Σw·y / Σw·x within each group, not
        an average of per-record ratios. 'mean' over a per-record ratio
        column gives the mean-of-ratios estimator.
    by : str or sequence of str, optional
        Grouping columns. Columns absent from the records are dropped with
        a warning; none gives a single aggregate row.
    denominator : str, optional
        Denominator column, required for 'ratio'.
    method : {'linearization', 'bootstrap', 'jackknife'}
        Variance method. Resampling methods use the design's replicate
        weights.
    conf_level : float, default 0.95
        Confidence level of the interval.
    n_replicates : int, optional
        Only used when a resampling method is requested for a design
        without replicate weights: build that many replicates for this
        call (jackknife makes one per unit regardless).
    seed : int, optional
        Seed for replicates built by this call.
    calculate_deff : bool, default True
        Compute the design effect against simple random sampling.
    ci_method : {'wald', 'percentile'}, default 'wald'
        'percentile' is available with bootstrap replicates only.
    tag : str, optional
        Method tag for the output. Defaults to ``"<statistic>:<response>"``.

    Returns
    -------
    EstimationResult
        One row per group with estimate, se, ci_low, ci_high, deff, n,
        method and variance.

    Raises
    ------
    MissingColumnError
        If ``response`` or ``denominator`` is absent.
    NoReplicatesError
        If a resampling method is requested without replicate weights and
        without ``n_replicates``.
    """
    if statistic not in STATISTICS:
        raise InvalidConfigError("statistic", statistic, STATISTICS)
    if method not in VARIANCE_METHODS:
        raise InvalidConfigError("variance method", method, VARIANCE_METHODS)
    if ci_method not in CI_METHODS:
        raise InvalidConfigError("ci_method", ci_method, CI_METHODS)
    if ci_method == "percentile" and method != "bootstrap":
        raise InvalidConfigError("ci_method", ci_method, ["wald"])
    z = z_score(conf_level)

    if statistic == "ratio" and denominator is None:
        raise ValueError("statistic='ratio' requires a denominator column")
    needed = [response] + ([denominator] if statistic == "ratio" else [])
    require_columns(design.data, needed, context="design records")

    group_cols = filter_group_columns(design.data, normalize_group_cols(by))
    tag = tag or f"{statistic}:{response}"

    if method in RESAMPLING_METHODS:
        design = _ensure_replicates(design, method, n_replicates, seed)

    records, n_invalid = _prepare_records(design, response, statistic, denominator)
    records = records.with_columns(key_expr(group_cols, _GKEY))
    groups = _index_groups(records, group_cols)
    records = records.join(
        groups.select([_GKEY, GROUP_COL]), on=_GKEY, how="left"
    ).with_columns(
        pl.when(pl.col(_VALID)).then(pl.col(GROUP_COL)).otherwise(None).alias(GROUP_COL)
    )
    in_domain = records.filter(pl.col(GROUP_COL).is_not_null())

    w = pl.col(design.weight_col)
    point = in_domain.group_by(GROUP_COL).agg(
        [
            (w * pl.col(_Y)).sum().alias("_YHAT"),
            (w * pl.col(_X)).sum().alias("_XHAT"),
            w.sum().alias("_WHAT"),
            pl.len().alias("n"),
        ]
    )
    point = groups.select(GROUP_COL).join(point, on=GROUP_COL, how="left").with_columns(
        [pl.col(c).fill_null(0.0) for c in ("_YHAT", "_XHAT", "_WHAT")]
        + [pl.col("n").fill_null(0).cast(pl.Int64)]
    )

    if statistic == "total":
        point = point.with_columns(pl.col("_YHAT").alias("estimate"))
    else:
        point = point.with_columns(
            pl.when(pl.col("_XHAT") != 0)
            .then(pl.col("_YHAT") / pl.col("_XHAT"))
            .otherwise(None)
            .alias("estimate")
        )

    if statistic == "total":
        z_expr = w * pl.col(_Y)
    else:
        z_expr = (
            w * (pl.col(_Y) - pl.col("estimate") * pl.col(_X)) / pl.col("_XHAT")
        )
    scored = in_domain.join(
        point.select([GROUP_COL, "estimate", "_XHAT"]), on=GROUP_COL, how="left"
    ).with_columns(z_expr.fill_null(0.0).fill_nan(0.0).alias(INFLUENCE_COL))

    diagnostics = {
        "statistic": statistic,
        "response": response,
        "denominator": denominator,
        "n_records": design.n_records,
        "n_invalid": n_invalid,
        "n_units": design.n_units,
        "n_strata": design.n_strata,
    }

    percentile = None
    if method == "linearization":
        var_table = calculate_linearized_variance(
            scored, design.units, groups, unit_col=design.unit_col
        )
        point = point.join(
            var_table.select([GROUP_COL, "variance", "n_singleton_strata"]),
            on=GROUP_COL,
            how="left",
        )
        diagnostics["n_singleton_strata"] = int(
            var_table["n_singleton_strata"].max() or 0
        )
    else:
        theta = _replicate_estimates(in_domain, design, statistic, groups.height)
        full = point.sort(GROUP_COL)["estimate"].fill_null(np.nan).to_numpy()
        reps = design.replicates
        variance = calculate_replicate_variance(
            theta, full, reps.scale, reps.rscales, reps.mse
        )
        point = point.sort(GROUP_COL).with_columns(
            pl.Series("variance", variance).fill_nan(None)
        )
        diagnostics.update(
            replicate_type=reps.type,
            n_replicates=reps.n_replicates,
        )
        if ci_method == "percentile":
            percentile = calculate_percentile_interval(theta, conf_level)

    # Variance of a non-estimable group is unavailable
    point = point.with_columns(
        pl.when(pl.col("estimate").is_null())
        .then(None)
        .otherwise(pl.col("variance"))
        .alias("variance")
    )
    point = point.with_columns(safe_sqrt(pl.col("variance"), None).alias("se"))

    if percentile is not None:
        point = point.sort(GROUP_COL).with_columns(
            pl.Series("ci_low", percentile[0]).fill_nan(None),
            pl.Series("ci_high", percentile[1]).fill_nan(None),
        )
    else:
        point = point.with_columns(
            (pl.col("estimate") - z * pl.col("se")).alias("ci_low"),
            (pl.col("estimate") + z * pl.col("se")).alias("ci_high"),
        )

    if calculate_deff:
        deff = _design_effect(scored, design.weight_col, statistic)
        point = point.join(deff, on=GROUP_COL, how="left").with_columns(
            safe_divide_null(pl.col("variance"), pl.col("_VSRS")).alias("deff")
        )
    else:
        point = point.with_columns(pl.lit(None, dtype=pl.Float64).alias("deff"))

    n_unavailable = point.filter(pl.col("se").is_null()).height
    if n_unavailable:
        warnings.warn(
            f"Variance unavailable for {n_unavailable} of {point.height} group(s) "
            f"estimating {statistic} of '{response}'; SE reported as null",
            VarianceUnavailable,
            stacklevel=2,
        )
        logger.debug("Variance unavailable for %d group(s)", n_unavailable)
    diagnostics["n_variance_unavailable"] = n_unavailable

    table = (
        groups.join(point, on=GROUP_COL, how="left")
        .with_columns(pl.lit(tag).alias("method"))
        .sort(GROUP_COL)
        .select(group_cols + RESULT_COLUMNS)
        .with_columns(
            [
                pl.col(c).cast(pl.Float64)
                for c in ("estimate", "se", "ci_low", "ci_high", "deff", "variance")
            ]
        )
    )

    logger.debug(
        "Estimated %s of '%s' for %d group(s) with %s variance",
        statistic,
        response,
        table.height,
        method,
    )
    return EstimationResult(
        table=table,
        method=tag,
        group_cols=group_cols,
        variance_method=method,
        conf_level=conf_level,
        diagnostics=diagnostics,
    )


def safe_divide_null(numerator: pl.Expr, denominator: pl.Expr) -> pl.Expr:
    """Division that is null when the denominator is zero or null."""
    return pl.when(denominator > 0).then(numerator / denominator).otherwise(None)


def _ensure_replicates(
    design: SurveyDesign, method: str, n_replicates: int | None, seed: int | None
) -> SurveyDesign:
    if design.replicates is None:
        if n_replicates is None:
            raise NoReplicatesError(method)
        logger.debug("Building %d %s replicates for this call", n_replicates, method)
        return build_replicate_design(design, method, n_replicates, seed)

    if design.replicates.type != method:
        warnings.warn(
            f"Requested {method} variance but the design carries "
            f"{design.replicates.type} replicate weights; using the attached replicates",
            PyCreelWarning,
            stacklevel=3,
        )
    if n_replicates is not None and n_replicates != design.replicates.n_replicates:
        logger.debug(
            "Ignoring n_replicates=%d; design has %d replicates",
            n_replicates,
            design.replicates.n_replicates,
        )
    return design


def _prepare_records(
    design: SurveyDesign, response: str, statistic: str, denominator: str | None
) -> tuple[pl.DataFrame, int]:
    """Attach strata, domain flag and the y/x columns used by every formula."""
    valid = finite_expr(response)
    if statistic == "ratio":
        valid = valid & finite_expr(denominator)

    records = design.records_with_strata().with_columns(valid.alias(_VALID))
    x_source = pl.col(denominator).cast(pl.Float64) if statistic == "ratio" else pl.lit(1.0)
    records = records.with_columns(
        pl.when(pl.col(_VALID)).then(pl.col(response).cast(pl.Float64)).otherwise(0.0).alias(_Y),
        pl.when(pl.col(_VALID)).then(x_source).otherwise(0.0).alias(_X),
    )
    n_invalid = records.height - int(records[_VALID].sum())
    if n_invalid:
        logger.debug(
            "%d record(s) with missing or non-finite values excluded from '%s'",
            n_invalid,
            response,
        )
    return records, n_invalid


def _index_groups(records: pl.DataFrame, group_cols: list[str]) -> pl.DataFrame:
    """One row per group present among in-domain records, with a sorted index."""
    if not group_cols:
        return pl.DataFrame({_GKEY: ["1"], GROUP_COL: [0]}, schema={_GKEY: pl.Utf8, GROUP_COL: pl.UInt32})

    groups = records.filter(pl.col(_VALID)).select(group_cols + [_GKEY]).unique(subset=_GKEY)
    if groups.height == 0:
        groups = records.select(group_cols + [_GKEY]).unique(subset=_GKEY)
    return groups.sort(group_cols, nulls_last=True).with_row_index(GROUP_COL)


def _replicate_estimates(
    records: pl.DataFrame, design: SurveyDesign, statistic: str, n_groups: int
) -> np.ndarray:
    """Estimate under every replicate weight: array of shape (n_groups, R)."""
    rep_cols = design.replicate_cols
    weights = records.select(rep_cols).to_numpy()
    gidx = records[GROUP_COL].cast(pl.Int64).to_numpy()
    y = records[_Y].to_numpy()
    x = records[_X].to_numpy()

    y_hat = np.zeros((n_groups, len(rep_cols)))
    np.add.at(y_hat, gidx, weights * y[:, None])
    if statistic == "total":
        return y_hat

    x_hat = np.zeros((n_groups, len(rep_cols)))
    np.add.at(x_hat, gidx, weights * x[:, None])
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(x_hat != 0, y_hat / x_hat, np.nan)


def _design_effect(scored: pl.DataFrame, weight_col: str, statistic: str) -> pl.DataFrame:
    """Simple-random-sampling variance per group, for the design effect."""
    w = pl.col(weight_col)
    if statistic == "total":
        resid = pl.col(_Y) - (w * pl.col(_Y)).sum().over(GROUP_COL) / w.sum().over(GROUP_COL)
    else:
        resid = pl.col(_Y) - pl.col("estimate") * pl.col(_X)

    stats = scored.with_columns(resid.alias("_E")).group_by(GROUP_COL).agg(
        [
            pl.len().alias("_N"),
            w.sum().alias("_W"),
            (w * pl.col("_E") ** 2).sum().alias("_SSE"),
            (w * pl.col(_X)).sum().alias("_XW"),
        ]
    )
    s2 = pl.col("_N") / (pl.col("_N") - 1) * pl.col("_SSE") / pl.col("_W")
    if statistic == "total":
        v_srs = pl.col("_W") ** 2 * s2 / pl.col("_N")
    else:
        xbar = pl.col("_XW") / pl.col("_W")
        v_srs = s2 / (pl.col("_N") * xbar**2)

    return stats.with_columns(
        pl.when((pl.col("_N") > 1) & (pl.col("_W") > 0))
        .then(v_srs)
        .otherwise(None)
        .alias("_VSRS")
    ).select([GROUP_COL, "_VSRS"])
