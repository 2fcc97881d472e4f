"""
Total harvest as the product of effort and CPUE estimates.

    H = E × C
    Var(H) = E²·Var(C) + C²·Var(E) + 2·E·C·ρ·SE(E)·SE(C)

The delta-method variance treats the two inputs as independent unless a
correlation ρ is supplied.
"""

from __future__ import annotations

import logging
import numbers
import warnings

import polars as pl

from ...core.exceptions import (
    EmptyAfterFilterError,
    InvalidConfigError,
    PyCreelWarning,
)
from ..base import RESULT_COLUMNS, EstimationResult
from ..constants import DEFAULT_CONF_LEVEL, DEFAULT_CPUE_RESPONSE
from ..utils import normalize_group_cols, require_columns
from ..variance import safe_sqrt, z_score

logger = logging.getLogger(__name__)


def _as_table(estimate: EstimationResult | pl.DataFrame, name: str) -> pl.DataFrame:
    if isinstance(estimate, EstimationResult):
        table = estimate.table
    elif isinstance(estimate, pl.DataFrame):
        table = estimate
    else:
        raise TypeError(
            f"{name} must be an EstimationResult or polars DataFrame, "
            f"got {type(estimate).__name__}"
        )
    require_columns(table, ["estimate", "se"], context=name)
    if "n" not in table.columns:
        table = table.with_columns(pl.lit(None, dtype=pl.Int64).alias("n"))
    return table


def _extra_group_cols(estimate: EstimationResult | pl.DataFrame, by: list[str]) -> list[str]:
    """Grouping columns of the CPUE input beyond ``by`` (e.g. species)."""
    if isinstance(estimate, EstimationResult):
        candidates = estimate.group_cols
    else:
        candidates = [c for c in estimate.columns if c not in RESULT_COLUMNS]
    return [c for c in candidates if c not in by and c != "diagnostics"]


def _validate_correlation(correlation: float | None) -> float:
    if correlation is None:
        return 0.0
    if isinstance(correlation, bool) or not isinstance(correlation, numbers.Real):
        raise InvalidConfigError("correlation", correlation, ("None", "a number in [-1, 1]"))
    if not -1.0 <= correlation <= 1.0:
        raise InvalidConfigError("correlation", correlation, ("a number in [-1, 1]",))
    return float(correlation)


def _infer_response(cpue: EstimationResult | pl.DataFrame) -> str:
    if isinstance(cpue, EstimationResult) and ":" in cpue.method:
        return cpue.method.split(":", 1)[1]
    return DEFAULT_CPUE_RESPONSE


def est_total_harvest(
    effort: EstimationResult | pl.DataFrame,
    cpue: EstimationResult | pl.DataFrame,
    by: str | list[str] | None = None,
    correlation: float | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    response: str | None = None,
) -> EstimationResult:
    """
    Estimate total harvest from effort and CPUE estimates.

    Parameters
    ----------
    effort : EstimationResult or pl.DataFrame
        Effort estimates with ``estimate``, ``se`` and optionally ``n``.
    cpue : EstimationResult or pl.DataFrame
        CPUE estimates in matching units (catch per angler-hour). Grouping
        columns beyond ``by`` (e.g. species) are kept in the output.
    by : str or list of str, optional
        Columns to join the two inputs on. Without ``by`` both inputs
        must have exactly one row.
    correlation : float, optional
        Correlation between the effort and CPUE estimates, in [-1, 1].
        None treats them as independent.
    conf_level : float, default 0.95
        Confidence level for the Wald interval.
    response : str, optional
        Catch type for the method tag. Inferred from the CPUE method tag
        when omitted.

    Returns
    -------
    EstimationResult
        Method tag ``product:<response>:independent`` or
        ``product:<response>:correlated``. ``n`` is the smaller of the two
        input sample sizes. Variance components are stored under
        ``diagnostics['components']``.

    Raises
    ------
    MissingColumnError
        If a ``by`` column is absent from either input.
    EmptyAfterFilterError
        If no groups match between the inputs.
    InvalidConfigError
        If ``correlation`` is not a number in [-1, 1].

    Examples
    --------
    >>> effort = est_effort_aerial(counts, design=day_design, by="location")
    >>> cpue = est_cpue(interview_design, by="location", mode="ratio_of_means")
    >>> est_total_harvest(effort, cpue, by="location").table
    """
    rho = _validate_correlation(correlation)
    response = response or _infer_response(cpue)
    by = normalize_group_cols(by)
    effort_table = _as_table(effort, "effort")
    cpue_table = _as_table(cpue, "cpue")
    z = z_score(conf_level)

    value_cols = ["estimate", "se", "n"]
    if by:
        require_columns(effort_table, by, context="effort", hint="Check that by matches both inputs")
        require_columns(cpue_table, by, context="cpue", hint="Check that by matches both inputs")
        extra = _extra_group_cols(cpue, by)
        joined = (
            effort_table.select(by + value_cols)
            .rename({c: f"{c}_effort" for c in value_cols})
            .join(
                cpue_table.select(by + extra + value_cols).rename(
                    {c: f"{c}_cpue" for c in value_cols}
                ),
                on=by,
                how="inner",
            )
        )
        if joined.height == 0:
            raise EmptyAfterFilterError(
                f"No matching groups between effort and cpue on {', '.join(by)}. "
                "Check that the grouping values agree"
            )
        matched = joined.select(by).unique().height
        if matched < effort_table.height or matched < cpue_table.select(by).unique().height:
            warnings.warn(
                f"Not all groups matched between effort ({effort_table.height} groups) and "
                f"cpue ({cpue_table.height} rows); only {matched} matched groups are reported",
                PyCreelWarning,
                stacklevel=2,
            )
        group_cols = by + extra
    else:
        if effort_table.height != 1 or cpue_table.height != 1:
            raise ValueError(
                "Without by, both inputs must have exactly one row "
                f"(effort: {effort_table.height}, cpue: {cpue_table.height}). "
                "Specify by or pass ungrouped estimates"
            )
        joined = pl.concat(
            [
                effort_table.select(value_cols).rename({c: f"{c}_effort" for c in value_cols}),
                cpue_table.select(value_cols).rename({c: f"{c}_cpue" for c in value_cols}),
            ],
            how="horizontal",
        )
        group_cols = []

    e, c = pl.col("estimate_effort"), pl.col("estimate_cpue")
    se_e, se_c = pl.col("se_effort"), pl.col("se_cpue")
    components = joined.with_columns(
        (c**2 * se_e**2).alias("var_from_effort"),
        (e**2 * se_c**2).alias("var_from_cpue"),
        (2 * e * c * rho * se_e * se_c).alias("covariance_term"),
    )
    table = (
        components.with_columns(
            (e * c).alias("estimate"),
            (
                pl.col("var_from_effort") + pl.col("var_from_cpue") + pl.col("covariance_term")
            ).alias("variance"),
            pl.min_horizontal("n_effort", "n_cpue").cast(pl.Int64).alias("n"),
        )
        .with_columns(safe_sqrt(pl.col("variance"), None).alias("se"))
        .with_columns(
            (pl.col("estimate") - z * pl.col("se")).alias("ci_low"),
            (pl.col("estimate") + z * pl.col("se")).alias("ci_high"),
            pl.lit(None, dtype=pl.Float64).alias("deff"),
        )
    )

    label = "correlated" if rho != 0.0 else "independent"
    method = f"product:{response}:{label}"
    table = table.with_columns(pl.lit(method).alias("method"))
    if group_cols:
        table = table.sort(group_cols, nulls_last=True)
        components = components.sort(group_cols, nulls_last=True)

    logger.debug("Product harvest estimate for %d group(s), rho=%s", table.height, rho)
    return EstimationResult(
        table=table.select(group_cols + RESULT_COLUMNS),
        method=method,
        group_cols=group_cols,
        variance_method="delta",
        conf_level=conf_level,
        diagnostics={
            "correlation": rho,
            "components": components.select(
                group_cols
                + [
                    "estimate_effort",
                    "se_effort",
                    "estimate_cpue",
                    "se_cpue",
                    "var_from_effort",
                    "var_from_cpue",
                    "covariance_term",
                ]
            ),
        },
    )
