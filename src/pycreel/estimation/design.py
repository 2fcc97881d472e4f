"""
Design construction for creel surveys.

The day-level design comes from the survey calendar: each sampled day is a
sampling unit whose weight is the stratum's planned sample divided by its
realised sample. Finer aggregates (day x location, day x species, ...) are
then attached to that design by day id, inheriting the day's weight, strata
and replicate weights. Every join is keyed by the day id, never by row
position, and any row that cannot be resolved is an error.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import replace
from typing import Any

import numpy as np
import polars as pl

from ..core.design import (
    REPLICATE_TYPES,
    STRATUM_COL,
    WEIGHT_COL,
    ReplicateWeights,
    SurveyDesign,
    key_expr,
    replicate_column_names,
)
from ..core.exceptions import (
    EmptyDesignError,
    InvalidConfigError,
    NoReplicatesError,
    WeightAlignmentError,
)
from .calibration import CALIBRATION_FUNCTIONS, calibrate_weights
from .constants import (
    DEFAULT_DAY_ID,
    DEFAULT_FREQ_COL,
    DEFAULT_N_REPLICATES,
    DEFAULT_STRATA_VARS,
    RESAMPLING_METHODS,
    SMALL_STRATUM_SIZE,
)
from .utils import filter_group_columns, normalize_group_cols, require_columns
from .variance import safe_divide

logger = logging.getLogger(__name__)

INTERCEPT = "intercept"


def build_day_design(
    calendar: pl.DataFrame,
    day_id: str = DEFAULT_DAY_ID,
    strata_vars: Sequence[str] | str | None = DEFAULT_STRATA_VARS,
) -> SurveyDesign:
    """
    Build the day-level design from the survey calendar.

    Parameters
    ----------
    calendar : pl.DataFrame
        One row per calendar day with ``day_id``, ``target_sample`` and
        ``actual_sample``, plus optional strata columns.
    day_id : str, default 'date'
        Day identifier column.
    strata_vars : sequence of str, optional
        Strata columns. Columns absent from the calendar are dropped with
        a warning; none at all means one stratum for the whole calendar.

    Returns
    -------
    SurveyDesign
        Design with one record per sampled day and weight
        Σ target_sample / max(Σ actual_sample, 1) within each stratum.

    Raises
    ------
    MissingColumnError
        If a required calendar column is absent.
    EmptyDesignError
        If no day has ``actual_sample > 0``.
    """
    require_columns(calendar, [day_id, "target_sample", "actual_sample"], context="calendar")

    sampled = calendar.filter(pl.col("actual_sample") > 0)
    if sampled.height == 0:
        raise EmptyDesignError(
            "No sampled days in calendar: every row has actual_sample <= 0"
        )

    duplicated = sampled.filter(pl.col(day_id).is_duplicated())
    if duplicated.height > 0:
        raise ValueError(
            f"Calendar has duplicate '{day_id}' values: "
            f"{', '.join(map(str, duplicated[day_id].unique().to_list()[:10]))}"
        )

    strata = filter_group_columns(sampled, normalize_group_cols(strata_vars), context="strata")

    sums = [
        pl.col("target_sample").sum(),
        pl.col("actual_sample").sum(),
    ]
    if strata:
        stratum_sums = sampled.group_by(strata).agg(sums)
        # Null-safe join on strata
        sampled = sampled.with_columns(key_expr(strata, "_SKEY")).join(
            stratum_sums.with_columns(key_expr(strata, "_SKEY")).select(
                ["_SKEY", pl.col("target_sample").alias("_TGT"), pl.col("actual_sample").alias("_ACT")]
            ),
            on="_SKEY",
            how="left",
        ).drop("_SKEY")
    else:
        totals = sampled.select(sums).row(0)
        sampled = sampled.with_columns(
            pl.lit(totals[0]).alias("_TGT"), pl.lit(totals[1]).alias("_ACT")
        )

    data = sampled.with_columns(
        (
            pl.col("_TGT").cast(pl.Float64)
            / pl.max_horizontal(pl.col("_ACT").cast(pl.Float64), pl.lit(1.0))
        ).alias(WEIGHT_COL)
    ).drop(["_TGT", "_ACT"])

    design = SurveyDesign(data=data, unit_col=day_id, strata_cols=tuple(strata))
    logger.debug(
        "Built day design: %d sampled days in %d strata (%s)",
        design.n_units,
        design.n_strata,
        ", ".join(strata) or "unstratified",
    )
    return design


def attach_group_design(
    design: SurveyDesign,
    aggregate: pl.DataFrame,
    day_id: str | None = None,
    post_strata: str | None = None,
    population: pl.DataFrame | None = None,
    freq_col: str = DEFAULT_FREQ_COL,
    calibration_totals: Mapping[str, float] | None = None,
    calfun: str = "linear",
    bounds: tuple[float, float] | None = None,
) -> SurveyDesign:
    """
    Attach a day x group aggregate to a day-level design.

    Each aggregate row receives its day's weight, strata and replicate
    weights through an exact match on ``day_id``. Replicate columns are
    duplicated across all group rows of the same day, so resampling
    variance keeps the within-day clustering.

    Parameters
    ----------
    design : SurveyDesign
        Day-level design (one record per sampled day).
    aggregate : pl.DataFrame
        Rows keyed by ``day_id``, e.g. day x location effort totals.
    day_id : str, optional
        Day column of ``aggregate``. Defaults to the design's unit column.
    post_strata : str, optional
        Categorical column to post-stratify on, with ``population``.
    population : pl.DataFrame, optional
        Population frequencies: ``post_strata`` and ``freq_col`` columns.
    freq_col : str, default 'Freq'
        Frequency column of ``population``.
    calibration_totals : mapping, optional
        Control totals for :func:`calibrate`.
    calfun : str, default 'linear'
        Calibration function: 'linear', 'raking' or 'logit'.
    bounds : tuple[float, float], optional
        Weight ratio bounds for logit calibration.

    Returns
    -------
    SurveyDesign
        Group-level design whose unit roster is the design days present
        in ``aggregate``.

    Raises
    ------
    WeightAlignmentError
        If any aggregate row has a day with no design weight.
    """
    day_id = day_id or design.unit_col
    require_columns(aggregate, [day_id], context="aggregate")

    internal = [design.weight_col, *design.replicate_cols]
    day_table = (
        design.data.select([design.unit_col, *design.strata_cols, *internal])
        .unique(subset=design.unit_col, keep="first", maintain_order=True)
        .rename({design.unit_col: day_id} if design.unit_col != day_id else {})
    )

    # Aggregate's own columns win except for design weights
    clashes = [c for c in day_table.columns if c in aggregate.columns and c != day_id]
    records = aggregate.drop([c for c in clashes if c in internal])
    day_table = day_table.drop([c for c in clashes if c not in internal])

    key_dtype = day_table.schema[day_id]
    if records.schema[day_id] != key_dtype:
        logger.debug(
            "Casting aggregate '%s' from %s to %s to match design",
            day_id,
            records.schema[day_id],
            key_dtype,
        )
        original = records[day_id]
        records = records.with_columns(pl.col(day_id).cast(key_dtype, strict=False))
        failed = original.filter(records[day_id].is_null() & original.is_not_null())
        if failed.len() > 0:
            raise WeightAlignmentError(
                day_id,
                failed.unique().to_list(),
                f"Day ids could not be converted from {original.dtype} to {key_dtype}",
            )

    joined = records.join(day_table, on=day_id, how="left")
    unmatched = joined.filter(pl.col(design.weight_col).is_null())
    if unmatched.height > 0:
        raise WeightAlignmentError(
            day_id,
            unmatched[day_id].unique(maintain_order=True).to_list(),
            "Every aggregate row must belong to a sampled day of the design",
        )

    roster = design.units.rename(
        {design.unit_col: day_id} if design.unit_col != day_id else {}
    ).join(joined.select(day_id).unique(), on=day_id, how="semi")

    group_design = SurveyDesign(
        data=joined,
        unit_col=day_id,
        weight_col=design.weight_col,
        strata_cols=tuple(c for c in design.strata_cols if c in joined.columns),
        units=roster,
        replicates=design.replicates,
    )
    logger.debug(
        "Attached %d aggregate rows to %d design days", joined.height, roster.height
    )

    if post_strata is not None:
        if population is None:
            raise ValueError("post_strata requires a population frequency table")
        group_design = post_stratify(group_design, post_strata, population, freq_col)

    if calibration_totals is not None:
        group_design = calibrate(group_design, calibration_totals, calfun, bounds)

    return group_design


def post_stratify(
    design: SurveyDesign,
    variable: str,
    population: pl.DataFrame,
    freq_col: str = DEFAULT_FREQ_COL,
) -> SurveyDesign:
    """
    Post-stratify design weights to known population frequencies.

    Within each category g of ``variable`` every weight (and every
    replicate weight) is multiplied by N_g / Σ_g w, so the weighted
    category counts reproduce the population table.

    Parameters
    ----------
    design : SurveyDesign
        Design whose records carry ``variable``.
    variable : str
        Categorical post-stratification column.
    population : pl.DataFrame
        Population table with ``variable`` and ``freq_col``.
    freq_col : str, default 'Freq'
        Population frequency column.

    Returns
    -------
    SurveyDesign
    """
    require_columns(design.data, [variable], context="design records")
    require_columns(population, [variable, freq_col], context="population table")

    pop = population.select(
        pl.col(variable).cast(design.data.schema[variable], strict=False),
        pl.col(freq_col).cast(pl.Float64).alias("_POP_FREQ"),
    )
    joined = design.data.join(pop, on=variable, how="left")

    missing = joined.filter(pl.col("_POP_FREQ").is_null())
    if missing.height > 0:
        raise WeightAlignmentError(
            variable,
            missing[variable].unique(maintain_order=True).to_list(),
            f"Population table has no '{freq_col}' for these categories",
        )

    weight_cols = [design.weight_col, *design.replicate_cols]
    adjusted = joined.with_columns(
        [
            (
                pl.col(c)
                * safe_divide(pl.col("_POP_FREQ"), pl.col(c).sum().over(variable), 0.0)
            ).alias(c)
            for c in weight_cols
        ]
    ).drop("_POP_FREQ")

    logger.debug(
        "Post-stratified on '%s' (%d categories)", variable, pop[variable].n_unique()
    )
    return design.with_data(adjusted)


def calibrate(
    design: SurveyDesign,
    totals: Mapping[str, float],
    calfun: str = "linear",
    bounds: tuple[float, float] | None = None,
) -> SurveyDesign:
    """
    Calibrate design weights to external control totals.

    Parameters
    ----------
    design : SurveyDesign
        Design to calibrate.
    totals : mapping
        Control total per numeric record column. The key ``'intercept'``
        calibrates the sum of weights.
    calfun : str, default 'linear'
        'linear', 'raking' or 'logit'.
    bounds : tuple[float, float], optional
        Weight ratio bounds for 'logit'.

    Returns
    -------
    SurveyDesign
        Design with calibrated weights; replicate weights are calibrated
        to the same totals column by column.

    Raises
    ------
    CalibrationError
        If calibration does not converge.
    """
    if calfun not in CALIBRATION_FUNCTIONS:
        raise InvalidConfigError("calfun", calfun, list(CALIBRATION_FUNCTIONS))
    if not totals:
        raise ValueError("calibrate requires at least one control total")

    variables = [v for v in totals if v != INTERCEPT]
    require_columns(design.data, variables, context="design records")

    columns = [
        np.ones(design.n_records) if v == INTERCEPT
        else design.data[v].cast(pl.Float64).to_numpy()
        for v in totals
    ]
    aux = np.column_stack(columns)
    target = np.array([float(t) for t in totals.values()])

    weight_cols = [design.weight_col, *design.replicate_cols]
    calibrated = [
        pl.Series(c, calibrate_weights(design.data[c].to_numpy(), aux, target, calfun, bounds))
        for c in weight_cols
    ]
    logger.debug("Calibrated %d weight columns to %s", len(weight_cols), list(totals))
    return design.with_data(design.data.with_columns(calibrated))


def with_replicate_weights(
    design: SurveyDesign,
    matrix: pl.DataFrame,
    type: str = "bootstrap",
    scale: float | None = None,
    rscales: Sequence[float] | float | None = None,
    combined_weights: bool = True,
    mse: bool = False,
    unit_col: str | None = None,
) -> SurveyDesign:
    """
    Attach a unit x replicate weight matrix to a design.

    Parameters
    ----------
    design : SurveyDesign
        Design to attach to.
    matrix : pl.DataFrame
        One row per sampling unit: the unit id column plus one column per
        replicate.
    type : str, default 'bootstrap'
        'bootstrap', 'jackknife' or 'brr'.
    scale : float, optional
        Overall scale. Defaults to 1/R for bootstrap and BRR and
        (R-1)/R for jackknife.
    rscales : float or sequence of float, optional
        Per-replicate scales. Defaults to 1.
    combined_weights : bool, default True
        False when the matrix holds multipliers of the design weight;
        they are converted to full weights on attach.
    mse : bool, default False
        Center replicate variance on the full-sample estimate.
    unit_col : str, optional
        Unit id column of ``matrix``. Defaults to the design's unit column.

    Returns
    -------
    SurveyDesign
        Design of kind REPLICATE.

    Raises
    ------
    WeightAlignmentError
        If a design unit has no row in ``matrix``.
    """
    if type not in REPLICATE_TYPES:
        raise InvalidConfigError("replicate type", type, REPLICATE_TYPES)

    unit_col = unit_col or design.unit_col
    require_columns(matrix, [unit_col], context="replicate weight matrix")
    rep_source = [c for c in matrix.columns if c != unit_col]
    if not rep_source:
        raise ValueError("Replicate weight matrix has no replicate columns")

    n_rep = len(rep_source)
    rep_cols = replicate_column_names(n_rep)
    keyed = matrix.rename({unit_col: design.unit_col} if unit_col != design.unit_col else {})
    keyed = keyed.select(
        pl.col(design.unit_col).cast(design.units.schema[design.unit_col], strict=False),
        *[pl.col(src).cast(pl.Float64).alias(dst) for src, dst in zip(rep_source, rep_cols)],
    )

    if keyed[design.unit_col].is_duplicated().any():
        raise ValueError("Replicate weight matrix has more than one row for some units")

    missing = design.units.select(design.unit_col).join(
        keyed.select(design.unit_col), on=design.unit_col, how="anti"
    )
    if missing.height > 0:
        raise WeightAlignmentError(
            design.unit_col,
            missing[design.unit_col].to_list(),
            "Replicate weight matrix must have a row for every design unit",
        )

    data = design.data.drop([c for c in design.replicate_cols if c in design.data.columns])
    data = data.join(keyed, on=design.unit_col, how="left")
    if not combined_weights:
        data = data.with_columns(
            [(pl.col(c) * pl.col(design.weight_col)).alias(c) for c in rep_cols]
        )

    if scale is None:
        scale = (n_rep - 1) / n_rep if type == "jackknife" else 1.0 / n_rep
    if rscales is None:
        rscales = ()
    elif np.isscalar(rscales):
        rscales = (float(rscales),)

    replicates = ReplicateWeights(
        columns=rep_cols,
        type=type,
        scale=scale,
        rscales=tuple(rscales),
        combined_weights=True,
        mse=mse,
    )
    logger.debug("Attached %d %s replicate weights", n_rep, type)
    return replace(design, data=data, replicates=replicates)


def build_replicate_design(
    design: SurveyDesign,
    method: str = "bootstrap",
    replicates: int = DEFAULT_N_REPLICATES,
    seed: int | None = None,
) -> SurveyDesign:
    """
    Construct replicate weights for a design from its unit roster.

    Parameters
    ----------
    design : SurveyDesign
        Design to add replicate weights to.
    method : str, default 'bootstrap'
        'bootstrap' (Rao-Wu rescaling bootstrap within strata) or
        'jackknife' (delete-one-unit, JK1/JKn).
    replicates : int, default 1000
        Number of bootstrap replicates. Jackknife makes one replicate per
        deletable unit.
    seed : int, optional
        Random seed for the bootstrap draws.

    Returns
    -------
    SurveyDesign
        Design of kind REPLICATE with combined replicate weights.
    """
    if method not in RESAMPLING_METHODS:
        raise InvalidConfigError("replicate method", method, RESAMPLING_METHODS)

    units = design.units
    strata = units[STRATUM_COL].to_numpy()
    n_units = units.height
    stratum_index = {s: np.flatnonzero(strata == s) for s in dict.fromkeys(strata)}

    if method == "bootstrap":
        if replicates < 2:
            raise ValueError("Bootstrap needs at least 2 replicates")
        rng = np.random.default_rng(seed)
        multipliers = np.ones((n_units, replicates))
        for idx in stratum_index.values():
            n_h = len(idx)
            if n_h < 2:
                continue
            counts = rng.multinomial(n_h - 1, np.full(n_h, 1.0 / n_h), size=replicates)
            multipliers[idx, :] = counts.T * n_h / (n_h - 1)
        scale = 1.0 / (replicates - 1)
        rscales: tuple[float, ...] = ()
    else:
        columns = []
        rscale_list = []
        for idx in stratum_index.values():
            n_h = len(idx)
            if n_h < 2:
                continue
            for j in idx:
                m = np.ones(n_units)
                m[idx] = n_h / (n_h - 1)
                m[j] = 0.0
                columns.append(m)
                rscale_list.append((n_h - 1) / n_h)
        if not columns:
            raise NoReplicatesError(
                "jackknife",
                "Cannot build jackknife replicates: no stratum has two or more sampling units",
            )
        multipliers = np.column_stack(columns)
        scale = 1.0
        rscales = tuple(rscale_list)
        if replicates != DEFAULT_N_REPLICATES:
            logger.debug(
                "Jackknife uses one replicate per unit (%d); ignoring replicates=%d",
                multipliers.shape[1],
                replicates,
            )

    matrix = pl.DataFrame(
        {
            design.unit_col: units[design.unit_col],
            **{f"r{i + 1}": multipliers[:, i] for i in range(multipliers.shape[1])},
        }
    )
    logger.debug(
        "Built %d %s replicates over %d units (seed=%s)",
        multipliers.shape[1],
        method,
        n_units,
        seed,
    )
    return with_replicate_weights(
        design,
        matrix,
        type=method,
        scale=scale,
        rscales=rscales or None,
        combined_weights=False,
    )


def design_diagnostics(design: SurveyDesign) -> dict[str, Any]:
    """
    Summarize the structure and weights of a design.

    Parameters
    ----------
    design : SurveyDesign
        Design to inspect.

    Returns
    -------
    dict
        Record, unit and stratum counts, stratum size range with singleton
        and small strata, weight range and CV, Kish weighting design
        effect 1 + CV², replicate information and a list of issues.
    """
    stratum_sizes = design.units.group_by(STRATUM_COL).agg(pl.len().alias("n_h"))["n_h"]
    weights = design.weights.to_numpy()

    mean_w = float(weights.mean()) if len(weights) else float("nan")
    cv_w = float(weights.std(ddof=1) / mean_w) if len(weights) > 1 and mean_w else 0.0
    extreme = int(((weights > 5 * mean_w) | (weights < 0.2 * mean_w)).sum()) if len(weights) else 0

    diagnostics: dict[str, Any] = {
        "kind": design.kind.value,
        "n_records": design.n_records,
        "n_units": design.n_units,
        "n_strata": design.n_strata,
        "strata_vars": list(design.strata_cols),
        "min_stratum_size": int(stratum_sizes.min()),
        "max_stratum_size": int(stratum_sizes.max()),
        "singleton_strata": int((stratum_sizes == 1).sum()),
        "small_strata": int((stratum_sizes < SMALL_STRATUM_SIZE).sum()),
        "min_weight": float(weights.min()) if len(weights) else None,
        "max_weight": float(weights.max()) if len(weights) else None,
        "mean_weight": mean_w,
        "cv_weights": cv_w,
        "extreme_weights": extreme,
        "kish_deff": 1.0 + cv_w**2,
        "has_replicates": design.replicates is not None,
        "replicate_type": design.replicates.type if design.replicates else None,
        "n_replicates": design.replicates.n_replicates if design.replicates else 0,
    }

    issues = []
    if design.n_records < 30:
        issues.append("Very small sample size (fewer than 30 records)")
    if diagnostics["singleton_strata"]:
        issues.append(
            f"{diagnostics['singleton_strata']} singleton strata contribute no variance"
        )
    elif diagnostics["small_strata"]:
        issues.append(
            f"{diagnostics['small_strata']} small strata (n < {SMALL_STRATUM_SIZE})"
        )
    if cv_w > 1:
        issues.append("High weight variability (CV > 1)")
    elif extreme:
        issues.append(f"{extreme} extreme weights")
    diagnostics["issues"] = issues
    return diagnostics
