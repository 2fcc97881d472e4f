"""
Survey design data types.

A :class:`SurveyDesign` couples a record table (one row per sampling unit,
or per unit x group after aggregation) with the roster of sampling units
(PSUs, i.e. surveyed days) and their strata. Each record carries exactly
one design weight; replicate weights, when present, are materialized as
record columns and described by a :class:`ReplicateWeights` that travels
with the design.

Keeping the unit roster separate from the records matters for domain
estimation: a subset of records (complete trips only, one location, ...)
still uses every sampled unit of the design in its variance, with zero
contribution from units that have no records in the domain.

Designs are immutable. Every transformation returns a new design.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, replace
from enum import Enum

import polars as pl

from .exceptions import (
    ApproximationWarning,
    InvalidConfigError,
    MissingColumnError,
    WeightAlignmentError,
)

logger = logging.getLogger(__name__)

WEIGHT_COL = "_WEIGHT"
STRATUM_COL = "_STRATUM"
RECORD_COL = "_RECORD"
REPLICATE_PREFIX = "_REP_"
REPLICATE_TYPES = ("bootstrap", "jackknife", "brr")


def key_expr(cols: list[str] | tuple[str, ...], alias: str) -> pl.Expr:
    """
    Build a single string key over one or more (possibly null) columns.

    Polars does not match null keys in joins, so grouping and stratum
    identifiers are collapsed into a null-safe string before joining.

    Parameters
    ----------
    cols : sequence of str
        Columns forming the key. An empty sequence yields a constant key.
    alias : str
        Name of the resulting column.

    Returns
    -------
    pl.Expr
        String key expression.
    """
    if not cols:
        return pl.lit("1").alias(alias)
    return pl.concat_str(
        [pl.col(c).cast(pl.Utf8).fill_null("<NA>") for c in cols],
        separator="|",
    ).alias(alias)


def replicate_column_names(n_replicates: int) -> tuple[str, ...]:
    """Internal names for ``n_replicates`` replicate weight columns."""
    return tuple(f"{REPLICATE_PREFIX}{i + 1}" for i in range(n_replicates))


class DesignKind(str, Enum):
    """Tagged variant of the inputs an estimator accepts as a design."""

    RAW = "raw"
    REPLICATE = "replicate"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ReplicateWeights:
    """
    Metadata for the replicate weight columns of a design.

    The columns themselves live in the design's record table (joined by
    unit id), so this object only describes how to turn replicate
    estimates into a variance:

        V = scale * sum_r rscales[r] * (theta_r - center)^2

    where ``center`` is the mean of the replicate estimates, or the
    full-sample estimate when ``mse`` is True.

    Attributes
    ----------
    columns : tuple[str, ...]
        Names of the replicate weight columns in the record table.
    type : str
        One of 'bootstrap', 'jackknife', 'brr'.
    scale : float
        Overall variance scale factor.
    rscales : tuple[float, ...]
        Per-replicate scale factors (broadcast from a single value).
    combined_weights : bool
        True when the columns hold full weights rather than multipliers
        of the base weight. Designs always store combined weights.
    mse : bool
        Center on the full-sample estimate instead of the replicate mean.
    """

    columns: tuple[str, ...]
    type: str = "bootstrap"
    scale: float = 1.0
    rscales: tuple[float, ...] = ()
    combined_weights: bool = True
    mse: bool = False

    def __post_init__(self):
        if self.type not in REPLICATE_TYPES:
            raise InvalidConfigError("replicate type", self.type, REPLICATE_TYPES)
        columns = tuple(self.columns)
        if not columns:
            raise ValueError("ReplicateWeights requires at least one replicate column")
        rscales = tuple(float(r) for r in self.rscales)
        if not rscales:
            rscales = (1.0,) * len(columns)
        elif len(rscales) == 1:
            rscales = rscales * len(columns)
        elif len(rscales) != len(columns):
            raise ValueError(
                f"rscales has {len(rscales)} entries for {len(columns)} replicates"
            )
        object.__setattr__(self, "columns", columns)
        object.__setattr__(self, "rscales", rscales)
        object.__setattr__(self, "scale", float(self.scale))

    @property
    def n_replicates(self) -> int:
        return len(self.columns)


@dataclass(frozen=True, eq=False)
class SurveyDesign:
    """
    Immutable survey design over a record table.

    Parameters
    ----------
    data : pl.DataFrame
        Record table. Must contain ``unit_col``, ``weight_col``, the strata
        columns and any replicate weight columns.
    unit_col : str
        Sampling unit (PSU) identifier column, e.g. the survey day.
    weight_col : str, default '_WEIGHT'
        Design weight column.
    strata_cols : tuple[str, ...]
        Stratification columns. Empty means a single stratum.
    units : pl.DataFrame, optional
        Sampling unit roster with ``unit_col`` and ``_STRATUM``. Derived
        from ``data`` when omitted.
    replicates : ReplicateWeights, optional
        Replicate weight metadata when the design carries replicates.
    """

    data: pl.DataFrame
    unit_col: str
    weight_col: str = WEIGHT_COL
    strata_cols: tuple[str, ...] = ()
    units: pl.DataFrame | None = None
    replicates: ReplicateWeights | None = None

    def __post_init__(self):
        strata_cols = tuple(self.strata_cols)
        object.__setattr__(self, "strata_cols", strata_cols)

        required = [self.unit_col, self.weight_col, *strata_cols]
        if self.replicates is not None:
            required.extend(self.replicates.columns)
        missing = [c for c in required if c not in self.data.columns]
        if missing:
            raise MissingColumnError(missing, context="survey design")

        data = self.data.with_columns(pl.col(self.weight_col).cast(pl.Float64))
        if self.replicates is not None:
            data = data.with_columns(
                [pl.col(c).cast(pl.Float64) for c in self.replicates.columns]
            )

        unresolved = data.filter(
            pl.col(self.unit_col).is_null() | pl.col(self.weight_col).is_null()
        )
        if unresolved.height > 0:
            raise WeightAlignmentError(
                self.unit_col,
                unresolved[self.unit_col].to_list(),
                "Every record must resolve to exactly one design weight",
            )

        if self.units is None:
            units = data.select([self.unit_col, *strata_cols]).unique(maintain_order=True)
            if units[self.unit_col].n_unique() != units.height:
                raise ValueError(
                    f"Sampling units in '{self.unit_col}' must each belong to a single stratum"
                )
            units = units.with_columns(key_expr(strata_cols, STRATUM_COL))
        else:
            units = self.units
            missing_roster = [c for c in (self.unit_col, STRATUM_COL) if c not in units.columns]
            if missing_roster:
                raise MissingColumnError(missing_roster, context="sampling unit roster")
            orphans = (
                data.select(self.unit_col)
                .unique()
                .join(units.select(self.unit_col), on=self.unit_col, how="anti")
            )
            if orphans.height > 0:
                raise WeightAlignmentError(self.unit_col, orphans[self.unit_col].to_list())

        units = units.select(
            [self.unit_col, STRATUM_COL]
            + [c for c in strata_cols if c in units.columns]
        ).sort([STRATUM_COL, self.unit_col])

        object.__setattr__(self, "data", data)
        object.__setattr__(self, "units", units)

    def __repr__(self) -> str:
        rep = (
            f", replicates={self.replicates.n_replicates} ({self.replicates.type})"
            if self.replicates is not None
            else ""
        )
        return (
            f"SurveyDesign(kind={self.kind.value}, records={self.n_records}, "
            f"units={self.n_units}, strata={self.n_strata}{rep})"
        )

    @property
    def kind(self) -> DesignKind:
        if self.replicates is not None:
            return DesignKind.REPLICATE
        return DesignKind.RAW

    @property
    def n_records(self) -> int:
        return self.data.height

    @property
    def n_units(self) -> int:
        return self.units.height

    @property
    def n_strata(self) -> int:
        return self.units[STRATUM_COL].n_unique()

    @property
    def replicate_cols(self) -> list[str]:
        if self.replicates is None:
            return []
        return list(self.replicates.columns)

    @property
    def weights(self) -> pl.Series:
        return self.data[self.weight_col]

    def records_with_strata(self) -> pl.DataFrame:
        """Record table with the roster's ``_STRATUM`` key joined on by unit id."""
        data = self.data.drop(STRATUM_COL) if STRATUM_COL in self.data.columns else self.data
        return data.join(
            self.units.select([self.unit_col, STRATUM_COL]),
            on=self.unit_col,
            how="left",
        )

    def with_data(self, data: pl.DataFrame) -> SurveyDesign:
        """Same design structure over a new record table."""
        return replace(self, data=data)

    def subset(self, predicate: pl.Expr) -> SurveyDesign:
        """
        Restrict the records to a domain while keeping the full unit roster.

        Units left without records still count as sampled units in the
        variance, contributing zero to the domain totals.
        """
        return replace(self, data=self.data.filter(predicate))


@dataclass(frozen=True, eq=False)
class CreelData:
    """
    Bundle of raw creel tables, resolved into a design on demand.

    When a calendar is present, the day-level design is built from it and
    the requested table is attached to it by ``day_id``. Without a
    calendar an equal-weight design is used, with every record as its own
    sampling unit.
    """

    interviews: pl.DataFrame | None = None
    counts: pl.DataFrame | None = None
    calendar: pl.DataFrame | None = None
    day_id: str = "date"
    strata_vars: tuple[str, ...] | None = None

    kind = DesignKind.LEGACY

    def to_design(self, table: str = "interviews") -> SurveyDesign:
        from ..estimation.constants import DEFAULT_STRATA_VARS
        from ..estimation.design import attach_group_design, build_day_design

        records = getattr(self, table, None)
        if records is None:
            raise ValueError(f"CreelData has no '{table}' table to build a design from")

        if self.calendar is not None:
            strata_vars = (
                DEFAULT_STRATA_VARS if self.strata_vars is None else self.strata_vars
            )
            day_design = build_day_design(self.calendar, self.day_id, strata_vars)
            return attach_group_design(day_design, records, self.day_id)

        warnings.warn(
            f"No calendar supplied; using an equal-weight design over {table} "
            "with each record as its own sampling unit",
            ApproximationWarning,
            stacklevel=3,
        )
        data = records.with_row_index(RECORD_COL).with_columns(
            pl.lit(1.0).alias(WEIGHT_COL)
        )
        return SurveyDesign(data=data, unit_col=RECORD_COL)


def resolve_design(source: SurveyDesign | CreelData, table: str = "interviews") -> SurveyDesign:
    """
    Resolve an estimator input into a :class:`SurveyDesign`, once, at entry.

    Parameters
    ----------
    source : SurveyDesign or CreelData
        A design (raw or replicate-weighted) or a legacy container.
    table : str, default 'interviews'
        Table of a :class:`CreelData` to build the design over.

    Returns
    -------
    SurveyDesign
    """
    if isinstance(source, SurveyDesign):
        logger.debug("Using %s design as supplied", source.kind.value)
        return source
    if isinstance(source, CreelData):
        logger.debug("Resolving legacy container table '%s' into a design", table)
        return source.to_design(table)
    raise TypeError(
        f"Expected a SurveyDesign or CreelData, got {type(source).__name__}"
    )
