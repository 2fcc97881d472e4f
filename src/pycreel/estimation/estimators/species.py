"""
CPUE for a group of species.

Reporting often needs a catch rate for a set of species taken together,
e.g. all black bass or all panfish. The catch of the species in the set is
summed per interview, interviews that caught none of them count as zero
catch, and the summed catch is passed to the ratio-of-means or
mean-of-ratios CPUE estimator.
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence

import polars as pl

from ...core.design import CreelData, SurveyDesign
from ...core.exceptions import EmptyAfterFilterError, InvalidConfigError, PyCreelWarning
from ..base import EstimationResult
from ..constants import (
    AGGREGATE_CPUE_MODES,
    DEFAULT_CONF_LEVEL,
    DEFAULT_CPUE_RESPONSE,
    DEFAULT_EFFORT_COL,
    DEFAULT_SPECIES_COL,
    SPECIES_GROUP_COL,
)
from ..utils import require_columns
from .cpue import CPUEEstimator


class SpeciesGroupCPUEEstimator(CPUEEstimator):
    """
    CPUE of the summed catch of several species.

    Parameters
    ----------
    source : SurveyDesign or CreelData
        Interview-level design with one row per interview and species.
    config : dict
        Keys: ``species_values`` (required), ``group_name`` (required),
        ``species_col`` (default 'species'), ``interview_col`` (rows
        sharing it are one interview; default: every row is one
        interview), ``mode`` ('ratio_of_means' or 'mean_of_ratios'),
        ``response``, ``effort_col``, ``by``, ``conf_level``,
        ``variance_method``, ``n_replicates``, ``seed``,
        ``design_diagnostics``.
    """

    def __init__(self, source: SurveyDesign | CreelData, config: dict):
        super().__init__(source, {**config, "mode": config.get("mode", "ratio_of_means")})
        if self.mode not in AGGREGATE_CPUE_MODES:
            raise InvalidConfigError("mode", self.mode, AGGREGATE_CPUE_MODES)

        self.species_col = config.get("species_col", DEFAULT_SPECIES_COL)
        self.species_values = list(config.get("species_values") or [])
        self.group_name = config["group_name"]
        self.interview_col = config.get("interview_col")
        self.species: dict = {}
        if not self.species_values:
            raise ValueError("species_values must name at least one species to aggregate")

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        columns = [self.species_col, self.response, self.effort_col]
        if self.interview_col is not None:
            columns.append(self.interview_col)
        require_columns(design.data, columns, context="interviews")

        available = set(design.data[self.species_col].drop_nulls().to_list())
        present = [s for s in self.species_values if s in available]
        missing = [s for s in self.species_values if s not in available]
        if not present:
            raise EmptyAfterFilterError(
                f"None of the species {self.species_values} occur in '{self.species_col}'. "
                f"Available species: {sorted(map(str, available))}"
            )
        if missing:
            warnings.warn(
                f"Species not found in the data and counted as zero catch: {missing}",
                PyCreelWarning,
                stacklevel=4,
            )

        in_group = pl.col(self.species_col).is_in(present)
        catch = pl.col(self.response).cast(pl.Float64).fill_null(0.0)
        data = design.data.with_columns(
            pl.when(in_group).then(catch).otherwise(0.0).alias(self.response)
        )
        if self.interview_col is not None:
            # Effort, weights and strata are interview-level
            data = data.group_by(self.interview_col, maintain_order=True).agg(
                pl.col(self.response).sum(),
                pl.exclude(self.interview_col, self.response).first(),
            )
        data = data.with_columns(pl.lit(self.group_name).alias(SPECIES_GROUP_COL))

        self.species = {
            "species_aggregated": present,
            "species_missing": missing,
            "n_species": len(present),
            "aggregation_method": self.mode,
        }
        return super().prepare(design.with_data(data))

    def compute(self, design: SurveyDesign) -> EstimationResult:
        by = [*self.group_cols, SPECIES_GROUP_COL]
        if self.mode == "ratio_of_means":
            result = self.ratio_of_means(design, by)
        else:
            result = self.mean_of_ratios(design, by)
        return result.relabel(f"aggregate_cpue:{self.response}:{self.mode}", **self.species)


def aggregate_cpue(
    design: SurveyDesign | CreelData,
    species_values: Sequence[str],
    group_name: str,
    species_col: str = DEFAULT_SPECIES_COL,
    by: str | list[str] | None = None,
    response: str = DEFAULT_CPUE_RESPONSE,
    effort_col: str = DEFAULT_EFFORT_COL,
    mode: str = "ratio_of_means",
    interview_col: str | None = None,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
) -> EstimationResult:
    """
    Estimate CPUE for the combined catch of a group of species.

    Parameters
    ----------
    design : SurveyDesign or CreelData
        Interview-level design.
    species_values : sequence of str
        Species making up the group. Species absent from the data add zero
        catch, with a warning.
    group_name : str
        Label written to the ``species_group`` column of the result.
    species_col : str, default 'species'
        Species column.
    by : str or list of str, optional
        Grouping columns other than species.
    response : str, default 'catch_total'
        Catch column to sum across the species.
    effort_col : str, default 'hours_fished'
        Interview effort in hours.
    mode : {'ratio_of_means', 'mean_of_ratios'}, default 'ratio_of_means'
        CPUE estimator for the summed catch.
    interview_col : str, optional
        Interview identifier. Rows sharing it are collapsed into one
        interview before estimation; without it each row is an interview.
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
        Grouped by ``by`` plus ``species_group``, with method tag
        ``aggregate_cpue:<response>:<mode>``. Diagnostics list the species
        aggregated and the species missing from the data.

    Examples
    --------
    >>> aggregate_cpue(
    ...     design,
    ...     species_values=["largemouth_bass", "smallmouth_bass"],
    ...     group_name="black_bass",
    ...     interview_col="interview_id",
    ... ).table
    """
    config = {
        "by": by,
        "species_values": species_values,
        "group_name": group_name,
        "species_col": species_col,
        "response": response,
        "effort_col": effort_col,
        "mode": mode,
        "interview_col": interview_col,
        "conf_level": conf_level,
        "variance_method": variance_method,
        "n_replicates": n_replicates,
        "seed": seed,
        "design_diagnostics": design_diagnostics,
    }
    return SpeciesGroupCPUEEstimator(design, config).estimate()
