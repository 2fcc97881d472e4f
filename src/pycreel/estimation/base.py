"""
Base estimator and result types for creel survey estimation.

Estimators follow one template: resolve the input into a design once,
prepare the record table (derive columns, classify, filter), compute the
design-based estimate through the engine, then format the output with a
method tag and diagnostics.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any

import polars as pl

from ..core.design import CreelData, SurveyDesign, resolve_design
from ..core.exceptions import InvalidConfigError
from .constants import DEFAULT_CONF_LEVEL, VARIANCE_METHODS
from .design import design_diagnostics
from .utils import normalize_group_cols

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["estimate", "se", "ci_low", "ci_high", "deff", "n", "method", "variance"]


@dataclass
class AggregationResult:
    """
    Container for records reduced to the level the engine works on.

    Attributes
    ----------
    results : pl.DataFrame
        Aggregated table, e.g. one row per day x group.
    records : pl.DataFrame
        The raw records the aggregate was built from.
    group_cols : list[str]
        Grouping columns present in ``results``.
    """

    results: pl.DataFrame
    records: pl.DataFrame
    group_cols: list[str]


@dataclass(frozen=True)
class HybridDiagnostics:
    """Components of an effort-weighted hybrid CPUE estimate."""

    cpue_complete: float
    cpue_incomplete: float
    se_complete: float | None
    se_incomplete: float | None
    effort_complete: float
    effort_incomplete: float
    weight_complete: float
    weight_incomplete: float
    n_complete: int
    n_incomplete: int
    n_truncated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpue_complete": self.cpue_complete,
            "cpue_incomplete": self.cpue_incomplete,
            "se_complete": self.se_complete,
            "se_incomplete": self.se_incomplete,
            "effort_complete": self.effort_complete,
            "effort_incomplete": self.effort_incomplete,
            "weight_complete": self.weight_complete,
            "weight_incomplete": self.weight_incomplete,
            "n_complete": self.n_complete,
            "n_incomplete": self.n_incomplete,
            "n_truncated": self.n_truncated,
        }


@dataclass(frozen=True)
class EstimationResult:
    """
    Immutable output of an estimator.

    Attributes
    ----------
    table : pl.DataFrame
        Group columns followed by estimate, se, ci_low, ci_high, deff, n,
        method and variance. One row per group, sorted by group columns.
    method : str
        Method tag, e.g. ``"cpue_ratio_of_means:catch_total"``.
    group_cols : list[str]
        Grouping columns actually used.
    variance_method : str
        'linearization', 'bootstrap' or 'jackknife'.
    conf_level : float
        Confidence level of the intervals.
    diagnostics : dict
        Estimator-specific audit payload.
    """

    table: pl.DataFrame
    method: str
    group_cols: list[str] = field(default_factory=list)
    variance_method: str = "linearization"
    conf_level: float = DEFAULT_CONF_LEVEL
    diagnostics: dict[str, Any] = field(default_factory=dict)

    def __len__(self) -> int:
        return self.table.height

    @property
    def estimate(self) -> float:
        """Estimate of an ungrouped (single-row) result."""
        return self._scalar("estimate")

    @property
    def se(self) -> float | None:
        """Standard error of an ungrouped (single-row) result."""
        return self._scalar("se")

    def _scalar(self, column: str):
        if self.table.height != 1:
            raise ValueError(
                f"Result has {self.table.height} rows; select '{column}' from .table instead"
            )
        return self.table[column][0]

    def relabel(self, method: str, **diagnostics: Any) -> EstimationResult:
        """Copy of the result with a new method tag and extra diagnostics."""
        table = self.table.with_columns(pl.lit(method).alias("method"))
        return replace(
            self,
            table=table,
            method=method,
            diagnostics={**self.diagnostics, **diagnostics},
        )


class BaseEstimator(ABC):
    """
    Base class for design-based creel estimators.

    Parameters
    ----------
    source : SurveyDesign or CreelData
        Design to estimate from. A :class:`CreelData` is resolved into a
        design once, when :meth:`estimate` runs.
    config : dict
        Estimator configuration. Common keys: ``by``, ``conf_level``,
        ``variance_method``, ``n_replicates``, ``seed``.
    """

    #: Table of a CreelData that this estimator reads
    source_table = "interviews"

    def __init__(self, source: SurveyDesign | CreelData | None, config: dict):
        self.source = source
        self.config = config
        self.group_cols = normalize_group_cols(config.get("by"))
        self.conf_level = config.get("conf_level", DEFAULT_CONF_LEVEL)
        self.variance_method = config.get("variance_method", "linearization")
        if self.variance_method not in VARIANCE_METHODS:
            raise InvalidConfigError(
                "variance_method", self.variance_method, VARIANCE_METHODS
            )

    def estimate(self) -> EstimationResult:
        """Run the estimation workflow."""
        design = self.resolve()
        design = self.prepare(design)
        result = self.compute(design)
        if self.config.get("design_diagnostics", False):
            result = result.relabel(result.method, design=design_diagnostics(design))
        return self.format_output(result)

    def resolve(self) -> SurveyDesign:
        return resolve_design(self.source, self.source_table)

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        """Validate and derive record columns. Default: no changes."""
        return design

    @abstractmethod
    def compute(self, design: SurveyDesign) -> EstimationResult:
        """Compute the design-based estimate."""

    def format_output(self, result: EstimationResult) -> EstimationResult:
        return result

    def engine_options(self) -> dict[str, Any]:
        """Keyword arguments shared by every engine call of this estimator."""
        return {
            "method": self.variance_method,
            "conf_level": self.conf_level,
            "n_replicates": self.config.get("n_replicates"),
            "seed": self.config.get("seed"),
        }
