"""
Total catch estimation from interview data.
"""

from __future__ import annotations

from ...core.design import CreelData, SurveyDesign
from ..base import BaseEstimator, EstimationResult
from ..constants import DEFAULT_CONF_LEVEL, DEFAULT_CPUE_RESPONSE
from ..engine import estimate
from ..utils import require_columns


class CatchEstimator(BaseEstimator):
    """
    Survey-weighted total of a catch column.

    A direct use of the estimation engine with ``statistic='total'``.
    Config keys: ``response`` (default 'catch_total'), ``by``,
    ``conf_level``, ``variance_method``, ``n_replicates``, ``seed``.
    """

    def __init__(self, source: SurveyDesign | CreelData, config: dict):
        super().__init__(source, config)
        self.response = config.get("response", DEFAULT_CPUE_RESPONSE)

    def prepare(self, design: SurveyDesign) -> SurveyDesign:
        require_columns(design.data, [self.response], context="catch")
        if not design.data.schema[self.response].is_numeric():
            raise TypeError(f"Catch column '{self.response}' must be numeric")
        return design

    def compute(self, design: SurveyDesign) -> EstimationResult:
        return estimate(
            design,
            self.response,
            statistic="total",
            by=self.group_cols,
            tag=f"catch_total:{self.response}",
            **self.engine_options(),
        )


def est_catch(
    design: SurveyDesign | CreelData,
    by: str | list[str] | None = None,
    response: str = DEFAULT_CPUE_RESPONSE,
    conf_level: float = DEFAULT_CONF_LEVEL,
    variance_method: str = "linearization",
    n_replicates: int | None = None,
    seed: int | None = None,
    design_diagnostics: bool = False,
) -> EstimationResult:
    """
    Estimate total catch from interview data.

    Parameters
    ----------
    design : SurveyDesign or CreelData
        Interview-level design.
    by : str or list of str, optional
        Grouping columns, e.g. 'species' or ['location', 'species'].
    response : str, default 'catch_total'
        Catch column, e.g. 'catch_total', 'catch_kept' or 'weight_total'.
    conf_level : float, default 0.95
        Confidence level.
    variance_method : {'linearization', 'bootstrap', 'jackknife'}
        Variance method.
    n_replicates, seed : optional
        Replicate construction when the design has none.
    design_diagnostics : bool, default False
        Add a design summary under ``diagnostics['design']``.

    Returns
    -------
    EstimationResult
        Totals per group with method tag ``catch_total:<response>``.

    Examples
    --------
    >>> est_catch(design, by="species", response="catch_kept").table
    """
    config = {
        "by": by,
        "response": response,
        "conf_level": conf_level,
        "variance_method": variance_method,
        "n_replicates": n_replicates,
        "seed": seed,
        "design_diagnostics": design_diagnostics,
    }
    return CatchEstimator(design, config).estimate()
