"""
Design-based estimation for creel surveys.

The design builder turns a survey calendar into a day-level design and
attaches finer aggregates to it; the engine computes weighted totals,
means and ratios with linearized or replicate variance; the estimators
in :mod:`pycreel.estimation.estimators` build on both.
"""

from .base import AggregationResult, BaseEstimator, EstimationResult, HybridDiagnostics
from .calibration import CALIBRATION_FUNCTIONS, calibrate_weights
from .design import (
    attach_group_design,
    build_day_design,
    build_replicate_design,
    calibrate,
    design_diagnostics,
    post_stratify,
    with_replicate_weights,
)
from .engine import estimate
from .estimators import (
    AerialEffortEstimator,
    BusRouteEffortEstimator,
    CatchEstimator,
    CPUEEstimator,
    InstantaneousEffortEstimator,
    ProgressiveEffortEstimator,
    RovingCPUEEstimator,
    SpeciesGroupCPUEEstimator,
    TripCompleteness,
    aggregate_cpue,
    classify_trips,
    combine_hybrid,
    est_catch,
    est_cpue,
    est_cpue_roving,
    est_effort,
    est_effort_aerial,
    est_effort_busroute,
    est_effort_instantaneous,
    est_effort_progressive,
    est_total_harvest,
)
from .variance import (
    calculate_confidence_interval,
    calculate_linearized_variance,
    calculate_replicate_variance,
    z_score,
)

__all__ = [
    "AerialEffortEstimator",
    "AggregationResult",
    "BaseEstimator",
    "BusRouteEffortEstimator",
    "CALIBRATION_FUNCTIONS",
    "CPUEEstimator",
    "CatchEstimator",
    "EstimationResult",
    "HybridDiagnostics",
    "InstantaneousEffortEstimator",
    "ProgressiveEffortEstimator",
    "RovingCPUEEstimator",
    "SpeciesGroupCPUEEstimator",
    "TripCompleteness",
    "aggregate_cpue",
    "attach_group_design",
    "build_day_design",
    "build_replicate_design",
    "calculate_confidence_interval",
    "calculate_linearized_variance",
    "calculate_replicate_variance",
    "calibrate",
    "calibrate_weights",
    "classify_trips",
    "combine_hybrid",
    "design_diagnostics",
    "est_catch",
    "est_cpue",
    "est_cpue_roving",
    "est_effort",
    "est_effort_aerial",
    "est_effort_busroute",
    "est_effort_instantaneous",
    "est_effort_progressive",
    "est_total_harvest",
    "estimate",
    "post_stratify",
    "with_replicate_weights",
    "z_score",
]
