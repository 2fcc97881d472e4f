"""
pycreel: design-based estimation for fisheries creel surveys.

Estimates angler effort, catch, CPUE and total harvest from stratified,
clustered interview and count data, with linearized or replicate-weight
variance and Wald confidence intervals.
"""

import logging

from .core import (
    ApproximationWarning,
    CalibrationError,
    CreelData,
    DesignKind,
    DroppedColumnsWarning,
    EmptyAfterFilterError,
    EmptyDesignError,
    InvalidConfigError,
    MissingColumnError,
    NoCompletenessFieldError,
    NoReplicatesError,
    PyCreelError,
    PyCreelWarning,
    ReplicateWeights,
    SurveyDesign,
    VarianceUnavailable,
    WeightAlignmentError,
    resolve_design,
)
from .estimation import (
    EstimationResult,
    HybridDiagnostics,
    aggregate_cpue,
    attach_group_design,
    build_day_design,
    build_replicate_design,
    calibrate,
    classify_trips,
    design_diagnostics,
    est_catch,
    est_cpue,
    est_cpue_roving,
    est_effort,
    est_effort_aerial,
    est_effort_busroute,
    est_effort_instantaneous,
    est_effort_progressive,
    est_total_harvest,
    estimate,
    post_stratify,
    with_replicate_weights,
)

__version__ = "0.3.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ApproximationWarning",
    "CalibrationError",
    "CreelData",
    "DesignKind",
    "DroppedColumnsWarning",
    "EmptyAfterFilterError",
    "EmptyDesignError",
    "EstimationResult",
    "HybridDiagnostics",
    "InvalidConfigError",
    "MissingColumnError",
    "NoCompletenessFieldError",
    "NoReplicatesError",
    "PyCreelError",
    "PyCreelWarning",
    "ReplicateWeights",
    "SurveyDesign",
    "VarianceUnavailable",
    "WeightAlignmentError",
    "__version__",
    "aggregate_cpue",
    "attach_group_design",
    "build_day_design",
    "build_replicate_design",
    "calibrate",
    "classify_trips",
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
]
