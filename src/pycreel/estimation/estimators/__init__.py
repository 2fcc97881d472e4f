"""Concrete creel estimators: CPUE, effort, catch and total harvest."""

from .catch import CatchEstimator, est_catch
from .cpue import (
    CPUEEstimator,
    RoutingState,
    TripCompleteness,
    classify_trips,
    combine_hybrid,
    est_cpue,
)
from .effort import (
    AerialEffortEstimator,
    BusRouteEffortEstimator,
    EffortEstimator,
    InstantaneousEffortEstimator,
    ProgressiveEffortEstimator,
    est_effort,
    est_effort_aerial,
    est_effort_busroute,
    est_effort_instantaneous,
    est_effort_progressive,
)
from .harvest import est_total_harvest
from .roving import RovingCPUEEstimator, est_cpue_roving
from .species import SpeciesGroupCPUEEstimator, aggregate_cpue

__all__ = [
    "AerialEffortEstimator",
    "BusRouteEffortEstimator",
    "CPUEEstimator",
    "CatchEstimator",
    "EffortEstimator",
    "InstantaneousEffortEstimator",
    "ProgressiveEffortEstimator",
    "RovingCPUEEstimator",
    "RoutingState",
    "SpeciesGroupCPUEEstimator",
    "TripCompleteness",
    "aggregate_cpue",
    "classify_trips",
    "combine_hybrid",
    "est_catch",
    "est_cpue",
    "est_cpue_roving",
    "est_effort",
    "est_effort_aerial",
    "est_effort_busroute",
    "est_effort_instantaneous",
    "est_effort_progressive",
    "est_total_harvest",
]
