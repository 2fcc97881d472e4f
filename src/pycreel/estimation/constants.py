"""
Constants and defaults shared by the pycreel estimators.
"""

DEFAULT_CONF_LEVEL = 0.95
DEFAULT_N_REPLICATES = 1000

MINUTES_PER_HOUR = 60.0

# Aerial visibility corrections below this are clamped to it
MIN_VISIBILITY = 0.1

# Incomplete trips shorter than this (hours) are truncated in auto-mode CPUE
DEFAULT_MIN_TRIP_HOURS = 0.5

DEFAULT_DAY_ID = "date"
DEFAULT_STRATA_VARS = ("day_type", "month", "season", "weekend")

STATISTICS = ("total", "mean", "ratio")
VARIANCE_METHODS = ("linearization", "bootstrap", "jackknife")
RESAMPLING_METHODS = ("bootstrap", "jackknife")
CI_METHODS = ("wald", "percentile")

# CPUE
CPUE_MODES = ("auto", "ratio_of_means", "mean_of_ratios")
DEFAULT_CPUE_RESPONSE = "catch_total"
DEFAULT_EFFORT_COL = "hours_fished"
DEFAULT_COMPLETENESS_COL = "trip_complete"
COMPLETE_VALUES = ("true", "t", "yes", "y", "1", "complete", "completed")
INCOMPLETE_VALUES = ("false", "f", "no", "n", "0", "incomplete")

# Roving CPUE
LENGTH_BIAS_CORRECTIONS = ("none", "pollock")
# Truncating a larger share of roving interviews than this warns
MAX_QUIET_TRUNCATION_RATE = 0.10

# Species-group CPUE
DEFAULT_SPECIES_COL = "species"
SPECIES_GROUP_COL = "species_group"
AGGREGATE_CPUE_MODES = ("ratio_of_means", "mean_of_ratios")

# Effort count tables: the first candidate present is used
MINUTES_COLUMNS = ("interval_minutes", "count_duration", "flight_minutes")
TOTAL_MINUTES_COLUMNS = ("total_minutes", "total_day_minutes", "block_total_minutes")
ROUTE_MINUTES_COLUMNS = ("route_minutes", "circuit_minutes")
PASS_ID_COLUMNS = ("pass_id", "circuit_id")
DEFAULT_EFFORT_BY = ("location",)
EFFORT_METHODS = ("instantaneous", "aerial", "progressive", "busroute")
DEFAULT_INCLUSION_PROB_COL = "inclusion_prob"

# Post-stratification population table frequency column
DEFAULT_FREQ_COL = "Freq"

# Stratum size below which design diagnostics flag a stratum as small
SMALL_STRATUM_SIZE = 5
