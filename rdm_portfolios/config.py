"""
Study configuration.

Module-level constants are the defaults; StudyConfig bundles them so a run
can override any of them without touching this file.
"""

from dataclasses import dataclass, replace
from typing import Tuple

# =============================================================================
# Sample window
# =============================================================================

# Fiscal years pulled from Compustat; CRSP months run through END_YEAR + 1
# so the last formation year has a full holding window
START_YEAR = 1980
END_YEAR = 2021

# =============================================================================
# Portfolio formation
# =============================================================================

# Portfolios are formed at the end of April; holding window is May-April
FORMATION_MONTH = 4

# Months added to a report date before it counts as public.
# 0 = a fiscal year ending on or before April feeds that April's sort
REPORTING_LAG_MONTHS = 0

N_BUCKETS = 5

# Ranking signal: 'rdm' (R&D / market equity) or 'rds' (R&D / sales)
SIGNAL = 'rdm'

# Portfolio weighting: 'equal' or 'value' (formation-month market equity)
WEIGHTING = 'equal'

# Drop firm-years with no realized holding-period return before sorting.
# This mirrors the original study; it conditions the sort on the outcome
# being observable (see DESIGN.md, open questions)
REQUIRE_REALIZED_RETURN = True

# =============================================================================
# Complete-panel filter
# =============================================================================

# First formation year of the filtered sample; firms must have RDM here
BASE_YEAR = 1995

# Minimum number of annual RDM observations from BASE_YEAR on.
# Chosen empirically: long enough to drop sporadic reporters, short
# enough to keep a usable cross-section in every year
MIN_CONSECUTIVE_YEARS = 10

# 'consecutive': the run starting at BASE_YEAR must reach the minimum
# 'total': any MIN_CONSECUTIVE_YEARS years from BASE_YEAR on
OBS_POLICY = 'consecutive'

# =============================================================================
# Risk evaluation
# =============================================================================

CONFIDENCE_LEVELS = (0.95, 0.99)

# Months in the rolling-variance window of the diagnostics plot
ROLLING_WINDOW = 12

# =============================================================================
# Files
# =============================================================================

DATA_DIR = 'data'
OUTPUT_DIR = 'results'

# Ken French monthly 3-factor file (percent units)
FACTOR_FILE = 'data/F-F_Research_Data_Factors.csv'

# Output format options for raw snapshots: 'parquet', 'csv', or 'both'
# parquet: faster read/write, smaller file size, preserves data types
# csv: human readable, can open in Excel, easier to share
OUTPUT_FORMAT = 'parquet'

SAVE_FIGURES = True


@dataclass(frozen=True)
class StudyConfig:
    start_year: int = START_YEAR
    end_year: int = END_YEAR
    formation_month: int = FORMATION_MONTH
    reporting_lag_months: int = REPORTING_LAG_MONTHS
    n_buckets: int = N_BUCKETS
    signal: str = SIGNAL
    weighting: str = WEIGHTING
    require_realized_return: bool = REQUIRE_REALIZED_RETURN
    base_year: int = BASE_YEAR
    min_obs: int = MIN_CONSECUTIVE_YEARS
    obs_policy: str = OBS_POLICY
    confidence_levels: Tuple[float, ...] = CONFIDENCE_LEVELS
    rolling_window: int = ROLLING_WINDOW
    data_dir: str = DATA_DIR
    output_dir: str = OUTPUT_DIR
    factor_file: str = FACTOR_FILE
    output_format: str = OUTPUT_FORMAT
    save_figures: bool = SAVE_FIGURES

    def __post_init__(self):
        if not 1 <= self.formation_month <= 12:
            raise ValueError(f"formation_month must be 1-12, got {self.formation_month}")
        if self.n_buckets < 2:
            raise ValueError("n_buckets must be at least 2 to form a long-short spread")
        if self.signal not in ('rdm', 'rds'):
            raise ValueError(f"Unknown signal {self.signal!r}; expected 'rdm' or 'rds'")
        if self.weighting not in ('equal', 'value'):
            raise ValueError(f"Unknown weighting {self.weighting!r}; expected 'equal' or 'value'")
        if self.obs_policy not in ('consecutive', 'total'):
            raise ValueError(f"Unknown obs_policy {self.obs_policy!r}")
        if self.min_obs < 1:
            raise ValueError("min_obs must be positive")
        if self.output_format not in ('parquet', 'csv', 'both'):
            raise ValueError(f"Unknown output_format {self.output_format!r}")
        for level in self.confidence_levels:
            if not 0 < level < 1:
                raise ValueError(f"Confidence level must be in (0, 1), got {level}")

    def with_overrides(self, **kwargs) -> "StudyConfig":
        """Copy with the given fields replaced; None values are ignored."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})
