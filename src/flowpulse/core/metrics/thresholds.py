"""
Threshold constants used by the metrics layer.
"""

# WIP limits per engineer
WIP_LIMIT = 5
WIP_IDEAL = 5
WIP_OK = 4
WIP_WARNING = 6
WIP_CRITICAL = 8

# Project activity
STALE_UPDATE_DAYS = 7
RECENT_ACTIVITY_DAYS = 14

# Started issues older than this are WIP age violations
WIP_AGE_DAYS = 14

# Active projects per engineer
MULTI_PROJECT_FOCUSED = 1
MULTI_PROJECT_CAUTION = 2
MULTI_PROJECT_WARNING = 3
MULTI_PROJECT_CRITICAL = 4

# Target vs estimated end date
DATE_DISCREPANCY_DAYS = 30

# Estimate accuracy bands (relative error)
ESTIMATE_FULL_CREDIT_BAND = 0.2
ESTIMATE_HALF_CREDIT_BAND = 0.7

# Estimated end date when a project has no completions yet
NO_VELOCITY_HORIZON_MONTHS = 6

# Velocity pillar: days the estimated end may slip past target
AT_RISK_DAYS_OFF_TARGET = 14
OFF_TRACK_DAYS_OFF_TARGET = 28

# Quality pillar
QUALITY_PERIOD_DAYS = 14
BUG_PENALTY_PER_ENGINEER = 12
NET_BUG_PENALTY_PER_ENGINEER = 200
BUG_AGE_PENALTY_PER_DAY = 0.5

# Pillar status bands over a violation percentage
PILLAR_STATUS_BANDS = (
    (20, "peakFlow"),
    (40, "strongRhythm"),
    (60, "steadyProgress"),
    (80, "earlyTraction"),
)
PILLAR_STATUS_FLOOR = "lowTraction"
