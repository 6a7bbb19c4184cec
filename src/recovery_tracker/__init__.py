"""
Recovery Milestone Tracker
==========================
Evidence-based post-operative milestone tracking with personalized
timelines and self-learning adjustments.
"""

from .config import (
    TrackerConfig,
    DEFAULT_CONFIG,
    SurgeryType,
    MilestoneCategory,
    DeviationStatus,
    ProgressStatus,
    SmokingStatus,
    ActivityLevel,
    PatientFactors,
    factors_bucket_key,
    load_config
)

from .catalog import (
    Milestone,
    MilestoneCatalog
)

from .models import (
    ProgressEntry,
    OutcomeRecord,
    DeviationReport,
    ComparativeAnalysis,
    PersonalizedMilestone
)

from .milestone_tracker import RecoveryMilestoneTracker

__version__ = "1.0.0"
