"""
Recovery Milestone Tracker - Configuration & Domain Types
==========================================================

This module defines the core domain types for post-operative recovery
milestone tracking, together with the tunable constants that drive timeline
personalization and the self-learning adjustment loop.

Personalization Model
---------------------
A milestone's expected post-op day is scaled by a single multiplier built
from patient risk factors:

    multiplier = (1 + age_term + bmi_term) × smoking × activity × Π comorbidity

The additive terms are applied first, then the multiplicative ones. The
final multiplier is floored (default 0.5); there is no ceiling.

Learning Buckets
----------------
Observed outcomes are pooled per (milestone, bucket) where the bucket is a
coarse categorical hash of the patient:

    (10-year age band, BMI tier, smoking status)

The boundaries are part of the contract: outcomes recorded under one
configuration must land in the same bucket when read back.
"""

import math
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import yaml


# =============================================================================
# SURGERY / MILESTONE CLASSIFICATION
# =============================================================================

class SurgeryType(str, Enum):
    """Procedures with an evidence-based milestone set in the catalog."""
    KNEE_REPLACEMENT = "knee_replacement"
    HIP_REPLACEMENT = "hip_replacement"
    CARDIAC_BYPASS = "cardiac_bypass"
    APPENDECTOMY = "appendectomy"
    CESAREAN = "cesarean"
    SHOULDER_ARTHROSCOPY = "shoulder_arthroscopy"
    SPINAL_FUSION = "spinal_fusion"
    HERNIA_REPAIR = "hernia_repair"
    COLECTOMY = "colectomy"
    CHOLECYSTECTOMY = "cholecystectomy"


class MilestoneCategory(str, Enum):
    """
    Recovery domains used for the category breakdown.

    Every comparative analysis reports all five, even when a surgery type
    has no milestones in one of them.
    """
    MOBILITY = "mobility"
    WOUND_HEALING = "wound_healing"
    PAIN_MANAGEMENT = "pain_management"
    FUNCTIONAL_INDEPENDENCE = "functional_independence"
    RETURN_TO_WORK = "return_to_work"


class DeviationStatus(str, Enum):
    """
    Gap between actual (or projected) achievement and the personalized day.

    - AHEAD: achieved earlier than the tolerance window
    - ON_TRACK: within tolerance, or not yet due
    - BEHIND: late by up to twice the tolerance
    - SIGNIFICANTLY_BEHIND: late by more than twice the tolerance
    """
    AHEAD = "ahead"
    ON_TRACK = "on_track"
    BEHIND = "behind"
    SIGNIFICANTLY_BEHIND = "significantly_behind"


class ProgressStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    ACHIEVED = "achieved"
    SKIPPED = "skipped"


# =============================================================================
# PATIENT FACTORS
# =============================================================================

class SmokingStatus(str, Enum):
    NEVER = "never"
    FORMER = "former"
    CURRENT = "current"


class ActivityLevel(str, Enum):
    """Self-reported activity level before surgery."""
    SEDENTARY = "sedentary"
    LIGHT = "light"
    MODERATE = "moderate"
    ACTIVE = "active"


class BMITier(str, Enum):
    NORMAL = "normal"
    OVERWEIGHT = "overweight"
    OBESE = "obese"


@dataclass
class PatientFactors:
    """
    Caller-supplied risk profile used for personalization.

    Carries no identity; the same profile may be reused across patients.
    Enum fields accept either members or their string values.

    Attributes:
        age: Age in years
        bmi: Body mass index (kg/m²)
        comorbidities: Free-text comorbidity codes; unknown codes are ignored
        smoking_status: never / former / current
        activity_level_pre_op: sedentary / light / moderate / active
    """
    age: float
    bmi: float
    comorbidities: List[str] = field(default_factory=list)
    smoking_status: SmokingStatus = SmokingStatus.NEVER
    activity_level_pre_op: ActivityLevel = ActivityLevel.MODERATE

    def __post_init__(self):
        """Boundary validation: coerce enums, check ranges"""
        self.smoking_status = SmokingStatus(self.smoking_status)
        self.activity_level_pre_op = ActivityLevel(self.activity_level_pre_op)
        self.comorbidities = list(self.comorbidities)
        assert 0 <= self.age <= 120, f"Age {self.age} out of range [0, 120]"
        assert self.bmi > 0, f"BMI {self.bmi} must be positive"

    def to_dict(self) -> dict:
        return {
            'age': self.age,
            'bmi': self.bmi,
            'comorbidities': list(self.comorbidities),
            'smoking_status': self.smoking_status.value,
            'activity_level_pre_op': self.activity_level_pre_op.value,
        }


# =============================================================================
# PERSONALIZATION CONFIGURATION
# =============================================================================

@dataclass
class TrackerConfig:
    """Master configuration for timeline personalization and learning"""

    # Age: additive, relative to baseline
    age_baseline: float = 50.0
    age_penalty_per_year: float = 0.01    # +1% per year above baseline
    age_credit_per_year: float = 0.005    # -0.5% per year below baseline

    # BMI: additive, only above threshold
    bmi_threshold: float = 30.0
    bmi_penalty_per_unit: float = 0.02

    smoking_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "never": 1.0,
        "former": 1.05,
        "current": 1.25,
    })

    activity_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "sedentary": 1.15,
        "light": 1.0,
        "moderate": 1.0,
        "active": 0.90,
    })

    # Applied once per distinct matching comorbidity
    comorbidity_multipliers: Dict[str, float] = field(default_factory=lambda: {
        "diabetes": 1.25,
        "obesity": 1.20,
        "copd": 1.30,
        "heart_failure": 1.35,
        "chronic_kidney_disease": 1.20,
        "rheumatoid_arthritis": 1.15,
        "depression": 1.10,
        "peripheral_vascular_disease": 1.25,
        "osteoporosis": 1.15,
        "anemia": 1.10,
    })

    multiplier_floor: float = 0.5

    # Self-learning EMA weight given to the newest observation
    learning_rate: float = 0.3

    # Bucket boundaries
    age_band_width: int = 10
    bmi_tier_thresholds: Tuple[float, float] = (25.0, 30.0)  # (overweight, obese)

    # Synthetic cohort percentile: round(progress × scale), clipped to bounds
    cohort_scale: float = 1.1
    percentile_bounds: Tuple[int, int] = (1, 99)

    def __post_init__(self):
        assert 0 < self.learning_rate <= 1, f"learning_rate {self.learning_rate} must be in (0, 1]"
        assert self.multiplier_floor > 0, "multiplier_floor must be positive"
        assert self.age_band_width > 0, "age_band_width must be positive"
        lo, hi = self.bmi_tier_thresholds
        assert lo <= hi, f"BMI tier thresholds {self.bmi_tier_thresholds} out of order"


def load_config(config_path: Union[str, Path]) -> TrackerConfig:
    """
    Load configuration overrides from YAML.

    The file holds a flat mapping of TrackerConfig field names; any field not
    listed keeps its default. Multiplier tables replace the defaults wholesale.

    Raises:
        ValueError: unknown keys, or a document that is not a mapping
    """
    with open(config_path, 'r') as f:
        overrides = yaml.safe_load(f) or {}

    if not isinstance(overrides, dict):
        raise ValueError(f"Config {config_path} must be a mapping, got {type(overrides).__name__}")

    known = {f.name for f in fields(TrackerConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ValueError(f"Unknown config keys: {unknown}")

    for key in ('bmi_tier_thresholds', 'percentile_bounds'):
        if key in overrides:
            overrides[key] = tuple(overrides[key])

    return TrackerConfig(**overrides)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def round_half_up(value: float) -> int:
    """Round to nearest integer, halves toward positive infinity (2.5 -> 3, -2.5 -> -2)"""
    return int(math.floor(value + 0.5))


def get_age_band(age: float, config: Optional[TrackerConfig] = None) -> int:
    """Convert age to the lower bound of its band (47 -> 40)"""
    width = (config or DEFAULT_CONFIG).age_band_width
    return int(math.floor(age / width) * width)


def get_bmi_tier(bmi: float, config: Optional[TrackerConfig] = None) -> BMITier:
    """Convert BMI to tier: <25 normal, <30 overweight, else obese"""
    overweight, obese = (config or DEFAULT_CONFIG).bmi_tier_thresholds
    if bmi < overweight:
        return BMITier.NORMAL
    elif bmi < obese:
        return BMITier.OVERWEIGHT
    else:
        return BMITier.OBESE


def factors_bucket_key(
    factors: PatientFactors,
    config: Optional[TrackerConfig] = None
) -> Tuple[int, str, str]:
    """
    Coarse categorical key used to pool learned outcomes.

    Comorbidities and activity level are not part of the key.

    >>> factors_bucket_key(PatientFactors(age=63, bmi=27.5, smoking_status="former"))
    (60, 'overweight', 'former')
    """
    return (
        get_age_band(factors.age, config),
        get_bmi_tier(factors.bmi, config).value,
        factors.smoking_status.value,
    )


# Default config instance
DEFAULT_CONFIG = TrackerConfig()
