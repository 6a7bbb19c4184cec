"""
Recovery Milestone Tracker - Records & Schemas
==============================================
Dataclasses for progress, outcomes and computed reports, plus the tabular
schemas used when exporting them to pandas.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd

from .catalog import Milestone
from .config import (
    DeviationStatus, MilestoneCategory, PatientFactors, ProgressStatus, SurgeryType
)

logger = logging.getLogger(__name__)


# ============================================================
# STORED RECORDS
# ============================================================

@dataclass
class ProgressEntry:
    """
    One live row per (patient_id, milestone_id).

    achieved_day is only meaningful when status is ACHIEVED and is None
    otherwise.
    """
    patient_id: str
    milestone_id: str
    status: ProgressStatus
    achieved_day: Optional[int] = None
    notes: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.status = ProgressStatus(self.status)
        if self.status != ProgressStatus.ACHIEVED:
            self.achieved_day = None

    def to_dict(self) -> dict:
        return {
            'patient_id': self.patient_id,
            'milestone_id': self.milestone_id,
            'status': self.status.value,
            'achieved_day': self.achieved_day,
            'notes': self.notes,
            'timestamp': self.timestamp.isoformat()
        }


@dataclass
class OutcomeRecord:
    """Observed (expected, actual) pair feeding the self-learning adjuster"""
    surgery_type: str
    factors: PatientFactors
    milestone_id: str
    expected_day: int
    actual_day: float
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def ratio(self) -> float:
        return self.actual_day / max(self.expected_day, 1)

    def to_dict(self) -> dict:
        d = {
            'surgery_type': self.surgery_type,
            'milestone_id': self.milestone_id,
            'expected_day': self.expected_day,
            'actual_day': self.actual_day,
            'ratio': round(self.ratio, 4),
            'timestamp': self.timestamp.isoformat()
        }
        d.update({f'factor_{k}': v for k, v in self.factors.to_dict().items()})
        d['factor_comorbidities'] = ','.join(self.factors.comorbidities)
        return d


# ============================================================
# COMPUTED REPORTS - never stored
# ============================================================

@dataclass
class DeviationReport:
    """Actual or projected achievement versus the personalized day"""
    milestone_id: str
    description: str
    expected_day: int
    personalized_day: int
    actual_day: Optional[int]
    current_day_post_op: int
    status: DeviationStatus
    deviation_days: int  # signed; negative = earlier than personalized day
    recommendation: str

    def to_dict(self) -> dict:
        return {
            'milestone_id': self.milestone_id,
            'description': self.description,
            'expected_day': self.expected_day,
            'personalized_day': self.personalized_day,
            'actual_day': self.actual_day,
            'current_day_post_op': self.current_day_post_op,
            'status': self.status.value,
            'deviation_days': self.deviation_days,
            'recommendation': self.recommendation
        }


@dataclass
class ComparativeAnalysis:
    """
    Weighted completion of milestones due by the current day.

    cohort_percentile is a synthetic placeholder derived from progress, not
    an empirical population lookup. Do not use it for clinical comparison.
    """
    patient_id: str
    surgery_type: str
    overall_progress_pct: float
    category_breakdown: Dict[str, float]
    cohort_percentile: int
    ahead_count: int = 0
    behind_count: int = 0
    on_track_count: int = 0

    def to_dict(self) -> dict:
        return {
            'patient_id': self.patient_id,
            'surgery_type': self.surgery_type,
            'overall_progress_pct': self.overall_progress_pct,
            'category_breakdown': dict(self.category_breakdown),
            'cohort_percentile': self.cohort_percentile,
            'ahead_count': self.ahead_count,
            'behind_count': self.behind_count,
            'on_track_count': self.on_track_count
        }


@dataclass
class PersonalizedMilestone:
    """Catalog milestone with its patient-specific expected day"""
    id: str
    surgery_type: SurgeryType
    category: MilestoneCategory
    description: str
    expected_day_post_op: int
    tolerance_days: int
    weight: float
    prerequisites: tuple
    personalized_day: int

    @classmethod
    def from_milestone(cls, m: Milestone, personalized_day: int) -> "PersonalizedMilestone":
        return cls(
            id=m.id,
            surgery_type=m.surgery_type,
            category=m.category,
            description=m.description,
            expected_day_post_op=m.expected_day_post_op,
            tolerance_days=m.tolerance_days,
            weight=m.weight,
            prerequisites=m.prerequisites,
            personalized_day=personalized_day
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'surgery_type': self.surgery_type.value,
            'category': self.category.value,
            'description': self.description,
            'expected_day_post_op': self.expected_day_post_op,
            'tolerance_days': self.tolerance_days,
            'weight': self.weight,
            'prerequisites': list(self.prerequisites),
            'personalized_day': self.personalized_day
        }


def empty_category_breakdown() -> Dict[str, float]:
    return {c.value: 0.0 for c in MilestoneCategory}


# ============================================================
# SCHEMA DEFINITIONS - For DataFrame export
# ============================================================

PROGRESS_ENTRY_SCHEMA = {
    'patient_id': 'string',
    'milestone_id': 'string',
    'status': 'category',
    'achieved_day': 'Int32',
    'notes': 'string',
    'timestamp': 'datetime64[ns]'
}

OUTCOME_RECORD_SCHEMA = {
    'surgery_type': 'category',
    'milestone_id': 'string',
    'expected_day': 'int32',
    'actual_day': 'float32',
    'ratio': 'float32',
    'timestamp': 'datetime64[ns]',
    'factor_age': 'float32',
    'factor_bmi': 'float32',
    'factor_comorbidities': 'string',
    'factor_smoking_status': 'category',
    'factor_activity_level_pre_op': 'category'
}

SCHEMA_KEY_COLUMNS = ['patient_id', 'milestone_id']


def validate_dataframe(df: pd.DataFrame, schema: dict, table_name: str) -> List[str]:
    """
    Validate DataFrame against schema.
    Returns list of validation errors
    """
    errors = []

    missing_cols = set(schema.keys()) - set(df.columns)
    if missing_cols:
        errors.append(f"{table_name}: Missing columns: {sorted(missing_cols)}")

    extra_cols = set(df.columns) - set(schema.keys())
    if extra_cols:
        errors.append(f"{table_name}: Unexpected columns: {sorted(extra_cols)}")

    for col in SCHEMA_KEY_COLUMNS:
        if col in schema and col in df.columns and df[col].isnull().any():
            errors.append(f"{table_name}: Null values in {col}")

    return errors


def apply_schema(df: pd.DataFrame, schema: dict) -> pd.DataFrame:
    """
    Coerce exported record columns to their schema dtypes.

    Records export timestamps as ISO-8601 strings and optional days as
    int-or-None, so:
    - nullable integer columns ('Int32') are passed through pd.to_numeric
      first; a column of only None becomes all <NA> rather than failing
    - datetime columns are parsed as ISO-8601

    Columns absent from the frame are skipped. A failed conversion leaves
    the column as-is and logs a warning.
    """
    for col, dtype in schema.items():
        if col not in df.columns:
            continue
        try:
            if dtype == 'category':
                df[col] = df[col].astype('category')
            elif dtype.startswith('datetime'):
                df[col] = pd.to_datetime(df[col], format='ISO8601')
            elif dtype.startswith('Int'):
                df[col] = pd.to_numeric(df[col]).astype(dtype)
            else:
                df[col] = df[col].astype(dtype)
        except (ValueError, TypeError) as e:
            logger.warning(f"Could not convert {col} to {dtype}: {e}")
    return df
