"""
Recovery Milestone Tracker
==========================
Per-patient milestone progress, deviation detection against personalized
timelines, and a self-learning adjustment loop.

Read flow:  catalog -> personalization (learned ratio first) -> deviation -> comparison
Write flow: caller -> progress store | outcome history, independently

The tracker owns all progress, outcome and learned-adjustment state. Every
accessor returns copies; callers never receive a handle into internal tables.

Concurrency
-----------
Single-threaded and synchronous. No locking is done here: a host serving
concurrent callers must serialise writes per patient (and per milestone
bucket for record_outcome) to keep last-write-wins and EMA updates ordered.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .catalog import Milestone, MilestoneCatalog
from .config import (
    DEFAULT_CONFIG, DeviationStatus, MilestoneCategory, PatientFactors,
    ProgressStatus, SurgeryType, TrackerConfig, factors_bucket_key, round_half_up
)
from .models import (
    OUTCOME_RECORD_SCHEMA, PROGRESS_ENTRY_SCHEMA,
    ComparativeAnalysis, DeviationReport, OutcomeRecord, PersonalizedMilestone,
    ProgressEntry, apply_schema, empty_category_breakdown
)

logger = logging.getLogger(__name__)

LearnedKey = Tuple[str, Tuple[int, str, str]]


class RecoveryMilestoneTracker:
    """
    Tracks post-operative recovery milestones for many patients.

    Personalization multiplies a milestone's expected day by a risk-factor
    multiplier, unless outcomes have already been observed for the patient's
    bucket, in which case the learned actual/expected ratio is used instead.
    """

    def __init__(
        self,
        catalog: Optional[MilestoneCatalog] = None,
        config: Optional[TrackerConfig] = None
    ):
        self.catalog = catalog if catalog is not None else MilestoneCatalog()
        self.config = config if config is not None else DEFAULT_CONFIG

        # patient_id -> milestone_id -> entry (insertion ordered)
        self._progress: Dict[str, Dict[str, ProgressEntry]] = {}
        self._outcomes: List[OutcomeRecord] = []
        self._learned: Dict[LearnedKey, float] = {}

        logger.info(f"RecoveryMilestoneTracker initialised with catalog v{self.catalog.version}")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_milestones(
        self,
        surgery_type: Union[SurgeryType, str],
        category: Optional[Union[MilestoneCategory, str]] = None
    ) -> List[Milestone]:
        """Catalog milestones for a surgery type; [] if unrecognised."""
        return self.catalog.get_milestones(surgery_type, category)

    # ------------------------------------------------------------------
    # Progress store
    # ------------------------------------------------------------------

    def track_progress(
        self,
        patient_id: str,
        milestone_id: str,
        status: Union[ProgressStatus, str],
        day_post_op: Optional[int],
        notes: str = ""
    ) -> ProgressEntry:
        """
        Record a patient's status on a milestone, replacing any earlier entry.

        The milestone id is not checked against the catalog. achieved_day is
        set from day_post_op only when status is ACHIEVED and cleared
        otherwise, even if an earlier write had recorded an achieved day.

        Raises:
            ValueError: status is not a ProgressStatus value
        """
        status = ProgressStatus(status)
        entry = ProgressEntry(
            patient_id=patient_id,
            milestone_id=milestone_id,
            status=status,
            achieved_day=day_post_op if status == ProgressStatus.ACHIEVED else None,
            notes=notes
        )

        if self.catalog.get_milestone(milestone_id) is None:
            logger.debug(f"Progress for {patient_id} stored against unknown milestone '{milestone_id}'")

        self._progress.setdefault(patient_id, {})[milestone_id] = entry
        return replace(entry)

    def get_progress(self, patient_id: str) -> List[ProgressEntry]:
        """Copies of a patient's live entries, in first-recorded order."""
        return [replace(e) for e in self._progress.get(patient_id, {}).values()]

    # ------------------------------------------------------------------
    # Personalization
    # ------------------------------------------------------------------

    def adjust_day(self, base_day: float, milestone_id: str, factors: PatientFactors) -> float:
        """
        Personalized expected day for a milestone.

        A learned ratio for (milestone, bucket) overrides the static model
        entirely; there is no blending.
        """
        learned = self._learned.get(self._learned_key(milestone_id, factors))
        if learned is not None:
            logger.debug(f"{milestone_id}: learned ratio {learned:.3f} overrides static model")
            return base_day * learned

        multiplier, _ = self._static_multiplier(factors)
        return base_day * multiplier

    def explain_personalization(self, milestone_id: str, factors: PatientFactors) -> Dict[str, float]:
        """
        Factor-by-factor breakdown of the multiplier used for a milestone.

        Additive terms (age, bmi) are reported as 1 + their contribution so
        every entry reads as a multiplier. When a learned ratio applies, only
        that ratio is returned.
        """
        learned = self._learned.get(self._learned_key(milestone_id, factors))
        if learned is not None:
            return {'learned_ratio': round(learned, 4)}

        multiplier, contributions = self._static_multiplier(factors)
        contributions['total'] = round(multiplier, 4)
        return contributions

    def personalize_timeline(
        self,
        surgery_type: Union[SurgeryType, str],
        factors: PatientFactors
    ) -> List[PersonalizedMilestone]:
        """Every catalog milestone for the surgery type with its personalized day."""
        return [
            PersonalizedMilestone.from_milestone(
                m, round_half_up(self.adjust_day(m.expected_day_post_op, m.id, factors))
            )
            for m in self.get_milestones(surgery_type)
        ]

    def _static_multiplier(self, factors: PatientFactors) -> Tuple[float, Dict[str, float]]:
        cfg = self.config
        contributions = {}
        multiplier = 1.0

        # 1. Age: +1%/year above baseline, -0.5%/year below
        if factors.age > cfg.age_baseline:
            age_term = (factors.age - cfg.age_baseline) * cfg.age_penalty_per_year
        elif factors.age < cfg.age_baseline:
            age_term = -(cfg.age_baseline - factors.age) * cfg.age_credit_per_year
        else:
            age_term = 0.0
        multiplier += age_term
        contributions['age'] = round(1 + age_term, 4)

        # 2. BMI: +2%/unit above threshold
        bmi_term = 0.0
        if factors.bmi > cfg.bmi_threshold:
            bmi_term = (factors.bmi - cfg.bmi_threshold) * cfg.bmi_penalty_per_unit
        multiplier += bmi_term
        contributions['bmi'] = round(1 + bmi_term, 4)

        # 3. Smoking
        smoke_mod = cfg.smoking_multipliers.get(factors.smoking_status.value, 1.0)
        multiplier *= smoke_mod
        contributions['smoking'] = smoke_mod

        # 4. Pre-op activity
        activity_mod = cfg.activity_multipliers.get(factors.activity_level_pre_op.value, 1.0)
        multiplier *= activity_mod
        contributions['activity'] = activity_mod

        # 5. Comorbidities, once each; unknown codes ignored
        for condition in dict.fromkeys(factors.comorbidities):
            cm = cfg.comorbidity_multipliers.get(condition)
            if cm:
                multiplier *= cm
                contributions[condition] = cm

        floored = max(multiplier, cfg.multiplier_floor)
        contributions['floor_applied'] = float(floored != multiplier)
        logger.debug(f"Static multiplier {multiplier:.3f} (effective {floored:.3f})")

        return floored, contributions

    # ------------------------------------------------------------------
    # Deviation detection
    # ------------------------------------------------------------------

    def assess_deviation(
        self,
        patient_id: str,
        surgery_type: Union[SurgeryType, str],
        current_day_post_op: int,
        factors: Optional[PatientFactors] = None
    ) -> List[DeviationReport]:
        """
        One report per catalog milestone for the surgery type.

        Milestones are not filtered by relevance to the current day; that is
        left to the caller.
        """
        progress = self._progress.get(patient_id, {})
        reports = []

        for m in self.get_milestones(surgery_type):
            if factors is not None:
                personalized = self.adjust_day(m.expected_day_post_op, m.id, factors)
            else:
                personalized = float(m.expected_day_post_op)

            entry = progress.get(m.id)
            achieved = entry is not None and entry.status == ProgressStatus.ACHIEVED
            actual_day = entry.achieved_day if achieved else None

            if actual_day is not None:
                deviation = actual_day - personalized
                status = self._classify(deviation, m.tolerance_days, can_be_ahead=True)
            elif achieved:
                # Marked achieved without a day: nothing to measure against
                deviation = 0.0
                status = DeviationStatus.ON_TRACK
            else:
                deviation = current_day_post_op - personalized
                status = self._classify(deviation, m.tolerance_days, can_be_ahead=False)

            deviation_days = round_half_up(deviation)
            reports.append(DeviationReport(
                milestone_id=m.id,
                description=m.description,
                expected_day=m.expected_day_post_op,
                personalized_day=round_half_up(personalized),
                actual_day=actual_day,
                current_day_post_op=current_day_post_op,
                status=status,
                deviation_days=deviation_days,
                recommendation=self._generate_recommendation(status, m, deviation_days)
            ))

        return reports

    @staticmethod
    def _classify(deviation: float, tolerance: int, can_be_ahead: bool) -> DeviationStatus:
        """Bucket a signed deviation against a milestone's tolerance window"""
        if can_be_ahead and deviation < -tolerance:
            return DeviationStatus.AHEAD
        elif deviation <= tolerance:
            return DeviationStatus.ON_TRACK
        elif deviation <= tolerance * 2:
            return DeviationStatus.BEHIND
        else:
            return DeviationStatus.SIGNIFICANTLY_BEHIND

    @staticmethod
    def _generate_recommendation(status: DeviationStatus, milestone: Milestone, deviation_days: int) -> str:
        days = abs(deviation_days)
        desc = milestone.description

        if status == DeviationStatus.AHEAD:
            return (f'Patient is {days} days ahead on "{desc}". '
                    'Continue current protocol; avoid overexertion.')
        elif status == DeviationStatus.ON_TRACK:
            return f'Patient is on track for "{desc}". Maintain current plan.'
        elif status == DeviationStatus.BEHIND:
            return (f'Patient is {days} days behind on "{desc}". '
                    'Consider increasing therapy frequency or reassessing barriers.')
        else:
            return (f'Patient is significantly behind ({days} days) on "{desc}". '
                    'Recommend clinical reassessment and potential plan modification.')

    def explain_deviation(self, reports: List[DeviationReport]) -> str:
        """
        Plain-language summary of a deviation assessment.

        Milestones needing attention are listed first; on-track and ahead
        milestones are summarised by count.
        """
        by_status: Dict[DeviationStatus, List[DeviationReport]] = {s: [] for s in DeviationStatus}
        for r in reports:
            by_status[r.status].append(r)

        lines = []
        day = reports[0].current_day_post_op if reports else 0
        lines.append(f"RECOVERY MILESTONE STATUS (day {day} post-op)")
        lines.append("=" * 40)
        lines.append("")

        for status, heading in [
            (DeviationStatus.SIGNIFICANTLY_BEHIND, "SIGNIFICANTLY BEHIND"),
            (DeviationStatus.BEHIND, "BEHIND"),
        ]:
            if by_status[status]:
                lines.append(f"{heading}:")
                for r in by_status[status]:
                    lines.append(f"  • {r.description} (expected day {r.personalized_day}, "
                                 f"{abs(r.deviation_days)} days late)")
                lines.append("")

        if by_status[DeviationStatus.AHEAD]:
            lines.append("AHEAD:")
            for r in by_status[DeviationStatus.AHEAD]:
                lines.append(f"  • {r.description} (achieved day {r.actual_day})")
            lines.append("")

        lines.append(f"On track: {len(by_status[DeviationStatus.ON_TRACK])} of {len(reports)} milestones")

        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Comparative analysis
    # ------------------------------------------------------------------

    def get_comparative_analysis(
        self,
        patient_id: str,
        surgery_type: Union[SurgeryType, str],
        current_day_post_op: int
    ) -> ComparativeAnalysis:
        """
        Weighted completion of milestones due by now.

        A milestone is due once expected_day_post_op <= current day +
        tolerance. Achieved milestones are bucketed against the catalog day
        into ahead / on track / behind (significantly behind folds into
        behind).
        """
        progress = self._progress.get(patient_id, {})

        total_weight = 0.0
        achieved_weight = 0.0
        ahead_count = behind_count = on_track_count = 0
        category_weight = empty_category_breakdown()
        category_achieved = empty_category_breakdown()

        for m in self.get_milestones(surgery_type):
            if m.expected_day_post_op > current_day_post_op + m.tolerance_days:
                continue

            total_weight += m.weight
            category_weight[m.category.value] += m.weight

            entry = progress.get(m.id)
            if entry is None or entry.status != ProgressStatus.ACHIEVED:
                continue

            achieved_weight += m.weight
            category_achieved[m.category.value] += m.weight

            achieved_day = entry.achieved_day if entry.achieved_day is not None else m.expected_day_post_op
            deviation = achieved_day - m.expected_day_post_op
            if deviation < -m.tolerance_days:
                ahead_count += 1
            elif deviation <= m.tolerance_days:
                on_track_count += 1
            else:
                behind_count += 1

        overall_pct = (achieved_weight / total_weight) * 100 if total_weight > 0 else 0.0

        breakdown = {
            cat: (category_achieved[cat] / weight) * 100 if weight > 0 else 0.0
            for cat, weight in category_weight.items()
        }

        # Synthetic placeholder, not an empirical cohort lookup
        lo, hi = self.config.percentile_bounds
        percentile = int(np.clip(round_half_up(overall_pct * self.config.cohort_scale), lo, hi))

        return ComparativeAnalysis(
            patient_id=patient_id,
            surgery_type=getattr(surgery_type, 'value', surgery_type),
            overall_progress_pct=round_half_up(overall_pct * 10) / 10,
            category_breakdown=breakdown,
            cohort_percentile=percentile,
            ahead_count=ahead_count,
            behind_count=behind_count,
            on_track_count=on_track_count
        )

    # ------------------------------------------------------------------
    # Self-learning
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        surgery_type: Union[SurgeryType, str],
        factors: PatientFactors,
        milestone_id: str,
        actual_day: float
    ) -> None:
        """
        Record an observed achievement day and update the learned ratio.

        The bucket's ratio is an exponential moving average of
        actual_day / max(expected_day, 1), seeded with the first observation.
        Unknown milestones are ignored.
        """
        milestone = self.catalog.get_milestone(milestone_id)
        if milestone is None:
            logger.warning(f"Outcome for unknown milestone '{milestone_id}' ignored")
            return

        self._outcomes.append(OutcomeRecord(
            surgery_type=getattr(surgery_type, 'value', surgery_type),
            factors=replace(factors),
            milestone_id=milestone_id,
            expected_day=milestone.expected_day_post_op,
            actual_day=actual_day
        ))

        key = self._learned_key(milestone_id, factors)
        ratio = actual_day / max(milestone.expected_day_post_op, 1)
        prev = self._learned.get(key, ratio)
        alpha = self.config.learning_rate
        self._learned[key] = prev * (1 - alpha) + ratio * alpha

        logger.debug(f"Learned ratio {key}: {prev:.3f} -> {self._learned[key]:.3f}")

    def get_learned_adjustment(self, milestone_id: str, factors: PatientFactors) -> Optional[float]:
        """Current learned ratio for the patient's bucket, if any."""
        return self._learned.get(self._learned_key(milestone_id, factors))

    def get_outcome_history(self, milestone_id: Optional[str] = None) -> List[OutcomeRecord]:
        """Copies of recorded outcomes, oldest first."""
        return [
            replace(r, factors=replace(r.factors))
            for r in self._outcomes
            if milestone_id is None or r.milestone_id == milestone_id
        ]

    def summarize_outcomes(self, milestone_id: Optional[str] = None) -> Dict[str, Optional[float]]:
        """Summary statistics of observed actual/expected ratios"""
        records = [r for r in self._outcomes if milestone_id is None or r.milestone_id == milestone_id]
        learned_buckets = sum(
            1 for (mid, _) in self._learned if milestone_id is None or mid == milestone_id
        )

        if not records:
            return {
                "count": 0,
                "mean_ratio": None,
                "median_ratio": None,
                "p25_ratio": None,
                "p75_ratio": None,
                "mean_abs_deviation_days": None,
                "learned_buckets": learned_buckets
            }

        ratios = np.array([r.ratio for r in records])
        deviations = np.array([r.actual_day - r.expected_day for r in records])

        return {
            "count": len(records),
            "mean_ratio": round(float(np.mean(ratios)), 3),
            "median_ratio": round(float(np.median(ratios)), 3),
            "p25_ratio": round(float(np.percentile(ratios, 25)), 3),
            "p75_ratio": round(float(np.percentile(ratios, 75)), 3),
            "mean_abs_deviation_days": round(float(np.mean(np.abs(deviations))), 2),
            "learned_buckets": learned_buckets
        }

    def _learned_key(self, milestone_id: str, factors: PatientFactors) -> LearnedKey:
        return (milestone_id, factors_bucket_key(factors, self.config))

    # ------------------------------------------------------------------
    # Tabular export
    # ------------------------------------------------------------------

    def progress_frame(self, patient_id: Optional[str] = None) -> pd.DataFrame:
        """Live progress entries as a typed DataFrame (all patients by default)"""
        if patient_id is None:
            entries = [e for per_patient in self._progress.values() for e in per_patient.values()]
        else:
            entries = list(self._progress.get(patient_id, {}).values())

        df = pd.DataFrame([e.to_dict() for e in entries], columns=list(PROGRESS_ENTRY_SCHEMA))
        return apply_schema(df, PROGRESS_ENTRY_SCHEMA)

    def outcome_frame(self) -> pd.DataFrame:
        """Outcome history as a typed DataFrame"""
        df = pd.DataFrame([r.to_dict() for r in self._outcomes], columns=list(OUTCOME_RECORD_SCHEMA))
        return apply_schema(df, OUTCOME_RECORD_SCHEMA)


# =============================================================================
# EXAMPLE USAGE
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    print("\n" + "=" * 60)
    print("EXAMPLE: Knee replacement, 72yo diabetic smoker, day 21")
    print("=" * 60)

    tracker = RecoveryMilestoneTracker()
    factors = PatientFactors(
        age=72,
        bmi=32,
        comorbidities=["diabetes"],
        smoking_status="current",
        activity_level_pre_op="sedentary"
    )

    tracker.track_progress("P001", "kr-mob-1", "achieved", 0)
    tracker.track_progress("P001", "kr-mob-2", "achieved", 2)
    tracker.track_progress("P001", "kr-pm-2", "achieved", 12)

    reports = tracker.assess_deviation("P001", SurgeryType.KNEE_REPLACEMENT, 21, factors)
    print(tracker.explain_deviation(reports))

    analysis = tracker.get_comparative_analysis("P001", SurgeryType.KNEE_REPLACEMENT, 21)
    print(f"\nWeighted progress: {analysis.overall_progress_pct}% "
          f"(synthetic percentile {analysis.cohort_percentile})")
