"""
Recovery Milestone Tracker - Milestone Catalog
==============================================

Loader and accessor for the evidence-based milestone table.

The catalog ships as ``milestone_catalog.yaml`` next to this module, grouped
by surgery type. Rows are loaded once into immutable ``Milestone`` records
and never mutated; declaration order is preserved and is the order every
query returns.
"""

import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import pandas as pd
import yaml

from .config import MilestoneCategory, SurgeryType

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).parent / "milestone_catalog.yaml"


@dataclass(frozen=True)
class Milestone:
    """
    A catalog-defined expected recovery event.

    Attributes:
        id: Globally unique milestone id (e.g. ``kr-mob-4``)
        surgery_type: Procedure this milestone belongs to
        category: Recovery domain
        description: Patient-facing description
        expected_day_post_op: Expected day of achievement (day 0 = surgery)
        tolerance_days: +/- window considered on track
        weight: Importance in weighted progress, in (0, 1]
        prerequisites: Milestone ids expected first (informational only)
    """
    id: str
    surgery_type: SurgeryType
    category: MilestoneCategory
    description: str
    expected_day_post_op: int
    tolerance_days: int
    weight: float
    prerequisites: Tuple[str, ...] = ()

    def __post_init__(self):
        """Catalog invariants"""
        assert self.expected_day_post_op >= 0, f"{self.id}: expected day {self.expected_day_post_op} < 0"
        assert self.tolerance_days > 0, f"{self.id}: tolerance {self.tolerance_days} must be positive"
        assert 0 < self.weight <= 1, f"{self.id}: weight {self.weight} out of range (0, 1]"

    def to_dict(self) -> dict:
        d = asdict(self)
        d['surgery_type'] = self.surgery_type.value
        d['category'] = self.category.value
        d['prerequisites'] = list(self.prerequisites)
        return d


class MilestoneCatalog:
    """
    Versioned, read-only table of milestones.

    Provides typed access to:
    - Milestones per surgery type (optionally per category)
    - Single-milestone lookup by id
    - A tabular view for validation and reporting
    """

    def __init__(self, yaml_path: Optional[Union[str, Path]] = None):
        """
        Load catalog from YAML file.

        Args:
            yaml_path: Path to a catalog YAML. If None, uses the packaged one.

        Raises:
            FileNotFoundError: catalog file missing
            ValueError: unknown surgery type or category, missing field,
                or duplicate id
            AssertionError: row outside the weight, tolerance or
                expected-day ranges (raised by Milestone)
        """
        if yaml_path is None:
            yaml_path = DEFAULT_CATALOG_PATH

        with open(yaml_path, 'r') as f:
            self._data = yaml.safe_load(f) or {}

        self.version = str(self._data.get('metadata', {}).get('version', 'unknown'))

        self._milestones: List[Milestone] = []
        for surgery_key, rows in (self._data.get('milestones') or {}).items():
            surgery_type = SurgeryType(surgery_key)
            for row in rows or []:
                self._milestones.append(self._parse_row(surgery_type, row))

        self._by_id: Dict[str, Milestone] = {}
        for m in self._milestones:
            if m.id in self._by_id:
                raise ValueError(f"Duplicate milestone id '{m.id}' in {yaml_path}")
            self._by_id[m.id] = m

        logger.info(
            f"MilestoneCatalog v{self.version} loaded: {len(self._milestones)} milestones "
            f"across {len(self.surgery_types())} surgery types"
        )

    def _parse_row(self, surgery_type: SurgeryType, row: dict) -> Milestone:
        try:
            return Milestone(
                id=row['id'],
                surgery_type=surgery_type,
                category=MilestoneCategory(row['category']),
                description=row['description'],
                expected_day_post_op=int(row['expected_day_post_op']),
                tolerance_days=int(row['tolerance_days']),
                weight=float(row['weight']),
                prerequisites=tuple(row.get('prerequisites') or ()),
            )
        except KeyError as e:
            raise ValueError(f"Catalog row {row!r} missing field {e}") from e

    def __len__(self) -> int:
        return len(self._milestones)

    def __iter__(self):
        return iter(self._milestones)

    def get_milestones(
        self,
        surgery_type: Union[SurgeryType, str],
        category: Optional[Union[MilestoneCategory, str]] = None
    ) -> List[Milestone]:
        """
        Milestones for a surgery type in declaration order.

        Unrecognised surgery types or categories match nothing rather than
        raising.
        """
        surgery_key = getattr(surgery_type, 'value', surgery_type)
        category_key = getattr(category, 'value', category)
        return [
            m for m in self._milestones
            if m.surgery_type.value == surgery_key
            and (category_key is None or m.category.value == category_key)
        ]

    def get_milestone(self, milestone_id: str) -> Optional[Milestone]:
        """Look up a milestone by id; None if not in the catalog."""
        return self._by_id.get(milestone_id)

    def surgery_types(self) -> List[SurgeryType]:
        """Surgery types present in the catalog, in declaration order."""
        seen = []
        for m in self._milestones:
            if m.surgery_type not in seen:
                seen.append(m.surgery_type)
        return seen

    def to_frame(self) -> pd.DataFrame:
        """One row per milestone; prerequisites kept as lists."""
        columns = [
            'id', 'surgery_type', 'category', 'description',
            'expected_day_post_op', 'tolerance_days', 'weight', 'prerequisites'
        ]
        return pd.DataFrame([m.to_dict() for m in self._milestones], columns=columns)
