"""
Recovery Milestone Tracker - Catalog Validation
===============================================
Integrity checks over milestone tables, loaded or candidate.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import pandas as pd

from .catalog import MilestoneCatalog
from .config import MilestoneCategory, SurgeryType

logger = logging.getLogger(__name__)


class ValidationSeverity(Enum):
    PASS = "PASS"
    WARNING = "WARNING"
    FAIL = "FAIL"
    INFO = "INFO"


@dataclass
class ValidationResult:
    name: str
    severity: ValidationSeverity
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None


class CatalogValidator:
    """
    Checks milestone rows against the catalog invariants.

    Works on the tabular form so candidate tables can be vetted before
    they are loaded (loading itself rejects duplicates and out-of-range rows).
    """

    def __init__(self, frame: pd.DataFrame, version: str = "unknown"):
        self.frame = frame
        self.version = version
        self.results: List[ValidationResult] = []

    @classmethod
    def from_catalog(cls, catalog: MilestoneCatalog) -> "CatalogValidator":
        return cls(catalog.to_frame(), version=catalog.version)

    def validate_all(self) -> List[ValidationResult]:
        self.results = []
        df = self.frame
        self._validate_ids(df)
        self._validate_ranges(df)
        self._validate_prerequisites(df)
        self._validate_coverage(df)

        for r in self.results:
            if r.severity in (ValidationSeverity.WARNING, ValidationSeverity.FAIL):
                logger.warning(f"Catalog v{self.version} {r.severity.value}: {r.name} - {r.message}")

        return self.results

    def _validate_ids(self, df: pd.DataFrame):
        dupes = sorted(df.loc[df['id'].duplicated(), 'id'].unique())
        self.results.append(ValidationResult(
            name="Ids: unique",
            severity=ValidationSeverity.PASS if not dupes else ValidationSeverity.FAIL,
            message="All milestone ids unique" if not dupes else f"Duplicated: {dupes}"
        ))

    def _validate_ranges(self, df: pd.DataFrame):
        bad_weight = df.loc[~((df['weight'] > 0) & (df['weight'] <= 1)), 'id'].tolist()
        self.results.append(ValidationResult(
            name="Range: weight",
            severity=ValidationSeverity.PASS if not bad_weight else ValidationSeverity.FAIL,
            message=f"{len(bad_weight)} violations",
            expected="0 < weight <= 1",
            actual=str(bad_weight) if bad_weight else None
        ))

        bad_tolerance = df.loc[df['tolerance_days'] <= 0, 'id'].tolist()
        self.results.append(ValidationResult(
            name="Range: tolerance_days",
            severity=ValidationSeverity.PASS if not bad_tolerance else ValidationSeverity.FAIL,
            message=f"{len(bad_tolerance)} violations",
            expected="tolerance_days > 0",
            actual=str(bad_tolerance) if bad_tolerance else None
        ))

        bad_day = df.loc[df['expected_day_post_op'] < 0, 'id'].tolist()
        self.results.append(ValidationResult(
            name="Range: expected_day_post_op",
            severity=ValidationSeverity.PASS if not bad_day else ValidationSeverity.FAIL,
            message=f"{len(bad_day)} violations",
            expected="expected_day_post_op >= 0",
            actual=str(bad_day) if bad_day else None
        ))

    def _validate_prerequisites(self, df: pd.DataFrame):
        ids_by_surgery = df.groupby('surgery_type')['id'].apply(set).to_dict()

        unresolved = []
        for row in df.itertuples(index=False):
            for prereq in row.prerequisites:
                if prereq not in ids_by_surgery.get(row.surgery_type, set()):
                    unresolved.append(f"{row.id}->{prereq}")

        self.results.append(ValidationResult(
            name="Prerequisites: resolve within surgery type",
            severity=ValidationSeverity.PASS if not unresolved else ValidationSeverity.FAIL,
            message=f"{len(unresolved)} unresolved",
            actual=str(unresolved) if unresolved else None
        ))

        graph = {row.id: list(row.prerequisites) for row in df.itertuples(index=False)}
        cycles = self._find_cycles(graph)
        self.results.append(ValidationResult(
            name="Prerequisites: acyclic",
            severity=ValidationSeverity.PASS if not cycles else ValidationSeverity.WARNING,
            message="No cycles" if not cycles else f"Cycles through: {cycles}"
        ))

    @staticmethod
    def _find_cycles(graph: Dict[str, List[str]]) -> List[str]:
        """Milestone ids that sit on a prerequisite cycle (iterative DFS)"""
        WHITE, GREY, BLACK = 0, 1, 2
        colour = {node: WHITE for node in graph}
        on_cycle = set()

        for root in graph:
            if colour[root] != WHITE:
                continue
            stack = [(root, iter(graph[root]))]
            path = [root]
            colour[root] = GREY
            while stack:
                node, children = stack[-1]
                child = next(children, None)
                if child is None:
                    colour[node] = BLACK
                    stack.pop()
                    path.pop()
                elif child not in colour:
                    continue
                elif colour[child] == GREY:
                    on_cycle.update(path[path.index(child):])
                elif colour[child] == WHITE:
                    colour[child] = GREY
                    stack.append((child, iter(graph[child])))
                    path.append(child)

        return sorted(on_cycle)

    def _validate_coverage(self, df: pd.DataFrame):
        present = set(df['surgery_type'])
        missing = [s.value for s in SurgeryType if s.value not in present]
        self.results.append(ValidationResult(
            name="Coverage: surgery types",
            severity=ValidationSeverity.PASS if not missing else ValidationSeverity.WARNING,
            message=f"{len(present)} of {len(SurgeryType)} surgery types have milestones",
            actual=str(missing) if missing else None
        ))

        all_categories = {c.value for c in MilestoneCategory}
        for surgery, cats in df.groupby('surgery_type')['category'].apply(set).items():
            gaps = sorted(all_categories - cats)
            if gaps:
                self.results.append(ValidationResult(
                    name=f"Coverage: {surgery} categories",
                    severity=ValidationSeverity.INFO,
                    message=f"No milestones for {gaps}"
                ))

    def get_summary(self) -> Dict[str, int]:
        return summarize(self.results)


def summarize(results: List[ValidationResult]) -> Dict[str, int]:
    return {
        'total': len(results),
        'passed': sum(1 for r in results if r.severity == ValidationSeverity.PASS),
        'warnings': sum(1 for r in results if r.severity == ValidationSeverity.WARNING),
        'failed': sum(1 for r in results if r.severity == ValidationSeverity.FAIL),
        'info': sum(1 for r in results if r.severity == ValidationSeverity.INFO)
    }
