"""
Recovery Milestone Tracker - Catalog Validation Tests
=====================================================
"""

import pandas as pd
import pytest

from recovery_tracker.catalog import MilestoneCatalog
from recovery_tracker.validation import (
    CatalogValidator, ValidationSeverity, summarize
)


def _row(id, surgery_type="appendectomy", category="mobility", day=1, tolerance=1, weight=0.5, prereqs=()):
    return {
        'id': id,
        'surgery_type': surgery_type,
        'category': category,
        'description': id,
        'expected_day_post_op': day,
        'tolerance_days': tolerance,
        'weight': weight,
        'prerequisites': list(prereqs)
    }


def _by_name(results):
    return {r.name: r for r in results}


class TestPackagedCatalog:

    def test_no_failures_or_warnings(self):
        """Test the shipped catalog passes every integrity check"""
        validator = CatalogValidator.from_catalog(MilestoneCatalog())
        validator.validate_all()
        summary = validator.get_summary()

        assert summary["failed"] == 0
        assert summary["warnings"] == 0
        assert summary["passed"] == 7

    def test_category_gaps_reported(self):
        """Test surgery types without every category are noted"""
        results = _by_name(CatalogValidator.from_catalog(MilestoneCatalog()).validate_all())
        gap = results["Coverage: shoulder_arthroscopy categories"]
        assert gap.severity == ValidationSeverity.INFO
        assert "wound_healing" in gap.message


class TestCandidateTables:

    def test_duplicate_ids(self):
        """Test duplicate ids fail"""
        df = pd.DataFrame([_row("a"), _row("a")])
        results = _by_name(CatalogValidator(df).validate_all())
        assert results["Ids: unique"].severity == ValidationSeverity.FAIL
        assert "'a'" in results["Ids: unique"].message

    def test_range_violations(self):
        """Test weight, tolerance and day ranges"""
        df = pd.DataFrame([
            _row("a", weight=1.5),
            _row("b", weight=0),
            _row("c", tolerance=0),
            _row("d", day=-1),
        ])
        results = _by_name(CatalogValidator(df).validate_all())
        assert results["Range: weight"].severity == ValidationSeverity.FAIL
        assert results["Range: weight"].actual == "['a', 'b']"
        assert results["Range: tolerance_days"].actual == "['c']"
        assert results["Range: expected_day_post_op"].actual == "['d']"

    def test_prerequisite_outside_surgery_type(self):
        """Test prerequisites must resolve within the same surgery type"""
        df = pd.DataFrame([
            _row("a"),
            _row("b", surgery_type="hernia_repair", prereqs=["a"]),
            _row("c", prereqs=["missing"]),
        ])
        result = _by_name(CatalogValidator(df).validate_all())["Prerequisites: resolve within surgery type"]
        assert result.severity == ValidationSeverity.FAIL
        assert result.message == "2 unresolved"
        assert "b->a" in result.actual

    def test_prerequisite_cycle(self):
        """Test cycles are flagged as warnings"""
        df = pd.DataFrame([
            _row("a", prereqs=["c"]),
            _row("b", prereqs=["a"]),
            _row("c", prereqs=["b"]),
            _row("d", prereqs=["a"]),
        ])
        result = _by_name(CatalogValidator(df).validate_all())["Prerequisites: acyclic"]
        assert result.severity == ValidationSeverity.WARNING
        assert "['a', 'b', 'c']" in result.message

    def test_missing_surgery_types(self):
        """Test partial tables warn about uncovered surgery types"""
        df = pd.DataFrame([_row("a")])
        result = _by_name(CatalogValidator(df).validate_all())["Coverage: surgery types"]
        assert result.severity == ValidationSeverity.WARNING
        assert result.message == "1 of 10 surgery types have milestones"


class TestFindCycles:

    def test_acyclic(self):
        """Test chains and diamonds have no cycles"""
        graph = {"a": [], "b": ["a"], "c": ["a"], "d": ["b", "c"]}
        assert CatalogValidator._find_cycles(graph) == []

    def test_self_loop(self):
        """Test a milestone requiring itself"""
        assert CatalogValidator._find_cycles({"a": ["a"], "b": []}) == ["a"]

    def test_dangling_reference_ignored(self):
        """Test references outside the graph are skipped"""
        assert CatalogValidator._find_cycles({"a": ["zz"]}) == []


class TestSummarize:

    def test_counts(self):
        """Test summary counts by severity"""
        df = pd.DataFrame([_row("a"), _row("a", weight=2)])
        results = CatalogValidator(df).validate_all()
        summary = summarize(results)

        assert summary["total"] == len(results)
        assert summary["failed"] == 2
        assert summary["warnings"] == 1
        assert summary["total"] == summary["passed"] + summary["warnings"] + summary["failed"] + summary["info"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
