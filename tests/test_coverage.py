"""Tests for the classification coverage audit."""

from __future__ import annotations

from stackfold.classification.classifier import StackMembership
from stackfold.classification.coverage import (
    coverage_stats,
    missing_types,
    unmapped_categories,
    validate_coverage,
)
from stackfold.models import Category


class TestValidateCoverage:
    def test_shipped_taxonomy_is_fully_covered(self, membership: StackMembership) -> None:
        report = validate_coverage(membership)
        assert report.total == 84
        assert report.covered == 84
        assert report.uncovered == []
        assert report.is_fully_covered
        assert report.percentage == 100.0

    def test_unknown_types_are_reported_sorted(self, membership: StackMembership) -> None:
        report = validate_coverage(membership, ["zz_custom", "aws_s3_bucket", "aa_custom"])
        assert report.total == 3
        assert report.covered == 1
        assert report.uncovered == ["aa_custom", "zz_custom"]
        assert not report.is_fully_covered

    def test_breakdowns(self, membership: StackMembership) -> None:
        report = validate_coverage(membership, ["aws_s3_bucket", "google_storage_bucket", "aws_vpc"])
        assert report.by_stack == {
            "passthrough": ["aws_vpc"],
            "storage": ["aws_s3_bucket", "google_storage_bucket"],
        }
        assert report.by_provider == {"aws": 2, "gcp": 1}
        assert report.by_category == {"object_storage": 2, "vpc": 1}

    def test_empty_type_list(self, membership: StackMembership) -> None:
        report = validate_coverage(membership, [])
        assert report.total == 0
        assert report.percentage == 100.0

    def test_removed_category_creates_gap(self, membership: StackMembership) -> None:
        del membership.by_category[Category.CACHE]
        for resource_type in list(membership.by_type):
            if "redis" in resource_type or "elasticache" in resource_type:
                del membership.by_type[resource_type]
        assert missing_types(membership) == [
            "aws_elasticache_cluster",
            "azurerm_redis_cache",
            "google_redis_instance",
        ]

    def test_to_dict(self, membership: StackMembership) -> None:
        data = validate_coverage(membership, ["aws_s3_bucket", "custom"]).to_dict()
        assert data["percentage"] == 50.0
        assert data["uncovered"] == ["custom"]
        assert data["by_stack"] == {"storage": 1}


class TestCoverageStats:
    def test_stats_for_default_membership(self) -> None:
        stats = coverage_stats()
        assert stats["total_types"] == 84
        assert stats["uncovered_types"] == 0
        assert stats["types_by_provider"] == {"aws": 30, "azure": 29, "gcp": 25}


class TestUnmappedCategories:
    def test_default_tables_map_every_category(self, membership: StackMembership) -> None:
        assert unmapped_categories(membership) == []

    def test_reports_removed_category(self, membership: StackMembership) -> None:
        del membership.by_category[Category.TRACING]
        assert unmapped_categories(membership) == [Category.TRACING]
