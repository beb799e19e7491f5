"""Tests for resource-type -> stack classification."""

from __future__ import annotations

import pytest

from stackfold.classification.classifier import (
    DEFAULT_PASSTHROUGH_TYPES,
    ResolutionSource,
    StackMembership,
    classify,
)
from stackfold.classification.taxonomy import known_resource_types
from stackfold.models import Category, StackType


class TestResolutionOrder:
    @pytest.mark.parametrize(
        ("resource_type", "expected"),
        [
            ("aws_db_instance", StackType.DATABASE),
            ("google_sql_database_instance", StackType.DATABASE),
            ("aws_elasticache_cluster", StackType.CACHE),
            ("aws_sqs_queue", StackType.MESSAGING),
            ("aws_sns_topic", StackType.MESSAGING),
            ("aws_cognito_user_pool", StackType.AUTH),
            ("aws_s3_bucket", StackType.STORAGE),
            ("aws_secretsmanager_secret", StackType.SECRETS),
            ("aws_lambda_function", StackType.COMPUTE),
            ("aws_cloudwatch_metric_alarm", StackType.OBSERVABILITY),
            ("aws_instance", StackType.PASSTHROUGH),
            ("aws_vpc", StackType.PASSTHROUGH),
        ],
    )
    def test_default_tables(
        self, membership: StackMembership, resource_type: str, expected: StackType
    ) -> None:
        assert membership.classify(resource_type) is expected

    def test_type_override_beats_category(self, membership: StackMembership) -> None:
        # Logic Apps are SERVERLESS in the taxonomy but consolidate as messaging.
        assert membership.classify("azurerm_logic_app_workflow") is StackType.MESSAGING
        assert (
            membership.resolution_source("azurerm_logic_app_workflow")
            is ResolutionSource.TYPE_OVERRIDE
        )

    def test_category_string(self, membership: StackMembership) -> None:
        assert membership.classify("sql_database") is StackType.DATABASE
        assert membership.resolution_source("sql_database") is ResolutionSource.CATEGORY

    def test_unknown_type_is_passthrough_fallback(self, membership: StackMembership) -> None:
        assert membership.resolve("totally_unknown") == (
            StackType.PASSTHROUGH,
            ResolutionSource.FALLBACK,
        )

    def test_module_level_classify(self) -> None:
        assert classify("aws_kinesis_stream") is StackType.MESSAGING


class TestPassthroughExclusivity:
    def test_passthrough_wins_over_override(self, membership: StackMembership) -> None:
        membership.add_type_override("aws_instance", StackType.COMPUTE)
        assert membership.classify("aws_instance") is StackType.PASSTHROUGH
        assert membership.resolution_source("aws_instance") is ResolutionSource.PASSTHROUGH

    def test_passthrough_wins_over_category(self, membership: StackMembership) -> None:
        membership.add_category_mapping(Category.COMPUTE, StackType.COMPUTE)
        assert membership.classify("aws_instance") is StackType.PASSTHROUGH

    def test_every_default_passthrough_type_stays_passthrough(
        self, membership: StackMembership
    ) -> None:
        for stack_type in StackType:
            if stack_type is StackType.PASSTHROUGH:
                continue
            for category in Category:
                membership.add_category_mapping(category, stack_type)
        for resource_type in DEFAULT_PASSTHROUGH_TYPES:
            assert membership.is_passthrough(resource_type)

    def test_remove_passthrough(self, membership: StackMembership) -> None:
        membership.remove_passthrough("aws_ebs_volume")
        assert membership.resolution_source("aws_ebs_volume") is ResolutionSource.CATEGORY


class TestClassifyResult:
    def test_reported_category_used_on_fallback(self, membership: StackMembership) -> None:
        assert (
            membership.classify_result("custom_postgres_cluster", Category.SQL_DATABASE)
            is StackType.DATABASE
        )

    def test_type_beats_reported_category(self, membership: StackMembership) -> None:
        assert (
            membership.classify_result("aws_instance", Category.SQL_DATABASE)
            is StackType.PASSTHROUGH
        )

    def test_unknown_everything(self, membership: StackMembership) -> None:
        assert membership.classify_result("custom_thing") is StackType.PASSTHROUGH


class TestMembershipIsolation:
    def test_mutation_does_not_leak_between_instances(self) -> None:
        first = StackMembership()
        first.add_type_override("custom_kv", StackType.CACHE)
        assert StackMembership().classify("custom_kv") is StackType.PASSTHROUGH

    def test_clone_is_independent(self, membership: StackMembership) -> None:
        copy = membership.clone()
        copy.add_passthrough("aws_s3_bucket")
        assert membership.classify("aws_s3_bucket") is StackType.STORAGE
        assert copy.classify("aws_s3_bucket") is StackType.PASSTHROUGH


class TestReverseLookups:
    def test_types_for_stack(self, membership: StackMembership) -> None:
        cache_types = membership.types_for_stack(StackType.CACHE)
        assert "aws_elasticache_cluster" in cache_types
        assert cache_types == sorted(cache_types)

    def test_categories_for_stack(self, membership: StackMembership) -> None:
        assert membership.categories_for_stack(StackType.MESSAGING) == [
            Category.PUBSUB,
            Category.QUEUE,
            Category.STREAM,
        ]


class TestFullTaxonomy:
    def test_every_taxonomy_type_resolves_explicitly(self, membership: StackMembership) -> None:
        for resource_type in known_resource_types():
            assert membership.resolution_source(resource_type) is not ResolutionSource.FALLBACK
