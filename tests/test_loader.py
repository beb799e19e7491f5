"""Tests for inputs/loader.py -- reading mapping results from files and data."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from stackfold.errors import InputLoadError
from stackfold.inputs.loader import load_results, parse_results
from stackfold.models import Category, PolicyEffect, Provider

_YAML = """\
resources:
  - type: aws_db_instance
    name: orders
    category: sql_database
    service:
      image: postgres:16
      environment: {DATABASE_NAME: orders, PORT: 5432}
      ports: ["5432:5432"]
      healthcheck:
        test: [CMD, pg_isready]
        retries: 5
      deploy:
        replicas: 2
        limits: {cpus: "1", memory: 512M}
    volumes:
      - orders-data
      - name: orders-backup
        driver: local
    networks: [backend]
    warnings: [Parameter group not migrated]
    manual_steps: [Restore the latest snapshot]
"""


# ─── load_results ────────────────────────────────────────────


class TestLoadResults:
    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "results.yaml"
        path.write_text(_YAML, encoding="utf-8")

        [result] = load_results(path)

        assert result.source_resource_type == "aws_db_instance"
        assert result.source_resource_name == "orders"
        assert result.source_category is Category.SQL_DATABASE
        service = result.docker_service
        assert service.name == "orders"
        assert service.environment == {"DATABASE_NAME": "orders", "PORT": "5432"}
        assert service.health_check.test == ["CMD", "pg_isready"]
        assert service.health_check.retries == 5
        assert service.deploy.replicas == 2
        assert service.deploy.limits.memory == "512M"
        assert [v.name for v in result.volumes] == ["orders-data", "orders-backup"]
        assert [n.name for n in result.networks] == ["backend"]
        assert result.warnings == ["Parameter group not migrated"]
        assert result.manual_steps == ["Restore the latest snapshot"]

    def test_json_file_with_top_level_list(self, tmp_path: Path) -> None:
        path = tmp_path / "results.json"
        path.write_text(
            json.dumps([{"type": "aws_sqs_queue", "name": "jobs"}, {"type": "aws_s3_bucket", "name": "assets"}]),
            encoding="utf-8",
        )

        results = load_results(str(path))

        assert [r.source_resource_name for r in results] == ["jobs", "assets"]
        assert results[0].docker_service is None

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(InputLoadError, match="Results file not found"):
            load_results(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.yaml"
        path.write_text("resources: [unclosed\n", encoding="utf-8")
        with pytest.raises(InputLoadError, match="Failed to parse results file"):
            load_results(path)


# ─── parse_results ───────────────────────────────────────────


class TestParseResults:
    def test_mapping_without_resources(self) -> None:
        with pytest.raises(InputLoadError, match="missing 'resources' list"):
            parse_results({"items": []})

    def test_scalar_layout(self) -> None:
        with pytest.raises(InputLoadError, match="expected a list"):
            parse_results("aws_db_instance")

    def test_entry_must_be_mapping(self) -> None:
        with pytest.raises(InputLoadError, match="Invalid resource #1"):
            parse_results([{"type": "aws_vpc", "name": "v"}, "oops"])

    def test_type_is_required(self) -> None:
        with pytest.raises(InputLoadError, match="'type' is required"):
            parse_results([{"name": "nameless"}])

    def test_bad_field_shape_names_the_resource(self) -> None:
        with pytest.raises(InputLoadError, match=r"#0 \(aws_sqs_queue\).*'warnings' must be a list"):
            parse_results([{"type": "aws_sqs_queue", "name": "q", "warnings": "single"}])

    def test_volume_mapping_needs_name(self) -> None:
        with pytest.raises(InputLoadError, match="volume mappings need a 'name'"):
            parse_results([{"type": "aws_s3_bucket", "name": "a", "volumes": [{"driver": "local"}]}])

    def test_network_mapping_needs_name(self) -> None:
        with pytest.raises(InputLoadError, match="network mappings need a 'name'"):
            parse_results([{"type": "aws_s3_bucket", "name": "a", "networks": [{"internal": True}]}])

    def test_long_field_names_accepted(self) -> None:
        [result] = parse_results([{"source_resource_type": "aws_vpc", "source_resource_name": "main"}])
        assert (result.source_resource_type, result.source_resource_name) == ("aws_vpc", "main")

    def test_unknown_category_becomes_unknown(self) -> None:
        [result] = parse_results([{"type": "aws_vpc", "category": "quantum"}])
        assert result.source_category is Category.UNKNOWN

    def test_structured_configs_serialized(self) -> None:
        [result] = parse_results(
            [{"type": "aws_cognito_user_pool", "name": "p", "configs": {"pool.json": {"b": 1, "a": 2}}}]
        )
        assert result.configs == {"pool.json": '{"a": 2, "b": 1}'}


class TestPolicies:
    def test_explicit_statements(self) -> None:
        [result] = parse_results(
            [
                {
                    "type": "aws_secretsmanager_secret",
                    "name": "s",
                    "policies": [
                        {
                            "name": "deny-delete",
                            "provider": "AWS",
                            "statements": [{"effect": "Deny", "actions": "secretsmanager:DeleteSecret"}],
                        }
                    ],
                }
            ]
        )
        [policy] = result.policies
        assert policy.provider is Provider.AWS
        assert policy.statements[0].effect is PolicyEffect.DENY
        assert policy.statements[0].actions == ["secretsmanager:DeleteSecret"]

    def test_iam_document(self) -> None:
        document = {
            "Version": "2012-10-17",
            "Statement": {
                "Sid": "Read",
                "Effect": "Allow",
                "Action": ["secretsmanager:GetSecretValue"],
                "Resource": "*",
            },
        }
        [result] = parse_results(
            [{"type": "aws_secretsmanager_secret", "name": "s", "policies": [{"name": "read", "document": document}]}]
        )
        [policy] = result.policies
        [statement] = policy.statements
        assert statement.sid == "Read"
        assert statement.effect is PolicyEffect.ALLOW
        assert statement.resources == ["*"]
        assert json.loads(policy.original_document) == document
        assert policy.provider is Provider.UNKNOWN
