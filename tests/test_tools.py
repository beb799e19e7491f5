"""Tests for the MCP tools (tools/consolidate.py, tools/coverage.py, tools/definitions.py)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from stackfold.classification.classifier import StackMembership
from stackfold.registry.registry import build_default_registry
from stackfold.server import AppContext
from stackfold.tools._helpers import ENV_DATABASE_ENGINE, ENV_NAME_PREFIX, env_default, get_context
from stackfold.tools.consolidate import consolidate_resources
from stackfold.tools.coverage import check_coverage
from stackfold.tools.definitions import list_stack_definitions

# ─── Helpers ─────────────────────────────────────────────────


def _make_ctx() -> MagicMock:
    ctx = MagicMock()
    ctx.request_context.lifespan_context = AppContext(
        registry=build_default_registry(), membership=StackMembership()
    )
    ctx.info = AsyncMock()
    ctx.error = AsyncMock()
    return ctx


_RESULTS = [
    {"type": "aws_db_instance", "name": "orders", "service": {"image": "postgres:16"}},
    {"type": "google_sql_database_instance", "name": "users", "service": {"image": "postgres:16"}},
    {"type": "aws_sqs_queue", "name": "jobs"},
    {"type": "aws_instance", "name": "bastion", "warnings": ["AMI is not portable"]},
]


# ─── get_context ─────────────────────────────────────────────


class TestGetContext:
    def test_returns_app_context(self) -> None:
        ctx = _make_ctx()
        assert get_context(ctx) is ctx.request_context.lifespan_context

    def test_rejects_other_lifespan_objects(self) -> None:
        ctx = MagicMock()
        ctx.request_context.lifespan_context = {"registry": None}
        with pytest.raises(TypeError, match="Expected AppContext"):
            get_context(ctx)


class TestEnvDefault:
    def test_explicit_value_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_NAME_PREFIX, "env")
        assert env_default("explicit", ENV_NAME_PREFIX) == "explicit"

    def test_falls_back_to_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_NAME_PREFIX, "env")
        assert env_default("", ENV_NAME_PREFIX) == "env"

    def test_empty_when_unset(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(ENV_NAME_PREFIX, raising=False)
        assert env_default("", ENV_NAME_PREFIX) == ""


# ─── consolidate_resources ───────────────────────────────────


class TestConsolidateResources:
    async def test_inline_results(self) -> None:
        ctx = _make_ctx()
        result = await consolidate_resources(ctx, results=_RESULTS)

        assert result["success"] is True
        assert [s["type"] for s in result["stacks"]] == ["database", "messaging"]
        assert [p["source_resource_name"] for p in result["passthrough"]] == ["bastion"]
        assert "AMI is not portable" in result["warnings"]
        assert result["metadata"]["total_source_resources"] == 4
        ctx.info.assert_awaited_once_with("Consolidating 4 resources...")

    async def test_results_file(self, tmp_path: Path) -> None:
        path = tmp_path / "results.yaml"
        path.write_text(yaml.safe_dump({"resources": _RESULTS}), encoding="utf-8")

        result = await consolidate_resources(_make_ctx(), results_path=str(path))

        assert result["success"] is True
        assert result["stacks"][0]["name"] == "database"

    async def test_missing_input_is_structured_error(self) -> None:
        result = await consolidate_resources(_make_ctx())
        assert result == {"success": False, "error": "Provide either results_path or results."}

    async def test_missing_file_is_structured_error(self, tmp_path: Path) -> None:
        result = await consolidate_resources(_make_ctx(), results_path=str(tmp_path / "nope.yaml"))
        assert result["success"] is False
        assert "Results file not found" in result["error"]

    async def test_empty_results_is_structured_error(self) -> None:
        result = await consolidate_resources(_make_ctx(), results=[])
        assert result["success"] is False
        assert "No resources could be mapped" in result["error"]

    async def test_enabled_stacks_and_unknown_name(self) -> None:
        result = await consolidate_resources(
            _make_ctx(), results=_RESULTS, enabled_stacks="messaging, bogus", exclude_disabled=True
        )

        assert [s["type"] for s in result["stacks"]] == ["messaging"]
        assert result["warnings"][0] == "Unknown stack type 'bogus' in enabled_stacks; ignored"
        assert "Skipped 2 database resource(s): stack type is disabled" in result["warnings"]

    async def test_name_prefix_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_NAME_PREFIX, "acme")
        result = await consolidate_resources(_make_ctx(), results=_RESULTS)

        assert [s["name"] for s in result["stacks"]] == ["acme-database", "acme-messaging"]
        assert all(step.startswith("[acme-") for step in result["manual_steps"])

    async def test_database_engine_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(ENV_DATABASE_ENGINE, "mysql")
        result = await consolidate_resources(_make_ctx(), results=_RESULTS[:2])

        assert "mysql" in result["stacks"][0]["services"]

    async def test_volume_without_name_is_structured_error(self) -> None:
        result = await consolidate_resources(
            _make_ctx(),
            results=[{"type": "aws_s3_bucket", "name": "a", "volumes": [{"driver": "local"}]}],
        )

        assert result["success"] is False
        assert "volume mappings need a 'name'" in result["error"]

    async def test_unexpected_exception_is_internal_error(self) -> None:
        ctx = _make_ctx()
        with patch(
            "stackfold.tools.consolidate.Consolidator.consolidate",
            AsyncMock(side_effect=RuntimeError("boom")),
        ):
            result = await consolidate_resources(ctx, results=_RESULTS)

        assert result == {"success": False, "error": "Internal error: RuntimeError"}
        ctx.error.assert_awaited_once()

    async def test_files_only_on_request(self) -> None:
        ctx = _make_ctx()
        without = await consolidate_resources(ctx, results=_RESULTS[:2])
        with_files = await consolidate_resources(ctx, results=_RESULTS[:2], include_files=True)

        assert "files" not in without["stacks"][0]
        files = with_files["stacks"][0]["files"]
        assert "scripts/init.sql" in files
        assert "CREATE DATABASE users" in files["scripts/init.sql"]


# ─── check_coverage / list_stack_definitions ─────────────────


class TestCheckCoverage:
    async def test_builtin_taxonomy_fully_covered(self) -> None:
        result = await check_coverage(_make_ctx())

        assert result["success"] is True
        assert result["is_fully_covered"] is True
        assert result["uncovered"] == []
        assert result["total"] == result["covered"]

    async def test_reports_uncovered_types(self) -> None:
        result = await check_coverage(_make_ctx(), resource_types=["aws_db_instance", "custom_widget"])

        assert result["total"] == 2
        assert result["uncovered"] == ["custom_widget"]
        assert result["is_fully_covered"] is False

    async def test_unexpected_exception_is_internal_error(self) -> None:
        ctx = _make_ctx()
        with patch("stackfold.tools.coverage.validate_coverage", side_effect=KeyError("x")):
            result = await check_coverage(ctx)

        assert result == {"success": False, "error": "Internal error: KeyError"}
        ctx.error.assert_awaited_once()


class TestListStackDefinitions:
    async def test_lists_every_consolidated_stack(self) -> None:
        result = await list_stack_definitions(_make_ctx())

        assert result["success"] is True
        assert result["total"] == len(result["definitions"]) == 8
        assert all(d["has_merger"] for d in result["definitions"])

    async def test_includes_alternative_images(self) -> None:
        result = await list_stack_definitions(_make_ctx())
        database = next(d for d in result["definitions"] if d["type"] == "database")

        assert database["primary_image"] == "postgres:16"
        assert database["alternative_images"]
