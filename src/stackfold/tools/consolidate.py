"""consolidate_resources tool -- fold mapping results into deployable stacks."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import Context

from stackfold.consolidation.consolidator import Consolidator
from stackfold.errors import InputLoadError, StackfoldError
from stackfold.inputs.loader import load_results, parse_results
from stackfold.models import ConsolidatedResult, MergeOptions
from stackfold.tools._helpers import (
    ENV_DATABASE_ENGINE,
    ENV_NAME_PREFIX,
    env_default,
    get_context,
)

logger = logging.getLogger(__name__)


async def consolidate_resources(
    ctx: Context,
    results_path: str = "",
    results: list[dict[str, object]] | None = None,
    enabled_stacks: str = "",
    database_engine: str = "",
    messaging_broker: str = "",
    name_prefix: str = "",
    include_support_services: bool = True,
    parallel: bool = False,
    exclude_disabled: bool = False,
    include_files: bool = False,
) -> dict[str, object]:
    """Consolidate mapped cloud resources into a handful of self-hosted stacks.

    Pass either a path to a YAML/JSON results file or the results inline.
    Each result needs at least a resource ``type`` and ``name``.

    Args:
        results_path: Path to a YAML or JSON file of mapping results.
        results: Mapping results given inline (same layout as the file).
        enabled_stacks: Comma-separated stack types to build, e.g.
            "database,cache". Empty enables every stack type.
        database_engine: "postgres" (default), "mysql" or "mariadb".
            Defaults to $STACKFOLD_DATABASE_ENGINE.
        messaging_broker: Broker for the messaging stack. Only "rabbitmq".
        name_prefix: Prefix for generated stack and service names.
            Defaults to $STACKFOLD_NAME_PREFIX.
        include_support_services: Add helper services such as admin UIs.
        parallel: Run the per-stack mergers concurrently.
        exclude_disabled: Drop resources of disabled stack types instead
            of emitting a minimal stack for them.
        include_files: Include generated config and script bodies.

    Returns:
        Result with: stacks, passthrough, warnings, manual_steps and metadata.
    """
    app = get_context(ctx)

    try:
        if results is not None:
            mapping_results = parse_results(results, source="<results>")
        elif results_path:
            mapping_results = load_results(results_path)
        else:
            raise InputLoadError("Provide either results_path or results.")

        options, option_warnings = MergeOptions.from_mapping(
            {
                "enabled_stacks": enabled_stacks,
                "database_engine": env_default(database_engine, ENV_DATABASE_ENGINE),
                "messaging_broker": messaging_broker,
                "name_prefix": env_default(name_prefix, ENV_NAME_PREFIX),
                "include_support_services": include_support_services,
                "parallel": parallel,
                "exclude_disabled": exclude_disabled,
            }
        )

        await ctx.info(f"Consolidating {len(mapping_results)} resources...")
        consolidator = Consolidator(registry=app.registry, membership=app.membership)
        consolidated = await consolidator.consolidate(mapping_results, options)
    except StackfoldError as exc:
        logger.info("consolidate_resources failed: %s", exc)
        return {"success": False, "error": str(exc)}
    except Exception as exc:
        await ctx.error(f"Unexpected error in consolidate_resources: {exc}")
        return {"success": False, "error": f"Internal error: {type(exc).__name__}"}

    consolidated.warnings[:0] = option_warnings
    return {"success": True, **summarize(consolidated, include_files=include_files)}


def summarize(result: ConsolidatedResult, include_files: bool = False) -> dict[str, object]:
    """JSON-able view of a consolidation result.

    Stacks list their config and script names; *include_files* adds a
    ``files`` mapping of path to body for each stack.
    """
    data = result.to_dict()
    if include_files:
        for stack, stack_data in zip(result.stacks, data["stacks"], strict=True):
            stack_data["files"] = {
                **{f"configs/{name}": body for name, body in sorted(stack.configs.items())},
                **{f"scripts/{name}": body for name, body in sorted(stack.scripts.items())},
            }
    return data
