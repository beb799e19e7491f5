"""MCP server that folds mapped cloud resources into self-hosted stacks."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from stackfold.classification.classifier import StackMembership
from stackfold.registry.registry import MergerRegistry, build_default_registry
from stackfold.tools.consolidate import consolidate_resources
from stackfold.tools.coverage import check_coverage
from stackfold.tools.definitions import list_stack_definitions


@dataclass(frozen=True, slots=True)
class AppContext:
    """Shared state across all tool invocations."""

    registry: MergerRegistry
    membership: StackMembership


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Build the merger registry and classifier tables once: the composition root."""
    yield AppContext(registry=build_default_registry(), membership=StackMembership())


mcp = FastMCP(
    "stackfold",
    instructions=(
        "stackfold turns a list of mapped cloud resources (RDS instances, SQS queues, "
        "S3 buckets, Cognito pools...) into a small number of self-hosted stacks: "
        "one database server, one cache, one broker, one identity provider, one object "
        "store, one secrets vault, one functions runtime and one observability stack.\n\n"
        "### Recommended workflow\n"
        "1. **consolidate_resources**: pass results_path (YAML/JSON) or results inline. "
        "Use enabled_stacks to limit which stacks are built and include_files=True to "
        "see generated configs and scripts.\n"
        "2. Present the stacks, then the warnings and manual_steps. Warnings are "
        "lossy translations the user must review; never hide them.\n"
        "3. Resources listed under passthrough were not consolidated and keep their "
        "one-to-one mapping.\n\n"
        "### Other tools\n"
        "- **list_stack_definitions**: what each stack deploys and its dependencies.\n"
        "- **check_coverage**: which resource types classify to a stack."
    ),
    lifespan=app_lifespan,
)

# ─── Read-only tools ──────────────────────────────────────────
mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))(consolidate_resources)
mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))(check_coverage)
mcp.tool(annotations=ToolAnnotations(readOnlyHint=True))(list_stack_definitions)
