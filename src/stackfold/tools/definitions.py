"""list_stack_definitions tool -- show what each consolidated stack deploys."""

from __future__ import annotations

from mcp.server.fastmcp import Context

from stackfold.tools._helpers import get_context


async def list_stack_definitions(ctx: Context) -> dict[str, object]:
    """List the stack types stackfold can build, in deployment order.

    Returns:
        Result with one entry per stack type: primary image, ports,
        dependencies, support services, alternative images and whether a
        dedicated merger is registered.
    """
    registry = get_context(ctx).registry
    merger_types = set(registry.list_mergers())
    definitions: list[dict[str, object]] = []
    for stack_type in registry.list_definitions():
        definition = registry.get_definition(stack_type)
        if definition is None:
            continue
        definitions.append(
            {
                **definition.to_dict(),
                "has_merger": stack_type in merger_types,
                "alternative_images": registry.alternative_images(stack_type),
            }
        )
    return {"success": True, "total": len(definitions), "definitions": definitions}
