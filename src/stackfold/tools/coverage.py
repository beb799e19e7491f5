"""check_coverage tool -- audit how the classifier resolves known resource types."""

from __future__ import annotations

import logging

from mcp.server.fastmcp import Context

from stackfold.classification.coverage import unmapped_categories, validate_coverage
from stackfold.tools._helpers import get_context

logger = logging.getLogger(__name__)


async def check_coverage(ctx: Context, resource_types: list[str] | None = None) -> dict[str, object]:
    """Check that every known cloud resource type maps to a stack explicitly.

    Uncovered types would silently pass through consolidation untouched.

    Args:
        resource_types: Types to audit. Defaults to the full built-in taxonomy.

    Returns:
        Report with: total, covered, uncovered, percentage, is_fully_covered,
        per-stack/category/provider counts and unmapped_categories.
    """
    app = get_context(ctx)
    try:
        report = validate_coverage(app.membership, resource_types)
    except Exception as exc:
        await ctx.error(f"Unexpected error in check_coverage: {exc}")
        return {"success": False, "error": f"Internal error: {type(exc).__name__}"}

    if not report.is_fully_covered:
        logger.info("Coverage audit found %d uncovered types", len(report.uncovered))
    return {
        "success": True,
        **report.to_dict(),
        "unmapped_categories": [str(c) for c in unmapped_categories(app.membership)],
    }
