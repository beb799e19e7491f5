"""Helpers for extracting AppContext from FastMCP Context."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from mcp.server.fastmcp import Context

if TYPE_CHECKING:
    from stackfold.server import AppContext

ENV_NAME_PREFIX = "STACKFOLD_NAME_PREFIX"
ENV_DATABASE_ENGINE = "STACKFOLD_DATABASE_ENGINE"


def get_context(ctx: Context) -> AppContext:
    """Extract AppContext from FastMCP's lifespan context.

    Raises TypeError if the lifespan context is not an AppContext instance.
    """
    from stackfold.server import AppContext

    app = ctx.request_context.lifespan_context
    if not isinstance(app, AppContext):
        msg = (
            f"Expected AppContext in lifespan_context, got {type(app).__name__}. "
            "Is the server configured with app_lifespan?"
        )
        raise TypeError(msg)
    return app


def env_default(value: str, env_var: str) -> str:
    """Return *value*, or the environment default when it is empty."""
    return value or os.environ.get(env_var, "")
