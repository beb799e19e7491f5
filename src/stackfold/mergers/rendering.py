"""Deterministic text emission for generated config files."""

from __future__ import annotations

import json

import yaml


def to_yaml(data: object) -> str:
    """Dump *data* as block-style YAML with sorted keys."""
    return yaml.safe_dump(data, sort_keys=True, default_flow_style=False, allow_unicode=True)


def to_json(data: object) -> str:
    """Dump *data* as indented JSON with sorted keys and a trailing newline."""
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def markdown_table(headers: list[str], rows: list[list[str]]) -> str:
    """Render a GitHub-style markdown table."""
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("-" * (len(h) + 2) for h in headers) + "|",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in rows)
    return "\n".join(lines) + "\n"


def shell_script(body: str) -> str:
    """Prefix *body* with a strict-mode bash header."""
    return "#!/usr/bin/env bash\nset -euo pipefail\n\n" + body.lstrip("\n")
