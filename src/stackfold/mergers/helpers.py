"""Shared free functions used by every merger.

Mergers compose these instead of inheriting from a common base: naming,
extraction of configs/volumes/networks from mapping results, and the exact
type-table applicability check.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Iterable, Sequence

from stackfold.models import MappingResult, MergeOptions, Network, Stack, StackType, Volume

_COLLAPSE_HYPHENS = re.compile(r"-{2,}")
_COLLAPSE_UNDERSCORES = re.compile(r"_{2,}")


# ─── Naming ───────────────────────────────────────────────────


def normalize_name(name: str) -> str:
    """Convert *name* into a valid container/service name.

    Lowercases, maps ``_``, space and ``.`` to ``-``, drops every other
    character outside ``[a-z0-9-]``, then trims and collapses hyphens.
    """
    chars: list[str] = []
    for c in name.lower():
        if ("a" <= c <= "z") or ("0" <= c <= "9") or c == "-":
            chars.append(c)
        elif c in "_ .":
            chars.append("-")
    return _COLLAPSE_HYPHENS.sub("-", "".join(chars)).strip("-")


def normalize_identifier(name: str) -> str:
    """Like normalize_name, but with underscores (safe for SQL and Redis keys)."""
    return _COLLAPSE_UNDERSCORES.sub("_", normalize_name(name).replace("-", "_"))


def generate_unique_name(base: str, existing: Collection[str]) -> str:
    """Return *base*, or ``base-N`` with the smallest N >= 1 not in *existing*."""
    if base not in existing:
        return base
    i = 1
    while f"{base}-{i}" in existing:
        i += 1
    return f"{base}-{i}"


def resource_label(result: MappingResult) -> str:
    return f"{result.source_resource_type}.{result.source_resource_name}"


# ─── Applicability ────────────────────────────────────────────


def matches_resource_type(
    resource_type: str,
    exact_types: Collection[str],
    fallback_keywords: Iterable[str] = (),
    exclude_keywords: Iterable[str] = (),
) -> bool:
    """Decide whether a merger handles *resource_type*.

    The exact table is authoritative. Keyword substring matching is a
    last resort for types the table does not list, and is vetoed by any
    exclude keyword.
    """
    if resource_type in exact_types:
        return True
    lowered = resource_type.lower()
    if any(keyword in lowered for keyword in exclude_keywords):
        return False
    return any(keyword in lowered for keyword in fallback_keywords)


def sorted_results(results: Iterable[MappingResult | None]) -> list[MappingResult]:
    """Drop None entries and order by (type, name) for deterministic output."""
    return sorted((r for r in results if r is not None), key=MappingResult.sort_key)


# ─── Extraction ───────────────────────────────────────────────


def extract_volumes(results: Sequence[MappingResult]) -> list[Volume]:
    """Volumes from all results, deduplicated by name (last wins), sorted."""
    by_name: dict[str, Volume] = {}
    for result in results:
        for volume in result.volumes:
            by_name[volume.name] = volume
    return [by_name[name] for name in sorted(by_name)]


def extract_networks(results: Sequence[MappingResult]) -> list[Network]:
    """Networks declared by results or referenced by their services, sorted by name."""
    by_name: dict[str, Network] = {}
    for result in results:
        for network in result.networks:
            by_name[network.name] = network
        if result.docker_service is not None:
            for name in result.docker_service.networks:
                by_name.setdefault(name, Network(name=name))
    return [by_name[name] for name in sorted(by_name)]


def extract_warnings(results: Sequence[MappingResult]) -> list[str]:
    return [w for r in results for w in r.warnings]


def extract_manual_steps(results: Sequence[MappingResult]) -> list[str]:
    """Manual steps reported by the sources, first occurrence kept."""
    return list(dict.fromkeys(s for r in results for s in r.manual_steps))


def extract_configs(results: Sequence[MappingResult]) -> dict[str, str]:
    """Config files from all results; the last result wins on a filename clash."""
    configs: dict[str, str] = {}
    for result in results:
        configs.update(result.configs)
    return configs


def extract_scripts(results: Sequence[MappingResult]) -> dict[str, str]:
    scripts: dict[str, str] = {}
    for result in results:
        scripts.update(result.scripts)
    return scripts


def first_env_value(result: MappingResult, keys: Iterable[str]) -> str:
    """First non-empty environment value among *keys*, or ``""``."""
    env = result.environment
    for key in keys:
        value = env.get(key, "")
        if value:
            return value
    return ""


# ─── Stack assembly ───────────────────────────────────────────


def new_stack(
    stack_type: StackType,
    options: MergeOptions,
    description: str,
    base_name: str | None = None,
) -> Stack:
    """Create an empty stack named ``[prefix-]base_name``."""
    return Stack(
        type=stack_type,
        name=options.stack_name(base_name or stack_type.value),
        description=description,
    )


def attach_sources(stack: Stack, results: Sequence[MappingResult]) -> None:
    """Record every result as a source of *stack*."""
    for result in results:
        stack.add_source_resource(result)


def carry_source_files(stack: Stack, results: Sequence[MappingResult], prefix: str = "source") -> None:
    """Copy configs/scripts shipped with the source results under ``<prefix>/``.

    Files already generated by the merger are never overwritten.
    """
    for name, body in sorted(extract_configs(results).items()):
        stack.configs.setdefault(f"{prefix}/{name}", body)
    for name, body in sorted(extract_scripts(results).items()):
        stack.scripts.setdefault(f"{prefix}/{name}", body)


def record_manual_steps(stack: Stack, steps: Sequence[str]) -> None:
    """Store manual steps as ``manual_step_NN`` metadata in order."""
    for i, step in enumerate(steps, start=1):
        stack.metadata[f"manual_step_{i:02d}"] = step


def record_warnings(stack: Stack, warnings: Sequence[str]) -> None:
    for i, warning in enumerate(warnings, start=1):
        stack.metadata[f"warning_{i:02d}"] = warning


def stack_manual_steps(stack: Stack) -> list[str]:
    return [stack.metadata[k] for k in sorted(stack.metadata) if k.startswith("manual_step_")]


def stack_warnings(stack: Stack) -> list[str]:
    return [stack.metadata[k] for k in sorted(stack.metadata) if k.startswith("warning_")]
