"""Load mapping results from YAML/JSON files or in-memory data.

Accepted layouts are a top-level list of resources, or a mapping with a
``resources`` list. Each resource looks like::

    - type: aws_db_instance
      name: orders
      category: sql_database
      service:
        name: orders
        image: postgres:16
        environment: {DATABASE_NAME: orders}
      configs: {user_pool.json: "..."}
      policies:
        - name: read-only
          statements:
            - effect: Allow
              actions: [secretsmanager:GetSecretValue]

JSON is a subset of YAML, so both go through ``yaml.safe_load``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

import yaml

from stackfold.errors import InputLoadError
from stackfold.models import (
    Category,
    DeployConfig,
    HealthCheck,
    MappingResult,
    Network,
    Policy,
    PolicyEffect,
    PolicyStatement,
    Provider,
    ResourceSpec,
    Service,
    Volume,
)

logger = logging.getLogger(__name__)


def load_results(path: str | Path) -> list[MappingResult]:
    """Read mapping results from a YAML or JSON file.

    Args:
        path: File to read.

    Returns:
        Parsed mapping results in file order.

    Raises:
        InputLoadError: If the file is missing, unreadable or malformed.
    """
    path = Path(path)
    if not path.is_file():
        raise InputLoadError(f"Results file not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
        data = yaml.safe_load(text)
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
        raise InputLoadError(f"Failed to parse results file '{path}': {exc}") from exc

    results = parse_results(data, source=str(path))
    logger.debug("Loaded %d mapping results from %s", len(results), path)
    return results


def parse_results(data: object, source: str = "<input>") -> list[MappingResult]:
    """Turn already-decoded data into mapping results.

    Raises:
        InputLoadError: If *data* does not have one of the accepted layouts.
    """
    if isinstance(data, Mapping):
        data = data.get("resources")
        if data is None:
            raise InputLoadError(f"Invalid results format in {source}: missing 'resources' list.")
    if not isinstance(data, list):
        raise InputLoadError(
            f"Invalid results format in {source}: expected a list or a mapping with 'resources'."
        )
    return [_parse_result(entry, index, source) for index, entry in enumerate(data)]


# ─── Entries ──────────────────────────────────────────────────


def _parse_result(entry: object, index: int, source: str) -> MappingResult:
    if not isinstance(entry, Mapping):
        raise InputLoadError(f"Invalid resource #{index} in {source}: expected a mapping.")
    resource_type = str(entry.get("type") or entry.get("source_resource_type") or "")
    if not resource_type:
        raise InputLoadError(f"Invalid resource #{index} in {source}: 'type' is required.")
    name = str(entry.get("name") or entry.get("source_resource_name") or "")

    try:
        service_data = entry.get("service")
        return MappingResult(
            source_resource_type=resource_type,
            source_resource_name=name,
            source_category=_category(entry.get("category")),
            source_resource_id=str(entry.get("id") or ""),
            docker_service=_service(service_data, default_name=name) if service_data else None,
            additional_services=[_service(s) for s in _list(entry, "additional_services")],
            configs=_text_files(entry.get("configs")),
            scripts=_text_files(entry.get("scripts")),
            volumes=[_volume(v) for v in _list(entry, "volumes")],
            networks=[_network(n) for n in _list(entry, "networks")],
            policies=[_policy(p) for p in _list(entry, "policies")],
            warnings=[str(w) for w in _list(entry, "warnings")],
            manual_steps=[str(s) for s in _list(entry, "manual_steps")],
        )
    except (TypeError, ValueError, AttributeError) as exc:
        raise InputLoadError(f"Invalid resource #{index} ({resource_type}) in {source}: {exc}") from exc


def _list(entry: Mapping[str, object], key: str) -> list[object]:
    value = entry.get(key) or []
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    return value


def _mapping(value: object, key: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{key}' must be a mapping")
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def _category(value: object) -> Category:
    if not value:
        return Category.UNKNOWN
    try:
        return Category(str(value).lower())
    except ValueError:
        logger.debug("Unknown category %r, treating as unknown", value)
        return Category.UNKNOWN


def _text_files(value: object) -> dict[str, str]:
    """Config/script bodies; structured bodies are serialized to JSON."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError("config and script files must be a mapping of name to body")
    files: dict[str, str] = {}
    for filename, body in value.items():
        files[str(filename)] = body if isinstance(body, str) else json.dumps(body, sort_keys=True)
    return files


def _strings(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return [str(v) for v in value]
    return [str(value)]


def _service(data: object, default_name: str = "") -> Service:
    if not isinstance(data, Mapping):
        raise ValueError("'service' must be a mapping")
    health = data.get("healthcheck")
    deploy = data.get("deploy")
    return Service(
        name=str(data.get("name") or default_name),
        image=str(data.get("image") or ""),
        command=_strings(data.get("command")),
        environment=_mapping(data.get("environment"), "environment"),
        ports=_strings(data.get("ports")),
        volumes=_strings(data.get("volumes")),
        labels=_mapping(data.get("labels"), "labels"),
        networks=_strings(data.get("networks")),
        depends_on=_strings(data.get("depends_on")),
        health_check=_health_check(health) if isinstance(health, Mapping) else None,
        deploy=_deploy(deploy) if isinstance(deploy, Mapping) else None,
        restart=str(data.get("restart") or "unless-stopped"),
    )


def _health_check(data: Mapping[str, object]) -> HealthCheck:
    return HealthCheck(
        test=_strings(data.get("test")),
        interval=str(data.get("interval") or "30s"),
        timeout=str(data.get("timeout") or "10s"),
        retries=int(data.get("retries") or 3),
        start_period=str(data.get("start_period") or ""),
    )


def _resource_spec(data: object) -> ResourceSpec | None:
    if not isinstance(data, Mapping):
        return None
    return ResourceSpec(cpus=str(data.get("cpus") or ""), memory=str(data.get("memory") or ""))


def _deploy(data: Mapping[str, object]) -> DeployConfig:
    return DeployConfig(
        replicas=int(data.get("replicas") or 1),
        limits=_resource_spec(data.get("limits")),
        reservations=_resource_spec(data.get("reservations")),
        restart_policy=str(data.get("restart_policy") or ""),
    )


def _required_name(data: Mapping[str, object], kind: str) -> str:
    name = data.get("name")
    if not name:
        raise ValueError(f"{kind} mappings need a 'name'")
    return str(name)


def _volume(data: object) -> Volume:
    if isinstance(data, str):
        return Volume(name=data)
    if not isinstance(data, Mapping):
        raise ValueError("volumes must be names or mappings")
    return Volume(
        name=_required_name(data, "volume"),
        driver=str(data.get("driver") or "local"),
        driver_opts=_mapping(data.get("driver_opts"), "driver_opts"),
        external=bool(data.get("external", False)),
        labels=_mapping(data.get("labels"), "labels"),
    )


def _network(data: object) -> Network:
    if isinstance(data, str):
        return Network(name=data)
    if not isinstance(data, Mapping):
        raise ValueError("networks must be names or mappings")
    return Network(
        name=_required_name(data, "network"),
        driver=str(data.get("driver") or "bridge"),
        external=bool(data.get("external", False)),
        attachable=bool(data.get("attachable", False)),
        internal=bool(data.get("internal", False)),
    )


def _policy(data: object) -> Policy:
    """Parse a policy from ``statements`` or from an IAM-style ``document``."""
    if not isinstance(data, Mapping):
        raise ValueError("policies must be mappings")
    document = data.get("document")
    raw_statements = data.get("statements")
    original = ""
    if raw_statements is None and isinstance(document, Mapping):
        raw_statements = document.get("Statement") or []
        original = json.dumps(document, sort_keys=True)
    elif isinstance(document, str):
        original = document

    if isinstance(raw_statements, Mapping):
        raw_statements = [raw_statements]
    statements = [_statement(s) for s in raw_statements or [] if isinstance(s, Mapping)]

    try:
        provider = Provider(str(data.get("provider") or "unknown").lower())
    except ValueError:
        provider = Provider.UNKNOWN
    return Policy(
        name=str(data.get("name") or ""),
        statements=statements,
        policy_id=str(data.get("id") or ""),
        provider=provider,
        original_document=original,
    )


def _statement(data: Mapping[str, object]) -> PolicyStatement:
    effect = str(data.get("effect") or data.get("Effect") or "Allow")
    return PolicyStatement(
        effect=PolicyEffect.DENY if effect.lower() == "deny" else PolicyEffect.ALLOW,
        actions=_strings(data.get("actions", data.get("Action"))),
        resources=_strings(data.get("resources", data.get("Resource"))),
        sid=str(data.get("sid") or data.get("Sid") or ""),
    )
