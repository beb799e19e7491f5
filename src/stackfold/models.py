"""Domain models for stackfold.

Inputs (MappingResult and friends) are frozen dataclasses. Stack and
ConsolidatedResult are built incrementally by mergers and the consolidator,
then handed to callers as read-only values.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

# ─── Enumerations ─────────────────────────────────────────────


class Provider(StrEnum):
    AWS = "aws"
    GCP = "gcp"
    AZURE = "azure"
    UNKNOWN = "unknown"


class Category(StrEnum):
    # Compute
    COMPUTE = "compute"
    CONTAINER = "container"
    SERVERLESS = "serverless"
    KUBERNETES = "kubernetes"
    # Storage
    OBJECT_STORAGE = "object_storage"
    BLOCK_STORAGE = "block_storage"
    FILE_STORAGE = "file_storage"
    # Database
    SQL_DATABASE = "sql_database"
    NOSQL_DATABASE = "nosql_database"
    CACHE = "cache"
    # Messaging
    QUEUE = "queue"
    PUBSUB = "pubsub"
    STREAM = "stream"
    # Networking
    LOAD_BALANCER = "load_balancer"
    CDN = "cdn"
    DNS = "dns"
    API_GATEWAY = "api_gateway"
    VPC = "vpc"
    # Security
    AUTH = "auth"
    SECRETS = "secrets"
    IAM = "iam"
    FIREWALL = "firewall"
    CERTIFICATE = "certificate"
    # Observability
    MONITORING = "monitoring"
    LOGGING = "logging"
    TRACING = "tracing"

    UNKNOWN = "unknown"


class StackType(StrEnum):
    """Consolidation target. Declaration order is the canonical processing order."""

    DATABASE = "database"
    CACHE = "cache"
    MESSAGING = "messaging"
    AUTH = "auth"
    STORAGE = "storage"
    SECRETS = "secrets"
    COMPUTE = "compute"
    OBSERVABILITY = "observability"
    PASSTHROUGH = "passthrough"

    @property
    def display_name(self) -> str:
        return _STACK_DISPLAY_NAMES[self]

    @property
    def ordinal(self) -> int:
        return _STACK_ORDINALS[self]

    @property
    def is_consolidated(self) -> bool:
        return self is not StackType.PASSTHROUGH


_STACK_DISPLAY_NAMES: dict[StackType, str] = {
    StackType.DATABASE: "Database",
    StackType.CACHE: "Cache",
    StackType.MESSAGING: "Messaging",
    StackType.AUTH: "Authentication",
    StackType.STORAGE: "Object Storage",
    StackType.SECRETS: "Secrets",
    StackType.COMPUTE: "Serverless Compute",
    StackType.OBSERVABILITY: "Observability",
    StackType.PASSTHROUGH: "Passthrough",
}

_STACK_ORDINALS: dict[StackType, int] = {st: i for i, st in enumerate(StackType)}


def parse_stack_type(value: str) -> StackType | None:
    """Return the StackType named by *value* (case-insensitive), or None."""
    try:
        return StackType(value.strip().lower())
    except ValueError:
        return None


# ─── Service Models ───────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HealthCheck:
    """Container health check in compose form (``test`` is the exec list)."""

    test: list[str]
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3
    start_period: str = ""

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "test": list(self.test),
            "interval": self.interval,
            "timeout": self.timeout,
            "retries": self.retries,
        }
        if self.start_period:
            result["start_period"] = self.start_period
        return result


@dataclass(frozen=True, slots=True)
class ResourceSpec:
    cpus: str = ""
    memory: str = ""

    def to_dict(self) -> dict[str, str]:
        result: dict[str, str] = {}
        if self.cpus:
            result["cpus"] = self.cpus
        if self.memory:
            result["memory"] = self.memory
        return result


@dataclass(frozen=True, slots=True)
class DeployConfig:
    replicas: int = 1
    limits: ResourceSpec | None = None
    reservations: ResourceSpec | None = None
    restart_policy: str = ""

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"replicas": self.replicas}
        resources: dict[str, object] = {}
        if self.limits is not None:
            resources["limits"] = self.limits.to_dict()
        if self.reservations is not None:
            resources["reservations"] = self.reservations.to_dict()
        if resources:
            result["resources"] = resources
        if self.restart_policy:
            result["restart_policy"] = {"condition": self.restart_policy}
        return result


@dataclass(frozen=True, slots=True)
class Service:
    """A single container in a generated stack."""

    name: str
    image: str
    command: list[str] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)
    ports: list[str] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    networks: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    health_check: HealthCheck | None = None
    deploy: DeployConfig | None = None
    restart: str = "unless-stopped"

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"image": self.image, "restart": self.restart}
        if self.command:
            result["command"] = list(self.command)
        if self.environment:
            result["environment"] = dict(sorted(self.environment.items()))
        if self.ports:
            result["ports"] = list(self.ports)
        if self.volumes:
            result["volumes"] = list(self.volumes)
        if self.labels:
            result["labels"] = dict(sorted(self.labels.items()))
        if self.networks:
            result["networks"] = list(self.networks)
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        if self.health_check is not None:
            result["healthcheck"] = self.health_check.to_dict()
        if self.deploy is not None:
            result["deploy"] = self.deploy.to_dict()
        return result


@dataclass(frozen=True, slots=True)
class Volume:
    name: str
    driver: str = "local"
    driver_opts: dict[str, str] = field(default_factory=dict)
    external: bool = False
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"driver": self.driver}
        if self.driver_opts:
            result["driver_opts"] = dict(sorted(self.driver_opts.items()))
        if self.external:
            result["external"] = True
        if self.labels:
            result["labels"] = dict(sorted(self.labels.items()))
        return result


@dataclass(frozen=True, slots=True)
class Network:
    name: str
    driver: str = "bridge"
    external: bool = False
    attachable: bool = False
    internal: bool = False

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {"driver": self.driver}
        if self.external:
            result["external"] = True
        if self.attachable:
            result["attachable"] = True
        if self.internal:
            result["internal"] = True
        return result


# ─── Input Models ─────────────────────────────────────────────


class PolicyEffect(StrEnum):
    ALLOW = "Allow"
    DENY = "Deny"


@dataclass(frozen=True, slots=True)
class PolicyStatement:
    """One allow/deny statement of a source access policy."""

    effect: PolicyEffect = PolicyEffect.ALLOW
    actions: list[str] = field(default_factory=list)
    resources: list[str] = field(default_factory=list)
    sid: str = ""


@dataclass(frozen=True, slots=True)
class Policy:
    """A source access policy attached to a resource (IAM, resource policy, RBAC)."""

    name: str
    statements: list[PolicyStatement] = field(default_factory=list)
    policy_id: str = ""
    provider: Provider = Provider.UNKNOWN
    original_document: str = ""

    @property
    def actions(self) -> list[str]:
        """All actions across statements, in declaration order."""
        return [action for stmt in self.statements for action in stmt.actions]


@dataclass(frozen=True, slots=True)
class MappingResult:
    """One source resource after the per-resource mapping step.

    ``annotations`` is the only field the engine writes to.
    """

    source_resource_type: str
    source_resource_name: str
    source_category: Category = Category.UNKNOWN
    source_resource_id: str = ""
    docker_service: Service | None = None
    additional_services: list[Service] = field(default_factory=list)
    configs: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)
    volumes: list[Volume] = field(default_factory=list)
    networks: list[Network] = field(default_factory=list)
    policies: list[Policy] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    manual_steps: list[str] = field(default_factory=list)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def environment(self) -> dict[str, str]:
        """Environment of the primary docker service (empty when there is none)."""
        if self.docker_service is None:
            return {}
        return self.docker_service.environment

    def sort_key(self) -> tuple[str, str]:
        return (self.source_resource_type, self.source_resource_name)

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.source_resource_type,
            "name": self.source_resource_name,
            "category": str(self.source_category),
            "warnings": list(self.warnings),
            "manual_steps": list(self.manual_steps),
        }


@dataclass(frozen=True, slots=True)
class MergeOptions:
    """Knobs for a consolidation run."""

    enabled_stacks: frozenset[StackType] = frozenset()
    database_engine: str = "postgres"
    messaging_broker: str = "rabbitmq"
    name_prefix: str = ""
    include_support_services: bool = True
    parallel: bool = False
    exclude_disabled: bool = False

    def is_enabled(self, stack_type: StackType) -> bool:
        """Empty ``enabled_stacks`` enables every stack type."""
        return not self.enabled_stacks or stack_type in self.enabled_stacks

    def stack_name(self, base: str) -> str:
        """Apply the configured name prefix to a stack or service name."""
        return f"{self.name_prefix}-{base}" if self.name_prefix else base

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> tuple[MergeOptions, list[str]]:
        """Build options from untyped input (tool arguments, YAML).

        Args:
            data: Mapping with any of the dataclass field names.

        Returns:
            Tuple of (options, warnings). Unknown stack names in
            ``enabled_stacks`` are dropped and reported as warnings.
        """
        warnings: list[str] = []
        enabled: set[StackType] = set()
        raw_enabled = data.get("enabled_stacks") or []
        if isinstance(raw_enabled, str):
            raw_enabled = [part.strip() for part in raw_enabled.split(",") if part.strip()]
        if isinstance(raw_enabled, Iterable):
            for raw in raw_enabled:
                stack_type = parse_stack_type(str(raw))
                if stack_type is None:
                    warnings.append(f"Unknown stack type '{raw}' in enabled_stacks; ignored")
                else:
                    enabled.add(stack_type)

        defaults = cls()
        return (
            cls(
                enabled_stacks=frozenset(enabled),
                database_engine=str(data.get("database_engine") or defaults.database_engine),
                messaging_broker=str(data.get("messaging_broker") or defaults.messaging_broker),
                name_prefix=str(data.get("name_prefix") or ""),
                include_support_services=bool(
                    data.get("include_support_services", defaults.include_support_services)
                ),
                parallel=bool(data.get("parallel", False)),
                exclude_disabled=bool(data.get("exclude_disabled", False)),
            ),
            warnings,
        )


# ─── Output Models ────────────────────────────────────────────


@dataclass(slots=True)
class Stack:
    """A consolidated, deployable group of services.

    Mutable while a merger builds it; treated as read-only once it has been
    added to a ConsolidatedResult.
    """

    type: StackType
    name: str
    description: str = ""
    services: list[Service] = field(default_factory=list)
    configs: dict[str, str] = field(default_factory=dict)
    scripts: dict[str, str] = field(default_factory=dict)
    volumes: list[Volume] = field(default_factory=list)
    networks: list[Network] = field(default_factory=list)
    depends_on: list[StackType] = field(default_factory=list)
    source_resources: list[MappingResult] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    def add_service(self, service: Service) -> None:
        self.services.append(service)

    def add_config(self, filename: str, body: str) -> None:
        self.configs[filename] = body

    def add_script(self, filename: str, body: str) -> None:
        self.scripts[filename] = body

    def add_volume(self, volume: Volume) -> None:
        """Add a volume unless one with the same name exists."""
        if all(v.name != volume.name for v in self.volumes):
            self.volumes.append(volume)

    def add_network(self, network: Network) -> None:
        """Add a network unless one with the same name exists."""
        if all(n.name != network.name for n in self.networks):
            self.networks.append(network)

    def add_dependency(self, stack_type: StackType) -> None:
        """Declare a dependency on another stack type (deduplicated, never self)."""
        if stack_type != self.type and stack_type not in self.depends_on:
            self.depends_on.append(stack_type)

    def add_source_resource(self, result: MappingResult) -> None:
        self.source_resources.append(result)

    @property
    def service_count(self) -> int:
        return len(self.services)

    @property
    def source_resource_count(self) -> int:
        return len(self.source_resources)

    def get_service(self, name: str) -> Service | None:
        for service in self.services:
            if service.name == name:
                return service
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "type": str(self.type),
            "name": self.name,
            "description": self.description,
            "services": {s.name: s.to_dict() for s in self.services},
            "configs": sorted(self.configs),
            "scripts": sorted(self.scripts),
            "volumes": {v.name: v.to_dict() for v in self.volumes},
            "networks": {n.name: n.to_dict() for n in self.networks},
            "depends_on": [str(d) for d in self.depends_on],
            "source_resources": [
                f"{r.source_resource_type}.{r.source_resource_name}"
                for r in self.source_resources
            ],
            "metadata": dict(sorted(self.metadata.items())),
        }


@dataclass(frozen=True, slots=True)
class ConsolidationMetadata:
    total_source_resources: int = 0
    total_stacks: int = 0
    total_services: int = 0
    consolidation_ratio: float = 1.0
    by_provider: dict[str, int] = field(default_factory=dict)
    by_stack_type: dict[str, int] = field(default_factory=dict)
    by_category: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "total_source_resources": self.total_source_resources,
            "total_stacks": self.total_stacks,
            "total_services": self.total_services,
            "consolidation_ratio": round(self.consolidation_ratio, 2),
            "by_provider": dict(sorted(self.by_provider.items())),
            "by_stack_type": dict(sorted(self.by_stack_type.items())),
            "by_category": dict(sorted(self.by_category.items())),
        }


@dataclass(slots=True)
class ConsolidatedResult:
    """Terminal artifact of a consolidation run, consumed by generators."""

    stacks: list[Stack] = field(default_factory=list)
    passthrough: list[MappingResult] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    manual_steps: list[str] = field(default_factory=list)
    metadata: ConsolidationMetadata = field(default_factory=ConsolidationMetadata)

    def get_stack(self, stack_type: StackType) -> Stack | None:
        """Return the first stack of the given type, or None."""
        for stack in self.stacks:
            if stack.type == stack_type:
                return stack
        return None

    def stacks_of_type(self, stack_type: StackType) -> list[Stack]:
        return [stack for stack in self.stacks if stack.type == stack_type]

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def to_dict(self) -> dict[str, object]:
        return {
            "stacks": [stack.to_dict() for stack in self.stacks],
            "passthrough": [r.to_dict() for r in self.passthrough],
            "warnings": list(self.warnings),
            "manual_steps": list(self.manual_steps),
            "metadata": self.metadata.to_dict(),
        }
