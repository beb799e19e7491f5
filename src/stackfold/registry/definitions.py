"""Static stack definitions used for default-stack synthesis."""

from __future__ import annotations

from dataclasses import dataclass, field

from stackfold.models import StackType


@dataclass(frozen=True, slots=True)
class ServiceDefinition:
    """An optional sidecar that accompanies a stack's primary service."""

    name: str
    image: str
    ports: list[str] = field(default_factory=list)
    role: str = ""


@dataclass(frozen=True, slots=True)
class StackDefinition:
    """Enough static data to synthesize a reasonable stack without a merger."""

    type: StackType
    name: str
    description: str
    primary_image: str
    default_ports: list[str] = field(default_factory=list)
    dependencies: list[StackType] = field(default_factory=list)
    support_services: list[ServiceDefinition] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "type": str(self.type),
            "name": self.name,
            "description": self.description,
            "primary_image": self.primary_image,
            "default_ports": list(self.default_ports),
            "dependencies": [str(d) for d in self.dependencies],
            "support_services": [
                {"name": s.name, "image": s.image, "ports": list(s.ports), "role": s.role}
                for s in self.support_services
            ],
        }


DEFAULT_DEFINITIONS: dict[StackType, StackDefinition] = {
    StackType.OBSERVABILITY: StackDefinition(
        type=StackType.OBSERVABILITY,
        name="observability",
        description="Metrics, logs, and alerting",
        primary_image="prom/prometheus:latest",
        default_ports=["9090:9090"],
        support_services=[
            ServiceDefinition("grafana", "grafana/grafana:latest", ["3000:3000"], "ui"),
            ServiceDefinition("loki", "grafana/loki:latest", ["3100:3100"], "logs"),
            ServiceDefinition("alertmanager", "prom/alertmanager:latest", ["9093:9093"], "alerts"),
        ],
    ),
    StackType.MESSAGING: StackDefinition(
        type=StackType.MESSAGING,
        name="messaging",
        description="Message queues and event streaming",
        primary_image="rabbitmq:3-management",
        default_ports=["5672:5672", "15672:15672"],
    ),
    StackType.DATABASE: StackDefinition(
        type=StackType.DATABASE,
        name="database",
        description="Relational databases",
        primary_image="postgres:16",
        default_ports=["5432:5432"],
        support_services=[
            ServiceDefinition("pgbouncer", "edoburu/pgbouncer:latest", ["6432:6432"], "pooler"),
        ],
    ),
    StackType.CACHE: StackDefinition(
        type=StackType.CACHE,
        name="cache",
        description="In-memory caching",
        primary_image="redis:7",
        default_ports=["6379:6379"],
    ),
    StackType.AUTH: StackDefinition(
        type=StackType.AUTH,
        name="auth",
        description="Identity and authentication",
        primary_image="quay.io/keycloak/keycloak:latest",
        default_ports=["8080:8080"],
        dependencies=[StackType.DATABASE],
    ),
    StackType.STORAGE: StackDefinition(
        type=StackType.STORAGE,
        name="storage",
        description="Object storage",
        primary_image="minio/minio:latest",
        default_ports=["9000:9000", "9001:9001"],
    ),
    StackType.SECRETS: StackDefinition(
        type=StackType.SECRETS,
        name="secrets",
        description="Secret management",
        primary_image="hashicorp/vault:latest",
        default_ports=["8200:8200"],
    ),
    StackType.COMPUTE: StackDefinition(
        type=StackType.COMPUTE,
        name="compute",
        description="Serverless functions",
        primary_image="openfaas/gateway:latest",
        default_ports=["8080:8080"],
    ),
}

ALTERNATIVE_IMAGES: dict[StackType, dict[str, str]] = {
    StackType.DATABASE: {
        "postgres": "postgres:16",
        "mysql": "mysql:8",
        "mariadb": "mariadb:11",
        "mongodb": "mongo:7",
    },
    StackType.MESSAGING: {
        "rabbitmq": "rabbitmq:3-management",
        "nats": "nats:latest",
        "kafka": "bitnami/kafka:latest",
        "redis-streams": "redis:7",
    },
    StackType.CACHE: {
        "redis": "redis:7",
        "memcached": "memcached:latest",
        "dragonfly": "docker.dragonflydb.io/dragonflydb/dragonfly",
    },
    StackType.AUTH: {
        "keycloak": "quay.io/keycloak/keycloak:latest",
        "authentik": "ghcr.io/goauthentik/server:latest",
        "authelia": "authelia/authelia:latest",
    },
    StackType.STORAGE: {
        "minio": "minio/minio:latest",
        "seaweedfs": "chrislusf/seaweedfs:latest",
    },
    StackType.SECRETS: {
        "vault": "hashicorp/vault:latest",
        "infisical": "infisical/infisical:latest",
    },
    StackType.OBSERVABILITY: {
        "prometheus": "prom/prometheus:latest",
        "victoriametrics": "victoriametrics/victoria-metrics:latest",
    },
    StackType.COMPUTE: {
        "openfaas": "openfaas/gateway:latest",
        "knative": "gcr.io/knative-releases/knative.dev/serving/cmd/controller:latest",
    },
}
