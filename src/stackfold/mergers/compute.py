"""Compute merger: Lambda, Cloud Functions and Azure Functions -> OpenFaaS.

The OpenFaaS control plane (gateway, provider, NATS, Prometheus) is emitted
once per stack no matter how many functions are migrated; each function
becomes an entry in ``stack.yml``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from stackfold.errors import MergeError
from stackfold.mergers.helpers import (
    attach_sources,
    carry_source_files,
    extract_manual_steps,
    extract_warnings,
    first_env_value,
    generate_unique_name,
    matches_resource_type,
    new_stack,
    normalize_name,
    record_manual_steps,
    record_warnings,
)
from stackfold.mergers.rendering import markdown_table, shell_script, to_yaml
from stackfold.models import (
    DeployConfig,
    HealthCheck,
    MappingResult,
    MergeOptions,
    Network,
    ResourceSpec,
    Service,
    Stack,
    StackType,
    Volume,
)

COMPUTE_TYPES: frozenset[str] = frozenset(
    {
        "aws_lambda_function",
        "google_cloudfunctions_function",
        "google_cloudfunctions2_function",
        "azurerm_function_app",
        "azurerm_linux_function_app",
        "azurerm_windows_function_app",
    }
)

_FALLBACK_KEYWORDS = ("lambda", "cloud_function", "cloudfunctions", "azure_function", "function_app", "serverless")

RUNTIME_ENV_KEYS = (
    "AWS_LAMBDA_RUNTIME_API",
    "LAMBDA_RUNTIME_DIR",
    "FUNCTION_RUNTIME",
    "FUNCTIONS_WORKER_RUNTIME",
)

# (runtime keyword, detected runtime family, OpenFaaS template)
_RUNTIMES: tuple[tuple[tuple[str, ...], str, str], ...] = (
    (("node",), "node", "node18"),
    (("python",), "python", "python3"),
    (("golang", "go1"), "go", "golang-http"),
    (("java",), "java", "java11"),
    (("dotnet", "csharp"), "csharp", "csharp"),
    (("ruby",), "ruby", "ruby"),
    (("rust",), "rust", "rust"),
)

MANUAL_STEPS = (
    "Build function Docker images using function source code",
    "Push images to your container registry",
    "Update stack.yml with correct image names",
    "Run deploy-functions.sh to deploy functions",
    "Update application code to use OpenFaaS gateway URLs",
)


@dataclass(frozen=True, slots=True)
class ControlPlane:
    """Service names, and so hostnames, of the OpenFaaS control plane."""

    gateway: str
    provider: str
    prometheus: str
    nats: str

    @classmethod
    def for_options(cls, options: MergeOptions) -> ControlPlane:
        return cls(
            gateway=options.stack_name("gateway"),
            provider=options.stack_name("faasd-provider"),
            prometheus=options.stack_name("prometheus"),
            nats=options.stack_name("nats"),
        )


@dataclass(frozen=True, slots=True)
class FunctionPlan:
    """One migrated function: its stack.yml entry plus what the guide reports."""

    name: str
    source_name: str
    source_type: str
    runtime: str
    handler: str
    memory: str
    spec: dict[str, object]


def detect_runtime(result: MappingResult) -> str:
    """Runtime family from environment hints, then the image name, else ``"unknown"``."""
    hint = first_env_value(result, RUNTIME_ENV_KEYS).lower()
    image = result.docker_service.image.lower() if result.docker_service else ""
    for candidate in (hint, image):
        if not candidate:
            continue
        for keywords, family, _ in _RUNTIMES:
            if any(keyword in candidate for keyword in keywords):
                return family
    return "unknown"


def openfaas_lang(runtime: str) -> str:
    """OpenFaaS template for a runtime family; unknown runtimes build from a Dockerfile."""
    for _, family, template in _RUNTIMES:
        if runtime == family:
            return template
    return "dockerfile"


def _source_kind(resource_type: str) -> str:
    lowered = resource_type.lower()
    if "lambda" in lowered:
        return "lambda"
    if "cloudfunctions" in lowered or "cloud_function" in lowered:
        return "cloud_function"
    if "function_app" in lowered or "azure_function" in lowered:
        return "azure_function"
    return "generic"


def plan_function(result: MappingResult, name: str) -> FunctionPlan:
    """Translate one serverless resource into an OpenFaaS function entry.

    Limits and reservations from the source deploy config are carried over;
    otherwise Lambda gets 128Mi and everything else 256Mi, both at 200m CPU.
    """
    kind = _source_kind(result.source_resource_type)
    runtime = detect_runtime(result) if kind != "generic" else "unknown"
    handler = ""
    if kind == "lambda":
        handler = first_env_value(result, ("AWS_LAMBDA_FUNCTION_HANDLER",))
    elif kind == "cloud_function":
        handler = first_env_value(result, ("FUNCTION_TARGET",))

    deploy = result.docker_service.deploy if result.docker_service else None
    limits = deploy.limits if deploy and deploy.limits else None
    if limits is not None:
        limit_spec = {"memory": limits.memory, "cpu": limits.cpus}
    else:
        limit_spec = {"memory": "128Mi" if kind == "lambda" else "256Mi", "cpu": "200m"}

    spec: dict[str, object] = {
        "lang": openfaas_lang(runtime),
        "handler": handler or "./",
        "image": f"functions/{name}:latest",
        "limits": {k: v for k, v in limit_spec.items() if v},
        "labels": {
            "stackfold.source.type": result.source_resource_type,
            "stackfold.source.name": result.source_resource_name,
        },
        "readonly_root_filesystem": True,
    }
    if result.environment:
        spec["environment"] = dict(sorted(result.environment.items()))
    if deploy and deploy.reservations:
        requests = {"memory": deploy.reservations.memory, "cpu": deploy.reservations.cpus}
        spec["requests"] = {k: v for k, v in requests.items() if v}
    if kind == "lambda":
        spec["annotations"] = {
            "com.openfaas.scale.min": "1",
            "com.openfaas.scale.max": "10",
            "com.openfaas.scale.zero": "true",
        }

    return FunctionPlan(
        name=name,
        source_name=result.source_resource_name,
        source_type=result.source_resource_type,
        runtime=runtime,
        handler=handler,
        memory=limits.memory if limits else "",
        spec=spec,
    )


@dataclass(frozen=True, slots=True)
class ComputeMerger:
    """Folds every serverless function into one OpenFaaS deployment."""

    @property
    def stack_type(self) -> StackType:
        return StackType.COMPUTE

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(r.source_resource_type, COMPUTE_TYPES, _FALLBACK_KEYWORDS)
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        stack = new_stack(StackType.COMPUTE, options, "Serverless functions with OpenFaaS")
        hosts = ControlPlane.for_options(options)
        for service in (
            _gateway_service(hosts),
            _provider_service(hosts),
            _prometheus_service(hosts.prometheus),
            _nats_service(hosts.nats),
        ):
            stack.add_service(service)
        stack.add_volume(Volume(name="openfaas-data", labels={"stackfold.stack": "compute", "stackfold.role": "data"}))
        stack.add_volume(
            Volume(name="prometheus-data", labels={"stackfold.stack": "compute", "stackfold.role": "metrics"})
        )
        stack.add_network(Network(name="openfaas-net"))

        plans: list[FunctionPlan] = []
        used: set[str] = set()
        for result in results:
            name = generate_unique_name(normalize_name(result.source_resource_name) or "function", used)
            used.add(name)
            plans.append(plan_function(result, name))

        stack.add_config("stack.yml", to_yaml(openfaas_stack(plans, hosts.gateway)))
        stack.add_config("prometheus.yml", _prometheus_yml(hosts))
        stack.add_config("migration-guide.md", _migration_guide(plans))
        stack.add_script("deploy-functions.sh", _deploy_script(plans))

        attach_sources(stack, results)
        for plan in plans:
            stack.metadata[f"function_{plan.name}"] = str(plan.spec["lang"])
        record_warnings(stack, extract_warnings(results))
        record_manual_steps(stack, [*MANUAL_STEPS, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def openfaas_stack(plans: Sequence[FunctionPlan], gateway: str = "gateway") -> dict[str, object]:
    return {
        "version": "1.0",
        "provider": {"name": "openfaas", "gateway": f"http://{gateway}:8080"},
        "functions": {plan.name: plan.spec for plan in plans},
    }


def _wget_health(port: int, start_period: str = "10s") -> HealthCheck:
    return HealthCheck(
        test=["CMD", "wget", "--no-verbose", "--tries=1", "--spider", f"http://localhost:{port}/healthz"],
        interval="30s",
        timeout="10s",
        retries=3,
        start_period=start_period,
    )


def _labels(role: str, component: str) -> dict[str, str]:
    return {"stackfold.stack": "compute", "stackfold.role": role, "stackfold.component": component}


def _gateway_service(hosts: ControlPlane) -> Service:
    return Service(
        name=hosts.gateway,
        image="openfaas/gateway:latest",
        environment={
            "functions_provider_url": f"http://{hosts.provider}:8081/",
            "direct_functions": "false",
            "read_timeout": "65s",
            "write_timeout": "65s",
            "upstream_timeout": "60s",
            "faas_nats_address": hosts.nats,
            "faas_nats_port": "4222",
            "faas_prometheus_host": hosts.prometheus,
            "faas_prometheus_port": "9090",
            "basic_auth": "true",
            "secret_mount_path": "/run/secrets",
            "scale_from_zero": "true",
        },
        ports=["8080:8080"],
        volumes=["openfaas-data:/var/lib/faasd"],
        labels=_labels("gateway", "openfaas"),
        networks=["openfaas-net"],
        depends_on=sorted([hosts.provider, hosts.nats, hosts.prometheus]),
        health_check=_wget_health(8080),
        deploy=DeployConfig(
            replicas=1,
            limits=ResourceSpec(cpus="1", memory="256M"),
            reservations=ResourceSpec(cpus="0.1", memory="64M"),
        ),
    )


def _provider_service(hosts: ControlPlane) -> Service:
    return Service(
        name=hosts.provider,
        image="openfaas/faasd:latest",
        environment={
            "port": "8081",
            "sock_path": "/var/run/docker.sock",
            "function_namespace": "openfaas-fn",
            "read_timeout": "60s",
            "write_timeout": "60s",
            "image_pull_policy": "Always",
            "gateway_url": f"http://{hosts.gateway}:8080/",
        },
        ports=["8081:8081"],
        volumes=["/var/run/docker.sock:/var/run/docker.sock:ro", "openfaas-data:/var/lib/faasd"],
        labels=_labels("provider", "faasd"),
        networks=["openfaas-net"],
        health_check=_wget_health(8081),
    )


def _prometheus_service(name: str) -> Service:
    return Service(
        name=name,
        image="prom/prometheus:latest",
        command=[
            "--config.file=/etc/prometheus/prometheus.yml",
            "--storage.tsdb.path=/prometheus",
            "--storage.tsdb.retention.time=15d",
        ],
        ports=["9090:9090"],
        volumes=["prometheus-data:/prometheus", "./prometheus.yml:/etc/prometheus/prometheus.yml:ro"],
        labels=_labels("metrics", "prometheus"),
        networks=["openfaas-net"],
    )


def _nats_service(name: str) -> Service:
    return Service(
        name=name,
        image="nats:latest",
        command=["-js", "-m", "8222"],
        ports=["4222:4222", "8222:8222"],
        labels=_labels("messaging", "nats"),
        networks=["openfaas-net"],
        health_check=_wget_health(8222, start_period="5s"),
    )


def _deploy_script(plans: Sequence[FunctionPlan]) -> str:
    steps = []
    for plan in sorted(plans, key=lambda p: p.name):
        steps.append(
            f'echo "Deploying {plan.name} ({plan.spec["lang"]})"\n'
            f"faas-cli build -f stack.yml --filter={plan.name} --tag=latest\n"
            'if [ "${PUSH_TO_REGISTRY:-false}" = "true" ]; then\n'
            f"    faas-cli push -f stack.yml --filter={plan.name} --tag=latest\n"
            "fi\n"
            f'faas-cli deploy -f stack.yml --filter={plan.name} --gateway="$OPENFAAS_URL"\n'
        )
    return shell_script(
        'OPENFAAS_URL="${OPENFAAS_URL:-http://localhost:8080}"\n\n'
        "if ! command -v faas-cli > /dev/null 2>&1; then\n"
        '    echo "faas-cli is required: https://docs.openfaas.com/cli/install/"\n'
        "    exit 1\n"
        "fi\n\n"
        'if [ -n "${OPENFAAS_PASSWORD:-}" ]; then\n'
        '    echo "$OPENFAAS_PASSWORD" | faas-cli login --gateway "$OPENFAAS_URL" --password-stdin\n'
        "fi\n\n"
        "faas-cli template pull\n\n"
        + "\n".join(steps)
        + '\nfaas-cli list --gateway="$OPENFAAS_URL"\n'
    )


def _migration_guide(plans: Sequence[FunctionPlan]) -> str:
    rows = [
        [p.source_name, p.source_type, p.runtime, p.memory or "-", p.handler or "-"] for p in plans
    ]
    return (
        "# Function Migration Guide\n\n"
        "## Functions to Migrate\n\n"
        + markdown_table(["Function", "Source", "Runtime", "Memory", "Handler"], rows)
        + "\n## Adapting Handlers\n\n"
        "```python\n"
        "# Before (Lambda)\n"
        "def lambda_handler(event, context):\n"
        "    return {'statusCode': 200, 'body': 'Hello'}\n\n"
        "# After (OpenFaaS)\n"
        "def handle(req):\n"
        "    return 'Hello'\n"
        "```\n\n"
        "## Triggers\n\n"
        + markdown_table(
            ["Cloud Trigger", "OpenFaaS Alternative"],
            [
                ["API Gateway", "OpenFaaS Gateway HTTP"],
                ["S3 Events", "MinIO + NATS connector"],
                ["CloudWatch Events", "Cron Connector"],
                ["SQS/SNS", "NATS Connector"],
                ["Pub/Sub", "NATS Connector"],
            ],
        )
        + "\n## Invoking Functions\n\n"
        "```bash\n"
        "curl -X POST http://localhost:8080/function/<name> -d '{\"key\": \"value\"}'\n"
        "curl -X POST http://localhost:8080/async-function/<name> -d '{\"key\": \"value\"}'\n"
        "```\n"
    )


_PROMETHEUS_YML = """\
# Prometheus configuration for OpenFaaS
# Generated by stackfold

global:
  scrape_interval: 15s
  evaluation_interval: 15s

scrape_configs:
  - job_name: 'openfaas-gateway'
    static_configs:
      - targets: ['__GATEWAY__:8080']
    metrics_path: /metrics

  - job_name: 'nats'
    static_configs:
      - targets: ['__NATS__:8222']
    metrics_path: /metrics
"""


def _prometheus_yml(hosts: ControlPlane) -> str:
    return _PROMETHEUS_YML.replace("__GATEWAY__", hosts.gateway).replace("__NATS__", hosts.nats)
