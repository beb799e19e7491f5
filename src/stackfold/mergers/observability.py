"""Observability merger: CloudWatch, Cloud Monitoring and Azure Monitor -> PLG stack.

The Prometheus, Grafana, Loki and Alertmanager quartet is always emitted in
full. Source alarms become alert-rule stubs whose expression has to be
completed by hand; the original metric and threshold survive as annotations.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass

from stackfold.errors import MergeError
from stackfold.mergers.helpers import (
    attach_sources,
    carry_source_files,
    extract_manual_steps,
    extract_warnings,
    generate_unique_name,
    matches_resource_type,
    new_stack,
    normalize_name,
    record_manual_steps,
    record_warnings,
)
from stackfold.mergers.rendering import to_yaml
from stackfold.models import (
    HealthCheck,
    MappingResult,
    MergeOptions,
    Network,
    Service,
    Stack,
    StackType,
    Volume,
)

OBSERVABILITY_TYPES: frozenset[str] = frozenset(
    {
        # AWS
        "aws_cloudwatch_metric_alarm",
        "aws_cloudwatch_log_group",
        "aws_cloudwatch_dashboard",
        "aws_xray_sampling_rule",
        # GCP
        "google_monitoring_alert_policy",
        "google_monitoring_dashboard",
        "google_monitoring_uptime_check_config",
        "google_logging_log_sink",
        "google_logging_metric",
        # Azure
        "azurerm_monitor_metric_alert",
        "azurerm_monitor_action_group",
        "azurerm_log_analytics_workspace",
        "azurerm_application_insights",
    }
)

ALARM_TYPES: frozenset[str] = frozenset(
    {"aws_cloudwatch_metric_alarm", "google_monitoring_alert_policy", "azurerm_monitor_metric_alert"}
)

_FALLBACK_KEYWORDS = ("cloudwatch", "monitoring", "monitor_", "logging", "log_analytics")

PLACEHOLDER_EXPR = "up == 0"

VOLUMES = ("prometheus-data", "grafana-data", "loki-data", "alertmanager-data")

MANUAL_STEPS = (
    "Configure Prometheus scrape targets for your application services",
    "Migrate cloud dashboards to Grafana (manual JSON conversion required)",
    "Update application logging to send logs to Loki (use Promtail or direct HTTP)",
    "Configure Alertmanager notification channels (email, Slack, PagerDuty, etc.)",
)


def alert_rule(result: MappingResult, name: str, warnings: list[str]) -> dict[str, object]:
    """Alert-rule stub for one alarm resource.

    The source metric cannot be translated into PromQL automatically, so
    the rule fires on ``up == 0`` until someone rewrites it.
    """
    annotations = {
        "summary": f"Alert migrated from {result.source_resource_type}: {result.source_resource_name}",
        "description": "Migrated automatically. Replace the expression with the equivalent PromQL query.",
    }
    body = result.configs.get("alarm.json")
    if body is not None:
        try:
            alarm = json.loads(body)
        except json.JSONDecodeError as exc:
            warnings.append(f"Could not parse alarm.json for {result.source_resource_name}: {exc.msg}")
            alarm = None
        if isinstance(alarm, dict):
            threshold = alarm.get("threshold")
            if isinstance(threshold, int | float) and not isinstance(threshold, bool):
                annotations["original_threshold"] = f"{threshold:g}"
            metric = alarm.get("metric_name")
            if isinstance(metric, str) and metric:
                annotations["original_metric"] = metric

    return {
        "alert": name,
        "expr": PLACEHOLDER_EXPR,
        "for": "5m",
        "labels": {"severity": "warning", "source": "cloud_migration"},
        "annotations": annotations,
    }


@dataclass(frozen=True, slots=True)
class PlgHosts:
    """Service names, and so hostnames, of the four monitoring services."""

    prometheus: str = "prometheus"
    grafana: str = "grafana"
    loki: str = "loki"
    alertmanager: str = "alertmanager"

    @classmethod
    def for_options(cls, options: MergeOptions) -> PlgHosts:
        return cls(*(options.stack_name(name) for name in ("prometheus", "grafana", "loki", "alertmanager")))


def services_to_monitor(results: Sequence[MappingResult]) -> list[str]:
    names: set[str] = set()
    for result in results:
        if result.docker_service is not None and result.docker_service.name:
            names.add(result.docker_service.name)
        names.update(s.name for s in result.additional_services if s.name)
    return sorted(names)


def prometheus_config(services: Sequence[str], hosts: PlgHosts | None = None) -> dict[str, object]:
    hosts = hosts or PlgHosts()
    scrape_configs: list[dict[str, object]] = [
        {"job_name": "prometheus", "static_configs": [{"targets": ["localhost:9090"]}]},
        {"job_name": "loki", "static_configs": [{"targets": [f"{hosts.loki}:3100"]}]},
        {"job_name": "alertmanager", "static_configs": [{"targets": [f"{hosts.alertmanager}:9093"]}]},
    ]
    scrape_configs.extend(
        {
            "job_name": service,
            "metrics_path": "/metrics",
            "static_configs": [{"targets": [f"{service}:9090"]}],
        }
        for service in services
    )
    return {
        "global": {"scrape_interval": "15s", "evaluation_interval": "15s"},
        "alerting": {"alertmanagers": [{"static_configs": [{"targets": [f"{hosts.alertmanager}:9093"]}]}]},
        "rule_files": ["/etc/prometheus/alert_rules.yml"],
        "scrape_configs": scrape_configs,
    }


@dataclass(frozen=True, slots=True)
class ObservabilityMerger:
    """Folds monitoring, logging and alerting resources into one PLG stack."""

    @property
    def stack_type(self) -> StackType:
        return StackType.OBSERVABILITY

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(r.source_resource_type, OBSERVABILITY_TYPES, _FALLBACK_KEYWORDS)
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        stack = new_stack(
            StackType.OBSERVABILITY,
            options,
            "Metrics, logs, and alerting stack (Prometheus + Grafana + Loki + Alertmanager)",
        )
        warnings = extract_warnings(results)
        hosts = PlgHosts.for_options(options)

        rules: list[dict[str, object]] = []
        used: set[str] = set()
        for result in results:
            if result.source_resource_type not in ALARM_TYPES:
                continue
            name = generate_unique_name(normalize_name(result.source_resource_name) or "migrated-alarm", used)
            used.add(name)
            rules.append(alert_rule(result, name, warnings))

        stack.add_config("prometheus/prometheus.yml", to_yaml(prometheus_config(services_to_monitor(results), hosts)))
        stack.add_config(
            "prometheus/alert_rules.yml", to_yaml({"groups": [{"name": "migrated_alerts", "rules": rules}]})
        )
        stack.add_config("loki/loki-config.yml", _LOKI_CONFIG.replace("__ALERTMANAGER__", hosts.alertmanager))
        stack.add_config("alertmanager/alertmanager.yml", _ALERTMANAGER_CONFIG)
        stack.add_config("grafana/provisioning/datasources/datasources.yml", _grafana_datasources(hosts))
        stack.add_config("grafana/provisioning/dashboards/dashboards.yml", _GRAFANA_DASHBOARDS)

        for service in (
            _prometheus(hosts.prometheus),
            _grafana(hosts),
            _loki(hosts.loki),
            _alertmanager(hosts.alertmanager),
        ):
            stack.add_service(service)
        for volume in VOLUMES:
            stack.add_volume(Volume(name=volume, labels={"stackfold.stack": "observability"}))
        stack.add_network(Network(name="observability"))

        attach_sources(stack, results)
        stack.metadata["alert_rules"] = str(len(rules))
        record_warnings(stack, warnings)
        record_manual_steps(stack, [*MANUAL_STEPS, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def _wget_health(url: str, start_period: str) -> HealthCheck:
    return HealthCheck(
        test=["CMD", "wget", "-q", "--spider", url],
        interval="30s",
        timeout="10s",
        retries=3,
        start_period=start_period,
    )


def _labels(role: str) -> dict[str, str]:
    return {"stackfold.stack": "observability", "stackfold.role": role}


def _prometheus(name: str) -> Service:
    return Service(
        name=name,
        image="prom/prometheus:latest",
        command=[
            "--config.file=/etc/prometheus/prometheus.yml",
            "--storage.tsdb.path=/prometheus",
            "--web.enable-lifecycle",
        ],
        ports=["9090:9090"],
        volumes=[
            "prometheus-data:/prometheus",
            "./prometheus/prometheus.yml:/etc/prometheus/prometheus.yml:ro",
            "./prometheus/alert_rules.yml:/etc/prometheus/alert_rules.yml:ro",
        ],
        labels=_labels("metrics"),
        networks=["observability"],
        health_check=_wget_health("http://localhost:9090/-/healthy", "10s"),
    )


def _grafana(hosts: PlgHosts) -> Service:
    return Service(
        name=hosts.grafana,
        image="grafana/grafana:latest",
        environment={
            "GF_SECURITY_ADMIN_USER": "${GRAFANA_ADMIN_USER:-admin}",
            "GF_SECURITY_ADMIN_PASSWORD": "${GRAFANA_ADMIN_PASSWORD:-admin}",
            "GF_USERS_ALLOW_SIGN_UP": "false",
            "GF_SERVER_ROOT_URL": "${GRAFANA_ROOT_URL:-http://localhost:3000}",
        },
        ports=["3000:3000"],
        volumes=["grafana-data:/var/lib/grafana", "./grafana/provisioning:/etc/grafana/provisioning:ro"],
        labels=_labels("dashboards"),
        networks=["observability"],
        depends_on=[hosts.prometheus, hosts.loki],
        health_check=HealthCheck(
            test=["CMD", "curl", "-f", "http://localhost:3000/api/health"],
            interval="30s",
            timeout="10s",
            retries=3,
            start_period="30s",
        ),
    )


def _loki(name: str) -> Service:
    return Service(
        name=name,
        image="grafana/loki:latest",
        command=["-config.file=/etc/loki/local-config.yaml"],
        ports=["3100:3100"],
        volumes=["loki-data:/loki", "./loki/loki-config.yml:/etc/loki/local-config.yaml:ro"],
        labels=_labels("logs"),
        networks=["observability"],
        health_check=_wget_health("http://localhost:3100/ready", "30s"),
    )


def _alertmanager(name: str) -> Service:
    return Service(
        name=name,
        image="prom/alertmanager:latest",
        command=["--config.file=/etc/alertmanager/alertmanager.yml", "--storage.path=/alertmanager"],
        ports=["9093:9093"],
        volumes=[
            "alertmanager-data:/alertmanager",
            "./alertmanager/alertmanager.yml:/etc/alertmanager/alertmanager.yml:ro",
        ],
        labels=_labels("alerting"),
        networks=["observability"],
        health_check=_wget_health("http://localhost:9093/-/healthy", "10s"),
    )


_LOKI_CONFIG = """\
auth_enabled: false

server:
  http_listen_port: 3100
  grpc_listen_port: 9096

common:
  instance_addr: 127.0.0.1
  path_prefix: /loki
  storage:
    filesystem:
      chunks_directory: /loki/chunks
      rules_directory: /loki/rules
  replication_factor: 1
  ring:
    kvstore:
      store: inmemory

schema_config:
  configs:
    - from: 2024-01-01
      store: tsdb
      object_store: filesystem
      schema: v13
      index:
        prefix: index_
        period: 24h

ruler:
  alertmanager_url: http://__ALERTMANAGER__:9093

analytics:
  reporting_enabled: false
"""

_ALERTMANAGER_CONFIG = """\
global:
  resolve_timeout: 5m

route:
  group_by: ['alertname', 'severity']
  group_wait: 10s
  group_interval: 10s
  repeat_interval: 1h
  receiver: 'default-receiver'
  routes:
    - match:
        severity: critical
      receiver: 'critical-receiver'
    - match:
        severity: warning
      receiver: 'warning-receiver'

receivers:
  # Add slack_configs, email_configs or pagerduty_configs to each receiver.
  - name: 'default-receiver'
  - name: 'critical-receiver'
  - name: 'warning-receiver'

inhibit_rules:
  - source_match:
      severity: 'critical'
    target_match:
      severity: 'warning'
    equal: ['alertname']
"""

_GRAFANA_DATASOURCES = """\
apiVersion: 1

datasources:
  - name: Prometheus
    type: prometheus
    access: proxy
    url: http://__PROMETHEUS__:9090
    isDefault: true
    editable: false

  - name: Loki
    type: loki
    access: proxy
    url: http://__LOKI__:3100
    editable: false

  - name: Alertmanager
    type: alertmanager
    access: proxy
    url: http://__ALERTMANAGER__:9093
    editable: false
    jsonData:
      implementation: prometheus
"""

def _grafana_datasources(hosts: PlgHosts) -> str:
    return (
        _GRAFANA_DATASOURCES.replace("__PROMETHEUS__", hosts.prometheus)
        .replace("__LOKI__", hosts.loki)
        .replace("__ALERTMANAGER__", hosts.alertmanager)
    )


_GRAFANA_DASHBOARDS = """\
apiVersion: 1

providers:
  - name: 'default'
    orgId: 1
    folder: ''
    type: file
    disableDeletion: false
    updateIntervalSeconds: 10
    allowUiUpdates: true
    options:
      path: /var/lib/grafana/dashboards
"""
