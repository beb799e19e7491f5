"""Resolve resource types (or categories) to the stack they consolidate into.

Resolution order is fixed:

1. explicit passthrough type  -> StackType.PASSTHROUGH
2. explicit type override     -> the override
3. category default           -> the category's stack
4. anything else              -> StackType.PASSTHROUGH

The lookup tables live on a ``StackMembership`` object so that callers can
customise them per run without touching shared state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from stackfold.classification.taxonomy import category_of
from stackfold.models import Category, StackType


class ResolutionSource(StrEnum):
    """Which tier of the resolution order produced a classification."""

    PASSTHROUGH = "passthrough"
    TYPE_OVERRIDE = "type_override"
    CATEGORY = "category"
    FALLBACK = "fallback"


# ─── Default tables ───────────────────────────────────────────

DEFAULT_CATEGORY_MAPPING: dict[Category, StackType] = {
    # Compute: only serverless functions consolidate
    Category.COMPUTE: StackType.PASSTHROUGH,
    Category.CONTAINER: StackType.PASSTHROUGH,
    Category.KUBERNETES: StackType.PASSTHROUGH,
    Category.SERVERLESS: StackType.COMPUTE,
    # Storage
    Category.OBJECT_STORAGE: StackType.STORAGE,
    Category.FILE_STORAGE: StackType.STORAGE,
    Category.BLOCK_STORAGE: StackType.PASSTHROUGH,
    # Databases
    Category.SQL_DATABASE: StackType.DATABASE,
    Category.NOSQL_DATABASE: StackType.DATABASE,
    Category.CACHE: StackType.CACHE,
    # Messaging
    Category.QUEUE: StackType.MESSAGING,
    Category.PUBSUB: StackType.MESSAGING,
    Category.STREAM: StackType.MESSAGING,
    # Networking stays per-resource
    Category.LOAD_BALANCER: StackType.PASSTHROUGH,
    Category.CDN: StackType.PASSTHROUGH,
    Category.DNS: StackType.PASSTHROUGH,
    Category.API_GATEWAY: StackType.PASSTHROUGH,
    Category.VPC: StackType.PASSTHROUGH,
    # Security
    Category.AUTH: StackType.AUTH,
    Category.SECRETS: StackType.SECRETS,
    Category.IAM: StackType.PASSTHROUGH,
    Category.FIREWALL: StackType.PASSTHROUGH,
    Category.CERTIFICATE: StackType.PASSTHROUGH,
    # Observability
    Category.MONITORING: StackType.OBSERVABILITY,
    Category.LOGGING: StackType.OBSERVABILITY,
    Category.TRACING: StackType.OBSERVABILITY,
}

DEFAULT_TYPE_OVERRIDES: dict[str, StackType] = {
    # AWS
    "aws_cognito_user_pool": StackType.AUTH,
    "aws_cognito_user_pool_client": StackType.AUTH,
    "aws_cognito_identity_pool": StackType.AUTH,
    "aws_elasticache_cluster": StackType.CACHE,
    "aws_elasticache_replication_group": StackType.CACHE,
    "aws_elasticache_serverless_cache": StackType.CACHE,
    "aws_cloudwatch_log_group": StackType.OBSERVABILITY,
    "aws_cloudwatch_metric_alarm": StackType.OBSERVABILITY,
    "aws_cloudwatch_dashboard": StackType.OBSERVABILITY,
    "aws_xray_sampling_rule": StackType.OBSERVABILITY,
    "aws_cloudwatch_event_rule": StackType.MESSAGING,
    "aws_cloudwatch_event_bus": StackType.MESSAGING,
    "aws_ses_domain_identity": StackType.MESSAGING,
    "aws_secretsmanager_secret": StackType.SECRETS,
    "aws_secretsmanager_secret_version": StackType.SECRETS,
    "aws_ssm_parameter": StackType.SECRETS,
    "aws_kms_key": StackType.SECRETS,
    # GCP
    "google_identity_platform_config": StackType.AUTH,
    "google_identity_platform_tenant": StackType.AUTH,
    "google_identity_platform_oauth_idp_config": StackType.AUTH,
    "google_redis_instance": StackType.CACHE,
    "google_memcache_instance": StackType.CACHE,
    "google_monitoring_alert_policy": StackType.OBSERVABILITY,
    "google_monitoring_dashboard": StackType.OBSERVABILITY,
    "google_monitoring_uptime_check_config": StackType.OBSERVABILITY,
    "google_logging_log_sink": StackType.OBSERVABILITY,
    "google_logging_metric": StackType.OBSERVABILITY,
    "google_secret_manager_secret": StackType.SECRETS,
    "google_secret_manager_secret_version": StackType.SECRETS,
    "google_kms_crypto_key": StackType.SECRETS,
    # Azure
    "azurerm_aadb2c_directory": StackType.AUTH,
    "azuread_application": StackType.AUTH,
    "azuread_service_principal": StackType.AUTH,
    "azurerm_redis_cache": StackType.CACHE,
    "azurerm_redis_enterprise_cluster": StackType.CACHE,
    "azurerm_monitor_metric_alert": StackType.OBSERVABILITY,
    "azurerm_monitor_action_group": StackType.OBSERVABILITY,
    "azurerm_log_analytics_workspace": StackType.OBSERVABILITY,
    "azurerm_application_insights": StackType.OBSERVABILITY,
    "azurerm_key_vault": StackType.SECRETS,
    "azurerm_key_vault_secret": StackType.SECRETS,
    "azurerm_key_vault_key": StackType.SECRETS,
    "azurerm_key_vault_certificate": StackType.SECRETS,
    "azurerm_logic_app_workflow": StackType.MESSAGING,
}

DEFAULT_PASSTHROUGH_TYPES: frozenset[str] = frozenset(
    {
        # AWS compute / orchestration
        "aws_instance",
        "aws_spot_instance_request",
        "aws_launch_template",
        "aws_autoscaling_group",
        "aws_ecs_service",
        "aws_ecs_task_definition",
        "aws_ecs_cluster",
        "aws_eks_cluster",
        "aws_eks_node_group",
        # AWS networking
        "aws_vpc",
        "aws_subnet",
        "aws_security_group",
        "aws_lb",
        "aws_lb_listener",
        "aws_lb_target_group",
        "aws_api_gateway_rest_api",
        "aws_route53_zone",
        "aws_route53_record",
        "aws_cloudfront_distribution",
        # AWS block storage
        "aws_ebs_volume",
        "aws_volume_attachment",
        # AWS identity
        "aws_iam_role",
        # GCP compute / orchestration
        "google_compute_instance",
        "google_compute_instance_template",
        "google_compute_instance_group_manager",
        "google_container_cluster",
        "google_container_node_pool",
        "google_cloud_run_service",
        # GCP networking
        "google_compute_network",
        "google_compute_subnetwork",
        "google_compute_firewall",
        "google_compute_backend_service",
        "google_compute_url_map",
        "google_compute_target_http_proxy",
        "google_compute_global_forwarding_rule",
        "google_dns_managed_zone",
        "google_dns_record_set",
        # GCP block storage
        "google_compute_disk",
        "google_compute_attached_disk",
        # Azure compute / orchestration
        "azurerm_linux_virtual_machine",
        "azurerm_windows_virtual_machine",
        "azurerm_virtual_machine",
        "azurerm_virtual_machine_scale_set",
        "azurerm_kubernetes_cluster",
        "azurerm_container_group",
        "azurerm_container_registry",
        # Azure networking
        "azurerm_virtual_network",
        "azurerm_subnet",
        "azurerm_network_security_group",
        "azurerm_lb",
        "azurerm_application_gateway",
        "azurerm_dns_zone",
        "azurerm_dns_a_record",
        "azurerm_cdn_profile",
        "azurerm_frontdoor",
        # Azure block storage
        "azurerm_managed_disk",
    }
)


# ─── Membership ───────────────────────────────────────────────


@dataclass
class StackMembership:
    """Lookup tables deciding which stack each resource type belongs to.

    Args:
        by_category: Category -> default stack.
        by_type: Exact resource type -> stack, overriding the category default.
        passthrough_types: Resource types that are never consolidated.
    """

    by_category: dict[Category, StackType] = field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_MAPPING)
    )
    by_type: dict[str, StackType] = field(default_factory=lambda: dict(DEFAULT_TYPE_OVERRIDES))
    passthrough_types: set[str] = field(default_factory=lambda: set(DEFAULT_PASSTHROUGH_TYPES))

    def classify(self, resource_type_or_category: str) -> StackType:
        """Return the StackType for a resource type string or a category value."""
        return self.resolve(resource_type_or_category)[0]

    def resolution_source(self, resource_type_or_category: str) -> ResolutionSource:
        """Report which tier of the resolution order decided the classification."""
        return self.resolve(resource_type_or_category)[1]

    def resolve(self, resource_type_or_category: str) -> tuple[StackType, ResolutionSource]:
        key = resource_type_or_category
        if key in self.passthrough_types:
            return StackType.PASSTHROUGH, ResolutionSource.PASSTHROUGH

        override = self.by_type.get(key)
        if override is not None:
            return override, ResolutionSource.TYPE_OVERRIDE

        category = category_of(key)
        if category is Category.UNKNOWN:
            category = _as_category(key)
        if category is not Category.UNKNOWN and category in self.by_category:
            return self.by_category[category], ResolutionSource.CATEGORY

        return StackType.PASSTHROUGH, ResolutionSource.FALLBACK

    def classify_result(self, resource_type: str, category: Category = Category.UNKNOWN) -> StackType:
        """Classify a mapped resource, falling back to its reported category.

        The type string is tried first through the full resolution order.
        Only when that lands on the fallback tier is the mapper-reported
        category consulted.
        """
        stack_type, source = self.resolve(resource_type)
        if source is ResolutionSource.FALLBACK and category in self.by_category:
            return self.by_category[category]
        return stack_type

    def is_passthrough(self, resource_type: str) -> bool:
        return self.classify(resource_type) is StackType.PASSTHROUGH

    # ─── Mutation ─────────────────────────────────────────────

    def add_type_override(self, resource_type: str, stack_type: StackType) -> None:
        self.by_type[resource_type] = stack_type

    def add_category_mapping(self, category: Category, stack_type: StackType) -> None:
        self.by_category[category] = stack_type

    def add_passthrough(self, resource_type: str) -> None:
        self.passthrough_types.add(resource_type)

    def remove_passthrough(self, resource_type: str) -> None:
        self.passthrough_types.discard(resource_type)

    # ─── Reverse lookups ──────────────────────────────────────

    def types_for_stack(self, stack_type: StackType) -> list[str]:
        """Explicitly listed resource types that resolve to *stack_type*, sorted."""
        if stack_type is StackType.PASSTHROUGH:
            candidates = set(self.passthrough_types) | set(self.by_type)
        else:
            candidates = set(self.by_type)
        return sorted(t for t in candidates if self.classify(t) == stack_type)

    def categories_for_stack(self, stack_type: StackType) -> list[Category]:
        return sorted(
            (c for c, st in self.by_category.items() if st == stack_type),
            key=lambda c: c.value,
        )

    def clone(self) -> StackMembership:
        return StackMembership(
            by_category=dict(self.by_category),
            by_type=dict(self.by_type),
            passthrough_types=set(self.passthrough_types),
        )


def _as_category(value: str) -> Category:
    try:
        return Category(value)
    except ValueError:
        return Category.UNKNOWN


def classify(resource_type_or_category: str, membership: StackMembership | None = None) -> StackType:
    """Classify with the given membership, or a fresh default one."""
    return (membership or StackMembership()).classify(resource_type_or_category)
