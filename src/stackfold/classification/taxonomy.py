"""Static resource taxonomy: every known resource type, its provider and category.

Pure lookup tables. Provider and category are read from the exact table;
the type-prefix guess in ``provider_of`` only applies to types that are not
in the taxonomy.
"""

from __future__ import annotations

from dataclasses import dataclass

from stackfold.models import Category, Provider


@dataclass(frozen=True, slots=True)
class ResourceTypeInfo:
    resource_type: str
    provider: Provider
    category: Category
    display_name: str


def _entries(provider: Provider, rows: list[tuple[str, Category, str]]) -> dict[str, ResourceTypeInfo]:
    return {name: ResourceTypeInfo(name, provider, category, label) for name, category, label in rows}


# ─── AWS ──────────────────────────────────────────────────────

_AWS: list[tuple[str, Category, str]] = [
    ("aws_instance", Category.COMPUTE, "EC2 Instance"),
    ("aws_lambda_function", Category.SERVERLESS, "Lambda Function"),
    ("aws_ecs_service", Category.CONTAINER, "ECS Service"),
    ("aws_ecs_task_definition", Category.CONTAINER, "ECS Task Definition"),
    ("aws_eks_cluster", Category.KUBERNETES, "EKS Cluster"),
    ("aws_s3_bucket", Category.OBJECT_STORAGE, "S3 Bucket"),
    ("aws_ebs_volume", Category.BLOCK_STORAGE, "EBS Volume"),
    ("aws_efs_file_system", Category.FILE_STORAGE, "EFS File System"),
    ("aws_db_instance", Category.SQL_DATABASE, "RDS Instance"),
    ("aws_rds_cluster", Category.SQL_DATABASE, "RDS Cluster"),
    ("aws_dynamodb_table", Category.NOSQL_DATABASE, "DynamoDB Table"),
    ("aws_elasticache_cluster", Category.CACHE, "ElastiCache Cluster"),
    ("aws_lb", Category.LOAD_BALANCER, "Application Load Balancer"),
    ("aws_api_gateway_rest_api", Category.API_GATEWAY, "API Gateway"),
    ("aws_route53_zone", Category.DNS, "Route 53 Zone"),
    ("aws_cloudfront_distribution", Category.CDN, "CloudFront Distribution"),
    ("aws_vpc", Category.VPC, "VPC"),
    ("aws_cognito_user_pool", Category.AUTH, "Cognito User Pool"),
    ("aws_secretsmanager_secret", Category.SECRETS, "Secrets Manager Secret"),
    ("aws_iam_role", Category.IAM, "IAM Role"),
    ("aws_acm_certificate", Category.CERTIFICATE, "ACM Certificate"),
    ("aws_sqs_queue", Category.QUEUE, "SQS Queue"),
    ("aws_sns_topic", Category.PUBSUB, "SNS Topic"),
    ("aws_cloudwatch_event_rule", Category.PUBSUB, "EventBridge Rule"),
    ("aws_kinesis_stream", Category.STREAM, "Kinesis Stream"),
    ("aws_ses_domain_identity", Category.PUBSUB, "SES Domain Identity"),
    ("aws_kms_key", Category.SECRETS, "KMS Key"),
    ("aws_cloudwatch_metric_alarm", Category.MONITORING, "CloudWatch Alarm"),
    ("aws_cloudwatch_log_group", Category.LOGGING, "CloudWatch Log Group"),
    ("aws_cloudwatch_dashboard", Category.MONITORING, "CloudWatch Dashboard"),
]

# ─── GCP ──────────────────────────────────────────────────────

_GCP: list[tuple[str, Category, str]] = [
    ("google_compute_instance", Category.COMPUTE, "Compute Engine Instance"),
    ("google_cloud_run_service", Category.CONTAINER, "Cloud Run Service"),
    ("google_cloudfunctions_function", Category.SERVERLESS, "Cloud Function"),
    ("google_container_cluster", Category.KUBERNETES, "GKE Cluster"),
    ("google_app_engine_application", Category.COMPUTE, "App Engine Application"),
    ("google_storage_bucket", Category.OBJECT_STORAGE, "Cloud Storage Bucket"),
    ("google_compute_disk", Category.BLOCK_STORAGE, "Persistent Disk"),
    ("google_filestore_instance", Category.FILE_STORAGE, "Filestore Instance"),
    ("google_sql_database_instance", Category.SQL_DATABASE, "Cloud SQL Instance"),
    ("google_firestore_database", Category.NOSQL_DATABASE, "Firestore Database"),
    ("google_bigtable_instance", Category.NOSQL_DATABASE, "Bigtable Instance"),
    ("google_redis_instance", Category.CACHE, "Memorystore Redis"),
    ("google_spanner_instance", Category.SQL_DATABASE, "Spanner Instance"),
    ("google_compute_backend_service", Category.LOAD_BALANCER, "Cloud Load Balancer"),
    ("google_dns_managed_zone", Category.DNS, "Cloud DNS Zone"),
    ("google_compute_backend_bucket", Category.CDN, "Cloud CDN Backend"),
    ("google_compute_security_policy", Category.FIREWALL, "Cloud Armor Policy"),
    ("google_compute_network", Category.VPC, "VPC Network"),
    ("google_identity_platform_config", Category.AUTH, "Identity Platform"),
    ("google_secret_manager_secret", Category.SECRETS, "Secret Manager Secret"),
    ("google_project_iam_member", Category.IAM, "Project IAM Member"),
    ("google_pubsub_topic", Category.PUBSUB, "Pub/Sub Topic"),
    ("google_pubsub_subscription", Category.PUBSUB, "Pub/Sub Subscription"),
    ("google_cloud_tasks_queue", Category.QUEUE, "Cloud Tasks Queue"),
    ("google_cloud_scheduler_job", Category.PUBSUB, "Cloud Scheduler Job"),
]

# ─── Azure ────────────────────────────────────────────────────

_AZURE: list[tuple[str, Category, str]] = [
    ("azurerm_linux_virtual_machine", Category.COMPUTE, "Linux Virtual Machine"),
    ("azurerm_windows_virtual_machine", Category.COMPUTE, "Windows Virtual Machine"),
    ("azurerm_function_app", Category.SERVERLESS, "Function App"),
    ("azurerm_container_group", Category.CONTAINER, "Container Instances"),
    ("azurerm_kubernetes_cluster", Category.KUBERNETES, "AKS Cluster"),
    ("azurerm_app_service", Category.COMPUTE, "App Service"),
    ("azurerm_storage_container", Category.OBJECT_STORAGE, "Blob Container"),
    ("azurerm_storage_account", Category.OBJECT_STORAGE, "Storage Account"),
    ("azurerm_managed_disk", Category.BLOCK_STORAGE, "Managed Disk"),
    ("azurerm_storage_share", Category.FILE_STORAGE, "Azure Files Share"),
    ("azurerm_mssql_database", Category.SQL_DATABASE, "Azure SQL Database"),
    ("azurerm_postgresql_flexible_server", Category.SQL_DATABASE, "PostgreSQL Flexible Server"),
    ("azurerm_mysql_flexible_server", Category.SQL_DATABASE, "MySQL Flexible Server"),
    ("azurerm_cosmosdb_account", Category.NOSQL_DATABASE, "Cosmos DB Account"),
    ("azurerm_redis_cache", Category.CACHE, "Azure Cache for Redis"),
    ("azurerm_lb", Category.LOAD_BALANCER, "Azure Load Balancer"),
    ("azurerm_application_gateway", Category.LOAD_BALANCER, "Application Gateway"),
    ("azurerm_dns_zone", Category.DNS, "Azure DNS Zone"),
    ("azurerm_cdn_profile", Category.CDN, "Azure CDN Profile"),
    ("azurerm_frontdoor", Category.CDN, "Front Door"),
    ("azurerm_virtual_network", Category.VPC, "Virtual Network"),
    ("azurerm_aadb2c_directory", Category.AUTH, "Azure AD B2C"),
    ("azurerm_key_vault", Category.SECRETS, "Key Vault"),
    ("azurerm_firewall", Category.FIREWALL, "Azure Firewall"),
    ("azurerm_servicebus_namespace", Category.QUEUE, "Service Bus Namespace"),
    ("azurerm_servicebus_queue", Category.QUEUE, "Service Bus Queue"),
    ("azurerm_eventhub", Category.STREAM, "Event Hub"),
    ("azurerm_eventgrid_topic", Category.PUBSUB, "Event Grid Topic"),
    ("azurerm_logic_app_workflow", Category.SERVERLESS, "Logic App Workflow"),
]

RESOURCE_TYPES: dict[str, ResourceTypeInfo] = {
    **_entries(Provider.AWS, _AWS),
    **_entries(Provider.GCP, _GCP),
    **_entries(Provider.AZURE, _AZURE),
}

# Prefix guess for types outside the taxonomy only.
_PROVIDER_PREFIXES: tuple[tuple[str, Provider], ...] = (
    ("aws_", Provider.AWS),
    ("google_", Provider.GCP),
    ("azurerm_", Provider.AZURE),
    ("azuread_", Provider.AZURE),
)

# ─── Category groups ──────────────────────────────────────────

CATEGORY_GROUPS: dict[str, frozenset[Category]] = {
    "compute": frozenset(
        {Category.COMPUTE, Category.CONTAINER, Category.SERVERLESS, Category.KUBERNETES}
    ),
    "storage": frozenset(
        {Category.OBJECT_STORAGE, Category.BLOCK_STORAGE, Category.FILE_STORAGE}
    ),
    "database": frozenset({Category.SQL_DATABASE, Category.NOSQL_DATABASE, Category.CACHE}),
    "messaging": frozenset({Category.QUEUE, Category.PUBSUB, Category.STREAM}),
    "networking": frozenset(
        {
            Category.LOAD_BALANCER,
            Category.CDN,
            Category.DNS,
            Category.API_GATEWAY,
            Category.VPC,
        }
    ),
    "security": frozenset(
        {
            Category.AUTH,
            Category.SECRETS,
            Category.IAM,
            Category.FIREWALL,
            Category.CERTIFICATE,
        }
    ),
    "observability": frozenset({Category.MONITORING, Category.LOGGING, Category.TRACING}),
}


def resource_info(resource_type: str) -> ResourceTypeInfo | None:
    """Exact taxonomy entry for *resource_type*, or None when unknown."""
    return RESOURCE_TYPES.get(resource_type)


def is_known_type(resource_type: str) -> bool:
    return resource_type in RESOURCE_TYPES


def provider_of(resource_type: str) -> Provider:
    """Provider of a resource type.

    Taxonomy entries are authoritative. For unknown types the provider is
    guessed from the type prefix; anything else is Provider.UNKNOWN.
    """
    info = RESOURCE_TYPES.get(resource_type)
    if info is not None:
        return info.provider
    for prefix, provider in _PROVIDER_PREFIXES:
        if resource_type.startswith(prefix):
            return provider
    return Provider.UNKNOWN


def category_of(resource_type: str) -> Category:
    info = RESOURCE_TYPES.get(resource_type)
    return info.category if info is not None else Category.UNKNOWN


def category_group(category: Category) -> str:
    """Aggregate group name (e.g. "networking") for a category, or "unknown"."""
    for group, members in CATEGORY_GROUPS.items():
        if category in members:
            return group
    return "unknown"


def known_resource_types(provider: Provider | None = None) -> list[str]:
    """Sorted taxonomy type names, optionally filtered by provider."""
    return sorted(
        name
        for name, info in RESOURCE_TYPES.items()
        if provider is None or info.provider == provider
    )


def types_in_category(category: Category) -> list[str]:
    return sorted(name for name, info in RESOURCE_TYPES.items() if info.category == category)
