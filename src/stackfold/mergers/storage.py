"""Storage merger: S3, GCS and Azure Blob buckets -> buckets on one MinIO server."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from stackfold.classification.taxonomy import provider_of
from stackfold.errors import MergeError
from stackfold.mergers.helpers import (
    attach_sources,
    carry_source_files,
    extract_manual_steps,
    extract_warnings,
    matches_resource_type,
    new_stack,
    normalize_name,
    record_manual_steps,
    record_warnings,
)
from stackfold.mergers.rendering import shell_script
from stackfold.models import (
    HealthCheck,
    MappingResult,
    MergeOptions,
    Provider,
    Service,
    Stack,
    StackType,
    Volume,
)

MIN_BUCKET_LENGTH = 3
MAX_BUCKET_LENGTH = 63

STORAGE_TYPES: frozenset[str] = frozenset(
    {
        "aws_s3_bucket",
        "aws_efs_file_system",
        "google_storage_bucket",
        "google_filestore_instance",
        "azurerm_storage_account",
        "azurerm_storage_container",
        "azurerm_storage_share",
    }
)

# File shares land in MinIO too, but lose POSIX semantics.
FILE_STORAGE_TYPES: frozenset[str] = frozenset(
    {"aws_efs_file_system", "google_filestore_instance", "azurerm_storage_share"}
)

_FALLBACK_KEYWORDS = ("s3", "bucket", "gcs", "storage", "blob", "container", "object")
_EXCLUDE_KEYWORDS = ("ebs", "disk", "volume", "efs", "filestore", "files")

MANUAL_STEPS = (
    "Update application configuration to use MinIO endpoint (http://localhost:9000)",
    "Update AWS SDK configuration to use path-style URLs (required for MinIO)",
    "Migrate existing data using rclone, aws s3 sync, or mc mirror",
    "Review and apply bucket policies for access control",
    "Configure lifecycle rules for object expiration if needed",
    "Set up bucket versioning if required",
    "Configure event notifications if using S3 event triggers",
)

_PROVIDER_STEPS: dict[Provider, tuple[str, ...]] = {
    Provider.AWS: (
        "AWS S3: Use 'aws s3 sync' or 'rclone sync' for data migration",
        "AWS S3: Review S3 event notifications and map to MinIO bucket notifications",
        "AWS S3: Check for S3 Select usage; MinIO supports this feature",
    ),
    Provider.GCP: (
        "GCS: Use 'gsutil rsync' or 'rclone sync' for data migration",
        "GCS: Review GCS IAM permissions and map to MinIO policies",
        "GCS: Check for signed URL usage; MinIO supports presigned URLs",
    ),
    Provider.AZURE: (
        "Azure Blob: Use 'azcopy' or 'rclone sync' for data migration",
        "Azure Blob: Review Azure SAS tokens and map to MinIO policies",
        "Azure Blob: Check for Azure CDN integration for static content",
    ),
}

_RCLONE_REMOTES: dict[Provider, tuple[str, str]] = {
    Provider.AWS: ("aws", "rclone config create aws s3 provider=AWS env_auth=true"),
    Provider.GCP: ("gcs", "rclone config create gcs 'google cloud storage'"),
    Provider.AZURE: ("azure", "rclone config create azure azureblob account=ACCOUNT key=KEY"),
}


def bucket_name(source_name: str) -> str:
    """S3-compatible bucket name for a source resource name, or ``""``.

    Short names are padded with ``-bucket``; long names are cut to 63
    characters.
    """
    name = normalize_name(source_name)
    if not name:
        return ""
    if len(name) < MIN_BUCKET_LENGTH:
        name += "-bucket"
    return name[:MAX_BUCKET_LENGTH].rstrip("-")


def extract_bucket_names(results: Sequence[MappingResult]) -> list[str]:
    """Distinct bucket names in input order."""
    return list(dict.fromkeys(b for b in (bucket_name(r.source_resource_name) for r in results) if b))


@dataclass(frozen=True, slots=True)
class StorageMerger:
    """Folds object stores and file shares into MinIO buckets."""

    @property
    def stack_type(self) -> StackType:
        return StackType.STORAGE

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(
                r.source_resource_type, STORAGE_TYPES, _FALLBACK_KEYWORDS, _EXCLUDE_KEYWORDS
            )
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        buckets = extract_bucket_names(results)
        stack = new_stack(StackType.STORAGE, options, "Object storage (MinIO, S3-compatible)")
        minio = options.stack_name("minio")
        stack.add_service(_minio_service(minio))
        setup = setup_script(buckets)
        if buckets:
            stack.add_service(_init_service(options.stack_name("minio-init"), minio, setup))
        stack.add_volume(Volume(name="minio_data", labels={"stackfold.stack": "storage"}))

        stack.add_script("setup-buckets.sh", setup)
        stack.add_script("migrate-data.sh", migration_script(results))
        if options.include_support_services:
            stack.add_config("nginx/minio-proxy.conf", _nginx_conf(minio))

        warnings = extract_warnings(results)
        for result in results:
            if result.source_resource_type in FILE_STORAGE_TYPES:
                warnings.append(
                    f"{result.source_resource_type}.{result.source_resource_name} is a file share; "
                    "MinIO serves it as a bucket without POSIX semantics"
                )

        attach_sources(stack, results)
        for result in results:
            bucket = bucket_name(result.source_resource_name)
            if bucket:
                stack.metadata[f"bucket_{bucket}"] = result.source_resource_name
        stack.metadata["total_buckets"] = str(len(buckets))

        providers = sorted(
            {p for p in map(provider_of, (r.source_resource_type for r in results)) if p in _PROVIDER_STEPS}
        )
        provider_steps = [step for p in providers for step in _PROVIDER_STEPS[p]]
        record_warnings(stack, warnings)
        record_manual_steps(stack, [*MANUAL_STEPS, *provider_steps, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def _minio_service(name: str) -> Service:
    return Service(
        name=name,
        image="minio/minio:latest",
        command=["server", "/data", "--console-address", ":9001"],
        environment={
            "MINIO_ROOT_USER": "${MINIO_ROOT_USER:-admin}",
            "MINIO_ROOT_PASSWORD": "${MINIO_ROOT_PASSWORD:-changeme123}",
            "MINIO_BROWSER": "on",
        },
        ports=["9000:9000", "9001:9001"],
        volumes=["minio_data:/data"],
        labels={"stackfold.stack": "storage", "stackfold.role": "primary"},
        health_check=HealthCheck(
            test=["CMD", "mc", "ready", "local"],
            interval="30s",
            timeout="10s",
            retries=3,
            start_period="10s",
        ),
    )


def _init_service(name: str, minio: str, script: str) -> Service:
    return Service(
        name=name,
        image="minio/mc:latest",
        command=["/bin/sh", "-c", script],
        environment={
            "MC_HOST_myminio": (
                "http://${MINIO_ROOT_USER:-admin}:${MINIO_ROOT_PASSWORD:-changeme123}"
                f"@{minio}:9000"
            ),
        },
        labels={"stackfold.stack": "storage", "stackfold.role": "init"},
        depends_on=[minio],
        restart="on-failure",
    )


def setup_script(buckets: Sequence[str]) -> str:
    """POSIX sh script that waits for MinIO and creates every bucket idempotently."""
    lines = [
        "#!/bin/sh",
        "set -e",
        "",
        "until mc ready myminio 2>/dev/null; do",
        "    echo 'MinIO not ready yet, waiting...'",
        "    sleep 2",
        "done",
        "",
    ]
    for bucket in buckets:
        lines.append(f"mc mb --ignore-existing myminio/{bucket}")
    lines.extend(["", "mc ls myminio", ""])
    return "\n".join(lines)


def migration_script(results: Sequence[MappingResult]) -> str:
    """rclone-based copy script, one section per source provider."""
    by_provider: dict[Provider, list[str]] = {}
    for result in results:
        bucket = bucket_name(result.source_resource_name)
        provider = provider_of(result.source_resource_type)
        if bucket and provider in _RCLONE_REMOTES:
            by_provider.setdefault(provider, []).append(bucket)

    sections = [
        "# Requires rclone and credentials for each source provider.\n\n"
        'MINIO_ENDPOINT="${MINIO_ENDPOINT:-http://localhost:9000}"\n'
        'MINIO_ACCESS_KEY="${MINIO_ROOT_USER:-admin}"\n'
        'MINIO_SECRET_KEY="${MINIO_ROOT_PASSWORD:-changeme123}"\n\n'
        "rclone config create minio s3 \\\n"
        "    provider=Minio \\\n"
        "    env_auth=false \\\n"
        '    access_key_id="$MINIO_ACCESS_KEY" \\\n'
        '    secret_access_key="$MINIO_SECRET_KEY" \\\n'
        '    endpoint="$MINIO_ENDPOINT"\n'
    ]
    for provider in sorted(by_provider):
        remote, configure = _RCLONE_REMOTES[provider]
        body = [f"# {provider.upper()}", f"# {configure}"]
        for bucket in dict.fromkeys(by_provider[provider]):
            body.append(f"echo 'Syncing {bucket}'")
            body.append(f"rclone sync {remote}:{bucket} minio:{bucket} --progress")
        sections.append("\n".join(body) + "\n")
    sections.append("echo 'Verify data integrity before decommissioning source buckets.'\n")
    return shell_script("\n".join(sections))


def _nginx_conf(minio: str) -> str:
    return _NGINX_CONF.replace("__MINIO__", minio)


_NGINX_CONF = """\
# Nginx reverse proxy for MinIO
# Generated by stackfold

upstream minio_api {
    server __MINIO__:9000;
}

upstream minio_console {
    server __MINIO__:9001;
}

server {
    listen 80;
    listen [::]:80;
    server_name storage.local *.storage.local;

    location / {
        proxy_pass http://minio_api;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        proxy_http_version 1.1;
        proxy_set_header Connection "";
        chunked_transfer_encoding off;

        client_max_body_size 0;
        proxy_buffering off;
        proxy_request_buffering off;
    }
}

server {
    listen 9001;
    listen [::]:9001;
    server_name storage.local;

    location / {
        proxy_pass http://minio_console;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;

        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
    }
}
"""
