"""Cache merger: every managed cache becomes a logical DB of one Redis server."""

from __future__ import annotations

from collections import Counter
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
    resource_label,
)
from stackfold.mergers.rendering import markdown_table
from stackfold.models import (
    HealthCheck,
    MappingResult,
    MergeOptions,
    Service,
    Stack,
    StackType,
    Volume,
)

# Redis ships with 16 logical databases; this is a server limit.
MAX_REDIS_DATABASES = 16

CACHE_TYPES: frozenset[str] = frozenset(
    {
        "aws_elasticache_cluster",
        "aws_elasticache_replication_group",
        "aws_elasticache_serverless_cache",
        "google_redis_instance",
        "google_memcache_instance",
        "azurerm_redis_cache",
        "azurerm_redis_enterprise_cluster",
        "azurerm_redis_enterprise_database",
    }
)

_FALLBACK_KEYWORDS = ("elasticache", "redis", "memcache", "memorystore")

MANUAL_STEPS = (
    "Update application Redis connection strings to include the correct DB number",
    "Migrate data from source caches using redis-cli MIGRATE or DUMP/RESTORE",
    "Verify cache functionality after migration",
)


def cache_key(result: MappingResult) -> str:
    return result.source_resource_name or normalize_name(result.source_resource_type)


def cache_keys(results: Sequence[MappingResult]) -> list[str]:
    """One distinct key per result, in input order.

    A name shared by several caches is qualified as ``type.name``.
    """
    names = [cache_key(r) for r in results]
    counts = Counter(names)
    keys: list[str] = []
    for result, name in zip(results, names, strict=True):
        key = resource_label(result) if counts[name] > 1 else name
        keys.append(generate_unique_name(key, keys))
    return keys


def assign_database_numbers(results: Sequence[MappingResult]) -> dict[str, int]:
    """Map each cache to a Redis DB index in ``[0, 15]``.

    Keys come from :func:`cache_keys` and are sorted first; the i-th key
    gets ``i % 16``, so more than 16 caches share indices.
    """
    keys = sorted(cache_keys(results))
    return {key: i % MAX_REDIS_DATABASES for i, key in enumerate(keys)}


def db_limit_warning(count: int) -> str | None:
    if count <= MAX_REDIS_DATABASES:
        return None
    return (
        f"{count} cache resources exceeds Redis DB limit of {MAX_REDIS_DATABASES}; "
        "some caches share DB numbers"
    )


@dataclass(frozen=True, slots=True)
class CacheMerger:
    """Folds ElastiCache, Memorystore and Azure Cache into one Redis instance."""

    @property
    def stack_type(self) -> StackType:
        return StackType.CACHE

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(r.source_resource_type, CACHE_TYPES, _FALLBACK_KEYWORDS)
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        assignments = assign_database_numbers(results)
        warnings = extract_warnings(results)
        limit_warning = db_limit_warning(len(results))
        if limit_warning:
            warnings.append(limit_warning)

        stack = new_stack(StackType.CACHE, options, "Consolidated cache stack with Redis")
        redis = options.stack_name("redis")
        stack.add_service(_redis_service(redis, len(assignments)))
        if options.include_support_services:
            stack.add_service(_commander_service(options.stack_name("redis-commander"), redis))

        stack.add_config("redis.conf", _redis_conf(len(assignments)))
        stack.add_script("CACHE_MAPPING.md", _mapping_doc(assignments))
        stack.add_script(
            "MIGRATION.md", _migration_doc(results, assignments, options.include_support_services, redis)
        )
        stack.add_volume(
            Volume(
                name="cache-data",
                labels={"stackfold.stack": "cache", "stackfold.role": "primary-data"},
            )
        )

        attach_sources(stack, results)
        for name, db in sorted(assignments.items()):
            stack.metadata[f"db_assignment_{name}"] = str(db)
        record_warnings(stack, warnings)
        record_manual_steps(stack, [*MANUAL_STEPS, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def _redis_service(name: str, cache_count: int) -> Service:
    return Service(
        name=name,
        image="redis:7",
        command=["redis-server", "/usr/local/etc/redis/redis.conf"],
        environment={"REDIS_PASSWORD": "${REDIS_PASSWORD:-}"},
        ports=["6379:6379"],
        volumes=["cache-data:/data", "./redis.conf:/usr/local/etc/redis/redis.conf:ro"],
        labels={
            "stackfold.stack": "cache",
            "stackfold.role": "primary",
            "stackfold.databases": str(min(cache_count, MAX_REDIS_DATABASES)),
        },
        health_check=HealthCheck(
            test=["CMD", "redis-cli", "ping"],
            interval="10s",
            timeout="5s",
            retries=5,
            start_period="10s",
        ),
    )


def _commander_service(name: str, redis: str) -> Service:
    return Service(
        name=name,
        image="rediscommander/redis-commander:latest",
        environment={
            "REDIS_HOSTS": f"local:{redis}:6379",
            "HTTP_USER": "${REDIS_COMMANDER_USER:-admin}",
            "HTTP_PASSWORD": "${REDIS_COMMANDER_PASSWORD:-admin}",
        },
        ports=["8081:8081"],
        depends_on=[redis],
        labels={"stackfold.stack": "cache", "stackfold.role": "ui"},
    )


def _redis_conf(cache_count: int) -> str:
    return f"""\
# ============================================================
# Redis Configuration
# Generated by stackfold
# ============================================================
#
# This Redis instance consolidates {cache_count} cache resources.
# Each source cache is assigned a database number (0-15).
# See CACHE_MAPPING.md for the complete mapping.

# GENERAL
bind 0.0.0.0
protected-mode no
port 6379
databases {MAX_REDIS_DATABASES}

# PERSISTENCE
appendonly yes
appendfilename "appendonly.aof"
appendfsync everysec
dir /data

# MEMORY MANAGEMENT
# maxmemory 256mb
maxmemory-policy allkeys-lru
maxmemory-samples 5

# CONNECTIONS
maxclients 10000
timeout 0
tcp-keepalive 300

# SECURITY
# requirepass your-strong-password-here
# rename-command FLUSHALL ""

# LOGGING
loglevel notice
logfile ""

# PERFORMANCE
lazyfree-lazy-eviction yes
lazyfree-lazy-expire yes
lazyfree-lazy-server-del yes
replica-lazy-flush yes
"""


def _mapping_doc(assignments: dict[str, int]) -> str:
    rows = [
        [name, str(db), f"`redis://localhost:6379/{db}`"] for name, db in sorted(assignments.items())
    ]
    doc = (
        "# Cache to Redis Database Mapping\n\n"
        "Redis supports 16 databases (numbered 0-15). Each source cache is assigned\n"
        "a database number for logical separation.\n\n"
        "## Mapping Table\n\n"
        + markdown_table(["Source Cache", "Redis DB Number", "Connection String"], rows)
        + "\n## Usage\n\n"
        "```bash\nredis-cli -n <DB_NUMBER>\n```\n\n"
        "```python\nimport redis\nr = redis.Redis(host='localhost', port=6379, db=<DB_NUMBER>)\n```\n\n"
        "## Notes\n\n"
        "1. Databases are logically separate but share memory and `maxmemory`.\n"
        "2. `FLUSHDB` clears one database; `FLUSHALL` clears all of them.\n"
        "3. Use `INFO keyspace` to see key counts per database.\n"
    )
    if len(assignments) > MAX_REDIS_DATABASES:
        doc += (
            "\n## Warning\n\n"
            f"You have {len(assignments)} cache resources but Redis only supports "
            f"{MAX_REDIS_DATABASES} databases.\n"
            "Some caches share database numbers. Consider:\n"
            "- Using key prefixes to separate data within shared databases\n"
            "- Deploying multiple Redis instances for true isolation\n"
        )
    return doc


def _migration_doc(
    results: Sequence[MappingResult],
    assignments: dict[str, int],
    with_ui: bool,
    service: str,
) -> str:
    rows = [
        [r.source_resource_name, r.source_resource_type, str(assignments[key])]
        for r, key in zip(results, cache_keys(results), strict=True)
    ]
    target = [
        "- **Engine**: Redis 7",
        "- **Port**: 6379",
        "- **Persistence**: AOF (append only file)",
        f"- **Databases Used**: {min(len(assignments), MAX_REDIS_DATABASES)} of {MAX_REDIS_DATABASES}",
    ]
    if with_ui:
        target.insert(2, "- **Web UI**: http://localhost:8081 (Redis Commander)")
    return (
        "# Cache Migration Guide\n\n"
        "## Source Caches\n\n"
        + markdown_table(["Source Resource", "Type", "Target Redis DB"], rows)
        + "\n## Target Configuration\n\n"
        + "\n".join(target)
        + "\n\n## Migration Steps\n\n"
        "### 1. Start the Cache Stack\n\n"
        "```bash\ndocker compose up -d\n```\n\n"
        "### 2. ElastiCache (AWS)\n\n"
        "```bash\n"
        "redis-cli -h <source> --scan --pattern '*' | while read -r key; do\n"
        '    redis-cli -h <source> MIGRATE localhost 6379 "$key" <target-db> 5000 COPY\n'
        "done\n"
        "```\n\n"
        "### 3. Memorystore (GCP) / Azure Cache for Redis\n\n"
        "Export an RDB snapshot to object storage, download it, then:\n\n"
        "```bash\n"
        f"docker cp dump.rdb $(docker compose ps -q {service}):/data/\n"
        f"docker compose restart {service}\n"
        "```\n\n"
        "### 4. Update Connection Strings\n\n"
        "```\nredis://localhost:6379/<DB_NUMBER>\n```\n\n"
        "See `CACHE_MAPPING.md` for the DB number of each source cache.\n"
    )
