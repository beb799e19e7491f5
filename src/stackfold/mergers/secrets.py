"""Secrets merger: Secrets Manager, KMS, Secret Manager and Key Vault -> HashiCorp Vault.

Secrets land under ``secret/data/...`` (KV v2), keys under ``transit/keys/...``
and certificates under ``pki/certs/...``. Source access policies become Vault
policies; the original action strings are kept alongside the translation
so reviewers can audit it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

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
from stackfold.mergers.rendering import markdown_table, shell_script
from stackfold.models import (
    DeployConfig,
    HealthCheck,
    MappingResult,
    MergeOptions,
    Network,
    Policy,
    PolicyEffect,
    ResourceSpec,
    Service,
    Stack,
    StackType,
    Volume,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PathRule:
    provider: str
    prefix: str
    description: str


SECRET_PATHS: dict[str, PathRule] = {
    # AWS
    "aws_secretsmanager_secret": PathRule("aws", "secret/data/aws/secrets-manager", "AWS Secrets Manager secret"),
    "aws_secretsmanager_secret_version": PathRule("aws", "secret/data/aws/secrets-manager", "AWS Secrets Manager secret"),
    "aws_ssm_parameter": PathRule("aws", "secret/data/aws/ssm", "AWS SSM Parameter Store parameter"),
    "aws_kms_key": PathRule("aws", "transit/keys/aws/kms", "AWS KMS key (mapped to Vault Transit)"),
    # GCP
    "google_secret_manager_secret": PathRule("gcp", "secret/data/gcp/secret-manager", "GCP Secret Manager secret"),
    "google_secret_manager_secret_version": PathRule("gcp", "secret/data/gcp/secret-manager", "GCP Secret Manager secret"),
    "google_kms_crypto_key": PathRule("gcp", "transit/keys/gcp/kms", "GCP Cloud KMS key (mapped to Vault Transit)"),
    # Azure
    "azurerm_key_vault": PathRule("azure", "secret/data/azure/key-vault", "Azure Key Vault item"),
    "azurerm_key_vault_secret": PathRule("azure", "secret/data/azure/key-vault/secrets", "Azure Key Vault secret"),
    "azurerm_key_vault_key": PathRule("azure", "transit/keys/azure/key-vault", "Azure Key Vault key (mapped to Vault Transit)"),
    "azurerm_key_vault_certificate": PathRule(
        "azure", "pki/certs/azure/key-vault", "Azure Key Vault certificate (mapped to Vault PKI)"
    ),
}

# Checked in order for types missing from SECRET_PATHS.
_FALLBACK_PATHS: tuple[tuple[str, PathRule], ...] = (
    ("secretsmanager", SECRET_PATHS["aws_secretsmanager_secret"]),
    ("ssm_parameter", SECRET_PATHS["aws_ssm_parameter"]),
    ("google_kms", SECRET_PATHS["google_kms_crypto_key"]),
    ("kms", SECRET_PATHS["aws_kms_key"]),
    ("secret_manager", SECRET_PATHS["google_secret_manager_secret"]),
    ("key_vault", SECRET_PATHS["azurerm_key_vault"]),
    ("keyvault", SECRET_PATHS["azurerm_key_vault"]),
)

_GENERIC_PATH = PathRule("unknown", "secret/data/migrated", "Migrated secret")

_FALLBACK_KEYWORDS = tuple(keyword for keyword, _ in _FALLBACK_PATHS)

FULL_CAPABILITIES = ("create", "read", "update", "delete", "list")

# Action verb prefix -> Vault capabilities; the first matching row wins per action.
_CAPABILITY_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("get", "read", "describe", "list"), ("read", "list")),
    (("put", "create", "write", "update", "set", "add"), ("create", "update")),
    (("delete", "remove", "purge"), ("delete",)),
    (("admin", "fullaccess"), FULL_CAPABILITIES),
    (("encrypt", "decrypt", "reencrypt", "generatedatakey", "sign"), ("update",)),
    (("verify",), ("read",)),
)

VOLUMES = ("vault-data", "vault-logs", "vault-config")

MANUAL_STEPS = (
    "Export secrets from cloud providers (secrets cannot be auto-exported for security)",
    "Run init-vault.sh to initialize and unseal Vault",
    "Run migrate-secrets.sh to import secrets into Vault",
    "Apply policies.hcl to Vault",
    "Update application configurations to use Vault addresses",
)


@dataclass(frozen=True, slots=True)
class SecretPath:
    source_name: str
    source_type: str
    provider: str
    path: str
    description: str

    @property
    def kv_cli_path(self) -> str | None:
        """Path in ``vault kv`` CLI form, or None outside the KV v2 mount.

        The CLI inserts ``/data/`` itself, so ``secret/data/a/b`` becomes
        ``secret/a/b``.
        """
        mount, sep, rest = self.path.partition("/data/")
        return f"{mount}/{rest}" if sep and mount == "secret" else None


@dataclass(frozen=True, slots=True)
class VaultPolicy:
    """A translated policy. ``source_actions`` keeps the original action strings."""

    name: str
    path: str
    capabilities: list[str]
    source_actions: list[str] = field(default_factory=list)


def path_rule(resource_type: str) -> PathRule:
    """Vault path family for *resource_type*; exact table first, keywords last."""
    rule = SECRET_PATHS.get(resource_type)
    if rule is not None:
        return rule
    lowered = resource_type.lower()
    for keyword, fallback in _FALLBACK_PATHS:
        if keyword in lowered:
            return fallback
    return _GENERIC_PATH


def vault_path(result: MappingResult) -> SecretPath:
    rule = path_rule(result.source_resource_type)
    name = normalize_name(result.source_resource_name) or "secret"
    return SecretPath(
        source_name=result.source_resource_name,
        source_type=result.source_resource_type,
        provider=rule.provider,
        path=f"{rule.prefix}/{name}",
        description=rule.description,
    )


def capabilities_for(actions: Sequence[str]) -> list[str]:
    """Translate cloud IAM actions into a sorted list of Vault capabilities.

    Examples:
        >>> capabilities_for(["secretsmanager:GetSecretValue"])
        ['list', 'read']
        >>> capabilities_for(["kms:Encrypt"])
        ['update']
        >>> capabilities_for(["kms:*"])
        ['create', 'delete', 'list', 'read', 'update']
    """
    capabilities: set[str] = set()
    for action in actions:
        verb = _action_verb(action)
        if verb == "*":
            capabilities.update(FULL_CAPABILITIES)
            continue
        for keywords, granted in _CAPABILITY_RULES:
            if verb.startswith(keywords):
                capabilities.update(granted)
                break
    return sorted(capabilities)


def _action_verb(action: str) -> str:
    """Lower-cased verb of ``service:Verb``, with a trailing ``*`` dropped.

    A bare ``*`` stays ``*``.
    """
    verb = action.rpartition(":")[2].strip().lower()
    return verb if verb == "*" else verb.rstrip("*")


def translate_policy(policy: Policy, base_path: str, name: str) -> tuple[VaultPolicy | None, list[str]]:
    """Build a Vault policy from the allow statements of *policy*.

    Vault policies are allow-only, so deny statements are dropped and
    reported.

    Returns:
        Tuple of (policy or None when nothing translates, warnings).
    """
    warnings: list[str] = []
    allowed: list[str] = []
    for statement in policy.statements:
        if statement.effect is PolicyEffect.DENY:
            warnings.append(
                f"Policy '{policy.name}' has a deny statement that Vault cannot express; "
                "review it manually"
            )
            continue
        allowed.extend(statement.actions)

    capabilities = capabilities_for(allowed)
    if not capabilities:
        return None, warnings
    return (
        VaultPolicy(name=name, path=base_path, capabilities=capabilities, source_actions=policy.actions),
        warnings,
    )


@dataclass(frozen=True, slots=True)
class SecretsMerger:
    """Folds every secret and key store into one Vault server."""

    @property
    def stack_type(self) -> StackType:
        return StackType.SECRETS

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(r.source_resource_type, SECRET_PATHS, _FALLBACK_KEYWORDS)
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        stack = new_stack(StackType.SECRETS, options, "Secret management with HashiCorp Vault")
        stack.add_service(_vault_service(options.stack_name("vault")))
        for volume in VOLUMES:
            stack.add_volume(
                Volume(
                    name=volume,
                    labels={"stackfold.stack": "secrets", "stackfold.role": volume.removeprefix("vault-")},
                )
            )
        stack.add_network(Network(name="secrets-net"))

        warnings = extract_warnings(results)
        paths: list[SecretPath] = []
        policies: list[VaultPolicy] = []
        policy_names: set[str] = set()
        for result in results:
            path = vault_path(result)
            paths.append(path)
            for policy in result.policies:
                name = generate_unique_name(normalize_name(policy.name) or "policy", policy_names)
                policy_names.add(name)
                translated, policy_warnings = translate_policy(policy, path.path, name)
                warnings.extend(policy_warnings)
                stack.metadata[f"policy_actions_{name}"] = ",".join(policy.actions)
                if translated is not None:
                    policies.append(translated)
        logger.debug("Mapped %d secrets and %d policies to Vault", len(paths), len(policies))

        stack.add_config("vault.hcl", _VAULT_HCL)
        if policies:
            stack.add_config("policies.hcl", render_policies(policies))
        stack.add_config("secret-paths.md", _path_doc(paths))
        stack.add_script("migrate-secrets.sh", _migration_script(paths))
        stack.add_script("init-vault.sh", shell_script(_INIT_VAULT))

        attach_sources(stack, results)
        for path in paths:
            stack.metadata[f"path_{normalize_name(path.source_name) or 'secret'}"] = path.path
        record_warnings(stack, warnings)
        record_manual_steps(stack, [*MANUAL_STEPS, *extract_manual_steps(results)])
        carry_source_files(stack, results)
        return stack


def _vault_service(name: str) -> Service:
    return Service(
        name=name,
        image="hashicorp/vault:latest",
        command=["server"],
        environment={
            "VAULT_ADDR": "http://0.0.0.0:8200",
            "VAULT_API_ADDR": "http://0.0.0.0:8200",
            "VAULT_LOCAL_CONFIG": '{"ui": true, "listener": {"tcp": {"address": "0.0.0.0:8200", "tls_disable": 1}}}',
        },
        ports=["8200:8200"],
        volumes=["vault-data:/vault/data", "vault-logs:/vault/logs", "vault-config:/vault/config"],
        labels={"stackfold.stack": "secrets", "stackfold.role": "primary", "stackfold.component": "vault"},
        networks=["secrets-net"],
        health_check=HealthCheck(
            test=["CMD", "vault", "status"],
            interval="30s",
            timeout="10s",
            retries=3,
            start_period="10s",
        ),
        deploy=DeployConfig(
            replicas=1,
            limits=ResourceSpec(cpus="1", memory="512M"),
            reservations=ResourceSpec(cpus="0.25", memory="128M"),
        ),
    )


def _quoted(values: Sequence[str]) -> str:
    return ", ".join(f'"{value}"' for value in values)


def render_policies(policies: Sequence[VaultPolicy]) -> str:
    """Render translated policies as HCL, each preceded by its source actions."""
    lines = ["# Vault Policies", "# Generated by stackfold. Review before applying.", ""]
    for policy in policies:
        lines.append(f"# Policy: {policy.name}")
        lines.append("# Original actions:")
        lines.extend(f"#   {action}" for action in policy.source_actions)
        for path in (policy.path, f"{policy.path}/*"):
            lines.append(f'path "{path}" {{')
            lines.append(f"  capabilities = [{_quoted(policy.capabilities)}]")
            lines.append("}")
            lines.append("")
    return "\n".join(lines)


def _path_doc(paths: Sequence[SecretPath]) -> str:
    by_provider: dict[str, list[SecretPath]] = {}
    for path in paths:
        by_provider.setdefault(path.provider, []).append(path)

    sections = ["# Secret Path Mappings\n\nHow cloud secrets map to Vault paths.\n"]
    for provider in sorted(by_provider):
        rows = [
            [p.source_name, p.source_type, f"`{p.path}`", p.description] for p in by_provider[provider]
        ]
        sections.append(
            f"## {provider.upper()}\n\n"
            + markdown_table(["Source Name", "Source Type", "Vault Path", "Description"], rows)
        )
    sections.append(
        "## Usage\n\n"
        "```bash\n"
        "vault kv get secret/aws/secrets-manager/my-secret\n"
        'vault kv put secret/aws/secrets-manager/my-secret value="secret-value"\n'
        'vault write transit/encrypt/my-key plaintext=$(echo -n "secret" | base64)\n'
        "```\n"
    )
    return "\n".join(sections)


def _migration_script(paths: Sequence[SecretPath]) -> str:
    blocks = []
    for path in paths:
        kv_path = path.kv_cli_path
        command = (
            f"vault kv put {kv_path} value=\"<secret value>\""
            if kv_path
            else f"import the key material at {path.path} through the transit or pki API"
        )
        blocks.append(
            f"# {path.source_name} ({path.provider}/{path.source_type})\n"
            f"# {path.description}\n"
            f"# {command}\n"
            f'echo "Placeholder for {path.source_name}; fill in the secret value"\n'
        )
    return shell_script(
        "# Secret values cannot be exported automatically. Fill in each block\n"
        "# with the value retrieved from the source provider.\n\n"
        'VAULT_ADDR="${VAULT_ADDR:-http://localhost:8200}"\n'
        'VAULT_TOKEN="${VAULT_TOKEN:-}"\n\n'
        'if [ -z "$VAULT_TOKEN" ]; then\n'
        '    echo "Error: VAULT_TOKEN environment variable is required"\n'
        "    exit 1\n"
        "fi\n\n"
        "vault secrets enable -path=secret kv-v2 2>/dev/null || true\n"
        "vault secrets enable transit 2>/dev/null || true\n"
        "vault secrets enable pki 2>/dev/null || true\n\n"
        + "\n".join(blocks)
        + "\n"
        'echo "Retrieve source values with:"\n'
        'echo "  AWS:   aws secretsmanager get-secret-value --secret-id <name>"\n'
        'echo "  GCP:   gcloud secrets versions access latest --secret=<name>"\n'
        'echo "  Azure: az keyvault secret show --vault-name <vault> --name <name>"\n'
    )


_VAULT_HCL = """\
# Vault Server Configuration
# Generated by stackfold

storage "file" {
  path = "/vault/data"
}

listener "tcp" {
  address     = "0.0.0.0:8200"
  tls_disable = true
}

ui = true
api_addr = "http://127.0.0.1:8200"
disable_mlock = true

log_level = "info"
log_format = "standard"

telemetry {
  disable_hostname = true
  prometheus_retention_time = "60s"
}
"""

_INIT_VAULT = """\
# Initialize and unseal Vault. Safe to re-run: an initialized Vault is only
# unsealed, never re-initialized.

VAULT_ADDR="${VAULT_ADDR:-http://localhost:8200}"
KEYS_FILE="${KEYS_FILE:-./vault-keys.json}"

until curl -s "$VAULT_ADDR/v1/sys/health" > /dev/null 2>&1; do
    echo "Waiting for Vault..."
    sleep 2
done

INITIALIZED=$(curl -s "$VAULT_ADDR/v1/sys/init" | jq -r '.initialized')

if [ "$INITIALIZED" != "true" ]; then
    echo "Initializing Vault..."
    curl -s -X PUT "$VAULT_ADDR/v1/sys/init" \\
        -d '{"secret_shares": 5, "secret_threshold": 3}' > "$KEYS_FILE"
    chmod 600 "$KEYS_FILE"
    echo "Unseal keys and root token saved to $KEYS_FILE"
fi

SEALED=$(curl -s "$VAULT_ADDR/v1/sys/seal-status" | jq -r '.sealed')
if [ "$SEALED" = "true" ]; then
    if [ ! -f "$KEYS_FILE" ]; then
        echo "Error: keys file $KEYS_FILE not found; unseal manually"
        exit 1
    fi
    for i in 0 1 2; do
        KEY=$(jq -r ".keys_base64[$i] // .unseal_keys_b64[$i]" "$KEYS_FILE")
        curl -s -X PUT "$VAULT_ADDR/v1/sys/unseal" -d "{\\"key\\": \\"$KEY\\"}" > /dev/null
    done
    echo "Vault unsealed"
else
    echo "Vault is already unsealed"
fi

echo "Vault UI: $VAULT_ADDR/ui"
"""
