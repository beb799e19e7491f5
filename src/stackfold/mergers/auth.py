"""Auth merger: Cognito, Identity Platform and Azure AD B2C -> one Keycloak.

Every source identity resource becomes its own Keycloak realm. Clients are
recovered from the JSON documents the mapper ships with each result
(``app_clients.json``, ``identity_platform.json``, ``app_registrations.json``);
when none are found the realm gets a single public ``<realm>-app`` client.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from stackfold.errors import MergeError
from stackfold.mergers.database import ENGINE_PORTS, primary_service_name, select_engine
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
from stackfold.mergers.rendering import shell_script, to_json
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

logger = logging.getLogger(__name__)

AUTH_TYPES: frozenset[str] = frozenset(
    {
        # AWS Cognito
        "aws_cognito_user_pool",
        "aws_cognito_user_pool_client",
        "aws_cognito_identity_pool",
        # GCP Identity Platform
        "google_identity_platform_config",
        "google_identity_platform_tenant",
        "google_identity_platform_oauth_idp_config",
        # Azure AD B2C
        "azurerm_aadb2c_directory",
        "azuread_application",
        "azuread_service_principal",
    }
)

_FALLBACK_KEYWORDS = ("cognito", "identity_platform", "aadb2c")

# (type prefix, source tag, display label, default realm name)
_SOURCES: tuple[tuple[str, str, str, str], ...] = (
    ("aws_cognito", "aws_cognito", "Cognito", "cognito-migration"),
    ("google_identity_platform", "google_identity_platform", "GCP Identity Platform", "identity-platform-migration"),
    ("azurerm_aadb2c", "azure_adb2c", "Azure AD B2C", "adb2c-migration"),
    ("azuread", "azure_adb2c", "Azure AD B2C", "adb2c-migration"),
)

LOCAL_REDIRECTS = ["http://localhost:*", "https://localhost:*"]

MANUAL_STEPS = (
    "Export users from source identity provider (Cognito/Identity Platform/Azure AD B2C)",
    "Import users into Keycloak using the Admin API or migration script",
    "Update application OAuth2/OIDC configuration to point to Keycloak",
    "Configure email templates and branding in Keycloak Admin Console",
    "Set up social login providers (Google, Facebook, etc.) if previously configured",
    "Review and configure password policies and MFA settings",
)


# ─── Realm conversion ─────────────────────────────────────────


def password_policy(policy: Mapping[str, object]) -> str:
    """Translate a Cognito ``password_policy`` block into Keycloak syntax.

    Example: ``{"minimum_length": 12, "require_numbers": True}`` becomes
    ``"length(12) and digits(1)"``.
    """
    parts: list[str] = []
    minimum = policy.get("minimum_length")
    if isinstance(minimum, int | float) and not isinstance(minimum, bool):
        parts.append(f"length({int(minimum)})")
    for flag, rule in (
        ("require_lowercase", "lowerCase(1)"),
        ("require_uppercase", "upperCase(1)"),
        ("require_numbers", "digits(1)"),
        ("require_symbols", "specialChars(1)"),
    ):
        if policy.get(flag) is True:
            parts.append(rule)
    return " and ".join(parts)


def _client(
    client_id: str,
    name: str,
    redirect_uris: list[str],
    web_origins: list[str],
    *,
    public: bool = True,
    direct_grants: bool = True,
) -> dict[str, object]:
    return {
        "clientId": client_id,
        "name": name,
        "enabled": True,
        "protocol": "openid-connect",
        "publicClient": public,
        "standardFlowEnabled": True,
        "directAccessGrantsEnabled": direct_grants,
        "serviceAccountsEnabled": False,
        "redirectUris": redirect_uris,
        "webOrigins": web_origins,
    }


def _strings(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def cognito_client(config: Mapping[str, object]) -> dict[str, object] | None:
    raw_id = config.get("client_id") or config.get("name")
    if not isinstance(raw_id, str) or not raw_id:
        return None
    client = _client(normalize_name(raw_id), raw_id, _strings(config.get("callback_urls")) or ["*"], ["*"])
    scopes = _strings(config.get("allowed_oauth_scopes"))
    if scopes:
        client["attributes"] = {"oauth2.scopes": " ".join(scopes)}
    return client


def identity_platform_clients(config: Mapping[str, object]) -> list[dict[str, object]]:
    return [
        _client(
            normalize_name(domain) + "-client",
            domain,
            [f"https://{domain}/*"],
            [f"https://{domain}"],
            direct_grants=False,
        )
        for domain in _strings(config.get("authorized_domains"))
    ]


def adb2c_client(config: Mapping[str, object]) -> dict[str, object] | None:
    app_id = config.get("application_id")
    display_name = config.get("display_name")
    app_id = app_id if isinstance(app_id, str) else ""
    display_name = display_name if isinstance(display_name, str) else ""
    if not app_id and not display_name:
        return None
    return _client(
        app_id or normalize_name(display_name),
        display_name,
        _strings(config.get("reply_urls")) or ["*"],
        ["*"],
        public=config.get("is_public_client") is True,
    )


class _ConfigReader:
    """Parses JSON documents attached to a result, collecting parse failures."""

    def __init__(self, result: MappingResult, warnings: list[str]) -> None:
        self._result = result
        self._warnings = warnings

    def load(self, filename: str) -> object | None:
        body = self._result.configs.get(filename)
        if body is None:
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            self._warnings.append(
                f"Could not parse {filename} for {self._result.source_resource_name}: {exc.msg}"
            )
            return None


def build_realm(result: MappingResult, realm_name: str, warnings: list[str]) -> dict[str, object]:
    """Keycloak realm representation for one source identity resource.

    Args:
        result: The source identity resource.
        realm_name: Unique realm name already chosen by the caller.
        warnings: Receives a message for every unreadable config document.
    """
    source, label = "unknown", "identity provider"
    for prefix, tag, display, _ in _SOURCES:
        if result.source_resource_type.startswith(prefix):
            source, label = tag, display
            break

    realm: dict[str, object] = {
        "realm": realm_name,
        "enabled": True,
        "displayName": f"Migrated from {label}: {result.source_resource_name}",
        "bruteForceProtected": True,
        "defaultRoles": ["user"],
        "attributes": {
            "source": source,
            "original_name": result.source_resource_name,
            "migration_notes": f"Realm migrated from {label}",
        },
    }
    clients: list[dict[str, object]] = []
    reader = _ConfigReader(result, warnings)

    if source == "aws_cognito":
        pool = reader.load("user_pool.json")
        if isinstance(pool, dict) and isinstance(pool.get("password_policy"), dict):
            policy = password_policy(pool["password_policy"])
            if policy:
                realm["passwordPolicy"] = policy
        app_clients = reader.load("app_clients.json")
        if isinstance(app_clients, list):
            clients.extend(c for c in map(cognito_client, filter(_is_mapping, app_clients)) if c)
    elif source == "google_identity_platform":
        config = reader.load("identity_platform.json")
        if isinstance(config, dict):
            clients.extend(identity_platform_clients(config))
    elif source == "azure_adb2c":
        directory = reader.load("adb2c.json")
        if isinstance(directory, dict) and isinstance(directory.get("domain_name"), str):
            realm["displayName"] = f"Azure AD B2C: {directory['domain_name']}"
        apps = reader.load("app_registrations.json")
        if isinstance(apps, list):
            clients.extend(c for c in map(adb2c_client, filter(_is_mapping, apps)) if c)

    if not clients:
        clients.append(_client(f"{realm_name}-app", "Migrated Application", list(LOCAL_REDIRECTS), ["*"]))
    realm["clients"] = clients
    return realm


def _is_mapping(value: object) -> bool:
    return isinstance(value, dict)


def default_realm_name(result: MappingResult) -> str:
    name = normalize_name(result.source_resource_name)
    if name:
        return name
    for prefix, _, _, fallback in _SOURCES:
        if result.source_resource_type.startswith(prefix):
            return fallback
    return "auth-migration"


# ─── Merger ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AuthMerger:
    """Folds every identity provider into a single Keycloak with one realm each."""

    @property
    def stack_type(self) -> StackType:
        return StackType.AUTH

    def can_merge(self, results: Sequence[MappingResult]) -> bool:
        return any(
            matches_resource_type(r.source_resource_type, AUTH_TYPES, _FALLBACK_KEYWORDS)
            for r in results
        )

    def merge(self, results: Sequence[MappingResult], options: MergeOptions) -> Stack:
        if not results:
            raise MergeError("no results to merge")

        stack = new_stack(StackType.AUTH, options, "Identity and authentication stack (Keycloak)")
        stack.add_dependency(StackType.DATABASE)

        warnings = extract_warnings(results)
        realms: list[dict[str, object]] = []
        used: set[str] = set()
        for result in results:
            realm_name = generate_unique_name(default_realm_name(result), used)
            used.add(realm_name)
            realms.append(build_realm(result, realm_name, warnings))
            stack.metadata[f"realm_for_{normalize_name(result.source_resource_name) or realm_name}"] = realm_name
        logger.debug("Built %d Keycloak realms", len(realms))

        stack.add_config("keycloak/realms/import-realms.json", to_json(realms))
        stack.add_script("keycloak/migrate-users.sh", shell_script(_MIGRATE_USERS))
        engine, _ = select_engine(options.database_engine)
        database_host = primary_service_name(engine, options)
        stack.add_service(_keycloak_service(options.stack_name("keycloak"), engine, database_host))
        stack.add_volume(Volume(name="keycloak-data"))
        stack.add_network(Network(name="auth"))
        stack.add_network(Network(name="backend"))

        attach_sources(stack, results)
        stack.metadata["realms"] = ",".join(sorted(used))
        record_warnings(stack, warnings)
        record_manual_steps(
            stack,
            [
                f"Create the 'keycloak' database and user on the {database_host} server",
                *MANUAL_STEPS,
                *extract_manual_steps(results),
            ],
        )
        carry_source_files(stack, results)
        return stack


def _keycloak_service(name: str, engine: str, database_host: str) -> Service:
    return Service(
        name=name,
        image="quay.io/keycloak/keycloak:latest",
        command=["start", "--import-realm"],
        environment={
            "KC_HOSTNAME": "${KEYCLOAK_HOSTNAME:-localhost}",
            "KC_HOSTNAME_STRICT": "false",
            "KC_HTTP_ENABLED": "true",
            "KC_HEALTH_ENABLED": "true",
            "KC_METRICS_ENABLED": "true",
            "KEYCLOAK_ADMIN": "${KEYCLOAK_ADMIN:-admin}",
            "KEYCLOAK_ADMIN_PASSWORD": "${KEYCLOAK_ADMIN_PASSWORD:-admin}",
            "KC_DB": engine,
            "KC_DB_URL_HOST": f"${{KC_DB_HOST:-{database_host}}}",
            "KC_DB_URL_PORT": f"${{KC_DB_PORT:-{ENGINE_PORTS[engine]}}}",
            "KC_DB_URL_DATABASE": "${KC_DB_NAME:-keycloak}",
            "KC_DB_USERNAME": "${KC_DB_USERNAME:-keycloak}",
            "KC_DB_PASSWORD": "${KC_DB_PASSWORD:-keycloak}",
        },
        ports=["8080:8080", "8443:8443"],
        volumes=[
            "keycloak-data:/opt/keycloak/data",
            "./keycloak/realms:/opt/keycloak/data/import:ro",
        ],
        labels={
            "stackfold.stack": "auth",
            "stackfold.role": "primary",
            "traefik.enable": "true",
            "traefik.http.routers.keycloak.rule": "Host(`${KEYCLOAK_HOSTNAME:-auth.localhost}`)",
            "traefik.http.services.keycloak.loadbalancer.server.port": "8080",
        },
        networks=["auth", "backend"],
        health_check=HealthCheck(
            test=["CMD", "curl", "-f", "http://localhost:8080/health/ready"],
            interval="30s",
            timeout="10s",
            retries=5,
            start_period="60s",
        ),
    )


_MIGRATE_USERS = """\
# Import users exported from a cloud identity provider into a Keycloak realm.
#
# Requires jq and curl.
#
# Usage:
#   ./migrate-users.sh <realm> <users-file.json>

KEYCLOAK_URL="${KEYCLOAK_URL:-http://localhost:8080}"
KEYCLOAK_ADMIN="${KEYCLOAK_ADMIN:-admin}"
KEYCLOAK_ADMIN_PASSWORD="${KEYCLOAK_ADMIN_PASSWORD:-admin}"

REALM="${1:-}"
USERS_FILE="${2:-}"

if [ -z "$REALM" ] || [ -z "$USERS_FILE" ]; then
    echo "Usage: $0 <realm> <users-file.json>"
    exit 1
fi

if [ ! -f "$USERS_FILE" ]; then
    echo "Error: users file '$USERS_FILE' not found"
    exit 1
fi

TOKEN=$(curl -s -X POST "$KEYCLOAK_URL/realms/master/protocol/openid-connect/token" \\
    -H "Content-Type: application/x-www-form-urlencoded" \\
    -d "username=$KEYCLOAK_ADMIN" \\
    -d "password=$KEYCLOAK_ADMIN_PASSWORD" \\
    -d "grant_type=password" \\
    -d "client_id=admin-cli" | jq -r '.access_token')

if [ "$TOKEN" == "null" ] || [ -z "$TOKEN" ]; then
    echo "Error: failed to obtain an admin access token"
    exit 1
fi

USER_COUNT=$(jq length "$USERS_FILE")
IMPORTED=0
SKIPPED=0
FAILED=0

for i in $(seq 0 $((USER_COUNT - 1))); do
    USER=$(jq ".[$i]" "$USERS_FILE")
    USERNAME=$(echo "$USER" | jq -r '.username // .email // "unknown"')
    echo -n "Importing $((i + 1))/$USER_COUNT: $USERNAME ... "

    STATUS=$(curl -s -w "%{http_code}" -o /tmp/keycloak_response.json \\
        -X POST "$KEYCLOAK_URL/admin/realms/$REALM/users" \\
        -H "Authorization: Bearer $TOKEN" \\
        -H "Content-Type: application/json" \\
        -d "$USER")

    case "$STATUS" in
        201) echo "OK"; IMPORTED=$((IMPORTED + 1)) ;;
        409) echo "SKIPPED (already exists)"; SKIPPED=$((SKIPPED + 1)) ;;
        *)   echo "FAILED (HTTP $STATUS)"; cat /tmp/keycloak_response.json; echo; FAILED=$((FAILED + 1)) ;;
    esac
done

echo "Imported: $IMPORTED"
echo "Skipped:  $SKIPPED"
echo "Failed:   $FAILED"
echo "Imported users must reset their passwords on first login."
"""
